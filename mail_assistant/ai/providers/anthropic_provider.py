"""Anthropic Messages API backend, with actions exposed as tool_use tools."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import anthropic
from anthropic import AsyncAnthropic
from anthropic.types import TextBlock, ToolUseBlock

from mail_assistant.ai.providers.base import (
    ActionCall,
    ActionDeclaration,
    GenerationOptions,
    ProviderAuthError,
    ProviderError,
    ProviderGateway,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderResponse,
    ProviderResponseError,
    ProviderTransportError,
)

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "claude-haiku-4-5-20251001"


def translate_error(exc: anthropic.APIError) -> ProviderError:
    """Map an Anthropic SDK exception onto the provider error hierarchy."""
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ProviderAuthError(f"anthropic: {exc}")
    if isinstance(exc, anthropic.RateLimitError):
        return ProviderRateLimitError(f"anthropic: {exc}")
    if isinstance(exc, anthropic.APIConnectionError):
        # Includes APITimeoutError.
        return ProviderTransportError(f"anthropic: {exc}")
    if isinstance(exc, anthropic.InternalServerError):
        return ProviderTransportError(f"anthropic: {exc}")
    if isinstance(exc, anthropic.APIStatusError):
        return ProviderRequestError(f"anthropic: {exc}")
    return ProviderError(f"anthropic: {exc}")


def to_tool(action: ActionDeclaration) -> dict[str, Any]:
    return {
        "name": action.name,
        "description": action.description,
        "input_schema": action.parameters,
    }


class AnthropicProvider(ProviderGateway):
    """Claude via the async Anthropic SDK.

    Usage::

        provider = AnthropicProvider(api_key="...", model="claude-haiku-4-5-20251001")
        text = await provider.generate("You are terse.", "Say hi")
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = _DEFAULT_MODEL,
        client: AsyncAnthropic | None = None,
    ) -> None:
        if not api_key and client is None:
            raise ProviderAuthError("ANTHROPIC_API_KEY is not set")
        # SDK-level retries are disabled; RequestScheduler owns retry policy.
        self._client = client or AsyncAnthropic(api_key=api_key, max_retries=0)
        self._model = model

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        response = await self._create(system_prompt, user_prompt, options or GenerationOptions())
        text = _collect_text(response.content)
        if not text:
            raise ProviderResponseError(
                f"anthropic returned no text (stop_reason={response.stop_reason!r})"
            )
        return text

    async def generate_with_actions(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None,
        actions: Sequence[ActionDeclaration],
    ) -> ProviderResponse:
        tools = [to_tool(a) for a in actions]
        response = await self._create(
            system_prompt, user_prompt, options or GenerationOptions(), tools=tools or None
        )
        calls = [
            ActionCall(name=block.name, arguments=dict(block.input or {}))  # type: ignore[arg-type]
            for block in response.content
            if isinstance(block, ToolUseBlock)
        ]
        text = _collect_text(response.content)
        if not calls and not text:
            raise ProviderResponseError(
                f"anthropic returned neither text nor tool calls "
                f"(stop_reason={response.stop_reason!r})"
            )
        logger.debug("anthropic: %d tool call(s), %d chars of text", len(calls), len(text))
        return ProviderResponse(text=text, action_calls=calls)

    async def _create(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
        tools: list[dict[str, Any]] | None = None,
    ) -> Any:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if tools:
            kwargs["tools"] = tools
        try:
            return await self._client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            raise translate_error(exc) from exc


def _collect_text(content: Sequence[Any]) -> str:
    return "".join(block.text for block in content if isinstance(block, TextBlock)).strip()
