"""OpenAI Chat Completions backend; also serves OpenAI-compatible APIs such as DeepSeek."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

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

DEEPSEEK_BASE_URL = "https://api.deepseek.com"


def translate_error(exc: openai.APIError, label: str = "openai") -> ProviderError:
    """Map an OpenAI SDK exception onto the provider error hierarchy."""
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthError(f"{label}: {exc}")
    if isinstance(exc, openai.RateLimitError):
        return ProviderRateLimitError(f"{label}: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderTransportError(f"{label}: {exc}")
    if isinstance(exc, openai.InternalServerError):
        return ProviderTransportError(f"{label}: {exc}")
    if isinstance(exc, openai.APIStatusError):
        return ProviderRequestError(f"{label}: {exc}")
    return ProviderError(f"{label}: {exc}")


def to_tool(action: ActionDeclaration) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": action.name,
            "description": action.description,
            "parameters": action.parameters,
        },
    }


def parse_tool_calls(tool_calls: Sequence[Any] | None, label: str = "openai") -> list[ActionCall]:
    """Decode chat-completions tool calls; arguments arrive as a JSON string."""
    calls: list[ActionCall] = []
    for call in tool_calls or []:
        function = getattr(call, "function", None)
        if function is None:
            continue
        raw = function.arguments or "{}"
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProviderResponseError(
                f"{label} returned malformed arguments for {function.name!r}: {raw!r}"
            ) from exc
        if not isinstance(arguments, dict):
            raise ProviderResponseError(
                f"{label} returned non-object arguments for {function.name!r}"
            )
        calls.append(ActionCall(name=function.name, arguments=arguments))
    return calls


class OpenAIProvider(ProviderGateway):
    """Chat Completions with function tools.

    Pass ``base_url`` to talk to any OpenAI-compatible endpoint; ``label``
    sets the name reported in logs and health checks.

    Usage::

        provider = OpenAIProvider(api_key="...", model="gpt-4o-mini")
        deepseek = OpenAIProvider(api_key="...", model="deepseek-chat",
                                  base_url=DEEPSEEK_BASE_URL, label="deepseek")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        *,
        label: str = "openai",
        client: AsyncOpenAI | None = None,
    ) -> None:
        if not api_key and client is None:
            raise ProviderAuthError(f"{label} API key is not set")
        self.name = label
        # SDK-level retries are disabled; RequestScheduler owns retry policy.
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self._model = model

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        message = await self._complete(system_prompt, user_prompt, options or GenerationOptions())
        text = (message.content or "").strip()
        if not text:
            raise ProviderResponseError(f"{self.name} returned an empty response")
        return text

    async def generate_with_actions(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None,
        actions: Sequence[ActionDeclaration],
    ) -> ProviderResponse:
        tools = [to_tool(a) for a in actions]
        message = await self._complete(
            system_prompt, user_prompt, options or GenerationOptions(), tools=tools or None
        )
        calls = parse_tool_calls(message.tool_calls, self.name)
        text = (message.content or "").strip()
        if not calls and not text:
            raise ProviderResponseError(f"{self.name} returned neither text nor tool calls")
        logger.debug("%s: %d tool call(s), %d chars of text", self.name, len(calls), len(text))
        return ProviderResponse(text=text, action_calls=calls)

    async def _complete(
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
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APIError as exc:
            raise translate_error(exc, self.name) from exc
        if not response.choices:
            raise ProviderResponseError(f"{self.name} returned no choices")
        return response.choices[0].message
