"""Deterministic offline backend for development and tests."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mail_assistant.ai.prompts import COMPRESSION_SYSTEM_PROMPT
from mail_assistant.ai.providers.base import (
    ActionCall,
    ActionDeclaration,
    GenerationOptions,
    ProviderGateway,
    ProviderResponse,
)

logger = logging.getLogger(__name__)

MOCK_REPLY = "Thanks for your email. This is an automated reply from the mock assistant."
MOCK_SUMMARY = "Summary of earlier context: routine work updates and schedule notes."

# Keyword → (action name, arguments). First match wins.
_ACTION_RULES: list[tuple[tuple[str, ...], str, dict[str, object]]] = [
    (
        ("reminder time", "修改时间", "提醒时间", "更新提醒"),
        "update_reminder_times",
        {"morning_hour": 9, "morning_minute": 0, "evening_hour": 18, "evening_minute": 0},
    ),
    (("my settings", "my config", "配置", "设置"), "get_user_config", {}),
]


class MockProvider(ProviderGateway):
    """Returns canned text and keyword-driven action calls; never touches the network.

    Every prompt pair it receives is recorded in ``requests`` for inspection.
    """

    name = "mock"

    def __init__(self) -> None:
        self.requests: list[tuple[str, str]] = []

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        self.requests.append((system_prompt, user_prompt))
        if system_prompt == COMPRESSION_SYSTEM_PROMPT:
            return MOCK_SUMMARY
        return MOCK_REPLY

    async def generate_with_actions(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None,
        actions: Sequence[ActionDeclaration],
    ) -> ProviderResponse:
        self.requests.append((system_prompt, user_prompt))
        available = {a.name for a in actions}
        lowered = user_prompt.lower()
        for keywords, name, arguments in _ACTION_RULES:
            if name in available and any(k in lowered for k in keywords):
                logger.debug("mock: requesting action %s", name)
                return ProviderResponse(action_calls=[ActionCall(name=name, arguments=dict(arguments))])
        return ProviderResponse(text=MOCK_REPLY)
