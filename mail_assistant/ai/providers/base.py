"""Provider-neutral LLM gateway interface, response types and error hierarchy."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mail_assistant.ai.prompts import COMPRESSION_SYSTEM_PROMPT, build_compression_prompt

if TYPE_CHECKING:
    from mail_assistant.storage.models import ContextEntry

logger = logging.getLogger(__name__)


# ── Errors ─────────────────────────────────────────────────────────────────────


class ProviderError(Exception):
    """Base class for failures talking to an LLM backend."""


class ProviderAuthError(ProviderError):
    """Credentials rejected or missing. Never retried."""


class ProviderRateLimitError(ProviderError):
    """The backend throttled the request. Not retried locally."""


class ProviderRequestError(ProviderError):
    """The backend rejected the request as invalid. Never retried."""


class ProviderTransportError(ProviderError):
    """Network failure, timeout or 5xx from the backend. Safe to retry."""


class ProviderResponseError(ProviderError):
    """The backend answered but the answer was empty or unusable."""


# ── Request / response types ───────────────────────────────────────────────────


@dataclass(frozen=True)
class GenerationOptions:
    max_tokens: int = 1024
    temperature: float = 0.7


#: Low temperature, larger budget; used for context compression.
COMPRESSION_OPTIONS = GenerationOptions(max_tokens=800, temperature=0.3)


@dataclass(frozen=True)
class ActionDeclaration:
    """Provider-neutral description of one callable action.

    ``parameters`` is a JSON Schema object (``{"type": "object", ...}``).
    """

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class ActionCall:
    """One action the model asked to run."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderResponse:
    """Either text, requested action calls, or both."""

    text: str = ""
    action_calls: list[ActionCall] = field(default_factory=list)

    @property
    def has_actions(self) -> bool:
        return bool(self.action_calls)


# ── Gateway ────────────────────────────────────────────────────────────────────


class ProviderGateway(ABC):
    """Uniform interface over interchangeable LLM backends.

    Implementations translate their SDK's exceptions into the ProviderError
    hierarchy so callers can tell retryable failures from permanent ones.
    """

    name: str = "base"

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Return plain text. Raises ProviderResponseError on an empty answer."""

    @abstractmethod
    async def generate_with_actions(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None,
        actions: Sequence[ActionDeclaration],
    ) -> ProviderResponse:
        """Return text and/or the actions the model wants to call."""

    async def health_check(self) -> bool:
        """Send a tiny prompt; True if any text comes back."""
        try:
            text = await self.generate(
                "You are a health check.",
                "Reply with OK.",
                GenerationOptions(max_tokens=10, temperature=0.0),
            )
        except ProviderError as exc:
            logger.warning("%s health check failed: %s", self.name, exc)
            return False
        return bool(text.strip())

    async def summarize_context(self, entries: Sequence[ContextEntry]) -> str:
        """Condense context entries into one summary text."""
        summary = await self.generate(
            COMPRESSION_SYSTEM_PROMPT,
            build_compression_prompt(entries),
            COMPRESSION_OPTIONS,
        )
        logger.info("%s: compressed %d context entries", self.name, len(entries))
        return summary
