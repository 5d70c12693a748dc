"""Select one ProviderGateway implementation from settings at startup."""

from __future__ import annotations

import logging

from mail_assistant.ai.providers.anthropic_provider import AnthropicProvider
from mail_assistant.ai.providers.base import ProviderGateway
from mail_assistant.ai.providers.mock_provider import MockProvider
from mail_assistant.ai.providers.openai_provider import DEEPSEEK_BASE_URL, OpenAIProvider
from mail_assistant.config import AISettings, ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("anthropic", "openai", "deepseek", "mock")


def create_provider(settings: AISettings) -> ProviderGateway:
    """Build the configured backend.

    Raises:
        ConfigError: unknown provider name, or its API key is missing.
    """
    name = settings.provider.strip().lower()
    if name == "anthropic":
        _require(settings.anthropic_api_key, "ANTHROPIC_API_KEY")
        provider: ProviderGateway = AnthropicProvider(
            settings.anthropic_api_key, model=settings.anthropic_model
        )
    elif name == "openai":
        _require(settings.openai_api_key, "OPENAI_API_KEY")
        provider = OpenAIProvider(
            settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
        )
    elif name == "deepseek":
        _require(settings.deepseek_api_key, "DEEPSEEK_API_KEY")
        provider = OpenAIProvider(
            settings.deepseek_api_key,
            model=settings.deepseek_model,
            base_url=DEEPSEEK_BASE_URL,
            label="deepseek",
        )
    elif name == "mock":
        provider = MockProvider()
    else:
        raise ConfigError(
            f"Unknown AI_PROVIDER {settings.provider!r}; expected one of {', '.join(SUPPORTED_PROVIDERS)}"
        )
    logger.info("AI provider: %s", provider.name)
    return provider


def _require(value: str, env_name: str) -> None:
    if not value:
        raise ConfigError(f"{env_name} is required for the selected AI provider")
