"""Runtime configuration: environment variables (optionally from .env) to typed settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when a required setting is missing for the requested operation."""


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; defaulting to %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; defaulting to %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── Groups ─────────────────────────────────────────────────────────────────────


@dataclass
class MailboxSettings:
    """IMAP account the assistant reads from."""

    host: str = ""
    port: int = 993
    use_ssl: bool = True
    user: str = ""
    password: str = ""
    folder: str = "INBOX"
    poll_interval: int = 60
    search_window_hours: int = 24

    @classmethod
    def from_env(cls) -> MailboxSettings:
        return cls(
            host=os.environ.get("IMAP_HOST", ""),
            port=_env_int("IMAP_PORT", 993),
            use_ssl=_env_bool("IMAP_USE_SSL", True),
            user=os.environ.get("MAIL_USER", ""),
            password=os.environ.get("MAIL_PASSWORD", ""),
            folder=os.environ.get("MAIL_FOLDER", "INBOX"),
            poll_interval=_env_int("POLL_INTERVAL_SECONDS", 60),
            search_window_hours=_env_int("SEARCH_WINDOW_HOURS", 24),
        )


@dataclass
class SmtpSettings:
    """Outbound relay; shares credentials with the mailbox account."""

    host: str = ""
    port: int = 465
    use_ssl: bool = True
    from_name: str = "Mail Assistant"

    @classmethod
    def from_env(cls) -> SmtpSettings:
        return cls(
            host=os.environ.get("SMTP_HOST", ""),
            port=_env_int("SMTP_PORT", 465),
            use_ssl=_env_bool("SMTP_USE_SSL", True),
            from_name=os.environ.get("MAIL_FROM_NAME", "Mail Assistant"),
        )


@dataclass
class AISettings:
    """Provider selection, credentials and request-scheduling limits."""

    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-haiku-4-5-20251001"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    deepseek_api_key: str = ""
    deepseek_model: str = "deepseek-chat"
    max_concurrency: int = 2
    timeout_seconds: float = 60.0
    action_timeout_seconds: float = 90.0
    max_attempts: int = 3

    @classmethod
    def from_env(cls) -> AISettings:
        return cls(
            provider=os.environ.get("AI_PROVIDER", "anthropic").strip().lower(),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            anthropic_model=os.environ.get("ANTHROPIC_MODEL", "claude-haiku-4-5-20251001"),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL") or None,
            deepseek_api_key=os.environ.get("DEEPSEEK_API_KEY", ""),
            deepseek_model=os.environ.get("DEEPSEEK_MODEL", "deepseek-chat"),
            max_concurrency=_env_int("AI_MAX_CONCURRENCY", 2),
            timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", 60.0),
            action_timeout_seconds=_env_float("AI_ACTION_TIMEOUT_SECONDS", 90.0),
            max_attempts=_env_int("AI_MAX_ATTEMPTS", 3),
        )


@dataclass
class ContextSettings:
    """Where the per-user context log lives and when it gets compressed."""

    file: Path = field(default_factory=lambda: Path("data/context.json"))
    compression_threshold: int = 20_000
    keep_recent: int = 5
    debounce_seconds: float = 3.0
    maintenance_minutes: int = 60

    @classmethod
    def from_env(cls) -> ContextSettings:
        return cls(
            file=Path(os.environ.get("CONTEXT_FILE", "data/context.json")),
            compression_threshold=_env_int("CONTEXT_COMPRESSION_THRESHOLD", 20_000),
            keep_recent=_env_int("CONTEXT_KEEP_RECENT", 5),
            debounce_seconds=_env_float("CONTEXT_DEBOUNCE_SECONDS", 3.0),
            maintenance_minutes=_env_int("CONTEXT_MAINTENANCE_MINUTES", 60),
        )


# ── Root ───────────────────────────────────────────────────────────────────────


@dataclass
class Settings:
    """All settings for one running assistant."""

    mailbox: MailboxSettings = field(default_factory=MailboxSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    ai: AISettings = field(default_factory=AISettings)
    context: ContextSettings = field(default_factory=ContextSettings)
    admin_email: str = ""
    admin_name: str = "Administrator"
    max_violations: int = 3

    @classmethod
    def from_env(cls) -> Settings:
        """Build Settings from environment variables. Call load_dotenv() first."""
        return cls(
            mailbox=MailboxSettings.from_env(),
            smtp=SmtpSettings.from_env(),
            ai=AISettings.from_env(),
            context=ContextSettings.from_env(),
            admin_email=os.environ.get("ADMIN_EMAIL", "").strip(),
            admin_name=os.environ.get("ADMIN_NAME", "Administrator"),
            max_violations=_env_int("SECURITY_MAX_VIOLATIONS", 3),
        )

    def require_mailbox(self) -> None:
        """Raise ConfigError unless IMAP credentials are present."""
        missing = [
            name
            for name, value in (
                ("IMAP_HOST", self.mailbox.host),
                ("MAIL_USER", self.mailbox.user),
                ("MAIL_PASSWORD", self.mailbox.password),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing mailbox settings: {', '.join(missing)}")
