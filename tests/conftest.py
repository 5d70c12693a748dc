"""Shared pytest fixtures."""

from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from mail_assistant.directory.users import InMemoryUserDirectory, User, UserRole, new_user
from mail_assistant.mail.types import IncomingMessage, IntentKind
from mail_assistant.storage.context_store import ContextStore

ADMIN_EMAIL = "admin@example.com"
USER_EMAIL = "alice@example.com"
ASSISTANT_EMAIL = "assistant@example.com"


def make_message(
    message_id: str = "<msg-1@example.com>",
    sender_address: str = USER_EMAIL,
    subject: str = "Re: today",
    body: str = "finished the deploy",
    *,
    uid: str | None = "1",
    intent_kind: IntentKind = IntentKind.GENERAL,
    user_id: str | None = None,
) -> IncomingMessage:
    return IncomingMessage(
        message_id=message_id,
        sender=f"Someone <{sender_address}>",
        sender_address=sender_address,
        subject=subject,
        body=body,
        received_at=datetime(2026, 10, 17, 9, 30),
        uid=uid,
        recipients=[ASSISTANT_EMAIL],
        intent_kind=intent_kind,
        user_id=user_id,
    )


@pytest.fixture
def admin() -> User:
    return new_user(ADMIN_EMAIL, "Admin", role=UserRole.ADMIN)


@pytest.fixture
def alice() -> User:
    return new_user(USER_EMAIL, "Alice")


@pytest.fixture
def directory(admin: User, alice: User) -> InMemoryUserDirectory:
    return InMemoryUserDirectory([admin, alice])


@pytest.fixture
def sender() -> MagicMock:
    """MailSender double; inspect sender.send.await_args_list."""
    s = MagicMock()
    s.send = AsyncMock()
    return s


@pytest.fixture
def summarizer() -> MagicMock:
    s = MagicMock()
    s.summarize_context = AsyncMock(return_value="compressed summary")
    return s


@pytest.fixture
def store(tmp_path: Path, summarizer: MagicMock) -> ContextStore:
    return ContextStore(
        tmp_path / "context.json",
        summarizer,
        compression_threshold=100,
        keep_recent=2,
        debounce_seconds=0.01,
    )
