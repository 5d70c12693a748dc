"""Tests for MailIngestor. The mailbox client and the processor are fully mocked."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from mail_assistant.agent.dedup import DedupWindow
from mail_assistant.agent.ingestor import MailIngestor, MessageProcessor, is_command_subject
from mail_assistant.config import MailboxSettings
from mail_assistant.directory.users import InMemoryUserDirectory
from mail_assistant.mail.imap_client import MailboxError
from mail_assistant.mail.parser import parse_message
from mail_assistant.mail.types import IntentKind

from tests.conftest import ADMIN_EMAIL, ASSISTANT_EMAIL, USER_EMAIL, make_message


# ── Helpers ────────────────────────────────────────────────────────────────────


def raw_email(message_id: str, sender: str = USER_EMAIL, subject: str = "Re: today") -> bytes:
    return (
        f"From: {sender}\r\nTo: {ASSISTANT_EMAIL}\r\nSubject: {subject}\r\n"
        f"Message-ID: {message_id}\r\nContent-Type: text/plain; charset=utf-8\r\n\r\nbody"
    ).encode()


def make_client(messages: dict[str, bytes]) -> MagicMock:
    """Mock MailboxClient serving ``messages`` keyed by UID on every search."""
    client = MagicMock()
    client.search_unseen = AsyncMock(return_value=list(messages))
    client.fetch = AsyncMock(side_effect=lambda uid: messages[uid])
    client.mark_seen = AsyncMock()
    return client


def make_processor() -> MagicMock:
    p = MagicMock()
    p.handle = AsyncMock()
    return p


def make_ingestor(
    directory: InMemoryUserDirectory, processor: MagicMock | None = None, **kwargs: object
) -> tuple[MailIngestor, MagicMock]:
    proc = processor or make_processor()
    settings = MailboxSettings(host="imap.example.com", user=ASSISTANT_EMAIL, password="p")
    ingestor = MailIngestor(settings, directory, proc, poll_interval=60, **kwargs)  # type: ignore[arg-type]
    return ingestor, proc


def handled_ids(processor: MagicMock) -> list[str]:
    return [c.args[0].message_id for c in processor.handle.await_args_list]


# ── Protocol / helpers ─────────────────────────────────────────────────────────


class TestMessageProcessorProtocol:
    def test_custom_processor_satisfies_protocol(self) -> None:
        class Router:
            async def handle(self, message: object) -> None:
                pass

        assert isinstance(Router(), MessageProcessor)


class TestIsCommandSubject:
    def test_command(self) -> None:
        assert is_command_subject("/adduser a@x.com")
        assert is_command_subject("  /help")

    def test_not_command(self) -> None:
        assert not is_command_subject("/")
        assert not is_command_subject("Re: /help")
        assert not is_command_subject("hello")


# ── Classification ─────────────────────────────────────────────────────────────


class TestClassify:
    def test_admin_command(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        msg = ingestor.classify(make_message(sender_address=ADMIN_EMAIL, subject="/listusers"))
        assert msg.intent_kind == IntentKind.ADMIN_COMMAND
        assert msg.user_id == directory.get_by_email(ADMIN_EMAIL).id  # type: ignore[union-attr]

    def test_admin_plain_subject_is_general(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        msg = ingestor.classify(make_message(sender_address=ADMIN_EMAIL, subject="Re: today"))
        assert msg.intent_kind == IntentKind.GENERAL

    def test_non_admin_command_is_general(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        msg = ingestor.classify(make_message(subject="/adduser x@y.com"))
        assert msg.intent_kind == IntentKind.GENERAL
        assert msg.user_id == directory.get_by_email(USER_EMAIL).id  # type: ignore[union-attr]

    def test_unknown_sender_has_no_user(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        msg = ingestor.classify(make_message(sender_address="stranger@example.net"))
        assert msg.user_id is None
        assert msg.intent_kind == IntentKind.GENERAL


# ── MailIngestor._poll ─────────────────────────────────────────────────────────


class TestPoll:
    async def test_new_messages_are_dispatched_and_marked_seen(
        self, directory: InMemoryUserDirectory
    ) -> None:
        ingestor, processor = make_ingestor(directory)
        client = make_client({"1": raw_email("<a@x>"), "2": raw_email("<b@x>")})

        assert await ingestor._poll(client) == 2

        assert handled_ids(processor) == ["<a@x>", "<b@x>"]
        assert [c.args[0] for c in client.mark_seen.await_args_list] == ["1", "2"]
        assert client.search_unseen.await_args.args[1] == ASSISTANT_EMAIL

    async def test_same_message_id_dispatched_once(self, directory: InMemoryUserDirectory) -> None:
        ingestor, processor = make_ingestor(directory)
        client = make_client({"1": raw_email("<a@x>"), "2": raw_email("<a@x>")})

        await ingestor._poll(client)
        await ingestor._poll(client)

        assert handled_ids(processor) == ["<a@x>"]

    async def test_seeded_dedup_window_skips_known_ids(self, directory: InMemoryUserDirectory) -> None:
        window = DedupWindow()
        window.add("<old@x>")
        ingestor, processor = make_ingestor(directory, dedup=window)
        client = make_client({"1": raw_email("<old@x>"), "2": raw_email("<new@x>")})

        await ingestor._poll(client)

        assert handled_ids(processor) == ["<new@x>"]
        assert client.mark_seen.await_count == 2

    async def test_own_messages_dropped(self, directory: InMemoryUserDirectory) -> None:
        ingestor, processor = make_ingestor(directory)
        client = make_client({"1": raw_email("<self@x>", sender=ASSISTANT_EMAIL.upper())})

        assert await ingestor._poll(client) == 0
        processor.handle.assert_not_awaited()
        client.mark_seen.assert_awaited_once_with("1")

    async def test_unparseable_uid_skipped_on_later_polls(self, directory: InMemoryUserDirectory) -> None:
        ingestor, processor = make_ingestor(directory)
        client = make_client({"1": b"", "2": raw_email("<ok@x>")})

        await ingestor._poll(client)
        await ingestor._poll(client)

        assert handled_ids(processor) == ["<ok@x>"]
        assert [c.args[0] for c in client.fetch.await_args_list].count("1") == 1

    async def test_broken_header_does_not_block_later_messages(
        self, directory: InMemoryUserDirectory
    ) -> None:
        ingestor, processor = make_ingestor(directory)
        bad = b"From: a@example.com\r\nMessage-ID: <[>\r\nSubject: hi\r\n\r\nbody"
        client = make_client({"1": bad, "2": raw_email("<ok@x>")})
        real_parse = parse_message

        def parse(raw: bytes, uid: str | None = None) -> object:
            if uid == "1":
                raise IndexError("list index out of range")
            return real_parse(raw, uid=uid)

        with patch("mail_assistant.agent.ingestor.parse_message", side_effect=parse):
            assert await ingestor._poll(client) == 1
            await ingestor._poll(client)

        assert handled_ids(processor) == ["<ok@x>"]
        assert "1" in ingestor._bad_uids
        assert [c.args[0] for c in client.fetch.await_args_list].count("1") == 1

    async def test_raw_broken_header_never_escapes_poll(
        self, directory: InMemoryUserDirectory
    ) -> None:
        ingestor, processor = make_ingestor(directory)
        bad = b"From: a@example.com\r\nMessage-ID: <[>\r\nSubject: hi\r\n\r\nbody"
        client = make_client({"1": bad, "2": raw_email("<ok@x>")})

        await ingestor._poll(client)

        assert "<ok@x>" in handled_ids(processor)

    async def test_processor_failure_still_marks_seen(self, directory: InMemoryUserDirectory) -> None:
        processor = make_processor()
        processor.handle = AsyncMock(side_effect=RuntimeError("boom"))
        ingestor, _ = make_ingestor(directory, processor)
        client = make_client({"1": raw_email("<bad@x>")})

        assert await ingestor._poll(client) == 1  # must not raise
        client.mark_seen.assert_awaited_once_with("1")
        assert "<bad@x>" in ingestor.dedup

    async def test_mark_seen_failure_is_logged_not_raised(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        client = make_client({"1": raw_email("<a@x>")})
        client.mark_seen = AsyncMock(side_effect=MailboxError("store failed"))

        assert await ingestor._poll(client) == 1

    async def test_empty_mailbox(self, directory: InMemoryUserDirectory) -> None:
        ingestor, processor = make_ingestor(directory)
        assert await ingestor._poll(make_client({})) == 0
        processor.handle.assert_not_awaited()


# ── MailIngestor.stop / _interruptible_sleep ───────────────────────────────────


class TestStop:
    def test_stop_sets_event(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        ingestor.stop()
        assert ingestor._stop_event.is_set()

    async def test_sleep_returns_early_when_stopped(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        ingestor.stop()
        await asyncio.wait_for(ingestor._interruptible_sleep(60), timeout=1.0)


# ── MailIngestor.run (reconnection behaviour) ──────────────────────────────────


class FakeConnection:
    """Async context manager that fails the first ``failures`` times it is entered."""

    def __init__(self, ingestor: MailIngestor, failures: int) -> None:
        self.ingestor = ingestor
        self.failures = failures
        self.entered = 0

    def __call__(self) -> "FakeConnection":
        return self

    async def __aenter__(self) -> MagicMock:
        self.entered += 1
        if self.entered <= self.failures:
            raise MailboxError("connection refused")
        self.ingestor.stop()
        return make_client({})

    async def __aexit__(self, *_: object) -> bool:
        return False


class TestRun:
    async def test_run_exits_cleanly_after_stop(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        factory = FakeConnection(ingestor, failures=0)
        ingestor._client_factory = factory

        await asyncio.wait_for(ingestor.run(), timeout=2.0)

        assert factory.entered == 1
        assert ingestor.disconnected

    async def test_run_reconnects_after_mailbox_error(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        factory = FakeConnection(ingestor, failures=2)
        ingestor._client_factory = factory

        with patch("mail_assistant.agent.ingestor._MAX_BACKOFF_SECONDS", 0):
            await asyncio.wait_for(ingestor.run(), timeout=3.0)

        assert factory.entered == 3, "expected two failed attempts then a connection"

    async def test_start_returns_running_task(self, directory: InMemoryUserDirectory) -> None:
        ingestor, _ = make_ingestor(directory)
        ingestor._client_factory = FakeConnection(ingestor, failures=0)
        task = ingestor.start()
        await asyncio.wait_for(task, timeout=2.0)
        assert task.done()
