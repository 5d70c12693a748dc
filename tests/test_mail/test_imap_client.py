"""Tests for MailboxClient with the imaplib connection mocked."""

import imaplib
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from mail_assistant.config import MailboxSettings
from mail_assistant.mail.imap_client import (
    MailboxClient,
    MailboxError,
    imap_date,
    mailbox_client,
    since_window,
)


def make_conn() -> MagicMock:
    conn = MagicMock()
    conn.uid.return_value = ("OK", [b""])
    conn.logout.return_value = ("BYE", [b""])
    return conn


class TestImapDate:
    def test_format(self) -> None:
        assert imap_date(datetime(2026, 10, 7, 23, 59)) == "07-Oct-2026"

    def test_since_window(self) -> None:
        now = datetime(2026, 10, 18, 12, 0)
        assert since_window(24, now) == datetime(2026, 10, 17, 12, 0)


class TestSearchUnseen:
    async def test_builds_criteria_and_parses_uids(self) -> None:
        conn = make_conn()
        conn.uid.return_value = ("OK", [b"3 5 8"])
        client = MailboxClient(conn, "assistant@example.com")

        uids = await client.search_unseen(datetime(2026, 10, 17), "assistant@example.com")

        assert uids == ["3", "5", "8"]
        conn.uid.assert_called_once_with(
            "SEARCH", "UNSEEN", "SINCE", "17-Oct-2026", "TO", '"assistant@example.com"'
        )

    async def test_empty_result(self) -> None:
        client = MailboxClient(make_conn(), "u")
        assert await client.search_unseen(datetime(2026, 10, 17)) == []

    async def test_non_ok_status_raises(self) -> None:
        conn = make_conn()
        conn.uid.return_value = ("NO", [b"denied"])
        with pytest.raises(MailboxError):
            await MailboxClient(conn, "u").search_unseen(datetime(2026, 10, 17))

    async def test_socket_error_becomes_mailbox_error(self) -> None:
        conn = make_conn()
        conn.uid.side_effect = imaplib.IMAP4.abort("connection reset")
        with pytest.raises(MailboxError):
            await MailboxClient(conn, "u").search_unseen(datetime(2026, 10, 17))


class TestFetchAndFlags:
    async def test_fetch_returns_message_bytes(self) -> None:
        conn = make_conn()
        conn.uid.return_value = ("OK", [(b"5 (UID 5 BODY[] {12}", b"raw message!"), b")"])
        data = await MailboxClient(conn, "u").fetch("5")
        assert data == b"raw message!"
        conn.uid.assert_called_once_with("FETCH", "5", "(BODY.PEEK[])")

    async def test_fetch_without_body_raises(self) -> None:
        conn = make_conn()
        conn.uid.return_value = ("OK", [None])
        with pytest.raises(MailboxError):
            await MailboxClient(conn, "u").fetch("5")

    async def test_mark_seen(self) -> None:
        conn = make_conn()
        await MailboxClient(conn, "u").mark_seen("9")
        conn.uid.assert_called_once_with("STORE", "9", "+FLAGS", "(\\Seen)")

    async def test_close_ignores_errors(self) -> None:
        conn = make_conn()
        conn.logout.side_effect = OSError("already closed")
        await MailboxClient(conn, "u").close()  # should not raise


class TestMailboxClientContextManager:
    async def test_connects_and_logs_out(self) -> None:
        conn = make_conn()
        settings = MailboxSettings(host="imap.example.com", user="u", password="p")
        with patch("mail_assistant.mail.imap_client._open_connection", return_value=conn):
            async with mailbox_client(settings) as client:
                assert client.user == "u"
        conn.logout.assert_called_once()

    async def test_gives_up_after_retries(self) -> None:
        settings = MailboxSettings(host="imap.example.com", user="u", password="p")
        with (
            patch(
                "mail_assistant.mail.imap_client._open_connection",
                side_effect=OSError("refused"),
            ) as opener,
            patch("mail_assistant.mail.imap_client.asyncio.sleep") as sleep,
        ):
            sleep.return_value = None
            with pytest.raises(MailboxError):
                async with mailbox_client(settings):
                    pass
        assert opener.call_count == 3
