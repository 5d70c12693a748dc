"""IMAP mailbox client that wraps imaplib behind a typed async API."""

from __future__ import annotations

import asyncio
import imaplib
import logging
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

from mail_assistant.config import MailboxSettings

logger = logging.getLogger(__name__)

# IMAP dates are locale-independent English month abbreviations.
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_CONNECT_RETRIES = 3
_RETRY_DELAY_SECONDS = 3
_CONNECT_TIMEOUT_SECONDS = 10


class MailboxError(Exception):
    """Raised when an IMAP command fails or the connection drops."""


def imap_date(value: datetime) -> str:
    """Format a datetime as an IMAP SEARCH date, e.g. ``17-Oct-2026``."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class MailboxClient:
    """Thin async wrapper around one authenticated imaplib connection.

    imaplib is blocking and not thread-safe, so every command runs in a worker
    thread and commands are serialised with a lock. Use the `mailbox_client()`
    context manager to construct and tear down correctly.
    """

    def __init__(self, conn: imaplib.IMAP4, user: str) -> None:
        self._conn = conn
        self._user = user
        self._lock = asyncio.Lock()

    @property
    def user(self) -> str:
        return self._user

    # ── Public API ─────────────────────────────────────────────────────────────

    async def search_unseen(
        self, since: datetime, to_address: str | None = None
    ) -> list[str]:
        """Return UIDs of unread messages received on or after ``since``.

        IMAP SINCE has day granularity, so callers get at most one extra day.
        """
        criteria = ["UNSEEN", "SINCE", imap_date(since)]
        if to_address:
            criteria += ["TO", _quote(to_address)]
        data = await self._uid("SEARCH", None, *criteria)
        return self._parse_search(data)

    async def fetch(self, uid: str) -> bytes:
        """Return the full RFC 822 bytes of one message without setting \\Seen."""
        data = await self._uid("FETCH", uid, "(BODY.PEEK[])")
        for item in data:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                return item[1]
        raise MailboxError(f"FETCH returned no body for uid {uid}")

    async def mark_seen(self, uid: str) -> None:
        await self._uid("STORE", uid, "+FLAGS", "(\\Seen)")
        logger.debug("Marked uid %s as seen", uid)

    async def close(self) -> None:
        """Log out, ignoring errors from an already-dead socket."""
        try:
            await self._run(self._conn.logout)
        except MailboxError as exc:
            logger.debug("Ignoring error during IMAP logout: %s", exc)

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _uid(self, command: str, *args: Any) -> list[Any]:
        # imaplib treats a None first argument as "no message set" (SEARCH).
        call_args = [a for a in args if a is not None]
        typ, data = await self._run(self._conn.uid, command, *call_args)
        if typ != "OK":
            raise MailboxError(f"IMAP UID {command} failed: {typ} {data!r}")
        return list(data or [])

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            try:
                return await asyncio.to_thread(func, *args)
            except (imaplib.IMAP4.error, imaplib.IMAP4.abort, OSError) as exc:
                raise MailboxError(f"IMAP command failed: {exc}") from exc

    @staticmethod
    def _parse_search(data: list[Any]) -> list[str]:
        uids: list[str] = []
        for chunk in data:
            if isinstance(chunk, bytes):
                chunk = chunk.decode("ascii", errors="ignore")
            if isinstance(chunk, str):
                uids.extend(re.findall(r"\d+", chunk))
        return uids


def _open_connection(settings: MailboxSettings) -> imaplib.IMAP4:
    """Blocking: connect, log in and select the folder."""
    if settings.use_ssl:
        conn: imaplib.IMAP4 = imaplib.IMAP4_SSL(
            settings.host, settings.port, timeout=_CONNECT_TIMEOUT_SECONDS
        )
    else:
        conn = imaplib.IMAP4(settings.host, settings.port, timeout=_CONNECT_TIMEOUT_SECONDS)
    conn.login(settings.user, settings.password)
    typ, data = conn.select(settings.folder)
    if typ != "OK":
        conn.logout()
        raise MailboxError(f"Could not select folder {settings.folder!r}: {data!r}")
    return conn


@asynccontextmanager
async def mailbox_client(settings: MailboxSettings) -> AsyncIterator[MailboxClient]:
    """Async context manager that yields a connected, ready-to-use MailboxClient.

    Retries the initial connect up to ``_CONNECT_RETRIES`` times, then raises
    MailboxError so the caller's reconnect loop can back off.

    Example::

        async with mailbox_client(settings.mailbox) as client:
            uids = await client.search_unseen(since)
    """
    last_err: BaseException | None = None
    conn: imaplib.IMAP4 | None = None
    for attempt in range(1, _CONNECT_RETRIES + 1):
        try:
            conn = await asyncio.to_thread(_open_connection, settings)
            break
        except (imaplib.IMAP4.error, OSError, MailboxError) as exc:
            last_err = exc
            if attempt < _CONNECT_RETRIES:
                logger.warning(
                    "IMAP connection to %s failed (attempt %d/%d): %s; retrying in %ds",
                    settings.host,
                    attempt,
                    _CONNECT_RETRIES,
                    exc,
                    _RETRY_DELAY_SECONDS,
                )
                await asyncio.sleep(_RETRY_DELAY_SECONDS)

    if conn is None:
        raise MailboxError(
            f"Failed to connect to {settings.host} after {_CONNECT_RETRIES} attempts"
        ) from last_err

    client = MailboxClient(conn, settings.user)
    logger.info("IMAP connected (%s@%s/%s)", settings.user, settings.host, settings.folder)
    try:
        yield client
    finally:
        await client.close()
        logger.info("IMAP connection closed")


def since_window(hours: int, now: datetime | None = None) -> datetime:
    """Start of the trailing search window."""
    return (now or datetime.now()) - timedelta(hours=hours)
