"""Mailbox polling loop: fetch unread mail, parse, deduplicate, classify, dispatch."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import replace
from typing import Protocol, runtime_checkable

from mail_assistant.agent.dedup import DedupWindow
from mail_assistant.config import MailboxSettings
from mail_assistant.directory.users import UserDirectory
from mail_assistant.mail.imap_client import MailboxClient, MailboxError, mailbox_client, since_window
from mail_assistant.mail.parser import MessageParseError, parse_message
from mail_assistant.mail.types import IncomingMessage, IntentKind

logger = logging.getLogger(__name__)

# Backoff: 2^attempt seconds, capped at 5 minutes
_MAX_BACKOFF_SECONDS = 300

#: Subject prefix that marks an administrator command.
COMMAND_PREFIX = "/"


# ── Processor interface ────────────────────────────────────────────────────────


@runtime_checkable
class MessageProcessor(Protocol):
    """Interface for whatever handles a classified message (the ReplyRouter)."""

    async def handle(self, message: IncomingMessage) -> object:
        """Process one message.

        Implementations must not raise; log and swallow errors internally
        so the ingestion loop stays alive.
        """
        ...


#: Opens a fresh mailbox connection; called once per (re)connection.
MailboxFactory = Callable[[], AbstractAsyncContextManager[MailboxClient]]


def is_command_subject(subject: str) -> bool:
    """True for ``/x...``: the prefix followed by at least one character."""
    text = subject.strip()
    return text.startswith(COMMAND_PREFIX) and len(text) > len(COMMAND_PREFIX)


# ── Ingestor ───────────────────────────────────────────────────────────────────


class MailIngestor:
    """Polls the shared mailbox and feeds each new message to a processor.

    Reconnects automatically on mailbox failures using exponential backoff so
    the assistant can run unattended across transient network problems.
    Message ids already dispatched are remembered in a bounded DedupWindow,
    which survives reconnects.

    Usage::

        ingestor = MailIngestor(settings.mailbox, directory, router)
        ingestor.start()
        ...
        ingestor.stop()
    """

    def __init__(
        self,
        settings: MailboxSettings,
        directory: UserDirectory,
        processor: MessageProcessor,
        *,
        dedup: DedupWindow | None = None,
        client_factory: MailboxFactory | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._settings = settings
        self._directory = directory
        self._processor = processor
        self._dedup = dedup or DedupWindow()
        self._client_factory = client_factory or (lambda: mailbox_client(settings))
        self._poll_interval = poll_interval if poll_interval is not None else settings.poll_interval
        self._own_address = settings.user.strip().lower()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._disconnected = True
        # UIDs that failed to parse; cleared on every new connection.
        self._bad_uids: set[str] = set()

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def dedup(self) -> DedupWindow:
        return self._dedup

    def start(self) -> asyncio.Task[None]:
        """Launch the polling loop as a background task."""
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def stop(self) -> None:
        """Signal the loop to finish the current poll and shut down cleanly."""
        logger.info("Shutdown requested; finishing current poll then stopping")
        self._stop_event.set()

    async def run(self) -> None:
        """Run the polling loop, reconnecting on mailbox failures with backoff.

        Returns only after stop() is called.
        """
        attempt = 0
        while not self._stop_event.is_set():
            try:
                async with self._client_factory() as client:
                    self._disconnected = False
                    self._bad_uids.clear()
                    attempt = 0  # reset backoff counter on successful connect
                    await self._loop(client)
            except MailboxError as exc:
                self._disconnected = True
                if self._stop_event.is_set():
                    break
                attempt += 1
                delay = min(2**attempt, _MAX_BACKOFF_SECONDS)
                logger.error(
                    "Mailbox error (attempt %d): %s; reconnecting in %ds",
                    attempt,
                    exc,
                    delay,
                )
                await self._interruptible_sleep(delay)
            except Exception as exc:  # noqa: BLE001
                self._disconnected = True
                if self._stop_event.is_set():
                    break
                attempt += 1
                delay = min(2**attempt, _MAX_BACKOFF_SECONDS)
                logger.error(
                    "Unexpected error (attempt %d): %s; reconnecting in %ds",
                    attempt,
                    exc,
                    delay,
                    exc_info=True,
                )
                await self._interruptible_sleep(delay)

        self._disconnected = True
        logger.info("Ingestor stopped")

    # ── Classification ─────────────────────────────────────────────────────────

    def classify(self, message: IncomingMessage) -> IncomingMessage:
        """Resolve the sender and assign an intent kind (returns a new instance).

        Only a sender that the directory knows as an administrator gets
        ADMIN_COMMAND; everything else is GENERAL. The router still screens
        command-looking subjects from everyone else.
        """
        user = self._directory.get_by_email(message.sender_address)
        kind = IntentKind.GENERAL
        if user is not None and user.is_admin and is_command_subject(message.subject):
            kind = IntentKind.ADMIN_COMMAND
        return replace(message, intent_kind=kind, user_id=user.id if user else None)

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _loop(self, client: MailboxClient) -> None:
        while not self._stop_event.is_set():
            await self._poll(client)
            await self._interruptible_sleep(self._poll_interval)

    async def _poll(self, client: MailboxClient) -> int:
        """Search, fetch and dispatch new messages. Returns how many were dispatched."""
        since = since_window(self._settings.search_window_hours)
        uids = await client.search_unseen(since, self._own_address or None)
        pending = [u for u in uids if u not in self._bad_uids]
        if not pending:
            logger.debug("Poll: 0 unread messages")
            return 0

        logger.info("Poll: %d unread message(s)", len(pending))
        dispatched = 0
        for uid in pending:
            if self._stop_event.is_set():
                break
            raw = await client.fetch(uid)
            try:
                message = parse_message(raw, uid=uid)
            except MessageParseError as exc:
                logger.error("Skipping unparseable message uid=%s: %s", uid, exc)
                self._bad_uids.add(uid)
                continue
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Unexpected error parsing uid=%s; skipping: %s", uid, exc, exc_info=True
                )
                self._bad_uids.add(uid)
                continue

            if self._own_address and message.sender_address == self._own_address:
                logger.debug("Dropping message %s sent by the assistant itself", message.message_id)
                await self._mark_seen(client, uid)
                continue

            if not self._dedup.add(message.message_id):
                logger.info("Skipping duplicate message %s", message.message_id)
                await self._mark_seen(client, uid)
                continue

            classified = self.classify(message)
            logger.info(
                "Dispatching message %s from %s intent=%s",
                classified.message_id,
                classified.sender_address,
                classified.intent_kind.value,
            )
            try:
                await self._processor.handle(classified)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Processor failed on message %s: %s",
                    classified.message_id,
                    exc,
                    exc_info=True,
                )
            dispatched += 1
            await self._mark_seen(client, uid)
        return dispatched

    async def _mark_seen(self, client: MailboxClient, uid: str) -> None:
        try:
            await client.mark_seen(uid)
        except MailboxError as exc:
            logger.error("Failed to mark uid %s as seen: %s", uid, exc)

    async def _interruptible_sleep(self, seconds: float) -> None:
        """Sleep for `seconds` but wake immediately if stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
