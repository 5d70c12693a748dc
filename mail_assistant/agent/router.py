"""Top-level per-message pipeline: security, admin commands, AI replies and delivery."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from mail_assistant.agent.admin_commands import AdminCommandProcessor
from mail_assistant.agent.ingestor import COMMAND_PREFIX
from mail_assistant.agent.reminder_skip import NO_SKIP, ReminderSkipSignal, evaluate_reminder_skip
from mail_assistant.ai.orchestrator import AIOrchestrator
from mail_assistant.ai.prompts import (
    ADMIN_PHRASING_SYSTEM_PROMPT,
    BODY_CHAR_LIMIT,
    build_admin_phrasing_prompt,
    build_intent_system_prompt,
    build_reply_prompt,
)
from mail_assistant.ai.providers.base import GenerationOptions
from mail_assistant.directory.users import User, UserDirectory
from mail_assistant.mail.parser import strip_reply_prefixes
from mail_assistant.mail.sender import MailSender
from mail_assistant.mail.types import IncomingMessage, IntentKind
from mail_assistant.security.gate import SecurityGate
from mail_assistant.storage.context_store import ContextStore
from mail_assistant.storage.models import ContextType

logger = logging.getLogger(__name__)

#: Days of history given to the model with each general message.
CONTEXT_DAYS = 7

REPLY_OPTIONS = GenerationOptions(max_tokens=1024, temperature=0.7)
PHRASING_OPTIONS = GenerationOptions(max_tokens=600, temperature=0.3)

UNAUTHORIZED_WARNING = (
    "You are not authorized to run administrator commands. No action was "
    "taken and this attempt has been recorded (attempt {count}/{limit}). "
    "{consequence}"
)


def unauthorized_warning(count: int, limit: int) -> str:
    remaining = max(limit - count, 0)
    if remaining == 0:
        consequence = "Your account has been disabled; contact the administrator."
    else:
        consequence = f"Your account will be disabled after {remaining} more attempt(s)."
    return UNAUTHORIZED_WARNING.format(count=min(count, limit), limit=limit, consequence=consequence)


class ReplySendError(Exception):
    """Raised when a reply could not be handed to the mail transport."""


class Outcome(str, Enum):
    REPLIED = "replied"
    DENIED = "denied"
    FORWARDED = "forwarded"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessedReply:
    """What happened to one incoming message."""

    message_id: str
    intent_kind: IntentKind
    user_id: str | None
    original_content: str
    generated_content: str
    outcome: Outcome
    reminder_skip: ReminderSkipSignal = NO_SKIP
    error: str | None = None


def reply_subject(subject: str) -> str:
    """``Re: `` plus the subject with any existing reply prefixes removed."""
    return f"Re: {strip_reply_prefixes(subject)}"


class ReplyRouter:
    """Handles one classified message end to end.

    Implements the MessageProcessor protocol from mail_assistant.agent.ingestor.
    ``handle`` never raises; failures come back as a FAILED ProcessedReply.

    Usage::

        router = ReplyRouter(directory, gate, orchestrator, store, sender, commands)
        result = await router.handle(message)
    """

    def __init__(
        self,
        directory: UserDirectory,
        gate: SecurityGate,
        orchestrator: AIOrchestrator,
        store: ContextStore,
        sender: MailSender,
        commands: AdminCommandProcessor,
        *,
        on_reminder_skip: Callable[[str, ReminderSkipSignal], None] | None = None,
        context_days: int = CONTEXT_DAYS,
    ) -> None:
        self._directory = directory
        self._gate = gate
        self._orchestrator = orchestrator
        self._store = store
        self._sender = sender
        self._commands = commands
        self._on_reminder_skip = on_reminder_skip
        self._context_days = context_days

    async def handle(self, message: IncomingMessage) -> ProcessedReply:
        try:
            if message.intent_kind == IntentKind.ADMIN_COMMAND or message.subject.strip().startswith(
                COMMAND_PREFIX
            ):
                result = await self._handle_admin(message)
            else:
                result = await self._handle_general(message)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Failed to handle message %s from %s: %s",
                message.message_id,
                message.sender_address,
                exc,
                exc_info=True,
            )
            return self._result(message, "", Outcome.FAILED, error=str(exc))
        logger.info(
            "message=%s outcome=%s user=%s", message.message_id, result.outcome.value, result.user_id
        )
        return result

    async def send_reply(self, message: IncomingMessage, content: str) -> None:
        """Reply to the sender of ``message``.

        Raises:
            ReplySendError: the transport rejected the message.
        """
        subject = reply_subject(message.subject)
        try:
            await self._sender.send(subject, content, message.sender_address)
        except Exception as exc:  # noqa: BLE001
            raise ReplySendError(
                f"Could not send reply to {message.sender_address} for {message.message_id}: {exc}"
            ) from exc

    # ── Admin branch ───────────────────────────────────────────────────────────

    async def _handle_admin(self, message: IncomingMessage) -> ProcessedReply:
        if not self._gate.is_authorized_admin(message.sender_address):
            return await self._deny(message)

        requester = self._directory.get_by_email(message.sender_address)
        raw = await self._commands.execute(message.subject, message.body, requester)
        try:
            text = await self._orchestrator.generate(
                ADMIN_PHRASING_SYSTEM_PROMPT,
                build_admin_phrasing_prompt(message.subject.strip(), raw),
                PHRASING_OPTIONS,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not phrase admin result; sending raw text: %s", exc)
            text = raw
        await self.send_reply(message, text)
        return self._result(message, text, Outcome.REPLIED)

    async def _deny(self, message: IncomingMessage) -> ProcessedReply:
        address = message.sender_address
        should_disable = self._gate.record_unauthorized_access(address, message.subject)
        disabled = False
        if should_disable:
            user = self._directory.get_by_email(address)
            if user is not None and user.is_active:
                self._directory.update(user.id, {"is_active": False})
                disabled = True
                logger.warning("Disabled user %s after repeated unauthorized commands", address)

        await self._notify_admin(
            f"Security alert: unauthorized command from {address}",
            f"Sender: {message.sender}\n"
            f"Subject: {message.subject}\n"
            f"Attempts: {self._gate.violation_count(address)}/{self._gate.max_violations}\n"
            f"Account disabled: {'yes' if disabled else 'no'}\n",
        )
        warning = unauthorized_warning(self._gate.violation_count(address), self._gate.max_violations)
        await self.send_reply(message, warning)
        return self._result(message, warning, Outcome.DENIED)

    # ── General branch ─────────────────────────────────────────────────────────

    async def _handle_general(self, message: IncomingMessage) -> ProcessedReply:
        user = self._resolve(message)
        if user is None:
            await self._forward_unknown(message)
            return self._result(message, "", Outcome.FORWARDED)
        if not user.is_active:
            logger.info("Ignoring message %s from inactive user %s", message.message_id, user.email)
            return self._result(message, "", Outcome.IGNORED, user_id=user.id)

        self._store.append(
            user.id,
            ContextType.CONVERSATION,
            f"{message.subject}\n{message.body[:BODY_CHAR_LIMIT]}".strip(),
            {"messageId": message.message_id, "subject": message.subject},
        )
        # The newest entry is the message itself, which the prompt already carries.
        history = self._store.recent(user.id, self._context_days)[:-1]
        answer = await self._orchestrator.answer_detailed(
            build_intent_system_prompt(user),
            build_reply_prompt(message, history),
            REPLY_OPTIONS,
            user_id=user.id,
        )
        await self.send_reply(message, answer.text)

        signal = evaluate_reminder_skip(message, answer.action_names)
        if signal.any and self._on_reminder_skip is not None:
            try:
                self._on_reminder_skip(user.id, signal)
            except Exception as exc:  # noqa: BLE001
                logger.error("Reminder-skip consumer failed for %s: %s", user.id, exc)

        await self._store.compress_if_needed(user.id)
        return self._result(message, answer.text, Outcome.REPLIED, user_id=user.id, signal=signal)

    def _resolve(self, message: IncomingMessage) -> User | None:
        if message.user_id:
            user = self._directory.get_by_id(message.user_id)
            if user is not None:
                return user
        return self._directory.get_by_email(message.sender_address)

    async def _forward_unknown(self, message: IncomingMessage) -> None:
        logger.info("Forwarding message %s from unknown sender %s", message.message_id, message.sender_address)
        await self._sender.send(
            f"Fwd: {message.subject}",
            f"Message from an unregistered sender.\n\n"
            f"From: {message.sender}\n"
            f"Date: {message.received_at:%Y-%m-%d %H:%M}\n"
            f"Subject: {message.subject}\n\n"
            f"{message.body}",
        )

    async def _notify_admin(self, subject: str, body: str) -> None:
        try:
            await self._sender.send(subject, body)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to notify administrator: %s", exc)

    @staticmethod
    def _result(
        message: IncomingMessage,
        generated: str,
        outcome: Outcome,
        *,
        user_id: str | None = None,
        signal: ReminderSkipSignal = NO_SKIP,
        error: str | None = None,
    ) -> ProcessedReply:
        return ProcessedReply(
            message_id=message.message_id,
            intent_kind=message.intent_kind,
            user_id=user_id or message.user_id,
            original_content=message.body,
            generated_content=generated,
            outcome=outcome,
            reminder_skip=signal,
            error=error,
        )
