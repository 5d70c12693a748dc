"""Weekly reports and personalised suggestions mailed to users on request."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from mail_assistant.ai.orchestrator import AIOrchestrator
from mail_assistant.ai.prompts import (
    SUGGESTIONS_SYSTEM_PROMPT,
    WEEKLY_REPORT_SYSTEM_PROMPT,
    build_suggestions_prompt,
    build_weekly_report_prompt,
)
from mail_assistant.ai.providers.base import GenerationOptions
from mail_assistant.directory.users import User
from mail_assistant.mail.sender import MailSender
from mail_assistant.storage.context_store import ContextStore
from mail_assistant.storage.models import ContextEntry, ContextType

logger = logging.getLogger(__name__)

REPORT_OPTIONS = GenerationOptions(max_tokens=1500, temperature=0.7)
SUGGESTION_OPTIONS = GenerationOptions(max_tokens=800, temperature=0.7)

#: Days of history the suggestions are based on.
SUGGESTION_DAYS = 30

_REPORT_TYPES = (ContextType.WORK_SUMMARY, ContextType.CONVERSATION)


def week_bounds(week_offset: int = 0, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Monday 00:00 of the chosen week and the Monday after it.

    ``week_offset`` 0 is the current week, -1 the previous one.
    """
    today = (now or datetime.now()).replace(hour=0, minute=0, second=0, microsecond=0)
    start = today - timedelta(days=today.weekday()) + timedelta(weeks=week_offset)
    return start, start + timedelta(days=7)


def week_label(week_offset: int) -> str:
    if week_offset == 0:
        return "this week"
    if week_offset == -1:
        return "last week"
    if week_offset < 0:
        return f"{-week_offset} weeks ago"
    return f"{week_offset} week(s) ahead"


class ReportService:
    """Builds reports from a user's context log and mails them to the user.

    A failed AI call for a weekly report falls back to a plain listing of the
    week's records so the user still gets something; suggestions have no
    useful fallback and the error propagates to the caller.
    """

    def __init__(
        self,
        store: ContextStore,
        orchestrator: AIOrchestrator,
        sender: MailSender,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._sender = sender

    async def weekly_report(
        self, user: User, week_offset: int = 0, now: datetime | None = None
    ) -> str | None:
        """Generate and send one user's report. None if the week has no records."""
        start, end = week_bounds(week_offset, now)
        entries = [
            e
            for e in self._store.entries(user.id)
            if start <= e.timestamp < end and e.type in _REPORT_TYPES
        ]
        if not entries:
            logger.info("No records for %s in week starting %s", user.email, f"{start:%Y-%m-%d}")
            return None

        last_day = end - timedelta(days=1)
        try:
            text = await self._orchestrator.generate(
                WEEKLY_REPORT_SYSTEM_PROMPT,
                build_weekly_report_prompt(user, start, last_day, entries),
                REPORT_OPTIONS,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("AI weekly report failed for %s; sending basic report: %s", user.email, exc)
            text = ""
        if not text.strip():
            text = _basic_report(entries)

        subject = f"Weekly report {start:%Y-%m-%d} to {last_day:%Y-%m-%d}"
        await self._sender.send(subject, f"Hello {user.name},\n\n{text.strip()}\n", user.email)
        logger.info("Weekly report sent to %s (%d records)", user.email, len(entries))
        return text.strip()

    async def suggestions(self, user: User, now: datetime | None = None) -> str | None:
        """Generate and send personalised suggestions. None if there is no recent history."""
        cutoff = (now or datetime.now()) - timedelta(days=SUGGESTION_DAYS)
        entries = [
            e
            for e in self._store.entries(user.id)
            if e.timestamp >= cutoff and e.type in _REPORT_TYPES
        ]
        if not entries:
            logger.info("No recent records for %s; no suggestions", user.email)
            return None

        text = await self._orchestrator.generate(
            SUGGESTIONS_SYSTEM_PROMPT,
            build_suggestions_prompt(user, entries, SUGGESTION_DAYS),
            SUGGESTION_OPTIONS,
        )
        if not text.strip():
            raise ValueError("the model returned no suggestions")
        subject = f"Personal work suggestions {(now or datetime.now()):%Y-%m-%d}"
        await self._sender.send(subject, f"Hello {user.name},\n\n{text.strip()}\n", user.email)
        logger.info("Suggestions sent to %s", user.email)
        return text.strip()


def _basic_report(entries: list[ContextEntry]) -> str:
    reports = [e for e in entries if e.type == ContextType.WORK_SUMMARY]
    active_days = len({e.timestamp.date() for e in reports})
    lines = [
        f"Records this week: {len(entries)}",
        f"Work reports: {len(reports)}",
        f"Active days: {active_days}/7",
        "",
    ]
    lines.extend(f"- {e.timestamp:%a %Y-%m-%d}: {e.content}" for e in entries)
    return "\n".join(lines)
