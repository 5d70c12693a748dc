"""System prompts and prompt builders for replies, admin phrasing, compression and reports."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mail_assistant.directory.users import User
    from mail_assistant.mail.types import IncomingMessage
    from mail_assistant.storage.models import ContextEntry

# Maximum characters of mail body sent to the model; applied after quote
# stripping so it bounds the user's own text.
BODY_CHAR_LIMIT = 4_000

# Maximum characters of rendered context history included in one prompt.
CONTEXT_CHAR_LIMIT = 8_000

_LANGUAGE_NAMES = {"zh": "Chinese", "en": "English"}


# ── Context rendering ──────────────────────────────────────────────────────────


def format_context(entries: Sequence[ContextEntry], limit: int = CONTEXT_CHAR_LIMIT) -> str:
    """Render entries one per line, oldest first, keeping the newest that fit in ``limit``."""
    lines: list[str] = []
    used = 0
    for entry in reversed(entries):
        line = entry.render()
        if used + len(line) > limit and lines:
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(reversed(lines)) if lines else "(no previous context)"


# ── General replies ────────────────────────────────────────────────────────────


_INTENT_SYSTEM_PROMPT = """\
You are a personal work assistant that talks to users only by email.
Today is {today}. The user is {name} <{email}>; their timezone is {timezone}.
Their morning reminder is at {morning} and their evening reminder at {evening}{paused}.

Work out what the user wants from their email and either answer directly or
call the available functions:
- a description of what they did today is a work report: call process_work_report;
- plans or schedule items for today or tomorrow: call create_schedule_reminder;
- requests to change reminder times: call update_reminder_times;
- questions about their settings or history: call get_user_config,
  get_recent_activities or search_conversations.

Only call a function when the email clearly asks for it. Reply in {language},
in plain text suitable for an email body, briefly and warmly. Never invent
data you were not given.
"""


def build_intent_system_prompt(user: User, now: datetime | None = None) -> str:
    schedule = user.config.schedule
    paused = ""
    if user.config.reminder_paused:
        paused = " (reminders are currently paused"
        if user.config.resume_date:
            paused += f" until {user.config.resume_date}"
        paused += ")"
    return _INTENT_SYSTEM_PROMPT.format(
        today=(now or datetime.now()).strftime("%Y-%m-%d %A"),
        name=user.name,
        email=user.email,
        timezone=schedule.timezone,
        morning=schedule.morning_reminder_time,
        evening=schedule.evening_reminder_time,
        paused=paused,
        language=_LANGUAGE_NAMES.get(user.config.language, user.config.language),
    )


def build_reply_prompt(message: IncomingMessage, context: Sequence[ContextEntry]) -> str:
    """User prompt for the general branch: recent history then the new email."""
    body = message.body[:BODY_CHAR_LIMIT]
    return (
        f"Recent history:\n{format_context(context)}\n\n"
        f"New email\nSubject: {message.subject}\n\n{body}"
    )


# ── Admin results ──────────────────────────────────────────────────────────────

ADMIN_PHRASING_SYSTEM_PROMPT = (
    "You are the assistant's operator console. Rewrite command results for the "
    "administrator as a short, clear email. Keep every fact, number, email "
    "address and id exactly as given; do not add information."
)


def build_admin_phrasing_prompt(command: str, result: str) -> str:
    return f"Command: {command}\n\nResult:\n{result}"


# ── Compression ────────────────────────────────────────────────────────────────

COMPRESSION_SYSTEM_PROMPT = (
    "You compress a user's interaction history while keeping what matters for "
    "future conversations."
)

_COMPRESSION_PROMPT = """\
Compress the history below into a concise summary for future reference.

Focus on:
1. recurring work patterns and habits
2. repeated challenges and how they were solved
3. notable achievements and milestones
4. schedule commitments that may still be relevant
5. progress towards goals

Write in the same language as the history and cut the total length by at
least half.

History:
{history}
"""


def build_compression_prompt(entries: Sequence[ContextEntry]) -> str:
    history = "\n".join(entry.render() for entry in entries)
    return _COMPRESSION_PROMPT.format(history=history)


# ── Reports ────────────────────────────────────────────────────────────────────

WEEKLY_REPORT_SYSTEM_PROMPT = (
    "You are a work-efficiency analyst. You turn a week of work records into a "
    "useful, honest weekly report."
)

_WEEKLY_REPORT_PROMPT = """\
Write a weekly report for {name} from the work records below.

Period: {start} to {end}
Records: {count} ({reports} work reports, active on {active_days} of 7 days)

Records:
{records}

Include these sections:
1. overview of the week
2. main achievements
3. challenges met
4. suggestions for improvement
5. goals for next week

Reply in {language}, in plain text suitable for an email body. Only use facts
from the records.
"""

SUGGESTIONS_SYSTEM_PROMPT = (
    "You are a work-efficiency coach who gives specific, practical advice based "
    "on how a person actually works."
)

_SUGGESTIONS_PROMPT = """\
Based on {name}'s records from the last {days} days, give two or three
personalised suggestions. For each one give a title, a one-line reason drawn
from the records and one concrete next step. Useful areas are productivity,
time management, skill development, wellbeing and workflow.

Records:
{records}

Reply in {language}, in plain text suitable for an email body.
"""


def build_weekly_report_prompt(
    user: User, start: datetime, end: datetime, entries: Sequence[ContextEntry]
) -> str:
    reports = [e for e in entries if e.type.value == "work_summary"]
    active_days = len({e.timestamp.date() for e in reports})
    return _WEEKLY_REPORT_PROMPT.format(
        name=user.name,
        start=f"{start:%Y-%m-%d}",
        end=f"{end:%Y-%m-%d}",
        count=len(entries),
        reports=len(reports),
        active_days=active_days,
        records=format_context(entries),
        language=_LANGUAGE_NAMES.get(user.config.language, user.config.language),
    )


def build_suggestions_prompt(user: User, entries: Sequence[ContextEntry], days: int) -> str:
    return _SUGGESTIONS_PROMPT.format(
        name=user.name,
        days=days,
        records=format_context(entries),
        language=_LANGUAGE_NAMES.get(user.config.language, user.config.language),
    )
