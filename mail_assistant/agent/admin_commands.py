"""Deterministic administrator slash commands (``/adduser``, ``/listusers``, ...)."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from mail_assistant.agent.reminder_skip import ReminderSkipSignal
from mail_assistant.agent.reports import ReportService, week_label
from mail_assistant.directory.users import User, UserDirectory, new_user
from mail_assistant.mail.sender import MailSender
from mail_assistant.storage.context_store import ContextStore

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

UPDATABLE_FIELDS = ("name", "morningTime", "eveningTime", "language", "timezone")
SUPPORTED_LANGUAGES = ("zh", "en")


_REMINDER_KINDS = {
    "morning": "morning",
    "晨间": "morning",
    "evening": "evening",
    "晚间": "evening",
    "all": "all",
    "全部": "all",
}


def _parse_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def normalize_time(value: str) -> str | None:
    """``9:05`` → ``09:05``; None if not a valid HH:MM."""
    match = _TIME_RE.match(value.strip())
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


@dataclass(frozen=True)
class _Command:
    name: str
    usage: str
    description: str
    run: Callable[..., Awaitable[str]]
    # Also receives the requesting administrator.
    with_requester: bool = False


class AdminCommandProcessor:
    """Parses ``/command arg...`` subjects and runs them against the directory.

    Every outcome, including bad usage and unknown commands, is returned as
    text for the administrator; ``execute`` never raises. Callers must have
    verified the sender through the SecurityGate first.

    Usage::

        processor = AdminCommandProcessor(directory, sender, store)
        text = await processor.execute("/adduser bob@example.com Bob", "")
    """

    def __init__(
        self,
        directory: UserDirectory,
        sender: MailSender,
        store: ContextStore,
        *,
        reports: ReportService | None = None,
        on_reminder_skip: Callable[[str, ReminderSkipSignal], None] | None = None,
    ) -> None:
        self._directory = directory
        self._sender = sender
        self._store = store
        self._reports = reports
        self._on_reminder_skip = on_reminder_skip
        self._commands: dict[str, _Command] = {}
        for cmd in (
            _Command("help", "/help [command]", "Show available commands", self._help),
            _Command(
                "adduser",
                "/adduser <email> <name> [morningTime] [eveningTime]",
                "Add a user and send a welcome email",
                self._add_user,
            ),
            _Command("listusers", "/listusers", "List all users", self._list_users),
            _Command("deleteuser", "/deleteuser <email>", "Delete a user", self._delete_user),
            _Command("enableuser", "/enableuser <email>", "Enable a user", self._enable_user),
            _Command("disableuser", "/disableuser <email>", "Disable a user", self._disable_user),
            _Command("rename", "/rename <email> <new name>", "Change a user's name", self._rename),
            _Command(
                "updateuser",
                "/updateuser <email> <field> <value>",
                f"Update one field ({', '.join(UPDATABLE_FIELDS)})",
                self._update_user,
            ),
            _Command("stats", "/stats", "User and context statistics", self._stats),
            _Command(
                "weeklyreport",
                "/weeklyreport [email] [weekOffset] | /weeklyreport <weekOffset>",
                "Mail a weekly report (no arguments: every active user; offset 0 = this week, -1 = last week)",
                self._weekly_report,
                with_requester=True,
            ),
            _Command(
                "suggestions",
                "/suggestions [email]",
                "Mail personalised work suggestions (no arguments: every active user)",
                self._suggestions,
            ),
            _Command(
                "cancelreminder",
                "/cancelreminder <morning|evening|all> [email]",
                "Skip today's reminder for a user (default: yourself)",
                self._cancel_reminder,
                with_requester=True,
            ),
            _Command(
                "pausereminder",
                "/pausereminder <email> [days]",
                "Pause a user's reminders (default 1 day)",
                self._pause_reminder,
            ),
            _Command(
                "resumereminder", "/resumereminder <email>", "Resume a user's reminders", self._resume_reminder
            ),
            _Command(
                "clearcontext", "/clearcontext <email>", "Delete a user's stored context", self._clear_context
            ),
        ):
            self._commands[cmd.name] = cmd

    def command_names(self) -> list[str]:
        return list(self._commands)

    async def execute(self, subject: str, body: str = "", requester: User | None = None) -> str:
        """Run the command in ``subject``.

        ``requester`` is the verified administrator; commands that default to
        "yourself" use it. ``body`` is accepted for future multi-line commands.
        """
        text = subject.strip()
        if text.startswith("/"):
            text = text[1:]
        parts = text.split()
        if not parts:
            return "Empty command. Send /help for the list of commands."
        name, args = parts[0].lower(), parts[1:]
        command = self._commands.get(name)
        if command is None:
            return f"Unknown command: {name}. Send /help for the list of commands."
        logger.info("Admin command %s args=%s", name, args)
        try:
            if command.with_requester:
                return await command.run(args, requester)
            return await command.run(args)
        except Exception as exc:  # noqa: BLE001
            logger.error("Admin command %s failed: %s", name, exc, exc_info=True)
            return f"Command {name} failed: {exc}"

    # ── Commands ───────────────────────────────────────────────────────────────

    async def _help(self, args: list[str]) -> str:
        if args:
            cmd = self._commands.get(args[0].lstrip("/").lower())
            if cmd is None:
                return f"Unknown command: {args[0]}"
            return f"/{cmd.name}: {cmd.description}\nUsage: {cmd.usage}"
        lines = [f"/{c.name}: {c.description}" for c in self._commands.values()]
        return "Available admin commands:\n\n" + "\n".join(lines) + "\n\nSend /help <command> for usage."

    async def _add_user(self, args: list[str]) -> str:
        usage = self._commands["adduser"].usage
        if len(args) < 2:
            return f"Usage: {usage}"
        email, name = args[0], args[1]
        if not _EMAIL_RE.match(email):
            return f"Invalid email address: {email}"
        if self._directory.get_by_email(email) is not None:
            return f"User {email} already exists"
        morning = evening = None
        if len(args) > 2:
            morning = normalize_time(args[2])
            if morning is None:
                return f"Invalid morning time {args[2]!r}; use HH:MM"
        if len(args) > 3:
            evening = normalize_time(args[3])
            if evening is None:
                return f"Invalid evening time {args[3]!r}; use HH:MM"

        user = self._directory.add(new_user(email, name, morning_time=morning, evening_time=evening))
        schedule = user.config.schedule
        welcome = await self._notify(
            user.email,
            "Welcome to the mail assistant",
            f"Hello {user.name},\n\n"
            "You have been added to the mail assistant. Reply to its emails to "
            "report your work or plans, or to ask about your settings.\n\n"
            f"Morning reminder: {schedule.morning_reminder_time}\n"
            f"Evening reminder: {schedule.evening_reminder_time}\n",
        )
        return (
            f"User added:\nEmail: {user.email}\nName: {user.name}\n"
            f"Morning reminder: {schedule.morning_reminder_time}\n"
            f"Evening reminder: {schedule.evening_reminder_time}\n"
            f"Welcome email: {'sent' if welcome else 'FAILED'}"
        )

    async def _list_users(self, args: list[str]) -> str:
        users = self._directory.all()
        if not users:
            return "No users."
        blocks = [
            f"{u.name} <{u.email}> [{u.role.value}] {'enabled' if u.is_active else 'disabled'}\n"
            f"  morning {u.config.schedule.morning_reminder_time}, "
            f"evening {u.config.schedule.evening_reminder_time}, "
            f"created {u.created_at:%Y-%m-%d}"
            for u in users
        ]
        return f"Users ({len(users)}):\n\n" + "\n\n".join(blocks)

    async def _delete_user(self, args: list[str]) -> str:
        user, error = self._lookup(args, "deleteuser")
        if user is None:
            return error
        self._directory.delete(user.id)
        return f"User {user.email} ({user.name}) deleted"

    async def _enable_user(self, args: list[str]) -> str:
        return self._set_active(args, "enableuser", True)

    async def _disable_user(self, args: list[str]) -> str:
        return self._set_active(args, "disableuser", False)

    async def _rename(self, args: list[str]) -> str:
        user, error = self._lookup(args, "rename", min_args=2)
        if user is None:
            return error
        new_name = " ".join(args[1:]).strip()
        old_name = user.name
        self._directory.update(user.id, {"name": new_name})
        await self._notify(
            user.email,
            "Your name has been updated",
            f"Hello,\n\nYour name in the mail assistant changed from {old_name!r} to {new_name!r}.",
        )
        return f"User {user.email} renamed from {old_name!r} to {new_name!r}"

    async def _update_user(self, args: list[str]) -> str:
        user, error = self._lookup(args, "updateuser", min_args=3)
        if user is None:
            return error
        field_name, value = args[1], " ".join(args[2:]).strip()
        key = field_name.lower()

        if key == "name":
            self._directory.update(user.id, {"name": value})
        elif key in ("morningtime", "eveningtime"):
            time = normalize_time(value)
            if time is None:
                return f"Invalid time {value!r}; use HH:MM"
            slot = "morning_reminder_time" if key == "morningtime" else "evening_reminder_time"
            schedule = replace(user.config.schedule, **{slot: time})
            self._directory.update(user.id, {"config": replace(user.config, schedule=schedule)})
            value = time
        elif key == "language":
            if value not in SUPPORTED_LANGUAGES:
                return f"Language must be one of {', '.join(SUPPORTED_LANGUAGES)}"
            self._directory.update(user.id, {"config": replace(user.config, language=value)})
        elif key == "timezone":
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError):
                return f"Unknown timezone: {value}"
            schedule = replace(user.config.schedule, timezone=value)
            self._directory.update(user.id, {"config": replace(user.config, schedule=schedule)})
        else:
            return f"Unknown field: {field_name}. Supported fields: {', '.join(UPDATABLE_FIELDS)}"
        return f"User {user.email}: {field_name} updated to {value}"

    async def _stats(self, args: list[str]) -> str:
        users = self._directory.all()
        active = sum(1 for u in users if u.is_active)
        context = self._store.stats()
        entries = sum(s["entries"] for s in context.values())
        chars = sum(s["total_length"] for s in context.values())
        return (
            f"Users: {len(users)}\nActive: {active}\nDisabled: {len(users) - active}\n"
            f"Context entries: {entries} ({chars} characters, {len(context)} user(s))"
        )

    async def _weekly_report(self, args: list[str], requester: User | None) -> str:
        if self._reports is None:
            return "Reports are not available in this deployment"
        if not args:
            return await self._for_all_active("Weekly reports", self._reports.weekly_report)

        offset = _parse_int(args[0])
        if offset is not None:
            if requester is None:
                return f"Usage: {self._commands['weeklyreport'].usage}"
            user = requester
        else:
            user = self._directory.get_by_email(args[0])
            if user is None:
                return f"User {args[0]} does not exist"
            offset = _parse_int(args[1]) if len(args) > 1 else 0
            if offset is None:
                return "Week offset must be an integer (0 = this week, -1 = last week)"

        if await self._reports.weekly_report(user, offset) is None:
            return f"No records for {user.email} {week_label(offset)}; no report sent"
        return f"Weekly report for {user.email} ({week_label(offset)}) sent"

    async def _suggestions(self, args: list[str]) -> str:
        if self._reports is None:
            return "Reports are not available in this deployment"
        if not args:
            return await self._for_all_active("Suggestions", self._reports.suggestions)
        user, error = self._lookup(args, "suggestions")
        if user is None:
            return error
        if await self._reports.suggestions(user) is None:
            return f"No recent records for {user.email}; no suggestions sent"
        return f"Suggestions for {user.email} sent"

    async def _cancel_reminder(self, args: list[str], requester: User | None) -> str:
        usage = f"Usage: {self._commands['cancelreminder'].usage}"
        if not args:
            return usage
        kind = _REMINDER_KINDS.get(args[0].lower())
        if kind is None:
            return f"Unknown reminder type: {args[0]}. Use morning, evening or all"
        if len(args) > 1:
            user = self._directory.get_by_email(args[1])
            if user is None:
                return f"User {args[1]} does not exist"
        elif requester is not None:
            user = requester
        else:
            return usage
        if self._on_reminder_skip is None:
            return "No reminder scheduler is connected; nothing was cancelled"

        self._on_reminder_skip(
            user.id,
            ReminderSkipSignal(
                skip_morning=kind in ("morning", "all"),
                skip_evening=kind in ("evening", "all"),
                reason="cancelled by administrator",
            ),
        )
        label = "reminders" if kind == "all" else f"{kind} reminder"
        return f"Today's {label} for {user.email} cancelled"

    async def _pause_reminder(self, args: list[str]) -> str:
        user, error = self._lookup(args, "pausereminder")
        if user is None:
            return error
        days = 1
        if len(args) > 1:
            try:
                days = int(args[1])
            except ValueError:
                days = 0
            if days <= 0:
                return "Pause days must be a positive integer"
        resume = datetime.now() + timedelta(days=days)
        config = replace(user.config, reminder_paused=True, resume_date=resume.isoformat(timespec="seconds"))
        self._directory.update(user.id, {"config": config})
        await self._notify(
            user.email,
            "Reminders paused",
            f"Hello {user.name},\n\nYour reminders are paused for {days} day(s) "
            f"and will resume on {resume:%Y-%m-%d}.",
        )
        return f"Reminders for {user.email} paused for {days} day(s); resume on {resume:%Y-%m-%d}"

    async def _resume_reminder(self, args: list[str]) -> str:
        user, error = self._lookup(args, "resumereminder")
        if user is None:
            return error
        if not user.config.reminder_paused:
            return f"Reminders for {user.email} are not paused"
        config = replace(user.config, reminder_paused=False, resume_date=None)
        self._directory.update(user.id, {"config": config})
        await self._notify(
            user.email, "Reminders resumed", f"Hello {user.name},\n\nYour reminders are active again."
        )
        return f"Reminders for {user.email} resumed"

    async def _clear_context(self, args: list[str]) -> str:
        user, error = self._lookup(args, "clearcontext")
        if user is None:
            return error
        if await self._store.purge(user.id):
            return f"Context for {user.email} cleared"
        return f"No stored context for {user.email}"

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _lookup(self, args: list[str], command: str, min_args: int = 1) -> tuple[User | None, str]:
        if len(args) < min_args:
            return None, f"Usage: {self._commands[command].usage}"
        user = self._directory.get_by_email(args[0])
        if user is None:
            return None, f"User {args[0]} does not exist"
        return user, ""

    def _set_active(self, args: list[str], command: str, active: bool) -> str:
        user, error = self._lookup(args, command)
        if user is None:
            return error
        state = "enabled" if active else "disabled"
        if user.is_active == active:
            return f"User {user.email} is already {state}"
        self._directory.update(user.id, {"is_active": active})
        return f"User {user.email} ({user.name}) {state}"

    async def _for_all_active(
        self, label: str, generate: Callable[[User], Awaitable[str | None]]
    ) -> str:
        """Run one report per active user; a failure for one user does not stop the rest."""
        sent = skipped = 0
        failed: list[str] = []
        for user in self._directory.all():
            if not user.is_active:
                continue
            try:
                if await generate(user) is None:
                    skipped += 1
                else:
                    sent += 1
            except Exception as exc:  # noqa: BLE001
                logger.error("%s failed for %s: %s", label, user.email, exc, exc_info=True)
                failed.append(user.email)
        text = f"{label}: {sent} sent, {skipped} without records"
        if failed:
            text += f", {len(failed)} failed ({', '.join(failed)})"
        return text

    async def _notify(self, address: str, subject: str, body: str) -> bool:
        """Best-effort mail to a user; failures are logged."""
        try:
            await self._sender.send(subject, body, address)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to send %r to %s: %s", subject, address, exc)
            return False
        return True
