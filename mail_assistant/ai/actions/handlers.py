"""Built-in action handlers: user settings, context history, reports and system status."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import TYPE_CHECKING

from mail_assistant.ai.actions.registry import ActionHandler, ActionRegistry
from mail_assistant.ai.actions.types import ActionParameter, ActionRequest, ActionResult
from mail_assistant.storage.models import ContextType

if TYPE_CHECKING:
    from mail_assistant.directory.users import User, UserDirectory
    from mail_assistant.storage.context_store import ContextStore

logger = logging.getLogger(__name__)

MAX_ACTIVITY_DAYS = 30
MAX_SEARCH_DAYS = 90
_MAX_LISTED = 20

_CONTEXT_TYPES = tuple(t.value for t in ContextType)


def _clamp_days(value: object, default: int, maximum: int) -> int:
    days = int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else default
    return max(1, min(days, maximum))


def _valid_time(hour: object, minute: object) -> bool:
    return (
        isinstance(hour, (int, float))
        and isinstance(minute, (int, float))
        and float(hour).is_integer()
        and float(minute).is_integer()
        and 0 <= hour <= 23
        and 0 <= minute <= 59
    )


class _UserScopedHandler(ActionHandler):
    """Resolves the caller; every subclass acts on the requesting user only."""

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    def _caller(self, request: ActionRequest) -> User | None:
        if not request.user_id:
            return None
        return self._directory.get_by_id(request.user_id)


# ── Settings ───────────────────────────────────────────────────────────────────


class UpdateReminderTimesHandler(_UserScopedHandler):
    name = "update_reminder_times"
    description = "Change the user's morning and/or evening reminder time."
    parameters = (
        ActionParameter("morning_hour", "integer", "Morning reminder hour (0-23)"),
        ActionParameter("morning_minute", "integer", "Morning reminder minute (0-59)"),
        ActionParameter("evening_hour", "integer", "Evening reminder hour (0-23)"),
        ActionParameter("evening_minute", "integer", "Evening reminder minute (0-59)"),
    )

    async def handle(self, request: ActionRequest) -> ActionResult:
        user = self._caller(request)
        if user is None:
            return ActionResult.fail("A known user is required to change reminder times.")

        args = request.arguments
        updates: dict[str, str] = {}
        for slot in ("morning", "evening"):
            hour, minute = args.get(f"{slot}_hour"), args.get(f"{slot}_minute")
            if hour is None and minute is None:
                continue
            if hour is None or minute is None:
                return ActionResult.fail(f"The {slot} time needs both an hour and a minute.")
            if not _valid_time(hour, minute):
                return ActionResult.fail(
                    f"Invalid {slot} time {hour}:{minute}; hours are 0-23 and minutes 0-59."
                )
            updates[f"{slot}_reminder_time"] = f"{int(hour):02d}:{int(minute):02d}"

        if not updates:
            return ActionResult.fail("No reminder time was given.")

        schedule = replace(user.config.schedule, **updates)
        updated = self._directory.update(
            user.id, {"config": replace(user.config, schedule=schedule)}
        )
        if updated is None:
            return ActionResult.fail("User not found.")
        parts = [f"{slot.split('_')[0]} reminder set to {value}" for slot, value in updates.items()]
        return ActionResult.ok(
            "Reminder times updated: " + ", ".join(parts) + ".",
            {
                "morning_time": schedule.morning_reminder_time,
                "evening_time": schedule.evening_reminder_time,
            },
        )


class GetUserConfigHandler(_UserScopedHandler):
    name = "get_user_config"
    description = "Report the user's current reminder times, timezone, language and pause state."

    async def handle(self, request: ActionRequest) -> ActionResult:
        user = self._caller(request)
        if user is None:
            return ActionResult.fail("A known user is required to read settings.")
        cfg = user.config
        lines = [
            f"Name: {user.name}",
            f"Email: {user.email}",
            f"Morning reminder: {cfg.schedule.morning_reminder_time}",
            f"Evening reminder: {cfg.schedule.evening_reminder_time}",
            f"Timezone: {cfg.schedule.timezone}",
            f"Language: {cfg.language}",
            f"Reminders paused: {'yes' if cfg.reminder_paused else 'no'}",
        ]
        if cfg.reminder_paused and cfg.resume_date:
            lines.append(f"Resumes: {cfg.resume_date}")
        return ActionResult.ok(
            "\n".join(lines),
            {
                "name": user.name,
                "email": user.email,
                "morning_time": cfg.schedule.morning_reminder_time,
                "evening_time": cfg.schedule.evening_reminder_time,
                "timezone": cfg.schedule.timezone,
                "language": cfg.language,
                "reminder_paused": cfg.reminder_paused,
            },
        )


# ── Context history ────────────────────────────────────────────────────────────


class GetRecentActivitiesHandler(ActionHandler):
    name = "get_recent_activities"
    description = "List the user's recent conversations, work summaries and schedule notes."
    parameters = (
        ActionParameter("days", "integer", f"How many days back to look (1-{MAX_ACTIVITY_DAYS}, default 7)"),
        ActionParameter("type", "string", "Only this kind of entry", enum=_CONTEXT_TYPES),
    )

    def __init__(self, store: ContextStore) -> None:
        self._store = store

    async def handle(self, request: ActionRequest) -> ActionResult:
        if not request.user_id:
            return ActionResult.fail("A known user is required to read history.")
        days = _clamp_days(request.arguments.get("days"), 7, MAX_ACTIVITY_DAYS)
        raw_type = request.arguments.get("type")
        entry_type = ContextType(raw_type) if raw_type else None
        entries = self._store.recent(request.user_id, days, entry_type)
        if not entries:
            return ActionResult.ok(f"No activity in the last {days} day(s).", {"count": 0})
        shown = entries[-_MAX_LISTED:]
        return ActionResult.ok(
            f"{len(entries)} entr{'y' if len(entries) == 1 else 'ies'} in the last {days} day(s):\n"
            + "\n".join(e.render() for e in shown),
            {"count": len(entries), "days": days},
        )


class SearchConversationsHandler(ActionHandler):
    name = "search_conversations"
    description = "Search the user's history for a keyword."
    parameters = (
        ActionParameter("keyword", "string", "Text to look for (case-insensitive)", required=True),
        ActionParameter("days", "integer", f"How many days back to search (1-{MAX_SEARCH_DAYS}, default 30)"),
    )

    def __init__(self, store: ContextStore) -> None:
        self._store = store

    async def handle(self, request: ActionRequest) -> ActionResult:
        if not request.user_id:
            return ActionResult.fail("A known user is required to search history.")
        keyword = str(request.arguments["keyword"]).strip()
        if not keyword:
            return ActionResult.fail("The search keyword is empty.")
        days = _clamp_days(request.arguments.get("days"), 30, MAX_SEARCH_DAYS)
        needle = keyword.lower()
        matches = [e for e in self._store.recent(request.user_id, days) if needle in e.content.lower()]
        if not matches:
            return ActionResult.ok(
                f"Nothing mentioning {keyword!r} in the last {days} day(s).", {"count": 0}
            )
        return ActionResult.ok(
            f"{len(matches)} match(es) for {keyword!r}:\n"
            + "\n".join(e.render() for e in matches[-_MAX_LISTED:]),
            {"count": len(matches), "days": days},
        )


# ── Recording ──────────────────────────────────────────────────────────────────


class ProcessWorkReportHandler(ActionHandler):
    name = "process_work_report"
    description = "Record the user's report of what they worked on today."
    parameters = (
        ActionParameter("summary", "string", "Concise summary of the work done", required=True),
        ActionParameter("achievements", "array", "Notable accomplishments"),
        ActionParameter("challenges", "array", "Problems met and how they were handled"),
        ActionParameter("tomorrow_plan", "string", "What the user intends to do next"),
    )

    def __init__(self, store: ContextStore) -> None:
        self._store = store

    async def handle(self, request: ActionRequest) -> ActionResult:
        if not request.user_id:
            return ActionResult.fail("A known user is required to record a work report.")
        args = request.arguments
        lines = [str(args["summary"]).strip()]
        for key, label in (("achievements", "Achievements"), ("challenges", "Challenges")):
            items = [str(i).strip() for i in args.get(key) or [] if str(i).strip()]
            if items:
                lines.append(f"{label}: " + "; ".join(items))
        if args.get("tomorrow_plan"):
            lines.append(f"Next: {str(args['tomorrow_plan']).strip()}")
        entry = self._store.append(
            request.user_id,
            ContextType.WORK_SUMMARY,
            "\n".join(lines),
            {"source": "work_report", "date": date.today().isoformat()},
        )
        return ActionResult.ok("Work report recorded.", {"entry_id": entry.id})


class CreateScheduleReminderHandler(ActionHandler):
    name = "create_schedule_reminder"
    description = "Record the user's plans or schedule items for an upcoming day."
    parameters = (
        ActionParameter("schedule", "string", "The plans, one item per line", required=True),
        ActionParameter("date", "string", "Day the plans are for, YYYY-MM-DD (default today)"),
    )

    def __init__(self, store: ContextStore) -> None:
        self._store = store

    async def handle(self, request: ActionRequest) -> ActionResult:
        if not request.user_id:
            return ActionResult.fail("A known user is required to record a schedule.")
        raw_date = request.arguments.get("date")
        try:
            day = date.fromisoformat(raw_date) if raw_date else date.today()
        except ValueError:
            return ActionResult.fail(f"Invalid date {raw_date!r}; use YYYY-MM-DD.")
        content = str(request.arguments["schedule"]).strip()
        if not content:
            return ActionResult.fail("The schedule is empty.")
        entry = self._store.append(
            request.user_id,
            ContextType.SCHEDULE,
            content,
            {"source": "schedule", "date": day.isoformat()},
        )
        return ActionResult.ok(
            f"Schedule for {day.isoformat()} recorded.", {"entry_id": entry.id, "date": day.isoformat()}
        )


# ── Admin ──────────────────────────────────────────────────────────────────────


class GetSystemStatusHandler(_UserScopedHandler):
    name = "get_system_status"
    description = "Administrators only: user counts and context storage statistics."

    def __init__(self, directory: UserDirectory, store: ContextStore) -> None:
        super().__init__(directory)
        self._store = store

    async def handle(self, request: ActionRequest) -> ActionResult:
        caller = self._caller(request)
        if caller is None or not caller.is_admin or not caller.is_active:
            logger.warning("get_system_status denied for user %s", request.user_id)
            return ActionResult.fail("Only administrators can view system status.")
        users = self._directory.all()
        active = sum(1 for u in users if u.is_active)
        stats = self._store.stats()
        entries = sum(s["entries"] for s in stats.values())
        chars = sum(s["total_length"] for s in stats.values())
        return ActionResult.ok(
            f"Users: {len(users)} ({active} active, {len(users) - active} inactive)\n"
            f"Context: {entries} entries across {len(stats)} user(s), {chars} characters",
            {
                "users": len(users),
                "active_users": active,
                "context_entries": entries,
                "context_chars": chars,
            },
        )


def build_default_registry(directory: UserDirectory, store: ContextStore) -> ActionRegistry:
    """Registry with every built-in handler."""
    registry = ActionRegistry()
    for handler in (
        UpdateReminderTimesHandler(directory),
        GetUserConfigHandler(directory),
        GetRecentActivitiesHandler(store),
        SearchConversationsHandler(store),
        ProcessWorkReportHandler(store),
        CreateScheduleReminderHandler(store),
        GetSystemStatusHandler(directory, store),
    ):
        registry.register(handler)
    return registry
