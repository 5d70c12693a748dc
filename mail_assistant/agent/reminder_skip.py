"""Best-effort "skip today's reminder" signal for the external reminder scheduler."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from mail_assistant.mail.types import IncomingMessage

WORK_REPORT_KEYWORDS = (
    "工作报告", "工作总结", "今天完成", "项目进展", "任务完成", "完成了", "解决了",
    "work report", "completed", "finished", "progress", "done today",
)
SCHEDULE_KEYWORDS = (
    "日程", "安排", "计划", "明天", "会议",
    "schedule", "plan for", "tomorrow", "meeting", "agenda",
)
PAUSE_KEYWORDS = (
    "休假", "请假", "暂停提醒", "不要提醒",
    "on vacation", "on leave", "day off", "pause reminders", "no reminders",
)


@dataclass(frozen=True)
class ReminderSkipSignal:
    skip_morning: bool = False
    skip_evening: bool = False
    reason: str = ""

    @property
    def any(self) -> bool:
        return self.skip_morning or self.skip_evening


NO_SKIP = ReminderSkipSignal(reason="no skip indicators")


def _mentions(text: str, keywords: Iterable[str]) -> bool:
    return any(k in text for k in keywords)


def evaluate_reminder_skip(
    message: IncomingMessage, action_names: Iterable[str] = ()
) -> ReminderSkipSignal:
    """Derive the signal from what the model did, then from keywords.

    Actions the model actually ran are the stronger evidence: a recorded work
    report makes the evening prompt redundant, a recorded schedule the
    morning one. Keyword rules only apply when no such action ran.
    """
    text = f"{message.subject}\n{message.body}".lower()
    if _mentions(text, PAUSE_KEYWORDS):
        return ReminderSkipSignal(True, True, "user asked not to be reminded today")

    ran = set(action_names)
    morning = "create_schedule_reminder" in ran
    evening = "process_work_report" in ran
    if morning or evening:
        reasons = []
        if evening:
            reasons.append("work report recorded")
        if morning:
            reasons.append("schedule recorded")
        return ReminderSkipSignal(morning, evening, ", ".join(reasons))

    if _mentions(text, WORK_REPORT_KEYWORDS):
        return ReminderSkipSignal(False, True, "message looks like a work report")
    if _mentions(text, SCHEDULE_KEYWORDS):
        return ReminderSkipSignal(True, False, "message looks like a schedule")
    return NO_SKIP
