"""Tests for AdminCommandProcessor against an in-memory directory."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mail_assistant.agent.admin_commands import AdminCommandProcessor, normalize_time
from mail_assistant.directory.users import InMemoryUserDirectory, User
from mail_assistant.storage.context_store import ContextStore
from mail_assistant.storage.models import ContextType

from tests.conftest import USER_EMAIL


@pytest.fixture
def commands(
    directory: InMemoryUserDirectory, sender: MagicMock, store: ContextStore
) -> AdminCommandProcessor:
    return AdminCommandProcessor(directory, sender, store)


class TestNormalizeTime:
    @pytest.mark.parametrize(("raw", "expected"), [("9:05", "09:05"), ("23:59", "23:59"), (" 07:00 ", "07:00")])
    def test_valid(self, raw: str, expected: str) -> None:
        assert normalize_time(raw) == expected

    @pytest.mark.parametrize("raw", ["24:00", "9:60", "nine", "9"])
    def test_invalid(self, raw: str) -> None:
        assert normalize_time(raw) is None


class TestDispatch:
    async def test_help_lists_every_command(self, commands: AdminCommandProcessor) -> None:
        text = await commands.execute("/help")
        for name in commands.command_names():
            assert f"/{name}" in text

    async def test_help_for_one_command(self, commands: AdminCommandProcessor) -> None:
        assert "Usage: /adduser" in await commands.execute("/help adduser")

    async def test_unknown_command(self, commands: AdminCommandProcessor) -> None:
        assert (await commands.execute("/frobnicate")).startswith("Unknown command: frobnicate")

    async def test_command_name_case_insensitive(self, commands: AdminCommandProcessor) -> None:
        assert (await commands.execute("/ListUsers")).startswith("Users (2)")


class TestAddUser:
    async def test_adds_user_and_sends_welcome(
        self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory, sender: MagicMock
    ) -> None:
        text = await commands.execute("/adduser bob@example.com Bob 08:30 19:00")

        assert text.startswith("User added:")
        assert "Welcome email: sent" in text
        bob = directory.get_by_email("bob@example.com")
        assert bob is not None and bob.is_active
        assert bob.config.schedule.morning_reminder_time == "08:30"
        assert bob.config.schedule.evening_reminder_time == "19:00"
        assert sender.send.await_args.args[2] == "bob@example.com"

    async def test_welcome_failure_reported(
        self, commands: AdminCommandProcessor, sender: MagicMock
    ) -> None:
        sender.send = AsyncMock(side_effect=OSError("smtp down"))
        text = await commands.execute("/adduser bob@example.com Bob")
        assert "Welcome email: FAILED" in text

    async def test_duplicate(self, commands: AdminCommandProcessor) -> None:
        assert await commands.execute(f"/adduser {USER_EMAIL} Alice") == f"User {USER_EMAIL} already exists"

    async def test_invalid_email(self, commands: AdminCommandProcessor) -> None:
        assert (await commands.execute("/adduser not-an-email Bob")).startswith("Invalid email address")

    async def test_invalid_time(self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory) -> None:
        assert "Invalid morning time" in await commands.execute("/adduser bob@example.com Bob 25:00")
        assert directory.get_by_email("bob@example.com") is None

    async def test_missing_args(self, commands: AdminCommandProcessor) -> None:
        assert (await commands.execute("/adduser bob@example.com")).startswith("Usage:")


class TestUserManagement:
    async def test_disable_then_enable(
        self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory, alice: User
    ) -> None:
        assert "disabled" in await commands.execute(f"/disableuser {USER_EMAIL}")
        assert not directory.get_by_id(alice.id).is_active  # type: ignore[union-attr]
        assert "already disabled" in await commands.execute(f"/disableuser {USER_EMAIL}")
        await commands.execute(f"/enableuser {USER_EMAIL}")
        assert directory.get_by_id(alice.id).is_active  # type: ignore[union-attr]

    async def test_delete(self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory) -> None:
        assert "deleted" in await commands.execute(f"/deleteuser {USER_EMAIL}")
        assert directory.get_by_email(USER_EMAIL) is None

    async def test_unknown_user(self, commands: AdminCommandProcessor) -> None:
        assert await commands.execute("/deleteuser ghost@example.com") == "User ghost@example.com does not exist"

    async def test_rename_notifies_user(
        self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory, sender: MagicMock
    ) -> None:
        await commands.execute(f"/rename {USER_EMAIL} Alice Cooper")
        assert directory.get_by_email(USER_EMAIL).name == "Alice Cooper"  # type: ignore[union-attr]
        sender.send.assert_awaited_once()


class TestUpdateUser:
    async def test_morning_time(self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory) -> None:
        text = await commands.execute(f"/updateuser {USER_EMAIL} morningTime 7:15")
        assert text.endswith("updated to 07:15")
        assert directory.get_by_email(USER_EMAIL).config.schedule.morning_reminder_time == "07:15"  # type: ignore[union-attr]

    async def test_language(self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory) -> None:
        await commands.execute(f"/updateuser {USER_EMAIL} language en")
        assert directory.get_by_email(USER_EMAIL).config.language == "en"  # type: ignore[union-attr]
        assert "must be one of" in await commands.execute(f"/updateuser {USER_EMAIL} language fr")

    async def test_timezone(self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory) -> None:
        await commands.execute(f"/updateuser {USER_EMAIL} timezone Europe/Berlin")
        assert directory.get_by_email(USER_EMAIL).config.schedule.timezone == "Europe/Berlin"  # type: ignore[union-attr]
        assert "Unknown timezone" in await commands.execute(f"/updateuser {USER_EMAIL} timezone Mars/Base")

    async def test_unknown_field(self, commands: AdminCommandProcessor) -> None:
        assert "Unknown field" in await commands.execute(f"/updateuser {USER_EMAIL} role admin")


class TestReminders:
    async def test_pause_and_resume(
        self, commands: AdminCommandProcessor, directory: InMemoryUserDirectory
    ) -> None:
        assert "paused for 3 day(s)" in await commands.execute(f"/pausereminder {USER_EMAIL} 3")
        config = directory.get_by_email(USER_EMAIL).config  # type: ignore[union-attr]
        assert config.reminder_paused and config.resume_date

        assert "resumed" in await commands.execute(f"/resumereminder {USER_EMAIL}")
        config = directory.get_by_email(USER_EMAIL).config  # type: ignore[union-attr]
        assert not config.reminder_paused and config.resume_date is None

    async def test_invalid_pause_days(self, commands: AdminCommandProcessor) -> None:
        assert "positive integer" in await commands.execute(f"/pausereminder {USER_EMAIL} zero")

    async def test_resume_when_not_paused(self, commands: AdminCommandProcessor) -> None:
        assert "not paused" in await commands.execute(f"/resumereminder {USER_EMAIL}")


class TestContextCommands:
    async def test_stats_and_clearcontext(
        self, commands: AdminCommandProcessor, store: ContextStore, alice: User
    ) -> None:
        store.append(alice.id, ContextType.CONVERSATION, "hello")

        stats = await commands.execute("/stats")
        assert "Users: 2" in stats
        assert "Context entries: 1" in stats

        assert await commands.execute(f"/clearcontext {USER_EMAIL}") == f"Context for {USER_EMAIL} cleared"
        assert store.entries(alice.id) == []
        assert await commands.execute(f"/clearcontext {USER_EMAIL}") == f"No stored context for {USER_EMAIL}"


class TestReportCommands:
    @pytest.fixture
    def reports(self) -> MagicMock:
        r = MagicMock()
        r.weekly_report = AsyncMock(return_value="report")
        r.suggestions = AsyncMock(return_value="advice")
        return r

    @pytest.fixture
    def with_reports(
        self, directory: InMemoryUserDirectory, sender: MagicMock, store: ContextStore, reports: MagicMock
    ) -> AdminCommandProcessor:
        return AdminCommandProcessor(directory, sender, store, reports=reports)

    async def test_weekly_report_for_user_and_offset(
        self, with_reports: AdminCommandProcessor, reports: MagicMock, alice: User
    ) -> None:
        text = await with_reports.execute(f"/weeklyreport {USER_EMAIL} -1")
        assert text == f"Weekly report for {USER_EMAIL} (last week) sent"
        reports.weekly_report.assert_awaited_once_with(alice, -1)

    async def test_weekly_report_offset_only_targets_requester(
        self, with_reports: AdminCommandProcessor, reports: MagicMock, admin: User
    ) -> None:
        text = await with_reports.execute("/weeklyreport 0", requester=admin)
        assert "this week" in text
        reports.weekly_report.assert_awaited_once_with(admin, 0)

    async def test_weekly_report_for_every_active_user(
        self,
        with_reports: AdminCommandProcessor,
        reports: MagicMock,
        directory: InMemoryUserDirectory,
        alice: User,
    ) -> None:
        directory.update(alice.id, {"is_active": False})
        reports.weekly_report = AsyncMock(return_value=None)
        assert await with_reports.execute("/weeklyreport") == "Weekly reports: 0 sent, 1 without records"

    async def test_one_failing_user_does_not_stop_the_rest(
        self, with_reports: AdminCommandProcessor, reports: MagicMock, alice: User
    ) -> None:
        async def generate(user: User) -> str:
            if user.id == alice.id:
                raise RuntimeError("smtp down")
            return "ok"

        reports.suggestions = AsyncMock(side_effect=generate)
        text = await with_reports.execute("/suggestions")
        assert text.startswith("Suggestions: 1 sent, 0 without records, 1 failed")
        assert USER_EMAIL in text

    async def test_bad_week_offset(self, with_reports: AdminCommandProcessor) -> None:
        assert "must be an integer" in await with_reports.execute(f"/weeklyreport {USER_EMAIL} soon")

    async def test_week_without_records(self, with_reports: AdminCommandProcessor, reports: MagicMock) -> None:
        reports.weekly_report = AsyncMock(return_value=None)
        assert "no report sent" in await with_reports.execute(f"/weeklyreport {USER_EMAIL}")

    async def test_suggestions_for_one_user(
        self, with_reports: AdminCommandProcessor, reports: MagicMock, alice: User
    ) -> None:
        assert await with_reports.execute(f"/suggestions {USER_EMAIL}") == f"Suggestions for {USER_EMAIL} sent"
        reports.suggestions.assert_awaited_once_with(alice)

    async def test_reports_unavailable(self, commands: AdminCommandProcessor) -> None:
        assert "not available" in await commands.execute("/weeklyreport")


class TestCancelReminder:
    @pytest.fixture
    def skips(self) -> list:
        return []

    @pytest.fixture
    def with_hook(
        self, directory: InMemoryUserDirectory, sender: MagicMock, store: ContextStore, skips: list
    ) -> AdminCommandProcessor:
        return AdminCommandProcessor(
            directory, sender, store, on_reminder_skip=lambda uid, signal: skips.append((uid, signal))
        )

    async def test_cancel_evening_for_user(
        self, with_hook: AdminCommandProcessor, skips: list, alice: User
    ) -> None:
        text = await with_hook.execute(f"/cancelreminder evening {USER_EMAIL}")
        assert text == f"Today's evening reminder for {USER_EMAIL} cancelled"
        (user_id, signal), = skips
        assert user_id == alice.id
        assert (signal.skip_morning, signal.skip_evening) == (False, True)
        assert signal.reason == "cancelled by administrator"

    async def test_cancel_all_defaults_to_requester(
        self, with_hook: AdminCommandProcessor, skips: list, admin: User
    ) -> None:
        assert "reminders for" in await with_hook.execute("/cancelreminder all", requester=admin)
        (user_id, signal), = skips
        assert user_id == admin.id
        assert signal.skip_morning and signal.skip_evening

    async def test_chinese_alias(self, with_hook: AdminCommandProcessor, skips: list) -> None:
        await with_hook.execute(f"/cancelreminder 晨间 {USER_EMAIL}")
        assert skips[0][1].skip_morning and not skips[0][1].skip_evening

    async def test_unknown_type(self, with_hook: AdminCommandProcessor, skips: list) -> None:
        assert "Unknown reminder type" in await with_hook.execute(f"/cancelreminder lunch {USER_EMAIL}")
        assert skips == []

    async def test_unknown_user(self, with_hook: AdminCommandProcessor) -> None:
        assert await with_hook.execute("/cancelreminder all ghost@example.com") == "User ghost@example.com does not exist"

    async def test_without_scheduler(self, commands: AdminCommandProcessor, admin: User) -> None:
        assert "nothing was cancelled" in await commands.execute("/cancelreminder all", requester=admin)
