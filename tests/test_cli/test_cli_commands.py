"""Tests for CLI commands. CliRunner is used throughout; no network or mailbox access."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner, Result

from mail_assistant.cli.main import cli


# ── Helpers ─────────────────────────────────────────────────────────────────────


def _entry(content: str, entry_id: str = "e1") -> dict[str, str]:
    return {
        "id": entry_id,
        "timestamp": "2026-10-17T09:30:00",
        "type": "conversation",
        "content": content,
    }


@pytest.fixture
def context_file(tmp_path: Path) -> Path:
    path = tmp_path / "context.json"
    path.write_text(
        json.dumps(
            {
                "user-a": [_entry("hello"), _entry("x" * 50, "e2")],
                "user-b": [_entry("short")],
            }
        ),
        encoding="utf-8",
    )
    return path


def _invoke(*args: str, env: dict[str, str] | None = None, input: str | None = None) -> Result:
    runner = CliRunner()
    with patch("mail_assistant.cli.main.load_dotenv"):
        return runner.invoke(cli, list(args), env=env or {}, input=input)


# ── context-stats ──────────────────────────────────────────────────────────────


class TestContextStats:
    def test_shows_each_user(self, context_file: Path) -> None:
        result = _invoke(
            "context-stats",
            env={"CONTEXT_FILE": str(context_file), "CONTEXT_COMPRESSION_THRESHOLD": "40"},
        )
        assert result.exit_code == 0, result.output
        assert "user-a" in result.output
        assert "user-b" in result.output
        assert "55" in result.output  # 5 + 50 characters
        assert "yes" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = _invoke("context-stats", env={"CONTEXT_FILE": str(tmp_path / "none.json")})
        assert result.exit_code == 0
        assert "No stored context" in result.output


# ── purge-context ──────────────────────────────────────────────────────────────


class TestPurgeContext:
    def test_purge_with_yes(self, context_file: Path) -> None:
        result = _invoke("purge-context", "user-a", "--yes", env={"CONTEXT_FILE": str(context_file)})
        assert result.exit_code == 0, result.output
        assert "Context for user-a deleted." in result.output
        data = json.loads(context_file.read_text(encoding="utf-8"))
        assert set(data) == {"user-b"}

    def test_unknown_user(self, context_file: Path) -> None:
        result = _invoke("purge-context", "nobody", "--yes", env={"CONTEXT_FILE": str(context_file)})
        assert "No stored context for nobody." in result.output

    def test_declined_confirmation_aborts(self, context_file: Path) -> None:
        result = _invoke("purge-context", "user-a", env={"CONTEXT_FILE": str(context_file)}, input="n\n")
        assert result.exit_code != 0
        assert "user-a" in json.loads(context_file.read_text(encoding="utf-8"))


# ── health ─────────────────────────────────────────────────────────────────────


class TestHealth:
    def test_mock_provider_is_healthy(self) -> None:
        result = _invoke("health", env={"AI_PROVIDER": "mock"})
        assert result.exit_code == 0, result.output
        assert "mock is healthy" in result.output

    def test_failed_check_exits_nonzero(self) -> None:
        with patch(
            "mail_assistant.ai.providers.mock_provider.MockProvider.health_check",
            new=AsyncMock(return_value=False),
        ):
            result = _invoke("health", env={"AI_PROVIDER": "mock"})
        assert result.exit_code == 1
        assert "health check failed" in result.output

    def test_missing_key_is_reported(self) -> None:
        result = _invoke("health", env={"AI_PROVIDER": "openai", "OPENAI_API_KEY": ""})
        assert result.exit_code != 0
        assert "OPENAI_API_KEY" in result.output


# ── run ────────────────────────────────────────────────────────────────────────


class TestRun:
    def test_missing_mailbox_settings_reported(self) -> None:
        result = _invoke(
            "run", env={"IMAP_HOST": "", "MAIL_USER": "", "MAIL_PASSWORD": "", "AI_PROVIDER": "mock"}
        )
        assert result.exit_code != 0
        assert "Missing mailbox settings" in result.output
