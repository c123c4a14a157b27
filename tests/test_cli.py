"""Tests for agentgate/cli/ — Click-based CLI commands."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from rich.text import Text

from agentgate.api.claude import ProviderError
from agentgate.auth.gate import AuthError
from agentgate.cli.app import async_cmd, cli
from agentgate.cli.formatters import build_table, format_timestamp, get_console, state_indicator
from agentgate.types import CommandResult, LoopState


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _invoke(runner: CliRunner, tmp_path, *args: str):
    return runner.invoke(cli, ["--data-dir", str(tmp_path), "--no-color", *args])


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class TestFormatters:
    def test_state_indicator_known_and_unknown(self) -> None:
        for state in ("active", "suspended", "done", "timed_out", "blocked"):
            assert isinstance(state_indicator(state), Text)
        assert state_indicator("something_else").plain == "? "

    def test_format_timestamp(self) -> None:
        assert format_timestamp(None) == "never"
        assert format_timestamp(0) == "never"
        assert len(format_timestamp(1_700_000_000)) == len("2023-11-14 22:13")

    def test_build_table(self) -> None:
        table = build_table("T", ["A", "B"], [[Text("x"), 1]])
        assert table.row_count == 1
        assert len(table.columns) == 2

    def test_get_console_no_color(self) -> None:
        assert get_console(no_color=True).no_color


def test_async_cmd_runs_coroutine() -> None:
    @async_cmd
    async def double(x: int) -> int:
        return x * 2

    assert double(21) == 42


# ---------------------------------------------------------------------------
# agents
# ---------------------------------------------------------------------------


class TestAgentsCommands:
    def test_create_and_list(self, runner, tmp_path) -> None:
        result = _invoke(
            runner, tmp_path, "agents", "create", "ops-bot",
            "--capability", "tasks", "--capability", "crm", "--rpm", "10", "--json",
        )
        assert result.exit_code == 0, result.output
        created = json.loads(result.output)
        assert created["name"] == "ops-bot"
        assert created["credential"].startswith("agk_")

        listed = _invoke(runner, tmp_path, "agents", "list", "--json")
        assert listed.exit_code == 0, listed.output
        agents = json.loads(listed.output)
        assert agents[0]["id"] == created["id"]
        assert agents[0]["capabilities"] == ["tasks", "crm"]
        assert agents[0]["rate_limit_rpm"] == 10
        assert agents[0]["status"] == "active"
        assert "credential" not in agents[0]

    def test_create_plain_output_shows_credential(self, runner, tmp_path) -> None:
        result = _invoke(runner, tmp_path, "agents", "create", "bot")
        assert result.exit_code == 0
        assert "Credential: agk_" in result.output

    def test_unknown_capability_rejected(self, runner, tmp_path) -> None:
        result = _invoke(runner, tmp_path, "agents", "create", "bot", "--capability", "root")
        assert result.exit_code != 0

    def test_suspend_and_activate(self, runner, tmp_path) -> None:
        created = json.loads(_invoke(runner, tmp_path, "agents", "create", "bot", "--json").output)
        result = _invoke(runner, tmp_path, "agents", "suspend", created["id"])
        assert result.exit_code == 0
        assert "suspended" in result.output
        listed = json.loads(_invoke(runner, tmp_path, "agents", "list", "--status", "suspended", "--json").output)
        assert [a["id"] for a in listed] == [created["id"]]
        assert _invoke(runner, tmp_path, "agents", "activate", created["id"]).exit_code == 0

    def test_suspend_unknown(self, runner, tmp_path) -> None:
        result = _invoke(runner, tmp_path, "agents", "suspend", "missing")
        assert result.exit_code == 1
        assert "Unknown agent: missing" in result.output

    def test_rotate(self, runner, tmp_path) -> None:
        created = json.loads(_invoke(runner, tmp_path, "agents", "create", "bot", "--json").output)
        result = _invoke(runner, tmp_path, "agents", "rotate", created["id"])
        assert result.exit_code == 0
        new = result.output.strip().split("Credential: ")[1]
        assert new.startswith("agk_")
        assert new != created["credential"]

    def test_rotate_unknown(self, runner, tmp_path) -> None:
        assert _invoke(runner, tmp_path, "agents", "rotate", "missing").exit_code == 1

    def test_list_table(self, runner, tmp_path) -> None:
        assert "No agents." in _invoke(runner, tmp_path, "agents", "list").output
        _invoke(runner, tmp_path, "agents", "create", "tb")
        result = _invoke(runner, tmp_path, "agents", "list")
        assert result.exit_code == 0
        assert "Agents" in result.output
        assert "No agents." not in result.output


# ---------------------------------------------------------------------------
# tools
# ---------------------------------------------------------------------------


class TestToolsCommands:
    def test_validate_builtin(self, runner, tmp_path) -> None:
        result = _invoke(runner, tmp_path, "tools", "validate")
        assert result.exit_code == 0
        assert "built-in catalog: 15 tools OK" in result.output

    def test_validate_reports_unmapped(self, runner, tmp_path, monkeypatch) -> None:
        catalog = tmp_path / "tools.json"
        catalog.write_text(json.dumps([
            {"name": "rm", "capability_name": "tasks", "action_name": "shell.rm"},
        ]))
        monkeypatch.setenv("AGENTGATE_TOOLS_FILE", str(catalog))
        result = _invoke(runner, tmp_path, "tools", "validate")
        assert result.exit_code == 1
        assert "shell.rm" in result.output

    def test_list_json_filtered(self, runner, tmp_path) -> None:
        result = _invoke(runner, tmp_path, "tools", "list", "--capability", "crm", "--json")
        tools = json.loads(result.output)
        assert tools
        assert {t["capability"] for t in tools} == {"crm"}


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


def _mock_executor(**execute_kwargs) -> MagicMock:
    executor = MagicMock()
    executor.execute = AsyncMock(**execute_kwargs)
    executor.close = AsyncMock()
    return executor


class TestRunCommand:
    def test_json_output(self, runner, tmp_path) -> None:
        executor = _mock_executor(return_value=CommandResult(
            response="All clear.",
            tool_call_count=0,
            turns_taken=1,
            state=LoopState.DONE,
            correlation_id="c1",
        ))
        with patch("agentgate.agent.create_agent_executor", AsyncMock(return_value=executor)):
            result = _invoke(runner, tmp_path, "run", "status?", "--key", "agk_test", "--json")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["response"] == "All clear."
        headers, command = executor.execute.call_args.args
        assert headers == {"x-agent-key": "agk_test"}
        assert command == "status?"
        executor.close.assert_awaited_once()

    def test_key_from_env(self, runner, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("AGENTGATE_AGENT_KEY", "agk_env")
        executor = _mock_executor(return_value=CommandResult(
            response="ok", tool_call_count=0, turns_taken=1, state=LoopState.DONE, correlation_id="c",
        ))
        with patch("agentgate.agent.create_agent_executor", AsyncMock(return_value=executor)):
            result = _invoke(runner, tmp_path, "run", "hi")
        assert result.exit_code == 0, result.output
        assert "ok" in result.output
        assert executor.execute.call_args.args[0] == {"x-agent-key": "agk_env"}

    def test_auth_error_exit_code(self, runner, tmp_path) -> None:
        executor = _mock_executor(side_effect=AuthError(401, "Invalid or inactive credential"))
        with patch("agentgate.agent.create_agent_executor", AsyncMock(return_value=executor)):
            result = _invoke(runner, tmp_path, "run", "hi", "--key", "agk_bad")
        assert result.exit_code == 1
        assert "Invalid or inactive credential" in result.output
        executor.close.assert_awaited_once()

    def test_provider_error_exit_code(self, runner, tmp_path) -> None:
        executor = _mock_executor(side_effect=ProviderError("Model backend unreachable"))
        with patch("agentgate.agent.create_agent_executor", AsyncMock(return_value=executor)):
            result = _invoke(runner, tmp_path, "run", "hi", "--key", "agk_x")
        assert result.exit_code == 2

    def test_missing_key(self, runner, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("AGENTGATE_AGENT_KEY", raising=False)
        result = _invoke(runner, tmp_path, "run", "hi")
        assert result.exit_code == 2
        assert "--key" in result.output
