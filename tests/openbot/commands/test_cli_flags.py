import re
from types import SimpleNamespace
from unittest.mock import patch

from typer.testing import CliRunner

import openbot
import openbot.cli as cli
from openbot.errors import ConfigurationError

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


def _strip_ansi(output: str) -> str:
    return ANSI_ESCAPE_RE.sub("", output)


def test_version_flag_prints_version() -> None:
    result = CliRunner().invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert result.output.strip() == f"openbot {openbot.__version__}"


def test_global_log_level_flag_sets_runtime_level() -> None:
    runner = CliRunner()
    with (
        patch("openbot.cli.skills_cmd.list_skills", lambda _args: None),
        patch("openbot.cli.log.set_level") as mock_set_level,
    ):
        result = runner.invoke(cli.app, ["--log-level", "DEBUG", "skills"])

    assert result.exit_code == 0
    mock_set_level.assert_called_once_with("debug")


def test_global_log_level_rejects_unknown_values() -> None:
    result = CliRunner().invoke(cli.app, ["--log-level", "loud", "skills"], color=False)
    clean_output = _strip_ansi(result.output)

    assert result.exit_code != 0
    assert "--log-level" in clean_output
    assert "expected one of" in clean_output.lower()


def test_no_color_flag_disables_colorized_output() -> None:
    runner = CliRunner()
    with (
        patch("openbot.cli.skills_cmd.list_skills", lambda _args: None),
        patch("openbot.cli.log.set_no_color") as mock_set_no_color,
    ):
        result = runner.invoke(cli.app, ["--no-color", "skills"])

    assert result.exit_code == 0
    mock_set_no_color.assert_called_once_with(True)


def test_run_passes_options() -> None:
    captured: dict[str, SimpleNamespace] = {}

    def fake_run(args: SimpleNamespace) -> None:
        captured["args"] = args

    with patch("openbot.cli.run_cmd.run_bot", fake_run):
        result = CliRunner().invoke(
            cli.app,
            [
                "run",
                "--bot",
                "docs",
                "-p",
                "Fix the docs.",
                "-n",
                "3",
                "--sleep",
                "0",
                "--no-worktree",
                "--resume",
                "thr-9",
                "--no-input",
            ],
        )

    assert result.exit_code == 0
    args = captured["args"]
    assert args.bot == "docs"
    assert args.prompt == "Fix the docs."
    assert args.max_sessions == 3
    assert args.sleep == 0
    assert args.worktree is False
    assert args.resume == "thr-9"
    assert args.no_input is True
    assert args.model is None
    assert args.skip_git_check is False


def test_run_defaults_leave_config_untouched() -> None:
    captured: dict[str, SimpleNamespace] = {}

    with patch("openbot.cli.run_cmd.run_bot", lambda args: captured.setdefault("args", args)):
        result = CliRunner().invoke(cli.app, ["run"])

    assert result.exit_code == 0
    args = captured["args"]
    assert args.bot == "default"
    assert args.max_sessions is None
    assert args.sleep is None
    assert args.worktree is None


def test_errors_exit_with_message_and_hint() -> None:
    def failing(_args: SimpleNamespace) -> None:
        raise ConfigurationError("unknown bot: ghost", recovery_hint="create it first")

    with patch("openbot.cli.run_cmd.run_bot", failing):
        result = CliRunner().invoke(cli.app, ["run", "--bot", "ghost"])

    assert result.exit_code == 1
    assert "error: unknown bot: ghost" in result.output
    assert "hint: create it first" in result.output


def test_negative_session_limit_is_rejected() -> None:
    with patch("openbot.cli.run_cmd.run_bot") as run_bot:
        result = CliRunner().invoke(cli.app, ["run", "-n", "-1"])

    assert result.exit_code != 0
    run_bot.assert_not_called()
