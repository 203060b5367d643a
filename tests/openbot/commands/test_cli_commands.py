import datetime as dt
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

import openbot.cli as cli
import openbot.commands.run as run_cmd
import openbot.history as history
from openbot import paths
from openbot.errors import RepositoryError
from openbot.models import CommandEvent, MessageEvent
from openbot.workspace import resolve_workspace
from tests.openbot.helpers import make_record


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "proj"
    root.mkdir()
    monkeypatch.chdir(root)
    return root


def _invoke(*args: str):
    return CliRunner().invoke(cli.app, list(args))


def test_bots_init_then_list(project: Path) -> None:
    created = _invoke("bots", "--init", "docs")
    assert created.exit_code == 0
    assert "Created bot docs" in created.output
    assert paths.bot_config_path("docs").is_file()
    assert paths.bot_skills_dir("docs").is_dir()

    again = _invoke("bots", "--init", "docs")
    assert "already exists" in again.output

    listed = _invoke("bots")
    assert listed.output.splitlines()[0].startswith("docs")


def test_bots_init_rejects_invalid_names(project: Path) -> None:
    result = _invoke("bots", "--init", "Docs Bot")
    assert result.exit_code == 1
    assert "invalid bot name" in result.output


def test_unknown_bot_points_at_init(project: Path) -> None:
    result = _invoke("memory", "show", "--bot", "ghost")
    assert result.exit_code == 1
    assert "unknown bot: ghost" in result.output
    assert "openbot bots --init ghost" in result.output


def test_memory_commands_need_a_known_workspace(project: Path) -> None:
    _invoke("bots", "--init", "docs")
    result = _invoke("memory", "show", "--bot", "docs")
    assert result.exit_code == 1
    assert "has not run in" in result.output


def test_memory_set_show_remove_clear(project: Path) -> None:
    _invoke("bots", "--init", "docs")
    resolve_workspace("docs", project)

    assert _invoke("memory", "show", "--bot", "docs").output.strip() == "No memory entries."
    assert _invoke("memory", "set", "tests", "pytest -q", "--bot", "docs").exit_code == 0
    assert _invoke("memory", "set", "style", "black", "--bot", "docs").exit_code == 0
    assert _invoke("memory", "show", "--bot", "docs").output.splitlines() == [
        "  style = black",
        "  tests = pytest -q",
    ]

    assert "Removed style." in _invoke("memory", "remove", "style", "--bot", "docs").output
    assert "No entry named style." in _invoke("memory", "remove", "style", "--bot", "docs").output

    cleared = _invoke("memory", "clear", "--bot", "docs", "--yes")
    assert "Memory cleared." in cleared.output
    assert _invoke("memory", "show", "--bot", "docs").output.strip() == "No memory entries."


def test_memory_clear_replaces_unreadable_file(project: Path) -> None:
    _invoke("bots", "--init", "docs")
    workspace = resolve_workspace("docs", project)
    workspace.memory_path.parent.mkdir(parents=True, exist_ok=True)
    workspace.memory_path.write_text("{not json", encoding="utf-8")

    broken = _invoke("memory", "show", "--bot", "docs")
    assert broken.exit_code == 1

    cleared = _invoke("memory", "clear", "--bot", "docs", "-y")
    assert cleared.exit_code == 0
    assert _invoke("memory", "show", "--bot", "docs").output.strip() == "No memory entries."


def test_sessions_list_and_show(project: Path) -> None:
    _invoke("bots", "--init", "docs")
    workspace = resolve_workspace("docs", project)
    record = make_record(1, session_id="thr-1", response_summary="updated the guide")
    with history.SessionWriter.create(workspace.history_dir, record) as writer:
        writer.append(CommandEvent(command="make docs", exit_code=0, duration_ms=120))
        writer.append(MessageEvent(content="Updated the guide."))

    listed = _invoke("sessions", "list", "--bot", "docs")
    assert listed.exit_code == 0
    assert listed.output.startswith("#1 2026-01-01 12:00")
    assert "updated the guide" in listed.output

    as_json = _invoke("sessions", "list", "--bot", "docs", "--format", "json")
    assert '"session_id": "thr-1"' in as_json.output

    shown = _invoke("sessions", "show", "1", "--bot", "docs", "--workspace", workspace.slug)
    assert shown.exit_code == 0
    assert "$ make docs" in shown.output
    assert "Updated the guide." in shown.output

    commands_only = _invoke("sessions", "show", "1", "--bot", "docs", "--section", "commands")
    assert "Updated the guide." not in commands_only.output

    missing = _invoke("sessions", "show", "9", "--bot", "docs")
    assert missing.exit_code == 1
    assert "no session #9" in missing.output

    bad_format = _invoke("sessions", "list", "--bot", "docs", "--format", "xml")
    assert bad_format.exit_code == 1
    assert "unknown format: xml" in bad_format.output


def test_sessions_list_empty_workspace(project: Path) -> None:
    _invoke("bots", "--init", "docs")
    resolve_workspace("docs", project)
    assert _invoke("sessions", "list", "--bot", "docs").output.strip() == "No sessions recorded."


def test_workspaces_lists_registered_projects(project: Path, tmp_path: Path) -> None:
    _invoke("bots", "--init", "docs")
    assert "No workspaces found." in _invoke("workspaces", "--bot", "docs").output

    gone = tmp_path / "gone"
    gone.mkdir()
    earlier = dt.datetime(2026, 1, 1, 9, 0, tzinfo=dt.timezone.utc)
    later = dt.datetime(2026, 1, 2, 9, 0, tzinfo=dt.timezone.utc)
    with patch("openbot.registry._now", side_effect=[earlier, later]):
        resolve_workspace("docs", gone)
        resolve_workspace("docs", project)
    gone.rmdir()

    lines = _invoke("workspaces", "--bot", "docs").output.splitlines()
    assert lines[0].split() == ["slug", "sessions", "last_used", "path"]
    assert lines[1].startswith("proj ")
    assert "2026-01-02 09:00" in lines[1]
    assert lines[2].startswith("gone ")
    assert lines[2].endswith("(missing)")


def test_skills_lists_bot_and_global_skills(project: Path) -> None:
    _invoke("bots", "--init", "docs")
    assert _invoke("skills", "--bot", "docs").output.strip() == "No skills found."

    (paths.bot_skills_dir("docs") / "lint.md").write_text(
        "---\nname: lint\ndescription: Run linters\n---\nruff check .\n", encoding="utf-8"
    )
    assert _invoke("skills", "--bot", "docs").output.strip() == "lint  Run linters"


def test_run_outside_git_requires_skip_flag(project: Path) -> None:
    _invoke("bots", "--init", "docs")
    args = SimpleNamespace(
        bot="docs",
        prompt=None,
        max_sessions=None,
        sleep=None,
        model=None,
        resume=None,
        skip_git_check=False,
        worktree=None,
        no_input=True,
    )
    with pytest.raises(RepositoryError):
        run_cmd.run_bot(args)

    result = _invoke("run", "--bot", "docs", "--no-input")
    assert result.exit_code == 1
    assert "not inside a git repository" in result.output
    assert "--skip-git-check" in result.output
