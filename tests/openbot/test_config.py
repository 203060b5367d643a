from pathlib import Path

import pytest

import openbot.config as config
from openbot import paths
from openbot.errors import ConfigurationError
from openbot.models import DEFAULT_INSTRUCTIONS, BotConfig


def test_parse_config_md_frontmatter_and_body() -> None:
    parsed = config.parse_config_md(
        '+++\ndescription = "Docs bot"\nmax_iterations = 3\nsleep_secs = 0\n'
        'model = " o4-mini "\nsandbox = "READ-ONLY"\nworktree = false\n+++\n\n'
        "Keep the docs current.\n"
    )
    assert parsed.description == "Docs bot"
    assert parsed.max_sessions == 3
    assert parsed.sleep_secs == 0
    assert parsed.model == "o4-mini"
    assert parsed.sandbox == "read-only"
    assert parsed.worktree is False
    assert parsed.instructions == "Keep the docs current."


def test_parse_config_md_without_frontmatter() -> None:
    assert config.parse_config_md("Just do it.").instructions == "Just do it."
    assert config.parse_config_md("").instructions == DEFAULT_INSTRUCTIONS


@pytest.mark.parametrize(
    "contents",
    [
        "+++\nsleep_secs = 1\nno closing",
        "+++\nsleep_secs = = 1\n+++\nbody",
        "+++\nmax_sessions = -1\n+++\nbody",
        '+++\nsandbox = "yolo"\n+++\nbody',
    ],
)
def test_parse_config_md_rejects_invalid(contents: str) -> None:
    with pytest.raises(ConfigurationError):
        config.parse_config_md(contents)


def test_load_bot_config_defaults_when_missing() -> None:
    assert config.load_bot_config("ghost") == BotConfig()


def test_load_bot_config_reports_path(tmp_path: Path) -> None:
    path = tmp_path / "config.md"
    path.write_text("+++\nsleep_secs = 'x'\n+++\n", encoding="utf-8")
    with pytest.raises(ConfigurationError) as excinfo:
        config.load_bot_config("docs", path=path)
    assert str(path) in str(excinfo.value)
    assert excinfo.value.recovery_hint


def test_with_overrides_prefers_cli_values() -> None:
    base = BotConfig(instructions="base", max_sessions=5, sleep_secs=30)
    updated = config.with_overrides(
        base, prompt="override", max_sessions=0, sleep_secs=0, skip_git_check=True, worktree=False
    )
    assert updated.instructions == "override"
    assert updated.max_sessions == 0
    assert updated.sleep_secs == 0
    assert updated.skip_git_check is True
    assert updated.worktree is False
    assert config.with_overrides(base) is base


def test_serialize_round_trips_through_parse() -> None:
    original = BotConfig(
        description="Docs bot", max_sessions=2, model="o4-mini", worktree=False, instructions="Go."
    )
    assert config.parse_config_md(config.serialize_config_md(original)) == original


def test_list_bots_and_ensure_dirs() -> None:
    assert config.list_bots() == []
    config.ensure_bot_dirs("docs")
    config.ensure_bot_dirs("api")
    assert config.list_bots() == ["api", "docs"]
    assert paths.bot_skills_dir("docs").is_dir()
    assert paths.global_skills_dir().is_dir()


def test_load_json_ignores_non_objects(tmp_path: Path) -> None:
    path = tmp_path / "data.json"
    path.write_text("[1, 2]", encoding="utf-8")
    assert config.load_json(path) is None
    config.write_json(path, {"a": 1})
    assert config.load_json(path) == {"a": 1}
