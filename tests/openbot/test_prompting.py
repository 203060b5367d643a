from pathlib import Path

from openbot.memory import MemoryStore
from openbot.prompting import PromptContext, build_prompt
from openbot.skills import Skill
from tests.openbot.helpers import make_record


def test_minimal_prompt_sections() -> None:
    prompt = build_prompt(PromptContext(instructions="Fix the flaky test.", session_number=1))

    assert prompt.startswith("Fix the flaky test.\n")
    assert "## Status" in prompt
    assert "- Session: 1" in prompt
    assert "## Instructions" in prompt
    assert "`session_complete`" in prompt
    assert "0 skill(s) loaded" in prompt
    assert "## Memory" not in prompt
    assert "## User Input" not in prompt
    assert "### Recent History" not in prompt


def test_full_prompt_orders_sections(tmp_path: Path) -> None:
    memory = MemoryStore(tmp_path / "memory.json")
    memory.set("tests", "pytest -q")
    context = PromptContext(
        instructions="Ship it.",
        session_number=4,
        skills=[Skill(name="lint", description="", body="ruff", source_path=tmp_path)],
        memory=memory,
        recent_history=[make_record(3, response_summary="x" * 300)],
        bot_skill_dir=tmp_path / "skills",
        project="/src/app",
        branch="openbot/docs-1",
        base_branch="main",
        user_input="also update the changelog\nplease",
    )

    prompt = build_prompt(context)

    order = [
        "Ship it.",
        "## Status",
        "## Available Skills",
        "## Memory",
        "## User Input",
        "### Recent History",
        "## Instructions",
        "## Skills System",
    ]
    positions = [prompt.index(marker) for marker in order]
    assert positions == sorted(positions)
    assert "- Branch: `openbot/docs-1` (based on `main`)" in prompt
    assert "> also update the changelog\n> please" in prompt
    assert f"- Session 3: {'x' * 200}\n" in prompt
    assert str(tmp_path / "skills") in prompt
    assert "1 skill(s) loaded" in prompt
