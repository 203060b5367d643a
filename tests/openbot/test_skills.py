from pathlib import Path

from openbot import paths, skills


def test_split_frontmatter_handles_quotes_and_bom() -> None:
    fields, body = skills.split_frontmatter(
        "\ufeff---\nname: \"lint\"\ndescription: 'Run linters'\n  nested: skip\n---\n\nBody\n"
    )
    assert fields == {"name": "lint", "description": "Run linters"}
    assert body == "Body"


def test_split_frontmatter_without_closing_keeps_text() -> None:
    text = "---\nname: lint\nno end"
    assert skills.split_frontmatter(text) == ({}, text)


def test_parse_skill_file_defaults_name_to_stem(tmp_path: Path) -> None:
    path = tmp_path / "release-notes.md"
    path.write_text("Write release notes from the git log.\n", encoding="utf-8")
    skill = skills.parse_skill_file(path)
    assert skill.name == "release-notes"
    assert skill.description == ""
    assert skill.body == "Write release notes from the git log."


def test_load_skills_orders_global_then_bot_and_skips_bad_files() -> None:
    global_dir = paths.global_skills_dir()
    bot_dir = paths.bot_skills_dir("docs")
    global_dir.mkdir(parents=True)
    bot_dir.mkdir(parents=True)
    (global_dir / "b.md").write_text("---\nname: shared\n---\nShared.", encoding="utf-8")
    (bot_dir / "a.md").write_text("---\nname: local\ndescription: Mine\n---\nLocal.", encoding="utf-8")
    (bot_dir / "bad.md").write_bytes(b"\xff\xfe\x00bad")
    (bot_dir / "notes.txt").write_text("ignored", encoding="utf-8")

    loaded = skills.load_skills(skills.skill_dirs("docs"))

    assert [skill.name for skill in loaded] == ["shared", "local"]


def test_load_skills_missing_dirs(tmp_path: Path) -> None:
    assert skills.load_skills([tmp_path / "nope"]) == []


def test_format_skills_section(tmp_path: Path) -> None:
    assert skills.format_skills_section([]) == ""
    section = skills.format_skills_section(
        [
            skills.Skill(
                name="lint", description="Run linters", body="ruff check .", source_path=tmp_path
            )
        ]
    )
    assert section.startswith("## Available Skills\n\n### lint\nRun linters\n\nruff check .\n")
