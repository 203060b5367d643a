# ruff: noqa: E402

from __future__ import annotations

import datetime as dt
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from openbot.models import SessionRecord


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", str(repo), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


def init_repo(path: Path, *, files: dict[str, str] | None = None) -> Path:
    """Create a repository on ``main`` with one commit holding ``files``."""
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-q", str(path)], check=True)
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(path, "config", "user.email", "bot@example.com")
    git(path, "config", "user.name", "Bot")
    git(path, "config", "commit.gpgsign", "false")
    for name, content in (files or {"README.md": "hello\n"}).items():
        target = path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    git(path, "add", "-A")
    git(path, "commit", "-q", "-m", "initial")
    return path


def make_record(number: int, *, session_id: str | None = None, **overrides: object) -> SessionRecord:
    data: dict[str, object] = {
        "session_id": session_id or f"sess-{number}",
        "session_number": number,
        "started_at": dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc),
    }
    data.update(overrides)
    return SessionRecord.model_validate(data)
