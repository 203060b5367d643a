# ruff: noqa: E402

import builtins
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import openbot.io as io
import openbot.log as log
import openbot.paths as paths


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "openbot-home"
    monkeypatch.setenv(paths.OPENBOT_HOME_ENV, str(home))
    monkeypatch.delenv("OPENBOT_LOG_LEVEL", raising=False)
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("OPENBOT_NO_COLOR", raising=False)
    monkeypatch.setattr(io, "_use_questionary", lambda: False)
    monkeypatch.setattr(log, "_configured_level", None)
    monkeypatch.setattr(log, "_no_color_override", None)

    def fail_input(prompt: str = "") -> str:
        raise AssertionError("prompted unexpectedly")

    monkeypatch.setattr(builtins, "input", fail_input)
    return home
