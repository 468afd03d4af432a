"""Shared fixtures: a secured result store and a scriptable fake health check."""

from __future__ import annotations

import os
import stat
import time
from pathlib import Path

import pytest

from nhc_orchestrator.node_state.rm_adapters import CmdResult
from nhc_orchestrator.result_store import ResultStore

FAKE_CHECK = """#!/bin/sh
# Prints whatever the control file holds; exits with the code in <control>.rc
cat "$1" 2>/dev/null
if [ -f "$1.rc" ]; then exit "$(cat "$1.rc")"; fi
exit 0
"""


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def store(state_dir: Path):
    with ResultStore(str(state_dir), "fake-check") as s:
        yield s


class FakeCheck:
    """A shell health check whose output the test controls."""

    def __init__(self, root: Path) -> None:
        self.script = root / "fake-check"
        self.script.write_text(FAKE_CHECK)
        self.script.chmod(self.script.stat().st_mode | stat.S_IXUSR)
        self.control = root / "fake-check.control"

    def set_output(self, text: str, rc: int = 0) -> None:
        self.control.write_text(text)
        Path(f"{self.control}.rc").write_text(str(rc))

    @property
    def args(self) -> list[str]:
        return [str(self.control)]


@pytest.fixture
def fake_check(tmp_path: Path) -> FakeCheck:
    return FakeCheck(tmp_path)


class FakeRunner:
    """Stands in for run_cmd: scripted replies, records every command."""

    def __init__(self, replies: dict | None = None) -> None:
        self.replies = replies or {}
        self.calls: list[list[str]] = []

    def __call__(self, cmd, timeout=60) -> CmdResult:
        self.calls.append(list(cmd))
        reply = self.replies.get(cmd[0])
        if reply is None:
            return CmdResult(0, "", "")
        if isinstance(reply, CmdResult):
            return reply
        return CmdResult(0, reply, "")


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


def set_age(path: str, seconds: float) -> None:
    """Backdate a file's mtime by ``seconds``."""
    then = time.time() - seconds
    os.utime(path, (then, then))
