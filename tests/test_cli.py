"""End-to-end tests for the nhc-wrapper and node-mark-online entry points."""

from __future__ import annotations

import io
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeCheck, FakeRunner
from nhc_orchestrator import health_check_wrapper, node_mark_online
from nhc_orchestrator.health_check_runner import Classification, RunOutcome
from nhc_orchestrator.node_state.rm_adapters import SlurmAdapter
from nhc_orchestrator.orchestrator_config import EXIT_CONFIG_ERROR, EXIT_STATE_DIR_ERROR


@pytest.fixture
def clean_env(monkeypatch, tmp_path: Path) -> Path:
    for name in list(os.environ):
        if name.startswith("NHC_") or name in ("MAILTO", "IGNORE_EMPTY_NOTE"):
            monkeypatch.delenv(name)
    state = tmp_path / "state"
    monkeypatch.setenv("NHC_STATE_DIR", str(state))
    return state


# ── nhc-wrapper ──────────────────────────────────────────────────────────────


class TestWrapperMain:
    def test_notifies_only_on_change(self, clean_env: Path, fake_check: FakeCheck) -> None:
        argv = ["-P", str(fake_check.script), "-q", "--", *fake_check.args]
        with patch.object(health_check_wrapper, "notify_outcome") as notify:
            fake_check.set_output("ERROR: X\n", rc=1)
            assert health_check_wrapper.main(argv) == 1
            assert health_check_wrapper.main(argv) == 1
            fake_check.set_output("")
            assert health_check_wrapper.main(argv) == 0

        outcomes = [c.args[1] for c in notify.call_args_list]
        assert [o.classification for o in outcomes] == [
            Classification.CHANGED, Classification.UNCHANGED, Classification.CHANGED,
        ]
        assert (clean_env / "fake-check.save").read_bytes() == b""
        assert not (clean_env / "fake-check.out").exists()

    def test_name_and_subject_args(self, clean_env: Path, fake_check: FakeCheck) -> None:
        fake_check.set_output("")
        with patch.object(health_check_wrapper, "notify_outcome"):
            rc = health_check_wrapper.main(["-P", str(fake_check.script), "-N", "mycheck",
                                            "-A", str(fake_check.control), "-q"])
        assert rc == 0
        assert (clean_env / "mycheck.save").exists()

    def test_insecure_state_dir_is_fatal(self, clean_env: Path, fake_check: FakeCheck, tmp_path: Path) -> None:
        target = tmp_path / "planted"
        target.mkdir()
        clean_env.symlink_to(target)
        with patch.object(health_check_wrapper, "notify_outcome") as notify:
            rc = health_check_wrapper.main(["-P", str(fake_check.script)])
        assert rc == EXIT_STATE_DIR_ERROR
        notify.assert_not_called()

    def test_bad_config(self, clean_env: Path, monkeypatch) -> None:
        monkeypatch.setenv("NHC_NOTIFY_RETRIES", "many")
        assert health_check_wrapper.main([]) == EXIT_CONFIG_ERROR

    @pytest.mark.parametrize("name, value", [
        ("NHC_TIMEZONE", "Mars/Olympus"),
        ("NHC_LOG_LEVEL", "VERBOSE"),
    ])
    def test_bad_display_settings_stop_before_running(self, clean_env: Path, fake_check: FakeCheck,
                                                      monkeypatch, name: str, value: str) -> None:
        monkeypatch.setenv(name, value)
        fake_check.set_output("ERROR: X\n", rc=1)
        rc = health_check_wrapper.main(["-P", str(fake_check.script), "-q", "--", *fake_check.args])
        assert rc == EXIT_CONFIG_ERROR
        assert not (clean_env / "fake-check.save").exists()

    def test_loop_fudge_is_reported(self, clean_env: Path, fake_check: FakeCheck, caplog) -> None:
        with patch.object(health_check_wrapper, "SchedulerLoop") as loop:
            health_check_wrapper.main(["-P", str(fake_check.script), "-L", "1m10fr"])
        interval, flags = loop.call_args.args
        assert interval == 60
        assert flags.ruler
        assert "only applies to -X" in caplog.text


class TestDisplayOutput:
    def test_modes(self) -> None:
        changed = RunOutcome(Classification.CHANGED, 1, b"ERROR: X\n")
        same = RunOutcome(Classification.UNCHANGED, 1, b"ERROR: X\n")

        out = io.StringIO()
        health_check_wrapper.display_output(changed, "changed", out)
        health_check_wrapper.display_output(same, "changed", out)
        assert out.getvalue() == "ERROR: X\n"

        out = io.StringIO()
        health_check_wrapper.display_output(same, "always", out)
        assert out.getvalue() == "ERROR: X\n"

        out = io.StringIO()
        health_check_wrapper.display_output(changed, "never", out)
        assert out.getvalue() == ""


# ── node-mark-online ─────────────────────────────────────────────────────────


class TestMarkOnlineMain:
    def test_unsupported_rm(self, clean_env: Path) -> None:
        assert node_mark_online.main(["-r", "condor", "n001"]) == EXIT_CONFIG_ERROR

    def test_bad_log_level(self, clean_env: Path, monkeypatch) -> None:
        monkeypatch.setenv("NHC_LOG_LEVEL", "VERBOSE")
        assert node_mark_online.main(["-r", "slurm", "n001"]) == EXIT_CONFIG_ERROR

    def test_onlines_own_node(self, clean_env: Path, monkeypatch) -> None:
        runner = FakeRunner({"sinfo": "drain* NHC: check_x failed"})
        monkeypatch.setattr(node_mark_online, "get_adapter",
                            lambda rm, timeout=60: SlurmAdapter(runner=runner))
        monkeypatch.setattr(node_mark_online, "Notifier", MagicMock())
        assert node_mark_online.main(["-r", "slurm", "n001"]) == 0
        assert runner.calls[-1] == ["scontrol", "update", "State=RESUME", "NodeName=n001"]

    def test_dry_run(self, clean_env: Path, monkeypatch) -> None:
        runner = FakeRunner({"sinfo": "drain* NHC: check_x failed"})
        monkeypatch.setattr(node_mark_online, "get_adapter",
                            lambda rm, timeout=60: SlurmAdapter(runner=runner))
        monkeypatch.setattr(node_mark_online, "Notifier", MagicMock())
        assert node_mark_online.main(["-n", "n001"]) == 0
        assert [c[0] for c in runner.calls] == ["sinfo"]
