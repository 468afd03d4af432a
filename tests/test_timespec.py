"""Tests for timespec and loop-spec parsing."""

from __future__ import annotations

import pytest

from nhc_orchestrator.timespec import (
    DEFAULT_FUDGE,
    LoopFlags,
    parse_loop_spec,
    parse_timespec,
    split_loop_spec,
)


# ── parse_timespec ───────────────────────────────────────────────────────────


class TestParseTimespec:
    def test_empty(self) -> None:
        assert parse_timespec("") == (0, DEFAULT_FUDGE)

    def test_default_fudge_is_five(self) -> None:
        assert DEFAULT_FUDGE == 5

    @pytest.mark.parametrize(
        "spec, seconds",
        [
            ("1h30m", 5400),
            ("30m1h", 5400),
            ("6h30m", 23400),
            ("1w", 604800),
            ("2d", 172800),
            ("45s", 45),
            ("1H30M", 5400),
        ],
    )
    def test_units(self, spec: str, seconds: int) -> None:
        assert parse_timespec(spec)[0] == seconds

    def test_trailing_number_is_seconds(self) -> None:
        assert parse_timespec("1m30") == (90, DEFAULT_FUDGE)

    def test_fudge_does_not_add_to_total(self) -> None:
        assert parse_timespec("1h10f") == (3600, 10)

    def test_last_fudge_wins(self) -> None:
        assert parse_timespec("3f1m7f") == (60, 7)

    def test_invalid_char_before_any_unit(self) -> None:
        assert parse_timespec("10x") == (0, DEFAULT_FUDGE)

    def test_invalid_char_keeps_accumulated_total(self) -> None:
        assert parse_timespec("1h5x2m") == (3600, DEFAULT_FUDGE)

    def test_unit_without_digits_aborts(self) -> None:
        assert parse_timespec("5mh1s") == (300, DEFAULT_FUDGE)

    def test_leading_unit(self) -> None:
        assert parse_timespec("m") == (0, DEFAULT_FUDGE)


# ── Loop spec ────────────────────────────────────────────────────────────────


class TestLoopSpec:
    def test_split(self) -> None:
        assert split_loop_spec("5mct") == ("5m", "ct")
        assert split_loop_spec("15m") == ("15m", "")
        assert split_loop_spec("rt") == ("", "rt")

    def test_flags(self) -> None:
        interval, fudge, flags = parse_loop_spec("15mcrt")
        assert interval == 900
        assert fudge == DEFAULT_FUDGE
        assert flags == LoopFlags(clear=True, ruler=True, timestamp=True)

    def test_no_flags(self) -> None:
        assert parse_loop_spec("1h") == (3600, DEFAULT_FUDGE, LoopFlags())

    def test_unknown_flag_ignored(self) -> None:
        interval, _, flags = parse_loop_spec("5mz t")
        assert interval == 300
        assert flags == LoopFlags(timestamp=True)

    def test_malformed_interval_is_zero(self) -> None:
        assert parse_loop_spec("c")[0] == 0
