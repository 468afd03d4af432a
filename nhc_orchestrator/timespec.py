import logging
from dataclasses import dataclass

# =============================
# Unit table (seconds)
# =============================
UNIT_SECONDS = {
    "w": 604800,
    "d": 86400,
    "h": 3600,
    "m": 60,
    "s": 1,
}
FUDGE_UNIT = "f"
DIGITS = "0123456789"
DEFAULT_FUDGE = 5

LOOP_FLAGS = ("c", "r", "t")


@dataclass(frozen=True)
class LoopFlags:
    clear: bool = False
    ruler: bool = False
    timestamp: bool = False


def parse_timespec(spec: str) -> tuple[int, int]:
    """
    Convert a timespec such as ``6h30m`` or ``1d10f`` into seconds.

    Returns (seconds, fudge). Parsing is best effort: a unit letter with no
    digits before it, or an unknown character, stops the walk and the
    seconds accumulated up to that point are returned.
    """
    total = 0
    fudge = DEFAULT_FUDGE
    digits = ""

    for ch in spec or "":
        if ch in DIGITS:
            digits += ch
            continue

        unit = ch.lower()
        if unit not in UNIT_SECONDS and unit != FUDGE_UNIT:
            logging.warning(f"Invalid character {ch!r} in timespec {spec!r}; using {total}s")
            return total, fudge
        if not digits:
            logging.warning(f"Unit {ch!r} without a number in timespec {spec!r}; using {total}s")
            return total, fudge

        if unit == FUDGE_UNIT:
            fudge = int(digits)
        else:
            total += int(digits) * UNIT_SECONDS[unit]
        digits = ""

    # Bare trailing number counts as seconds
    if digits:
        total += int(digits)
    return total, fudge


def split_loop_spec(spec: str) -> tuple[str, str]:
    """Split ``5mct`` into (``5m``, ``ct``)."""
    spec = spec or ""
    cut = len(spec)
    while cut > 0:
        ch = spec[cut - 1]
        if ch in DIGITS or ch.lower() in UNIT_SECONDS or ch.lower() == FUDGE_UNIT:
            break
        cut -= 1
    return spec[:cut], spec[cut:]


def parse_loop_spec(spec: str) -> tuple[int, int, LoopFlags]:
    """
    Parse a loop timespec with trailing presentation flags.

    c = clear screen, r = ruler line, t = timestamp.
    Returns (interval_seconds, fudge, LoopFlags).
    """
    interval_spec, flag_chars = split_loop_spec(spec)
    for ch in flag_chars:
        if ch not in LOOP_FLAGS:
            logging.warning(f"Ignoring unknown loop flag {ch!r} in {spec!r}")

    interval, fudge = parse_timespec(interval_spec)
    flags = LoopFlags(
        clear="c" in flag_chars,
        ruler="r" in flag_chars,
        timestamp="t" in flag_chars,
    )
    return interval, fudge, flags
