import sys
import time
import signal
import shutil
import logging
from contextlib import contextmanager
from datetime import datetime

from .timespec import LoopFlags

DEFAULT_INTERVAL = 300

# Terminal signals -> exit status (128 + signum)
STOP_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGTERM)


def seconds_until_boundary(interval: int, now: datetime = None) -> float:
    """
    Delay until the next multiple of ``interval`` seconds since local midnight.

    interval=900 at 00:40:00 -> 300.0 (next quarter hour).
    """
    if now is None:
        now = datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (now - midnight).total_seconds()
    return interval - (elapsed % interval)


class LoopStopped(SystemExit):
    """Raised to leave the loop on a terminal signal."""


class SignalGuard:
    """
    Turn SIGHUP/SIGINT/SIGTERM into ``LoopStopped(128 + signum)``.

    Inside ``interruptible()`` the exit happens immediately; anywhere else
    the signal is held until ``check()`` so a running command can finish.
    """

    def __init__(self):
        self._interruptible = False
        self.pending = None
        self._saved = {}

    def __enter__(self):
        for sig in STOP_SIGNALS:
            self._saved[sig] = signal.signal(sig, self._handle)
        return self

    def __exit__(self, exc_type, exc, tb):
        for sig, handler in self._saved.items():
            signal.signal(sig, handler)
        self._saved.clear()
        return False

    def _handle(self, signum, frame):
        if self._interruptible:
            logging.info(f"Caught signal {signum}; exiting")
            raise LoopStopped(128 + signum)
        logging.info(f"Caught signal {signum}; exiting after current check")
        self.pending = signum

    def check(self):
        if self.pending is not None:
            raise LoopStopped(128 + self.pending)

    @contextmanager
    def interruptible(self):
        self._interruptible = True
        try:
            self.check()
            yield
        finally:
            self._interruptible = False


class SchedulerLoop:
    """
    Run ``tick`` forever on wall-clock boundaries.

    Signals received while sleeping exit immediately; a signal received
    during a tick is held until the tick returns.
    """

    def __init__(self, interval: int, flags: LoopFlags = LoopFlags(), out=None,
                 clock=datetime.now, sleep=time.sleep):
        if interval <= 0:
            logging.warning(f"Invalid loop interval {interval}s; using default of {DEFAULT_INTERVAL}s")
            interval = DEFAULT_INTERVAL
        self.interval = interval
        self.flags = flags
        self.out = out or sys.stdout
        self.clock = clock
        self.sleep = sleep
        self.guard = SignalGuard()

    # -- presentation --------------------------------------------------------

    def present(self):
        if self.flags.clear and self.out.isatty():
            self.out.write("\033[H\033[2J")
        if self.flags.ruler:
            width = shutil.get_terminal_size((80, 24)).columns
            self.out.write("-" * width + "\n")
        if self.flags.timestamp:
            now = self.clock()
            self.out.write(now.strftime("%Y-%m-%d %H:%M:%S") + "\n")
        self.out.flush()

    # -- main loop -----------------------------------------------------------

    def wait_for_boundary(self):
        delay = seconds_until_boundary(self.interval, self.clock())
        logging.debug(f"Sleeping {delay:.1f}s until next {self.interval}s boundary")
        with self.guard.interruptible():
            self.sleep(delay)

    def run_once(self, tick):
        self.wait_for_boundary()
        self.present()
        tick()
        self.guard.check()

    def run(self, tick, iterations=None):
        """
        Loop until a terminal signal arrives (or ``iterations`` ticks ran).
        """
        with self.guard:
            count = 0
            while iterations is None or count < iterations:
                self.run_once(tick)
                count += 1
