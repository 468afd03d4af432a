import time
import socket
import logging
import subprocess
from enum import Enum
from dataclasses import dataclass
from typing import Optional

from .notifier import NotifyKind
from .result_store import ResultStore

COMMAND_NOT_FOUND_RC = 127


class Classification(str, Enum):
    CLEAR = "clear"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


@dataclass
class RunResult:
    output: bytes
    returncode: int
    started_at: float


@dataclass
class RunOutcome:
    classification: Classification
    returncode: int
    output: bytes = b""
    previous_output: Optional[bytes] = None
    expired: bool = False

    @property
    def should_notify(self) -> bool:
        return self.classification is Classification.CHANGED

    @property
    def notify_kind(self) -> Optional[NotifyKind]:
        if not self.should_notify:
            return None
        return NotifyKind.ALERT if self.output else NotifyKind.CLEARED

    @property
    def message(self) -> str:
        """Text the notification should carry (old errors when cleared)."""
        data = self.output if self.output else (self.previous_output or b"")
        return data.decode("utf-8", errors="replace")


# =============================
# Run the wrapped subject
# =============================
def run_subject(store: ResultStore, subject: str, args=()) -> RunResult:
    """
    Run ``subject args...`` with stdout+stderr captured into the store's
    freshly recreated .out artifact.

    A subject that cannot be executed is reported as output with rc=127
    so it flows through classification like any other failure.
    """
    cmd = [subject, *args]
    logging.debug(f"{store.subject}: Running command: {' '.join(cmd)}")
    started_at = time.time()
    with store.open_output() as f:
        try:
            r = subprocess.run(cmd, stdout=f, stderr=subprocess.STDOUT, stdin=subprocess.DEVNULL)
            rc = r.returncode
        except OSError as e:
            logging.error(f"{store.subject}: cannot execute {subject}: {e}")
            f.write(f"{subject}: {e.strerror or e}\n".encode())
            rc = COMMAND_NOT_FOUND_RC
    logging.debug(f"{store.subject}: returncode={rc}")
    return RunResult(output=store.read_output(), returncode=rc, started_at=started_at)


# =============================
# Execution & diff engine
# =============================
class HealthCheckRunner:
    def __init__(self, store: ResultStore, subject: str, args=(), expire_after=0, fudge=5):
        self.store = store
        self.subject = subject
        self.args = list(args)
        self.expire_after = expire_after
        self.fudge = fudge

    def run_and_classify(self) -> RunOutcome:
        """
        Run the subject once and classify its output against the saved result.

        CLEAR and UNCHANGED are silent; CHANGED (new, different or cleared
        errors) is the only classification that needs a notification.
        """
        result = run_subject(self.store, self.subject, self.args)
        expired = self.store.expire(self.expire_after, self.fudge, now=result.started_at)
        outcome = self.classify(result)
        outcome.expired = expired
        logging.info(
            f"{self.store.subject}: rc={outcome.returncode} classification={outcome.classification.value}"
            + (" (saved result expired)" if expired else "")
        )
        return outcome

    def classify(self, result: RunResult) -> RunOutcome:
        store = self.store
        new = result.output
        previous = store.load_previous()
        rc = result.returncode

        if previous is not None and previous.empty and not new:
            store.discard_output()
            store.clear_saved()
            return RunOutcome(Classification.CLEAR, rc, new, previous.data)

        if previous is not None and new == previous.data:
            store.discard_output()
            logging.debug(f"{store.subject}: output unchanged for {store.age_seconds(previous)}s")
            return RunOutcome(Classification.UNCHANGED, rc, new, previous.data)

        if previous is not None:
            store.promote_output()
            return RunOutcome(Classification.CHANGED, rc, new, previous.data)

        store.promote_output()
        if not new:
            return RunOutcome(Classification.CLEAR, rc, new, None)
        return RunOutcome(Classification.CHANGED, rc, new, None)


def short_hostname() -> str:
    return socket.gethostname().split(".", 1)[0]
