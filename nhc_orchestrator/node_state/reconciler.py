import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional

from ..notifier import Notifier, NotifyKind
from .rm_adapters import RMAdapter, NodeStateRecord, StatusClass

LOCK_MARKER = "Existing Lock MSG:"


class NoteOwner(str, Enum):
    EMPTY = "empty"
    OWN = "own"
    OWN_LOCKED = "own-locked"   # own note carrying a preserved foreign reason
    FOREIGN = "foreign"


class Decision(str, Enum):
    ALREADY_ONLINE = "already-online"
    ONLINE = "online"
    KEEP_LOCKED = "keep-locked"
    SKIP_NO_NOTE = "skip-no-note"
    SKIP_FOREIGN_REASON = "skip-foreign-reason"
    SKIP_UNKNOWN_STATUS = "skip-unknown-status"
    NOT_REQUIRED = "not-required"


# =============================
# Decision table
# (status class, note owner, ignore empty note) -> decision
# =============================
DECISIONS = {}
for _ignore in (False, True):
    for _owner in NoteOwner:
        DECISIONS[(StatusClass.ONLINE, _owner, _ignore)] = Decision.ALREADY_ONLINE
        DECISIONS[(StatusClass.UNKNOWN, _owner, _ignore)] = Decision.SKIP_UNKNOWN_STATUS
    DECISIONS[(StatusClass.OFFLINE, NoteOwner.FOREIGN, _ignore)] = Decision.SKIP_FOREIGN_REASON
    DECISIONS[(StatusClass.OFFLINE, NoteOwner.OWN, _ignore)] = Decision.ONLINE
    DECISIONS[(StatusClass.OFFLINE, NoteOwner.OWN_LOCKED, _ignore)] = Decision.KEEP_LOCKED
DECISIONS[(StatusClass.OFFLINE, NoteOwner.EMPTY, False)] = Decision.SKIP_NO_NOTE
DECISIONS[(StatusClass.OFFLINE, NoteOwner.EMPTY, True)] = Decision.ONLINE
del _owner, _ignore


def decide(status_class: StatusClass, owner: NoteOwner, ignore_empty_note: bool) -> Decision:
    return DECISIONS[(status_class, owner, bool(ignore_empty_note))]


def note_owner(record: NodeStateRecord, leader: str) -> NoteOwner:
    if not record.note_leader:
        return NoteOwner.EMPTY
    if record.note_leader != leader:
        return NoteOwner.FOREIGN
    if locked_reason(record):
        return NoteOwner.OWN_LOCKED
    return NoteOwner.OWN


def locked_reason(record: NodeStateRecord) -> str:
    """Foreign reason preserved inside our own note, or ''."""
    _, sep, reason = record.note_body.partition(LOCK_MARKER)
    return reason.strip() if sep else ""


@dataclass
class ReconcileResult:
    hostname: str
    decision: Decision
    record: Optional[NodeStateRecord] = None
    returncode: int = 0


# =============================
# Reconciler
# =============================
class NodeStateReconciler:
    def __init__(self, adapter: RMAdapter, leader: str = "NHC:", ignore_empty_note: bool = False,
                 notifier: Optional[Notifier] = None, notify_foreign: bool = False,
                 subject: str = "nhc", dry_run: bool = False):
        self.adapter = adapter
        self.leader = leader
        self.ignore_empty_note = ignore_empty_note
        self.notifier = notifier
        self.notify_foreign = notify_foreign
        self.subject = subject
        self.dry_run = dry_run

    @classmethod
    def from_config(cls, config, adapter, notifier=None, dry_run=False):
        return cls(
            adapter,
            leader=config.leader,
            ignore_empty_note=config.ignore_empty_note,
            notifier=notifier,
            notify_foreign=config.notify_foreign,
            subject=config.subject,
            dry_run=dry_run,
        )

    def evaluate(self, hostname) -> ReconcileResult:
        """Query the RM and decide, without acting."""
        record = self.adapter.query(hostname)
        if record is None:
            return ReconcileResult(hostname, Decision.NOT_REQUIRED)
        status_class = self.adapter.classify_status(record.status)
        owner = note_owner(record, self.leader)
        decision = decide(status_class, owner, self.ignore_empty_note)
        logging.debug(
            f"{hostname}: status={record.status!r} ({status_class.value}) "
            f"owner={owner.value} -> {decision.value}"
        )
        return ReconcileResult(hostname, decision, record)

    def reconcile(self, hostname) -> ReconcileResult:
        """
        Bring ``hostname`` back online only if it is offline for a reason
        this system set. Everything else leaves the node as it is.
        """
        result = self.evaluate(hostname)
        record = result.record
        decision = result.decision

        if decision is Decision.NOT_REQUIRED:
            logging.info(f"{hostname}: {self.adapter.name} does not require manual onlining")
        elif decision is Decision.ALREADY_ONLINE:
            logging.info(f"{hostname}: Node is already online ({record.status})")
        elif decision is Decision.SKIP_NO_NOTE:
            logging.info(f"{hostname}: Not onlining {record.status} node: No note set")
        elif decision is Decision.SKIP_UNKNOWN_STATUS:
            logging.warning(f"{hostname}: Not sure how to handle node state {record.status!r}; leaving it alone")
        elif decision is Decision.SKIP_FOREIGN_REASON:
            logging.info(f"{hostname}: Not onlining {record.status} node: down for non-{self.leader} reason ({record.note})")
            if self.notify_foreign:
                self._notify(hostname, f"node is {record.status} for a reason not set by {self.leader} "
                                       f"({record.note}); leaving it offline")
        elif decision is Decision.KEEP_LOCKED:
            result.returncode = self._keep_locked(hostname, record)
        elif decision is Decision.ONLINE:
            result.returncode = self._online(hostname, record)
        return result

    def _online(self, hostname, record) -> int:
        logging.info(f"{hostname}: Marking {record.status} node online and clearing note ({record.note})")
        if self.dry_run:
            return 0
        r = self.adapter.mark_online(hostname)
        if r.rc != 0:
            logging.error(f"{hostname}: online command failed (rc={r.rc}): {r.err.strip()}")
            return r.rc
        self._notify(hostname, f"node brought back online (was {record.status}: {record.note or 'no note'})")
        return 0

    def _keep_locked(self, hostname, record) -> int:
        reason = locked_reason(record)
        logging.info(f"{hostname}: {self.leader} errors cleared; keeping node offline for existing reason ({reason})")
        if self.dry_run:
            return 0
        r = self.adapter.mark_offline(hostname, reason)
        if r.rc != 0:
            logging.error(f"{hostname}: offline command failed (rc={r.rc}): {r.err.strip()}")
            return r.rc
        self._notify(hostname, f"health check passed; node kept offline for pre-existing reason: {reason}")
        return 0

    def _notify(self, hostname, message):
        if self.notifier is None or self.dry_run:
            return
        self.notifier.notify(NotifyKind.INFO, self.subject, hostname, message)
