import re
import logging
import subprocess
from enum import Enum
from dataclasses import dataclass
from typing import Optional

from ..orchestrator_config import resolve_resource_manager

COMMAND_FAILED_RC = 127
COMMAND_TIMEOUT_RC = 124


class StatusClass(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass
class NodeStateRecord:
    hostname: str
    status: str
    note_leader: str = ""
    note_body: str = ""

    @property
    def note(self) -> str:
        return f"{self.note_leader} {self.note_body}".strip()


@dataclass
class CmdResult:
    rc: int
    out: str
    err: str


# =============================
# Command execution
# =============================
def run_cmd(cmd, timeout=60) -> CmdResult:
    """Run an RM CLI and capture its output; never raises for command failures."""
    logging.debug(f"Running RM command: {' '.join(cmd)}")
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        logging.error(f"RM command timed out after {timeout}s: {cmd[0]}")
        return CmdResult(COMMAND_TIMEOUT_RC, "", f"timeout after {timeout}s")
    except OSError as e:
        logging.error(f"RM command failed to start: {cmd[0]}: {e}")
        return CmdResult(COMMAND_FAILED_RC, "", str(e))
    if r.returncode != 0:
        logging.warning(f"RM command {cmd[0]} exited {r.returncode}: {r.stderr.strip()}")
    return CmdResult(r.returncode, r.stdout, r.stderr)


def split_note(note: str) -> tuple[str, str]:
    """``"NHC: check_fs failed"`` -> (``"NHC:"``, ``"check_fs failed"``)."""
    parts = note.strip().split(None, 1)
    if not parts:
        return "", ""
    return parts[0], (parts[1] if len(parts) > 1 else "")


# =============================
# Adapters
# =============================
class RMAdapter:
    """
    One resource manager's status vocabulary, node-info parser and
    mutate commands. ``query`` returns None when the RM needs no marking.
    """
    name = ""
    offline_prefixes: tuple = ()
    online_prefixes: tuple = ()

    def __init__(self, runner=run_cmd, timeout=60):
        self.runner = runner
        self.timeout = timeout

    def _run(self, cmd) -> CmdResult:
        return self.runner(cmd, timeout=self.timeout)

    def query_command(self, hostname):
        raise NotImplementedError

    def parse(self, hostname, output) -> NodeStateRecord:
        raise NotImplementedError

    def online_command(self, hostname):
        raise NotImplementedError

    def offline_command(self, hostname, reason):
        raise NotImplementedError

    def classify_status(self, status: str) -> StatusClass:
        status = status.lower()
        if status and any(self._matches(status, p) for p in self.offline_prefixes):
            return StatusClass.OFFLINE
        if status and any(self._matches(status, p) for p in self.online_prefixes):
            return StatusClass.ONLINE
        return StatusClass.UNKNOWN

    @staticmethod
    def _matches(status, prefix):
        return status.startswith(prefix)

    def query(self, hostname) -> Optional[NodeStateRecord]:
        r = self._run(self.query_command(hostname))
        if r.rc != 0 or not r.out.strip():
            logging.warning(f"{hostname}: {self.name} query returned no usable data (rc={r.rc})")
            return NodeStateRecord(hostname=hostname, status="")
        record = self.parse(hostname, r.out)
        logging.debug(f"{hostname}: {self.name} status={record.status!r} note={record.note!r}")
        return record

    def mark_online(self, hostname) -> CmdResult:
        return self._run(self.online_command(hostname))

    def mark_offline(self, hostname, reason) -> CmdResult:
        return self._run(self.offline_command(hostname, reason))


class PBSAdapter(RMAdapter):
    """PBS/Torque via ``pbsnodes``; output is ``<host> <state[,state]> <note...>``."""
    name = "pbs"
    offline_prefixes = ("offline",)
    online_prefixes = ("free", "job-exclusive", "job-sharing", "job-busy", "busy", "reserve", "time-shared")

    @staticmethod
    def _matches(status, prefix):
        # Multi-state tokens like "down,offline": offline anywhere wins
        return any(s.startswith(prefix) for s in status.split(","))

    def query_command(self, hostname):
        return ["pbsnodes", "-l", "all", "-n", hostname]

    def parse(self, hostname, output):
        for line in output.splitlines():
            fields = line.split(None, 2)
            if len(fields) >= 2 and fields[0].split(".", 1)[0] == hostname.split(".", 1)[0]:
                leader, body = split_note(fields[2] if len(fields) > 2 else "")
                return NodeStateRecord(hostname, fields[1], leader, body)
        return NodeStateRecord(hostname, "")

    def online_command(self, hostname):
        return ["pbsnodes", "-c", "-N", "", hostname]

    def offline_command(self, hostname, reason):
        return ["pbsnodes", "-o", "-N", reason, hostname]


class SlurmAdapter(RMAdapter):
    """Slurm via ``sinfo -o '%t %E'``; status is the compact state token."""
    name = "slurm"
    offline_prefixes = ("down", "drain", "drng", "fail", "maint")
    online_prefixes = ("alloc", "comp", "idle", "mix", "resv", "plnd")

    def query_command(self, hostname):
        return ["sinfo", "-h", "-o", "%t %E", "-n", hostname]

    def parse(self, hostname, output):
        for line in output.splitlines():
            fields = line.split(None, 1)
            if not fields or fields[0] == "STATE":
                continue
            note = fields[1] if len(fields) > 1 else ""
            # sinfo prints "none" when no reason is set
            if note.strip().lower() == "none":
                note = ""
            leader, body = split_note(note)
            return NodeStateRecord(hostname, fields[0], leader, body)
        return NodeStateRecord(hostname, "")

    def online_command(self, hostname):
        return ["scontrol", "update", "State=RESUME", f"NodeName={hostname}"]

    def offline_command(self, hostname, reason):
        return ["scontrol", "update", "State=DRAIN", f"NodeName={hostname}", f"Reason={reason}"]


class LSFAdapter(RMAdapter):
    """LSF via ``bhosts -l``; reason comes from ADMIN ACTION COMMENT."""
    name = "lsf"
    offline_prefixes = ("closed",)
    online_prefixes = ("ok",)

    COMMENT_RE = re.compile(r'ADMIN ACTION COMMENT:\s*"(.*)"')

    def query_command(self, hostname):
        return ["bhosts", "-l", hostname]

    def parse(self, hostname, output):
        status = ""
        lines = output.splitlines()
        for i, line in enumerate(lines):
            if line.startswith("STATUS"):
                for following in lines[i + 1:]:
                    if following.strip():
                        status = following.split()[0]
                        break
                break
        leader, body = "", ""
        m = self.COMMENT_RE.search(output)
        if m:
            leader, body = split_note(m.group(1))
        return NodeStateRecord(hostname, status, leader, body)

    def online_command(self, hostname):
        return ["badmin", "hopen", hostname]

    def offline_command(self, hostname, reason):
        return ["badmin", "hclose", "-C", reason, hostname]


class GridEngineAdapter(RMAdapter):
    """Grid Engine family: nodes recover on their own, nothing to mark."""
    name = "sge"

    def query(self, hostname):
        return None


ADAPTERS = {
    "pbs": PBSAdapter,
    "slurm": SlurmAdapter,
    "lsf": LSFAdapter,
    "sge": GridEngineAdapter,
}


def get_adapter(rm_name: str, runner=run_cmd, timeout=60) -> RMAdapter:
    """Adapter for an RM identifier; ConfigurationError if unsupported."""
    rm = resolve_resource_manager(rm_name)
    return ADAPTERS[rm](runner=runner, timeout=timeout)
