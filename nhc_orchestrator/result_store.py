import os
import stat
import time
import errno
import tempfile
import logging
from dataclasses import dataclass
from typing import Optional


class StateDirError(Exception):
    """The state directory could not be created or secured."""


# =============================
# Saved result
# =============================
@dataclass
class SavedResult:
    path: str
    data: bytes
    saved_time: float

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    @property
    def empty(self) -> bool:
        return not self.data


def canonical_time(st) -> float:
    # Older of mtime/ctime survives clock skew and copied files
    return min(st.st_mtime, st.st_ctime)


# =============================
# Secure state directory
# =============================
def ensure_state_dir(path, uid=None):
    """
    Create (if needed) and secure a private state directory.

    The directory is created under an unpredictable temporary name in the
    parent and renamed into place, so a pre-planted path is never reused
    blindly. Afterwards it must be a real directory owned by ``uid`` with
    mode 0700 and writable; anything else raises StateDirError.

    :param path: final directory path
    :param uid: expected owner (default: effective uid)
    :return: path
    """
    if uid is None:
        uid = os.geteuid()
    path = os.path.abspath(path)
    parent = os.path.dirname(path)

    if not os.path.lexists(path):
        try:
            tmp = tempfile.mkdtemp(prefix=f".{os.path.basename(path)}.", dir=parent)
        except OSError as e:
            raise StateDirError(f"Cannot create temporary directory in {parent}: {e}")
        try:
            os.rename(tmp, path)
            logging.debug(f"Created state directory {path}")
        except OSError as e:
            os.rmdir(tmp)
            # Lost a race: verify whatever is there now
            if e.errno not in (errno.EEXIST, errno.ENOTEMPTY, errno.EISDIR, errno.ENOTDIR):
                raise StateDirError(f"Cannot move state directory into place at {path}: {e}")

    st = _lstat_or_fail(path)
    if stat.S_ISLNK(st.st_mode):
        raise StateDirError(f"State directory {path} is a symlink")
    if not stat.S_ISDIR(st.st_mode):
        raise StateDirError(f"State directory {path} is not a directory")

    try:
        if st.st_uid != uid:
            os.chown(path, uid, -1, follow_symlinks=False)
        if stat.S_IMODE(st.st_mode) != 0o700:
            os.chmod(path, 0o700)
    except OSError as e:
        raise StateDirError(f"Cannot secure state directory {path}: {e}")

    st = _lstat_or_fail(path)
    if stat.S_ISLNK(st.st_mode) or not stat.S_ISDIR(st.st_mode):
        raise StateDirError(f"State directory {path} changed type while securing it")
    if st.st_uid != uid:
        raise StateDirError(f"State directory {path} is owned by uid {st.st_uid}, not {uid}")
    if stat.S_IMODE(st.st_mode) != 0o700:
        raise StateDirError(f"State directory {path} has mode {stat.S_IMODE(st.st_mode):o}, not 700")
    if not os.access(path, os.W_OK | os.X_OK):
        raise StateDirError(f"State directory {path} is not writable")
    return path


def _lstat_or_fail(path):
    try:
        return os.lstat(path)
    except OSError as e:
        raise StateDirError(f"Cannot stat state directory {path}: {e}")


# =============================
# Result store
# =============================
class ResultStore:
    """
    Latest output (``<subject>.out``) and last committed result
    (``<subject>.save``) for one subject and effective user.

    Use as a context manager: the working ``.out`` artifact is removed on
    every exit path, including SystemExit raised from a signal handler.
    """

    def __init__(self, base_dir, subject, uid=None):
        self.base_dir = base_dir
        self.subject = os.path.basename(subject)
        self.uid = os.geteuid() if uid is None else uid
        self.out_path = os.path.join(base_dir, f"{self.subject}.out")
        self.save_path = os.path.join(base_dir, f"{self.subject}.save")
        self._secured = False

    def __enter__(self):
        self.ensure_state_dir()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    def ensure_state_dir(self):
        ensure_state_dir(self.base_dir, self.uid)
        self._secured = True

    def _require_secured(self):
        if not self._secured:
            raise StateDirError(f"State directory {self.base_dir} has not been secured")

    # -- working output ------------------------------------------------------

    def open_output(self):
        """Recreate the .out artifact (never append) and return a binary handle."""
        self._require_secured()
        try:
            os.unlink(self.out_path)
        except FileNotFoundError:
            pass
        fd = os.open(self.out_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        return os.fdopen(fd, "wb")

    def read_output(self) -> bytes:
        with open(self.out_path, "rb") as f:
            return f.read()

    def promote_output(self):
        """Atomically make the latest output the saved result."""
        os.replace(self.out_path, self.save_path)
        logging.debug(f"{self.subject}: saved result updated ({self.save_path})")

    def discard_output(self):
        _remove(self.out_path)

    # -- saved result --------------------------------------------------------

    def load_previous(self) -> Optional[SavedResult]:
        self._require_secured()
        try:
            with open(self.save_path, "rb") as f:
                data = f.read()
                st = os.fstat(f.fileno())
        except FileNotFoundError:
            return None
        return SavedResult(path=self.save_path, data=data, saved_time=canonical_time(st))

    def clear_saved(self):
        _remove(self.save_path)

    @staticmethod
    def age_seconds(saved: SavedResult, now=None) -> int:
        if now is None:
            now = time.time()
        return int(now - saved.saved_time)

    def expire(self, expire_after, fudge, now=None) -> bool:
        """
        Delete the saved result when ``now + fudge - saved_time >= expire_after``.

        ``now`` should be the moment the subject was started so its runtime
        does not count toward staleness. Returns True if it was deleted.
        """
        if not expire_after or expire_after <= 0:
            return False
        try:
            st = os.stat(self.save_path)
        except FileNotFoundError:
            return False
        if now is None:
            now = time.time()
        saved_time = canonical_time(st)
        if now + fudge - saved_time >= expire_after:
            logging.info(
                f"{self.subject}: saved result is {int(now - saved_time)}s old "
                f"(expire={expire_after}s, fudge={fudge}s); expiring"
            )
            self.clear_saved()
            return True
        return False

    # -- lifecycle -----------------------------------------------------------

    def cleanup(self):
        self.discard_output()


def _remove(path):
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
