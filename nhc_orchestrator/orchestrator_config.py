import os
import shutil
import tempfile
import logging
from dataclasses import dataclass, fields
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class ConfigurationError(Exception):
    """Fatal configuration problem (unsupported RM, malformed argument)."""


EXIT_CONFIG_ERROR = 78
EXIT_STATE_DIR_ERROR = 73

# Resource manager aliases accepted from the environment / command line
RM_ALIASES = {
    "pbs": "pbs",
    "torque": "pbs",
    "openpbs": "pbs",
    "slurm": "slurm",
    "lsf": "lsf",
    "sge": "sge",
    "uge": "sge",
    "soge": "sge",
    "gridengine": "sge",
}

# Command probed on PATH -> resource manager
RM_PROBES = (
    ("pbsnodes", "pbs"),
    ("sinfo", "slurm"),
    ("bhosts", "lsf"),
    ("qhost", "sge"),
)


def default_state_dir(euid=None):
    """<tmp>/nhc-wrapper-<euid>"""
    if euid is None:
        euid = os.geteuid()
    return os.path.join(tempfile.gettempdir(), f"nhc-wrapper-{euid}")


@dataclass
class OrchestratorConfig:
    # =============================
    # Resource manager settings
    # =============================
    resource_manager: str = ""
    leader: str = "NHC:"
    ignore_empty_note: bool = False
    notify_foreign: bool = False
    rm_timeout: int = 60

    # =============================
    # Wrapped subject settings
    # =============================
    subject: str = "nhc"
    state_dir: str = ""
    expire_spec: str = ""

    # =============================
    # Notification settings
    # =============================
    notify_destination: str = ""
    webhook_url: str = ""
    notify_username: str = "nhc"
    notify_icon: str = ":hospital:"
    notify_retries: int = 3
    notify_retry_interval: int = 5
    notify_log_path: str = ""

    # =============================
    # Display / logging
    # =============================
    display_timezone: str = ""
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.state_dir:
            self.state_dir = default_state_dir()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigurationError(f"NHC_LOG_LEVEL: unknown log level {self.log_level!r}")
        if self.display_timezone:
            try:
                ZoneInfo(self.display_timezone)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ConfigurationError(f"NHC_TIMEZONE: unknown time zone {self.display_timezone!r} ({e})")

    @classmethod
    def from_env(cls, environ=None):
        """Build a config from NHC_* environment variables.

        Only names present in the environment override the dataclass
        defaults, so an empty environment yields ``OrchestratorConfig()``.
        """
        env = os.environ if environ is None else environ
        get = env.get

        def flag(name, default="false"):
            return get(name, default).lower() in ("1", "true", "yes")

        def integer(name, default):
            raw = get(name, str(default))
            try:
                return int(raw)
            except ValueError:
                raise ConfigurationError(f"{name} must be an integer, got {raw!r}")

        return cls(
            resource_manager=get("NHC_RM", "").strip().lower(),
            leader=get("NHC_LEADER", "NHC:"),
            ignore_empty_note=flag("IGNORE_EMPTY_NOTE"),
            notify_foreign=flag("NHC_NOTIFY_FOREIGN"),
            rm_timeout=integer("NHC_RM_TIMEOUT", 60),
            subject=get("NHC_SUBJECT", "nhc"),
            state_dir=get("NHC_STATE_DIR", ""),
            expire_spec=get("NHC_EXPIRE", ""),
            notify_destination=get("NHC_NOTIFY_DEST", get("MAILTO", "")),
            webhook_url=get("NHC_WEBHOOK_URL", ""),
            notify_username=get("NHC_NOTIFY_USERNAME", "nhc"),
            notify_icon=get("NHC_NOTIFY_ICON", ":hospital:"),
            notify_retries=integer("NHC_NOTIFY_RETRIES", 3),
            notify_retry_interval=integer("NHC_NOTIFY_RETRY_INTERVAL", 5),
            notify_log_path=get("NHC_NOTIFY_LOG", ""),
            display_timezone=get("NHC_TIMEZONE", ""),
            log_level=get("NHC_LOG_LEVEL", "INFO").upper(),
        )

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# =============================
# Resource manager resolution
# =============================
def resolve_resource_manager(name: str, which=shutil.which) -> str:
    """
    Map a configured RM identifier to its canonical name (see RM_ALIASES).

    An empty name triggers detection by probing the RM CLIs on PATH.
    Raises ConfigurationError for unknown identifiers or when nothing is found.
    """
    name = (name or "").strip().lower()
    if name:
        rm = RM_ALIASES.get(name)
        if rm is None:
            raise ConfigurationError(f"Unsupported resource manager: {name!r}")
        return rm

    for command, rm in RM_PROBES:
        if which(command):
            logging.debug(f"Detected resource manager {rm} via {command}")
            return rm
    raise ConfigurationError("Unable to detect a resource manager; set NHC_RM")
