"""
nhc_orchestrator package
Out-of-band node health checking: run a health check, cache and diff its output, notify on change,
and bring nodes back online in the resource manager when the health check set them offline.
"""

from .timespec import (
    parse_timespec,
    parse_loop_spec,
    LoopFlags
)
from .result_store import (
    ResultStore,
    SavedResult,
    StateDirError,
    ensure_state_dir
)
from .health_check_runner import (
    HealthCheckRunner,
    Classification,
    RunOutcome,
    run_subject
)
from .notifier import (
    Notifier,
    NotifyKind,
    WebhookTransport,
    MailTransport,
    notify_outcome
)
from .scheduler_loop import (
    SchedulerLoop,
    SignalGuard,
    seconds_until_boundary
)
from .orchestrator_config import (
    OrchestratorConfig,
    ConfigurationError,
    resolve_resource_manager
)
