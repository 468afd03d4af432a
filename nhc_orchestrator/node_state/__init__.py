"""
Resource-manager node state reconciliation: decide whether an offline node
may be brought back online, and do it.
"""

from .rm_adapters import (
    NodeStateRecord,
    StatusClass,
    RMAdapter,
    PBSAdapter,
    SlurmAdapter,
    LSFAdapter,
    GridEngineAdapter,
    get_adapter,
    run_cmd,
)
from .reconciler import (
    Decision,
    NoteOwner,
    NodeStateReconciler,
    ReconcileResult,
    decide,
)
