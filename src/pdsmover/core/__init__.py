"""
Core package: the migration workflow.
Exposes the Migrator, which drives a MigrationSession through its phases,
the PLC handover step and the stale-account deactivation workflow.
"""

from .blobs import BlobSyncEngine, BlobSyncResult
from .coordinator import Migrator
from .deactivation import deactivate_stale_endpoint, find_prior_endpoint
from .handover import sign_and_submit_handover
from .session import MigrationSession, MissingBlob, PhaseFlags, SessionStore, WorkflowState
from .status import (
    CallbackStatusSink,
    LoggingStatusSink,
    NullStatusSink,
    RecordingStatusSink,
    StatusSink,
    TqdmStatusSink,
)

__all__ = [
    "BlobSyncEngine",
    "BlobSyncResult",
    "CallbackStatusSink",
    "LoggingStatusSink",
    "MigrationSession",
    "Migrator",
    "MissingBlob",
    "NullStatusSink",
    "PhaseFlags",
    "RecordingStatusSink",
    "SessionStore",
    "StatusSink",
    "TqdmStatusSink",
    "WorkflowState",
    "deactivate_stale_endpoint",
    "find_prior_endpoint",
    "sign_and_submit_handover",
]
