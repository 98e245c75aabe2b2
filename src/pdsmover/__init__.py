"""
pdsmover: move an AT Protocol account from one PDS to another.

    >>> from pdsmover import Migrator
    >>> migrator = Migrator()
    >>> migrator.migrate("alice.bsky.social", password, "https://coolnewpds.com",
    ...                  "alice@example.com", "alice.coolnewpds.com", status=print)
    >>> # ...wait for the PLC token email...
    >>> migrator.sign_plc_operation(token)
"""

from .config import MoverConfig
from .core import (
    MigrationSession,
    Migrator,
    MissingBlob,
    PhaseFlags,
    SessionStore,
    StatusSink,
    WorkflowState,
    deactivate_stale_endpoint,
    sign_and_submit_handover,
)
from .exceptions import PdsMoverError

__version__ = "0.1.0"

__all__ = [
    "MigrationSession",
    "Migrator",
    "MissingBlob",
    "MoverConfig",
    "PdsMoverError",
    "PhaseFlags",
    "SessionStore",
    "StatusSink",
    "WorkflowState",
    "deactivate_stale_endpoint",
    "sign_and_submit_handover",
]
