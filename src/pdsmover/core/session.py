"""
Per-run migration state.

A MigrationSession records who is being moved, where to, how far the
workflow got (WorkflowState) and which blobs could not be copied. It can be
saved to a JSON file so a later invocation, e.g. once the PLC token email
arrives, picks up where the previous one stopped. Logged-in agents are
never saved; every run logs in again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..exceptions import IdentityMismatchError, MigrationStateError

logger = logging.getLogger(__name__)


class WorkflowState(Enum):
    """
    How far a migration has progressed, in order:

        NOT_STARTED -> ACCOUNT_CREATED -> REPO_IMPORTED -> BLOBS_IMPORTED
            -> PREFS_IMPORTED -> HANDOVER_REQUESTED -> COMPLETE

    Each phase records the state it produces in the session's completed
    set. A phase runs only while its own state is missing from that set, so
    rerunning a finished phase is a no-op and a phase that was skipped or
    left unfinished still runs on a later pass even though later phases
    moved the overall state past it.
    """

    NOT_STARTED = "not_started"
    ACCOUNT_CREATED = "account_created"
    REPO_IMPORTED = "repo_imported"
    BLOBS_IMPORTED = "blobs_imported"
    PREFS_IMPORTED = "prefs_imported"
    HANDOVER_REQUESTED = "handover_requested"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)


_STATE_ORDER = list(WorkflowState)


@dataclass
class PhaseFlags:
    """Which phases the caller wants on this run. A False flag skips its phase."""

    create_account: bool = True
    migrate_repo: bool = True
    migrate_blobs: bool = True
    migrate_missing_blobs: bool = True
    migrate_prefs: bool = True
    migrate_plc_record: bool = True

    @classmethod
    def handover_only(cls) -> "PhaseFlags":
        return cls(
            create_account=False,
            migrate_repo=False,
            migrate_blobs=False,
            migrate_missing_blobs=False,
            migrate_prefs=False,
            migrate_plc_record=True,
        )


@dataclass
class MissingBlob:
    """A blob that could not be copied, with the reason, for manual follow-up."""

    cid: str
    error: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"cid": self.cid, "error": self.error}


@dataclass
class MigrationSession:
    source_handle: str = ""
    destination_url: str = ""
    destination_email: str = ""
    destination_handle: str = ""
    invite_code: Optional[str] = None

    did: Optional[str] = None
    source_pds: Optional[str] = None

    flags: PhaseFlags = field(default_factory=PhaseFlags)
    # furthest state recorded so far
    state: WorkflowState = WorkflowState.NOT_STARTED
    # states whose phase actually finished; empty means "everything up to state"
    completed: Set[WorkflowState] = field(default_factory=set)

    missing_blobs: List[MissingBlob] = field(default_factory=list)
    # failures of the current run's main blob pass, before reconciliation
    transfer_failures: List[MissingBlob] = field(default_factory=list)
    listing_incomplete: bool = False

    source: Any = field(default=None, repr=False, compare=False)
    destination: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.completed:
            self.completed = {s for s in WorkflowState if 0 < s.rank <= self.state.rank}

    # ---------- state ----------

    def has_reached(self, state: WorkflowState) -> bool:
        return self.state.rank >= state.rank

    def has_completed(self, state: WorkflowState) -> bool:
        """True once the phase producing ``state`` has finished, whatever ran after it."""
        return state in self.completed

    def advance_to(self, state: WorkflowState) -> None:
        """Record ``state`` as finished; the overall state never moves backwards."""
        self.completed.add(state)
        if self.has_reached(state):
            return
        logger.debug("Migration state %s -> %s", self.state.value, state.value)
        self.state = state

    def bind_identity(self, did: str) -> None:
        if self.did and self.did != did:
            raise IdentityMismatchError(
                self.did, did,
                f"Saved migration state belongs to {self.did}, but the handle resolves to {did}",
            )
        self.did = did

    def require_agents(self) -> None:
        if self.source is None or self.destination is None:
            raise MigrationStateError(
                "Not logged in to both PDSes; run migrate first in this process"
            )

    # ---------- missing blobs ----------

    def add_missing_blob(self, cid: str, error: str = "") -> bool:
        """Append a blob to the missing list unless it is already there."""
        if any(m.cid == cid for m in self.missing_blobs):
            return False
        self.missing_blobs.append(MissingBlob(cid, error))
        return True

    @property
    def missing_cids(self) -> List[str]:
        return [m.cid for m in self.missing_blobs]

    # ---------- serialization ----------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_handle": self.source_handle,
            "destination_url": self.destination_url,
            "destination_email": self.destination_email,
            "destination_handle": self.destination_handle,
            "invite_code": self.invite_code,
            "did": self.did,
            "source_pds": self.source_pds,
            "state": self.state.value,
            "completed": [s.value for s in sorted(self.completed, key=lambda s: s.rank)],
            "missing_blobs": [m.to_dict() for m in self.missing_blobs],
            "listing_incomplete": self.listing_incomplete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  flags: Optional[PhaseFlags] = None) -> "MigrationSession":
        return cls(
            source_handle=data.get("source_handle", ""),
            destination_url=data.get("destination_url", ""),
            destination_email=data.get("destination_email", ""),
            destination_handle=data.get("destination_handle", ""),
            invite_code=data.get("invite_code"),
            did=data.get("did"),
            source_pds=data.get("source_pds"),
            flags=flags or PhaseFlags(),
            state=WorkflowState(data.get("state", WorkflowState.NOT_STARTED.value)),
            completed={WorkflowState(v) for v in data.get("completed") or []},
            missing_blobs=[
                MissingBlob(m["cid"], m.get("error", "")) for m in data.get("missing_blobs") or []
            ],
            listing_incomplete=bool(data.get("listing_incomplete", False)),
        )


class SessionStore:
    """Saves a MigrationSession as JSON so a later run can resume it."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, session: MigrationSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(session.to_dict(), indent=2), encoding="utf-8")
        logger.info("Saved migration state (%s) to %s", session.state.value, self.path)

    def load(self, flags: Optional[PhaseFlags] = None) -> MigrationSession:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise MigrationStateError(f"No saved migration state at {self.path}") from e
        except json.JSONDecodeError as e:
            raise MigrationStateError(f"Saved migration state is corrupt: {self.path}") from e
        session = MigrationSession.from_dict(data, flags)
        logger.info("Loaded migration state (%s) from %s", session.state.value, self.path)
        return session
