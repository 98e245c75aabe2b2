import logging
from typing import Any, Dict

from ..exceptions import HandoverError, MigrationStateError
from .session import MigrationSession, WorkflowState
from .status import StatusLike, as_sink

logger = logging.getLogger(__name__)


def sign_and_submit_handover(session: MigrationSession, token: str,
                             status: StatusLike = None) -> None:
    """
    Point the DID at the new PDS, then switch which account is live.

    The old PDS signs a PLC operation carrying the new PDS's recommended
    credentials and the emailed token; the new PDS submits it. The new
    account is activated before the old one is deactivated so there is
    always one active copy.
    """
    sink = as_sink(status)
    if session.has_reached(WorkflowState.COMPLETE):
        raise MigrationStateError("This migration has already been completed")
    if not session.has_reached(WorkflowState.HANDOVER_REQUESTED):
        raise MigrationStateError(
            "No PLC token has been requested yet; run migrate with the PLC step enabled first"
        )
    if not token or not token.strip():
        raise HandoverError("A PLC token from the email is required")
    session.require_agents()
    source, destination = session.source, session.destination

    sink.status("Fetching the recommended DID credentials from the new PDS")
    recommended = destination.get_recommended_did_credentials()
    credentials = _credentials_with_rotation_keys(recommended)

    sink.status("Signing the PLC operation with the old PDS")
    operation = source.sign_plc_operation(token.strip(), credentials)

    sink.status("Submitting the PLC operation through the new PDS")
    destination.submit_plc_operation(operation)
    logger.info("Submitted PLC operation for %s", session.did)

    sink.status("Activating your new account")
    destination.activate_account()
    sink.status("Deactivating your old account")
    source.deactivate_account()

    session.advance_to(WorkflowState.COMPLETE)
    sink.status("Migration complete")


def _credentials_with_rotation_keys(recommended: Dict[str, Any]) -> Dict[str, Any]:
    rotation_keys = recommended.get("rotationKeys") or []
    if not rotation_keys:
        raise HandoverError("No rotation key provided from the new PDS")
    credentials = dict(recommended)
    credentials["rotationKeys"] = list(rotation_keys)
    return credentials
