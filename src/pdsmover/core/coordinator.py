import logging
from typing import Any, List, Optional

from ..config import MoverConfig
from ..exceptions import IdentityMismatchError, MigrationCancelled
from ..identity import IdentityResolver
from ..utils import normalize_handle
from .blobs import BlobSyncEngine
from .deactivation import deactivate_stale_endpoint
from .handover import sign_and_submit_handover
from .lookup import AgentFactory, default_agent_factory, resolve_source
from .session import MigrationSession, MissingBlob, PhaseFlags, WorkflowState
from .status import StatusLike, StatusSink, as_sink

logger = logging.getLogger(__name__)

CREATE_ACCOUNT_LXM = "com.atproto.server.createAccount"


class Migrator:
    """
    Moves an account from its current PDS to a new one.

    Assumptions, same as the web tool this grew out of:
      1. the same password is used on both accounts;
      2. if a step fails (e.g. a 2FA code is needed) the caller reruns
         ``migrate`` with the same values. Phases already recorded as done
         on the session, or switched off in ``PhaseFlags``, are skipped.

    ``migrate`` stops after asking the old PDS to email a PLC token. Once the
    user has the token, call ``sign_plc_operation`` on the same Migrator, or
    rerun ``migrate`` on a resumed session and then sign.
    """

    def __init__(self,
                 flags: Optional[PhaseFlags] = None,
                 session: Optional[MigrationSession] = None,
                 config: Optional[MoverConfig] = None,
                 resolver: Optional[IdentityResolver] = None,
                 agent_factory: Optional[AgentFactory] = None,
                 status: StatusLike = None,
                 cancel: Any = None) -> None:
        self.config = config or MoverConfig()
        self.session = session or MigrationSession()
        if flags is not None:
            self.session.flags = flags
        self._resolver = resolver
        self._agent_factory = agent_factory or default_agent_factory(self.config)
        self._status = as_sink(status)
        self._cancel = cancel

    @property
    def flags(self) -> PhaseFlags:
        return self.session.flags

    @property
    def missing_blobs(self) -> List[MissingBlob]:
        return self.session.missing_blobs

    # ---------- main ----------

    def migrate(self,
                source_handle: str,
                password: str,
                destination_url: str,
                destination_email: str,
                destination_handle: str,
                invite_code: Optional[str] = None,
                status: StatusLike = None,
                two_factor_code: Optional[str] = None) -> MigrationSession:
        """
        Run every enabled phase up to the PLC token request.

        Args:
            source_handle: handle on the old PDS, e.g. alice.bsky.social
            password: the real account password (app passwords cannot create
                accounts or sign PLC operations); reused for the new account
            destination_url: the new PDS, e.g. https://coolnewpds.com
            destination_email: email for the new account
            destination_handle: handle for the new account
            invite_code: invite code from the new PDS, if it wants one
            status: sink or ``fn(message)`` for progress messages
            two_factor_code: the emailed code, when a previous run failed
                with SecondFactorRequiredError
        """
        sink = as_sink(status) if status is not None else self._status
        session = self.session
        flags = session.flags

        handle = normalize_handle(source_handle)
        session.source_handle = handle
        session.destination_url = destination_url.rstrip("/")
        session.destination_email = destination_email
        session.destination_handle = destination_handle
        session.invite_code = invite_code or None
        session.transfer_failures = []

        source_id = resolve_source(handle, self.config, self._get_resolver(),
                                   self._agent_factory, sink)
        session.bind_identity(source_id.did)
        session.source_pds = source_id.pds_url
        did = source_id.did
        source = self._agent_factory(source_id.pds_url)

        sink.status("Logging you in to the old PDS")
        source.login(handle, password, two_factor_code)

        sink.status("Checking that the new PDS is an actual PDS "
                    "(if the url is wrong this takes a while to error out)")
        destination = self._agent_factory(session.destination_url)
        description = destination.describe_server()

        if flags.create_account and not session.has_completed(WorkflowState.ACCOUNT_CREATED):
            self._create_account(source, destination, description.did, did, password, sink)

        sink.status("Logging in with the new account")
        destination.login(did, password)
        session.source = source
        session.destination = destination

        if flags.migrate_repo and not session.has_completed(WorkflowState.REPO_IMPORTED):
            self._migrate_repo(source, destination, did, sink)

        if (flags.migrate_blobs or flags.migrate_missing_blobs) \
                and not session.has_completed(WorkflowState.BLOBS_IMPORTED):
            self._migrate_blobs(source, destination, did, sink)

        if flags.migrate_prefs and not session.has_completed(WorkflowState.PREFS_IMPORTED):
            self._migrate_prefs(source, destination, sink)

        if flags.migrate_plc_record:
            if session.listing_incomplete:
                sink.status("Not requesting a PLC token until every blob has been listed, "
                            "rerun to try the blobs again")
            elif not session.has_reached(WorkflowState.HANDOVER_REQUESTED):
                self._check_cancelled()
                source.request_plc_operation_signature()
                session.advance_to(WorkflowState.HANDOVER_REQUESTED)
                sink.status("Please check your email for a PLC token")
            elif not session.has_reached(WorkflowState.COMPLETE):
                sink.status("A PLC token was already requested, check your email for it")

        logger.info("Migration of %s stopped at %s", did, session.state.value)
        return session

    def sign_plc_operation(self, token: str, status: StatusLike = None) -> None:
        """Sign and submit the PLC operation that officially moves the account."""
        sink = as_sink(status) if status is not None else self._status
        sign_and_submit_handover(self.session, token, sink)

    def deactivate_old_account(self, old_handle: str, old_password: str,
                               status: StatusLike = None,
                               two_factor_code: Optional[str] = None) -> str:
        """Deactivate the account on the PDS the user moved away from."""
        sink = as_sink(status) if status is not None else self._status
        return deactivate_stale_endpoint(
            old_handle, old_password, sink, two_factor_code,
            resolver=self._get_resolver(),
            agent_factory=self._agent_factory,
            config=self.config,
        )

    # ---------- phases ----------

    def _create_account(self, source: Any, destination: Any, destination_did: str,
                        did: str, password: str, sink: StatusSink) -> None:
        self._check_cancelled()
        session = self.session
        sink.status("Creating a new account on the new PDS")
        service_token = source.get_service_auth(destination_did, CREATE_ACCOUNT_LXM)
        created_did = destination.create_account(
            did=did,
            handle=session.destination_handle,
            email=session.destination_email,
            password=password,
            service_token=service_token,
            invite_code=session.invite_code,
        )
        if created_did != did:
            raise IdentityMismatchError(
                did, created_did,
                "Did not create the new account with the same did as the old account",
            )
        session.advance_to(WorkflowState.ACCOUNT_CREATED)

    def _migrate_repo(self, source: Any, destination: Any, did: str, sink: StatusSink) -> None:
        self._check_cancelled()
        sink.status("Migrating your repo")
        car = source.get_repo(did)
        logger.info("Exported repo of %s (%d bytes)", did, len(car))
        destination.import_repo(car)
        self.session.advance_to(WorkflowState.REPO_IMPORTED)

    def _migrate_blobs(self, source: Any, destination: Any, did: str, sink: StatusSink) -> None:
        session = self.session
        flags = session.flags
        engine = BlobSyncEngine(source, destination, did, sink, self.config, self._cancel)

        if flags.migrate_blobs:
            self._check_cancelled()
            sink.status("Migrating your blobs")
            account = destination.check_account_status()
            result = engine.sync_all(account.expected_blobs)
            session.transfer_failures = list(result.failures)
            session.listing_incomplete = result.listing_incomplete
            if result.listing_incomplete:
                sink.status("Could not list every blob on the old PDS, "
                            "relying on the new PDS to report what is missing")

        if flags.migrate_missing_blobs:
            self._check_cancelled()
            account = destination.check_account_status()
            # the new PDS's own view of what is missing is authoritative,
            # so a gap in the old PDS's listing is closed here
            session.listing_incomplete = False
            if account.expected_blobs != account.imported_blobs:
                sink.status("Looks like there are some missing blobs. "
                            "Going to try and upload them now.")
                result = engine.transfer_missing(account.missing_blobs)
                for failure in result.failures:
                    session.add_missing_blob(failure.cid, failure.error)
                session.listing_incomplete = result.listing_incomplete
            if session.listing_incomplete:
                # blobs the main pass failed on may never have been listed again
                for failure in session.transfer_failures:
                    session.add_missing_blob(failure.cid, failure.error)
                sink.status("Could not list every missing blob on the new PDS, "
                            "rerun to try the blobs again")
            else:
                session.advance_to(WorkflowState.BLOBS_IMPORTED)
        else:
            for failure in session.transfer_failures:
                session.add_missing_blob(failure.cid, failure.error)

        if session.missing_blobs:
            sink.status(f"{len(session.missing_blobs)} blob(s) could not be migrated, "
                        "they are listed so you can upload them by hand")

    def _migrate_prefs(self, source: Any, destination: Any, sink: StatusSink) -> None:
        self._check_cancelled()
        sink.status("Migrating your preferences")
        prefs = source.get_preferences()
        destination.put_preferences(prefs)
        self.session.advance_to(WorkflowState.PREFS_IMPORTED)

    # ---------- helpers ----------

    def _get_resolver(self) -> IdentityResolver:
        if self._resolver is None:
            self._resolver = IdentityResolver(self.config)
        return self._resolver

    def _check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise MigrationCancelled("Migration cancelled")
