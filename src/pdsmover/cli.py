import argparse
import getpass
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

import http.client as http_client

from .config import MoverConfig
from .core import Migrator, PhaseFlags, SessionStore, TqdmStatusSink, WorkflowState
from .core.deactivation import deactivate_stale_endpoint
from .exceptions import MigrationCancelled, MigrationStateError, PdsMoverError, SecondFactorRequiredError

SENSITIVE_KEYS = {"password", "token", "two_factor_code", "invite_code"}
PASSWORD_ENV = "PDSMOVER_PASSWORD"
DEFAULT_STATE_FILE = Path("pdsmover-state.json")

log = logging.getLogger("pdsmover.cli")


def mask_sensitive(ns: argparse.Namespace) -> dict:
    """Return a dict copy of args with sensitive values masked."""
    data = vars(ns).copy()
    for k in list(data.keys()):
        if k in SENSITIVE_KEYS and data[k]:
            data[k] = "****"
    return data


def configure_logging(debug: bool, log_file: Path | None) -> None:
    level = logging.DEBUG if debug else logging.INFO
    handlers = []
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        handlers=handlers,
    )

    if debug:
        http_client.HTTPConnection.debuglevel = 1  # type: ignore[attr-defined]
        for noisy in ("urllib3", "requests", "httpx"):
            logging.getLogger(noisy).setLevel(logging.DEBUG)
            logging.getLogger(noisy).propagate = True


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Move an AT Protocol account to a new PDS")
    p.add_argument("--debug", action="store_true",
                   help="Enable verbose debug logging (incl. HTTP wire logs).")
    p.add_argument("--log-file", type=Path, default=None,
                   help="Write logs to this file instead of stderr.")
    sub = p.add_subparsers(dest="command", required=True)

    m = sub.add_parser("migrate", help="Copy your account to a new PDS and request a PLC token")
    m.add_argument("-u", "--handle", required=True,
                   help="Your current handle, e.g. alice.bsky.social")
    m.add_argument("-p", "--password",
                   help=f"Your real account password (not an app password). "
                        f"Falls back to ${PASSWORD_ENV}, then a prompt.")
    m.add_argument("--pds", dest="destination_url", required=True,
                   help="The new PDS, e.g. https://coolnewpds.com")
    m.add_argument("--email", required=True, help="Email for the new account")
    m.add_argument("--new-handle", required=True, help="Handle for the new account")
    m.add_argument("--invite-code", help="Invite code from the new PDS, if it needs one")
    m.add_argument("--two-factor-code", help="Code from the email, if login asked for one")
    m.add_argument("--state-file", type=Path, default=DEFAULT_STATE_FILE,
                   help="Where progress is saved so a rerun can pick up from it.")
    for phase, what in (
        ("create-account", "creating the account on the new PDS"),
        ("repo", "migrating the repo"),
        ("blobs", "migrating blobs"),
        ("missing-blobs", "retrying blobs the new PDS reports as missing"),
        ("prefs", "migrating preferences"),
        ("plc", "requesting the PLC token email"),
    ):
        m.add_argument(f"--skip-{phase}", action="store_true", help=f"Skip {what}.")

    h = sub.add_parser("handover", help="Sign and submit the PLC operation with the emailed token")
    h.add_argument("--token", required=True, help="The PLC token from the email")
    h.add_argument("-p", "--password",
                   help=f"Your account password. Falls back to ${PASSWORD_ENV}, then a prompt.")
    h.add_argument("--two-factor-code", help="Code from the email, if login asked for one")
    h.add_argument("--state-file", type=Path, default=DEFAULT_STATE_FILE,
                   help="State saved by the migrate command.")

    d = sub.add_parser("deactivate-old", help="Deactivate the account on the PDS you moved away from")
    d.add_argument("-u", "--handle", required=True, help="Your handle")
    d.add_argument("-p", "--password",
                   help=f"The password of your OLD account. Falls back to ${PASSWORD_ENV}, then a prompt.")
    d.add_argument("--two-factor-code", help="Code from the email, if login asked for one")
    return p


def flags_from_args(args: argparse.Namespace) -> PhaseFlags:
    return PhaseFlags(
        create_account=not args.skip_create_account,
        migrate_repo=not args.skip_repo,
        migrate_blobs=not args.skip_blobs,
        migrate_missing_blobs=not args.skip_missing_blobs,
        migrate_prefs=not args.skip_prefs,
        migrate_plc_record=not args.skip_plc,
    )


def read_password(args: argparse.Namespace) -> str:
    return args.password or os.environ.get(PASSWORD_ENV) or getpass.getpass("Password: ")


def install_cancel_handler() -> threading.Event:
    """First Ctrl-C stops after the current blob; a second one aborts at once."""
    cancel = threading.Event()

    def _on_sigint(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        log.warning("Stopping after the current step, press Ctrl-C again to abort now.")

    signal.signal(signal.SIGINT, _on_sigint)
    return cancel


def run_migrate(args: argparse.Namespace, config: MoverConfig, status: TqdmStatusSink) -> None:
    store = SessionStore(args.state_file)
    flags = flags_from_args(args)
    session = store.load(flags) if store.exists() else None
    migrator = Migrator(flags=flags, session=session, config=config, status=status,
                        cancel=install_cancel_handler())
    try:
        migrator.migrate(
            args.handle,
            read_password(args),
            args.destination_url,
            args.email,
            args.new_handle,
            invite_code=args.invite_code,
            two_factor_code=args.two_factor_code,
        )
    finally:
        store.save(migrator.session)

    for missing in migrator.missing_blobs:
        log.warning("Missing blob %s: %s", missing.cid, missing.error)
    if migrator.session.has_reached(WorkflowState.HANDOVER_REQUESTED):
        log.info("Next: pdsmover handover --token <token from the email> --state-file %s",
                 args.state_file)


def run_handover(args: argparse.Namespace, config: MoverConfig, status: TqdmStatusSink) -> None:
    store = SessionStore(args.state_file)
    session = store.load(PhaseFlags.handover_only())
    if not session.has_reached(WorkflowState.HANDOVER_REQUESTED):
        raise MigrationStateError("No PLC token was requested yet; run the migrate command first")

    migrator = Migrator(session=session, config=config, status=status)
    try:
        # logs in to both PDSes again; finished phases are skipped
        migrator.migrate(
            session.source_handle,
            read_password(args),
            session.destination_url,
            session.destination_email,
            session.destination_handle,
            invite_code=session.invite_code,
            two_factor_code=args.two_factor_code,
        )
        migrator.sign_plc_operation(args.token)
    finally:
        store.save(migrator.session)


def run_deactivate(args: argparse.Namespace, config: MoverConfig, status: TqdmStatusSink) -> None:
    deactivate_stale_endpoint(
        args.handle,
        read_password(args),
        status=status,
        two_factor_code=args.two_factor_code,
        config=config,
    )


COMMANDS = {
    "migrate": run_migrate,
    "handover": run_handover,
    "deactivate-old": run_deactivate,
}


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.debug, args.log_file)
    log.debug("Parsed args (masked): %s", mask_sensitive(args))

    status = TqdmStatusSink()
    try:
        COMMANDS[args.command](args, MoverConfig.from_env(), status)
        log.info("Done.")
    except SecondFactorRequiredError as e:
        log.error("%s", e)
        log.error("Rerun the same command with --two-factor-code <code>.")
        sys.exit(2)
    except MigrationCancelled:
        log.warning("Cancelled. Progress was saved; rerun to continue.")
        sys.exit(130)
    except KeyboardInterrupt:
        log.warning("Interrupted by user.")
        sys.exit(130)
    except PdsMoverError as e:
        log.error("%s", e)
        sys.exit(1)
    except Exception:
        log.exception("Unhandled error during execution")
        sys.exit(1)
    finally:
        status.close()


if __name__ == "__main__":

    main()
