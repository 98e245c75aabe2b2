"""
Deactivating a stale PDS account.

For people who already moved (with this tool or another one) but whose old
account is still active. The PLC log tells us which PDS the DID pointed at
before the current one; that is the account we log in to and deactivate.
The current PDS is never touched.
"""

import logging
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlparse

from ..config import MoverConfig
from ..exceptions import NoPriorEndpointError, PriorIsCurrentError
from ..identity import IdentityResolver
from ..utils import normalize_handle, same_endpoint
from .lookup import AgentFactory, default_agent_factory, lookup_did
from .status import StatusLike, as_sink

logger = logging.getLogger(__name__)


def pds_endpoint_of(entry: Dict[str, Any]) -> Optional[str]:
    """PDS endpoint declared by one PLC log entry, if it declares one."""
    op = entry.get("operation", entry)
    services = op.get("services") or {}
    endpoint = (services.get("atproto_pds") or {}).get("endpoint")
    if endpoint:
        return endpoint
    # genesis operations from before the services map
    if op.get("type") == "create" and op.get("service"):
        return op["service"]
    return None


def find_prior_endpoint(log: Iterable[Dict[str, Any]], current: str) -> Optional[str]:
    """Last PDS the log lists before it first reaches ``current``."""
    prior: Optional[str] = None
    for entry in log:
        endpoint = pds_endpoint_of(entry)
        if endpoint is None:
            continue
        logger.debug("PLC log endpoint: %s", endpoint)
        if same_endpoint(endpoint, current):
            logger.debug("Found the PDS before the current one")
            break
        prior = endpoint
    return prior


def _is_same_server(old: Any, prior: str, current: str) -> bool:
    """
    A PDS reachable under a second address (an alias, a proxy) still reports
    its own service DID, which is did:web of its canonical host.
    """
    host = urlparse(current).hostname
    if not host:
        return False
    server_did = old.describe_server().did
    logger.debug("Old PDS %s identifies as %s", prior, server_did)
    return server_did.lower() == f"did:web:{host.lower()}"


def deactivate_stale_endpoint(handle: str,
                              password: str,
                              status: StatusLike = None,
                              two_factor_code: Optional[str] = None,
                              resolver: Optional[IdentityResolver] = None,
                              agent_factory: Optional[AgentFactory] = None,
                              config: Optional[MoverConfig] = None) -> str:
    """
    Deactivate the account on the PDS used before the current one.

    Args:
        handle: the account's handle
        password: the password of the OLD account
        status: sink or ``fn(message)`` for progress messages
        two_factor_code: emailed code if the old PDS asks for one

    Returns:
        The endpoint that was deactivated.
    """
    config = config or MoverConfig()
    resolver = resolver if resolver is not None else IdentityResolver(config)
    agent_factory = agent_factory or default_agent_factory(config)
    sink = as_sink(status)

    handle = normalize_handle(handle)
    did = lookup_did(handle, config, resolver, agent_factory, sink)
    current = resolver.resolve_pds(did)

    sink.status("Looking up your PDS history")
    log = resolver.fetch_plc_log(did)
    prior = find_prior_endpoint(log, current)
    if not prior:
        raise NoPriorEndpointError(did, current)

    old = agent_factory(prior)
    sink.status("Checking this isn't your current PDS")
    if _is_same_server(old, prior, current):
        raise PriorIsCurrentError(prior)

    sink.status(f"Logging you in to the old PDS: {prior}")
    old.login(did, password, two_factor_code)

    account = old.check_account_status()
    if not account.activated:
        sink.status("All good. Your old account is not activated.")

    sink.status("Deactivating your OLD account")
    old.deactivate_account()
    logger.info("Deactivated %s on %s (current PDS %s)", did, prior, current)
    sink.status("Successfully deactivated your OLD account")
    return prior
