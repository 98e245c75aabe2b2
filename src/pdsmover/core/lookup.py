import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..config import MoverConfig
from ..identity import IdentityResolver
from ..pds import PdsAgent
from .status import StatusSink

logger = logging.getLogger(__name__)

AgentFactory = Callable[[str], Any]


def default_agent_factory(config: MoverConfig) -> AgentFactory:
    def make(service_url: str) -> PdsAgent:
        return PdsAgent(service_url, timeout=config.timeout, user_agent=config.user_agent)
    return make


@dataclass
class SourceIdentity:
    did: str
    pds_url: str
    via_entryway: bool = False


def lookup_did(handle: str, config: MoverConfig, resolver: IdentityResolver,
               agent_factory: AgentFactory, status: StatusSink) -> str:
    """
    DID for a handle. Entryway-hosted handles are asked of the public AppView,
    which always knows them; anything else goes through DNS / well-known.
    """
    if config.is_entryway_handle(handle):
        public = agent_factory(config.public_api_url)
        return public.resolve_handle(handle)
    status.status("Resolving did from handle")
    return resolver.resolve_handle(handle)


def resolve_source(handle: str, config: MoverConfig, resolver: IdentityResolver,
                   agent_factory: AgentFactory, status: StatusSink) -> SourceIdentity:
    """DID and PDS the account is on today."""
    if config.is_entryway_handle(handle):
        # the entryway proxies to the account's real PDS
        did = lookup_did(handle, config, resolver, agent_factory, status)
        logger.info("Resolved %s to %s through the entryway", handle, did)
        return SourceIdentity(did=did, pds_url=config.entryway_url, via_entryway=True)

    status.status("Resolving old PDS")
    did = resolver.resolve_handle(handle)
    status.status("Resolving did document and finding your current PDS URL")
    pds_url = resolver.resolve_pds(did)
    logger.info("Resolved %s to %s on %s", handle, did, pds_url)
    return SourceIdentity(did=did, pds_url=pds_url)
