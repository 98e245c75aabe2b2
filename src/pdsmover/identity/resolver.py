import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import httpx

from ..config import MoverConfig
from ..exceptions import ResolutionError

logger = logging.getLogger(__name__)

PDS_SERVICE_TYPE = "AtprotoPersonalDataServer"


class IdentityResolver:
    """
    Resolves handles to DIDs and DIDs to DID documents:
      - handle -> DID via DNS TXT (DNS-over-HTTPS) or /.well-known/atproto-did
      - did:plc and did:web documents
      - the PLC directory audit log
    """

    def __init__(self, config: Optional[MoverConfig] = None,
                 client: Optional[httpx.Client] = None) -> None:
        self._config = config or MoverConfig()
        self._http = client or httpx.Client(
            timeout=self._config.timeout,
            headers={"User-Agent": self._config.user_agent},
            follow_redirects=True,
        )

    def close(self) -> None:
        self._http.close()

    # ---------- handles ----------

    def resolve_handle(self, handle: str) -> str:
        """Return the DID a handle points at; DNS wins over the well-known file."""
        did = self._resolve_dns(handle) or self._resolve_well_known(handle)
        if not did:
            raise ResolutionError(f"Could not resolve handle {handle}", {"handle": handle})
        logger.debug("Resolved %s to %s", handle, did)
        return did

    def _resolve_dns(self, handle: str) -> Optional[str]:
        try:
            resp = self._get(
                self._config.doh_url,
                params={"name": f"_atproto.{handle}", "type": "TXT"},
                headers={"Accept": "application/dns-json"},
            )
        except ResolutionError as e:
            logger.debug("DNS lookup for %s failed: %s", handle, e)
            return None
        if resp.status_code != 200:
            return None
        try:
            answers = resp.json().get("Answer") or []
        except ValueError:
            return None
        for answer in answers:
            # TXT data comes back quoted, long records split into several strings
            data = str(answer.get("data", "")).replace('" "', "").strip('"')
            if data.startswith("did="):
                return data[len("did="):]
        return None

    def _resolve_well_known(self, handle: str) -> Optional[str]:
        try:
            resp = self._get(f"https://{handle}/.well-known/atproto-did")
        except ResolutionError as e:
            logger.debug("Well-known lookup for %s failed: %s", handle, e)
            return None
        if resp.status_code != 200:
            return None
        did = resp.text.strip()
        return did if did.startswith("did:") else None

    # ---------- DID documents ----------

    def resolve_did_document(self, did: str) -> Dict[str, Any]:
        if did.startswith("did:plc:"):
            url = f"{self._config.plc_directory_url.rstrip('/')}/{did}"
        elif did.startswith("did:web:"):
            host = unquote(did[len("did:web:"):])
            url = f"https://{host}/.well-known/did.json"
        else:
            raise ResolutionError(f"Unsupported DID method: {did}", {"did": did})

        resp = self._get(url)
        if resp.status_code != 200:
            raise ResolutionError(
                f"Could not resolve DID document for {did} ({resp.status_code})",
                {"did": did, "status": resp.status_code},
            )
        document = self._json(resp, f"DID document for {did}")
        if not isinstance(document, dict):
            raise ResolutionError(f"Unexpected DID document format for {did}", {"did": did})
        return document

    @staticmethod
    def pds_endpoint(document: Dict[str, Any]) -> str:
        for service in document.get("service") or []:
            if service.get("type") == PDS_SERVICE_TYPE and service.get("serviceEndpoint"):
                return service["serviceEndpoint"]
        raise ResolutionError("Could not find a PDS in the DID document.",
                              {"did": document.get("id")})

    def resolve_pds(self, did: str) -> str:
        return self.pds_endpoint(self.resolve_did_document(did))

    # ---------- PLC log ----------

    def fetch_plc_log(self, did: str) -> List[Dict[str, Any]]:
        """Ordered list of every PLC operation ever applied to the DID."""
        if not did.startswith("did:plc:"):
            raise ResolutionError(f"Only did:plc identities have a PLC log: {did}", {"did": did})
        resp = self._get(f"{self._config.plc_directory_url.rstrip('/')}/{did}/log")
        if resp.status_code != 200:
            raise ResolutionError(
                f"Could not fetch the PLC log for {did} ({resp.status_code})",
                {"did": did, "status": resp.status_code},
            )
        log = self._json(resp, f"PLC log for {did}")
        if not isinstance(log, list):
            raise ResolutionError(f"Unexpected PLC log format: {log!r}", {"did": did})
        return log

    # ---------- transport ----------

    @staticmethod
    def _json(resp: httpx.Response, what: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise ResolutionError(f"{what} is not valid JSON", {"url": str(resp.url)}) from e

    def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        max_retries = max(self._config.max_retries, 1)
        for attempt in range(1, max_retries + 1):
            try:
                return self._http.get(url, **kwargs)
            except httpx.TimeoutException as err:
                if attempt == max_retries:
                    raise ResolutionError(
                        f"Timed out fetching {url} after {max_retries} attempts", {"url": url}
                    ) from err
            except httpx.TransportError as err:
                if attempt == max_retries:
                    raise ResolutionError(
                        f"Could not fetch {url} after {max_retries} attempts: {err}", {"url": url}
                    ) from err
            time.sleep(self._config.retry_delay)
        raise ResolutionError(f"Could not fetch {url}", {"url": url})
