# src/pdsmover/pds/agent.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .client import XrpcClient

logger = logging.getLogger(__name__)

CAR_CONTENT_TYPE = "application/vnd.ipld.car"


@dataclass
class ServerDescription:
    did: str
    available_user_domains: List[str] = field(default_factory=list)
    invite_code_required: bool = False


@dataclass
class AccountStatus:
    activated: bool
    expected_blobs: int = 0
    imported_blobs: int = 0

    @property
    def missing_blobs(self) -> int:
        return max(self.expected_blobs - self.imported_blobs, 0)


@dataclass
class BlobPage:
    cids: List[str]
    cursor: Optional[str] = None


@dataclass
class Blob:
    data: bytes
    content_type: str


class PdsAgent:
    """
    Typed wrapper around one PDS:
      - session login
      - server/account endpoints
      - repo, blob and preferences transfer
      - PLC operation signing
    """

    def __init__(self, service_url: str, timeout: float = 120.0,
                 user_agent: str = "pdsmover") -> None:
        self.service_url = service_url.rstrip("/")
        self._client = XrpcClient(self.service_url, timeout=timeout, user_agent=user_agent)

    def __repr__(self) -> str:
        return f"PdsAgent({self.service_url!r})"

    @property
    def did(self) -> Optional[str]:
        return self._client.did

    def login(self, identifier: str, password: str,
              auth_factor_token: Optional[str] = None) -> None:
        self._client.login(identifier, password, auth_factor_token)

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # Identity lookups (unauthenticated, AppView or PDS)
    # -------------------------------------------------------------------------

    def resolve_handle(self, handle: str) -> str:
        data = self._client.query("com.atproto.identity.resolveHandle", {"handle": handle}).json()
        return data["did"]

    # -------------------------------------------------------------------------
    # Server & account
    # -------------------------------------------------------------------------

    def describe_server(self) -> ServerDescription:
        data = self._client.query("com.atproto.server.describeServer").json()
        return ServerDescription(
            did=data["did"],
            available_user_domains=list(data.get("availableUserDomains") or []),
            invite_code_required=bool(data.get("inviteCodeRequired", False)),
        )

    def get_service_auth(self, aud: str, lxm: str) -> str:
        """Issue a short lived service JWT scoped to one audience and method."""
        data = self._client.query(
            "com.atproto.server.getServiceAuth", {"aud": aud, "lxm": lxm}
        ).json()
        return data["token"]

    def create_account(
        self,
        did: str,
        handle: str,
        email: str,
        password: str,
        service_token: str,
        invite_code: Optional[str] = None,
    ) -> str:
        """Create an account for an existing DID; returns the DID the PDS assigned."""
        body: Dict[str, Any] = {
            "did": did,
            "handle": handle,
            "email": email,
            "password": password,
        }
        if invite_code:
            body["inviteCode"] = invite_code
        data = self._client.procedure(
            "com.atproto.server.createAccount",
            body,
            headers={"Authorization": f"Bearer {service_token}"},
        ).json()
        return data.get("did", "")

    def check_account_status(self) -> AccountStatus:
        data = self._client.query("com.atproto.server.checkAccountStatus").json()
        return AccountStatus(
            activated=bool(data.get("activated", False)),
            expected_blobs=int(data.get("expectedBlobs") or 0),
            imported_blobs=int(data.get("importedBlobs") or 0),
        )

    def activate_account(self) -> None:
        self._client.procedure("com.atproto.server.activateAccount")

    def deactivate_account(self) -> None:
        self._client.procedure("com.atproto.server.deactivateAccount", {})

    # -------------------------------------------------------------------------
    # Repo & blobs
    # -------------------------------------------------------------------------

    def get_repo(self, did: str) -> bytes:
        return self._client.query("com.atproto.sync.getRepo", {"did": did}).content

    def import_repo(self, car: bytes) -> None:
        self._client.procedure("com.atproto.repo.importRepo", data=car,
                               content_type=CAR_CONTENT_TYPE)

    def list_blobs(self, did: str, cursor: Optional[str] = None, limit: int = 100) -> BlobPage:
        data = self._client.query(
            "com.atproto.sync.listBlobs", {"did": did, "cursor": cursor, "limit": limit}
        ).json()
        return BlobPage(cids=list(data.get("cids") or []), cursor=data.get("cursor") or None)

    def get_blob(self, did: str, cid: str) -> Blob:
        resp = self._client.query("com.atproto.sync.getBlob", {"did": did, "cid": cid})
        content_type = resp.headers.get("Content-Type") or "application/octet-stream"
        return Blob(data=resp.content, content_type=content_type)

    def upload_blob(self, data: bytes, content_type: str) -> None:
        self._client.procedure("com.atproto.repo.uploadBlob", data=data,
                               content_type=content_type)

    def list_missing_blobs(self, cursor: Optional[str] = None, limit: int = 100) -> BlobPage:
        data = self._client.query(
            "com.atproto.repo.listMissingBlobs", {"cursor": cursor, "limit": limit}
        ).json()
        cids = [b["cid"] for b in data.get("blobs") or [] if b.get("cid")]
        return BlobPage(cids=cids, cursor=data.get("cursor") or None)

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    def get_preferences(self) -> Dict[str, Any]:
        return self._client.query("app.bsky.actor.getPreferences").json()

    def put_preferences(self, prefs: Dict[str, Any]) -> None:
        self._client.procedure("app.bsky.actor.putPreferences", prefs)

    # -------------------------------------------------------------------------
    # PLC operations
    # -------------------------------------------------------------------------

    def get_recommended_did_credentials(self) -> Dict[str, Any]:
        return self._client.query("com.atproto.identity.getRecommendedDidCredentials").json()

    def request_plc_operation_signature(self) -> None:
        self._client.procedure("com.atproto.identity.requestPlcOperationSignature")

    def sign_plc_operation(self, token: str, credentials: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(credentials)
        body["token"] = token
        data = self._client.procedure("com.atproto.identity.signPlcOperation", body).json()
        return data["operation"]

    def submit_plc_operation(self, operation: Dict[str, Any]) -> None:
        self._client.procedure("com.atproto.identity.submitPlcOperation",
                               {"operation": operation})
