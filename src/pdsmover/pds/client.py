import logging
from typing import Any, Dict, Optional

import requests

from ..exceptions import (
    AuthenticationError,
    PdsMoverError,
    SecondFactorRequiredError,
    XrpcError,
)

logger = logging.getLogger(__name__)

CREATE_SESSION = "com.atproto.server.createSession"
REFRESH_SESSION = "com.atproto.server.refreshSession"


class XrpcClient:
    """Low-level XRPC client bound to a single PDS (or AppView) address."""

    def __init__(self, base_url: str, timeout: float = 120.0,
                 user_agent: str = "pdsmover") -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": user_agent})

        self.access_jwt: Optional[str] = None
        self.refresh_jwt: Optional[str] = None
        self.did: Optional[str] = None
        self.handle: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.access_jwt is not None

    def login(self, identifier: str, password: str,
              auth_factor_token: Optional[str] = None) -> Dict[str, Any]:
        """Create a session and keep its bearer token for later calls."""
        body: Dict[str, Any] = {"identifier": identifier, "password": password}
        if auth_factor_token:
            body["authFactorToken"] = auth_factor_token

        try:
            resp = self._send("POST", CREATE_SESSION, json=body)
        except XrpcError as e:
            if e.error == "AuthFactorTokenRequired":
                raise SecondFactorRequiredError(self.base_url) from e
            raise AuthenticationError(self.base_url, e.server_message or e.error) from e

        data = resp.json()
        if not data.get("accessJwt"):
            raise AuthenticationError(self.base_url, "login succeeded but no token returned")
        self._store_session(data)
        logger.debug("Logged in to %s as %s", self.base_url, self.did)
        return data

    def refresh(self) -> None:
        """Swap the refresh token for a fresh access token."""
        if not self.refresh_jwt:
            raise AuthenticationError(self.base_url, "no session to refresh")
        resp = self._send(
            "POST", REFRESH_SESSION,
            headers={"Authorization": f"Bearer {self.refresh_jwt}"},
        )
        self._store_session(resp.json())

    def query(self, nsid: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Perform an XRPC query (HTTP GET)."""
        return self._request("GET", nsid, params=params)

    def procedure(
        self,
        nsid: str,
        json_body: Optional[Dict[str, Any]] = None,
        *,
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """Perform an XRPC procedure (HTTP POST) with a JSON or raw body."""
        extra = dict(headers or {})
        if data is not None:
            extra["Content-Type"] = content_type or "application/octet-stream"
            return self._request("POST", nsid, data=data, headers=extra)
        return self._request("POST", nsid, json=json_body, headers=extra or None)

    def close(self) -> None:
        self._session.close()

    # ---------- internals ----------

    def _store_session(self, data: Dict[str, Any]) -> None:
        self.access_jwt = data.get("accessJwt")
        self.refresh_jwt = data.get("refreshJwt") or self.refresh_jwt
        self.did = data.get("did") or self.did
        self.handle = data.get("handle") or self.handle
        self._session.headers.update({"Authorization": f"Bearer {self.access_jwt}"})

    def _request(self, method: str, nsid: str, **kwargs: Any) -> requests.Response:
        try:
            return self._send(method, nsid, **kwargs)
        except XrpcError as e:
            if e.status == 401 and e.error == "ExpiredToken" and self.refresh_jwt:
                logger.info("401 on %s, refreshing session on %s", nsid, self.base_url)
                self.refresh()
                return self._send(method, nsid, **kwargs)
            raise

    def _send(self, method: str, nsid: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}/xrpc/{nsid}"
        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise PdsMoverError(
                f"Could not reach {self.base_url} ({nsid}): {e}",
                {"service": self.base_url, "nsid": nsid},
            ) from e
        if not resp.ok:
            raise self._error(nsid, resp)
        return resp

    @staticmethod
    def _error(nsid: str, resp: requests.Response) -> XrpcError:
        error = None
        message = None
        try:
            body = resp.json()
            if isinstance(body, dict):
                error = body.get("error")
                message = body.get("message")
        except ValueError:
            message = resp.text[:200] if resp.text else None
        return XrpcError(nsid, resp.status_code, error, message)
