"""
Exceptions raised by pdsmover.

Everything derives from PdsMoverError so callers (the CLI, a web frontend)
can catch a single type and still tell the failure kinds apart.
"""

from typing import Any, Dict, Optional


class PdsMoverError(Exception):
    """Base exception for all migration errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ResolutionError(PdsMoverError):
    """Raised when a handle, DID or DID document cannot be resolved."""


class XrpcError(PdsMoverError):
    """Raised when a PDS answers an XRPC call with an error."""

    def __init__(self, nsid: str, status: int, error: Optional[str] = None,
                 message: Optional[str] = None):
        details: Dict[str, Any] = {"nsid": nsid, "status": status}
        if error:
            details["error"] = error
        text = f"{nsid} failed ({status})"
        if error:
            text += f": {error}"
        if message:
            text += f" - {message}"
        super().__init__(text, details)
        self.nsid = nsid
        self.status = status
        self.error = error
        self.server_message = message


class AuthenticationError(PdsMoverError):
    """Raised when logging in to a PDS fails."""

    def __init__(self, service: str, reason: Optional[str] = None):
        details = {"service": service}
        if reason:
            details["reason"] = reason
        message = f"Login failed for {service}"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.service = service
        self.reason = reason


class SecondFactorRequiredError(AuthenticationError):
    """The PDS wants a two-factor code; rerun with the code from the email."""

    def __init__(self, service: str):
        super().__init__(service, "a two-factor code is required, check your email and rerun with it")


class IdentityMismatchError(PdsMoverError):
    """Raised when a DID returned by a PDS is not the DID being migrated."""

    def __init__(self, expected: str, actual: str, message: Optional[str] = None):
        super().__init__(
            message or f"Expected DID {expected} but got {actual}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class HandoverError(PdsMoverError):
    """Raised when the PLC handover cannot be signed or submitted."""


class MigrationStateError(PdsMoverError):
    """Raised when an operation is invoked in the wrong workflow state."""


class MigrationCancelled(PdsMoverError):
    """Raised when the caller cancelled a running migration."""


class DeactivationError(PdsMoverError):
    """Raised when the old account cannot be deactivated."""


class NoPriorEndpointError(DeactivationError):
    """The PLC log shows no PDS before the current one."""

    def __init__(self, did: str, current: str):
        super().__init__(
            "Could not find the PDS before the current one",
            {"did": did, "current": current},
        )


class PriorIsCurrentError(DeactivationError):
    """The PDS picked as the old one is the account's current PDS."""

    def __init__(self, endpoint: str):
        super().__init__(
            "This is your current PDS. Login to your old account username and password",
            {"endpoint": endpoint},
        )
