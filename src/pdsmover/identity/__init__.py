"""Handle and DID resolution."""

from .resolver import PDS_SERVICE_TYPE, IdentityResolver

__all__ = ["IdentityResolver", "PDS_SERVICE_TYPE"]
