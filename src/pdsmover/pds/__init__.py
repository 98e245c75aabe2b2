"""PDS interaction package."""

from .agent import AccountStatus, Blob, BlobPage, PdsAgent, ServerDescription
from .client import XrpcClient

__all__ = ["AccountStatus", "Blob", "BlobPage", "PdsAgent", "ServerDescription", "XrpcClient"]
