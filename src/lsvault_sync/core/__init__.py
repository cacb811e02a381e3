"""Remote vault API client shared by the sync engine and the daemon."""

from .client import VaultAPIError, VaultClient, VaultDocumentAPI

__all__ = ["VaultAPIError", "VaultClient", "VaultDocumentAPI"]
