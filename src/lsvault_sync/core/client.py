"""HTTP client for the remote vault document API.

Only the four document operations the sync engine needs are exposed:
list, get, put, delete.  ``VaultDocumentAPI`` is the structural
interface the engine depends on, so tests and alternative transports
can substitute any object with the same methods.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol
from urllib.parse import quote

import requests
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..config import ClientConfig

logger = logging.getLogger(__name__)


class VaultAPIError(Exception):
    """Raised when the vault API answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteDocument(BaseModel):
    """One entry of a vault document listing."""

    path: str
    file_modified_at: str = ""
    size_bytes: int = 0
    updated_at: str | None = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class DocumentContent(BaseModel):
    """Full document as returned by ``get_document``."""

    content: str
    document: RemoteDocument

    model_config = {"extra": "ignore"}

    @property
    def modified_at(self) -> str:
        return (
            self.document.file_modified_at
            or self.document.updated_at
            or ""
        )


class VaultDocumentAPI(Protocol):
    """Remote document operations consumed by the sync engine."""

    def list_documents(
        self, vault_id: str
    ) -> list[RemoteDocument]: ...  # pragma: no cover

    def get_document(
        self, vault_id: str, path: str
    ) -> DocumentContent: ...  # pragma: no cover

    def put_document(
        self, vault_id: str, path: str, content: str
    ) -> dict[str, Any]: ...  # pragma: no cover

    def delete_document(
        self, vault_id: str, path: str
    ) -> None: ...  # pragma: no cover


class VaultClient:
    """``requests``-based implementation of ``VaultDocumentAPI``."""

    def __init__(self, config: ClientConfig):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = f"{config.api_url.rstrip('/')}/api/v1"

    @property
    def session(self) -> requests.Session:
        """Session bound to the calling thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        # Watcher workers call in from several threads at once and
        # requests.Session is not thread-safe.
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Authorization"] = (
            f"Bearer {self.config.api_key}"
        )
        session.headers["Accept"] = "application/json"
        session.verify = not self.config.insecure
        return session

    def _document_url(self, vault_id: str, path: str = "") -> str:
        url = f"{self.base_url}/vaults/{quote(vault_id, safe='')}/documents"
        if path:
            url += "/" + quote(path.lstrip("/"), safe="/")
        return url

    def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> requests.Response:
        logger.debug("%s %s", method, url)
        response = self._get_session().request(
            method,
            url,
            timeout=(10, self.config.timeout),
            **kwargs,
        )
        if not response.ok:
            raise VaultAPIError(
                self._error_message(response), response.status_code
            )
        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        detail = ""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = str(body.get("error") or body.get("message") or "")
        if not detail:
            detail = response.text.strip()[:200]
        prefix = f"{response.status_code} {response.reason or ''}".strip()
        return f"{prefix}: {detail}" if detail else prefix

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    def list_documents(self, vault_id: str) -> list[RemoteDocument]:
        """List every document in *vault_id*."""
        data = self._request("GET", self._document_url(vault_id)).json()
        if isinstance(data, dict):
            data = data.get("documents", [])
        return [RemoteDocument.model_validate(item) for item in data]

    def get_document(self, vault_id: str, path: str) -> DocumentContent:
        """Fetch the content and metadata of one document."""
        data = self._request(
            "GET", self._document_url(vault_id, path)
        ).json()
        return DocumentContent.model_validate(data)

    def put_document(
        self, vault_id: str, path: str, content: str
    ) -> dict[str, Any]:
        """Create or replace one document.

        Returns:
            The acknowledgement body (may be empty).
        """
        response = self._request(
            "PUT",
            self._document_url(vault_id, path),
            json={"content": content},
        )
        if not response.content:
            return {}
        try:
            ack = response.json()
        except ValueError:
            return {}
        return ack if isinstance(ack, dict) else {}

    def delete_document(self, vault_id: str, path: str) -> None:
        """Delete one document."""
        self._request("DELETE", self._document_url(vault_id, path))


def ack_modified_at(ack: dict[str, Any]) -> str | None:
    """Extract the server-side modification time from a put ack.

    Accepts either a bare document or ``{"document": {...}}``.
    """
    if not ack:
        return None
    doc = ack.get("document")
    if isinstance(doc, dict):
        ack = doc
    return ack.get("fileModifiedAt") or ack.get("updatedAt")
