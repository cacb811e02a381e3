"""Shared pytest fixtures for lsvault-sync tests."""

from __future__ import annotations

import functools
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from dotenv import load_dotenv

from lsvault_sync.config import ClientConfig
from lsvault_sync.config_schema import CreateSyncOptions, SyncConfig
from lsvault_sync.core.client import (
    DocumentContent,
    RemoteDocument,
    VaultAPIError,
)
from lsvault_sync.sync.config_store import SyncConfigStore
from lsvault_sync.sync.retry import retry_with_backoff
from lsvault_sync.sync.state import StateStore

load_dotenv()

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live vault API",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live vault API"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fake remote vault
# ---------------------------------------------------------------------------


class FakeVaultClient:
    """In-memory ``VaultDocumentAPI`` replacement.

    Every write advances a fake clock by one second so modification
    times are distinct and ordered.  ``failures`` maps a document path
    to an exception raised by get/put/delete for that path.
    """

    def __init__(self, docs: dict[str, str] | None = None) -> None:
        self.docs: dict[str, tuple[str, str]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, Exception] = {}
        self._tick = 0
        for path, content in (docs or {}).items():
            self.set(path, content)

    def next_mtime(self) -> str:
        self._tick += 1
        return (BASE_TIME + timedelta(seconds=self._tick)).isoformat()

    def set(
        self, path: str, content: str, mtime: str | None = None
    ) -> str:
        """Store a document directly (a remote-side edit)."""
        stamp = mtime or self.next_mtime()
        self.docs[path] = (content, stamp)
        return stamp

    def content(self, path: str) -> str:
        return self.docs[path][0]

    def _record(self, op: str, path: str) -> None:
        self.calls.append((op, path))
        failure = self.failures.get(path)
        if failure is not None:
            raise failure

    def _meta(self, path: str) -> RemoteDocument:
        content, mtime = self.docs[path]
        return RemoteDocument(
            path=path,
            file_modified_at=mtime,
            size_bytes=len(content.encode("utf-8")),
        )

    def list_documents(self, vault_id: str) -> list[RemoteDocument]:
        self.calls.append(("list", vault_id))
        return [self._meta(path) for path in sorted(self.docs)]

    def get_document(self, vault_id: str, path: str) -> DocumentContent:
        self._record("get", path)
        if path not in self.docs:
            raise VaultAPIError("404 Not Found: Document not found", 404)
        return DocumentContent(
            content=self.docs[path][0], document=self._meta(path)
        )

    def put_document(self, vault_id: str, path: str, content: str) -> dict:
        self._record("put", path)
        mtime = self.set(path, content)
        return {"document": {"path": path, "fileModifiedAt": mtime}}

    def delete_document(self, vault_id: str, path: str) -> None:
        self._record("delete", path)
        if path not in self.docs:
            raise VaultAPIError("404 Not Found: Document not found", 404)
        del self.docs[path]

    def ops(self, op: str) -> list[str]:
        return [path for name, path in self.calls if name == op]


def write_doc(root: Path, doc_path: str, content: str) -> Path:
    """Create a local document under *root*."""
    target = root / doc_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client_config():
    return ClientConfig(
        api_url="https://vault.example.com",
        api_key="lsv_test_key",
    )


@pytest.fixture
def fake_client():
    return FakeVaultClient()


@pytest.fixture
def no_sleep_retry():
    """Retry policy with the production schedule but no real sleeping."""
    return functools.partial(retry_with_backoff, sleep=lambda _s: None)


@pytest.fixture
def sync_root(tmp_path: Path) -> Path:
    root = tmp_path / "notes"
    root.mkdir()
    return root


@pytest.fixture
def state_store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "sync-state")


@pytest.fixture
def config_store(tmp_path: Path) -> SyncConfigStore:
    return SyncConfigStore(tmp_path / "config")


@pytest.fixture
def make_sync_config(config_store: SyncConfigStore, sync_root: Path):
    """Factory registering a sync config for *sync_root*."""

    def _make(**overrides) -> SyncConfig:
        opts = {
            "vault_id": "vault-1",
            "local_path": str(sync_root),
            "ignore": [],
        }
        opts.update(overrides)
        return config_store.create(CreateSyncOptions(**opts))

    return _make


@pytest.fixture
def sync_config(make_sync_config) -> SyncConfig:
    return make_sync_config()
