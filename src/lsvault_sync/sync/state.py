"""Sync state persistence layer.

Manages the JSON state files that record the three-way baseline of each
sync configuration (``<state_dir>/<sync_id>.json``).

Key design choices:

* **Injected location** -- the store is constructed with its directory;
  nothing is resolved from the home directory at call time.
* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Corruption is "start over"** -- an unreadable or invalid state file
  loads as an empty baseline instead of raising.
* **Per-sync locks** -- ``lock()`` serialises load/mutate/save cycles
  between the watcher and poller threads of one sync.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .models import FileState, SyncState, utc_now_iso

logger = logging.getLogger(__name__)


class StateStore:
    """Load, save, and delete sync state files.

    Args:
        state_dir: Directory where state files are stored
            (typically ``~/.lsvault/sync-state``).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, sync_id: str) -> SyncState:
        """Load sync state from disk.

        Returns:
            The persisted state, or a fresh empty state (epoch
            ``updated_at``) when no file exists or it cannot be parsed.
        """
        path = self._state_path(sync_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SyncState(sync_id=sync_id)
        except OSError as exc:
            logger.warning(
                "Could not read sync state %s: %s", path, exc
            )
            return SyncState(sync_id=sync_id)

        try:
            state = SyncState.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            logger.warning(
                "Discarding corrupt sync state %s: %s", path, exc
            )
            return SyncState(sync_id=sync_id)
        return state

    def save(self, state: SyncState) -> None:
        """Persist sync state to disk atomically.

        Stamps ``updated_at`` with the current UTC time, creates
        ``state_dir`` if needed, and replaces the whole file.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        state.updated_at = utc_now_iso()

        target = self._state_path(state.sync_id)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(state.model_dump_json(by_alias=True, indent=2))
                fh.write("\n")
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self, sync_id: str) -> bool:
        """Remove persisted state.  Returns whether a file existed."""
        try:
            self._state_path(sync_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def lock(self, sync_id: str) -> threading.RLock:
        """Return the lock guarding state mutation for *sync_id*."""
        with self._locks_guard:
            return self._locks.setdefault(sync_id, threading.RLock())

    def _state_path(self, sync_id: str) -> Path:
        return self._state_dir / f"{sync_id}.json"


# ----------------------------------------------------------------------
# FileState construction
# ----------------------------------------------------------------------


def hash_file_content(content: bytes | str) -> str:
    """SHA-256 hex digest of *content* (``str`` is UTF-8 encoded)."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def build_file_state(abs_path: Path, doc_path: str) -> FileState:
    """Build a ``FileState`` from a file on the local filesystem."""
    return snapshot_file(abs_path, doc_path)[1]


def snapshot_file(abs_path: Path, doc_path: str) -> tuple[bytes, FileState]:
    """Read *abs_path* once and describe exactly the bytes read.

    Callers that transfer the content must record this state, not a
    fresh one, so an edit landing mid-transfer still shows up as a
    change on the next scan.
    """
    content = abs_path.read_bytes()
    stat = abs_path.stat()
    return content, FileState(
        path=doc_path,
        hash=hash_file_content(content),
        mtime=_mtime_iso(stat.st_mtime),
        size=len(content),
    )


def build_written_file_state(doc_path: str, content: str) -> FileState:
    """``FileState`` for *content* just written locally as UTF-8."""
    return build_remote_file_state(doc_path, content, utc_now_iso())


def build_remote_file_state(
    doc_path: str, content: str, updated_at: str
) -> FileState:
    """Build a ``FileState`` from remote content."""
    encoded = content.encode("utf-8")
    return FileState(
        path=doc_path,
        hash=hash_file_content(encoded),
        mtime=updated_at,
        size=len(encoded),
    )


def has_file_changed(current: FileState, known: FileState) -> bool:
    """Return ``True`` if *current* differs from the *known* state."""
    return not current.same_content(known)


def _mtime_iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
