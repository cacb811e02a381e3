"""Core sync engine: scan, diff and execute pull/push operations.

Pull and push share one executor, ``execute_sync_operation``, which is
parameterised by a ``TransferHandler`` strategy:

- ``PullHandler`` fetches a remote document and writes it locally.
- ``PushHandler`` reads a local document and uploads it.

The executor owns all batch bookkeeping:

1. Run each transfer under the retry policy; on success note both
   sides of the new baseline for that path.
2. Run each delete; on success note the path for removal.
3. Under the per-sync lock, reload the baseline, apply the notes and
   persist it; no network call runs while the lock is held.
4. Advance ``last_sync_at`` exactly once, even after partial failure.

Error handling is per-path: a failure is recorded in the result and the
batch continues.  The only exception is a quota error, which stops the
batch since every later entry would fail the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, TypeVar

from ..config_schema import SyncConfig, SyncMode
from ..core.client import VaultDocumentAPI, ack_modified_at
from ..file_handler import (
    atomic_write_file,
    decode_content,
    remove_file,
    resolve_doc_path,
)
from .config_store import LastSyncRecorder, record_last_sync
from .diff import compute_pull_diff, compute_push_diff
from .ignore import IgnoreMatcher
from .models import (
    FileState,
    SyncDiff,
    SyncDiffEntry,
    SyncPhase,
    SyncProgress,
    SyncResult,
    TransferError,
    utc_now_iso,
)
from .retry import is_quota_error, retry_with_backoff
from .scanner import DEFAULT_EXTENSION, scan_local_files, scan_remote_files
from .state import (
    StateStore,
    build_remote_file_state,
    build_written_file_state,
    snapshot_file,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProgressCallback = Callable[[SyncProgress], None]
RetryPolicy = Callable[[Callable[[], T]], T]


# ----------------------------------------------------------------------
# Transfer strategies
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class TransferOutcome:
    """What a successful transfer moved.

    Attributes:
        content: Document content now present on both sides.
        remote_mtime: Server-side modification time, when known.
        local: State of the local bytes that were transferred.
    """

    content: str
    remote_mtime: str | None = None
    local: FileState | None = None


class TransferHandler(Protocol):
    """Direction-specific transfer and delete operations."""

    def transfer(
        self, entry: SyncDiffEntry
    ) -> TransferOutcome: ...  # pragma: no cover

    def delete(self, entry: SyncDiffEntry) -> None: ...  # pragma: no cover


class PullHandler:
    """Download remote documents into the local directory.

    Args:
        client: Remote document API.
        config: Sync configuration (vault id and local root).
        retry: Retry policy wrapping each network call.
        on_local_write: Called with the document path just before a
            local file is written or removed (lets the watcher ignore
            its own writes).
    """

    def __init__(
        self,
        client: VaultDocumentAPI,
        config: SyncConfig,
        retry: RetryPolicy = retry_with_backoff,
        on_local_write: Callable[[str], None] | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.retry = retry
        self.on_local_write = on_local_write
        self.root = Path(config.local_path)

    def transfer(self, entry: SyncDiffEntry) -> TransferOutcome:
        doc = self.retry(
            lambda: self.client.get_document(
                self.config.vault_id, entry.path
            )
        )
        target = resolve_doc_path(self.root, entry.path)
        if self.on_local_write is not None:
            self.on_local_write(entry.path)
        atomic_write_file(target, doc.content)
        return TransferOutcome(
            content=doc.content,
            remote_mtime=doc.modified_at or None,
            local=build_written_file_state(entry.path, doc.content),
        )

    def delete(self, entry: SyncDiffEntry) -> None:
        target = resolve_doc_path(self.root, entry.path)
        if self.on_local_write is not None:
            self.on_local_write(entry.path)
        remove_file(target)


class PushHandler:
    """Upload local documents to the remote vault.

    ``unacknowledged`` collects paths transferred in a batch whose write
    acknowledgement carried no modification time.
    """

    def __init__(
        self,
        client: VaultDocumentAPI,
        config: SyncConfig,
        retry: RetryPolicy = retry_with_backoff,
    ) -> None:
        self.client = client
        self.config = config
        self.retry = retry
        self.root = Path(config.local_path)
        self.unacknowledged: list[str] = []

    def transfer(self, entry: SyncDiffEntry) -> TransferOutcome:
        raw, local = snapshot_file(
            resolve_doc_path(self.root, entry.path), entry.path
        )
        content, _ = decode_content(raw)
        outcome = self.upload(entry.path, content, local)
        if outcome.remote_mtime is None:
            self.unacknowledged.append(entry.path)
        return outcome

    def upload(
        self,
        doc_path: str,
        content: str,
        local: FileState | None = None,
    ) -> TransferOutcome:
        """Upload already-read *content* for *doc_path*.

        *local* is the state of the bytes *content* was decoded from.
        """
        ack = self.retry(
            lambda: self.client.put_document(
                self.config.vault_id, doc_path, content
            )
        )
        return TransferOutcome(
            content=content,
            remote_mtime=ack_modified_at(ack),
            local=local,
        )

    def delete(self, entry: SyncDiffEntry) -> None:
        self.retry(
            lambda: self.client.delete_document(
                self.config.vault_id, entry.path
            )
        )


# ----------------------------------------------------------------------
# Shared executor
# ----------------------------------------------------------------------


def _notify(
    on_progress: ProgressCallback | None, progress: SyncProgress
) -> None:
    if on_progress is None:
        return
    try:
        on_progress(progress)
    except Exception:
        # Observers must never fail the batch.
        logger.exception("Progress callback failed")


def reconciled_states(
    doc_path: str,
    outcome: TransferOutcome,
) -> tuple[FileState, FileState]:
    """Baseline ``(local, remote)`` states after a successful transfer.

    Both sides describe the transferred content, never a later read of
    the local file.
    """
    remote = build_remote_file_state(
        doc_path, outcome.content, outcome.remote_mtime or utc_now_iso()
    )
    local = outcome.local or build_written_file_state(
        doc_path, outcome.content
    )
    return local, remote


def execute_sync_operation(
    config: SyncConfig,
    diff: SyncDiff,
    handler: TransferHandler,
    transfers: list[SyncDiffEntry],
    deletes: list[SyncDiffEntry],
    counter: str,
    state_store: StateStore,
    config_store: LastSyncRecorder,
    on_progress: ProgressCallback | None = None,
) -> SyncResult:
    """Apply *transfers* then *deletes* through *handler*.

    Args:
        config: The sync configuration.
        diff: The diff the entries came from (for byte totals).
        handler: Direction-specific strategy.
        transfers: Entries to transfer, in order.
        deletes: Entries to delete, in order.
        counter: ``"files_uploaded"`` or ``"files_downloaded"``.
        state_store: Baseline persistence.
        config_store: Receives ``update_last_sync`` once.
        on_progress: Optional progress observer.

    Returns:
        A well-formed ``SyncResult``, also after partial failure.
    """
    counts = {"files_uploaded": 0, "files_downloaded": 0}
    files_deleted = 0
    bytes_transferred = 0
    errors: list[TransferError] = []
    aborted = False

    total = len(transfers) + len(deletes)
    current = 0

    def progress(path: str | None, phase=SyncPhase.TRANSFERRING) -> None:
        _notify(
            on_progress,
            SyncProgress(
                phase=phase,
                current=current,
                total=total,
                current_file=path,
                bytes_transferred=bytes_transferred,
                total_bytes=diff.total_bytes,
            ),
        )

    records: list[tuple[str, FileState, FileState]] = []
    forgotten: list[str] = []

    for entry in transfers:
        current += 1
        progress(entry.path)
        try:
            outcome = handler.transfer(entry)
        except Exception as exc:
            logger.error("Failed to transfer %s: %s", entry.path, exc)
            errors.append(TransferError(path=entry.path, error=str(exc)))
            if is_quota_error(exc):
                logger.error(
                    "Quota exceeded; aborting remaining %d operation(s)",
                    total - current,
                )
                aborted = True
                break
            continue

        counts[counter] += 1
        bytes_transferred += entry.size_bytes
        local, remote = reconciled_states(entry.path, outcome)
        records.append((entry.path, local, remote))
        logger.debug(
            "%s %s (%s)", entry.direction.value, entry.path, entry.reason
        )

    if not aborted:
        for entry in deletes:
            current += 1
            progress(entry.path)
            try:
                handler.delete(entry)
            except Exception as exc:
                logger.error("Failed to delete %s: %s", entry.path, exc)
                errors.append(
                    TransferError(path=entry.path, error=str(exc))
                )
                if is_quota_error(exc):
                    aborted = True
                    break
                continue
            files_deleted += 1
            forgotten.append(entry.path)

    with state_store.lock(config.id):
        state = state_store.load(config.id)
        for path, local, remote in records:
            state.record(path, local, remote)
        for path in forgotten:
            state.forget(path)
        state_store.save(state)

    record_last_sync(config_store, config.id)

    current = total
    progress(None, SyncPhase.COMPLETE)

    return SyncResult(
        files_uploaded=counts["files_uploaded"],
        files_downloaded=counts["files_downloaded"],
        files_deleted=files_deleted,
        bytes_transferred=bytes_transferred,
        errors=errors,
        aborted=aborted,
    )


# ----------------------------------------------------------------------
# Engine facade
# ----------------------------------------------------------------------


class SyncEngine:
    """Run one-shot pull, push and bidirectional sync for one config.

    Args:
        client: Remote document API.
        config: The sync configuration.
        state_store: Baseline persistence.
        config_store: Configuration collaborator (``update_last_sync``).
        ignore: Ignore matcher; built from the config if omitted.
        extension: Document file suffix.
        retry: Retry policy for network calls.
    """

    def __init__(
        self,
        client: VaultDocumentAPI,
        config: SyncConfig,
        state_store: StateStore,
        config_store: LastSyncRecorder,
        ignore: IgnoreMatcher | None = None,
        extension: str = DEFAULT_EXTENSION,
        retry: RetryPolicy = retry_with_backoff,
    ) -> None:
        self.client = client
        self.config = config
        self.state_store = state_store
        self.config_store = config_store
        self.local_root = Path(config.local_path)
        self.ignore = ignore or IgnoreMatcher(
            self.local_root, config.ignore
        )
        self.extension = extension
        self.retry = retry

    # ------------------------------------------------------------------
    # Scanning and diffing
    # ------------------------------------------------------------------

    def scan(
        self,
    ) -> tuple[dict[str, FileState], dict[str, FileState]]:
        """Return current ``(local, remote)`` snapshots."""
        local = scan_local_files(
            self.local_root, self.ignore.patterns, self.extension
        )
        remote = self.retry(
            lambda: scan_remote_files(
                self.client, self.config.vault_id, self.ignore.patterns
            )
        )
        logger.debug(
            "Scanned %d local and %d remote document(s)",
            len(local),
            len(remote),
        )
        return local, remote

    def plan_pull(self) -> SyncDiff:
        """Scan both sides and compute the pull diff without applying it."""
        local, remote = self.scan()
        return compute_pull_diff(
            remote, local, self.state_store.load(self.config.id)
        )

    def plan_push(self) -> SyncDiff:
        """Scan both sides and compute the push diff without applying it."""
        local, remote = self.scan()
        return compute_push_diff(
            local, remote, self.state_store.load(self.config.id)
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_pull(
        self,
        diff: SyncDiff,
        on_progress: ProgressCallback | None = None,
        on_local_write: Callable[[str], None] | None = None,
    ) -> SyncResult:
        handler = PullHandler(
            self.client, self.config, self.retry, on_local_write
        )
        return execute_sync_operation(
            self.config,
            diff,
            handler,
            diff.downloads,
            diff.deletes,
            "files_downloaded",
            self.state_store,
            self.config_store,
            on_progress,
        )

    def execute_push(
        self,
        diff: SyncDiff,
        on_progress: ProgressCallback | None = None,
    ) -> SyncResult:
        handler = PushHandler(self.client, self.config, self.retry)
        result = execute_sync_operation(
            self.config,
            diff,
            handler,
            diff.uploads,
            diff.deletes,
            "files_uploaded",
            self.state_store,
            self.config_store,
            on_progress,
        )
        if handler.unacknowledged:
            self._adopt_listed_mtimes(handler.unacknowledged)
        return result

    def _adopt_listed_mtimes(self, paths: list[str]) -> None:
        """Replace locally stamped remote mtimes with the server's.

        Without this a following pull would see every such upload as a
        remote change and download it again.  A listed size that differs
        from the upload means someone else wrote in between; that path
        keeps its stamp and is pulled.
        """
        try:
            listing = self.retry(
                lambda: scan_remote_files(
                    self.client, self.config.vault_id, self.ignore.patterns
                )
            )
        except Exception as exc:
            logger.warning("Could not refresh remote listing: %s", exc)
            return
        with self.state_store.lock(self.config.id):
            state = self.state_store.load(self.config.id)
            for path in paths:
                known = state.remote.get(path)
                listed = listing.get(path)
                if known is None or listed is None:
                    continue
                if listed.size != known.size:
                    continue
                state.remote[path] = known.model_copy(
                    update={"mtime": listed.mtime}
                )
            self.state_store.save(state)

    def pull(
        self, on_progress: ProgressCallback | None = None
    ) -> SyncResult:
        """Scan, diff and download remote changes."""
        _notify(on_progress, SyncProgress(phase=SyncPhase.SCANNING))
        diff = self.plan_pull()
        _notify(
            on_progress,
            SyncProgress(
                phase=SyncPhase.COMPUTING,
                total=diff.total_operations,
                total_bytes=diff.total_bytes,
            ),
        )
        return self.execute_pull(diff, on_progress)

    def push(
        self, on_progress: ProgressCallback | None = None
    ) -> SyncResult:
        """Scan, diff and upload local changes."""
        _notify(on_progress, SyncProgress(phase=SyncPhase.SCANNING))
        diff = self.plan_push()
        _notify(
            on_progress,
            SyncProgress(
                phase=SyncPhase.COMPUTING,
                total=diff.total_operations,
                total_bytes=diff.total_bytes,
            ),
        )
        return self.execute_push(diff, on_progress)

    def run(
        self, on_progress: ProgressCallback | None = None
    ) -> SyncResult:
        """Run the reconciliation cycle selected by ``config.mode``.

        Bidirectional mode pushes first, then rescans and pulls so the
        pull diff sees the baseline written by the push.
        """
        mode = self.config.mode
        if mode is SyncMode.PULL:
            return self.pull(on_progress)
        if mode is SyncMode.PUSH:
            return self.push(on_progress)
        pushed = self.push(on_progress)
        pulled = self.pull(on_progress)
        return pushed.merge(pulled)
