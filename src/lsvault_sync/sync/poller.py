"""Remote change poller for live bidirectional sync.

The watcher only sees local edits.  ``RemotePoller`` complements it by
listing the vault on a fixed interval and pulling documents whose
remote modification time moved since the baseline.  Writes it makes
locally are reported through ``on_local_write`` so the watcher does not
push them straight back.

A poll works against a snapshot of the baseline and takes the per-sync
lock only to merge its results; a path the watcher re-recorded in the
meantime keeps the watcher's baseline.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Callable

from ..config_schema import SyncConfig
from ..core.client import RemoteDocument, VaultDocumentAPI
from ..file_handler import (
    atomic_write_file,
    decode_content,
    remove_file,
    resolve_doc_path,
)
from .config_store import LastSyncRecorder, record_last_sync
from .engine import PushHandler, RetryPolicy
from .ignore import IgnoreMatcher
from .models import ConflictInfo, FileState, SyncState, parse_timestamp
from .resolver import (
    ConflictHandler,
    ConflictResolver,
    create_resolver,
    detect_conflict,
)
from .retry import retry_with_backoff
from .state import (
    StateStore,
    build_file_state,
    build_remote_file_state,
    build_written_file_state,
    has_file_changed,
    snapshot_file,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0

_INTERVAL_RE = re.compile(r"^(\d+)(s|m|h)?$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}

_Update = Callable[[SyncState], None]


def parse_sync_interval(interval: str | None) -> float | None:
    """Parse ``"30s"``, ``"5m"``, ``"1h"`` or plain milliseconds.

    Returns:
        The interval in seconds, or ``None`` if *interval* is empty or
        malformed.
    """
    if not interval:
        return None
    match = _INTERVAL_RE.match(interval.strip())
    if match is None:
        return None
    value = int(match.group(1))
    unit = match.group(2)
    if unit is None:
        return value / 1000
    return float(value * _UNIT_SECONDS[unit])


def _same_instant(left: str, right: str) -> bool:
    a, b = parse_timestamp(left), parse_timestamp(right)
    if a is not None and b is not None:
        return a == b
    return left == right


def _baseline_moved(
    state: SyncState, baseline: SyncState, path: str
) -> bool:
    """Whether *path* was re-recorded since *baseline* was loaded."""
    return state.local.get(path) != baseline.local.get(path) or (
        state.remote.get(path) != baseline.remote.get(path)
    )


def _recorder(path: str, local: FileState, remote: FileState) -> _Update:
    def record(state: SyncState) -> None:
        state.record(path, local, remote)

    return record


class RemotePoller:
    """Periodically pull remote changes for one sync configuration.

    Args:
        client: Remote document API.
        config: The sync configuration.
        state_store: Baseline persistence.
        ignore: Ignore matcher for the sync root.
        config_store: Receives ``update_last_sync`` after changes.
        resolver: Conflict resolver; defaults to ``config.on_conflict``.
        interval_seconds: Delay between polls.
        on_log: Sink for human-readable log lines.
        on_conflict_log: Sink for conflict log lines.
        on_error: Called with every error a poll raises.
        on_local_write: Called before a local document is written or
            removed.
        retry: Retry policy for network calls.
    """

    def __init__(
        self,
        client: VaultDocumentAPI,
        config: SyncConfig,
        state_store: StateStore,
        ignore: IgnoreMatcher,
        config_store: LastSyncRecorder,
        resolver: ConflictResolver | None = None,
        interval_seconds: float = DEFAULT_POLL_INTERVAL,
        on_log: Callable[[str], None] | None = None,
        on_conflict_log: Callable[[str], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_local_write: Callable[[str], None] | None = None,
        retry: RetryPolicy = retry_with_backoff,
    ) -> None:
        self.client = client
        self.config = config
        self.state_store = state_store
        self.ignore = ignore
        self.config_store = config_store
        self.interval_seconds = interval_seconds
        self.retry = retry
        self.root = Path(config.local_path)

        self._on_log = on_log
        self._on_error = on_error
        self._on_local_write = on_local_write
        self._conflicts = ConflictHandler(
            config,
            resolver or create_resolver(config.on_conflict),
            PushHandler(client, config, retry),
            on_local_write=on_local_write,
            log=self._log,
            conflict_log=on_conflict_log,
        )

        self._polling = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        # path -> remote hash already left as an unresolved conflict
        self._flagged: dict[str, str | None] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Poll immediately, then every ``interval_seconds``."""
        if self._thread is not None:
            raise RuntimeError("Poller already started")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name=f"lsvault-poll-{self.config.id[:8]}",
            daemon=True,
        )
        self._thread.start()
        self._log(f"Polling every {self.interval_seconds:g}s")

    def stop(self, timeout: float | None = 10) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._log("Stopped polling")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as exc:
                self._report_error(exc)
            self._stop_event.wait(self.interval_seconds)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll_once(self) -> int:
        """Run one poll.

        Returns:
            Number of local changes made (downloads, conflicts handled
            and local deletions).  ``0`` when a poll is already running.
        """
        if not self._polling.acquire(blocking=False):
            logger.debug("Previous poll still running, skipping")
            return 0
        try:
            return self._poll()
        finally:
            self._polling.release()

    def _poll(self) -> int:
        listing = self.retry(
            lambda: self.client.list_documents(self.config.vault_id)
        )
        remote_docs: dict[str, RemoteDocument] = {}
        for doc in listing:
            path = doc.path.lstrip("/")
            if not self.ignore.matches(path):
                remote_docs[path] = doc

        # Network and file work runs against this snapshot; the lock is
        # only taken again to merge the results.
        with self.state_store.lock(self.config.id):
            baseline = self.state_store.load(self.config.id)

        changes = 0
        updates: list[tuple[str, _Update]] = []
        for path, doc in remote_docs.items():
            try:
                changed, update = self._sync_document(baseline, path, doc)
            except Exception as exc:
                logger.error("Failed to pull %s: %s", path, exc)
                self._report_error(exc)
                continue
            changes += changed
            if update is not None:
                updates.append((path, update))

        removed = [
            path
            for path in sorted(set(baseline.remote) - set(remote_docs))
            if not self.ignore.matches(path)
        ]

        with self.state_store.lock(self.config.id):
            state = self.state_store.load(self.config.id)
            dirty = False
            for path, update in updates:
                if _baseline_moved(state, baseline, path):
                    logger.debug(
                        "Baseline of %s changed during poll, leaving it",
                        path,
                    )
                    continue
                update(state)
                dirty = True
            for path in removed:
                if _baseline_moved(state, baseline, path):
                    continue
                changes += self._apply_remote_delete(state, path)
                dirty = True
            if dirty:
                self.state_store.save(state)

        if changes:
            record_last_sync(self.config_store, self.config.id)
            self._log(f"Poll complete: {changes} change(s)")
        return changes

    def _sync_document(
        self, baseline: SyncState, path: str, doc: RemoteDocument
    ) -> tuple[int, _Update | None]:
        """Bring one listed document down.

        Returns:
            ``(changes, update)`` where *update* applies the new
            baseline for *path*, or ``None`` when it stays as is.
        """
        mtime = doc.file_modified_at or doc.updated_at or ""
        last_remote = baseline.remote.get(path)
        last_local = baseline.local.get(path)
        if last_remote is not None and _same_instant(
            mtime, last_remote.mtime
        ):
            return 0, None

        remote = self.retry(
            lambda: self.client.get_document(self.config.vault_id, path)
        )
        remote_state = build_remote_file_state(
            path, remote.content, mtime or remote.modified_at
        )
        if last_remote is not None and not has_file_changed(
            remote_state, last_remote
        ):
            # Touched but not edited: refresh the recorded mtime only.
            def refresh(state: SyncState) -> None:
                state.remote[path] = remote_state

            return 0, refresh

        target = resolve_doc_path(self.root, path)
        if target.exists():
            raw, local_state = snapshot_file(target, path)
            if local_state.hash == remote_state.hash:
                return 0, _recorder(path, local_state, remote_state)

            if detect_conflict(
                local_state, remote_state, last_local, last_remote
            ):
                if self._flagged.get(path) == remote_state.hash:
                    return 0, None
                local_content, _ = decode_content(raw)
                outcome = self._conflicts.handle(
                    ConflictInfo(
                        path=path,
                        local=local_state,
                        remote=remote_state,
                        last_local=last_local,
                        last_remote=last_remote,
                    ),
                    local_content,
                    remote.content,
                )
                if outcome.baseline is None:
                    self._flagged[path] = remote_state.hash
                    return 1, None
                self._flagged.pop(path, None)
                return 1, _recorder(path, *outcome.baseline)

        if self._on_local_write is not None:
            self._on_local_write(path)
        atomic_write_file(target, remote.content)
        self._flagged.pop(path, None)
        self._log(f"Pulled: {path}")
        local_state = build_written_file_state(path, remote.content)
        return 1, _recorder(path, local_state, remote_state)


    def _apply_remote_delete(self, state: SyncState, path: str) -> int:
        target = resolve_doc_path(self.root, path)
        last_local = state.local.get(path)
        state.forget(path)
        self._flagged.pop(path, None)
        if not target.exists():
            return 0

        if last_local is not None:
            try:
                current = build_file_state(target, path)
            except OSError:
                current = None
            if current is not None and has_file_changed(current, last_local):
                self._log(
                    f"Kept local: {path} (modified locally, removed "
                    f"from remote)"
                )
                return 0

        if self._on_local_write is not None:
            self._on_local_write(path)
        if remove_file(target):
            self._log(f"Deleted local: {path} (removed from remote)")
            return 1
        return 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log(self, message: str) -> None:
        line = f"[poll:{self.config.id[:8]}] {message}"
        logger.info("%s", line)
        if self._on_log is not None:
            self._on_log(line)

    def _report_error(self, exc: Exception) -> None:
        logger.error("Poll for %s failed: %s", self.config.id[:8], exc)
        if self._on_error is not None:
            self._on_error(exc)
