"""Live local watcher: filesystem events -> debounced single-file sync.

The watcher wraps a watchdog ``Observer`` and drives one incremental
push (or conflict check) per changed document:

- create / modify events are debounced per path with a
  ``threading.Timer``; a repeat event restarts the path's timer;
- delete events cancel any pending timer and dispatch immediately;
- fired timers hand work to a ``ThreadPoolExecutor`` so the observer
  thread never performs network I/O;
- at most one cycle per path runs at a time; a request arriving while
  one is running is replayed once it finishes.

Baseline updates are load-mutate-save cycles under the state store's
per-sync lock, so the watcher and the remote poller never overwrite
each other's changes.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config_schema import SyncConfig, SyncMode
from ..core.client import VaultDocumentAPI
from ..file_handler import decode_content, resolve_doc_path, to_doc_path
from .config_store import LastSyncRecorder, record_last_sync
from .engine import PushHandler, RetryPolicy, reconciled_states
from .ignore import IgnoreMatcher
from .models import (
    ConflictInfo,
    FileState,
    SyncAction,
    SyncDiffEntry,
    SyncDirection,
    SyncState,
    utc_now_iso,
)
from .resolver import (
    ConflictHandler,
    ConflictResolver,
    create_resolver,
    detect_conflict,
)
from .retry import retry_with_backoff
from .scanner import DEFAULT_EXTENSION
from .state import (
    StateStore,
    build_remote_file_state,
    has_file_changed,
    snapshot_file,
)

logger = logging.getLogger(__name__)

RECENTLY_WRITTEN_TTL = 5.0


class WatcherState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    DEBOUNCING = "debouncing"
    EVALUATING = "evaluating"
    TRANSFERRING = "transferring"
    STOPPED = "stopped"


class RecentlyWritten:
    """Document paths written by the engine itself, expiring after a TTL.

    Events for these paths are echoes of our own writes and must not be
    pushed back.
    """

    def __init__(
        self,
        ttl: float = RECENTLY_WRITTEN_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, doc_path: str) -> None:
        with self._lock:
            self._entries[doc_path] = self._clock()

    def __contains__(self, doc_path: object) -> bool:
        with self._lock:
            written_at = self._entries.get(doc_path)  # type: ignore[arg-type]
            if written_at is None:
                return False
            if self._clock() - written_at > self.ttl:
                del self._entries[doc_path]  # type: ignore[arg-type]
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class _SyncEventHandler(FileSystemEventHandler):
    """Forward watchdog file events to a ``SyncWatcher``."""

    def __init__(self, watcher: SyncWatcher) -> None:
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify_change(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify_change(os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify_delete(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher.notify_delete(os.fsdecode(event.src_path))
        self.watcher.notify_change(os.fsdecode(event.dest_path))


class SyncWatcher:
    """Watch one sync root and push local changes as they settle.

    Args:
        client: Remote document API.
        config: The sync configuration.
        state_store: Baseline persistence.
        ignore: Ignore matcher for the sync root.
        config_store: Receives ``update_last_sync`` after each cycle.
        resolver: Conflict resolver; defaults to ``config.on_conflict``.
        debounce_seconds: Per-path stability window.
        on_log: Sink for human-readable log lines.
        on_conflict_log: Sink for conflict log lines.
        on_error: Called with every error raised by a cycle.
        observer_factory: Builds the watchdog observer.
        max_workers: Worker threads for dispatched cycles.
        extension: Document file suffix.
        retry: Retry policy for network calls.
        recently_written: Shared echo-suppression set.
    """

    def __init__(
        self,
        client: VaultDocumentAPI,
        config: SyncConfig,
        state_store: StateStore,
        ignore: IgnoreMatcher,
        config_store: LastSyncRecorder,
        resolver: ConflictResolver | None = None,
        debounce_seconds: float = 0.5,
        on_log: Callable[[str], None] | None = None,
        on_conflict_log: Callable[[str], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        observer_factory: Callable[[], Observer] = Observer,
        max_workers: int = 4,
        extension: str = DEFAULT_EXTENSION,
        retry: RetryPolicy = retry_with_backoff,
        recently_written: RecentlyWritten | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.state_store = state_store
        self.ignore = ignore
        self.config_store = config_store
        self.debounce_seconds = debounce_seconds
        self.extension = extension
        self.retry = retry
        self.root = Path(config.local_path).resolve()
        self.recently_written = recently_written or RecentlyWritten()

        self._on_log = on_log
        self._on_error = on_error
        self._observer_factory = observer_factory
        self._max_workers = max_workers

        self._pusher = PushHandler(client, config, retry)
        self._conflicts = ConflictHandler(
            config,
            resolver or create_resolver(config.on_conflict),
            self._pusher,
            on_local_write=self.mark_written,
            log=self._log,
            conflict_log=on_conflict_log,
        )

        self._cond = threading.Condition()
        self._timers: dict[str, threading.Timer] = {}
        self._phases: dict[str, WatcherState] = {}
        self._inflight = 0
        self._busy: set[str] = set()
        self._rerun: dict[str, Callable[[str], None]] = {}
        self._observer = None
        self._executor: ThreadPoolExecutor | None = None
        self._started = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Attach the filesystem observer and begin watching."""
        with self._cond:
            if self._started:
                raise RuntimeError("Watcher already started")
            self._started = True

        self.root.mkdir(parents=True, exist_ok=True)
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix=f"lsvault-sync-{self.config.id[:8]}",
        )
        observer = self._observer_factory()
        observer.schedule(
            _SyncEventHandler(self), str(self.root), recursive=True
        )
        observer.start()
        self._observer = observer
        self._log("Watching for changes...")

    def stop(self) -> None:
        """Stop watching.

        Pending timers are cancelled and queued work is dropped;
        transfers already running are not waited for.
        """
        with self._cond:
            if self._stopped:
                return
            self._stopped = True
            for timer in self._timers.values():
                timer.cancel()
            for doc_path in self._timers:
                self._phases.pop(doc_path, None)
            self._timers.clear()
            self._rerun.clear()
            self._cond.notify_all()

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=10)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self.recently_written.clear()
        self._log("Stopped watching")

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no timers are pending and no work is in flight.

        Returns:
            ``False`` if *timeout* expired first.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._timers
                and not self._rerun
                and self._inflight == 0,
                timeout,
            )

    @property
    def status(self) -> WatcherState:
        """Aggregate state across all tracked paths."""
        with self._cond:
            if self._stopped:
                return WatcherState.STOPPED
            if not self._started:
                return WatcherState.IDLE
            phases = set(self._phases.values())
        for state in (
            WatcherState.TRANSFERRING,
            WatcherState.EVALUATING,
            WatcherState.DEBOUNCING,
        ):
            if state in phases:
                return state
        return WatcherState.WATCHING

    def mark_written(self, doc_path: str) -> None:
        """Record that the engine is about to write *doc_path* locally."""
        self.recently_written.add(doc_path)

    # ------------------------------------------------------------------
    # Event intake (observer thread)
    # ------------------------------------------------------------------

    def notify_change(self, abs_path: str) -> None:
        """Debounce a create/modify event for *abs_path*."""
        doc_path = self._eligible(abs_path)
        if doc_path is None:
            return
        with self._cond:
            if self._stopped:
                return
            previous = self._timers.pop(doc_path, None)
            if previous is not None:
                previous.cancel()
            timer = threading.Timer(
                self.debounce_seconds,
                lambda: self._fire(doc_path, timer),
            )
            timer.daemon = True
            self._timers[doc_path] = timer
            self._phases[doc_path] = WatcherState.DEBOUNCING
            timer.start()

    def notify_delete(self, abs_path: str) -> None:
        """Handle a delete event for *abs_path* without debouncing."""
        doc_path = self._eligible(abs_path)
        if doc_path is None:
            return
        with self._cond:
            pending = self._timers.pop(doc_path, None)
            if pending is not None:
                pending.cancel()
            if self._stopped:
                return
            self._submit(doc_path, self._handle_delete)

    def _eligible(self, abs_path: str) -> str | None:
        doc_path = to_doc_path(self.root, abs_path)
        if doc_path.startswith(".."):
            return None
        if not doc_path.endswith(self.extension):
            return None
        if self.ignore.matches(doc_path):
            return None
        return doc_path

    def _fire(self, doc_path: str, timer: threading.Timer) -> None:
        with self._cond:
            if self._stopped or self._timers.get(doc_path) is not timer:
                return
            del self._timers[doc_path]
            self._submit(doc_path, self._handle_change)
            self._cond.notify_all()

    def _submit(
        self, doc_path: str, work: Callable[[str], None]
    ) -> None:
        # Caller holds self._cond.
        if self._executor is None:
            return
        if doc_path in self._busy:
            # Latest request wins; replayed by _finished.
            self._rerun[doc_path] = work
            return
        self._busy.add(doc_path)
        self._inflight += 1
        self._phases[doc_path] = WatcherState.EVALUATING
        try:
            future = self._executor.submit(self._run, doc_path, work)
        except RuntimeError:
            # Executor already shut down.
            self._busy.discard(doc_path)
            self._inflight -= 1
            self._phases.pop(doc_path, None)
            self._cond.notify_all()
            return
        future.add_done_callback(
            lambda _f: self._finished(doc_path, _f)
        )

    def _finished(self, doc_path: str, future: Future) -> None:
        with self._cond:
            self._inflight -= 1
            self._busy.discard(doc_path)
            rerun = self._rerun.pop(doc_path, None)
            if rerun is not None and not self._stopped:
                self._submit(doc_path, rerun)
            elif doc_path not in self._timers:
                self._phases.pop(doc_path, None)
            self._cond.notify_all()

    def _run(self, doc_path: str, work: Callable[[str], None]) -> None:
        try:
            work(doc_path)
        except Exception as exc:
            self._report_error(doc_path, exc)

    def _set_phase(self, doc_path: str, phase: WatcherState) -> None:
        with self._cond:
            self._phases[doc_path] = phase

    # ------------------------------------------------------------------
    # Cycles (worker threads)
    # ------------------------------------------------------------------

    def _handle_change(self, doc_path: str) -> None:
        if doc_path in self.recently_written:
            self._log(f"Skipping {doc_path} (recently written by sync)")
            return

        abs_path = resolve_doc_path(self.root, doc_path)
        try:
            raw, local_state = snapshot_file(abs_path, doc_path)
        except FileNotFoundError:
            logger.debug("%s vanished before sync", doc_path)
            return

        baseline = self._load()
        last_local = baseline.local.get(doc_path)
        last_remote = baseline.remote.get(doc_path)
        if last_local is not None and not has_file_changed(
            local_state, last_local
        ):
            logger.debug("%s unchanged since last sync", doc_path)
            return
        if self.config.mode is SyncMode.PULL:
            return

        content, _ = decode_content(raw)
        self._set_phase(doc_path, WatcherState.TRANSFERRING)
        if self.config.mode is SyncMode.SYNC and last_remote is not None:
            if self._check_conflict(
                doc_path, content, local_state, last_local, last_remote
            ):
                return

        outcome = self._pusher.upload(doc_path, content, local_state)
        local, remote = reconciled_states(doc_path, outcome)
        self._commit(lambda state: state.record(doc_path, local, remote))
        self._log(f"Pushed: {doc_path}")

    def _check_conflict(
        self,
        doc_path: str,
        content: str,
        local_state: FileState,
        last_local: FileState | None,
        last_remote: FileState,
    ) -> bool:
        """Resolve a both-sides edit.  Returns whether it was handled."""
        try:
            remote = self.retry(
                lambda: self.client.get_document(
                    self.config.vault_id, doc_path
                )
            )
        except Exception as exc:
            logger.warning(
                "Remote check failed for %s, pushing anyway: %s",
                doc_path,
                exc,
            )
            return False

        remote_state = build_remote_file_state(
            doc_path, remote.content, remote.modified_at or utc_now_iso()
        )
        if not has_file_changed(remote_state, last_remote):
            return False
        if not detect_conflict(
            local_state, remote_state, last_local, last_remote
        ):
            return False

        outcome = self._conflicts.handle(
            ConflictInfo(
                path=doc_path,
                local=local_state,
                remote=remote_state,
                last_local=last_local,
                last_remote=last_remote,
            ),
            content,
            remote.content,
        )
        if outcome.baseline is not None:
            local, remote_baseline = outcome.baseline
            self._commit(
                lambda state: state.record(doc_path, local, remote_baseline)
            )
        return True

    def _handle_delete(self, doc_path: str) -> None:
        if doc_path in self.recently_written:
            return
        if self.config.mode is SyncMode.PULL:
            return
        if resolve_doc_path(self.root, doc_path).exists():
            # Recreated before the delete was processed.
            return

        baseline = self._load()
        if doc_path not in baseline.remote:
            logger.debug("%s was never synced, nothing to delete", doc_path)
            return

        self._set_phase(doc_path, WatcherState.TRANSFERRING)
        self._pusher.delete(
            SyncDiffEntry(
                path=doc_path,
                action=SyncAction.DELETE,
                direction=SyncDirection.UPLOAD,
                reason="Deleted locally",
            )
        )
        self._commit(lambda state: state.forget(doc_path))
        self._log(f"Deleted remote: {doc_path}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self) -> SyncState:
        with self.state_store.lock(self.config.id):
            return self.state_store.load(self.config.id)

    def _commit(self, mutate: Callable[[SyncState], None]) -> None:
        with self.state_store.lock(self.config.id):
            state = self.state_store.load(self.config.id)
            mutate(state)
            self.state_store.save(state)
        record_last_sync(self.config_store, self.config.id)

    def _log(self, message: str) -> None:
        line = f"[sync:{self.config.id[:8]}] {message}"
        logger.info("%s", line)
        if self._on_log is not None:
            self._on_log(line)

    def _report_error(self, doc_path: str, exc: Exception) -> None:
        logger.error("Sync of %s failed: %s", doc_path, exc)
        if self._on_error is not None:
            self._on_error(exc)
