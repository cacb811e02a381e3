"""Background sync daemon.

``DaemonWorker`` manages every auto-sync configuration:

1. Startup reconciliation -- a one-shot ``SyncEngine.run()`` per config
   to catch changes made while the daemon was not running.
2. A ``SyncWatcher`` per config for local changes.
3. A ``RemotePoller`` per bidirectional config for remote changes.

``main()`` is the ``lsvault-sync-daemon`` entry point.  It logs to the
daemon log file (never a terminal), records its PID and runs until
SIGINT or SIGTERM.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv

from .. import __version__
from ..config import load_config
from ..config_loader import load_hierarchical_config
from ..config_schema import EngineConfig, SyncConfig, SyncMode, build_config
from ..core.client import VaultClient, VaultDocumentAPI
from ..logger import setup_logging
from .config_store import SyncConfigStore
from .engine import SyncEngine
from .ignore import IgnoreMatcher
from .models import SyncDiff
from .poller import RemotePoller, parse_sync_interval
from .reporter import (
    diff_to_json,
    format_dry_run_preview,
    format_progress,
    format_sync_result,
)
from .state import StateStore
from .watcher import SyncWatcher

logger = logging.getLogger(__name__)

DAEMON_DIR = Path.home() / ".lsvault" / "daemon"
PID_FILE = DAEMON_DIR / "daemon.pid"


# ---------------------------------------------------------------------------
# PID file
# ---------------------------------------------------------------------------


class PidFile:
    """The daemon's PID file."""

    def __init__(self, path: Path = PID_FILE) -> None:
        self.path = Path(path)

    def write(self, pid: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{pid}\n", encoding="utf-8")

    def read(self) -> int | None:
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def running_pid(self) -> int | None:
        """PID of a live daemon, removing a stale file if needed."""
        pid = self.read()
        if pid is None:
            return None
        if is_process_running(pid):
            return pid
        self.remove()
        return None


def is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user.
        return True
    return True


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


@dataclass
class _ManagedSync:
    config: SyncConfig
    watcher: SyncWatcher
    poller: RemotePoller | None = None


class DaemonWorker:
    """Run live sync for every auto-sync configuration.

    Args:
        client: Remote document API shared by all syncs.
        config_store: Source of sync configurations.
        state_store: Baseline persistence.
        settings: Engine tuning (debounce, poll interval, workers).
        watcher_options: Extra keyword arguments for ``SyncWatcher``
            (e.g. an ``observer_factory`` in tests).
    """

    def __init__(
        self,
        client: VaultDocumentAPI,
        config_store: SyncConfigStore,
        state_store: StateStore,
        settings: EngineConfig | None = None,
        watcher_options: dict[str, Any] | None = None,
    ) -> None:
        self.client = client
        self.config_store = config_store
        self.state_store = state_store
        self.settings = settings or EngineConfig()
        self.watcher_options = watcher_options or {}
        self._managed: list[_ManagedSync] = []

    @property
    def managed_ids(self) -> list[str]:
        return [m.config.id for m in self._managed]

    def start(self) -> int:
        """Reconcile and start watching every auto-sync configuration.

        Returns:
            Number of syncs started.
        """
        logger.info("Daemon starting...")
        configs = [c for c in self.config_store.load_all() if c.auto_sync]
        if not configs:
            logger.info(
                "No auto-sync configurations found. Daemon has nothing "
                "to do."
            )
            return 0
        logger.info("Found %d auto-sync configuration(s)", len(configs))

        for config in configs:
            self.reconcile(config)

        for config in configs:
            try:
                self._managed.append(self._start_sync(config))
            except Exception:
                logger.exception("Failed to start sync %s", config.id[:8])
                continue
            logger.info(
                "Started sync: %s (%s)", config.id[:8], config.local_path
            )

        logger.info("Daemon running with %d sync(s)", len(self._managed))
        return len(self._managed)

    def reconcile(self, config: SyncConfig) -> None:
        """Run one startup reconciliation; failures are only logged."""
        logger.info(
            "Reconciling %s (%s mode)...", config.id[:8], config.mode.value
        )
        try:
            engine = SyncEngine(
                self.client,
                config,
                self.state_store,
                self.config_store,
                extension=self.settings.document_extension,
            )
            result = engine.run(
                lambda p: logger.debug("%s", format_progress(p))
            )
        except Exception as exc:
            logger.error(
                "Reconciliation failed for %s: %s", config.id[:8], exc
            )
            return

        if result.total_files == 0 and not result.has_errors:
            logger.info("Reconciled %s: up to date", config.id[:8])
        else:
            logger.info(
                "Reconciled %s: %s",
                config.id[:8],
                format_sync_result(result, "Reconciliation"),
            )

    def preview(self, config: SyncConfig) -> list[SyncDiff]:
        """Compute the diffs ``reconcile`` would apply, applying none."""
        engine = SyncEngine(
            self.client,
            config,
            self.state_store,
            self.config_store,
            extension=self.settings.document_extension,
        )
        if config.mode is SyncMode.PULL:
            return [engine.plan_pull()]
        if config.mode is SyncMode.PUSH:
            return [engine.plan_push()]
        return [engine.plan_push(), engine.plan_pull()]

    def stop(self) -> None:
        logger.info("Daemon shutting down...")
        while self._managed:
            managed = self._managed.pop()
            try:
                if managed.poller is not None:
                    managed.poller.stop()
                managed.watcher.stop()
            except Exception:
                logger.exception(
                    "Error stopping sync %s", managed.config.id[:8]
                )
                continue
            logger.info("Stopped sync: %s", managed.config.id[:8])
        logger.info("Daemon stopped.")

    def _start_sync(self, config: SyncConfig) -> _ManagedSync:
        ignore = IgnoreMatcher(Path(config.local_path), config.ignore)
        prefix = config.id[:8]

        def on_error(exc: Exception) -> None:
            logger.error("ERROR [%s]: %s", prefix, exc)

        def on_conflict_log(line: str) -> None:
            logger.warning("CONFLICT: %s", line)

        watcher = SyncWatcher(
            self.client,
            config,
            self.state_store,
            ignore,
            self.config_store,
            debounce_seconds=self.settings.debounce_ms / 1000,
            on_conflict_log=on_conflict_log,
            on_error=on_error,
            max_workers=self.settings.max_workers,
            extension=self.settings.document_extension,
            **self.watcher_options,
        )
        watcher.start()

        poller = None
        if config.mode is SyncMode.SYNC:
            interval = (
                parse_sync_interval(config.sync_interval)
                or self.settings.poll_interval
            )
            poller = RemotePoller(
                self.client,
                config,
                self.state_store,
                ignore,
                self.config_store,
                interval_seconds=interval,
                on_conflict_log=on_conflict_log,
                on_error=on_error,
                on_local_write=watcher.mark_written,
            )
            poller.start()
        return _ManagedSync(config=config, watcher=watcher, poller=poller)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _install_signal_handlers(
    stop: Callable[[], None],
) -> None:
    def handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %d", signum)
        stop()

    signal.signal(signal.SIGTERM, handler)
    signal.signal(signal.SIGINT, handler)


def _print_preview(
    worker: DaemonWorker, config: SyncConfig, as_json: bool = False
) -> None:
    diffs = worker.preview(config)
    if as_json:
        print(
            json.dumps(
                {
                    "sync_id": config.id,
                    "mode": config.mode.value,
                    "diffs": [diff_to_json(d) for d in diffs],
                },
                indent=2,
            )
        )
        return
    print(f"{config.id[:8]} ({config.local_path}):")
    for diff in diffs:
        print(format_dry_run_preview(diff))


def main(argv: list[str] | None = None) -> int:
    """Run the sync daemon until SIGINT/SIGTERM."""
    parser = argparse.ArgumentParser(
        description="lsvault sync daemon - keeps auto-sync directories "
        "in step with their remote vaults",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: ~/.lsvault/daemon/daemon.log)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable DEBUG logging"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run startup reconciliation only, then exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="With --once, print what reconciliation would do",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="With --dry-run, print the preview as JSON",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"lsvault-sync-daemon version {__version__}",
    )
    args = parser.parse_args(argv)

    # .env first so ${VAR} interpolation in YAML can use its values
    load_dotenv()
    unified = build_config(load_hierarchical_config())
    setup_logging(
        mode="daemon",
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
    )

    yaml_fallbacks = {
        k: v for k, v in unified.api.model_dump().items() if v is not None
    }
    try:
        client_config = load_config(yaml_fallbacks=yaml_fallbacks)
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        print(f"ERROR: Configuration error: {exc}", file=sys.stderr)
        return 1

    worker = DaemonWorker(
        VaultClient(client_config),
        SyncConfigStore(unified.engine.config_path),
        StateStore(unified.engine.state_path),
        unified.engine,
    )

    if args.once:
        for config in worker.config_store.load_all():
            if not config.auto_sync:
                continue
            if args.dry_run:
                _print_preview(worker, config, as_json=args.json)
            else:
                worker.reconcile(config)
        return 0

    pid_file = PidFile()
    running = pid_file.running_pid()
    if running is not None and running != os.getpid():
        print(f"Daemon is already running (PID: {running})", file=sys.stderr)
        return 1

    stop_event = threading.Event()
    _install_signal_handlers(stop_event.set)
    pid_file.write(os.getpid())
    try:
        if worker.start() == 0:
            return 0
        while not stop_event.wait(1.0):
            pass
    finally:
        worker.stop()
        pid_file.remove()
    return 0


if __name__ == "__main__":
    sys.exit(main())
