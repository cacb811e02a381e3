"""Bidirectional document sync engine.

Public API for keeping a local directory of Markdown documents
consistent with a remote vault.

Architecture
------------
The engine uses **three-way baseline reconciliation**: each side is
compared against its own record from the last successful sync, never
directly against the other side.  A path is transferred only when its
source side changed since that baseline.

Modules:

- ``models``       -- ``FileState``, ``SyncState``, ``SyncDiff``,
  ``SyncResult`` and friends: core data contracts.
- ``ignore``       -- Default, config and ``.lsvault-ignore`` patterns.
- ``state``        -- ``StateStore``: load/save JSON baselines.
- ``scanner``      -- Local and remote snapshots.
- ``diff``         -- ``compute_push_diff`` / ``compute_pull_diff``.
- ``retry``        -- Bounded exponential backoff.
- ``engine``       -- ``SyncEngine`` and the shared executor.
- ``resolver``     -- Whole-file conflict policies.
- ``watcher``      -- Live local change feed (watchdog).
- ``poller``       -- Live remote change feed.
- ``config_store`` -- ``syncs.json`` persistence.
- ``reporter``     -- Human-readable and JSON output.
- ``daemon``       -- Background worker for auto-sync configurations.

Usage example
-------------
::

    from pathlib import Path
    from lsvault_sync.config import load_config
    from lsvault_sync.core.client import VaultClient
    from lsvault_sync.sync import (
        StateStore,
        SyncConfigStore,
        SyncEngine,
        format_diff,
        format_sync_result,
    )

    configs = SyncConfigStore(Path("~/.lsvault").expanduser())
    config = configs.get(sync_id)

    engine = SyncEngine(
        client=VaultClient(load_config()),
        config=config,
        state_store=StateStore(Path("~/.lsvault/sync-state").expanduser()),
        config_store=configs,
    )

    # Preview, then apply
    print(format_diff(engine.plan_pull()))
    print(format_sync_result(engine.run()))
"""

from .config_store import SyncConfigStore
from .diff import compute_pull_diff, compute_push_diff, format_diff
from .engine import SyncEngine, execute_sync_operation
from .ignore import IgnoreMatcher
from .models import (
    FileState,
    SyncDiff,
    SyncDiffEntry,
    SyncProgress,
    SyncResult,
    SyncState,
)
from .reporter import format_sync_result, result_to_json
from .state import StateStore
from .watcher import SyncWatcher

__all__ = [
    "FileState",
    "IgnoreMatcher",
    "StateStore",
    "SyncConfigStore",
    "SyncDiff",
    "SyncDiffEntry",
    "SyncEngine",
    "SyncProgress",
    "SyncResult",
    "SyncState",
    "SyncWatcher",
    "compute_pull_diff",
    "compute_push_diff",
    "execute_sync_operation",
    "format_diff",
    "format_sync_result",
    "result_to_json",
]
