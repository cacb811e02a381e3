"""Sync configuration persistence.

Manages ``<config_dir>/syncs.json`` -- the list of every configured
local-directory / vault pairing.  This is the configuration
collaborator of the engine: it supplies ``SyncConfig`` records and
receives ``update_last_sync()`` after each successful cycle.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from ..config_schema import CreateSyncOptions, SyncConfig
from .models import utc_now_iso

logger = logging.getLogger(__name__)

SYNCS_FILE_NAME = "syncs.json"
DEFAULT_IGNORE = [".git", ".DS_Store", "node_modules"]

_CONFIG_LIST = TypeAdapter(list[SyncConfig])


class LastSyncRecorder(Protocol):
    """The one call the engine makes back into configuration."""

    def update_last_sync(
        self, sync_id: str, timestamp: str | None = None
    ) -> None: ...  # pragma: no cover


class SyncConfigStore:
    """Load, create, delete and update sync configurations.

    Args:
        config_dir: Directory holding ``syncs.json``
            (typically ``~/.lsvault``).
    """

    def __init__(self, config_dir: Path) -> None:
        self._config_dir = Path(config_dir)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._config_dir / SYNCS_FILE_NAME

    def load_all(self) -> list[SyncConfig]:
        """Read all valid sync configurations.

        A missing or unreadable file yields ``[]``; invalid records are
        skipped with a warning.
        """
        try:
            return self._read()[0]
        except (OSError, ValueError) as exc:
            logger.warning("Could not read %s: %s", self.path, exc)
            return []

    def save_all(self, configs: list[SyncConfig]) -> None:
        """Write all sync configurations atomically."""
        self._write(configs, [])

    def _read(self) -> tuple[list[SyncConfig], list[Any]]:
        """Return valid configurations and the raw records that failed.

        Raises:
            ValueError: If the file exists but is not a JSON list.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return [], []
        try:
            records = json.loads(raw)
        except ValueError as exc:
            raise ValueError(f"corrupt JSON: {exc}") from exc
        if not isinstance(records, list):
            raise ValueError("expected a JSON list of sync configurations")

        configs: list[SyncConfig] = []
        invalid: list[Any] = []
        for index, record in enumerate(records):
            try:
                configs.append(SyncConfig.model_validate(record))
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid sync config #%d in %s: %s",
                    index,
                    self.path,
                    exc,
                )
                invalid.append(record)
        return configs, invalid

    def _write(self, configs: list[SyncConfig], invalid: list[Any]) -> None:
        # Records that failed validation are written back untouched.
        self._config_dir.mkdir(parents=True, exist_ok=True)
        records = [
            *_CONFIG_LIST.dump_python(configs, by_alias=True, mode="json"),
            *invalid,
        ]
        payload = json.dumps(records, indent=2).encode("utf-8")
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._config_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload + b"\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def get(self, sync_id: str) -> SyncConfig | None:
        return next(
            (c for c in self.load_all() if c.id == sync_id), None
        )

    def get_by_vault(self, vault_id: str) -> SyncConfig | None:
        """First configuration for *vault_id* (normally the only one)."""
        return next(
            (c for c in self.load_all() if c.vault_id == vault_id),
            None,
        )

    def create(self, opts: CreateSyncOptions) -> SyncConfig:
        """Create and persist a new configuration with a generated id.

        Raises:
            ValueError: If the vault is already synced to the same path,
                or ``syncs.json`` exists but cannot be parsed.
        """
        with self._lock:
            configs, invalid = self._read()
            for existing in configs:
                if (
                    existing.vault_id == opts.vault_id
                    and existing.local_path == opts.local_path
                ):
                    raise ValueError(
                        f"Sync already exists for vault {opts.vault_id} "
                        f"at {opts.local_path} (id: {existing.id})"
                    )

            config = SyncConfig(
                id=str(uuid.uuid4()),
                vault_id=opts.vault_id,
                local_path=opts.local_path,
                mode=opts.mode,
                on_conflict=opts.on_conflict,
                ignore=(
                    list(opts.ignore)
                    if opts.ignore is not None
                    else list(DEFAULT_IGNORE)
                ),
                sync_interval=opts.sync_interval,
                auto_sync=opts.auto_sync,
            )
            configs.append(config)
            self._write(configs, invalid)
            logger.info(
                "Created sync %s for vault %s at %s",
                config.id,
                config.vault_id,
                config.local_path,
            )
            return config

    def delete(self, sync_id: str) -> bool:
        """Delete a configuration.  Returns whether it existed."""
        with self._lock:
            configs, invalid = self._read()
            remaining = [c for c in configs if c.id != sync_id]
            if len(remaining) == len(configs):
                return False
            self._write(remaining, invalid)
            return True

    def update_last_sync(
        self, sync_id: str, timestamp: str | None = None
    ) -> None:
        """Advance ``last_sync_at`` for *sync_id*.

        Raises:
            KeyError: If no configuration has that id.
            ValueError: If ``syncs.json`` cannot be parsed.
        """
        with self._lock:
            configs, invalid = self._read()
            for config in configs:
                if config.id == sync_id:
                    config.last_sync_at = timestamp or utc_now_iso()
                    break
            else:
                raise KeyError(f"Sync config not found: {sync_id}")
            self._write(configs, invalid)


def record_last_sync(store: LastSyncRecorder, sync_id: str) -> None:
    """Call ``update_last_sync``, logging instead of failing the sync."""
    try:
        store.update_last_sync(sync_id)
    except KeyError:
        logger.warning(
            "Sync config %s is not registered; last sync not recorded",
            sync_id,
        )
    except (OSError, ValueError) as exc:
        logger.warning(
            "Could not record last sync for %s: %s", sync_id, exc
        )
