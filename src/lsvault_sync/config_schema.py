"""Unified configuration schema for lsvault_sync.

Defines Pydantic models for the unified config structure (API
connection, engine tuning, logging) and for the per-directory sync
configurations persisted in ``syncs.json``.

Usage:
    from lsvault_sync.config_loader import load_hierarchical_config
    from lsvault_sync.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    store = StateStore(unified.engine.state_path)
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

EPOCH_ISO = "1970-01-01T00:00:00+00:00"


# ---------------------------------------------------------------------------
# Sync configuration records
# ---------------------------------------------------------------------------


class SyncMode(str, Enum):
    """Sync direction for one local-directory / vault pairing."""

    PULL = "pull"  # pull-only: remote -> local
    PUSH = "push"  # push-only: local -> remote
    SYNC = "sync"  # bidirectional


class ConflictPolicy(str, Enum):
    """Whole-file policy applied when both sides changed."""

    NEWER = "newer"
    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


class SyncConfig(BaseModel):
    """One persisted local-directory <-> remote-vault pairing.

    Owned by the configuration collaborator (``SyncConfigStore``); the
    engine only reads it and asks for ``last_sync_at`` to be advanced.

    Attributes:
        id: Stable identifier of the pairing (also keys the sync state).
        vault_id: Remote vault identifier.
        local_path: Absolute local directory.
        mode: Sync direction.
        on_conflict: Conflict policy used in live mode.
        ignore: Extra user ignore patterns.
        last_sync_at: ISO 8601 timestamp of last successful sync.
        sync_interval: Remote poll interval for auto-sync (``"5m"``).
        auto_sync: Whether the daemon manages this pairing.
    """

    id: str
    vault_id: str
    local_path: str
    mode: SyncMode = SyncMode.SYNC
    on_conflict: ConflictPolicy = ConflictPolicy.NEWER
    ignore: list[str] = Field(default_factory=list)
    last_sync_at: str = EPOCH_ISO
    sync_interval: str | None = None
    auto_sync: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True
    )

    @field_validator("on_conflict", mode="before")
    @classmethod
    def _legacy_ask(cls, value: object) -> object:
        # Older configs call the manual policy "ask".
        if value == "ask":
            return ConflictPolicy.MANUAL
        return value


class CreateSyncOptions(BaseModel):
    """Options for creating a new sync configuration."""

    vault_id: str
    local_path: str
    mode: SyncMode = SyncMode.SYNC
    on_conflict: ConflictPolicy = ConflictPolicy.NEWER
    ignore: list[str] | None = None
    sync_interval: str | None = None
    auto_sync: bool = False

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ApiConfig(BaseModel):
    """Remote vault API connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="Vault API URL")
    api_key: str | None = Field(default=None, description="API key")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    timeout: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Read timeout in seconds for API requests",
    )

    model_config = {"frozen": True}


class EngineConfig(BaseModel):
    """Sync engine tuning and storage locations.

    Attributes:
        state_dir: Directory holding per-sync state files.
        config_dir: Directory holding ``syncs.json``.
        debounce_ms: Watcher stability window per path.
        poll_interval: Default remote poll interval in seconds.
        document_extension: Suffix of files that participate in sync.
        max_workers: Watcher transfer worker threads.
    """

    state_dir: str = Field(
        default="~/.lsvault/sync-state",
        description="Per-sync state directory",
    )
    config_dir: str = Field(
        default="~/.lsvault", description="Sync config directory"
    )
    debounce_ms: int = Field(default=500, ge=0, le=60000)
    poll_interval: float = Field(default=30.0, gt=0)
    document_extension: str = Field(default=".md")
    max_workers: int = Field(default=4, ge=1, le=32)

    model_config = {"frozen": True}

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir).expanduser()


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    api: ApiConfig = Field(default_factory=ApiConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
