"""Pydantic models for the sync engine.

Defines the core data contracts used across all sync modules:

- ``FileState``: Identity of one document on one side.
- ``SyncState``: Three-way baseline persisted per sync configuration.
- ``SyncAction`` / ``SyncDirection``: Change classification.
- ``SyncDiffEntry`` / ``SyncDiff``: Output of the diff engine.
- ``SyncPhase`` / ``SyncProgress``: Progress notifications.
- ``TransferError`` / ``SyncResult``: Outcome of one executor run.
- ``ConflictInfo`` / ``ConflictResolution``: Live-mode conflicts.

Value models are frozen.  ``SyncState`` is the one mutable model: the
executor updates it in place and persists it once per run.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO 8601 timestamp, returning ``None`` if malformed.

    Naive timestamps are taken as UTC.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class FileState(BaseModel):
    """Identity of one document on one side of the sync.

    Attributes:
        path: Relative document path (forward slashes, no leading slash).
        hash: SHA-256 hex digest of the content.  ``None`` when the
            source (a remote listing) does not report a hash.
        mtime: ISO 8601 modification time.
        size: Content size in bytes.
    """

    path: str
    hash: str | None = None
    mtime: str
    size: int = 0

    model_config = {"frozen": True}

    @field_validator("hash", mode="before")
    @classmethod
    def _empty_hash_is_missing(cls, value: object) -> object:
        return value or None

    @property
    def has_hash(self) -> bool:
        return self.hash is not None

    @property
    def modified_at(self) -> datetime | None:
        return parse_timestamp(self.mtime)

    def same_content(self, other: FileState) -> bool:
        """Return ``True`` if both states describe the same content.

        Hashes decide when both sides carry one.  Otherwise modification
        time (compared as instants) and size are the only signal.
        """
        if self.hash is not None and other.hash is not None:
            return self.hash == other.hash
        mine, theirs = self.modified_at, other.modified_at
        if mine is not None and theirs is not None:
            same_time = mine == theirs
        else:
            same_time = self.mtime == other.mtime
        return same_time and self.size == other.size


class SyncState(BaseModel):
    """Baseline of the last successful reconciliation for one sync.

    ``local`` and ``remote`` describe both sides as of the last
    reconciliation, not the current scan.  Serialised with camelCase
    keys (``syncId``, ``updatedAt``).
    """

    sync_id: str
    local: dict[str, FileState] = Field(default_factory=dict)
    remote: dict[str, FileState] = Field(default_factory=dict)
    updated_at: str = EPOCH.isoformat()

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True
    )

    def record(
        self, path: str, local: FileState, remote: FileState
    ) -> None:
        """Mark *path* as reconciled with the given side states."""
        self.local[path] = local
        self.remote[path] = remote

    def forget(self, path: str) -> None:
        """Drop *path* from both sides of the baseline."""
        self.local.pop(path, None)
        self.remote.pop(path, None)


class SyncAction(str, Enum):
    """Change classification for one path."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncDirection(str, Enum):
    """Which way a change travels."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


class SyncDiffEntry(BaseModel):
    """One change the executor must apply.

    Attributes:
        path: Document path.
        action: create, update or delete.
        direction: upload (local -> remote) or download.
        size_bytes: Transfer size; zero for deletes.
        reason: Human-readable cause.
    """

    path: str
    action: SyncAction
    direction: SyncDirection
    size_bytes: int = 0
    reason: str = ""

    model_config = {"frozen": True}


class SyncDiff(BaseModel):
    """Pure result of one diff computation."""

    uploads: list[SyncDiffEntry] = []
    downloads: list[SyncDiffEntry] = []
    deletes: list[SyncDiffEntry] = []
    total_bytes: int = 0

    model_config = {"frozen": True}

    @property
    def transfers(self) -> list[SyncDiffEntry]:
        """Uploads followed by downloads."""
        return [*self.uploads, *self.downloads]

    @property
    def total_operations(self) -> int:
        return len(self.uploads) + len(self.downloads) + len(self.deletes)

    @property
    def is_empty(self) -> bool:
        return self.total_operations == 0


class SyncPhase(str, Enum):
    SCANNING = "scanning"
    COMPUTING = "computing"
    TRANSFERRING = "transferring"
    COMPLETE = "complete"


class SyncProgress(BaseModel):
    """Progress notification emitted by the executor."""

    phase: SyncPhase
    current: int = 0
    total: int = 0
    current_file: str | None = None
    bytes_transferred: int = 0
    total_bytes: int = 0

    model_config = {"frozen": True}


class TransferError(BaseModel):
    """A path that failed to transfer or delete."""

    path: str
    error: str

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Outcome of one executor invocation.

    Attributes:
        files_uploaded: Successful uploads.
        files_downloaded: Successful downloads.
        files_deleted: Successful deletes.
        bytes_transferred: Sum of ``size_bytes`` of successful transfers.
        errors: Per-path failures.
        aborted: ``True`` if a quota error stopped the batch early.
    """

    files_uploaded: int = 0
    files_downloaded: int = 0
    files_deleted: int = 0
    bytes_transferred: int = 0
    errors: list[TransferError] = []
    aborted: bool = False

    model_config = {"frozen": True}

    @property
    def total_files(self) -> int:
        return (
            self.files_uploaded
            + self.files_downloaded
            + self.files_deleted
        )

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def merge(self, other: SyncResult) -> SyncResult:
        """Combine two results (e.g. the push and pull halves of a sync)."""
        return SyncResult(
            files_uploaded=self.files_uploaded + other.files_uploaded,
            files_downloaded=self.files_downloaded
            + other.files_downloaded,
            files_deleted=self.files_deleted + other.files_deleted,
            bytes_transferred=self.bytes_transferred
            + other.bytes_transferred,
            errors=[*self.errors, *other.errors],
            aborted=self.aborted or other.aborted,
        )


class ConflictResolution(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


class ConflictInfo(BaseModel):
    """A path changed on both sides since the baseline.

    Attributes:
        path: Document path.
        local: Current local state.
        remote: Current remote state.
        last_local: Baseline local state, if any.
        last_remote: Baseline remote state, if any.
    """

    path: str
    local: FileState
    remote: FileState
    last_local: FileState | None = None
    last_remote: FileState | None = None

    model_config = {"frozen": True}
