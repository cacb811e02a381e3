"""Conflict detection and resolution for live sync.

A conflict is a path that changed on both sides since the baseline.
Resolution is whole-file; document content is never merged.

Resolvers (selected by ``ConflictPolicy`` via ``create_resolver()``):

- ``NewerWinsResolver``: Later modification time wins; ties and
  unparseable times fall back to manual.
- ``LocalWinsResolver``: Always picks local content.
- ``RemoteWinsResolver``: Always picks remote content.
- ``ManualResolver``: Never picks; leaves a conflict copy for the user.

``ConflictHandler`` applies a resolution: it writes the conflict copy,
moves the winning content to the losing side and returns the new
baseline for the path.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol

from ..config_schema import ConflictPolicy, SyncConfig
from ..file_handler import atomic_write_file, resolve_doc_path
from .engine import PushHandler, TransferOutcome, reconciled_states
from .models import (
    ConflictInfo,
    ConflictResolution,
    FileState,
    utc_now_iso,
)
from .state import build_remote_file_state, has_file_changed

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def detect_conflict(
    local: FileState,
    remote: FileState,
    last_local: FileState | None,
    last_remote: FileState | None,
) -> bool:
    """Return ``True`` if *local* and *remote* diverged.

    Without a baseline for both sides, any content difference is a
    conflict.  Otherwise both sides must have changed since it.
    """
    if last_local is None or last_remote is None:
        return not local.same_content(remote)
    return has_file_changed(local, last_local) and has_file_changed(
        remote, last_remote
    )


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, conflict: ConflictInfo) -> ConflictResolution:
        """Pick the winning side for *conflict*."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


class NewerWinsResolver:
    """Resolve in favour of the side with the later modification time."""

    def resolve(self, conflict: ConflictInfo) -> ConflictResolution:
        local_time = conflict.local.modified_at
        remote_time = conflict.remote.modified_at
        if local_time is None or remote_time is None:
            logger.warning(
                "Cannot compare modification times for %s", conflict.path
            )
            return ConflictResolution.MANUAL
        if local_time > remote_time:
            return ConflictResolution.LOCAL
        if remote_time > local_time:
            return ConflictResolution.REMOTE
        return ConflictResolution.MANUAL


class LocalWinsResolver:
    """Always resolve conflicts in favour of local content."""

    def resolve(self, conflict: ConflictInfo) -> ConflictResolution:
        return ConflictResolution.LOCAL


class RemoteWinsResolver:
    """Always resolve conflicts in favour of remote content."""

    def resolve(self, conflict: ConflictInfo) -> ConflictResolution:
        return ConflictResolution.REMOTE


class ManualResolver:
    """Leave both sides alone and write a conflict copy."""

    def resolve(self, conflict: ConflictInfo) -> ConflictResolution:
        return ConflictResolution.MANUAL


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[ConflictPolicy, type] = {
    ConflictPolicy.NEWER: NewerWinsResolver,
    ConflictPolicy.LOCAL: LocalWinsResolver,
    ConflictPolicy.REMOTE: RemoteWinsResolver,
    ConflictPolicy.MANUAL: ManualResolver,
}


def create_resolver(policy: ConflictPolicy | str) -> ConflictResolver:
    """Create a conflict resolver for *policy*.

    Args:
        policy: A ``ConflictPolicy`` or its string value.  The legacy
            name ``"ask"`` maps to manual.

    Raises:
        ValueError: If the policy is not recognised.
    """
    if policy == "ask":
        policy = ConflictPolicy.MANUAL
    try:
        cls = _STRATEGY_MAP[ConflictPolicy(policy)]
    except ValueError:
        raise ValueError(
            f"Unknown conflict policy: '{policy}'. Valid policies: "
            f"{sorted(p.value for p in _STRATEGY_MAP)}"
        ) from None
    return cls()


# ---------------------------------------------------------------------------
# Conflict copies and log lines
# ---------------------------------------------------------------------------


def conflict_file_name(
    doc_path: str, source: str, now: datetime | None = None
) -> str:
    """Return ``<base>.conflicted.<source>.<timestamp><ext>``."""
    base, ext = posixpath.splitext(doc_path)
    stamp = (now or datetime.now(timezone.utc)).strftime(
        "%Y-%m-%dT%H-%M-%S"
    )
    return f"{base}.conflicted.{source}.{stamp}{ext}"


def create_conflict_file(
    local_root: Path,
    doc_path: str,
    content: str,
    source: str,
    now: datetime | None = None,
) -> str:
    """Write *content* as a conflict copy next to *doc_path*.

    Returns:
        The conflict copy's document path.
    """
    conflict_path = conflict_file_name(doc_path, source, now)
    atomic_write_file(resolve_doc_path(local_root, conflict_path), content)
    return conflict_path


def format_conflict_log(
    doc_path: str,
    resolution: ConflictResolution,
    conflict_file: str | None,
    now: datetime | None = None,
) -> str:
    """Render ``[ts] CONFLICT <path>: resolved=<r> (backup: <file>)``."""
    ts = (now or datetime.now(timezone.utc)).isoformat()
    note = f" (backup: {conflict_file})" if conflict_file else ""
    return (
        f"[{ts}] CONFLICT {doc_path}: "
        f"resolved={ConflictResolution(resolution).value}{note}"
    )


# ---------------------------------------------------------------------------
# Applying a resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConflictOutcome:
    """Result of handling one conflict.

    Attributes:
        resolution: The resolver's decision.
        conflict_file: Document path of the conflict copy.
        baseline: New ``(local, remote)`` baseline for the path, or
            ``None`` when the baseline must stay untouched (manual).
    """

    resolution: ConflictResolution
    conflict_file: str
    baseline: tuple[FileState, FileState] | None


class ConflictHandler:
    """Apply resolver decisions for one sync configuration.

    Args:
        config: The sync configuration.
        resolver: Strategy deciding each conflict.
        pusher: Used to upload local content when local wins.
        on_local_write: Called before the handler overwrites a local
            document.
        log: Sink for human-readable progress lines.
        conflict_log: Sink for ``format_conflict_log`` lines.
    """

    def __init__(
        self,
        config: SyncConfig,
        resolver: ConflictResolver,
        pusher: PushHandler,
        on_local_write: Callable[[str], None] | None = None,
        log: Callable[[str], None] | None = None,
        conflict_log: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.pusher = pusher
        self.on_local_write = on_local_write
        self.log = log or (lambda message: None)
        self.conflict_log = conflict_log or (lambda message: None)
        self.root = Path(config.local_path)

    def handle(
        self,
        conflict: ConflictInfo,
        local_content: str,
        remote_content: str,
    ) -> ConflictOutcome:
        """Resolve *conflict* and move content accordingly."""
        resolution = self.resolver.resolve(conflict)
        path = conflict.path
        baseline = None

        if resolution is ConflictResolution.LOCAL:
            backup = create_conflict_file(
                self.root, path, remote_content, "remote"
            )
            outcome = self.pusher.upload(path, local_content)
            baseline = (
                conflict.local,
                build_remote_file_state(
                    path,
                    local_content,
                    outcome.remote_mtime or utc_now_iso(),
                ),
            )
            self.log(
                f"Conflict: {path} -- used local, saved remote as {backup}"
            )
        elif resolution is ConflictResolution.REMOTE:
            backup = create_conflict_file(
                self.root, path, local_content, "local"
            )
            if self.on_local_write is not None:
                self.on_local_write(path)
            atomic_write_file(
                resolve_doc_path(self.root, path), remote_content
            )
            baseline = reconciled_states(
                path,
                TransferOutcome(
                    content=remote_content,
                    remote_mtime=conflict.remote.mtime or None,
                ),
            )
            self.log(
                f"Conflict: {path} -- used remote, saved local as {backup}"
            )
        else:
            backup = create_conflict_file(
                self.root, path, remote_content, "remote"
            )
            self.log(
                f"Conflict: {path} -- left unresolved, saved remote "
                f"as {backup}"
            )

        logger.warning(
            "Conflict on %s resolved=%s (backup: %s)",
            path,
            resolution.value,
            backup,
        )
        self.conflict_log(format_conflict_log(path, resolution, backup))
        return ConflictOutcome(
            resolution=resolution, conflict_file=backup, baseline=baseline
        )
