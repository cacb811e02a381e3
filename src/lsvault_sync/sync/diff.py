"""Three-way diff between current snapshots and the sync baseline.

``compute_push_diff`` and ``compute_pull_diff`` share one routine that
is parameterised by which side is the *source* (the side whose changes
are propagated) and which is the *destination*.  Each side is compared
against its own baseline entry, never against the other side, except
when there is no baseline at all.

Classification per path (source S, destination D, baseline B):

==========================  ======================================
S present, D absent         create (update if B had it on both
                            sides: D deleted it, S restores it)
S and D present             update if S changed since B[source],
                            or if no B[source] and S != D
S absent, D present, B[S]   delete on the destination
only D present, no B        nothing (destination-only file)
==========================  ======================================
"""

from __future__ import annotations

from .models import (
    FileState,
    SyncAction,
    SyncDiff,
    SyncDiffEntry,
    SyncDirection,
    SyncState,
)
from .state import has_file_changed

_SIDES = {
    SyncDirection.UPLOAD: ("local", "remote", "push"),
    SyncDirection.DOWNLOAD: ("remote", "local", "pull"),
}


def _compute_diff(
    source: dict[str, FileState],
    destination: dict[str, FileState],
    baseline_source: dict[str, FileState],
    baseline_destination: dict[str, FileState],
    direction: SyncDirection,
) -> SyncDiff:
    src, dst, verb = _SIDES[direction]
    transfers: list[SyncDiffEntry] = []
    deletes: list[SyncDiffEntry] = []

    def entry(
        path: str, action: SyncAction, size: int, reason: str
    ) -> SyncDiffEntry:
        return SyncDiffEntry(
            path=path,
            action=action,
            direction=direction,
            size_bytes=size,
            reason=reason,
        )

    paths = sorted(
        set(source)
        | set(destination)
        | set(baseline_source)
        | set(baseline_destination)
    )
    for path in paths:
        current = source.get(path)
        target = destination.get(path)
        known = baseline_source.get(path)

        if current is not None:
            if target is None:
                if known is not None and path in baseline_destination:
                    transfers.append(
                        entry(
                            path,
                            SyncAction.UPDATE,
                            current.size,
                            f"Deleted on {dst}, exists on {src} "
                            f"({verb} restores)",
                        )
                    )
                else:
                    transfers.append(
                        entry(
                            path,
                            SyncAction.CREATE,
                            current.size,
                            f"New {src} file",
                        )
                    )
            elif known is not None:
                if has_file_changed(current, known):
                    transfers.append(
                        entry(
                            path,
                            SyncAction.UPDATE,
                            current.size,
                            f"{src.capitalize()} file updated",
                        )
                    )
            elif not current.same_content(target):
                transfers.append(
                    entry(
                        path,
                        SyncAction.UPDATE,
                        current.size,
                        f"Content differs (first sync, {verb} "
                        f"prefers {src})",
                    )
                )
        elif target is not None and known is not None:
            deletes.append(
                entry(path, SyncAction.DELETE, 0, f"Deleted on {src}")
            )

    total_bytes = sum(e.size_bytes for e in transfers)
    if direction is SyncDirection.UPLOAD:
        return SyncDiff(
            uploads=transfers, deletes=deletes, total_bytes=total_bytes
        )
    return SyncDiff(
        downloads=transfers, deletes=deletes, total_bytes=total_bytes
    )


def compute_push_diff(
    local_files: dict[str, FileState],
    remote_files: dict[str, FileState],
    last_state: SyncState,
) -> SyncDiff:
    """Changes to upload (local -> remote) since *last_state*."""
    return _compute_diff(
        local_files,
        remote_files,
        last_state.local,
        last_state.remote,
        SyncDirection.UPLOAD,
    )


def compute_pull_diff(
    remote_files: dict[str, FileState],
    local_files: dict[str, FileState],
    last_state: SyncState,
) -> SyncDiff:
    """Changes to download (remote -> local) since *last_state*."""
    return _compute_diff(
        remote_files,
        local_files,
        last_state.remote,
        last_state.local,
        SyncDirection.DOWNLOAD,
    )


def format_diff(diff: SyncDiff) -> str:
    """Format a diff for human-readable display."""
    if diff.is_empty:
        return "Everything is up to date."

    symbols = {
        SyncAction.CREATE: "+",
        SyncAction.UPDATE: "~",
        SyncAction.DELETE: "-",
    }
    lines = [
        f"  {symbols[e.action]} {e.path} ({e.reason})"
        for e in [*diff.downloads, *diff.uploads, *diff.deletes]
    ]
    total_kb = -(-diff.total_bytes // 1024)
    lines.append("")
    lines.append(
        f"{diff.total_operations} file(s), {total_kb} KB to transfer"
    )
    return "\n".join(lines)
