"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_result`` -- post-sync summary with per-path errors.
- ``format_dry_run_preview`` -- diff preview, nothing applied.
- ``format_progress`` -- one-line progress for a ``SyncProgress`` event.
- ``result_to_json`` / ``diff_to_json`` -- structured dicts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .diff import format_diff
from .models import SyncPhase

if TYPE_CHECKING:
    from .models import SyncDiff, SyncProgress, SyncResult


# ------------------------------------------------------------------
# Human-readable output
# ------------------------------------------------------------------


def format_sync_result(result: SyncResult, label: str = "Sync") -> str:
    """Format a completed run as human-readable text.

    Args:
        result: The executor result.
        label: Operation name for the header (``"Pull"``, ``"Push"``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    if result.aborted:
        lines.append(f"{label} aborted: storage quota exceeded")
    elif result.has_errors:
        lines.append(
            f"{label} completed with {len(result.errors)} error(s)"
        )
    else:
        lines.append(f"{label} complete")

    parts = []
    if result.files_uploaded:
        parts.append(f"{result.files_uploaded} uploaded")
    if result.files_downloaded:
        parts.append(f"{result.files_downloaded} downloaded")
    if result.files_deleted:
        parts.append(f"{result.files_deleted} deleted")
    lines.append(f"  {', '.join(parts) if parts else 'no changes'}")
    if result.bytes_transferred:
        lines.append(
            f"  {format_bytes(result.bytes_transferred)} transferred"
        )

    if result.errors:
        lines.append("")
        lines.append("Errors:")
        for err in result.errors:
            lines.append(f"  {err.path}: {err.error}")

    return "\n".join(lines)


def format_dry_run_preview(diff: SyncDiff) -> str:
    """Format a diff as a dry-run preview."""
    if diff.is_empty:
        return format_diff(diff)
    return "Dry run -- no changes will be made:\n" + format_diff(diff)


def format_progress(progress: SyncProgress) -> str:
    """Render one progress event, e.g. ``[3/10] notes/a.md``."""
    if progress.phase is SyncPhase.SCANNING:
        return "Scanning files..."
    if progress.phase is SyncPhase.COMPUTING:
        return f"Computing diff... {progress.total} operation(s)"
    if progress.phase is SyncPhase.COMPLETE:
        return (
            f"Done: {progress.current}/{progress.total} "
            f"({format_bytes(progress.bytes_transferred)})"
        )
    return f"[{progress.current}/{progress.total}] {progress.current_file}"


def format_bytes(size: int) -> str:
    """Format a byte count with a binary unit."""
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{int(value)} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: SyncResult) -> dict:
    """Convert a result to a structured dict for JSON serialisation."""
    if result.aborted:
        status = "aborted"
    elif result.has_errors:
        status = "partial"
    else:
        status = "ok"
    return {
        "status": status,
        "counts": {
            "uploaded": result.files_uploaded,
            "downloaded": result.files_downloaded,
            "deleted": result.files_deleted,
            "errors": len(result.errors),
        },
        "bytes_transferred": result.bytes_transferred,
        "errors": [
            {"path": err.path, "error": err.error} for err in result.errors
        ],
    }


def diff_to_json(diff: SyncDiff) -> dict:
    """Convert a diff to a structured dict (dry-run output)."""
    return {
        "dry_run": True,
        "uploads": [e.path for e in diff.uploads],
        "downloads": [e.path for e in diff.downloads],
        "deletes": [e.path for e in diff.deletes],
        "total_bytes": diff.total_bytes,
        "entries": [
            {
                "path": e.path,
                "action": e.action.value,
                "direction": e.direction.value,
                "size_bytes": e.size_bytes,
                "reason": e.reason,
            }
            for e in [*diff.uploads, *diff.downloads, *diff.deletes]
        ],
    }
