"""Current-snapshot scanners for both sides of a sync.

- ``scan_local_files`` walks the sync root and hashes every document.
  Ignored directories are pruned before descending into them.
- ``scan_remote_files`` turns the vault listing into ``FileState``
  records.  Listings carry no content hash, so those records have
  ``hash=None`` and the diff engine falls back to mtime/size.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ..core.client import VaultDocumentAPI
from .ignore import should_ignore
from .models import FileState
from .state import build_file_state

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".md"


def scan_local_files(
    local_root: Path,
    ignore_patterns: list[str],
    extension: str = DEFAULT_EXTENSION,
) -> dict[str, FileState]:
    """Scan *local_root* recursively for documents.

    Args:
        local_root: Sync root directory.
        ignore_patterns: Resolved ignore patterns.
        extension: Suffix a file must have to be a document.

    Returns:
        Map of document path -> ``FileState``.  Empty if the root does
        not exist.
    """
    files: dict[str, FileState] = {}

    def walk(directory: Path, prefix: str) -> None:
        try:
            entries = list(os.scandir(directory))
        except FileNotFoundError:
            return
        for entry in sorted(entries, key=lambda e: e.name):
            rel_path = f"{prefix}/{entry.name}" if prefix else entry.name
            if entry.is_dir(follow_symlinks=False):
                if not should_ignore(rel_path + "/", ignore_patterns):
                    walk(Path(entry.path), rel_path)
            elif entry.is_file(follow_symlinks=False):
                if not entry.name.endswith(extension):
                    continue
                if should_ignore(rel_path, ignore_patterns):
                    continue
                try:
                    files[rel_path] = build_file_state(
                        Path(entry.path), rel_path
                    )
                except OSError as exc:
                    # Vanished or unreadable between listing and read.
                    logger.warning(
                        "Skipping unreadable file %s: %s", rel_path, exc
                    )

    walk(Path(local_root), "")
    return files


def scan_remote_files(
    client: VaultDocumentAPI,
    vault_id: str,
    ignore_patterns: list[str],
) -> dict[str, FileState]:
    """List the remote vault as a map of document path -> ``FileState``."""
    files: dict[str, FileState] = {}
    for doc in client.list_documents(vault_id):
        path = doc.path.lstrip("/")
        if should_ignore(path, ignore_patterns):
            continue
        files[path] = FileState(
            path=path,
            hash=None,
            mtime=doc.file_modified_at or doc.updated_at or "",
            size=doc.size_bytes,
        )
    return files
