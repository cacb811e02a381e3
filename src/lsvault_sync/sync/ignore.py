"""Ignore pattern matching for sync operations.

Patterns come from three sources, merged in order and de-duplicated:

1. ``DEFAULT_IGNORE_PATTERNS`` -- version-control directories, OS cruft,
   temp files and the engine's own files.
2. Patterns from the sync configuration.
3. The ``.lsvault-ignore`` file at the sync root (one glob per line,
   ``#`` comments and blank lines skipped).

Matching rules (``should_ignore``):

* A pattern ending in ``/`` ignores that directory and everything
  below it.
* Otherwise the pattern is an ``fnmatch`` glob tested against both the
  full document path and its basename.  Matching is case-sensitive and
  dotfiles are not special.
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".lsvault-ignore"

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git/",
    ".svn/",
    ".hg/",
    "node_modules/",
    "*.tmp",
    ".DS_Store",
    "Thumbs.db",
    ".lsvault/",
    ".lsvault-*",
    "*.conflicted.*",
)


def load_ignore_file(local_root: Path) -> list[str]:
    """Load patterns from ``<local_root>/.lsvault-ignore``.

    Returns an empty list if the file is missing or unreadable.
    """
    ignore_file = Path(local_root) / IGNORE_FILE_NAME
    try:
        content = ignore_file.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read %s: %s", ignore_file, exc)
        return []

    patterns = []
    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def resolve_ignore_patterns(
    config_patterns: list[str], local_root: Path
) -> list[str]:
    """Combine default, config-level and ignore-file patterns."""
    merged = [
        *DEFAULT_IGNORE_PATTERNS,
        *config_patterns,
        *load_ignore_file(local_root),
    ]
    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(merged))


def should_ignore(doc_path: str, patterns: list[str]) -> bool:
    """Return ``True`` if *doc_path* is excluded by any pattern.

    *doc_path* is a relative path using forward slashes.  Directory
    paths may be passed with a trailing slash.  A pattern ending in
    ``/`` covers that directory at the sync root; like every pattern it
    is also tried as a glob.
    """
    basename = PurePosixPath(doc_path).name
    for pattern in patterns:
        if pattern.endswith("/"):
            dir_name = pattern[:-1]
            if doc_path == dir_name or doc_path.startswith(
                dir_name + "/"
            ):
                return True
        if fnmatch.fnmatchcase(doc_path, pattern):
            return True
        if basename and fnmatch.fnmatchcase(basename, pattern):
            return True
    return False


class IgnoreMatcher:
    """Resolved ignore patterns bound to one sync root.

    Args:
        local_root: The sync root holding the ``.lsvault-ignore`` file.
        config_patterns: Extra patterns from the sync configuration.
    """

    def __init__(
        self,
        local_root: Path,
        config_patterns: list[str] | None = None,
    ) -> None:
        self.local_root = Path(local_root)
        self.patterns = resolve_ignore_patterns(
            list(config_patterns or []), self.local_root
        )

    def matches(self, doc_path: str) -> bool:
        return should_ignore(doc_path, self.patterns)

    def __contains__(self, doc_path: str) -> bool:
        return self.matches(doc_path)
