"""File handler module: document paths, encoding-aware read, atomic write.

Provides the local file I/O used by the executor, watcher and poller.
All functions are plain synchronous helpers with no state.
"""

import os
import secrets
from pathlib import Path, PurePosixPath

from charset_normalizer import from_bytes

# =============================================================================
# Document paths
# =============================================================================


def to_doc_path(root: Path, abs_path: Path | str) -> str:
    """Convert an absolute path under *root* to a document path.

    Document paths are relative, forward-slash separated and carry no
    leading slash, regardless of platform.
    """
    rel = os.path.relpath(os.fspath(abs_path), os.fspath(root))
    return PurePosixPath(*Path(rel).parts).as_posix()


def resolve_doc_path(root: Path, doc_path: str) -> Path:
    """Return the absolute local path for *doc_path*.

    Raises:
        ValueError: If the document path escapes *root*.
    """
    root = root.resolve()
    candidate = (root / PurePosixPath(doc_path)).resolve()
    if not candidate.is_relative_to(root):
        raise ValueError(
            f"Document path escapes sync root: {doc_path}"
        )
    return candidate


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    UTF-8 is tried first since documents are almost always UTF-8; other
    encodings are detected with charset-normalizer.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    return decode_content(path.read_bytes())


def decode_content(raw: bytes) -> tuple[str, str]:
    """Decode *raw* document bytes; see ``read_file_with_encoding``."""
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        return (raw.decode("utf-8", errors="replace"), "utf-8")
    return (str(result), result.encoding)


def atomic_write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write *content* so readers never observe a half-written file.

    Writes to ``<name>.tmp.<random hex>`` in the target directory, then
    renames over the target.  Parent directories are created as needed.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    tmp_path = path.with_name(
        f"{path.name}.tmp.{secrets.token_hex(4)}"
    )
    try:
        tmp_path.write_bytes(encoded)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink()
        except OSError:
            pass
        raise
    return len(encoded)


def remove_file(path: Path) -> bool:
    """Delete *path* if it exists.  Returns whether a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
