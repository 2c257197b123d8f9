"""Mapping between local vault paths and remote paths.

Local paths are relative, use forward slashes and never start with a slash.
Remote paths are absolute and live below a configurable base path.
"""

import re
from typing import Optional

DOCUMENT_SUFFIX = ".md"

_CONFLICT_COPY_RE = re.compile(r"\s\(conflict [^)]+\)(-\d+)?\.md$", re.IGNORECASE)
_REPEATED_SLASHES_RE = re.compile(r"/{2,}")


def normalize_local_path(path: str) -> str:
    """Normalize a local path to forward slashes without a leading slash.

    Args:
        path: Path as reported by the filesystem or the user

    Returns:
        Normalized relative path
    """
    return path.replace("\\", "/").lstrip("/")


def normalize_remote_base_path(path: str) -> str:
    """Normalize a remote path to start with "/" and have no trailing slash.

    An empty path or "/" both mean the remote root.

    Examples:
        >>> normalize_remote_base_path("notes/")
        '/notes'
        >>> normalize_remote_base_path("  ")
        '/'
    """
    trimmed = path.strip().replace("\\", "/")
    if not trimmed or trimmed == "/":
        return "/"

    if not trimmed.startswith("/"):
        trimmed = f"/{trimmed}"
    return _REPEATED_SLASHES_RE.sub("/", trimmed).rstrip("/") or "/"


def to_remote_path(remote_base_path: str, local_path: str) -> str:
    """Build the remote path for a local relative path."""
    base = normalize_remote_base_path(remote_base_path)
    local = normalize_local_path(local_path)
    if base == "/":
        return f"/{local}"
    return _REPEATED_SLASHES_RE.sub("/", f"{base}/{local}")


def to_local_path(remote_base_path: str, remote_path: str) -> Optional[str]:
    """Map a remote path back to a local relative path.

    Returns:
        The local path, or None when the remote path is the base itself or
        lies outside of it
    """
    base = normalize_remote_base_path(remote_base_path)
    remote = normalize_remote_base_path(remote_path)

    if base == "/":
        return remote.lstrip("/")
    if remote == base:
        return None
    if not remote.startswith(f"{base}/"):
        return None
    return remote[len(base) + 1 :]


def is_document_path(path: str) -> bool:
    """Return True for Markdown documents."""
    return path.lower().endswith(DOCUMENT_SUFFIX)


def is_conflict_copy_path(path: str) -> bool:
    """Return True for conflict copies created by the sync engine.

    Recognition only looks at the file name suffix, so a conflict copy is
    detected wherever it sits in the tree.
    """
    return _CONFLICT_COPY_RE.search(normalize_local_path(path)) is not None
