"""Path joining and human-readable formatting utilities."""

from __future__ import annotations

import os
import posixpath
from pathlib import Path, PurePath


def posix_join(*parts: str) -> str:
    """Join path parts using POSIX (forward-slash) rules.

    Suitable for constructing remote server paths regardless of the
    local OS.
    """
    return posixpath.join(*parts)


def to_posix(relative: PurePath) -> str:
    """Render a local relative path with forward slashes."""
    return relative.as_posix()


def remote_parent(remote_path: str) -> str:
    """Return the directory containing *remote_path* (POSIX semantics)."""
    return posixpath.dirname(remote_path.rstrip("/")) or "/"


def normalize_local_path(path: str | os.PathLike[str]) -> Path:
    """Make *path* absolute and normalised without following symlinks.

    Keeps the name the user typed, so a symlinked upload root is uploaded
    under its link name.
    """
    return Path(os.path.abspath(Path(path).expanduser()))


def human_readable_size(size_bytes: int | float) -> str:
    """Convert a byte count to a human-readable string (e.g. "4.2 MB").

    Uses 1024-based units (KiB/MiB/GiB) but labels them KB/MB/GB for
    familiarity with everyday usage.
    """
    if size_bytes < 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size_bytes < 1024.0:
            if unit == "B":
                return f"{int(size_bytes)} B"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"
