"""Local tree walker for arkv.

Turns the upload root into the ordered list of files to send.  A single
file lands directly under the destination's remote path; a directory is
recreated one level down, under a remote directory named after itself.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from arkv.errors import PathError
from arkv.utils.path_helpers import normalize_local_path, posix_join, to_posix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferTask:
    """One file to copy: local source, path relative to the root, remote target."""

    local_path: Path
    relative_path: str
    remote_path: str


@dataclass
class UploadPlan:
    """Every file one destination will receive for a given upload root."""

    root: Path
    is_directory: bool
    tasks: list[TransferTask] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.tasks)

    def describe(self) -> str:
        """Short summary for completion messages: the file name or a file count."""
        if not self.is_directory:
            return self.root.name
        return f"{self.file_count} file" + ("" if self.file_count == 1 else "s")


def resolve_root(local_path: str | os.PathLike[str]) -> Path:
    """Return the absolute upload root, checking it is a file or directory.

    Raises:
        PathError: If the path does not exist or is neither a regular file
            nor a directory.
    """
    root = normalize_local_path(local_path)
    if not root.exists():
        raise PathError(f"Path does not exist: {local_path}")
    if not (root.is_file() or root.is_dir()):
        raise PathError(f"Not a regular file or directory: {local_path}")
    return root


def iter_local_files(root: Path) -> list[tuple[Path, str]]:
    """Return ``(absolute path, relative path)`` for every file to upload.

    For a file root the relative path is its name.  For a directory every
    regular file beneath it is listed; symlinks and directories themselves
    are skipped and symlinked directories are not descended into.
    """
    if root.is_file():
        return [(root, root.name)]

    pairs: list[tuple[Path, str]] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames.sort()
        base = Path(dirpath)
        for filename in sorted(filenames):
            path = base / filename
            if path.is_symlink() or not path.is_file():
                continue
            pairs.append((path, to_posix(path.relative_to(root))))
    return pairs


def build_plan(local_path: str | os.PathLike[str], remote_base: str) -> UploadPlan:
    """Enumerate *local_path* and map each file under *remote_base*.

    Raises:
        PathError: If *local_path* is missing or not a file/directory.
    """
    root = resolve_root(local_path)
    is_directory = root.is_dir()
    # A directory keeps its own name one level down on the remote side.
    remote_root = posix_join(remote_base, root.name) if is_directory else remote_base

    tasks = [
        TransferTask(
            local_path=path,
            relative_path=relative,
            remote_path=posix_join(remote_root, relative),
        )
        for path, relative in iter_local_files(root)
    ]
    logger.debug("Planned %d file(s) from %s → %s", len(tasks), root, remote_root)
    return UploadPlan(root=root, is_directory=is_directory, tasks=tasks)
