"""File transfer engine for arkv.

Uploads a local file or directory tree to one or more destinations via
SFTP with:
- Ancestor-first creation of missing remote directories
- Fixed-size chunked streaming with exact byte accounting
- One worker thread per destination, each with its own session
- Per-destination failure isolation and a join-all result report
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Sequence

import paramiko

from arkv.config import Destination
from arkv.connection import Session, connect
from arkv.errors import (
    LocalIOError,
    RemoteDirError,
    RemoteIOError,
    TransferError,
)
from arkv.utils.path_helpers import remote_parent
from arkv.walker import TransferTask, UploadPlan, build_plan, resolve_root

logger = logging.getLogger(__name__)

CHUNK_SIZE = 256 * 1024  # 256 KB per read/write call
DIR_MODE = 0o755

FileStartCallback = Callable[[Destination, TransferTask, int, int], None]
FinishedCallback = Callable[[Destination, UploadPlan, "TransferStats"], None]
PlanCallback = Callable[[Destination, UploadPlan], None]
FailedCallback = Callable[[Destination, "DestinationFailure"], None]

# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferStats:
    """Bytes moved and wall-clock seconds for one destination's upload."""

    bytes_transferred: int
    duration_secs: float

    @property
    def megabytes(self) -> float:
        return self.bytes_transferred / (1024 * 1024)

    @property
    def speed_mbps(self) -> float:
        """Average speed in MB/s, or 0 if no time elapsed."""
        if self.duration_secs <= 0:
            return 0.0
        return self.megabytes / self.duration_secs


@dataclass(frozen=True)
class DestinationFailure:
    """A destination whose transfer did not complete."""

    name: str
    error: str

    def __str__(self) -> str:
        return f"{self.name}: {self.error}"


@dataclass
class TransferReport:
    """Outcome of a multi-destination run."""

    results: list[tuple[str, TransferStats]] = field(default_factory=list)
    failures: list[DestinationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True only if every destination succeeded."""
        return not self.failures


# ---------------------------------------------------------------------------
# Remote directories
# ---------------------------------------------------------------------------


def _remote_exists(sftp: paramiko.SFTPClient, path: str) -> bool:
    try:
        sftp.stat(path)
    except (OSError, paramiko.SSHException):
        return False
    return True


def ensure_remote_dir(sftp: paramiko.SFTPClient, remote_dir: str) -> list[str]:
    """Make sure *remote_dir* and all its ancestors exist on the server.

    Walks up from *remote_dir* until an existing directory (or the root)
    is found, then creates the missing ones top-down with mode 0755.
    Calling it again for the same path only costs one ``stat``.

    Returns:
        The directories that were created, outermost first.

    Raises:
        RemoteDirError: If a missing directory cannot be created.
    """
    missing: list[str] = []
    current = remote_dir.rstrip("/") or "/"
    while current not in ("/", ".", "") and not _remote_exists(sftp, current):
        missing.append(current)
        current = remote_parent(current)

    created: list[str] = []
    while missing:
        directory = missing.pop()
        try:
            sftp.mkdir(directory, mode=DIR_MODE)
        except (OSError, paramiko.SSHException) as exc:
            raise RemoteDirError(f"Failed to create remote directory: {directory}: {exc}") from exc
        logger.debug("Created remote directory %s", directory)
        created.append(directory)
    return created


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


def _close_quietly(remote_fh) -> None:
    try:
        remote_fh.close()
    except Exception:
        pass  # Keep the first error


def upload_file(sftp: paramiko.SFTPClient, local_path: str | os.PathLike[str], remote_path: str) -> int:
    """Copy *local_path* to *remote_path* and return the number of bytes sent.

    The remote parent directory must already exist.

    Raises:
        LocalIOError: If the local file cannot be opened or read.
        RemoteIOError: If the remote file cannot be created or written.
    """
    try:
        local_fh = open(local_path, "rb")
    except OSError as exc:
        raise LocalIOError(f"Failed to open local file {local_path}: {exc}") from exc

    total = 0
    with local_fh:
        try:
            remote_fh = sftp.open(remote_path, "wb")
        except (OSError, paramiko.SSHException) as exc:
            raise RemoteIOError(f"Failed to create remote file: {remote_path}: {exc}") from exc

        try:
            # Pipelined mode keeps many write requests in flight; close()
            # still waits for every ACK, so errors surface before we return.
            remote_fh.set_pipelined(True)
            while True:
                try:
                    chunk = local_fh.read(CHUNK_SIZE)
                except OSError as exc:
                    raise LocalIOError(f"Failed to read local file {local_path}: {exc}") from exc
                if not chunk:
                    break
                try:
                    remote_fh.write(chunk)
                except (OSError, paramiko.SSHException) as exc:
                    raise RemoteIOError(f"Failed to write to remote file: {remote_path}: {exc}") from exc
                total += len(chunk)
        except Exception:
            _close_quietly(remote_fh)
            raise

        try:
            remote_fh.close()
        except (OSError, paramiko.SSHException) as exc:
            raise RemoteIOError(f"Failed to write to remote file: {remote_path}: {exc}") from exc

    logger.debug("Uploaded %s → %s (%d bytes)", local_path, remote_path, total)
    return total


# ---------------------------------------------------------------------------
# Transferer
# ---------------------------------------------------------------------------


class Transferer:
    """Uploads one local root to one destination over its own session."""

    def __init__(
        self,
        destination: Destination,
        ssh_key_path: str | None = None,
        on_plan: PlanCallback | None = None,
        on_file_start: FileStartCallback | None = None,
        on_finished: FinishedCallback | None = None,
        connector: Callable[[Destination, str | None], Session] = connect,
    ) -> None:
        """Initialise the transferer (does NOT connect yet).

        Args:
            destination: Where to upload.
            ssh_key_path: Private key file for key-authenticated destinations.
            on_plan: Called once the files to upload are known.
            on_file_start: Called before each file with
                ``(destination, task, position, total)``; position is 1-based.
            on_finished: Called after the last file with the plan and stats.
            connector: Session factory, replaceable for tests.
        """
        self.destination = destination
        self.ssh_key_path = ssh_key_path
        self.on_plan = on_plan
        self.on_file_start = on_file_start
        self.on_finished = on_finished
        self._connector = connector

    def transfer(self, local_path: str | os.PathLike[str]) -> TransferStats:
        """Upload *local_path* and return the byte/time totals.

        Any failure aborts the whole upload for this destination.

        Raises:
            TransferError: Subclass describing the failing step.
        """
        start = time.perf_counter()
        resolve_root(local_path)

        with self._connector(self.destination, self.ssh_key_path) as session:
            plan = build_plan(local_path, self.destination.remote_path)
            self._notify(self.on_plan, self.destination, plan)

            total_bytes = 0
            for position, task in enumerate(plan.tasks, start=1):
                ensure_remote_dir(session.sftp, remote_parent(task.remote_path))
                self._notify(self.on_file_start, self.destination, task, position, plan.file_count)
                total_bytes += upload_file(session.sftp, task.local_path, task.remote_path)

        stats = TransferStats(
            bytes_transferred=total_bytes,
            duration_secs=time.perf_counter() - start,
        )
        logger.info(
            "Upload to %s complete: %s (%d bytes in %.2fs)",
            self.destination.name,
            plan.describe(),
            stats.bytes_transferred,
            stats.duration_secs,
        )
        self._notify(self.on_finished, self.destination, plan, stats)
        return stats

    @staticmethod
    def _notify(callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Exception in transfer callback")


# ---------------------------------------------------------------------------
# Multi-destination driver
# ---------------------------------------------------------------------------


def run_transfers(
    destinations: Sequence[Destination],
    local_path: str | os.PathLike[str],
    ssh_key_path: str | None = None,
    on_plan: PlanCallback | None = None,
    on_file_start: FileStartCallback | None = None,
    on_finished: FinishedCallback | None = None,
    on_failed: FailedCallback | None = None,
    connector: Callable[[Destination, str | None], Session] = connect,
) -> TransferReport:
    """Upload *local_path* to every destination concurrently.

    Each destination runs on its own thread with its own session.  The
    call returns only after every destination has finished; failures are
    collected, never short-circuited.  Results and failures are reported
    in the order the destinations were given.  *on_failed* is called from
    the calling thread as each failure is collected.
    """
    report = TransferReport()
    if not destinations:
        return report

    outcomes: dict[int, TransferStats | DestinationFailure] = {}
    with ThreadPoolExecutor(max_workers=len(destinations), thread_name_prefix="transfer") as executor:
        futures = {
            executor.submit(
                Transferer(
                    destination,
                    ssh_key_path,
                    on_plan=on_plan,
                    on_file_start=on_file_start,
                    on_finished=on_finished,
                    connector=connector,
                ).transfer,
                local_path,
            ): index
            for index, destination in enumerate(destinations)
        }

        for future in as_completed(futures):
            index = futures[future]
            name = destinations[index].name
            try:
                outcomes[index] = future.result()
            except TransferError as exc:
                logger.error("Transfer to %s failed (%s): %s", name, exc.step, exc)
                outcomes[index] = DestinationFailure(name, str(exc))
            except BaseException as exc:
                # Includes SystemExit raised inside a worker
                logger.exception("Unexpected failure in transfer to %s", name)
                outcomes[index] = DestinationFailure(name, f"Unexpected failure: {exc!r}")
            outcome = outcomes[index]
            if isinstance(outcome, DestinationFailure):
                Transferer._notify(on_failed, destinations[index], outcome)

    for index, destination in enumerate(destinations):
        outcome = outcomes[index]
        if isinstance(outcome, DestinationFailure):
            report.failures.append(outcome)
        else:
            report.results.append((destination.name, outcome))
    return report
