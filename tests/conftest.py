"""Shared fixtures: an in-memory SFTP server stand-in and a fake keyring."""

from __future__ import annotations

import errno
import io
import posixpath
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import keyring
import keyring.errors
import pytest
from keyring.backends import fail

from arkv.config import Destination, Password, PrivateKey
from arkv.connection import Session


class FakeRemoteFile(io.BytesIO):
    """Writable remote file; its bytes land in the owning FakeSFTP on close."""

    def __init__(self, sftp: "FakeSFTP", path: str) -> None:
        super().__init__()
        self._sftp = sftp
        self._path = path
        self.pipelined = False

    def set_pipelined(self, pipelined: bool = True) -> None:
        self.pipelined = pipelined

    def write(self, data) -> int:
        if self._sftp.fail_writes:
            raise OSError(errno.EIO, "Failure")
        return super().write(data)

    def close(self) -> None:
        if not self.closed:
            self._sftp.files[self._path] = self.getvalue()
        super().close()


class FakeSFTP:
    """Minimal SFTPClient replacement backed by dicts."""

    def __init__(self, dirs: tuple[str, ...] = ("/",)) -> None:
        self.dirs: set[str] = set(dirs) | {"/"}
        self.files: dict[str, bytes] = {}
        self.mkdir_calls: list[tuple[str, int]] = []
        self.fail_mkdir: set[str] = set()
        self.fail_writes = False
        self.closed = False
        self._lock = threading.Lock()

    def stat(self, path: str):
        if path in self.dirs or path in self.files:
            return SimpleNamespace(st_size=len(self.files.get(path, b"")))
        raise FileNotFoundError(errno.ENOENT, "No such file", path)

    def mkdir(self, path: str, mode: int = 0o777) -> None:
        with self._lock:
            self.mkdir_calls.append((path, mode))
            if path in self.fail_mkdir:
                raise PermissionError(errno.EACCES, "Permission denied", path)
            if path in self.dirs or path in self.files:
                raise OSError(errno.EEXIST, "Failure", path)
            if posixpath.dirname(path) not in self.dirs:
                raise FileNotFoundError(errno.ENOENT, "No such file", path)
            self.dirs.add(path)

    def open(self, path: str, mode: str = "r") -> FakeRemoteFile:
        if posixpath.dirname(path) not in self.dirs:
            raise FileNotFoundError(errno.ENOENT, "No such file", path)
        return FakeRemoteFile(self, path)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_sftp() -> FakeSFTP:
    return FakeSFTP()


@pytest.fixture()
def fake_keyring(monkeypatch: pytest.MonkeyPatch) -> dict[tuple[str, str], str]:
    """Replace the OS keyring with an in-memory dict."""
    store: dict[tuple[str, str], str] = {}

    def get_password(service: str, account: str) -> str | None:
        return store.get((service, account))

    def set_password(service: str, account: str, password: str) -> None:
        store[(service, account)] = password

    def delete_password(service: str, account: str) -> None:
        if (service, account) not in store:
            raise keyring.errors.PasswordDeleteError("not found")
        del store[(service, account)]

    monkeypatch.setattr("arkv.config.keyring.get_password", get_password)
    monkeypatch.setattr("arkv.config.keyring.set_password", set_password)
    monkeypatch.setattr("arkv.config.keyring.delete_password", delete_password)
    return store


@pytest.fixture()
def no_keyring():
    """Install keyring's always-failing backend, as on a host without one."""
    previous = keyring.get_keyring()
    keyring.set_keyring(fail.Keyring())
    yield
    keyring.set_keyring(previous)


def make_destination(name: str = "nas", password: str | None = None, **overrides) -> Destination:
    fields = {
        "name": name,
        "host": f"{name}.example.com",
        "port": 22,
        "username": "archiver",
        "remote_path": "/srv/archive",
        "credential": Password(password) if password is not None else PrivateKey(),
    }
    fields.update(overrides)
    return Destination(**fields)


def make_session(destination: Destination, sftp: FakeSFTP) -> Session:
    return Session(destination, transport=MagicMock(), sftp=sftp)
