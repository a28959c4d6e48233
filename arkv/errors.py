"""Exception hierarchy for arkv.

Every failure inside a destination's transfer is raised as a subclass of
:class:`TransferError` so the multi-destination driver can record it
against that destination without stopping the others.
"""

from __future__ import annotations


class ArkvError(Exception):
    """Base class for all arkv errors."""


class ConfigError(ArkvError):
    """Raised when the stored configuration cannot be used."""


class TransferError(ArkvError):
    """Base class for errors that abort one destination's transfer."""

    step = "transfer"


class PathError(TransferError):
    """Raised when the local upload root does not exist or is unusable."""

    step = "local path"


class ConnectionError(TransferError):  # noqa: A001  (shadows built-in intentionally)
    """Raised when the TCP connection to the server cannot be opened."""

    step = "connect"


class HandshakeError(TransferError):
    """Raised when the SSH protocol handshake or SFTP startup fails."""

    step = "handshake"


class AuthError(TransferError):
    """Raised when the server rejects the credential or leaves the session unauthenticated."""

    step = "authentication"


class RemoteDirError(TransferError):
    """Raised when a remote directory cannot be created."""

    step = "remote directory"


class LocalIOError(TransferError):
    """Raised when a local file cannot be opened or read."""

    step = "local read"


class RemoteIOError(TransferError):
    """Raised when a remote file cannot be created or written."""

    step = "remote write"
