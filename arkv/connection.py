"""SSH/SFTP session establishment for arkv.

Opens the TCP socket itself so it can be tuned for bulk transfer, then
drives paramiko's :class:`~paramiko.Transport` through the handshake and a
single authentication attempt.  Every step is a hard failure point; there
is no retry and no fallback between password and key authentication.
"""

from __future__ import annotations

import logging
import socket

import paramiko

from arkv.config import Destination, Password, PrivateKey
from arkv.errors import AuthError, ConnectionError, HandshakeError

logger = logging.getLogger(__name__)

SOCKET_BUFFER_SIZE = 2 * 1024 * 1024  # 2 MB send/receive buffers
CONNECT_TIMEOUT = 15.0  # seconds
HANDSHAKE_TIMEOUT = 15.0  # seconds
WINDOW_SIZE = 64 * 1024 * 1024  # 64 MB SSH channel window


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _close_safely(resource) -> None:
    """Close *resource* without raising."""
    try:
        resource.close()
    except Exception:
        pass  # Already torn down


def _tune_socket(sock: socket.socket) -> None:
    """Enlarge socket buffers and disable Nagle; failures are only logged."""
    for level, option, value in (
        (socket.IPPROTO_TCP, socket.TCP_NODELAY, 1),
        (socket.SOL_SOCKET, socket.SO_SNDBUF, SOCKET_BUFFER_SIZE),
        (socket.SOL_SOCKET, socket.SO_RCVBUF, SOCKET_BUFFER_SIZE),
    ):
        try:
            sock.setsockopt(level, option, value)
        except OSError as exc:
            logger.debug("setsockopt(%s, %s) failed: %s", level, option, exc)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class Session:
    """An authenticated SFTP session to one destination.

    Owned by exactly one transfer; close it (or use it as a context
    manager) when that transfer finishes.
    """

    def __init__(
        self,
        destination: Destination,
        transport: paramiko.Transport,
        sftp: paramiko.SFTPClient,
    ) -> None:
        self.destination = destination
        self._transport = transport
        self._sftp = sftp

    @property
    def sftp(self) -> paramiko.SFTPClient:
        return self._sftp

    @property
    def transport(self) -> paramiko.Transport:
        return self._transport

    def close(self) -> None:
        """Close the SFTP channel and the SSH transport."""
        _close_safely(self._sftp)
        _close_safely(self._transport)
        logger.debug("Session to %s closed", self.destination.host)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# ---------------------------------------------------------------------------
# connect()
# ---------------------------------------------------------------------------


def connect(
    destination: Destination,
    ssh_key_path: str | None = None,
    timeout: float = CONNECT_TIMEOUT,
) -> Session:
    """Open an authenticated :class:`Session` to *destination*.

    Args:
        destination: The target server and its credential.
        ssh_key_path: Private key file, used only when the destination's
            credential is :class:`~arkv.config.PrivateKey`.
        timeout: TCP connect and handshake timeout in seconds.

    Raises:
        ConnectionError: The TCP connection could not be opened.
        HandshakeError: SSH negotiation or SFTP startup failed.
        AuthError: The credential was rejected or could not be loaded.
    """
    logger.info(
        "Connecting to %s@%s:%d (%s)",
        destination.username,
        destination.host,
        destination.port,
        destination.name,
    )
    try:
        sock = socket.create_connection((destination.host, destination.port), timeout=timeout)
    except OSError as exc:
        raise ConnectionError(
            f"Failed to connect to {destination.host}:{destination.port}: {exc}"
        ) from exc

    _tune_socket(sock)

    try:
        transport = paramiko.Transport(sock)
    except Exception as exc:
        _close_safely(sock)
        raise HandshakeError(f"Failed to create SSH session: {exc}") from exc

    try:
        _handshake(transport, destination, timeout)
        _authenticate(transport, destination, ssh_key_path)
        sftp = _open_sftp(transport)
    except Exception:
        _close_safely(transport)
        _close_safely(sock)
        raise

    logger.info("Connected to %s", destination.host)
    return Session(destination, transport, sftp)


def _handshake(transport: paramiko.Transport, destination: Destination, timeout: float) -> None:
    # Large window so bulk writes do not stall on ACKs; never rekey mid-upload.
    transport.default_window_size = WINDOW_SIZE
    transport.packetizer.REKEY_BYTES = pow(2, 40)
    transport.packetizer.REKEY_TIME = pow(2, 40)

    logger.debug("Performing SSH handshake with %s", destination.host)
    try:
        transport.start_client(timeout=timeout)
    except (paramiko.SSHException, EOFError, OSError) as exc:
        raise HandshakeError(f"SSH handshake with {destination.host} failed: {exc}") from exc


def _authenticate(
    transport: paramiko.Transport,
    destination: Destination,
    ssh_key_path: str | None,
) -> None:
    """Attempt exactly the authentication method the credential selects."""
    credential = destination.credential
    username = destination.username

    try:
        if isinstance(credential, Password):
            logger.debug("Authenticating with password for user: %s", username)
            transport.auth_password(username, credential.secret)
        elif isinstance(credential, PrivateKey):
            if not ssh_key_path:
                raise AuthError("SSH key authentication failed: no private key configured")
            logger.debug("Authenticating with SSH key: %s for user: %s", ssh_key_path, username)
            key = _load_private_key(ssh_key_path)
            transport.auth_publickey(username, key)
        else:
            raise TypeError(f"Unsupported credential: {credential!r}")
    except paramiko.AuthenticationException as exc:
        method = "Password" if isinstance(credential, Password) else "SSH key"
        raise AuthError(f"{method} authentication failed for {username}@{destination.host}: {exc}") from exc
    except paramiko.SSHException as exc:
        raise AuthError(f"Authentication with {destination.host} failed: {exc}") from exc

    if not transport.is_authenticated():
        raise AuthError(f"Authentication failed for {username}@{destination.host}")
    logger.debug("Successfully authenticated to %s", destination.host)


def _load_private_key(path: str) -> paramiko.PKey:
    try:
        return paramiko.PKey.from_path(path)
    except (OSError, paramiko.SSHException, ValueError) as exc:
        raise AuthError(f"Could not load SSH key {path}: {exc}") from exc


def _open_sftp(transport: paramiko.Transport) -> paramiko.SFTPClient:
    try:
        sftp = paramiko.SFTPClient.from_transport(transport)
    except (paramiko.SSHException, OSError) as exc:
        raise HandshakeError(f"Failed to initialize SFTP: {exc}") from exc
    if sftp is None:
        raise HandshakeError("Failed to initialize SFTP: no channel")
    return sftp
