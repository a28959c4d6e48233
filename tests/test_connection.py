"""Tests for arkv/connection.py — socket setup, handshake and authentication."""

from __future__ import annotations

import socket
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from arkv.connection import SOCKET_BUFFER_SIZE, Session, connect
from arkv.errors import AuthError, HandshakeError
from arkv.errors import ConnectionError as ArkvConnectionError

from conftest import FakeSFTP, make_destination


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_socket() -> MagicMock:
    return MagicMock(spec=socket.socket)


@pytest.fixture()
def mock_transport() -> MagicMock:
    """Return a mock paramiko.Transport that authenticates successfully."""
    transport = MagicMock()
    transport.is_authenticated.return_value = True
    return transport


@pytest.fixture()
def patched(mock_socket: MagicMock, mock_transport: MagicMock):
    """Patch the network layer; yields the mocks keyed by role."""
    sftp = FakeSFTP()
    with patch("arkv.connection.socket.create_connection", return_value=mock_socket) as create, \
            patch("arkv.connection.paramiko.Transport", return_value=mock_transport) as transport_cls, \
            patch("arkv.connection.paramiko.SFTPClient.from_transport", return_value=sftp) as from_transport, \
            patch("arkv.connection.paramiko.PKey.from_path") as from_path:
        yield {
            "create_connection": create,
            "transport_cls": transport_cls,
            "from_transport": from_transport,
            "from_path": from_path,
            "sftp": sftp,
        }


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TestTransport:
    def test_connects_to_host_and_port(self, patched, mock_socket: MagicMock) -> None:
        destination = make_destination("nas", port=2222)
        session = connect(destination, "/keys/id_ed25519")
        patched["create_connection"].assert_called_once()
        assert patched["create_connection"].call_args.args[0] == ("nas.example.com", 2222)
        patched["transport_cls"].assert_called_once_with(mock_socket)
        assert session.sftp is patched["sftp"]

    def test_refused_connection_raises_connection_error(self, patched) -> None:
        patched["create_connection"].side_effect = ConnectionRefusedError("refused")
        with pytest.raises(ArkvConnectionError, match="nas.example.com:22"):
            connect(make_destination(), "/keys/id")
        patched["transport_cls"].assert_not_called()

    def test_dns_failure_raises_connection_error(self, patched) -> None:
        patched["create_connection"].side_effect = socket.gaierror("Name or service not known")
        with pytest.raises(ArkvConnectionError):
            connect(make_destination(), "/keys/id")

    def test_socket_buffers_are_enlarged(self, patched, mock_socket: MagicMock) -> None:
        connect(make_destination(), "/keys/id")
        calls = {c.args[:2]: c.args[2] for c in mock_socket.setsockopt.call_args_list}
        assert calls[(socket.SOL_SOCKET, socket.SO_SNDBUF)] == SOCKET_BUFFER_SIZE
        assert calls[(socket.SOL_SOCKET, socket.SO_RCVBUF)] == SOCKET_BUFFER_SIZE

    def test_socket_tuning_failure_is_not_fatal(self, patched, mock_socket: MagicMock) -> None:
        mock_socket.setsockopt.side_effect = OSError("not supported")
        session = connect(make_destination(), "/keys/id")
        assert isinstance(session, Session)

    def test_handshake_failure_raises_and_closes(
        self, patched, mock_transport: MagicMock, mock_socket: MagicMock
    ) -> None:
        mock_transport.start_client.side_effect = paramiko.SSHException("Error reading SSH protocol banner")
        with pytest.raises(HandshakeError, match="handshake"):
            connect(make_destination(), "/keys/id")
        mock_transport.close.assert_called()
        mock_socket.close.assert_called()
        mock_transport.auth_publickey.assert_not_called()

    def test_sftp_failure_raises_handshake_error(self, patched, mock_transport: MagicMock) -> None:
        patched["from_transport"].side_effect = paramiko.SSHException("subsystem request failed")
        with pytest.raises(HandshakeError, match="SFTP"):
            connect(make_destination(), "/keys/id")
        mock_transport.close.assert_called()


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthentication:
    def test_password_credential_uses_password_only(self, patched, mock_transport: MagicMock) -> None:
        connect(make_destination(password="hunter2"), "/keys/id")
        mock_transport.auth_password.assert_called_once_with("archiver", "hunter2")
        mock_transport.auth_publickey.assert_not_called()
        patched["from_path"].assert_not_called()

    def test_key_credential_uses_key_only(self, patched, mock_transport: MagicMock) -> None:
        key = MagicMock(spec=paramiko.PKey)
        patched["from_path"].return_value = key
        connect(make_destination(), "/keys/id_ed25519")
        patched["from_path"].assert_called_once_with("/keys/id_ed25519")
        mock_transport.auth_publickey.assert_called_once_with("archiver", key)
        mock_transport.auth_password.assert_not_called()

    def test_rejected_password_does_not_fall_back_to_key(
        self, patched, mock_transport: MagicMock
    ) -> None:
        mock_transport.auth_password.side_effect = paramiko.AuthenticationException("denied")
        with pytest.raises(AuthError, match="Password authentication failed"):
            connect(make_destination(password="wrong"), "/keys/id")
        mock_transport.auth_publickey.assert_not_called()
        mock_transport.close.assert_called()

    def test_rejected_key_does_not_fall_back_to_password(
        self, patched, mock_transport: MagicMock
    ) -> None:
        mock_transport.auth_publickey.side_effect = paramiko.AuthenticationException("denied")
        with pytest.raises(AuthError, match="SSH key authentication failed"):
            connect(make_destination(), "/keys/id")
        mock_transport.auth_password.assert_not_called()

    def test_unauthenticated_session_is_rejected(self, patched, mock_transport: MagicMock) -> None:
        """Some servers accept the request but leave the session unauthenticated."""
        mock_transport.is_authenticated.return_value = False
        with pytest.raises(AuthError, match="Authentication failed"):
            connect(make_destination(password="pw"), "/keys/id")
        patched["from_transport"].assert_not_called()

    def test_missing_key_path_raises_auth_error(self, patched, mock_transport: MagicMock) -> None:
        with pytest.raises(AuthError, match="no private key"):
            connect(make_destination(), None)
        mock_transport.auth_publickey.assert_not_called()

    def test_unreadable_key_raises_auth_error(self, patched, mock_transport: MagicMock) -> None:
        patched["from_path"].side_effect = FileNotFoundError(2, "No such file")
        with pytest.raises(AuthError, match="Could not load SSH key"):
            connect(make_destination(), "/keys/missing")
        mock_transport.auth_publickey.assert_not_called()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestSession:
    def test_context_manager_closes_sftp_and_transport(self) -> None:
        sftp = FakeSFTP()
        transport = MagicMock()
        with Session(make_destination(), transport, sftp) as session:
            assert session.sftp is sftp
        assert sftp.closed
        transport.close.assert_called_once()

    def test_close_swallows_teardown_errors(self) -> None:
        transport = MagicMock()
        transport.close.side_effect = OSError("already closed")
        Session(make_destination(), transport, FakeSFTP()).close()
