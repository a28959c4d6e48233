"""Destination model and configuration persistence for arkv.

Settings are stored as JSON under ``~/.config/arkv/``.
Passwords are never written to disk; they are delegated to ``keyring``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import keyring
import keyring.errors

from arkv.errors import ConfigError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "arkv"
DEFAULT_PORT = 22

_AUTH_PASSWORD = "password"
_AUTH_KEY = "key"

# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Password:
    """Authenticate with a password."""

    secret: str = field(repr=False)


@dataclass(frozen=True)
class PrivateKey:
    """Authenticate with the run-wide private key file."""


Credential = Union[Password, PrivateKey]


# ---------------------------------------------------------------------------
# Destination
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Destination:
    """One configured remote upload target."""

    name: str
    host: str
    port: int
    username: str
    remote_path: str
    credential: Credential

    @property
    def uses_password(self) -> bool:
        return isinstance(self.credential, Password)

    @property
    def keyring_account(self) -> str:
        """Keyring account key for this destination (user@host:port)."""
        return f"{self.username}@{self.host}:{self.port}"

    def to_record(self) -> dict[str, Any]:
        """Return the on-disk form of this destination (without the password)."""
        return {
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "remote_path": self.remote_path,
            "auth": _AUTH_PASSWORD if self.uses_password else _AUTH_KEY,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any], password: str | None = None) -> "Destination":
        """Build a destination from its on-disk form.

        Raises:
            ConfigError: If a field is missing or has the wrong type, or a
                password destination is given no password.
        """
        try:
            name = str(record["name"])
            host = str(record["host"])
            port = int(record.get("port", DEFAULT_PORT))
            username = str(record["username"])
            remote_path = str(record["remote_path"])
            auth = record.get("auth", _AUTH_KEY)
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid destination entry {record!r}: {exc}") from exc

        if not 0 < port < 65536:
            raise ConfigError(f"Destination {name!r} has invalid port {port}")

        credential: Credential
        if auth == _AUTH_PASSWORD:
            if password is None:
                raise ConfigError(
                    f"No stored password for destination {name!r}; run 'arkv --setup' to re-enter it"
                )
            credential = Password(password)
        elif auth == _AUTH_KEY:
            credential = PrivateKey()
        else:
            raise ConfigError(f"Destination {name!r} has unknown auth type {auth!r}")

        return cls(
            name=name,
            host=host,
            port=port,
            username=username,
            remote_path=remote_path,
            credential=credential,
        )


@dataclass
class Config:
    """Run-level settings: the private key path and every destination."""

    ssh_key_path: str
    destinations: list[Destination] = field(default_factory=list)


# ---------------------------------------------------------------------------
# ConfigManager
# ---------------------------------------------------------------------------


class ConfigManager:
    """Loads and saves the arkv configuration file.

    Writes files atomically (write-to-temp, then rename) to prevent
    corruption on unexpected exit.  A corrupt config is logged and treated
    as missing so the setup wizard runs again.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base = base_dir or Path.home() / ".config" / "arkv"
        self._config_path = self._base / "config.json"

    @property
    def path(self) -> Path:
        return self._config_path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _atomic_write(self, data: Any) -> None:
        """Serialise *data* as JSON and write atomically to the config path."""
        self._base.mkdir(parents=True, exist_ok=True)
        tmp = self._config_path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(self._config_path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", self._config_path, exc)
            raise ConfigError(f"Failed to write config file: {exc}") from exc

    def _read_raw(self) -> dict[str, Any] | None:
        """Return the parsed config file, or None if missing or corrupt."""
        if not self._config_path.exists():
            logger.debug("No config file at %s", self._config_path)
            return None
        try:
            loaded = json.loads(self._config_path.read_text(encoding="utf-8"))
            if not isinstance(loaded, dict):
                raise ValueError("Config root must be a JSON object")
            if not isinstance(loaded.get("ssh_key_path"), str):
                raise ValueError("'ssh_key_path' must be a string")
            if not isinstance(loaded.get("destinations", []), list):
                raise ValueError("'destinations' must be a JSON array")
            return loaded
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning("Corrupt config.json (%s), ignoring it", exc)
            return None

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return self._read_raw() is not None

    def load(self) -> Config | None:
        """Load the configuration, re-attaching passwords from the keyring.

        Returns ``None`` when no usable configuration file exists.

        Raises:
            ConfigError: If a destination entry is invalid or its password
                is missing from the keyring.
        """
        raw = self._read_raw()
        if raw is None:
            return None

        destinations = []
        for record in raw.get("destinations", []):
            if not isinstance(record, dict):
                raise ConfigError(f"Invalid destination entry {record!r}")
            password = None
            if record.get("auth") == _AUTH_PASSWORD:
                password = _get_password(_account_for(record))
            destinations.append(Destination.from_record(record, password))

        logger.debug("Loaded %d destination(s) from %s", len(destinations), self._config_path)
        return Config(ssh_key_path=raw["ssh_key_path"], destinations=destinations)

    def save(self, config: Config) -> None:
        """Persist *config*, storing any passwords in the keyring."""
        names = [d.name for d in config.destinations]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ConfigError(f"Duplicate destination name(s): {', '.join(sorted(duplicates))}")

        for destination in config.destinations:
            if isinstance(destination.credential, Password):
                _set_password(destination.keyring_account, destination.credential.secret)

        self._atomic_write(
            {
                "ssh_key_path": config.ssh_key_path,
                "destinations": [d.to_record() for d in config.destinations],
            }
        )
        logger.info("Configuration saved to %s", self._config_path)

    def reset(self) -> None:
        """Remove the config file and every stored password."""
        raw = self._read_raw()
        for record in (raw or {}).get("destinations", []):
            if isinstance(record, dict) and record.get("auth") == _AUTH_PASSWORD:
                _delete_password(_account_for(record))
        if self._config_path.exists():
            self._config_path.unlink()
            logger.info("Configuration removed")

    # ------------------------------------------------------------------
    # Destination management
    # ------------------------------------------------------------------

    def add_destination(self, config: Config, destination: Destination) -> Config:
        """Append *destination* and persist."""
        config.destinations.append(destination)
        self.save(config)
        logger.info("Destination added: %s", destination.name)
        return config

    def replace_destination(self, config: Config, index: int, destination: Destination) -> Config:
        """Replace the destination at *index* and persist."""
        old = config.destinations[index]
        config.destinations[index] = destination
        if old.uses_password and (
            not destination.uses_password or old.keyring_account != destination.keyring_account
        ):
            self._forget_password(old)
        self.save(config)
        logger.info("Destination updated: %s", destination.name)
        return config

    def delete_destination(self, config: Config, index: int) -> Destination:
        """Remove the destination at *index*, persist, and return it."""
        removed = config.destinations.pop(index)
        self._forget_password(removed)
        self.save(config)
        logger.info("Destination deleted: %s", removed.name)
        return removed

    def _forget_password(self, destination: Destination) -> None:
        if destination.uses_password:
            _delete_password(destination.keyring_account)


def _account_for(record: dict[str, Any]) -> str:
    return f"{record.get('username')}@{record.get('host')}:{record.get('port', DEFAULT_PORT)}"


def _keyring_unavailable(exc: keyring.errors.KeyringError) -> ConfigError:
    return ConfigError(
        f"No usable OS keyring is available for password storage ({exc}); "
        "install a keyring backend or use SSH key authentication"
    )


def _get_password(account: str) -> str | None:
    try:
        return keyring.get_password(KEYRING_SERVICE, account)
    except keyring.errors.KeyringError as exc:
        raise _keyring_unavailable(exc) from exc


def _set_password(account: str, secret: str) -> None:
    try:
        keyring.set_password(KEYRING_SERVICE, account, secret)
    except keyring.errors.KeyringError as exc:
        raise _keyring_unavailable(exc) from exc
    logger.debug("Password stored in keyring for %s", account)


def _delete_password(account: str) -> None:
    try:
        keyring.delete_password(KEYRING_SERVICE, account)
    except keyring.errors.PasswordDeleteError:
        return
    except keyring.errors.KeyringError as exc:
        # Nothing can be stored without a backend, so there is nothing to remove.
        logger.warning("keyring.delete_password failed for %s: %s", account, exc)
        return
    logger.debug("Password deleted from keyring for %s", account)
