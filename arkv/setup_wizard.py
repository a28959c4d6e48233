"""Interactive setup wizard for arkv.

Collects the SSH key path and destination details on the console and
saves them through :class:`~arkv.config.ConfigManager`.  Re-running it on
an existing configuration offers add / edit / delete / start fresh.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from arkv.config import (
    DEFAULT_PORT,
    Config,
    ConfigManager,
    Credential,
    Destination,
    Password,
    PrivateKey,
)
from arkv.errors import ConfigError

logger = logging.getLogger(__name__)

_MENU = (
    "Add a new destination",
    "Edit an existing destination",
    "Delete a destination",
    "Start fresh (delete all and reconfigure)",
    "Cancel",
)


def run_setup(manager: ConfigManager) -> Config:
    """Run the wizard and return the resulting configuration."""
    try:
        existing = manager.load()
    except ConfigError as exc:
        click.echo(f"\n⚠️  Existing configuration is unusable: {exc}\n")
        if not click.confirm("Start fresh?", default=True):
            raise
        manager.reset()
        existing = None

    if existing is None:
        return _setup_fresh(manager)

    click.echo("\n⚠️  Configuration already exists!\n")
    choice = select("What would you like to do?", _MENU)

    if choice == 0:
        return _add_destination(manager, existing)
    if choice == 1:
        return _edit_destination(manager, existing)
    if choice == 2:
        return _delete_destination(manager, existing)
    if choice == 3:
        if click.confirm(
            "⚠️  This will delete all your existing settings. Are you sure?", default=False
        ):
            manager.reset()
            return _setup_fresh(manager)

    click.echo("\nCancelled.\n")
    return existing


def select(prompt: str, items: list[str] | tuple[str, ...], default: int = 0) -> int:
    """Show a numbered list and return the zero-based index picked."""
    for number, item in enumerate(items, start=1):
        click.echo(f"  {number}) {item}")
    picked = click.prompt(
        prompt,
        type=click.IntRange(1, len(items)),
        default=default + 1,
    )
    return picked - 1


def describe_destination(destination: Destination) -> str:
    return f"{destination.name} ({destination.host})"


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


def _setup_fresh(manager: ConfigManager) -> Config:
    click.echo("\n🚀 Welcome to arkv! Let's get you set up.\n")

    ssh_key_path = _prompt_ssh_key_path()
    click.echo(f"\n✓ SSH key configured: {ssh_key_path}\n")

    config = Config(ssh_key_path=ssh_key_path)
    while True:
        click.echo("Setting up a remote destination...\n")
        config.destinations.append(_prompt_destination(taken={d.name for d in config.destinations}))
        if not click.confirm("Add another destination?", default=False):
            break
        click.echo()

    manager.save(config)
    click.echo("\n✓ Configuration saved! You're ready to use arkv.\n")
    logger.info("Setup complete with %d destination(s)", len(config.destinations))
    return config


def _add_destination(manager: ConfigManager, config: Config) -> Config:
    click.echo("\n📦 Adding a new destination...\n")
    destination = _prompt_destination(taken={d.name for d in config.destinations})
    manager.add_destination(config, destination)
    click.echo("\n✓ Destination added!\n")
    return config


def _edit_destination(manager: ConfigManager, config: Config) -> Config:
    if not config.destinations:
        click.echo("\nNo destinations configured.\n")
        return config

    index = select(
        "Select destination to edit",
        [describe_destination(d) for d in config.destinations],
    )
    click.echo(f"\n📝 Editing {config.destinations[index].name}...\n")
    taken = {d.name for i, d in enumerate(config.destinations) if i != index}
    manager.replace_destination(config, index, _prompt_destination(taken=taken))
    click.echo("\n✓ Destination updated!\n")
    return config


def _delete_destination(manager: ConfigManager, config: Config) -> Config:
    if not config.destinations:
        click.echo("\nNo destinations configured.\n")
        return config

    index = select(
        "Select destination to delete",
        [describe_destination(d) for d in config.destinations],
    )
    name = config.destinations[index].name
    if click.confirm(f"Delete '{name}'?", default=False):
        manager.delete_destination(config, index)
        click.echo(f"\n✓ Destination '{name}' deleted!\n")
    else:
        click.echo("\nCancelled.\n")
    return config


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def _prompt_ssh_key_path() -> str:
    default_key = Path.home() / ".ssh" / "id_ed25519"
    path = click.prompt(
        "Path to your SSH private key",
        default=str(default_key),
        type=click.Path(exists=True, dir_okay=False, readable=True),
    )
    return str(path)


def _prompt_destination(taken: set[str]) -> Destination:
    while True:
        name = click.prompt("Name for this connection").strip()
        if name and name not in taken:
            break
        click.echo(f"A destination named '{name}' already exists." if name else "Name cannot be empty.")

    host = click.prompt("Server address (e.g., example.com or 192.168.1.1)").strip()
    port = click.prompt("SSH port", default=DEFAULT_PORT, type=click.IntRange(1, 65535))
    username = click.prompt("Username").strip()
    remote_path = click.prompt("Remote folder path (e.g., /home/user/uploads)").strip()

    credential: Credential
    if click.confirm(
        "Use password authentication? (otherwise SSH key will be used)", default=False
    ):
        credential = Password(click.prompt("Password", hide_input=True))
    else:
        credential = PrivateKey()

    return Destination(
        name=name,
        host=host,
        port=port,
        username=username,
        remote_path=remote_path,
        credential=credential,
    )
