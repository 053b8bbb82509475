"""Subcommand modules for regctl.

register_commands() imports each module lazily so ``regctl --help`` stays fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register command groups and standalone commands on the root group."""
    # --- Groups ---
    from regctl.commands.create import create
    from regctl.commands.transfer import transfer

    cli.add_command(create)
    cli.add_command(transfer)

    # --- Standalone commands ---
    from regctl.commands.check import check
    from regctl.commands.delete import delete, deletion_status
    from regctl.commands.show import show
    from regctl.commands.update import update

    cli.add_command(show)
    cli.add_command(update)
    cli.add_command(delete)
    cli.add_command(deletion_status)
    cli.add_command(check)
