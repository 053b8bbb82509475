"""Root CLI group for regctl with global flags and command registration."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import click

from regctl import __version__
from regctl.commands import register_commands
from regctl.commands._context import AppContext
from regctl.config.settings import RegSettings
from regctl.domain.times import from_iso


def _parse_now(_ctx: click.Context, _param: click.Parameter, value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return from_iso(value)
    except ValueError as exc:
        raise click.BadParameter(f"not an ISO 8601 timestamp: {value!r}") from exc


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="regctl")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging and telemetry spans.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.option(
    "--data-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the registry database.",
)
@click.option(
    "--now",
    callback=_parse_now,
    default=None,
    help="Logical clock for this invocation (ISO 8601). Defaults to the current time.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    data_root: Path | None,
    now: datetime | None,
) -> None:
    """regctl — registry resource lifecycle and integrity engine."""
    settings = RegSettings.from_cli(
        config_path=config_path,
        data_root=data_root,
        json_output=json_output,
        verbose=verbose,
        log_json=log_json,
    )
    app = AppContext(settings, now=now)
    ctx.obj = app
    ctx.call_on_close(app.close)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
