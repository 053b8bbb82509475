from regctl.cli import cli

cli()
