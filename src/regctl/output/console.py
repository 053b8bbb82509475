"""Rich Console factory and theme for regctl output.

Consoles render into a StringIO buffer so formatters can return plain
strings. Rich drops color codes on its own when output is not a TTY
(tests, pipes).
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

REG_THEME = Theme(
    {
        "reg.ok": "bold green",
        "reg.error": "bold red",
        "reg.warning": "bold yellow",
        "reg.op": "bold cyan",
        "reg.key": "dim",
        "reg.id": "bold blue",
        "reg.time": "magenta",
        "reg.state.active": "green",
        "reg.state.deleted": "red",
    }
)


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    return Console(
        file=StringIO(),
        theme=REG_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()
