"""Operation-specific Rich renderers for ServiceResult.

Renderers are dispatched by ``result.op``; unknown ops fall through to a
generic key-value renderer.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from rich.table import Table
from rich.text import Text

from regctl.output.console import create_console, get_output

if TYPE_CHECKING:
    from rich.console import Console

    from regctl.services.result import ServiceResult


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    console = create_console()
    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console)
        if verbose:
            _render_meta(console, result)
    else:
        _render_error(result, console)
    return get_output(console).rstrip("\n")


def _status_line(console: Console, result: ServiceResult) -> None:
    console.print(Text("OK", style="reg.ok"), Text(f"  {result.op}", style="reg.op"), sep="")


def _field(console: Console, key: str, value: Any) -> None:
    if isinstance(value, (dict, list)):
        value = json.dumps(value, separators=(",", ":"))
    if key == "state":
        style = f"reg.state.{value}"
    elif key.endswith("_id") or key == "sponsor":
        style = "reg.id"
    elif key.endswith("_time") or key.endswith("_at") or key == "as_of":
        style = "reg.time"
    else:
        style = ""
    console.print(Text(f"  {key}: ", style="reg.key"), Text(str(value), style=style), sep="")


def _render_generic(result: ServiceResult, console: Console) -> None:
    _status_line(console, result)
    for key, value in result.data.items():
        if value is None or value == []:
            continue
        _field(console, key, value)


def _render_integrity(result: ServiceResult, console: Console) -> None:
    _status_line(console, result)
    _field(console, "scan_id", result.data.get("scan_id"))
    _field(console, "scan_time", result.data.get("scan_time"))
    findings = result.data.get("findings", [])
    if not findings:
        console.print(Text("  no integrity violations", style="reg.ok"))
        return
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("source", style="reg.id")
    table.add_column("target", style="reg.id")
    table.add_column("message")
    for finding in findings:
        table.add_row(finding.get("source") or "-", finding["target"], finding["message"])
    console.print(table)
    console.print(Text(f"  {len(findings)} violation(s)", style="reg.warning"))


def _render_show(result: ServiceResult, console: Console) -> None:
    data = dict(result.data)
    history = data.pop("history", [])
    _render_generic(result.model_copy(update={"data": data}), console)
    if history:
        console.print(Text("  history:", style="reg.key"))
        for entry in history:
            console.print(f"    {entry['at']}  {entry['type']}  {entry['client_id']}")


def _render_error(result: ServiceResult, console: Console) -> None:
    message = result.error.message if result.error else "Unknown error"
    code = result.error.code if result.error else "UNKNOWN"
    console.print(
        Text("ERROR", style="reg.error"),
        Text(f"  {result.op}", style="reg.op"),
        Text(f"  [{code}] {message}"),
        sep="",
    )


def _render_meta(console: Console, result: ServiceResult) -> None:
    if not result.meta:
        return
    console.print(Text("  meta:", style="dim"))
    for key, value in result.meta.items():
        if key == "telemetry":
            _render_span(console, value, indent=4)
        else:
            console.print(f"    {key}: {value}")


def _render_span(console: Console, span: dict[str, Any], indent: int) -> None:
    duration = span.get("duration_ms", 0.0)
    console.print(f"{' ' * indent}{span.get('name', '?')}  {duration:.2f}ms")
    for child in span.get("children", []):
        _render_span(console, child, indent + 2)


_OP_RENDERERS: dict[str, Callable[[ServiceResult, Console], None]] = {
    "integrity_scan": _render_integrity,
    "show": _render_show,
}
