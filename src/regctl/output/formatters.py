"""Adapt a ServiceResult to the requested output mode.

Humans get Rich-rendered text; ``--json`` gets the serialized result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from regctl.output.renderers import render_result

if TYPE_CHECKING:
    from regctl.services.result import ServiceResult


def format_result(
    result: ServiceResult, *, json_output: bool = False, verbose: bool = False
) -> str:
    if json_output:
        return result.model_dump_json(indent=2)
    return render_result(result, verbose=verbose)
