"""Tests for telemetry primitives: Span, trace_span, @traced."""

from __future__ import annotations

from collections.abc import Generator

import pytest

from regctl.infrastructure.datastore import Datastore
from regctl.infrastructure.jobs import JobRunner
from regctl.services.integrity import IntegrityService
from regctl.services.result import ServiceResult
from regctl.services.telemetry import (
    Span,
    _current_span,
    disable_telemetry,
    enable_telemetry,
    get_current_span,
    trace_span,
    traced,
)
from tests.conftest import T0


@pytest.fixture(autouse=True)
def _reset_telemetry_state() -> Generator[None]:
    yield
    disable_telemetry()
    _current_span.set(None)


class TestSpan:
    def test_duration_before_end_is_zero(self) -> None:
        assert Span(name="test").duration_ms == 0.0

    def test_to_dict_omits_empty_keys(self) -> None:
        span = Span(name="root")
        span.end()
        d = span.to_dict()
        assert d["name"] == "root"
        assert "children" not in d
        assert "annotations" not in d

    def test_to_dict_with_children_and_annotations(self) -> None:
        root = Span(name="root")
        child = Span(name="shard")
        child.annotate("rows", 3)
        root.children.append(child)
        child.end()
        root.end()
        d = root.to_dict()
        assert d["children"][0] == {
            "name": "shard",
            "duration_ms": d["children"][0]["duration_ms"],
            "annotations": {"rows": 3},
        }


class TestTraceSpan:
    def test_disabled_yields_none(self) -> None:
        with trace_span("test") as span:
            assert span is None

    def test_no_root_yields_none(self) -> None:
        enable_telemetry()
        with trace_span("test") as span:
            assert span is None

    def test_nested_spans(self) -> None:
        enable_telemetry()
        root = Span(name="root")
        token = _current_span.set(root)
        try:
            with trace_span("a"):
                with trace_span("b"):
                    assert get_current_span() is not None
            assert root.children[0].name == "a"
            assert root.children[0].children[0].name == "b"
            assert root.children[0].end_time is not None
        finally:
            _current_span.reset(token)


class TestTraced:
    def test_noop_when_disabled(self) -> None:
        @traced
        def op() -> ServiceResult:
            return ServiceResult(ok=True, op="test")

        assert op().meta is None

    def test_preserves_existing_meta(self) -> None:
        @traced
        def op() -> ServiceResult:
            return ServiceResult(ok=True, op="test", meta={"job_id": "j-1"})

        enable_telemetry()
        result = op()
        assert result.meta is not None
        assert result.meta["job_id"] == "j-1"
        assert "telemetry" in result.meta

    def test_non_service_result_passthrough(self) -> None:
        @traced
        def op() -> str:
            return "hello"

        enable_telemetry()
        assert op() == "hello"

    def test_service_method_span(self, store: Datastore, runner: JobRunner) -> None:
        enable_telemetry()
        result = IntegrityService(store, runner).scan(T0)
        assert result.meta is not None
        assert result.meta["telemetry"]["name"] == "IntegrityService.scan"
        assert get_current_span() is None
