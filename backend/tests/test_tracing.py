"""Tests for trace and metric helpers."""
from __future__ import annotations

from typing import Any, Dict

import pytest

from nextstep.core.context import bind_plan_id
from nextstep.observability import tracing


class _DummyTrace:
    def __init__(self, name: str, metadata: Dict[str, Any]):
        self.name = name
        self.metadata = metadata
        self.updates: list[Dict[str, Any]] = []
        self.ended = False

    def update(self, **kwargs: Any) -> None:
        self.updates.append(kwargs)

    def end(self) -> None:
        self.ended = True


class _DummyClient:
    def __init__(self):
        self.traces: list[_DummyTrace] = []

    def trace(self, name: str, metadata: Dict[str, Any] | None = None):
        trace = _DummyTrace(name, metadata or {})
        self.traces.append(trace)
        return trace


@pytest.fixture()
def dummy_client(monkeypatch) -> _DummyClient:
    client = _DummyClient()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: client)
    return client


def test_log_metric_closes_trace(dummy_client) -> None:
    tracing.log_metric("plan.demo", 42, metadata={"foo": "bar", "skip": None})

    recorded = dummy_client.traces[0]
    assert recorded.name == "metric:plan.demo"
    assert recorded.metadata == {"foo": "bar", "value": 42}
    assert recorded.ended is True


def test_trace_tags_plan_and_request(dummy_client) -> None:
    with bind_plan_id("plan-123"):
        with tracing.trace("plan.next", metadata={"route": "/x"}, request_id="req-9") as active:
            assert active is dummy_client.traces[0]

    assert dummy_client.traces[0].metadata == {"route": "/x", "request_id": "req-9", "plan_id": "plan-123"}
    assert dummy_client.traces[0].ended is True


def test_trace_records_error_and_reraises(dummy_client) -> None:
    with pytest.raises(KeyError):
        with tracing.trace("plan.replan"):
            raise KeyError("missing")

    recorded = dummy_client.traces[0]
    assert recorded.updates[0]["error_info"]["type"] == "KeyError"
    assert recorded.ended is True


def test_trace_is_noop_without_client(monkeypatch) -> None:
    monkeypatch.setattr(tracing, "get_opik_client", lambda: None)

    with tracing.trace("plan.save") as active:
        assert active is None
    tracing.log_metric("plan.save.success", 1)
