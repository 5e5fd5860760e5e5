"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib
import logging

from nextstep.core.context import bind_plan_id, request_id_ctx_var
from nextstep.core.logging import ContextFilter


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import nextstep.observability.client as client_module
    import nextstep.main as main_module

    client_module.reset_opik_client()
    reloaded_app = importlib.reload(main_module)

    assert hasattr(reloaded_app, "app")
    assert client_module.get_opik_client() is None


def test_opik_skipped_when_api_key_missing(monkeypatch) -> None:
    import nextstep.observability.client as client_module

    monkeypatch.setattr(client_module.settings, "opik_enabled", True)
    monkeypatch.setattr(client_module.settings, "opik_api_key", None)
    client_module.reset_opik_client()
    try:
        assert client_module.init_opik() is None
    finally:
        client_module.reset_opik_client()


def test_context_filter_adds_request_and_plan_ids() -> None:
    record = logging.LogRecord("nextstep", logging.INFO, __file__, 1, "hello", None, None)
    token = request_id_ctx_var.set("req-1")
    try:
        with bind_plan_id("plan-7"):
            assert ContextFilter().filter(record) is True
    finally:
        request_id_ctx_var.reset(token)

    assert record.request_id == "req-1"
    assert record.plan_id == "plan-7"
