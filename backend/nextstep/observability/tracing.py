"""Tracing and metric helpers wrapping Opik."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from nextstep.core.context import get_plan_id
from nextstep.observability.client import get_opik_client

logger = logging.getLogger(__name__)


def _with_context(metadata: Optional[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    merged = {key: value for key, value in (metadata or {}).items() if value is not None}
    for key, value in extra.items():
        if value is not None:
            merged.setdefault(key, str(value))
    plan_id = get_plan_id()
    if plan_id:
        merged.setdefault("plan_id", plan_id)
    return merged


@contextmanager
def trace(
    name: str,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Iterator[Optional[Any]]:
    """
    Open an Opik trace around the block.

    Yields None when Opik is disabled. Exceptions raised inside the block are
    attached to the trace and re-raised unchanged.
    """
    client = get_opik_client()
    opik_trace = None

    if client:
        payload = _with_context(metadata, user_id=user_id, request_id=request_id)
        try:
            opik_trace = client.trace(name=name, metadata=payload or None)
        except Exception as exc:  # pragma: no cover - sdk failure
            logger.debug("Unable to start Opik trace %s: %s", name, exc)

    try:
        yield opik_trace
    except Exception as exc:
        if opik_trace is not None:
            try:
                opik_trace.update(error_info={"message": str(exc), "type": type(exc).__name__})
            except Exception:  # pragma: no cover
                logger.debug("Failed to attach error info to Opik trace %s", name, exc_info=True)
        raise
    finally:
        if opik_trace is not None:
            try:
                opik_trace.end()
            except Exception:  # pragma: no cover
                logger.debug("Failed to close Opik trace %s cleanly", name, exc_info=True)


def log_metric(name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Record a metric as a short-lived `metric:<name>` trace."""
    client = get_opik_client()
    if not client:
        return

    payload = _with_context(metadata)
    payload["value"] = value
    try:
        metric_trace = client.trace(name=f"metric:{name}", metadata=payload)
        metric_trace.end()
    except Exception as exc:  # pragma: no cover - sdk failure
        logger.debug("Unable to record metric %s: %s", name, exc)
