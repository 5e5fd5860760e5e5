"""Per-request context utilities."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
plan_id_ctx_var: ContextVar[str | None] = ContextVar("plan_id", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_plan_id() -> str | None:
    return plan_id_ctx_var.get()


@contextmanager
def bind_plan_id(plan_id: object) -> Iterator[None]:
    """Tag log records emitted inside the block with the plan being touched."""
    token = plan_id_ctx_var.set(str(plan_id))
    try:
        yield
    finally:
        plan_id_ctx_var.reset(token)
