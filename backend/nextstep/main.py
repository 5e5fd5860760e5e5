"""Main FastAPI application for the NextStep backend."""
from fastapi import FastAPI, Request

from nextstep.api.routes.plan_coaching import router as plan_coaching_router
from nextstep.api.routes.plan_progress import router as plan_progress_router
from nextstep.api.routes.plan_replan import router as plan_replan_router
from nextstep.api.routes.plans import router as plans_router
from nextstep.core.config import settings
from nextstep.core.logging import configure_logging
from nextstep.core.middleware import RequestIDMiddleware
from nextstep.observability.client import init_opik
from nextstep.observability.tracing import trace

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(plans_router)
app.include_router(plan_progress_router)
app.include_router(plan_replan_router)
app.include_router(plan_coaching_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
