"""Main FastAPI application for the CoachForge backend."""
from fastapi import FastAPI, Request

from coachforge.api.routes.jobs import router as jobs_router
from coachforge.api.routes.programs import router as programs_router
from coachforge.core.config import settings
from coachforge.core.logging import configure_logging
from coachforge.core.middleware import RequestIDMiddleware
from coachforge.observability.client import init_opik
from coachforge.observability.tracing import trace

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(programs_router)
app.include_router(jobs_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.get("/health", tags=["health"], summary="Readiness check")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can check the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
