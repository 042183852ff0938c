"""FastAPI application wiring for the conversation dispatch service.

This module bootstraps the HTTP API used by the project:

- Configures logging, CORS (optional for the operator UI), Prometheus metrics
  and rate limiting.
- Exposes health/version endpoints plus the dispatch, routing-rule, agent and
  business-hours routers.
- Maps dispatch failures that escape a router to HTTP status codes so callers
  know whether to fix the request or retry.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .dispatch.errors import DependencyError, NotFoundError, ValidationError
from .dispatch.runtime import set_runtime
from .limits import limiter
from .routers import dispatch, rules

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Stop dispatch worker pools when the server exits."""
    yield
    set_runtime(None)


app = FastAPI(title="Conversation Dispatch", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
# Optional CORS for operator UI
operator_ui_origins = os.getenv("OPERATOR_UI_ORIGINS")
if operator_ui_origins:
    origins = [o.strip() for o in operator_ui_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(dispatch.router)
app.include_router(rules.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.exception_handler(ValidationError)
async def _validation_error(_request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DependencyError)
async def _dependency_error(_request: Request, exc: DependencyError) -> JSONResponse:
    logger.warning("Dispatch dependency unavailable: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Dispatch storage is unavailable; retry later"},
    )


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
