"""FastAPI application entry point for the URL shortener service.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ init_db()        │
    │ service manager  │
    │ (cache, recorder)│
    └──────┬───────────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ recorder.stop()  │
    │ close_db()       │
    │ close_redis()    │
    └──────────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn urlshortener.main:app --host 0.0.0.0 --port 8000

Error Mapping
=============
::
    ValidationError            → 422 {"error", "field", "detail"}
    RequestValidationError     → 422 (same shape, first pydantic error)
    NotFoundError              → 404 {"error"}
    RateLimitedError           → 429 {"error", "retry_at" | "unblock_at"} + Retry-After
    DependencyUnavailableError → 503 {"error"} (no internal detail)
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from urlshortener.config import get_settings
from urlshortener.database import close_db, init_db
from urlshortener.dependencies import _service_manager
from urlshortener.exceptions import (
    DependencyUnavailableError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from urlshortener.redis import close_redis
from urlshortener.routes import router
from urlshortener.service import utcnow

settings = get_settings()
logger = logging.getLogger("urlshortener")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with cache-aside resolution and distributed rate limiting",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "Validation failed", "field": exc.field, "detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    return JSONResponse(
        status_code=422,
        content={
            "error": "Validation failed",
            "field": ".".join(location) or None,
            "detail": first.get("msg", "Invalid request"),
        },
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "URL not found or expired"})


@app.exception_handler(RateLimitedError)
async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
    content = {"error": exc.message}
    if exc.unblock_at is not None:
        content["unblock_at"] = exc.unblock_at.isoformat()
    if exc.retry_at is not None:
        content["retry_at"] = exc.retry_at.isoformat()
    return JSONResponse(
        status_code=429,
        content=content,
        headers={"Retry-After": str(exc.retry_after_seconds(utcnow()))},
    )


@app.exception_handler(DependencyUnavailableError)
async def dependency_unavailable_handler(request: Request, exc: DependencyUnavailableError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=503, content={"error": "Service temporarily unavailable"})


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
