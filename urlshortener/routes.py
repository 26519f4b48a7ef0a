"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shorten                 [create tier + abuse tracking]
        ├─ URLCreate (request body)
        └─ URLResponse (201 new, 200 existing) or 422/429

    GET    /api/analytics/:short_code   [global tier]
        └─ AnalyticsResponse (200) or 404

    GET    /api/urls                    [global tier]
        └─ list[URLResponse] (200)

    DELETE /api/:short_code             [global tier]
        └─ 200 or 404

    GET    /:short_code                 [global tier]
        └─ 307 Redirect or 404

Key Behaviours
===============
- Domain errors are raised by the service layer and turned into responses
  by the exception handlers in ``urlshortener.main``.
- The redirect response does not wait for its access event to be stored.
- 307 redirects are not cached by browsers, so deletions and analytics see
  every visit.
"""

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from urlshortener.dependencies import (
    RequestContext,
    enforce_global_limit,
    get_guard,
    get_request_context,
    get_resolution_service,
)
from urlshortener.enums import HealthStatus, RateScope
from urlshortener.guard import RateAbuseGuard
from urlshortener.schemas import AnalyticsResponse, HealthResponse, URLCreate, URLResponse
from urlshortener.service import ResolutionService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    if ctx.settings.CACHE_ENABLED:
        try:
            await ctx.cache.ping()
        except Exception as e:
            ctx.logger.error(f"Cache health check failed: {e}")
            cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/shorten", response_model=URLResponse, status_code=201, tags=["urls"])
async def shorten_url(
    payload: URLCreate,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    guard: RateAbuseGuard = Depends(get_guard),
    service: ResolutionService = Depends(get_resolution_service),
) -> URLResponse:
    await guard.check(ctx.client_ip, RateScope.CREATE, target_url=payload.url)

    record, existing = await service.create_mapping(payload.url, ctx.client_ip, payload.expires_in)
    if existing:
        response.status_code = 200

    ctx.logger.info(
        f"Shortened {payload.url} -> {record.short_code} (existing={existing})",
        extra={"operation": "create_mapping", "short_code": record.short_code, "duration_ms": ctx.get_duration()},
    )
    return URLResponse.from_record(record, ctx.settings.BASE_URL, existing=existing)


@router.get(
    "/api/analytics/{short_code}",
    response_model=AnalyticsResponse,
    tags=["urls"],
    dependencies=[Depends(enforce_global_limit)],
)
async def get_analytics(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ResolutionService = Depends(get_resolution_service),
) -> AnalyticsResponse:
    summary = await service.get_analytics(short_code)
    return AnalyticsResponse.from_summary(summary, ctx.clock())


@router.get(
    "/api/urls",
    response_model=list[URLResponse],
    tags=["urls"],
    dependencies=[Depends(enforce_global_limit)],
)
async def list_urls(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_request_context),
    service: ResolutionService = Depends(get_resolution_service),
) -> list[URLResponse]:
    records = await service.list_mappings(limit=limit, offset=offset)
    return [URLResponse.from_record(record, ctx.settings.BASE_URL) for record in records]


@router.delete("/api/{short_code}", tags=["urls"], dependencies=[Depends(enforce_global_limit)])
async def delete_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ResolutionService = Depends(get_resolution_service),
) -> dict:
    record = await service.delete_mapping(short_code)
    ctx.logger.info(f"Deleted short code {record.short_code}", extra={"operation": "delete_mapping"})
    return {"success": True, "short_code": record.short_code, "message": "URL deleted successfully"}


@router.get("/{short_code}", tags=["redirect"], dependencies=[Depends(enforce_global_limit)])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ResolutionService = Depends(get_resolution_service),
) -> RedirectResponse:
    record = await service.resolve(short_code, visitor=ctx.visitor)
    ctx.logger.info(
        f"Redirect {short_code} -> {record.original_url}",
        extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=record.original_url, status_code=307)
