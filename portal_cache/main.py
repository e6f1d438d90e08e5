"""
Portal Cache - FastAPI application exposing cache administration endpoints.
The cached API service is created at startup and torn down at shutdown.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from starlette.concurrency import run_in_threadpool

from portal_cache.cache import CachedApiService, build_cached_api_service
from portal_cache.schemas import CacheStatsResponse, InvalidateResponse, PreloadResponse
from config.settings import settings

APP_VERSION = "v0.1.0"
APP_NAME = "Portal Cache"

logger = logging.getLogger("portal_cache")


def get_cached_api(request: Request) -> CachedApiService:
    """Dependency returning the process-wide cached API service."""
    return request.app.state.cached_api


def create_app(service: Optional[CachedApiService] = None) -> FastAPI:
    """
    Build the application.

    Args:
        service: Pre-built service (tests); built from settings when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cached_api = service or build_cached_api_service(settings)
        app.state.cached_api = cached_api
        if settings.preload_on_startup:
            # preload issues blocking requests calls; keep them off the event loop
            await run_in_threadpool(cached_api.preload_data)
        try:
            yield
        finally:
            cached_api.shutdown()

    app = FastAPI(
        title=APP_NAME,
        description="Tiered response cache in front of the portal API",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok", "version": APP_VERSION}

    @app.get("/cache/stats", response_model=CacheStatsResponse, response_model_by_alias=True)
    def cache_stats(cached_api: CachedApiService = Depends(get_cached_api)):
        """Get cache statistics."""
        return CacheStatsResponse.from_summary(cached_api.get_cache_summary())

    @app.post("/cache/clear", response_model=CacheStatsResponse, response_model_by_alias=True)
    def clear_caches(cached_api: CachedApiService = Depends(get_cached_api)):
        """Clear every tier and return the refreshed stats."""
        cached_api.clear_all_caches()
        return CacheStatsResponse.from_summary(cached_api.get_cache_summary())

    @app.post("/cache/invalidate", response_model=InvalidateResponse)
    def invalidate_cache(
        pattern: str = Query(..., min_length=1),
        cached_api: CachedApiService = Depends(get_cached_api),
    ):
        return InvalidateResponse(
            pattern=pattern,
            invalidated=cached_api.invalidate_cache(pattern),
        )

    @app.post("/cache/preload", response_model=PreloadResponse)
    def preload(cached_api: CachedApiService = Depends(get_cached_api)):
        """Warm the long tier. Never fails; reports whether warming completed."""
        return PreloadResponse(completed=cached_api.preload_data())

    return app


logging.basicConfig(level=settings.log_level)

app = create_app()
