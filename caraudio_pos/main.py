"""FastAPI application for the car-audio fitment and inventory API."""

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from caraudio_pos.api.deps import (
    build_inventory_repo,
    check_supabase_health,
    load_configured_snapshot,
)
from caraudio_pos.api.routes import limiter, router
from caraudio_pos.core.config import get_settings, validate_settings
from caraudio_pos.core.logging import (
    log_error,
    log_request,
    log_response,
    logger,
    setup_logging,
)
from caraudio_pos.services.allocation import AllocationEngine
from caraudio_pos.services.db import get_supabase_client
from caraudio_pos.services.fitment_engine import FitmentEngine
from caraudio_pos.services.option_cache import OptionCache

# Validate settings on startup
try:
    validate_settings()
except ValueError as e:
    logger.error(f"Configuration error: {e}")
    raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - load the fitment snapshot and inventory backend."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting Car Audio POS API...")

    store, accessories = await load_configured_snapshot(settings)
    app.state.fitment_engine = FitmentEngine(
        store,
        accessories,
        OptionCache(maxsize=settings.option_cache_maxsize, ttl=settings.option_cache_ttl),
    )
    app.state.allocation_engine = AllocationEngine(build_inventory_repo(settings))
    logger.info(
        f"Fitment snapshot loaded: {len(store)} vehicle keys, {len(accessories)} accessory keys; "
        f"inventory backend={settings.inventory_backend}"
    )
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Car Audio POS API",
    description="Vehicle fitment matching and serialized inventory allocation",
    version="1.0.0",
    lifespan=lifespan,
)

# State for limiter
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    log_error("Rate limit exceeded", client=get_remote_address(request))
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded. Try again later."})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    log_request(request.method, request.url.path)

    response = await call_next(request)

    duration_ms = (time.time() - start) * 1000
    log_response(request.method, request.url.path, response.status_code, duration_ms)

    return response


# Routes
app.include_router(router, prefix="/api")


class HealthResponse(BaseModel):
    status: str
    vehicle_keys: int | None = None
    supabase: dict[str, Any] | None = None


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request, detailed: bool = False):
    """
    Health check endpoint.

    - Basic: Returns {"status": "healthy"}
    - Detailed (?detailed=true): snapshot size, plus Supabase connectivity
      when a Supabase backend is configured
    """
    if not detailed:
        return {"status": "healthy"}

    settings = get_settings()
    engine: FitmentEngine = request.app.state.fitment_engine
    result: dict[str, Any] = {"status": "healthy", "vehicle_keys": len(engine.store)}

    if settings.uses_supabase:
        supabase_health = await check_supabase_health(get_supabase_client())
        result["supabase"] = supabase_health
        if supabase_health["status"] != "healthy":
            result["status"] = "degraded"

    return result
