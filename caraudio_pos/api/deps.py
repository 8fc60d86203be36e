"""FastAPI dependency injection for services."""

import asyncio
import time
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, Request

from caraudio_pos.core.config import Settings, get_settings
from caraudio_pos.core.logging import log_db_query, log_external_call, logger
from caraudio_pos.services.allocation import AllocationEngine
from caraudio_pos.services.db import get_supabase_client
from caraudio_pos.services.fitment_engine import FitmentEngine
from caraudio_pos.services.fitment_store import AccessoryTable, FitmentDataStore, load_snapshot
from caraudio_pos.services.inventory_repo import (
    UNITS_TABLE,
    InMemoryInventoryRepository,
    InventoryRepository,
    SupabaseInventoryRepository,
)

# -----------------------------------------------------------------------------
# Engines (created in the app lifespan)
# -----------------------------------------------------------------------------


def get_fitment_engine(request: Request) -> FitmentEngine:
    """Dependency for the snapshot-backed fitment engine."""
    return request.app.state.fitment_engine


def get_allocation_engine(request: Request) -> AllocationEngine:
    """Dependency for the inventory allocation engine."""
    return request.app.state.allocation_engine


# -----------------------------------------------------------------------------
# Admin Authentication
# -----------------------------------------------------------------------------


async def verify_admin_key(
    request: Request,
    x_admin_key: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> bool:
    """Verify admin API key for protected endpoints."""
    if not settings.api_admin_key:
        logger.warning("API_ADMIN_KEY not set - admin endpoints unprotected")
        raise HTTPException(
            status_code=503,
            detail="Admin endpoints not configured. Set API_ADMIN_KEY environment variable.",
        )

    if not x_admin_key:
        raise HTTPException(
            status_code=401,
            detail="Missing X-Admin-Key header",
        )

    if x_admin_key != settings.api_admin_key:
        logger.warning(f"Invalid admin key attempt from {request.client}")
        raise HTTPException(
            status_code=403,
            detail="Invalid admin key",
        )

    return True


# -----------------------------------------------------------------------------
# Health Check Helpers
# -----------------------------------------------------------------------------


async def check_supabase_health(client: Any) -> dict[str, Any]:
    """Check Supabase connectivity."""
    start = time.time()
    try:
        await asyncio.to_thread(
            lambda: client.table(UNITS_TABLE).select("id").limit(1).execute()
        )
        duration_ms = (time.time() - start) * 1000
        log_db_query("health_check", UNITS_TABLE, duration_ms)
        log_external_call("supabase", "health_check", True, duration_ms)
        return {
            "status": "healthy",
            "latency_ms": round(duration_ms, 2),
        }
    except Exception as e:
        duration_ms = (time.time() - start) * 1000
        log_external_call("supabase", "health_check", False, duration_ms)
        return {
            "status": "unhealthy",
            "error": str(e),
            "latency_ms": round(duration_ms, 2),
        }


# -----------------------------------------------------------------------------
# Startup wiring
# -----------------------------------------------------------------------------


async def load_configured_snapshot(settings: Settings) -> tuple[FitmentDataStore, AccessoryTable]:
    """Load the fitment snapshot from the configured source."""
    client = get_supabase_client() if settings.fitment_source == "supabase" else None
    return await load_snapshot(
        settings.fitment_source,
        settings.fitment_data_path,
        settings.accessory_data_path,
        client=client,
    )


def build_inventory_repo(settings: Settings) -> InventoryRepository:
    """Inventory repository for the configured backend."""
    if settings.inventory_backend == "supabase":
        return SupabaseInventoryRepository(get_supabase_client())
    return InMemoryInventoryRepository()
