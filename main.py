# ============================================================================
# FLEET SCHEDULER - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - FastAPI application entry point
# PURPOSE: Main application with the lifecycle reconciler
# CREATED: 10 OCT 2026
# ============================================================================
"""
Fleet Scheduler Main Application

FastAPI application that:
1. Provides HTTP API for hosts, node types and nodes
2. Runs the lifecycle reconciler in the background
3. Manages the fleet store (in-memory or PostgreSQL)

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from __version__ import __version__, BUILD_DATE, EPOCH
from fastapi.middleware.cors import CORSMiddleware

from core.config import StoreBackend, get_defaults
from repositories import InMemoryFleetStore, PostgresFleetStore
from repositories.database import init_pool, close_pool
from repositories.schema import ensure_schema
from infrastructure.locking import LockService
from services.fleet_service import FleetService
from api.routes import router, set_services

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

# Global instances
_fleet_service: FleetService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    """
    global _fleet_service

    defaults = get_defaults()
    logger.info(
        f"Starting Fleet Scheduler v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE}, "
        f"store={defaults.store.backend.value})"
    )

    lock_service = None
    if defaults.store.backend == StoreBackend.POSTGRES:
        pool = await init_pool(defaults.store.pool_min_size, defaults.store.pool_max_size)
        logger.info("Database pool initialized")

        # Optional: Bootstrap schema on startup (for development)
        if defaults.store.auto_bootstrap_schema:
            logger.info("Auto-bootstrap enabled, deploying schema...")
            applied = await ensure_schema(pool)
            logger.info(f"Schema bootstrap applied {applied} statements")

        lock_service = LockService(pool)
        store = PostgresFleetStore(pool, lock_service)
    else:
        store = InMemoryFleetStore()
        logger.info("Using in-memory fleet store (state is lost on restart)")

    _fleet_service = FleetService.build(store, defaults=defaults, lock_service=lock_service)
    counts = await _fleet_service.startup()
    logger.info(f"Fleet state loaded: {counts}")

    set_services(_fleet_service)

    await _fleet_service.reconciler.start()
    logger.info("Reconciler started")

    yield

    # Shutdown
    logger.info("Shutting down Fleet Scheduler...")

    await _fleet_service.reconciler.stop()
    await store.close()
    if defaults.store.backend == StoreBackend.POSTGRES:
        await close_pool()

    logger.info("Fleet Scheduler stopped")


# Create FastAPI app
app = FastAPI(
    title="Fleet Scheduler",
    description=f"Epoch {EPOCH} node placement and lifecycle reconciliation",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


@app.get("/livez", tags=["Health"])
async def livez():
    """Liveness probe: the process is up and serving."""
    return {"status": "ok"}


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    reconciler = _fleet_service.reconciler if _fleet_service else None
    return {
        "service": "Fleet Scheduler",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running",
        "reconciler_role": reconciler.stats["role"] if reconciler else None,
        "docs": "/docs",
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
