"""
SafeCircle - Family Safety Platform

FastAPI application entry point.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.core.config import get_settings
from backend.app.core.exceptions import register_exception_handlers
from backend.app.core.logging import setup_logging, get_logger
from backend.app.core.observability import setup_tracing
from backend.app.core.security import oauth2_scheme
from backend.app.middleware.trace import TracingMiddleware
from backend.app.api import families, health, incidents, locations, operator, places, sla, sse

settings = get_settings()

# Initialize logging
setup_logging(level=settings.log_level)
logger = get_logger(__name__)


# TracingMiddleware (imported above) handles correlation IDs and request logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")

    # Initialize event bus
    from backend.app.events.bus import initialize_event_bus
    initialize_event_bus(maxsize=settings.event_bus_queue_size)

    # Schema + SLA defaults for development databases
    from backend.app.core.init_db import init_database
    await init_database()

    # Start background event consumer (place detection)
    from backend.app.workers.consumer import start_event_consumer
    consumer_task = await start_event_consumer()

    # Start SLA sweep scheduler
    sweep_task = None
    if settings.sla_sweep_enabled:
        from backend.app.workers.scheduled import run_sla_sweep, start_scheduler
        sweep_task = start_scheduler(settings.sla_sweep_interval_seconds, run_sla_sweep)
        logger.info(f"SLA sweep scheduler started (interval={settings.sla_sweep_interval_seconds}s)")

    yield
    # Shutdown
    logger.info(f"👋 Shutting down {settings.app_name}")

    for task in (sweep_task, consumer_task):
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


app = FastAPI(
    title=settings.app_name,
    description="SOS incidents, live family locations, places and response SLAs",
    version=settings.app_version,
    lifespan=lifespan,
)

# Initialize Tracing
setup_tracing(app, enabled=settings.tracing_enabled)

register_exception_handlers(app)

# Add Middleware
app.add_middleware(TracingMiddleware)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID", "X-Family-Group-ID"],
)

# Include routers
app.include_router(health.router, tags=["Health"])

app.include_router(
    incidents.router,
    prefix=f"{settings.api_prefix}/incidents",
    tags=["SOS Incidents"],
    dependencies=[Depends(oauth2_scheme)]
)

app.include_router(
    locations.router,
    prefix=f"{settings.api_prefix}/locations",
    tags=["Live Locations"],
    dependencies=[Depends(oauth2_scheme)]
)

app.include_router(
    places.router,
    prefix=f"{settings.api_prefix}/places",
    tags=["Places"],
    dependencies=[Depends(oauth2_scheme)]
)

app.include_router(
    families.router,
    prefix=f"{settings.api_prefix}/families",
    tags=["Families"],
    dependencies=[Depends(oauth2_scheme)]
)

app.include_router(
    operator.router,
    prefix=f"{settings.api_prefix}/operator",
    tags=["Operator Console"],
    dependencies=[Depends(oauth2_scheme)]
)

app.include_router(
    sla.router,
    prefix=f"{settings.api_prefix}/sla",
    tags=["SLA & Escalation"],
    dependencies=[Depends(oauth2_scheme)]
)

# Real-time SSE push
app.include_router(sse.router, prefix=f"{settings.api_prefix}", tags=["Real-time SSE"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Family safety platform core",
        "docs": "/docs",
    }
