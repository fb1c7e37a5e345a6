"""
SLA Engine - Main Application
==============================

SLA consumption and escalation engine for support tickets.

Modules:
- SLA: Pinned due times, consumption tracking, pause/resume, escalation ladder

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and the business-calendar clock
- Infrastructure: Database, configuration sources, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
)

# SLA Module
from src.sla.application import SLASweepService
from src.sla.infrastructure import (
    CachingConfigProvider,
    SLAConfigManager,
    SLAScheduler,
    SQLAlchemyConfigProvider,
    YAMLConfigProvider,
)
from src.sla.interfaces import engine_session_factory, sla_router

# Logging / metrics / middleware
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from src.shared.infrastructure.grafana import get_grafana_exporter
from src.shared.infrastructure.logging import get_logger, log_latency, setup_logging

logger = get_logger(__name__)


def build_config_provider(config_manager: Optional[SLAConfigManager]) -> CachingConfigProvider:
    """Select the configured source and put the TTL cache in front of it."""
    if settings.sla_config_source == "database":
        inner = SQLAlchemyConfigProvider(get_session_context)
    else:
        inner = YAMLConfigProvider(config_manager)

    provider = CachingConfigProvider(inner, ttl_seconds=settings.sla_config_cache_ttl_seconds)
    if config_manager is not None:
        config_manager.add_reload_listener(lambda _config: provider.invalidate())
    return provider


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration (and watch the YAML file)
    4. Build config provider and sweep service
    5. Start the sweep scheduler

    SHUTDOWN:
    1. Stop the sweep scheduler
    2. Stop the config watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "config_source": settings.sla_config_source
    })

    init_database()

    # Create tables (for development - use Alembic in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    config_manager: Optional[SLAConfigManager] = None
    if settings.sla_config_source == "yaml":
        logger.info("Loading SLA configuration", extra={"path": str(settings.sla_config_path)})
        config_manager = SLAConfigManager()
        config_manager.load(settings.sla_config_path)
        config_manager.start_watching()

    config_provider = build_config_provider(config_manager)
    sweep_service = SLASweepService(
        engine_session_factory(config_provider),
        budget_seconds=settings.sla_sweep_budget_seconds,
        concurrency=settings.sla_sweep_concurrency,
        batch_size=settings.sla_sweep_batch_size,
    )
    exporter = get_grafana_exporter()

    async def sla_sweep_job():
        """Background SLA sweep job."""
        with log_latency(logger, "sla_sweep"):
            result = await sweep_service.sweep()
        await exporter.export_sweep_metrics(result.to_dict())

    scheduler: Optional[SLAScheduler] = None
    if settings.sla_sweep_interval_seconds > 0:
        scheduler = SLAScheduler(interval_seconds=settings.sla_sweep_interval_seconds)
        await scheduler.start(sla_sweep_job)
    else:
        logger.info("SLA sweep scheduler disabled")

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.sla_config_manager = config_manager
    app.state.sla_config_provider = config_provider
    app.state.sla_sweep_service = sweep_service
    app.state.sla_scheduler = scheduler

    logger.info("SLA engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")

    if scheduler:
        await scheduler.stop()

    if config_manager:
        config_manager.stop_watching()

    await close_database()

    logger.info("SLA engine shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="SLA Engine API",
    description="""
    ## SLA Consumption & Escalation Engine

    Tracks how much of each ticket's resolution window has been consumed,
    in calendar time or business hours, and escalates through a per-scope
    ladder as thresholds are crossed.

    **Endpoints:**
    - `POST /sla/tickets` - Register a ticket (pins SLA target and calendar)
    - `GET /sla/tickets/{id}` - Recompute and read SLA state
    - `POST /sla/tickets/{id}/hold` - Pause / resume the SLA clock
    - `POST /sla/tickets/{id}/escalate` - Manual escalation
    - `POST /sla/tickets/{id}/resolve` - Resolve and freeze consumption
    - `GET /sla/at-risk`, `GET /sla/overview`, `GET /sla/escalations`
    - `POST /sla/sweep` - Run one sweep tick

    **Status labels:** healthy, warning (>= 75%), critical (>= 90%),
    breached (>= 100%), paused, resolved.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "sla_config": "loaded (2 scopes)",
                        "sla_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - SLA configuration status
    - Scheduler state
    """
    state = request.app.state
    scheduler = getattr(state, "sla_scheduler", None)
    config_manager = getattr(state, "sla_config_manager", None)

    if settings.sla_config_source == "database":
        config_check = "database"
    elif config_manager is not None:
        config_check = f"loaded ({len(config_manager.get_config().scopes)} scopes)"
    else:
        config_check = "not_loaded"

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "sla_config": config_check,
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        }
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/tickets - Register ticket SLA",
                    "GET /sla/tickets/{id} - Get ticket SLA status",
                    "POST /sla/tickets/{id}/hold - Pause or resume",
                    "POST /sla/tickets/{id}/escalate - Manual escalation",
                    "POST /sla/tickets/{id}/resolve - Resolve",
                    "GET /sla/at-risk - At-risk tickets",
                    "GET /sla/escalations - Escalation feed",
                    "POST /sla/sweep - Run a sweep now"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
