"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .core.config import Settings, settings
from .core.database import Database
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_NAME,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import booking, health, inventory, metrics, resource
from .services.reservation_coordinator import ReservationCoordinator
from .workers.manager import WorkerManager

# Configure structured logging
setup_structured_logging()

# Configure traditional logging for compatibility
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


def attach_engine(app: FastAPI, database: Database, config: Settings) -> ReservationCoordinator:
    """Hang the database, coordinator and worker manager on the application state."""
    coordinator = ReservationCoordinator(database, config)
    app.state.database = database
    app.state.coordinator = coordinator
    app.state.worker_manager = WorkerManager(coordinator, config)
    return coordinator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Owns the database handle and the schedulers: connects before serving,
    starts the workers, and on shutdown stops the workers before disposing
    of the engine.
    """
    config: Settings = app.state.settings
    logger.info("Starting booking engine")
    logger.info(f"Environment: {config.environment}")
    logger.info(f"Debug mode: {config.debug}")

    owns_database = getattr(app.state, "database", None) is None
    try:
        setup_tracing()
        setup_metrics()
        logger.info("Observability setup completed")

        if owns_database:
            attach_engine(app, Database.from_settings(config), config)
        database: Database = app.state.database
        instrument_sqlalchemy(database.engine)

        if not config.is_production:
            # Production schemas are managed by Alembic
            await database.create_all()
        logger.info("Database initialized successfully")

        if config.workers_enabled:
            await app.state.worker_manager.start_all()
            logger.info("Background workers started successfully")
    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        raise

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down booking engine")

    try:
        await app.state.worker_manager.stop_all()
        logger.info("Background workers stopped")

        if owns_database:
            await app.state.database.dispose()
            logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during application cleanup: {e}")

    logger.info("Application shutdown complete")


def create_app(config: Settings = settings, database: Optional[Database] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Settings to run with
        database: Pre-built database handle; when omitted the lifespan creates one

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Booking Engine API",
        description=(
            "RPC-over-HTTP API for reserving tour places, hotel rooms and flight seats "
            "without overselling, with payment deadlines and time-driven resource status"
        ),
        version=__version__,
        debug=config.debug,
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )
    app.state.settings = config
    if database is not None:
        attach_engine(app, database, config)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "traceparent", "tracestate"],
    )

    setup_middleware(app, enable_logging=True)

    instrument_fastapi(app)

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Health Check",
        description="Check if the service is healthy and responsive",
        response_model=dict,
    )
    async def health_check():
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": __version__,
            "environment": config.environment,
            "debug": config.debug,
        }

    @app.get(
        "/ready",
        tags=["Health"],
        summary="Readiness Check",
        description="Check that the database answers and the schedulers are running",
        response_model=dict,
    )
    async def readiness_check(request: Request):
        database_ok = await request.app.state.database.ping()
        workers = request.app.state.worker_manager.get_worker_status()
        workers_ok = all(workers.values()) or not config.workers_enabled
        ready = database_ok and workers_ok
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if ready else "not_ready",
                "service": SERVICE_NAME,
                "checks": {
                    "database": "ok" if database_ok else "unavailable",
                    "workers": {name: "running" if up else "stopped" for name, up in workers.items()},
                },
            },
        )

    @app.get(
        "/info",
        status_code=status.HTTP_200_OK,
        tags=["Info"],
        summary="Service Information",
        description="Get detailed information about the service",
        response_model=dict,
    )
    async def service_info():
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "description": "Inventory reservation and booking-lifecycle engine",
            "environment": config.environment,
            "debug": config.debug,
            "resource_kinds": ["TOUR", "ROOM", "FLIGHT"],
            "schedulers": {
                "deadline": {"interval_seconds": config.deadline_scan_interval_seconds},
                "resource_status": {"interval_seconds": config.status_scan_interval_seconds},
                "enabled": config.workers_enabled,
            },
            "features": {
                "authentication": True,
                "tracing": True,
                "problem_details": True,
            },
            "endpoints": {
                "health": "/health",
                "readiness": "/ready",
                "info": "/info",
                "metrics": "/metrics",
                "docs": "/docs" if config.debug else None,
            },
        }

    app.include_router(health.router)
    app.include_router(booking.router)
    app.include_router(resource.router)
    app.include_router(inventory.router)
    app.include_router(metrics.router)

    logger.info("FastAPI application created and configured")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "booking_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
