"""Health check router."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..core.clock import utcnow
from ..schemas.health import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.post("/ping", response_model=HealthResponse)
async def health_ping(request: Request) -> JSONResponse:
    """
    Health check endpoint.

    Reports the database connection and the running state of each scheduler.
    """
    database_ok = await request.app.state.database.ping()
    worker_manager = getattr(request.app.state, "worker_manager", None)
    workers = worker_manager.get_worker_status() if worker_manager else {}

    response_data = HealthResponse(
        status=HealthStatus.HEALTHY if database_ok else HealthStatus.DEGRADED,
        timestamp=utcnow(),
        version=__version__,
        database=database_ok,
        workers=workers,
    )

    logger.debug(
        "Health check requested",
        extra={
            "status": response_data.status,
            "timestamp": response_data.timestamp.isoformat()
        }
    )

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
