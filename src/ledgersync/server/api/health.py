"""Health check API route."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError

from ledgersync.server.api.deps import get_db
from ledgersync.server.database import Database
from ledgersync.server.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(
    request: Request,
    response: Response,
    db: Database = Depends(get_db),
) -> HealthResponse:
    """Check database reachability and scheduler state."""
    try:
        database_ok = db.ping()
    except SQLAlchemyError as e:
        logger.warning("Health check: database unreachable: %s", e)
        database_ok = False

    scheduler = request.app.state.scheduler
    if scheduler is None:
        scheduler_state = "disabled"
    else:
        scheduler_state = "running" if scheduler.running else "stopped"

    if not database_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        database="ok" if database_ok else "error",
        scheduler=scheduler_state,
    )
