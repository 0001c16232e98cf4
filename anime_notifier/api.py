"""
FastAPI trigger surface for the anime notifier.

External schedulers call these endpoints to run the two pipeline operations;
the routes add no behavior beyond mapping classified failures to HTTP errors.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from .config import Settings
from .errors import ErrorKind, NotifierError
from .service import NotificationService

logger = logging.getLogger(__name__)


class ScheduleUpdateResponse(BaseModel):
    inserted: int
    updated: int
    unchanged: int
    deleted: int
    skipped: int


class NotificationReport(BaseModel):
    now: datetime
    collected: int
    published: int


def status_for(kind: ErrorKind) -> int:
    match kind:
        case ErrorKind.FETCH | ErrorKind.DECODE | ErrorKind.PUBLISH:
            return 502
        case ErrorKind.STORE:
            return 503


def _to_http_error(operation: str, err: NotifierError) -> HTTPException:
    logger.error(f"{operation} failed ({err.kind.value}): {' <- '.join(err.chain())}")
    return HTTPException(
        status_code=status_for(err.kind),
        detail={"kind": err.kind.value, "message": err.message},
    )


def get_service(request: Request) -> NotificationService:
    """Dependency to get the service instance."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


def create_app(service: Optional[NotificationService] = None, settings: Optional[Settings] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        app.state.service = service or NotificationService(settings or Settings())
        await app.state.service.initialize()
        logger.info("Anime notifier API started")

        yield

        await app.state.service.close()
        app.state.service = None
        logger.info("Anime notifier API stopped")

    app = FastAPI(
        title="Anime Notifier",
        description="Keeps anime airing schedules in sync and notifies subscribers",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/schedule/update", response_model=ScheduleUpdateResponse)
    async def update_schedule(svc: NotificationService = Depends(get_service)):
        """Fetch the provider calendar and reconcile the anime store."""
        try:
            result = await svc.update_schedule()
        except NotifierError as e:
            raise _to_http_error("Schedule update", e) from e
        return result.as_dict()

    @app.post("/notifications/send", response_model=NotificationReport)
    async def send_notifications(svc: NotificationService = Depends(get_service)) -> Dict[str, Any]:
        """Notify subscribers of every episode that has aired."""
        try:
            return await svc.send_notifications()
        except NotifierError as e:
            raise _to_http_error("Notification dispatch", e) from e

    return app


# Module-level app for `uvicorn anime_notifier.api:app`
app = create_app()
