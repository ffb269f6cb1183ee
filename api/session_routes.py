from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Any

from models.sessions import AssignmentResponse, ConversionCreate, SessionResponse, QueuedConversionResponse
from services import assignment, conversion
from services.cache import CacheClient
from api.depends import CLIENT_AUTH, DB_DEPENDENCY, CACHE_CLIENT

# Import the Celery task
from celery_tasks.ab_test_tasks import record_conversion_task
import logging

logger = logging.getLogger(__name__)

session_router = APIRouter(
    prefix="/ab-tests/{test_id}",
    tags=["sessions"],
    dependencies=[CLIENT_AUTH]
)


# GET /ab-tests/{test_id}/assignment/{session_id} (The Idempotent Logic)
@session_router.get("/assignment/{session_id}", response_model=AssignmentResponse)
def get_session_assignment_route(
    test_id: int,
    session_id: str,
    user_id: str | None = None,
    db: Session = DB_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT
):
    """Get the session's variant. Assigns one on first sight while the test is running."""
    return assignment.get_or_create_session(db, cache, test_id, session_id, user_id=user_id)


# POST /ab-tests/{test_id}/conversions
@session_router.post("/conversions", response_model=SessionResponse)
def record_conversion_route(
    test_id: int,
    conversion_data: ConversionCreate,
    db: Session = DB_DEPENDENCY
):
    """Mark an assigned session as converted. Repeating the call overwrites the event and value."""
    return conversion.record_conversion(
        db,
        test_id,
        conversion_data.session_id,
        conversion_event=conversion_data.conversion_event,
        conversion_value=conversion_data.conversion_value
    )


# POST /ab-tests/{test_id}/conversions/queue
@session_router.post("/conversions/queue", response_model=QueuedConversionResponse, status_code=status.HTTP_202_ACCEPTED)
def queue_conversion_route(
    test_id: int,
    conversion_data: ConversionCreate
):
    """
    Hand the conversion to a celery worker and return immediately, so the
    user-facing action never waits on (or fails with) the write.
    """
    task_payload: dict[str, Any] = {
        'test_id': test_id,
        'session_id': conversion_data.session_id,
        'conversion_event': conversion_data.conversion_event,
        'conversion_value': conversion_data.conversion_value,
    }

    # .delay() is non-blocking
    task = record_conversion_task.delay(task_payload)
    logger.debug("record_conversion_task queued: %s", task.id)

    return JSONResponse(content={"status": "queued", "task_id": task.id}, status_code=status.HTTP_202_ACCEPTED)
