from sqlalchemy.orm import Session
from data.database import ABTestSession, utcnow
from data.repository import ab_test_sessions
from services.errors import SessionNotFound
import logging

logger = logging.getLogger(__name__)


def record_conversion(
    db: Session,
    test_id: int,
    session_id: str,
    conversion_event: str | None = None,
    conversion_value: float | None = None,
) -> ABTestSession:
    """
    Marks the session's assignment as converted. Repeated calls overwrite the
    label and value on the same row, so aggregation never double counts.
    """
    session = ab_test_sessions.get(db, test_id, session_id)
    if not session:
        logger.info("Conversion for unassigned session %s on test %d ignored.", session_id, test_id)
        raise SessionNotFound(test_id, session_id)

    if not session.converted:
        session.converted_at = utcnow()
    session.converted = True
    session.conversion_event = conversion_event
    session.conversion_value = conversion_value

    ab_test_sessions.update(db, session)
    logger.info("Session %s converted on test %d (variant %s, event %s).",
                session_id, test_id, session.variant_id, conversion_event)
    return session
