from celery_config import celery_app
from data.database import SessionLocal
from data.repository import ab_tests
from services import conversion, results
from services.cache import get_cache_client
from services.errors import SessionNotFound
from sqlalchemy.exc import OperationalError
from typing import Any
import logging

logger = logging.getLogger(__name__)


def get_db_session():
    """Provides a fresh database session for task execution."""
    return SessionLocal()


# ignore_result as we don't need the result and it reduces backend storage bloat
@celery_app.task(bind=True, max_retries=3, default_retry_delay=30, ignore_result=True)
def record_conversion_task(self, payload: dict[str, Any]):
    """
    Records a conversion handed off by the API. A conversion for a session
    that was never assigned is logged and dropped; connection failures retry.
    """
    db = get_db_session()
    try:
        conversion.record_conversion(
            db,
            payload['test_id'],
            payload['session_id'],
            conversion_event=payload.get('conversion_event'),
            conversion_value=payload.get('conversion_value')
        )
        logger.info("Task %s[%s]: conversion recorded for session %s on test %s.",
                    self.name, self.request.id, payload['session_id'], payload['test_id'])
    except SessionNotFound as e:
        logger.warning("Task %s[%s]: dropped conversion: %s", self.name, self.request.id, e.detail)
    except OperationalError as exc:
        db.rollback()
        logger.error("Database connection failed in celery task. Retrying...")
        raise self.retry(exc=exc)
    except Exception as exc:
        db.rollback()
        logger.error("Failed to record conversion %s: %s", payload, exc)
        raise # re-raise so Celery marks FAILURE
    finally:
        db.close()


@celery_app.task(ignore_result=True)
def monitor_running_tests():
    """
    Recomputes results for every running test and caches the latest summary.
    Returns the number of tests summarized.
    """
    db = get_db_session()
    cache = get_cache_client()
    summarized = 0
    try:
        for ab_test in ab_tests.list_by_status(db, "running"):
            try:
                summary = results.calculate_results(db, ab_test.id)
            except Exception:
                logger.exception("Monitoring failed for A/B test %d.", ab_test.id)
                continue

            cache.set_results(ab_test.id, summary.model_dump_json())
            summarized += 1
            if summary.winner:
                logger.info("A/B test %d has a significant winner: %s (p=%.4f).",
                            ab_test.id, summary.winner.variant_id, summary.winner.p_value)
            else:
                logger.info("A/B test %d: %d sessions, %d conversions, no winner yet.",
                            ab_test.id, summary.total_sessions, summary.total_conversions)
    finally:
        db.close()

    return summarized
