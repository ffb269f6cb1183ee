from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from data.database import ABTest, ABTestSession
from data.repository import ab_tests, ab_test_sessions
from services.cache import CacheClient
from services.errors import TestNotFound, TestNotRunning, AssignmentFailed
import random
import logging

logger = logging.getLogger(__name__)

# Define the maximum number of times to retry the transaction
MAX_RETRIES = 3


def choose_variant(variants: list[dict], traffic_split: dict[str, float], draw: float) -> str:
    """
    Walk the variants in configured order, accumulating their split
    percentages, and return the first one whose cumulative threshold
    reaches the draw (a number in [0, 100)).
    """
    cumulative = 0.0
    for variant in variants:
        cumulative += traffic_split.get(variant["id"], 0)
        if draw <= cumulative:
            return variant["id"]

    # Rounding can leave the draw above the last threshold
    return variants[-1]["id"]


def get_existing_session(db: Session, cache: CacheClient, test_id: int, session_id: str) -> ABTestSession | None:
    """ Get existing assignment from cache, then database """

    existing_session = cache.get_assignment(test_id, session_id)
    if not existing_session:
        existing_session = ab_test_sessions.get(db, test_id, session_id)

        if existing_session:
            cache.set_assignment(existing_session)
            logger.debug("get_existing_session %d cache miss", test_id)
    else:
        logger.debug("get_existing_session %d cache hit", test_id)

    return existing_session


def get_test(db: Session, cache: CacheClient, test_id: int) -> ABTest:
    """ Get test from cache, then database. Raises TestNotFound. """

    ab_test = cache.get_test(test_id)
    if not ab_test:
        ab_test = ab_tests.get(db, test_id)
        if not ab_test:
            raise TestNotFound(test_id)
        cache.set_test(ab_test)
        logger.debug("get_test %d cache miss", test_id)
    else:
        logger.debug("get_test %d cache hit", test_id)

    return ab_test


# --- Idempotent Assignment ---
def get_or_create_session(db: Session, cache: CacheClient, test_id: int, session_id: str, user_id: str | None = None):
    """
    Returns the sticky variant assignment for a visitor session, creating it
    on first sight. Concurrent first requests for the same session race on
    the (ab_test_id, session_id) unique constraint; the loser rolls back and
    re-reads the winner's row.
    """

    for attempt in range(MAX_RETRIES):

        # 1. CHECK FOR EXISTING ASSIGNMENT
        existing_session = get_existing_session(db=db, cache=cache, test_id=test_id, session_id=session_id)

        if existing_session:
            logger.info("Found persistent assignment for session %s on test %d: %s",
                        session_id, test_id, existing_session.variant_id)
            return existing_session

        # 2. ONLY RUNNING TESTS HAND OUT NEW ASSIGNMENTS
        ab_test = get_test(db=db, cache=cache, test_id=test_id)
        if ab_test.status != "running":
            logger.info("Assignment refused for session %s: test %d is %s", session_id, test_id, ab_test.status)
            raise TestNotRunning(test_id, ab_test.status)

        try:
            # 3. WALK THE TRAFFIC SPLIT WITH A UNIFORM DRAW IN [0, 100)
            draw = random.random() * 100
            variant_id = choose_variant(ab_test.variants, ab_test.traffic_split, draw)

            new_session = ABTestSession(
                ab_test_id=test_id,
                session_id=session_id,
                user_id=user_id,
                variant_id=variant_id,
                converted=False
            )
            ab_test_sessions.insert(db, new_session)
            cache.set_assignment(new_session)

            logger.info("SUCCESS: Session %s newly assigned to %s (test %d) on attempt %d.",
                        session_id, variant_id, test_id, attempt + 1)
            return new_session

        except IntegrityError:
            # A concurrent transaction beat us to the INSERT; the next pass reads its row
            db.rollback()
            logger.warning("RACE DETECTED: IntegrityError on session %s (test %d). Retrying (Attempt %d/%d)...",
                           session_id, test_id, attempt + 2, MAX_RETRIES)

        except SQLAlchemyError:
            db.rollback()
            logger.exception("An unexpected database error occurred during assignment for session %s.", session_id)
            raise AssignmentFailed(test_id)

    logger.warning("Failed to get or create assignment for session %s after %d attempts.", session_id, MAX_RETRIES)
    raise AssignmentFailed(test_id)
