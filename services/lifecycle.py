from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from data.database import ABTest, utcnow
from data.repository import ab_tests, ab_test_sessions
from models.ab_tests import ABTestCreate, ABTestUpdate, VariantConfig
from services.cache import CacheClient
from services.errors import TestNotFound, InvalidTrafficSplit, InvalidStatusTransition, TestDeleteNotAllowed
from services.results import calculate_results
import logging

logger = logging.getLogger(__name__)

TRAFFIC_SPLIT_TOLERANCE = 0.01

# action -> (allowed from, moves to)
TRANSITIONS = {
    "start": ({"draft"}, "running"),
    "pause": ({"running"}, "paused"),
    "resume": ({"paused"}, "running"),
    "stop": ({"running"}, "completed"),
}

ACTIVE_STATUSES = {"running", "paused"}

CLEARABLE_FIELDS = {"description", "hypothesis"}


def build_traffic_split(variants: list[VariantConfig], traffic_split: dict[str, float] | None) -> dict[str, float]:
    """
    Checks the split against the variants and returns it. When no split is
    given it is taken from each variant's traffic_percentage.
    """
    variant_ids = [v.id for v in variants]
    if len(variant_ids) != len(set(variant_ids)):
        raise InvalidTrafficSplit("variant ids must be unique")

    if not traffic_split:
        if any(v.traffic_percentage is None for v in variants):
            raise InvalidTrafficSplit("provide traffic_split or a traffic_percentage for every variant")
        traffic_split = {v.id: v.traffic_percentage for v in variants}

    for variant_id, percentage in traffic_split.items():
        if percentage < 0 or percentage > 100:
            raise InvalidTrafficSplit(f"percentage for '{variant_id}' must be between 0 and 100, got {percentage}")

    if set(traffic_split) != set(variant_ids):
        raise InvalidTrafficSplit(
            f"split keys {sorted(traffic_split)} do not match variant ids {sorted(variant_ids)}"
        )

    total = sum(traffic_split.values())
    if abs(total - 100) > TRAFFIC_SPLIT_TOLERANCE:
        raise InvalidTrafficSplit(f"percentages sum to {total}, expected 100")

    return dict(traffic_split)


def get_test_or_404(db: Session, test_id: int) -> ABTest:
    ab_test = ab_tests.get(db, test_id)
    if not ab_test:
        raise TestNotFound(test_id)
    return ab_test


# --- Test Creation ---
def create_test(db: Session, data: ABTestCreate) -> ABTest:
    """Creates a new test in draft."""
    traffic_split = build_traffic_split(data.variants, data.traffic_split)

    ab_test = ABTest(
        organization_id=data.organization_id,
        name=data.name,
        description=data.description,
        hypothesis=data.hypothesis,
        target_metric=data.target_metric,
        variants=[v.model_dump() for v in data.variants],
        traffic_split=traffic_split,
        confidence_level=data.confidence_level,
        status="draft",
    )
    ab_tests.add(db, ab_test)
    logger.info("create new A/B test %s success with id: %d", data.name, ab_test.id)
    return ab_test


def list_tests(db: Session, organization_id: str, status: str | None = None, limit: int = 50, offset: int = 0):
    return ab_tests.list_for_organization(db, organization_id=organization_id, status=status, limit=limit, offset=offset)


def get_test_overview(db: Session, test_id: int) -> dict:
    """The test plus quick per-variant counts (rate in percent)."""
    ab_test = get_test_or_404(db, test_id)

    variant_stats = {}
    total_sessions = 0
    for variant_id, sessions, conversions in ab_test_sessions.variant_counts(db, test_id):
        variant_stats[variant_id] = {
            "sessions": sessions,
            "conversions": conversions,
            "conversion_rate": (conversions / sessions) * 100 if sessions > 0 else 0.0,
        }
        total_sessions += sessions

    return {
        **{c.name: getattr(ab_test, c.name) for c in ABTest.__table__.columns},
        "variant_stats": variant_stats,
        "total_sessions": total_sessions,
    }


def update_test(db: Session, cache: CacheClient, test_id: int, data: ABTestUpdate) -> ABTest:
    ab_test = get_test_or_404(db, test_id)
    if ab_test.status == "completed":
        raise InvalidStatusTransition(test_id, ab_test.status, "update")

    fields = data.model_dump(exclude_unset=True, exclude={"variants", "traffic_split"})
    # description and hypothesis may be cleared with null; the rest are required columns
    fields = {k: v for k, v in fields.items() if v is not None or k in CLEARABLE_FIELDS}

    if data.variants is not None or data.traffic_split is not None:
        if ab_test.status != "draft":
            raise InvalidStatusTransition(test_id, ab_test.status, "change variants of")

        variants = data.variants
        if variants is None:
            variants = [VariantConfig(**v) for v in ab_test.variants]
        traffic_split = data.traffic_split
        if traffic_split is None and data.variants is None:
            traffic_split = ab_test.traffic_split

        fields["traffic_split"] = build_traffic_split(variants, traffic_split)
        fields["variants"] = [v.model_dump() for v in variants]

    ab_tests.update(db, ab_test, fields)
    cache.invalidate_test(test_id)
    logger.info("A/B test %d updated: %s", test_id, sorted(fields))
    return ab_test


# --- Status Transitions ---
def transition(db: Session, cache: CacheClient, test_id: int, action: str) -> ABTest:
    """
    draft --start--> running --stop--> completed
    running --pause--> paused --resume--> running
    Stopping freezes the results snapshot and the winner.
    """
    allowed_from, new_status = TRANSITIONS[action]
    ab_test = get_test_or_404(db, test_id)
    if ab_test.status not in allowed_from:
        raise InvalidStatusTransition(test_id, ab_test.status, action)

    fields = {"status": new_status}
    if action == "start":
        fields["started_at"] = utcnow()
    elif action == "stop":
        results = calculate_results(db, test_id)
        results.status = new_status
        fields["ended_at"] = utcnow()
        fields["results"] = results.model_dump(mode="json")
        fields["statistical_significance"] = results.statistical_significance
        fields["winner_variant"] = results.winner.variant_id if results.winner else None

    previous_status = ab_test.status
    ab_tests.update(db, ab_test, fields)
    cache.invalidate_test(test_id)
    logger.info("A/B test %d: %s -> %s", test_id, previous_status, new_status)
    return ab_test


def start_test(db: Session, cache: CacheClient, test_id: int) -> ABTest:
    return transition(db, cache, test_id, "start")


def pause_test(db: Session, cache: CacheClient, test_id: int) -> ABTest:
    return transition(db, cache, test_id, "pause")


def resume_test(db: Session, cache: CacheClient, test_id: int) -> ABTest:
    return transition(db, cache, test_id, "resume")


def stop_test(db: Session, cache: CacheClient, test_id: int) -> ABTest:
    return transition(db, cache, test_id, "stop")


# --- Deletion ---
def delete_test(db: Session, cache: CacheClient, test_id: int):
    ab_test = get_test_or_404(db, test_id)
    if ab_test.status in ACTIVE_STATUSES:
        raise TestDeleteNotAllowed(test_id, ab_test.status)

    ab_tests.delete(db, ab_test)
    cache.invalidate_test(test_id)
    logger.info("A/B test %d deleted.", test_id)


def delete_tests(db: Session, cache: CacheClient, organization_id: str, test_ids: list[int]) -> list[dict]:
    """
    Batch delete within one organization. Nothing is deleted when any of the
    named tests is still active.
    """
    found = ab_tests.get_many(db, organization_id, test_ids)
    if not found:
        raise TestNotFound(test_ids[0])

    active = [t for t in found if t.status in ACTIVE_STATUSES]
    if active:
        raise TestDeleteNotAllowed(active[0].id, active[0].status)

    outcomes = []
    for ab_test in found:
        test_id, name = ab_test.id, ab_test.name
        try:
            ab_tests.delete(db, ab_test)
            cache.invalidate_test(test_id)
            outcomes.append({"id": test_id, "name": name, "success": True, "error": None})
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Failed to delete A/B test %d in batch.", test_id)
            outcomes.append({"id": test_id, "name": name, "success": False, "error": str(e)})

    logger.info("Batch delete for organization %s: %d/%d deleted.",
                organization_id, sum(o["success"] for o in outcomes), len(outcomes))
    return outcomes


def list_sessions(db: Session, test_id: int, variant_id: str | None = None, converted: bool | None = None,
                  limit: int = 50, offset: int = 0):
    get_test_or_404(db, test_id)
    return ab_test_sessions.search(db, test_id, variant_id=variant_id, converted=converted, limit=limit, offset=offset)
