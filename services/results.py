from sqlalchemy.orm import Session
from datetime import datetime, timezone
from config import config
from data.repository import ab_tests, ab_test_sessions
from models.results import ABTestResults, VariantResult, Winner
from services.errors import TestNotFound
from services import statistics
import logging

logger = logging.getLogger(__name__)

# Both variants need more sessions than this before significance is tested
MIN_SESSIONS_FOR_SIGNIFICANCE = 30
# Below this many sessions in every variant the test is still collecting data
RECOMMENDED_SESSIONS_PER_VARIANT = 100
SIGNIFICANCE_THRESHOLD = 0.05


def calculate_results(db: Session, test_id: int) -> ABTestResults:
    """Loads a test and all of its sessions and summarizes them."""
    ab_test = ab_tests.get(db, test_id)
    if not ab_test:
        raise TestNotFound(test_id)

    sessions = ab_test_sessions.list_for_test(db, test_id)
    logger.debug("calculate results for test %d over %d sessions", test_id, len(sessions))
    return summarize(ab_test, sessions)


def _variant_result(variant: dict, sessions: list) -> VariantResult:
    assigned = [s for s in sessions if s.variant_id == variant["id"]]
    converted = [s for s in assigned if s.converted]
    rate = statistics.conversion_rate(len(converted), len(assigned))

    return VariantResult(
        id=variant["id"],
        name=variant.get("name", variant["id"]),
        sessions=len(assigned),
        conversions=len(converted),
        conversion_rate=rate,
        conversion_value_total=sum(s.conversion_value or 0 for s in converted),
        confidence_interval=statistics.confidence_interval(rate, len(assigned)),
    )


def _recommendations(variants: list[VariantResult], winner: Winner | None, best: VariantResult | None) -> list[str]:
    if winner:
        return [
            f"Variant {best.name} shows statistically significant improvement",
            "Consider implementing the winning variant",
        ]

    recommendations = ["No statistically significant difference detected"]
    if variants and max(v.sessions for v in variants) < RECOMMENDED_SESSIONS_PER_VARIANT:
        recommendations.append("Continue test to gather more data for reliable results")
    if len(variants) > 2:
        recommendations.append("Significance testing supports two variants only; compare variants pairwise before deciding")
    return recommendations


def summarize(ab_test, sessions: list, p_value_method: str | None = None) -> ABTestResults:
    """
    Per-variant conversion rates, confidence intervals, a two-variant
    chi-square test and recommendations. Pure function of its inputs.
    """
    p_value_method = p_value_method or config.p_value_method
    variants = [_variant_result(v, sessions) for v in ab_test.variants]

    # Ties keep the variant configured first
    best = None
    for variant in variants:
        if best is None or variant.conversion_rate > best.conversion_rate:
            best = variant

    p_value = None
    winner = None
    insufficient_sample = True

    if len(variants) == 2:
        variant_a, variant_b = variants
        if variant_a.sessions > MIN_SESSIONS_FOR_SIGNIFICANCE and variant_b.sessions > MIN_SESSIONS_FOR_SIGNIFICANCE:
            insufficient_sample = False
            chi_square = statistics.chi_square_2x2(
                variant_a.sessions, variant_a.conversions,
                variant_b.sessions, variant_b.conversions
            )
            p_value = statistics.p_value_from_chi_square(chi_square, method=p_value_method)

            if p_value < SIGNIFICANCE_THRESHOLD:
                other = variant_b if best is variant_a else variant_a
                winner = Winner(
                    variant_id=best.id,
                    improvement=statistics.relative_improvement(best.conversion_rate, other.conversion_rate),
                    p_value=p_value,
                )
                logger.info("Test %s: variant %s wins with p=%.4f", ab_test.id, best.id, p_value)

    return ABTestResults(
        test_id=ab_test.id,
        test_name=ab_test.name,
        status=ab_test.status,
        target_metric=ab_test.target_metric,
        confidence_level=ab_test.confidence_level or 0.95,
        total_sessions=sum(v.sessions for v in variants),
        total_conversions=sum(v.conversions for v in variants),
        best_variant_id=best.id if best else None,
        p_value=p_value,
        statistical_significance=1 - p_value if p_value is not None else 0.0,
        insufficient_sample=insufficient_sample,
        variants=variants,
        winner=winner,
        recommendations=_recommendations(variants, winner, best),
        report_generated_at=datetime.now(timezone.utc),
    )
