"""
Statistics for conversion-rate tests.

Everything here is pure arithmetic over counts so it can be tested without
a database.
"""
import math
from scipy import stats

Z_95 = 1.96

P_VALUE_CHI2 = "chi2"
P_VALUE_LEGACY = "legacy"


def conversion_rate(conversions: int, sessions: int) -> float:
    if sessions == 0:
        return 0.0
    return conversions / sessions


def confidence_interval(rate: float, sessions: int, z: float = Z_95) -> tuple[float, float]:
    """Normal approximation to the binomial proportion, clamped to [0, 1]."""
    if sessions == 0:
        return (0.0, 0.0)
    margin = z * math.sqrt(rate * (1 - rate) / sessions)
    return (max(0.0, rate - margin), min(1.0, rate + margin))


def chi_square_2x2(sessions_a: int, conversions_a: int, sessions_b: int, conversions_b: int) -> float:
    """
    Pearson chi-square statistic for the variant x converted table,
    without continuity correction. Returns 0 when any expected cell is 0
    (no conversions at all, or everyone converted).
    """
    total_sessions = sessions_a + sessions_b
    if total_sessions == 0:
        return 0.0
    total_conversions = conversions_a + conversions_b

    observed = [
        (conversions_a, sessions_a - conversions_a),
        (conversions_b, sessions_b - conversions_b),
    ]
    chi_square = 0.0
    for (converted, not_converted), sessions in zip(observed, (sessions_a, sessions_b)):
        expected_converted = sessions * total_conversions / total_sessions
        expected_not_converted = sessions - expected_converted
        if expected_converted == 0 or expected_not_converted == 0:
            return 0.0
        chi_square += (converted - expected_converted) ** 2 / expected_converted
        chi_square += (not_converted - expected_not_converted) ** 2 / expected_not_converted
    return chi_square


def p_value_from_chi_square(chi_square: float, method: str = P_VALUE_CHI2) -> float:
    """
    p-value for one degree of freedom.

    "chi2" is the exact upper tail of the chi-square distribution.
    "legacy" is exp(-chi2 / 2), the approximation older stored results were
    computed with; it overstates the p-value for small statistics.
    """
    if chi_square <= 0:
        return 1.0
    if method == P_VALUE_LEGACY:
        return math.exp(-chi_square / 2)
    if method != P_VALUE_CHI2:
        raise ValueError(f"Unknown p-value method: {method}")
    return float(stats.chi2.sf(chi_square, df=1))


def relative_improvement(best_rate: float, baseline_rate: float) -> float | None:
    """Lift of best over baseline in percent, None when the baseline rate is 0."""
    if baseline_rate == 0:
        return None
    return (best_rate - baseline_rate) / baseline_rate * 100
