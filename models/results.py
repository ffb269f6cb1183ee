from pydantic import BaseModel
from datetime import datetime

class VariantResult(BaseModel):
    """Detailed statistics for a single variant."""
    id: str
    name: str
    sessions: int
    conversions: int
    conversion_rate: float # conversions / sessions, 0-1
    conversion_value_total: float
    confidence_interval: tuple[float, float]

class Winner(BaseModel):
    variant_id: str
    improvement: float | None # relative lift in percent; None when the other rate is 0
    p_value: float

class ABTestResults(BaseModel):
    """Schema returned by GET /ab-tests/{id}/results and frozen on stop."""
    test_id: int
    test_name: str
    status: str
    target_metric: str
    confidence_level: float
    total_sessions: int
    total_conversions: int
    best_variant_id: str | None
    p_value: float | None
    statistical_significance: float
    insufficient_sample: bool
    variants: list[VariantResult]
    winner: Winner | None
    recommendations: list[str]
    report_generated_at: datetime
