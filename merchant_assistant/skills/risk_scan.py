"""
Local risk-factor scan used to decide whether a diagnosis needs the hybrid
strategy. Thresholds follow the merchant health model: a dimension score
below 60 is a warning, a rent-to-sales ratio above 25% breaches the
industry alert line.
"""

from dataclasses import dataclass

from merchant_assistant.interfaces.registry import Entity

SCORE_ALERT_LINE = 60.0
RENT_TO_SALES_ALERT = 0.25

# metric key -> (label, high-severity line)
_METRIC_CHECKS = {
    "collection": ("收缴健康度", 40.0),
    "operational": ("经营健康度", 40.0),
    "customer_review": ("顾客满意度", 40.0),
    "efficiency": ("坪效", 40.0),
    "anti_risk": ("抗风险能力", 40.0),
}


@dataclass(frozen=True)
class RiskFactor:
    code: str
    label: str
    severity: str  # medium | high
    value: float | None = None


def scan_risk_factors(entity: Entity | None) -> list[RiskFactor]:
    """Every concurrent risk factor visible in the merchant record."""
    if entity is None:
        return []

    factors: list[RiskFactor] = []

    for key, (label, high_line) in _METRIC_CHECKS.items():
        value = entity.metrics.get(key)
        if value is not None and value < SCORE_ALERT_LINE:
            factors.append(RiskFactor(f"low_{key}", label, "high" if value < high_line else "medium", value))

    ratio = entity.rent_to_sales_ratio
    if ratio is not None and ratio > RENT_TO_SALES_ALERT:
        factors.append(RiskFactor("high_rent_ratio", "租售比", "high" if ratio > 0.3 else "medium", ratio))

    if entity.total_score is not None and entity.total_score < SCORE_ALERT_LINE:
        severity = "high" if entity.total_score < 45 else "medium"
        factors.append(RiskFactor("health_declining", "总体健康度", severity, entity.total_score))

    if entity.risk_level in ("high", "critical"):
        factors.append(RiskFactor("risk_level", "风险等级", "high"))

    return factors
