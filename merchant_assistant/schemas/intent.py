from enum import Enum

from pydantic import Field, field_validator

from merchant_assistant.schemas.base import CamelModel


class UserIntent(str, Enum):
    """Closed set of intents understood by the router."""

    STATUS_QUERY = "status_query"
    DIAGNOSIS = "diagnosis"
    RECOMMENDATION = "recommendation"
    DATA_QUERY = "data_query"
    AGGREGATION_QUERY = "aggregation_query"
    RISK_STATISTICS = "risk_statistics"
    HEALTH_OVERVIEW = "health_overview"
    COMPARISON_QUERY = "comparison_query"
    TREND_ANALYSIS = "trend_analysis"
    COMPOSITE_QUERY = "composite_query"
    GENERAL_CHAT = "general_chat"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "UserIntent | None":
        """Intent for a raw string, or None when it is not a known intent."""
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            return None


# Intents that need a resolved merchant to be answered
ENTITY_SCOPED_INTENTS = frozenset(
    {
        UserIntent.STATUS_QUERY,
        UserIntent.DIAGNOSIS,
        UserIntent.RECOMMENDATION,
        UserIntent.DATA_QUERY,
    }
)

# Intents answered over the whole merchant population
ANALYTIC_INTENTS = frozenset(
    {
        UserIntent.AGGREGATION_QUERY,
        UserIntent.RISK_STATISTICS,
        UserIntent.HEALTH_OVERVIEW,
    }
)


class IntentResult(CamelModel):
    """Outcome of intent classification"""

    intent: UserIntent
    confidence: float = Field(ge=0.0, le=1.0)
    matched_keywords: list[str] = Field(default_factory=list)
    method: str = "rule_based"

    @field_validator("matched_keywords")
    @classmethod
    def dedupe_keywords(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    def is_confident(self, threshold: float = 0.6) -> bool:
        return self.confidence >= threshold


class IntentCandidate(CamelModel):
    """One intent proposed by the LLM multi-intent classifier"""

    intent: UserIntent
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""
