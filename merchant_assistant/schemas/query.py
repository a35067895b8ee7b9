from enum import Enum
from typing import Literal

from pydantic import Field, model_validator

from merchant_assistant.schemas.base import CamelModel
from merchant_assistant.schemas.intent import UserIntent


class QueryType(str, Enum):
    SINGLE_ENTITY = "single_entity"
    AGGREGATION = "aggregation"
    COMPARISON = "comparison"
    TREND_ANALYSIS = "trend_analysis"


class ComparisonTarget(str, Enum):
    ENTITY_VS_ENTITY = "entity_vs_entity"
    PREVIOUS_PERIOD = "previous_period"
    LAST_MONTH = "last_month"
    LAST_WEEK = "last_week"
    SAME_CATEGORY = "same_category"
    SAME_FLOOR = "same_floor"


class TimeRange(CamelModel):
    period: str  # e.g. last_month, last_3_months, this_year
    start: str | None = None
    end: str | None = None


class QueryEntities(CamelModel):
    names: list[str] = Field(default_factory=list)
    time_range: TimeRange | None = None
    comparison_target: ComparisonTarget | None = None


class QueryFilters(CamelModel):
    risk_level: list[str] | None = None
    category: list[str] | None = None
    floor: list[str] | None = None

    def is_empty(self) -> bool:
        return not (self.risk_level or self.category or self.floor)


AggregationOp = Literal["count", "sum", "avg", "max", "min"]


class AggregationSpec(CamelModel):
    operation: AggregationOp | None = None
    group_by: str | None = None
    field: str | None = None


class StructuredQuery(CamelModel):
    """Machine-readable form of an analytic question"""

    original_input: str
    type: QueryType
    entities: QueryEntities = Field(default_factory=QueryEntities)
    intents: list[UserIntent] = Field(default_factory=list)
    filters: QueryFilters | None = None
    aggregations: AggregationSpec | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def aggregation_requires_operation(self) -> "StructuredQuery":
        if self.type == QueryType.AGGREGATION and (self.aggregations is None or self.aggregations.operation is None):
            raise ValueError("aggregation queries must specify an operation")
        return self
