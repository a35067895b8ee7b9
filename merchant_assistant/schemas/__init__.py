"""
Schemas for routing inputs and outputs.
"""

from .entity import ContextSwitch, EntityCandidate, EntityResult, ExtractedEntities, MatchSource
from .intent import ANALYTIC_INTENTS, ENTITY_SCOPED_INTENTS, IntentCandidate, IntentResult, UserIntent
from .query import (
    AggregationSpec,
    ComparisonTarget,
    QueryEntities,
    QueryFilters,
    QueryType,
    StructuredQuery,
    TimeRange,
)
from .result import AgentExecutionResult, DataSource, ResultMetadata, SuggestedAction

__all__ = [
    "ANALYTIC_INTENTS",
    "ENTITY_SCOPED_INTENTS",
    "AgentExecutionResult",
    "AggregationSpec",
    "ComparisonTarget",
    "ContextSwitch",
    "DataSource",
    "EntityCandidate",
    "EntityResult",
    "ExtractedEntities",
    "IntentCandidate",
    "IntentResult",
    "MatchSource",
    "QueryEntities",
    "QueryFilters",
    "QueryType",
    "ResultMetadata",
    "StructuredQuery",
    "SuggestedAction",
    "TimeRange",
    "UserIntent",
]
