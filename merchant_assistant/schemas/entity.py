from enum import Enum

from pydantic import Field, model_validator

from merchant_assistant.schemas.base import CamelModel


class MatchSource(str, Enum):
    """How a merchant was matched."""

    EXACT = "exact_match"
    FUZZY = "fuzzy_match"
    KEYWORD = "keyword_match"
    PARTIAL = "partial_match"
    CONTEXT = "context"


class EntityResult(CamelModel):
    """Outcome of entity resolution. A match always carries the merchant id."""

    entity_id: str | None = None
    entity_name: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    matched: bool = False
    source: MatchSource | None = None

    @model_validator(mode="after")
    def matched_requires_id(self) -> "EntityResult":
        if self.matched and not self.entity_id:
            raise ValueError("a matched EntityResult must carry entity_id")
        return self

    @classmethod
    def unmatched(cls) -> "EntityResult":
        return cls(matched=False, confidence=0.0)


class EntityCandidate(CamelModel):
    """A possible merchant for an utterance, used for clarification prompts"""

    entity_id: str
    entity_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: MatchSource
    matched_text: str | None = None


class ContextSwitch(CamelModel):
    """Whether the user moved to a different merchant in this turn"""

    is_switch: bool
    new_entity_id: str | None = None
    new_entity_name: str | None = None
    reason: str = ""


class ExtractedEntities(CamelModel):
    """Non-merchant entities found in an utterance"""

    dates: list[str] = Field(default_factory=list)
    numbers: list[float] = Field(default_factory=list)
    metrics: list[str] = Field(default_factory=list)
