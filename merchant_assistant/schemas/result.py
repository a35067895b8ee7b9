from enum import Enum
from typing import Any

from pydantic import Field

from merchant_assistant.schemas.base import CamelModel
from merchant_assistant.schemas.intent import UserIntent


class DataSource(str, Enum):
    """Execution strategy that produced a result."""

    SKILLS = "skills"
    LLM = "llm"
    HYBRID = "hybrid"


class SuggestedAction(CamelModel):
    """Follow-up the UI can offer after an answer."""

    type: str  # create_task | navigate_health | navigate_knowledge | navigate_risk
    label: str
    entity_id: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)


class ResultMetadata(CamelModel):
    data_source: DataSource
    execution_time: float = 0.0  # milliseconds
    intent: UserIntent | None = None
    entity_id: str | None = None
    entity_name: str | None = None
    confidence: float | None = None
    suggested_actions: list[str] | None = None
    cached: bool = False


class AgentExecutionResult(CamelModel):
    """Uniform result envelope returned for every turn"""

    success: bool
    content: str
    metadata: ResultMetadata
    suggested_action: SuggestedAction | None = None
    error: str | None = None

    def to_envelope(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
