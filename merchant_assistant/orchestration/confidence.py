from dataclasses import dataclass
from typing import Literal

ConfidenceLevel = Literal["high", "medium", "low", "very_low"]

_MESSAGES: dict[ConfidenceLevel, str] = {
    "high": "",
    "medium": "⚠️ 提示：我对这个理解有一定把握，但不是完全确定。",
    "low": "❓ 我不太确定您的意思，请确认：",
    "very_low": "❌ 抱歉，我无法理解您的问题。",
}


@dataclass(frozen=True)
class ConfidenceDecision:
    execute: bool
    ask_confirmation: bool
    show_warning: bool
    level: ConfidenceLevel


class ConfidenceManager:
    """Maps a confidence score to an execution decision and a user-facing prefix."""

    def __init__(self, high: float = 0.85, medium: float = 0.6, low: float = 0.4):
        if not 0.0 <= low <= medium <= high <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= low <= medium <= high <= 1")
        self.high = high
        self.medium = medium
        self.low = low

    def level(self, confidence: float) -> ConfidenceLevel:
        if confidence >= self.high:
            return "high"
        if confidence >= self.medium:
            return "medium"
        if confidence >= self.low:
            return "low"
        return "very_low"

    def decide(self, confidence: float) -> ConfidenceDecision:
        level = self.level(confidence)
        return ConfidenceDecision(
            execute=level in ("high", "medium"),
            ask_confirmation=level == "low",
            show_warning=level == "medium",
            level=level,
        )

    def message(self, confidence: float) -> str:
        return _MESSAGES[self.level(confidence)]
