"""
Routing Exceptions

Errors raised inside the routing pipeline. None of them escape a public
entry point: the router, the structurer and the selector convert them into
result values or fallbacks.
"""

from typing import Any


class AssistantError(Exception):
    """
    Base exception for routing errors.

    Carries a machine-readable code that ends up in the result envelope.
    """

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        """
        Initialize the error.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "ENTITY_NOT_RESOLVED")
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for result envelopes."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(AssistantError):
    """Raised when a turn cannot be processed as given (empty input)."""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class EntityNotResolvedError(AssistantError):
    """
    Raised when an entity-scoped intent has no resolvable merchant.

    `suggestions` holds merchant names the user may have meant.
    """

    def __init__(self, user_input: str, suggestions: list[str] | None = None, intent: str | None = None):
        self.user_input = user_input
        self.suggestions = suggestions or []
        self.intent = intent
        super().__init__(
            f"No merchant could be resolved from: {user_input!r}",
            "ENTITY_NOT_RESOLVED",
            {"input": user_input, "suggestions": self.suggestions, "intent": intent},
        )


class LLMUnavailableError(AssistantError):
    """Raised when an LLM path is requested but no capability is configured or reachable."""

    def __init__(self, message: str = "LLM capability unavailable"):
        super().__init__(message, "LLM_UNAVAILABLE")


class LLMCallFailedError(AssistantError):
    """Raised when a call to the LLM fails at transport or model level."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        details = {"cause": type(cause).__name__} if cause else {}
        super().__init__(message, "LLM_CALL_FAILED", details)


class QueryParseError(AssistantError):
    """Raised when an LLM response cannot be parsed into a structured query."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        details = {"raw_response": raw_response[:200]} if raw_response else {}
        super().__init__(message, "QUERY_PARSE_ERROR", details)
