"""
Skill registry

Skills are the host's analytics functions (health scoring, risk detection,
statistics). They are registered per intent and may be plain or async
callables.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from merchant_assistant.interfaces.registry import Entity
from merchant_assistant.schemas.intent import UserIntent
from merchant_assistant.schemas.query import StructuredQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkillInput:
    """Arguments passed to every skill."""

    intent: UserIntent
    entity: Entity | None = None
    query: StructuredQuery | None = None
    user_input: str = ""


SkillFunc = Callable[[SkillInput], Any | Awaitable[Any]]


class SkillRegistry:
    """Maps intents to skill callables."""

    def __init__(self) -> None:
        self._skills: dict[UserIntent, SkillFunc] = {}

    def register(self, intent: UserIntent, func: SkillFunc) -> None:
        if intent in self._skills:
            logger.info(f"Replacing skill for {intent.value}")
        self._skills[intent] = func

    def skill(self, intent: UserIntent) -> Callable[[SkillFunc], SkillFunc]:
        """Decorator form of register."""

        def decorator(func: SkillFunc) -> SkillFunc:
            self.register(intent, func)
            return func

        return decorator

    def get(self, intent: UserIntent) -> SkillFunc | None:
        return self._skills.get(intent)

    def has(self, intent: UserIntent) -> bool:
        return intent in self._skills

    @property
    def intents(self) -> list[UserIntent]:
        return list(self._skills)

    async def run(self, intent: UserIntent, skill_input: SkillInput) -> Any:
        """
        Run the skill registered for an intent.

        Raises:
            KeyError: No skill registered for the intent
        """
        func = self._skills[intent]
        outcome = func(skill_input)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome
