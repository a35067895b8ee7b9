"""
Conversation Context Manager

Tracks per-conversation state across turns: the active merchant, the intent
history, the most recent messages and the discussed topics. Contexts are
keyed by conversation id and never shared between conversations.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, UTC, timedelta
from typing import Any

from merchant_assistant.schemas.entity import EntityResult
from merchant_assistant.schemas.intent import IntentResult, UserIntent

logger = logging.getLogger(__name__)

MAX_TOPICS = 5
TOPIC_KEYWORDS = ("健康度", "风险", "营收", "客流", "满意度", "方案", "帮扶", "租金", "趋势")
REFERENCE_WORDS = ("这家店", "那家店", "这个店", "那个店", "这家", "那家", "该店", "此店", "它")


@dataclass
class ConversationContext:
    """State carried between turns of one conversation."""

    conversation_id: str
    max_recent_messages: int = 10
    max_intent_history: int = 10

    # Merchant focus
    active_entity_id: str | None = None
    active_entity_name: str | None = None

    # Intent tracking
    last_intent: UserIntent | None = None
    intent_history: list[dict[str, Any]] = field(default_factory=list)

    recent_messages: deque = field(init=False)
    topic_stack: list[str] = field(default_factory=list)

    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    message_count: int = 0

    def __post_init__(self) -> None:
        self.recent_messages = deque(maxlen=self.max_recent_messages)

    def touch(self) -> None:
        self.updated_at = datetime.now(UTC)

    def add_message(self, role: str, content: str) -> None:
        """Append a message; the oldest one is dropped beyond the limit."""
        self.recent_messages.append(
            {"role": role, "content": content, "timestamp": datetime.now(UTC).isoformat()}
        )
        self.message_count += 1
        self.touch()

    def add_intent(self, intent: UserIntent, confidence: float) -> None:
        self.intent_history.append(
            {
                "intent": intent,
                "confidence": confidence,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        del self.intent_history[: -self.max_intent_history]
        self.last_intent = intent
        self.touch()

    def recent_intents(self, n: int = 3) -> list[UserIntent]:
        return [entry["intent"] for entry in self.intent_history[-n:]]

    def set_active_entity(self, entity_id: str, entity_name: str | None) -> None:
        if entity_id != self.active_entity_id:
            logger.debug(f"[{self.conversation_id}] active merchant -> {entity_name}")
        self.active_entity_id = entity_id
        self.active_entity_name = entity_name
        self.touch()

    def clear_active_entity(self) -> None:
        self.active_entity_id = None
        self.active_entity_name = None
        self.touch()

    def push_topic(self, topic: str) -> None:
        """Push a topic unless it repeats the current one; keeps the last five."""
        if self.topic_stack and self.topic_stack[-1] == topic:
            return
        self.topic_stack.append(topic)
        del self.topic_stack[:-MAX_TOPICS]

    def resolve_references(self, user_input: str) -> str:
        """Replace the first demonstrative reference with the active merchant name."""
        if not self.active_entity_name:
            return user_input
        for word in REFERENCE_WORDS:
            if word in user_input:
                return user_input.replace(word, self.active_entity_name, 1)
        return user_input

    def build_summary(self) -> str:
        """Short natural-language summary used in LLM prompts."""
        lines: list[str] = []
        if self.active_entity_name:
            lines.append(f"当前讨论商户: {self.active_entity_name}")
        if self.intent_history:
            flow = " → ".join(entry["intent"].value for entry in self.intent_history[-3:])
            lines.append(f"意图流程: {flow}")
        if self.topic_stack:
            lines.append(f"讨论话题: {', '.join(self.topic_stack)}")
        keywords = [
            keyword
            for keyword in TOPIC_KEYWORDS
            if any(keyword in message["content"] for message in self.recent_messages)
        ]
        if keywords:
            lines.append(f"涉及关键词: {', '.join(keywords)}")
        return "\n".join(lines)

    def get_summary(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "active_entity_id": self.active_entity_id,
            "active_entity_name": self.active_entity_name,
            "last_intent": self.last_intent.value if self.last_intent else None,
            "message_count": self.message_count,
            "topics": list(self.topic_stack),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class ContextManager:
    """
    In-memory store of conversation contexts with TTL and capacity eviction.

    Example:
        ```python
        manager = ContextManager(ttl_hours=24)
        context = manager.get_or_create("conv-123")
        manager.record_turn("conv-123", "海底捞最近怎么样", intent_result, entity_result, "...")
        ```
    """

    def __init__(
        self,
        ttl_hours: int = 24,
        max_contexts: int = 10000,
        max_recent_messages: int = 10,
    ):
        self.ttl = timedelta(hours=ttl_hours)
        self.max_contexts = max_contexts
        self.max_recent_messages = max_recent_messages
        self._contexts: dict[str, ConversationContext] = {}

        logger.info(f"ContextManager initialized (ttl={ttl_hours}h, max={max_contexts})")

    @classmethod
    def from_settings(cls, settings) -> "ContextManager":
        return cls(
            ttl_hours=settings.CONTEXT_TTL_HOURS,
            max_contexts=settings.CONTEXT_MAX_CONTEXTS,
            max_recent_messages=settings.CONTEXT_MAX_RECENT_MESSAGES,
        )

    def get(self, conversation_id: str) -> ConversationContext | None:
        context = self._contexts.get(conversation_id)

        if context and datetime.now(UTC) - context.updated_at > self.ttl:
            del self._contexts[conversation_id]
            logger.debug(f"Context expired: {conversation_id}")
            return None

        return context

    def get_or_create(self, conversation_id: str) -> ConversationContext:
        context = self.get(conversation_id)

        if not context:
            context = ConversationContext(
                conversation_id=conversation_id,
                max_recent_messages=self.max_recent_messages,
            )
            self._store(context)

        return context

    def _store(self, context: ConversationContext) -> None:
        if len(self._contexts) >= self.max_contexts:
            self._cleanup()
        self._contexts[context.conversation_id] = context

    def _cleanup(self) -> None:
        """Drop expired contexts, then the oldest 10% if still full."""
        now = datetime.now(UTC)
        expired = [cid for cid, ctx in self._contexts.items() if now - ctx.updated_at > self.ttl]
        for cid in expired:
            del self._contexts[cid]

        if len(self._contexts) >= self.max_contexts:
            oldest = sorted(self._contexts.items(), key=lambda item: item[1].updated_at)
            for cid, _ in oldest[: max(1, len(oldest) // 10)]:
                del self._contexts[cid]

    def record_turn(
        self,
        conversation_id: str,
        user_input: str,
        intent_result: IntentResult | None,
        entity_result: EntityResult | None,
        response: str | None = None,
    ) -> ConversationContext:
        """
        Apply one completed turn to the conversation's context.

        The user message and the reply are appended, the intent is added to
        the history and a matched merchant becomes the active one.
        """
        context = self.get_or_create(conversation_id)

        context.add_message("user", user_input)
        if intent_result is not None:
            context.add_intent(intent_result.intent, intent_result.confidence)
            context.push_topic(intent_result.intent.value)
        if entity_result is not None and entity_result.matched and entity_result.entity_id:
            context.set_active_entity(entity_result.entity_id, entity_result.entity_name)
        if response:
            context.add_message("assistant", response)

        return context

    def clear_active_entity(self, conversation_id: str) -> bool:
        context = self.get(conversation_id)
        if context is None:
            return False
        context.clear_active_entity()
        return True

    def build_summary(self, conversation_id: str) -> str:
        context = self.get(conversation_id)
        return context.build_summary() if context else ""

    def delete(self, conversation_id: str) -> bool:
        if conversation_id in self._contexts:
            del self._contexts[conversation_id]
            return True
        return False

    def get_stats(self) -> dict[str, Any]:
        now = datetime.now(UTC)
        active_count = sum(1 for ctx in self._contexts.values() if now - ctx.updated_at < timedelta(minutes=30))

        intent_distribution: dict[str, int] = {}
        for ctx in self._contexts.values():
            key = ctx.last_intent.value if ctx.last_intent else "none"
            intent_distribution[key] = intent_distribution.get(key, 0) + 1

        return {
            "total_contexts": len(self._contexts),
            "active_contexts": active_count,
            "intent_distribution": intent_distribution,
            "ttl_hours": self.ttl.total_seconds() / 3600,
            "max_contexts": self.max_contexts,
        }
