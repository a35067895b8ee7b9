"""
Intent Classifier

Two classification paths share this module:

- classify(): deterministic weighted-keyword scoring, adjusted by the
  conversation context, with confidence derived from the gap between the
  best and second-best candidates.
- classify_with_llm(): multi-intent classification by the LLM, falling back
  to the rule path whenever the LLM cannot produce a usable answer.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from merchant_assistant.core.result import Err, Ok
from merchant_assistant.integrations.llm.calls import call_llm, llm_available
from merchant_assistant.interfaces.llm import ILLMClient
from merchant_assistant.nlp.normalizer import Normalizer
from merchant_assistant.orchestration.context_manager import ConversationContext
from merchant_assistant.prompts.intent_prompts import INTENT_DESCRIPTIONS, build_user_prompt, get_system_prompt
from merchant_assistant.schemas.intent import ENTITY_SCOPED_INTENTS, IntentCandidate, IntentResult, UserIntent
from merchant_assistant.utils.json_extractor import extract_json_safely

logger = logging.getLogger(__name__)

PROBLEM_WORDS = ("问题", "不好", "下滑", "下降", "亏损", "差", "不行", "异常", "困难", "低")


@dataclass
class IntentPattern:
    """Weighted keywords for one intent; the summed weight is multiplied by priority."""

    intent: UserIntent
    keywords: list[tuple[str, float]]
    priority: float = 1.0

    def score(self, text: str) -> tuple[float, list[str]]:
        total = 0.0
        matched: list[str] = []
        for keyword, weight in self.keywords:
            if keyword in text:
                total += weight
                matched.append(keyword)
        return total, matched


def default_patterns() -> list[IntentPattern]:
    return [
        IntentPattern(
            UserIntent.STATUS_QUERY,
            [
                ("怎么样", 10), ("健康", 10), ("评分", 10), ("状况", 8), ("情况", 8), ("表现", 8),
                ("分数", 8), ("得分", 8), ("最近", 5), ("现在", 5), ("当前", 5),
            ],
            priority=2,
        ),
        IntentPattern(
            UserIntent.DIAGNOSIS,
            [
                ("风险", 15), ("诊断", 15), ("问题", 12), ("隐患", 12), ("预警", 12), ("危机", 12),
                ("检测", 10), ("分析", 10), ("异常", 10),
            ],
            priority=3,
        ),
        IntentPattern(
            UserIntent.RECOMMENDATION,
            [
                ("方案", 15), ("建议", 15), ("措施", 15), ("推荐", 12), ("怎么办", 12), ("帮扶", 12),
                ("如何", 10), ("改善", 10), ("提升", 10), ("解决", 10), ("策略", 10),
            ],
            priority=3,
        ),
        IntentPattern(
            UserIntent.DATA_QUERY,
            [
                ("营收", 10), ("收入", 10), ("销售", 10), ("客流", 10), ("满意度", 10), ("租金", 10),
                ("成本", 10), ("数据", 8), ("指标", 8), ("多少", 8),
            ],
            priority=1,
        ),
    ]


@dataclass
class _Scored:
    intent: UserIntent
    score: float
    keywords: list[str] = field(default_factory=list)


class IntentClassifier:
    """
    Rule-based intent classifier with context adjustments and an optional
    LLM multi-intent path.

    Example:
        ```python
        classifier = IntentClassifier()
        result = classifier.classify("海底捞最近怎么样")
        # IntentResult(intent=UserIntent.STATUS_QUERY, confidence=0.95, ...)
        ```
    """

    def __init__(
        self,
        llm: ILLMClient | None = None,
        normalizer: Normalizer | None = None,
        score_floor: float = 5.0,
        patterns: list[IntentPattern] | None = None,
    ):
        self.llm = llm
        self.normalizer = normalizer or Normalizer()
        self.score_floor = score_floor
        self.patterns = patterns if patterns is not None else default_patterns()
        self._stats = {
            "total_requests": 0,
            "rule_calls": 0,
            "llm_calls": 0,
            "llm_fallbacks": 0,
            "total_llm_time": 0.0,
        }

    # ------------------------------------------------------------------ #
    # Rule path
    # ------------------------------------------------------------------ #

    def classify(self, user_input: str | None, context: ConversationContext | None = None) -> IntentResult:
        """
        Classify one utterance by weighted keywords.

        Never raises: empty input yields UserIntent.UNKNOWN with confidence 0.
        """
        self._stats["total_requests"] += 1
        self._stats["rule_calls"] += 1

        normalized = self.normalizer.normalize(user_input)
        if not normalized:
            return IntentResult(intent=UserIntent.UNKNOWN, confidence=0.0, method="fallback")

        scored = self._score_all(normalized)
        if context is not None:
            self._apply_context(scored, normalized, context)

        ranked = sorted((s for s in scored if s.score > 0), key=lambda s: s.score, reverse=True)

        if not ranked or ranked[0].score < self.score_floor:
            return IntentResult(intent=UserIntent.GENERAL_CHAT, confidence=0.3, method="fallback")

        top = ranked[0]
        second = ranked[1].score if len(ranked) > 1 else None
        confidence = self._confidence(top.score, second)

        logger.debug(f"Intent {top.intent.value} score={top.score:.1f} second={second} confidence={confidence}")
        return IntentResult(intent=top.intent, confidence=confidence, matched_keywords=top.keywords)

    def _score_all(self, normalized: str) -> list[_Scored]:
        scored = []
        for pattern in self.patterns:
            raw, keywords = pattern.score(normalized)
            scored.append(_Scored(pattern.intent, raw * pattern.priority, keywords))
        return scored

    @staticmethod
    def _apply_context(scored: list[_Scored], normalized: str, context: ConversationContext) -> None:
        previous = context.last_intent
        recent = set(context.recent_intents(3))
        has_problem_words = any(word in normalized for word in PROBLEM_WORDS)

        for item in scored:
            if item.score <= 0:
                continue
            if previous == UserIntent.STATUS_QUERY and item.intent in (
                UserIntent.DIAGNOSIS,
                UserIntent.RECOMMENDATION,
            ):
                item.score *= 1.5
            if previous == UserIntent.DIAGNOSIS and item.intent == UserIntent.RECOMMENDATION:
                item.score *= 1.3
            if len(normalized) < 5 and context.active_entity_id and item.intent in ENTITY_SCOPED_INTENTS:
                item.score *= 1.4
            if item.intent in recent:
                item.score *= 0.9
            if has_problem_words and previous == UserIntent.STATUS_QUERY and item.intent == UserIntent.DIAGNOSIS:
                item.score *= 1.8

    @staticmethod
    def _confidence(top: float, second: float | None) -> float:
        if second is None:
            if top >= 30:
                return 0.95
            if top >= 20:
                return 0.85
            if top >= 10:
                return 0.7
            return 0.5

        gap = top - second
        ratio = top / second if second > 0 else float("inf")
        if gap >= 20 and ratio >= 2:
            return 0.95
        if gap >= 10 or ratio >= 1.5:
            return 0.85
        if gap >= 5:
            return 0.7
        return 0.5

    # ------------------------------------------------------------------ #
    # LLM path
    # ------------------------------------------------------------------ #

    async def classify_with_llm(
        self,
        user_input: str | None,
        context: ConversationContext | None = None,
        entities: Iterable[str] = (),
    ) -> list[IntentCandidate]:
        """
        Ask the LLM for every intent expressed in the utterance.

        Falls back to the rule path, wrapped as a single candidate, when the
        LLM is unavailable, fails, or returns nothing usable.
        """
        normalized = self.normalizer.normalize(user_input)

        if not normalized or not llm_available(self.llm):
            return [self._rule_candidate(user_input, context, "rule fallback")]

        messages = [
            {"role": "system", "content": get_system_prompt()},
            {
                "role": "user",
                "content": build_user_prompt(
                    normalized,
                    entity_names=entities,
                    context_summary=context.build_summary() if context else None,
                ),
            },
        ]

        self._stats["llm_calls"] += 1
        start = time.perf_counter()
        outcome = await call_llm(self.llm, messages)
        self._stats["total_llm_time"] += time.perf_counter() - start

        match outcome:
            case Ok(value=content):
                candidates = self._parse_candidates(content)
                if candidates:
                    return candidates
                logger.warning("LLM intent response had no valid candidates, using rules")
            case Err(reason=reason):
                logger.warning(f"LLM intent classification failed ({reason}), using rules")

        self._stats["llm_fallbacks"] += 1
        return [self._rule_candidate(user_input, context, "rule fallback")]

    @staticmethod
    def _parse_candidates(content: str) -> list[IntentCandidate]:
        items = extract_json_safely(content, expected_type=list, default=None)
        if not items:
            return []

        candidates: list[IntentCandidate] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            intent = UserIntent.parse(str(item.get("intent", "")))
            if intent is None:
                logger.debug(f"Dropping unknown intent from LLM: {item.get('intent')}")
                continue
            try:
                confidence = float(item.get("confidence", 0.5))
            except (TypeError, ValueError):
                confidence = 0.5
            candidates.append(
                IntentCandidate(
                    intent=intent,
                    confidence=min(max(confidence, 0.0), 1.0),
                    reason=str(item.get("reason", "")),
                )
            )
        candidates.sort(key=lambda c: c.confidence, reverse=True)
        return candidates

    def _rule_candidate(self, user_input: str | None, context: ConversationContext | None, reason: str) -> IntentCandidate:
        result = self.classify(user_input, context)
        return IntentCandidate(intent=result.intent, confidence=result.confidence, reason=reason)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def classify_batch(self, inputs: Iterable[str]) -> list[IntentResult]:
        return [self.classify(text) for text in inputs]

    @staticmethod
    def is_confident(result: IntentResult, threshold: float = 0.6) -> bool:
        return result.confidence >= threshold

    @staticmethod
    def extract_multiple_intents(candidates: Iterable[IntentCandidate], threshold: float = 0.5) -> list[UserIntent]:
        """Distinct intents at or above the threshold, best first."""
        ordered = sorted(candidates, key=lambda c: c.confidence, reverse=True)
        selected = [c.intent for c in ordered if c.confidence >= threshold]
        return list(dict.fromkeys(selected))

    def has_intent_keywords(self, user_input: str, intent: UserIntent) -> bool:
        normalized = self.normalizer.normalize(user_input)
        pattern = next((p for p in self.patterns if p.intent == intent), None)
        if pattern is None:
            return False
        return any(keyword in normalized for keyword, _ in pattern.keywords)

    def suggest_intents(self, partial_input: str) -> list[UserIntent]:
        """Intents whose keywords appear in a partial input, by raw score."""
        normalized = self.normalizer.normalize(partial_input)
        scored = [(p.score(normalized)[0], p.intent) for p in self.patterns]
        return [intent for score, intent in sorted(scored, key=lambda s: s[0], reverse=True) if score > 0]

    def add_pattern(self, pattern: IntentPattern) -> None:
        """Register a custom pattern; patterns stay ordered by priority."""
        self.patterns.append(pattern)
        self.patterns.sort(key=lambda p: p.priority, reverse=True)

    def get_supported_intents(self) -> list[UserIntent]:
        return list(dict.fromkeys(p.intent for p in self.patterns))

    @staticmethod
    def get_intent_description(intent: UserIntent) -> str:
        return INTENT_DESCRIPTIONS.get(intent, INTENT_DESCRIPTIONS[UserIntent.UNKNOWN])

    def get_stats(self) -> dict[str, Any]:
        llm_calls = self._stats["llm_calls"]
        return {
            **self._stats,
            "avg_llm_time": self._stats["total_llm_time"] / llm_calls if llm_calls else 0.0,
        }
