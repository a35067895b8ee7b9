"""
Query Structurer

Turns analytic phrasing (statistics, comparisons, trends) into a
StructuredQuery. Cheap keyword rules run first; the LLM is consulted only
when the rules are not confident enough. A repair pass fills the fields a
downstream executor cannot do without. analyze() never raises.
"""

import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from merchant_assistant.core.exceptions import QueryParseError
from merchant_assistant.core.result import Err, Ok
from merchant_assistant.integrations.llm.calls import call_llm, llm_available
from merchant_assistant.intelligence.entity_resolver import EntityResolver
from merchant_assistant.interfaces.llm import ILLMClient
from merchant_assistant.orchestration.context_manager import ConversationContext
from merchant_assistant.prompts.query_prompts import build_user_prompt, get_system_prompt
from merchant_assistant.schemas.entity import MatchSource
from merchant_assistant.schemas.intent import UserIntent
from merchant_assistant.schemas.query import (
    AggregationSpec,
    ComparisonTarget,
    QueryEntities,
    QueryFilters,
    QueryType,
    StructuredQuery,
    TimeRange,
)
from merchant_assistant.utils.json_extractor import extract_json_safely

logger = logging.getLogger(__name__)

AGGREGATION_KEYWORDS = ("多少", "几个", "几家", "数量", "统计", "总共", "有哪些")
COMPARISON_KEYWORDS = ("对比", "比较", "vs", "相比", "pk")
TREND_KEYWORDS = ("趋势", "走势", "变化")
# Nouns that put a question about the whole mall rather than one merchant
POPULATION_MARKERS = ("商户", "商家", "店铺", "几家", "多少家", "全场", "整体", "所有", "全部")

ALL_ENTITIES = "all"

_NAME = r"[一-龥A-Za-z0-9]"
_COMPARISON_PATTERNS = (
    re.compile(rf"(?:对比|比较)(?:一下)?({_NAME}+?)(?:和|跟|与)({_NAME}+)"),
    re.compile(rf"({_NAME}{{2,10}}?)(?:vs|VS|pk|PK|对比)({_NAME}{{2,10}})"),
    re.compile(rf"({_NAME}{{2,10}}?)(?:和|跟|与)({_NAME}{{2,10}}?)(?:比较|对比|相比|比)"),
)
# Words trailing a captured name that are not part of it
_NAME_TAIL_RE = re.compile(r"(的.*|一下.*|(?:最近|近期|本月|上月|上个月|这个月|今年|去年)?(?:营收|收入|客流|数据|情况|怎么样|健康度).*)$")
_TIME_WORDS_RE = re.compile(r"这个月|上个月|本月|上月|本周|上周|这周|今年|去年|同期")

_GROUP_BY_ALIASES = {
    "risklevel": "risk_level",
    "risk_level": "risk_level",
    "category": "category",
    "floor": "floor",
}


class ComparisonPolicy:
    """
    Whether comparison questions must always be reviewed by the LLM tier.

    When escalation is enabled the rule path assigns `rule_confidence` to
    comparisons, which has to stay below the LLM escalation threshold.
    """

    def __init__(self, escalate: bool = True, rule_confidence: float = 0.5, confident_value: float = 0.85):
        if escalate and rule_confidence >= 0.6:
            raise ValueError("rule_confidence must be below 0.6 when comparisons escalate")
        self.escalate = escalate
        self.rule_confidence = rule_confidence
        self.confident_value = confident_value

    @property
    def confidence(self) -> float:
        return self.rule_confidence if self.escalate else self.confident_value


class QueryStructurer:
    """
    Builds structured analytic queries.

    Example:
        ```python
        structurer = QueryStructurer(resolver, llm=client)
        query = await structurer.analyze("高风险的餐饮商户有多少家", context)
        # query.type == QueryType.AGGREGATION, query.aggregations.operation == "count"
        ```
    """

    def __init__(
        self,
        resolver: EntityResolver,
        llm: ILLMClient | None = None,
        escalation_threshold: float = 0.9,
        comparison_policy: ComparisonPolicy | None = None,
    ):
        self.resolver = resolver
        self.llm = llm
        self.escalation_threshold = escalation_threshold
        self.comparison_policy = comparison_policy or ComparisonPolicy()
        self._stats = {"total": 0, "rule_only": 0, "llm": 0, "fallback": 0}

    @classmethod
    def from_settings(cls, settings, resolver: EntityResolver, llm: ILLMClient | None = None) -> "QueryStructurer":
        return cls(
            resolver,
            llm=llm,
            escalation_threshold=settings.QUERY_LLM_ESCALATION_THRESHOLD,
            comparison_policy=ComparisonPolicy(
                escalate=settings.QUERY_ESCALATE_COMPARISONS,
                rule_confidence=settings.QUERY_COMPARISON_RULE_CONFIDENCE,
            ),
        )

    @staticmethod
    def is_analytic(user_input: str | None) -> bool:
        """Whether the utterance uses aggregation, comparison or trend vocabulary."""
        text = (user_input or "").casefold()
        return any(k in text for k in (*AGGREGATION_KEYWORDS, *COMPARISON_KEYWORDS, *TREND_KEYWORDS))

    @staticmethod
    def is_population_question(user_input: str | None) -> bool:
        text = (user_input or "").casefold()
        return any(m in text for m in POPULATION_MARKERS)

    async def analyze(self, user_input: str, context: ConversationContext | None = None) -> StructuredQuery:
        """
        Structure an analytic question.

        Returns:
            StructuredQuery; a conservative single-entity query on any failure
        """
        self._stats["total"] += 1
        try:
            query = self.quick_detect(user_input, context)

            if query.confidence <= self.escalation_threshold:
                if llm_available(self.llm):
                    query = await self._analyze_with_llm(user_input, context)
                    self._stats["llm"] += 1
                else:
                    logger.debug("LLM unavailable, keeping rule-based query")
                    self._stats["rule_only"] += 1
            else:
                self._stats["rule_only"] += 1
        except Exception as e:
            logger.warning(f"Query structuring failed, using fallback: {e}")
            self._stats["fallback"] += 1
            query = self._fallback_query(user_input, context)

        return self._repair(query, context)

    # ------------------------------------------------------------------ #
    # Fast path
    # ------------------------------------------------------------------ #

    def quick_detect(self, user_input: str, context: ConversationContext | None = None) -> StructuredQuery:
        text = (user_input or "").casefold()
        time_range = self.parse_time_range(text)

        explicit = self.resolver.resolve(user_input, context.active_entity_id if context else None)
        names_entity = explicit.matched and explicit.confidence > 0.7
        # "它营收多少" asks about the active merchant, not the whole mall
        follow_up = explicit.source == MatchSource.CONTEXT and not self.is_population_question(text)

        if any(k in text for k in AGGREGATION_KEYWORDS) and not names_entity and not follow_up:
            intents = [UserIntent.AGGREGATION_QUERY]
            if "风险" in text:
                intents.append(UserIntent.RISK_STATISTICS)
            return StructuredQuery(
                original_input=user_input,
                type=QueryType.AGGREGATION,
                entities=QueryEntities(names=[ALL_ENTITIES], time_range=time_range),
                intents=intents,
                filters=self.parse_filters(text),
                aggregations=AggregationSpec(operation="count", group_by=self.detect_group_by(text)),
                confidence=0.85,
            )

        if any(k in text for k in COMPARISON_KEYWORDS):
            names = self.extract_comparison_names(user_input)
            if not names and names_entity and explicit.entity_name:
                names = [explicit.entity_name]
            target = ComparisonTarget.ENTITY_VS_ENTITY if len(names) >= 2 else self.parse_comparison_target(text)
            confidence = self.comparison_policy.confidence
            logger.debug(f"Comparison detected (escalate={self.comparison_policy.escalate}, confidence={confidence})")
            return StructuredQuery(
                original_input=user_input,
                type=QueryType.COMPARISON,
                entities=QueryEntities(names=names, time_range=time_range, comparison_target=target),
                intents=[UserIntent.COMPARISON_QUERY, *self.guess_intents(text, default=False)],
                confidence=confidence,
            )

        if any(k in text for k in TREND_KEYWORDS):
            names = [explicit.entity_name] if names_entity and explicit.entity_name else []
            return StructuredQuery(
                original_input=user_input,
                type=QueryType.TREND_ANALYSIS,
                entities=QueryEntities(names=names, time_range=time_range or TimeRange(period="last_3_months")),
                intents=[UserIntent.TREND_ANALYSIS, *self.guess_intents(text, default=False)],
                confidence=0.8,
            )

        if explicit.matched and explicit.entity_name and (names_entity or follow_up):
            return StructuredQuery(
                original_input=user_input,
                type=QueryType.SINGLE_ENTITY,
                entities=QueryEntities(names=[explicit.entity_name], time_range=time_range),
                intents=self.guess_intents(text),
                confidence=explicit.confidence,
            )

        fallback = self._fallback_query(user_input, context)
        return fallback.model_copy(update={"confidence": 0.3})

    # ------------------------------------------------------------------ #
    # LLM tier
    # ------------------------------------------------------------------ #

    async def _analyze_with_llm(self, user_input: str, context: ConversationContext | None) -> StructuredQuery:
        messages = [
            {"role": "system", "content": get_system_prompt()},
            {
                "role": "user",
                "content": build_user_prompt(user_input, context.active_entity_name if context else None),
            },
        ]

        match await call_llm(self.llm, messages):
            case Ok(value=content):
                return self._parse_llm_query(content, user_input)
            case Err(reason=reason):
                logger.warning(f"LLM query analysis failed ({reason}), using fallback")
                self._stats["fallback"] += 1
                return self._fallback_query(user_input, context)

    def _parse_llm_query(self, content: str, user_input: str) -> StructuredQuery:
        """
        Validate the LLM's JSON object into a StructuredQuery.

        Raises:
            QueryParseError: No JSON object, unknown type, or invalid fields
        """
        payload = extract_json_safely(content, expected_type=dict, default=None)
        if not payload:
            raise QueryParseError("LLM response contains no JSON object", content)

        try:
            query_type = QueryType(str(payload.get("type", "")).strip())
        except ValueError as e:
            raise QueryParseError(f"Unknown query type: {payload.get('type')!r}", content) from e

        raw_entities = payload.get("entities") or {}
        names = raw_entities.get("names") or raw_entities.get("merchants") or []
        names = [self._clean_name(str(n)) for n in names if str(n).strip()]

        target_raw = raw_entities.get("comparisonTarget") or raw_entities.get("comparison_target")
        target = _parse_enum(ComparisonTarget, target_raw)
        if target_raw == "merchant_vs_merchant":
            target = ComparisonTarget.ENTITY_VS_ENTITY

        time_raw = raw_entities.get("timeRange") or raw_entities.get("time_range")
        time_range = TimeRange(period=str(time_raw["period"])) if isinstance(time_raw, dict) and time_raw.get("period") else None

        intents = [i for i in (UserIntent.parse(str(v)) for v in payload.get("intents") or []) if i is not None]

        aggregations = None
        raw_agg = payload.get("aggregations")
        if query_type == QueryType.AGGREGATION or raw_agg:
            raw_agg = raw_agg if isinstance(raw_agg, dict) else {}
            operation = raw_agg.get("operation")
            if operation not in ("count", "sum", "avg", "max", "min"):
                operation = "count"
            group_by = raw_agg.get("groupBy") or raw_agg.get("group_by")
            aggregations = AggregationSpec(
                operation=operation,
                group_by=_GROUP_BY_ALIASES.get(str(group_by).replace(" ", "").lower()) if group_by else None,
            )

        filters = None
        if isinstance(payload.get("filters"), dict):
            try:
                filters = QueryFilters.model_validate(payload["filters"])
            except PydanticValidationError:
                logger.debug(f"Ignoring invalid filters from LLM: {payload['filters']}")
            if filters is not None and filters.is_empty():
                filters = None

        try:
            confidence = min(max(float(payload.get("confidence", 0.8)), 0.0), 1.0)
            return StructuredQuery(
                original_input=user_input,
                type=query_type,
                entities=QueryEntities(names=names, time_range=time_range, comparison_target=target),
                intents=intents,
                filters=filters,
                aggregations=aggregations,
                confidence=confidence,
            )
        except (PydanticValidationError, TypeError, ValueError) as e:
            raise QueryParseError(f"Invalid structured query: {e}", content) from e

    # ------------------------------------------------------------------ #
    # Fallback and repair
    # ------------------------------------------------------------------ #

    def _fallback_query(self, user_input: str, context: ConversationContext | None) -> StructuredQuery:
        text = (user_input or "").casefold()
        names: list[str] = []
        confidence = 0.5
        try:
            resolved = self.resolver.resolve(user_input, context.active_entity_id if context else None)
            if resolved.matched and resolved.entity_name:
                names = [resolved.entity_name]
                confidence = resolved.confidence
        except Exception as e:
            logger.error(f"Entity resolution failed in fallback query: {e}")

        if not names and context and context.active_entity_name:
            names = [context.active_entity_name]

        return StructuredQuery(
            original_input=user_input or "",
            type=QueryType.SINGLE_ENTITY,
            entities=QueryEntities(names=names, time_range=self.parse_time_range(text)),
            intents=self.guess_intents(text),
            confidence=confidence,
        )

    @staticmethod
    def _repair(query: StructuredQuery, context: ConversationContext | None) -> StructuredQuery:
        entities = query.entities
        updates: dict[str, Any] = {}

        if not entities.names and context and context.active_entity_name:
            entities = entities.model_copy(update={"names": [context.active_entity_name]})
        if query.type == QueryType.COMPARISON and entities.comparison_target is None:
            entities = entities.model_copy(update={"comparison_target": ComparisonTarget.PREVIOUS_PERIOD})
        if entities is not query.entities:
            updates["entities"] = entities

        if query.type == QueryType.AGGREGATION and (query.aggregations is None or query.aggregations.operation is None):
            base = query.aggregations or AggregationSpec()
            updates["aggregations"] = base.model_copy(update={"operation": "count"})

        if not query.intents:
            updates["intents"] = [UserIntent.STATUS_QUERY]

        return query.model_copy(update=updates) if updates else query

    # ------------------------------------------------------------------ #
    # Parsing helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def parse_time_range(text: str) -> TimeRange | None:
        if "今天" in text or "今日" in text:
            return TimeRange(period="current_day")
        if "本周" in text or "这周" in text:
            return TimeRange(period="current_week")
        if "本月" in text or "这个月" in text:
            return TimeRange(period="current_month")
        if "上月" in text or "上个月" in text:
            return TimeRange(period="last_month")
        if re.search(r"(?:近|最近)(?:三|3)个?月", text):
            return TimeRange(period="last_3_months")
        if "今年" in text:
            return TimeRange(period="this_year")
        if "去年" in text or "上年" in text:
            return TimeRange(period="last_year")
        if "最近" in text or "近期" in text:
            return TimeRange(period="last_week")
        return None

    @staticmethod
    def parse_filters(text: str) -> QueryFilters | None:
        risk_levels: list[str] = []
        if "高风险" in text or "风险高" in text:
            risk_levels += ["high", "critical"]
        if "中风险" in text:
            risk_levels.append("medium")
        if "低风险" in text:
            risk_levels.append("low")

        category = None
        if "餐饮" in text or "火锅" in text:
            category = ["餐饮"]
        elif "服饰" in text or "服装" in text:
            category = ["服饰"]

        floor = re.findall(r"([Bb]?\d+)(?:楼|层)", text)

        filters = QueryFilters(
            risk_level=risk_levels or None,
            category=category,
            floor=[f"{f.upper()}F" if not f.upper().startswith("B") else f.upper() for f in floor] or None,
        )
        return None if filters.is_empty() else filters

    @staticmethod
    def detect_group_by(text: str) -> str | None:
        if "按风险" in text or "分风险" in text:
            return "risk_level"
        if "按业态" in text or "分业态" in text:
            return "category"
        if "按楼层" in text or "分楼层" in text:
            return "floor"
        return None

    @staticmethod
    def parse_comparison_target(text: str) -> ComparisonTarget | None:
        if "上月" in text or "上个月" in text:
            return ComparisonTarget.LAST_MONTH
        if "上周" in text or "上星期" in text:
            return ComparisonTarget.LAST_WEEK
        if "同类" in text or "同业态" in text:
            return ComparisonTarget.SAME_CATEGORY
        if "同层" in text or "同楼层" in text:
            return ComparisonTarget.SAME_FLOOR
        return None

    def extract_comparison_names(self, user_input: str) -> list[str]:
        """Bare merchant names on both sides of a comparison, canonicalized when resolvable."""
        for pattern in _COMPARISON_PATTERNS:
            match = pattern.search(user_input or "")
            if not match:
                continue
            names = [self._clean_name(group) for group in match.groups()]
            names = [n for n in names if len(n) >= 2]
            if len(names) == 2:
                return [self._canonical(n) for n in names]
        return []

    def _canonical(self, name: str) -> str:
        resolved = self.resolver.resolve(name)
        if resolved.matched and resolved.confidence >= 0.75 and resolved.entity_name:
            return resolved.entity_name
        return name

    @staticmethod
    def _clean_name(name: str) -> str:
        cleaned = name.strip()
        for prefix in ("对比", "比较", "一下"):
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix):]
        cleaned = _NAME_TAIL_RE.sub("", cleaned)
        return _TIME_WORDS_RE.sub("", cleaned).strip()

    @staticmethod
    def guess_intents(text: str, default: bool = True) -> list[UserIntent]:
        intents: list[UserIntent] = []
        if any(k in text for k in ("健康", "评分", "怎么样")):
            intents.append(UserIntent.STATUS_QUERY)
        if any(k in text for k in ("风险", "问题", "诊断")):
            intents.append(UserIntent.DIAGNOSIS)
        if any(k in text for k in ("帮扶", "方案", "措施", "建议")):
            intents.append(UserIntent.RECOMMENDATION)
        if any(k in text for k in ("营收", "租金", "数据", "客流")):
            intents.append(UserIntent.DATA_QUERY)
        if not intents and default:
            return [UserIntent.STATUS_QUERY]
        return intents

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)


def _parse_enum(enum_cls, value):
    if value is None:
        return None
    try:
        return enum_cls(str(value).strip())
    except ValueError:
        return None
