"""
Strategy Selector

Chooses how a classified turn is answered and executes it:

- skills: deterministic analytics registered by the host, cached per
  (intent, merchant) unless the answer depends on the structured query
- llm: free-form answer from the language model
- hybrid: skills first, enriched by an LLM narrative for recommendations

Every LLM failure degrades to a skills answer or a canned reply; execute()
never raises.
"""

import inspect
import logging
import time
from typing import Any, Awaitable, Callable, TypedDict, assert_never

from merchant_assistant.core.cache import ResponseCache, make_key
from merchant_assistant.core.result import Err, Ok
from merchant_assistant.integrations.llm.calls import call_llm, llm_available
from merchant_assistant.interfaces.llm import ChunkCallback, ILLMClient
from merchant_assistant.interfaces.registry import Entity
from merchant_assistant.orchestration.context_manager import ConversationContext
from merchant_assistant.prompts.response_prompts import build_chat_messages, build_recommendation_messages
from merchant_assistant.schemas.intent import ANALYTIC_INTENTS, UserIntent
from merchant_assistant.schemas.query import StructuredQuery
from merchant_assistant.schemas.result import AgentExecutionResult, DataSource, ResultMetadata
from merchant_assistant.skills.formatters import format_skill_output
from merchant_assistant.skills.registry import SkillInput, SkillRegistry
from merchant_assistant.skills.risk_scan import RiskFactor, scan_risk_factors

logger = logging.getLogger(__name__)

GENERAL_CHAT_REPLY = (
    "我是商场运营助手，可以帮您查询商户健康度、诊断经营风险、推荐帮扶方案，"
    "也可以统计全场商户情况。请告诉我您想了解哪家商户。"
)
SKILL_UNAVAILABLE_REPLY = "数据分析暂时不可用，请稍后再试。"

CaseMatcher = Callable[[Entity], list[Any] | Awaitable[list[Any]]]

# Results depend on the structured query, not only on (intent, merchant)
QUERY_DRIVEN_INTENTS = frozenset(
    {UserIntent.COMPARISON_QUERY, UserIntent.TREND_ANALYSIS, UserIntent.COMPOSITE_QUERY}
)


class SelectorStats(TypedDict):
    total_requests: int
    by_strategy: dict[str, int]
    cache_hits: int
    degraded: int


class StrategySelector:
    """
    Selects and runs the execution strategy for a turn.

    Example:
        ```python
        selector = StrategySelector(skills, cache=ResponseCache(), llm=client)
        result = await selector.execute(
            UserIntent.STATUS_QUERY,
            entity,
            user_input="海底捞最近怎么样",
            context=context,
        )
        print(result.metadata.data_source)  # DataSource.SKILLS
        ```
    """

    def __init__(
        self,
        skills: SkillRegistry,
        cache: ResponseCache,
        llm: ILLMClient | None = None,
        risk_factor_threshold: int = 3,
        cache_ttl: float | None = 600,
        case_matcher: CaseMatcher | None = None,
        risk_scanner: Callable[[Entity], list[RiskFactor]] = scan_risk_factors,
    ):
        """
        Args:
            skills: Host analytics, keyed by intent
            cache: Shared skill-result cache
            llm: Optional LLM capability
            risk_factor_threshold: Diagnosis goes hybrid above this many risk factors
            cache_ttl: TTL of cached skill results in seconds
            case_matcher: Optional lookup of reference cases for recommendations
            risk_scanner: Fast local risk-factor scan
        """
        self.skills = skills
        self.cache = cache
        self.llm = llm
        self.risk_factor_threshold = risk_factor_threshold
        self.cache_ttl = cache_ttl
        self.case_matcher = case_matcher
        self.risk_scanner = risk_scanner

        self._stats: SelectorStats = {
            "total_requests": 0,
            "by_strategy": {source.value: 0 for source in DataSource},
            "cache_hits": 0,
            "degraded": 0,
        }

    # ------------------------------------------------------------------ #
    # Selection
    # ------------------------------------------------------------------ #

    def select(
        self,
        intent: UserIntent,
        entity: Entity | None,
        override: DataSource | None = None,
        query: StructuredQuery | None = None,
    ) -> DataSource:
        if override is not None:
            return override
        if entity is None and (intent in ANALYTIC_INTENTS or intent in QUERY_DRIVEN_INTENTS):
            return DataSource.SKILLS
        if entity is None:
            return DataSource.LLM
        return self._select_by_intent(intent, entity)

    def _select_by_intent(self, intent: UserIntent, entity: Entity) -> DataSource:
        match intent:
            case UserIntent.STATUS_QUERY | UserIntent.DATA_QUERY:
                return DataSource.SKILLS
            case UserIntent.DIAGNOSIS:
                factors = self.risk_scanner(entity)
                if len(factors) > self.risk_factor_threshold:
                    logger.info(f"{entity.name}: {len(factors)} risk factors, diagnosis goes hybrid")
                    return DataSource.HYBRID
                return DataSource.SKILLS
            case UserIntent.RECOMMENDATION:
                return DataSource.HYBRID
            case UserIntent.GENERAL_CHAT | UserIntent.UNKNOWN:
                return DataSource.LLM
            case (
                UserIntent.AGGREGATION_QUERY
                | UserIntent.RISK_STATISTICS
                | UserIntent.HEALTH_OVERVIEW
                | UserIntent.COMPARISON_QUERY
                | UserIntent.TREND_ANALYSIS
                | UserIntent.COMPOSITE_QUERY
            ):
                return DataSource.SKILLS
            case _:
                assert_never(intent)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def execute(
        self,
        intent: UserIntent,
        entity: Entity | None,
        *,
        user_input: str = "",
        context: ConversationContext | None = None,
        override: DataSource | None = None,
        query: StructuredQuery | None = None,
        suggested_actions: list[str] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> AgentExecutionResult:
        """
        Select a strategy and run it.

        Returns:
            AgentExecutionResult whose metadata carries the strategy that
            actually produced the content and the wall time in milliseconds
        """
        start = time.perf_counter()
        self._stats["total_requests"] += 1

        strategy = self.select(intent, entity, override, query)
        logger.info(f"Strategy {strategy.value} for intent={intent.value} entity={entity.name if entity else None}")

        try:
            match strategy:
                case DataSource.SKILLS:
                    result = await self._execute_skills(intent, entity, user_input, query)
                case DataSource.LLM:
                    result = await self._execute_llm(intent, entity, user_input, context, query, on_chunk)
                case DataSource.HYBRID:
                    result = await self._execute_hybrid(intent, entity, user_input, query, on_chunk)
                case _:
                    assert_never(strategy)
        except Exception as e:
            logger.exception(f"Strategy {strategy.value} failed: {e}")
            result = self._build(False, SKILL_UNAVAILABLE_REPLY, DataSource.SKILLS, intent, entity, error="EXECUTION_FAILED")

        self._stats["by_strategy"][result.metadata.data_source.value] += 1
        result.metadata.execution_time = round((time.perf_counter() - start) * 1000, 2)
        result.metadata.suggested_actions = suggested_actions
        return result

    async def _execute_skills(
        self,
        intent: UserIntent,
        entity: Entity | None,
        user_input: str,
        query: StructuredQuery | None,
    ) -> AgentExecutionResult:
        if intent == UserIntent.COMPOSITE_QUERY and not self.skills.has(intent):
            return await self._execute_composite(entity, user_input, query)

        skill_intent = intent if self.skills.has(intent) else UserIntent.STATUS_QUERY
        if not self.skills.has(skill_intent):
            logger.warning(f"No skill registered for {intent.value}")
            return self._build(False, SKILL_UNAVAILABLE_REPLY, DataSource.SKILLS, intent, entity, error="SKILL_NOT_FOUND")

        key = None
        if entity is not None and skill_intent not in QUERY_DRIVEN_INTENTS:
            key = make_key(skill_intent.value, entity.id)
        if key is not None:
            cached = await self.cache.async_get(key)
            if cached is not None:
                self._stats["cache_hits"] += 1
                logger.debug(f"Skill cache hit: {key}")
                result = self._build(True, cached, DataSource.SKILLS, intent, entity)
                result.metadata.cached = True
                return result

        try:
            data = await self.skills.run(
                skill_intent,
                SkillInput(intent=skill_intent, entity=entity, query=query, user_input=user_input),
            )
        except Exception as e:
            logger.error(f"Skill {skill_intent.value} failed: {e}")
            self._stats["degraded"] += 1
            return self._build(False, SKILL_UNAVAILABLE_REPLY, DataSource.SKILLS, intent, entity, error="SKILL_FAILED")

        content = format_skill_output(skill_intent, entity, data)
        if key is not None:
            await self.cache.async_set(key, content, ttl=self.cache_ttl)

        return self._build(True, content, DataSource.SKILLS, intent, entity)

    async def _execute_composite(
        self,
        entity: Entity | None,
        user_input: str,
        query: StructuredQuery | None,
    ) -> AgentExecutionResult:
        """Answer each sub-intent in turn and join the sections."""
        parts = [i for i in (query.intents if query else []) if i != UserIntent.COMPOSITE_QUERY]
        if not parts:
            parts = [UserIntent.STATUS_QUERY]

        sections: list[str] = []
        for part in parts:
            result = await self._execute_skills(part, entity, user_input, query)
            if result.success:
                sections.append(result.content)
            else:
                logger.warning(f"Composite part {part.value} failed: {result.error}")

        if not sections:
            return self._build(
                False, SKILL_UNAVAILABLE_REPLY, DataSource.SKILLS, UserIntent.COMPOSITE_QUERY, entity, error="SKILL_FAILED"
            )
        return self._build(True, "\n\n".join(sections), DataSource.SKILLS, UserIntent.COMPOSITE_QUERY, entity)

    async def _execute_llm(
        self,
        intent: UserIntent,
        entity: Entity | None,
        user_input: str,
        context: ConversationContext | None,
        query: StructuredQuery | None,
        on_chunk: ChunkCallback | None,
    ) -> AgentExecutionResult:
        # "它" and "这家店" reach the model as the merchant they refer to
        prompt_input = context.resolve_references(user_input) if context else user_input
        messages = build_chat_messages(
            prompt_input,
            entity_name=entity.name if entity else None,
            context_summary=context.build_summary() if context else None,
            recent_messages=list(context.recent_messages) if context else None,
        )

        match await call_llm(self.llm, messages, use_cache=False, on_chunk=on_chunk):
            case Ok(value=content):
                return self._build(True, content, DataSource.LLM, intent, entity)
            case Err(reason=reason):
                self._stats["degraded"] += 1
                logger.warning(f"LLM strategy unavailable ({reason}), degrading")

        if entity is not None:
            return await self._execute_skills(intent, entity, user_input, query)
        return self._build(True, GENERAL_CHAT_REPLY, DataSource.SKILLS, intent, entity)

    async def _execute_hybrid(
        self,
        intent: UserIntent,
        entity: Entity | None,
        user_input: str,
        query: StructuredQuery | None,
        on_chunk: ChunkCallback | None,
    ) -> AgentExecutionResult:
        baseline = await self._execute_skills(intent, entity, user_input, query)

        if intent != UserIntent.RECOMMENDATION or entity is None or not llm_available(self.llm):
            return baseline

        diagnosis = await self._optional_skill(UserIntent.DIAGNOSIS, entity, user_input)
        cases = await self._match_cases(entity)
        messages = build_recommendation_messages(user_input, entity.to_dict(), diagnosis, cases)

        match await call_llm(self.llm, messages, use_cache=False, on_chunk=on_chunk):
            case Ok(value=narrative):
                content = f"{narrative}\n\n{baseline.content}" if baseline.success else narrative
                return self._build(True, content, DataSource.HYBRID, intent, entity)
            case Err(reason=reason):
                self._stats["degraded"] += 1
                logger.warning(f"Hybrid enrichment failed ({reason}), returning skills result")
                return baseline

    async def _optional_skill(self, intent: UserIntent, entity: Entity, user_input: str) -> Any:
        if not self.skills.has(intent):
            return None
        try:
            return await self.skills.run(intent, SkillInput(intent=intent, entity=entity, user_input=user_input))
        except Exception as e:
            logger.warning(f"Auxiliary skill {intent.value} failed: {e}")
            return None

    async def _match_cases(self, entity: Entity) -> list[Any]:
        if self.case_matcher is None:
            return []
        try:
            cases = self.case_matcher(entity)
            if inspect.isawaitable(cases):
                cases = await cases
            return list(cases or [])
        except Exception as e:
            logger.warning(f"Case matching failed for {entity.name}: {e}")
            return []

    @staticmethod
    def _build(
        success: bool,
        content: str,
        data_source: DataSource,
        intent: UserIntent,
        entity: Entity | None,
        error: str | None = None,
    ) -> AgentExecutionResult:
        return AgentExecutionResult(
            success=success,
            content=content,
            metadata=ResultMetadata(
                data_source=data_source,
                intent=intent,
                entity_id=entity.id if entity else None,
                entity_name=entity.name if entity else None,
            ),
            error=error,
        )

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "cache": self.cache.get_info()}

    def reset_stats(self) -> None:
        self._stats["total_requests"] = 0
        self._stats["by_strategy"] = {source.value: 0 for source in DataSource}
        self._stats["cache_hits"] = 0
        self._stats["degraded"] = 0
