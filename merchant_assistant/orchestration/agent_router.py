"""
Agent Router

Entry point of the routing pipeline. One call handles one conversational
turn:

    boundary check -> context switch -> entity resolution -> intent
    classification (rules, then LLM multi-intent when an LLM is available) ->
    query structuring (analytic phrasing only) ->
    strategy execution -> confidence annotation -> suggested action ->
    context update

process() always returns an AgentExecutionResult; failures are reported
through `success=False` and a machine-readable `error` code.
"""

import logging
import time
from typing import Any

from merchant_assistant.core.exceptions import EntityNotResolvedError, ValidationError
from merchant_assistant.core.logger import get_logger
from merchant_assistant.integrations.llm.calls import llm_available
from merchant_assistant.intelligence.entity_resolver import EntityResolver
from merchant_assistant.intelligence.intent_classifier import IntentClassifier
from merchant_assistant.intelligence.query_structurer import QueryStructurer
from merchant_assistant.interfaces.llm import ChunkCallback
from merchant_assistant.interfaces.registry import Entity
from merchant_assistant.orchestration.boundary_checker import BoundaryChecker
from merchant_assistant.orchestration.confidence import ConfidenceManager
from merchant_assistant.orchestration.context_manager import ContextManager, ConversationContext
from merchant_assistant.orchestration.strategy_selector import StrategySelector
from merchant_assistant.schemas.entity import EntityResult, MatchSource
from merchant_assistant.schemas.intent import ENTITY_SCOPED_INTENTS, IntentResult, UserIntent
from merchant_assistant.schemas.query import QueryEntities, QueryType, StructuredQuery
from merchant_assistant.schemas.result import AgentExecutionResult, DataSource, ResultMetadata, SuggestedAction

logger = logging.getLogger(__name__)

POPULATION_KEYWORDS = ("全场", "整体", "所有商户", "全部商户", "商场整体")
MAX_SUGGESTIONS = 5

_QUERY_TYPE_INTENTS = {
    QueryType.COMPARISON: UserIntent.COMPARISON_QUERY,
    QueryType.TREND_ANALYSIS: UserIntent.TREND_ANALYSIS,
}


class AgentRouter:
    """
    Routes conversational turns through the understanding pipeline.

    Example:
        ```python
        router = AgentRouter(resolver, classifier, structurer, selector, ContextManager())
        result = await router.process("海底捞最近怎么样", conversation_id="conv-1")
        print(result.to_envelope())
        ```
    """

    def __init__(
        self,
        resolver: EntityResolver,
        classifier: IntentClassifier,
        structurer: QueryStructurer,
        selector: StrategySelector,
        context_manager: ContextManager,
        boundary_checker: BoundaryChecker | None = None,
        confidence_manager: ConfidenceManager | None = None,
    ):
        self.resolver = resolver
        self.classifier = classifier
        self.structurer = structurer
        self.selector = selector
        self.context_manager = context_manager
        self.boundary_checker = boundary_checker or BoundaryChecker()
        self.confidence_manager = confidence_manager or ConfidenceManager()

        self._stats: dict[str, Any] = {
            "total_requests": 0,
            "successful": 0,
            "by_error": {},
        }

    async def process(
        self,
        user_input: str | None,
        conversation_id: str,
        *,
        force_strategy: DataSource | str | None = None,
        suggested_actions: list[str] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> AgentExecutionResult:
        """
        Handle one user turn.

        Args:
            user_input: Raw utterance
            conversation_id: Conversation the turn belongs to
            force_strategy: Run this strategy regardless of the selection rules
            suggested_actions: Follow-up labels passed through to the result
            on_chunk: Receives streamed LLM text, when a strategy streams

        Returns:
            AgentExecutionResult; never raises
        """
        start = time.perf_counter()
        self._stats["total_requests"] += 1
        log = get_logger(__name__, conversation_id=conversation_id)

        try:
            result = await self._process(
                user_input or "",
                conversation_id,
                _coerce_strategy(force_strategy),
                suggested_actions,
                on_chunk,
            )
        except ValidationError as e:
            log.info(f"Rejected turn: {e.message}")
            result = self._not_found_result(user_input or "", [], UserIntent.UNKNOWN)
        except EntityNotResolvedError as e:
            log.info(f"No merchant resolved for: {e.user_input!r}")
            result = self._not_found_result(e.user_input, e.suggestions, UserIntent.parse(e.intent or "") or UserIntent.UNKNOWN)
        except Exception as e:
            log.exception(f"Routing failed: {e}")
            result = self._error_result(e)

        result.metadata.execution_time = round((time.perf_counter() - start) * 1000, 2)
        log.info(
            "Turn routed",
            intent=result.metadata.intent.value if result.metadata.intent else None,
            entity_id=result.metadata.entity_id,
            data_source=result.metadata.data_source.value,
            error=result.error,
            execution_time=result.metadata.execution_time,
        )
        if result.success:
            self._stats["successful"] += 1
        elif result.error:
            self._stats["by_error"][result.error] = self._stats["by_error"].get(result.error, 0) + 1
        return result

    async def _process(
        self,
        user_input: str,
        conversation_id: str,
        force_strategy: DataSource | None,
        suggested_actions: list[str] | None,
        on_chunk: ChunkCallback | None,
    ) -> AgentExecutionResult:
        if not user_input.strip():
            raise ValidationError("Empty input", field="user_input")

        context = self.context_manager.get_or_create(conversation_id)

        boundary = self.boundary_checker.check(user_input)
        if not boundary.allowed:
            logger.info(f"Boundary violation ({boundary.category}) in {conversation_id}")
            return self._simple_result(
                False, f"😅 {boundary.reason}\n\n💡 建议：{boundary.suggested_action}", UserIntent.GENERAL_CHAT,
                error="BOUNDARY_VIOLATION",
            )

        switch = self.resolver.detect_context_switch(user_input, context.active_entity_name)
        if switch.is_switch and switch.new_entity_id is None:
            # Switch vocabulary without a named merchant: stop inheriting the old one
            context.clear_active_entity()

        entity_result = self.resolver.resolve(user_input, context.active_entity_id)
        intent_result = self.classifier.classify(user_input, context)
        composite: list[UserIntent] = []
        if llm_available(self.classifier.llm):
            intent_result, composite = await self._classify_with_llm(user_input, context, intent_result, entity_result)

        query: StructuredQuery | None = None
        if self.structurer.is_analytic(user_input):
            query = await self.structurer.analyze(user_input, context)
            intent_result, entity_result = self._apply_query(user_input, query, intent_result, entity_result)

            uncertainty = self.boundary_checker.check_uncertainty(user_input, query.confidence)
            if uncertainty.needs_human:
                return self._simple_result(
                    False,
                    f"⚠️ {uncertainty.reason}\n\n如有疑问，请联系运营团队获取专业支持。",
                    UserIntent.UNKNOWN,
                    error="NEEDS_HUMAN",
                )

        intent_result = self._population_intent(user_input, intent_result, entity_result)
        intent = intent_result.intent

        needs_entity = intent in ENTITY_SCOPED_INTENTS
        if intent == UserIntent.COMPOSITE_QUERY:
            query = self._composite_query(user_input, composite, entity_result, query)
            needs_entity = not ENTITY_SCOPED_INTENTS.isdisjoint(composite)

        if needs_entity and not entity_result.matched:
            clarification = self._clarification_result(user_input, intent)
            if clarification is not None:
                return clarification
            self.context_manager.record_turn(conversation_id, user_input, intent_result, None)
            raise EntityNotResolvedError(user_input, self._suggest_names(user_input), intent=intent.value)

        decision = None
        if entity_result.matched and entity_result.source != MatchSource.CONTEXT:
            # Inherited merchants are confirmed by the conversation itself
            decision = self.confidence_manager.decide(entity_result.confidence)
        if decision is not None and not decision.execute:
            prompt = self.confidence_manager.message(max(entity_result.confidence, self.confidence_manager.low))
            return self._simple_result(
                False,
                f"{prompt}您是指「{entity_result.entity_name}」吗？",
                intent,
                error="NEEDS_CONFIRMATION",
                entity_result=entity_result,
            )

        entity = self._entity_for(entity_result)
        result = await self.selector.execute(
            intent,
            entity,
            user_input=user_input,
            context=context,
            override=force_strategy,
            query=query,
            suggested_actions=suggested_actions,
            on_chunk=on_chunk,
        )

        if decision is not None and decision.show_warning:
            result.content = f"{self.confidence_manager.message(entity_result.confidence)}\n\n{result.content}"

        result.metadata.confidence = entity_result.confidence if entity is not None else intent_result.confidence
        result.suggested_action = self._suggest_action(intent, entity, query)

        self.context_manager.record_turn(conversation_id, user_input, intent_result, entity_result, result.content)
        return result

    # ------------------------------------------------------------------ #
    # Pipeline helpers
    # ------------------------------------------------------------------ #

    async def _classify_with_llm(
        self,
        user_input: str,
        context: ConversationContext,
        rule_result: IntentResult,
        entity_result: EntityResult,
    ) -> tuple[IntentResult, list[UserIntent]]:
        """
        Ask the LLM for every intent in the utterance.

        Returns:
            (intent result, sub-intents); the sub-intents are non-empty only
            when two or more intents qualify and the turn becomes a composite
            query. Rule results are kept when the LLM agrees or fails.
        """
        names = [entity_result.entity_name] if entity_result.entity_name else []
        candidates = await self.classifier.classify_with_llm(user_input, context, entities=names)
        intents = [
            i for i in self.classifier.extract_multiple_intents(candidates) if i != UserIntent.COMPOSITE_QUERY
        ]
        if not intents:
            return rule_result, []

        confidence = max(c.confidence for c in candidates if c.intent in intents)
        if len(intents) >= 2:
            logger.info(f"Composite query: {', '.join(i.value for i in intents)}")
            return IntentResult(intent=UserIntent.COMPOSITE_QUERY, confidence=confidence, method="llm"), intents
        if intents[0] != rule_result.intent:
            return IntentResult(intent=intents[0], confidence=confidence, method="llm"), []
        return rule_result, []

    @staticmethod
    def _composite_query(
        user_input: str,
        intents: list[UserIntent],
        entity_result: EntityResult,
        query: StructuredQuery | None,
    ) -> StructuredQuery:
        """Carry the sub-intents of a composite turn to the executor."""
        if query is not None:
            return query.model_copy(update={"intents": intents})
        return StructuredQuery(
            original_input=user_input,
            type=QueryType.SINGLE_ENTITY,
            entities=QueryEntities(names=[entity_result.entity_name] if entity_result.entity_name else []),
            intents=intents,
        )

    def _apply_query(
        self,
        user_input: str,
        query: StructuredQuery,
        intent_result: IntentResult,
        entity_result: EntityResult,
    ) -> tuple[IntentResult, EntityResult]:
        """Let the structured query override the rule intent for analytic phrasing."""
        if query.type == QueryType.AGGREGATION:
            if entity_result.source == MatchSource.CONTEXT and not self.structurer.is_population_question(user_input):
                # A follow-up about the active merchant keeps it
                return intent_result, entity_result
            primary = query.intents[0] if query.intents else UserIntent.AGGREGATION_QUERY
            # Population questions never target the conversation's merchant
            return (
                IntentResult(intent=primary, confidence=query.confidence, method="structured"),
                EntityResult.unmatched(),
            )
        if query.type in _QUERY_TYPE_INTENTS:
            return (
                IntentResult(
                    intent=_QUERY_TYPE_INTENTS[query.type],
                    confidence=query.confidence,
                    matched_keywords=intent_result.matched_keywords,
                    method="structured",
                ),
                entity_result,
            )
        return intent_result, entity_result

    @staticmethod
    def _population_intent(user_input: str, intent_result: IntentResult, entity_result: EntityResult) -> IntentResult:
        """Status or risk questions about the whole mall become overview intents."""
        if entity_result.matched or not any(k in user_input for k in POPULATION_KEYWORDS):
            return intent_result
        mapping = {
            UserIntent.STATUS_QUERY: UserIntent.HEALTH_OVERVIEW,
            UserIntent.DIAGNOSIS: UserIntent.RISK_STATISTICS,
        }
        if intent_result.intent in mapping:
            return intent_result.model_copy(update={"intent": mapping[intent_result.intent]})
        return intent_result

    def _entity_for(self, entity_result: EntityResult) -> Entity | None:
        if not entity_result.matched or not entity_result.entity_id:
            return None
        return self.resolver.registry.get_by_id(entity_result.entity_id)

    def _clarification_result(self, user_input: str, intent: UserIntent) -> AgentExecutionResult | None:
        """Ask which merchant was meant when several are equally plausible."""
        candidates = self.resolver.recognize(user_input)
        if len(candidates) < 2:
            return None
        top = candidates[0].confidence
        close = [c for c in candidates if top - c.confidence < self.resolver.config.ambiguity_gap]
        if len(close) < 2:
            return None
        options = "\n".join(f"- {c.entity_name}" for c in close[:MAX_SUGGESTIONS])
        return self._simple_result(False, f"请问您指的是哪一家商户？\n{options}", intent, error="NEEDS_CLARIFICATION")

    def _suggest_names(self, user_input: str) -> list[str]:
        names: list[str] = []
        for token in self.resolver.normalizer.tokenize(user_input):
            for entity in self.resolver.suggest(token, limit=3):
                if entity.name not in names:
                    names.append(entity.name)
        return names[:MAX_SUGGESTIONS]

    @staticmethod
    def _suggest_action(intent: UserIntent, entity: Entity | None, query: StructuredQuery | None) -> SuggestedAction | None:
        if entity is not None:
            if entity.risk_level in ("high", "critical"):
                return SuggestedAction(
                    type="create_task",
                    label=f"为 {entity.name} 创建帮扶任务",
                    entity_id=entity.id,
                    params={"riskLevel": entity.risk_level},
                )
            if intent == UserIntent.RECOMMENDATION:
                return SuggestedAction(
                    type="navigate_knowledge",
                    label="查看相关帮扶案例",
                    entity_id=entity.id,
                )
            return SuggestedAction(type="navigate_health", label=f"查看 {entity.name} 详细信息", entity_id=entity.id)

        if query is not None and query.type == QueryType.AGGREGATION:
            filters = query.filters.model_dump(by_alias=True, exclude_none=True) if query.filters else {}
            return SuggestedAction(type="navigate_health", label="查看健康度监控（完整列表）", params={"filters": filters})

        return None

    # ------------------------------------------------------------------ #
    # Result builders
    # ------------------------------------------------------------------ #

    def _not_found_result(self, user_input: str, suggestions: list[str], intent: UserIntent) -> AgentExecutionResult:
        if not suggestions:
            suggestions = [e.name for e in self.resolver.registry.get_all()[:MAX_SUGGESTIONS]]
        hint = ""
        if suggestions:
            hint = "\n\n您是否在找：\n" + "\n".join(f"- {name}" for name in suggestions)
        content = (
            f"😅 抱歉，我没有找到您提到的商户。{hint}\n\n"
            "💡 提示：\n- 请使用商户全名或简称\n- 也可以在健康度监控页面选择商户后提问"
        )
        result = self._simple_result(False, content, intent, error="ENTITY_NOT_RESOLVED")
        result.suggested_action = SuggestedAction(
            type="navigate_health", label="浏览商户列表", params={"suggestions": suggestions}
        )
        return result

    @staticmethod
    def _error_result(error: Exception) -> AgentExecutionResult:
        return AgentExecutionResult(
            success=False,
            content="抱歉，处理您的请求时遇到错误。请稍后重试，或重新表述您的问题。",
            metadata=ResultMetadata(data_source=DataSource.SKILLS, intent=UserIntent.UNKNOWN),
            error="INTERNAL_ERROR",
        )

    @staticmethod
    def _simple_result(
        success: bool,
        content: str,
        intent: UserIntent,
        error: str | None = None,
        entity_result: EntityResult | None = None,
    ) -> AgentExecutionResult:
        return AgentExecutionResult(
            success=success,
            content=content,
            metadata=ResultMetadata(
                data_source=DataSource.SKILLS,
                intent=intent,
                entity_id=entity_result.entity_id if entity_result else None,
                entity_name=entity_result.entity_name if entity_result else None,
                confidence=entity_result.confidence if entity_result else None,
            ),
            error=error,
        )

    def get_context(self, conversation_id: str) -> ConversationContext | None:
        return self.context_manager.get(conversation_id)

    def get_stats(self) -> dict[str, Any]:
        return {
            "router": dict(self._stats),
            "selector": self.selector.get_stats(),
            "classifier": self.classifier.get_stats(),
            "structurer": self.structurer.get_stats(),
            "contexts": self.context_manager.get_stats(),
        }


def _coerce_strategy(value: DataSource | str | None) -> DataSource | None:
    if value is None or isinstance(value, DataSource):
        return value
    return DataSource(value)
