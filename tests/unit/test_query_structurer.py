"""
Unit tests for the Query Structurer.

Tests key paths:
- Rule-based quick detection (aggregation, comparison, trend, single merchant)
- LLM escalation and its fallbacks
- Repair of incomplete queries
- Parsing helpers
"""

import pytest

from merchant_assistant.core.exceptions import LLMCallFailedError
from merchant_assistant.intelligence.query_structurer import ComparisonPolicy, QueryStructurer
from merchant_assistant.orchestration.context_manager import ConversationContext
from merchant_assistant.schemas.intent import UserIntent
from merchant_assistant.schemas.query import ComparisonTarget, QueryType, TimeRange

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def structurer(resolver) -> QueryStructurer:
    return QueryStructurer(resolver)


@pytest.fixture
def active_context() -> ConversationContext:
    context = ConversationContext(conversation_id="conv-1")
    context.set_active_entity("m-001", "海底捞火锅")
    return context


# ============================================================================
# Quick detection
# ============================================================================


class TestQuickDetect:
    """Tests for the rule-based fast path"""

    def test_aggregation(self, structurer):
        query = structurer.quick_detect("高风险的餐饮商户有多少家")

        assert query.type == QueryType.AGGREGATION
        assert query.entities.names == ["all"]
        assert query.intents == [UserIntent.AGGREGATION_QUERY, UserIntent.RISK_STATISTICS]
        assert query.filters.risk_level == ["high", "critical"]
        assert query.filters.category == ["餐饮"]
        assert query.aggregations.operation == "count"
        assert query.confidence == 0.85

    def test_aggregation_group_by(self, structurer):
        query = structurer.quick_detect("按风险等级统计商户数量")
        assert query.aggregations.group_by == "risk_level"

    def test_named_merchant_is_not_aggregation(self, structurer):
        query = structurer.quick_detect("海底捞上个月营收多少")

        assert query.type == QueryType.SINGLE_ENTITY
        assert query.entities.names == ["海底捞火锅"]
        assert query.entities.time_range == TimeRange(period="last_month")

    def test_pronoun_follow_up_is_not_aggregation(self, structurer, active_context):
        query = structurer.quick_detect("它营收多少", active_context)

        assert query.type == QueryType.SINGLE_ENTITY
        assert query.entities.names == ["海底捞火锅"]
        assert query.intents == [UserIntent.DATA_QUERY]
        assert query.confidence == 0.7

    def test_population_question_ignores_active_merchant(self, structurer, active_context):
        query = structurer.quick_detect("这些商户里有多少家高风险呢", active_context)

        assert query.type == QueryType.AGGREGATION
        assert query.entities.names == ["all"]

    def test_comparison(self, structurer):
        query = structurer.quick_detect("对比海底捞和星巴克")

        assert query.type == QueryType.COMPARISON
        assert query.entities.names == ["海底捞火锅", "星巴克咖啡"]
        assert query.entities.comparison_target == ComparisonTarget.ENTITY_VS_ENTITY
        assert query.confidence == 0.5

    def test_comparison_without_escalation(self, resolver):
        structurer = QueryStructurer(resolver, comparison_policy=ComparisonPolicy(escalate=False))
        assert structurer.quick_detect("对比海底捞和星巴克").confidence == 0.85

    def test_trend_defaults_to_three_months(self, structurer):
        query = structurer.quick_detect("海底捞营收趋势")

        assert query.type == QueryType.TREND_ANALYSIS
        assert query.entities.names == ["海底捞火锅"]
        assert query.entities.time_range.period == "last_3_months"
        assert query.intents == [UserIntent.TREND_ANALYSIS, UserIntent.DATA_QUERY]

    def test_unresolved_falls_back(self, structurer):
        query = structurer.quick_detect("今天天气不错")

        assert query.type == QueryType.SINGLE_ENTITY
        assert query.confidence == 0.3


class TestComparisonPolicy:
    def test_escalating_policy_rejects_high_rule_confidence(self):
        with pytest.raises(ValueError):
            ComparisonPolicy(escalate=True, rule_confidence=0.7)

    def test_confidence(self):
        assert ComparisonPolicy().confidence == 0.5
        assert ComparisonPolicy(escalate=False, rule_confidence=0.7).confidence == 0.85


# ============================================================================
# analyze()
# ============================================================================


class TestAnalyze:
    """Tests for analyze() with and without the LLM tier"""

    @pytest.mark.asyncio
    async def test_unavailable_llm_keeps_rule_result(self, resolver, unavailable_llm):
        structurer = QueryStructurer(resolver, llm=unavailable_llm)

        query = await structurer.analyze("对比海底捞和星巴克")

        assert query.type == QueryType.COMPARISON
        assert query.confidence == 0.5
        unavailable_llm.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_comparison_escalates_to_llm(self, resolver, llm_factory):
        llm = llm_factory(
            '{"type": "comparison", "entities": {"names": ["海底捞火锅", "星巴克咖啡"],'
            ' "comparisonTarget": "entity_vs_entity"}, "intents": ["comparison_query"], "confidence": 0.92}'
        )
        structurer = QueryStructurer(resolver, llm=llm)

        query = await structurer.analyze("对比海底捞和星巴克")

        assert query.confidence == 0.92
        assert query.entities.comparison_target == ComparisonTarget.ENTITY_VS_ENTITY
        llm.chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_llm_aggregation_is_normalized(self, resolver, llm_factory):
        llm = llm_factory(
            "<think>统计高风险商户</think>\n```json\n"
            '{"type": "aggregation", "aggregations": {"operation": "median", "groupBy": "riskLevel"},'
            ' "filters": {"riskLevel": ["high"]}, "intents": ["aggregation_query"], "confidence": 0.95}'
            "\n```"
        )
        structurer = QueryStructurer(resolver, llm=llm)

        query = await structurer.analyze("高风险商户有多少家")

        assert query.type == QueryType.AGGREGATION
        assert query.aggregations.operation == "count"
        assert query.aggregations.group_by == "risk_level"
        assert query.filters.risk_level == ["high"]

    @pytest.mark.asyncio
    async def test_malformed_llm_response_uses_fallback(self, resolver, llm_factory):
        structurer = QueryStructurer(resolver, llm=llm_factory('{"type": "nonsense"}'))

        query = await structurer.analyze("对比海底捞和星巴克")

        assert query.type == QueryType.SINGLE_ENTITY
        assert query.entities.names == ["海底捞火锅"]
        assert structurer.get_stats()["fallback"] == 1

    @pytest.mark.asyncio
    async def test_failed_llm_call_uses_fallback(self, resolver, fake_llm):
        fake_llm.chat.side_effect = LLMCallFailedError("connection reset")
        structurer = QueryStructurer(resolver, llm=fake_llm)

        query = await structurer.analyze("海底捞营收趋势")

        assert query.type == QueryType.SINGLE_ENTITY
        assert query.intents == [UserIntent.DATA_QUERY]

    @pytest.mark.asyncio
    async def test_confident_rules_skip_llm(self, resolver, llm_factory):
        llm = llm_factory()
        structurer = QueryStructurer(resolver, llm=llm, escalation_threshold=0.8)

        query = await structurer.analyze("高风险商户有多少家")

        assert query.type == QueryType.AGGREGATION
        llm.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repair_fills_names_from_context(self, structurer, active_context):
        query = await structurer.analyze("客流变化趋势", active_context)

        assert query.type == QueryType.TREND_ANALYSIS
        assert query.entities.names == ["海底捞火锅"]

    @pytest.mark.asyncio
    async def test_repair_defaults(self, resolver, llm_factory):
        structurer = QueryStructurer(resolver, llm=llm_factory('{"type": "comparison", "entities": {"names": ["星巴克"]}}'))

        query = await structurer.analyze("星巴克和上个月比怎么样")

        assert query.entities.comparison_target == ComparisonTarget.PREVIOUS_PERIOD
        assert query.intents == [UserIntent.STATUS_QUERY]


# ============================================================================
# Helpers
# ============================================================================


class TestParsingHelpers:
    @pytest.mark.parametrize(
        ("text", "period"),
        [
            ("上个月营收", "last_month"),
            ("近三个月", "last_3_months"),
            ("本月客流", "current_month"),
            ("今年的情况", "this_year"),
            ("最近怎么样", "last_week"),
        ],
    )
    def test_parse_time_range(self, text, period):
        assert QueryStructurer.parse_time_range(text).period == period

    def test_parse_time_range_none(self):
        assert QueryStructurer.parse_time_range("海底捞怎么样") is None

    def test_parse_filters_floor(self):
        assert QueryStructurer.parse_filters("3楼有多少家").floor == ["3F"]
        assert QueryStructurer.parse_filters("b1层有哪些").floor == ["B1"]

    def test_parse_filters_empty(self):
        assert QueryStructurer.parse_filters("有多少家") is None

    def test_parse_comparison_target(self):
        assert QueryStructurer.parse_comparison_target("和上个月比") == ComparisonTarget.LAST_MONTH
        assert QueryStructurer.parse_comparison_target("同类商户对比") == ComparisonTarget.SAME_CATEGORY
        assert QueryStructurer.parse_comparison_target("对比一下") is None

    def test_extract_comparison_names(self, structurer):
        assert structurer.extract_comparison_names("星巴克vs海底捞") == ["星巴克咖啡", "海底捞火锅"]

    def test_extract_comparison_names_keeps_unknown(self, structurer):
        assert structurer.extract_comparison_names("比较一下金拱门和星巴克") == ["金拱门", "星巴克咖啡"]

    def test_clean_name(self):
        assert QueryStructurer._clean_name("海底捞的营收") == "海底捞"
        assert QueryStructurer._clean_name("星巴克上个月") == "星巴克"

    def test_guess_intents(self):
        assert QueryStructurer.guess_intents("风险和方案") == [UserIntent.DIAGNOSIS, UserIntent.RECOMMENDATION]
        assert QueryStructurer.guess_intents("你好") == [UserIntent.STATUS_QUERY]
        assert QueryStructurer.guess_intents("你好", default=False) == []

    def test_is_analytic(self):
        assert QueryStructurer.is_analytic("有多少家高风险商户") is True
        assert QueryStructurer.is_analytic("海底捞 VS 星巴克") is True
        assert QueryStructurer.is_analytic("海底捞怎么样") is False
