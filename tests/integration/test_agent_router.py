"""
Integration tests for the Agent Router.

Runs whole conversational turns through the real resolver, classifier,
structurer, selector and context manager over a small merchant registry.
"""

from unittest.mock import patch

import pytest

from merchant_assistant.orchestration.confidence import ConfidenceManager
from merchant_assistant.schemas.intent import UserIntent
from merchant_assistant.schemas.result import DataSource

# ============================================================================
# Core scenarios
# ============================================================================


class TestSingleMerchantTurns:
    """Turns about one named or inherited merchant"""

    @pytest.mark.asyncio
    async def test_status_query_by_short_name(self, build_router):
        router = build_router()

        result = await router.process("海底捞最近怎么样", "conv-1")

        assert result.success is True
        assert result.metadata.entity_id == "m-001"
        assert result.metadata.intent == UserIntent.STATUS_QUERY
        assert result.metadata.data_source == DataSource.SKILLS
        assert result.metadata.confidence == 0.85
        assert result.suggested_action.type == "navigate_health"

        context = router.get_context("conv-1")
        assert context.active_entity_id == "m-001"
        assert context.intent_history[-1]["confidence"] == 0.95

    @pytest.mark.asyncio
    async def test_follow_up_inherits_merchant(self, build_router):
        router = build_router()
        await router.process("海底捞最近怎么样", "conv-1")

        result = await router.process("他有什么风险", "conv-1")

        assert result.success is True
        assert result.metadata.entity_id == "m-001"
        assert result.metadata.intent == UserIntent.DIAGNOSIS
        assert result.metadata.confidence == 0.7
        assert not result.content.startswith("⚠️")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("follow_up", "intent"),
        [
            ("它营收多少", UserIntent.DATA_QUERY),
            ("它有哪些风险", UserIntent.DIAGNOSIS),
        ],
    )
    async def test_counting_words_in_follow_up_keep_merchant(self, build_router, follow_up, intent):
        router = build_router()
        await router.process("海底捞最近怎么样", "c1")

        result = await router.process(follow_up, "c1")

        assert result.success is True
        assert result.metadata.entity_id == "m-001"
        assert result.metadata.intent == intent
        assert "共 6 家" not in result.content
        assert router.get_context("c1").active_entity_id == "m-001"

    @pytest.mark.asyncio
    async def test_conversations_do_not_share_merchants(self, build_router):
        router = build_router()
        await router.process("海底捞最近怎么样", "conv-1")

        result = await router.process("他有什么风险", "conv-2")

        assert result.success is False
        assert result.error == "ENTITY_NOT_RESOLVED"

    @pytest.mark.asyncio
    async def test_switch_vocabulary_drops_active_merchant(self, build_router):
        router = build_router()
        await router.process("海底捞最近怎么样", "conv-1")

        await router.process("换个商户看看", "conv-1")

        assert router.get_context("conv-1").active_entity_id is None

    @pytest.mark.asyncio
    async def test_high_risk_merchant_suggests_task(self, build_router):
        result = await build_router().process("小龙坎火锅有什么风险", "conv-1")

        assert result.metadata.intent == UserIntent.DIAGNOSIS
        assert result.suggested_action.type == "create_task"
        assert result.suggested_action.params == {"riskLevel": "high"}


class TestUnresolvedMerchants:
    """Turns whose merchant cannot be determined"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["", None, "   "])
    async def test_empty_input(self, build_router, value):
        result = await build_router().process(value, "conv-1")

        assert result.success is False
        assert result.error == "ENTITY_NOT_RESOLVED"
        assert len(result.suggested_action.params["suggestions"]) == 5

    @pytest.mark.asyncio
    async def test_unknown_merchant(self, build_router):
        result = await build_router().process("金拱门最近怎么样", "conv-1")

        assert result.success is False
        assert result.error == "ENTITY_NOT_RESOLVED"
        assert result.metadata.intent == UserIntent.STATUS_QUERY
        assert len(result.suggested_action.params["suggestions"]) == 5
        assert "没有找到" in result.content

    @pytest.mark.asyncio
    async def test_ambiguous_reference_asks_which(self, build_router, skill_calls):
        result = await build_router().process("A茶的情况怎么样", "conv-1")

        assert result.success is False
        assert result.error == "NEEDS_CLARIFICATION"
        assert "- A茶饮" in result.content
        assert "- A茶语" in result.content
        assert sum(skill_calls.values()) == 0


# ============================================================================
# Confidence handling
# ============================================================================


class TestConfidence:
    @pytest.mark.asyncio
    async def test_medium_confidence_adds_warning(self, build_router):
        result = await build_router().process("巴克咖", "conv-1")

        assert result.metadata.entity_id == "m-003"
        assert result.metadata.confidence == 0.75
        assert result.content.startswith("⚠️")

    @pytest.mark.asyncio
    async def test_low_confidence_asks_confirmation(self, build_router, skill_calls):
        router = build_router(confidence_manager=ConfidenceManager(high=0.95, medium=0.9, low=0.5))

        result = await router.process("海底捞最近怎么样", "conv-1")

        assert result.success is False
        assert result.error == "NEEDS_CONFIRMATION"
        assert "您是指「海底捞火锅」吗？" in result.content
        assert sum(skill_calls.values()) == 0


# ============================================================================
# Population questions and boundaries
# ============================================================================


class TestPopulationQuestions:
    @pytest.mark.asyncio
    async def test_aggregation(self, build_router):
        result = await build_router().process("高风险的商户有多少家", "conv-1")

        assert result.success is True
        assert result.metadata.intent == UserIntent.AGGREGATION_QUERY
        assert result.metadata.entity_id is None
        assert "共 1 家" in result.content
        assert result.suggested_action.params == {"filters": {"riskLevel": ["high", "critical"]}}

    @pytest.mark.asyncio
    async def test_aggregation_ignores_active_merchant(self, build_router):
        router = build_router()
        await router.process("海底捞最近怎么样", "conv-1")

        result = await router.process("高风险的商户有多少家", "conv-1")

        assert result.metadata.entity_id is None

    @pytest.mark.asyncio
    async def test_health_overview(self, build_router):
        result = await build_router().process("全场整体健康情况怎么样", "conv-1")

        assert result.success is True
        assert result.metadata.intent == UserIntent.HEALTH_OVERVIEW
        assert "全场平均健康度 70.3" in result.content

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("text", "names"),
        [
            ("对比海底捞和星巴克", ("海底捞火锅", "星巴克咖啡")),
            ("对比海底捞火锅和小龙坎火锅", ("海底捞火锅", "小龙坎火锅")),
        ],
    )
    async def test_comparison_covers_both_merchants(self, build_router, skill_calls, text, names):
        result = await build_router().process(text, "conv-1")

        assert result.success is True
        assert result.metadata.intent == UserIntent.COMPARISON_QUERY
        assert all(name in result.content for name in names)
        assert skill_calls[UserIntent.COMPARISON_QUERY] == 1
        assert skill_calls[UserIntent.STATUS_QUERY] == 0


class TestBoundaries:
    @pytest.mark.asyncio
    async def test_modification_is_declined(self, build_router, skill_calls):
        result = await build_router().process("帮我把海底捞的评分修改为90", "conv-1")

        assert result.success is False
        assert result.error == "BOUNDARY_VIOLATION"
        assert sum(skill_calls.values()) == 0

    @pytest.mark.asyncio
    async def test_prediction_needs_human(self, build_router):
        result = await build_router().process("预测一下海底捞下个月营收趋势", "conv-1")

        assert result.success is False
        assert result.error == "NEEDS_HUMAN"


# ============================================================================
# LLM availability
# ============================================================================


class TestLLMAvailability:
    """Routing with and without a usable LLM"""

    @pytest.mark.asyncio
    async def test_recommendation_without_llm(self, build_router, unavailable_llm):
        router = build_router(llm=unavailable_llm)

        result = await router.process("海底捞有什么改善建议", "conv-1")

        assert result.success is True
        assert result.metadata.intent == UserIntent.RECOMMENDATION
        assert result.metadata.data_source == DataSource.SKILLS
        assert result.suggested_action.type == "navigate_knowledge"
        unavailable_llm.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recommendation_with_llm(self, build_router, fake_llm):
        result = await build_router(llm=fake_llm).process("海底捞有什么改善建议", "conv-1")

        assert result.metadata.data_source == DataSource.HYBRID
        assert result.content.startswith("这是模型的回答")

    @pytest.mark.asyncio
    async def test_two_intents_become_composite_query(self, build_router, llm_factory, skill_calls):
        llm = llm_factory(
            '[{"intent": "diagnosis", "confidence": 0.9, "reason": "问风险"},'
            ' {"intent": "recommendation", "confidence": 0.85, "reason": "问帮扶"}]'
        )

        result = await build_router(llm=llm).process("小龙坎火锅有什么风险，怎么帮扶", "conv-1")

        assert result.success is True
        assert result.metadata.intent == UserIntent.COMPOSITE_QUERY
        assert result.metadata.entity_id == "m-002"
        assert skill_calls[UserIntent.DIAGNOSIS] == 1
        assert skill_calls[UserIntent.RECOMMENDATION] == 1
        assert "发现 8 项风险" in result.content
        assert "评估租金减免或调整方案" in result.content

    @pytest.mark.asyncio
    async def test_unparseable_llm_intents_keep_rule_intent(self, build_router, fake_llm):
        result = await build_router(llm=fake_llm).process("海底捞有什么风险", "conv-1")

        assert result.metadata.intent == UserIntent.DIAGNOSIS
        assert result.metadata.data_source == DataSource.SKILLS
        fake_llm.chat.assert_awaited()

    @pytest.mark.asyncio
    async def test_forced_llm_without_llm_degrades(self, build_router):
        result = await build_router().process("海底捞最近怎么样", "conv-1", force_strategy="llm")

        assert result.success is True
        assert result.metadata.data_source == DataSource.SKILLS

    @pytest.mark.asyncio
    async def test_general_chat_without_merchant(self, build_router):
        result = await build_router().process("你好", "conv-1")

        assert result.success is True
        assert result.metadata.intent == UserIntent.GENERAL_CHAT
        assert result.suggested_action is None


# ============================================================================
# Failures and stats
# ============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, build_router):
        router = build_router()

        with patch.object(router.resolver, "resolve", side_effect=RuntimeError("registry offline")):
            result = await router.process("海底捞最近怎么样", "conv-1")

        assert result.success is False
        assert result.error == "INTERNAL_ERROR"
        assert result.metadata.execution_time >= 0

    @pytest.mark.asyncio
    async def test_envelope(self, build_router):
        result = await build_router().process("海底捞最近怎么样", "conv-1")

        envelope = result.to_envelope()
        assert envelope["metadata"]["dataSource"] == "skills"
        assert envelope["suggestedAction"]["entityId"] == "m-001"

    @pytest.mark.asyncio
    async def test_stats(self, build_router):
        router = build_router()
        await router.process("海底捞最近怎么样", "conv-1")
        await router.process("金拱门最近怎么样", "conv-2")

        stats = router.get_stats()

        assert stats["router"]["total_requests"] == 2
        assert stats["router"]["successful"] == 1
        assert stats["router"]["by_error"] == {"ENTITY_NOT_RESOLVED": 1}
        assert stats["contexts"]["total_contexts"] == 2
