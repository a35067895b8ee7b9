"""
Unit tests for the Intent Classifier.
"""

import pytest

from merchant_assistant.core.exceptions import LLMCallFailedError
from merchant_assistant.intelligence.intent_classifier import IntentClassifier, IntentPattern
from merchant_assistant.orchestration.context_manager import ConversationContext
from merchant_assistant.schemas.intent import IntentCandidate, UserIntent

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def status_context() -> ConversationContext:
    """Conversation whose previous turn was a status query about 海底捞火锅."""
    context = ConversationContext(conversation_id="conv-1")
    context.set_active_entity("m-001", "海底捞火锅")
    context.add_intent(UserIntent.STATUS_QUERY, 0.95)
    return context


# ============================================================================
# Rule path
# ============================================================================


class TestClassify:
    """Tests for classify()"""

    def test_status_query(self, classifier):
        result = classifier.classify("海底捞最近怎么样")

        assert result.intent == UserIntent.STATUS_QUERY
        assert result.confidence >= 0.7
        assert {"怎么样", "最近"} <= set(result.matched_keywords)

    def test_diagnosis(self, classifier):
        result = classifier.classify("海底捞有什么风险")

        assert result.intent == UserIntent.DIAGNOSIS
        assert result.confidence == 0.95

    def test_recommendation(self, classifier):
        result = classifier.classify("有什么改善建议")
        assert result.intent == UserIntent.RECOMMENDATION

    def test_data_query(self, classifier):
        result = classifier.classify("上个月营收多少")
        assert result.intent == UserIntent.DATA_QUERY

    @pytest.mark.parametrize("value", ["", None, "  "])
    def test_empty_input_is_unknown(self, classifier, value):
        result = classifier.classify(value)

        assert result.intent == UserIntent.UNKNOWN
        assert result.confidence == 0.0

    def test_no_keywords_is_general_chat(self, classifier):
        result = classifier.classify("你好")

        assert result.intent == UserIntent.GENERAL_CHAT
        assert result.confidence == 0.3

    def test_score_floor(self):
        classifier = IntentClassifier(score_floor=100)
        assert classifier.classify("海底捞最近怎么样").intent == UserIntent.GENERAL_CHAT

    def test_deterministic(self, classifier, status_context):
        first = classifier.classify("健康评分风险", status_context)
        second = classifier.classify("健康评分风险", status_context)
        assert first == second

    @pytest.mark.parametrize(
        "text",
        ["海底捞最近怎么样", "风险", "你好", "方案建议措施推荐怎么办帮扶如何改善提升解决策略", "健康评分状况情况"],
    )
    def test_confidence_in_unit_interval(self, classifier, text):
        confidence = classifier.classify(text).confidence
        assert 0.0 <= confidence <= 1.0


class TestContextAdjustments:
    """Tests for the context multipliers"""

    def test_status_to_diagnosis_boost(self, classifier, status_context):
        """Scenario: a pronoun follow-up after a status query."""
        result = classifier.classify("他有什么风险", status_context)

        assert result.intent == UserIntent.DIAGNOSIS
        assert result.confidence == 0.95

    def test_boost_raises_confidence(self, classifier, status_context):
        without_context = classifier.classify("健康评分风险")
        with_context = classifier.classify("健康评分风险", status_context)

        assert without_context.intent == UserIntent.DIAGNOSIS
        assert without_context.confidence == 0.7
        assert with_context.intent == UserIntent.DIAGNOSIS
        assert with_context.confidence == 0.85

    def test_problem_words_flip_to_diagnosis(self, classifier, status_context):
        result = classifier.classify("表现怎么样有问题吗", status_context)

        assert result.intent == UserIntent.DIAGNOSIS
        assert result.confidence == 0.95


class TestConfidenceBands:
    @pytest.mark.parametrize(
        ("top", "second", "expected"),
        [
            (30, None, 0.95),
            (20, None, 0.85),
            (10, None, 0.7),
            (6, None, 0.5),
            (50, 20, 0.95),
            (30, 20, 0.85),
            (26, 20, 0.7),
            (22, 20, 0.5),
        ],
    )
    def test_bands(self, top, second, expected):
        assert IntentClassifier._confidence(top, second) == expected


# ============================================================================
# LLM path
# ============================================================================


class TestClassifyWithLLM:
    """Tests for classify_with_llm()"""

    @pytest.mark.asyncio
    async def test_parses_candidates(self, llm_factory):
        llm = llm_factory(
            '[{"intent": "diagnosis", "confidence": 0.9, "reason": "问风险"},'
            ' {"intent": "bogus", "confidence": 0.8},'
            ' {"intent": "recommendation", "confidence": 1.7}]'
        )
        classifier = IntentClassifier(llm=llm)

        candidates = await classifier.classify_with_llm("海底捞有什么风险，怎么办")

        assert [c.intent for c in candidates] == [UserIntent.RECOMMENDATION, UserIntent.DIAGNOSIS]
        assert candidates[0].confidence == 1.0
        llm.chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unavailable_llm_uses_rules(self, unavailable_llm):
        classifier = IntentClassifier(llm=unavailable_llm)

        candidates = await classifier.classify_with_llm("海底捞有什么风险")

        assert len(candidates) == 1
        assert candidates[0].intent == UserIntent.DIAGNOSIS
        unavailable_llm.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unparseable_response_uses_rules(self, llm_factory):
        classifier = IntentClassifier(llm=llm_factory("抱歉，我无法判断"))

        candidates = await classifier.classify_with_llm("海底捞最近怎么样")

        assert candidates[0].intent == UserIntent.STATUS_QUERY
        assert classifier.get_stats()["llm_fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_failed_call_uses_rules(self, fake_llm):
        fake_llm.chat.side_effect = LLMCallFailedError("timeout")
        classifier = IntentClassifier(llm=fake_llm)

        candidates = await classifier.classify_with_llm("有什么改善建议")

        assert candidates[0].intent == UserIntent.RECOMMENDATION

    @pytest.mark.asyncio
    async def test_no_llm(self):
        candidates = await IntentClassifier().classify_with_llm("你好")
        assert candidates[0].intent == UserIntent.GENERAL_CHAT


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    def test_extract_multiple_intents(self):
        candidates = [
            IntentCandidate(intent=UserIntent.DIAGNOSIS, confidence=0.6),
            IntentCandidate(intent=UserIntent.RECOMMENDATION, confidence=0.9),
            IntentCandidate(intent=UserIntent.DATA_QUERY, confidence=0.3),
            IntentCandidate(intent=UserIntent.RECOMMENDATION, confidence=0.7),
        ]
        assert IntentClassifier.extract_multiple_intents(candidates) == [
            UserIntent.RECOMMENDATION,
            UserIntent.DIAGNOSIS,
        ]

    def test_has_intent_keywords(self, classifier):
        assert classifier.has_intent_keywords("有风险吗", UserIntent.DIAGNOSIS) is True
        assert classifier.has_intent_keywords("有风险吗", UserIntent.DATA_QUERY) is False

    def test_suggest_intents(self, classifier):
        assert set(classifier.suggest_intents("风险方案")) == {UserIntent.DIAGNOSIS, UserIntent.RECOMMENDATION}

    def test_add_pattern(self, classifier):
        classifier.add_pattern(IntentPattern(UserIntent.TREND_ANALYSIS, [("趋势", 20)], priority=5))

        assert classifier.classify("海底捞的趋势").intent == UserIntent.TREND_ANALYSIS
        assert classifier.patterns[0].intent == UserIntent.TREND_ANALYSIS

    def test_supported_intents_and_descriptions(self, classifier):
        supported = classifier.get_supported_intents()

        assert UserIntent.STATUS_QUERY in supported
        assert classifier.get_intent_description(UserIntent.DIAGNOSIS)

    def test_batch(self, classifier):
        results = classifier.classify_batch(["海底捞怎么样", "你好"])
        assert [r.intent for r in results] == [UserIntent.STATUS_QUERY, UserIntent.GENERAL_CHAT]
