"""
Shared pytest fixtures for all tests.

Provides a small merchant registry, skill registries that count their
invocations, and fake LLM clients built on unittest.mock.
"""

from collections import Counter
from unittest.mock import AsyncMock, MagicMock

import pytest

from merchant_assistant.config.settings import reset_settings
from merchant_assistant.core.cache import ResponseCache
from merchant_assistant.intelligence.entity_resolver import EntityResolver
from merchant_assistant.intelligence.intent_classifier import IntentClassifier
from merchant_assistant.intelligence.query_structurer import QueryStructurer
from merchant_assistant.interfaces.llm import LLMResponse
from merchant_assistant.interfaces.registry import Entity, InMemoryEntityRegistry
from merchant_assistant.nlp.normalizer import Normalizer
from merchant_assistant.orchestration.agent_router import AgentRouter
from merchant_assistant.orchestration.context_manager import ContextManager
from merchant_assistant.orchestration.strategy_selector import StrategySelector
from merchant_assistant.skills.builtin import register_default_skills
from merchant_assistant.skills.registry import SkillRegistry

# ============================================================================
# MERCHANT DATA
# ============================================================================


def build_merchants() -> list[Entity]:
    return [
        Entity(
            id="m-001",
            name="海底捞火锅",
            category="餐饮",
            floor="5F",
            total_score=82,
            risk_level="low",
            rent_to_sales_ratio=0.12,
            last_month_revenue=1_200_000,
            metrics={"collection": 90, "operational": 85, "customer_review": 88, "efficiency": 80, "anti_risk": 78},
        ),
        Entity(
            id="m-002",
            name="小龙坎火锅",
            category="餐饮",
            floor="4F",
            total_score=42,
            risk_level="high",
            rent_to_sales_ratio=0.34,
            last_month_revenue=300_000,
            metrics={"collection": 35, "operational": 45, "customer_review": 55, "efficiency": 50, "anti_risk": 38},
        ),
        Entity(id="m-003", name="星巴克咖啡", category="餐饮", floor="1F", total_score=91, risk_level="none"),
        Entity(id="m-004", name="A茶饮", category="餐饮", floor="2F", total_score=68, risk_level="medium"),
        Entity(id="m-005", name="A茶语", category="餐饮", floor="2F", total_score=64, risk_level="medium"),
        Entity(id="m-006", name="优衣库服装", category="服饰", floor="3F", total_score=75, risk_level="low"),
    ]


# ============================================================================
# CORE FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_settings():
    """Every test starts from a fresh settings instance."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def merchants() -> list[Entity]:
    return build_merchants()


@pytest.fixture
def registry(merchants) -> InMemoryEntityRegistry:
    return InMemoryEntityRegistry(merchants)


@pytest.fixture
def normalizer() -> Normalizer:
    return Normalizer()


@pytest.fixture
def resolver(registry, normalizer) -> EntityResolver:
    return EntityResolver(registry, normalizer)


@pytest.fixture
def classifier(normalizer) -> IntentClassifier:
    return IntentClassifier(normalizer=normalizer)


@pytest.fixture
def cache() -> ResponseCache:
    return ResponseCache(max_size=100, default_ttl=600)


@pytest.fixture
def context_manager() -> ContextManager:
    return ContextManager()


# ============================================================================
# SKILLS
# ============================================================================


def _counting(func, intent, calls: Counter):
    def wrapper(skill_input):
        calls[intent] += 1
        return func(skill_input)

    return wrapper


@pytest.fixture
def skill_calls() -> Counter:
    """Number of invocations per intent of the default skills."""
    return Counter()


@pytest.fixture
def skills(registry, skill_calls) -> SkillRegistry:
    """Default skills wrapped with invocation counters."""
    skills = register_default_skills(SkillRegistry(), registry)
    for intent in skills.intents:
        skills.register(intent, _counting(skills.get(intent), intent, skill_calls))
    return skills


# ============================================================================
# LLM FAKES
# ============================================================================


def make_llm(content: str = "这是模型的回答", available: bool = True) -> MagicMock:
    """Fake ILLMClient whose chat() resolves to a fixed response."""
    llm = MagicMock()
    llm.is_available = MagicMock(return_value=available)
    llm.chat = AsyncMock(return_value=LLMResponse(content=content, model="fake-model"))
    return llm


@pytest.fixture
def llm_factory():
    """Build fake LLM clients with a chosen response or availability."""
    return make_llm


@pytest.fixture
def fake_llm() -> MagicMock:
    return make_llm()


@pytest.fixture
def unavailable_llm() -> MagicMock:
    return make_llm(available=False)


# ============================================================================
# PIPELINE
# ============================================================================


@pytest.fixture
def build_router(registry, normalizer, skills, cache, context_manager):
    """Factory building a router over the shared registry, skills and cache."""

    def _build(llm=None, **router_kwargs) -> AgentRouter:
        resolver = EntityResolver(registry, normalizer)
        return AgentRouter(
            resolver,
            IntentClassifier(llm=llm, normalizer=normalizer),
            QueryStructurer(resolver, llm=llm),
            StrategySelector(skills, cache=cache, llm=llm),
            context_manager,
            **router_kwargs,
        )

    return _build
