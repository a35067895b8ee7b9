"""
Dependency Container.

Wires the routing pipeline from settings plus the host-provided pieces
(merchant registry, skills, optional case matcher). Shared resources such
as the LLM client and the skill-result cache are created once per
container and passed by reference to every component that needs them.
"""

from __future__ import annotations

import logging

from merchant_assistant.config.settings import Settings, get_settings
from merchant_assistant.core.cache import ResponseCache
from merchant_assistant.core.logger import configure_from_settings
from merchant_assistant.integrations.llm.langchain_client import create_llm_client
from merchant_assistant.intelligence.entity_resolver import EntityResolver, ResolverConfig
from merchant_assistant.intelligence.intent_classifier import IntentClassifier
from merchant_assistant.intelligence.query_structurer import QueryStructurer
from merchant_assistant.interfaces.llm import ILLMClient
from merchant_assistant.interfaces.registry import IEntityRegistry
from merchant_assistant.nlp.normalizer import Normalizer
from merchant_assistant.orchestration.agent_router import AgentRouter
from merchant_assistant.orchestration.context_manager import ContextManager
from merchant_assistant.orchestration.strategy_selector import CaseMatcher, StrategySelector
from merchant_assistant.skills.builtin import register_default_skills
from merchant_assistant.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)

_UNSET = object()


class RouterContainer:
    """
    Dependency container for one routing engine.

    Singletons: normalizer, LLM client, cache, context manager, router.
    """

    def __init__(
        self,
        registry: IEntityRegistry,
        skills: SkillRegistry | None = None,
        settings: Settings | None = None,
        llm: ILLMClient | None | object = _UNSET,
        case_matcher: CaseMatcher | None = None,
    ):
        """
        Args:
            registry: Read-only merchant registry
            skills: Host skills; defaults fill every intent left unregistered
            settings: Overrides the process settings
            llm: LLM client to use; None disables the LLM, omitted builds one from settings
            case_matcher: Optional reference-case lookup for recommendations
        """
        self.settings = settings or get_settings()
        if self.settings.LOG_CONFIGURE:
            configure_from_settings(self.settings)
        self.registry = registry
        self.skills = register_default_skills(skills or SkillRegistry(), registry)
        self.case_matcher = case_matcher

        self._llm = llm
        self._normalizer: Normalizer | None = None
        self._cache: ResponseCache | None = None
        self._context_manager: ContextManager | None = None
        self._router: AgentRouter | None = None

        logger.info(f"RouterContainer initialized with {len(self.registry.get_all())} merchants")

    # ============================================================
    # SINGLETONS
    # ============================================================

    def get_llm(self) -> ILLMClient | None:
        if self._llm is _UNSET:
            self._llm = create_llm_client(self.settings)
        return self._llm  # type: ignore[return-value]

    def get_normalizer(self) -> Normalizer:
        if self._normalizer is None:
            self._normalizer = Normalizer()
        return self._normalizer

    def get_cache(self) -> ResponseCache:
        if self._cache is None:
            self._cache = ResponseCache(
                max_size=self.settings.CACHE_MAX_SIZE,
                default_ttl=self.settings.SKILLS_CACHE_TTL_SECONDS,
            )
        return self._cache

    def get_context_manager(self) -> ContextManager:
        if self._context_manager is None:
            self._context_manager = ContextManager.from_settings(self.settings)
        return self._context_manager

    # ============================================================
    # FACTORIES
    # ============================================================

    def create_entity_resolver(self) -> EntityResolver:
        return EntityResolver(
            self.registry,
            normalizer=self.get_normalizer(),
            config=ResolverConfig.from_settings(self.settings),
        )

    def create_intent_classifier(self) -> IntentClassifier:
        return IntentClassifier(
            llm=self.get_llm(),
            normalizer=self.get_normalizer(),
            score_floor=self.settings.INTENT_SCORE_FLOOR,
        )

    def create_query_structurer(self, resolver: EntityResolver) -> QueryStructurer:
        return QueryStructurer.from_settings(self.settings, resolver, llm=self.get_llm())

    def create_strategy_selector(self) -> StrategySelector:
        return StrategySelector(
            self.skills,
            cache=self.get_cache(),
            llm=self.get_llm(),
            risk_factor_threshold=self.settings.HYBRID_RISK_FACTOR_THRESHOLD,
            cache_ttl=self.settings.SKILLS_CACHE_TTL_SECONDS,
            case_matcher=self.case_matcher,
        )

    def get_router(self) -> AgentRouter:
        """Get the fully wired router (singleton)."""
        if self._router is None:
            resolver = self.create_entity_resolver()
            self._router = AgentRouter(
                resolver,
                self.create_intent_classifier(),
                self.create_query_structurer(resolver),
                self.create_strategy_selector(),
                self.get_context_manager(),
            )
            logger.info("AgentRouter created")
        return self._router


# Global container instance
_container: RouterContainer | None = None


def get_container(registry: IEntityRegistry | None = None, **kwargs) -> RouterContainer:
    """
    Get the global container, creating it on first use.

    Args:
        registry: Required on first call
        **kwargs: Passed to RouterContainer on creation
    """
    global _container
    if _container is None:
        if registry is None:
            raise RuntimeError("get_container() needs a registry on first use")
        _container = RouterContainer(registry, **kwargs)
    return _container


def reset_container() -> None:
    """Drop the global container (useful for tests)."""
    global _container
    _container = None
