"""
Entity Resolver

Maps an utterance to one merchant of the registry using a tiered matcher:

    1. exact containment of the merchant name          -> 1.0
    2. containment after stripping domain suffixes     -> 0.85
    3. reverse keyword / n-gram match                  -> 0.75
    4. partial / longest-common-substring similarity   -> score, with an
       input-length dependent threshold and an ambiguity guard
    5. inheritance of the conversation's active merchant -> 0.7

The first tier that produces a match wins. Resolution is a pure function of
the input, the registry and the optional context merchant.
"""

import logging
import re
from dataclasses import dataclass, field

from merchant_assistant.interfaces.registry import Entity, IEntityRegistry
from merchant_assistant.nlp.normalizer import Normalizer, longest_common_substring
from merchant_assistant.schemas.entity import (
    ContextSwitch,
    EntityCandidate,
    EntityResult,
    ExtractedEntities,
    MatchSource,
)

logger = logging.getLogger(__name__)

DEFAULT_SUFFIXES: tuple[str, ...] = (
    "火锅", "咖啡", "餐厅", "面包店", "甜品店", "奶茶店",
    "服装", "超市", "便利店", "书店", "花店",
    "珠宝", "黄金", "钻石", "翡翠", "玉器",
    "影院", "健身房", "美容院", "理发店", "药店",
    "店", "馆", "坊", "阁", "轩", "居", "廊", "城", "街",
    "专卖店", "专卖", "工厂", "工坊",
)

# Checked against the raw utterance, before particles are stripped
CONTEXT_CUES: tuple[str, ...] = (
    "它", "他", "她", "这个", "那个", "该", "这", "那", "这家", "那家",
    "呢", "…", "...", "怎么样", "如何", "怎样", "吗", "什么",
)

SWITCH_KEYWORDS = ("换个", "换一", "其他", "另一个", "别的", "看看别的")
COMPARISON_KEYWORDS = ("对比", "比较", "vs", "相比", "pk")

METRIC_KEYWORDS = {
    "营收": "revenue",
    "收入": "revenue",
    "销售": "revenue",
    "客流": "traffic",
    "满意度": "customer_review",
    "评价": "customer_review",
    "租金": "rent",
    "租售比": "rent_to_sales_ratio",
    "成本": "cost",
    "收缴率": "collection",
    "健康度": "total_score",
    "评分": "total_score",
}

_DATE_RE = re.compile(
    r"\d{4}年\d{1,2}月(?:\d{1,2}日)?|\d{4}-\d{1,2}(?:-\d{1,2})?|\d{1,2}月(?:\d{1,2}日)?"
    r"|本月|上月|上个月|本周|上周|今年|去年|最近\d+个?月|近\d+个?月"
)
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")

CONTEXT_INPUT_MAX_LEN = 5


@dataclass(frozen=True)
class ResolverConfig:
    """Tunable constants of the partial-match tier."""

    ambiguity_gap: float = 0.1
    threshold_short: float = 0.6
    threshold_long: float = 0.3
    short_input_len: int = 3
    long_input_len: int = 6
    suffixes: tuple[str, ...] = field(default=DEFAULT_SUFFIXES)

    @classmethod
    def from_settings(cls, settings) -> "ResolverConfig":
        return cls(
            ambiguity_gap=settings.ENTITY_AMBIGUITY_GAP,
            threshold_short=settings.ENTITY_THRESHOLD_SHORT,
            threshold_long=settings.ENTITY_THRESHOLD_LONG,
            short_input_len=settings.ENTITY_SHORT_INPUT_LEN,
            long_input_len=settings.ENTITY_LONG_INPUT_LEN,
        )

    def threshold_for(self, input_length: int) -> float:
        """0.6 for short inputs, 0.3 for long ones, linear in between."""
        if input_length <= self.short_input_len:
            return self.threshold_short
        if input_length >= self.long_input_len:
            return self.threshold_long
        span = self.long_input_len - self.short_input_len
        progress = (input_length - self.short_input_len) / span
        return self.threshold_short - (self.threshold_short - self.threshold_long) * progress


class EntityResolver:
    """Resolves merchant references against a read-only registry."""

    def __init__(
        self,
        registry: IEntityRegistry,
        normalizer: Normalizer | None = None,
        config: ResolverConfig | None = None,
    ):
        self.registry = registry
        self.normalizer = normalizer or Normalizer()
        self.config = config or ResolverConfig()

    # ------------------------------------------------------------------ #
    # Resolution
    # ------------------------------------------------------------------ #

    def resolve(self, user_input: str | None, context_entity_id: str | None = None) -> EntityResult:
        """
        Resolve the merchant an utterance refers to.

        Args:
            user_input: Raw user utterance
            context_entity_id: Active merchant of the conversation, if any

        Returns:
            EntityResult; unmatched with confidence 0 when nothing qualifies
        """
        normalized = self.normalizer.normalize(user_input)
        if not normalized:
            return EntityResult.unmatched()

        entities = self.registry.get_all()

        for tier in (self._exact_match, self._suffix_match, self._keyword_match):
            result = tier(normalized, user_input or "", entities)
            if result is not None:
                logger.debug(f"Entity resolved by {result.source}: {result.entity_name} ({result.confidence:.2f})")
                return result

        partial, ambiguous = self._partial_match(normalized, entities)
        if partial is not None:
            logger.debug(f"Entity resolved by partial match: {partial.entity_name} ({partial.confidence:.2f})")
            return partial
        if ambiguous:
            return EntityResult.unmatched()

        inherited = self._context_match(user_input or "", normalized, context_entity_id)
        if inherited is not None:
            logger.debug(f"Entity inherited from context: {inherited.entity_name}")
            return inherited

        return EntityResult.unmatched()

    def _exact_match(self, normalized: str, raw: str, entities: list[Entity]) -> EntityResult | None:
        best: Entity | None = None
        for entity in entities:
            name = self.normalizer.normalize_name(entity.name)
            # Longest contained name wins so "海底捞火锅" beats "海底捞"
            if name and name in normalized and (best is None or len(name) > len(self.normalizer.normalize_name(best.name))):
                best = entity
        if best is None:
            return None
        return _matched(best, 1.0, MatchSource.EXACT)

    def _suffix_match(self, normalized: str, raw: str, entities: list[Entity]) -> EntityResult | None:
        input_core = self.normalizer.strip_suffixes(normalized, self.config.suffixes)
        for entity in entities:
            core = self._core(entity)
            if len(core) >= 2 and core in normalized:
                return _matched(entity, 0.85, MatchSource.FUZZY)
            if len(input_core) >= 2 and input_core == core:
                return _matched(entity, 0.85, MatchSource.FUZZY)
        return None

    def _keyword_match(self, normalized: str, raw: str, entities: list[Entity]) -> EntityResult | None:
        candidates = [
            c for c in self.normalizer.keyword_candidates(raw) if c not in self.config.suffixes
        ]
        if not candidates:
            return None

        hits: dict[str, Entity] = {}
        for entity in entities:
            core = self._core(entity)
            if any(candidate in core for candidate in candidates):
                hits[entity.id] = entity

        if len(hits) == 1:
            return _matched(next(iter(hits.values())), 0.75, MatchSource.KEYWORD)
        if len(hits) > 1:
            logger.debug(f"Keyword match hit {len(hits)} merchants, deferring to partial match")
        return None

    def _partial_match(self, normalized: str, entities: list[Entity]) -> tuple[EntityResult | None, bool]:
        """Returns (result, ambiguous)."""
        threshold = self.config.threshold_for(len(normalized))
        scored: list[tuple[float, Entity]] = []

        for entity in entities:
            score = self._similarity(normalized, self.normalizer.normalize_name(entity.name))
            if score > threshold:
                scored.append((score, entity))

        if not scored:
            return None, False

        scored.sort(key=lambda item: item[0], reverse=True)
        if len(scored) > 1 and scored[0][0] - scored[1][0] < self.config.ambiguity_gap:
            logger.info(
                f"Ambiguous merchant reference '{normalized}': "
                f"{scored[0][1].name} ({scored[0][0]:.2f}) vs {scored[1][1].name} ({scored[1][0]:.2f})"
            )
            return None, True

        score, entity = scored[0]
        return _matched(entity, min(score, 1.0), MatchSource.PARTIAL), False

    def _context_match(self, raw: str, normalized: str, context_entity_id: str | None) -> EntityResult | None:
        if not context_entity_id:
            return None
        entity = self.registry.get_by_id(context_entity_id)
        if entity is None:
            return None
        if len(normalized) < CONTEXT_INPUT_MAX_LEN or any(cue in raw for cue in CONTEXT_CUES):
            return _matched(entity, 0.7, MatchSource.CONTEXT)
        return None

    @staticmethod
    def _similarity(normalized: str, name: str) -> float:
        if not normalized or not name:
            return 0.0
        if name in normalized:
            containment = len(name) / len(normalized)
        elif normalized in name:
            containment = len(normalized) / len(name)
        else:
            containment = 0.0
        lcs = longest_common_substring(normalized, name)
        lcs_ratio = len(lcs) / max(len(normalized), len(name)) if len(lcs) >= 2 else 0.0
        return max(containment, lcs_ratio)

    def _core(self, entity: Entity) -> str:
        return self.normalizer.strip_suffixes(self.normalizer.normalize_name(entity.name), self.config.suffixes)

    # ------------------------------------------------------------------ #
    # Secondary operations
    # ------------------------------------------------------------------ #

    def extract_all(self, user_input: str | None) -> list[EntityResult]:
        """Every merchant whose full name appears in the utterance."""
        normalized = self.normalizer.normalize(user_input)
        if not normalized:
            return []
        return [
            _matched(entity, 1.0, MatchSource.EXACT)
            for entity in self.registry.get_all()
            if (name := self.normalizer.normalize_name(entity.name)) and name in normalized
        ]

    def suggest(self, partial_name: str | None, limit: int = 5) -> list[Entity]:
        """
        Merchants a partial name may refer to, best first.

        Prefix matches rank above substring matches, which rank above
        longest-common-substring similarity.
        """
        normalized = self.normalizer.normalize(partial_name)
        if not normalized or limit <= 0:
            return []

        scored: list[tuple[float, Entity]] = []
        for entity in self.registry.get_all():
            name = self.normalizer.normalize_name(entity.name)
            if name.startswith(normalized):
                score = 100.0
            elif normalized in name:
                score = 50.0
            else:
                lcs = longest_common_substring(normalized, name)
                score = len(lcs) / len(normalized) * 30 if len(lcs) >= 1 else 0.0
            if score > 0:
                scored.append((score, entity))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [entity for _, entity in scored[:limit]]

    def validate(self, entity_id: str | None) -> bool:
        return bool(entity_id) and self.registry.get_by_id(entity_id) is not None

    def recognize(self, user_input: str | None, context_entity_id: str | None = None) -> list[EntityCandidate]:
        """
        All candidate merchants from every tier, de-duplicated per merchant
        (highest confidence kept) and sorted best first. Used to build
        clarification prompts when resolution is ambiguous.
        """
        normalized = self.normalizer.normalize(user_input)
        if not normalized:
            return []

        raw = user_input or ""
        best: dict[str, EntityCandidate] = {}

        def offer(entity: Entity, confidence: float, source: MatchSource, text: str | None = None) -> None:
            existing = best.get(entity.id)
            if existing is None or confidence > existing.confidence:
                best[entity.id] = EntityCandidate(
                    entity_id=entity.id,
                    entity_name=entity.name,
                    confidence=min(confidence, 1.0),
                    source=source,
                    matched_text=text,
                )

        threshold = self.config.threshold_for(len(normalized))
        candidates = [c for c in self.normalizer.keyword_candidates(raw) if c not in self.config.suffixes]
        for entity in self.registry.get_all():
            name = self.normalizer.normalize_name(entity.name)
            core = self._core(entity)
            if name and name in normalized:
                offer(entity, 1.0, MatchSource.EXACT, name)
            if len(core) >= 2 and core in normalized:
                offer(entity, 0.85, MatchSource.FUZZY, core)
            hit = next((c for c in candidates if c in core), None)
            if hit:
                offer(entity, 0.75, MatchSource.KEYWORD, hit)
            score = self._similarity(normalized, name)
            if score > threshold:
                offer(entity, score, MatchSource.PARTIAL, name)

        if not best:
            inherited = self._context_match(raw, normalized, context_entity_id)
            if inherited is not None and inherited.entity_id and inherited.entity_name:
                best[inherited.entity_id] = EntityCandidate(
                    entity_id=inherited.entity_id,
                    entity_name=inherited.entity_name,
                    confidence=inherited.confidence,
                    source=MatchSource.CONTEXT,
                )

        return sorted(best.values(), key=lambda c: c.confidence, reverse=True)

    def detect_context_switch(self, user_input: str | None, active_entity_name: str | None = None) -> ContextSwitch:
        """
        Decide whether the user moved away from the active merchant.

        Comparison phrasing keeps the current merchant; an explicit mention
        of a different merchant or switch vocabulary is a switch.
        """
        raw = (user_input or "").casefold()
        if not raw.strip():
            return ContextSwitch(is_switch=False, reason="empty input")

        if any(keyword in raw for keyword in COMPARISON_KEYWORDS):
            return ContextSwitch(is_switch=False, reason="comparison request")

        normalized = self.normalizer.normalize(user_input)
        mentioned = self._exact_match(normalized, raw, self.registry.get_all()) or self._suffix_match(
            normalized, raw, self.registry.get_all()
        )
        if mentioned is not None and mentioned.entity_name != active_entity_name:
            return ContextSwitch(
                is_switch=True,
                new_entity_id=mentioned.entity_id,
                new_entity_name=mentioned.entity_name,
                reason=f"explicit mention of {mentioned.entity_name}",
            )

        if active_entity_name and any(keyword in raw for keyword in SWITCH_KEYWORDS):
            return ContextSwitch(is_switch=True, reason="switch vocabulary")

        return ContextSwitch(is_switch=False, reason="no switch")

    def extract_other_entities(self, user_input: str | None) -> ExtractedEntities:
        """Dates, numbers and metric names mentioned in the utterance."""
        text = user_input or ""
        dates = _DATE_RE.findall(text)
        remainder = _DATE_RE.sub(" ", text)
        numbers = [float(n) for n in _NUMBER_RE.findall(remainder)]
        metrics = list(dict.fromkeys(metric for keyword, metric in METRIC_KEYWORDS.items() if keyword in text))
        return ExtractedEntities(dates=dates, numbers=numbers, metrics=metrics)


def _matched(entity: Entity, confidence: float, source: MatchSource) -> EntityResult:
    return EntityResult(
        entity_id=entity.id,
        entity_name=entity.name,
        confidence=confidence,
        matched=True,
        source=source,
    )
