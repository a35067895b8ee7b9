"""
Merchant registry interface

Read-only source of merchant records for the entity resolver and the skills.
"""

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, runtime_checkable


@dataclass(frozen=True)
class Entity:
    """A merchant record as seen by the routing engine."""

    id: str
    name: str
    category: str | None = None
    floor: str | None = None
    total_score: float | None = None
    risk_level: str | None = None  # none | low | medium | high | critical
    rent_to_sales_ratio: float | None = None
    last_month_revenue: float | None = None
    metrics: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "floor": self.floor,
            "totalScore": self.total_score,
            "riskLevel": self.risk_level,
            "rentToSalesRatio": self.rent_to_sales_ratio,
            "lastMonthRevenue": self.last_month_revenue,
            "metrics": dict(self.metrics),
        }


@runtime_checkable
class IEntityRegistry(Protocol):
    """Read-only merchant lookup."""

    @abstractmethod
    def get_all(self) -> list[Entity]:
        """All merchants, in a stable order."""
        ...

    @abstractmethod
    def get_by_id(self, entity_id: str) -> Entity | None:
        """Merchant by id, or None."""
        ...


class InMemoryEntityRegistry:
    """Registry backed by a list of entities, preserving insertion order."""

    def __init__(self, entities: Iterable[Entity] = ()):
        self._entities: dict[str, Entity] = {}
        for entity in entities:
            self.add(entity)

    def add(self, entity: Entity) -> None:
        if entity.id in self._entities:
            raise ValueError(f"Duplicate merchant id: {entity.id}")
        self._entities[entity.id] = entity

    def get_all(self) -> list[Entity]:
        return list(self._entities.values())

    def get_by_id(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    def __len__(self) -> int:
        return len(self._entities)
