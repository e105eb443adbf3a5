"""Knowledge store: persons, touchpoints, versioned facts and relationships."""

from .facts import FactMetadata, FactStore
from .relationships import RelationshipGraph
from .store import ContactStats, Insights, KnowledgeStore
from .temporal import compute_current_value

__all__ = [
    "ContactStats",
    "FactMetadata",
    "FactStore",
    "Insights",
    "KnowledgeStore",
    "RelationshipGraph",
    "compute_current_value",
]
