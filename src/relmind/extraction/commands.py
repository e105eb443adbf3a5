"""Command objects applied by the commit phase.

A confirmed ExtractionResult is turned into an ordered list of these
commands, which are then applied inside a single transaction.
"""

from dataclasses import dataclass, field

from ..knowledge.facts import FactMetadata
from ..models import (
    Fact,
    FactCategory,
    Person,
    PersonRelationship,
    RelationshipSource,
)


@dataclass(frozen=True)
class UpdateSummary:
    touchpoint_id: str
    summary: str | None


@dataclass(frozen=True)
class CreatePerson:
    person: Person


@dataclass(frozen=True)
class BindPerson:
    """Link a person to a touchpoint's mentioned people."""

    touchpoint_id: str
    person_id: str


@dataclass(frozen=True)
class CreateRelationship:
    person_id: str
    related_person_id: str
    relationship_type: str
    source: RelationshipSource = RelationshipSource.EXTRACTED


@dataclass(frozen=True)
class RecordFact:
    person_id: str
    category: FactCategory
    key: str
    value: str
    metadata: FactMetadata


Command = UpdateSummary | CreatePerson | BindPerson | CreateRelationship | RecordFact


@dataclass
class CommitOutcome:
    """What a commit wrote."""

    touchpoint_id: str
    persons_created: list[Person] = field(default_factory=list)
    linked_person_ids: list[str] = field(default_factory=list)
    relationships_created: list[PersonRelationship] = field(default_factory=list)
    facts_recorded: list[Fact] = field(default_factory=list)
