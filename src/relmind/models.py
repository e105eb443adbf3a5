"""Domain entities for the relmind knowledge store.

This module defines the persisted entities:
- Person: someone the user knows, from the contact book or discovered in notes
- Touchpoint: a single logged interaction with a primary person
- Fact: a versioned key/value attribute about a person
- PersonRelationship: a directed edge between two persons

Entities are immutable. Stores return new instances instead of mutating.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum


def new_id() -> str:
    """Generate a new entity identifier."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class PersonSource(Enum):
    """Where a person record came from."""

    PHONE_CONTACT = "phone_contact"
    APP_LOCAL = "app_local"


class RelationshipSource(Enum):
    """How a relationship edge was discovered."""

    PHONE_CONTACTS = "phone_contacts"
    EXTRACTED = "extracted"
    MANUAL = "manual"


class InteractionType(Enum):
    """Channel of a logged interaction."""

    PHONE_CALL = "phone_call"
    IN_PERSON = "in_person"
    TEXT = "text"
    VIDEO = "video"
    SOCIAL = "social"
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    OTHER = "other"


class FactCategory(Enum):
    """Closed set of fact categories."""

    EDUCATION = "education"
    CAREER = "career"
    FAMILY = "family"
    HEALTH = "health"
    LOCATION = "location"
    TRAVEL = "travel"
    INTEREST = "interest"
    MILESTONE = "milestone"
    PLAN = "plan"
    GENERAL = "general"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class TimeProgression(Enum):
    """Rule for deriving a fact's current value from its baseline."""

    ACADEMIC_YEAR = "academic_year"
    AGE = "age"
    TENURE = "tenure"
    NONE = "none"


@dataclass(frozen=True)
class Person:
    """A known person.

    Attributes:
        first_name: Given name.
        last_name: Family name, may be empty.
        source: PHONE_CONTACT for synced contacts, APP_LOCAL otherwise.
        external_contact_id: Contact-book identifier, set iff PHONE_CONTACT.
        id: Entity identifier.
        created_at: When the record was created.
    """

    first_name: str
    last_name: str = ""
    source: PersonSource = PersonSource.APP_LOCAL
    external_contact_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        has_contact = self.external_contact_id is not None
        if has_contact != (self.source is PersonSource.PHONE_CONTACT):
            raise ValueError(
                "external_contact_id must be set exactly when source is phone_contact"
            )

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or "Unknown"

    @classmethod
    def from_name(cls, name: str) -> "Person":
        """Create an app-local person from a raw name.

        The first token becomes the first name, the remainder the last name.
        """
        parts = name.strip().split(None, 1)
        first_name = parts[0] if parts else name.strip()
        last_name = parts[1].strip() if len(parts) > 1 else ""
        return cls(first_name=first_name, last_name=last_name)


@dataclass(frozen=True)
class Touchpoint:
    """A logged interaction and the note written about it."""

    raw_note: str
    primary_person_id: str | None = None
    interaction_type: InteractionType = InteractionType.OTHER
    summary: str | None = None
    occurred_at: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    mentioned_person_ids: tuple[str, ...] = ()
    extracted_fact_ids: tuple[str, ...] = ()
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Fact:
    """A single version of a key/value attribute about a person.

    A fact's value is never edited. A newer version for the same
    (person, category, key) supersedes it instead.
    """

    person_id: str
    category: FactCategory
    key: str
    value: str
    source_touchpoint_id: str | None = None
    fact_date: date | None = None
    is_time_sensitive: bool = False
    time_progression: TimeProgression | None = None
    is_superseded: bool = False
    superseded_by: str | None = None
    extracted_at: datetime = field(default_factory=utc_now)
    confidence: float = 1.0
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class PersonRelationship:
    """A directed edge from person to related person."""

    person_id: str
    related_person_id: str
    relationship_type: str
    source: RelationshipSource = RelationshipSource.MANUAL
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=new_id)
