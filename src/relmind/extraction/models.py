"""Staged extraction results awaiting human review.

An ExtractionResult is produced by the extract phase and consumed by the
commit phase. It is never persisted as-is. Reviewers edit it through the
copy-on-write helpers below, which leave the original untouched.
"""

from dataclasses import dataclass, replace
from datetime import date

from ..models import FactCategory, Person, TimeProgression
from .matcher import FuzzyMatch


@dataclass(frozen=True)
class MentionedPerson:
    """A person mentioned in a note and its proposed binding.

    Attributes:
        name: Name as written in the note.
        relationship_to_primary: e.g. "daughter", None if not stated.
        is_primary: Whether this mention is the touchpoint's primary person.
        bound_person: Existing person this mention resolves to, None means
            a new person will be created on commit.
        candidates: Ranked fuzzy matches for reviewer disambiguation.
        confirmed: Whether the reviewer accepted this mention.
    """

    name: str
    relationship_to_primary: str | None = None
    is_primary: bool = False
    bound_person: Person | None = None
    candidates: tuple[FuzzyMatch, ...] = ()
    confirmed: bool = True


@dataclass(frozen=True)
class ExtractedFact:
    """A candidate fact awaiting review."""

    person_name: str
    category: FactCategory
    key: str
    value: str
    fact_date: date | None = None
    is_time_sensitive: bool = False
    time_progression: TimeProgression | None = None
    confidence: float = 1.0
    confirmed: bool = True


@dataclass(frozen=True)
class ExtractionResult:
    """Everything extracted from one note, staged for review."""

    summary: str
    mentioned_people: tuple[MentionedPerson, ...] = ()
    facts: tuple[ExtractedFact, ...] = ()

    def _with_mention(self, index: int, **changes) -> "ExtractionResult":
        mentions = list(self.mentioned_people)
        mentions[index] = replace(mentions[index], **changes)
        return replace(self, mentioned_people=tuple(mentions))

    def bind(self, index: int, person: Person) -> "ExtractionResult":
        """Bind mention `index` to an existing person."""
        return self._with_mention(index, bound_person=person)

    def unbind(self, index: int) -> "ExtractionResult":
        """Clear the binding of mention `index` so a new person is created."""
        return self._with_mention(index, bound_person=None)

    def set_mention_confirmed(self, index: int, confirmed: bool) -> "ExtractionResult":
        return self._with_mention(index, confirmed=confirmed)

    def set_fact_confirmed(self, index: int, confirmed: bool) -> "ExtractionResult":
        facts = list(self.facts)
        facts[index] = replace(facts[index], confirmed=confirmed)
        return replace(self, facts=tuple(facts))

    @property
    def primary_mention(self) -> MentionedPerson | None:
        return next((m for m in self.mentioned_people if m.is_primary), None)

    @property
    def confirmed_facts(self) -> list[ExtractedFact]:
        return [f for f in self.facts if f.confirmed]
