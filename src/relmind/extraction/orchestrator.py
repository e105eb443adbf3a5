"""Two-phase extraction: stage LLM output for review, then commit it.

Phase A (`extract`) calls the LLM and resolves mentioned names against the
person registry. It never writes anything. Phase B (`commit`) turns a
reviewed result into commands and applies them in one transaction.
"""

import asyncio
import logging
import sqlite3
import time
from contextlib import AsyncExitStack
from datetime import date, datetime
from typing import Awaitable, Callable, Protocol

from ..errors import CommitFailure, NoPrimaryPerson, RelmindError
from ..knowledge.facts import FactMetadata, FactStore
from ..knowledge.relationships import RelationshipGraph
from ..knowledge.store import KnowledgeStore
from ..logging import JSONLLogger
from ..models import FactCategory, Person, TimeProgression, Touchpoint, utc_now
from .client import ExtractionResponse, FactDescriptor, NoteExtractor, coerce_confidence
from .commands import (
    BindPerson,
    Command,
    CommitOutcome,
    CreatePerson,
    CreateRelationship,
    RecordFact,
    UpdateSummary,
)
from .matcher import NameMatcher
from .models import ExtractedFact, ExtractionResult, MentionedPerson

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.5
AUTO_BIND_THRESHOLD = 0.85

_PROGRESSIONS = {
    "academicyear": TimeProgression.ACADEMIC_YEAR,
    "academic_year": TimeProgression.ACADEMIC_YEAR,
    "age": TimeProgression.AGE,
    "tenure": TimeProgression.TENURE,
    "none": TimeProgression.NONE,
}


class Reviewer(Protocol):
    """Human-in-the-loop review of a staged result.

    Returns the (possibly edited) result, or None to cancel.
    """

    def __call__(self, result: ExtractionResult) -> Awaitable[ExtractionResult | None]: ...


def parse_category(value: str | None) -> FactCategory:
    """Parse a category name, falling back to GENERAL."""
    try:
        return FactCategory((value or "").strip().lower())
    except ValueError:
        return FactCategory.GENERAL


def parse_time_progression(value: str | None) -> TimeProgression | None:
    """Parse a progression name, None if unknown."""
    if value is None:
        return None
    return _PROGRESSIONS.get(value.strip().lower())


def parse_fact_date(value: str | None) -> date | None:
    """Parse a YYYY-MM-DD date, None if absent or malformed."""
    if not value or value.strip().lower() == "null":
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def plan_commit(
    result: ExtractionResult,
    touchpoint: Touchpoint,
    primary: Person,
    extracted_at: datetime | None = None,
) -> list[Command]:
    """Turn a reviewed result into the commands that persist it.

    Pure: reads nothing and writes nothing.

    Args:
        result: The reviewed extraction result.
        touchpoint: The touchpoint the note belongs to.
        primary: The touchpoint's primary person.
        extracted_at: Timestamp stamped on every recorded fact.

    Returns:
        Commands in application order.
    """
    extracted_at = extracted_at or utc_now()
    summary = result.summary.strip() or None
    commands: list[Command] = [UpdateSummary(touchpoint.id, summary)]

    linked = set(touchpoint.mentioned_person_ids)
    # Resolved person per confirmed mention, keyed by lowercased name
    resolved_by_name: dict[str, Person] = {}

    for mention in result.mentioned_people:
        if not mention.confirmed:
            continue
        if mention.is_primary:
            resolved_by_name.setdefault(mention.name.lower(), primary)
            continue

        person = mention.bound_person
        if person is None:
            person = Person.from_name(mention.name)
            commands.append(CreatePerson(person))
        resolved_by_name.setdefault(mention.name.lower(), person)

        if person.id not in linked:
            linked.add(person.id)
            commands.append(BindPerson(touchpoint.id, person.id))

        relationship = (mention.relationship_to_primary or "").strip()
        if relationship and person.id != primary.id:
            commands.append(
                CreateRelationship(
                    person_id=primary.id,
                    related_person_id=person.id,
                    relationship_type=relationship,
                )
            )

    for fact in result.facts:
        if not fact.confirmed:
            continue
        owner = _resolve_owner(fact.person_name, primary, resolved_by_name)
        commands.append(
            RecordFact(
                person_id=owner.id,
                category=fact.category,
                key=fact.key,
                value=fact.value,
                metadata=FactMetadata(
                    source_touchpoint_id=touchpoint.id,
                    fact_date=fact.fact_date,
                    is_time_sensitive=fact.is_time_sensitive,
                    time_progression=fact.time_progression,
                    confidence=fact.confidence,
                    extracted_at=extracted_at,
                ),
            )
        )

    return commands


def _resolve_owner(
    person_name: str, primary: Person, resolved_by_name: dict[str, Person]
) -> Person:
    name = person_name.strip().lower()
    if name in (primary.display_name.lower(), primary.first_name.lower()):
        return primary
    if name in resolved_by_name:
        return resolved_by_name[name]
    # Unmatched names are attributed to the primary person
    return primary


class ExtractionOrchestrator:
    """Runs the extract and commit phases against a knowledge store."""

    def __init__(
        self,
        store: KnowledgeStore,
        extractor: NoteExtractor,
        matcher: NameMatcher | None = None,
        fact_store: FactStore | None = None,
        graph: RelationshipGraph | None = None,
        event_log: JSONLLogger | None = None,
        today: Callable[[], date] = date.today,
        match_threshold: float = MATCH_THRESHOLD,
        auto_bind_threshold: float = AUTO_BIND_THRESHOLD,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Persistence and person registry.
            extractor: The LLM extraction collaborator.
            matcher: Name matcher, a default one if None.
            fact_store: Fact ledger over the same store.
            graph: Relationship graph over the same store.
            event_log: Optional JSONL event logger.
            today: Clock for the date passed to the LLM.
            match_threshold: Minimum score for a candidate match.
            auto_bind_threshold: Minimum top score for automatic binding.
        """
        self.store = store
        self.extractor = extractor
        self.matcher = matcher or NameMatcher()
        self.fact_store = fact_store or FactStore(store)
        self.graph = graph or RelationshipGraph(store)
        self.event_log = event_log
        self.today = today
        self.match_threshold = match_threshold
        self.auto_bind_threshold = auto_bind_threshold
        self._locks: dict[str, asyncio.Lock] = {}

    def get_lock(self, person_id: str) -> asyncio.Lock:
        """Get the commit lock for a person."""
        if person_id not in self._locks:
            self._locks[person_id] = asyncio.Lock()
        return self._locks[person_id]

    def _primary_person(self, touchpoint: Touchpoint) -> Person:
        if touchpoint.primary_person_id is None:
            raise NoPrimaryPerson(touchpoint.id)
        return self.store.get_person(touchpoint.primary_person_id)

    # Phase A

    async def extract(self, touchpoint: Touchpoint) -> ExtractionResult:
        """Extract a reviewable result from a saved touchpoint.

        Writes nothing. Cancelling the returned coroutine leaves no trace.

        Raises:
            NoPrimaryPerson: If the touchpoint has no primary person.
            ExtractionTransportError: If the LLM cannot be reached.
            ExtractionParseError: If the LLM response is unusable.
        """
        primary = self._primary_person(touchpoint)
        if self.event_log:
            self.event_log.log_extraction_start(touchpoint.id, primary.id)

        start = time.monotonic()
        try:
            response = await self.extractor.extract(
                note_text=touchpoint.raw_note,
                primary_person_name=primary.display_name,
                today=self.today(),
            )
        except RelmindError as e:
            if self.event_log:
                self.event_log.log_extraction_failed(
                    touchpoint.id,
                    str(e),
                    duration_ms=(time.monotonic() - start) * 1000,
                )
            raise

        result = self.stage(response, primary, self.store.list_persons())
        if self.event_log:
            self.event_log.log_extraction_staged(
                touchpoint.id,
                mentions=len(result.mentioned_people),
                facts=len(result.facts),
                auto_bound=sum(
                    1
                    for m in result.mentioned_people
                    if not m.is_primary and m.bound_person is not None
                ),
                duration_ms=(time.monotonic() - start) * 1000,
            )
        return result

    def stage(
        self,
        response: ExtractionResponse,
        primary: Person,
        registry: list[Person],
    ) -> ExtractionResult:
        """Resolve a raw response against the registry into a staged result."""
        mentions: list[MentionedPerson] = []
        for descriptor in response.mentioned_people:
            if descriptor.is_primary:
                mentions.append(
                    MentionedPerson(
                        name=descriptor.name,
                        relationship_to_primary=descriptor.relationship_to_primary,
                        is_primary=True,
                        bound_person=primary,
                    )
                )
                continue

            candidates = self.matcher.find_matches(
                descriptor.name, registry, threshold=self.match_threshold
            )
            bound = None
            if candidates and candidates[0].score >= self.auto_bind_threshold:
                bound = candidates[0].person
            mentions.append(
                MentionedPerson(
                    name=descriptor.name,
                    relationship_to_primary=descriptor.relationship_to_primary,
                    bound_person=bound,
                    candidates=tuple(candidates),
                )
            )

        if not any(m.is_primary for m in mentions):
            mentions.insert(
                0,
                MentionedPerson(
                    name=primary.display_name, is_primary=True, bound_person=primary
                ),
            )

        return ExtractionResult(
            summary=response.summary,
            mentioned_people=tuple(mentions),
            facts=tuple(self._stage_fact(f) for f in response.facts),
        )

    def _stage_fact(self, descriptor: FactDescriptor) -> ExtractedFact:
        return ExtractedFact(
            person_name=descriptor.person_name,
            category=parse_category(descriptor.category),
            key=descriptor.key,
            value=descriptor.value,
            fact_date=parse_fact_date(descriptor.fact_date),
            is_time_sensitive=descriptor.is_time_sensitive,
            time_progression=parse_time_progression(descriptor.time_progression),
            confidence=coerce_confidence(descriptor.confidence),
        )

    # Phase B

    async def commit(
        self, result: ExtractionResult, touchpoint: Touchpoint
    ) -> CommitOutcome:
        """Persist a reviewed result atomically.

        Raises:
            NoPrimaryPerson: If the touchpoint has no primary person.
            CommitFailure: If any write fails. Nothing is persisted.
        """
        primary = self._primary_person(touchpoint)
        commands = plan_commit(result, touchpoint, primary)

        # Persons that already exist and may receive writes
        created = {c.person.id for c in commands if isinstance(c, CreatePerson)}
        affected = {primary.id}
        for command in commands:
            if isinstance(command, (BindPerson, RecordFact)):
                affected.add(command.person_id)
        affected -= created

        start = time.monotonic()
        async with AsyncExitStack() as stack:
            for person_id in sorted(affected):
                await stack.enter_async_context(self.get_lock(person_id))
            outcome = self._apply(touchpoint.id, commands)

        if self.event_log:
            self.event_log.log_commit(
                touchpoint.id,
                facts=len(outcome.facts_recorded),
                persons_created=len(outcome.persons_created),
                relationships_created=len(outcome.relationships_created),
                duration_ms=(time.monotonic() - start) * 1000,
            )
        return outcome

    def _apply(self, touchpoint_id: str, commands: list[Command]) -> CommitOutcome:
        outcome = CommitOutcome(touchpoint_id=touchpoint_id)
        try:
            with self.store.transaction() as conn:
                for command in commands:
                    self._apply_command(conn, command, outcome)
        except (sqlite3.Error, RelmindError) as e:
            logger.warning("Commit for touchpoint %s rolled back: %s", touchpoint_id, e)
            if self.event_log:
                self.event_log.log_commit_failed(touchpoint_id, str(e))
            raise CommitFailure(f"Commit failed for touchpoint {touchpoint_id}: {e}") from e
        return outcome

    def _apply_command(
        self, conn: sqlite3.Connection, command: Command, outcome: CommitOutcome
    ) -> None:
        if isinstance(command, UpdateSummary):
            self.store.update_summary(command.touchpoint_id, command.summary, conn)
        elif isinstance(command, CreatePerson):
            outcome.persons_created.append(self.store.add_person(command.person, conn))
        elif isinstance(command, BindPerson):
            if self.store.link_mentioned_person(
                command.touchpoint_id, command.person_id, conn
            ):
                outcome.linked_person_ids.append(command.person_id)
        elif isinstance(command, CreateRelationship):
            relationship = self.graph.create_or_skip(
                command.person_id,
                command.related_person_id,
                command.relationship_type,
                command.source,
                conn=conn,
            )
            if relationship is not None:
                outcome.relationships_created.append(relationship)
        elif isinstance(command, RecordFact):
            outcome.facts_recorded.append(
                self.fact_store.record_fact(
                    command.person_id,
                    command.category,
                    command.key,
                    command.value,
                    command.metadata,
                    conn=conn,
                )
            )
        else:
            raise TypeError(f"Unknown command: {command!r}")

    async def extract_and_commit(
        self, touchpoint: Touchpoint, reviewer: Reviewer | None = None
    ) -> CommitOutcome | None:
        """Run both phases with an optional review step in between.

        Returns:
            The commit outcome, or None if the reviewer cancelled.
        """
        result = await self.extract(touchpoint)
        if reviewer is not None:
            reviewed = await reviewer(result)
            if reviewed is None:
                if self.event_log:
                    self.event_log.log_review_cancelled(touchpoint.id)
                return None
            result = reviewed
        return await self.commit(result, touchpoint)
