"""Tests for FactStore."""

import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from relmind.errors import NotFoundError
from relmind.knowledge import FactMetadata, FactStore, KnowledgeStore
from relmind.models import FactCategory, Person, TimeProgression, Touchpoint


@pytest.fixture
def store(tmp_path: Path) -> KnowledgeStore:
    """Create a KnowledgeStore with a temporary database."""
    store = KnowledgeStore(tmp_path / "test_relmind.db")
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def facts(store: KnowledgeStore) -> FactStore:
    return FactStore(store)


@pytest.fixture
def person(store: KnowledgeStore) -> Person:
    return store.add_person(Person(first_name="Sarah", last_name="Kim"))


def at(minutes: int) -> FactMetadata:
    """Metadata with a deterministic extraction time."""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return FactMetadata(extracted_at=base + timedelta(minutes=minutes))


class TestRecordFact:
    """Tests for recording facts."""

    def test_record_returns_active_fact(self, facts: FactStore, person: Person):
        """A first recording is active and not linked to anything."""
        fact = facts.record_fact(person.id, FactCategory.CAREER, "employer", "Google")
        assert fact.person_id == person.id
        assert fact.is_superseded is False
        assert fact.superseded_by is None
        assert facts.get(fact.id) == fact

    def test_metadata_is_stored(self, facts: FactStore, person: Person, store: KnowledgeStore):
        """Metadata round-trips through storage."""
        touchpoint = store.save_touchpoint(
            Touchpoint(raw_note="Sarah is 30", primary_person_id=person.id)
        )
        metadata = FactMetadata(
            source_touchpoint_id=touchpoint.id,
            fact_date=date(2023, 1, 1),
            is_time_sensitive=True,
            time_progression=TimeProgression.AGE,
            confidence=0.8,
        )
        fact = facts.record_fact(person.id, FactCategory.GENERAL, "age", "30", metadata)

        stored = facts.get(fact.id)
        assert stored.source_touchpoint_id == touchpoint.id
        assert stored.fact_date == date(2023, 1, 1)
        assert stored.is_time_sensitive is True
        assert stored.time_progression is TimeProgression.AGE
        assert stored.confidence == 0.8

    def test_second_value_supersedes_first(self, facts: FactStore, person: Person):
        """Recording the same key twice supersedes the first version."""
        first = facts.record_fact(person.id, FactCategory.CAREER, "employer", "Google", at(0))
        second = facts.record_fact(person.id, FactCategory.CAREER, "employer", "Meta", at(1))

        old = facts.get(first.id)
        assert old.is_superseded is True
        assert old.superseded_by == second.id
        assert old.value == "Google"
        assert facts.get(second.id).is_superseded is False

    def test_key_match_is_case_insensitive(self, facts: FactStore, person: Person):
        """Keys differing only in case are the same fact."""
        first = facts.record_fact(person.id, FactCategory.CAREER, "Employer", "Google")
        second = facts.record_fact(person.id, FactCategory.CAREER, "employer", "Meta")
        assert facts.get(first.id).superseded_by == second.id

    def test_category_must_match_exactly(self, facts: FactStore, person: Person):
        """Same key in another category is a different fact."""
        facts.record_fact(person.id, FactCategory.CAREER, "city", "Austin")
        facts.record_fact(person.id, FactCategory.LOCATION, "city", "Boston")
        assert len(facts.active_facts(person.id)) == 2

    def test_other_person_unaffected(self, facts: FactStore, person: Person, store: KnowledgeStore):
        """Supersession is scoped to the owning person."""
        other = store.add_person(Person(first_name="Tom"))
        mine = facts.record_fact(person.id, FactCategory.CAREER, "employer", "Google")
        facts.record_fact(other.id, FactCategory.CAREER, "employer", "Meta")
        assert facts.get(mine.id).is_superseded is False

    def test_at_most_one_active_version(self, facts: FactStore, person: Person):
        """Many recordings leave exactly one active version per key."""
        for i, value in enumerate(["1st year", "2nd year", "3rd year", "4th year"]):
            facts.record_fact(person.id, FactCategory.EDUCATION, "year", value, at(i))
        facts.record_fact(person.id, FactCategory.EDUCATION, "College", "MIT", at(10))
        facts.record_fact(person.id, FactCategory.EDUCATION, "college", "IIT", at(11))

        active = facts.active_facts(person.id)
        keys = [(f.category, f.key.lower()) for f in active]
        assert len(keys) == len(set(keys)) == 2
        assert {f.value for f in active} == {"4th year", "IIT"}

    def test_index_rejects_second_active_version(self, facts: FactStore, person: Person, store: KnowledgeStore):
        """The schema itself refuses two active versions of a fact."""
        facts.record_fact(person.id, FactCategory.CAREER, "employer", "Google")
        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO facts (id, person_id, category, key, value, extracted_at)
                    VALUES ('x', ?, 'career', 'EMPLOYER', 'Meta', '2025-01-01T00:00:00')
                    """,
                    (person.id,),
                )

    def test_joins_caller_transaction(self, facts: FactStore, person: Person, store: KnowledgeStore):
        """Writes inside a rolled back transaction disappear."""
        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                facts.record_fact(person.id, FactCategory.CAREER, "employer", "Google", conn=conn)
                raise RuntimeError("abort")
        assert facts.all_facts(person.id) == []


class TestFactQueries:
    """Tests for reading facts back."""

    def test_history_newest_first(self, facts: FactStore, person: Person):
        """history returns every version, newest first."""
        facts.record_fact(person.id, FactCategory.CAREER, "employer", "Google", at(0))
        facts.record_fact(person.id, FactCategory.CAREER, "Employer", "Meta", at(1))
        facts.record_fact(person.id, FactCategory.CAREER, "employer", "Apple", at(2))

        history = facts.history(person.id, FactCategory.CAREER, "EMPLOYER")
        assert [f.value for f in history] == ["Apple", "Meta", "Google"]
        assert history[1].superseded_by == history[0].id
        assert history[2].superseded_by == history[1].id

    def test_all_facts_keeps_superseded(self, facts: FactStore, person: Person):
        """No version is ever deleted."""
        facts.record_fact(person.id, FactCategory.CAREER, "employer", "Google", at(0))
        facts.record_fact(person.id, FactCategory.CAREER, "employer", "Meta", at(1))
        assert [f.value for f in facts.all_facts(person.id)] == ["Google", "Meta"]

    def test_facts_for_touchpoint(self, facts: FactStore, person: Person, store: KnowledgeStore):
        """Facts can be listed by source touchpoint."""
        touchpoint = store.save_touchpoint(Touchpoint(raw_note="note", primary_person_id=person.id))
        metadata = FactMetadata(source_touchpoint_id=touchpoint.id)
        fact = facts.record_fact(person.id, FactCategory.PLAN, "trip", "Japan", metadata)
        facts.record_fact(person.id, FactCategory.PLAN, "move", "Denver")

        assert [f.id for f in facts.facts_for_touchpoint(touchpoint.id)] == [fact.id]
        assert store.get_touchpoint(touchpoint.id).extracted_fact_ids == (fact.id,)

    def test_get_missing_raises(self, facts: FactStore):
        """get raises NotFoundError for unknown ids."""
        with pytest.raises(NotFoundError):
            facts.get("missing")
