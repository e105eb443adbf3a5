"""Append-only fact ledger with single-active-version supersession."""

import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime

from ..errors import NotFoundError
from ..models import Fact, FactCategory, TimeProgression, new_id, utc_now
from .store import KnowledgeStore, to_db_time


@dataclass(frozen=True)
class FactMetadata:
    """Everything about a fact besides its owner, category, key and value."""

    source_touchpoint_id: str | None = None
    fact_date: date | None = None
    is_time_sensitive: bool = False
    time_progression: TimeProgression | None = None
    confidence: float = 1.0
    extracted_at: datetime = field(default_factory=utc_now)


class FactStore:
    """Versioned per-person key/value facts.

    `record_fact` is the only way facts are written. Recording a fact for a
    (person, category, key) that already has an active version marks the old
    version superseded and links it to the new one. Nothing is ever deleted
    and values are never edited, so the full history stays recoverable.
    """

    def __init__(self, store: KnowledgeStore) -> None:
        self.store = store

    def record_fact(
        self,
        person_id: str,
        category: FactCategory,
        key: str,
        value: str,
        metadata: FactMetadata | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Fact:
        """Record a new version of a fact about a person.

        Args:
            person_id: Owner of the fact.
            category: Fact category, matched exactly.
            key: Fact key, matched case-insensitively.
            value: The new value.
            metadata: Source touchpoint, date, progression and confidence.
            conn: Open transaction to join, if any.

        Returns:
            The newly stored, active fact.
        """
        metadata = metadata or FactMetadata()
        fact = Fact(
            id=new_id(),
            person_id=person_id,
            category=category,
            key=key,
            value=value,
            source_touchpoint_id=metadata.source_touchpoint_id,
            fact_date=metadata.fact_date,
            is_time_sensitive=metadata.is_time_sensitive,
            time_progression=metadata.time_progression,
            extracted_at=metadata.extracted_at,
            confidence=metadata.confidence,
        )

        with self.store.use_transaction(conn) as c:
            existing = self._find_active(c, person_id, category, key)
            # Supersede first so the active-version index never sees two rows
            if existing is not None:
                c.execute(
                    """
                    UPDATE facts SET is_superseded = 1, superseded_by = ?
                    WHERE id = ?
                    """,
                    (fact.id, existing["id"]),
                )
            c.execute(
                """
                INSERT INTO facts
                    (id, person_id, source_touchpoint_id, category, key, value,
                     fact_date, is_time_sensitive, time_progression,
                     is_superseded, superseded_by, extracted_at, confidence)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)
                """,
                (
                    fact.id,
                    fact.person_id,
                    fact.source_touchpoint_id,
                    fact.category.value,
                    fact.key,
                    fact.value,
                    to_db_time(fact.fact_date),
                    int(fact.is_time_sensitive),
                    fact.time_progression.value if fact.time_progression else None,
                    to_db_time(fact.extracted_at),
                    fact.confidence,
                ),
            )
        return fact

    def get(self, fact_id: str) -> Fact:
        """Get a fact by id.

        Raises:
            NotFoundError: If no such fact exists.
        """
        rows = self.store.query("SELECT * FROM facts WHERE id = ?", (fact_id,))
        if not rows:
            raise NotFoundError(f"Fact not found: {fact_id}")
        return self._row_to_fact(rows[0])

    def active_facts(self, person_id: str) -> list[Fact]:
        """Current version of every fact about a person."""
        rows = self.store.query(
            """
            SELECT * FROM facts
            WHERE person_id = ? AND is_superseded = 0
            ORDER BY category, lower(key)
            """,
            (person_id,),
        )
        return [self._row_to_fact(row) for row in rows]

    def all_facts(self, person_id: str) -> list[Fact]:
        """Every fact version about a person, oldest first."""
        rows = self.store.query(
            "SELECT * FROM facts WHERE person_id = ? ORDER BY extracted_at, rowid",
            (person_id,),
        )
        return [self._row_to_fact(row) for row in rows]

    def history(self, person_id: str, category: FactCategory, key: str) -> list[Fact]:
        """All versions of one fact, newest first."""
        rows = self.store.query(
            """
            SELECT * FROM facts
            WHERE person_id = ? AND category = ?
            ORDER BY extracted_at DESC, rowid DESC
            """,
            (person_id, category.value),
        )
        wanted = key.lower()
        return [self._row_to_fact(row) for row in rows if row["key"].lower() == wanted]

    def facts_for_touchpoint(self, touchpoint_id: str) -> list[Fact]:
        """Facts extracted from a given touchpoint, in write order."""
        rows = self.store.query(
            """
            SELECT * FROM facts
            WHERE source_touchpoint_id = ? ORDER BY extracted_at, rowid
            """,
            (touchpoint_id,),
        )
        return [self._row_to_fact(row) for row in rows]

    def _find_active(
        self,
        conn: sqlite3.Connection,
        person_id: str,
        category: FactCategory,
        key: str,
    ) -> sqlite3.Row | None:
        """Find the active version for (person, category, key)."""
        rows = conn.execute(
            """
            SELECT id, key FROM facts
            WHERE person_id = ? AND category = ? AND is_superseded = 0
            """,
            (person_id, category.value),
        ).fetchall()
        wanted = key.lower()
        for row in rows:
            if row["key"].lower() == wanted:
                return row
        return None

    def _row_to_fact(self, row: sqlite3.Row) -> Fact:
        """Convert a database row to a Fact."""
        return Fact(
            id=row["id"],
            person_id=row["person_id"],
            source_touchpoint_id=row["source_touchpoint_id"],
            category=FactCategory(row["category"]),
            key=row["key"],
            value=row["value"],
            fact_date=date.fromisoformat(row["fact_date"]) if row["fact_date"] else None,
            is_time_sensitive=bool(row["is_time_sensitive"]),
            time_progression=(
                TimeProgression(row["time_progression"])
                if row["time_progression"]
                else None
            ),
            is_superseded=bool(row["is_superseded"]),
            superseded_by=row["superseded_by"],
            extracted_at=datetime.fromisoformat(row["extracted_at"]),
            confidence=row["confidence"],
        )
