"""SQLite storage for persons, touchpoints, facts and relationships."""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from ..errors import NotFoundError
from ..models import InteractionType, Person, PersonSource, Touchpoint, utc_now

SCHEMA = """
CREATE TABLE IF NOT EXISTS persons (
    id                   TEXT PRIMARY KEY,
    first_name           TEXT NOT NULL,
    last_name            TEXT NOT NULL DEFAULT '',
    source               TEXT NOT NULL,
    external_contact_id  TEXT UNIQUE,
    created_at           TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS touchpoints (
    id                 TEXT PRIMARY KEY,
    raw_note           TEXT NOT NULL,
    summary            TEXT,
    interaction_type   TEXT NOT NULL,
    occurred_at        TEXT NOT NULL,
    created_at         TEXT NOT NULL,
    primary_person_id  TEXT REFERENCES persons(id)
);

CREATE TABLE IF NOT EXISTS touchpoint_mentions (
    touchpoint_id  TEXT NOT NULL REFERENCES touchpoints(id),
    person_id      TEXT NOT NULL REFERENCES persons(id),
    position       INTEGER NOT NULL,
    PRIMARY KEY (touchpoint_id, person_id)
);

CREATE TABLE IF NOT EXISTS facts (
    id                    TEXT PRIMARY KEY,
    person_id             TEXT NOT NULL REFERENCES persons(id),
    source_touchpoint_id  TEXT REFERENCES touchpoints(id),
    category              TEXT NOT NULL,
    key                   TEXT NOT NULL,
    value                 TEXT NOT NULL,
    fact_date             TEXT,
    is_time_sensitive     INTEGER NOT NULL DEFAULT 0,
    time_progression      TEXT,
    is_superseded         INTEGER NOT NULL DEFAULT 0,
    superseded_by         TEXT REFERENCES facts(id) DEFERRABLE INITIALLY DEFERRED,
    extracted_at          TEXT NOT NULL,
    confidence            REAL NOT NULL DEFAULT 1.0
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_facts_active
    ON facts(person_id, category, lower(key)) WHERE is_superseded = 0;
CREATE INDEX IF NOT EXISTS idx_facts_touchpoint ON facts(source_touchpoint_id);

CREATE TABLE IF NOT EXISTS relationships (
    id                 TEXT PRIMARY KEY,
    person_id          TEXT NOT NULL REFERENCES persons(id),
    related_person_id  TEXT NOT NULL REFERENCES persons(id),
    relationship_type  TEXT NOT NULL,
    source             TEXT NOT NULL,
    created_at         TEXT NOT NULL,
    UNIQUE(person_id, related_person_id)
);
"""


def to_db_time(value: datetime | date | None) -> str | None:
    """Serialize a date or datetime for storage.

    Aware datetimes are converted to UTC so stored values sort as text.
    """
    if value is None:
        return None
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


@dataclass(frozen=True)
class ContactStats:
    """How often and how recently a person was contacted."""

    person: Person
    touchpoint_count: int
    last_contacted_at: datetime | None


@dataclass(frozen=True)
class Insights:
    """Registry-wide activity counters.

    Attributes:
        people: Number of persons in the registry.
        interactions: Number of touchpoints.
        active_contacts: Distinct primary persons with at least one touchpoint.
        this_week: Touchpoints that occurred in the last 7 days.
    """

    people: int
    interactions: int
    active_contacts: int
    this_week: int


class KnowledgeStore:
    """Persistent storage for the knowledge graph using SQLite.

    Also serves as the person registry: `list_persons` reads the whole
    registry and `add_person` appends to it. Multi-entity writes go through
    `transaction()`, which commits everything or nothing.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._write_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode, transactions are opened explicitly
            self._conn = sqlite3.connect(self.db_path, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        conn = self._get_connection()
        conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of writes as one atomic unit.

        Rolls back and re-raises on any exception.
        """
        conn = self._get_connection()
        with self._write_lock:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    @contextmanager
    def use_transaction(
        self, conn: sqlite3.Connection | None
    ) -> Iterator[sqlite3.Connection]:
        """Join the caller's transaction, or open a new one if there is none."""
        if conn is not None:
            yield conn
            return
        with self.transaction() as own:
            yield own

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Run a read-only query and return all rows."""
        return self._get_connection().execute(sql, params).fetchall()

    # Persons

    def add_person(
        self, person: Person, conn: sqlite3.Connection | None = None
    ) -> Person:
        """Append a person to the registry.

        Args:
            person: The person to insert.
            conn: Open transaction to join, if any.

        Returns:
            The stored person.
        """
        with self.use_transaction(conn) as c:
            c.execute(
                """
                INSERT INTO persons
                    (id, first_name, last_name, source, external_contact_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    person.id,
                    person.first_name,
                    person.last_name,
                    person.source.value,
                    person.external_contact_id,
                    to_db_time(person.created_at),
                ),
            )
        return person

    def get_person(self, person_id: str) -> Person:
        """Get a person by id.

        Raises:
            NotFoundError: If no such person exists.
        """
        rows = self.query("SELECT * FROM persons WHERE id = ?", (person_id,))
        if not rows:
            raise NotFoundError(f"Person not found: {person_id}")
        return self._row_to_person(rows[0])

    def list_persons(self) -> list[Person]:
        """Read the whole registry, ordered by name."""
        rows = self.query(
            "SELECT * FROM persons ORDER BY lower(first_name), lower(last_name)"
        )
        return [self._row_to_person(row) for row in rows]

    # Touchpoints

    def save_touchpoint(self, touchpoint: Touchpoint) -> Touchpoint:
        """Persist a new touchpoint with its raw note.

        The raw note is never rewritten afterwards.
        """
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO touchpoints
                    (id, raw_note, summary, interaction_type, occurred_at,
                     created_at, primary_person_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    touchpoint.id,
                    touchpoint.raw_note,
                    touchpoint.summary,
                    touchpoint.interaction_type.value,
                    to_db_time(touchpoint.occurred_at),
                    to_db_time(touchpoint.created_at),
                    touchpoint.primary_person_id,
                ),
            )
            for position, person_id in enumerate(touchpoint.mentioned_person_ids):
                self.link_mentioned_person(touchpoint.id, person_id, conn, position)
        return self.get_touchpoint(touchpoint.id)

    def update_summary(
        self,
        touchpoint_id: str,
        summary: str | None,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """Set the engine-written summary of a touchpoint."""
        with self.use_transaction(conn) as c:
            cursor = c.execute(
                "UPDATE touchpoints SET summary = ? WHERE id = ?",
                (summary, touchpoint_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Touchpoint not found: {touchpoint_id}")

    def link_mentioned_person(
        self,
        touchpoint_id: str,
        person_id: str,
        conn: sqlite3.Connection | None = None,
        position: int | None = None,
    ) -> bool:
        """Add a person to a touchpoint's mentioned people.

        Returns:
            True if the link was added, False if it already existed.
        """
        with self.use_transaction(conn) as c:
            if position is None:
                row = c.execute(
                    "SELECT COUNT(*) FROM touchpoint_mentions WHERE touchpoint_id = ?",
                    (touchpoint_id,),
                ).fetchone()
                position = row[0]
            cursor = c.execute(
                """
                INSERT OR IGNORE INTO touchpoint_mentions (touchpoint_id, person_id, position)
                VALUES (?, ?, ?)
                """,
                (touchpoint_id, person_id, position),
            )
            return cursor.rowcount > 0

    def get_touchpoint(self, touchpoint_id: str) -> Touchpoint:
        """Get a touchpoint by id, with its mentions and extracted facts.

        Raises:
            NotFoundError: If no such touchpoint exists.
        """
        rows = self.query("SELECT * FROM touchpoints WHERE id = ?", (touchpoint_id,))
        if not rows:
            raise NotFoundError(f"Touchpoint not found: {touchpoint_id}")
        return self._row_to_touchpoint(rows[0])

    def list_touchpoints(self, person_id: str) -> list[Touchpoint]:
        """Touchpoints whose primary person is person_id, newest first."""
        rows = self.query(
            """
            SELECT * FROM touchpoints
            WHERE primary_person_id = ?
            ORDER BY occurred_at DESC
            """,
            (person_id,),
        )
        return [self._row_to_touchpoint(row) for row in rows]

    # Contact activity

    def touchpoint_count(self, person_id: str) -> int:
        """Number of touchpoints whose primary person is person_id."""
        rows = self.query(
            "SELECT COUNT(*) FROM touchpoints WHERE primary_person_id = ?",
            (person_id,),
        )
        return rows[0][0]

    def last_contacted_at(self, person_id: str) -> datetime | None:
        """When person_id was last contacted, None if never."""
        rows = self.query(
            "SELECT MAX(occurred_at) FROM touchpoints WHERE primary_person_id = ?",
            (person_id,),
        )
        value = rows[0][0]
        return datetime.fromisoformat(value) if value else None

    def contact_stats(self) -> list[ContactStats]:
        """Every person with touchpoint count and last contact.

        Most recently contacted first, never-contacted persons last.
        """
        rows = self.query(
            """
            SELECT p.*, COUNT(t.id) AS touchpoint_count,
                   MAX(t.occurred_at) AS last_contacted_at
            FROM persons p
            LEFT JOIN touchpoints t ON t.primary_person_id = p.id
            GROUP BY p.id
            ORDER BY last_contacted_at IS NULL, last_contacted_at DESC,
                     lower(p.first_name), lower(p.last_name)
            """
        )
        return [
            ContactStats(
                person=self._row_to_person(row),
                touchpoint_count=row["touchpoint_count"],
                last_contacted_at=(
                    datetime.fromisoformat(row["last_contacted_at"])
                    if row["last_contacted_at"]
                    else None
                ),
            )
            for row in rows
        ]

    def insights(self, now: datetime | None = None) -> Insights:
        """Compute registry-wide activity counters as of `now`."""
        week_ago = to_db_time((now or utc_now()) - timedelta(days=7))
        row = self.query(
            """
            SELECT
                (SELECT COUNT(*) FROM persons) AS people,
                (SELECT COUNT(*) FROM touchpoints) AS interactions,
                (SELECT COUNT(DISTINCT primary_person_id) FROM touchpoints)
                    AS active_contacts,
                (SELECT COUNT(*) FROM touchpoints WHERE occurred_at >= ?)
                    AS this_week
            """,
            (week_ago,),
        )[0]
        return Insights(
            people=row["people"],
            interactions=row["interactions"],
            active_contacts=row["active_contacts"],
            this_week=row["this_week"],
        )

    def _row_to_person(self, row: sqlite3.Row) -> Person:
        """Convert a database row to a Person."""
        return Person(
            id=row["id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            source=PersonSource(row["source"]),
            external_contact_id=row["external_contact_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_touchpoint(self, row: sqlite3.Row) -> Touchpoint:
        """Convert a database row to a Touchpoint."""
        mentioned = self.query(
            """
            SELECT person_id FROM touchpoint_mentions
            WHERE touchpoint_id = ? ORDER BY position
            """,
            (row["id"],),
        )
        facts = self.query(
            """
            SELECT id FROM facts
            WHERE source_touchpoint_id = ? ORDER BY extracted_at, rowid
            """,
            (row["id"],),
        )
        return Touchpoint(
            id=row["id"],
            raw_note=row["raw_note"],
            summary=row["summary"],
            interaction_type=InteractionType(row["interaction_type"]),
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            primary_person_id=row["primary_person_id"],
            mentioned_person_ids=tuple(r["person_id"] for r in mentioned),
            extracted_fact_ids=tuple(r["id"] for r in facts),
        )
