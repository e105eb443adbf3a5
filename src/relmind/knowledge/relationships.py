"""Directed, deduplicated relationship edges between persons."""

import sqlite3
from datetime import datetime

from ..models import PersonRelationship, RelationshipSource
from .store import KnowledgeStore, to_db_time


class RelationshipGraph:
    """Relationship edges keyed by the directed (person, related person) pair.

    The first edge written for a pair wins. Later calls for the same pair
    are no-ops even when they carry a different relationship type.
    """

    def __init__(self, store: KnowledgeStore) -> None:
        self.store = store

    def create_or_skip(
        self,
        person_id: str,
        related_person_id: str,
        relationship_type: str,
        source: RelationshipSource = RelationshipSource.MANUAL,
        conn: sqlite3.Connection | None = None,
    ) -> PersonRelationship | None:
        """Create an edge unless one already exists for the pair.

        Args:
            person_id: Origin of the edge.
            related_person_id: Target of the edge.
            relationship_type: Free-text type, stored lowercased.
            source: How the relationship was discovered.
            conn: Open transaction to join, if any.

        Returns:
            The new edge, or None if the pair already had one.
        """
        relationship = PersonRelationship(
            person_id=person_id,
            related_person_id=related_person_id,
            relationship_type=relationship_type.strip().lower(),
            source=source,
        )
        with self.store.use_transaction(conn) as c:
            existing = c.execute(
                """
                SELECT id FROM relationships
                WHERE person_id = ? AND related_person_id = ?
                """,
                (person_id, related_person_id),
            ).fetchone()
            if existing is not None:
                return None
            c.execute(
                """
                INSERT INTO relationships
                    (id, person_id, related_person_id, relationship_type, source, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    relationship.id,
                    relationship.person_id,
                    relationship.related_person_id,
                    relationship.relationship_type,
                    relationship.source.value,
                    to_db_time(relationship.created_at),
                ),
            )
        return relationship

    def relationships_for(self, person_id: str) -> list[PersonRelationship]:
        """Outgoing edges of a person, oldest first."""
        rows = self.store.query(
            """
            SELECT * FROM relationships
            WHERE person_id = ? ORDER BY created_at, rowid
            """,
            (person_id,),
        )
        return [self._row_to_relationship(row) for row in rows]

    def _row_to_relationship(self, row: sqlite3.Row) -> PersonRelationship:
        return PersonRelationship(
            id=row["id"],
            person_id=row["person_id"],
            related_person_id=row["related_person_id"],
            relationship_type=row["relationship_type"],
            source=RelationshipSource(row["source"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
