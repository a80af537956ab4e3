"""Persisted per-(entity type, principal) sync watermarks."""

from habit_sync.database.connection import DatabaseConnection


class WatermarkStore:
    """Reads and advances ``sync_metadata`` rows.

    A missing row means the principal never completed a sync of that
    entity type, i.e. the next sync is an initial import.
    """

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def get(self, entity_type: str, principal: str) -> int:
        rows = self.db.execute(
            "SELECT last_successful_sync_at FROM sync_metadata "
            "WHERE entity_type = ? AND principal = ?",
            (entity_type, principal),
        )
        return rows[0]["last_successful_sync_at"] if rows else 0

    def advance(self, entity_type: str, principal: str, value: int) -> int:
        """Move the watermark forward to ``value``; never moves it back."""
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT INTO sync_metadata "
                "(entity_type, principal, last_successful_sync_at) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(entity_type, principal) DO UPDATE SET "
                "last_successful_sync_at = MAX(last_successful_sync_at, "
                "excluded.last_successful_sync_at)",
                (entity_type, principal, value),
            )
        return self.get(entity_type, principal)

    def all_for(self, principal: str) -> dict[str, int]:
        rows = self.db.execute(
            "SELECT entity_type, last_successful_sync_at FROM sync_metadata "
            "WHERE principal = ?",
            (principal,),
        )
        return {r["entity_type"]: r["last_successful_sync_at"] for r in rows}

    def reset(self, principal: str, entity_type: str = None):
        """Forget watermarks so the next sync re-imports from the server."""
        with self.db.get_connection() as conn:
            if entity_type is None:
                conn.execute(
                    "DELETE FROM sync_metadata WHERE principal = ?", (principal,)
                )
            else:
                conn.execute(
                    "DELETE FROM sync_metadata "
                    "WHERE principal = ? AND entity_type = ?",
                    (principal, entity_type),
                )
