"""Local store adapter: EntitySpec-driven access to one synced SQLite table."""

import logging
import sqlite3
from typing import Callable, Iterable, Optional

from habit_sync.database.connection import DatabaseConnection
from habit_sync.sync.entities import EntitySpec
from habit_sync.sync.errors import ConflictInvariantViolation
from habit_sync.sync.results import UpsertOutcome
from habit_sync.utils.formatters import now_ms

logger = logging.getLogger(__name__)


class LocalStoreAdapter:
    """Reads and merges rows of one entity table.

    Merge writes run inside ``BEGIN IMMEDIATE`` and re-read the target row
    there, so a concurrent UI write can never be lost between the read and
    the write.
    """

    def __init__(self, db: DatabaseConnection, spec: EntitySpec,
                 clock: Callable[[], int] = now_ms):
        self.db = db
        self.spec = spec
        self.clock = clock

    @property
    def _select(self) -> str:
        cols = ", ".join(["id", "owner_principal", *self.spec.columns])
        return f"SELECT {cols} FROM {self.spec.table}"  # noqa: S608

    # ── Reads ───────────────────────────────────────────────────

    def get_by_correlation_key(self, local_uuid: str) -> Optional[dict]:
        rows = self.db.execute(
            f"{self._select} WHERE local_uuid = ?", (local_uuid,)
        )
        return dict(rows[0]) if rows else None

    def list_changed_since(self, watermark: int,
                           principal: Optional[str]) -> list[dict]:
        """Rows changed after ``watermark`` that belong to ``principal``.

        Unowned rows (created while signed out) are included so the first
        push can claim them.
        """
        ts = self.spec.timestamp_field
        rows = self.db.execute(
            f"{self._select} WHERE {ts} > ? "
            "AND (owner_principal = ? OR owner_principal IS NULL) "
            f"ORDER BY {ts}, id",
            (watermark, principal),
        )
        return [dict(r) for r in rows]

    def last_mutated_at(self, principal: Optional[str]) -> int:
        """Latest write or delete visible to ``principal``."""
        ts = self.spec.timestamp_field
        rows = self.db.execute(
            f"SELECT MAX({ts}) AS m FROM {self.spec.table} "  # noqa: S608
            "WHERE owner_principal = ? OR owner_principal IS NULL",
            (principal,),
        )
        latest = rows[0]["m"] or 0
        rows = self.db.execute(
            "SELECT MAX(deleted_at) AS m FROM tombstones WHERE entity_type = ?",
            (self.spec.entity_type,),
        )
        return max(latest, rows[0]["m"] or 0)

    def tombstoned(self, local_uuids: Iterable[str]) -> set[str]:
        keys = list(local_uuids)
        found = set()
        # Stay well under SQLite's bound-parameter limit
        for start in range(0, len(keys), 500):
            chunk = keys[start:start + 500]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self.db.execute(
                "SELECT local_uuid FROM tombstones WHERE entity_type = ? "
                f"AND local_uuid IN ({placeholders})",
                (self.spec.entity_type, *chunk),
            )
            found.update(r["local_uuid"] for r in rows)
        return found

    def parent_exists(self, record: dict) -> bool:
        parent = self.spec.parent
        if parent is None:
            return True
        key = record.get(parent.column)
        if not key:
            return False
        rows = self.db.execute(
            f"SELECT 1 FROM {parent.table} WHERE local_uuid = ?",  # noqa: S608
            (key,),
        )
        return bool(rows)

    def parent_tombstoned(self, record: dict) -> bool:
        """True when the record's parent was deleted on this device."""
        parent = self.spec.parent
        key = record.get(parent.column) if parent else None
        if not key:
            return False
        rows = self.db.execute(
            "SELECT 1 FROM tombstones WHERE entity_type = ? AND local_uuid = ?",
            (parent.table, key),
        )
        return bool(rows)

    # ── Writes ──────────────────────────────────────────────────

    def upsert_by_correlation_key(self, record: dict,
                                  force: bool = False) -> UpsertOutcome:
        """Merge one record using last-write-wins.

        With ``force`` (initial import) the incoming record replaces the
        local one regardless of timestamps; identical content is still
        reported as unchanged.
        """
        try:
            with self.db.transaction() as conn:
                existing = self._find_existing(conn, record)
                if existing is None:
                    self._insert(conn, record)
                    return UpsertOutcome.CREATED

                ts = self.spec.timestamp_field
                if not force and record[ts] <= existing[ts]:
                    return UpsertOutcome.UNCHANGED
                if force and self._same_content(existing, record):
                    return UpsertOutcome.UNCHANGED

                self._update(conn, existing["id"], record)
                return UpsertOutcome.UPDATED
        except sqlite3.IntegrityError as e:
            raise ConflictInvariantViolation(
                f"{self.spec.entity_type}: constraint violated merging "
                f"{record.get('local_uuid')} ({e})"
            ) from e

    def delete_by_correlation_key(self, local_uuid: str) -> bool:
        """Delete a row and tombstone its key. Idempotent."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM {self.spec.table} WHERE local_uuid = ?",  # noqa: S608
                (local_uuid,),
            )
            conn.execute(
                "INSERT OR REPLACE INTO tombstones "
                "(entity_type, local_uuid, deleted_at) VALUES (?, ?, ?)",
                (self.spec.entity_type, local_uuid, self.clock()),
            )
            return cursor.rowcount > 0

    def claim_unowned(self, local_uuids: Iterable[str], principal: str) -> int:
        """Stamp ``principal`` on pushed rows that had no owner yet.

        For natural-key entities an owned row for the same key may already
        exist; the one with the greater timestamp survives.
        """
        table = self.spec.table
        ts = self.spec.timestamp_field
        claimed = 0
        with self.db.transaction() as conn:
            for local_uuid in local_uuids:
                row = conn.execute(
                    f"SELECT * FROM {table} "  # noqa: S608
                    "WHERE local_uuid = ? AND owner_principal IS NULL",
                    (local_uuid,),
                ).fetchone()
                if row is None:
                    continue
                if self.spec.natural_key:
                    where = " AND ".join(f"{k} = ?" for k in self.spec.natural_key)
                    rival = conn.execute(
                        f"SELECT id, {ts} FROM {table} "  # noqa: S608
                        f"WHERE owner_principal = ? AND {where}",
                        (principal, *(row[k] for k in self.spec.natural_key)),
                    ).fetchone()
                    if rival is not None:
                        loser = row["id"] if rival[ts] >= row[ts] else rival["id"]
                        conn.execute(
                            f"DELETE FROM {table} WHERE id = ?",  # noqa: S608
                            (loser,),
                        )
                        if loser == row["id"]:
                            continue
                conn.execute(
                    f"UPDATE {table} SET owner_principal = ? WHERE id = ?",  # noqa: S608
                    (principal, row["id"]),
                )
                claimed += 1
        if claimed:
            logger.info(f"Claimed {claimed} unowned {self.spec.entity_type} for {principal}")
        return claimed

    # ── Helpers ─────────────────────────────────────────────────

    def _find_existing(self, conn, record: dict):
        row = conn.execute(
            f"SELECT * FROM {self.spec.table} WHERE local_uuid = ?",  # noqa: S608
            (record["local_uuid"],),
        ).fetchone()
        if row is not None or not self.spec.natural_key:
            return row
        # Same logical day under a different key: prefer the owned row
        where = " AND ".join(f"{k} = ?" for k in self.spec.natural_key)
        return conn.execute(
            f"SELECT * FROM {self.spec.table} WHERE {where} "  # noqa: S608
            "AND (owner_principal = ? OR owner_principal IS NULL) "
            "ORDER BY owner_principal IS NULL, id LIMIT 1",
            (*(record[k] for k in self.spec.natural_key),
             record.get("owner_principal")),
        ).fetchone()

    def _same_content(self, existing, record: dict) -> bool:
        if existing["owner_principal"] != record.get("owner_principal"):
            return False
        return all(existing[c] == record.get(c) for c in self.spec.columns)

    def _insert(self, conn, record: dict):
        cols = ["owner_principal", *self.spec.columns]
        conn.execute(
            f"INSERT INTO {self.spec.table} ({', '.join(cols)}) "  # noqa: S608
            f"VALUES ({', '.join('?' for _ in cols)})",
            tuple(record.get(c) for c in cols),
        )

    def _update(self, conn, row_id: int, record: dict):
        cols = ["owner_principal", *self.spec.columns]
        set_clause = ", ".join(f"{c} = ?" for c in cols)
        conn.execute(
            f"UPDATE {self.spec.table} SET {set_clause} WHERE id = ?",  # noqa: S608
            (*(record.get(c) for c in cols), row_id),
        )
