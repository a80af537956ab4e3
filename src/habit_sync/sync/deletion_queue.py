"""Durable queue of local deletions awaiting remote confirmation."""

import logging
from typing import Callable, Optional

from habit_sync.database.connection import DatabaseConnection
from habit_sync.database.models import DeletionEntry
from habit_sync.sync.errors import SyncError, UnauthenticatedError
from habit_sync.sync.results import DrainResult
from habit_sync.utils.formatters import now_ms

logger = logging.getLogger(__name__)


class DeletionQueue:
    """Entries stay queued until the remote confirms the delete.

    "Already absent" on the remote counts as confirmed. Each entry is
    tagged with the principal whose remote data it targets and is only
    drained while that principal is signed in. Entries without a
    principal belong to rows that were never owned and drain for anyone.
    """

    def __init__(self, db: DatabaseConnection,
                 clock: Callable[[], int] = now_ms):
        self.db = db
        self.clock = clock

    def enqueue(self, entity_type: str, local_uuid: str,
                principal: Optional[str] = None):
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO deletion_queue "
                "(entity_type, local_uuid, principal, queued_at) "
                "VALUES (?, ?, ?, ?)",
                (entity_type, local_uuid, principal, self.clock()),
            )

    def pending(self, principal: Optional[str] = None) -> list[DeletionEntry]:
        """Queued entries in order; all of them when principal is None."""
        if principal is None:
            rows = self.db.execute(
                "SELECT * FROM deletion_queue ORDER BY queued_at, id"
            )
        else:
            rows = self.db.execute(
                "SELECT * FROM deletion_queue "
                "WHERE principal = ? OR principal IS NULL "
                "ORDER BY queued_at, id",
                (principal,),
            )
        return [DeletionEntry(**dict(r)) for r in rows]

    def count(self, principal: Optional[str] = None) -> int:
        if principal is None:
            rows = self.db.execute("SELECT COUNT(*) AS cnt FROM deletion_queue")
        else:
            rows = self.db.execute(
                "SELECT COUNT(*) AS cnt FROM deletion_queue "
                "WHERE principal = ? OR principal IS NULL",
                (principal,),
            )
        return rows[0]["cnt"]

    def remove(self, entry_id: int):
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM deletion_queue WHERE id = ?", (entry_id,))

    def drain(self, remote, principal: Optional[str] = None) -> DrainResult:
        """Send the queued deletes for ``principal``; confirmed entries are removed.

        An authentication failure stops the drain, leaving the rest queued.
        """
        result = DrainResult()
        entries = self.pending(principal)
        for index, entry in enumerate(entries):
            try:
                existed = remote.delete_by_correlation_key(
                    entry.entity_type, entry.local_uuid
                )
            except UnauthenticatedError as e:
                result.errors.append(str(e))
                result.aborted = True
                result.remaining = len(entries) - index
                logger.warning(f"Deletion drain aborted: {e}")
                return result
            except SyncError as e:
                self._record_failure(entry, str(e))
                result.errors.append(
                    f"{entry.entity_type}/{entry.local_uuid}: {e}"
                )
                result.remaining += 1
                continue
            self.remove(entry.id)
            result.confirmed += 1
            if not existed:
                logger.debug(
                    f"{entry.entity_type}/{entry.local_uuid} already absent remotely"
                )
        if entries:
            logger.info(
                f"Deletion drain: {result.confirmed} confirmed, "
                f"{result.remaining} remaining"
            )
        return result

    def _record_failure(self, entry: DeletionEntry, error: str):
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE deletion_queue SET attempts = attempts + 1, "
                "last_error = ? WHERE id = ?",
                (error, entry.id),
            )
