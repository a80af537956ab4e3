"""Repository layer: CRUD operations and queries for the UI-facing store."""

import uuid
from typing import Optional

from .connection import DatabaseConnection
from .models import (
    ActivityRecord,
    Calendar,
    Completion,
    Habit,
    RemovedKey,
    UserProfile,
)


def new_local_uuid() -> str:
    return str(uuid.uuid4())


class Repository:
    """Provides all database operations for the application.

    Every delete writes a tombstone in the same transaction so a later
    pull cannot bring the row back.
    """

    def __init__(self, db: DatabaseConnection):
        self.db = db

    # ── Calendars ───────────────────────────────────────────────

    def get_all_calendars(self, owner: Optional[str] = None,
                          include_unowned: bool = True) -> list[Calendar]:
        if owner is None:
            rows = self.db.execute(
                "SELECT * FROM calendars ORDER BY position, id"
            )
        else:
            rows = self.db.execute(
                "SELECT * FROM calendars "
                "WHERE owner_principal = ? OR (? AND owner_principal IS NULL) "
                "ORDER BY position, id",
                (owner, int(include_unowned)),
            )
        return [Calendar(**dict(r)) for r in rows]

    def get_calendar_by_uuid(self, local_uuid: str) -> Optional[Calendar]:
        rows = self.db.execute(
            "SELECT * FROM calendars WHERE local_uuid = ?", (local_uuid,)
        )
        return Calendar(**dict(rows[0])) if rows else None

    def create_calendar(self, calendar: Calendar) -> int:
        if not calendar.local_uuid:
            calendar.local_uuid = new_local_uuid()
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO calendars (local_uuid, owner_principal, name, "
                "color_theme, position, is_enabled, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (calendar.local_uuid, calendar.owner_principal, calendar.name,
                 calendar.color_theme, calendar.position, calendar.is_enabled,
                 calendar.created_at, calendar.updated_at),
            )
            calendar.id = cursor.lastrowid
            return cursor.lastrowid

    def update_calendar(self, calendar: Calendar):
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE calendars SET name = ?, color_theme = ?, position = ?, "
                "is_enabled = ?, updated_at = ? WHERE local_uuid = ?",
                (calendar.name, calendar.color_theme, calendar.position,
                 calendar.is_enabled, calendar.updated_at,
                 calendar.local_uuid),
            )

    def delete_calendar(self, local_uuid: str,
                        deleted_at: int) -> list[RemovedKey]:
        """Delete a calendar with its habits and their completions.

        Returns the keys actually removed, children first.
        """
        removed = []
        with self.db.get_connection() as conn:
            habit_rows = conn.execute(
                "SELECT local_uuid FROM habits WHERE calendar_uuid = ?",
                (local_uuid,),
            ).fetchall()
            for habit in habit_rows:
                removed.extend(
                    self._delete_habit_tree(conn, habit["local_uuid"], deleted_at)
                )
            key = self._delete_row(conn, "calendars", local_uuid, deleted_at)
            if key:
                removed.append(key)
        return removed

    # ── Habits ──────────────────────────────────────────────────

    def get_habits_for_calendar(self, calendar_uuid: str) -> list[Habit]:
        rows = self.db.execute(
            "SELECT * FROM habits WHERE calendar_uuid = ? "
            "ORDER BY position, id",
            (calendar_uuid,),
        )
        return [Habit(**dict(r)) for r in rows]

    def get_habit_by_uuid(self, local_uuid: str) -> Optional[Habit]:
        rows = self.db.execute(
            "SELECT * FROM habits WHERE local_uuid = ?", (local_uuid,)
        )
        return Habit(**dict(rows[0])) if rows else None

    def create_habit(self, habit: Habit) -> int:
        if not habit.local_uuid:
            habit.local_uuid = new_local_uuid()
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO habits (local_uuid, owner_principal, "
                "calendar_uuid, name, description, habit_type, timer_enabled, "
                "target_duration_seconds, points_value, position, is_enabled, "
                "created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (habit.local_uuid, habit.owner_principal, habit.calendar_uuid,
                 habit.name, habit.description, habit.habit_type,
                 habit.timer_enabled, habit.target_duration_seconds,
                 habit.points_value, habit.position, habit.is_enabled,
                 habit.created_at, habit.updated_at),
            )
            habit.id = cursor.lastrowid
            return cursor.lastrowid

    def update_habit(self, habit: Habit):
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE habits SET calendar_uuid = ?, name = ?, "
                "description = ?, habit_type = ?, timer_enabled = ?, "
                "target_duration_seconds = ?, points_value = ?, position = ?, "
                "is_enabled = ?, updated_at = ? WHERE local_uuid = ?",
                (habit.calendar_uuid, habit.name, habit.description,
                 habit.habit_type, habit.timer_enabled,
                 habit.target_duration_seconds, habit.points_value,
                 habit.position, habit.is_enabled, habit.updated_at,
                 habit.local_uuid),
            )

    def delete_habit(self, local_uuid: str,
                     deleted_at: int) -> list[RemovedKey]:
        """Delete a habit and its completions."""
        with self.db.get_connection() as conn:
            return self._delete_habit_tree(conn, local_uuid, deleted_at)

    def _delete_habit_tree(self, conn, habit_uuid: str,
                           deleted_at: int) -> list[RemovedKey]:
        removed = []
        completion_rows = conn.execute(
            "SELECT local_uuid FROM completions WHERE habit_uuid = ?",
            (habit_uuid,),
        ).fetchall()
        for row in completion_rows:
            key = self._delete_row(conn, "completions", row["local_uuid"], deleted_at)
            if key:
                removed.append(key)
        key = self._delete_row(conn, "habits", habit_uuid, deleted_at)
        if key:
            removed.append(key)
        return removed

    # ── Completions ─────────────────────────────────────────────

    def get_completions_for_habit(self, habit_uuid: str,
                                  start: int = None,
                                  end: int = None) -> list[Completion]:
        sql = "SELECT * FROM completions WHERE habit_uuid = ?"
        params: list = [habit_uuid]
        if start is not None:
            sql += " AND completed_at >= ?"
            params.append(start)
        if end is not None:
            sql += " AND completed_at < ?"
            params.append(end)
        sql += " ORDER BY completed_at"
        rows = self.db.execute(sql, tuple(params))
        return [Completion(**dict(r)) for r in rows]

    def get_completion_by_uuid(self, local_uuid: str) -> Optional[Completion]:
        rows = self.db.execute(
            "SELECT * FROM completions WHERE local_uuid = ?", (local_uuid,)
        )
        return Completion(**dict(rows[0])) if rows else None

    def create_completion(self, completion: Completion) -> int:
        if not completion.local_uuid:
            completion.local_uuid = new_local_uuid()
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO completions (local_uuid, owner_principal, "
                "habit_uuid, completed_at, client_updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (completion.local_uuid, completion.owner_principal,
                 completion.habit_uuid, completion.completed_at,
                 completion.client_updated_at),
            )
            completion.id = cursor.lastrowid
            return cursor.lastrowid

    def delete_completion(self, local_uuid: str,
                          deleted_at: int) -> Optional[RemovedKey]:
        with self.db.get_connection() as conn:
            return self._delete_row(conn, "completions", local_uuid, deleted_at)

    def delete_latest_completion_for_day(self, habit_uuid: str,
                                         day_start: int, day_end: int,
                                         deleted_at: int) -> Optional[RemovedKey]:
        """Remove the most recent completion inside [day_start, day_end).

        Returns the removed key, or None if there was none.
        """
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT local_uuid FROM completions "
                "WHERE habit_uuid = ? AND completed_at >= ? AND completed_at < ? "
                "ORDER BY completed_at DESC, id DESC LIMIT 1",
                (habit_uuid, day_start, day_end),
            ).fetchone()
            if row is None:
                return None
            return self._delete_row(conn, "completions", row["local_uuid"], deleted_at)

    # ── Activity history ────────────────────────────────────────

    def get_activity_for_date(self, owner: Optional[str],
                              date: str) -> Optional[ActivityRecord]:
        rows = self.db.execute(
            "SELECT * FROM activity_history "
            "WHERE COALESCE(owner_principal, '') = COALESCE(?, '') AND date = ?",
            (owner, date),
        )
        return ActivityRecord(**dict(rows[0])) if rows else None

    def get_activity_history(self, owner: Optional[str] = None) -> list[ActivityRecord]:
        rows = self.db.execute(
            "SELECT * FROM activity_history "
            "WHERE COALESCE(owner_principal, '') = COALESCE(?, '') "
            "ORDER BY date DESC",
            (owner,),
        )
        return [ActivityRecord(**dict(r)) for r in rows]

    def record_activity(self, owner: Optional[str], date: str,
                        opened_at: int) -> ActivityRecord:
        """Upsert the (owner, date) activity record.

        An existing row keeps its first ``opened_at`` but gets a fresh
        correlation key and timestamp, so the next push replaces the
        remote row for that day.
        """
        fresh_uuid = new_local_uuid()
        with self.db.transaction() as conn:
            existing = conn.execute(
                "SELECT * FROM activity_history "
                "WHERE COALESCE(owner_principal, '') = COALESCE(?, '') "
                "AND date = ?",
                (owner, date),
            ).fetchone()
            if existing is None:
                cursor = conn.execute(
                    "INSERT INTO activity_history (local_uuid, owner_principal, "
                    "date, opened_at, client_updated_at) VALUES (?, ?, ?, ?, ?)",
                    (fresh_uuid, owner, date, opened_at, opened_at),
                )
                return ActivityRecord(
                    id=cursor.lastrowid, local_uuid=fresh_uuid,
                    owner_principal=owner, date=date, opened_at=opened_at,
                    client_updated_at=opened_at,
                )
            updated_at = max(opened_at, existing["client_updated_at"] + 1)
            conn.execute(
                "UPDATE activity_history SET local_uuid = ?, "
                "client_updated_at = ? WHERE id = ?",
                (fresh_uuid, updated_at, existing["id"]),
            )
            record = ActivityRecord(**dict(existing))
            record.local_uuid = fresh_uuid
            record.client_updated_at = updated_at
            return record

    def delete_activity(self, local_uuid: str,
                        deleted_at: int) -> Optional[RemovedKey]:
        with self.db.get_connection() as conn:
            return self._delete_row(conn, "activity_history", local_uuid, deleted_at)

    # ── User profile ────────────────────────────────────────────

    def get_user_profile(self) -> Optional[UserProfile]:
        rows = self.db.execute("SELECT * FROM user_profile WHERE id = 1")
        return UserProfile(**dict(rows[0])) if rows else None

    def ensure_user_profile(self, now: int) -> UserProfile:
        """Create the singleton profile on first launch."""
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO user_profile "
                "(id, first_opened_at, created_at, updated_at) "
                "VALUES (1, ?, ?, ?)",
                (now, now, now),
            )
        return self.get_user_profile()

    def mark_profile_synced(self, principal: str, now: int):
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE user_profile SET synced_principal = ?, "
                "owner_principal = COALESCE(owner_principal, ?), "
                "updated_at = ? WHERE id = 1",
                (principal, principal, now),
            )

    # ── Tombstones & deletion queue ─────────────────────────────

    def is_tombstoned(self, entity_type: str, local_uuid: str) -> bool:
        rows = self.db.execute(
            "SELECT 1 FROM tombstones WHERE entity_type = ? AND local_uuid = ?",
            (entity_type, local_uuid),
        )
        return bool(rows)

    def _delete_row(self, conn, table: str, local_uuid: str,
                    deleted_at: int) -> Optional[RemovedKey]:
        """Delete one row and tombstone its key, even if it was absent."""
        row = conn.execute(
            f"SELECT owner_principal FROM {table} WHERE local_uuid = ?",  # noqa: S608
            (local_uuid,),
        ).fetchone()
        conn.execute(
            f"DELETE FROM {table} WHERE local_uuid = ?",  # noqa: S608
            (local_uuid,),
        )
        conn.execute(
            "INSERT OR REPLACE INTO tombstones (entity_type, local_uuid, "
            "deleted_at) VALUES (?, ?, ?)",
            (table, local_uuid, deleted_at),
        )
        if row is None:
            return None
        return RemovedKey(table, local_uuid, row["owner_principal"])
