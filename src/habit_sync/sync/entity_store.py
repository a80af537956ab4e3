"""UI-facing store: local mutations that feed the sync engine."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from habit_sync.database.models import (
    ActivityRecord,
    Calendar,
    Completion,
    Habit,
    RemovedKey,
)
from habit_sync.database.repository import Repository
from habit_sync.remote.adapter import RemoteStoreAdapter
from habit_sync.sync.deletion_queue import DeletionQueue
from habit_sync.sync.errors import SyncError
from habit_sync.sync.identity import IdentityGate
from habit_sync.utils.colors import normalize_calendar_color
from habit_sync.utils.constants import (
    ENTITY_CALENDARS,
    ENTITY_HABITS,
    HABIT_TYPES,
)
from habit_sync.utils.formatters import format_local_date, now_ms

logger = logging.getLogger(__name__)

# Fields the update helpers accept
EDITABLE_FIELDS = {
    ENTITY_CALENDARS: ("name", "color_theme", "position", "is_enabled"),
    ENTITY_HABITS: (
        "calendar_uuid", "name", "description", "habit_type", "timer_enabled",
        "target_duration_seconds", "points_value", "position", "is_enabled",
    ),
}


class EntityStore:
    """Creates, edits and deletes entities on behalf of the UI.

    Every write stamps its conflict timestamp from the client clock and
    the current principal as owner (None while signed out). Deletes are
    sent to the remote straight away when possible and queued otherwise.
    """

    def __init__(self, repo: Repository, gate: IdentityGate,
                 remote: Optional[RemoteStoreAdapter] = None,
                 deletions: Optional[DeletionQueue] = None,
                 clock: Callable[[], int] = now_ms):
        self.repo = repo
        self.gate = gate
        self.remote = remote
        self.clock = clock
        self.deletions = deletions or DeletionQueue(repo.db, clock)

    def _owner(self) -> Optional[str]:
        return self.gate.current_principal()

    # ── Calendars ───────────────────────────────────────────────

    def create_calendar(self, name: str, color_theme: str = None,
                        position: int = None) -> Calendar:
        if not name or not name.strip():
            raise ValueError("Calendar name is required")
        now = self.clock()
        if position is None:
            position = len(self.repo.get_all_calendars(self._owner()))
        calendar = Calendar(
            owner_principal=self._owner(),
            name=name.strip(),
            color_theme=normalize_calendar_color(color_theme),
            position=position,
            created_at=now,
            updated_at=now,
        )
        self.repo.create_calendar(calendar)
        return calendar

    def update_calendar(self, local_uuid: str, **changes) -> Calendar:
        calendar = self.repo.get_calendar_by_uuid(local_uuid)
        if calendar is None:
            raise KeyError(f"Calendar {local_uuid} not found")
        for key, value in changes.items():
            if key not in EDITABLE_FIELDS[ENTITY_CALENDARS]:
                raise TypeError(f"Calendar field not editable: {key}")
            setattr(calendar, key, value)
        calendar.color_theme = normalize_calendar_color(calendar.color_theme)
        calendar.updated_at = self._next_ts(calendar.updated_at)
        self.repo.update_calendar(calendar)
        return calendar

    def delete_calendar(self, local_uuid: str) -> int:
        """Delete a calendar and everything under it."""
        removed = self.repo.delete_calendar(local_uuid, self.clock())
        self._propagate_deletes(removed)
        return len(removed)

    # ── Habits ──────────────────────────────────────────────────

    def create_habit(self, calendar_uuid: str, name: str,
                     habit_type: str = "positive", **fields) -> Habit:
        if habit_type not in HABIT_TYPES:
            raise ValueError(f"Unknown habit type: {habit_type}")
        if self.repo.get_calendar_by_uuid(calendar_uuid) is None:
            raise KeyError(f"Calendar {calendar_uuid} not found")
        now = self.clock()
        habit = Habit(
            owner_principal=self._owner(),
            calendar_uuid=calendar_uuid,
            name=name,
            habit_type=habit_type,
            created_at=now,
            updated_at=now,
        )
        for key, value in fields.items():
            if key not in EDITABLE_FIELDS[ENTITY_HABITS]:
                raise TypeError(f"Unknown habit field: {key}")
            setattr(habit, key, value)
        self.repo.create_habit(habit)
        return habit

    def update_habit(self, local_uuid: str, **changes) -> Habit:
        habit = self.repo.get_habit_by_uuid(local_uuid)
        if habit is None:
            raise KeyError(f"Habit {local_uuid} not found")
        for key, value in changes.items():
            if key not in EDITABLE_FIELDS[ENTITY_HABITS]:
                raise TypeError(f"Habit field not editable: {key}")
            setattr(habit, key, value)
        if habit.habit_type not in HABIT_TYPES:
            raise ValueError(f"Unknown habit type: {habit.habit_type}")
        habit.updated_at = self._next_ts(habit.updated_at)
        self.repo.update_habit(habit)
        return habit

    def delete_habit(self, local_uuid: str) -> int:
        removed = self.repo.delete_habit(local_uuid, self.clock())
        self._propagate_deletes(removed)
        return len(removed)

    # ── Completions ─────────────────────────────────────────────

    def complete_habit(self, habit_uuid: str,
                       completed_at: int = None) -> Completion:
        if self.repo.get_habit_by_uuid(habit_uuid) is None:
            raise KeyError(f"Habit {habit_uuid} not found")
        now = self.clock()
        completion = Completion(
            owner_principal=self._owner(),
            habit_uuid=habit_uuid,
            completed_at=completed_at if completed_at is not None else now,
            client_updated_at=now,
        )
        self.repo.create_completion(completion)
        return completion

    def undo_completion(self, habit_uuid: str, day: str = None) -> bool:
        """Remove the latest completion of ``habit_uuid`` on a local day."""
        now = self.clock()
        day = day or format_local_date(now)
        start = datetime.strptime(day, "%Y-%m-%d")
        day_start = int(start.timestamp() * 1000)
        day_end = int((start + timedelta(days=1)).timestamp() * 1000)
        removed = self.repo.delete_latest_completion_for_day(
            habit_uuid, day_start, day_end, now
        )
        if removed is None:
            return False
        self._propagate_deletes([removed])
        return True

    def delete_completion(self, local_uuid: str) -> bool:
        key = self.repo.delete_completion(local_uuid, self.clock())
        if key is None:
            return False
        self._propagate_deletes([key])
        return True

    # ── Activity ────────────────────────────────────────────────

    def record_activity(self, day: str = None) -> ActivityRecord:
        """Record that the app was opened on ``day`` (default: today)."""
        now = self.clock()
        return self.repo.record_activity(
            self._owner(), day or format_local_date(now), now
        )

    def delete_activity(self, local_uuid: str) -> bool:
        key = self.repo.delete_activity(local_uuid, self.clock())
        if key is None:
            return False
        self._propagate_deletes([key])
        return True

    # ── Deletion propagation ────────────────────────────────────

    def _propagate_deletes(self, removed: list[RemovedKey]):
        """Delete each key remotely, or queue it for its owner's next sync.

        Rows owned by someone other than the signed-in principal are
        always queued; they are sent once that owner signs in again.
        """
        current = self._owner()
        for key in removed:
            principal = key.owner_principal or current
            if principal is not None and principal == current:
                if self._try_remote_delete(key.entity_type, key.local_uuid):
                    continue
            self.deletions.enqueue(key.entity_type, key.local_uuid, principal)

    def _try_remote_delete(self, entity_type: str, local_uuid: str) -> bool:
        if self.remote is None:
            return False
        try:
            self.remote.delete_by_correlation_key(entity_type, local_uuid)
            return True
        except SyncError as e:
            logger.warning(
                f"Remote delete of {entity_type}/{local_uuid} failed, queued: {e}"
            )
            return False

    def _next_ts(self, previous: int) -> int:
        # Conflict timestamps must strictly increase for LWW to pick up edits
        return max(self.clock(), previous + 1)
