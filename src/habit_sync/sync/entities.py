"""Per-entity sync configuration.

Each synced table is described once by an ``EntitySpec``; the generic
synchronizer and the local store adapter are driven entirely by it.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from habit_sync.sync.errors import RemoteProtocolError
from habit_sync.utils.colors import normalize_calendar_color
from habit_sync.utils.constants import (
    ENTITY_ACTIVITY,
    ENTITY_CALENDARS,
    ENTITY_COMPLETIONS,
    ENTITY_HABITS,
)


@dataclass(frozen=True)
class ParentRef:
    """A child column holding the correlation key of a parent row."""

    column: str
    table: str


@dataclass(frozen=True)
class EntitySpec:
    entity_type: str
    table: str
    # (local column, remote key) pairs; always includes local_uuid
    fields: tuple[tuple[str, str], ...]
    timestamp_field: str
    natural_key: tuple[str, ...] = ()
    bool_fields: frozenset = frozenset()
    parent: Optional[ParentRef] = None
    normalize: Optional[Callable[[dict], dict]] = None

    @property
    def columns(self) -> list[str]:
        return [local for local, _ in self.fields]

    def natural_key_of(self, record: dict) -> tuple:
        """Key under which two records describe the same logical row."""
        if self.natural_key:
            return tuple(record.get(k) for k in self.natural_key)
        return (record["local_uuid"],)

    def to_remote(self, row: dict) -> dict:
        item = {}
        for local, remote in self.fields:
            value = row.get(local)
            if local in self.bool_fields and value is not None:
                value = bool(value)
            item[remote] = value
        return item

    def from_remote(self, item: dict, principal: Optional[str]) -> dict:
        """Convert a remote item into a local record owned by ``principal``."""
        if not isinstance(item, dict):
            raise RemoteProtocolError(
                f"{self.entity_type}: expected an object, got {type(item).__name__}"
            )
        required = {"local_uuid", self.timestamp_field, *self.natural_key}
        record = {}
        for local, remote in self.fields:
            value = item.get(remote)
            if value is None and local in required:
                raise RemoteProtocolError(
                    f"{self.entity_type}: remote item missing '{remote}'"
                )
            if local in self.bool_fields and value is not None:
                value = int(bool(value))
            record[local] = value
        record["owner_principal"] = principal
        if self.normalize is not None:
            record = self.normalize(record)
        return record


def _normalize_calendar(record: dict) -> dict:
    record["color_theme"] = normalize_calendar_color(record.get("color_theme"))
    return record


def _normalize_activity(record: dict) -> dict:
    if record.get("opened_at") is None:
        record["opened_at"] = record["client_updated_at"]
    return record


CALENDAR_SPEC = EntitySpec(
    entity_type=ENTITY_CALENDARS,
    table="calendars",
    fields=(
        ("local_uuid", "localUuid"),
        ("name", "name"),
        ("color_theme", "colorTheme"),
        ("position", "position"),
        ("is_enabled", "isEnabled"),
        ("created_at", "createdAt"),
        ("updated_at", "updatedAt"),
    ),
    timestamp_field="updated_at",
    bool_fields=frozenset({"is_enabled"}),
    normalize=_normalize_calendar,
)

HABIT_SPEC = EntitySpec(
    entity_type=ENTITY_HABITS,
    table="habits",
    fields=(
        ("local_uuid", "localUuid"),
        ("calendar_uuid", "calendarId"),
        ("name", "name"),
        ("description", "description"),
        ("habit_type", "type"),
        ("timer_enabled", "timerEnabled"),
        ("target_duration_seconds", "targetDurationSeconds"),
        ("points_value", "pointsValue"),
        ("position", "position"),
        ("is_enabled", "isEnabled"),
        ("created_at", "createdAt"),
        ("updated_at", "updatedAt"),
    ),
    timestamp_field="updated_at",
    bool_fields=frozenset({"timer_enabled", "is_enabled"}),
    parent=ParentRef(column="calendar_uuid", table="calendars"),
)

COMPLETION_SPEC = EntitySpec(
    entity_type=ENTITY_COMPLETIONS,
    table="completions",
    fields=(
        ("local_uuid", "localUuid"),
        ("habit_uuid", "habitId"),
        ("completed_at", "completedAt"),
        ("client_updated_at", "clientUpdatedAt"),
    ),
    timestamp_field="client_updated_at",
    parent=ParentRef(column="habit_uuid", table="habits"),
)

ACTIVITY_SPEC = EntitySpec(
    entity_type=ENTITY_ACTIVITY,
    table="activity_history",
    fields=(
        ("local_uuid", "localUuid"),
        ("date", "date"),
        ("opened_at", "openedAt"),
        ("client_updated_at", "clientUpdatedAt"),
    ),
    timestamp_field="client_updated_at",
    natural_key=("date",),
    normalize=_normalize_activity,
)

# Sync order: parents before children
ENTITY_SPECS = [CALENDAR_SPEC, HABIT_SPEC, COMPLETION_SPEC, ACTIVITY_SPEC]
