"""Data models for the database layer.

Timestamps are integer epoch milliseconds throughout.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Calendar:
    id: Optional[int] = None
    local_uuid: str = ""
    owner_principal: Optional[str] = None
    name: str = ""
    color_theme: str = "indigo"
    position: int = 0
    is_enabled: int = 1
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Habit:
    id: Optional[int] = None
    local_uuid: str = ""
    owner_principal: Optional[str] = None
    calendar_uuid: str = ""
    name: str = ""
    description: Optional[str] = None
    habit_type: str = "positive"  # 'positive' or 'negative'
    timer_enabled: int = 0
    target_duration_seconds: Optional[int] = None
    points_value: Optional[int] = 0
    position: int = 0
    is_enabled: int = 1
    created_at: int = 0
    updated_at: int = 0

    @property
    def is_negative(self) -> bool:
        return self.habit_type == "negative"


@dataclass
class Completion:
    id: Optional[int] = None
    local_uuid: str = ""
    owner_principal: Optional[str] = None
    habit_uuid: str = ""
    completed_at: int = 0
    client_updated_at: int = 0


@dataclass
class ActivityRecord:
    id: Optional[int] = None
    local_uuid: str = ""
    owner_principal: Optional[str] = None
    date: str = ""  # YYYY-MM-DD, local calendar day
    opened_at: int = 0
    client_updated_at: int = 0


@dataclass
class UserProfile:
    id: int = 1
    owner_principal: Optional[str] = None
    first_opened_at: Optional[int] = None
    # Principal whose remote profile has already received first_opened_at
    synced_principal: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class DeletionEntry:
    id: Optional[int] = None
    entity_type: str = ""
    local_uuid: str = ""
    # Whose remote partition the delete belongs to; None for rows that
    # were never owned
    principal: Optional[str] = None
    queued_at: int = 0
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True)
class RemovedKey:
    """A row removed by a local delete, with the owner it had."""

    entity_type: str
    local_uuid: str
    owner_principal: Optional[str] = None
