"""Value types passed between the sync layers."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class SyncPhase(str, Enum):
    IDLE = "idle"
    DRAINING_DELETIONS = "draining_deletions"
    PULLING = "pulling"
    MERGING = "merging"
    PUSHING = "pushing"
    ADVANCING_WATERMARK = "advancing_watermark"
    FAILED = "failed"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    ALREADY_IN_PROGRESS = "already_in_progress"


@dataclass
class UpsertResult:
    local_uuid: str
    outcome: UpsertOutcome


@dataclass
class RemotePage:
    items: list[dict]
    next_cursor: Optional[str] = None


@dataclass
class EntityResult:
    entity_type: str
    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failed_phase: Optional[str] = None
    initial_import: bool = False
    pulled: int = 0
    applied: int = 0
    pushed: int = 0
    skipped: int = 0
    deferred: int = 0
    # Children held back until their parent row arrives
    orphaned: int = 0


@dataclass
class DrainResult:
    confirmed: int = 0
    remaining: int = 0
    errors: list[str] = field(default_factory=list)
    aborted: bool = False


@dataclass
class SyncReport:
    status: SyncStatus
    principal: Optional[str] = None
    started_at: int = 0
    finished_at: int = 0
    deletions: Optional[DrainResult] = None
    entities: dict[str, EntityResult] = field(default_factory=dict)
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    def failed_entities(self) -> list[str]:
        return [name for name, r in self.entities.items() if not r.success]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data
