"""Sync orchestrator: runs one full sync cycle across all entity types."""

import logging
import threading
from collections import deque
from typing import Callable, Optional

from habit_sync.config import Config
from habit_sync.database.connection import DatabaseConnection
from habit_sync.database.repository import Repository
from habit_sync.remote.adapter import RemoteStoreAdapter
from habit_sync.remote.base import RemoteBackend
from habit_sync.sync.deletion_queue import DeletionQueue
from habit_sync.sync.entities import ENTITY_SPECS
from habit_sync.sync.errors import (
    ConflictInvariantViolation,
    RateLimitedError,
    SyncError,
    UnauthenticatedError,
)
from habit_sync.sync.identity import IdentityGate
from habit_sync.sync.local_store import LocalStoreAdapter
from habit_sync.sync.profile import ProfileSynchronizer
from habit_sync.sync.results import (
    DrainResult,
    EntityResult,
    SyncPhase,
    SyncReport,
    SyncStatus,
)
from habit_sync.sync.synchronizer import EntitySynchronizer
from habit_sync.sync.watermarks import WatermarkStore
from habit_sync.utils.constants import SYNC_HISTORY_LIMIT
from habit_sync.utils.formatters import format_time_ago, now_ms

logger = logging.getLogger(__name__)

# error_kind for a child type skipped because its parent type failed
PARENT_FAILED = "parent_failed"


class SyncOrchestrator:
    """Owns the single-flight guard and the fixed synchronizer order.

    ``full_sync()`` never raises; every failure ends up in the returned
    ``SyncReport``.
    """

    def __init__(
        self,
        db: DatabaseConnection,
        backend: RemoteBackend,
        gate: IdentityGate,
        clock: Callable[[], int] = now_ms,
        auth_timeout: float = None,
        page_size: int = None,
        batch_size: int = None,
        skew_epsilon_ms: int = None,
    ):
        self.db = db
        self.gate = gate
        self.clock = clock
        self.auth_timeout = (
            Config.AUTH_READY_TIMEOUT_SECONDS if auth_timeout is None else auth_timeout
        )
        self.skew_epsilon_ms = (
            Config.CLOCK_SKEW_EPSILON_MS if skew_epsilon_ms is None else skew_epsilon_ms
        )
        batch_size = batch_size or Config.PUSH_BATCH_SIZE

        self.repo = Repository(db)
        self.remote = RemoteStoreAdapter(
            backend, gate, page_size=page_size or Config.PULL_PAGE_SIZE
        )
        self.watermarks = WatermarkStore(db)
        self.deletions = DeletionQueue(db, clock)
        self.local_stores = {
            spec.entity_type: LocalStoreAdapter(db, spec, clock)
            for spec in ENTITY_SPECS
        }
        self.profile_sync = ProfileSynchronizer(self.repo, self.remote, clock)
        self.synchronizers = [
            EntitySynchronizer(
                spec, self.local_stores[spec.entity_type], self.remote,
                self.watermarks, clock=clock, batch_size=batch_size,
            )
            for spec in ENTITY_SPECS
        ] + [self.profile_sync]

        self._lock = threading.Lock()
        self.phase = SyncPhase.IDLE
        self.last_report: Optional[SyncReport] = None
        self._history: deque = deque(maxlen=SYNC_HISTORY_LIMIT)

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    # ── Full sync ───────────────────────────────────────────────

    def full_sync(self) -> SyncReport:
        """Run one complete cycle, or report why it did not run."""
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            now = self.clock()
            return SyncReport(
                status=SyncStatus.ALREADY_IN_PROGRESS,
                started_at=now, finished_at=now,
                message="sync already in progress",
            )
        try:
            report = self._run_cycle()
            self.last_report = report
            self._history.append(report)
            return report
        finally:
            self.phase = SyncPhase.IDLE
            self._lock.release()

    def _run_cycle(self) -> SyncReport:
        started_at = self.clock()
        if not self.gate.await_ready(self.auth_timeout):
            logger.info("Sync skipped: not authenticated")
            return SyncReport(
                status=SyncStatus.SKIPPED, started_at=started_at,
                finished_at=self.clock(), message="not authenticated",
            )
        principal = self.gate.current_principal()
        if principal is None:
            return SyncReport(
                status=SyncStatus.SKIPPED, started_at=started_at,
                finished_at=self.clock(), message="not authenticated",
            )

        logger.info(f"Sync started for {principal}")
        report = SyncReport(
            status=SyncStatus.SUCCESS, principal=principal, started_at=started_at,
        )

        self.phase = SyncPhase.DRAINING_DELETIONS
        try:
            report.deletions = self.deletions.drain(self.remote, principal)
        except Exception as e:
            logger.exception("Deletion drain failed")
            report.deletions = DrainResult(errors=[str(e)], aborted=True)

        if report.deletions.aborted:
            report.status = SyncStatus.FAILED
            report.message = "deletion drain aborted"
            report.finished_at = self.clock()
            logger.warning(f"Sync aborted for {principal}: {report.deletions.errors}")
            return report

        abort_reason = None
        failed = set()
        for sync in self.synchronizers:
            if abort_reason is not None:
                report.entities[sync.entity_type] = EntityResult(
                    entity_type=sync.entity_type, success=False,
                    error=abort_reason, error_kind=UnauthenticatedError.kind,
                )
                continue
            if sync.parent_type in failed:
                # Children of a failed parent would only be held back
                logger.warning(
                    f"{sync.entity_type}: skipped, {sync.parent_type} did not sync"
                )
                report.entities[sync.entity_type] = EntityResult(
                    entity_type=sync.entity_type, success=False,
                    error=f"{sync.parent_type} did not sync",
                    error_kind=PARENT_FAILED,
                )
                failed.add(sync.entity_type)
                continue
            self.phase = SyncPhase.PULLING
            result = self._run_entity(sync, principal)
            report.entities[sync.entity_type] = result
            if not result.success:
                failed.add(sync.entity_type)
            if result.error_kind == UnauthenticatedError.kind:
                abort_reason = result.error

        report.status = self._overall_status(report)
        report.finished_at = self.clock()
        logger.info(
            f"Sync finished for {principal}: {report.status.value}"
            + (f" (failed: {', '.join(report.failed_entities())})"
               if report.failed_entities() else "")
        )
        return report

    def _run_entity(self, sync, principal: str) -> EntityResult:
        try:
            return sync.run(principal)
        except ConflictInvariantViolation as e:
            logger.exception(
                f"{sync.entity_type}: local invariant violated for {principal}"
            )
            error, kind = str(e), e.kind
        except RateLimitedError as e:
            logger.warning(
                f"{sync.entity_type}: rate limited (retry after {e.retry_after}s)"
            )
            error, kind = str(e), e.kind
        except SyncError as e:
            logger.warning(f"{sync.entity_type}: sync failed ({e.kind}): {e}")
            error, kind = str(e), e.kind
        except Exception as e:
            logger.exception(f"{sync.entity_type}: unexpected sync error")
            error, kind = str(e), "unexpected"

        result = sync.last_result or EntityResult(entity_type=sync.entity_type)
        result.success = False
        result.error = error
        result.error_kind = kind
        if sync.failed_phase is not None:
            result.failed_phase = sync.failed_phase.value
        sync.reset()
        return result

    @staticmethod
    def _overall_status(report: SyncReport) -> SyncStatus:
        results = list(report.entities.values())
        ok = [r.success for r in results]
        held_back = any(r.orphaned for r in results)
        if all(ok) and not held_back and not (
                report.deletions and report.deletions.errors):
            return SyncStatus.SUCCESS
        if not any(ok):
            return SyncStatus.FAILED
        return SyncStatus.PARTIAL

    # ── Change detection ────────────────────────────────────────

    def has_local_changes(self, principal: Optional[str] = None) -> bool:
        """True when something local has not reached the remote yet.

        A never-synced entity type counts as changed so the first sync
        after sign-in always runs.
        """
        principal = principal or self.gate.current_principal()
        if not principal:
            return False
        if self.deletions.count(principal):
            return True
        for entity_type, local in self.local_stores.items():
            watermark = self.watermarks.get(entity_type, principal)
            if watermark == 0:
                return True
            if local.last_mutated_at(principal) > watermark + self.skew_epsilon_ms:
                return True
        return self.profile_sync.has_local_changes(principal)

    # ── Diagnostics ─────────────────────────────────────────────

    def get_sync_status(self) -> dict:
        """Current sync status information."""
        principal = self.gate.current_principal()
        last = self.last_report
        return {
            "principal": principal,
            "is_syncing": self.is_syncing,
            "phase": self.phase.value,
            "last_status": last.status.value if last else None,
            "last_sync": format_time_ago(last.finished_at if last else None,
                                         self.clock()),
            "pending_deletions": self.deletions.count(principal),
            "watermarks": self.watermarks.all_for(principal) if principal else {},
        }

    def get_sync_history(self, limit: int = 20) -> list[SyncReport]:
        """Most recent reports, newest first."""
        return list(reversed(self._history))[:limit]
