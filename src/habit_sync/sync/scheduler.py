"""Sync scheduler: runs full syncs on a QTimer in a worker thread."""

import logging
from typing import Optional

from PySide6.QtCore import QObject, QThread, QTimer, Signal

from habit_sync.config import Config
from habit_sync.sync.orchestrator import SyncOrchestrator
from habit_sync.sync.results import SyncReport, SyncStatus

logger = logging.getLogger(__name__)


class SyncWorker(QThread):
    """Runs a single ``full_sync`` in a thread."""

    def __init__(self, orchestrator: SyncOrchestrator):
        super().__init__()
        self.orchestrator = orchestrator
        self.report: Optional[SyncReport] = None

    def run(self):
        # full_sync never raises
        self.report = self.orchestrator.full_sync()


class SyncScheduler(QObject):
    """Owns one periodic timer and at most one running sync worker.

    ``start()`` and ``stop()`` are idempotent. A tick with nothing to push
    makes no remote call at all.
    """

    sync_succeeded = Signal(object)  # SyncReport
    sync_failed = Signal(object)  # SyncReport

    # Identity changes may arrive from any thread
    _identity_changed = Signal(object)

    def __init__(self, orchestrator: SyncOrchestrator,
                 interval_ms: int = None, parent=None):
        super().__init__(parent)
        self.orchestrator = orchestrator
        self._interval_ms = interval_ms or Config.get_sync_interval_ms()
        self._timer = QTimer(self)
        self._timer.timeout.connect(self.tick)
        self._worker: Optional[SyncWorker] = None
        self._unsubscribe = None
        self._identity_changed.connect(self._on_identity_changed)

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def enabled(self) -> bool:
        return self._timer.isActive()

    def is_running(self) -> bool:
        """Check if a sync worker is currently executing."""
        return self._worker is not None

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self):
        if self._timer.isActive():
            return
        self._timer.start(self._interval_ms)
        logger.info(f"Sync scheduler started ({self._interval_ms // 1000}s interval)")

    def stop(self):
        if not self._timer.isActive():
            return
        self._timer.stop()
        logger.info("Sync scheduler stopped")

    def set_interval(self, interval_ms: int):
        self._interval_ms = max(interval_ms, 1)
        if self._timer.isActive():
            self._timer.start(self._interval_ms)

    def attach(self, provider):
        """Follow sign-in / sign-out events of an identity provider."""
        self.detach()
        self._unsubscribe = provider.subscribe(self._identity_changed.emit)

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_signed_in(self):
        self.start()
        self.trigger_now()

    def on_signed_out(self):
        self.stop()

    def shutdown(self, wait_ms: int = 5000):
        """Stop the timer and wait for a running worker to finish."""
        self.detach()
        self.stop()
        if self._worker is not None:
            self._worker.wait(wait_ms)

    # ── Ticks ───────────────────────────────────────────────────

    def tick(self):
        """Timer callback: sync when there is something to push, or when
        the last cycle for this principal did not fully succeed."""
        if self._worker is not None:
            return
        principal = self.orchestrator.gate.current_principal()
        if principal is None:
            return
        if not (self._last_cycle_incomplete(principal)
                or self.orchestrator.has_local_changes()):
            return
        self._run_worker()

    def _last_cycle_incomplete(self, principal: str) -> bool:
        last = self.orchestrator.last_report
        return (last is not None and last.principal == principal
                and last.status in (SyncStatus.PARTIAL, SyncStatus.FAILED))

    def trigger_now(self) -> bool:
        """Start a sync regardless of local changes; False if one is running."""
        if self._worker is not None:
            return False
        self._run_worker()
        return True

    def _run_worker(self):
        worker = SyncWorker(self.orchestrator)
        worker.finished.connect(self._on_worker_finished)
        self._worker = worker
        worker.start()

    def _on_worker_finished(self):
        worker = self._worker
        self._worker = None
        if worker is None:
            return
        worker.wait()
        report = worker.report
        worker.deleteLater()
        if report is None:
            return
        if report.status == SyncStatus.SUCCESS:
            self.sync_succeeded.emit(report)
        elif report.status in (SyncStatus.PARTIAL, SyncStatus.FAILED):
            self.sync_failed.emit(report)

    def _on_identity_changed(self, principal):
        if principal:
            self.on_signed_in()
        else:
            self.on_signed_out()
