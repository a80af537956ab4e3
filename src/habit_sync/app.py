"""Application entry point: wires the sync engine and runs the scheduler."""

import argparse
import json
import logging
import signal
import sys

from PySide6.QtCore import QCoreApplication

from habit_sync.config import Config
from habit_sync.database.connection import DatabaseConnection
from habit_sync.database.repository import Repository
from habit_sync.database.schema import initialize_database
from habit_sync.remote.http_backend import HttpBackend
from habit_sync.sync.identity import IdentityGate, SessionIdentityProvider
from habit_sync.sync.orchestrator import SyncOrchestrator
from habit_sync.sync.scheduler import SyncScheduler
from habit_sync.utils.constants import APP_NAME, APP_ORGANIZATION, APP_VERSION
from habit_sync.utils.formatters import now_ms

logger = logging.getLogger(__name__)


def _parse_args(argv):
    parser = argparse.ArgumentParser(prog="habit-sync", description=APP_NAME)
    parser.add_argument("--once", action="store_true",
                        help="run one full sync, print the report and exit")
    parser.add_argument("--principal", help="signed-in user id")
    parser.add_argument("--token", help="session token for the remote store")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {APP_VERSION}")
    return parser.parse_args(argv)


def build_engine(db: DatabaseConnection, provider: SessionIdentityProvider):
    """Create the orchestrator backed by the configured RPC endpoint."""
    backend = HttpBackend(
        Config.REMOTE_BASE_URL,
        token_provider=provider.token,
        timeout=Config.REMOTE_TIMEOUT_SECONDS,
        device_id=Config.get_device_id(),
    )
    gate = IdentityGate(provider)
    return SyncOrchestrator(db, backend, gate), backend


def main(argv=None) -> int:
    """Launch the sync engine."""
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize database
    db = DatabaseConnection(Config.DATABASE_PATH)
    initialize_database(db)
    Repository(db).ensure_user_profile(now_ms())

    provider = SessionIdentityProvider()
    orchestrator, backend = build_engine(db, provider)
    if args.principal:
        provider.sign_in(args.principal, args.token or "")

    if args.once:
        try:
            report = orchestrator.full_sync()
        finally:
            backend.close()
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return 0 if report.success else 1

    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName(APP_NAME)
    app.setOrganizationName(APP_ORGANIZATION)
    app.setApplicationVersion(APP_VERSION)

    scheduler = SyncScheduler(orchestrator)
    scheduler.attach(provider)
    scheduler.sync_succeeded.connect(
        lambda r: logger.info(f"Sync succeeded at {r.finished_at}")
    )
    scheduler.sync_failed.connect(
        lambda r: logger.warning(f"Sync {r.status.value}: {r.failed_entities()}")
    )
    if provider.get_current_principal():
        scheduler.on_signed_in()

    # Let Ctrl+C stop the event loop
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    app.aboutToQuit.connect(scheduler.shutdown)

    try:
        return app.exec()
    finally:
        backend.close()


if __name__ == "__main__":
    sys.exit(main())
