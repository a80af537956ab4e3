"""Shared test fixtures."""

import os
from types import SimpleNamespace

import pytest

# Qt must not need a display for scheduler tests
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from habit_sync.database.connection import DatabaseConnection
from habit_sync.database.repository import Repository
from habit_sync.database.schema import initialize_database
from habit_sync.remote.memory import InMemoryBackend
from habit_sync.sync.entity_store import EntityStore
from habit_sync.sync.identity import IdentityGate, SessionIdentityProvider
from habit_sync.sync.orchestrator import SyncOrchestrator

PRINCIPAL = "user-1"


class FakeClock:
    """Manually advanced epoch-ms clock shared by devices and server."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1000) -> int:
        self.now += ms
        return self.now

    def set(self, value: int) -> int:
        self.now = value
        return self.now


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path):
    """Provide an initialized database connection."""
    conn = DatabaseConnection(db_path)
    initialize_database(conn)
    return conn


@pytest.fixture
def repo(db):
    """Provide a repository with an initialized database."""
    return Repository(db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return InMemoryBackend(clock=clock)


@pytest.fixture
def provider():
    return SessionIdentityProvider()


@pytest.fixture
def gate(provider):
    g = IdentityGate(provider)
    yield g
    g.close()


@pytest.fixture
def signed_in(provider):
    provider.sign_in(PRINCIPAL, "token-1")
    return PRINCIPAL


@pytest.fixture
def orchestrator(db, backend, gate, clock):
    return SyncOrchestrator(
        db, backend, gate, clock=clock,
        auth_timeout=0.05, page_size=50, batch_size=50, skew_epsilon_ms=1000,
    )


@pytest.fixture
def store(repo, gate, orchestrator, clock):
    return EntityStore(
        repo, gate, remote=orchestrator.remote,
        deletions=orchestrator.deletions, clock=clock,
    )


@pytest.fixture
def make_device(tmp_path, backend, clock):
    """Factory for independent devices sharing one remote store."""

    def _make(name: str, principal: str = PRINCIPAL, sign_in: bool = True):
        device_db = DatabaseConnection(tmp_path / f"{name}.db")
        initialize_database(device_db)
        device_provider = SessionIdentityProvider()
        if sign_in:
            device_provider.sign_in(principal, f"token-{name}")
        device_gate = IdentityGate(device_provider)
        device_orchestrator = SyncOrchestrator(
            device_db, backend, device_gate, clock=clock,
            auth_timeout=0.05, page_size=50, batch_size=50,
        )
        device_repo = Repository(device_db)
        return SimpleNamespace(
            name=name,
            db=device_db,
            repo=device_repo,
            provider=device_provider,
            gate=device_gate,
            orchestrator=device_orchestrator,
            store=EntityStore(
                device_repo, device_gate, remote=device_orchestrator.remote,
                deletions=device_orchestrator.deletions, clock=clock,
            ),
        )

    return _make
