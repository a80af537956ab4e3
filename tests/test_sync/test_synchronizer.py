"""Tests for the per-entity pull-merge-push cycle."""

import pytest

from habit_sync.database.models import Calendar
from habit_sync.remote.memory import InMemoryBackend
from habit_sync.sync.errors import RateLimitedError, TransientNetworkError
from habit_sync.sync.orchestrator import SyncOrchestrator
from habit_sync.sync.results import SyncPhase
from habit_sync.sync.synchronizer import SERVER_STAMP, _next_watermark

P = "user-1"


def remote_calendar(uuid, ts, name="Work"):
    return {
        "localUuid": uuid, "name": name, "colorTheme": "indigo",
        "position": 0, "isEnabled": True, "createdAt": 1, "updatedAt": ts,
    }


def remote_habit(uuid, calendar_uuid, ts, name="Run"):
    return {
        "localUuid": uuid, "calendarId": calendar_uuid, "name": name,
        "description": None, "type": "positive", "timerEnabled": False,
        "targetDurationSeconds": None, "pointsValue": 0, "position": 0,
        "isEnabled": True, "createdAt": 1, "updatedAt": ts,
    }


def synchronizer(orchestrator, entity_type):
    for sync in orchestrator.synchronizers:
        if sync.entity_type == entity_type:
            return sync
    raise KeyError(entity_type)


class TestInitialImport:
    def test_remote_overwrites_newer_local(self, orchestrator, store, backend,
                                           repo, clock, signed_in):
        calendar = store.create_calendar("Local name")
        backend.insert_raw(P, "calendars",
                           remote_calendar(calendar.local_uuid, ts=100, name="Server"))
        clock.advance()

        result = synchronizer(orchestrator, "calendars").run(P)

        assert result.initial_import
        assert result.applied == 1
        assert repo.get_calendar_by_uuid(calendar.local_uuid).name == "Server"
        # The record just written by the pull is not echoed back
        assert backend.calls["batch_upsert"] == 0

    def test_watermark_advances_to_cycle_start(self, orchestrator, clock, signed_in):
        started = clock()
        synchronizer(orchestrator, "calendars").run(P)
        assert orchestrator.watermarks.get("calendars", P) == started


class TestIncremental:
    def test_newer_local_wins_and_is_pushed(self, orchestrator, store, backend,
                                            repo, clock, signed_in):
        sync = synchronizer(orchestrator, "calendars")
        calendar = store.create_calendar("Work")
        clock.advance()
        sync.run(P)

        clock.advance()
        store.update_calendar(calendar.local_uuid, name="Local edit")
        backend.insert_raw(P, "calendars", remote_calendar(
            calendar.local_uuid, ts=clock() - 500, name="Stale"
        ))
        clock.advance()

        result = sync.run(P)

        assert not result.initial_import
        assert result.applied == 0
        assert repo.get_calendar_by_uuid(calendar.local_uuid).name == "Local edit"
        assert backend.items(P, "calendars")[0]["name"] == "Local edit"

    def test_newer_remote_wins(self, orchestrator, store, backend, repo,
                               clock, signed_in):
        sync = synchronizer(orchestrator, "calendars")
        calendar = store.create_calendar("Work")
        clock.advance()
        sync.run(P)

        clock.advance()
        backend.insert_raw(P, "calendars", remote_calendar(
            calendar.local_uuid, ts=clock(), name="Other device"
        ))
        clock.advance()

        result = sync.run(P)

        assert result.applied == 1
        assert repo.get_calendar_by_uuid(calendar.local_uuid).name == "Other device"

    def test_pull_follows_every_page(self, orchestrator, backend, repo, signed_in):
        for i in range(120):
            backend.insert_raw(P, "calendars", remote_calendar(f"c{i:03d}", ts=100 + i))

        result = synchronizer(orchestrator, "calendars").run(P)

        assert result.pulled == 120
        assert len(repo.get_all_calendars(P)) == 120
        assert backend.calls["list_since"] == 3


class TestMergeFiltering:
    def test_duplicate_keys_reduced_to_newest(self, orchestrator, backend, repo,
                                              signed_in):
        for uuid, ts in (("a1", 100), ("a2", 300), ("a3", 200)):
            backend.insert_raw(P, "activity_history", {
                "localUuid": uuid, "date": "2024-03-01",
                "openedAt": ts, "clientUpdatedAt": ts,
            })

        result = synchronizer(orchestrator, "activity_history").run(P)

        assert result.pulled == 3
        assert result.skipped == 2
        rows = repo.get_activity_history(P)
        assert [r.local_uuid for r in rows] == ["a2"]

    def test_orphans_held_back_until_parent_arrives(self, orchestrator, backend, repo,
                                                    clock, signed_in, caplog):
        clock.set(5000)
        backend.insert_raw(P, "habits", remote_habit("h1", "c1", ts=100))
        clock.advance()
        habits = synchronizer(orchestrator, "habits")

        result = habits.run(P)

        assert (result.orphaned, result.skipped) == (1, 0)
        assert repo.get_habit_by_uuid("h1") is None
        assert "not present locally yet" in caplog.text
        # Held at the orphan's server stamp so the next pull sees it again
        assert orchestrator.watermarks.get("habits", P) == 5000

        backend.insert_raw(P, "calendars", remote_calendar("c1", ts=100))
        synchronizer(orchestrator, "calendars").run(P)
        clock.advance()
        result = habits.run(P)

        assert result.orphaned == 0
        assert not result.initial_import
        assert repo.get_habit_by_uuid("h1").calendar_uuid == "c1"
        assert orchestrator.watermarks.get("habits", P) == clock()

    def test_children_of_deleted_parent_skipped(self, orchestrator, store, backend,
                                                repo, clock, signed_in):
        calendar = store.create_calendar("Gone")
        store.delete_calendar(calendar.local_uuid)
        backend.insert_raw(P, "habits", remote_habit("h1", calendar.local_uuid, ts=100))
        backend.insert_raw(P, "completions", {
            "localUuid": "x1", "habitId": "h1", "completedAt": 1, "clientUpdatedAt": 100,
        })
        clock.advance()

        habits = synchronizer(orchestrator, "habits").run(P)
        completions = synchronizer(orchestrator, "completions").run(P)

        assert (habits.skipped, habits.orphaned) == (1, 0)
        assert (completions.skipped, completions.orphaned) == (1, 0)
        assert repo.is_tombstoned("habits", "h1")
        assert orchestrator.watermarks.get("completions", P) == clock()

    def test_watermark_hold_uses_oldest_server_stamp(self):
        assert _next_watermark(900, []) == 900
        held = [{SERVER_STAMP: 700}, {SERVER_STAMP: 400}]
        assert _next_watermark(900, held) == 400
        assert _next_watermark(900, [{SERVER_STAMP: None}]) == 1

    def test_tombstoned_keys_not_resurrected(self, orchestrator, store, backend,
                                             repo, clock, signed_in):
        calendar = store.create_calendar("Doomed")
        store.delete_calendar(calendar.local_uuid)
        backend.insert_raw(P, "calendars", remote_calendar(calendar.local_uuid, ts=clock() + 10))

        result = synchronizer(orchestrator, "calendars").run(P)

        assert result.skipped == 1
        assert repo.get_calendar_by_uuid(calendar.local_uuid) is None


class TestPush:
    def test_unowned_rows_claimed_after_push(self, orchestrator, repo, backend,
                                             provider, clock):
        repo.create_calendar(Calendar(local_uuid="c1", name="Offline",
                                      created_at=clock(), updated_at=clock()))
        provider.sign_in(P, "tok")
        clock.advance()

        result = synchronizer(orchestrator, "calendars").run(P)

        assert result.pushed == 1
        assert repo.get_calendar_by_uuid("c1").owner_principal == P
        assert [i["localUuid"] for i in backend.items(P, "calendars")] == ["c1"]

    def test_other_principals_rows_not_pushed(self, orchestrator, repo, backend,
                                              clock, signed_in):
        repo.create_calendar(Calendar(local_uuid="c1", owner_principal="someone",
                                      name="Theirs", created_at=1,
                                      updated_at=clock()))
        clock.advance()

        synchronizer(orchestrator, "calendars").run(P)

        assert backend.items(P, "calendars") == []


class TestFailures:
    def test_offline_leaves_watermark(self, orchestrator, backend, signed_in):
        sync = synchronizer(orchestrator, "calendars")
        backend.offline = True

        with pytest.raises(TransientNetworkError):
            sync.run(P)

        assert orchestrator.watermarks.get("calendars", P) == 0
        assert sync.phase == SyncPhase.FAILED
        assert sync.failed_phase == SyncPhase.PULLING
        sync.reset()
        assert sync.phase == SyncPhase.IDLE

    def test_rate_limit_defers_remainder(self, db, gate, clock, signed_in):
        backend = InMemoryBackend(clock=clock, rate_limit=3)
        orchestrator = SyncOrchestrator(db, backend, gate, clock=clock,
                                        auth_timeout=0.05, batch_size=50)
        repo = orchestrator.repo
        for i in range(5):
            repo.create_calendar(Calendar(local_uuid=f"c{i}", name=f"Cal {i}",
                                          created_at=clock(), updated_at=clock() + i))
        clock.advance()
        sync = synchronizer(orchestrator, "calendars")

        with pytest.raises(RateLimitedError):
            sync.run(P)

        assert sync.last_result.pushed == 3
        assert sync.last_result.deferred == 2
        assert sync.failed_phase == SyncPhase.PUSHING
        assert orchestrator.watermarks.get("calendars", P) == 0
        assert len(backend.items(P, "calendars")) == 3

        sync.reset()
        clock.advance(60_000)
        sync.run(P)
        assert len(backend.items(P, "calendars")) == 5
        assert orchestrator.watermarks.get("calendars", P) > 0
