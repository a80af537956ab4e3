"""Tests for the in-memory reference remote store."""

import pytest

from habit_sync.remote.memory import InMemoryBackend
from habit_sync.sync.errors import (
    RateLimitedError,
    RemoteProtocolError,
    TransientNetworkError,
    UnauthenticatedError,
)
from habit_sync.sync.results import UpsertOutcome

P = "user-1"


def _cal(uuid, ts, name="Cal", color="indigo"):
    return {"localUuid": uuid, "name": name, "colorTheme": color,
            "position": 0, "isEnabled": True, "createdAt": ts, "updatedAt": ts}


def _activity(uuid, date, ts):
    return {"localUuid": uuid, "date": date, "openedAt": ts, "clientUpdatedAt": ts}


class TestUpsert:
    def test_create_then_unchanged(self, backend):
        first = backend.batch_upsert(P, "calendars", [_cal("c1", 100)])
        again = backend.batch_upsert(P, "calendars", [_cal("c1", 100)])
        assert first[0].outcome == UpsertOutcome.CREATED
        assert again[0].outcome == UpsertOutcome.UNCHANGED
        assert len(backend.items(P, "calendars")) == 1

    def test_last_write_wins(self, backend):
        backend.batch_upsert(P, "calendars", [_cal("c1", 200, name="new")])
        older = backend.batch_upsert(P, "calendars", [_cal("c1", 100, name="old")])
        assert older[0].outcome == UpsertOutcome.UNCHANGED
        assert backend.items(P, "calendars")[0]["name"] == "new"

        newer = backend.batch_upsert(P, "calendars", [_cal("c1", 300, name="newest")])
        assert newer[0].outcome == UpsertOutcome.UPDATED
        assert backend.items(P, "calendars")[0]["name"] == "newest"

    def test_tenants_are_isolated(self, backend):
        backend.batch_upsert(P, "calendars", [_cal("c1", 100)])
        assert backend.items("user-2", "calendars") == []

    def test_calendar_color_normalized(self, backend):
        backend.batch_upsert(P, "calendars", [_cal("c1", 100, color="Blue-600")])
        assert backend.items(P, "calendars")[0]["colorTheme"] == "blue"

    def test_missing_local_uuid_rejected(self, backend):
        with pytest.raises(RemoteProtocolError):
            backend.batch_upsert(P, "calendars", [{"name": "x"}])

    def test_unknown_entity_rejected(self, backend):
        with pytest.raises(RemoteProtocolError):
            backend.batch_upsert(P, "widgets", [_cal("c1", 1)])


class TestActivityByDate:
    def test_newer_write_replaces_row_for_date(self, backend):
        backend.batch_upsert(P, "activity_history", [_activity("a1", "2024-01-01", 100)])
        result = backend.batch_upsert(P, "activity_history",
                                      [_activity("a2", "2024-01-01", 200)])
        assert result[0].outcome == UpsertOutcome.UPDATED
        items = backend.items(P, "activity_history")
        assert [i["localUuid"] for i in items] == ["a2"]

    def test_older_write_for_date_ignored(self, backend):
        backend.batch_upsert(P, "activity_history", [_activity("a2", "2024-01-01", 200)])
        result = backend.batch_upsert(P, "activity_history",
                                      [_activity("a1", "2024-01-01", 100)])
        assert result[0].outcome == UpsertOutcome.UNCHANGED
        assert [i["localUuid"] for i in backend.items(P, "activity_history")] == ["a2"]

    def test_dedupe_keeps_latest(self, backend):
        backend.insert_raw(P, "activity_history", _activity("a1", "2024-01-01", 100))
        backend.insert_raw(P, "activity_history", _activity("a2", "2024-01-01", 300))
        backend.insert_raw(P, "activity_history", _activity("a3", "2024-01-01", 200))
        backend.insert_raw("user-2", "activity_history", _activity("b1", "2024-01-01", 5))

        assert backend.dedupe_activity_history() == 2
        assert [i["localUuid"] for i in backend.items(P, "activity_history")] == ["a2"]
        assert len(backend.items("user-2", "activity_history")) == 1


class TestListSince:
    def test_filters_by_server_timestamp(self, backend, clock):
        backend.batch_upsert(P, "calendars", [_cal("c1", 1)])
        clock.advance(1000)
        since = clock()
        backend.batch_upsert(P, "calendars", [_cal("c2", 2)])

        page = backend.list_since(P, "calendars", since, 10)
        assert [i["localUuid"] for i in page.items] == ["c2"]
        assert page.items[0]["serverUpdatedAt"] == since
        assert page.next_cursor is None

    def test_paginates_with_cursor(self, backend):
        backend.batch_upsert(P, "calendars", [_cal(f"c{i}", i) for i in range(5)])
        seen = []
        cursor = None
        pages = 0
        while True:
            page = backend.list_since(P, "calendars", 0, 2, cursor)
            seen.extend(i["localUuid"] for i in page.items)
            pages += 1
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
        assert seen == [f"c{i}" for i in range(5)]
        assert pages == 3

    def test_bad_cursor(self, backend):
        with pytest.raises(RemoteProtocolError):
            backend.list_since(P, "calendars", 0, 10, "not-a-cursor")


class TestRateLimit:
    def test_creates_beyond_limit_are_refused(self, clock):
        backend = InMemoryBackend(clock=clock, rate_limit=2)
        with pytest.raises(RateLimitedError) as exc:
            backend.batch_upsert(P, "calendars", [_cal(f"c{i}", i) for i in range(4)])
        assert [r.local_uuid for r in exc.value.applied] == ["c0", "c1"]
        assert exc.value.retry_after == 60.0
        assert len(backend.items(P, "calendars")) == 2

    def test_updates_do_not_count(self, clock):
        backend = InMemoryBackend(clock=clock, rate_limit=1)
        backend.batch_upsert(P, "calendars", [_cal("c1", 1)])
        result = backend.batch_upsert(P, "calendars", [_cal("c1", 2)])
        assert result[0].outcome == UpsertOutcome.UPDATED

    def test_window_resets(self, clock):
        backend = InMemoryBackend(clock=clock, rate_limit=1)
        backend.batch_upsert(P, "calendars", [_cal("c1", 1)])
        with pytest.raises(RateLimitedError):
            backend.batch_upsert(P, "calendars", [_cal("c2", 1)])
        clock.advance(60_000)
        backend.batch_upsert(P, "calendars", [_cal("c2", 1)])
        assert len(backend.items(P, "calendars")) == 2


class TestDeleteAndProfile:
    def test_delete_is_idempotent(self, backend):
        backend.batch_upsert(P, "habits", [{"localUuid": "h1", "updatedAt": 1}])
        assert backend.delete(P, "habits", "h1") is True
        assert backend.delete(P, "habits", "h1") is False

    def test_first_opened_at_first_write_wins(self, backend):
        assert backend.get_profile(P) is None
        assert backend.set_first_opened_at_if_missing(P, 100) is True
        assert backend.set_first_opened_at_if_missing(P, 50) is False
        assert backend.get_profile(P)["firstOpenedAt"] == 100


class TestFailures:
    def test_offline_raises_transient(self, backend):
        backend.offline = True
        with pytest.raises(TransientNetworkError):
            backend.list_since(P, "calendars", 0, 10)

    def test_missing_principal(self, backend):
        with pytest.raises(UnauthenticatedError):
            backend.delete("", "habits", "h1")

    def test_calls_are_counted(self, backend):
        backend.list_since(P, "calendars", 0, 10)
        backend.delete(P, "habits", "x")
        assert backend.total_calls == 2
        assert backend.calls["delete"] == 1
