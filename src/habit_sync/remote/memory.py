"""In-process reference implementation of the remote store.

Implements the server side of the contract: per-tenant partitions indexed
by ``(principal, localUuid)``, server-side last-write-wins, activity
upsert-by-date, calendar color normalization, a windowed create limit and
monotonically increasing ``serverUpdatedAt`` stamps used for incremental
listing. Used by tests and for running the engine without a server.
"""

import logging
import threading
import time
from collections import Counter
from typing import Callable, Optional

from habit_sync.sync.errors import (
    RateLimitedError,
    RemoteProtocolError,
    TransientNetworkError,
    UnauthenticatedError,
)
from habit_sync.sync.results import RemotePage, UpsertOutcome, UpsertResult
from habit_sync.utils.colors import normalize_calendar_color
from habit_sync.utils.constants import (
    ENTITY_ACTIVITY,
    ENTITY_CALENDARS,
    ENTITY_COMPLETIONS,
    ENTITY_HABITS,
    RATE_LIMIT_CREATES,
    RATE_LIMIT_WINDOW_SECONDS,
)

logger = logging.getLogger(__name__)

# Remote field used for last-write-wins, per entity type
_CONFLICT_KEYS = {
    ENTITY_CALENDARS: "updatedAt",
    ENTITY_HABITS: "updatedAt",
    ENTITY_COMPLETIONS: "clientUpdatedAt",
    ENTITY_ACTIVITY: "clientUpdatedAt",
}


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class InMemoryBackend:
    """Thread-safe in-memory remote store."""

    def __init__(self, clock: Callable[[], int] = _wall_clock_ms,
                 rate_limit: int = RATE_LIMIT_CREATES,
                 rate_window_seconds: int = RATE_LIMIT_WINDOW_SECONDS):
        self.clock = clock
        self.rate_limit = rate_limit
        self.rate_window_seconds = rate_window_seconds
        self.calls: Counter = Counter()
        self.offline = False
        self._lock = threading.RLock()
        self._seq = 0
        # (principal, entity_type) -> {localUuid: item}
        self._tables: dict[tuple[str, str], dict[str, dict]] = {}
        self._profiles: dict[str, dict] = {}
        # (principal, action, window_start) -> count
        self._rate_counters: Counter = Counter()

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    # ── Contract ────────────────────────────────────────────────

    def list_since(self, principal: str, entity_type: str, since: int,
                   page_size: int, cursor: Optional[str] = None) -> RemotePage:
        self._enter("list_since", principal, entity_type)
        with self._lock:
            after = self._parse_cursor(cursor)
            rows = sorted(
                (item for item in self._table(principal, entity_type).values()
                 if item["serverUpdatedAt"] >= since and item["_seq"] > after),
                key=lambda item: item["_seq"],
            )
            page = rows[:page_size]
            next_cursor = str(page[-1]["_seq"]) if len(rows) > page_size else None
            return RemotePage(
                items=[self._public(item) for item in page],
                next_cursor=next_cursor,
            )

    def batch_upsert(self, principal: str, entity_type: str,
                     items: list[dict]) -> list[UpsertResult]:
        self._enter("batch_upsert", principal, entity_type)
        results = []
        with self._lock:
            for item in items:
                if not item.get("localUuid"):
                    raise RemoteProtocolError(f"{entity_type}: item without localUuid")
                table = self._table(principal, entity_type)
                existing = self._match(table, entity_type, item)
                if existing is None and not self._take_create_slot(principal, entity_type):
                    logger.warning(
                        f"Rate limit hit for {principal} on {entity_type} "
                        f"after {len(results)} item(s)"
                    )
                    raise RateLimitedError(
                        f"Rate limit exceeded for {entity_type}.create",
                        retry_after=float(self.rate_window_seconds),
                        applied=results,
                    )
                results.append(self._apply(table, entity_type, item, existing))
            if entity_type == ENTITY_ACTIVITY:
                self._dedupe_partition(self._table(principal, entity_type))
        return results

    def delete(self, principal: str, entity_type: str, local_uuid: str) -> bool:
        self._enter("delete", principal, entity_type)
        with self._lock:
            return self._table(principal, entity_type).pop(local_uuid, None) is not None

    def get_profile(self, principal: str) -> Optional[dict]:
        self._enter("get_profile", principal)
        with self._lock:
            profile = self._profiles.get(principal)
            return dict(profile) if profile else None

    def set_first_opened_at_if_missing(self, principal: str, ts: int) -> bool:
        self._enter("set_first_opened_at_if_missing", principal)
        with self._lock:
            profile = self._profiles.setdefault(principal, {"firstOpenedAt": None})
            if profile.get("firstOpenedAt") is not None:
                return False
            profile["firstOpenedAt"] = ts
            profile["serverUpdatedAt"] = self.clock()
            return True

    # ── Maintenance ─────────────────────────────────────────────

    def dedupe_activity_history(self) -> int:
        """Collapse activity rows to one per (principal, date), all tenants."""
        removed = 0
        with self._lock:
            for (_, entity_type), table in self._tables.items():
                if entity_type == ENTITY_ACTIVITY:
                    removed += self._dedupe_partition(table)
        if removed:
            logger.info(f"Activity dedupe removed {removed} duplicate row(s)")
        return removed

    def items(self, principal: str, entity_type: str) -> list[dict]:
        """Snapshot of a partition, for inspection."""
        with self._lock:
            return [self._public(i) for i in self._table(principal, entity_type).values()]

    def insert_raw(self, principal: str, entity_type: str, item: dict):
        """Write an item bypassing merge rules (seeding and fault injection)."""
        with self._lock:
            stored = dict(item)
            self._stamp(stored)
            self._table(principal, entity_type)[stored["localUuid"]] = stored

    # ── Internals ───────────────────────────────────────────────

    def _enter(self, op: str, principal: str, entity_type: str = None):
        self.calls[op] += 1
        if self.offline:
            raise TransientNetworkError(f"{op}: remote unreachable")
        if not principal:
            raise UnauthenticatedError(f"{op}: no principal")
        if entity_type is not None and entity_type not in _CONFLICT_KEYS:
            raise RemoteProtocolError(f"Unknown entity type: {entity_type}")

    def _table(self, principal: str, entity_type: str) -> dict[str, dict]:
        return self._tables.setdefault((principal, entity_type), {})

    def _match(self, table: dict, entity_type: str, item: dict) -> Optional[dict]:
        existing = table.get(item["localUuid"])
        if existing is None and entity_type == ENTITY_ACTIVITY:
            for candidate in table.values():
                if candidate.get("date") == item.get("date"):
                    return candidate
        return existing

    def _apply(self, table: dict, entity_type: str, item: dict,
               existing: Optional[dict]) -> UpsertResult:
        stored = dict(item)
        stored.pop("serverUpdatedAt", None)
        if entity_type == ENTITY_CALENDARS:
            color = normalize_calendar_color(stored.get("colorTheme"))
            if color != stored.get("colorTheme"):
                logger.warning(
                    f"Normalized colorTheme '{stored.get('colorTheme')}' -> '{color}'"
                )
            stored["colorTheme"] = color

        if existing is None:
            self._stamp(stored)
            table[stored["localUuid"]] = stored
            return UpsertResult(stored["localUuid"], UpsertOutcome.CREATED)

        key = _CONFLICT_KEYS[entity_type]
        if (stored.get(key) or 0) <= (existing.get(key) or 0):
            return UpsertResult(stored["localUuid"], UpsertOutcome.UNCHANGED)

        # Activity rows may be re-keyed by a newer write for the same date
        table.pop(existing["localUuid"], None)
        self._stamp(stored)
        table[stored["localUuid"]] = stored
        return UpsertResult(stored["localUuid"], UpsertOutcome.UPDATED)

    def _stamp(self, stored: dict):
        self._seq += 1
        stored["_seq"] = self._seq
        stored["serverUpdatedAt"] = self.clock()

    def _take_create_slot(self, principal: str, entity_type: str) -> bool:
        now_s = self.clock() // 1000
        window = self.rate_window_seconds
        window_start = now_s - (now_s % window) if window > 0 else now_s
        key = (principal, f"{entity_type}.create", window_start)
        if self._rate_counters[key] >= self.rate_limit:
            return False
        self._rate_counters[key] += 1
        return True

    @staticmethod
    def _dedupe_partition(table: dict) -> int:
        best: dict[str, dict] = {}
        for item in table.values():
            current = best.get(item.get("date"))
            if current is None or (
                (item.get("clientUpdatedAt") or 0),
                item["_seq"],
            ) > ((current.get("clientUpdatedAt") or 0), current["_seq"]):
                best[item.get("date")] = item
        keep = {item["localUuid"] for item in best.values()}
        losers = [uuid for uuid in table if uuid not in keep]
        for uuid in losers:
            del table[uuid]
        return len(losers)

    @staticmethod
    def _parse_cursor(cursor: Optional[str]) -> int:
        if cursor is None:
            return 0
        try:
            return int(cursor)
        except (TypeError, ValueError) as e:
            raise RemoteProtocolError(f"Invalid cursor: {cursor!r}") from e

    @staticmethod
    def _public(item: dict) -> dict:
        return {k: v for k, v in item.items() if not k.startswith("_")}
