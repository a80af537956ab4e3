"""Generic pull-merge-push synchronizer for one entity type.

One cycle for ``(entity type, principal)``:

1. Read the watermark; 0 means this principal never finished a sync of
   the type, so the cycle is an *initial import* and remote records
   overwrite local ones unconditionally. Later cycles use last-write-wins.
2. Pull every remote page changed since the watermark. Records sharing a
   natural key are reduced to the newest before they touch the local
   store. Tombstoned keys, and children of parents deleted locally, are
   skipped. Children whose parent has not arrived yet are held back.
3. Push local rows changed since the watermark, except rows the pull just
   wrote, in batches. Unowned rows are claimed once their batch lands.
4. Advance the watermark to the clock reading taken before the pull, or
   only up to the server stamp of the oldest held-back child so the next
   cycle pulls it again.

Any failure leaves the watermark where it was.
"""

import logging
from typing import Callable, Optional

from habit_sync.remote.adapter import RemoteStoreAdapter
from habit_sync.sync.entities import EntitySpec
from habit_sync.sync.errors import RateLimitedError
from habit_sync.sync.local_store import LocalStoreAdapter
from habit_sync.sync.results import EntityResult, SyncPhase, UpsertOutcome
from habit_sync.sync.watermarks import WatermarkStore
from habit_sync.utils.formatters import now_ms

logger = logging.getLogger(__name__)

# Record key carrying the remote change stamp through the merge
SERVER_STAMP = "server_updated_at"


class EntitySynchronizer:
    """Runs sync cycles for a single ``EntitySpec``."""

    def __init__(self, spec: EntitySpec, local: LocalStoreAdapter,
                 remote: RemoteStoreAdapter, watermarks: WatermarkStore,
                 clock: Callable[[], int] = now_ms,
                 batch_size: int = 100):
        self.spec = spec
        self.local = local
        self.remote = remote
        self.watermarks = watermarks
        self.clock = clock
        self.batch_size = max(batch_size, 1)
        self.phase = SyncPhase.IDLE
        self.failed_phase: Optional[SyncPhase] = None
        self.last_result: Optional[EntityResult] = None

    @property
    def entity_type(self) -> str:
        return self.spec.entity_type

    @property
    def parent_type(self) -> Optional[str]:
        parent = self.spec.parent
        return parent.table if parent else None

    def run(self, principal: str) -> EntityResult:
        """Run one cycle. Raises ``SyncError`` subclasses on failure."""
        self.last_result = result = EntityResult(entity_type=self.entity_type)
        self.failed_phase = None
        try:
            started_at = self.clock()
            watermark = self.watermarks.get(self.entity_type, principal)
            result.initial_import = watermark == 0

            self.phase = SyncPhase.PULLING
            records = self._pull(watermark, principal, result)

            self.phase = SyncPhase.MERGING
            applied, held = self._merge(records, result)

            self.phase = SyncPhase.PUSHING
            self._push(watermark, principal, applied, result)

            self.phase = SyncPhase.ADVANCING_WATERMARK
            self.watermarks.advance(
                self.entity_type, principal, _next_watermark(started_at, held)
            )
        except Exception:
            self.failed_phase = self.phase
            self.phase = SyncPhase.FAILED
            raise
        finally:
            if self.phase != SyncPhase.FAILED:
                self.phase = SyncPhase.IDLE

        logger.info(
            f"{self.entity_type}: pulled {result.pulled}, applied "
            f"{result.applied}, pushed {result.pushed}, skipped {result.skipped}, "
            f"held back {result.orphaned}"
            f"{' (initial import)' if result.initial_import else ''}"
        )
        return result

    def reset(self):
        """Return to IDLE after a failed cycle."""
        self.phase = SyncPhase.IDLE

    # ── Phases ──────────────────────────────────────────────────

    def _pull(self, watermark: int, principal: str,
              result: EntityResult) -> list[dict]:
        records = []
        for page in self.remote.iter_changed_since(self.entity_type, watermark):
            for item in page.items:
                record = self.spec.from_remote(item, principal)
                record[SERVER_STAMP] = item.get("serverUpdatedAt")
                records.append(record)
        result.pulled = len(records)
        return records

    def _reduce(self, records: list[dict]) -> list[dict]:
        """Keep only the newest record per natural key."""
        ts = self.spec.timestamp_field
        newest: dict[tuple, dict] = {}
        for record in records:
            key = self.spec.natural_key_of(record)
            current = newest.get(key)
            if current is None or record[ts] > current[ts]:
                newest[key] = record
        return list(newest.values())

    def _merge(self, records: list[dict],
               result: EntityResult) -> tuple[set[str], list[dict]]:
        force = result.initial_import
        reduced = self._reduce(records)
        result.skipped += len(records) - len(reduced)

        dead = self.local.tombstoned(r["local_uuid"] for r in reduced)
        applied = set()
        held = []
        for record in reduced:
            local_uuid = record["local_uuid"]
            if local_uuid in dead:
                result.skipped += 1
                continue
            if not self.local.parent_exists(record):
                parent_key = record.get(self.spec.parent.column)
                if not parent_key:
                    logger.warning(
                        f"{self.entity_type}: skipping {local_uuid}, no parent key"
                    )
                    result.skipped += 1
                    continue
                if self.local.parent_tombstoned(record):
                    # Deleting the parent deleted this child too
                    self.local.delete_by_correlation_key(local_uuid)
                    result.skipped += 1
                    continue
                logger.warning(
                    f"{self.entity_type}: holding back {local_uuid}, parent "
                    f"{parent_key} not present locally yet"
                )
                held.append(record)
                continue
            outcome = self.local.upsert_by_correlation_key(record, force=force)
            if outcome != UpsertOutcome.UNCHANGED:
                applied.add(local_uuid)
        result.applied = len(applied)
        result.orphaned = len(held)
        return applied, held

    def _push(self, watermark: int, principal: str, applied: set[str],
              result: EntityResult):
        rows = [
            row for row in self.local.list_changed_since(watermark, principal)
            if row["local_uuid"] not in applied
        ]
        for start in range(0, len(rows), self.batch_size):
            batch = rows[start:start + self.batch_size]
            items = [self.spec.to_remote(row) for row in batch]
            try:
                self.remote.batch_upsert(self.entity_type, items)
            except RateLimitedError as e:
                landed = {r.local_uuid for r in e.applied}
                self._claim(batch, landed, principal)
                result.pushed += len(landed)
                result.deferred = len(rows) - start - len(landed)
                logger.warning(
                    f"{self.entity_type}: rate limited, deferring "
                    f"{result.deferred} item(s) to the next cycle"
                )
                raise
            self._claim(batch, {row["local_uuid"] for row in batch}, principal)
            result.pushed += len(batch)

    def _claim(self, batch: list[dict], landed: set[str], principal: str):
        unowned = [
            row["local_uuid"] for row in batch
            if row["owner_principal"] is None and row["local_uuid"] in landed
        ]
        if unowned:
            self.local.claim_unowned(unowned, principal)


def _next_watermark(started_at: int, held: list[dict]) -> int:
    """Watermark after a cycle that held back ``held`` records."""
    if not held:
        return started_at
    stamps = [record.get(SERVER_STAMP) for record in held]
    if None in stamps:
        # Unstamped items can only be found again by a full pull; 1 still
        # marks the initial import as done
        return 1
    return min(started_at, *stamps)
