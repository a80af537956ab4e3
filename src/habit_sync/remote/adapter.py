"""Remote store adapter: scopes backend calls to the signed-in principal."""

from typing import Iterator, Optional

from habit_sync.remote.base import RemoteBackend
from habit_sync.sync.errors import UnauthenticatedError
from habit_sync.sync.results import RemotePage, UpsertOutcome, UpsertResult


class RemoteStoreAdapter:
    """Principal-scoped facade over a ``RemoteBackend``.

    With nobody signed in every method raises ``UnauthenticatedError``
    before the backend is touched.
    """

    def __init__(self, backend: RemoteBackend, gate, page_size: int = 100):
        self.backend = backend
        self.gate = gate
        self.page_size = page_size

    def _principal(self) -> str:
        principal = self.gate.current_principal()
        if not principal:
            raise UnauthenticatedError("No signed-in principal")
        return principal

    def list_changed_since(self, entity_type: str, watermark: int,
                           cursor: Optional[str] = None) -> RemotePage:
        return self.backend.list_since(
            self._principal(), entity_type, watermark, self.page_size, cursor
        )

    def iter_changed_since(self, entity_type: str,
                           watermark: int) -> Iterator[RemotePage]:
        """Yield pages until the continuation cursor is exhausted."""
        cursor = None
        while True:
            page = self.list_changed_since(entity_type, watermark, cursor)
            yield page
            if not page.next_cursor or page.next_cursor == cursor:
                return
            cursor = page.next_cursor

    def batch_upsert(self, entity_type: str,
                     items: list[dict]) -> list[UpsertResult]:
        if not items:
            return []
        return self.backend.batch_upsert(self._principal(), entity_type, items)

    def upsert_by_correlation_key(self, entity_type: str,
                                  item: dict) -> UpsertOutcome:
        results = self.batch_upsert(entity_type, [item])
        return results[0].outcome if results else UpsertOutcome.UNCHANGED

    def delete_by_correlation_key(self, entity_type: str, local_uuid: str) -> bool:
        return self.backend.delete(self._principal(), entity_type, local_uuid)

    def get_profile(self) -> Optional[dict]:
        return self.backend.get_profile(self._principal())

    def set_first_opened_at_if_missing(self, ts: int) -> bool:
        return self.backend.set_first_opened_at_if_missing(self._principal(), ts)
