"""Contract every remote backend implements."""

from typing import Optional, Protocol

from habit_sync.sync.results import RemotePage, UpsertResult


class RemoteBackend(Protocol):
    """Data/query contract of the remote multi-tenant store.

    Items use the remote (camelCase) field names. Every call is scoped to
    ``principal``; implementations raise the exceptions from
    ``habit_sync.sync.errors``.
    """

    def list_since(self, principal: str, entity_type: str, since: int,
                   page_size: int, cursor: Optional[str] = None) -> RemotePage:
        ...

    def batch_upsert(self, principal: str, entity_type: str,
                     items: list[dict]) -> list[UpsertResult]:
        ...

    def delete(self, principal: str, entity_type: str, local_uuid: str) -> bool:
        ...

    def get_profile(self, principal: str) -> Optional[dict]:
        ...

    def set_first_opened_at_if_missing(self, principal: str, ts: int) -> bool:
        ...
