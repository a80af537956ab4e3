"""JSON-RPC remote backend over httpx.

Every operation is ``POST {base_url}/rpc/{entity}/{op}`` with a JSON body
and a bearer token; the server derives the tenant from the token.
"""

import logging
from typing import Callable, Optional

import httpx

from habit_sync.sync.errors import (
    RateLimitedError,
    RemoteProtocolError,
    TransientNetworkError,
    UnauthenticatedError,
)
from habit_sync.sync.results import RemotePage, UpsertOutcome, UpsertResult
from habit_sync.utils.constants import ENTITY_PROFILE, REMOTE_ENTITY_NAMES

logger = logging.getLogger(__name__)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HttpBackend:
    """Remote store reached through the RPC endpoint."""

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Optional[str]],
        timeout: float = 10.0,
        device_id: str = "",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        headers = {"Accept": "application/json"}
        if device_id:
            headers["X-Device-Id"] = device_id
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers=headers,
            transport=transport,
        )

    def close(self):
        self._client.close()

    # ── Contract ────────────────────────────────────────────────

    def list_since(self, principal: str, entity_type: str, since: int,
                   page_size: int, cursor: Optional[str] = None) -> RemotePage:
        data = self._call(entity_type, "listSince", {
            "since": since,
            "limit": page_size,
            "cursor": cursor,
        })
        items = data.get("items")
        if not isinstance(items, list):
            raise RemoteProtocolError(f"{entity_type}.listSince: 'items' missing")
        return RemotePage(items=items, next_cursor=data.get("nextCursor"))

    def batch_upsert(self, principal: str, entity_type: str,
                     items: list[dict]) -> list[UpsertResult]:
        data = self._call(entity_type, "batchUpsert", {"items": items})
        try:
            return [
                UpsertResult(r["localUuid"], UpsertOutcome(r["outcome"]))
                for r in data["results"]
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteProtocolError(
                f"{entity_type}.batchUpsert: malformed results"
            ) from e

    def delete(self, principal: str, entity_type: str, local_uuid: str) -> bool:
        data = self._call(entity_type, "delete", {"localUuid": local_uuid})
        return bool(data.get("deleted", False))

    def get_profile(self, principal: str) -> Optional[dict]:
        data = self._call(ENTITY_PROFILE, "get", {})
        profile = data.get("profile")
        if profile is not None and not isinstance(profile, dict):
            raise RemoteProtocolError("profile.get: malformed profile")
        return profile

    def set_first_opened_at_if_missing(self, principal: str, ts: int) -> bool:
        data = self._call(ENTITY_PROFILE, "setFirstOpenedAtIfMissing",
                          {"firstOpenedAt": ts})
        return bool(data.get("updated", False))

    # ── Transport ───────────────────────────────────────────────

    def _call(self, entity_type: str, op: str, payload: dict) -> dict:
        name = REMOTE_ENTITY_NAMES.get(entity_type)
        if name is None:
            raise RemoteProtocolError(f"Unknown entity type: {entity_type}")
        token = self._token_provider()
        if not token:
            raise UnauthenticatedError(f"{name}.{op}: no session token")

        path = f"/rpc/{name}/{op}"
        try:
            response = self._client.post(
                path, json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{path}: timed out") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{path}: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise UnauthenticatedError(f"{path}: HTTP {status}")
        if status == 429:
            raise RateLimitedError(
                f"{path}: rate limited",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 500:
            raise TransientNetworkError(f"{path}: HTTP {status}")
        if status >= 400:
            raise RemoteProtocolError(f"{path}: HTTP {status} {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteProtocolError(f"{path}: response is not JSON") from e
        if not isinstance(data, dict):
            raise RemoteProtocolError(f"{path}: expected a JSON object")
        logger.debug(f"{path} -> HTTP {status}")
        return data
