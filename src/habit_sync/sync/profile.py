"""User-profile field sync: ``first_opened_at`` is first-write-wins remotely."""

import logging
from typing import Callable

from habit_sync.database.repository import Repository
from habit_sync.remote.adapter import RemoteStoreAdapter
from habit_sync.sync.results import EntityResult, SyncPhase
from habit_sync.utils.constants import ENTITY_PROFILE
from habit_sync.utils.formatters import now_ms

logger = logging.getLogger(__name__)


class ProfileSynchronizer:
    parent_type = None

    def __init__(self, repo: Repository, remote: RemoteStoreAdapter,
                 clock: Callable[[], int] = now_ms):
        self.repo = repo
        self.remote = remote
        self.clock = clock
        self.phase = SyncPhase.IDLE
        self.failed_phase = None
        self.last_result = None

    @property
    def entity_type(self) -> str:
        return ENTITY_PROFILE

    def run(self, principal: str) -> EntityResult:
        self.last_result = result = EntityResult(entity_type=ENTITY_PROFILE)
        self.failed_phase = None
        try:
            profile = self.repo.ensure_user_profile(self.clock())
            if profile.synced_principal == principal:
                return result

            self.phase = SyncPhase.PULLING
            remote_profile = self.remote.get_profile() or {}
            result.pulled = 1 if remote_profile else 0

            self.phase = SyncPhase.PUSHING
            if remote_profile.get("firstOpenedAt") is None and profile.first_opened_at:
                if self.remote.set_first_opened_at_if_missing(profile.first_opened_at):
                    result.pushed = 1
                    logger.info(f"Pushed first_opened_at for {principal}")

            self.phase = SyncPhase.ADVANCING_WATERMARK
            self.repo.mark_profile_synced(principal, self.clock())
        except Exception:
            self.failed_phase = self.phase
            self.phase = SyncPhase.FAILED
            raise
        finally:
            if self.phase != SyncPhase.FAILED:
                self.phase = SyncPhase.IDLE
        return result

    def reset(self):
        self.phase = SyncPhase.IDLE

    def has_local_changes(self, principal: str) -> bool:
        profile = self.repo.get_user_profile()
        return profile is None or profile.synced_principal != principal
