"""Profile repository: CRUD plus usage rate limiting."""

import asyncpg
import structlog
from datetime import timedelta
from typing import Any
from config.constants import PROFILES_TABLE
from config.settings import settings
from storage.record_store import Record, RecordStore
from usage.models import encode_usage
from usage.tracker import USAGE_COLUMN, UsageTracker

log = structlog.get_logger(__name__)


class ProfileRepository:
    def __init__(
        self,
        pool: asyncpg.Pool,
        tracker: UsageTracker | None = None,
        store: RecordStore | None = None,
    ) -> None:
        """CRUD and usage tracking always share one store.

        With only a tracker, its store is reused; with both, they must match.
        """
        if tracker is not None and store is not None and tracker.store is not store:
            raise ValueError("tracker and store must use the same record store")
        if store is None:
            store = tracker.store if tracker is not None else RecordStore(pool, PROFILES_TABLE)
        self._store = store
        self.tracker = tracker or UsageTracker(
            self._store,
            window=timedelta(hours=settings.usage_window_hours),
            limit=settings.usage_limit,
        )

    async def get_profile_by_user_id(self, user_id: str) -> Record:
        """Get the single profile owned by a user."""
        return await self._store.get_one_by(
            "user_id", user_id, fallback="Profile not found"
        )

    async def get_profiles_by_user_id(self, user_id: str) -> list[Record]:
        """Get every profile owned by a user."""
        return await self._store.get_all_by(
            "user_id", user_id, fallback="Profiles not found"
        )

    async def create_profile(self, profile: dict[str, Any]) -> Record:
        """Insert a profile with a fresh usage counter. Returns the stored row."""
        fields = {**profile, USAGE_COLUMN: encode_usage(self.tracker.initial_usage())}
        created = await self._store.insert(fields, fallback="Failed to create profile")
        log.info("profile_created", profile_id=created.get("id"), user_id=created.get("user_id"))
        return created

    async def update_profile(self, profile_id: str, profile: dict[str, Any]) -> Record:
        """Apply a partial update. Returns the updated row."""
        return await self._store.update(
            profile_id, profile, fallback="Failed to update profile"
        )

    async def delete_profile(self, profile_id: str) -> bool:
        """Delete a profile. Deleting a missing profile is not an error."""
        deleted = await self._store.delete(profile_id, fallback="Failed to delete profile")
        if not deleted:
            log.info("profile_delete_noop", profile_id=profile_id)
        return True

    async def increment_usage_count(self, profile_id: str) -> int:
        """Record one usage. Returns the count in the current window."""
        return await self.tracker.record_usage(profile_id)

    async def check_rate_limit(self, profile_id: str) -> bool:
        """True if the profile may use the service again right now."""
        return await self.tracker.is_within_limit(profile_id)
