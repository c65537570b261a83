"""Rolling-window usage counter for profiles.

A profile may record ``limit`` usages per ``window``. The window starts at
``last_reset`` and is only moved forward by ``record_usage``; checks never
write.

Both operations are plain read-modify-write against the store with no lock,
transaction or version check. Two concurrent ``record_usage`` calls for the
same profile can read the same count and one increment is lost, and a
check followed by a record can race with another caller doing the same.
Rate limiting here is approximate.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
import structlog
from config.constants import USAGE_LIMIT, USAGE_WINDOW
from storage.record_store import RecordStore
from usage.models import Usage, encode_usage, load_usage

log = structlog.get_logger(__name__)

USAGE_COLUMN = "usage"

_LATEST = datetime.max.replace(tzinfo=UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


class UsageTracker:
    def __init__(
        self,
        store: RecordStore,
        window: timedelta = USAGE_WINDOW,
        limit: int = USAGE_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._store = store
        self.window = window
        self.limit = limit
        self._clock = clock

    @property
    def store(self) -> RecordStore:
        return self._store

    def initial_usage(self) -> Usage:
        """Usage written when a profile is created."""
        return Usage.fresh(self._clock())

    def window_expired(self, usage: Usage, now: datetime) -> bool:
        return now - usage.last_reset > self.window

    def window_resets_at(self, usage: Usage) -> datetime:
        return usage.last_reset + self.window

    async def _load(self, profile_id: str) -> Usage:
        row = await self._store.get(
            profile_id, [USAGE_COLUMN], fallback="Failed to fetch profile"
        )
        usage = load_usage(row.get(USAGE_COLUMN), profile_id=profile_id)
        # A configured window wider than the default can still push the
        # window end past datetime.max
        if usage.last_reset > _LATEST - self.window:
            log.warning(
                "usage_malformed",
                profile_id=profile_id,
                error="lastReset too close to the end of the datetime range",
            )
            return Usage()
        return usage

    async def record_usage(self, profile_id: str) -> int:
        """Count one usage and return the count for the current window."""
        usage = await self._load(profile_id)
        now = self._clock()

        if self.window_expired(usage, now):
            # This call is the first usage of the new window
            updated = Usage(count=1, last_reset=now)
            log.info(
                "usage_window_reset",
                profile_id=profile_id,
                previous_count=usage.count,
                last_reset=updated.to_dict()["lastReset"],
            )
        else:
            updated = Usage(count=usage.count + 1, last_reset=usage.last_reset)

        await self._store.update(
            profile_id,
            {USAGE_COLUMN: encode_usage(updated)},
            fallback="Failed to update profile",
        )
        log.debug("usage_recorded", profile_id=profile_id, count=updated.count)
        return updated.count

    async def is_within_limit(self, profile_id: str) -> bool:
        """True if another usage is allowed right now. Never writes."""
        usage = await self._load(profile_id)
        now = self._clock()

        if self.window_expired(usage, now):
            return True

        allowed = usage.count < self.limit
        if not allowed:
            log.info(
                "usage_limit_reached",
                profile_id=profile_id,
                count=usage.count,
                limit=self.limit,
                resets_at=self.window_resets_at(usage).isoformat(),
            )
        return allowed

    async def remaining(self, profile_id: str) -> int:
        """Usages left in the current window; the full limit once it has expired."""
        usage = await self._load(profile_id)
        if self.window_expired(usage, self._clock()):
            return self.limit
        return max(self.limit - usage.count, 0)
