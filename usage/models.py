"""Usage counter stored inside each profile row.

The ``usage`` column holds a JSON document::

    {"count": 3, "lastReset": "2025-01-30T14:05:00.000Z"}

This module is the only place that reads or writes that shape.
"""

import orjson
import structlog
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from config.constants import EPOCH, LATEST_LAST_RESET

log = structlog.get_logger(__name__)


class MalformedUsageError(ValueError):
    """Raised when a stored usage document can't be decoded."""


@dataclass(frozen=True)
class Usage:
    count: int = 0
    last_reset: datetime = EPOCH

    def __post_init__(self) -> None:
        if self.count < 0:
            raise MalformedUsageError(f"count must be >= 0, got {self.count}")
        if self.last_reset.tzinfo is None:
            object.__setattr__(self, "last_reset", self.last_reset.replace(tzinfo=UTC))

    @classmethod
    def fresh(cls, now: datetime) -> "Usage":
        """Usage for a newly created profile."""
        return cls(count=0, last_reset=now)

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "lastReset": format_timestamp(self.last_reset)}


def format_timestamp(dt: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored ``lastReset`` value. Empty means never reset (epoch)."""
    if value is None or value == "":
        return EPOCH
    if not isinstance(value, str):
        raise MalformedUsageError(f"lastReset must be a string, got {type(value).__name__}")
    try:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        parsed = parsed.astimezone(UTC)
    except (ValueError, OverflowError) as e:
        raise MalformedUsageError(f"Invalid lastReset: {value!r}") from e
    # The window end (last_reset + window) must stay representable
    if parsed > LATEST_LAST_RESET:
        raise MalformedUsageError(f"lastReset out of range: {value!r}")
    return parsed


def _parse_count(value: Any) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise MalformedUsageError("count must be a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise MalformedUsageError(f"count must be an integer, got {value!r}")


def encode_usage(usage: Usage) -> str:
    return orjson.dumps(usage.to_dict()).decode()


def decode_usage(raw: str | bytes | Mapping[str, Any]) -> Usage:
    """Strict decode. Raises MalformedUsageError on any problem."""
    if isinstance(raw, Mapping):
        data: Any = raw
    else:
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise MalformedUsageError(f"Usage is not valid JSON: {e}") from e

    if not isinstance(data, Mapping):
        raise MalformedUsageError("Usage must be a JSON object")

    return Usage(
        count=_parse_count(data.get("count", 0)),
        last_reset=parse_timestamp(data.get("lastReset")),
    )


def load_usage(raw: str | bytes | Mapping[str, Any] | None, profile_id: str | None = None) -> Usage:
    """Lenient decode: missing or unreadable usage becomes a zeroed counter."""
    if raw is None or raw == "" or raw == b"":
        return Usage()
    try:
        return decode_usage(raw)
    except MalformedUsageError as e:
        log.warning("usage_malformed", profile_id=profile_id, error=str(e))
        return Usage()
