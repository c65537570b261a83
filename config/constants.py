"""Constants used across the application."""

import re
from datetime import UTC, datetime, timedelta

# Usage window defaults; settings may override them per deployment
USAGE_WINDOW = timedelta(hours=5)
USAGE_LIMIT = 8

# Used when a profile has never been reset or its usage can't be read
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

PROFILES_TABLE = "profiles"

# Columns the store manages itself; callers never write these directly
SYSTEM_COLUMNS = frozenset({"id", "created_at", "updated_at"})

# Plain lowercase SQL identifiers only (table and column names)
IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

# Latest lastReset whose default window end still fits in a datetime
LATEST_LAST_RESET = datetime.max.replace(tzinfo=UTC) - USAGE_WINDOW
