"""Generic single-table CRUD over an asyncpg pool.

Every query targets one table and filters by plain equality. Driver failures
are re-raised as ``RemoteError`` and a missing single row as ``NotFoundError``;
callers never see asyncpg exceptions.
"""

import uuid
import asyncpg
import structlog
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any
from config.constants import IDENTIFIER_RE, SYSTEM_COLUMNS
from storage.errors import NotFoundError, RemoteError

log = structlog.get_logger(__name__)

Record = dict[str, Any]

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _ident(name: str) -> str:
    """Quote a table/column name after checking it is a plain identifier."""
    if not IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def _to_record(row: Mapping[str, Any]) -> Record:
    # UUID columns come back as uuid.UUID; ids are opaque strings to callers
    return {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in row.items()}


@contextmanager
def _remote(operation: str, fallback: str) -> Iterator[None]:
    try:
        yield
    except _DRIVER_ERRORS as e:
        message = str(e) or fallback
        log.error("record_store_error", operation=operation, error=message)
        raise RemoteError(message) from e


class RecordStore:
    """CRUD access to one table keyed by an ``id`` column."""

    def __init__(
        self,
        pool: asyncpg.Pool,
        table: str,
        *,
        touch_updated_at: bool = True,
    ) -> None:
        self._pool = pool
        self._table = _ident(table)
        self.table = table
        self._touch_updated_at = touch_updated_at

    def _columns(self, columns: str | list[str]) -> str:
        if columns == "*":
            return "*"
        if isinstance(columns, str):
            columns = [columns]
        return ", ".join(_ident(c) for c in columns)

    async def get(
        self,
        record_id: str,
        columns: str | list[str] = "*",
        *,
        fallback: str = "Record not found",
    ) -> Record:
        """Fetch one row by id. Raises NotFoundError if absent."""
        sql = f"SELECT {self._columns(columns)} FROM {self._table} WHERE id = $1"
        with _remote("get", fallback):
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(sql, record_id)
        if row is None:
            raise NotFoundError(fallback)
        return _to_record(row)

    async def get_one_by(
        self,
        column: str,
        value: Any,
        *,
        fallback: str = "Record not found",
    ) -> Record:
        """Fetch exactly one row where ``column = value``.

        Zero rows raises NotFoundError; more than one raises RemoteError.
        """
        # LIMIT 2 is enough to tell "one" from "many"
        sql = f"SELECT * FROM {self._table} WHERE {_ident(column)} = $1 LIMIT 2"
        with _remote("get_one_by", fallback):
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(sql, value)
        if not rows:
            raise NotFoundError(fallback)
        if len(rows) > 1:
            raise RemoteError(f"Expected a single row for {column}, got multiple")
        return _to_record(rows[0])

    async def get_all_by(
        self,
        column: str,
        value: Any,
        *,
        fallback: str = "Records not found",
    ) -> list[Record]:
        """Fetch all rows where ``column = value`` (possibly none)."""
        sql = f"SELECT * FROM {self._table} WHERE {_ident(column)} = $1"
        with _remote("get_all_by", fallback):
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(sql, value)
        return [_to_record(r) for r in rows]

    async def insert(
        self,
        fields: Mapping[str, Any],
        *,
        fallback: str = "Failed to insert record",
    ) -> Record:
        """Insert one row and return it as stored."""
        if not fields:
            raise ValueError("insert requires at least one field")
        names = list(fields)
        placeholders = ", ".join(f"${i}" for i in range(1, len(names) + 1))
        sql = (
            f"INSERT INTO {self._table} ({', '.join(_ident(n) for n in names)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        with _remote("insert", fallback):
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(sql, *fields.values())
        if row is None:
            raise RemoteError(fallback)
        return _to_record(row)

    async def update(
        self,
        record_id: str,
        fields: Mapping[str, Any],
        *,
        fallback: str = "Failed to update record",
    ) -> Record:
        """Apply a partial update by id and return the updated row."""
        names = [n for n in fields if n not in SYSTEM_COLUMNS]
        if not names:
            raise ValueError("update requires at least one writable field")
        assignments = [f"{_ident(n)} = ${i}" for i, n in enumerate(names, start=2)]
        if self._touch_updated_at:
            assignments.append('"updated_at" = NOW()')
        sql = (
            f"UPDATE {self._table} SET {', '.join(assignments)} "
            "WHERE id = $1 RETURNING *"
        )
        with _remote("update", fallback):
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(sql, record_id, *(fields[n] for n in names))
        if row is None:
            raise NotFoundError(fallback)
        return _to_record(row)

    async def delete(self, record_id: str, *, fallback: str = "Failed to delete record") -> bool:
        """Delete by id. Returns True if a row was removed."""
        with _remote("delete", fallback):
            async with self._pool.acquire() as conn:
                result = await conn.execute(
                    f"DELETE FROM {self._table} WHERE id = $1", record_id
                )
        return result.split()[-1] != "0"
