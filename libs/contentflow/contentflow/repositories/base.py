from __future__ import annotations

import copy
import logging
import math
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Generic, NoReturn, TypeVar
from uuid import uuid4

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from contentflow.config import Settings
from contentflow.exceptions import (
    ConflictError,
    ForeignKeyError,
    InvalidStateError,
    NotFoundError,
    RepositoryError,
    ValidationError,
)
from contentflow.models.query import Pagination, Sort

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT")
EnumT = TypeVar("EnumT", bound=Enum)
RepoT = TypeVar("RepoT", bound="BaseRepository[Any]")

Row = dict[str, Any]

MAX_PAGE_SIZE = 1000


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _db_value(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DatabasePool:
    """Singleton connection pool manager."""

    _pool: AsyncConnectionPool | None = None

    @classmethod
    async def get_pool(cls, settings: Settings) -> AsyncConnectionPool:
        if cls._pool is None:
            cls._pool = AsyncConnectionPool(
                conninfo=settings.database_url,
                min_size=int(settings.db.pool_min_size),
                max_size=int(settings.db.pool_max_size),
                timeout=float(settings.db.pool_timeout_s),
                open=False,
            )
            await cls._pool.open()
            logger.info(
                "database pool opened (min_size=%d, max_size=%d)",
                settings.db.pool_min_size,
                settings.db.pool_max_size,
            )
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        if cls._pool is not None:
            await cls._pool.close()
            cls._pool = None
            logger.info("database pool closed")


class BaseRepository(Generic[EntityT]):
    """Generic CRUD over one table.

    Subclasses describe their table through the class attributes below and
    implement ``_from_row`` and ``_prepare_create``. Column names used in SQL
    always come from these whitelists, never from caller input.

    An unbound repository borrows a pooled connection per call and commits.
    ``bind(conn)`` returns a copy that runs on a caller-owned connection and
    leaves commit/rollback to the caller's transaction.
    """

    entity: ClassVar[str] = "record"
    table: ClassVar[str] = ""
    id_prefix: ClassVar[str] = "rec"
    columns: ClassVar[tuple[str, ...]] = ()
    filterable: ClassVar[frozenset[str]] = frozenset()
    sortable: ClassVar[frozenset[str]] = frozenset({"created_at", "updated_at"})
    searchable: ClassVar[tuple[str, ...]] = ()
    updatable: ClassVar[frozenset[str]] = frozenset()
    # Extra WHERE clause (and params) a row must satisfy to be patched.
    update_guard: ClassVar[tuple[str, tuple[object, ...]] | None] = None
    soft_delete: ClassVar[bool] = False
    default_sort: ClassVar[Sort] = Sort("created_at")

    def __init__(
        self,
        pool: AsyncConnectionPool,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.pool = pool
        self._conn: psycopg.AsyncConnection | None = None
        self._clock = clock or _utcnow

    def bind(self: RepoT, conn: psycopg.AsyncConnection) -> RepoT:
        bound = copy.copy(self)
        bound._conn = conn
        return bound

    @property
    def is_bound(self) -> bool:
        return self._conn is not None

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        if self._conn is not None:
            yield self._conn
            return
        async with self.pool.connection() as conn:
            yield conn

    async def _commit(self, conn: psycopg.AsyncConnection) -> None:
        if self._conn is None:
            await conn.commit()

    def now(self) -> datetime:
        return self._clock()

    def new_id(self) -> str:
        return f"{self.id_prefix}_{uuid4().hex}"

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @staticmethod
    def _from_row(row: Row) -> EntityT:
        raise NotImplementedError

    async def _prepare_create(self, data: Any) -> Row:
        """Validate ``data`` and return the column values to insert."""
        raise NotImplementedError

    def _prepare_patch(self, patch: Row) -> Row:
        """Validate an already key-checked patch and return column values."""
        return {k: _db_value(v) for k, v in patch.items()}

    def _computed_sets(self, values: Row) -> list[tuple[str, tuple[object, ...]]]:
        """SET expressions derived from other columns, appended after ``values``."""
        return []

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    @property
    def _select_columns(self) -> str:
        return ", ".join(self.columns)

    def _live_clauses(self) -> list[str]:
        return ["deleted_at IS NULL"] if self.soft_delete else []

    async def _run(self, cur: psycopg.AsyncCursor[Any], query: str, params: tuple[Any, ...]) -> None:
        try:
            await cur.execute(query, params)
        except psycopg.IntegrityError as exc:
            mapped = self._map_integrity_error(exc)
            if mapped is None:
                raise
            raise mapped from exc

    def _map_integrity_error(self, exc: psycopg.IntegrityError) -> RepositoryError | None:
        constraint = exc.diag.constraint_name or "unknown constraint"
        if isinstance(exc, pg_errors.UniqueViolation):
            return ConflictError(self.entity, f"uniqueness violated ({constraint})")
        if isinstance(exc, pg_errors.ForeignKeyViolation):
            return ForeignKeyError(self.entity, f"dangling reference ({constraint})")
        if isinstance(exc, (pg_errors.CheckViolation, pg_errors.NotNullViolation)):
            return ValidationError(self.entity, f"constraint rejected value ({constraint})")
        return None

    async def _fetch_one(self, query: str, params: tuple[Any, ...] = ()) -> Row | None:
        async with self.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await self._run(cur, query, params)
                return await cur.fetchone()

    async def _fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[Row]:
        async with self.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await self._run(cur, query, params)
                return list(await cur.fetchall())

    async def _execute_returning(self, query: str, params: tuple[Any, ...] = ()) -> Row | None:
        async with self.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await self._run(cur, query, params)
                row = await cur.fetchone()
            await self._commit(conn)
        return row

    async def _execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await self._run(cur, query, params)
                affected = int(cur.rowcount or 0)
            await self._commit(conn)
        return max(0, affected)

    async def _update_row(
        self,
        record_id: str,
        values: Row,
        *,
        guard: tuple[str, tuple[object, ...]] | None = None,
        computed: Sequence[tuple[str, tuple[object, ...]]] = (),
    ) -> Row | None:
        sets = [f"{col}=%s" for col in values]
        set_params: list[object] = [_db_value(v) for v in values.values()]
        for expression, expression_params in computed:
            sets.append(expression)
            set_params.extend(expression_params)
        where = ["id=%s", *self._live_clauses()]
        guard_params: tuple[object, ...] = ()
        if guard is not None:
            where.append(guard[0])
            guard_params = tuple(guard[1])
        query = (
            f"UPDATE {self.table} SET {', '.join(sets)} WHERE {' AND '.join(where)} "
            f"RETURNING {self._select_columns}"
        )
        return await self._execute_returning(
            query, (*set_params, str(record_id), *guard_params)
        )

    async def _raise_miss(self, record_id: str, action: str) -> NoReturn:
        """Explain why a conditional write touched no row."""
        where = " AND ".join(["id=%s", *self._live_clauses()])
        current = await self._fetch_one(
            f"SELECT status FROM {self.table} WHERE {where}", (str(record_id),)
        )
        if current is None:
            raise NotFoundError(self.entity, f"cannot {action}: not found", entity_id=record_id)
        logger.warning(
            "%s %s rejected (id=%s, status=%s)", self.entity, action, record_id, current["status"]
        )
        raise InvalidStateError(
            self.entity,
            f"cannot {action} from status {current['status']!r}",
            entity_id=record_id,
        )

    def _where(
        self, filters: Mapping[str, object] | None, *, search: str | None = None
    ) -> tuple[str, list[Any]]:
        clauses = self._live_clauses()
        params: list[Any] = []
        for key, value in dict(filters or {}).items():
            if key not in self.filterable:
                raise ValidationError(self.entity, f"cannot filter on {key!r}")
            if value is None:
                clauses.append(f"{key} IS NULL")
            elif isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(f"{key} = ANY(%s)")
                params.append([_db_value(v) for v in value])
            else:
                clauses.append(f"{key}=%s")
                params.append(_db_value(value))
        term = str(search or "").strip()
        if term:
            if not self.searchable:
                raise ValidationError(self.entity, "search is not supported")
            pattern = f"%{_escape_like(term)}%"
            clauses.append("(" + " OR ".join(f"{c} ILIKE %s" for c in self.searchable) + ")")
            params.extend([pattern] * len(self.searchable))
        sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return sql, params

    def _order_by(self, sort: Sort | None) -> str:
        sort = sort or self.default_sort
        if sort.field not in self.sortable:
            raise ValidationError(self.entity, f"cannot sort on {sort.field!r}")
        direction = "DESC" if sort.descending else "ASC"
        return f"{sort.field} {direction}, id {direction}"

    def _check_pagination(self, pagination: Pagination) -> tuple[int, int]:
        limit = int(pagination.limit)
        offset = int(pagination.offset)
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(self.entity, f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError(self.entity, "offset must be >= 0")
        return limit, offset

    # ------------------------------------------------------------------
    # Field validation
    # ------------------------------------------------------------------

    def _require_text(self, field: str, value: object) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(self.entity, f"{field} is required")
        return value

    def _optional_text(self, field: str, value: object) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError(self.entity, f"{field} must be a string")
        return value

    def _coerce_enum(self, enum_cls: type[EnumT], field: str, value: object) -> EnumT:
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(str(m.value) for m in enum_cls)
            raise ValidationError(
                self.entity, f"{field} must be one of: {allowed} (got {value!r})"
            ) from None

    def _require_int(
        self,
        field: str,
        value: object,
        *,
        minimum: int | None = None,
        maximum: int | None = None,
    ) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(self.entity, f"{field} must be an integer")
        if minimum is not None and value < minimum:
            raise ValidationError(self.entity, f"{field} must be >= {minimum}")
        if maximum is not None and value > maximum:
            raise ValidationError(self.entity, f"{field} must be <= {maximum}")
        return value

    def _require_number(self, field: str, value: object, *, minimum: float | None = None) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(self.entity, f"{field} must be a number")
        if not math.isfinite(value):
            raise ValidationError(self.entity, f"{field} must be finite")
        if minimum is not None and value < minimum:
            raise ValidationError(self.entity, f"{field} must be >= {minimum}")
        return float(value)

    def _require_aware(self, field: str, value: object) -> datetime:
        if not isinstance(value, datetime):
            raise ValidationError(self.entity, f"{field} must be a datetime")
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValidationError(self.entity, f"{field} must be timezone-aware")
        return value

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, data: Any) -> EntityT:
        values = await self._prepare_create(data)
        cols = ", ".join(values)
        placeholders = ",".join(["%s"] * len(values))
        row = await self._execute_returning(
            f"INSERT INTO {self.table} ({cols}) VALUES ({placeholders}) "
            f"RETURNING {self._select_columns}",
            tuple(_db_value(v) for v in values.values()),
        )
        if row is None:
            raise RuntimeError(f"{self.table} insert returned no row")
        logger.info("%s created (id=%s)", self.entity, row["id"])
        return self._from_row(row)

    async def find_by_id(self, record_id: str) -> EntityT | None:
        where = " AND ".join(["id=%s", *self._live_clauses()])
        row = await self._fetch_one(
            f"SELECT {self._select_columns} FROM {self.table} WHERE {where}",
            (str(record_id),),
        )
        return self._from_row(row) if row is not None else None

    async def get(self, record_id: str) -> EntityT:
        found = await self.find_by_id(record_id)
        if found is None:
            raise NotFoundError(self.entity, "not found", entity_id=record_id)
        return found

    async def find_many(
        self,
        filters: Mapping[str, object] | None = None,
        pagination: Pagination | None = None,
        sort: Sort | None = None,
        *,
        search: str | None = None,
    ) -> list[EntityT]:
        where, params = self._where(filters, search=search)
        query = (
            f"SELECT {self._select_columns} FROM {self.table}{where} "
            f"ORDER BY {self._order_by(sort)}"
        )
        if pagination is not None:
            limit, offset = self._check_pagination(pagination)
            query += " LIMIT %s OFFSET %s"
            params.extend([limit, offset])
        rows = await self._fetch_all(query, tuple(params))
        return [self._from_row(r) for r in rows]

    async def iter_many(
        self,
        filters: Mapping[str, object] | None = None,
        sort: Sort | None = None,
        *,
        page_size: int = 100,
    ) -> AsyncIterator[EntityT]:
        """Yield matching records, fetching one page at a time."""
        page = Pagination(limit=page_size, offset=0)
        while True:
            items = await self.find_many(filters, page, sort)
            for item in items:
                yield item
            if len(items) < page.limit:
                return
            page = page.next()

    async def count(self, filters: Mapping[str, object] | None = None) -> int:
        where, params = self._where(filters)
        row = await self._fetch_one(
            f"SELECT COUNT(*) AS total FROM {self.table}{where}", tuple(params)
        )
        return int(row["total"]) if row is not None else 0

    async def count_by_status(self) -> dict[str, int]:
        where, params = self._where(None)
        rows = await self._fetch_all(
            f"SELECT status, COUNT(*) AS total FROM {self.table}{where} GROUP BY status",
            tuple(params),
        )
        return {str(r["status"]): int(r["total"]) for r in rows}

    async def update(self, record_id: str, patch: Mapping[str, object]) -> EntityT:
        raw = dict(patch or {})
        if not raw:
            raise ValidationError(self.entity, "patch is empty", entity_id=record_id)
        unknown = sorted(set(raw) - self.updatable)
        if unknown:
            raise ValidationError(
                self.entity, f"fields not updatable: {', '.join(unknown)}", entity_id=record_id
            )
        values = self._prepare_patch(raw)
        values["updated_at"] = self.now()
        row = await self._update_row(
            record_id, values, guard=self.update_guard, computed=self._computed_sets(values)
        )
        if row is None:
            await self._raise_miss(record_id, "update")
        logger.info("%s updated (id=%s, fields=%s)", self.entity, record_id, ",".join(sorted(raw)))
        return self._from_row(row)

    async def delete(self, record_id: str, *, strict: bool = False) -> None:
        if self.soft_delete:
            now = self.now()
            removed = await self._execute(
                f"UPDATE {self.table} SET deleted_at=%s, updated_at=%s "
                "WHERE id=%s AND deleted_at IS NULL",
                (now, now, str(record_id)),
            )
        else:
            removed = await self._execute(
                f"DELETE FROM {self.table} WHERE id=%s", (str(record_id),)
            )
        if removed:
            logger.info("%s deleted (id=%s)", self.entity, record_id)
            return
        if strict:
            raise NotFoundError(self.entity, "cannot delete: not found", entity_id=record_id)
        logger.debug("%s already absent (id=%s)", self.entity, record_id)
