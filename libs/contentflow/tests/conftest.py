from __future__ import annotations

import operator
import re
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from contentflow.config import Settings

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


_SELECT = re.compile(
    r" WHERE (?P<where>.+?)(?: ORDER BY (?P<order>.+?))?(?P<limit> LIMIT %s)?(?P<offset> OFFSET %s)?$"
)
_COMPARE = re.compile(r"^(\w+)\s*(<=|>=|=|<|>)\s*%s$")
_ANY = re.compile(r"^(\w+) = ANY\(%s\)$")
_IS_NULL = re.compile(r"^(\w+) IS NULL$")
_OPS = {"=": operator.eq, "<": operator.lt, "<=": operator.le, ">": operator.gt, ">=": operator.ge}


class Table:
    """Rows that a SELECT filters, orders and pages like the database would.

    Understands AND-joined ``col <op> %s``, ``col = ANY(%s)`` and
    ``col IS NULL`` predicates, ``ORDER BY`` and ``LIMIT``/``OFFSET``.
    """

    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self.rows = [dict(r) for r in rows]

    def select(self, sql: str, params: tuple[object, ...] | None) -> list[dict[str, Any]]:
        match = _SELECT.search(sql)
        if match is None:
            raise AssertionError(f"unsupported query: {sql}")
        args = list(params or ())
        rows = list(self.rows)
        for clause in match.group("where").split(" AND "):
            if m := _COMPARE.match(clause):
                col, op, value = m.group(1), _OPS[m.group(2)], args.pop(0)
                rows = [r for r in rows if op(r[col], value)]
            elif m := _ANY.match(clause):
                col, values = m.group(1), args.pop(0)
                rows = [r for r in rows if r[col] in values]
            elif m := _IS_NULL.match(clause):
                rows = [r for r in rows if r[m.group(1)] is None]
            else:
                raise AssertionError(f"unsupported predicate: {clause}")
        if match.group("order"):
            for term in reversed(match.group("order").split(", ")):
                col, direction = term.split(" ")
                rows.sort(key=lambda r: r[col], reverse=direction == "DESC")
        if match.group("limit"):
            limit = int(args.pop(0))
            offset = int(args.pop(0)) if match.group("offset") else 0
            rows = rows[offset : offset + limit]
        return rows


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self._rows: list[dict[str, Any]] = []
        self.rowcount = -1

    async def execute(self, query: str, params: tuple[object, ...] | None = None) -> None:
        self._conn.executed.append((" ".join(str(query).split()), params))
        if not self._conn.script:
            raise AssertionError(f"unexpected query: {query}")
        result = self._conn.script.pop(0)
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, Table):
            self._rows = result.select(self._conn.executed[-1][0], params)
            self.rowcount = len(self._rows)
            return
        if isinstance(result, int):
            self._rows = []
            self.rowcount = result
        else:
            self._rows = [dict(r) for r in result]
            self.rowcount = len(self._rows)

    async def fetchone(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None

    async def fetchall(self) -> list[dict[str, Any]]:
        return list(self._rows)

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        return None


class FakeConnection:
    """Answers each execute() with the next scripted result.

    A result is a list of row dicts, a ``Table`` to query, an int rowcount,
    or an exception to raise.
    """

    def __init__(self) -> None:
        self.script: list[Any] = []
        self.executed: list[tuple[str, tuple[object, ...] | None]] = []
        self.commits = 0

    def cursor(self, *args, **kwargs) -> FakeCursor:  # noqa: ANN002, ANN003, ARG002
        return FakeCursor(self)

    async def commit(self) -> None:
        self.commits += 1


class FakePool:
    def __init__(self) -> None:
        self.conn = FakeConnection()

    def queue(self, *results: Any) -> None:
        self.conn.script.extend(results)

    @property
    def executed(self) -> list[tuple[str, tuple[object, ...] | None]]:
        return list(self.conn.executed)

    @property
    def commits(self) -> int:
        return self.conn.commits

    def inserted(self) -> dict[str, Any]:
        """Column -> value of the last INSERT issued."""
        for sql, params in reversed(self.conn.executed):
            if sql.startswith("INSERT INTO"):
                cols = sql.split("(", 1)[1].split(")", 1)[0].split(", ")
                return dict(zip(cols, params or ()))
        raise AssertionError("no INSERT issued")

    @asynccontextmanager
    async def connection(self):
        yield self.conn


class Rows:
    """Database row factories with sensible defaults."""

    @staticmethod
    def transcript(**overrides: Any) -> dict[str, Any]:
        row = {
            "id": "tr_1",
            "title": "Weekly sync",
            "raw_content": "we talked about shipping faster",
            "cleaned_content": None,
            "status": "raw",
            "source_type": "manual",
            "source_ref": "upload://weekly.txt",
            "word_count": 5,
            "duration_s": None,
            "ingested_at": NOW,
            "deleted_at": None,
            "created_at": NOW,
            "updated_at": NOW,
        }
        row.update(overrides)
        return row

    @staticmethod
    def insight(**overrides: Any) -> dict[str, Any]:
        row = {
            "id": "ins_1",
            "transcript_id": "tr_1",
            "title": "Shipping speed",
            "summary": "Smaller batches ship faster",
            "verbatim_quote": "we talked about shipping faster",
            "category": "process",
            "post_type": "Framework",
            "urgency_score": 10,
            "relatability_score": 20,
            "specificity_score": 30,
            "authority_score": 40,
            "total_score": 100,
            "status": "draft",
            "processing_duration_ms": None,
            "estimated_tokens": None,
            "estimated_cost": None,
            "created_at": NOW,
            "updated_at": NOW,
        }
        row.update(overrides)
        return row

    @staticmethod
    def post(**overrides: Any) -> dict[str, Any]:
        row = {
            "id": "post_1",
            "insight_id": "ins_1",
            "title": "Ship small",
            "platform": "linkedin",
            "content": "Small batches win.",
            "hashtags": ["shipping"],
            "status": "draft",
            "character_count": 18,
            "published_at": None,
            "created_at": NOW,
            "updated_at": NOW,
        }
        row.update(overrides)
        return row

    @staticmethod
    def scheduled(**overrides: Any) -> dict[str, Any]:
        row = {
            "id": "sched_1",
            "post_id": "post_1",
            "channel": "linkedin",
            "publish_at": NOW + timedelta(hours=1),
            "content": "Small batches win.",
            "status": "pending",
            "retry_count": 0,
            "last_attempt_at": None,
            "error_message": None,
            "external_post_id": None,
            "created_at": NOW,
            "updated_at": NOW,
        }
        row.update(overrides)
        return row


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(log_dir=str(tmp_path / "logs"))


@pytest.fixture()
def pool() -> FakePool:
    return FakePool()


@pytest.fixture()
def clock():
    return lambda: NOW


@pytest.fixture()
def rows() -> type[Rows]:
    return Rows


@pytest.fixture()
def table() -> type[Table]:
    return Table
