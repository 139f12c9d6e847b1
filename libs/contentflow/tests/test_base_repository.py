from __future__ import annotations

import psycopg
import pytest
from psycopg import errors as pg_errors

from contentflow.error_codes import ErrorCode
from contentflow.exceptions import (
    ConflictError,
    ForeignKeyError,
    NotFoundError,
    ValidationError,
)
from contentflow.models import NewPost, Pagination, Platform, Sort, TranscriptStatus
from contentflow.repositories import DatabasePool, PostRepository, TranscriptRepository
from contentflow.repositories import base as base_module


def _new_post() -> NewPost:
    return NewPost(title="Ship small", platform=Platform.LINKEDIN, content="Small batches win.")


def test_new_id_uses_entity_prefix(pool, clock) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    a, b = repo.new_id(), repo.new_id()
    assert a.startswith("tr_")
    assert a != b
    assert PostRepository(pool).new_id().startswith("post_")


@pytest.mark.asyncio
async def test_find_by_id_returns_none_when_absent(pool, clock) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    pool.queue([])

    assert await repo.find_by_id("tr_missing") is None
    sql, params = pool.executed[0]
    assert "WHERE id=%s AND deleted_at IS NULL" in sql
    assert params == ("tr_missing",)


@pytest.mark.asyncio
async def test_get_raises_not_found(pool, clock) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    pool.queue([])

    with pytest.raises(NotFoundError) as excinfo:
        await repo.get("tr_missing")
    assert excinfo.value.entity_id == "tr_missing"
    assert excinfo.value.error_code == ErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_find_many_builds_filters_search_and_order(pool, clock, rows) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    pool.queue([rows.transcript()])

    found = await repo.find_many(
        {
            "status": TranscriptStatus.RAW,
            "source_ref": None,
            "source_type": ["upload", "manual"],
        },
        Pagination(limit=10, offset=20),
        Sort("title", descending=True),
        search="50%_off",
    )

    assert [t.id for t in found] == ["tr_1"]
    sql, params = pool.executed[0]
    assert (
        "WHERE deleted_at IS NULL AND status=%s AND source_ref IS NULL "
        "AND source_type = ANY(%s) AND (title ILIKE %s OR raw_content ILIKE %s)"
    ) in sql
    assert sql.endswith("ORDER BY title DESC, id DESC LIMIT %s OFFSET %s")
    assert params == (
        "raw",
        ["upload", "manual"],
        "%50\\%\\_off%",
        "%50\\%\\_off%",
        10,
        20,
    )


@pytest.mark.asyncio
async def test_find_many_without_pagination_has_no_limit(pool, clock) -> None:
    repo = PostRepository(pool, clock=clock)
    pool.queue([])

    assert await repo.find_many() == []
    sql, params = pool.executed[0]
    assert "LIMIT" not in sql
    assert "WHERE" not in sql
    assert sql.endswith("ORDER BY created_at ASC, id ASC")
    assert params == ()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"filters": {"raw_content": "x"}},
        {"sort": Sort("raw_content")},
        {"pagination": Pagination(limit=0)},
        {"pagination": Pagination(limit=1001)},
        {"pagination": Pagination(limit=10, offset=-1)},
    ],
)
async def test_find_many_rejects_bad_query_before_touching_db(pool, clock, kwargs) -> None:
    repo = TranscriptRepository(pool, clock=clock)

    with pytest.raises(ValidationError):
        await repo.find_many(**kwargs)
    assert pool.executed == []


@pytest.mark.asyncio
async def test_iter_many_pages_until_short_page(pool, clock, rows) -> None:
    repo = PostRepository(pool, clock=clock)
    pool.queue(
        [rows.post(id="post_1"), rows.post(id="post_2")],
        [rows.post(id="post_3")],
    )

    ids = [p.id async for p in repo.iter_many({"status": "draft"}, page_size=2)]

    assert ids == ["post_1", "post_2", "post_3"]
    assert [params for _, params in pool.executed] == [("draft", 2, 0), ("draft", 2, 2)]


@pytest.mark.asyncio
async def test_count_and_count_by_status(pool, clock) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    pool.queue(
        [{"total": 3}],
        [{"status": "raw", "total": 2}, {"status": "cleaned", "total": 1}],
    )

    assert await repo.count({"status": "raw"}) == 3
    assert await repo.count_by_status() == {"raw": 2, "cleaned": 1}
    count_sql, count_params = pool.executed[0]
    assert count_sql.startswith("SELECT COUNT(*) AS total FROM transcripts WHERE deleted_at IS NULL")
    assert count_params == ("raw",)
    assert pool.executed[1][0].endswith("GROUP BY status")


@pytest.mark.asyncio
async def test_update_rejects_empty_and_unknown_patches(pool, clock) -> None:
    repo = TranscriptRepository(pool, clock=clock)

    with pytest.raises(ValidationError):
        await repo.update("tr_1", {})
    with pytest.raises(ValidationError, match="raw_content"):
        await repo.update("tr_1", {"raw_content": "rewritten"})
    assert pool.executed == []


@pytest.mark.asyncio
async def test_update_sets_updated_at_and_returns_entity(pool, clock, rows) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    pool.queue([rows.transcript(title="New title")])

    updated = await repo.update("tr_1", {"title": "New title"})

    assert updated.title == "New title"
    sql, params = pool.executed[0]
    assert sql.startswith(
        "UPDATE transcripts SET title=%s, updated_at=%s WHERE id=%s AND deleted_at IS NULL RETURNING"
    )
    assert params == ("New title", clock(), "tr_1")
    assert pool.commits == 1


@pytest.mark.asyncio
async def test_update_missing_row_raises_not_found(pool, clock) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    pool.queue([], [])

    with pytest.raises(NotFoundError):
        await repo.update("tr_gone", {"title": "x"})


@pytest.mark.asyncio
async def test_soft_delete_is_idempotent(pool, clock) -> None:
    repo = TranscriptRepository(pool, clock=clock)
    pool.queue(1, 0)

    await repo.delete("tr_1")
    await repo.delete("tr_1")

    sql, params = pool.executed[0]
    assert sql == (
        "UPDATE transcripts SET deleted_at=%s, updated_at=%s WHERE id=%s AND deleted_at IS NULL"
    )
    assert params == (clock(), clock(), "tr_1")


@pytest.mark.asyncio
async def test_hard_delete_strict_raises_when_absent(pool, clock) -> None:
    repo = PostRepository(pool, clock=clock)
    pool.queue(1, 0)

    await repo.delete("post_1")
    with pytest.raises(NotFoundError):
        await repo.delete("post_1", strict=True)
    assert pool.executed[0] == ("DELETE FROM posts WHERE id=%s", ("post_1",))


@pytest.mark.asyncio
async def test_bound_repository_uses_caller_connection_without_commit(pool, clock, rows) -> None:
    repo = PostRepository(pool, clock=clock)
    bound = repo.bind(pool.conn)
    pool.queue([rows.post()], 1)

    assert bound.is_bound
    assert not repo.is_bound
    await bound.create(_new_post())
    await bound.delete("post_1")
    assert pool.commits == 0

    pool.queue(1)
    await repo.delete("post_1")
    assert pool.commits == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (pg_errors.UniqueViolation("duplicate key"), ConflictError),
        (pg_errors.ForeignKeyViolation("missing parent"), ForeignKeyError),
        (pg_errors.CheckViolation("bad value"), ValidationError),
        (pg_errors.NotNullViolation("null value"), ValidationError),
    ],
)
async def test_integrity_errors_are_mapped(pool, clock, error, expected) -> None:
    repo = PostRepository(pool, clock=clock)
    pool.queue(error)

    with pytest.raises(expected) as excinfo:
        await repo.create(_new_post())
    assert excinfo.value.__cause__ is error
    assert pool.commits == 0


@pytest.mark.asyncio
async def test_other_database_errors_propagate(pool, clock) -> None:
    repo = PostRepository(pool, clock=clock)
    pool.queue(psycopg.OperationalError("connection lost"))

    with pytest.raises(psycopg.OperationalError):
        await repo.create(_new_post())


class _FakeAsyncPool:
    instances: list["_FakeAsyncPool"] = []

    def __init__(self, **kwargs) -> None:  # noqa: ANN003
        self.kwargs = kwargs
        self.opened = False
        self.closed = False
        _FakeAsyncPool.instances.append(self)

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_database_pool_is_shared_and_sized_from_settings(monkeypatch, settings) -> None:
    _FakeAsyncPool.instances = []
    monkeypatch.setattr(base_module, "AsyncConnectionPool", _FakeAsyncPool)
    monkeypatch.setattr(DatabasePool, "_pool", None)

    first = await DatabasePool.get_pool(settings)
    second = await DatabasePool.get_pool(settings)

    assert first is second
    assert len(_FakeAsyncPool.instances) == 1
    assert first.opened
    assert first.kwargs["conninfo"] == settings.database_url
    assert first.kwargs["min_size"] == settings.db.pool_min_size
    assert first.kwargs["max_size"] == settings.db.pool_max_size
    assert first.kwargs["open"] is False

    await DatabasePool.close()
    assert first.closed
    assert DatabasePool._pool is None
