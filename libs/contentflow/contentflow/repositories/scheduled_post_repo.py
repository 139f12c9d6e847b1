from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from contentflow.exceptions import ConflictError, ForeignKeyError, ValidationError
from contentflow.models.post import Platform
from contentflow.models.query import Pagination, Sort
from contentflow.models.scheduled_post import NewScheduledPost, ScheduledPost, ScheduleStatus
from contentflow.repositories.base import BaseRepository, Row

logger = logging.getLogger(__name__)

_PENDING_GUARD = ("status=%s", (ScheduleStatus.PENDING.value,))


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_dt(value: object) -> datetime | None:
    return value if isinstance(value, datetime) else None


class ScheduledPostRepository(BaseRepository[ScheduledPost]):
    """Publication schedules and their lifecycle.

    States: ``pending`` -> ``sent`` | ``failed`` | ``cancelled``. Every
    transition is a single conditional UPDATE on ``status='pending'``, so two
    racing callers cannot both move the same schedule. At most one pending
    schedule exists per post; the partial unique index
    ``uq_scheduled_posts_pending_post`` backs the explicit check in ``create``.

    This repository only records state. Dispatching due posts belongs to the
    caller, which polls ``find_due``.
    """

    entity = "scheduled_post"
    table = "scheduled_posts"
    id_prefix = "sched"
    columns = (
        "id",
        "post_id",
        "channel",
        "publish_at",
        "content",
        "status",
        "retry_count",
        "last_attempt_at",
        "error_message",
        "external_post_id",
        "created_at",
        "updated_at",
    )
    filterable = frozenset({"post_id", "channel", "status"})
    sortable = frozenset({"created_at", "updated_at", "publish_at"})
    searchable = ("content",)
    updatable = frozenset({"content", "channel", "publish_at"})
    update_guard = _PENDING_GUARD

    @staticmethod
    def _from_row(row: Row) -> ScheduledPost:
        return ScheduledPost(
            id=str(row["id"]),
            post_id=str(row["post_id"]),
            channel=Platform(str(row.get("channel") or Platform.LINKEDIN.value)),
            publish_at=_as_dt(row.get("publish_at")) or _utcnow(),
            content=str(row.get("content") or ""),
            status=ScheduleStatus(str(row.get("status") or ScheduleStatus.PENDING.value)),
            retry_count=int(row.get("retry_count") or 0),
            last_attempt_at=_as_dt(row.get("last_attempt_at")),
            error_message=str(row["error_message"])
            if row.get("error_message") is not None
            else None,
            external_post_id=str(row["external_post_id"])
            if row.get("external_post_id") is not None
            else None,
            created_at=_as_dt(row.get("created_at")) or _utcnow(),
            updated_at=_as_dt(row.get("updated_at")) or _utcnow(),
        )

    def _require_future(self, publish_at: object) -> datetime:
        when = self._require_aware("publish_at", publish_at)
        if when <= self.now():
            raise ValidationError(self.entity, "publish_at must be in the future")
        return when

    async def _prepare_create(self, data: NewScheduledPost) -> Row:
        post_id = self._require_text("post_id", data.post_id)
        channel = self._coerce_enum(Platform, "channel", data.channel)
        publish_at = self._require_future(data.publish_at)
        content = self._optional_text("content", data.content)

        post = await self._fetch_one("SELECT content FROM posts WHERE id=%s", (post_id,))
        if post is None:
            raise ForeignKeyError(self.entity, f"post {post_id!r} does not exist")

        pending = await self._fetch_one(
            f"SELECT id FROM {self.table} WHERE post_id=%s AND status=%s",
            (post_id, ScheduleStatus.PENDING.value),
        )
        if pending is not None:
            raise ConflictError(
                self.entity,
                f"post {post_id!r} already has a pending schedule ({pending['id']})",
            )

        if content is None:
            content = str(post.get("content") or "")
        if not content.strip():
            raise ValidationError(self.entity, "content is required")

        now = self.now()
        return {
            "id": self.new_id(),
            "post_id": post_id,
            "channel": channel,
            "publish_at": publish_at,
            "content": content,
            "status": ScheduleStatus.PENDING,
            "retry_count": 0,
            "created_at": now,
            "updated_at": now,
        }

    def _prepare_patch(self, patch: Row) -> Row:
        values: Row = {}
        for key, value in patch.items():
            if key == "channel":
                values[key] = self._coerce_enum(Platform, key, value).value
            elif key == "publish_at":
                values[key] = self._require_future(value)
            else:
                values[key] = self._require_text(key, value)
        return values

    async def schedule(
        self,
        post_id: str,
        publish_at: datetime,
        channel: Platform | str,
        *,
        content: str | None = None,
    ) -> ScheduledPost:
        scheduled = await self.create(
            NewScheduledPost(
                post_id=post_id,
                channel=self._coerce_enum(Platform, "channel", channel),
                publish_at=publish_at,
                content=content,
            )
        )
        logger.info(
            "post scheduled (post_id=%s, channel=%s, publish_at=%s)",
            post_id,
            scheduled.channel.value,
            scheduled.publish_at.isoformat(),
        )
        return scheduled

    async def _transition(self, schedule_id: str, action: str, values: Row) -> ScheduledPost:
        values["updated_at"] = self.now()
        row = await self._update_row(schedule_id, values, guard=_PENDING_GUARD)
        if row is None:
            await self._raise_miss(schedule_id, action)
        logger.info("scheduled post %s (id=%s)", action, schedule_id)
        return self._from_row(row)

    async def mark_sent(
        self, schedule_id: str, *, external_post_id: str | None = None
    ) -> ScheduledPost:
        return await self._transition(
            schedule_id,
            "mark_sent",
            {
                "status": ScheduleStatus.SENT,
                "last_attempt_at": self.now(),
                "external_post_id": external_post_id,
                "error_message": None,
            },
        )

    async def mark_failed(self, schedule_id: str, reason: str) -> ScheduledPost:
        return await self._transition(
            schedule_id,
            "mark_failed",
            {
                "status": ScheduleStatus.FAILED,
                "last_attempt_at": self.now(),
                "error_message": str(reason or "").strip() or "unknown error",
            },
        )

    async def cancel(self, schedule_id: str) -> ScheduledPost:
        return await self._transition(schedule_id, "cancel", {"status": ScheduleStatus.CANCELLED})

    async def record_attempt(self, schedule_id: str) -> ScheduledPost:
        """Count a failed delivery attempt while leaving the schedule pending."""
        now = self.now()
        row = await self._execute_returning(
            f"""
            UPDATE {self.table}
            SET retry_count=retry_count + 1, last_attempt_at=%s, updated_at=%s
            WHERE id=%s AND status=%s
            RETURNING {self._select_columns}
            """,
            (now, now, str(schedule_id), ScheduleStatus.PENDING.value),
        )
        if row is None:
            await self._raise_miss(schedule_id, "record_attempt")
        scheduled = self._from_row(row)
        logger.info(
            "scheduled post attempt recorded (id=%s, retry_count=%d)",
            schedule_id,
            scheduled.retry_count,
        )
        return scheduled

    async def find_due(self, now: datetime, *, limit: int | None = None) -> list[ScheduledPost]:
        """Pending schedules with ``publish_at <= now``, earliest first."""
        cutoff = self._require_aware("now", now)
        query = (
            f"SELECT {self._select_columns} FROM {self.table} "
            "WHERE status=%s AND publish_at <= %s "
            "ORDER BY publish_at ASC, id ASC"
        )
        params: list[object] = [ScheduleStatus.PENDING.value, cutoff]
        if limit is not None:
            page_limit, _ = self._check_pagination(Pagination(limit=limit))
            query += " LIMIT %s"
            params.append(page_limit)
        rows = await self._fetch_all(query, tuple(params))
        return [self._from_row(r) for r in rows]

    async def find_by_post(self, post_id: str) -> list[ScheduledPost]:
        return await self.find_many({"post_id": str(post_id)}, sort=Sort("publish_at"))

    async def find_pending_for_post(self, post_id: str) -> ScheduledPost | None:
        found = await self.find_many(
            {"post_id": str(post_id), "status": ScheduleStatus.PENDING}, Pagination(limit=1)
        )
        return found[0] if found else None

    async def find_between(
        self,
        start: datetime,
        end: datetime,
        *,
        status: ScheduleStatus | str | None = None,
        channel: Platform | str | None = None,
    ) -> list[ScheduledPost]:
        """Schedules with ``start <= publish_at <= end``, earliest first."""
        lower = self._require_aware("start", start)
        upper = self._require_aware("end", end)
        if lower > upper:
            raise ValidationError(self.entity, "start must not be after end")
        filters: dict[str, object] = {}
        if status is not None:
            filters["status"] = self._coerce_enum(ScheduleStatus, "status", status)
        if channel is not None:
            filters["channel"] = self._coerce_enum(Platform, "channel", channel)
        where, params = self._where(filters)
        clause = "publish_at >= %s AND publish_at <= %s"
        where = f"{where} AND {clause}" if where else f" WHERE {clause}"
        params.extend([lower, upper])
        rows = await self._fetch_all(
            f"SELECT {self._select_columns} FROM {self.table}{where} "
            f"ORDER BY {self._order_by(Sort('publish_at'))}",
            tuple(params),
        )
        return [self._from_row(r) for r in rows]

    async def find_upcoming(self, hours: float = 24) -> list[ScheduledPost]:
        """Pending schedules due within the next ``hours``."""
        window = self._require_number("hours", hours)
        if window <= 0:
            raise ValidationError(self.entity, "hours must be > 0")
        now = self.now()
        return await self.find_between(
            now, now + timedelta(hours=window), status=ScheduleStatus.PENDING
        )

    async def find_by_ids(self, schedule_ids: Sequence[str]) -> list[ScheduledPost]:
        ids = [str(i) for i in schedule_ids]
        if not ids:
            return []
        rows = await self._fetch_all(
            f"SELECT {self._select_columns} FROM {self.table} WHERE id = ANY(%s) "
            f"ORDER BY {self._order_by(Sort('publish_at'))}",
            (ids,),
        )
        return [self._from_row(r) for r in rows]
