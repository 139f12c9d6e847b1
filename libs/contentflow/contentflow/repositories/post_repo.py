from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from psycopg.types.json import Jsonb

from contentflow.exceptions import ForeignKeyError, ValidationError
from contentflow.models.post import NewPost, Platform, Post, PostStatus
from contentflow.repositories.base import BaseRepository, Row

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_dt(value: object) -> datetime | None:
    return value if isinstance(value, datetime) else None


def _as_str_list(value: object) -> list[str]:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


class PostRepository(BaseRepository[Post]):
    """Posts move draft -> published only; ``status`` is never patched directly."""

    entity = "post"
    table = "posts"
    id_prefix = "post"
    columns = (
        "id",
        "insight_id",
        "title",
        "platform",
        "content",
        "hashtags",
        "status",
        "character_count",
        "published_at",
        "created_at",
        "updated_at",
    )
    filterable = frozenset({"insight_id", "platform", "status"})
    sortable = frozenset(
        {"created_at", "updated_at", "published_at", "title", "platform", "status"}
    )
    searchable = ("title", "content")
    updatable = frozenset({"title", "content", "platform", "hashtags"})

    @staticmethod
    def _from_row(row: Row) -> Post:
        content = str(row.get("content") or "")
        raw_count = row.get("character_count")
        return Post(
            id=str(row["id"]),
            insight_id=str(row["insight_id"]) if row.get("insight_id") is not None else None,
            title=str(row.get("title") or ""),
            platform=Platform(str(row.get("platform") or Platform.LINKEDIN.value)),
            content=content,
            hashtags=_as_str_list(row.get("hashtags")),
            status=PostStatus(str(row.get("status") or PostStatus.DRAFT.value)),
            character_count=int(raw_count) if raw_count is not None else len(content),
            published_at=_as_dt(row.get("published_at")),
            created_at=_as_dt(row.get("created_at")) or _utcnow(),
            updated_at=_as_dt(row.get("updated_at")) or _utcnow(),
        )

    def _check_hashtags(self, value: object) -> list[str]:
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            raise ValidationError(self.entity, "hashtags must be a list of strings")
        if any(not v.strip() for v in value):
            raise ValidationError(self.entity, "hashtags must not contain blank entries")
        return list(value)

    async def _prepare_create(self, data: NewPost) -> Row:
        content = self._require_text("content", data.content)
        insight_id = self._optional_text("insight_id", data.insight_id)
        values: Row = {
            "id": self.new_id(),
            "insight_id": insight_id,
            "title": self._require_text("title", data.title),
            "platform": self._coerce_enum(Platform, "platform", data.platform),
            "content": content,
            "hashtags": Jsonb(self._check_hashtags(data.hashtags)),
            "status": PostStatus.DRAFT,
            "character_count": len(content),
            "published_at": None,
        }

        if insight_id is not None:
            parent = await self._fetch_one("SELECT id FROM insights WHERE id=%s", (insight_id,))
            if parent is None:
                raise ForeignKeyError(self.entity, f"insight {insight_id!r} does not exist")

        now = self.now()
        values["created_at"] = now
        values["updated_at"] = now
        return values

    def _prepare_patch(self, patch: Row) -> Row:
        values: Row = {}
        for key, value in patch.items():
            if key == "platform":
                values[key] = self._coerce_enum(Platform, key, value).value
            elif key == "hashtags":
                values[key] = Jsonb(self._check_hashtags(value))
            elif key == "content":
                values[key] = self._require_text(key, value)
                values["character_count"] = len(values[key])
            else:
                values[key] = self._require_text(key, value)
        return values

    async def publish(self, post_id: str) -> Post:
        """Transition draft -> published; publishing twice is an error."""
        now = self.now()
        row = await self._update_row(
            post_id,
            {"status": PostStatus.PUBLISHED, "published_at": now, "updated_at": now},
            guard=("status=%s", (PostStatus.DRAFT.value,)),
        )
        if row is None:
            await self._raise_miss(post_id, "publish")
        logger.info("post published (id=%s)", post_id)
        return self._from_row(row)

    async def find_by_insight(self, insight_id: str) -> list[Post]:
        return await self.find_many({"insight_id": str(insight_id)})
