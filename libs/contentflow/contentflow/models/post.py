"""Post model (authored content, optionally derived from an insight)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Platform(str, Enum):
    LINKEDIN = "linkedin"
    X = "x"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    YOUTUBE = "youtube"


class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _dt_to_iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


@dataclass
class NewPost:
    title: str
    platform: Platform
    content: str
    insight_id: str | None = None
    hashtags: list[str] = field(default_factory=list)


@dataclass
class Post:
    id: str
    title: str
    platform: Platform
    content: str
    insight_id: str | None = None
    hashtags: list[str] = field(default_factory=list)
    status: PostStatus = PostStatus.DRAFT
    character_count: int = 0
    published_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "platform": self.platform.value,
            "content": self.content,
            "insight_id": self.insight_id,
            "hashtags": list(self.hashtags),
            "status": self.status.value,
            "character_count": int(self.character_count),
            "published_at": _dt_to_iso(self.published_at),
            "created_at": _dt_to_iso(self.created_at),
            "updated_at": _dt_to_iso(self.updated_at),
        }
