"""Scheduled post model (when and where a post is published)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from contentflow.models.post import Platform


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ScheduleStatus.PENDING


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _dt_to_iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


@dataclass
class NewScheduledPost:
    post_id: str
    channel: Platform
    publish_at: datetime
    # Copied from the post when omitted.
    content: str | None = None


@dataclass
class ScheduledPost:
    id: str
    post_id: str
    channel: Platform
    publish_at: datetime
    content: str = ""
    status: ScheduleStatus = ScheduleStatus.PENDING
    retry_count: int = 0
    last_attempt_at: datetime | None = None
    error_message: str | None = None
    external_post_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "post_id": self.post_id,
            "channel": self.channel.value,
            "publish_at": _dt_to_iso(self.publish_at),
            "content": self.content,
            "status": self.status.value,
            "retry_count": int(self.retry_count),
            "last_attempt_at": _dt_to_iso(self.last_attempt_at),
            "error_message": self.error_message,
            "external_post_id": self.external_post_id,
            "created_at": _dt_to_iso(self.created_at),
            "updated_at": _dt_to_iso(self.updated_at),
        }
