"""Transcript model (raw ingested content)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TranscriptStatus(str, Enum):
    RAW = "raw"
    PROCESSING = "processing"
    CLEANED = "cleaned"
    INSIGHTS_GENERATED = "insights_generated"
    POSTS_CREATED = "posts_created"
    ERROR = "error"


class SourceType(str, Enum):
    RECORDING = "recording"
    UPLOAD = "upload"
    MANUAL = "manual"
    YOUTUBE = "youtube"
    PODCAST = "podcast"
    ARTICLE = "article"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _dt_to_iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


@dataclass
class NewTranscript:
    title: str
    raw_content: str
    source_type: SourceType = SourceType.MANUAL
    source_ref: str | None = None
    cleaned_content: str | None = None
    duration_s: int | None = None
    ingested_at: datetime | None = None


@dataclass
class Transcript:
    id: str
    title: str
    raw_content: str
    source_type: SourceType = SourceType.MANUAL
    source_ref: str | None = None
    cleaned_content: str | None = None
    status: TranscriptStatus = TranscriptStatus.RAW
    word_count: int = 0
    duration_s: int | None = None
    ingested_at: datetime = field(default_factory=_utcnow)
    deleted_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "raw_content": self.raw_content,
            "source_type": self.source_type.value,
            "source_ref": self.source_ref,
            "cleaned_content": self.cleaned_content,
            "status": self.status.value,
            "word_count": int(self.word_count),
            "duration_s": self.duration_s,
            "ingested_at": _dt_to_iso(self.ingested_at),
            "deleted_at": _dt_to_iso(self.deleted_at),
            "created_at": _dt_to_iso(self.created_at),
            "updated_at": _dt_to_iso(self.updated_at),
        }
