from __future__ import annotations

from datetime import datetime, timezone

from contentflow.models.query import Sort
from contentflow.models.transcript import NewTranscript, SourceType, Transcript, TranscriptStatus
from contentflow.repositories.base import BaseRepository, Row


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_dt(value: object) -> datetime | None:
    return value if isinstance(value, datetime) else None


def count_words(text: str) -> int:
    return len(str(text or "").split())


class TranscriptRepository(BaseRepository[Transcript]):
    """Transcripts are append-only: raw content is never patched and delete is soft.

    Callers that must not modify a transcript once insights exist check
    ``is_referenced`` first.
    """

    entity = "transcript"
    table = "transcripts"
    id_prefix = "tr"
    columns = (
        "id",
        "title",
        "raw_content",
        "cleaned_content",
        "status",
        "source_type",
        "source_ref",
        "word_count",
        "duration_s",
        "ingested_at",
        "deleted_at",
        "created_at",
        "updated_at",
    )
    filterable = frozenset({"status", "source_type", "source_ref"})
    sortable = frozenset({"created_at", "updated_at", "ingested_at", "title", "word_count"})
    searchable = ("title", "raw_content")
    updatable = frozenset(
        {"title", "cleaned_content", "status", "source_type", "source_ref", "duration_s"}
    )
    soft_delete = True

    @staticmethod
    def _from_row(row: Row) -> Transcript:
        raw_duration = row.get("duration_s")
        return Transcript(
            id=str(row["id"]),
            title=str(row["title"]),
            raw_content=str(row["raw_content"]),
            cleaned_content=str(row["cleaned_content"])
            if row.get("cleaned_content") is not None
            else None,
            status=TranscriptStatus(str(row.get("status") or TranscriptStatus.RAW.value)),
            source_type=SourceType(str(row.get("source_type") or SourceType.MANUAL.value)),
            source_ref=str(row["source_ref"]) if row.get("source_ref") is not None else None,
            word_count=int(row.get("word_count") or 0),
            duration_s=int(raw_duration) if raw_duration is not None else None,
            ingested_at=_as_dt(row.get("ingested_at")) or _utcnow(),
            deleted_at=_as_dt(row.get("deleted_at")),
            created_at=_as_dt(row.get("created_at")) or _utcnow(),
            updated_at=_as_dt(row.get("updated_at")) or _utcnow(),
        )

    async def _prepare_create(self, data: NewTranscript) -> Row:
        title = self._require_text("title", data.title)
        raw_content = self._require_text("raw_content", data.raw_content)
        source_type = self._coerce_enum(SourceType, "source_type", data.source_type)
        duration_s = None
        if data.duration_s is not None:
            duration_s = self._require_int("duration_s", data.duration_s, minimum=0)
        now = self.now()
        ingested_at = now
        if data.ingested_at is not None:
            ingested_at = self._require_aware("ingested_at", data.ingested_at)
        return {
            "id": self.new_id(),
            "title": title,
            "raw_content": raw_content,
            "cleaned_content": self._optional_text("cleaned_content", data.cleaned_content),
            "status": TranscriptStatus.RAW,
            "source_type": source_type,
            "source_ref": self._optional_text("source_ref", data.source_ref),
            "word_count": count_words(raw_content),
            "duration_s": duration_s,
            "ingested_at": ingested_at,
            "created_at": now,
            "updated_at": now,
        }

    def _prepare_patch(self, patch: Row) -> Row:
        values: Row = {}
        for key, value in patch.items():
            if key == "title":
                values[key] = self._require_text("title", value)
            elif key == "status":
                values[key] = self._coerce_enum(TranscriptStatus, "status", value).value
            elif key == "source_type":
                values[key] = self._coerce_enum(SourceType, "source_type", value).value
            elif key == "duration_s":
                values[key] = (
                    None if value is None else self._require_int("duration_s", value, minimum=0)
                )
            else:
                values[key] = self._optional_text(key, value)
        return values

    async def find_by_source(self, source_ref: str) -> list[Transcript]:
        """Return live transcripts ingested from ``source_ref``, oldest first."""
        return await self.find_many({"source_ref": str(source_ref)}, sort=Sort("ingested_at"))

    async def update_status(self, transcript_id: str, status: TranscriptStatus | str) -> Transcript:
        return await self.update(transcript_id, {"status": status})

    async def is_referenced(self, transcript_id: str) -> bool:
        row = await self._fetch_one(
            "SELECT EXISTS (SELECT 1 FROM insights WHERE transcript_id=%s) AS referenced",
            (str(transcript_id),),
        )
        return bool(row and row["referenced"])
