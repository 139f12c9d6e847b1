from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from contentflow.exceptions import ForeignKeyError
from contentflow.models.insight import Insight, InsightStatus, NewInsight, PostType
from contentflow.models.query import Pagination, Sort
from contentflow.repositories.base import BaseRepository, Row

logger = logging.getLogger(__name__)

_SCORE_FIELDS = ("urgency_score", "relatability_score", "specificity_score", "authority_score")
_MAX_SCORE = 100
_MAX_TOTAL = _MAX_SCORE * len(_SCORE_FIELDS)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_dt(value: object) -> datetime | None:
    return value if isinstance(value, datetime) else None


def _opt_int(value: Any) -> int | None:
    return int(value) if value is not None else None


class InsightRepository(BaseRepository[Insight]):
    """Insights extracted from live transcripts.

    ``total_score`` is the sum of the four scores unless the caller sets it
    explicitly, both on create and when a patch changes any score.
    """

    entity = "insight"
    table = "insights"
    id_prefix = "ins"
    columns = (
        "id",
        "transcript_id",
        "title",
        "summary",
        "verbatim_quote",
        "category",
        "post_type",
        *_SCORE_FIELDS,
        "total_score",
        "status",
        "processing_duration_ms",
        "estimated_tokens",
        "estimated_cost",
        "created_at",
        "updated_at",
    )
    filterable = frozenset({"transcript_id", "status", "post_type", "category"})
    sortable = frozenset({"created_at", "updated_at", "total_score", "title"})
    searchable = ("title", "summary", "verbatim_quote", "category")
    updatable = frozenset(
        {"title", "summary", "verbatim_quote", "category", "post_type", "status", "total_score"}
        | set(_SCORE_FIELDS)
    )

    @staticmethod
    def _from_row(row: Row) -> Insight:
        raw_cost = row.get("estimated_cost")
        return Insight(
            id=str(row["id"]),
            transcript_id=str(row["transcript_id"]),
            title=str(row.get("title") or ""),
            summary=str(row.get("summary") or ""),
            verbatim_quote=str(row.get("verbatim_quote") or ""),
            category=str(row.get("category") or ""),
            post_type=PostType(str(row.get("post_type") or PostType.PROBLEM.value)),
            urgency_score=int(row.get("urgency_score") or 0),
            relatability_score=int(row.get("relatability_score") or 0),
            specificity_score=int(row.get("specificity_score") or 0),
            authority_score=int(row.get("authority_score") or 0),
            total_score=int(row.get("total_score") or 0),
            status=InsightStatus(str(row.get("status") or InsightStatus.DRAFT.value)),
            processing_duration_ms=_opt_int(row.get("processing_duration_ms")),
            estimated_tokens=_opt_int(row.get("estimated_tokens")),
            estimated_cost=float(raw_cost) if raw_cost is not None else None,
            created_at=_as_dt(row.get("created_at")) or _utcnow(),
            updated_at=_as_dt(row.get("updated_at")) or _utcnow(),
        )

    async def _prepare_create(self, data: NewInsight) -> Row:
        transcript_id = self._require_text("transcript_id", data.transcript_id)
        scores = {
            name: self._require_int(name, getattr(data, name), minimum=0, maximum=_MAX_SCORE)
            for name in _SCORE_FIELDS
        }
        if data.total_score is None:
            total = sum(scores.values())
        else:
            total = self._require_int("total_score", data.total_score, minimum=0, maximum=_MAX_TOTAL)
        values: Row = {
            "id": self.new_id(),
            "transcript_id": transcript_id,
            "title": self._require_text("title", data.title),
            "summary": self._require_text("summary", data.summary),
            "verbatim_quote": self._require_text("verbatim_quote", data.verbatim_quote),
            "category": self._require_text("category", data.category),
            "post_type": self._coerce_enum(PostType, "post_type", data.post_type),
            **scores,
            "total_score": total,
            "status": self._coerce_enum(InsightStatus, "status", data.status),
            "processing_duration_ms": None
            if data.processing_duration_ms is None
            else self._require_int("processing_duration_ms", data.processing_duration_ms, minimum=0),
            "estimated_tokens": None
            if data.estimated_tokens is None
            else self._require_int("estimated_tokens", data.estimated_tokens, minimum=0),
            "estimated_cost": None
            if data.estimated_cost is None
            else self._require_number("estimated_cost", data.estimated_cost, minimum=0),
        }

        parent = await self._fetch_one(
            "SELECT id FROM transcripts WHERE id=%s AND deleted_at IS NULL", (transcript_id,)
        )
        if parent is None:
            raise ForeignKeyError(
                self.entity, f"transcript {transcript_id!r} does not exist"
            )

        now = self.now()
        values["created_at"] = now
        values["updated_at"] = now
        return values

    def _prepare_patch(self, patch: Row) -> Row:
        values: Row = {}
        for key, value in patch.items():
            if key in _SCORE_FIELDS:
                values[key] = self._require_int(key, value, minimum=0, maximum=_MAX_SCORE)
            elif key == "total_score":
                values[key] = self._require_int(key, value, minimum=0, maximum=_MAX_TOTAL)
            elif key == "post_type":
                values[key] = self._coerce_enum(PostType, key, value).value
            elif key == "status":
                values[key] = self._coerce_enum(InsightStatus, key, value).value
            else:
                values[key] = self._require_text(key, value)
        return values

    def _computed_sets(self, values: Row) -> list[tuple[str, tuple[object, ...]]]:
        patched = [name for name in _SCORE_FIELDS if name in values]
        if not patched or "total_score" in values:
            return []
        # Unpatched scores are read from the row being updated.
        terms = " + ".join("%s" if name in values else name for name in _SCORE_FIELDS)
        return [(f"total_score={terms}", tuple(values[name] for name in patched))]

    async def find_by_transcript(self, transcript_id: str) -> list[Insight]:
        return await self.find_many({"transcript_id": str(transcript_id)})

    async def find_top_scored(
        self, *, min_score: int = 0, status: InsightStatus | str | None = None, limit: int = 50
    ) -> list[Insight]:
        """Highest total score first, at or above ``min_score``."""
        filters: dict[str, object] = {}
        if status is not None:
            filters["status"] = self._coerce_enum(InsightStatus, "status", status)
        where, params = self._where(filters)
        clause = "total_score >= %s"
        where = f"{where} AND {clause}" if where else f" WHERE {clause}"
        params.append(int(min_score))
        limit, _ = self._check_pagination(Pagination(limit=limit))
        rows = await self._fetch_all(
            f"SELECT {self._select_columns} FROM {self.table}{where} "
            f"ORDER BY {self._order_by(Sort('total_score', descending=True))} LIMIT %s",
            (*params, limit),
        )
        return [self._from_row(r) for r in rows]

    async def update_status(self, insight_id: str, status: InsightStatus | str) -> Insight:
        return await self.update(insight_id, {"status": status})

    async def bulk_update_status(
        self, insight_ids: Sequence[str], status: InsightStatus | str
    ) -> int:
        ids = [str(i) for i in insight_ids]
        if not ids:
            return 0
        value = self._coerce_enum(InsightStatus, "status", status)
        updated = await self._execute(
            f"UPDATE {self.table} SET status=%s, updated_at=%s WHERE id = ANY(%s)",
            (value.value, self.now(), ids),
        )
        logger.info("insight status bulk update (status=%s, updated=%d)", value.value, updated)
        return updated
