"""Insight model (finding extracted from a transcript)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class InsightStatus(str, Enum):
    DRAFT = "draft"
    NEEDS_REVIEW = "needs_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class PostType(str, Enum):
    PROBLEM = "Problem"
    PROOF = "Proof"
    FRAMEWORK = "Framework"
    CONTRARIAN_TAKE = "Contrarian Take"
    MENTAL_MODEL = "Mental Model"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _dt_to_iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


@dataclass
class NewInsight:
    transcript_id: str
    title: str
    summary: str
    verbatim_quote: str
    category: str
    post_type: PostType
    urgency_score: int = 0
    relatability_score: int = 0
    specificity_score: int = 0
    authority_score: int = 0
    # Sum of the four scores when omitted.
    total_score: int | None = None
    status: InsightStatus = InsightStatus.DRAFT
    processing_duration_ms: int | None = None
    estimated_tokens: int | None = None
    estimated_cost: float | None = None


@dataclass
class Insight:
    id: str
    transcript_id: str
    title: str
    summary: str
    verbatim_quote: str
    category: str
    post_type: PostType
    urgency_score: int = 0
    relatability_score: int = 0
    specificity_score: int = 0
    authority_score: int = 0
    total_score: int = 0
    status: InsightStatus = InsightStatus.DRAFT
    processing_duration_ms: int | None = None
    estimated_tokens: int | None = None
    estimated_cost: float | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def scores(self) -> dict[str, int]:
        return {
            "urgency": int(self.urgency_score),
            "relatability": int(self.relatability_score),
            "specificity": int(self.specificity_score),
            "authority": int(self.authority_score),
            "total": int(self.total_score),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "transcript_id": self.transcript_id,
            "title": self.title,
            "summary": self.summary,
            "verbatim_quote": self.verbatim_quote,
            "category": self.category,
            "post_type": self.post_type.value,
            "scores": self.scores,
            "status": self.status.value,
            "processing_duration_ms": self.processing_duration_ms,
            "estimated_tokens": self.estimated_tokens,
            "estimated_cost": self.estimated_cost,
            "created_at": _dt_to_iso(self.created_at),
            "updated_at": _dt_to_iso(self.updated_at),
        }
