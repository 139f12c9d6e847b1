"""PostgreSQL repository layer for the content pipeline."""

from contentflow.repositories.base import BaseRepository, DatabasePool
from contentflow.repositories.insight_repo import InsightRepository
from contentflow.repositories.post_repo import PostRepository
from contentflow.repositories.scheduled_post_repo import ScheduledPostRepository
from contentflow.repositories.transcript_repo import TranscriptRepository

__all__ = [
    "BaseRepository",
    "DatabasePool",
    "InsightRepository",
    "PostRepository",
    "ScheduledPostRepository",
    "TranscriptRepository",
]
