"""Core data models for ContentFlow."""

from contentflow.models.insight import Insight, InsightStatus, NewInsight, PostType
from contentflow.models.post import NewPost, Platform, Post, PostStatus
from contentflow.models.query import Pagination, Sort
from contentflow.models.scheduled_post import NewScheduledPost, ScheduledPost, ScheduleStatus
from contentflow.models.transcript import NewTranscript, SourceType, Transcript, TranscriptStatus

__all__ = [
    "Insight",
    "InsightStatus",
    "NewInsight",
    "NewPost",
    "NewScheduledPost",
    "NewTranscript",
    "Pagination",
    "Platform",
    "Post",
    "PostStatus",
    "PostType",
    "ScheduledPost",
    "ScheduleStatus",
    "Sort",
    "SourceType",
    "Transcript",
    "TranscriptStatus",
]
