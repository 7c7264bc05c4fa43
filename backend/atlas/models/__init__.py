"""Convenience exports for ORM models.

Surface the SQLModel tables so calling code can import them from a single module.
"""

from .post import Post
from .topic import Topic
from .post_topic import PostTopic
from .ingestion_job import IngestionJob, JobStatus

__all__ = [
    "Post",
    "Topic",
    "PostTopic",
    "IngestionJob",
    "JobStatus",
]
