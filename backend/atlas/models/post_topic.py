"""Post to topic association model."""

from __future__ import annotations

from uuid import UUID

from sqlmodel import Field, SQLModel


class PostTopic(SQLModel, table=True):
    __tablename__ = "post_topics"

    post_id: UUID = Field(foreign_key="posts.id", primary_key=True)
    topic_id: UUID = Field(foreign_key="topics.id", primary_key=True, index=True)
    relevance: float = Field(default=1.0, ge=0.0, le=1.0)
