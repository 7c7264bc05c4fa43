"""Post ORM model.

Classes:
    Post: A source post with its embedding vector and optional 3D layout position.

Functions:
    set_updated_at(_, __, target): SQLAlchemy event hook that maintains the `updated_at` timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Float, LargeBinary, Text, event
from sqlmodel import Field, SQLModel

from atlas.utils.clock import utc_now


class Post(SQLModel, table=True):
    __tablename__ = "posts"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    external_id: str = Field(index=True, unique=True)
    content: str = Field(sa_column=Column(Text, nullable=False))
    title: Optional[str] = Field(default=None, sa_column=Column(Text))
    author: Optional[str] = None
    author_id: Optional[str] = None
    url: Optional[str] = Field(default=None, sa_column=Column(Text))
    community: Optional[str] = None
    source_created_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
    embedding: Optional[bytes] = Field(default=None, sa_column=Column(LargeBinary))
    embedding_dim: Optional[int] = None
    pos_x: Optional[float] = Field(default=None, sa_column=Column(Float))
    pos_y: Optional[float] = Field(default=None, sa_column=Column(Float))
    pos_z: Optional[float] = Field(default=None, sa_column=Column(Float))


@event.listens_for(Post, "before_update", propagate=True)
def set_updated_at(_, __, target):
    target.updated_at = utc_now()
