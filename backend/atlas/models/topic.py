"""Topic ORM model.

Classes:
    Topic: A labelled cluster of posts with its centroid vector and layout position.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Float, LargeBinary, Text
from sqlmodel import Field, SQLModel

from atlas.utils.clock import utc_now


class Topic(SQLModel, table=True):
    __tablename__ = "topics"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: Optional[UUID] = Field(default=None, foreign_key="ingestion_jobs.id", index=True)
    name: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    color: str
    centroid_embedding: Optional[bytes] = Field(default=None, sa_column=Column(LargeBinary))
    centroid_dim: Optional[int] = None
    pos_x: float = Field(default=0.0, sa_column=Column(Float, nullable=False))
    pos_y: float = Field(default=0.0, sa_column=Column(Float, nullable=False))
    pos_z: float = Field(default=0.0, sa_column=Column(Float, nullable=False))
    post_count: int = Field(default=0, index=True)
    keywords_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utc_now)
