"""Ingestion job ORM model.

Classes:
    JobStatus: Simple enumeration of valid job lifecycle states.
    IngestionJob: Progress and audit record for one fetch, embed, cluster and label pass.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel

from atlas.utils.clock import utc_now


class JobStatus(str):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionJob(SQLModel, table=True):
    __tablename__ = "ingestion_jobs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    status: str = Field(default=JobStatus.RUNNING, index=True)
    source_url: Optional[str] = Field(default=None, sa_column=Column(Text))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now, index=True)
    total_items: int = 0
    processed: int = 0
    errors: int = 0
    error_log: Optional[str] = Field(default=None, sa_column=Column(Text))
