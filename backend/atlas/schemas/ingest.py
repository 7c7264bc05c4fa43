"""Pydantic schemas for ingestion job workflows.

Classes:
    IngestRequest: Validate the payload that starts an ingestion run.
    IngestStartedResponse: Identifier returned once a job has been submitted.
    IngestionJobResource, IngestionJobStatusResponse: Polling payloads for job progress.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IngestRequest(BaseModel):
    source_url: Optional[str] = Field(default=None, max_length=2048)
    api_key: Optional[str] = Field(default=None, max_length=4096)
    limit: int = Field(default=100, ge=1, le=10000)

    @field_validator("source_url", "api_key")
    @classmethod
    def normalise_optional_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        text = value.strip()
        return text or None


class IngestStartedResponse(BaseModel):
    message: str
    job_id: UUID


class IngestionJobResource(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    source_url: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    total_items: int
    processed: int
    errors: int
    error_log: Optional[str] = None


class IngestionJobStatusResponse(BaseModel):
    job: Optional[IngestionJobResource] = None
