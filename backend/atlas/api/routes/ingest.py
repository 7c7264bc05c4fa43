"""Ingestion endpoints.

Endpoints:
    start_ingestion(payload, runner, source_factory): Submit a background fetch/embed/cluster job and return its id.
    get_ingestion_status(job_id, session): Poll one job, or the most recent job when no id is given.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from atlas.api.deps import SourceFactory, get_ingestion_runner, get_source_factory
from atlas.core.config import get_settings
from atlas.db.session import get_session
from atlas.schemas import (
    IngestionJobResource,
    IngestionJobStatusResponse,
    IngestRequest,
    IngestStartedResponse,
)
from atlas.services import store
from atlas.services.ingestion import IngestionAlreadyRunning, IngestionRunner

router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.post("", response_model=IngestStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_ingestion(
    payload: IngestRequest,
    runner: IngestionRunner = Depends(get_ingestion_runner),
    source_factory: SourceFactory = Depends(get_source_factory),
) -> IngestStartedResponse:
    settings = get_settings()
    source_url = payload.source_url or settings.source_api_url
    if not source_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="source_url is required")
    api_key = payload.api_key or (
        settings.source_api_key.get_secret_value() if settings.source_api_key else None
    )

    source = source_factory(source_url, api_key, settings=settings)
    try:
        job = await runner.start(source=source, requested_total=payload.limit)
    except IngestionAlreadyRunning as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return IngestStartedResponse(message="Ingestion started", job_id=job.id)


@router.get("", response_model=IngestionJobStatusResponse)
async def get_ingestion_status(
    job_id: Optional[UUID] = None,
    session: AsyncSession = Depends(get_session),
) -> IngestionJobStatusResponse:
    if job_id is not None:
        job = await store.get_job(session, job_id)
        if job is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ingestion job not found")
    else:
        job = await store.get_latest_job(session)
    return IngestionJobStatusResponse(
        job=IngestionJobResource.model_validate(job) if job is not None else None
    )
