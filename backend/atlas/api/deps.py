"""Shared FastAPI dependencies for the route modules."""

from __future__ import annotations

from typing import Callable

from fastapi import Request

from atlas.db.session import SessionLocal
from atlas.services.catalog import SearchService
from atlas.services.ingestion import IngestionRunner
from atlas.services.source import PostSource

SourceFactory = Callable[..., PostSource]


def get_ingestion_runner(request: Request) -> IngestionRunner:
    runner = getattr(request.app.state, "ingestion_runner", None)
    if runner is None:
        runner = IngestionRunner(SessionLocal)
        request.app.state.ingestion_runner = runner
    return runner


def get_source_factory() -> SourceFactory:
    return PostSource


def get_search_service() -> SearchService:
    return SearchService()
