"""Application bootstrap for the Semantic Topic Atlas API.

This module wires the FastAPI application, attaches middleware, and exposes small lifecycle utilities.

Functions:
    lifespan(app: FastAPI): Initialise database state and the ingestion runner on startup.
    health_check(): Lightweight readiness probe used by monitoring and local smoke tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from atlas.api import api_router
from atlas.core.config import get_settings
from atlas.db.session import SessionLocal, init_db
from atlas.services import store
from atlas.services.ingestion import IngestionRunner

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
_LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    async with SessionLocal() as session:
        interrupted = await store.fail_interrupted_jobs(session)
    if interrupted:
        _LOGGER.warning("Marked %d interrupted ingestion job(s) as failed", interrupted)
    app.state.ingestion_runner = IngestionRunner(SessionLocal)
    yield


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
