"""High level orchestration for ingestion jobs.

Classes:
    IngestionService: Drives fetch, embed, persist, cluster, project, label and link for one job.
    IngestionRunner: Runs one job at a time on a detached asyncio task.
    IngestionAlreadyRunning: Raised when a job is submitted while another is in flight.

Functions:
    choose_cluster_count(count, ...): Scale the topic count to the corpus size.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy.ext.asyncio import async_sessionmaker

from atlas.core.config import Settings, get_settings
from atlas.models import IngestionJob, JobStatus
from atlas.services import store
from atlas.services.graph import topic_color
from atlas.services.keywords import extract_cluster_keywords
from atlas.services.openai_client import ClusterLabel, EmbeddingBatch, OpenAIService
from atlas.services.source import PostSource, SourcePost
from atlas.services.vectors import (
    KMeansResult,
    ProjectionBasis,
    kmeans_cluster,
    project_to_3d,
    random_projection_basis,
)
from atlas.utils.clock import utc_now
from atlas.utils.tokenization import truncate_to_tokens

_LOGGER = logging.getLogger(__name__)

BasisFactory = Callable[[int, np.random.Generator], ProjectionBasis]


class EmbeddingProvider(Protocol):
    async def embed_texts(self, texts: Sequence[str]) -> EmbeddingBatch: ...

    async def label_cluster(self, texts: Sequence[str]) -> ClusterLabel: ...


class IngestionAlreadyRunning(RuntimeError):
    def __init__(self, job_id: UUID | None) -> None:
        super().__init__(f"Ingestion job {job_id} is still running")
        self.job_id = job_id


@dataclass(slots=True)
class _IngestedPost:
    post_id: UUID
    label_text: str
    vector: list[float]


@dataclass(slots=True)
class _JobProgress:
    processed: int = 0
    errors: int = 0
    posts: list[_IngestedPost] = field(default_factory=list)


def _default_basis_factory(dim: int, rng: np.random.Generator) -> ProjectionBasis:
    return random_projection_basis(dim, rng=rng)


def choose_cluster_count(
    count: int,
    *,
    target_size: int = 20,
    minimum: int = 5,
    maximum: int = 50,
) -> int:
    """More topics for larger corpora, within ``[minimum, maximum]``."""

    if count <= 0:
        return 0
    return min(max(math.ceil(count / max(target_size, 1)), minimum), maximum)


class IngestionService:
    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        *,
        settings: Settings | None = None,
        rng: np.random.Generator | None = None,
        basis_factory: BasisFactory | None = None,
    ) -> None:
        self._provider = provider or OpenAIService()
        self._settings = settings or get_settings()
        self._rng = rng or np.random.default_rng()
        self._basis_factory = basis_factory or _default_basis_factory

    async def create_job(
        self,
        session,
        *,
        requested_total: int,
        source_url: str | None = None,
    ) -> IngestionJob:
        job = await store.create_job(session, total_items=requested_total, source_url=source_url)
        _LOGGER.info("Created ingestion job %s for up to %d posts", job.id, requested_total)
        return job

    async def run_job(self, session, *, job_id: UUID, source: PostSource) -> IngestionJob:
        """Run the whole pipeline for ``job_id`` and return the terminal job record.

        Item and batch failures are absorbed into the job's error counter; any
        other exception marks the job failed with the counters reached so far.
        """

        progress = _JobProgress()
        job = await store.get_job(session, job_id)
        if job is None:
            raise ValueError(f"Ingestion job {job_id} not found")
        if job.status != JobStatus.RUNNING:
            raise ValueError(f"Ingestion job {job_id} already finished with status {job.status}")

        try:
            records = await source.fetch_all(job.total_items)
            await store.update_job(session, job_id, total_items=len(records))
            _LOGGER.info("Job %s: processing %d posts in batches of %d", job_id, len(records), self._batch_size)

            await self._ingest_batches(session, job_id, records, progress)

            if progress.posts:
                await self._build_topics(session, job_id, progress.posts)

            job = await store.update_job(
                session,
                job_id,
                status=JobStatus.COMPLETED,
                completed_at=utc_now(),
                processed=progress.processed,
                errors=progress.errors,
            )
            _LOGGER.info(
                "Job %s completed: %d processed, %d errors",
                job_id,
                progress.processed,
                progress.errors,
            )
            return job
        except Exception as exc:
            _LOGGER.exception("Job %s failed", job_id)
            await session.rollback()
            return await store.update_job(
                session,
                job_id,
                status=JobStatus.FAILED,
                completed_at=utc_now(),
                processed=progress.processed,
                errors=progress.errors,
                error_log=f"{type(exc).__name__}: {exc}",
            )

    @property
    def _batch_size(self) -> int:
        return max(1, self._settings.ingest_batch_size)

    async def _ingest_batches(
        self,
        session,
        job_id: UUID,
        records: Sequence[SourcePost],
        progress: _JobProgress,
    ) -> None:
        batch_size = self._batch_size
        total_batches = math.ceil(len(records) / batch_size)

        for batch_index, start in enumerate(range(0, len(records), batch_size), start=1):
            batch = records[start : start + batch_size]
            try:
                texts = [self._embedding_text(record) for record in batch]
                embeddings = await self._provider.embed_texts(texts)
                if len(embeddings.vectors) != len(batch):
                    raise RuntimeError(
                        f"Embedding provider returned {len(embeddings.vectors)} vectors for {len(batch)} texts"
                    )

                for record, vector in zip(batch, embeddings.vectors):
                    try:
                        post = await store.upsert_post(session, record, vector)
                    except Exception:
                        await session.rollback()
                        progress.errors += 1
                        _LOGGER.warning("Job %s: failed to save post %s", job_id, record.id, exc_info=True)
                        continue
                    progress.posts.append(
                        _IngestedPost(post_id=post.id, label_text=record.label_text(), vector=list(vector))
                    )
                    progress.processed += 1

                await store.update_job(session, job_id, processed=progress.processed, errors=progress.errors)
                _LOGGER.info(
                    "Job %s: batch %d/%d complete (%d/%d posts)",
                    job_id,
                    batch_index,
                    total_batches,
                    progress.processed,
                    len(records),
                )
            except Exception:
                await session.rollback()
                progress.errors += len(batch)
                _LOGGER.error("Job %s: batch %d/%d failed", job_id, batch_index, total_batches, exc_info=True)

    def _embedding_text(self, record: SourcePost) -> str:
        return truncate_to_tokens(
            record.embedding_text(),
            self._settings.embedding_max_tokens,
            getattr(self._provider, "embedding_model", None),
        )

    async def _build_topics(self, session, job_id: UUID, posts: Sequence[_IngestedPost]) -> None:
        settings = self._settings
        vectors = np.asarray([post.vector for post in posts], dtype=float)
        k = choose_cluster_count(
            len(posts),
            target_size=settings.topic_target_cluster_size,
            minimum=settings.topic_min_clusters,
            maximum=settings.topic_max_clusters,
        )
        _LOGGER.info("Job %s: clustering %d posts into %d topics", job_id, len(posts), k)

        clustering: KMeansResult = kmeans_cluster(
            vectors,
            k,
            max_iterations=settings.kmeans_max_iterations,
            rng=self._rng,
        )

        basis = self._basis_factory(vectors.shape[1], self._rng)
        post_positions = project_to_3d(vectors, basis, scale=settings.projection_scale)
        centroid_positions = project_to_3d(clustering.centroids, basis, scale=settings.projection_scale)

        await store.update_post_positions(
            session,
            [(post.post_id, point) for post, point in zip(posts, post_positions)],
        )

        members: dict[int, list[_IngestedPost]] = defaultdict(list)
        for post, label in zip(posts, clustering.assignments):
            members[label].append(post)

        keywords = extract_cluster_keywords(
            {label: [post.label_text for post in group] for label, group in members.items()}
        )

        for topic_number, label in enumerate(sorted(members), start=1):
            group = members[label]
            samples = [post.label_text for post in group[: settings.label_sample_size]]
            cluster_label = await self._provider.label_cluster(samples)
            _LOGGER.info(
                "Job %s: topic %d/%d %r (%d posts)",
                job_id,
                topic_number,
                len(members),
                cluster_label.name,
                len(group),
            )

            topic = await store.create_topic(
                session,
                job_id=job_id,
                name=cluster_label.name,
                description=cluster_label.description,
                color=topic_color(label),
                centroid=clustering.centroids[label],
                position=centroid_positions[label],
                post_count=len(group),
                keywords=keywords.get(label),
            )
            await store.create_topic_links(session, topic.id, [post.post_id for post in group], relevance=1.0)


class IngestionRunner:
    """Owns the detached task of the single in-flight ingestion job."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        service_factory: Callable[[], IngestionService] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._service_factory = service_factory or IngestionService
        self._task: Optional[asyncio.Task[IngestionJob]] = None
        self._job_id: UUID | None = None
        self._starting = False

    @property
    def is_running(self) -> bool:
        return self._starting or (self._task is not None and not self._task.done())

    @property
    def current_job_id(self) -> UUID | None:
        return self._job_id

    @property
    def current_task(self) -> Optional[asyncio.Task[IngestionJob]]:
        return self._task

    def ensure_idle(self) -> None:
        if self.is_running:
            raise IngestionAlreadyRunning(self._job_id)

    async def start(self, *, source: PostSource, requested_total: int) -> IngestionJob:
        self.ensure_idle()
        # claim the slot before the first await so concurrent starts see it taken
        self._starting = True
        self._job_id = None
        try:
            service = self._service_factory()
            async with self._session_factory() as session:
                job = await service.create_job(
                    session,
                    requested_total=requested_total,
                    source_url=source.base_url,
                )
            self._job_id = job.id
            self._task = asyncio.create_task(self._run(service, job.id, source), name=f"ingestion-{job.id}")
            self._task.add_done_callback(self._log_task_exit)
        finally:
            self._starting = False
        return job

    async def _run(self, service: IngestionService, job_id: UUID, source: PostSource) -> IngestionJob:
        async with self._session_factory() as session:
            return await service.run_job(session, job_id=job_id, source=source)

    def _log_task_exit(self, task: asyncio.Task) -> None:
        if task.cancelled():
            _LOGGER.warning("Ingestion task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.error("Ingestion task %s crashed", task.get_name(), exc_info=exc)
