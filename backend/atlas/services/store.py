"""Persistence capabilities used by the ingestion pipeline and the read API.

Functions:
    encode_vector(vector), decode_vector(blob, dim): float32 blob helpers for stored embeddings.
    upsert_post(session, record, vector): Insert or update a post and its embedding in one commit.
    update_post_positions(session, positions): Persist 3D layout coordinates for posts.
    create_topic(session, ...), create_topic_links(session, ...): Write one clustering result.
    create_job, get_job, get_latest_job, update_job, fail_interrupted_jobs: Ingestion job records.
    nearest_posts(session, query, limit), nearest_topics(session, query, limit): Cosine-ranked lookups.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy import func, select, update

from atlas.models import IngestionJob, JobStatus, Post, PostTopic, Topic
from atlas.services.source import SourcePost
from atlas.services.vectors import Point3D, cosine_distances
from atlas.utils.clock import as_utc, utc_now

INTERRUPTED_MESSAGE = "Job interrupted before completion (process restarted)"


@dataclass(slots=True)
class RankedRow:
    row: Any
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


def encode_vector(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def decode_vector(blob: bytes | None, dim: int | None = None) -> np.ndarray | None:
    if not blob:
        return None
    vector = np.frombuffer(blob, dtype=np.float32)
    if dim is not None and vector.size != dim:
        return None
    return vector


async def upsert_post(session, record: SourcePost, vector: Sequence[float] | None) -> Post:
    """Insert or refresh the post keyed by ``record.id`` together with its embedding."""

    result = await session.exec(select(Post).where(Post.external_id == record.id))
    post = result.scalars().first()
    if post is None:
        post = Post(external_id=record.id, content=record.content)

    post.content = record.content
    post.title = record.title
    post.author = record.author.name if record.author else None
    post.author_id = record.author.id if record.author else None
    post.url = record.url
    post.community = record.submolt.name if record.submolt else None
    post.source_created_at = as_utc(record.created_at)
    if vector is not None:
        post.embedding = encode_vector(vector)
        post.embedding_dim = len(vector)

    session.add(post)
    await session.commit()
    await session.refresh(post)
    return post


async def update_post_positions(session, positions: Sequence[tuple[UUID, Point3D]]) -> None:
    for post_id, point in positions:
        await session.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(pos_x=point.x, pos_y=point.y, pos_z=point.z)
        )
    await session.commit()


async def create_topic(
    session,
    *,
    name: str,
    description: str | None,
    color: str,
    centroid: Sequence[float] | None,
    position: Point3D,
    post_count: int,
    keywords: Sequence[str] | None = None,
    job_id: UUID | None = None,
) -> Topic:
    topic = Topic(
        job_id=job_id,
        name=name,
        description=description,
        color=color,
        centroid_embedding=encode_vector(centroid) if centroid is not None else None,
        centroid_dim=len(centroid) if centroid is not None else None,
        pos_x=position.x,
        pos_y=position.y,
        pos_z=position.z,
        post_count=post_count,
        keywords_json=json.dumps(list(keywords)) if keywords else None,
    )
    session.add(topic)
    await session.commit()
    await session.refresh(topic)
    return topic


async def create_topic_links(
    session,
    topic_id: UUID,
    post_ids: Sequence[UUID],
    *,
    relevance: float = 1.0,
) -> None:
    if not 0.0 <= relevance <= 1.0:
        raise ValueError("relevance must lie in [0, 1]")
    session.add_all(
        [PostTopic(post_id=post_id, topic_id=topic_id, relevance=relevance) for post_id in post_ids]
    )
    await session.commit()


async def create_job(session, *, total_items: int, source_url: str | None = None) -> IngestionJob:
    now = utc_now()
    job = IngestionJob(
        status=JobStatus.RUNNING,
        source_url=source_url,
        started_at=now,
        created_at=now,
        total_items=total_items,
    )
    session.add(job)
    await session.commit()
    await session.refresh(job)
    return job


async def get_job(session, job_id: UUID) -> IngestionJob | None:
    return await session.get(IngestionJob, job_id)


async def get_latest_job(session) -> IngestionJob | None:
    result = await session.exec(
        select(IngestionJob).order_by(IngestionJob.created_at.desc()).limit(1)
    )
    return result.scalars().first()


async def update_job(session, job_id: UUID, **fields: Any) -> IngestionJob:
    job = await session.get(IngestionJob, job_id)
    if job is None:
        raise ValueError(f"Ingestion job {job_id} not found")
    for key, value in fields.items():
        setattr(job, key, value)
    session.add(job)
    await session.commit()
    await session.refresh(job)
    return job


async def fail_interrupted_jobs(session) -> int:
    result = await session.execute(
        update(IngestionJob)
        .where(IngestionJob.status == JobStatus.RUNNING)
        .values(
            status=JobStatus.FAILED,
            completed_at=utc_now(),
            error_log=INTERRUPTED_MESSAGE,
        )
    )
    await session.commit()
    return int(result.rowcount or 0)


async def count_posts(session) -> int:
    result = await session.exec(select(func.count()).select_from(Post))
    return int(result.scalar_one())


async def nearest_posts(session, query: Sequence[float], limit: int) -> list[RankedRow]:
    result = await session.exec(select(Post).where(Post.embedding.is_not(None)))
    posts = result.scalars().all()
    return _rank(posts, [decode_vector(post.embedding, post.embedding_dim) for post in posts], query, limit)


async def nearest_topics(session, query: Sequence[float], limit: int) -> list[RankedRow]:
    result = await session.exec(select(Topic).where(Topic.centroid_embedding.is_not(None)))
    topics = result.scalars().all()
    return _rank(
        topics,
        [decode_vector(topic.centroid_embedding, topic.centroid_dim) for topic in topics],
        query,
        limit,
    )


def _rank(rows: Sequence[Any], vectors: Sequence[np.ndarray | None], query: Sequence[float], limit: int) -> list[RankedRow]:
    if limit <= 0:
        return []
    dim = len(query)
    candidates = [
        (row, vector) for row, vector in zip(rows, vectors) if vector is not None and vector.size == dim
    ]
    if not candidates:
        return []
    distances = cosine_distances(np.vstack([vector for _, vector in candidates]), query)
    order = np.argsort(distances, kind="stable")[:limit]
    return [RankedRow(row=candidates[i][0], distance=float(distances[i])) for i in order]

