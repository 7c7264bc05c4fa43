import asyncio
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest
from sqlalchemy import func, select

from atlas.core.config import Settings
from atlas.models import IngestionJob, JobStatus, Post, PostTopic, Topic
from atlas.services import ingestion as ingestion_module
from atlas.services import store
from atlas.services.ingestion import (
    IngestionAlreadyRunning,
    IngestionRunner,
    IngestionService,
    choose_cluster_count,
)
from atlas.services.vectors import ProjectionBasis
from tests.fakes import EMBED_DIM, BlockingSource, FakeProvider, StaticSource, fake_vector, make_record


def _settings(**overrides) -> Settings:
    values = {"ingest_batch_size": 10, "embedding_max_tokens": 8191}
    values.update(overrides)
    return Settings(**values)


def _service(provider=None, **kwargs) -> IngestionService:
    return IngestionService(
        provider or FakeProvider(),
        settings=kwargs.pop("settings", _settings()),
        rng=np.random.default_rng(7),
        **kwargs,
    )


async def _run(session, service: IngestionService, records, *, requested_total=None):
    source = StaticSource(records)
    job = await service.create_job(
        session,
        requested_total=requested_total or len(records),
        source_url=source.base_url,
    )
    return await service.run_job(session, job_id=job.id, source=source)


async def _count(session, model) -> int:
    result = await session.exec(select(func.count()).select_from(model))
    return int(result.scalar_one())


@pytest.mark.asyncio
async def test_run_job_completes_and_builds_topics(session):
    provider = FakeProvider()
    service = _service(provider)
    records = [make_record(i, title="Headline" if i == 0 else None) for i in range(5)]

    job = await _run(session, service, records)

    assert job.status == JobStatus.COMPLETED
    assert job.total_items == 5
    assert job.processed == 5
    assert job.errors == 0
    assert job.completed_at is not None
    assert job.source_url == StaticSource.base_url
    assert provider.embed_payloads[0][0] == "Headline\n" + records[0].content

    assert await _count(session, Post) == 5
    topics = (await session.exec(select(Topic))).scalars().all()
    assert len(topics) == 5
    assert all(topic.job_id == job.id for topic in topics)
    assert sum(topic.post_count for topic in topics) == 5

    links = (await session.exec(select(PostTopic))).scalars().all()
    assert len(links) == 5
    assert {link.relevance for link in links} == {1.0}
    for topic in topics:
        assert topic.post_count == sum(1 for link in links if link.topic_id == topic.id)

    posts = (await session.exec(select(Post))).scalars().all()
    assert all(post.pos_x is not None and post.embedding_dim == EMBED_DIM for post in posts)


@pytest.mark.asyncio
async def test_requested_total_is_replaced_by_fetched_count(session):
    service = _service()
    source = StaticSource([make_record(i) for i in range(3)])
    job = await service.create_job(session, requested_total=100, source_url=source.base_url)
    assert job.total_items == 100

    job = await service.run_job(session, job_id=job.id, source=source)

    assert source.requested == [100]
    assert job.total_items == 3
    assert job.processed + job.errors == job.total_items


@pytest.mark.asyncio
async def test_failed_batch_counts_every_item_as_error(session):
    provider = FakeProvider(fail_on_calls=[2])
    service = _service(provider)

    job = await _run(session, service, [make_record(i) for i in range(30)])

    assert job.status == JobStatus.COMPLETED
    assert job.total_items == 30
    assert job.processed == 20
    assert job.errors == 10
    assert provider.embed_calls == 3
    assert await _count(session, Post) == 20

    stored = (await session.exec(select(Post.external_id))).scalars().all()
    assert not any(external_id in stored for external_id in (f"post-{i}" for i in range(10, 20)))


@pytest.mark.asyncio
async def test_failed_item_save_does_not_abort_the_batch(session, monkeypatch):
    original = store.upsert_post

    async def flaky_upsert(db_session, record, vector):
        if record.id == "post-2":
            raise RuntimeError("constraint violated")
        return await original(db_session, record, vector)

    monkeypatch.setattr(store, "upsert_post", flaky_upsert)

    job = await _run(session, _service(), [make_record(i) for i in range(5)])

    assert job.status == JobStatus.COMPLETED
    assert job.processed == 4
    assert job.errors == 1
    assert await _count(session, Post) == 4


@pytest.mark.asyncio
async def test_reingesting_updates_posts_in_place(session):
    service = _service()
    await _run(session, service, [make_record(i, content=f"first draft {i}") for i in range(6)])
    first_topics = await _count(session, Topic)
    second = await _run(session, service, [make_record(i, content=f"second draft {i}") for i in range(6)])

    assert second.status == JobStatus.COMPLETED
    assert await _count(session, Post) == 6
    contents = (await session.exec(select(Post.content).order_by(Post.external_id))).scalars().all()
    assert all(content.startswith("second draft") for content in contents)

    jobs = (await session.exec(select(IngestionJob))).scalars().all()
    assert len(jobs) == 2
    assert await _count(session, Topic) > first_topics


@pytest.mark.asyncio
async def test_posts_and_centroids_share_one_projection(session, monkeypatch):
    basis = ProjectionBasis(axes=np.eye(3, EMBED_DIM))
    factory_calls: list[int] = []

    def basis_factory(dim, rng):
        factory_calls.append(dim)
        return basis

    used_bases = []
    original_project = ingestion_module.project_to_3d

    def spy_project(vectors, projection_basis, **kwargs):
        used_bases.append(projection_basis)
        return original_project(vectors, projection_basis, **kwargs)

    monkeypatch.setattr(ingestion_module, "project_to_3d", spy_project)

    settings = _settings(projection_scale=50.0)
    service = _service(settings=settings, basis_factory=basis_factory)
    records = [make_record(i) for i in range(12)]

    await _run(session, service, records)

    assert factory_calls == [EMBED_DIM]
    assert len(used_bases) == 2
    assert all(used is basis for used in used_bases)

    posts = {post.external_id: post for post in (await session.exec(select(Post))).scalars().all()}
    for record in records:
        expected = fake_vector(record.embedding_text())
        post = posts[record.id]
        assert (post.pos_x, post.pos_y, post.pos_z) == pytest.approx(
            (expected[0] * 50.0, expected[1] * 50.0, expected[2] * 50.0), abs=1e-6
        )

    for topic in (await session.exec(select(Topic))).scalars().all():
        centroid = store.decode_vector(topic.centroid_embedding, topic.centroid_dim)
        assert (topic.pos_x, topic.pos_y, topic.pos_z) == pytest.approx(
            tuple(float(value) * 50.0 for value in centroid[:3]), abs=1e-3
        )


@pytest.mark.asyncio
async def test_labels_use_bounded_member_samples(session):
    provider = FakeProvider()
    settings = _settings(label_sample_size=3, topic_min_clusters=1, topic_target_cluster_size=100)
    service = _service(provider, settings=settings)

    await _run(session, service, [make_record(i) for i in range(8)])

    assert len(provider.label_payloads) == 1
    assert len(provider.label_payloads[0]) == 3
    topic = (await session.exec(select(Topic))).scalars().one()
    assert topic.name == "Topic 1"
    assert topic.post_count == 8


@pytest.mark.asyncio
async def test_unexpected_error_marks_job_failed(session, monkeypatch):
    def broken_kmeans(*args, **kwargs):
        raise RuntimeError("clustering exploded")

    monkeypatch.setattr(ingestion_module, "kmeans_cluster", broken_kmeans)

    job = await _run(session, _service(), [make_record(i) for i in range(5)])

    assert job.status == JobStatus.FAILED
    assert job.error_log == "RuntimeError: clustering exploded"
    assert job.processed == 5
    assert job.completed_at is not None
    assert await _count(session, Topic) == 0


@pytest.mark.asyncio
async def test_empty_fetch_completes_without_topics(session):
    job = await _run(session, _service(), [], requested_total=10)

    assert job.status == JobStatus.COMPLETED
    assert job.total_items == 0
    assert job.processed == 0
    assert await _count(session, Topic) == 0


@pytest.mark.asyncio
async def test_run_job_rejects_finished_jobs(session):
    service = _service()
    job = await _run(session, service, [make_record(0)])

    with pytest.raises(ValueError):
        await service.run_job(session, job_id=job.id, source=StaticSource([]))


@pytest.mark.asyncio
async def test_runner_allows_one_job_at_a_time(session_factory):
    runner = IngestionRunner(session_factory, service_factory=lambda: _service())
    source = BlockingSource([make_record(i) for i in range(4)])

    job = await runner.start(source=source, requested_total=4)
    assert runner.is_running
    assert runner.current_job_id == job.id

    with pytest.raises(IngestionAlreadyRunning) as excinfo:
        await runner.start(source=StaticSource([make_record(9)]), requested_total=1)
    assert excinfo.value.job_id == job.id

    source.release.set()
    finished = await asyncio.wait_for(runner.current_task, timeout=10)

    assert finished.status == JobStatus.COMPLETED
    assert finished.processed == 4
    assert not runner.is_running

    async with session_factory() as check:
        assert await _count(check, IngestionJob) == 1

    follow_up = await runner.start(source=StaticSource([make_record(5)]), requested_total=1)
    assert (await runner.current_task).id == follow_up.id


@pytest.mark.asyncio
async def test_interrupted_jobs_are_failed_on_startup(session):
    running = await store.create_job(session, total_items=10)
    done = await store.create_job(session, total_items=1)
    await store.update_job(session, done.id, status=JobStatus.COMPLETED)

    assert await store.fail_interrupted_jobs(session) == 1

    session.expire_all()
    running = await store.get_job(session, running.id)
    done = await store.get_job(session, done.id)
    assert running.status == JobStatus.FAILED
    assert running.error_log == store.INTERRUPTED_MESSAGE
    assert done.status == JobStatus.COMPLETED


def test_choose_cluster_count_scales_with_corpus():
    assert choose_cluster_count(0) == 0
    assert choose_cluster_count(3) == 5
    assert choose_cluster_count(100) == 5
    assert choose_cluster_count(200) == 10
    assert choose_cluster_count(5000) == 50


@pytest.mark.asyncio
async def test_concurrent_starts_launch_a_single_job(session_factory):
    runner = IngestionRunner(session_factory, service_factory=lambda: _service())
    first = BlockingSource([make_record(i) for i in range(3)])
    second = BlockingSource([make_record(i) for i in range(3)])

    outcomes = await asyncio.gather(
        runner.start(source=first, requested_total=3),
        runner.start(source=second, requested_total=3),
        return_exceptions=True,
    )

    jobs = [outcome for outcome in outcomes if isinstance(outcome, IngestionJob)]
    rejected = [outcome for outcome in outcomes if isinstance(outcome, IngestionAlreadyRunning)]
    assert len(jobs) == 1
    assert len(rejected) == 1

    first.release.set()
    second.release.set()
    finished = await asyncio.wait_for(runner.current_task, timeout=10)
    assert finished.id == jobs[0].id
    assert finished.status == JobStatus.COMPLETED
    assert finished.errors == 0

    async with session_factory() as check:
        assert await _count(check, IngestionJob) == 1


class FailingLabelProvider(FakeProvider):
    async def label_cluster(self, texts, **_: object):
        raise RuntimeError("chat completions unavailable")


@pytest.mark.asyncio
async def test_label_provider_error_fails_the_job(session):
    job = await _run(session, _service(FailingLabelProvider()), [make_record(i) for i in range(5)])

    assert job.status == JobStatus.FAILED
    assert job.error_log == "RuntimeError: chat completions unavailable"
    assert job.processed == 5
    assert job.completed_at is not None


def test_new_records_carry_timezone_aware_timestamps():
    job = IngestionJob()
    post = Post(external_id="post-1", content="hello")
    topic = Topic(name="Agents", color="#ef4444")

    for stamp in (job.created_at, post.created_at, post.updated_at, topic.created_at):
        assert stamp.tzinfo is not None
        assert stamp.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_source_timestamps_are_stored_as_utc(session):
    offset_time = datetime(2025, 1, 30, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    record = make_record(1).model_copy(update={"created_at": offset_time})

    post = await store.upsert_post(session, record, fake_vector(record.embedding_text()))

    assert post.source_created_at.replace(tzinfo=None) == datetime(2025, 1, 30, 12, 0)
