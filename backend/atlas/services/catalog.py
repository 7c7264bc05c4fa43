"""Read-side queries backing the explorer endpoints.

Classes:
    SearchService: Embeds a query and ranks topics and posts by cosine similarity.

Functions:
    list_topics(session): Topics ordered by size plus corpus totals.
    list_posts(session, ...): Newest posts with the topics they are linked to.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from uuid import UUID

from sqlalchemy import select

from atlas.models import Post, PostTopic, Topic
from atlas.schemas import (
    PostResource,
    SearchResult,
    TopicListResponse,
    TopicRef,
    TopicResource,
)
from atlas.services import store
from atlas.services.graph import post_label
from atlas.services.openai_client import OpenAIService

_LOGGER = logging.getLogger(__name__)


def _topic_keywords(topic: Topic) -> list[str]:
    if not topic.keywords_json:
        return []
    try:
        keywords = json.loads(topic.keywords_json)
    except json.JSONDecodeError:
        _LOGGER.warning("Ignoring unreadable keywords for topic %s", topic.id)
        return []
    return [str(keyword) for keyword in keywords] if isinstance(keywords, list) else []


def to_topic_resource(topic: Topic) -> TopicResource:
    return TopicResource(
        id=topic.id,
        name=topic.name,
        description=topic.description,
        color=topic.color,
        pos_x=topic.pos_x,
        pos_y=topic.pos_y,
        pos_z=topic.pos_z,
        post_count=topic.post_count,
        keywords=_topic_keywords(topic),
    )


async def list_topics(session) -> TopicListResponse:
    results = await session.exec(select(Topic).order_by(Topic.post_count.desc(), Topic.created_at))
    topics = results.scalars().all()
    total_posts = await store.count_posts(session)
    return TopicListResponse(
        topics=[to_topic_resource(topic) for topic in topics],
        total_topics=len(topics),
        total_posts=total_posts,
    )


async def list_posts(
    session,
    *,
    topic_id: UUID | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[PostResource]:
    stmt = select(Post)
    if topic_id is not None:
        stmt = stmt.join(PostTopic, PostTopic.post_id == Post.id).where(PostTopic.topic_id == topic_id)
    stmt = stmt.order_by(Post.created_at.desc(), Post.id).offset(offset).limit(limit)
    results = await session.exec(stmt)
    posts = results.scalars().all()
    if not posts:
        return []

    link_rows = await session.exec(
        select(PostTopic, Topic)
        .join(Topic, Topic.id == PostTopic.topic_id)
        .where(PostTopic.post_id.in_([post.id for post in posts]))
        .order_by(PostTopic.relevance.desc(), Topic.created_at)
    )
    refs: dict[UUID, list[TopicRef]] = defaultdict(list)
    for link, topic in link_rows.all():
        refs[link.post_id].append(
            TopicRef(id=topic.id, name=topic.name, color=topic.color, relevance=link.relevance)
        )

    return [
        PostResource(
            id=post.id,
            external_id=post.external_id,
            content=post.content,
            title=post.title,
            author=post.author,
            author_id=post.author_id,
            url=post.url,
            community=post.community,
            created_at=post.created_at,
            pos_x=post.pos_x,
            pos_y=post.pos_y,
            pos_z=post.pos_z,
            topics=refs.get(post.id, []),
        )
        for post in posts
    ]


class SearchService:
    def __init__(self, openai_service: OpenAIService | None = None) -> None:
        self._openai = openai_service or OpenAIService()

    async def search(self, session, query: str, *, limit: int = 20) -> list[SearchResult]:
        """Half the budget goes to topics and half to posts, merged by similarity."""

        text = query.strip()
        if not text or limit <= 0:
            return []

        vector = await self._openai.embed_text(text)
        per_kind = limit // 2
        topic_hits = await store.nearest_topics(session, vector, per_kind)
        post_hits = await store.nearest_posts(session, vector, per_kind)

        results = [
            SearchResult(
                id=hit.row.id,
                type="topic",
                label=hit.row.name,
                content=hit.row.description or None,
                similarity=hit.similarity,
            )
            for hit in topic_hits
        ]
        results.extend(
            SearchResult(
                id=hit.row.id,
                type="post",
                label=post_label(hit.row.title, hit.row.content),
                content=hit.row.content,
                similarity=hit.similarity,
            )
            for hit in post_hits
        )
        results.sort(key=lambda result: result.similarity, reverse=True)
        return results[:limit]
