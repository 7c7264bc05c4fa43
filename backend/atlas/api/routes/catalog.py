"""Read endpoints for the topic explorer.

Endpoints:
    get_topics(session): All topics by size plus corpus totals.
    get_posts(topic_id, limit, offset, session): Newest posts, optionally restricted to one topic.
    search(q, limit, session, service): Semantic search over topic centroids and post embeddings.
    get_graph(mode, limit, session): Node-link payload for the 3D view.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from atlas.api.deps import get_search_service
from atlas.db.session import get_session
from atlas.schemas import (
    GraphData,
    GraphMode,
    PostListResponse,
    SearchResponse,
    TopicListResponse,
)
from atlas.services.catalog import SearchService, list_posts, list_topics
from atlas.services.graph import build_graph_data

router = APIRouter(tags=["catalog"])


@router.get("/topics", response_model=TopicListResponse)
async def get_topics(session: AsyncSession = Depends(get_session)) -> TopicListResponse:
    return await list_topics(session)


@router.get("/posts", response_model=PostListResponse)
async def get_posts(
    topic_id: Optional[UUID] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> PostListResponse:
    posts = await list_posts(session, topic_id=topic_id, limit=limit, offset=offset)
    return PostListResponse(posts=posts)


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query(default=""),
    limit: int = Query(default=20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    try:
        results = await service.search(session, q, limit=limit)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SearchResponse(results=results)


@router.get("/graph", response_model=GraphData)
async def get_graph(
    mode: GraphMode = Query(default=GraphMode.TOPICS),
    limit: int = Query(default=1000, ge=1, le=5000),
    session: AsyncSession = Depends(get_session),
) -> GraphData:
    topics = (await list_topics(session)).topics if mode != GraphMode.POSTS else []
    posts = await list_posts(session, limit=limit) if mode != GraphMode.TOPICS else []
    return build_graph_data(topics, posts, mode)
