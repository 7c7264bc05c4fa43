"""Pydantic schemas for the topic, post, search and graph read endpoints.

Classes:
    TopicResource, TopicListResponse: Topic payloads ordered for the explorer sidebar.
    TopicRef, PostResource, PostListResponse: Posts with the topics they belong to.
    SearchResult, SearchResponse: Mixed topic/post semantic search hits.
    GraphNode, GraphLink, GraphData: Node-link payload consumed by the 3D explorer.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TopicResource(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    color: str
    pos_x: Optional[float] = None
    pos_y: Optional[float] = None
    pos_z: Optional[float] = None
    post_count: int
    keywords: list[str] = Field(default_factory=list)


class TopicListResponse(BaseModel):
    topics: list[TopicResource]
    total_topics: int
    total_posts: int


class TopicRef(BaseModel):
    id: UUID
    name: str
    color: str
    relevance: float


class PostResource(BaseModel):
    id: UUID
    external_id: str
    content: str
    title: Optional[str] = None
    author: Optional[str] = None
    author_id: Optional[str] = None
    url: Optional[str] = None
    community: Optional[str] = None
    created_at: datetime
    pos_x: Optional[float] = None
    pos_y: Optional[float] = None
    pos_z: Optional[float] = None
    topics: list[TopicRef] = Field(default_factory=list)


class PostListResponse(BaseModel):
    posts: list[PostResource]


class SearchResult(BaseModel):
    id: UUID
    type: Literal["topic", "post"]
    label: str
    content: Optional[str] = None
    similarity: float


class SearchResponse(BaseModel):
    results: list[SearchResult]


class GraphMode(str, Enum):
    TOPICS = "topics"
    POSTS = "posts"
    ALL = "all"


class GraphNode(BaseModel):
    id: UUID
    type: Literal["topic", "post"]
    label: str
    color: str
    size: float
    x: float
    y: float
    z: float


class GraphLink(BaseModel):
    source: UUID
    target: UUID
    strength: float


class GraphData(BaseModel):
    nodes: list[GraphNode]
    links: list[GraphLink]
