"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .catalog import (
    GraphData,
    GraphLink,
    GraphMode,
    GraphNode,
    PostListResponse,
    PostResource,
    SearchResponse,
    SearchResult,
    TopicListResponse,
    TopicRef,
    TopicResource,
)
from .ingest import (
    IngestionJobResource,
    IngestionJobStatusResponse,
    IngestRequest,
    IngestStartedResponse,
)

__all__ = [
    "IngestRequest",
    "IngestStartedResponse",
    "IngestionJobResource",
    "IngestionJobStatusResponse",
    "TopicResource",
    "TopicListResponse",
    "TopicRef",
    "PostResource",
    "PostListResponse",
    "SearchResult",
    "SearchResponse",
    "GraphMode",
    "GraphNode",
    "GraphLink",
    "GraphData",
]
