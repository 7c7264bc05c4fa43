"""Node-link payloads for the 3D topic explorer.

Functions:
    topic_color(index): Palette colour for the n-th topic cluster.
    build_graph_data(topics, posts, mode, rng): Build nodes and links from topic and post resources.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from atlas.schemas.catalog import GraphData, GraphLink, GraphMode, GraphNode, PostResource, TopicResource

TOPIC_COLORS = (
    "#ef4444",  # red
    "#f97316",  # orange
    "#eab308",  # yellow
    "#22c55e",  # green
    "#14b8a6",  # teal
    "#3b82f6",  # blue
    "#8b5cf6",  # violet
    "#ec4899",  # pink
    "#6366f1",  # indigo
    "#06b6d4",  # cyan
)
UNASSIGNED_POST_COLOR = "#94a3b8"

_TOPIC_SCATTER = 100.0
_POST_SCATTER = 50.0
_POST_NODE_SIZE = 0.5
_POST_LABEL_CHARS = 50


def topic_color(index: int) -> str:
    return TOPIC_COLORS[index % len(TOPIC_COLORS)]


def post_label(title: str | None, content: str) -> str:
    if title:
        return title
    return content[:_POST_LABEL_CHARS] + "..."


def _coord(value: float | None, spread: float, rng: np.random.Generator) -> float:
    if value is not None:
        return float(value)
    return float((rng.random() - 0.5) * spread)


def build_graph_data(
    topics: Sequence[TopicResource],
    posts: Sequence[PostResource],
    mode: GraphMode = GraphMode.TOPICS,
    *,
    rng: np.random.Generator | None = None,
) -> GraphData:
    """Lay out topics and/or posts as graph nodes.

    Nodes without a stored position are scattered randomly. Post-to-topic
    links are only emitted in ``all`` mode, weighted by relevance.
    """

    rng = rng or np.random.default_rng()
    nodes: list[GraphNode] = []
    links: list[GraphLink] = []

    if mode in (GraphMode.TOPICS, GraphMode.ALL):
        for topic in topics:
            nodes.append(
                GraphNode(
                    id=topic.id,
                    type="topic",
                    label=topic.name,
                    color=topic.color,
                    size=max(1.0, math.log(topic.post_count + 1) * 2),
                    x=_coord(topic.pos_x, _TOPIC_SCATTER, rng),
                    y=_coord(topic.pos_y, _TOPIC_SCATTER, rng),
                    z=_coord(topic.pos_z, _TOPIC_SCATTER, rng),
                )
            )

    if mode in (GraphMode.POSTS, GraphMode.ALL):
        for post in posts:
            primary = post.topics[0] if post.topics else None
            nodes.append(
                GraphNode(
                    id=post.id,
                    type="post",
                    label=post_label(post.title, post.content),
                    color=primary.color if primary else UNASSIGNED_POST_COLOR,
                    size=_POST_NODE_SIZE,
                    x=_coord(post.pos_x, _POST_SCATTER, rng),
                    y=_coord(post.pos_y, _POST_SCATTER, rng),
                    z=_coord(post.pos_z, _POST_SCATTER, rng),
                )
            )
            if mode == GraphMode.ALL:
                links.extend(
                    GraphLink(source=post.id, target=ref.id, strength=ref.relevance) for ref in post.topics
                )

    return GraphData(nodes=nodes, links=links)
