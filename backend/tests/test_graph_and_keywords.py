from datetime import datetime
from uuid import uuid4

import numpy as np
import pytest

from atlas.schemas import GraphMode, PostResource, TopicRef, TopicResource
from atlas.services.graph import UNASSIGNED_POST_COLOR, build_graph_data, post_label, topic_color
from atlas.services.keywords import extract_cluster_keywords
from atlas.utils.tokenization import truncate_to_tokens


def _topic(**overrides) -> TopicResource:
    values = dict(id=uuid4(), name="Agents", color=topic_color(0), pos_x=1.0, pos_y=2.0, pos_z=3.0, post_count=6)
    values.update(overrides)
    return TopicResource(**values)


def _post(topics=(), **overrides) -> PostResource:
    values = dict(
        id=uuid4(),
        external_id="p-1",
        content="A fairly long post body that keeps going well past the label cut-off point.",
        created_at=datetime(2025, 1, 30),
        pos_x=0.5,
        pos_y=-0.5,
        pos_z=0.0,
        topics=list(topics),
    )
    values.update(overrides)
    return PostResource(**values)


def test_topic_colors_cycle():
    assert topic_color(0) == topic_color(10)
    assert topic_color(1) != topic_color(0)


def test_post_label_prefers_title():
    assert post_label("Headline", "body") == "Headline"
    assert post_label(None, "x" * 80) == "x" * 50 + "..."


def test_graph_topics_mode_sizes_by_post_count():
    topic = _topic()
    graph = build_graph_data([topic], [_post()], GraphMode.TOPICS)

    (node,) = graph.nodes
    assert node.type == "topic"
    assert node.size == pytest.approx(np.log(7) * 2)
    assert (node.x, node.y, node.z) == (1.0, 2.0, 3.0)
    assert graph.links == []


def test_graph_all_mode_links_posts_to_topics():
    topic = _topic()
    ref = TopicRef(id=topic.id, name=topic.name, color=topic.color, relevance=1.0)
    linked = _post(topics=[ref])
    orphan = _post(external_id="p-2", pos_x=None, pos_y=None, pos_z=None)

    graph = build_graph_data([topic], [linked, orphan], GraphMode.ALL, rng=np.random.default_rng(0))

    assert len(graph.nodes) == 3
    post_nodes = {node.id: node for node in graph.nodes if node.type == "post"}
    assert post_nodes[linked.id].color == topic.color
    assert post_nodes[orphan.id].color == UNASSIGNED_POST_COLOR
    assert -25.0 <= post_nodes[orphan.id].x <= 25.0
    assert [(link.source, link.target, link.strength) for link in graph.links] == [(linked.id, topic.id, 1.0)]


def test_single_topic_has_minimum_size():
    graph = build_graph_data([_topic(post_count=0)], [], GraphMode.TOPICS)
    assert graph.nodes[0].size == 1.0


def test_cluster_keywords_pick_distinctive_terms():
    keywords = extract_cluster_keywords(
        {
            0: ["rust compiler borrow checker", "the rust compiler is strict"],
            1: ["sourdough bread baking", "baking bread with sourdough starter"],
        },
        top_k=3,
    )

    assert any("rust" in term for term in keywords[0])
    assert any("bread" in term or "sourdough" in term for term in keywords[1])
    assert all(len(terms) <= 3 for terms in keywords.values())


def test_cluster_keywords_handle_stop_word_only_text():
    assert extract_cluster_keywords({0: ["the and of"], 1: [""]}) == {}
    assert extract_cluster_keywords({}) == {}


def test_short_text_is_not_truncated():
    text = "short enough to skip tokenising"
    assert truncate_to_tokens(text, 8191, "text-embedding-3-small") == text
