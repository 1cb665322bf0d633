from __future__ import annotations

import json
import math

import pytest

from mindhit.ai.errors import InvalidJSON
from mindhit.services.mindmap_layout import (
    CORE_ID,
    TOPIC_PALETTE,
    TOPIC_RADIUS,
    PageContext,
    build_layout,
    build_prompt,
    parse_graph,
    topic_color,
)


GRAPH_JSON = json.dumps(
    {
        "core": {"label": "Python web", "description": "Reading about frameworks"},
        "topics": [
            {
                "id": "fastapi",
                "label": "FastAPI",
                "keywords": ["fastapi", "async"],
                "description": "Async framework",
                "pages": [
                    {"url_id": "u1", "title": "Docs", "relevance": 0.9},
                    {"url_id": "u2", "title": "Tutorial", "relevance": 1.7},
                ],
            },
            {
                "id": "django",
                "label": "Django",
                "keywords": ["django"],
                "description": "Batteries included",
                "pages": [{"url_id": "u3", "title": "Intro", "relevance": 0.5}],
            },
            {"id": "", "label": "Misc", "keywords": [], "description": "", "pages": []},
        ],
        "connections": [
            {"from": "fastapi", "to": "django", "shared_keywords": ["python", "web"], "reason": "Both web"},
            {"from": "django", "to": "fastapi", "shared_keywords": []},
        ],
    }
)


def _nodes_by_id(nodes: list[dict[str, object]]) -> dict[str, dict[str, object]]:
    return {str(n["id"]): n for n in nodes}


def test_layout_places_topics_on_circle() -> None:
    data = build_layout(parse_graph(GRAPH_JSON), {})
    nodes = _nodes_by_id(data.nodes)

    core = nodes[CORE_ID]
    assert core["type"] == "core"
    assert core["position"] == {"x": 0.0, "y": 0.0, "z": 0.0}

    topics = [n for n in data.nodes if n["type"] == "topic"]
    assert len(topics) == 3
    for i, topic in enumerate(topics):
        pos = topic["position"]
        assert isinstance(pos, dict)
        assert math.isclose(math.hypot(_num(pos["x"]), _num(pos["y"])), TOPIC_RADIUS, abs_tol=1e-6)
        theta = 2 * math.pi * i / 3
        assert math.isclose(_num(pos["x"]), TOPIC_RADIUS * math.cos(theta), abs_tol=1e-6)
        assert pos["z"] == 0.0
        assert topic["color"] == TOPIC_PALETTE[i]


def test_layout_is_deterministic() -> None:
    graph = parse_graph(GRAPH_JSON)
    durations = {"u1": 120_000}
    first = build_layout(graph, durations)
    second = build_layout(parse_graph(GRAPH_JSON), dict(durations))
    assert first.nodes == second.nodes
    assert first.edges == second.edges
    assert first.layout == second.layout == {
        "type": "galaxy",
        "params": {"center": [0.0, 0.0, 0.0], "scale": 1.0},
    }


def _num(value: object) -> float:
    assert isinstance(value, (int, float))
    return float(value)


def test_page_size_uses_duration_and_relevance() -> None:
    data = build_layout(parse_graph(GRAPH_JSON), {"u1": 120_000, "u3": 10_000_000})
    nodes = _nodes_by_id(data.nodes)

    # 15 + 120000/20000 = 21, scaled by 0.5 + 0.5 * 0.9
    assert math.isclose(_num(nodes["u1"]["size"]), 21.0 * 0.95)
    # Relevance above 1 is clamped; no duration keeps the base size.
    assert math.isclose(_num(nodes["u2"]["size"]), 15.0)
    # Duration contribution caps at 40.
    assert math.isclose(_num(nodes["u3"]["size"]), 40.0 * 0.75)

    topic = nodes["fastapi"]
    assert topic["size"] == 60.0
    assert nodes["u1"]["color"] == topic["color"]


def test_edges_cover_core_topics_pages_and_connections() -> None:
    data = build_layout(parse_graph(GRAPH_JSON), {})
    pairs = [(e["source"], e["target"], e["weight"]) for e in data.edges]

    assert (CORE_ID, "fastapi", 1.0) in pairs
    assert (CORE_ID, "django", 1.0) in pairs
    assert ("fastapi", "u1", 0.9) in pairs
    assert ("fastapi", "u2", 1.0) in pairs

    connection = [e for e in data.edges if e["source"] == "fastapi" and e["target"] == "django"]
    assert len(connection) == 1
    assert math.isclose(_num(connection[0]["weight"]), 0.4)
    assert connection[0]["label"] == "Both web"

    reverse = [e for e in data.edges if e["source"] == "django" and e["target"] == "fastapi"]
    assert reverse[0]["weight"] == 0.0
    assert "label" not in reverse[0]


def test_topic_without_id_gets_positional_id() -> None:
    data = build_layout(parse_graph(GRAPH_JSON), {})
    ids = [n["id"] for n in data.nodes if n["type"] == "topic"]
    assert ids == ["fastapi", "django", "topic-2"]
    assert (CORE_ID, "topic-2", 1.0) in [(e["source"], e["target"], e["weight"]) for e in data.edges]


def test_empty_graph_has_only_core() -> None:
    data = build_layout(parse_graph('{"core": {"label": "Empty"}}'), {})
    assert [n["id"] for n in data.nodes] == [CORE_ID]
    assert data.edges == []


def test_topic_color_wraps_palette() -> None:
    assert topic_color(0) == TOPIC_PALETTE[0]
    assert topic_color(len(TOPIC_PALETTE)) == TOPIC_PALETTE[0]
    assert topic_color(len(TOPIC_PALETTE) + 2) == TOPIC_PALETTE[2]


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        "[1, 2]",
        '{"core": "flat"}',
        '{"topics": {"id": "x"}}',
        '{"topics": [{"pages": [{"relevance": "high"}]}]}',
        '{"topics": [{"keywords": [1]}]}',
    ],
)
def test_parse_graph_rejects_bad_shapes(content: str) -> None:
    with pytest.raises(InvalidJSON):
        _ = parse_graph(content)


def test_build_prompt_lists_pages_and_highlights() -> None:
    pages = [
        PageContext(
            url_id="u1",
            title="Docs",
            url="https://example.com/docs",
            keywords=("fastapi", "async"),
            summary="About FastAPI",
            duration_ms=3000,
        )
    ]
    prompt = build_prompt(pages, ["important line"])
    assert "- ID: u1" in prompt
    assert "Keywords: [fastapi, async]" in prompt
    assert "Duration: 3000ms" in prompt
    assert '- "important line"' in prompt

    assert "(No highlights)" in build_prompt(pages, [])
