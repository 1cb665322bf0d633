"""Mindmap prompt construction, response parsing and the radial "galaxy" layout.

Everything here is pure: given the same AI response and duration map the
layout produces identical nodes and edges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import math
from typing import cast

from mindhit.ai.errors import InvalidJSON


TOPIC_PALETTE: tuple[str, ...] = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#EC4899",
    "#14B8A6",
    "#F97316",
)

CORE_ID = "core"
CORE_COLOR = "#FFD700"
CORE_SIZE = 100.0
TOPIC_RADIUS = 200.0


@dataclass(frozen=True)
class PageContext:
    url_id: str
    title: str
    url: str
    keywords: tuple[str, ...]
    summary: str
    duration_ms: int


@dataclass(frozen=True)
class GraphPage:
    url_id: str
    title: str
    relevance: float


@dataclass(frozen=True)
class GraphTopic:
    id: str
    label: str
    keywords: tuple[str, ...]
    description: str
    pages: tuple[GraphPage, ...]


@dataclass(frozen=True)
class GraphConnection:
    source: str
    target: str
    shared_keywords: tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class RelationshipGraph:
    core_label: str
    core_description: str
    topics: tuple[GraphTopic, ...] = ()
    connections: tuple[GraphConnection, ...] = ()


@dataclass
class MindmapData:
    nodes: list[dict[str, object]] = field(default_factory=list)
    edges: list[dict[str, object]] = field(default_factory=list)
    layout: dict[str, object] = field(default_factory=dict)


_PROMPT = """Analyze the pages and tags from this browsing session to create a relationship graph.

## Session Data

### Visited Pages (URL + keywords + summary)
{pages}

### Highlights (user-selected text)
{highlights}

## Requirements
1. **Core theme (core)**: One central theme spanning the entire session
2. **Main topics (topics)**: 3-5 groups based on common keywords
3. **Page connections**: Map pages to their relevant topics
4. **Topic connections**: Relationships between topics with overlapping keywords

## Respond in JSON format
{{
  "core": {{
    "label": "Core theme",
    "description": "Session summary (1-2 sentences)"
  }},
  "topics": [
    {{
      "id": "topic-1",
      "label": "Topic name",
      "keywords": ["related", "keywords"],
      "description": "Topic description",
      "pages": [
        {{
          "url_id": "uuid",
          "title": "Page title",
          "relevance": 0.9
        }}
      ]
    }}
  ],
  "connections": [
    {{
      "from": "topic-1",
      "to": "topic-2",
      "shared_keywords": ["shared keyword"],
      "reason": "Connection reason"
    }}
  ]
}}"""


def build_prompt(pages: list[PageContext], highlights: list[str]) -> str:
    page_blocks: list[str] = []
    for p in pages:
        page_blocks.append(
            "\n".join(
                [
                    f"- ID: {p.url_id}",
                    f"  Title: {p.title}",
                    f"  URL: {p.url}",
                    f"  Keywords: [{', '.join(p.keywords)}]",
                    f"  Summary: {p.summary}",
                    f"  Duration: {p.duration_ms}ms",
                ]
            )
        )
    if highlights:
        highlight_text = "\n".join(f'- "{text}"' for text in highlights)
    else:
        highlight_text = "(No highlights)"
    return _PROMPT.format(pages="\n".join(page_blocks), highlights=highlight_text)


def _str(obj: dict[str, object], key: str) -> str:
    v = obj.get(key)
    if v is None:
        return ""
    if not isinstance(v, str):
        raise InvalidJSON(f"field {key!r} must be a string")
    return v


def _str_list(obj: dict[str, object], key: str) -> tuple[str, ...]:
    v = obj.get(key)
    if v is None:
        return ()
    if not isinstance(v, list):
        raise InvalidJSON(f"field {key!r} must be a list")
    out: list[str] = []
    for item in cast(list[object], v):
        if not isinstance(item, str):
            raise InvalidJSON(f"field {key!r} must contain strings")
        out.append(item)
    return tuple(out)


def _obj_list(obj: dict[str, object], key: str) -> list[dict[str, object]]:
    v = obj.get(key)
    if v is None:
        return []
    if not isinstance(v, list):
        raise InvalidJSON(f"field {key!r} must be a list")
    out: list[dict[str, object]] = []
    for item in cast(list[object], v):
        if not isinstance(item, dict):
            raise InvalidJSON(f"field {key!r} must contain objects")
        out.append(cast(dict[str, object], item))
    return out


def _relevance(obj: dict[str, object]) -> float:
    v = obj.get("relevance", 0.0)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise InvalidJSON("field 'relevance' must be a number")
    return max(0.0, min(1.0, float(v)))


def parse_graph(content: str) -> RelationshipGraph:
    """Decode the model's JSON answer; any shape mismatch raises InvalidJSON."""
    try:
        raw = cast(object, json.loads(content))
    except ValueError as e:
        raise InvalidJSON(f"mindmap response is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidJSON("mindmap response must be a JSON object")
    body = cast(dict[str, object], raw)

    core_raw = body.get("core") or {}
    if not isinstance(core_raw, dict):
        raise InvalidJSON("field 'core' must be an object")
    core = cast(dict[str, object], core_raw)

    topics = tuple(
        GraphTopic(
            id=_str(t, "id"),
            label=_str(t, "label"),
            keywords=_str_list(t, "keywords"),
            description=_str(t, "description"),
            pages=tuple(
                GraphPage(url_id=_str(p, "url_id"), title=_str(p, "title"), relevance=_relevance(p))
                for p in _obj_list(t, "pages")
            ),
        )
        for t in _obj_list(body, "topics")
    )
    connections = tuple(
        GraphConnection(
            source=_str(c, "from"),
            target=_str(c, "to"),
            shared_keywords=_str_list(c, "shared_keywords"),
            reason=_str(c, "reason"),
        )
        for c in _obj_list(body, "connections")
    )
    return RelationshipGraph(
        core_label=_str(core, "label"),
        core_description=_str(core, "description"),
        topics=topics,
        connections=connections,
    )


def topic_color(index: int) -> str:
    return TOPIC_PALETTE[index % len(TOPIC_PALETTE)]


def _position(x: float, y: float) -> dict[str, object]:
    return {"x": x, "y": y, "z": 0.0}


def _page_size(duration_ms: int | None, relevance: float) -> float:
    size = 15.0
    if duration_ms is not None:
        size = min(40.0, 15.0 + duration_ms / 20000)
    return size * (0.5 + 0.5 * relevance)


def build_layout(graph: RelationshipGraph, durations: dict[str, int]) -> MindmapData:
    data = MindmapData()
    data.nodes.append(
        {
            "id": CORE_ID,
            "label": graph.core_label,
            "type": "core",
            "size": CORE_SIZE,
            "color": CORE_COLOR,
            "position": _position(0.0, 0.0),
            "data": {"description": graph.core_description},
        }
    )

    topic_count = len(graph.topics)
    for i, topic in enumerate(graph.topics):
        topic_id = topic.id or f"topic-{i}"
        theta = 2 * math.pi * i / topic_count
        tx = TOPIC_RADIUS * math.cos(theta)
        ty = TOPIC_RADIUS * math.sin(theta)
        color = topic_color(i)

        data.nodes.append(
            {
                "id": topic_id,
                "label": topic.label,
                "type": "topic",
                "size": min(80.0, 40.0 + 10.0 * len(topic.pages)),
                "color": color,
                "position": _position(tx, ty),
                "data": {"description": topic.description, "keywords": list(topic.keywords)},
            }
        )
        data.edges.append({"source": CORE_ID, "target": topic_id, "weight": 1.0})

        page_count = len(topic.pages)
        for j, page in enumerate(topic.pages):
            phi = theta + (j - page_count / 2) * 0.4
            r = 60.0 + 15.0 * j
            data.nodes.append(
                {
                    "id": page.url_id,
                    "label": page.title,
                    "type": "page",
                    "size": _page_size(durations.get(page.url_id), page.relevance),
                    "color": color,
                    "position": _position(tx + r * math.cos(phi), ty + r * math.sin(phi)),
                    "data": {"url_id": page.url_id, "relevance": page.relevance},
                }
            )
            data.edges.append({"source": topic_id, "target": page.url_id, "weight": page.relevance})

    for conn in graph.connections:
        edge: dict[str, object] = {
            "source": conn.source,
            "target": conn.target,
            "weight": 0.2 * len(conn.shared_keywords),
        }
        if conn.reason:
            edge["label"] = conn.reason
        data.edges.append(edge)

    data.layout = {"type": "galaxy", "params": {"center": [0.0, 0.0, 0.0], "scale": 1.0}}
    return data
