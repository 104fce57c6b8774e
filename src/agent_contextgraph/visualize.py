"""Graph visualization: Mermaid, Graphviz DOT and JSON renderings."""

import json
import re
from dataclasses import dataclass, field
from typing import List, Dict, Any

from .types import Chat, ContextItem, Relationship

FORMATS = ("mermaid", "graphviz", "json")
LABEL_CHARS = 30

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_]")


@dataclass
class GraphVisualization:
    """A rendered subgraph."""
    format: str
    content: str
    nodes: int
    edges: int
    node_ids: List[str] = field(default_factory=list)


def _node_id(raw: str) -> str:
    return "n_" + _UNSAFE_ID.sub("_", raw)


def _label(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > LABEL_CHARS:
        text = text[:LABEL_CHARS] + "..."
    return text.replace('"', "'")


def _nodes(items: List[ContextItem], chats: List[Chat]) -> List[Dict[str, Any]]:
    nodes = [
        {"id": c.id, "label": _label(c.title), "kind": "chat"}
        for c in chats
    ]
    nodes.extend(
        {"id": i.id, "label": f"{i.context_type.value}: {_label(i.content)}", "kind": i.context_type.value}
        for i in items
    )
    return nodes


def to_mermaid(nodes: List[Dict[str, Any]], edges: List[Relationship]) -> str:
    lines = ["graph TD"]
    for node in nodes:
        if node["kind"] == "chat":
            lines.append(f"  {_node_id(node['id'])}[(\"{node['label']}\")]")
        else:
            lines.append(f"  {_node_id(node['id'])}[\"{node['label']}\"]")
    for edge in edges:
        lines.append(f"  {_node_id(edge.from_id)} -->|{edge.type.value}| {_node_id(edge.to_id)}")
    return "\n".join(lines) + "\n"


def to_graphviz(nodes: List[Dict[str, Any]], edges: List[Relationship]) -> str:
    lines = ["digraph ContextGraph {", "  rankdir=LR;"]
    for node in nodes:
        shape = "cylinder" if node["kind"] == "chat" else "box"
        lines.append(f"  {_node_id(node['id'])} [label=\"{node['label']}\", shape={shape}];")
    for edge in edges:
        lines.append(f"  {_node_id(edge.from_id)} -> {_node_id(edge.to_id)} [label=\"{edge.type.value}\"];")
    lines.append("}")
    return "\n".join(lines) + "\n"


def to_json(nodes: List[Dict[str, Any]], edges: List[Relationship]) -> str:
    return json.dumps({
        "nodes": nodes,
        "edges": [e.to_dict() for e in edges],
    }, indent=2, default=str)


RENDERERS = {
    "mermaid": to_mermaid,
    "graphviz": to_graphviz,
    "json": to_json,
}


def render(items: List[ContextItem], chats: List[Chat], edges: List[Relationship], fmt: str = "mermaid") -> GraphVisualization:
    """Render items, chats and the edges between them."""
    if fmt not in RENDERERS:
        raise ValueError(f"Unknown graph format: {fmt}")
    nodes = _nodes(items, chats)
    return GraphVisualization(
        format=fmt,
        content=RENDERERS[fmt](nodes, edges),
        nodes=len(nodes),
        edges=len(edges),
        node_ids=[n["id"] for n in nodes],
    )
