"""Graph export helpers for DOT, JSON and standalone HTML outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Set

from .graph import DependencyGraph
from .models import Edge, NodeType

NODE_COLORS: Dict[NodeType, str] = {
    NodeType.FILE: "#64748b",
    NodeType.COMPONENT: "#3b82f6",
    NodeType.FUNCTION: "#8b5cf6",
    NodeType.TYPE: "#14b8a6",
    NodeType.INTERFACE: "#06b6d4",
    NodeType.API: "#f97316",
    NodeType.HOOK: "#ec4899",
    NodeType.CONTEXT: "#eab308",
    NodeType.CLASS: "#6366f1",
    NodeType.ENUM: "#10b981",
    NodeType.CONSTANT: "#a3a3a3",
    NodeType.DATABASE: "#ef4444",
    NodeType.EXTERNAL: "#78716c",
}


def export_dot(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    node_ids, edges = _focused_subgraph(graph, focus)

    lines = ["digraph CodeMap {"]
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box, style=filled, fontcolor=white];")

    for node_id in node_ids:
        node = graph.get_node(node_id)
        label = f"{node.type.value}\\n{node.name}"
        lines.append(f'  "{_esc(node_id)}" [label="{_esc(label)}", fillcolor="{NODE_COLORS[node.type]}"];')

    for edge in edges:
        style = ", style=dashed" if edge.ai_generated else ""
        lines.append(
            f'  "{_esc(edge.source)}" -> "{_esc(edge.target)}" [label="{edge.type.value}"{style}];'
        )

    lines.append("}")
    output_file.write_text("\n".join(lines), encoding="utf-8")


def export_json(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    node_ids, edges = _focused_subgraph(graph, focus)
    payload = graph.to_dict()
    if focus:
        keep = set(node_ids)
        payload["nodes"] = [n for n in payload["nodes"] if n["id"] in keep]
        payload["edges"] = [e.to_dict() for e in edges]
    output_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def export_html(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    """Export a self-contained HTML page drawing nodes at their layout positions."""
    node_ids, edges = _focused_subgraph(graph, focus)
    payload = {
        "nodes": [
            {
                "id": node_id,
                "label": graph.get_node(node_id).name,
                "type": graph.get_node(node_id).type.value,
                "title": graph.get_node(node_id).path,
                "color": NODE_COLORS[graph.get_node(node_id).type],
                "x": graph.get_node(node_id).position.x,
                "y": graph.get_node(node_id).position.y,
            }
            for node_id in node_ids
        ],
        "edges": [e.to_dict() for e in edges],
        "score": graph.metadata.coherence_score,
        "issues": [i.to_dict() for i in graph.metadata.issues],
    }
    output_file.write_text(_html_document(payload), encoding="utf-8")


def _html_document(graph_payload: dict) -> str:
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>CodeMap Export</title>
  <style>
    body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; margin: 0; background: #0f172a; color: #e2e8f0; }}
    header {{ padding: 12px 16px; background: #1e293b; border-bottom: 1px solid #334155; }}
    svg {{ width: 100vw; height: calc(100vh - 50px); }}
    .node rect {{ rx: 6; stroke: #0f172a; }}
    .node text {{ fill: white; font-size: 12px; }}
    line {{ stroke: #475569; stroke-width: 1.2; }}
    line.ai {{ stroke-dasharray: 4 3; }}
  </style>
</head>
<body>
  <header>CodeMap &middot; coherence <strong id="score"></strong> &middot; <span id="issues"></span> issue(s)</header>
  <svg id="canvas"></svg>
  <script>
    const graph = {json.dumps(graph_payload)};
    const ns = 'http://www.w3.org/2000/svg';
    const svg = document.getElementById('canvas');
    document.getElementById('score').textContent = graph.score;
    document.getElementById('issues').textContent = graph.issues.length;
    const pos = {{}};
    graph.nodes.forEach(n => {{ pos[n.id] = n; }});
    graph.edges.forEach(e => {{
      const a = pos[e.source], b = pos[e.target];
      if (!a || !b) return;
      const line = document.createElementNS(ns, 'line');
      line.setAttribute('x1', a.x + 100); line.setAttribute('y1', a.y + 20);
      line.setAttribute('x2', b.x + 100); line.setAttribute('y2', b.y + 20);
      if (e.aiGenerated) line.setAttribute('class', 'ai');
      svg.appendChild(line);
    }});
    graph.nodes.forEach(n => {{
      const g = document.createElementNS(ns, 'g');
      g.setAttribute('class', 'node');
      g.setAttribute('transform', `translate(${{n.x}}, ${{n.y}})`);
      const rect = document.createElementNS(ns, 'rect');
      rect.setAttribute('width', 200); rect.setAttribute('height', 40);
      rect.setAttribute('fill', n.color);
      const title = document.createElementNS(ns, 'title');
      title.textContent = `${{n.type}} ${{n.title}}`;
      const text = document.createElementNS(ns, 'text');
      text.setAttribute('x', 10); text.setAttribute('y', 25);
      text.textContent = n.label;
      g.appendChild(rect); g.appendChild(title); g.appendChild(text);
      svg.appendChild(g);
    }});
    const xs = graph.nodes.map(n => n.x), ys = graph.nodes.map(n => n.y);
    if (xs.length) svg.setAttribute('viewBox',
      `${{Math.min(...xs) - 20}} ${{Math.min(...ys) - 20}} ${{Math.max(...xs) - Math.min(...xs) + 260}} ${{Math.max(...ys) - Math.min(...ys) + 100}}`);
  </script>
</body>
</html>
"""


def _focused_subgraph(graph: DependencyGraph, focus: str):
    """Node ids and edges around nodes whose id or name contains *focus*."""
    all_edges: List[Edge] = sorted(graph.edges, key=lambda e: e.id)
    all_ids = sorted(n.id for n in graph.nodes)
    if not focus:
        return all_ids, all_edges

    focus_ids: Set[str] = {
        node.id for node in graph.nodes if focus in node.id or focus in node.name
    }
    if not focus_ids:
        return all_ids, all_edges

    edge_subset = [e for e in all_edges if e.source in focus_ids or e.target in focus_ids]
    node_subset = set(focus_ids)
    for e in edge_subset:
        node_subset.add(e.source)
        node_subset.add(e.target)
    return sorted(node_subset), edge_subset


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
