"""In-memory dependency graph.

Nodes and edges live in flat tables keyed by string id; adjacency is kept as
edge-id sets per node so cycles never need pointer chasing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import NotFoundError
from .models import CodeNode, Edge, GraphMetadata, Position, ScanResult

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Nodes, edges and the adjacency index between them."""

    def __init__(self, metadata: Optional[GraphMetadata] = None) -> None:
        self._nodes: Dict[str, CodeNode] = {}
        self._edges: Dict[str, Edge] = {}
        self._outgoing: Dict[str, Set[str]] = {}
        self._incoming: Dict[str, Set[str]] = {}
        self.metadata = metadata or GraphMetadata()

    @classmethod
    def from_scan(cls, result: ScanResult) -> "DependencyGraph":
        graph = cls(metadata=result.metadata)
        for node in result.nodes:
            graph.add_node(node)
        dropped = sum(1 for edge in result.edges if not graph.add_edge(edge))
        if dropped:
            logger.debug("Dropped %d dangling or duplicate edges", dropped)
        graph.refresh_counts()
        return graph

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> List[CodeNode]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get_node(self, node_id: str) -> Optional[CodeNode]:
        return self._nodes.get(node_id)

    def require_node(self, node_id: str) -> CodeNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(node_id)
        return node

    def find_node(self, node_id_or_name: str) -> Optional[CodeNode]:
        """Look a node up by id, then by name (first match in id order)."""
        node = self._nodes.get(node_id_or_name)
        if node is not None:
            return node
        matches = sorted(
            (n for n in self._nodes.values() if n.name == node_id_or_name),
            key=lambda n: n.id,
        )
        return matches[0] if matches else None

    def nodes_in_file(self, rel_path: str) -> List[CodeNode]:
        return sorted((n for n in self._nodes.values() if n.path == rel_path), key=lambda n: n.line)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(self, node: CodeNode) -> None:
        """Insert or replace a node; edges attached to its id are kept."""
        self._nodes[node.id] = node
        self._outgoing.setdefault(node.id, set())
        self._incoming.setdefault(node.id, set())

    def remove_node(self, node_id: str) -> CodeNode:
        node = self.require_node(node_id)
        for eid in list(self._outgoing.get(node_id, ())) + list(self._incoming.get(node_id, ())):
            self._drop_edge(eid)
        del self._nodes[node_id]
        self._outgoing.pop(node_id, None)
        self._incoming.pop(node_id, None)
        return node

    def add_edge(self, edge: Edge) -> bool:
        """Insert *edge*; returns False when it is dangling or already present."""
        if edge.source not in self._nodes or edge.target not in self._nodes:
            return False
        eid = edge.id
        if eid in self._edges:
            return False
        self._edges[eid] = edge
        self._outgoing[edge.source].add(eid)
        self._incoming[edge.target].add(eid)
        return True

    def _drop_edge(self, eid: str) -> None:
        edge = self._edges.pop(eid, None)
        if edge is None:
            return
        self._outgoing.get(edge.source, set()).discard(eid)
        self._incoming.get(edge.target, set()).discard(eid)

    def refresh_counts(self) -> None:
        self.metadata.total_nodes = len(self._nodes)
        self.metadata.total_edges = len(self._edges)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return sorted((self._edges[e] for e in self._outgoing.get(node_id, ())), key=lambda e: e.id)

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return sorted((self._edges[e] for e in self._incoming.get(node_id, ())), key=lambda e: e.id)

    def edges_of(self, node_id: str) -> List[Edge]:
        self.require_node(node_id)
        return sorted(
            (self._edges[e] for e in self._outgoing[node_id] | self._incoming[node_id]),
            key=lambda e: e.id,
        )

    def edges_between(self, source: str, target: str) -> List[Edge]:
        return [e for e in self.outgoing_edges(source) if e.target == target]

    def get_dependents(self, node_id: str) -> List[CodeNode]:
        """Nodes with an edge pointing at *node_id*."""
        self.require_node(node_id)
        ids = {self._edges[e].source for e in self._incoming[node_id]}
        ids.discard(node_id)
        return [self._nodes[i] for i in sorted(ids)]

    def get_dependencies(self, node_id: str) -> List[CodeNode]:
        """Nodes that *node_id* has an edge pointing at."""
        self.require_node(node_id)
        ids = {self._edges[e].target for e in self._outgoing[node_id]}
        ids.discard(node_id)
        return [self._nodes[i] for i in sorted(ids)]

    def dependent_count(self, node_id: str) -> int:
        return len({self._edges[e].source for e in self._incoming.get(node_id, ())} - {node_id})

    def degree(self, node_id: str) -> int:
        return len(self._outgoing.get(node_id, ())) + len(self._incoming.get(node_id, ()))

    # ------------------------------------------------------------------
    # External input
    # ------------------------------------------------------------------

    def ingest_proposals(
        self,
        nodes: Iterable[Dict[str, Any]],
        edges: Iterable[Dict[str, Any]],
        notes: Optional[str] = None,
    ) -> Dict[str, int]:
        """Merge planner-proposed nodes and edges into the graph.

        Proposed nodes are marked with ``metadata.aiGenerated``; proposed
        edges with ``ai_generated`` and the planner's ``notes``.  Edges that
        point at unknown nodes are dropped like any other dangling edge.
        """
        added_nodes = 0
        for payload in nodes:
            node = CodeNode.from_dict(payload)
            node.metadata.setdefault("aiGenerated", True)
            if notes:
                node.metadata.setdefault("aiNotes", notes)
            self.add_node(node)
            added_nodes += 1

        added_edges = 0
        for payload in edges:
            edge = Edge.from_dict(payload)
            edge.ai_generated = True
            edge.ai_notes = payload.get("aiNotes") or notes
            if self.add_edge(edge):
                added_edges += 1
        self.refresh_counts()
        logger.info("Ingested %d proposed nodes and %d edges", added_nodes, added_edges)
        return {"nodes": added_nodes, "edges": added_edges}

    def apply_positions(self, positions: Dict[str, Position]) -> int:
        applied = 0
        for node_id, position in positions.items():
            node = self._nodes.get(node_id)
            if node is not None:
                node.position = Position(position.x, position.y)
                applied += 1
        return applied

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in sorted(self._nodes.values(), key=lambda n: n.id)],
            "edges": [e.to_dict() for e in sorted(self._edges.values(), key=lambda e: e.id)],
            "metadata": self.metadata.to_dict(),
        }
