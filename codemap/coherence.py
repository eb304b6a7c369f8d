"""Structural health checks over a dependency graph.

Each detector is independent and read-only; the score is derived from the
weighted issue list.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Dict, List, Optional, Set

from .config_manager import MindMapConfig
from .graph import DependencyGraph
from .models import CodeNode, CoherenceIssue, EdgeType, NodeType, Severity
from .scanner import resolve_module_path

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.CRITICAL: 15,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
}

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Files loaded by a framework rather than imported by application code.
ENTRY_STEMS = {
    "page", "layout", "route", "middleware", "index", "loading", "error",
    "not-found", "template", "default", "_app", "_document", "main", "app",
}


def score(issues: List[CoherenceIssue]) -> int:
    """Coherence score in ``[0, 100]``; lower means more or worse issues."""
    return max(0, 100 - sum(SEVERITY_WEIGHTS[i.severity] for i in issues))


def is_entry_point(node: CodeNode) -> bool:
    if node.type in (NodeType.API, NodeType.DATABASE):
        return True
    parts = node.path.split("/")
    stem = posixpath.splitext(parts[-1])[0].lower()
    return stem in ENTRY_STEMS or "pages" in parts[:-1]


def _is_validation_node(node: CodeNode) -> bool:
    if node.type in (NodeType.DATABASE, NodeType.FILE):
        return False
    name = node.name.lower()
    return "valid" in name or "schema" in name


class CoherenceAnalyzer:
    """Run every detector over a graph and collect the issues."""

    def __init__(self, settings: Optional[MindMapConfig] = None):
        self.settings = settings or MindMapConfig()

    def analyze(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        issues: List[CoherenceIssue] = []
        for detector in (
            self._detect_missing_validation,
            self._detect_missing_error_handling,
            self._detect_circular_dependencies,
            self._detect_missing_types,
            self._detect_untyped_tables,
            self._detect_high_coupling,
            self._detect_orphans,
            self._detect_unused_exports,
        ):
            issues.extend(detector(graph))

        seen: Set[str] = set()
        unique: List[CoherenceIssue] = []
        for issue in issues:
            if issue.id not in seen:
                seen.add(issue.id)
                unique.append(issue)
        logger.info("Coherence analysis found %d issues", len(unique))
        return unique

    def score(self, issues: List[CoherenceIssue]) -> int:
        return score(issues)

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    def _detect_missing_validation(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        if any(_is_validation_node(n) for n in graph.nodes):
            return []
        issues = []
        for node in graph.nodes:
            if node.type is not NodeType.API:
                continue
            method = str(node.metadata.get("httpMethod", "")).upper()
            mutates = any(e.type is EdgeType.MUTATES for e in graph.outgoing_edges(node.id))
            if method not in MUTATING_METHODS and not mutates:
                continue
            issues.append(CoherenceIssue(
                id=f"missing_validation:{node.id}",
                kind="missing_validation",
                severity=Severity.HIGH,
                node_ids=[node.id],
                message=f"{node.name} writes data without any input validation",
                suggestion="Validate the request body (e.g. a zod schema) before touching the database.",
            ))
        return issues

    def _detect_missing_error_handling(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        return [
            CoherenceIssue(
                id=f"missing_error_handling:{node.id}",
                kind="missing_error_handling",
                severity=Severity.MEDIUM,
                node_ids=[node.id],
                message=f"{node.name} has no try/catch around its work",
                suggestion="Catch failures and return an error response with a proper status code.",
            )
            for node in graph.nodes
            if node.type is NodeType.API and not node.metadata.get("handlesErrors", False)
        ]

    def _detect_circular_dependencies(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        files = sorted(n.id for n in graph.nodes if n.type is NodeType.FILE)
        successors: Dict[str, List[str]] = {}
        for file_id in files:
            successors[file_id] = sorted({
                e.target for e in graph.outgoing_edges(file_id)
                if e.type is EdgeType.IMPORTS and graph.get_node(e.target) is not None
                and graph.get_node(e.target).type is NodeType.FILE
            })

        issues = []
        for component in strongly_connected_components(files, successors):
            if len(component) < 2:
                continue
            members = sorted(component)
            names = " -> ".join(graph.get_node(m).path for m in members)
            issues.append(CoherenceIssue(
                id=f"circular_dependency:{members[0]}",
                kind="circular_dependency",
                severity=Severity.HIGH,
                node_ids=members,
                message=f"Circular import between {len(members)} files: {names}",
                suggestion="Move the shared code into a module both sides can import.",
            ))
        return issues

    def _detect_missing_types(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        type_names = {
            n.name for n in graph.nodes if n.type in (NodeType.TYPE, NodeType.INTERFACE)
        }
        issues = []
        for node in graph.nodes:
            if node.type is not NodeType.COMPONENT or not node.props:
                continue
            expected = node.metadata.get("propsType") or f"{node.name}Props"
            if expected in type_names:
                continue
            issues.append(CoherenceIssue(
                id=f"missing_type:{node.id}",
                kind="missing_type",
                severity=Severity.LOW,
                node_ids=[node.id],
                message=f"Component {node.name} takes props without a {expected} type",
                suggestion=f"Declare `interface {expected}` and annotate the props parameter.",
            ))
        return issues

    def _detect_untyped_tables(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        type_names = [
            n.name.lower() for n in graph.nodes if n.type in (NodeType.TYPE, NodeType.INTERFACE)
        ]
        issues = []
        for node in graph.nodes:
            if node.type is not NodeType.DATABASE:
                continue
            table = node.name.lower().rstrip("s")
            if any(table in name for name in type_names):
                continue
            issues.append(CoherenceIssue(
                id=f"untyped_table:{node.id}",
                kind="untyped_table",
                severity=Severity.LOW,
                node_ids=[node.id],
                message=f"Table {node.name} has no matching TypeScript type",
                suggestion="Export an inferred row type for the table.",
            ))
        return issues

    def _detect_high_coupling(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        threshold = self.settings.coupling_threshold
        issues = []
        for node in graph.nodes:
            degree = graph.degree(node.id)
            if degree <= threshold:
                continue
            issues.append(CoherenceIssue(
                id=f"high_coupling:{node.id}",
                kind="high_coupling",
                severity=Severity.MEDIUM,
                node_ids=[node.id],
                message=f"{node.name} has {degree} connections (threshold {threshold})",
                suggestion="Split it into smaller, focused units.",
            ))
        return issues

    def _detect_orphans(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        issues = []
        for node in graph.nodes:
            if graph.degree(node.id) or is_entry_point(node):
                continue
            severity = Severity.MEDIUM if node.type is NodeType.FILE else Severity.LOW
            issues.append(CoherenceIssue(
                id=f"orphaned_node:{node.id}",
                kind="orphaned_node",
                severity=severity,
                node_ids=[node.id],
                message=f"{node.name} is not connected to anything",
                suggestion="Remove it or wire it into the code that needs it.",
            ))
        return issues

    def _detect_unused_exports(self, graph: DependencyGraph) -> List[CoherenceIssue]:
        files = {n.path for n in graph.nodes if n.type is NodeType.FILE}
        imported: Dict[str, Set[str]] = {}
        namespaced: Set[str] = set()
        for node in graph.nodes:
            if node.type is not NodeType.FILE:
                continue
            for imp in node.imports:
                path = resolve_module_path(imp.source, node.path, files)
                if path is None:
                    continue
                if imp.kind == "namespace":
                    namespaced.add(path)
                else:
                    imported.setdefault(path, set()).add(imp.name)

        issues = []
        for node in graph.nodes:
            if node.type is not NodeType.FILE or node.path in namespaced or is_entry_point(node):
                continue
            used = imported.get(node.path, set())
            for export in node.exports:
                if export.kind == "default" or export.name in used:
                    continue
                issues.append(CoherenceIssue(
                    id=f"unused_export:{node.id}#{export.name}",
                    kind="unused_export",
                    severity=Severity.LOW,
                    node_ids=[node.id],
                    message=f"{export.name} is exported by {node.path} but never imported",
                    suggestion="Drop the export, or the declaration if nothing uses it.",
                ))
        return issues


def strongly_connected_components(
    vertices: List[str], successors: Dict[str, List[str]]
) -> List[List[str]]:
    """Tarjan's algorithm without recursion."""
    index_of: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    components: List[List[str]] = []
    counter = 0

    for root in vertices:
        if root in index_of:
            continue
        work = [(root, 0)]
        while work:
            vertex, child_idx = work.pop()
            if child_idx == 0:
                index_of[vertex] = lowlink[vertex] = counter
                counter += 1
                stack.append(vertex)
                on_stack.add(vertex)
            children = successors.get(vertex, [])
            recurse = False
            while child_idx < len(children):
                child = children[child_idx]
                child_idx += 1
                if child not in index_of:
                    work.append((vertex, child_idx))
                    work.append((child, 0))
                    recurse = True
                    break
                if child in on_stack:
                    lowlink[vertex] = min(lowlink[vertex], index_of[child])
            if recurse:
                continue
            if lowlink[vertex] == index_of[vertex]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == vertex:
                        break
                components.append(component)
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[vertex])
    return components
