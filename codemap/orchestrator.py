"""Orchestrator coordinating scanner, coherence analysis, layout and propagation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from .coherence import CoherenceAnalyzer
from .config_manager import MindMapConfig, load_config
from .graph import DependencyGraph
from .layout import LayoutStore, PositionLike, default_layout
from .models import CodePatch, ImpactAnalysis, NodeChange, PropagationResult
from .patcher import PatchApplier
from .propagation import PropagationEngine
from .scanner import SourceScanner

logger = logging.getLogger(__name__)


class MindMapOrchestrator:
    """Builds graphs for one project and routes changes through the engine."""

    def __init__(self, project_root: Path, settings: Optional[MindMapConfig] = None):
        self.project_root = Path(project_root)
        self.settings = settings or load_config(self.project_root)
        self.scanner = SourceScanner(self.project_root, self.settings)
        self.analyzer = CoherenceAnalyzer(self.settings)
        self.layout = LayoutStore(self.project_root)
        self.applier = PatchApplier(self.project_root)
        self.engine = PropagationEngine(self.project_root, self.settings, self.applier)

    def build(self) -> DependencyGraph:
        """Scan the project and return a graph with coherence and positions filled in."""
        graph = DependencyGraph.from_scan(self.scanner.scan())
        issues = self.analyzer.analyze(graph)
        graph.metadata.issues = issues
        graph.metadata.coherence_score = self.analyzer.score(issues)

        graph.apply_positions(default_layout(graph.nodes))
        saved = self.layout.load()
        if saved is not None:
            graph.apply_positions(saved.user_positions)
        logger.info(
            "Built graph for %s: %d nodes, %d edges, coherence %d",
            self.project_root, len(graph), graph.metadata.total_edges, graph.metadata.coherence_score,
        )
        return graph

    def impact(self, graph: DependencyGraph, change: NodeChange) -> ImpactAnalysis:
        return self.engine.analyze_impact(graph, change)

    def apply(self, patches: Iterable[Union[CodePatch, Dict[str, Any]]]) -> PropagationResult:
        return self.engine.apply_patches(patches)

    def save_positions(self, positions: Mapping[str, PositionLike]) -> None:
        self.layout.save(positions)
