"""Pytest configuration and fixtures for codemap tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from codemap.config_manager import MindMapConfig
from codemap.graph import DependencyGraph
from codemap.models import CodeNode, Edge, EdgeType, NodeType
from codemap.orchestrator import MindMapOrchestrator


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch):
    """Keep the user's ~/.codemap/config.toml out of every test."""
    home = tmp_path / "codemap-home"
    monkeypatch.setattr("codemap.config.BASE_DIR", home)
    monkeypatch.setattr("codemap.config.GLOBAL_CONFIG_FILE", home / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_app_path() -> Path:
    """Get path to the sample Next.js project (read-only)."""
    return Path(__file__).parent / "fixtures" / "sample_app"


@pytest.fixture
def sample_app(temp_dir: Path, sample_app_path: Path) -> Path:
    """Writable copy of the sample project."""
    target = temp_dir / "sample_app"
    shutil.copytree(sample_app_path, target)
    return target


@pytest.fixture
def sample_graph(sample_app: Path) -> DependencyGraph:
    """Graph built from the writable sample project."""
    return MindMapOrchestrator(sample_app, MindMapConfig()).build()


def make_node(node_id: str, node_type: NodeType = NodeType.FUNCTION, path: str = "") -> CodeNode:
    return CodeNode(id=node_id, name=node_id, type=node_type, path=path)


def make_graph(node_ids, edges) -> DependencyGraph:
    """Build a graph from ids and ``(source, target)`` or ``(source, target, type)`` tuples."""
    graph = DependencyGraph()
    for node_id in node_ids:
        graph.add_node(make_node(node_id))
    for edge in edges:
        edge_type = edge[2] if len(edge) > 2 else EdgeType.USES
        graph.add_edge(Edge(edge[0], edge[1], edge_type))
    return graph
