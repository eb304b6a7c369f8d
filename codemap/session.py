"""Request/response session over one project graph.

A :class:`MindMapSession` owns a single graph snapshot and a monotonically
increasing request generation.  ``analyzeImpact`` and ``refresh`` each start a
new generation; a result computed for an older generation is dropped instead
of being delivered.

Messages are plain dicts with a ``type`` key::

    {"type": "analyzeImpact", "change": {"nodeId": "...", "changeType": "rename",
                                         "before": "Foo", "after": "Bar"}}
"""

from __future__ import annotations

import json
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, IO, List, Optional

from .errors import InvalidChangeError, MindMapError
from .graph import DependencyGraph
from .models import ImpactAnalysis, NodeChange
from .orchestrator import MindMapOrchestrator

logger = logging.getLogger(__name__)

OpenFileCallback = Callable[[str, Optional[int]], None]


class RequestState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    IMPACT_READY = "impact-ready"
    FAILED = "failed"
    APPLYING = "applying"
    APPLIED = "applied"


def error_message(message: str, code: str = "error") -> Dict[str, Any]:
    return {"type": "error", "message": message, "code": code}


class MindMapSession:
    """Explicit session state: one graph, one generation counter, one request state."""

    def __init__(
        self,
        project_root: Path,
        orchestrator: Optional[MindMapOrchestrator] = None,
        open_file: Optional[OpenFileCallback] = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.orchestrator = orchestrator or MindMapOrchestrator(self.project_root)
        self.open_file = open_file
        self.graph: Optional[DependencyGraph] = None
        self.state = RequestState.IDLE
        self.last_impact: Optional[ImpactAnalysis] = None
        self._generation = 0
        self._lock = threading.Lock()
        self._handlers: Dict[str, Callable[[Dict[str, Any]], List[Dict[str, Any]]]] = {
            "ready": self._on_refresh,
            "refresh": self._on_refresh,
            "selectNode": self._on_select_node,
            "analyzeImpact": self._on_analyze_impact,
            "applyChanges": self._on_apply_changes,
            "savePositions": self._on_save_positions,
            "openFile": self._on_open_file,
            "ingestProposals": self._on_ingest_proposals,
        }

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def begin_request(self) -> int:
        """Start a new request; every older generation becomes stale."""
        with self._lock:
            self._generation += 1
            return self._generation

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Process one inbound message and return the outbound messages."""
        msg_type = message.get("type") if isinstance(message, dict) else None
        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            return [error_message(f"Unknown message type: {msg_type!r}", "unknown_message")]
        try:
            return handler(message)
        except MindMapError as exc:
            logger.warning("%s failed: %s", msg_type, exc)
            return [error_message(str(exc), exc.code)]
        except Exception as exc:
            logger.exception("Unexpected failure handling %s", msg_type)
            return [error_message(f"{type(exc).__name__}: {exc}")]

    def ensure_graph(self) -> DependencyGraph:
        if self.graph is None:
            self.graph = self.orchestrator.build()
        return self.graph

    def _init_message(self) -> Dict[str, Any]:
        return {"type": "init", "data": self.ensure_graph().to_dict()}

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_refresh(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        generation = self.begin_request()
        graph = self.orchestrator.build()
        if not self.is_current(generation):
            logger.debug("Dropping superseded refresh (generation %d)", generation)
            return []
        self.graph = graph
        return [self._init_message()]

    def _on_select_node(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        graph = self.ensure_graph()
        node = graph.require_node(str(message.get("nodeId", "")))
        return [{
            "type": "nodeDetails",
            "node": node.to_dict(),
            "dependents": [n.to_dict() for n in graph.get_dependents(node.id)],
            "dependencies": [n.to_dict() for n in graph.get_dependencies(node.id)],
        }]

    def _on_analyze_impact(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = message.get("change")
        if not isinstance(payload, dict):
            raise InvalidChangeError("analyzeImpact needs a 'change' object")
        try:
            change = NodeChange.from_dict(payload)
        except (KeyError, ValueError) as exc:
            raise InvalidChangeError(f"Malformed change: {exc}") from exc

        generation = self.begin_request()
        self.state = RequestState.ANALYZING
        try:
            analysis = self.orchestrator.impact(self.ensure_graph(), change)
        except MindMapError:
            if self.is_current(generation):
                self.state = RequestState.FAILED
                raise
            return []
        except Exception:
            if self.is_current(generation):
                self.state = RequestState.FAILED
            raise
        if not self.is_current(generation):
            logger.debug("Dropping superseded impact result (generation %d)", generation)
            return []
        self.last_impact = analysis
        self.state = RequestState.IMPACT_READY
        return [{"type": "impactResult", "data": analysis.to_dict()}]

    def _on_apply_changes(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        patches = message.get("patches")
        if not isinstance(patches, list):
            raise InvalidChangeError("applyChanges needs a 'patches' list")
        self.state = RequestState.APPLYING
        try:
            result = self.orchestrator.apply(patches)
        except (KeyError, ValueError, TypeError) as exc:
            self.state = RequestState.FAILED
            raise InvalidChangeError(f"Malformed patch: {exc}") from exc
        except Exception:
            self.state = RequestState.FAILED
            raise

        responses: List[Dict[str, Any]] = [{"type": "propagationResult", "data": result.to_dict()}]
        if not result.success:
            self.state = RequestState.FAILED
            return responses

        self.state = RequestState.APPLIED
        self.begin_request()
        self.graph = self.orchestrator.build()
        self.last_impact = None
        self.state = RequestState.IDLE
        responses.append(self._init_message())
        return responses

    def _on_save_positions(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        positions = message.get("positions") or {}
        if not isinstance(positions, dict):
            raise InvalidChangeError("savePositions needs a 'positions' object")
        self.orchestrator.save_positions(positions)
        return []

    def _on_open_file(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        path = message.get("path")
        if not path:
            raise InvalidChangeError("openFile needs a 'path'")
        line = message.get("line")
        if self.open_file is not None:
            self.open_file(str(path), int(line) if line is not None else None)
        else:
            logger.info("No host to open %s", path)
        return []

    def _on_ingest_proposals(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        graph = self.ensure_graph()
        try:
            graph.ingest_proposals(
                message.get("nodes") or [],
                message.get("edges") or [],
                notes=message.get("notes"),
            )
        except (KeyError, ValueError) as exc:
            raise InvalidChangeError(f"Malformed proposal: {exc}") from exc
        return [self._init_message()]


class StdioTransport:
    """JSON-lines transport: one request per input line, one response per output line."""

    def __init__(self, session: MindMapSession, reader: IO[str], writer: IO[str]) -> None:
        self.session = session
        self.reader = reader
        self.writer = writer
        if session.open_file is None:
            session.open_file = self._notify_open_file

    def send(self, message: Dict[str, Any]) -> None:
        self.writer.write(json.dumps(message) + "\n")
        self.writer.flush()

    def _notify_open_file(self, path: str, line: Optional[int]) -> None:
        self.send({"type": "openFile", "path": path, "line": line})

    def serve(self) -> int:
        """Process requests until EOF; returns the number of requests handled."""
        handled = 0
        for raw in self.reader:
            raw = raw.strip()
            if not raw:
                continue
            try:
                message = json.loads(raw)
            except ValueError as exc:
                self.send(error_message(f"Invalid JSON: {exc}", "invalid_json"))
                continue
            for response in self.session.handle(message):
                self.send(response)
            handled += 1
        return handled
