"""Core data models shared by the scanner, graph, analyzers and session layer.

Every model exposes ``to_dict()`` returning the camelCase shape used on the
message protocol; models that arrive from the presentation layer also expose
``from_dict()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class NodeType(str, Enum):
    FILE = "file"
    COMPONENT = "component"
    FUNCTION = "function"
    TYPE = "type"
    INTERFACE = "interface"
    API = "api"
    HOOK = "hook"
    CONTEXT = "context"
    CLASS = "class"
    ENUM = "enum"
    CONSTANT = "constant"
    DATABASE = "database"
    EXTERNAL = "external"


class EdgeType(str, Enum):
    IMPORTS = "imports"
    CALLS = "calls"
    RENDERS = "renders"
    QUERIES = "queries"
    MUTATES = "mutates"
    USES = "uses"


class ChangeType(str, Enum):
    RENAME = "rename"
    DELETE = "delete"
    MODIFY_SIGNATURE = "modify-signature"


class _Ranked(str, Enum):
    """String enum whose members compare by declaration order."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other: "_Ranked") -> bool:
        return self.rank < other.rank

    def __le__(self, other: "_Ranked") -> bool:
        return self.rank <= other.rank

    def __gt__(self, other: "_Ranked") -> bool:
        return self.rank > other.rank

    def __ge__(self, other: "_Ranked") -> bool:
        return self.rank >= other.rank


class RiskLevel(_Ranked):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Severity(_Ranked):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Node details
# ---------------------------------------------------------------------------

@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Position":
        return cls(x=float(payload.get("x", 0)), y=float(payload.get("y", 0)))


@dataclass
class PropInfo:
    name: str
    type: str = "unknown"
    required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "required": self.required}


@dataclass
class ExportInfo:
    name: str
    kind: str
    line: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.kind, "line": self.line}


@dataclass
class ImportInfo:
    name: str
    source: str
    kind: str
    line: int
    alias: Optional[str] = None

    @property
    def local_name(self) -> str:
        return self.alias or self.name

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "from": self.source,
            "type": self.kind,
            "line": self.line,
        }
        if self.alias:
            payload["alias"] = self.alias
        return payload


# ---------------------------------------------------------------------------
# Graph entities
# ---------------------------------------------------------------------------

@dataclass
class CodeNode:
    id: str
    name: str
    type: NodeType
    path: str
    line: int = 1
    end_line: int = 1
    position: Position = field(default_factory=Position)
    lines_of_code: int = 0
    exports: List[ExportInfo] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)
    props: List[PropInfo] = field(default_factory=list)
    hooks: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "path": self.path,
            "line": self.line,
            "endLine": self.end_line,
            "position": self.position.to_dict(),
            "linesOfCode": self.lines_of_code,
            "exports": [e.to_dict() for e in self.exports],
            "imports": [i.to_dict() for i in self.imports],
            "hooks": list(self.hooks),
            "metadata": dict(self.metadata),
        }
        if self.props:
            payload["props"] = [p.to_dict() for p in self.props]
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CodeNode":
        return cls(
            id=payload["id"],
            name=payload.get("name", payload["id"]),
            type=NodeType(payload.get("type", NodeType.EXTERNAL.value)),
            path=payload.get("path", ""),
            line=int(payload.get("line", 1)),
            end_line=int(payload.get("endLine", payload.get("line", 1))),
            position=Position.from_dict(payload.get("position") or {}),
            lines_of_code=int(payload.get("linesOfCode", 0)),
            props=[
                PropInfo(p["name"], p.get("type", "unknown"), bool(p.get("required", True)))
                for p in payload.get("props", [])
            ],
            hooks=list(payload.get("hooks", [])),
            metadata=dict(payload.get("metadata", {})),
        )


def edge_id(source: str, target: str, edge_type: EdgeType) -> str:
    return f"{source}->{target}:{edge_type.value}"


@dataclass
class Edge:
    source: str
    target: str
    type: EdgeType
    ai_generated: bool = False
    ai_notes: Optional[str] = None

    @property
    def id(self) -> str:
        return edge_id(self.source, self.target, self.type)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type.value,
        }
        if self.ai_generated:
            payload["aiGenerated"] = True
            if self.ai_notes:
                payload["aiNotes"] = self.ai_notes
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Edge":
        return cls(
            source=payload["source"],
            target=payload["target"],
            type=EdgeType(payload.get("type", EdgeType.USES.value)),
            ai_generated=bool(payload.get("aiGenerated", False)),
            ai_notes=payload.get("aiNotes"),
        )


# ---------------------------------------------------------------------------
# Impact analysis
# ---------------------------------------------------------------------------

@dataclass
class NodeChange:
    node_id: str
    change_type: ChangeType
    before: Any = None
    after: Any = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "nodeId": self.node_id,
            "changeType": self.change_type.value,
            "before": self.before,
        }
        if self.change_type is not ChangeType.DELETE:
            payload["after"] = self.after
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "NodeChange":
        change_type = ChangeType(payload["changeType"])
        return cls(
            node_id=payload["nodeId"],
            change_type=change_type,
            before=payload.get("before"),
            after=None if change_type is ChangeType.DELETE else payload.get("after"),
        )


@dataclass
class BreakingChange:
    node_id: str
    path: str
    line: int
    current_code: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "path": self.path,
            "line": self.line,
            "currentCode": self.current_code,
            "reason": self.reason,
        }


@dataclass
class AffectedNode:
    node_id: str
    node_name: str
    path: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeName": self.node_name,
            "path": self.path,
            "description": self.description,
        }


@dataclass
class CodePatch:
    id: str
    path: str
    line: int
    old_code: str
    new_code: str
    description: str = ""
    auto_fixable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "line": self.line,
            "oldCode": self.old_code,
            "newCode": self.new_code,
            "description": self.description,
            "autoFixable": self.auto_fixable,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CodePatch":
        return cls(
            id=str(payload.get("id") or f"{payload['path']}:{payload['line']}"),
            path=payload["path"],
            line=int(payload["line"]),
            old_code=payload["oldCode"],
            new_code=payload["newCode"],
            description=payload.get("description", ""),
            auto_fixable=bool(payload.get("autoFixable", True)),
        )


@dataclass
class SuggestedFix:
    node_id: str
    path: str
    line: int
    description: str
    old_code: str
    new_code: str
    auto_fixable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "path": self.path,
            "line": self.line,
            "description": self.description,
            "oldCode": self.old_code,
            "newCode": self.new_code,
            "autoFixable": self.auto_fixable,
        }

    def to_patch(self) -> CodePatch:
        return CodePatch(
            id=f"{self.path}:{self.line}",
            path=self.path,
            line=self.line,
            old_code=self.old_code,
            new_code=self.new_code,
            description=self.description,
            auto_fixable=self.auto_fixable,
        )


@dataclass
class ImpactAnalysis:
    target_node: str
    change: NodeChange
    risk_level: RiskLevel
    breaking_changes: List[BreakingChange] = field(default_factory=list)
    direct_impact: List[AffectedNode] = field(default_factory=list)
    transitive_impact: List[AffectedNode] = field(default_factory=list)
    suggested_fixes: List[SuggestedFix] = field(default_factory=list)

    @property
    def breaking_node_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for item in self.breaking_changes:
            seen.setdefault(item.node_id, None)
        return list(seen)

    def auto_fixable_patches(self) -> List[CodePatch]:
        return [fix.to_patch() for fix in self.suggested_fixes if fix.auto_fixable]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetNode": self.target_node,
            "change": self.change.to_dict(),
            "riskLevel": self.risk_level.value,
            "breakingChanges": [b.to_dict() for b in self.breaking_changes],
            "directImpact": [a.to_dict() for a in self.direct_impact],
            "transitiveImpact": [a.to_dict() for a in self.transitive_impact],
            "suggestedFixes": [f.to_dict() for f in self.suggested_fixes],
        }


@dataclass
class PropagationResult:
    success: bool
    files_modified: List[str] = field(default_factory=list)
    patches_applied: List[CodePatch] = field(default_factory=list)
    patches_failed: List[CodePatch] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    backup_id: Optional[str] = None
    error_code: Optional[str] = None

    def __str__(self) -> str:
        if self.success:
            return f"Applied {len(self.patches_applied)} patch(es) to {len(self.files_modified)} file(s)"
        return f"Failed: {'; '.join(self.errors) or 'unknown error'}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "filesModified": list(self.files_modified),
            "patchesApplied": [p.to_dict() for p in self.patches_applied],
            "patchesFailed": [p.to_dict() for p in self.patches_failed],
            "errors": list(self.errors),
            "backupId": self.backup_id,
            "error": self.error_code,
        }


# ---------------------------------------------------------------------------
# Coherence / scan metadata
# ---------------------------------------------------------------------------

@dataclass
class CoherenceIssue:
    id: str
    kind: str
    severity: Severity
    node_ids: List[str]
    message: str
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind,
            "severity": self.severity.value,
            "nodeIds": list(self.node_ids),
            "message": self.message,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload


@dataclass
class ScanWarning:
    path: str
    message: str
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "message": self.message, "line": self.line}


@dataclass
class GraphMetadata:
    project_name: str = ""
    project_path: str = ""
    analyzed_at: str = ""
    total_files: int = 0
    total_nodes: int = 0
    total_edges: int = 0
    coherence_score: int = 100
    issues: List[CoherenceIssue] = field(default_factory=list)
    warnings: List[ScanWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectName": self.project_name,
            "projectPath": self.project_path,
            "analyzedAt": self.analyzed_at,
            "totalFiles": self.total_files,
            "totalNodes": self.total_nodes,
            "totalEdges": self.total_edges,
            "coherenceScore": self.coherence_score,
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class ScanResult:
    nodes: List[CodeNode]
    edges: List[Edge]
    metadata: GraphMetadata


@dataclass
class MindMapStorage:
    version: str
    last_sync: str
    user_positions: Dict[str, Position] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "version": self.version,
                "lastSync": self.last_sync,
                "userPositions": {k: v.to_dict() for k, v in self.user_positions.items()},
            }
        )
        return payload
