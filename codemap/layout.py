"""Persisted node positions and the default grid layout."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from . import config
from .models import CodeNode, MindMapStorage, NodeType, Position

logger = logging.getLogger(__name__)

HORIZONTAL_SPACING = 300
VERTICAL_SPACING = 150
GROUP_GAP = 100
NODES_PER_ROW = 5

TYPE_ORDER = [
    NodeType.TYPE,
    NodeType.INTERFACE,
    NodeType.ENUM,
    NodeType.CONTEXT,
    NodeType.HOOK,
    NodeType.COMPONENT,
    NodeType.API,
    NodeType.DATABASE,
    NodeType.FUNCTION,
    NodeType.CLASS,
    NodeType.CONSTANT,
    NodeType.FILE,
    NodeType.EXTERNAL,
]

PositionLike = Union[Position, Mapping[str, Any]]


def default_layout(nodes: Iterable[CodeNode]) -> Dict[str, Position]:
    """Grid positions grouped by node type, one band of rows per type."""
    by_type: Dict[NodeType, list] = {}
    for node in nodes:
        by_type.setdefault(node.type, []).append(node)

    positions: Dict[str, Position] = {}
    current_y = 0
    for node_type in TYPE_ORDER:
        group = sorted(by_type.get(node_type, []), key=lambda n: n.id)
        if not group:
            continue
        for i, node in enumerate(group):
            positions[node.id] = Position(
                x=float((i % NODES_PER_ROW) * HORIZONTAL_SPACING),
                y=float(current_y + (i // NODES_PER_ROW) * VERTICAL_SPACING),
            )
        rows = -(-len(group) // NODES_PER_ROW)
        current_y += rows * VERTICAL_SPACING + GROUP_GAP
    return positions


class LayoutStore:
    """Reads and merge-writes ``.codemap/mindmap.json``."""

    def __init__(self, project_root: Path, path: Optional[Path] = None) -> None:
        self.project_root = Path(project_root)
        self.path = path or config.project_state_dir(self.project_root) / config.LAYOUT_FILENAME

    def _read_raw(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable layout file %s: %s", self.path, exc)
            return None
        if not isinstance(payload, dict):
            logger.warning("Ignoring layout file %s: not a JSON object", self.path)
            return None
        return payload

    def load(self) -> Optional[MindMapStorage]:
        """Saved layout, or None when the file is absent or corrupt."""
        payload = self._read_raw()
        if payload is None:
            return None
        positions: Dict[str, Position] = {}
        raw_positions = payload.get("userPositions") or {}
        if isinstance(raw_positions, dict):
            for node_id, value in raw_positions.items():
                if not isinstance(value, dict):
                    continue
                try:
                    positions[node_id] = Position.from_dict(value)
                except (TypeError, ValueError):
                    logger.debug("Skipping malformed position for %s", node_id)
        extra = {k: v for k, v in payload.items() if k not in ("version", "lastSync", "userPositions")}
        return MindMapStorage(
            version=str(payload.get("version", config.STORAGE_VERSION)),
            last_sync=str(payload.get("lastSync", "")),
            user_positions=positions,
            extra=extra,
        )

    def save(self, positions: Mapping[str, PositionLike]) -> MindMapStorage:
        """Merge *positions* into the stored layout and write it back."""
        existing = self.load()
        merged: Dict[str, Position] = dict(existing.user_positions) if existing else {}
        for node_id, value in positions.items():
            merged[node_id] = value if isinstance(value, Position) else Position.from_dict(value)

        storage = MindMapStorage(
            version=config.STORAGE_VERSION,
            last_sync=datetime.now(timezone.utc).isoformat(),
            user_positions=merged,
            extra=dict(existing.extra) if existing else {},
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(storage.to_dict(), indent=2), encoding="utf-8")
        logger.debug("Saved %d positions to %s", len(positions), self.path)
        return storage
