"""TOML-backed configuration for codemap.

Settings are read from ``~/.codemap/config.toml`` and then overridden by
``<project>/.codemap/config.toml``::

    [scan]
    extensions = [".ts", ".tsx"]
    exclude_dirs = ["generated"]

    [impact]
    critical_dependents = 5

    [coherence]
    coupling_threshold = 15
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Set

import toml

from . import config

logger = logging.getLogger(__name__)


@dataclass
class MindMapConfig:
    extensions: Set[str] = field(default_factory=lambda: set(config.SUPPORTED_EXTENSIONS))
    exclude_dirs: Set[str] = field(default_factory=lambda: set(config.SKIP_DIRS))
    critical_dependents: int = config.CRITICAL_DEPENDENTS
    coupling_threshold: int = config.COUPLING_THRESHOLD

    def merged(self, payload: Dict[str, Any]) -> "MindMapConfig":
        """Return a copy with the sections of *payload* applied."""
        scan = payload.get("scan", {})
        impact = payload.get("impact", {})
        coherence = payload.get("coherence", {})

        extensions = set(self.extensions)
        if "extensions" in scan:
            extensions = {
                ext if ext.startswith(".") else f".{ext}"
                for ext in scan["extensions"]
                if f".{ext.lstrip('.')}" in config.SUPPORTED_EXTENSIONS
            }

        return MindMapConfig(
            extensions=extensions,
            exclude_dirs=set(self.exclude_dirs) | set(scan.get("exclude_dirs", [])),
            critical_dependents=int(impact.get("critical_dependents", self.critical_dependents)),
            coupling_threshold=int(coherence.get("coupling_threshold", self.coupling_threshold)),
        )


def load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file, returning ``{}`` when it is missing or malformed."""
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (toml.TomlDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}


def load_config(project_root: Optional[Path] = None) -> MindMapConfig:
    """Build the effective configuration for *project_root*."""
    settings = MindMapConfig().merged(load_toml(config.GLOBAL_CONFIG_FILE))
    if project_root is not None:
        project_file = config.project_state_dir(project_root) / config.PROJECT_CONFIG_FILENAME
        settings = settings.merged(load_toml(project_file))
    return settings


def save_project_config(project_root: Path, payload: Dict[str, Any]) -> Path:
    """Write *payload* as the project-level config file, keeping other sections."""
    path = config.project_state_dir(project_root) / config.PROJECT_CONFIG_FILENAME
    current = load_toml(path)
    for section, values in payload.items():
        current.setdefault(section, {}).update(values)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(current, f)
    return path
