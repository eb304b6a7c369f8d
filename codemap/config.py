"""Configuration paths and analysis defaults for codemap."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("CODEMAP_HOME", str(Path.home() / ".codemap"))).expanduser()
GLOBAL_CONFIG_FILE = BASE_DIR / "config.toml"

# Per-project state lives next to the sources it describes.
PROJECT_STATE_DIRNAME = ".codemap"
LAYOUT_FILENAME = "mindmap.json"
BACKUP_DIRNAME = "backups"
PROJECT_CONFIG_FILENAME = "config.toml"

STORAGE_VERSION = "1.0"

SUPPORTED_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs"}

SKIP_DIRS = {
    "node_modules", ".next", ".nuxt", "dist", "build", "out", ".git",
    "coverage", ".turbo", ".vercel", ".cache", "__tests__", "__mocks__",
    ".codemap", ".svelte-kit", "storybook-static",
}

# Nodes with more incident edges than this are reported as highly coupled.
COUPLING_THRESHOLD = 15

# A breaking dependent with more dependents than this escalates risk to critical.
CRITICAL_DEPENDENTS = 5


def project_state_dir(project_root: Path) -> Path:
    return project_root / PROJECT_STATE_DIRNAME
