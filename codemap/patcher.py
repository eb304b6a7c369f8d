"""PatchApplier for validating and applying line patches as one batch."""

from __future__ import annotations

import difflib
import json
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from . import config
from .errors import PartialApplyError, StaleChangeError
from .models import CodePatch, PropagationResult

logger = logging.getLogger(__name__)


@dataclass
class FilePlan:
    """Original and patched content of one file."""

    rel_path: str
    path: Path
    original: str
    updated: str = ""
    patches: List[CodePatch] = field(default_factory=list)


class PatchApplier:
    """Applies accepted patches with validate-then-write semantics."""

    def __init__(self, project_root: Path, backup_dir: Optional[Path] = None):
        """Initialize PatchApplier.

        Args:
            project_root: Root every patch path is relative to
            backup_dir: Directory to store backups. Defaults to .codemap/backups/
        """
        self.project_root = Path(project_root)
        self.backup_dir = backup_dir or config.project_state_dir(self.project_root) / config.BACKUP_DIRNAME

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _resolve(self, rel_path: str) -> Optional[Path]:
        root = self.project_root.resolve()
        path = (root / rel_path).resolve()
        try:
            path.relative_to(root)
        except ValueError:
            return None
        return path

    def plan(self, patches: Sequence[CodePatch]) -> List[FilePlan]:
        """Validate every patch against the files on disk.

        Args:
            patches: Patches to validate

        Returns:
            One FilePlan per touched file, in first-seen order

        Raises:
            StaleChangeError: if any patch does not match; lists every failure
        """
        plans: Dict[str, FilePlan] = {}
        lines_by_file: Dict[str, List[str]] = {}
        failures: List[Tuple[CodePatch, str]] = []
        claimed: Dict[Tuple[str, int], str] = {}

        for patch in patches:
            if patch.path not in plans:
                path = self._resolve(patch.path)
                if path is None:
                    failures.append((patch, "path is outside the project"))
                    continue
                try:
                    with open(path, "r", encoding="utf-8", newline="") as f:
                        original = f.read()
                except (OSError, UnicodeDecodeError) as exc:
                    failures.append((patch, f"cannot read file: {exc}"))
                    continue
                plans[patch.path] = FilePlan(patch.path, path, original)
                lines_by_file[patch.path] = original.split("\n")

            lines = lines_by_file[patch.path]
            key = (patch.path, patch.line)
            if not 1 <= patch.line <= len(lines):
                failures.append((patch, f"line {patch.line} is out of range (file has {len(lines)} lines)"))
                continue
            if key in claimed:
                failures.append((patch, f"line is already patched by {claimed[key]}"))
                continue
            current = lines[patch.line - 1]
            if current.rstrip() != patch.old_code.rstrip():
                failures.append((patch, f"expected {patch.old_code.strip()!r}, found {current.strip()!r}"))
                continue
            claimed[key] = patch.id
            plans[patch.path].patches.append(patch)

        if failures:
            raise StaleChangeError(failures)

        for rel_path, plan in plans.items():
            lines = list(lines_by_file[rel_path])
            for patch in plan.patches:
                ending = "\r" if lines[patch.line - 1].endswith("\r") else ""
                lines[patch.line - 1] = patch.new_code.rstrip("\r\n") + ending
            plan.updated = "\n".join(lines)
        return list(plans.values())

    def preview(self, patches: Sequence[CodePatch]) -> str:
        """Unified diff of what :meth:`apply` would write."""
        chunks = []
        for plan in self.plan(patches):
            diff = difflib.unified_diff(
                plan.original.splitlines(keepends=True),
                plan.updated.splitlines(keepends=True),
                fromfile=f"a/{plan.rel_path}",
                tofile=f"b/{plan.rel_path}",
            )
            chunks.append("".join(diff))
        return "\n".join(c for c in chunks if c)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def apply(self, patches: Sequence[CodePatch], backup: bool = True) -> PropagationResult:
        """Apply a batch of patches all-or-nothing.

        Args:
            patches: Accepted patches
            backup: Whether to back up every touched file first

        Returns:
            PropagationResult with the modified files and backup id

        Raises:
            StaleChangeError: if validation fails; nothing is written
            PartialApplyError: if a write fails after validation
        """
        if not patches:
            return PropagationResult(success=True)

        plans = self.plan(patches)
        backup_id = None
        if backup:
            try:
                backup_id = self._create_backup(plans)
            except OSError as exc:
                raise PartialApplyError([], [p.rel_path for p in plans], [], f"backup failed: {exc}") from exc

        written: List[FilePlan] = []
        for plan in plans:
            try:
                _atomic_write(plan.path, plan.updated)
            except OSError as exc:
                logger.error("Writing %s failed: %s", plan.rel_path, exc)
                restored = self._restore(written)
                raise PartialApplyError(
                    written=[p.rel_path for p in written],
                    failed=[p.rel_path for p in plans if p not in written],
                    restored=restored,
                    cause=str(exc),
                ) from exc
            written.append(plan)

        logger.info("Applied %d patch(es) to %d file(s)", len(patches), len(plans))
        return PropagationResult(
            success=True,
            files_modified=[p.rel_path for p in plans],
            patches_applied=list(patches),
            backup_id=backup_id,
        )

    def _restore(self, written: List[FilePlan]) -> List[str]:
        restored = []
        for plan in written:
            try:
                _atomic_write(plan.path, plan.original)
                restored.append(plan.rel_path)
            except OSError as exc:
                logger.error("Could not restore %s: %s", plan.rel_path, exc)
        return restored

    def _create_backup(self, plans: List[FilePlan]) -> str:
        """Copy every touched file into a fresh backup directory.

        Returns:
            Backup ID for rollback
        """
        backup_id = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        backup_path = self.backup_dir / backup_id
        backup_path.mkdir(parents=True, exist_ok=True)

        metadata = {
            "timestamp": datetime.now().isoformat(),
            "files": [],
        }
        for plan in plans:
            backup_file = backup_path / "files" / plan.rel_path
            backup_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(plan.path, backup_file)
            metadata["files"].append({
                "original": plan.rel_path,
                "backup": backup_file.relative_to(backup_path).as_posix(),
                "patches": len(plan.patches),
            })

        (backup_path / "metadata.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        logger.debug("Created backup %s", backup_id)
        return backup_id

    def rollback(self, backup_id: str) -> bool:
        """Restore the files saved in a backup.

        Args:
            backup_id: ID of backup to restore

        Returns:
            True if successful, False otherwise
        """
        backup_path = self.backup_dir / backup_id
        metadata_file = backup_path / "metadata.json"
        if not metadata_file.exists():
            return False

        try:
            metadata = json.loads(metadata_file.read_text(encoding="utf-8"))
            for file_info in metadata["files"]:
                target = self._resolve(file_info["original"])
                backup_file = backup_path / file_info["backup"]
                if target is not None and backup_file.exists():
                    shutil.copy2(backup_file, target)
        except (OSError, ValueError, KeyError) as exc:
            logger.error("Rollback of %s failed: %s", backup_id, exc)
            return False
        logger.info("Rolled back backup %s", backup_id)
        return True

    def list_backups(self) -> List[dict]:
        """List all available backups, newest first."""
        if not self.backup_dir.exists():
            return []
        backups = []
        for backup_dir in self.backup_dir.iterdir():
            metadata_file = backup_dir / "metadata.json"
            if backup_dir.is_dir() and metadata_file.exists():
                try:
                    metadata = json.loads(metadata_file.read_text(encoding="utf-8"))
                except (OSError, ValueError) as exc:
                    logger.warning("Skipping unreadable backup %s: %s", backup_dir.name, exc)
                    continue
                metadata["backup_id"] = backup_dir.name
                backups.append(metadata)
        return sorted(backups, key=lambda x: x.get("timestamp", ""), reverse=True)


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
