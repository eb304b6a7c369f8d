"""Engine-level error taxonomy.

A single unparsable source file is not an error: the scanner records it as a
:class:`~codemap.models.ScanWarning` and continues.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from .models import CodePatch


class MindMapError(Exception):
    """Base class for every failure reported back to the caller."""

    code = "error"


class NotFoundError(MindMapError):
    """A referenced node id does not exist in the current graph."""

    code = "not_found"

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class InvalidChangeError(MindMapError):
    """A proposed change is missing the data its change type needs."""

    code = "invalid_change"


class StaleChangeError(MindMapError):
    """One or more patches no longer match the file content on disk.

    The whole batch is rejected; no file has been modified.
    """

    code = "stale_change"

    def __init__(self, failures: Sequence[Tuple[CodePatch, str]]):
        self.failures: List[Tuple[CodePatch, str]] = list(failures)
        details = "; ".join(f"{p.path}:{p.line} {reason}" for p, reason in self.failures)
        super().__init__(f"{len(self.failures)} patch(es) are stale: {details}")

    @property
    def patches(self) -> List[CodePatch]:
        return [patch for patch, _ in self.failures]

    @property
    def reasons(self) -> List[str]:
        return [f"{p.path}:{p.line}: {reason}" for p, reason in self.failures]


class PartialApplyError(MindMapError):
    """A file write failed after validation succeeded.

    ``written`` lists files that had been written before the failure,
    ``failed`` the files that were not written, and ``restored`` the written
    files that were successfully put back to their original content.
    """

    code = "partial_apply"

    def __init__(self, written: List[str], failed: List[str], restored: List[str], cause: str):
        self.written = written
        self.failed = failed
        self.restored = restored
        self.cause = cause
        super().__init__(
            f"Write failed ({cause}); written={written} failed={failed} restored={restored}"
        )
