"""Change-impact analysis and fix synthesis.

Given a proposed :class:`~codemap.models.NodeChange`, the engine walks the
graph's reverse edges to find direct and transitive dependents, reads their
current source to locate breaking references, and emits suggested fixes.
Only pure textual substitutions are marked auto-fixable.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .config_manager import MindMapConfig
from .errors import InvalidChangeError, PartialApplyError, StaleChangeError
from .graph import DependencyGraph
from .models import (
    AffectedNode,
    BreakingChange,
    ChangeType,
    CodeNode,
    CodePatch,
    ImpactAnalysis,
    ImportInfo,
    NodeChange,
    NodeType,
    PropagationResult,
    RiskLevel,
    SuggestedFix,
)
from .patcher import PatchApplier
from .scanner import (
    file_node_id,
    find_closing,
    resolve_module_path,
    split_top_level,
    strip_code,
    sub_code,
)

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_$][\w$]*$")
_IMPORT_START_RE = re.compile(r"^\s*import\b")
_MODULE_LINE_RE = re.compile(r"^\s*(?:import|export)\b")
_FILE_NAME_RE = re.compile(r"^[\w$.-]+$")
_JSX_IGNORED_PROPS = {"key", "ref", "children"}


def word_pattern(word: str) -> "re.Pattern[str]":
    return re.compile(rf"(?<![\w$]){re.escape(word)}(?![\w$])")


@dataclass
class Param:
    name: str
    optional: bool = False
    rest: bool = False


@dataclass
class Signature:
    params: List[Param]

    @property
    def required(self) -> int:
        count = 0
        for idx, param in enumerate(self.params):
            if not param.optional and not param.rest:
                count = idx + 1
        return count

    @property
    def total(self) -> Optional[int]:
        """Maximum positional arguments, or None when a rest parameter is present."""
        if any(p.rest for p in self.params):
            return None
        return len(self.params)

    def describe(self) -> str:
        if self.total is None:
            return f"at least {self.required}"
        if self.required == self.total:
            return str(self.total)
        return f"{self.required} to {self.total}"

    def accepts(self, count: int) -> bool:
        return count >= self.required and (self.total is None or count <= self.total)


def _parse_param(text: str) -> Param:
    text = text.strip()
    rest = text.startswith("...")
    if rest:
        text = text[3:]
    head = text
    depth = 0
    default = False
    for idx, ch in enumerate(text):
        if ch in "([{<":
            depth += 1
        elif ch in ")]}>":
            depth -= 1
        elif depth == 0 and ch in ":=":
            head = text[:idx]
            default = ch == "=" or "=" in _top_level(text[idx + 1:])
            break
    name = head.strip()
    optional = default or name.endswith("?")
    return Param(name=name.rstrip("?").strip() or "arg", optional=optional, rest=rest)


def _top_level(text: str) -> str:
    """Characters of *text* that are not nested in brackets."""
    depth = 0
    out = []
    for ch in text:
        if ch in "([{<":
            depth += 1
        elif ch in ")]}>" and depth > 0:
            depth -= 1
        elif depth == 0:
            out.append(ch)
    return "".join(out).replace("=>", "")


def parse_signature(value: Any) -> Signature:
    """Accept ``"(a, b?, c = 1)"``, ``["a", "b?"]`` or ``{"params": [...]}``."""
    if isinstance(value, Signature):
        return value
    if isinstance(value, dict):
        if "params" not in value:
            raise InvalidChangeError("Signature object needs a 'params' list")
        value = value["params"]
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("("):
            close = find_closing(text, 0)
            text = text[1:close] if close > 0 else text[1:]
        return Signature([_parse_param(p) for p in split_top_level(text)])
    if isinstance(value, (list, tuple)):
        params = []
        for item in value:
            if isinstance(item, dict):
                params.append(Param(
                    name=str(item.get("name", "arg")),
                    optional=bool(item.get("optional", not item.get("required", True))),
                    rest=bool(item.get("rest", False)),
                ))
            else:
                params.append(_parse_param(str(item)))
        return Signature(params)
    raise InvalidChangeError(f"Unsupported signature: {value!r}")


def parse_props(value: Any) -> Optional[Dict[str, bool]]:
    """Prop name -> required, from ``{"props": [...]}``, a list or ``"({ a, b? })"``."""
    if isinstance(value, dict):
        if "props" not in value:
            return None
        value = value["props"]
    if isinstance(value, str):
        inner = re.search(r"\{([^}]*)\}", value)
        if not inner:
            return None
        value = split_top_level(inner.group(1))
    if not isinstance(value, (list, tuple)):
        return None
    props: Dict[str, bool] = {}
    for item in value:
        if isinstance(item, dict):
            props[str(item["name"])] = bool(item.get("required", True))
        else:
            param = _parse_param(str(item))
            props[param.name] = not param.optional
    return props


def remove_import_specifier(line: str, word: str) -> Optional[str]:
    """Drop *word* from an import line; ``""`` when nothing would be left.

    Returns None when the line does not hold a removable specifier.
    """
    name = re.escape(word)
    specifier = rf"(?:type\s+)?{name}(?:\s+as\s+[\w$]+)?"
    source = r"\s*from\s*['\"][^'\"]+['\"]\s*;?\s*$"
    if re.match(rf"^\s*import\s+(?:type\s+)?\{{\s*{specifier}\s*,?\s*\}}{source}", line):
        return ""
    if re.match(rf"^\s*import\s+{name}{source}", line):
        return ""
    if re.match(rf"^\s*{specifier}\s*,?\s*$", line):
        return ""
    default_and_named = re.match(rf"^(\s*import\s+){name}\s*,\s*(\{{.*)$", line)
    if default_and_named:
        return default_and_named.group(1) + default_and_named.group(2)
    for pattern in (rf"(?<=[{{,])\s*{specifier}\s*,", rf",\s*{specifier}(?=\s*\}})", rf"(?<=\{{)\s*{specifier}\s*(?=\}})"):
        updated, count = re.subn(pattern, "", line, count=1)
        if count:
            return re.sub(r"\{\s*", "{ ", updated, count=1) if "{" in updated else updated
    return None


def renamed_specifier(specifier: str, old_stem: str, new_stem: str) -> Optional[str]:
    """``'../lib/format'`` -> ``'../lib/formatting'``; None when the last segment is not the file."""
    head, sep, last = specifier.rpartition("/")
    if last != old_stem and not last.startswith(old_stem + "."):
        return None
    return f"{head}{sep}{new_stem}{last[len(old_stem):]}"


class _SourceCache:
    """Current on-disk lines of project files, read once per analysis."""

    def __init__(self, project_root: Path) -> None:
        self.project_root = project_root
        self._lines: Dict[str, List[str]] = {}

    def lines(self, rel_path: str) -> List[str]:
        if rel_path not in self._lines:
            path = self.project_root / rel_path
            try:
                self._lines[rel_path] = path.read_text(encoding="utf-8").split("\n")
            except (OSError, UnicodeDecodeError) as exc:
                logger.debug("Cannot read %s: %s", path, exc)
                self._lines[rel_path] = []
        return self._lines[rel_path]

    def line(self, rel_path: str, lineno: int) -> str:
        lines = self.lines(rel_path)
        return lines[lineno - 1] if 0 < lineno <= len(lines) else ""


class PropagationEngine:
    """Impact analysis over a graph snapshot plus batch patch application."""

    def __init__(
        self,
        project_root: Path,
        settings: Optional[MindMapConfig] = None,
        applier: Optional[PatchApplier] = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.settings = settings or MindMapConfig()
        self.applier = applier or PatchApplier(self.project_root)

    # ------------------------------------------------------------------
    # Impact analysis
    # ------------------------------------------------------------------

    def analyze_impact(self, graph: DependencyGraph, change: NodeChange) -> ImpactAnalysis:
        target = graph.require_node(change.node_id)
        self._validate(target, change)
        sources = _SourceCache(self.project_root)

        direct = graph.get_dependents(target.id)
        transitive, via = self._transitive(graph, target, direct)

        breaking: List[BreakingChange] = []
        fixes: List[SuggestedFix] = []
        escalated: List[CodeNode] = []

        if change.change_type is ChangeType.RENAME and target.type is NodeType.FILE:
            self._rename_file(graph, target, change, direct, sources, breaking, fixes)
        elif change.change_type is ChangeType.RENAME:
            self._rename(graph, target, change, direct, sources, breaking, fixes)
        elif change.change_type is ChangeType.DELETE:
            if target.type is NodeType.FILE:
                self._delete_file(graph, target, direct, sources, breaking, fixes)
            else:
                self._delete(graph, target, direct, sources, breaking, fixes)
            escalated = self._escalate(graph, target, direct, transitive)
            for node in escalated:
                breaking.append(BreakingChange(
                    node_id=node.id,
                    path=node.path,
                    line=node.line,
                    current_code=sources.line(node.path, node.line),
                    reason=f"Everything {node.name} depends on is removed or broken by deleting {target.name}",
                ))
        else:
            self._modify_signature(graph, target, change, direct, sources, breaking, fixes)

        escalated_ids = {n.id for n in escalated}
        analysis = ImpactAnalysis(
            target_node=target.id,
            change=change,
            risk_level=RiskLevel.LOW,
            breaking_changes=breaking,
            direct_impact=[
                AffectedNode(n.id, n.name, n.path, self._describe_direct(graph, n, target))
                for n in direct
            ],
            transitive_impact=[
                AffectedNode(n.id, n.name, n.path, f"Depends on {target.name} through {via[n.id]}")
                for n in transitive
                if n.id not in escalated_ids
            ],
            suggested_fixes=_dedupe_fixes(fixes),
        )
        analysis.risk_level = self._risk(graph, analysis, bool(escalated))
        logger.info(
            "Impact of %s on %s: %s risk, %d direct, %d transitive, %d breaking",
            change.change_type.value, target.id, analysis.risk_level.value,
            len(analysis.direct_impact), len(analysis.transitive_impact), len(breaking),
        )
        return analysis

    @staticmethod
    def _validate(target: CodeNode, change: NodeChange) -> None:
        if change.change_type is ChangeType.RENAME:
            if not isinstance(change.after, str) or not change.after.strip():
                raise InvalidChangeError("A rename needs the new name in 'after'")
            if target.type is NodeType.FILE:
                if not _FILE_NAME_RE.match(change.after.strip()):
                    raise InvalidChangeError(f"'{change.after}' is not a valid file name")
            elif not _IDENT_RE.match(change.after.strip()):
                raise InvalidChangeError(f"'{change.after}' is not a valid identifier")
        elif change.change_type is ChangeType.MODIFY_SIGNATURE:
            if change.after is None:
                raise InvalidChangeError("A signature change needs the new signature in 'after'")
            if target.type is not NodeType.COMPONENT or parse_props(change.after) is None:
                parse_signature(change.after)

    @staticmethod
    def _transitive(
        graph: DependencyGraph, target: CodeNode, direct: List[CodeNode]
    ) -> Tuple[List[CodeNode], Dict[str, str]]:
        visited: Set[str] = {target.id} | {n.id for n in direct}
        queue = deque(direct)
        order: List[CodeNode] = []
        via: Dict[str, str] = {}
        while queue:
            current = queue.popleft()
            for dependent in graph.get_dependents(current.id):
                if dependent.id in visited:
                    continue
                visited.add(dependent.id)
                via[dependent.id] = current.name
                order.append(dependent)
                queue.append(dependent)
        return order, via

    @staticmethod
    def _describe_direct(graph: DependencyGraph, node: CodeNode, target: CodeNode) -> str:
        kinds = sorted({e.type.value for e in graph.edges_between(node.id, target.id)})
        return f"{' / '.join(kinds) or 'references'} {target.name}"

    # ------------------------------------------------------------------
    # Source scopes
    # ------------------------------------------------------------------

    @staticmethod
    def _scope(graph: DependencyGraph, node: CodeNode, sources: _SourceCache) -> List[Tuple[int, str]]:
        """``(lineno, text)`` pairs of the source a node owns."""
        lines = sources.lines(node.path) if node.path else []
        if not lines:
            return []
        if node.type is NodeType.FILE:
            owned: Set[int] = set()
            for decl in graph.nodes_in_file(node.path):
                if decl.type is not NodeType.FILE:
                    owned.update(range(decl.line, decl.end_line + 1))
            return [(i + 1, text) for i, text in enumerate(lines) if (i + 1) not in owned]
        end = min(max(node.end_line, node.line), len(lines))
        return [(i, lines[i - 1]) for i in range(node.line, end + 1)]

    @staticmethod
    def reference_name(node: CodeNode) -> str:
        """The identifier other code uses to refer to *node*."""
        if node.type is NodeType.DATABASE:
            return node.metadata.get("variable", node.name)
        if node.type is NodeType.API:
            return node.metadata.get("httpMethod", node.name)
        return node.name

    def _words(self, graph: DependencyGraph, dependent: CodeNode, target: CodeNode, word: str) -> List[str]:
        """*word*, the names *target* is exported as, and their local import aliases."""
        exported = [word] + [
            e.name for e in target.exports if e.kind != "default" and e.name != word
        ]
        words = list(exported)
        file_node = graph.get_node(file_node_id(dependent.path))
        if file_node is not None:
            for imp in file_node.imports:
                if imp.name in exported and imp.alias and imp.alias not in words:
                    words.append(imp.alias)
        return words

    def _module_imports(
        self, graph: DependencyGraph, dependent: CodeNode, target: CodeNode, sources: _SourceCache
    ) -> List[Tuple[ImportInfo, int, str]]:
        """Import statements of *dependent* whose specifier resolves to the file *target*.

        Each entry carries the line holding the quoted specifier, one per line.
        """
        if dependent.type is not NodeType.FILE:
            return []
        files = {n.path for n in graph.nodes if n.type is NodeType.FILE}
        lines = sources.lines(dependent.path)
        found: List[Tuple[ImportInfo, int, str]] = []
        seen: Set[int] = set()
        for imp in dependent.imports:
            if resolve_module_path(imp.source, dependent.path, files) != target.path:
                continue
            quoted = re.compile(rf"(['\"]){re.escape(imp.source)}\1")
            for lineno in range(imp.line, len(lines) + 1):
                text = lines[lineno - 1]
                if quoted.search(text):
                    if lineno not in seen:
                        seen.add(lineno)
                        found.append((imp, lineno, text))
                    break
        return found

    # ------------------------------------------------------------------
    # Change kinds
    # ------------------------------------------------------------------

    def _rename(self, graph, target, change, direct, sources, breaking, fixes) -> None:
        word = change.before if isinstance(change.before, str) and change.before else self.reference_name(target)
        new_name = change.after.strip()
        pattern = word_pattern(word)
        for dependent in direct:
            for lineno, text in self._scope(graph, dependent, sources):
                if not pattern.search(strip_code(text)):
                    continue
                breaking.append(BreakingChange(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    current_code=text,
                    reason=f"References '{word}', which is renamed to '{new_name}'",
                ))
                fixes.append(SuggestedFix(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    description=f"Rename '{word}' to '{new_name}'",
                    old_code=text,
                    new_code=sub_code(pattern, new_name, text),
                    auto_fixable=True,
                ))

    def _rename_file(self, graph, target, change, direct, sources, breaking, fixes) -> None:
        """Importers name a file by its module specifier, so that is what breaks."""
        old_stem = posixpath.splitext(posixpath.basename(target.path))[0]
        new_stem = change.after.strip()
        if new_stem.endswith(posixpath.splitext(target.path)[1]):
            new_stem = posixpath.splitext(new_stem)[0]
        for dependent in direct:
            for imp, lineno, text in self._module_imports(graph, dependent, target, sources):
                new_source = renamed_specifier(imp.source, old_stem, new_stem)
                breaking.append(BreakingChange(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    current_code=text,
                    reason=f"Imports '{imp.source}', which is renamed to '{new_stem}'",
                ))
                if new_source is None:
                    fixes.append(SuggestedFix(
                        node_id=dependent.id,
                        path=dependent.path,
                        line=lineno,
                        description=f"Point this import at the renamed file '{new_stem}'",
                        old_code=text,
                        new_code=text,
                        auto_fixable=False,
                    ))
                    continue
                fixes.append(SuggestedFix(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    description=f"Import from '{new_source}'",
                    old_code=text,
                    new_code=re.sub(
                        rf"(['\"]){re.escape(imp.source)}\1",
                        lambda m: f"{m.group(1)}{new_source}{m.group(1)}",
                        text,
                        count=1,
                    ),
                    auto_fixable=True,
                ))

    def _delete_file(self, graph, target, direct, sources, breaking, fixes) -> None:
        for dependent in direct:
            imports = self._module_imports(graph, dependent, target, sources)
            for imp, lineno, text in imports:
                whole_line = bool(_MODULE_LINE_RE.match(text))
                breaking.append(BreakingChange(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    current_code=text,
                    reason=f"Imports '{imp.source}', which is deleted",
                ))
                fixes.append(SuggestedFix(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    description=(
                        f"Remove the import of '{imp.source}'" if whole_line
                        else f"Remove the multi-line import of '{imp.source}'"
                    ),
                    old_code=text,
                    new_code="" if whole_line else text,
                    auto_fixable=whole_line,
                ))
            if not imports:
                breaking.append(BreakingChange(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=dependent.line,
                    current_code=sources.line(dependent.path, dependent.line),
                    reason=f"Depends on {target.name}, which is deleted",
                ))

    def _delete(self, graph, target, direct, sources, breaking, fixes) -> None:
        word = self.reference_name(target)
        for dependent in direct:
            patterns = [(w, word_pattern(w)) for w in self._words(graph, dependent, target, word)]
            found = False
            for lineno, text in self._scope(graph, dependent, sources):
                code = strip_code(text)
                candidate = next((w for w, p in patterns if p.search(code)), None)
                if candidate is None:
                    continue
                found = True
                breaking.append(BreakingChange(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    current_code=text,
                    reason=f"References '{candidate}', which is deleted",
                ))
                replacement = None
                if self._is_import_line(graph, dependent, lineno, text, candidate):
                    replacement = remove_import_specifier(text, candidate)
                if replacement is not None:
                    fixes.append(SuggestedFix(
                        node_id=dependent.id,
                        path=dependent.path,
                        line=lineno,
                        description=f"Remove the import of '{candidate}'",
                        old_code=text,
                        new_code=replacement,
                        auto_fixable=True,
                    ))
                else:
                    fixes.append(SuggestedFix(
                        node_id=dependent.id,
                        path=dependent.path,
                        line=lineno,
                        description=f"Remove or replace the usage of '{candidate}'",
                        old_code=text,
                        new_code=text,
                        auto_fixable=False,
                    ))
            if not found:
                breaking.append(BreakingChange(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=dependent.line,
                    current_code=sources.line(dependent.path, dependent.line),
                    reason=f"Depends on {target.name}, which is deleted",
                ))

    @staticmethod
    def _is_import_line(graph: DependencyGraph, dependent: CodeNode, lineno: int, text: str, candidate: str) -> bool:
        if _IMPORT_START_RE.match(text):
            return True
        file_node = graph.get_node(file_node_id(dependent.path))
        if file_node is None:
            return False
        return any(imp.line == lineno and candidate in (imp.name, imp.alias) for imp in file_node.imports)

    @staticmethod
    def _escalate(
        graph: DependencyGraph, target: CodeNode, direct: List[CodeNode], transitive: List[CodeNode]
    ) -> List[CodeNode]:
        """Transitive dependents left with nothing but broken dependencies."""
        broken: Set[str] = {target.id} | {n.id for n in direct}
        escalated: List[CodeNode] = []
        changed = True
        while changed:
            changed = False
            for node in transitive:
                if node.id in broken:
                    continue
                dependencies = graph.get_dependencies(node.id)
                if dependencies and all(d.id in broken for d in dependencies):
                    broken.add(node.id)
                    escalated.append(node)
                    changed = True
        order = {n.id: idx for idx, n in enumerate(transitive)}
        return sorted(escalated, key=lambda n: order[n.id])

    def _modify_signature(self, graph, target, change, direct, sources, breaking, fixes) -> None:
        word = self.reference_name(target)
        new_props = parse_props(change.after) if target.type is NodeType.COMPONENT else None
        signature = None if new_props is not None else parse_signature(change.after)
        call_re = re.compile(rf"(?<![\w$.]){re.escape(word)}\s*(?:<[^<>()]*>)?\s*\(")
        tag_re = re.compile(rf"<{re.escape(word)}(?![\w$.])")
        after_text = change.after if isinstance(change.after, str) else repr(change.after)

        for dependent in direct:
            scope = self._scope(graph, dependent, sources)
            for idx, (lineno, text) in enumerate(scope):
                code = strip_code(text)
                if _IMPORT_START_RE.match(code):
                    continue
                problems: List[str] = []
                joined = "\n".join(strip_code(t) for _, t in scope[idx: idx + 20])
                if signature is not None:
                    for match in call_re.finditer(code):
                        if re.search(r"\bfunction\s*$", code[: match.start()]):
                            continue
                        count = _argument_count(joined, match.end() - 1)
                        if count is not None and not signature.accepts(count):
                            problems.append(
                                f"call passes {count} argument(s), new signature takes {signature.describe()}"
                            )
                if new_props is not None:
                    for match in tag_re.finditer(code):
                        problems.extend(_prop_problems(joined, match.start(), new_props))
                if not problems:
                    continue
                reason = "; ".join(problems)
                breaking.append(BreakingChange(dependent.id, dependent.path, lineno, text, reason))
                fixes.append(SuggestedFix(
                    node_id=dependent.id,
                    path=dependent.path,
                    line=lineno,
                    description=f"Update this usage of {word} to match {after_text}: {reason}",
                    old_code=text,
                    new_code=text,
                    auto_fixable=False,
                ))

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    def _risk(self, graph: DependencyGraph, analysis: ImpactAnalysis, escalated: bool) -> RiskLevel:
        if not analysis.direct_impact and not analysis.transitive_impact:
            return RiskLevel.LOW
        if not analysis.breaking_changes:
            return RiskLevel.MEDIUM
        threshold = self.settings.critical_dependents
        if escalated or any(graph.dependent_count(nid) > threshold for nid in analysis.breaking_node_ids):
            return RiskLevel.CRITICAL
        return RiskLevel.HIGH

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def preview(self, patches: Iterable[Union[CodePatch, Dict[str, Any]]]) -> str:
        return self.applier.preview(_as_patches(patches))

    def apply_patches(self, patches: Iterable[Union[CodePatch, Dict[str, Any]]]) -> PropagationResult:
        """Apply a batch all-or-nothing; failures come back as ``success=False``."""
        batch = _as_patches(patches)
        try:
            return self.applier.apply(batch)
        except StaleChangeError as exc:
            logger.warning("Rejected stale patch batch: %s", exc)
            failed_ids = {p.id for p in exc.patches}
            return PropagationResult(
                success=False,
                patches_failed=[p for p in batch if p.id in failed_ids],
                errors=exc.reasons,
                error_code=exc.code,
            )
        except PartialApplyError as exc:
            logger.error("Patch batch partially failed: %s", exc)
            modified = [p for p in exc.written if p not in exc.restored]
            return PropagationResult(
                success=False,
                files_modified=modified,
                patches_applied=[p for p in batch if p.path in modified],
                patches_failed=[p for p in batch if p.path not in modified],
                errors=[str(exc)],
                error_code=exc.code,
            )


def _as_patches(patches: Iterable[Union[CodePatch, Dict[str, Any]]]) -> List[CodePatch]:
    return [p if isinstance(p, CodePatch) else CodePatch.from_dict(p) for p in patches]


def _dedupe_fixes(fixes: Sequence[SuggestedFix]) -> List[SuggestedFix]:
    """One fix per (path, line); an auto-fixable fix wins over guidance."""
    chosen: Dict[Tuple[str, int], SuggestedFix] = {}
    for fix in fixes:
        key = (fix.path, fix.line)
        current = chosen.get(key)
        if current is None or (fix.auto_fixable and not current.auto_fixable):
            chosen[key] = fix
    return sorted(chosen.values(), key=lambda f: (f.path, f.line))


def _argument_count(text: str, open_idx: int) -> Optional[int]:
    close_idx = find_closing(text, open_idx)
    if close_idx < 0:
        return None
    inner = text[open_idx + 1: close_idx].strip()
    if not inner:
        return 0
    args = split_top_level(inner.replace("=>", "->"))
    if any(a.startswith("...") for a in args):
        return None
    return len(args)


def _prop_problems(text: str, start: int, props: Dict[str, bool]) -> List[str]:
    end = start
    depth = 0
    while end < len(text):
        ch = text[end]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == ">" and depth == 0:
            break
        end += 1
    tag = text[start:end]
    if "{..." in tag.replace(" ", ""):
        return []
    previous = None
    while previous != tag:
        previous = tag
        tag = re.sub(r"\{[^{}]*\}", "{}", tag)
    tag = re.sub(r"\"[^\"]*\"|'[^']*'", '""', tag)
    body = re.sub(r"^<[\w$.]+", "", tag)
    passed = set(re.findall(r"(?<![\w$-])([A-Za-z_$][\w$-]*)(?=\s*=|\s|/|$)", body))

    problems = [
        f"missing required prop '{name}'"
        for name, required in sorted(props.items())
        if required and name not in passed and name not in _JSX_IGNORED_PROPS
    ]
    problems.extend(
        f"passes unknown prop '{name}'"
        for name in sorted(passed)
        if name not in props and name not in _JSX_IGNORED_PROPS
    )
    return problems
