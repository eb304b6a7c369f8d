"""Source scanner: turns a JS/TS project tree into graph nodes and edges.

Scanning happens in two phases:

1. **Per-file extraction** (:func:`parse_source`) is pure and independent per
   file.  The tree-sitter syntax tree is walked for top-level declarations,
   imports, exports, identifier references and database calls, without
   looking at any other file.
2. **Resolution** (:meth:`SourceScanner.scan`) resolves import specifiers to
   scanned files, binds imported names to declaration nodes and derives
   ``imports`` / ``calls`` / ``renders`` / ``uses`` / ``queries`` /
   ``mutates`` edges.  Edges whose endpoint is not a scanned node are
   discarded.

A file whose tree contains an ERROR node is skipped and reported as a
:class:`~codemap.models.ScanWarning`.
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Container, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Parser, Tree

from .config_manager import MindMapConfig
from .models import (
    CodeNode,
    Edge,
    EdgeType,
    ExportInfo,
    GraphMetadata,
    ImportInfo,
    NodeType,
    PropInfo,
    ScanResult,
    ScanWarning,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
}

RESOLVE_SUFFIXES = (
    "", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    "/index.ts", "/index.tsx", "/index.js", "/index.jsx",
)

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}
MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

SCHEMA_DIRS = {"db", "schema", "schemas", "database"}

TABLE_FACTORIES = {"pgTable", "mysqlTable", "sqliteTable", "table", "defineTable", "createTable"}
WRAPPED_COMPONENT_FACTORIES = {"memo", "forwardRef", "useCallback"}

PRISMA_QUERIES = {
    "findMany", "findUnique", "findFirst", "findUniqueOrThrow", "findFirstOrThrow",
    "count", "aggregate", "groupBy",
}
PRISMA_MUTATIONS = {"create", "createMany", "update", "updateMany", "upsert", "delete", "deleteMany"}
CHAIN_MUTATIONS = {"insert", "update", "upsert", "delete"}

# Node types by role in the tree-sitter JS/TS grammars.
_FUNCTION_DECLARATIONS = {"function_declaration", "generator_function_declaration"}
_FUNCTION_VALUES = {"arrow_function", "function_expression", "function", "generator_function"}
_CLASS_DECLARATIONS = {"class_declaration", "abstract_class_declaration"}
_VARIABLE_DECLARATIONS = {"lexical_declaration", "variable_declaration"}
_WRAPPER_EXPRESSIONS = {
    "parenthesized_expression", "as_expression", "satisfies_expression", "non_null_expression",
}
_JSX_NODES = {"jsx_element", "jsx_self_closing_element", "jsx_fragment"}
_JSX_TAGS = {"jsx_opening_element", "jsx_closing_element", "jsx_self_closing_element"}
_REFERENCE_NODES = {"identifier", "type_identifier", "shorthand_property_identifier"}

_HOOK_NAME_RE = re.compile(r"^use[A-Z0-9]")
_PASCAL_RE = re.compile(r"^[A-Z][A-Za-z0-9]*$")
_UPPER_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_COMPONENT_BASE_RE = re.compile(r"\bextends\s+(?:React\.)?(?:Pure)?Component\b")

_STRING_RE = re.compile(r"'(?:\\.|[^'\\])*'|\"(?:\\.|[^\"\\])*\"")
_LINE_COMMENT_RE = re.compile(r"(?<![:\\])//.*$")


# ===================================================================
# tree-sitter parsing
# ===================================================================

class SourceParser:
    """Lazily built tree-sitter parsers, one per grammar."""

    _GRAMMARS = {
        "typescript": lambda: tree_sitter_typescript.language_typescript(),
        "tsx": lambda: tree_sitter_typescript.language_tsx(),
        "javascript": lambda: tree_sitter_javascript.language(),
    }

    def __init__(self) -> None:
        self._parsers: Dict[str, Parser] = {}

    def _parser(self, language: str) -> Parser:
        parser = self._parsers.get(language)
        if parser is None:
            parser = Parser(Language(self._GRAMMARS[language]()))
            self._parsers[language] = parser
            logger.debug("Loaded tree-sitter grammar for %s", language)
        return parser

    def parse(self, source: str, language: str) -> Tree:
        return self._parser(language).parse(source.encode("utf-8"))

    @staticmethod
    def first_error_line(tree: Tree) -> Optional[int]:
        """Return the 1-based line of the first syntax error, or None."""
        root = tree.root_node
        if not root.has_error:
            return None
        stack = [root]
        while stack:
            node = stack.pop()
            if node.type == "ERROR" or node.is_missing:
                return node.start_point[0] + 1
            stack.extend(reversed([c for c in node.children if c.has_error or c.is_missing]))
        return root.start_point[0] + 1


_DEFAULT_PARSER = SourceParser()


def _text(node: Any) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8")


def _string_value(node: Any) -> str:
    """Contents of a string literal node without its quotes."""
    return _text(node)[1:-1]


def _first_line(node: Any) -> int:
    return node.start_point[0] + 1


def _last_line(node: Any) -> int:
    return node.end_point[0] + 1


def _walk(node: Any) -> Iterator[Any]:
    """Pre-order traversal, so nodes come out in source order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _has_keyword(node: Any, keyword: str) -> bool:
    return any(not c.is_named and c.type == keyword for c in node.children)


def _unwrap(node: Any) -> Any:
    while node is not None and node.type in _WRAPPER_EXPRESSIONS and node.named_children:
        node = node.named_children[0]
    return node


def _callee_name(node: Any) -> Optional[str]:
    """Name called by a ``call_expression`` (``memo`` for both ``memo(x)`` and ``React.memo(x)``)."""
    if node is None or node.type != "call_expression":
        return None
    func = node.child_by_field_name("function")
    if func is None:
        return None
    if func.type == "identifier":
        return _text(func)
    if func.type == "member_expression":
        return _text(func.child_by_field_name("property"))
    return None


def _call_arguments(node: Any) -> List[Any]:
    args = node.child_by_field_name("arguments")
    return list(args.named_children) if args is not None else []


def _parameters(function: Any) -> List[Any]:
    if function is None:
        return []
    params = function.child_by_field_name("parameters")
    if params is None:
        single = function.child_by_field_name("parameter")
        return [single] if single is not None else []
    return [p for p in params.named_children if p.type != "comment"]


def _signature(function: Any) -> Optional[str]:
    """Parameter list text ``(a, b)`` of a function node."""
    if function is None:
        return None
    params = function.child_by_field_name("parameters")
    if params is not None:
        return " ".join(_text(params).split())
    single = function.child_by_field_name("parameter")
    if single is not None:
        return f"({_text(single)})"
    return None


def _type_fields(body: Any) -> List[PropInfo]:
    """Property signatures of an interface body or object type literal."""
    fields: List[PropInfo] = []
    for member in body.named_children:
        if member.type != "property_signature":
            continue
        type_node = member.child_by_field_name("type")
        fields.append(PropInfo(
            name=_text(member.child_by_field_name("name")),
            type=_text(type_node).lstrip(":").strip() or "unknown",
            required=not _has_keyword(member, "?"),
        ))
    return fields


def _annotation_name(annotation: Any) -> Optional[str]:
    """``Props`` for a ``: Props`` annotation node."""
    if annotation is None:
        return None
    for child in annotation.named_children:
        if child.type == "type_identifier":
            return _text(child)
    return None


def _generic_props_name(type_node: Any) -> Optional[str]:
    """``Props`` from ``React.FC<Props>`` / ``FunctionComponent<Props>``."""
    if type_node is None:
        return None
    for node in _walk(type_node):
        if node.type != "generic_type":
            continue
        if not _text(node.child_by_field_name("name")).endswith(("FC", "FunctionComponent")):
            continue
        args = node.child_by_field_name("type_arguments")
        if args is None:
            args = next((c for c in node.named_children if c.type == "type_arguments"), None)
        if args is not None and args.named_children:
            first = args.named_children[0]
            if first.type == "type_identifier":
                return _text(first)
    return None


def _pattern_props(pattern: Any) -> List[PropInfo]:
    """Props destructured by ``({ a, b = 1, c: alias })``."""
    props: List[PropInfo] = []
    for child in pattern.named_children:
        if child.type == "shorthand_property_identifier_pattern":
            props.append(PropInfo(name=_text(child)))
        elif child.type == "object_assignment_pattern":
            props.append(PropInfo(name=_text(child.child_by_field_name("left")), required=False))
        elif child.type == "pair_pattern":
            value = child.child_by_field_name("value")
            props.append(PropInfo(
                name=_text(child.child_by_field_name("key")),
                required=value is None or value.type != "assignment_pattern",
            ))
    return props


def _database_accesses(node: Any) -> List[Tuple[str, EdgeType]]:
    """Table tokens touched by query-builder and ORM calls under *node*."""
    found: List[Tuple[str, EdgeType]] = []
    for call in _walk(node):
        if call.type != "call_expression":
            continue
        func = call.child_by_field_name("function")
        if func is None or func.type != "member_expression":
            continue
        method = _text(func.child_by_field_name("property"))
        receiver = func.child_by_field_name("object")
        args = _call_arguments(call)
        first = args[0] if args else None

        if receiver is not None and receiver.type == "member_expression":
            client = receiver.child_by_field_name("object")
            if client is not None and _text(client) == "prisma":
                table = _text(receiver.child_by_field_name("property"))
                if method in PRISMA_QUERIES:
                    found.append((table, EdgeType.QUERIES))
                elif method in PRISMA_MUTATIONS:
                    found.append((table, EdgeType.MUTATES))
                continue
        if first is None:
            continue
        if method == "from" and first.type == "identifier":
            found.append((_text(first), EdgeType.QUERIES))
        elif method == "from" and first.type == "string":
            edge_type = EdgeType.MUTATES if _chain_mutates(call) else EdgeType.QUERIES
            found.append((_string_value(first), edge_type))
        elif method in CHAIN_MUTATIONS and first.type == "identifier":
            found.append((_text(first), EdgeType.MUTATES))
    return found


def _chain_mutates(call: Any) -> bool:
    """True when a ``.from('t')`` call is continued with insert/update/upsert/delete."""
    current = call
    while current.parent is not None and current.parent.type == "member_expression":
        member = current.parent
        if _text(member.child_by_field_name("property")) in CHAIN_MUTATIONS:
            return True
        if member.parent is None or member.parent.type != "call_expression":
            return False
        current = member.parent
    return False


def _reference_kind(node: Any) -> EdgeType:
    parent = node.parent
    if parent is None:
        return EdgeType.USES
    if parent.type in _JSX_TAGS and parent.child_by_field_name("name") == node:
        return EdgeType.RENDERS
    if parent.type in ("member_expression", "nested_identifier") and parent.named_children[0] == node:
        holder = parent.parent
        if holder is not None and holder.type in _JSX_TAGS and holder.child_by_field_name("name") == parent:
            return EdgeType.RENDERS
    if parent.type == "call_expression" and parent.child_by_field_name("function") == node:
        return EdgeType.CALLS
    if parent.type == "new_expression" and parent.child_by_field_name("constructor") == node:
        return EdgeType.CALLS
    return EdgeType.USES


# ===================================================================
# Per-file extraction
# ===================================================================

@dataclass
class Declaration:
    """A top-level declaration found in one file."""

    name: str
    binding: str
    kind: NodeType
    line: int
    end_line: int = 0
    exported: bool = False
    default: bool = False
    props: List[PropInfo] = field(default_factory=list)
    hooks: List[str] = field(default_factory=list)
    db_access: List[Tuple[str, EdgeType]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Reference:
    """One identifier occurrence that may bind to a known declaration."""

    name: str
    line: int
    kind: EdgeType


@dataclass
class FileScan:
    """Everything extracted from one source file, before resolution."""

    rel_path: str
    lines: List[str]
    declarations: List[Declaration]
    imports: List[ImportInfo]
    exports: List[ExportInfo]
    reexports: List[Tuple[str, str, str]]
    star_reexports: List[str]
    local_aliases: List[Tuple[str, str]]
    references: List[Reference]

    @property
    def line_owner(self) -> List[Optional[Declaration]]:
        """Declaration owning each 0-based line (None for top-level code)."""
        owners: List[Optional[Declaration]] = [None] * len(self.lines)
        for decl in self.declarations:
            for idx in range(decl.line - 1, min(decl.end_line, len(self.lines))):
                owners[idx] = decl
        return owners


def file_node_id(rel_path: str) -> str:
    return f"file:{rel_path}"


def declaration_node_id(kind: NodeType, rel_path: str, name: str) -> str:
    return f"{kind.value}:{rel_path}#{name}"


def is_api_route_file(rel_path: str) -> bool:
    parts = rel_path.split("/")
    stem = posixpath.splitext(parts[-1])[0]
    if "api" not in parts[:-1]:
        return False
    if stem == "route":
        return True
    return "pages" in parts and parts.index("pages") < parts.index("api")


def api_route(rel_path: str) -> str:
    """Derive the URL route of an API file (``app/api/users/route.ts`` -> ``/api/users``)."""
    parts = rel_path.split("/")
    start = parts.index("api")
    segments = parts[start:-1]
    stem = posixpath.splitext(parts[-1])[0]
    if stem not in ("route", "index"):
        segments.append(stem)
    return "/" + "/".join(s for s in segments if not (s.startswith("(") and s.endswith(")")))


def is_schema_file(rel_path: str) -> bool:
    parts = rel_path.split("/")
    stem = posixpath.splitext(parts[-1])[0].lower()
    return stem == "schema" or any(p.lower() in SCHEMA_DIRS for p in parts[:-1])


def resolve_module_path(specifier: str, from_path: str, files: Container[str]) -> Optional[str]:
    """Map an import specifier to one of *files* (relative, ``@/`` and ``~/`` only)."""
    if specifier.startswith("."):
        bases = [posixpath.normpath(posixpath.join(posixpath.dirname(from_path), specifier))]
    elif specifier.startswith(("@/", "~/")):
        rest = specifier[2:]
        bases = [f"src/{rest}", rest]
    else:
        return None
    for base in bases:
        candidates = [base]
        stem, ext = posixpath.splitext(base)
        if ext in (".js", ".jsx", ".mjs"):
            candidates += [stem + ".ts", stem + ".tsx"]
        for candidate in candidates:
            for suffix in RESOLVE_SUFFIXES:
                path = candidate + suffix
                if path in files:
                    return path
    return None


def strip_code(line: str) -> str:
    """Blank out string literals and trailing line comments."""
    stripped = line.lstrip()
    if stripped.startswith(("//", "/*", "*")):
        return ""
    return _LINE_COMMENT_RE.sub("", _STRING_RE.sub('""', line))


def sub_code(pattern: "re.Pattern[str]", repl: str, line: str) -> str:
    """Apply *pattern* to *line* everywhere except inside string literals."""
    out = []
    pos = 0
    for literal in _STRING_RE.finditer(line):
        out.append(pattern.sub(repl, line[pos:literal.start()]))
        out.append(literal.group(0))
        pos = literal.end()
    out.append(pattern.sub(repl, line[pos:]))
    return "".join(out)


def find_closing(text: str, start: int, open_ch: str = "(", close_ch: str = ")") -> int:
    """Index of the bracket closing the one at *start*, or -1."""
    depth = 0
    for idx in range(start, len(text)):
        ch = text[idx]
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return idx
    return -1


def split_top_level(text: str) -> List[str]:
    """Split on commas that are not nested in brackets."""
    parts: List[str] = []
    depth = 0
    current = []
    for ch in text:
        if ch in "([{<":
            depth += 1
        elif ch in ")]}>" and depth > 0:
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


@dataclass
class _Pending:
    """A declaration plus the syntax nodes its facts are read from."""

    decl: Declaration
    outer: Any
    function: Any = None
    type_node: Any = None
    value: Any = None


class _FileExtractor:
    """Walks the top-level statements of one syntax tree."""

    def __init__(self, rel_path: str, source: str) -> None:
        self.rel_path = rel_path
        self.lines = source.split("\n")
        self.api_file = is_api_route_file(rel_path)
        self.pages_api = "/pages/" in f"/{rel_path}"
        self.schema_file = is_schema_file(rel_path)

        self.pending: List[_Pending] = []
        self.imports: List[ImportInfo] = []
        self.exports: List[ExportInfo] = []
        self.reexports: List[Tuple[str, str, str]] = []
        self.star_reexports: List[str] = []
        self.local_aliases: List[Tuple[str, str]] = []
        self.references: List[Reference] = []
        self.default_names: Set[str] = set()
        self.exported_names: Set[str] = set()
        self.type_fields: Dict[str, List[PropInfo]] = {}
        self._name_ranges: Set[Tuple[int, int]] = set()

    def extract(self, root: Any) -> FileScan:
        for statement in root.named_children:
            if statement.type == "import_statement":
                self._import(statement)
            elif statement.type == "export_statement":
                self._export(statement)
            else:
                self._declaration(statement, statement, exported=False, default=False)
                self._collect_references(statement)

        declarations = self._finish()
        self.imports.sort(key=lambda i: (i.line, i.name))
        self.exports.sort(key=lambda e: (e.line, e.name))
        return FileScan(
            rel_path=self.rel_path,
            lines=self.lines,
            declarations=declarations,
            imports=self.imports,
            exports=self.exports,
            reexports=self.reexports,
            star_reexports=self.star_reexports,
            local_aliases=self.local_aliases,
            references=self.references,
        )

    # ------------------------------------------------------------------
    # Imports / exports
    # ------------------------------------------------------------------

    def _import(self, node: Any) -> None:
        source_node = node.child_by_field_name("source")
        if source_node is None:
            return
        source = _string_value(source_node)
        type_only = _has_keyword(node, "type")
        clause = next((c for c in node.named_children if c.type == "import_clause"), None)
        if clause is None:
            self.imports.append(ImportInfo("*", source, "side-effect", _first_line(node)))
            return

        for part in clause.named_children:
            if part.type == "identifier":
                self.imports.append(ImportInfo(
                    "default", source, "type" if type_only else "default", _first_line(part), alias=_text(part),
                ))
            elif part.type == "namespace_import":
                local = next((c for c in part.named_children if c.type == "identifier"), None)
                if local is not None:
                    self.imports.append(ImportInfo("*", source, "namespace", _first_line(local), alias=_text(local)))
            elif part.type == "named_imports":
                for specifier in part.named_children:
                    if specifier.type != "import_specifier":
                        continue
                    name_node = specifier.child_by_field_name("name")
                    alias_node = specifier.child_by_field_name("alias")
                    kind = "type" if type_only or _has_keyword(specifier, "type") else "named"
                    self.imports.append(ImportInfo(
                        _text(name_node), source, kind, _first_line(name_node), alias=_text(alias_node) or None,
                    ))

    def _export(self, node: Any) -> None:
        source_node = node.child_by_field_name("source")
        if source_node is not None:
            self._reexport(node, _string_value(source_node))
            return
        clause = next((c for c in node.named_children if c.type == "export_clause"), None)
        if clause is not None:
            self._export_list(node, clause)
            return

        is_default = _has_keyword(node, "default")
        declaration = node.child_by_field_name("declaration")
        value = node.child_by_field_name("value")
        if declaration is not None:
            self._declaration(declaration, node, exported=True, default=is_default)
        elif is_default and value is not None:
            if value.type == "identifier":
                self.default_names.add(_text(value))
                self.exports.append(ExportInfo(_text(value), "default", _first_line(node)))
            else:
                self._declaration(value, node, exported=True, default=True)
        self._collect_references(node)

    def _export_list(self, node: Any, clause: Any) -> None:
        """``export { a, b as c }`` naming declarations of this file."""
        for specifier in clause.named_children:
            if specifier.type != "export_specifier":
                continue
            name = _text(specifier.child_by_field_name("name"))
            alias = _text(specifier.child_by_field_name("alias")) or name
            self.exported_names.add(name)
            if alias == "default":
                self.default_names.add(name)
                self.exports.append(ExportInfo("default", "default", _first_line(specifier)))
                continue
            if alias != name:
                self.local_aliases.append((name, alias))
            self.exports.append(ExportInfo(alias, "named", _first_line(specifier)))

    def _reexport(self, node: Any, source: str) -> None:
        clause = next((c for c in node.named_children if c.type == "export_clause"), None)
        if clause is not None:
            for specifier in clause.named_children:
                if specifier.type != "export_specifier":
                    continue
                name = _text(specifier.child_by_field_name("name"))
                alias = _text(specifier.child_by_field_name("alias")) or name
                self.reexports.append((alias, name, source))
                self.imports.append(ImportInfo(name, source, "named", _first_line(specifier)))
            return
        namespace = next((c for c in node.named_children if c.type == "namespace_export"), None)
        if namespace is None:
            self.star_reexports.append(source)
            self.imports.append(ImportInfo("*", source, "namespace", _first_line(node)))
        else:
            alias = _text(namespace.named_children[-1]) if namespace.named_children else None
            self.imports.append(ImportInfo("*", source, "namespace", _first_line(node), alias=alias))

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _add(
        self,
        name_node: Any,
        kind: NodeType,
        outer: Any,
        exported: bool,
        default: bool = False,
        name: Optional[str] = None,
        **syntax: Any,
    ) -> Declaration:
        binding = _text(name_node)
        decl = Declaration(
            name=name or binding,
            binding=binding,
            kind=kind,
            line=_first_line(outer),
            end_line=_last_line(outer),
            exported=exported,
            default=default,
        )
        self._name_ranges.add((name_node.start_byte, name_node.end_byte))
        self.pending.append(_Pending(decl, outer, **syntax))
        return decl

    def _declaration(self, node: Any, outer: Any, exported: bool, default: bool) -> None:
        kind = node.type
        name_node = node.child_by_field_name("name")

        if kind in _FUNCTION_DECLARATIONS or (kind in _FUNCTION_VALUES and node is not outer):
            if name_node is not None:
                self._add(name_node, NodeType.FUNCTION, outer, exported, default, function=node)
        elif kind in _CLASS_DECLARATIONS or (kind == "class" and node is not outer):
            if name_node is None:
                return
            heritage = next((c for c in node.children if c.type == "class_heritage"), None)
            node_type = NodeType.CLASS
            if heritage is not None and _COMPONENT_BASE_RE.search(_text(heritage)):
                node_type = NodeType.COMPONENT
            self._add(name_node, node_type, outer, exported, default)
        elif kind == "interface_declaration" and name_node is not None:
            body = node.child_by_field_name("body")
            if body is not None:
                self.type_fields.setdefault(_text(name_node), _type_fields(body))
            self._add(name_node, NodeType.INTERFACE, outer, exported, default)
        elif kind == "type_alias_declaration" and name_node is not None:
            value = node.child_by_field_name("value")
            if value is not None and value.type == "object_type":
                self.type_fields.setdefault(_text(name_node), _type_fields(value))
            self._add(name_node, NodeType.TYPE, outer, exported)
        elif kind == "enum_declaration" and name_node is not None:
            self._add(name_node, NodeType.ENUM, outer, exported)
        elif kind == "function_signature" and name_node is not None:
            # Overload: the implementation that follows is the declaration.
            self._name_ranges.add((name_node.start_byte, name_node.end_byte))
        elif kind in _VARIABLE_DECLARATIONS:
            declarators = [c for c in node.named_children if c.type == "variable_declarator"]
            for declarator in declarators:
                self._variable(declarator, outer if len(declarators) == 1 else declarator, exported)

    def _variable(self, declarator: Any, outer: Any, exported: bool) -> None:
        name_node = declarator.child_by_field_name("name")
        if name_node is None or name_node.type != "identifier":
            return
        name = _text(name_node)
        value = _unwrap(declarator.child_by_field_name("value"))
        callee = _callee_name(value)

        if self.schema_file and callee in TABLE_FACTORIES:
            args = _call_arguments(value)
            if args and args[0].type == "string":
                decl = self._add(name_node, NodeType.DATABASE, outer, exported, name=_string_value(args[0]))
                decl.metadata["variable"] = name
                return
        if callee == "createContext":
            self._add(name_node, NodeType.CONTEXT, outer, exported)
            return
        function = _function_value(value)
        if function is not None:
            self._add(
                name_node, NodeType.FUNCTION, outer, exported,
                function=function, type_node=declarator.child_by_field_name("type"), value=value,
            )
        elif exported or _UPPER_RE.match(name):
            self._add(name_node, NodeType.CONSTANT, outer, exported)

    def _collect_references(self, node: Any) -> None:
        for child in _walk(node):
            if child.type not in _REFERENCE_NODES:
                continue
            if (child.start_byte, child.end_byte) in self._name_ranges:
                continue
            self.references.append(Reference(_text(child), _first_line(child), _reference_kind(child)))

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _finish(self) -> List[Declaration]:
        declarations: List[Declaration] = []
        seen: Set[str] = set()
        for item in self.pending:
            decl = item.decl
            inline = decl.exported
            if decl.binding in self.default_names:
                decl.default = True
                decl.exported = True
            if decl.binding in self.exported_names:
                decl.exported = True
            decl.metadata["exported"] = decl.exported

            if item.function is not None:
                self._classify_function(item)
            if decl.kind is NodeType.API:
                route = api_route(self.rel_path)
                decl.metadata["route"] = route
                decl.metadata["handlesErrors"] = _handles_errors(item.outer)
                decl.name = f"{decl.metadata['httpMethod']} {route}"
            if decl.kind is NodeType.COMPONENT:
                self._component_props(item)
            if decl.kind in (NodeType.COMPONENT, NodeType.HOOK):
                decl.hooks = _hook_calls(item.outer, decl.name)
            if decl.kind in (NodeType.API, NodeType.FUNCTION, NodeType.HOOK, NodeType.CLASS):
                decl.db_access = _database_accesses(item.outer)

            node_id = declaration_node_id(decl.kind, self.rel_path, decl.name)
            if node_id in seen:
                logger.debug("Ignoring repeated declaration %s", node_id)
                continue
            seen.add(node_id)
            declarations.append(decl)

            if inline:
                kind = "default" if decl.default else (
                    decl.kind.value if decl.kind in (NodeType.TYPE, NodeType.INTERFACE) else "named"
                )
                self.exports.append(ExportInfo(decl.binding, kind, decl.line))
        return declarations

    def _classify_function(self, item: _Pending) -> None:
        decl = item.decl
        if self.api_file and decl.exported and decl.name in HTTP_METHODS:
            decl.kind = NodeType.API
            decl.metadata["httpMethod"] = decl.name
        elif self.api_file and decl.default and self.pages_api:
            decl.kind = NodeType.API
            decl.metadata["httpMethod"] = "ANY"
        elif _HOOK_NAME_RE.match(decl.name):
            decl.kind = NodeType.HOOK
        elif _PASCAL_RE.match(decl.name) and any(n.type in _JSX_NODES for n in _walk(item.outer)):
            decl.kind = NodeType.COMPONENT
        else:
            decl.kind = NodeType.FUNCTION
        signature = _signature(item.function)
        if signature:
            decl.metadata["signature"] = signature

    def _component_props(self, item: _Pending) -> None:
        decl = item.decl
        params = _parameters(item.function)
        first = params[0] if params else None
        pattern, type_name = first, None
        if first is not None and first.type in ("required_parameter", "optional_parameter"):
            pattern = first.child_by_field_name("pattern")
            type_name = _annotation_name(first.child_by_field_name("type"))
        elif first is not None and first.type == "assignment_pattern":
            pattern = first.child_by_field_name("left")
        if type_name is None:
            type_name = _generic_props_name(item.type_node) or _wrapper_props_name(item.value)

        fields = self.type_fields.get(type_name or f"{decl.name}Props")
        if fields is not None:
            decl.props = list(fields)
            decl.metadata["propsType"] = type_name or f"{decl.name}Props"
            return
        if pattern is not None and pattern.type == "object_pattern":
            decl.props = _pattern_props(pattern)
            if type_name:
                decl.metadata["propsType"] = type_name


def _function_value(value: Any) -> Any:
    """The function node a variable initializer defines, if any."""
    if value is None:
        return None
    if value.type in _FUNCTION_VALUES:
        return value
    callee = _callee_name(value)
    if callee is None or not (callee in WRAPPED_COMPONENT_FACTORIES or callee.startswith("with")):
        return None
    for arg in _call_arguments(value):
        arg = _unwrap(arg)
        if arg.type in _FUNCTION_VALUES:
            return arg
    return value if callee in WRAPPED_COMPONENT_FACTORIES else None


def _wrapper_props_name(value: Any) -> Optional[str]:
    """``Props`` from ``memo<Props>(...)`` or ``forwardRef<Ref, Props>(...)``."""
    callee = _callee_name(value)
    if callee not in ("memo", "forwardRef"):
        return None
    args = value.child_by_field_name("type_arguments")
    names = [_text(c) for c in args.named_children if c.type == "type_identifier"] if args is not None else []
    if not names:
        return None
    return names[-1] if callee == "forwardRef" else names[0]


def _handles_errors(node: Any) -> bool:
    return any(n.type == "try_statement" or _callee_name(n) == "catch" for n in _walk(node))


def _hook_calls(node: Any, own_name: str) -> List[str]:
    hooks: List[str] = []
    for call in _walk(node):
        name = _callee_name(call)
        if name and _HOOK_NAME_RE.match(name) and name != own_name and name not in hooks:
            hooks.append(name)
    return hooks


def parse_source(rel_path: str, source: str, tree: Optional[Tree] = None) -> FileScan:
    """Extract declarations, imports, exports and references from one file."""
    if tree is None:
        language = LANGUAGE_MAP[posixpath.splitext(rel_path)[1]]
        tree = _DEFAULT_PARSER.parse(source, language)
    return _FileExtractor(rel_path, source).extract(tree.root_node)



# ===================================================================
# Scanner
# ===================================================================

class SourceScanner:
    """Walks a project and produces nodes, edges and scan metadata."""

    def __init__(self, project_root: Path, settings: Optional[MindMapConfig] = None) -> None:
        self.project_root = Path(project_root)
        self.settings = settings or MindMapConfig()
        self._parser = SourceParser()

    # ------------------------------------------------------------------
    # Walking
    # ------------------------------------------------------------------

    def iter_source_files(self) -> Iterable[Path]:
        for dirpath, dirnames, filenames in os.walk(self.project_root):
            dirnames[:] = sorted(
                d for d in dirnames
                if d not in self.settings.exclude_dirs and not d.endswith(".egg-info")
            )
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if path.suffix in self.settings.extensions and not filename.endswith(".d.ts"):
                    yield path

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.project_root).as_posix()

    def scan_file(self, path: Path) -> Tuple[Optional[FileScan], Optional[ScanWarning]]:
        """Parse one file; a failure yields a warning instead of an exception."""
        rel_path = self._rel(path)
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping unreadable file %s: %s", rel_path, exc)
            return None, ScanWarning(rel_path, f"unreadable: {exc}")

        tree = self._parser.parse(source, LANGUAGE_MAP[path.suffix])
        error_line = self._parser.first_error_line(tree)
        if error_line is not None:
            logger.warning("Skipping %s: syntax error near line %d", rel_path, error_line)
            return None, ScanWarning(rel_path, "syntax error", error_line)

        try:
            return parse_source(rel_path, source, tree), None
        except Exception as exc:
            logger.warning("Failed to extract %s: %s", rel_path, exc)
            return None, ScanWarning(rel_path, f"extraction failed: {exc}")

    # ------------------------------------------------------------------
    # Project-level scan
    # ------------------------------------------------------------------

    def scan(self) -> ScanResult:
        scans: Dict[str, FileScan] = {}
        warnings: List[ScanWarning] = []
        total_files = 0

        for path in self.iter_source_files():
            total_files += 1
            file_scan, warning = self.scan_file(path)
            if warning is not None:
                warnings.append(warning)
            if file_scan is not None:
                scans[file_scan.rel_path] = file_scan

        nodes = self._build_nodes(scans)
        edges = _EdgeResolver(scans, {n.id: n for n in nodes}).resolve()

        metadata = GraphMetadata(
            project_name=self.project_root.resolve().name,
            project_path=str(self.project_root.resolve()),
            analyzed_at=datetime.now(timezone.utc).isoformat(),
            total_files=total_files,
            total_nodes=len(nodes),
            total_edges=len(edges),
            warnings=warnings,
        )
        logger.info(
            "Scanned %d files: %d nodes, %d edges, %d warnings",
            total_files, len(nodes), len(edges), len(warnings),
        )
        return ScanResult(nodes=nodes, edges=edges, metadata=metadata)

    @staticmethod
    def _build_nodes(scans: Dict[str, FileScan]) -> List[CodeNode]:
        nodes: List[CodeNode] = []
        for rel_path, file_scan in scans.items():
            nodes.append(CodeNode(
                id=file_node_id(rel_path),
                name=posixpath.splitext(posixpath.basename(rel_path))[0],
                type=NodeType.FILE,
                path=rel_path,
                line=1,
                end_line=max(len(file_scan.lines), 1),
                lines_of_code=len(file_scan.lines),
                exports=list(file_scan.exports),
                imports=list(file_scan.imports),
            ))
            aliases = set(file_scan.local_aliases)
            for decl in file_scan.declarations:
                nodes.append(CodeNode(
                    id=declaration_node_id(decl.kind, rel_path, decl.name),
                    name=decl.name,
                    type=decl.kind,
                    path=rel_path,
                    line=decl.line,
                    end_line=decl.end_line,
                    lines_of_code=decl.end_line - decl.line + 1,
                    exports=[
                        e for e in file_scan.exports
                        if e.name == decl.binding or (decl.binding, e.name) in aliases
                    ],
                    props=list(decl.props),
                    hooks=list(decl.hooks),
                    metadata=dict(decl.metadata),
                ))
        return nodes


class _EdgeResolver:
    """Resolves per-file scan output into concrete edges between known nodes."""

    def __init__(self, scans: Dict[str, FileScan], nodes: Dict[str, CodeNode]) -> None:
        self.scans = scans
        self.nodes = nodes
        self.edges: Dict[str, Edge] = {}
        # Names a file binds locally, and names other files can import from it.
        self._local_ids: Dict[str, Dict[str, str]] = {}
        self._export_ids: Dict[str, Dict[str, str]] = {}
        for rel_path, file_scan in scans.items():
            local: Dict[str, str] = {}
            exported: Dict[str, str] = {}
            for decl in file_scan.declarations:
                node_id = declaration_node_id(decl.kind, rel_path, decl.name)
                local.setdefault(decl.binding, node_id)
                if decl.default:
                    exported["default"] = node_id
            exported.update((k, v) for k, v in local.items() if k not in exported)
            for name, alias in file_scan.local_aliases:
                if name in local:
                    exported.setdefault(alias, local[name])
            self._local_ids[rel_path] = local
            self._export_ids[rel_path] = exported
        self._tables: Dict[str, str] = {}
        for node in nodes.values():
            if node.type is NodeType.DATABASE:
                for key in _table_keys(node.name):
                    self._tables.setdefault(key, node.id)

    # ------------------------------------------------------------------

    def _add(self, source: str, target: str, edge_type: EdgeType) -> None:
        if source == target or source not in self.nodes or target not in self.nodes:
            return
        edge = Edge(source=source, target=target, type=edge_type)
        self.edges.setdefault(edge.id, edge)

    def resolve_path(self, specifier: str, from_path: str) -> Optional[str]:
        return resolve_module_path(specifier, from_path, self.scans)

    def resolve_export(self, rel_path: str, name: str, depth: int = 0) -> Optional[str]:
        """Node id exported as *name* by *rel_path*, following re-exports."""
        if depth > 8:
            return None
        node_id = self._export_ids.get(rel_path, {}).get(name)
        if node_id:
            return node_id
        file_scan = self.scans.get(rel_path)
        if file_scan is None:
            return None
        for alias, original, source in file_scan.reexports:
            if alias == name:
                target = self.resolve_path(source, rel_path)
                if target:
                    return self.resolve_export(target, original, depth + 1)
        for source in file_scan.star_reexports:
            target = self.resolve_path(source, rel_path)
            if target:
                found = self.resolve_export(target, name, depth + 1)
                if found:
                    return found
        return None

    # ------------------------------------------------------------------

    def resolve(self) -> List[Edge]:
        for rel_path, file_scan in self.scans.items():
            bindings = self._import_bindings(rel_path, file_scan)
            self._reference_edges(rel_path, file_scan, bindings)
        return list(self.edges.values())

    def _import_bindings(self, rel_path: str, file_scan: FileScan) -> Dict[str, str]:
        source_id = file_node_id(rel_path)
        bindings: Dict[str, str] = {}
        for imp in file_scan.imports:
            target_path = self.resolve_path(imp.source, rel_path)
            if target_path is None:
                continue
            target_file = file_node_id(target_path)
            self._add(source_id, target_file, EdgeType.IMPORTS)
            if imp.kind in ("named", "type", "default"):
                target = self.resolve_export(target_path, imp.name)
                if target:
                    self._add(source_id, target, EdgeType.IMPORTS)
                    bindings[imp.local_name] = target
            elif imp.kind == "namespace" and imp.alias:
                bindings[imp.alias] = target_file
        return bindings

    def _reference_edges(self, rel_path: str, file_scan: FileScan, bindings: Dict[str, str]) -> None:
        known: Dict[str, str] = dict(self._local_ids[rel_path])
        known.update(bindings)
        if not known:
            return
        owners = file_scan.line_owner
        file_id = file_node_id(rel_path)

        for ref in file_scan.references:
            target = known.get(ref.name)
            if target is None:
                continue
            owner = owners[ref.line - 1] if ref.line <= len(owners) else None
            if owner is not None:
                source_id = declaration_node_id(owner.kind, rel_path, owner.name)
            else:
                source_id = file_id
            self._add(source_id, target, ref.kind)

        for decl in file_scan.declarations:
            if decl.db_access:
                self._database_edges(rel_path, decl, known)

    def _database_edges(self, rel_path: str, decl: Declaration, known: Dict[str, str]) -> None:
        source_id = declaration_node_id(decl.kind, rel_path, decl.name)
        for table, edge_type in decl.db_access:
            target = known.get(table)
            node = self.nodes.get(target) if target else None
            if node is None or node.type is not NodeType.DATABASE:
                target = self._lookup_table(table)
            if target is not None:
                self._add(source_id, target, edge_type)

    def _lookup_table(self, token: str) -> Optional[str]:
        for key in _table_keys(token):
            if key in self._tables:
                return self._tables[key]
        return None


def _table_keys(name: str) -> List[str]:
    base = name.lower().replace("-", "_")
    keys = [base]
    if base.endswith("ies"):
        keys.append(base[:-3] + "y")
    elif base.endswith("s"):
        keys.append(base[:-1])
    else:
        keys.append(base + "s")
    return keys
