"""Tests for the JS/TS source scanner."""

from pathlib import Path

from codemap.models import EdgeType, NodeType
from codemap.scanner import (
    SourceScanner,
    api_route,
    is_api_route_file,
    parse_source,
)


def _scan(root: Path):
    result = SourceScanner(root).scan()
    nodes = {n.id: n for n in result.nodes}
    edges = {e.id for e in result.edges}
    return result, nodes, edges


def test_scan_creates_file_and_declaration_nodes(sample_app_path: Path):
    """Every source file and top-level declaration becomes a node."""
    result, nodes, _ = _scan(sample_app_path)

    assert "file:src/components/Button.tsx" in nodes
    assert nodes["component:src/components/Button.tsx#Button"].type == NodeType.COMPONENT
    assert nodes["interface:src/components/Button.tsx#ButtonProps"].type == NodeType.INTERFACE
    assert nodes["hook:src/hooks/useUser.ts#useUser"].type == NodeType.HOOK
    assert nodes["function:src/lib/format.ts#formatName"].type == NodeType.FUNCTION
    assert nodes["constant:src/lib/format.ts#MAX_NAME_LENGTH"].type == NodeType.CONSTANT
    assert result.metadata.total_files == 10
    assert result.metadata.total_nodes == len(result.nodes)


def test_scan_skips_package_json(sample_app_path: Path):
    """Only configured source extensions are scanned."""
    _, nodes, _ = _scan(sample_app_path)
    assert not any(n.path.endswith(".json") for n in nodes.values())


def test_api_routes_and_tables(sample_app_path: Path):
    """Route handlers become api nodes and pgTable calls become database nodes."""
    _, nodes, edges = _scan(sample_app_path)

    post = nodes["api:src/app/api/users/route.ts#POST /api/users"]
    assert post.type == NodeType.API
    assert post.metadata["httpMethod"] == "POST"
    assert post.metadata["route"] == "/api/users"
    assert post.metadata["handlesErrors"] is False

    table_id = "database:src/db/schema.ts#users"
    assert nodes[table_id].metadata["variable"] == "users"
    assert f"api:src/app/api/users/route.ts#POST /api/users->{table_id}:mutates" in edges
    assert f"api:src/app/api/users/route.ts#GET /api/users->{table_id}:queries" in edges


def test_import_and_reference_edges(sample_app_path: Path):
    """Imports link files and declarations; bodies yield calls and renders."""
    _, _, edges = _scan(sample_app_path)

    assert "file:src/components/UserCard.tsx->file:src/components/Button.tsx:imports" in edges
    assert (
        "file:src/components/UserCard.tsx->component:src/components/Button.tsx#Button:imports"
        in edges
    )
    assert (
        "component:src/components/UserCard.tsx#UserCard->component:src/components/Button.tsx#Button:renders"
        in edges
    )
    assert (
        "component:src/components/UserCard.tsx#UserCard->function:src/lib/format.ts#formatName:calls"
        in edges
    )
    assert "file:src/app/page.tsx->file:src/components/UserCard.tsx:imports" in edges


def test_generic_type_argument_is_a_use_not_a_render(sample_app_path: Path):
    """``useState<User>`` references the type without rendering it."""
    _, _, edges = _scan(sample_app_path)
    hook = "hook:src/hooks/useUser.ts#useUser"
    user = "interface:src/lib/api.ts#User"
    assert f"{hook}->{user}:uses" in edges
    assert f"{hook}->{user}:renders" not in edges


def test_component_props_and_hooks(sample_app_path: Path):
    """Props come from the Props interface; hooks from useX( calls."""
    _, nodes, _ = _scan(sample_app_path)

    button = nodes["component:src/components/Button.tsx#Button"]
    assert [(p.name, p.required) for p in button.props] == [("label", True), ("onClick", False)]
    assert button.metadata["propsType"] == "ButtonProps"

    card = nodes["component:src/components/UserCard.tsx#UserCard"]
    assert card.hooks == ["useUser"]
    assert nodes["hook:src/hooks/useUser.ts#useUser"].hooks == ["useState", "useEffect"]


def test_no_dangling_edges(sample_app_path: Path):
    """Every edge endpoint is a scanned node."""
    result, nodes, _ = _scan(sample_app_path)
    for edge in result.edges:
        assert edge.source in nodes
        assert edge.target in nodes


def test_rescan_is_deterministic(sample_app_path: Path):
    """Two scans of an unchanged tree produce identical id sets."""
    _, first_nodes, first_edges = _scan(sample_app_path)
    _, second_nodes, second_edges = _scan(sample_app_path)
    assert set(first_nodes) == set(second_nodes)
    assert first_edges == second_edges


def test_unparsable_file_becomes_warning(sample_app: Path):
    """A file with a syntax error is skipped and reported."""
    broken = sample_app / "src" / "components" / "Broken.tsx"
    broken.write_text("export function Broken( {\n  return <div>;\n", encoding="utf-8")

    result, nodes, _ = _scan(sample_app)

    assert not any(n.path == "src/components/Broken.tsx" for n in nodes.values())
    assert [w.path for w in result.metadata.warnings] == ["src/components/Broken.tsx"]
    assert result.metadata.warnings[0].line is not None
    assert "component:src/components/Button.tsx#Button" in nodes


def test_skip_dirs_are_pruned(sample_app: Path):
    """Sources under node_modules and .next are ignored."""
    vendored = sample_app / "node_modules" / "lib"
    vendored.mkdir(parents=True)
    (vendored / "index.js").write_text("export function vendored() {}\n", encoding="utf-8")

    _, nodes, _ = _scan(sample_app)
    assert not any(n.path.startswith("node_modules") for n in nodes.values())


def test_parse_source_multiline_and_aliased_imports():
    """Specifier lines are recorded per name."""
    source = (
        "import {\n"
        "  alpha,\n"
        "  beta as b,\n"
        "} from './letters';\n"
        "import * as utils from '../utils';\n"
        "import Thing, { type Shape } from './thing';\n"
    )
    scan = parse_source("src/x.ts", source)
    by_name = {i.name: i for i in scan.imports}

    assert by_name["alpha"].line == 2
    assert by_name["beta"].alias == "b"
    assert by_name["beta"].line == 3
    assert by_name["*"].kind == "namespace"
    assert by_name["*"].alias == "utils"
    assert by_name["default"].alias == "Thing"
    assert by_name["Shape"].kind == "type"


def test_parse_source_declaration_spans():
    """A declaration spans exactly the lines of its syntax node."""
    source = (
        "export const MAX = 3;\n"
        "\n"
        "export const double = (n: number) => {\n"
        "  return n * 2;\n"
        "};\n"
        "\n"
        "function helper() {\n"
        "  return double(MAX);\n"
        "}\n"
    )
    scan = parse_source("src/math.ts", source)
    spans = {d.name: (d.line, d.end_line, d.kind) for d in scan.declarations}

    assert spans["MAX"] == (1, 1, NodeType.CONSTANT)
    assert spans["double"] == (3, 5, NodeType.FUNCTION)
    assert spans["helper"] == (7, 9, NodeType.FUNCTION)


def test_parse_source_context_and_enum():
    source = (
        "import { createContext } from 'react';\n"
        "export const ThemeContext = createContext('light');\n"
        "export enum Color { Red, Green }\n"
        "export type Id = string;\n"
    )
    kinds = {d.name: d.kind for d in parse_source("src/theme.ts", source).declarations}
    assert kinds == {
        "ThemeContext": NodeType.CONTEXT,
        "Color": NodeType.ENUM,
        "Id": NodeType.TYPE,
    }


def test_pages_api_default_export(temp_dir: Path):
    """pages/api default exports are api nodes for any method."""
    api_dir = temp_dir / "pages" / "api"
    api_dir.mkdir(parents=True)
    (api_dir / "health.ts").write_text(
        "export default function handler(req, res) {\n"
        "  try {\n"
        "    res.status(200).json({ ok: true });\n"
        "  } catch (err) {\n"
        "    res.status(500).end();\n"
        "  }\n"
        "}\n",
        encoding="utf-8",
    )
    _, nodes, _ = _scan(temp_dir)
    node = nodes["api:pages/api/health.ts#ANY /api/health"]
    assert node.metadata["handlesErrors"] is True


def test_route_helpers():
    assert is_api_route_file("src/app/api/users/route.ts")
    assert is_api_route_file("pages/api/users/[id].ts")
    assert not is_api_route_file("src/lib/api.ts")
    assert api_route("app/(admin)/api/users/route.ts") == "/api/users"
    assert api_route("pages/api/users/index.ts") == "/api/users"


def test_reexports_resolve_through_barrels(temp_dir: Path):
    """Importing from an index barrel links to the original declaration."""
    comp = temp_dir / "src" / "ui"
    comp.mkdir(parents=True)
    (comp / "Card.tsx").write_text(
        "export function Card() {\n  return <div />;\n}\n", encoding="utf-8"
    )
    (comp / "index.ts").write_text("export { Card } from './Card';\n", encoding="utf-8")
    (temp_dir / "src" / "App.tsx").write_text(
        "import { Card } from './ui';\n\nexport function App() {\n  return <Card />;\n}\n",
        encoding="utf-8",
    )

    _, _, edges = _scan(temp_dir)
    assert "file:src/App.tsx->component:src/ui/Card.tsx#Card:imports" in edges
    assert "component:src/App.tsx#App->component:src/ui/Card.tsx#Card:renders" in edges
    assert "file:src/ui/index.ts->file:src/ui/Card.tsx:imports" in edges


def test_edge_types_are_closed_enum(sample_app_path: Path):
    result, _, _ = _scan(sample_app_path)
    assert {e.type for e in result.edges} <= set(EdgeType)


def test_template_literal_text_is_not_a_declaration():
    source = (
        "const SQL = `\n"
        "function notReal() {}\n"
        "`;\n"
        "export function real() {\n"
        "  return SQL;\n"
        "}\n"
    )
    names = [d.name for d in parse_source("src/query.ts", source).declarations]
    assert names == ["SQL", "real"]


def test_overload_signatures_collapse_into_one_declaration():
    source = (
        "export function fmt(v: string): string;\n"
        "export function fmt(v: number): string;\n"
        "export function fmt(v: any): string {\n"
        "  return String(v);\n"
        "}\n"
    )
    scan = parse_source("src/fmt.ts", source)
    assert [(d.name, d.line, d.end_line) for d in scan.declarations] == [("fmt", 3, 5)]
    assert [e.name for e in scan.exports] == ["fmt"]
    assert "fmt" not in [r.name for r in scan.references]


def test_local_export_alias_resolves_to_declaration(temp_dir: Path):
    """export { helper as run } makes `import { run }` point at helper."""
    src = temp_dir / "src"
    src.mkdir()
    (src / "a.ts").write_text(
        "function helper() {\n  return 1;\n}\nexport { helper as run };\n", encoding="utf-8"
    )
    (src / "b.ts").write_text(
        "import { run } from './a';\n\nexport function go() {\n  return run();\n}\n",
        encoding="utf-8",
    )

    result, nodes, edges = _scan(temp_dir)
    assert [e.name for e in nodes["file:src/a.ts"].exports] == ["run"]
    assert "file:src/b.ts->function:src/a.ts#helper:imports" in edges
    assert "function:src/b.ts#go->function:src/a.ts#helper:calls" in edges


def test_export_list_records_each_export_once():
    source = "const a = 1;\nfunction b() {}\nexport { a, b as c };\nexport default b;\n"
    scan = parse_source("src/mod.ts", source)
    assert [(e.name, e.kind) for e in scan.exports] == [("a", "named"), ("c", "named"), ("b", "default")]
