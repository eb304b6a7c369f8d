"""Tests for change-impact analysis and fix synthesis."""

from pathlib import Path

import pytest

from codemap.config_manager import MindMapConfig
from codemap.errors import InvalidChangeError, NotFoundError, StaleChangeError
from codemap.models import ChangeType, NodeChange, RiskLevel
from codemap.propagation import (
    PropagationEngine,
    parse_signature,
    remove_import_specifier,
    renamed_specifier,
)

from codemap.orchestrator import MindMapOrchestrator

from conftest import make_graph

BUTTON = "component:src/components/Button.tsx#Button"
USER_CARD = "component:src/components/UserCard.tsx#UserCard"
USER_CARD_FILE = "file:src/components/UserCard.tsx"
FORMAT_NAME = "function:src/lib/format.ts#formatName"
FORMAT_FILE = "file:src/lib/format.ts"


@pytest.fixture
def engine(sample_app: Path) -> PropagationEngine:
    return PropagationEngine(sample_app, MindMapConfig())


class TestRename:
    def test_rename_import_is_breaking_and_auto_fixable(self, engine, sample_graph):
        """Renaming Button rewrites the literal import specifier."""
        change = NodeChange(BUTTON, ChangeType.RENAME, before="Button", after="PrimaryButton")
        analysis = engine.analyze_impact(sample_graph, change)

        import_breaks = [b for b in analysis.breaking_changes if b.node_id == USER_CARD_FILE]
        assert [b.line for b in import_breaks] == [1]
        fix = next(f for f in analysis.suggested_fixes if f.path == "src/components/UserCard.tsx" and f.line == 1)
        assert fix.auto_fixable is True
        assert fix.old_code == "import { Button } from './Button';"
        assert fix.new_code == "import { PrimaryButton } from './Button';"

    def test_rename_covers_jsx_usage(self, engine, sample_graph):
        change = NodeChange(BUTTON, ChangeType.RENAME, before="Button", after="PrimaryButton")
        analysis = engine.analyze_impact(sample_graph, change)

        fix = next(f for f in analysis.suggested_fixes if f.node_id == USER_CARD)
        assert fix.line == 14
        assert fix.new_code.strip() == '<PrimaryButton label="Edit" />'
        assert analysis.risk_level == RiskLevel.HIGH
        assert [a.node_id for a in analysis.direct_impact] == [USER_CARD, USER_CARD_FILE]

    def test_rename_needs_a_valid_new_name(self, engine, sample_graph):
        with pytest.raises(InvalidChangeError):
            engine.analyze_impact(sample_graph, NodeChange(BUTTON, ChangeType.RENAME, before="Button"))
        with pytest.raises(InvalidChangeError):
            engine.analyze_impact(sample_graph, NodeChange(BUTTON, ChangeType.RENAME, after="not valid"))

    def test_unknown_node(self, engine, sample_graph):
        with pytest.raises(NotFoundError):
            engine.analyze_impact(sample_graph, NodeChange("component:nope#X", ChangeType.DELETE))

    def test_fixes_are_unique_per_line(self, engine, sample_graph):
        change = NodeChange(BUTTON, ChangeType.RENAME, before="Button", after="PrimaryButton")
        analysis = engine.analyze_impact(sample_graph, change)
        keys = [(f.path, f.line) for f in analysis.suggested_fixes]
        assert len(keys) == len(set(keys))


class TestDelete:
    def test_isolated_delete_is_low_risk(self, engine, sample_graph):
        """A node nobody depends on can be deleted safely."""
        analysis = engine.analyze_impact(
            sample_graph, NodeChange("constant:src/lib/format.ts#MAX_NAME_LENGTH", ChangeType.DELETE)
        )
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.breaking_changes == []
        assert analysis.direct_impact == []

    def test_every_direct_dependent_is_breaking(self, engine, sample_graph):
        analysis = engine.analyze_impact(sample_graph, NodeChange(BUTTON, ChangeType.DELETE, before="Button"))

        direct_ids = {a.node_id for a in analysis.direct_impact}
        assert direct_ids == {USER_CARD, USER_CARD_FILE}
        assert direct_ids <= set(analysis.breaking_node_ids)

        import_fix = next(f for f in analysis.suggested_fixes if f.line == 1)
        assert import_fix.auto_fixable is True
        assert import_fix.new_code == ""
        usage_fix = next(f for f in analysis.suggested_fixes if f.line == 14)
        assert usage_fix.auto_fixable is False

    def test_impact_ids_are_graph_nodes(self, engine, sample_graph):
        analysis = engine.analyze_impact(sample_graph, NodeChange(FORMAT_NAME, ChangeType.DELETE))
        ids = (
            set(analysis.breaking_node_ids)
            | {a.node_id for a in analysis.direct_impact}
            | {a.node_id for a in analysis.transitive_impact}
        )
        assert all(i in sample_graph for i in ids)

    def test_escalated_transitive_dependents_make_risk_critical(self, temp_dir: Path):
        """5 direct and 12 transitive dependents, 2 of which only need a direct one."""
        direct = [f"d{i}" for i in range(5)]
        transitive = [f"t{i}" for i in range(12)]
        edges = [(d, "target") for d in direct]
        edges += [("t0", "d0"), ("t1", "d1")]
        for i, t in enumerate(transitive[2:]):
            edges += [(t, direct[i % 5]), (t, "helper")]
        graph = make_graph(["target", "helper"] + direct + transitive, edges)

        engine = PropagationEngine(temp_dir, MindMapConfig())
        analysis = engine.analyze_impact(graph, NodeChange("target", ChangeType.DELETE))

        assert analysis.risk_level == RiskLevel.CRITICAL
        assert len(analysis.direct_impact) == 5
        assert len(analysis.transitive_impact) == 10
        assert {"t0", "t1"} <= set(analysis.breaking_node_ids)
        assert "t2" not in analysis.breaking_node_ids

    def test_cycles_terminate(self, temp_dir: Path):
        graph = make_graph(["a", "b", "c"], [("b", "a"), ("c", "b"), ("a", "c")])
        change = NodeChange("a", ChangeType.RENAME, before="a", after="z")
        analysis = PropagationEngine(temp_dir).analyze_impact(graph, change)
        assert [n.node_id for n in analysis.direct_impact] == ["b"]
        assert [n.node_id for n in analysis.transitive_impact] == ["c"]

    def test_delete_escalates_through_cycles(self, temp_dir: Path):
        graph = make_graph(["a", "b", "c"], [("b", "a"), ("c", "b"), ("a", "c")])
        analysis = PropagationEngine(temp_dir).analyze_impact(graph, NodeChange("a", ChangeType.DELETE))
        assert analysis.transitive_impact == []
        assert analysis.breaking_node_ids == ["b", "c"]
        assert analysis.risk_level == RiskLevel.CRITICAL

    def test_widely_used_breaking_dependent_is_critical(self, temp_dir: Path):
        ids = ["target", "mid", "alt"] + [f"user{i}" for i in range(6)]
        edges = [("mid", "target")] + [(f"user{i}", "mid") for i in range(6)]
        edges += [(f"user{i}", "alt") for i in range(6)]
        graph = make_graph(ids, edges)
        analysis = PropagationEngine(temp_dir).analyze_impact(graph, NodeChange("target", ChangeType.DELETE))
        assert analysis.risk_level == RiskLevel.CRITICAL

    def test_dependent_without_breaking_is_medium(self, temp_dir: Path):
        graph = make_graph(["a", "b"], [("b", "a")])
        analysis = PropagationEngine(temp_dir).analyze_impact(
            graph, NodeChange("a", ChangeType.RENAME, before="a", after="renamed")
        )
        assert analysis.breaking_changes == []
        assert analysis.risk_level == RiskLevel.MEDIUM


class TestModifySignature:
    def test_call_with_wrong_arity_is_breaking(self, engine, sample_graph):
        change = NodeChange(FORMAT_NAME, ChangeType.MODIFY_SIGNATURE,
                            before="(first: string, last: string)", after="(user: User)")
        analysis = engine.analyze_impact(sample_graph, change)

        assert [(b.node_id, b.line) for b in analysis.breaking_changes] == [(USER_CARD, 13)]
        assert "2 argument(s)" in analysis.breaking_changes[0].reason
        assert all(not f.auto_fixable for f in analysis.suggested_fixes)

    def test_compatible_signature_is_not_breaking(self, engine, sample_graph):
        change = NodeChange(FORMAT_NAME, ChangeType.MODIFY_SIGNATURE, after="(first, last, middle?)")
        analysis = engine.analyze_impact(sample_graph, change)
        assert analysis.breaking_changes == []
        assert analysis.risk_level == RiskLevel.MEDIUM

    def test_missing_required_prop(self, engine, sample_graph):
        change = NodeChange(BUTTON, ChangeType.MODIFY_SIGNATURE, after={
            "props": [{"name": "label", "required": True}, {"name": "variant", "required": True}],
        })
        analysis = engine.analyze_impact(sample_graph, change)
        assert [b.line for b in analysis.breaking_changes] == [14]
        assert "variant" in analysis.breaking_changes[0].reason

    def test_signature_required(self, engine, sample_graph):
        with pytest.raises(InvalidChangeError):
            engine.analyze_impact(sample_graph, NodeChange(FORMAT_NAME, ChangeType.MODIFY_SIGNATURE))


class TestHelpers:
    @pytest.mark.parametrize(
        "line, expected",
        [
            ("import { Button } from './Button';", ""),
            ("import Button from './Button';", ""),
            ("import { Button, Card } from './ui';", "import { Card } from './ui';"),
            ("import { Card, Button } from './ui';", "import { Card } from './ui';"),
            ("import { A, Button, B } from './ui';", "import { A, B } from './ui';"),
            ("  Button,", ""),
            ("import * as ui from './ui';", None),
        ],
    )
    def test_remove_import_specifier(self, line, expected):
        assert remove_import_specifier(line, "Button") == expected

    def test_parse_signature_forms(self):
        sig = parse_signature("(id: string, opts?: Options, retries = 3)")
        assert (sig.required, sig.total) == (1, 3)
        assert parse_signature(["a", "b"]).required == 2
        rest = parse_signature({"params": ["first", "...others"]})
        assert rest.total is None
        assert rest.accepts(7)
        assert not rest.accepts(0)


class TestFileChanges:
    def test_rename_file_rewrites_importer_specifier(self, engine, sample_graph):
        change = NodeChange(FORMAT_FILE, ChangeType.RENAME, before="format.ts", after="formatting")
        analysis = engine.analyze_impact(sample_graph, change)

        assert [(b.path, b.line) for b in analysis.breaking_changes] == [("src/components/UserCard.tsx", 2)]
        fix = analysis.suggested_fixes[0]
        assert fix.auto_fixable is True
        assert fix.old_code == "import { formatName } from '../lib/format';"
        assert fix.new_code == "import { formatName } from '../lib/formatting';"
        assert analysis.risk_level == RiskLevel.HIGH

    def test_rename_file_rejects_path_separators(self, engine, sample_graph):
        with pytest.raises(InvalidChangeError):
            engine.analyze_impact(
                sample_graph, NodeChange(FORMAT_FILE, ChangeType.RENAME, before="format.ts", after="lib/x")
            )

    def test_delete_file_removes_importing_line(self, engine, sample_graph):
        analysis = engine.analyze_impact(sample_graph, NodeChange(FORMAT_FILE, ChangeType.DELETE))

        card_breaks = [b for b in analysis.breaking_changes if b.node_id == USER_CARD_FILE]
        assert [b.line for b in card_breaks] == [2]
        fix = next(f for f in analysis.suggested_fixes if f.node_id == USER_CARD_FILE)
        assert fix.line == 2
        assert fix.new_code == ""
        assert fix.auto_fixable is True
        assert analysis.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)

    def test_delete_through_export_alias(self, temp_dir: Path):
        """Deleting helper breaks the file importing it as run, and the call site."""
        src = temp_dir / "src"
        src.mkdir()
        (src / "a.ts").write_text(
            "function helper() {\n  return 1;\n}\nexport { helper as run };\n", encoding="utf-8"
        )
        (src / "b.ts").write_text(
            "import { run } from './a';\n\nexport function go() {\n  return run();\n}\n",
            encoding="utf-8",
        )
        graph = MindMapOrchestrator(temp_dir, MindMapConfig()).build()

        analysis = PropagationEngine(temp_dir).analyze_impact(
            graph, NodeChange("function:src/a.ts#helper", ChangeType.DELETE)
        )

        assert sorted((b.path, b.line) for b in analysis.breaking_changes) == [("src/b.ts", 1), ("src/b.ts", 4)]
        import_fix = next(f for f in analysis.suggested_fixes if f.line == 1)
        assert import_fix.new_code == ""
        assert import_fix.auto_fixable is True
        assert analysis.risk_level == RiskLevel.HIGH

    @pytest.mark.parametrize(
        "specifier,expected",
        [
            ("./format", "./formatting"),
            ("../lib/format.ts", "../lib/formatting.ts"),
            ("@/lib/format", "@/lib/formatting"),
            ("../lib", None),
        ],
    )
    def test_renamed_specifier(self, specifier, expected):
        assert renamed_specifier(specifier, "format", "formatting") == expected


class TestApply:
    def test_apply_rename_fixes(self, engine, sample_graph, sample_app):
        """Auto-fixable patches from an analysis apply cleanly."""
        change = NodeChange(BUTTON, ChangeType.RENAME, before="Button", after="PrimaryButton")
        patches = engine.analyze_impact(sample_graph, change).auto_fixable_patches()

        result = engine.apply_patches(patches)

        assert result.success is True
        assert result.files_modified == ["src/components/UserCard.tsx"]
        text = (sample_app / "src" / "components" / "UserCard.tsx").read_text(encoding="utf-8")
        assert "import { PrimaryButton } from './Button';" in text
        assert '<PrimaryButton label="Edit" />' in text

    def test_stale_batch_is_reported_not_raised(self, engine, sample_app):
        card = sample_app / "src" / "components" / "UserCard.tsx"
        before = card.read_text(encoding="utf-8")

        result = engine.apply_patches([
            {"path": "src/components/UserCard.tsx", "line": 1,
             "oldCode": "import { Button } from './Button';", "newCode": "import { B } from './Button';"},
            {"path": "src/components/UserCard.tsx", "line": 2,
             "oldCode": "something else", "newCode": "x"},
        ])

        assert result.success is False
        assert [p.line for p in result.patches_failed] == [2]
        assert result.error_code == "stale_change"
        assert len(result.errors) == 1
        assert card.read_text(encoding="utf-8") == before

    def test_file_edited_after_analysis_is_stale(self, engine, sample_graph, sample_app):
        """Editing a target file between analysis and apply rejects the batch."""
        change = NodeChange(BUTTON, ChangeType.RENAME, before="Button", after="PrimaryButton")
        patches = engine.analyze_impact(sample_graph, change).auto_fixable_patches()

        card = sample_app / "src" / "components" / "UserCard.tsx"
        edited = card.read_text(encoding="utf-8").replace('label="Edit"', 'label="Change"')
        card.write_text(edited, encoding="utf-8")

        with pytest.raises(StaleChangeError):
            engine.applier.apply(patches)
        assert card.read_text(encoding="utf-8") == edited
