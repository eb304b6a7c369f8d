"""Tests for the message session and its stdio transport."""

import io
import json
from pathlib import Path

import pytest

from codemap.config_manager import MindMapConfig
from codemap.orchestrator import MindMapOrchestrator
from codemap.session import MindMapSession, RequestState, StdioTransport

BUTTON = "component:src/components/Button.tsx#Button"
RENAME_BUTTON = {
    "nodeId": BUTTON,
    "changeType": "rename",
    "before": "Button",
    "after": "PrimaryButton",
}


@pytest.fixture
def session(sample_app: Path) -> MindMapSession:
    return MindMapSession(sample_app, MindMapOrchestrator(sample_app, MindMapConfig()))


def test_ready_sends_init(session):
    responses = session.handle({"type": "ready"})
    assert [r["type"] for r in responses] == ["init"]
    data = responses[0]["data"]
    assert set(data) == {"nodes", "edges", "metadata"}
    assert any(n["id"] == BUTTON for n in data["nodes"])


def test_unknown_message_type(session):
    responses = session.handle({"type": "explode"})
    assert responses[0]["type"] == "error"
    assert responses[0]["code"] == "unknown_message"
    assert session.handle({"nope": 1})[0]["code"] == "unknown_message"


def test_select_node(session):
    response = session.handle({"type": "selectNode", "nodeId": BUTTON})[0]
    assert response["type"] == "nodeDetails"
    assert response["node"]["id"] == BUTTON
    assert {n["id"] for n in response["dependents"]} == {
        "component:src/components/UserCard.tsx#UserCard",
        "file:src/components/UserCard.tsx",
    }


def test_select_missing_node_is_an_error(session):
    response = session.handle({"type": "selectNode", "nodeId": "component:nowhere#X"})[0]
    assert response == {"type": "error", "message": response["message"], "code": "not_found"}


def test_analyze_impact(session):
    responses = session.handle({"type": "analyzeImpact", "change": RENAME_BUTTON})
    assert responses[0]["type"] == "impactResult"
    assert responses[0]["data"]["riskLevel"] == "high"
    assert session.state is RequestState.IMPACT_READY


def test_invalid_change_fails(session):
    change = dict(RENAME_BUTTON, after="not an identifier")
    response = session.handle({"type": "analyzeImpact", "change": change})[0]
    assert response["code"] == "invalid_change"
    assert session.state is RequestState.FAILED

    response = session.handle({"type": "analyzeImpact", "change": {"nodeId": BUTTON, "changeType": "explode"}})[0]
    assert response["code"] == "invalid_change"


def test_superseded_impact_is_dropped(session, monkeypatch):
    """A newer request arriving mid-analysis discards the older result."""
    session.handle({"type": "ready"})
    original = session.orchestrator.impact

    def slow_impact(graph, change):
        result = original(graph, change)
        session.begin_request()
        return result

    monkeypatch.setattr(session.orchestrator, "impact", slow_impact)
    assert session.handle({"type": "analyzeImpact", "change": RENAME_BUTTON}) == []
    assert session.last_impact is None


def test_apply_changes_rescans(session, sample_app):
    impact = session.handle({"type": "analyzeImpact", "change": RENAME_BUTTON})[0]["data"]
    patches = [f for f in impact["suggestedFixes"] if f["autoFixable"]]

    responses = session.handle({"type": "applyChanges", "patches": patches})

    assert [r["type"] for r in responses] == ["propagationResult", "init"]
    assert responses[0]["data"]["success"] is True
    assert session.state is RequestState.IDLE
    text = (sample_app / "src" / "components" / "UserCard.tsx").read_text(encoding="utf-8")
    assert "<PrimaryButton" in text


def test_stale_apply_reports_failure(session, sample_app):
    card = sample_app / "src" / "components" / "UserCard.tsx"
    before = card.read_text(encoding="utf-8")
    patch = {"path": "src/components/UserCard.tsx", "line": 1, "oldCode": "outdated", "newCode": "x"}

    responses = session.handle({"type": "applyChanges", "patches": [patch]})

    assert [r["type"] for r in responses] == ["propagationResult"]
    assert responses[0]["data"]["success"] is False
    assert responses[0]["data"]["error"] == "stale_change"
    assert session.state is RequestState.FAILED
    assert card.read_text(encoding="utf-8") == before


def test_unexpected_analysis_failure_marks_request_failed(session, monkeypatch):
    def explode(graph, change):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(session.orchestrator, "impact", explode)
    responses = session.handle({"type": "analyzeImpact", "change": RENAME_BUTTON})

    assert responses[0]["type"] == "error"
    assert "disk on fire" in responses[0]["message"]
    assert session.state is RequestState.FAILED


def test_malformed_patch(session):
    response = session.handle({"type": "applyChanges", "patches": [{"path": "a.ts"}]})[0]
    assert response["code"] == "invalid_change"


def test_save_positions_round_trip(session, sample_app):
    assert session.handle({"type": "savePositions", "positions": {BUTTON: {"x": 12, "y": 34}}}) == []
    init = session.handle({"type": "refresh"})[0]
    button = next(n for n in init["data"]["nodes"] if n["id"] == BUTTON)
    assert button["position"] == {"x": 12.0, "y": 34.0}
    assert (sample_app / ".codemap" / "mindmap.json").exists()


def test_open_file_calls_host(sample_app):
    opened = []
    session = MindMapSession(sample_app, open_file=lambda path, line: opened.append((path, line)))
    assert session.handle({"type": "openFile", "path": "src/app/page.tsx", "line": 3}) == []
    assert opened == [("src/app/page.tsx", 3)]


def test_ingest_proposals(session):
    responses = session.handle({
        "type": "ingestProposals",
        "nodes": [{"id": "function:src/lib/validate.ts#validateUser", "name": "validateUser",
                   "type": "function", "path": "src/lib/validate.ts"}],
        "edges": [{"source": "api:src/app/api/users/route.ts#POST /api/users",
                   "target": "function:src/lib/validate.ts#validateUser", "type": "calls"}],
        "notes": "validate input",
    })
    edges = responses[0]["data"]["edges"]
    proposed = [e for e in edges if e["target"] == "function:src/lib/validate.ts#validateUser"]
    assert len(proposed) == 1
    assert proposed[0]["aiGenerated"] is True


def test_stdio_transport(session):
    """One JSON request per line in, one JSON response per line out."""
    reader = io.StringIO(
        json.dumps({"type": "selectNode", "nodeId": BUTTON}) + "\n"
        "\n"
        "{broken\n"
        + json.dumps({"type": "openFile", "path": "src/app/page.tsx"}) + "\n"
    )
    writer = io.StringIO()

    handled = StdioTransport(session, reader, writer).serve()

    lines = [json.loads(line) for line in writer.getvalue().splitlines()]
    assert handled == 2
    assert [m["type"] for m in lines] == ["nodeDetails", "error", "openFile"]
    assert lines[1]["code"] == "invalid_json"
    assert lines[2] == {"type": "openFile", "path": "src/app/page.tsx", "line": None}
