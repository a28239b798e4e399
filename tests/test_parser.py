"""
工作流解析器测试
"""
import json
import pytest

from audit_copilot.core.parser import WorkflowParser
from audit_copilot.exceptions import WorkflowParseError, WorkflowValidationError


@pytest.fixture
def parser():
    return WorkflowParser()


def test_parse_dict(parser, sample_definition):
    workflow = parser.parse(sample_definition, owner_id="auditor-1")

    assert workflow.id == "wf-import"
    assert workflow.owner_id == "auditor-1"
    assert workflow.node_ids == ["plan", "test", "report"]
    assert workflow.get_node("plan").instructions == "Plan the payroll audit"
    assert workflow.get_node("test").label == "Testing"
    assert [(e.source, e.target) for e in workflow.edges] == [("plan", "test"), ("test", "report")]


def test_parse_canvas_export(parser):
    exported = {
        "version": "1.0",
        "data": {
            "workflows": [{
                "id": "canvas-1",
                "name": "Inventory Count",
                "slug": "inventory-count",
                "diagramJson": {
                    "nodes": [
                        {"id": "n1", "type": "step", "data": {"label": "Observe count", "instructions": "Attend"}},
                        {"id": "n2", "type": "step", "data": {"label": "Reconcile"}},
                    ],
                    "edges": [{"id": "e1", "source": "n1", "target": "n2"}],
                },
            }],
        },
    }
    workflow = parser.parse(exported)

    assert workflow.id == "canvas-1"
    assert workflow.slug == "inventory-count"
    assert workflow.get_node("n1").label == "Observe count"
    assert workflow.get_node("n1").instructions == "Attend"
    assert workflow.edges[0].id == "e1"


def test_parse_double_encoded_json(parser, sample_definition):
    content = json.dumps(json.dumps(sample_definition))
    workflow = parser.parse_string(content)
    assert workflow.node_ids == ["plan", "test", "report"]


def test_parse_yaml_file(parser, tmp_path):
    path = tmp_path / "Year End Close.yaml"
    path.write_text(
        "name: Year End Close\n"
        "nodes:\n"
        "  - id: a\n"
        "  - id: b\n"
        "edges:\n"
        "  - [a, b]\n"
        "  - {from: b, to: a}\n",
        encoding="utf-8",
    )
    workflow = parser.parse(path)

    assert workflow.slug == "year-end-close"
    assert [(e.source, e.target) for e in workflow.edges] == [("a", "b"), ("b", "a")]


def test_dangling_edges_dropped(parser):
    workflow = parser.parse({
        "nodes": [{"id": "a"}, {"id": "b"}],
        "edges": [{"source": "a", "target": "b"}, {"source": "a", "target": "gone"}],
    })
    assert len(workflow.edges) == 1


def test_duplicate_node_ids_rejected(parser):
    with pytest.raises(WorkflowValidationError):
        parser.parse({"nodes": [{"id": "a"}, {"id": "a"}], "edges": []})


def test_node_without_id_rejected(parser):
    with pytest.raises(WorkflowValidationError):
        parser.parse({"nodes": [{"label": "no id"}], "edges": []})


def test_invalid_format(parser):
    with pytest.raises(WorkflowParseError):
        parser.parse({"name": "nothing here"})

    with pytest.raises(WorkflowParseError):
        parser.parse_string("[1, 2, 3]")


def test_unsupported_file(parser, tmp_path):
    path = tmp_path / "workflow.txt"
    path.write_text("nodes: []", encoding="utf-8")
    with pytest.raises(WorkflowParseError):
        parser.parse_file(path)


def test_missing_label_defaults_to_id(parser):
    workflow = parser.parse({"nodes": ["only-id"], "edges": []})
    assert workflow.get_node("only-id").label == "only-id"
