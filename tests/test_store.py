from pathlib import Path
import pytest
import yaml

from flowsheets.catalog import make_node
from flowsheets.errors import PersistenceFailure
from flowsheets.ir import CONTROL_IN, CONTROL_OUT, SHEET_VERSION, SheetDocument
from flowsheets.store import FileSheetStore, load_document


def test_create_list_rename_delete(tmp_path: Path):
    store = FileSheetStore(tmp_path)
    doc = SheetDocument(id="s1", name="First", nodes=[make_node("map", "m")])
    store.create("p", doc)
    assert (tmp_path / "projects" / "p" / "sheets" / "s1.yaml").exists()
    assert [d.id for d in store.list_sheets("p")] == ["s1"]
    assert store.rename("p", "s1", "Renamed").name == "Renamed"
    assert store.fetch("p", "s1").nodes[0].component_kind == "map"
    store.delete("p", "s1")
    assert store.list_sheets("p") == []
    with pytest.raises(PersistenceFailure):
        store.fetch("p", "s1")


def test_list_unknown_project_is_empty(tmp_path: Path):
    assert FileSheetStore(tmp_path).list_sheets("nothing") == []


def test_migrates_editor_shape_and_legacy_handles(tmp_path: Path):
    legacy = {
        "id": "old",
        "name": "Old sheet",
        "nodes": [
            {"id": "start-1", "type": "source", "position": {"x": 1, "y": 2},
             "data": {"label": "Start", "componentData": {"id": "start", "supportsControlFlow": True}}},
            {"id": "db-1", "type": "source",
             "data": {"label": "DB", "componentData": {"id": "db-source", "supportsControlFlow": True}}},
        ],
        "edges": [
            {"id": "e1", "source": "start-1", "target": "db-1", "type": "default",
             "sourceHandle": "control-source", "targetHandle": "control-target"},
        ],
    }
    path = tmp_path / "old.yaml"
    path.write_text(yaml.safe_dump(legacy))
    doc = load_document(path)
    assert doc.version == SHEET_VERSION
    assert doc.nodes[0].component_kind == "start"
    assert doc.nodes[0].position.y == 2
    assert doc.nodes[1].parameters == []
    assert (doc.edges[0].source_handle, doc.edges[0].target_handle) == (CONTROL_OUT, CONTROL_IN)


def test_unreadable_document_is_persistence_failure(tmp_path: Path):
    path = tmp_path / "broken.yaml"
    path.write_text("nodes: [unclosed")
    with pytest.raises(PersistenceFailure):
        load_document(path)
    path.write_text("id: x\nname: y\nnodes:\n  - id: n\n")
    with pytest.raises(PersistenceFailure):
        load_document(path)


def test_ping(tmp_path: Path):
    FileSheetStore(tmp_path).ping(1.0)
    with pytest.raises(PersistenceFailure):
        FileSheetStore(tmp_path / "missing").ping(1.0)
