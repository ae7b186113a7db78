from pathlib import Path
import pytest

from flowsheets.catalog import make_node
from flowsheets.errors import (DanglingReference, DuplicateEdge, DuplicateId, UnknownEdge, UnknownNode,
                               UnknownParameter)
from flowsheets.generator import load_template
from flowsheets.ir import (CONTROL_IN, CONTROL_OUT, DATA_IN, DATA_OUT, Edge, EdgeKind, Graph, Node,
                           Parameter, Position)
from flowsheets.session import SessionOrchestrator
from flowsheets.store import FileSheetStore
from flowsheets.validator import audit_document


def test_generate_and_validate(tmp_path: Path):
    session = SessionOrchestrator(FileSheetStore(tmp_path), "demo")
    sheet = session.create_sheet("ETL")
    session.apply_graph_suggestion(load_template("etl-basic"), sheet.id)
    assert session.save(sheet.id)
    doc = FileSheetStore(tmp_path).fetch("demo", sheet.id)
    ok, messages = audit_document(doc)
    assert ok, messages
    assert len(doc.edges) == 3


def test_add_node_duplicate_id():
    g = Graph()
    g.add_node(make_node("map", "m"))
    with pytest.raises(DuplicateId):
        g.add_node(make_node("filter", "m"))


def test_add_edge_dangling_and_duplicate(pipeline):
    with pytest.raises(DanglingReference) as exc:
        pipeline.add_edge(Edge(id="e1", source="src", target="ghost"))
    assert exc.value.missing == "ghost"
    pipeline.add_edge(Edge(id="e1", source="src", target="filter"))
    with pytest.raises(DuplicateEdge):
        pipeline.add_edge(Edge(id="e2", source="src", target="filter"))
    # same endpoints through other handles is a different connection
    pipeline.add_edge(Edge(id="e3", source="src", target="filter", targetHandle="other"))
    assert len(pipeline.edges) == 2


def test_remove_node_cascades(pipeline):
    pipeline.add_edge(Edge(id="a", source="src", target="filter"))
    pipeline.add_edge(Edge(id="b", source="filter", target="dest"))
    pipeline.add_edge(Edge(id="c", source="map", target="dest"))
    removed = pipeline.remove_node("filter")
    assert {e.id for e in removed} == {"a", "b"}
    assert [e.id for e in pipeline.edges] == ["c"]
    assert "filter" not in pipeline
    # the connection key is free again
    pipeline.add_node(make_node("filter", "filter"))
    pipeline.add_edge(Edge(id="a2", source="src", target="filter"))


def test_remove_unknown():
    g = Graph()
    with pytest.raises(UnknownNode):
        g.remove_node("nope")
    with pytest.raises(UnknownEdge):
        g.remove_edge("nope")


def test_edge_defaults_and_kind():
    e = Edge(id="e", source="a", target="b")
    assert (e.source_handle, e.target_handle) == (DATA_OUT, DATA_IN)
    assert e.kind is EdgeKind.DATA
    c = Edge(id="c", source="a", target="b", sourceHandle=CONTROL_OUT, targetHandle=CONTROL_IN)
    assert c.kind is EdgeKind.CONTROL


def test_ports_by_role_and_marker():
    assert make_node("start").ports() == {CONTROL_OUT}
    assert make_node("stop").ports() == {CONTROL_IN}
    assert make_node("db-source").ports() == {CONTROL_IN, CONTROL_OUT, DATA_OUT}
    assert make_node("map").ports() == {DATA_IN, DATA_OUT}
    assert make_node("db-dest").ports() == {DATA_IN}


def test_parameters_and_position_updates():
    node = Node(id="f", role="transform", componentKind="filter",
                parameters=[Parameter(name="expr", value=""), Parameter(name="limit", type="number", value=1)])
    g = Graph([node])
    g.update_parameters("f", {"expr": "x > 1"})
    g.move_node("f", Position(x=10, y=20))
    updated = g.node("f")
    assert [p.value for p in updated.parameters] == ["x > 1", 1]
    assert updated.position == Position(x=10, y=20)
    with pytest.raises(UnknownNode):
        g.move_node("ghost", Position())
    with pytest.raises(UnknownParameter):
        g.update_parameters("f", {"expr": "x > 2", "unknown": 5})
    assert g.node("f").parameters[0].value == "x > 1"


def test_catalog_nodes_carry_their_parameters():
    g = Graph([make_node("db-source", "src"), make_node("file-source", "csv")])
    g.update_parameters("src", {"query": "select 1", "host": "db.local"})
    params = {p.name: p for p in g.node("src").parameters}
    assert params["query"].value == "select 1"
    assert params["query"].type == "sql"
    assert params["host"].value == "db.local"
    assert params["dbType"].value == "PostgreSQL"
    assert params["password"].type == "secret"
    assert {p.name: p.value for p in g.node("csv").parameters} == {
        "filepath": None, "delimiter": ",", "encoding": "UTF-8"}
    assert make_node("start").parameters == []


def test_document_round_trip_keeps_order(pipeline):
    pipeline.add_edge(Edge(id="a", source="src", target="filter"))
    doc = pipeline.to_document("s1", "Sheet 1")
    dumped = doc.dump()
    assert dumped["nodes"][0]["componentKind"] == "start"
    assert dumped["edges"][0]["sourceHandle"] == DATA_OUT
    again = Graph.from_document(doc)
    assert [n.id for n in again.nodes] == [n.id for n in pipeline.nodes]
    assert again.has_connection(("src", "filter", DATA_OUT, DATA_IN))
