import pytest

from flowsheets.generator import TEMPLATES, parse_assistant_reply, load_template


def test_parse_reply_with_embedded_flow():
    text = ('Here is a pipeline that copies orders.\n'
            '{"nodes": [{"id": "1", "componentKind": "db-source"}, {"id": "2", "componentKind": "file-dest"}],'
            ' "edges": [{"source": "1", "target": "2"}]}')
    message, suggestion = parse_assistant_reply(text)
    assert message == "Here is a pipeline that copies orders."
    assert [n.component_kind for n in suggestion.nodes] == ["db-source", "file-dest"]
    assert suggestion.edges[0].source_handle is None


def test_parse_reply_without_flow():
    assert parse_assistant_reply("No flow needed.") == ("No flow needed.", None)
    message, suggestion = parse_assistant_reply("Broken {not json}")
    assert suggestion is None
    assert message == "Broken {not json}"


def test_editor_shaped_nodes_are_accepted():
    _, suggestion = parse_assistant_reply(
        '{"nodes": [{"id": "n", "type": "source", "data": {"label": "Orders",'
        ' "componentData": {"id": "db-source", "supportsControlFlow": true}}}], "edges": []}')
    node = suggestion.nodes[0]
    assert (node.component_kind, node.label, node.role.value) == ("db-source", "Orders", "source")


@pytest.mark.parametrize("name", TEMPLATES)
def test_templates_load(name):
    suggestion = load_template(name)
    ids = {n.id for n in suggestion.nodes}
    assert suggestion.nodes
    assert all(e.source in ids and e.target in ids for e in suggestion.edges)


def test_unknown_template():
    with pytest.raises(ValueError):
        load_template("warp-drive")
