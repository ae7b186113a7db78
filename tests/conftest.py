import pytest

from flowsheets.catalog import make_node
from flowsheets.ir import Graph


@pytest.fixture
def pipeline() -> Graph:
    """start -> db-source -> stop on the control side, db-source -> filter -> file-dest on the data side."""
    g = Graph()
    for kind, node_id in [("start", "start"), ("stop", "stop"), ("db-source", "src"),
                          ("file-source", "src2"), ("filter", "filter"), ("map", "map"),
                          ("file-dest", "dest")]:
        g.add_node(make_node(kind, node_id))
    return g
