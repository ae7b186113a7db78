from __future__ import annotations
from pathlib import Path
import networkx as nx

from .ir import Graph
from .store import load_document


def _plan_graph(g: Graph) -> nx.MultiDiGraph:
    nxg = nx.MultiDiGraph()
    nxg.add_nodes_from([n.id for n in g.nodes])
    for e in g.edges:
        nxg.add_edge(e.source, e.target, label=f"{e.kind.value}: {e.source_handle}->{e.target_handle}")
    return nxg


def ascii_plan(g: Graph) -> str:
    nxg = _plan_graph(g)
    try:
        order = list(nx.topological_sort(nxg))
        lines = ["# ASCII Plan (topological order)"]
    except nx.NetworkXUnfeasible:
        order = [n.id for n in g.nodes]
        lines = ["# ASCII Plan (sheet order; graph has cycles)"]
    for i, nid in enumerate(order, 1):
        node = g.node(nid)
        lines.append(f"{i:02d}. {node.id} [{node.component_kind}, {node.role.value}]")
        for _, succ, data in nxg.out_edges(nid, data=True):
            lines.append(f"    └─▶ {succ}  ({data['label']})")
    return "\n".join(lines)


def ascii_plan_file(path: Path) -> str:
    return ascii_plan(Graph.from_document(load_document(path)))
