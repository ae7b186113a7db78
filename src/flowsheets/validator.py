from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple
import networkx as nx

from .errors import DuplicateId
from .ir import (CONTROL_IN, CONTROL_OUT, START, STOP, Edge, EdgeKind, Graph, NodeRole, SheetDocument,
                 is_control_handle)


@dataclass(frozen=True)
class ConnectionDecision:
    accepted: bool
    kind: EdgeKind
    reason: str = ""

    def __bool__(self) -> bool:
        return self.accepted


def _accept(kind: EdgeKind) -> ConnectionDecision:
    return ConnectionDecision(True, kind, "ok")


def _reject(kind: EdgeKind, reason: str) -> ConnectionDecision:
    return ConnectionDecision(False, kind, reason)


def classify(source_handle: Optional[str], target_handle: Optional[str]) -> EdgeKind:
    if is_control_handle(source_handle) or is_control_handle(target_handle):
        return EdgeKind.CONTROL
    return EdgeKind.DATA


def check_connection(graph: Graph, edge: Edge, *, check_duplicates: bool = True) -> ConnectionDecision:
    """Decide whether `edge` may be added to `graph`. Pure: never mutates, never raises."""
    kind = classify(edge.source_handle, edge.target_handle)
    source = graph.node(edge.source)
    target = graph.node(edge.target)
    if source is None or target is None:
        missing = edge.source if source is None else edge.target
        return _reject(kind, f"node '{missing}' does not exist")
    if edge.source_handle not in source.ports():
        return _reject(kind, f"'{source.id}' has no '{edge.source_handle}' port")
    if edge.target_handle not in target.ports():
        return _reject(kind, f"'{target.id}' has no '{edge.target_handle}' port")

    if kind is EdgeKind.CONTROL:
        decision = _control_rules(source, target, edge)
    else:
        decision = _data_rules(source, target)
    if decision.accepted and check_duplicates and graph.has_connection(edge.key):
        return _reject(kind, "connection already exists")
    return decision


def _control_rules(source, target, edge: Edge) -> ConnectionDecision:
    kind = EdgeKind.CONTROL
    if source.component_kind == START:
        if (target.role == NodeRole.SOURCE and edge.source_handle == CONTROL_OUT
                and edge.target_handle == CONTROL_IN):
            return _accept(kind)
        return _reject(kind, "start may only feed control-flow-in of a source node")
    if target.component_kind == STOP:
        if edge.target_handle == CONTROL_IN:
            return _accept(kind)
        return _reject(kind, "stop only accepts control-flow-in")
    if source.role == NodeRole.SOURCE and target.role == NodeRole.SOURCE:
        return _accept(kind)
    return _reject(kind, "control flow links source nodes only")


def _data_rules(source, target) -> ConnectionDecision:
    kind = EdgeKind.DATA
    if source.is_marker or target.is_marker:
        return _reject(kind, "start/stop carry no data")
    if target.role == NodeRole.SOURCE:
        return _reject(kind, "a source node cannot receive data")
    if source.role == NodeRole.DESTINATION:
        return _reject(kind, "a destination node cannot emit data")
    return _accept(kind)


def audit_document(doc: SheetDocument) -> Tuple[bool, List[str]]:
    """Re-check a stored sheet edge by edge. Data-flow cycles are reported, not rejected."""
    messages: List[str] = []
    ok = True
    g = Graph()

    # 1) Unique node ids
    for n in doc.nodes:
        try:
            g.add_node(n)
        except DuplicateId as exc:
            ok = False
            messages.append(f"ERR: {exc}")
    if ok:
        messages.append("OK: Node IDs are unique.")

    # 2) Edges refer to existing nodes, no repeated connection
    accepted: List[Edge] = []
    for e in doc.edges:
        missing = [nid for nid in (e.source, e.target) if nid not in g]
        if missing:
            ok = False
            messages.append(f"ERR: Edge {e.source}->{e.target} references missing node(s): {', '.join(missing)}.")
        elif g.has_connection(e.key) or g.edge(e.id) is not None:
            ok = False
            messages.append(f"ERR: Edge {e.source}->{e.target} repeats an existing connection.")
        else:
            accepted.append(e)
            g.add_edge(e)
    if ok:
        messages.append("OK: All edges reference existing nodes.")

    # 3) Every edge against the connection rules
    rules_ok = True
    for e in accepted:
        decision = check_connection(g, e, check_duplicates=False)
        if not decision:
            rules_ok = False
            messages.append(f"ERR: Edge {e.source}.{e.source_handle} -> {e.target}.{e.target_handle} "
                            f"({decision.kind.value}): {decision.reason}.")
    if rules_ok:
        messages.append("OK: All edges satisfy the connection rules.")
    ok = ok and rules_ok

    # 4) Markers and data-flow cycles are advisory
    for marker in (START, STOP):
        count = sum(1 for n in g.nodes if n.component_kind == marker)
        if count > 1:
            messages.append(f"WARN: {count} '{marker}' markers on the sheet.")
    data = nx.DiGraph()
    data.add_nodes_from(n.id for n in g.nodes)
    data.add_edges_from((e.source, e.target) for e in g.edges if e.kind is EdgeKind.DATA)
    cycles = list(nx.simple_cycles(data))
    for cycle in cycles:
        messages.append("WARN: Data-flow cycle " + " -> ".join(cycle + cycle[:1]) + ".")
    if not cycles:
        messages.append("OK: Data flow is acyclic.")

    return ok, messages
