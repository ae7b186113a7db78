from __future__ import annotations
import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from .errors import ValidationRejected
from .ir import Edge, EdgeKind, Graph, Node, Position, SheetDocument
from .validator import ConnectionDecision, check_connection

log = logging.getLogger(__name__)

ChangeListener = Callable[[List[Node], List[Edge]], None]


def fresh_edge_id() -> str:
    return f"edge-{uuid4().hex[:12]}"


class SheetController:
    """
    Owns the graph of one sheet. Every mutation goes through here and is followed
    by a change notification carrying the full node and edge lists.
    """

    def __init__(self, sheet_id: str, name: str, graph: Optional[Graph] = None):
        self.id = sheet_id
        self.name = name
        self.graph = graph or Graph()
        self.locked = False
        self._listeners: List[ChangeListener] = []

    @classmethod
    def from_document(cls, doc: SheetDocument) -> "SheetController":
        return cls(doc.id, doc.name, Graph.from_document(doc))

    def to_document(self) -> SheetDocument:
        return self.graph.to_document(self.id, self.name)

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        nodes, edges = self.graph.nodes, self.graph.edges
        for listener in list(self._listeners):
            listener(nodes, edges)

    def add_node(self, node: Node) -> Node:
        self.graph.add_node(node)
        self._changed()
        return node

    def remove_node(self, node_id: str) -> List[Edge]:
        removed = self.graph.remove_node(node_id)
        self._changed()
        return removed

    def update_parameters(self, node_id: str, values: Dict[str, Any]) -> Node:
        node = self.graph.update_parameters(node_id, values)
        self._changed()
        return node

    def move_node(self, node_id: str, x: float, y: float) -> Node:
        node = self.graph.move_node(node_id, Position(x=x, y=y))
        self._changed()
        return node

    def check(self, edge: Edge) -> ConnectionDecision:
        if self.locked:
            return ConnectionDecision(False, edge.kind, "sheet is executing")
        return check_connection(self.graph, edge)

    def connect(self, source: str, target: str, source_handle: Optional[str] = None,
                target_handle: Optional[str] = None, *, edge_id: Optional[str] = None,
                strict: bool = False) -> Optional[Edge]:
        """
        Propose a connection. Rejected proposals are dropped and None is returned,
        unless strict, in which case ValidationRejected is raised.
        """
        fields = {"id": edge_id or fresh_edge_id(), "source": source, "target": target}
        if source_handle is not None:
            fields["source_handle"] = source_handle
        if target_handle is not None:
            fields["target_handle"] = target_handle
        return self.add_edge(Edge(**fields), strict=strict)

    def add_edge(self, edge: Edge, *, strict: bool = False) -> Optional[Edge]:
        decision = self.check(edge)
        if not decision:
            log.debug("sheet %s: rejected %s edge %s -> %s: %s",
                      self.id, decision.kind.value, edge.source, edge.target, decision.reason)
            if strict:
                raise ValidationRejected(decision.reason)
            return None
        self.graph.add_edge(edge)
        self._changed()
        return edge

    def remove_edge(self, edge_id: str) -> Edge:
        edge = self.graph.remove_edge(edge_id)
        self._changed()
        return edge

    def edges_of_kind(self, kind: EdgeKind) -> List[Edge]:
        return [e for e in self.graph.edges if e.kind is kind]
