from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Tuple

from .errors import (DanglingReference, DuplicateEdge, DuplicateId, UnknownEdge, UnknownNode,
                     UnknownParameter)

CONTROL_IN = "control-flow-in"
CONTROL_OUT = "control-flow-out"
DATA_IN = "data-target"
DATA_OUT = "data-source"

START = "start"
STOP = "stop"
MARKERS = frozenset({START, STOP})

SHEET_VERSION = 1


class NodeRole(str, Enum):
    SOURCE = "source"
    TRANSFORM = "transform"
    DESTINATION = "destination"


class EdgeKind(str, Enum):
    CONTROL = "control"
    DATA = "data"


def is_control_handle(handle: Optional[str]) -> bool:
    return bool(handle) and handle.startswith("control-flow")


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Parameter(_Model):
    name: str
    type: str = "string"
    value: Any = None


class Position(_Model):
    x: float = 0.0
    y: float = 0.0


class Node(_Model):
    id: str
    role: NodeRole
    component_kind: str = Field(alias="componentKind")
    label: str = ""
    supports_control_flow: bool = Field(False, alias="supportsControlFlow")
    parameters: List[Parameter] = Field(default_factory=list)
    position: Position = Field(default_factory=Position)

    @property
    def is_marker(self) -> bool:
        return self.component_kind in MARKERS

    def ports(self) -> FrozenSet[str]:
        """Handles this node exposes; start/stop carry a single control port and no data ports."""
        ports = set()
        if self.supports_control_flow and self.role in (NodeRole.SOURCE, NodeRole.DESTINATION):
            if self.component_kind == START:
                ports.add(CONTROL_OUT)
            elif self.component_kind == STOP:
                ports.add(CONTROL_IN)
            else:
                ports.update((CONTROL_IN, CONTROL_OUT))
        if not self.is_marker:
            if self.role != NodeRole.SOURCE:
                ports.add(DATA_IN)
            if self.role != NodeRole.DESTINATION:
                ports.add(DATA_OUT)
        return frozenset(ports)


class Edge(_Model):
    id: str
    source: str
    target: str
    source_handle: str = Field(DATA_OUT, alias="sourceHandle")
    target_handle: str = Field(DATA_IN, alias="targetHandle")

    @property
    def kind(self) -> EdgeKind:
        if is_control_handle(self.source_handle) or is_control_handle(self.target_handle):
            return EdgeKind.CONTROL
        return EdgeKind.DATA

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.source, self.target, self.source_handle, self.target_handle)


class SheetDocument(_Model):
    """Persisted form of a sheet: {id, name, version, nodes, edges}."""
    id: str
    name: str
    version: int = SHEET_VERSION
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Graph:
    """Id-indexed arena of nodes and edges; edges refer to nodes by id only."""

    def __init__(self, nodes: Optional[List[Node]] = None, edges: Optional[List[Edge]] = None):
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}
        self._edge_keys: Dict[Tuple[str, str, str, str], str] = {}
        for n in nodes or []:
            self.add_node(n)
        for e in edges or []:
            self.add_edge(e)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def edge(self, edge_id: str) -> Optional[Edge]:
        return self._edges.get(edge_id)

    def has_connection(self, key: Tuple[str, str, str, str]) -> bool:
        return key in self._edge_keys

    def edges_of(self, node_id: str) -> Iterator[Edge]:
        for e in list(self._edges.values()):
            if e.source == node_id or e.target == node_id:
                yield e

    def add_node(self, node: Node) -> Node:
        if node.id in self._nodes:
            raise DuplicateId(node.id)
        self._nodes[node.id] = node
        return node

    def add_edge(self, edge: Edge) -> Edge:
        for endpoint in (edge.source, edge.target):
            if endpoint not in self._nodes:
                raise DanglingReference(edge.id, endpoint)
        if edge.key in self._edge_keys or edge.id in self._edges:
            raise DuplicateEdge(edge.key)
        self._edges[edge.id] = edge
        self._edge_keys[edge.key] = edge.id
        return edge

    def remove_node(self, node_id: str) -> List[Edge]:
        """Delete a node and every edge touching it; returns the removed edges."""
        if node_id not in self._nodes:
            raise UnknownNode(node_id)
        removed = [self.remove_edge(e.id) for e in self.edges_of(node_id)]
        del self._nodes[node_id]
        return removed

    def remove_edge(self, edge_id: str) -> Edge:
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            raise UnknownEdge(edge_id)
        del self._edge_keys[edge.key]
        return edge

    def update_parameters(self, node_id: str, values: Dict[str, Any]) -> Node:
        node = self._require(node_id)
        declared = {p.name for p in node.parameters}
        for name in values:
            if name not in declared:
                raise UnknownParameter(node_id, name)
        params = [p.model_copy(update={"value": values[p.name]}) if p.name in values else p
                  for p in node.parameters]
        updated = node.model_copy(update={"parameters": params})
        self._nodes[node_id] = updated
        return updated

    def move_node(self, node_id: str, position: Position) -> Node:
        node = self._require(node_id)
        updated = node.model_copy(update={"position": position})
        self._nodes[node_id] = updated
        return updated

    def _require(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise UnknownNode(node_id)
        return node

    def to_document(self, sheet_id: str, name: str) -> SheetDocument:
        return SheetDocument(id=sheet_id, name=name, nodes=self.nodes, edges=self.edges)

    @classmethod
    def from_document(cls, doc: SheetDocument) -> "Graph":
        return cls(nodes=doc.nodes, edges=doc.edges)


def flatten_editor_node(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Accept the editor's nested node shape ({type, data: {label, componentData}})."""
    if "data" not in raw or not isinstance(raw["data"], dict):
        return raw
    out = {k: v for k, v in raw.items() if k not in ("data", "type", "width", "height")}
    data = raw["data"]
    component = data.get("componentData") or {}
    out.setdefault("role", raw.get("type") or component.get("type"))
    if "componentKind" not in out and "component_kind" not in out and component.get("id"):
        out["componentKind"] = component["id"]
    out.setdefault("label", data.get("label") or component.get("label") or "")
    if "supportsControlFlow" in component:
        out.setdefault("supportsControlFlow", bool(component["supportsControlFlow"]))
    if component.get("parameters"):
        out.setdefault("parameters", component["parameters"])
    return out
