"""Palette of the component kinds a sheet can hold."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .errors import UnknownComponent
from .ir import Node, NodeRole, Parameter, Position

# (name, type, default)
ParamDecl = Tuple[str, str, Any]

_CONNECTION: Tuple[ParamDecl, ...] = (
    ("dbType", "select", "PostgreSQL"),
    ("host", "string", None),
    ("port", "string", None),
    ("database", "string", None),
    ("username", "string", None),
    ("password", "secret", None),
)


@dataclass(frozen=True)
class ComponentSpec:
    kind: str
    role: NodeRole
    label: str
    supports_control_flow: bool = False
    category: str = "data-flow"
    parameters: Tuple[ParamDecl, ...] = ()

    def default_parameters(self) -> List[Parameter]:
        return [Parameter(name=name, type=type_, value=value) for name, type_, value in self.parameters]


COMPONENTS: List[ComponentSpec] = [
    ComponentSpec("start", NodeRole.SOURCE, "Start", True, "control-flow"),
    ComponentSpec("stop", NodeRole.SOURCE, "Stop", True, "control-flow"),
    ComponentSpec("db-source", NodeRole.SOURCE, "Database Source", True,
                  parameters=_CONNECTION + (("query", "sql", None),)),
    ComponentSpec("file-source", NodeRole.SOURCE, "File Source", True,
                  parameters=(("filepath", "string", None), ("delimiter", "string", ","),
                              ("encoding", "string", "UTF-8"))),
    ComponentSpec("filter", NodeRole.TRANSFORM, "Filter",
                  parameters=(("condition", "string", None),)),
    ComponentSpec("map", NodeRole.TRANSFORM, "Map",
                  parameters=(("mappingExpression", "sql", None),)),
    ComponentSpec("db-dest", NodeRole.DESTINATION, "Database Destination",
                  parameters=_CONNECTION + (("table", "string", None),)),
    ComponentSpec("file-dest", NodeRole.DESTINATION, "File Destination",
                  parameters=(("filepath", "string", None), ("delimiter", "string", ","))),
]

_by_kind: Dict[str, ComponentSpec] = {c.kind: c for c in COMPONENTS}


def lookup(kind: str) -> ComponentSpec:
    try:
        return _by_kind[kind]
    except KeyError:
        raise UnknownComponent(kind) from None


def fresh_node_id(kind: str) -> str:
    return f"{kind}-{uuid4().hex[:12]}"


def make_node(kind: str, node_id: Optional[str] = None, label: Optional[str] = None,
              position: Optional[Position] = None) -> Node:
    spec = lookup(kind)
    return Node(
        id=node_id or fresh_node_id(kind),
        role=spec.role,
        component_kind=spec.kind,
        label=label or spec.label,
        supports_control_flow=spec.supports_control_flow,
        parameters=spec.default_parameters(),
        position=position or Position(),
    )
