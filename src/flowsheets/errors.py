from __future__ import annotations


class FlowsheetsError(Exception):
    """Base class for every error raised by flowsheets."""


class GraphIntegrityError(FlowsheetsError):
    pass


class DuplicateId(GraphIntegrityError):
    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' already exists.")
        self.node_id = node_id


class DanglingReference(GraphIntegrityError):
    def __init__(self, edge_id: str, missing: str):
        super().__init__(f"Edge '{edge_id}' references missing node '{missing}'.")
        self.edge_id = edge_id
        self.missing = missing


class DuplicateEdge(GraphIntegrityError):
    def __init__(self, key):
        source, target, source_handle, target_handle = key
        super().__init__(f"Edge {source}.{source_handle} -> {target}.{target_handle} already exists.")
        self.key = key


class UnknownNode(GraphIntegrityError):
    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' does not exist.")
        self.node_id = node_id


class ValidationRejected(FlowsheetsError):
    """A proposed connection was refused by the connection rules."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class UnknownComponent(FlowsheetsError):
    def __init__(self, kind: str):
        super().__init__(f"Unknown component kind '{kind}'.")
        self.kind = kind


class PersistenceFailure(FlowsheetsError):
    pass


class ChannelFailure(FlowsheetsError):
    pass


class AvailabilityLost(FlowsheetsError):
    pass


class ConfigError(FlowsheetsError):
    pass


class UnknownEdge(GraphIntegrityError):
    def __init__(self, edge_id: str):
        super().__init__(f"Edge '{edge_id}' does not exist.")
        self.edge_id = edge_id


class UnknownSheet(FlowsheetsError):
    def __init__(self, sheet_id: str):
        super().__init__(f"Sheet '{sheet_id}' is not open.")
        self.sheet_id = sheet_id


class UnknownParameter(GraphIntegrityError):
    def __init__(self, node_id: str, name: str):
        super().__init__(f"Node '{node_id}' has no parameter '{name}'.")
        self.node_id = node_id
        self.name = name
