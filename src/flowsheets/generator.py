from __future__ import annotations
from importlib.resources import files
import json
import logging
from typing import Any, List, Optional, Tuple
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .ir import NodeRole, flatten_editor_node

log = logging.getLogger(__name__)

TEMPLATES = ("etl-basic", "controlled-copy")


class SuggestedNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    component_kind: str = Field(alias="componentKind")
    label: Optional[str] = None
    role: Optional[NodeRole] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return flatten_editor_node(data)
        return data


class SuggestedEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str
    target: str
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    target_handle: Optional[str] = Field(None, alias="targetHandle")


class GraphSuggestion(BaseModel):
    """A partial graph proposed from outside the editor; ids are local to the suggestion."""
    nodes: List[SuggestedNode] = Field(default_factory=list)
    edges: List[SuggestedEdge] = Field(default_factory=list)


def parse_assistant_reply(text: str) -> Tuple[str, Optional[GraphSuggestion]]:
    """Split an assistant reply into its prose and the flow JSON it may embed."""
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end < start:
        return text.strip(), None
    try:
        suggestion = GraphSuggestion(**json.loads(text[start:end + 1]))
    except (ValueError, ValidationError, TypeError) as e:
        log.debug("assistant reply carries no usable flow: %s", e)
        return text.strip(), None
    return text[:start].strip(), suggestion


def _load_template_yaml(name: str) -> str:
    return (files("flowsheets") / "templates" / f"{name}.yaml").read_text()


def load_template(name: str) -> GraphSuggestion:
    name = name.lower()
    if name not in TEMPLATES:
        raise ValueError(f"Unknown template '{name}'. Use one of: {', '.join(TEMPLATES)}")
    data = yaml.safe_load(_load_template_yaml(name))
    return GraphSuggestion(**data)
