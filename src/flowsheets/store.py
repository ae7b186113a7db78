"""Sheet persistence: one YAML document per sheet under the project directory."""
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Protocol
import yaml
from pydantic import ValidationError

from .errors import PersistenceFailure
from .ir import CONTROL_IN, CONTROL_OUT, SHEET_VERSION, SheetDocument, flatten_editor_node

log = logging.getLogger(__name__)

_LEGACY_HANDLES = {"control-source": CONTROL_OUT, "control-target": CONTROL_IN}


class SheetStore(Protocol):
    def list_sheets(self, project_id: str) -> List[SheetDocument]: ...

    def fetch(self, project_id: str, sheet_id: str) -> SheetDocument: ...

    def create(self, project_id: str, doc: SheetDocument) -> SheetDocument: ...

    def update(self, project_id: str, doc: SheetDocument) -> SheetDocument: ...

    def rename(self, project_id: str, sheet_id: str, name: str) -> SheetDocument: ...

    def delete(self, project_id: str, sheet_id: str) -> None: ...

    def ping(self, timeout: float) -> None: ...


def migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring an older sheet document up to the current version in place."""
    version = data.get("version") or 0
    data["nodes"] = [flatten_editor_node(n) for n in data.get("nodes") or []]
    if version < 1:
        for node in data["nodes"]:
            node.setdefault("parameters", [])
    for edge in data.get("edges") or []:
        for key in ("sourceHandle", "targetHandle", "source_handle", "target_handle"):
            if edge.get(key) in _LEGACY_HANDLES:
                edge[key] = _LEGACY_HANDLES[edge[key]]
    data["version"] = SHEET_VERSION
    return data


def load_document(path: Path) -> SheetDocument:
    try:
        data = yaml.safe_load(Path(path).read_text())
        return SheetDocument(**migrate(data or {}))
    except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
        raise PersistenceFailure(f"Could not read sheet {path}: {e}") from e


def save_document(doc: SheetDocument, path: Path) -> None:
    try:
        Path(path).write_text(yaml.safe_dump(doc.dump(), sort_keys=False))
    except OSError as e:
        raise PersistenceFailure(f"Could not write sheet {path}: {e}") from e


class FileSheetStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def _dir(self, project_id: str) -> Path:
        return self.root / "projects" / project_id / "sheets"

    def _path(self, project_id: str, sheet_id: str) -> Path:
        return self._dir(project_id) / f"{sheet_id}.yaml"

    def list_sheets(self, project_id: str) -> List[SheetDocument]:
        folder = self._dir(project_id)
        if not folder.exists():
            return []
        docs = [load_document(p) for p in sorted(folder.glob("*.yaml"))]
        log.info("Loaded %d sheets for project %s", len(docs), project_id)
        return docs

    def fetch(self, project_id: str, sheet_id: str) -> SheetDocument:
        path = self._path(project_id, sheet_id)
        if not path.exists():
            raise PersistenceFailure(f"Sheet '{sheet_id}' not found in project '{project_id}'.")
        return load_document(path)

    def create(self, project_id: str, doc: SheetDocument) -> SheetDocument:
        try:
            self._dir(project_id).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceFailure(f"Could not create project directory: {e}") from e
        return self.update(project_id, doc)

    def update(self, project_id: str, doc: SheetDocument) -> SheetDocument:
        path = self._path(project_id, doc.id)
        if not path.parent.exists():
            return self.create(project_id, doc)
        save_document(doc, path)
        log.info("Saved sheet %s (%s): %d nodes, %d edges", doc.id, doc.name, len(doc.nodes), len(doc.edges))
        return doc

    def rename(self, project_id: str, sheet_id: str, name: str) -> SheetDocument:
        doc = self.fetch(project_id, sheet_id).model_copy(update={"name": name})
        return self.update(project_id, doc)

    def delete(self, project_id: str, sheet_id: str) -> None:
        path = self._path(project_id, sheet_id)
        try:
            path.unlink()
        except FileNotFoundError:
            log.debug("sheet %s already absent", sheet_id)
        except OSError as e:
            raise PersistenceFailure(f"Could not delete sheet {sheet_id}: {e}") from e

    def ping(self, timeout: float) -> None:
        if not self.root.is_dir() or not os.access(self.root, os.W_OK):
            raise PersistenceFailure(f"Sheet store {self.root} is not writable.")
