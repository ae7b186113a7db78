"""
Session orchestration: the open sheets of one project, their dirty state, remote
availability and the compile/execute runs attached to them.
"""
from __future__ import annotations
from dataclasses import dataclass
import logging
import queue
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from .catalog import lookup, make_node
from .channel import LocalChannel, compiler_topic, runner_topic
from .errors import AvailabilityLost, FlowsheetsError, PersistenceFailure, UnknownComponent, UnknownSheet
from .generator import GraphSuggestion
from .health import Availability, HealthMonitor
from .ir import Edge, Node, Position
from .monitor import RunMonitor
from .runner import RunTrigger
from .settings import Settings
from .sheet import SheetController
from .store import SheetStore

log = logging.getLogger(__name__)

SUGGESTION_ORIGIN = (100.0, 100.0)
SUGGESTION_STEP = 100.0


@dataclass(frozen=True)
class Notice:
    severity: str  # success | info | warning | error
    message: str


def _log_notice(notice: Notice) -> None:
    level = {"error": logging.ERROR, "warning": logging.WARNING}.get(notice.severity, logging.INFO)
    log.log(level, notice.message)


def _graph_snapshot(ctrl: SheetController) -> Dict[str, Any]:
    doc = ctrl.to_document().dump()
    return {"nodes": doc["nodes"], "edges": doc["edges"]}


class SessionOrchestrator:
    def __init__(self, store: SheetStore, project_id: str, *,
                 channel: Optional[LocalChannel] = None,
                 compiler: Optional[RunTrigger] = None,
                 executor: Optional[RunTrigger] = None,
                 settings: Optional[Settings] = None,
                 on_notice: Callable[[Notice], None] = _log_notice):
        self.store = store
        self.project_id = project_id
        self.channel = channel or LocalChannel()
        self.compiler = compiler
        self.executor = executor
        self.settings = settings or Settings()
        self.on_notice = on_notice
        self.sheets: List[SheetController] = []
        self.active_index = 0
        self.unsaved: Set[str] = set()
        self.availability = Availability()
        self.runs: Dict[str, RunMonitor] = {}
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._persisted: Set[str] = set()
        self._run_counter = 0
        self._mutations: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self.health = HealthMonitor(store.ping, self.post, self._on_health,
                                    interval=self.settings.health_interval,
                                    timeout=self.settings.health_timeout)

    # -- mutation queue ----------------------------------------------------

    def post(self, fn: Callable[[], None]) -> None:
        """Queue work from another thread; it runs on the next pump()."""
        self._mutations.put(fn)

    def pump(self) -> int:
        done = 0
        while True:
            try:
                fn = self._mutations.get_nowait()
            except queue.Empty:
                return done
            fn()
            done += 1

    def notify(self, severity: str, message: str) -> None:
        self.on_notice(Notice(severity, message))

    # -- sheets ------------------------------------------------------------

    @property
    def active(self) -> Optional[SheetController]:
        if 0 <= self.active_index < len(self.sheets):
            return self.sheets[self.active_index]
        return None

    def activate(self, sheet_id: str) -> SheetController:
        ctrl = self.sheet(sheet_id)
        self.active_index = self.sheets.index(ctrl)
        return ctrl

    def sheet(self, sheet_id: str) -> SheetController:
        for ctrl in self.sheets:
            if ctrl.id == sheet_id:
                return ctrl
        raise UnknownSheet(sheet_id)

    def is_dirty(self, sheet_id: str) -> bool:
        return sheet_id in self.unsaved

    def is_persisted(self, sheet_id: str) -> bool:
        return sheet_id in self._persisted

    def _attach(self, ctrl: SheetController) -> SheetController:
        ctrl.subscribe(lambda nodes, edges, sid=ctrl.id: self._on_change(sid))
        return ctrl

    def _on_change(self, sheet_id: str) -> None:
        snapshot = self._snapshots.get(sheet_id)
        if snapshot is None or snapshot != _graph_snapshot(self.sheet(sheet_id)):
            self.unsaved.add(sheet_id)
        else:
            self.unsaved.discard(sheet_id)

    def _mark_saved(self, ctrl: SheetController) -> None:
        self._snapshots[ctrl.id] = _graph_snapshot(ctrl)
        self._persisted.add(ctrl.id)
        self.unsaved.discard(ctrl.id)

    def load(self) -> bool:
        try:
            docs = self.store.list_sheets(self.project_id)
        except PersistenceFailure as e:
            self._on_health(str(e))
            self.notify("error", f"Failed to load sheets: {e}")
            return False
        self.sheets = []
        self.unsaved.clear()
        self._snapshots.clear()
        self._persisted.clear()
        for doc in docs:
            ctrl = self._attach(SheetController.from_document(doc))
            self.sheets.append(ctrl)
            self._mark_saved(ctrl)
        self.active_index = 0
        return True

    def create_sheet(self, name: Optional[str] = None) -> SheetController:
        ctrl = self._attach(SheetController(str(uuid4()), name or f"Sheet {len(self.sheets) + 1}"))
        self.sheets.append(ctrl)
        self.unsaved.add(ctrl.id)
        return ctrl

    def remove_sheet(self, sheet_id: str,
                     confirm: Optional[Callable[[SheetController], bool]] = None) -> bool:
        """Unsaved sheets go immediately; persisted ones need confirmation and a remote delete."""
        ctrl = self.sheet(sheet_id)
        if sheet_id in self._persisted:
            if not self.availability.available:
                self.notify("warning", "Cannot delete sheet: backend server is not available.")
                return False
            if confirm is None or not confirm(ctrl):
                return False
            try:
                self.store.delete(self.project_id, sheet_id)
            except PersistenceFailure as e:
                self.notify("error", f"Failed to delete sheet: {e}")
                return False
        self._drop(ctrl)
        return True

    def _drop(self, ctrl: SheetController) -> None:
        run = self.runs.get(ctrl.id)
        if run is not None:
            run.cancel()
        index = self.sheets.index(ctrl)
        self.sheets.remove(ctrl)
        self.unsaved.discard(ctrl.id)
        self._snapshots.pop(ctrl.id, None)
        self._persisted.discard(ctrl.id)
        if index < self.active_index or self.active_index >= len(self.sheets):
            self.active_index = max(0, self.active_index - 1)

    def rename_sheet(self, sheet_id: str, name: str) -> bool:
        ctrl = self.sheet(sheet_id)
        if sheet_id in self._persisted:
            if not self.availability.available:
                self.notify("warning", "Cannot rename sheet: backend server is not available.")
                return False
            try:
                self.store.rename(self.project_id, sheet_id, name)
            except PersistenceFailure as e:
                self.notify("error", f"Failed to update sheet name: {e}")
                return False
        ctrl.name = name
        return True

    def save(self, sheet_id: str) -> bool:
        ctrl = self.sheet(sheet_id)
        if not self.availability.available:
            self.notify("warning", "Cannot save sheet: backend server is not available.")
            return False
        doc = ctrl.to_document()
        try:
            if sheet_id in self._persisted:
                self.store.update(self.project_id, doc)
            else:
                self.store.create(self.project_id, doc)
        except PersistenceFailure as e:
            self.notify("error", f"Failed to save sheet: {e}")
            return False
        self._mark_saved(ctrl)
        self.notify("success", f"Sheet '{ctrl.name}' saved successfully")
        return True

    def resync(self) -> None:
        """Reload persisted sheets after an outage; sheets with unsaved edits keep their local state."""
        docs = self.store.list_sheets(self.project_id)
        remote = {doc.id: doc for doc in docs}
        for ctrl in list(self.sheets):
            if ctrl.id in self.unsaved:
                continue
            if ctrl.id in self._persisted and ctrl.id not in remote:
                self._drop(ctrl)
        for doc in docs:
            if doc.id in self.unsaved:
                continue
            fresh = self._attach(SheetController.from_document(doc))
            try:
                current = self.sheet(doc.id)
            except UnknownSheet:
                self.sheets.append(fresh)
            else:
                # an execute run still in flight keeps the sheet locked
                fresh.locked = current.locked and doc.id in self.runs
                self.sheets[self.sheets.index(current)] = fresh
            self._mark_saved(fresh)

    # -- suggestions ---------------------------------------------------------

    def apply_graph_suggestion(self, suggestion: GraphSuggestion,
                               sheet_id: Optional[str] = None) -> Tuple[List[Node], List[Edge]]:
        """
        Merge an externally produced partial graph into a sheet (the active one by
        default). Nodes get fresh ids; edges are remapped and then validated like any
        user connection, and dropped when they fail.
        """
        ctrl = self.sheet(sheet_id) if sheet_id else self.active
        if ctrl is None:
            ctrl = self.create_sheet()
        id_map: Dict[str, str] = {}
        added_nodes: List[Node] = []
        x0, y0 = SUGGESTION_ORIGIN
        for item in suggestion.nodes:
            try:
                spec = lookup(item.component_kind)
            except UnknownComponent:
                log.info("suggestion: dropping node %s of unknown kind %r", item.id, item.component_kind)
                continue
            if item.role is not None and item.role is not spec.role:
                log.info("suggestion: node %s keeps catalog role %s instead of %s",
                         item.id, spec.role.value, item.role.value)
            node = make_node(spec.kind, label=item.label,
                             position=Position(x=x0, y=y0 + SUGGESTION_STEP * len(added_nodes)))
            id_map[item.id] = node.id
            added_nodes.append(ctrl.add_node(node))

        added_edges: List[Edge] = []
        for item in suggestion.edges:
            source, target = id_map.get(item.source), id_map.get(item.target)
            if source is None or target is None:
                log.info("suggestion: dropping edge %s -> %s with unknown endpoint", item.source, item.target)
                continue
            edge = ctrl.connect(source, target, item.source_handle, item.target_handle)
            if edge is None:
                log.info("suggestion: dropping edge %s -> %s rejected by connection rules",
                         item.source, item.target)
                continue
            added_edges.append(edge)
        return added_nodes, added_edges

    # -- runs ------------------------------------------------------------------

    def compile(self, sheet_id: str) -> RunMonitor:
        return self._start_run(sheet_id, self.compiler, compiler_topic, lock=False)

    def execute(self, sheet_id: str) -> RunMonitor:
        return self._start_run(sheet_id, self.executor, runner_topic, lock=True)

    def _start_run(self, sheet_id: str, trigger: Optional[RunTrigger],
                   topic: Callable[[str], str], *, lock: bool) -> RunMonitor:
        ctrl = self.sheet(sheet_id)
        if trigger is None:
            raise FlowsheetsError("No run trigger configured.")
        try:
            self.availability.require("start a run")
        except AvailabilityLost as e:
            self.notify("warning", str(e))
            raise
        previous = self.runs.get(sheet_id)
        if previous is not None:
            previous.cancel()
        self._run_counter += 1
        monitor = RunMonitor(sheet_id, self._run_counter, self.channel.subscribe(topic(sheet_id)),
                             poll_interval=self.settings.poll_interval,
                             legacy_floor=self.settings.legacy_floor,
                             on_finish=self._run_finished)
        self.runs[sheet_id] = monitor
        ctrl.locked = lock
        try:
            trigger.trigger(sheet_id, self.project_id)
        except Exception:
            monitor.cancel()
            raise
        return monitor

    def _run_finished(self, monitor: RunMonitor) -> None:
        if self.runs.get(monitor.sheet_id) is not monitor:
            return
        del self.runs[monitor.sheet_id]
        for ctrl in self.sheets:
            if ctrl.id == monitor.sheet_id:
                ctrl.locked = False
        if monitor.failure is not None:
            self.notify("error", f"Run failed: {monitor.failure}")

    # -- availability --------------------------------------------------------

    def start_health_checks(self) -> None:
        self.health.start()

    def stop_health_checks(self) -> None:
        self.health.stop()

    def check_health(self) -> bool:
        self._on_health(self.health.check_once())
        return self.availability.available

    def _on_health(self, failure: Optional[str]) -> None:
        if failure is not None:
            if self.availability.report_failure(failure):
                self.notify("warning", "Backend server is not available. Some features may be limited.")
            return
        if self.availability.report_success():
            try:
                self.resync()
            except PersistenceFailure as e:
                self.availability.report_failure(str(e))
                return
            self.availability.mark_recovered()
            self.notify("info", "Backend server is available again.")
