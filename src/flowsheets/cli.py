from pathlib import Path
import logging
import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from typing import List, Optional

from .errors import FlowsheetsError
from .events import DisplayLine, Reassembler
from .generator import TEMPLATES, parse_assistant_reply, load_template
from .runner import ProcessRunner
from .session import Notice, SessionOrchestrator
from .settings import Settings, load_settings
from .sheet import SheetController
from .store import FileSheetStore, load_document, save_document
from .validator import audit_document
from .visualize import ascii_plan_file

app = typer.Typer(no_args_is_help=True, help="Flowsheets CLI — design and check ETL sheets")

_STYLE = {"success": "green", "info": "cyan", "warning": "yellow", "error": "red"}


def _print_notice(notice: Notice) -> None:
    rprint(f"[{_STYLE.get(notice.severity, 'white')}]{escape(notice.message)}[/]")


def _print_lines(lines: List[DisplayLine]) -> None:
    for line in lines:
        rprint(f"[dim]{line.sequence:>5}[/] {escape(line.content)}")


def _fail(e: Exception) -> None:
    rprint(f"[bold red]Error:[/] {e}")
    raise typer.Exit(code=1)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _session(ctx: typer.Context) -> SessionOrchestrator:
    s = _settings(ctx)
    session = SessionOrchestrator(FileSheetStore(s.data_root), s.project, settings=s,
                                  on_notice=_print_notice)
    if not session.load():
        raise typer.Exit(code=1)
    return session


@app.callback()
def main(ctx: typer.Context,
         config: Optional[Path] = typer.Option(None, help="Settings YAML (default: ./flowsheets.yaml)."),
         data_root: Optional[Path] = typer.Option(None, help="Where sheets are stored."),
         project: Optional[str] = typer.Option(None, help="Project id."),
         verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging.")):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(message)s",
                        handlers=[RichHandler(show_path=False)])
    try:
        ctx.obj = load_settings(config, data_root=data_root, project=project)
    except FlowsheetsError as e:
        _fail(e)


@app.command()
def init(ctx: typer.Context):
    """Create the sheet store for the current project."""
    s = _settings(ctx)
    folder = s.data_root / "projects" / s.project / "sheets"
    folder.mkdir(parents=True, exist_ok=True)
    rprint(Panel.fit(f"[bold green]Initialized[/] sheet store at [cyan]{folder}[/]"))


@app.command()
def new(ctx: typer.Context,
        name: Optional[str] = typer.Option(None, help="Sheet name."),
        template: Optional[str] = typer.Option(None, help=f"Start from a template: {' | '.join(TEMPLATES)}")):
    """Create a sheet (empty or from a template) and save it."""
    session = _session(ctx)
    sheet = session.create_sheet(name)
    session.activate(sheet.id)
    if template:
        try:
            session.apply_graph_suggestion(load_template(template), sheet.id)
        except ValueError as e:
            _fail(e)
    if not session.save(sheet.id):
        raise typer.Exit(code=1)
    rprint(Panel.fit(f"Created sheet [bold]{sheet.name}[/] ([cyan]{sheet.id}[/])"))


@app.command("list")
def list_sheets(ctx: typer.Context):
    """List the project's sheets."""
    session = _session(ctx)
    table = Table(title=f"Sheets of {session.project_id}")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Nodes", justify="right")
    table.add_column("Edges", justify="right")
    for sheet in session.sheets:
        table.add_row(sheet.id, sheet.name, str(len(sheet.graph.nodes)), str(len(sheet.graph.edges)))
    rprint(table)


@app.command()
def validate(file: Path):
    """Check a sheet file (ids, references, connection rules, data-flow cycles)."""
    try:
        ok, messages = audit_document(load_document(file))
    except FlowsheetsError as e:
        _fail(e)
    table = Table(title="Validation Report", show_lines=True)
    table.add_column("Status", justify="center", style="bold")
    table.add_column("Message")
    for m in messages:
        status, _, text = m.partition(": ")
        table.add_row(status, text)
    rprint(table)
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def explain(file: Path):
    """Print an ASCII plan of the sheet graph."""
    try:
        print(ascii_plan_file(file))
    except FlowsheetsError as e:
        _fail(e)


@app.command()
def connect(file: Path, source: str, target: str,
            source_handle: Optional[str] = typer.Option(None, help="Default: data-source."),
            target_handle: Optional[str] = typer.Option(None, help="Default: data-target.")):
    """Add a validated edge to a sheet file."""
    try:
        sheet = SheetController.from_document(load_document(file))
        edge = sheet.connect(source, target, source_handle, target_handle, strict=True)
        save_document(sheet.to_document(), file)
    except FlowsheetsError as e:
        _fail(e)
    rprint(Panel.fit(f"Connected [bold]{edge.source}[/] → [bold]{edge.target}[/] ({edge.kind.value})"))


@app.command()
def apply(ctx: typer.Context, sheet_id: str, reply: Path):
    """Merge the flow embedded in an assistant reply into a stored sheet."""
    session = _session(ctx)
    message, suggestion = parse_assistant_reply(reply.read_text())
    if message:
        rprint(Panel(message, title="Assistant"))
    if suggestion is None:
        rprint("[yellow]The reply carries no flow suggestion.[/]")
        raise typer.Exit(code=1)
    try:
        nodes, edges = session.apply_graph_suggestion(suggestion, sheet_id)
    except FlowsheetsError as e:
        _fail(e)
    dropped = len(suggestion.edges) - len(edges)
    rprint(f"Added {len(nodes)} nodes and {len(edges)} edges ({dropped} edges dropped).")
    if not session.save(sheet_id):
        raise typer.Exit(code=1)


@app.command()
def replay(events: Path, legacy_floor: int = typer.Option(9999, help="First synthetic sequence for legacy lines.")):
    """Reassemble a recorded progress log (one JSON object or bare string per line)."""
    r = Reassembler(legacy_floor=legacy_floor)
    for raw in events.read_text().splitlines():
        if raw.strip():
            _print_lines(r.accept_raw(raw))
    _print_lines(r.drain())
    state = "[green]complete[/]" if r.completed else "[yellow]incomplete[/]"
    rprint(f"Run {state}: {len(r.output)} lines.")


@app.command()
def run(ctx: typer.Context, sheet_id: str,
        command: List[str] = typer.Argument(..., help="External command to launch (after --)."),
        compile_only: bool = typer.Option(False, "--compile", help="Report as a compile run."),
        timeout: Optional[float] = typer.Option(None, help="Give up after this many seconds.")):
    """Launch an external command for a sheet and follow its progress in order."""
    session = _session(ctx)
    factory = lambda sid, pid: command  # noqa: E731
    if compile_only:
        session.compiler = ProcessRunner.compiler(session.channel, factory)
    else:
        session.executor = ProcessRunner(session.channel, factory)
    try:
        if compile_only:
            monitor = session.compile(sheet_id)
        else:
            monitor = session.execute(sheet_id)
    except FlowsheetsError as e:
        _fail(e)
    finished = monitor.wait(timeout, on_lines=_print_lines)
    if not finished:
        monitor.cancel()
        rprint("[yellow]Stopped following the run.[/]")
        raise typer.Exit(code=1)
    last = monitor.lines[-1].content.lower() if monitor.lines else ""
    if monitor.failure or "completed successfully" not in last:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
