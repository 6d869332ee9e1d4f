"""Typer CLI entrypoint for the obituary collector."""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .adapters import SourceBudget, available_adapters
from .config import ConfigRepository, GlobalConfig
from .errors import CollectorError, GateValidationFailed, LockConflict
from .infra import CorpusStore, KeyValueStore, SQLiteManager, SourceRegistry, export_backup
from .jobs import JobSession, JobSessionManager
from .logging_conf import (
    available_source_logs,
    collector_log_path,
    configure_logging,
    source_log_path,
    tail_log,
)
from .orchestrator import CollectorOrchestrator, CollectorResult
from .records import SourceRecord
from .scheduler import APSchedulerAdapter

app = typer.Typer(
    help="Obituary collector command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
source_app = typer.Typer(name="source", help="Source registry commands", no_args_is_help=True)
collect_app = typer.Typer(name="collect", help="Collection runs", no_args_is_help=True)
reset_app = typer.Typer(name="reset", help="Reset & Rescan maintenance", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log viewing commands", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    global_config: GlobalConfig
    storage: SQLiteManager
    registry: SourceRegistry
    corpus: CorpusStore
    orchestrator: CollectorOrchestrator
    sessions: JobSessionManager


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    db_path = repository.database_path()
    storage = SQLiteManager()
    corpus = CorpusStore(storage, db_path)
    registry = SourceRegistry(storage, db_path, circuit=global_config.circuit_breaker)
    registry.sync(repository.list_sources())
    orchestrator = CollectorOrchestrator(
        global_config,
        registry,
        corpus,
        kv=KeyValueStore(storage, db_path),
    )
    sessions = JobSessionManager(
        storage, db_path, corpus, orchestrator, config=global_config.reset
    )
    return AppState(
        repository=repository,
        global_config=global_config,
        storage=storage,
        registry=registry,
        corpus=corpus,
        orchestrator=orchestrator,
        sessions=sessions,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Map pipeline errors onto a red message and exit code 1."""

    try:
        yield
    except GateValidationFailed as exc:
        console.print(f"Gate `{exc.gate}` not satisfied: {exc}", style="red")
        raise typer.Exit(code=1) from None
    except LockConflict as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from None
    except CollectorError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from None


def _resolve_source(state: AppState, identifier: str) -> SourceRecord:
    if identifier.isdigit():
        return state.registry.get(int(identifier))
    return state.registry.get_by_domain(identifier)


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------
def _render_sources_table(sources: Sequence[SourceRecord]) -> Table:
    table = Table(title=f"Sources · {len(sources)} total", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Domain", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Adapter", style="magenta")
    table.add_column("Enabled", justify="center")
    table.add_column("Circuit", justify="center")
    table.add_column("Failures", justify="right")
    table.add_column("Last success", style="green")
    for source in sources:
        table.add_row(
            str(source.id),
            source.domain,
            source.name,
            source.adapter_type,
            "yes" if source.enabled else "no",
            "[red]open[/red]" if source.circuit_open else "closed",
            str(source.consecutive_failure_count),
            source.last_success_at.strftime("%Y-%m-%d %H:%M") if source.last_success_at else "-",
        )
    return table


def _render_result(result: CollectorResult, title: str) -> Table:
    table = Table(title=f"{title} · {result.status}", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Found", justify="right")
    table.add_column("Added", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("HTTP", justify="right")
    table.add_column("ms", justify="right", style="dim")
    table.add_column("Error", style="red", overflow="fold")
    for domain, diag in result.per_source.items():
        table.add_row(
            domain,
            diag.status,
            str(diag.found),
            str(diag.added),
            str(diag.skipped),
            str(diag.http_status or "-"),
            str(diag.duration_ms),
            diag.error_message or "",
        )
    table.add_row(
        "Total", "", str(result.found), str(result.added), str(result.skipped), "", "", ""
    )
    return table


def _render_session(session: JobSession) -> Table:
    table = Table(title="Reset session", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Session", session.session_id)
    table.add_row("Phase", session.phase.value)
    table.add_row("Rows at start", str(session.total_rows_at_start))
    table.add_row("Deleted", str(session.deleted_rows_count))
    table.add_row("Held by", session.held_by)
    table.add_row("Created", session.created_at.isoformat())
    table.add_row("Updated", session.updated_at.isoformat())
    if session.last_result:
        table.add_row(
            "Last result",
            "found={found} added={added} skipped={skipped} status={status}".format(
                **session.last_result
            ),
        )
    return table


def _print_batch(batch: dict) -> None:
    console.print(
        f"Deleted {batch['deleted_this_batch']} (total {batch['total_deleted']}), "
        f"{batch['remaining']} remaining"
    )


app.add_typer(source_app, name="source")
app.add_typer(collect_app, name="collect")
app.add_typer(reset_app, name="reset")
app.add_typer(log_app, name="log")


@app.callback()
def main(ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Debug logging")) -> None:
    ctx.obj = build_state(verbose)


# ----------------------------------------------------------------------
# source
# ----------------------------------------------------------------------
@source_app.command("list", help="List registered sources with circuit state.")
def source_list(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print id, domain, name and enabled as JSON"),
) -> None:
    state = _get_state(ctx)
    sources = state.registry.list_sources()
    if as_json:
        typer.echo(json.dumps([source.summary() for source in sources], indent=2))
        return
    if not sources:
        console.print("No sources configured; add YAML files under data/sources/.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_sources_table(sources))
    stats = state.registry.stats()
    console.print(
        f"enabled {stats['enabled']} · disabled {stats['disabled']} · "
        f"circuit open {stats['circuit_open']}",
        style="dim",
    )


def _toggle(ctx: typer.Context, domain: str, enabled: bool) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        source = state.registry.set_enabled(domain, enabled)
    try:
        config = state.repository.load_source(source.domain)
    except FileNotFoundError:
        config = None
    if config is not None:
        state.repository.save_source(config.model_copy(update={"enabled": enabled}))
    console.print(f"Source `{source.domain}` {'enabled' if enabled else 'disabled'}.", style="green")


@source_app.command("enable", help="Enable a source.")
def source_enable(ctx: typer.Context, domain: str = typer.Argument(..., help="Source domain")) -> None:
    _toggle(ctx, domain, True)


@source_app.command("disable", help="Disable a source.")
def source_disable(ctx: typer.Context, domain: str = typer.Argument(..., help="Source domain")) -> None:
    _toggle(ctx, domain, False)


@source_app.command("reset-circuit", help="Close a source's circuit and clear its failure count.")
def source_reset_circuit(
    ctx: typer.Context, domain: str = typer.Argument(..., help="Source domain")
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        source = state.registry.reset_circuit(domain)
    console.print(f"Circuit for `{source.domain}` closed.", style="green")


@source_app.command("sync", help="Re-read source YAML files into the registry.")
def source_sync(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    synced = state.registry.sync(state.repository.list_sources())
    console.print(f"{len(synced)} sources registered.", style="green")


@source_app.command("adapters", help="List available adapter types.")
def source_adapters() -> None:
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Type", style="cyan")
    table.add_column("Label")
    for name, label in available_adapters().items():
        table.add_row(name, label)
    console.print(table)


# ----------------------------------------------------------------------
# collect
# ----------------------------------------------------------------------
@collect_app.command("run-all", help="Collect from every enabled source in one call.")
def collect_run_all(
    ctx: typer.Context,
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Per-source page cap"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, max=4, help="Parallel sources"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        result = state.orchestrator.run(budget=SourceBudget(max_pages=max_pages), workers=workers)
    console.print(_render_result(result, "Collection"))
    if result.status == "failed":
        raise typer.Exit(code=1)


@collect_app.command("run", help="Collect from a single source (id or domain).")
def collect_run(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Source id or domain"),
    is_last: bool = typer.Option(False, "--last", help="Mark this as the last source of a pass"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Page cap"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        record = _resolve_source(state, source)
        result = state.orchestrator.run_one_source(
            record.id, is_last=is_last, budget=SourceBudget(max_pages=max_pages)
        )
    console.print(_render_result(result, f"Source {record.domain}"))
    if result.status == "failed":
        raise typer.Exit(code=1)


@collect_app.command("schedule", help="Run the collector daily at the configured time.")
def collect_schedule(
    ctx: typer.Context,
    at: Optional[str] = typer.Option(None, "--at", help="HH:MM, defaults to schedule_time"),
) -> None:
    state = _get_state(ctx)
    scheduler = APSchedulerAdapter()
    time_of_day = at or state.global_config.schedule_time
    try:
        scheduler.schedule_daily(state.orchestrator.run, time_of_day)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    scheduler.start()
    console.print(f"Daily collection scheduled at {time_of_day}. Ctrl+C to stop.", style="green")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="yellow")
    finally:
        scheduler.shutdown()


# ----------------------------------------------------------------------
# reset
# ----------------------------------------------------------------------
@reset_app.command("export", help="Write a JSON backup of every obituary.")
def reset_export(
    ctx: typer.Context,
    stdout: bool = typer.Option(False, "--stdout", help="Print the document instead of writing it"),
) -> None:
    state = _get_state(ctx)
    if stdout:
        document, _ = export_backup(state.corpus)
        typer.echo(json.dumps(document, indent=2, ensure_ascii=False))
        return
    document, path = export_backup(state.corpus, state.repository.backups_dir())
    console.print(f"Exported {document['total_rows']} rows to {path}", style="green")


@reset_app.command("start", help="Start a Reset & Rescan session (destructive).")
def reset_start(
    ctx: typer.Context,
    understand: bool = typer.Option(False, "--i-understand", help="Acknowledge every row is deleted"),
    backup: bool = typer.Option(False, "--backup-taken", help="Acknowledge a backup was exported"),
    confirm: str = typer.Option("", "--confirm", help="Type the confirmation phrase"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        started = state.sessions.start(understand, backup, confirm)
    console.print(
        f"Session {started['session_id']} started: {started['total_rows']} rows, "
        f"batch size {started['batch_size']}.",
        style="yellow",
    )


@reset_app.command("purge", help="Delete the next batch (or all with --all).")
def reset_purge(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session id"),
    all_batches: bool = typer.Option(False, "--all", help="Loop until the purge is done"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        batch = state.sessions.purge_batch(session_id)
        _print_batch(batch)
        while all_batches and not batch["done"]:
            batch = state.sessions.purge_batch(session_id)
            _print_batch(batch)
    if batch["done"]:
        console.print("Purge complete; run `reset rescan`.", style="green")


@reset_app.command("rescan", help="Rescan all sources, or one with --source.")
def reset_rescan(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session id"),
    source: Optional[str] = typer.Option(None, "--source", help="Single source id or domain"),
    is_last: bool = typer.Option(False, "--last", help="This source completes the rescan"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        if source is None:
            result = state.sessions.rescan(session_id)
        else:
            record = _resolve_source(state, source)
            result = state.sessions.rescan_source(session_id, record.id, is_last)
    console.print(_render_result(result, "Rescan"))


@reset_app.command("resume", help="Continue the active session from its persisted phase.")
def reset_resume(
    ctx: typer.Context,
    session_id: Optional[str] = typer.Argument(None, help="Session id, defaults to the active one"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        if session_id is None:
            active = state.sessions.active()
            if active is None:
                console.print("No active reset session.", style="dim")
                raise typer.Exit(code=0)
            session_id = active.session_id
        outcome = state.sessions.resume(session_id)
    if outcome["phase"] == "purge":
        _print_batch(outcome["purge"])
        console.print("Purge complete; run `reset rescan`.", style="green")
    else:
        console.print(_render_result(CollectorResult.from_dict(outcome["result"]), "Rescan"))


@reset_app.command("cancel", help="Cancel the session and release the lock.")
def reset_cancel(ctx: typer.Context, session_id: str = typer.Argument(..., help="Session id")) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        state.sessions.cancel(session_id)
    console.print(f"Session {session_id} cancelled; deleted rows are not restored.", style="yellow")


@reset_app.command("status", help="Show the active or most recent session.")
def reset_status(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    session = state.sessions.status()
    if session is None:
        console.print("No reset session has run yet.", style="dim")
        return
    console.print(_render_session(session))


@reset_app.command("run", help="Start, purge and rescan in one go.")
def reset_run(
    ctx: typer.Context,
    understand: bool = typer.Option(False, "--i-understand", help="Acknowledge every row is deleted"),
    backup: bool = typer.Option(False, "--backup-taken", help="Acknowledge a backup was exported"),
    confirm: str = typer.Option("", "--confirm", help="Type the confirmation phrase"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        result = state.sessions.run_to_completion(understand, backup, confirm, on_batch=_print_batch)
    console.print(_render_result(result, "Rescan"))


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
@log_app.command("list", help="List per-source log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    if not logs:
        console.print("No source logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the collector log or a source log.")
def log_show(
    source: Optional[str] = typer.Option(None, "--source", help="Source domain"),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines"),
) -> None:
    path = source_log_path(source) if source else collector_log_path()
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
