"""CLI interface for powerlevel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from powerlevel.classifier import classify_message
from powerlevel.config import Config
from powerlevel.core import apply_event, flush, reconcile_external
from powerlevel.core.cache import (
    CacheError,
    CacheStore,
    add_epic,
    find_epic_by_plan_file,
    mark_dirty,
    sub_items_for,
)
from powerlevel.core.creator import create_epic_from_plan
from powerlevel.core.models import DetectedEvent, Epic, EpicStatus, EventKind, RepoContext
from powerlevel.core.state_machine import apply_events, transition_status
from powerlevel.parsers.plan import PlanParseError, parse_plan_file
from powerlevel.repo import RepoDetectionError, detect_repo
from powerlevel.session import SessionRunner
from powerlevel.sync.github_client import GitHubClient, GitHubClientError
from powerlevel.sync.labels import LabelManager

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

    from powerlevel.core.models import CacheSnapshot

__version__ = "0.1.0"

app = typer.Typer(
    name="powerlevel",
    help="Track plan-driven work as GitHub epics with sub-issues and a progress journey.",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger(__name__)

EXPECTED_ERRORS = (CacheError, GitHubClientError, PlanParseError, RepoDetectionError, ValueError)

STATUS_COLORS = {
    EpicStatus.PLANNING: "dim",
    EpicStatus.IN_PROGRESS: "blue",
    EpicStatus.REVIEW: "yellow",
    EpicStatus.DONE: "green",
}


@dataclass
class CliState:
    """Options shared by all commands."""

    config_path: Path | None = None
    repo: str | None = None
    token: str | None = None
    dry_run: bool = False


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=False)],
        force=True,
    )


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


def _state(ctx: typer.Context) -> CliState:
    if isinstance(ctx.obj, CliState):
        return ctx.obj
    return CliState()


class Workspace:
    """Config, repository, cache store and snapshot for one invocation."""

    def __init__(self, state: CliState) -> None:
        self.state = state
        self.config = Config.load(state.config_path)
        if state.dry_run:
            self.config.sync.dry_run = True
        self.context = RepoContext.parse(state.repo) if state.repo else detect_repo()
        self.store = CacheStore(self.config.cache_dir)
        self.snapshot: CacheSnapshot = self.store.load(self.context)

    def client(self) -> GitHubClient:
        sync = self.config.sync
        return GitHubClient(
            self.context.full_name,
            token=self.state.token,
            dry_run=sync.dry_run,
            timeout=sync.timeout,
            max_retries=sync.max_retries,
            initial_backoff=sync.initial_backoff,
        )

    def save(self) -> Path:
        return self.store.save(self.context, self.snapshot)


def _run(ctx: typer.Context, action: Callable[[Workspace], Coroutine[Any, Any, None] | None]) -> None:
    """Build the workspace, run a (possibly async) action and map errors to exit codes."""
    try:
        workspace = Workspace(_state(ctx))
        outcome = action(workspace)
        if asyncio.iscoroutine(outcome):
            asyncio.run(outcome)
    except EXPECTED_ERRORS as e:
        logger.debug("Command failed", exc_info=True)
        raise _fail(str(e)) from e


@app.callback()
def main(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
    config: Annotated[Path | None, typer.Option("--config", "-c", help="Path to config.yaml")] = None,
    repo: Annotated[
        str | None, typer.Option("--repo", "-R", help="Repository as owner/name (default: git remote origin)")
    ] = None,
    token: Annotated[str | None, typer.Option("--token", help="GitHub token (default: $GITHUB_TOKEN)")] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Log remote writes without executing")] = False,
) -> None:
    """Track plan-driven work as GitHub epics."""
    _configure_logging(verbose)
    ctx.obj = CliState(config_path=config, repo=repo, token=token, dry_run=dry_run)


@app.command()
def version() -> None:
    """Show the installed version."""
    console.print(f"powerlevel {__version__}")


# =============================================================================
# Epic creation
# =============================================================================


@app.command()
def track(
    ctx: typer.Context,
    plan_file: Annotated[Path, typer.Argument(help="Plan markdown file, e.g. docs/plans/feature.md")],
    actor: Annotated[str | None, typer.Option("--actor", "-a", help="Agent recorded on the journey")] = None,
) -> None:
    """Create an epic and its sub-issues from a plan file."""

    async def action(ws: Workspace) -> None:
        plan = parse_plan_file(plan_file)
        existing = find_epic_by_plan_file(ws.snapshot, plan_file.as_posix())
        if existing is not None:
            raise ValueError(f"{plan_file} is already tracked by epic #{existing.number}")

        async with ws.client() as client:
            runner = SessionRunner(ws.context, ws.config, client, ws.store, snapshot=ws.snapshot)
            board = await runner.ensure_board()
            labels = LabelManager(client, create_if_missing=ws.config.sync.create_labels_if_missing)
            epic = await create_epic_from_plan(
                ws.snapshot, client, plan, plan_file.as_posix(), board=board, label_manager=labels, actor=actor
            )
        if client.dry_run:
            console.print(f"[yellow]Dry run:[/yellow] would create '{epic.title}' with {len(plan.tasks)} tasks")
            return
        ws.save()
        console.print(f"[green]Created epic #{epic.number}[/green] {epic.title} ({len(epic.sub_items)} sub-issues)")

    _run(ctx, action)


@app.command("track-external")
def track_external(
    ctx: typer.Context,
    epic: Annotated[int, typer.Argument(help="Existing epic issue number")],
    repo: Annotated[str, typer.Argument(help="External repository as owner/name")],
    description: Annotated[str, typer.Option("--description", "-d", help="Shown on the epic body")] = "",
) -> None:
    """Mark an epic as mirroring an external repository's open issues."""

    async def action(ws: Workspace) -> None:
        target = RepoContext.parse(repo).full_name
        async with ws.client() as client:
            issue = await client.get_issue(epic)
            statuses = [s for s in map(EpicStatus.from_label, issue.labels) if s is not None]
            add_epic(
                ws.snapshot,
                Epic(
                    number=epic,
                    title=issue.title,
                    goal=description,
                    state="closed" if issue.state == "closed" else "open",
                    status=statuses[0] if statuses else EpicStatus.PLANNING,
                    labels=issue.labels,
                    external_target=target,
                ),
            )
            result = await reconcile_external(
                ws.snapshot,
                client,
                label_filters=ws.config.external.label_filters,
                concurrency=ws.config.sync.concurrency,
            )
        if epic not in result.updated:
            # Nothing mirrored yet; the next flush writes the external layout
            mark_dirty(ws.snapshot, epic)
        ws.save()
        items = len(ws.snapshot.epics[epic].external_items)
        console.print(f"[green]Epic #{epic} now tracks {target}[/green] ({items} open issues mirrored)")

    _run(ctx, action)


# =============================================================================
# Events
# =============================================================================


@app.command()
def event(
    ctx: typer.Context,
    kind: Annotated[EventKind, typer.Argument(help="Event kind")],
    plan: Annotated[str | None, typer.Option("--plan", "-p", help="Plan file the event refers to")] = None,
    issue: Annotated[int | None, typer.Option("--issue", "-i", help="Issue number (task-completion)")] = None,
    actor: Annotated[str | None, typer.Option("--actor", "-a", help="Agent or commit that produced the event")] = None,
) -> None:
    """Apply one workflow event to the cache."""

    def action(ws: Workspace) -> None:
        before = {n: len(e.journey) for n, e in ws.snapshot.epics.items()}
        apply_event(ws.snapshot, DetectedEvent(kind=kind, plan_file=plan, issue_number=issue, actor=actor))
        touched = [n for n, e in ws.snapshot.epics.items() if len(e.journey) != before.get(n, 0)]
        ws.save()
        if touched:
            epic = ws.snapshot.epics[touched[0]]
            console.print(f"[green]Recorded {kind.value}[/green] on epic #{epic.number} (status: {epic.status.value})")
        else:
            console.print(f"[yellow]No epic matched the {kind.value} event[/yellow]")

    _run(ctx, action)


@app.command()
def classify(
    ctx: typer.Context,
    text: Annotated[str, typer.Argument(help="Message text to classify")],
    actor: Annotated[str | None, typer.Option("--actor", "-a", help="Agent that wrote the message")] = None,
) -> None:
    """Detect workflow events in a message and apply them."""

    def action(ws: Workspace) -> None:
        events = classify_message(text, actor=actor)
        if not events:
            console.print("[dim]No events detected[/dim]")
            return
        apply_events(ws.snapshot, events)
        ws.save()
        for detected in events:
            target = detected.plan_file or (f"#{detected.issue_number}" if detected.issue_number else "")
            console.print(f"  {detected.kind.value} {target}".rstrip())

    _run(ctx, action)


@app.command("set-status")
def set_status(
    ctx: typer.Context,
    epic: Annotated[int, typer.Argument(help="Epic issue number")],
    status: Annotated[EpicStatus, typer.Argument(help="New status")],
    actor: Annotated[str | None, typer.Option("--actor", "-a", help="Who made the change")] = None,
) -> None:
    """Set an epic's status manually."""

    def action(ws: Workspace) -> None:
        updated = transition_status(ws.snapshot, epic, status, actor=actor)
        ws.save()
        console.print(f"Epic #{updated.number}: [{STATUS_COLORS[status]}]{status.value}[/{STATUS_COLORS[status]}]")

    _run(ctx, action)


# =============================================================================
# Synchronization
# =============================================================================


@app.command()
def sync(ctx: typer.Context) -> None:
    """Push dirty epics to GitHub now."""
    failed: list[int] = []

    async def action(ws: Workspace) -> None:
        async with ws.client() as client:
            result = await flush(ws.snapshot, client, concurrency=ws.config.sync.concurrency)
        ws.save()
        if not result.succeeded and not result.failed and not result.pending:
            console.print("[dim]Nothing to sync[/dim]")
            return
        if result.succeeded:
            console.print(f"[green]Updated {len(result.succeeded)} epics:[/green] {_numbers(result.succeeded)}")
        if result.pending:
            console.print(f"[yellow]Dry run:[/yellow] would update {_numbers(result.pending)}; still dirty")
        failed.extend(result.failed)

    _run(ctx, action)
    if failed:
        raise _fail(f"Failed to update epics {_numbers(failed)}; they stay dirty and will be retried")


@app.command("session-start")
def session_start(ctx: typer.Context) -> None:
    """Reconcile external epics and refresh the cache from GitHub."""

    async def action(ws: Workspace) -> None:
        async with ws.client() as client:
            runner = SessionRunner(ws.context, ws.config, client, ws.store, snapshot=ws.snapshot)
            result = await runner.start()
        if result.board:
            console.print(f"Project board: #{result.board.number} {result.board.title}")
        console.print(
            f"External epics: {len(result.reconcile.updated)} updated, "
            f"{len(result.reconcile.unchanged)} unchanged, {len(result.reconcile.failed)} failed"
        )
        if result.reconcile.pending:
            console.print(f"[yellow]Dry run:[/yellow] would rewrite {_numbers(result.reconcile.pending)}")
        console.print(f"Refreshed {len(result.refreshed)} epics")

    _run(ctx, action)


@app.command("session-end")
def session_end(
    ctx: typer.Context,
    cwd: Annotated[Path | None, typer.Option("--cwd", help="Working tree to scan for commits")] = None,
) -> None:
    """Record completed tasks from recent commits and flush."""

    async def action(ws: Workspace) -> None:
        async with ws.client() as client:
            runner = SessionRunner(ws.context, ws.config, client, ws.store, cwd=cwd, snapshot=ws.snapshot)
            result = await runner.end()
        if result.completed_tasks:
            console.print(f"Completed tasks: {_numbers(result.completed_tasks)}")
        if result.flush is not None:
            console.print(f"Flushed {len(result.flush.succeeded)} epics")
            if result.flush.failed:
                console.print(f"[yellow]Still dirty:[/yellow] {_numbers(result.flush.failed)}")
            if result.flush.pending:
                console.print(f"[yellow]Dry run:[/yellow] would update {_numbers(result.flush.pending)}")

    _run(ctx, action)


# =============================================================================
# Inspection
# =============================================================================


def _numbers(numbers: list[int]) -> str:
    return ", ".join(f"#{n}" for n in numbers)


@app.command()
def status(
    ctx: typer.Context,
    epic: Annotated[int | None, typer.Argument(help="Show one epic's journey")] = None,
) -> None:
    """Show cached epics."""

    def action(ws: Workspace) -> None:
        if epic is not None:
            _show_epic(ws.snapshot, epic)
            return
        if not ws.snapshot.epics:
            console.print(f"[yellow]No epics tracked for {ws.context.full_name}[/yellow]")
            return

        table = Table(title=ws.context.full_name)
        table.add_column("Epic")
        table.add_column("Title")
        table.add_column("Status")
        table.add_column("Tasks")
        table.add_column("Dirty")

        for number in sorted(ws.snapshot.epics):
            item = ws.snapshot.epics[number]
            color = STATUS_COLORS[item.status]
            if item.is_external:
                closed = sum(1 for x in item.external_items if x.closed)
                tasks = f"{closed}/{len(item.external_items)} ({item.external_target})"
            else:
                subs = sub_items_for(ws.snapshot, item)
                tasks = f"{sum(1 for s in subs if s.is_closed)}/{len(subs)}"
            table.add_row(
                f"#{number}",
                item.title,
                f"[{color}]{item.status.value}[/{color}]" + (" (closed)" if item.state == "closed" else ""),
                tasks,
                "yes" if item.dirty else "",
            )

        console.print(table)

    _run(ctx, action)


def _show_epic(snapshot: CacheSnapshot, number: int) -> None:
    item = snapshot.epics.get(number)
    if item is None:
        raise _fail(f"Epic #{number} not found in cache")

    console.print(f"\n[bold]Epic #{item.number}[/bold] {item.title}")
    console.print(f"  Status: {item.status.value} ({item.state})")
    if item.plan_file:
        console.print(f"  Plan: {item.plan_file}")
    if item.external_target:
        console.print(f"  Tracks: {item.external_target}")
    for entry in item.journey:
        actor = f" [dim]({entry.actor})[/dim]" if entry.actor else ""
        console.print(f"  {entry.timestamp.strftime('%Y-%m-%d %H:%M')} {entry.message}{actor}")


if __name__ == "__main__":
    app()
