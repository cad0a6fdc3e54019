"""CLI entry point for mentorlens."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path

import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.table import Table

from mentorlens.activity import read_activity_log
from mentorlens.analysis.concepts import ConceptCatalog
from mentorlens.config import Config
from mentorlens.coordinator import Coordinator
from mentorlens.models import PredictionResponse, ProgressEvent, ProgressKind, SkillLevel
from mentorlens.storage.db import get_connection
from mentorlens.storage.repository import ProfileStore

app = typer.Typer(help="Predict mistakes, explain code history and track skill growth.")

LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _open(db_path: str | None) -> tuple[Coordinator, Config, sqlite3.Connection]:
    config = Config.load()
    if db_path:
        config.db_path = Path(db_path)
    for issue in config.validate():
        rprint(f"[yellow]Config warning: {issue}[/yellow]")
    conn = get_connection(config.db_path)
    return Coordinator.from_config(config, ProfileStore(conn)), config, conn


def _read_code(file: Path) -> tuple[str, str]:
    if not file.exists():
        rprint(f"[red]File not found: {file}[/red]")
        raise typer.Exit(1)
    language = LANGUAGE_BY_SUFFIX.get(file.suffix.lower(), "")
    return file.read_text(), language


def _degraded_note(degraded: bool) -> None:
    if degraded:
        rprint("[yellow](degraded: some data or generated text was unavailable)[/yellow]")


@app.command()
def predict(
    file: Path = typer.Argument(help="Source file to analyze"),
    language: str = typer.Option(None, "--language", "-l", help="Override language detection"),
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Predict the most likely mistake in a file."""
    code, detected = _read_code(file)
    coordinator, config, conn = _open(db_path)
    try:
        response = asyncio.run(
            coordinator.predict(code, language or detected, user_id=user or config.user_id)
        )
        if format == "json":
            typer.echo(response.to_json())
            return

        rprint(f"[bold]Prediction[/bold] (confidence {response.confidence:.2f})")
        rprint(f"  {response.prediction}")
        rprint(f"\n[bold]Question:[/bold] {response.question}")
        rprint(f"\n[bold]Mental model:[/bold] {response.mental_model}")
        if response.findings:
            rprint("\n[bold]Findings:[/bold]")
            for f in response.findings:
                rprint(f"  line {f.line_range[0]}: {f.pattern_type} ({f.severity:.1f})")
        rprint(f"\nRespond with: mentorlens respond {response.prediction_id} correct|incorrect|skipped")
        _degraded_note(response.degraded)
    finally:
        coordinator.close()
        conn.close()


@app.command()
def story(
    path: str = typer.Argument(help="File path inside the repository"),
    start: int = typer.Argument(help="First line (1-based)"),
    end: int = typer.Argument(help="Last line (inclusive)"),
    level: SkillLevel = typer.Option(SkillLevel.JUNIOR, "--level", help="Reader skill level"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Tell the story of how a line range evolved."""
    coordinator, config, conn = _open(db_path)
    selected = ""
    source = config.repo_dir / path
    if source.is_file():
        lines = source.read_text().splitlines()
        selected = "\n".join(lines[start - 1 : end])

    try:
        response = asyncio.run(
            coordinator.storytelling(path, start, end, selected_code=selected, skill_level=level)
        )
        if format == "json":
            typer.echo(response.to_json())
            return

        if not response.history_available:
            rprint(f"[yellow]No commit history found for {path}:{start}-{end}[/yellow]")
        rprint(response.narrative)
        if response.decisions:
            rprint("\n[bold]Decisions:[/bold]")
            for d in response.decisions:
                rprint(f"  [{d.category.value}] {d.description} ({d.commit_id[:8]})")
        if not response.history_complete:
            rprint("[yellow](history is partial: the commit log timed out)[/yellow]")
        _degraded_note(response.degraded)
    finally:
        coordinator.close()
        conn.close()


@app.command()
def analyze(
    files: list[Path] = typer.Argument(help="Source files to analyze"),
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Find weak concepts in your code and get practice challenges."""
    snippets = [_read_code(f) for f in files]
    coordinator, config, conn = _open(db_path)
    try:
        response = asyncio.run(
            coordinator.analyze_skill(snippets, user_id=user or config.user_id)
        )
        if format == "json":
            typer.echo(response.to_json())
            return

        if not response.weak_concepts:
            rprint("[green]No weak concepts found.[/green]")
        else:
            table = Table(title="Weak concepts")
            table.add_column("Concept")
            table.add_column("Score", justify="right")
            for score in response.scores:
                if score.concept in response.weak_concepts:
                    table.add_row(score.concept.name, f"{score.score:.2f}")
            rprint(table)

        for challenge in response.challenges:
            rprint(f"\n[bold]{challenge['title']}[/bold] ({challenge['concept']})")
            rprint(f"  {challenge['task']}")
            if challenge.get("hint"):
                rprint(f"  [dim]Hint: {challenge['hint']}[/dim]")
        rprint(f"\nSkill level: [bold]{response.skill_level.value}[/bold]")
        _degraded_note(response.degraded)
    finally:
        coordinator.close()
        conn.close()


@app.command()
def explain(
    concept_id: str = typer.Argument(help="Concept id (see 'mentorlens concepts')"),
    file: Path = typer.Option(None, "--file", help="Use this file as the example"),
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Explain the mental model behind a concept."""
    code, language = _read_code(file) if file else ("", "")
    coordinator, config, conn = _open(db_path)
    try:
        response = asyncio.run(
            coordinator.explain_concept(
                concept_id, user_id=user or config.user_id, code=code, language=language
            )
        )
        rprint(f"[bold]{response.concept.name}[/bold]")
        rprint(response.mental_model)
        _degraded_note(response.degraded)
    except ValueError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        coordinator.close()
        conn.close()


@app.command()
def progress(
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show time saved, mastered concepts and prediction accuracy."""
    coordinator, config, conn = _open(db_path)
    try:
        p = coordinator.get_progress(user or config.user_id)
        rprint(f"[bold]Progress for {p.user_id}:[/bold]")
        rprint(f"  Skill level:     {p.skill_level.value}")
        rprint(f"  Time saved:      {p.time_saved_minutes:.0f} min")
        rprint(f"  Accuracy:        {p.accuracy:.0%} over {p.predictions_answered} answered")
        rprint(f"  Mastered:        {', '.join(p.mastered_concepts) or 'none yet'}")
        rprint(f"  Events recorded: {p.events_recorded}")
        if p.mastery:
            rprint("\n[bold]Mastery:[/bold]")
            for concept_id, level in p.mastery.items():
                rprint(f"  {concept_id}: {'#' * level}{'.' * (5 - level)} {level}/5")
    finally:
        coordinator.close()
        conn.close()


@app.command()
def respond(
    prediction_id: str = typer.Argument(help="Prediction id printed by 'mentorlens predict'"),
    response: PredictionResponse = typer.Argument(help="correct, incorrect or skipped"),
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Tell mentorlens whether a prediction caught a real mistake."""
    coordinator, config, conn = _open(db_path)
    event = ProgressEvent(
        kind=ProgressKind.PREDICTION_RESPONSE,
        prediction_id=prediction_id,
        response=response,
    )
    try:
        recorded = asyncio.run(coordinator.post_progress(user or config.user_id, event))
    finally:
        coordinator.close()
        conn.close()

    if not recorded:
        rprint("[red]Response not recorded (unknown prediction, or already answered).[/red]")
        raise typer.Exit(1)
    rprint("[green]Response recorded.[/green]")


@app.command()
def complete(
    concept_ids: list[str] = typer.Argument(help="Concepts the challenge covered"),
    minutes: float = typer.Option(0.0, "--minutes", help="Minutes the challenge saved you"),
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Record a completed challenge."""
    coordinator, config, conn = _open(db_path)
    event = ProgressEvent(
        kind=ProgressKind.CHALLENGE_COMPLETED,
        concept_ids=concept_ids,
        time_saved_minutes=minutes,
    )
    try:
        recorded = asyncio.run(coordinator.post_progress(user or config.user_id, event))
    finally:
        coordinator.close()
        conn.close()

    if not recorded:
        rprint("[red]Progress not recorded (unknown concept id?). See 'mentorlens concepts'.[/red]")
        raise typer.Exit(1)
    rprint("[green]Challenge recorded.[/green]")


@app.command()
def reset(
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Delete your skill profile and progress history."""
    config = Config.load()
    user_id = user or config.user_id
    if not yes:
        typer.confirm(f"Delete the skill profile for '{user_id}'?", abort=True)

    coordinator, _config, conn = _open(db_path)
    try:
        asyncio.run(coordinator.reset(user_id))
    finally:
        coordinator.close()
        conn.close()
    rprint(f"[green]Profile for '{user_id}' reset.[/green]")


@app.command()
def predictions(
    user: str = typer.Option(None, "--user", "-u", help="User id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of predictions to show"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """List recent predictions and how you answered them."""
    config = Config.load()
    db = Path(db_path) if db_path else config.db_path
    if not db.exists():
        rprint(f"[red]Database not found at {db}. Run 'mentorlens predict' first.[/red]")
        raise typer.Exit(1)

    conn = get_connection(db)
    store = ProfileStore(conn)
    try:
        recent = store.list_predictions(user or config.user_id, limit=limit)
        if not recent:
            rprint("No predictions yet.")
            return
        table = Table(title=f"Recent predictions for {user or config.user_id}")
        table.add_column("Id")
        table.add_column("When")
        table.add_column("Confidence", justify="right")
        table.add_column("Response")
        table.add_column("Prediction")
        for p in recent:
            table.add_row(
                p.id[:8],
                p.created_at.strftime("%Y-%m-%d %H:%M"),
                f"{p.confidence:.2f}",
                p.response.value if p.response else "-",
                p.predicted_mistake[:60],
            )
        rprint(table)
    finally:
        conn.close()


@app.command()
def activity(
    tool: str = typer.Option(None, "--tool", help="Only show calls to this MCP tool"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show"),
) -> None:
    """Show recent MCP tool calls from the activity log."""
    entries = read_activity_log(limit=limit, tool_name=tool)
    if not entries:
        rprint("No tool calls logged yet.")
        return
    table = Table(title="Recent tool calls")
    table.add_column("Time")
    table.add_column("Tool")
    table.add_column("ms", justify="right")
    table.add_column("Status")
    for e in entries:
        if e.get("error"):
            status = "[red]error[/red]"
        elif e.get("degraded"):
            status = "[yellow]degraded[/yellow]"
        else:
            status = "ok"
        table.add_row(
            e.get("timestamp", "")[:19],
            e.get("tool_name", ""),
            str(e.get("duration_ms", "")),
            status,
        )
    rprint(table)


@app.command()
def concepts() -> None:
    """List the concepts mentorlens tracks."""
    config = Config.load()
    catalog = ConceptCatalog.load(config.concepts_path)
    table = Table(title=f"Concepts (rules {catalog.version})")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Category")
    for c in catalog.concepts:
        table.add_row(c.id, c.name, c.category)
    rprint(table)


@app.command()
def serve() -> None:
    """Start the MCP server (called by the editor automatically)."""
    from mentorlens.mcp_server import main as mcp_main
    asyncio.run(mcp_main())


if __name__ == "__main__":
    app()
