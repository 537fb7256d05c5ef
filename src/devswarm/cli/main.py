"""DevSwarm (devswarm) - multi-agent code analysis from the command line."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .. import __version__
from ..core.agents import AGENT_DEFS, register_roster
from ..core.config import get_effective_config
from ..core.errors import DevSwarmError, NotFoundError
from ..core.forks import ForkManager
from ..core.intake import SubmissionIntake
from ..core.llm import NullAnalyzer, ProviderAnalyzer, build_analyzer
from ..core.orchestrator import Orchestrator
from ..core.progress import Subscription
from ..core.rules import DatabaseRuleLibrary, seed_default_rules
from ..core.store import AgentStore, SQLiteDatabase
from ..core.synthesis import SEVERITY_ORDER
from ..models.agent import Agent
from ..models.progress import MessageType
from ..models.submission import AnalysisReport, SubmissionStatus
from ..providers.base import get_ai_provider

console = Console()

SEVERITY_COLORS = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "cyan",
    "info": "dim",
}

LANGUAGE_BY_SUFFIX = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "jsx",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".py": "python",
    ".java": "java",
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".sql": "sql",
}


def detect_language(path: Path) -> Optional[str]:
    return LANGUAGE_BY_SUFFIX.get(path.suffix.lower())


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _forks_for(db: SQLiteDatabase, config: dict) -> Optional[ForkManager]:
    fork_config = config.get("forks", {})
    if not fork_config.get("enabled", True):
        return None
    return ForkManager(
        db,
        parent_service_id=fork_config.get("parent_service_id", "local"),
        ttl_hours=fork_config.get("ttl_hours", 24),
    )


async def _prepare(db: SQLiteDatabase, config: dict, seed: bool = True) -> tuple[list[Agent], int]:
    roster = await register_roster(AgentStore(db), config, _forks_for(db, config))
    added = await seed_default_rules(db) if seed else 0
    return roster, added


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def _print_progress_message(message) -> None:
    payload = message.payload
    if message.type == MessageType.ANALYSIS_STARTED:
        console.print(f"  [cyan]Analysis started[/cyan] {payload.get('submission_id', '')}")
    elif message.type == MessageType.AGENT_PROGRESS:
        status = payload.get("status")
        color = "red" if status == "failed" else "green" if status == "completed" else "white"
        console.print(
            f"  [{color}]{payload.get('progress_percent', 0):>3}%[/{color}] "
            f"{payload.get('agent_name', '')}: {payload.get('current_step') or status}"
        )
    elif message.type == MessageType.ANALYSIS_COMPLETE:
        console.print(f"  [green]Analysis complete[/green] in {payload.get('execution_time_ms', 0)}ms")
        for failed in payload.get("failed_agents", []):
            console.print(f"  [yellow]WARN[/yellow] agent {failed['agent_id']} failed: {failed['error']}")
    elif message.type == MessageType.ERROR:
        console.print(f"  [red]ERROR[/red] {payload.get('message')}: {payload.get('error')}")


async def _watch(subscription: Subscription) -> None:
    async for message in subscription:
        _print_progress_message(message)
        if message.type in (MessageType.ANALYSIS_COMPLETE, MessageType.ERROR):
            break


def print_report(report: AnalysisReport, agents: list[Agent], show_findings: bool = True) -> None:
    names = {a.id: a.name for a in agents}
    specialties = {a.id: a.specialty for a in agents}

    table = Table(title=f"Submission {report.submission_id}")
    table.add_column("Agent")
    for severity in SEVERITY_ORDER:
        table.add_column(severity.value.capitalize(), justify="right", style=SEVERITY_COLORS[severity.value])
    table.add_column("Total", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Time", justify="right")

    for result in report.results:
        counts = {severity: 0 for severity in SEVERITY_ORDER}
        for finding in result.findings:
            counts[finding.severity] += 1
        specialty = specialties.get(result.agent_id)
        color = AGENT_DEFS[specialty]["color"] if specialty else "white"
        table.add_row(
            f"[{color}]{names.get(result.agent_id, result.agent_id)}[/{color}]",
            *(str(counts[s]) for s in SEVERITY_ORDER),
            str(len(result.findings)),
            f"{result.confidence:.2f}",
            f"{result.execution_time_ms}ms",
        )

    s = report.summary
    table.add_row(
        "[bold]All agents[/bold]",
        str(s.critical_count), str(s.high_count), str(s.medium_count), str(s.low_count), str(s.info_count),
        f"[bold]{s.total_findings}[/bold]",
        "",
        f"{report.execution_time_ms}ms",
    )
    console.print(table)

    status_color = "green" if report.status == SubmissionStatus.COMPLETED else "red"
    console.print(f"  Status: [{status_color}]{report.status.value.upper()}[/{status_color}]")
    if report.error_message:
        console.print(f"  [red]{report.error_message}[/red]")

    if not show_findings:
        return
    for result in report.results:
        for finding in result.findings:
            color = SEVERITY_COLORS[finding.severity.value]
            where = f"line {finding.line_start}" if finding.line_start else "file"
            console.print(
                f"  [{color}]{finding.severity.value.upper():<8}[/{color}] {where}: "
                f"{finding.message} [dim]({finding.category})[/dim]"
            )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(__version__, prog_name="devswarm")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), help="Config file (YAML)")
@click.option("--db", "db_path", type=str, help="Database path (overrides config)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, db_path: str | None, verbose: bool) -> None:
    """DevSwarm - multi-agent code analysis."""
    _setup_logging(verbose)
    overrides = {"database": {"path": db_path}} if db_path else None
    ctx.obj = get_effective_config(Path(config_path) if config_path else None, overrides)


@cli.command("init-db")
@click.option("--seed/--no-seed", default=True, help="Load the bundled detection rules")
@click.pass_obj
def init_db(config: dict, seed: bool) -> None:
    """Create the database, register the agent roster and seed rules."""

    async def run() -> tuple[list[Agent], int]:
        db = await SQLiteDatabase.connect(config["database"]["path"])
        try:
            return await _prepare(db, config, seed=seed)
        finally:
            await db.close()

    roster, added = asyncio.run(run())
    console.print(f"  [green]OK[/green] Database: {config['database']['path']}")
    for agent in roster:
        color = AGENT_DEFS[agent.specialty]["color"]
        console.print(f"  [{color}]{agent.name}[/{color}] ({agent.specialty.value})")
    if seed:
        console.print(f"  [green]OK[/green] {added} rules added")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", "-l", type=str, help="Source language (detected from the extension by default)")
@click.option("--agents", "-a", type=str, help="Comma-separated specialties to run")
@click.option("--no-ai", is_flag=True, help="Skip AI-assisted analysis")
@click.option("--watch", "-w", is_flag=True, help="Print live progress")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def analyze(
    config: dict,
    file: str,
    language: str | None,
    agents: str | None,
    no_ai: bool,
    watch: bool,
    as_json: bool,
) -> None:
    """Analyze FILE with the agent swarm."""
    path = Path(file)
    language = language or detect_language(path)
    if not language:
        console.print(f"  [red]ERROR[/red] Cannot detect language of {path.name}; pass --language")
        sys.exit(2)

    agent_list = [a.strip().lower() for a in agents.split(",")] if agents else None
    code = path.read_text(encoding="utf-8")

    async def run() -> tuple[AnalysisReport, list[Agent]]:
        db = await SQLiteDatabase.connect(config["database"]["path"])
        try:
            await _prepare(db, config)
            analyzer = NullAnalyzer() if no_ai else build_analyzer(config)
            orchestrator = Orchestrator(db, config, analyzer=analyzer)
            intake = SubmissionIntake(orchestrator)

            submission_id = await intake.start_analysis(code, language, path.name, agent_list)
            watcher = None
            subscription = None
            if watch:
                subscription = orchestrator.bus.subscribe(submission_id)
                watcher = asyncio.create_task(_watch(subscription))

            report = await orchestrator.wait(submission_id)
            if subscription is not None:
                orchestrator.bus.detach(subscription)
                await watcher
            return report, await orchestrator.list_agents()
        finally:
            await db.close()

    try:
        report, roster = asyncio.run(run())
    except DevSwarmError as e:
        console.print(f"  [red]ERROR[/red] {e.message}")
        sys.exit(2)

    if as_json:
        click.echo(report.model_dump_json(indent=2))
    else:
        print_report(report, roster)

    if report.status == SubmissionStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.pass_obj
def agents(config: dict) -> None:
    """List the agent roster."""

    async def run() -> list[Agent]:
        db = await SQLiteDatabase.connect(config["database"]["path"])
        try:
            return await AgentStore(db).list_all()
        finally:
            await db.close()

    roster = asyncio.run(run())
    if not roster:
        console.print("  No agents registered. Run: devswarm init-db")
        return

    table = Table()
    table.add_column("Agent")
    table.add_column("Specialty")
    table.add_column("Status")
    table.add_column("Fork")
    for agent in roster:
        color = AGENT_DEFS[agent.specialty]["color"]
        table.add_row(
            f"[{color}]{agent.name}[/{color}]",
            agent.specialty.value,
            agent.status.value,
            agent.fork_id or "-",
        )
    console.print(table)


@cli.command()
@click.argument("submission_id")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def show(config: dict, submission_id: str, as_json: bool) -> None:
    """Print the stored report for SUBMISSION_ID."""

    async def run() -> tuple[AnalysisReport, list[Agent]]:
        db = await SQLiteDatabase.connect(config["database"]["path"])
        try:
            orchestrator = Orchestrator(db, config)
            return await orchestrator.get_analysis(submission_id), await orchestrator.list_agents()
        finally:
            await db.close()

    try:
        report, roster = asyncio.run(run())
    except NotFoundError as e:
        console.print(f"  [red]ERROR[/red] {e.message}")
        sys.exit(1)

    if as_json:
        click.echo(report.model_dump_json(indent=2))
    else:
        print_report(report, roster)


@cli.command()
@click.option("--language", "-l", type=str, help="Only rules for this language")
@click.option("--query", "-q", type=str, help="Text to look for in rule text or description")
@click.option("--limit", type=int, default=10)
@click.pass_obj
def rules(config: dict, language: str | None, query: str | None, limit: int) -> None:
    """Search the detection rule library."""

    async def run():
        db = await SQLiteDatabase.connect(config["database"]["path"])
        try:
            return await DatabaseRuleLibrary(db).search_rules(query, language, limit)
        finally:
            await db.close()

    found = asyncio.run(run())
    table = Table(title=f"{len(found)} rules")
    table.add_column("Id")
    table.add_column("Pattern")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Language")
    for rule in found:
        table.add_row(
            rule.id,
            rule.pattern_text,
            rule.category,
            f"[{SEVERITY_COLORS[rule.severity.value]}]{rule.severity.value}[/]",
            rule.language,
        )
    console.print(table)


@cli.group()
def forks() -> None:
    """Manage agent forks."""


@forks.command("cleanup")
@click.pass_obj
def forks_cleanup(config: dict) -> None:
    """Expire forks past their expiry time."""

    async def run() -> tuple[int, int]:
        db = await SQLiteDatabase.connect(config["database"]["path"])
        try:
            manager = _forks_for(db, config) or ForkManager(db)
            expired = await manager.cleanup_expired_forks()
            return expired, await manager.get_active_fork_count()
        finally:
            await db.close()

    expired, active = asyncio.run(run())
    console.print(f"  [green]OK[/green] {expired} forks expired, {active} active")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", "-l", type=str)
@click.pass_obj
def explain(config: dict, file: str, language: str | None) -> None:
    """Ask the configured AI provider to explain FILE."""
    provider = get_ai_provider(config)
    if provider is None or not provider.is_configured:
        console.print("  [red]ERROR[/red] No AI provider configured. Set OPENAI_API_KEY or ANTHROPIC_API_KEY.")
        sys.exit(1)

    path = Path(file)
    language = language or detect_language(path) or "plaintext"
    explanation = asyncio.run(
        ProviderAnalyzer(provider).explain_code(path.read_text(encoding="utf-8"), language)
    )
    console.print(explanation)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
