"""Main CLI entry point for magi."""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__, db
from .config import settings
from .errors import MagiError
from .service import Envelope, MagiService
from .workflow import StepName

console = Console()

CREDENTIAL_ENV = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "grok": ("XAI_API_KEY", "GROK_API_KEY"),
}

STEP_ORDER = (StepName.PROPOSE, StepName.VOTE, StepName.CONSENSUS)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def credentials_from_env() -> dict[str, str]:
    keys: dict[str, str] = {}
    for provider, names in CREDENTIAL_ENV.items():
        for name in names:
            value = os.getenv(name, "").strip()
            if value:
                keys[provider] = value
                break
    return keys


async def _with_service(action: Callable[[MagiService], Awaitable[Any]]) -> Any:
    service = MagiService(db.SqlSessionRepository(), db.SqlChunkStore())
    try:
        return await action(service)
    finally:
        await service.aclose()


def _run(action: Callable[[MagiService], Awaitable[Any]]) -> Any:
    return asyncio.run(_with_service(action))


def _fail(envelope: Envelope) -> None:
    console.print(f"[red]Error ({envelope.status_code}):[/red] {envelope.error}")


def _print_diagnostics(diagnostics: dict[str, Any]) -> None:
    totals = diagnostics["totals"]
    table = Table(title=f"Diagnostics: {diagnostics['step']}")
    table.add_column("Agent", style="cyan")
    table.add_column("Proposals")
    table.add_column("Votes cast")
    table.add_column("Critiques")
    table.add_column("Fallbacks")
    for agent in diagnostics["agents"]:
        fallbacks = agent["fallback_count"]
        table.add_row(
            agent["name"],
            str(len(agent["proposals"])),
            str(len(agent["votes_cast"])),
            str(len(agent["critiques_authored"])),
            f"[yellow]{fallbacks}[/yellow]" if fallbacks else "0",
        )
    console.print(table)
    console.print(
        f"Totals: {totals['proposals']} proposals, {totals['votes']} votes, "
        f"{totals['consensus']} consensus"
    )
    for line in diagnostics["events"]:
        console.print(f"  [dim]•[/dim] {line}")


def _print_step(envelope: Envelope) -> None:
    diagnostics = envelope.data.get("diagnostics")
    if not envelope.ok:
        _fail(envelope)
    else:
        step = envelope.data.get("step")
        console.print(f"[green]{step} step completed[/green]")
        final = envelope.data.get("final_message")
        if final:
            console.print(Panel(final["content"], title=f"Consensus (#{final['id']})"))
    if diagnostics:
        _print_diagnostics(diagnostics)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """MAGI deliberation CLI.

    Three agents (CASPER, BALTHASAR, MELCHIOR) propose answers, score each
    other and settle on a consensus.
    """
    configure_logging(verbose)


@main.command(name="init-db")
def init_db() -> None:
    """Create all tables directly (development only; prefer alembic)."""
    asyncio.run(db.init_db())
    console.print("[green]Tables created[/green]")


@main.command(name="schema-check", help="Check DB schema readiness for current code.")
def schema_check() -> None:
    async def check() -> None:
        from sqlalchemy import text

        async with db.get_session() as session:
            result = await session.execute(
                text(
                    """
                    SELECT table_name FROM information_schema.tables
                    WHERE table_name LIKE 'magi_%'
                    """
                )
            )
            tables = {row[0] for row in result}

        required = {table.name for table in db.Base.metadata.sorted_tables}
        missing = required - tables
        if missing:
            console.print(f"[red]Missing required tables: {sorted(missing)}[/red]")
            console.print("Run: `alembic upgrade head`")
            raise SystemExit(1)
        console.print("[green]Schema ready[/green]")

    try:
        asyncio.run(check())
    except MagiError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise SystemExit(1) from exc


@main.command()
def agents() -> None:
    """List the deliberating agents (seeding them when missing)."""
    envelope: Envelope = _run(lambda service: service.list_agents())
    if not envelope.ok:
        _fail(envelope)
        raise SystemExit(1)

    table = Table(title="Agents")
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Model")
    for agent in envelope.data["agents"]:
        table.add_row(agent["slug"], agent["name"], agent["provider"], agent["model"] or "-")
    console.print(table)


@main.command()
@click.argument("question")
@click.option("--user", "user_id", required=True, help="Owner of the session")
@click.option("--artifact", "artifact_id", default=None, help="Uploaded bundle id")
@click.option("--live-url", default=None, help="Live site to snapshot for context")
def ask(question: str, user_id: str, artifact_id: str | None, live_url: str | None) -> None:
    """Create a session for QUESTION."""
    envelope: Envelope = _run(
        lambda service: service.create_session(
            user_id, question, artifact_id=artifact_id, live_url=live_url
        )
    )
    if not envelope.ok:
        _fail(envelope)
        raise SystemExit(1)
    console.print(f"[green]Session created:[/green] {envelope.data['session_id']}")


@main.command()
@click.argument("session_id")
@click.argument("step", type=click.Choice([s.value for s in StepName]))
def step(session_id: str, step: str) -> None:
    """Run one STEP (propose, vote, consensus) on SESSION_ID."""
    keys = credentials_from_env()
    envelope: Envelope = _run(
        lambda service: service.trigger_step(session_id, {"step": step, "credentials": keys})
    )
    _print_step(envelope)
    if not envelope.ok:
        raise SystemExit(1)


@main.command()
@click.argument("question")
@click.option("--user", "user_id", required=True, help="Owner of the session")
@click.option("--artifact", "artifact_id", default=None, help="Uploaded bundle id")
@click.option("--live-url", default=None, help="Live site to snapshot for context")
def deliberate(question: str, user_id: str, artifact_id: str | None, live_url: str | None) -> None:
    """Create a session and run propose, vote and consensus in order."""
    keys = credentials_from_env()

    async def run_all(service: MagiService) -> bool:
        created = await service.create_session(
            user_id, question, artifact_id=artifact_id, live_url=live_url
        )
        if not created.ok:
            _fail(created)
            return False
        session_id = created.data["session_id"]
        console.print(f"Session {session_id}")
        for name in STEP_ORDER:
            envelope = await service.trigger_step(
                session_id, {"step": name.value, "credentials": keys}
            )
            _print_step(envelope)
            if not envelope.ok:
                return False
        return True

    if not _run(run_all):
        raise SystemExit(1)


@main.command()
@click.argument("session_id")
def show(session_id: str) -> None:
    """Show messages, votes and consensus of SESSION_ID."""
    envelope: Envelope = _run(lambda service: service.get_session(session_id))
    if not envelope.ok:
        _fail(envelope)
        raise SystemExit(1)

    session = envelope.data["session"]
    agent_names = {a["id"]: a["name"] for a in envelope.data["agents"]}
    console.print(
        Panel(
            f"[bold]{session['question']}[/bold]\n\n"
            f"Status: [cyan]{session['status']}[/cyan]\n"
            f"Live URL: {session['live_url'] or '-'}\n"
            f"Error: {session['error'] or '-'}",
            title=f"Session {session['id']}",
        )
    )

    messages = Table(title="Messages")
    messages.add_column("#", style="dim")
    messages.add_column("Role")
    messages.add_column("Agent")
    messages.add_column("Content")
    for message in envelope.data["messages"]:
        messages.add_row(
            str(message["id"]),
            message["role"],
            agent_names.get(message["agent_id"], "-"),
            message["content"][:200],
        )
    console.print(messages)

    if envelope.data["votes"]:
        votes = Table(title="Votes")
        votes.add_column("Agent")
        votes.add_column("Target")
        votes.add_column("Score")
        votes.add_column("Rationale")
        for vote in envelope.data["votes"]:
            votes.add_row(
                agent_names.get(vote["agent_id"], "-"),
                f"#{vote['target_message_id']}",
                str(vote["score"]),
                vote["rationale"] or "",
            )
        console.print(votes)

    consensus = envelope.data["consensus"]
    if consensus:
        console.print(
            f"[green]Consensus:[/green] message #{consensus['final_message_id']} "
            f"{consensus['summary'] or ''}"
        )


@main.command()
@click.option("--user", "user_id", required=True, help="Owner of the sessions")
def sessions(user_id: str) -> None:
    """List sessions of a user."""
    envelope: Envelope = _run(lambda service: service.list_sessions(user_id))
    if not envelope.ok:
        _fail(envelope)
        raise SystemExit(1)
    rows = envelope.data["sessions"]
    if not rows:
        console.print("[yellow]No sessions found[/yellow]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Question")
    table.add_column("Consensus")
    for row in rows:
        table.add_row(
            row["id"],
            row["status"],
            row["question"][:60],
            f"#{row['final_message_id']}" if row.get("final_message_id") else "-",
        )
    console.print(table)


@main.command()
@click.argument("provider", type=click.Choice(["openai", "anthropic", "grok", "xai"]))
def ping(provider: str) -> None:
    """Check that PROVIDER accepts the key from the environment."""
    keys = credentials_from_env()
    api_key = keys.get("grok" if provider == "xai" else provider)

    async def do_ping(service: MagiService) -> Envelope:
        return await service.ping_provider(provider, api_key)

    envelope: Envelope = _run(do_ping)
    if not envelope.ok:
        _fail(envelope)
        raise SystemExit(1)
    if envelope.data["reachable"]:
        console.print(f"[green]{provider} key accepted[/green]")
    else:
        console.print(f"[red]{provider} rejected the key or is unreachable[/red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
