"""
main.py
───────
AutoCRM Assistant — Entry Point

Usage:
  # Natural-language CRM action (order creation, stats)
  autocrm order --prompt "Create an order for Pure Aesthetics: 3 serums" --account-id <uuid>

  # One intake turn for a customer conversation
  autocrm intake --conversation-id <uuid> --message "Hi, I'm Jo from Acme"

  # HTTP API (assistant endpoint, message webhook, support endpoints)
  autocrm serve --port 8000

  # Recent runs from the local journal
  autocrm history

  # Test LLM / backend connectivity
  autocrm health
"""
from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from autocrm.config.settings import settings

# ── Logging setup ─────────────────────────────────────────────────────────────
_handlers = [logging.StreamHandler(sys.stdout)]
if settings.log_file:
    _handlers.append(logging.FileHandler(settings.log_file))
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    handlers=_handlers,
)
# Quieten noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("hpack").setLevel(logging.WARNING)

logger = logging.getLogger("autocrm.main")
console = Console()
app = typer.Typer(
    name="autocrm",
    help="AutoCRM assistant: natural-language order creation over the CRM backend",
    add_completion=False,
)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command()
def order(
    prompt: str = typer.Option(..., "--prompt", "-p", help="Natural-language CRM request"),
    account_id: str = typer.Option(..., "--account-id", "-a", help="Account (workspace) ID"),
    user_id: Optional[str] = typer.Option(
        None, "--user-id", help="Publish progress to this user's assistant updates"
    ),
):
    """Run the order assistant for a single request."""
    from autocrm.models.llm_loader import configure_tracing
    from autocrm.workflows.runner import AssistantError, run_assistant

    configure_tracing()
    try:
        asyncio.run(run_assistant(prompt, account_id, user_id=user_id, echo=True))
    except AssistantError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(code=1)


@app.command()
def intake(
    conversation_id: str = typer.Option(..., "--conversation-id", "-c", help="Conversation ID"),
    message: str = typer.Option(..., "--message", "-m", help="Latest customer message"),
    message_id: Optional[str] = typer.Option(None, "--message-id", help="Stored message row to score"),
):
    """Run one turn of the conversational intake agent."""
    from rich.panel import Panel
    from autocrm.workflows.runner import run_intake

    result = asyncio.run(run_intake(conversation_id, message, message_id=message_id))
    lines = [f"[italic]{result.reply}[/italic]"]
    if result.sentiment_score is not None:
        lines.append(f"\n[dim]Happiness: {result.sentiment_score:.2f}[/dim]")
    if result.handoff_reason:
        lines.append(f"[yellow]Handed off ({result.handoff_reason})[/yellow] ticket={result.ticket_id}")
    console.print(Panel("\n".join(lines), title="Intake Agent Reply"))


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, "--host", help="Bind address"),
    port: int = typer.Option(settings.api_port, "--port", help="Bind port"),
):
    """Serve the HTTP API."""
    import uvicorn

    console.print(f"[bold green]Serving AutoCRM API on {host}:{port}[/bold green]")
    uvicorn.run("autocrm.api.server:app", host=host, port=port, log_level=settings.log_level.lower())


@app.command()
def health():
    """Check system health: LLM provider, backend configuration, run journal."""
    async def _run():
        from autocrm.memory.run_journal import run_journal
        from autocrm.models.llm_loader import check_llm_health

        console.print("\n[bold]AutoCRM Health Check[/bold]\n")

        llm_ok = await check_llm_health()
        model = settings.ollama_model if settings.llm_provider == "ollama" else settings.openai_model
        _status("LLM", llm_ok, f"{settings.llm_provider} / {model}")

        if settings.backend_configured:
            _status("Supabase", True, settings.supabase_url)
        else:
            _status("Supabase", None, "Not configured (check .env)")

        try:
            await run_journal.init_db()
            _status("Run journal", True, settings.sqlite_db_path)
        except Exception as exc:
            _status("Run journal", False, str(exc))

        console.print("")

    asyncio.run(_run())


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of runs to show"),
    session_id: Optional[str] = typer.Option(None, "--session", help="Show one run in full"),
):
    """Show recent assistant runs from the local journal."""
    from autocrm.memory.run_journal import run_journal

    async def _run():
        await run_journal.init_db()
        if session_id:
            _print_session(await run_journal.recall_session(session_id))
        else:
            _print_sessions(await run_journal.recent_sessions(limit))

    asyncio.run(_run())


@app.command()
def init_db():
    """Initialise the local run journal schema."""
    from autocrm.memory.run_journal import run_journal

    asyncio.run(run_journal.init_db())
    console.print("[bold green]✓ Run journal initialised[/bold green]")


# ── Pretty print helpers ──────────────────────────────────────────────────────

def _status(name: str, ok: Optional[bool], detail: str):
    if ok is True:
        icon, color = "✓", "green"
    elif ok is False:
        icon, color = "✗", "red"
    else:
        icon, color = "?", "yellow"
    console.print(f"  [{color}]{icon}[/{color}] [bold]{name}[/bold]: {detail}")


def _print_sessions(sessions: list):
    if not sessions:
        console.print("[yellow]No assistant runs recorded yet.[/yellow]")
        return

    table = Table(title="Recent Assistant Runs")
    table.add_column("Session", style="bold")
    table.add_column("Started")
    table.add_column("Account")
    table.add_column("Entries", justify="right")
    table.add_column("Request")

    for row in sessions:
        started = datetime.fromtimestamp(row["started_at"]).strftime("%Y-%m-%d %H:%M")
        table.add_row(
            row["session_id"],
            started,
            (row.get("account_id") or "")[:8],
            str(row["entries"]),
            (row.get("instruction") or "")[:50],
        )

    console.print(table)


def _print_session(entries: list):
    if not entries:
        console.print("[yellow]No entries for that session.[/yellow]")
        return
    colors = {"user": "cyan", "assistant": "white", "result": "green", "error": "red"}
    for entry in entries:
        color = colors.get(entry["role"], "white")
        console.print(f"  [{color}]{entry['role']:>9}[/{color}]  {entry['content']}")


# ── Entry ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
