"""
workflows/runner.py
───────────────────
Async runners for the AutoCRM agents.
Entry point for programmatic invocation from the CLI and the HTTP API.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.tools import BaseTool
from langgraph.errors import GraphRecursionError
from pydantic import BaseModel, Field
from rich.console import Console
from rich.panel import Panel

from autocrm.agents.intake_agent import latest_reply
from autocrm.agents.order_assistant import build_instruction, describe_update
from autocrm.config.settings import settings
from autocrm.memory.run_journal import RunJournal, run_journal
from autocrm.models.llm_loader import get_chat_model
from autocrm.tools import db_tool
from autocrm.workflows.graph import build_intake_graph, build_order_graph
from autocrm.workflows.state import initial_assistant_state, initial_intake_state

logger = logging.getLogger(__name__)
console = Console()


class AssistantError(RuntimeError):
    """The assistant loop could not finish the request."""


class AssistantResult(BaseModel):
    session_id: str
    success: bool = True
    order_id: Optional[str] = None
    customer_company_id: Optional[str] = None
    final_message: str = ""
    updates: List[str] = Field(default_factory=list)


class IntakeResult(BaseModel):
    reply: str = ""
    sentiment_score: Optional[float] = None
    handoff_reason: Optional[str] = None
    ticket_id: Optional[str] = None
    customer_id: Optional[str] = None


# ── Order assistant ───────────────────────────────────────────────────────────

async def run_assistant(
    prompt: str,
    account_id: str,
    user_id: Optional[str] = None,
    llm: Optional[BaseChatModel] = None,
    tools: Optional[List[BaseTool]] = None,
    journal: Optional[RunJournal] = None,
    echo: bool = False,
) -> AssistantResult:
    """
    Execute one assistant request end-to-end.

    Args:
        prompt: Natural-language CRM instruction ("Create an order for ...").
        account_id: Tenant account every lookup and insert is scoped to.
        user_id: When set, progress lines are written to assistant_updates.
        llm: Chat model override (defaults to the configured provider).
        tools: Tool set override (defaults to the CRM tools).
        journal: Run journal override.
        echo: Print progress to the console.

    Returns:
        AssistantResult with the created order id (if any) and progress lines.
    """
    journal = journal or run_journal
    session_id = f"run-{uuid.uuid4().hex[:8]}"
    graph = build_order_graph(llm or get_chat_model("order_assistant"), tools)
    instruction = build_instruction(prompt, account_id)
    state = initial_assistant_state(instruction, account_id)

    await journal.init_db()
    await journal.record(session_id, "user", prompt, account_id=account_id)

    if echo:
        console.print(Panel(
            f"Session: [cyan]{session_id}[/cyan]\n"
            f"Account: [yellow]{account_id}[/yellow]\n"
            f"Request: [white]{prompt}[/white]",
            title="AutoCRM Assistant",
        ))

    result = AssistantResult(session_id=session_id)
    start_time = time.time()

    try:
        async for event in graph.astream(
            state,
            config={"recursion_limit": settings.max_agent_steps},
            stream_mode="updates",
        ):
            _absorb_update(result, event)

            line = describe_update(event)
            if not line:
                continue
            logger.info("[%s] %s", session_id, line)
            result.updates.append(line)
            await journal.record(session_id, "assistant", line, account_id=account_id)
            if echo:
                console.print(f"  → {line}")
            if user_id:
                await _publish_update(user_id, line)

    except GraphRecursionError as exc:
        elapsed = time.time() - start_time
        logger.error("Assistant exceeded %d steps after %.1fs", settings.max_agent_steps, elapsed)
        await journal.record(session_id, "error", str(exc), account_id=account_id)
        raise AssistantError(
            f"Assistant did not finish within {settings.max_agent_steps} steps"
        ) from exc

    elapsed = time.time() - start_time
    outcome = f"order_id={result.order_id}" if result.order_id else "no order created"
    await journal.record(session_id, "result", outcome, account_id=account_id)
    logger.info("Assistant run %s finished in %.1fs (%s)", session_id, elapsed, outcome)

    if echo:
        _print_completion(result, elapsed)
    return result


def _absorb_update(result: AssistantResult, event: Dict[str, Any]) -> None:
    """Track ids and the model's final answer from one stream event."""
    for node_update in event.values():
        if not isinstance(node_update, dict):
            continue
        if node_update.get("customer_company_id"):
            result.customer_company_id = node_update["customer_company_id"]
        if node_update.get("order_id"):
            result.order_id = node_update["order_id"]
        for message in node_update.get("messages") or []:
            if isinstance(message, AIMessage) and not message.tool_calls and message.content:
                result.final_message = str(message.content)


async def _publish_update(user_id: str, line: str) -> None:
    """Progress lines are best effort: a failed write does not abort the run."""
    try:
        await db_tool.insert_assistant_update(user_id, line)
    except db_tool.CRMDataError as exc:
        logger.warning("Could not publish assistant update for %s: %s", user_id, exc)


def _print_completion(result: AssistantResult, elapsed: float) -> None:
    lines = []
    if result.order_id:
        lines.append(f"[bold green]Order created:[/bold green] {result.order_id}")
    if result.customer_company_id:
        lines.append(f"[cyan]Customer company:[/cyan] {result.customer_company_id}")
    if result.final_message:
        lines.append(f"\n[italic]{result.final_message}[/italic]")
    lines.append(f"\n[dim]Elapsed: {elapsed:.1f}s | Steps reported: {len(result.updates)}[/dim]")
    console.print(Panel("\n".join(lines), title="AutoCRM Assistant Complete"))


# ── Intake agent ──────────────────────────────────────────────────────────────

async def run_intake(
    conversation_id: str,
    message: str,
    message_id: Optional[str] = None,
    sentiment_score: Optional[float] = None,
    llm: Optional[BaseChatModel] = None,
    extractor_llm: Optional[BaseChatModel] = None,
) -> IntakeResult:
    """
    Run one intake turn for a conversation.

    Args:
        conversation_id: Conversation the customer message belongs to.
        message: The customer's newest message.
        message_id: Stored message row; its sentiment_score is written back when scored here.
        sentiment_score: Happiness already known for the message (skips re-analysis).

    Returns:
        IntakeResult with the reply and any handoff outcome.
    """
    graph = build_intake_graph(
        llm or get_chat_model("intake"),
        extractor_llm or (get_chat_model("extractor") if llm is None else llm),
    )
    final_state = await graph.ainvoke(
        initial_intake_state(conversation_id, message, message_id, sentiment_score)
    )
    result = IntakeResult(
        reply=latest_reply(final_state),
        sentiment_score=final_state.get("sentiment_score"),
        handoff_reason=final_state.get("handoff_reason"),
        ticket_id=final_state.get("ticket_id"),
        customer_id=final_state.get("customer_id"),
    )
    logger.info(
        "[Intake] Conversation %s replied (%d chars, handoff=%s)",
        conversation_id, len(result.reply), result.handoff_reason,
    )
    return result
