"""
agents/order_assistant.py
─────────────────────────
NODE — Order Assistant (tool-calling agent)

Responsibilities:
  - Turn a natural-language CRM request into the opening instruction
  - Call the tool-bound chat model on the accumulated conversation
  - Describe each graph update as a short progress line for the user
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from langchain_core.messages import AIMessage
from langchain_core.runnables import Runnable

from autocrm.config.prompt_registry import prompt_registry
from autocrm.workflows.state import AssistantState

logger = logging.getLogger(__name__)

RUN_NAME = "AutoCRM"

# Progress line shown while a tool is being requested
TOOL_PROGRESS = {
    "find_customer_company": "Looking up the customer",
    "find_products":         "Looking up the products",
    "create_order":          "Creating the order",
    "get_stats":             "Fetching stats",
}


def build_instruction(prompt: str, account_id: str, today: Optional[date] = None) -> str:
    """Opening human message: the request, the tenant account and today's date."""
    today = today or date.today()
    return prompt_registry.render(
        "order_instruction",
        prompt=prompt.strip(),
        account_id=account_id,
        today=today.isoformat(),
    )


async def agent_node(state: AssistantState, llm: Runnable) -> Dict[str, Any]:
    """LangGraph node: one model turn over the full message history."""
    messages = state["messages"]
    logger.info("[Order Assistant] Calling model with %d messages", len(messages))

    response = await llm.ainvoke(messages, config={"run_name": RUN_NAME})

    tool_calls = getattr(response, "tool_calls", None) or []
    if tool_calls:
        logger.info("[Order Assistant] Model requested: %s", [c["name"] for c in tool_calls])
    else:
        logger.info("[Order Assistant] Model answered without tool calls")

    return {"messages": [response]}


def describe_update(update: Dict[str, Any]) -> str:
    """
    Map one `stream_mode="updates"` event to a progress line.
    Only model turns produce text; tool results stay internal.
    """
    agent_update = update.get("agent")
    if not agent_update:
        return ""

    messages = agent_update.get("messages") or []
    if not messages:
        return ""
    message = messages[-1]

    line = ""
    tool_calls = getattr(message, "tool_calls", None) or []
    if tool_calls:
        line = TOOL_PROGRESS.get(tool_calls[0]["name"], "")

    if isinstance(message, AIMessage) and isinstance(message.content, str) and message.content:
        line += message.content

    return line
