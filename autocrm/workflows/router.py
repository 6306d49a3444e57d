"""
workflows/router.py
───────────────────
Conditional edge functions for the LangGraph workflows.
Each function takes the current state and returns the next node name.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Union

from langgraph.graph import END

from autocrm.config.settings import settings
from autocrm.workflows.state import AssistantState

logger = logging.getLogger(__name__)


# ── Agent → tools ─────────────────────────────────────────────────────────────

def should_continue(state: AssistantState) -> Union[Literal["tools"], str]:
    """
    After the model turn:
    - If the last message requests tool calls → tools
    - Otherwise the model gave its final answer → END
    """
    messages = state["messages"]
    if not messages:
        return END
    last_message = messages[-1]

    if getattr(last_message, "tool_calls", None):
        logger.info(
            "[Router] agent → tools (%s)",
            ", ".join(call["name"] for call in last_message.tool_calls),
        )
        return "tools"

    logger.info("[Router] agent → END (final answer)")
    return END


# ── Tools → agent ─────────────────────────────────────────────────────────────

def route_after_tools(state: AssistantState) -> Union[Literal["agent"], str]:
    """
    After tool execution:
    - If a tool result asked to terminate (order created) → END
    - Otherwise hand the results back to the model → agent
    """
    if state.get("terminated"):
        logger.info("[Router] tools → END (termination signal)")
        return END
    return "agent"


# ── Intake ────────────────────────────────────────────────────────────────────

def missing_details(state: Dict[str, Any]) -> List[str]:
    """
    Customer details the intake agent still has to ask for.
    A single "name" entry is used when neither first nor last name is known.
    """
    missing: List[str] = []
    first, last = state.get("first_name"), state.get("last_name")
    if not first and not last:
        missing.append("name")
    else:
        if not first:
            missing.append("first name")
        if not last:
            missing.append("last name")
    if not state.get("email"):
        missing.append("email")
    if not state.get("company_name"):
        missing.append("company name")
    return missing


def route_after_analysis(state: Dict[str, Any]) -> str:
    """
    After sentiment and intent analysis of the newest customer message:
    - Conversation already handed off (ticket exists) → agent
    - Happiness below settings.handoff_sentiment_threshold → handoff
    - Purchase intent with email and company known → create_customer
    - Otherwise keep collecting details → agent
    """
    if state.get("ticket_id"):
        return "agent"

    score = state.get("sentiment_score")
    if score is not None and score < settings.handoff_sentiment_threshold:
        logger.info("[Router] intake → handoff (happiness %.2f)", score)
        return "handoff"

    intent = state.get("purchase_intent") or {}
    if (
        intent.get("has_purchase_intent")
        and intent.get("intent_type") == "purchase"
        and state.get("email")
        and state.get("company_name")
    ):
        logger.info("[Router] intake → create_customer (purchase intent)")
        return "create_customer"

    return "agent"
