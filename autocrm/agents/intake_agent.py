"""
agents/intake_agent.py
──────────────────────
NODES — Intake Agent (conversational sign-up and handoff)

Responsibilities:
  - Load a conversation's stored state and append the newest customer message
  - Extract first name, last name, email and company name from the transcript
  - Score the newest message's happiness and detect purchase intent
  - Create the customer (and company) once a purchase is intended and details are known
  - Classify the issue and hand the conversation off to a human via a ticket
  - Ask politely for whatever is still missing, never re-asking known details
  - Persist the updated state back to the conversation row
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    HumanMessage,
    SystemMessage,
    messages_from_dict,
    messages_to_dict,
)
from pydantic import BaseModel, Field

from autocrm.agents import support_agent
from autocrm.config.prompt_registry import prompt_registry
from autocrm.models.llm_loader import ainvoke_structured
from autocrm.tools import db_tool
from autocrm.workflows.router import missing_details
from autocrm.workflows.state import INTAKE_PERSISTED_KEYS, IntakeState, persisted_intake_fields

logger = logging.getLogger(__name__)

IssueType = Literal[
    "technical_issue",
    "billing_question",
    "feature_request",
    "bug_report",
    "account_access",
    "program_logistics",
    "other",
]

TICKET_STATUS_PENDING = "pending_assignment"


class CustomerDetails(BaseModel):
    """User's details required to sign them up."""
    email: Optional[str] = Field(default=None, description="User's email address")
    first_name: Optional[str] = Field(default=None, description="User's first name")
    last_name: Optional[str] = Field(default=None, description="User's last name")
    company_name: Optional[str] = Field(default=None, description="User's company name")


class PurchaseIntent(BaseModel):
    """Whether the customer wants to buy something."""
    has_purchase_intent: bool = Field(default=False)
    intent_type: Literal["information", "purchase"] = Field(default="information")
    products: List[str] = Field(default_factory=list, description="Products the customer mentions")


class TicketClassification(BaseModel):
    """Category of the customer's issue for routing to a human."""
    issue_type: IssueType = Field(default="other")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    summary: str = Field(default="", description="One-line summary of the issue")


def _transcript(state: IntakeState) -> str:
    return "\n".join(
        str(m.content) for m in state.get("messages", []) if isinstance(m, HumanMessage)
    )


async def _log_event(conversation_id: str, event_type: str, details: Dict[str, Any]) -> None:
    """Record a conversation event. Failures are logged and never stop the turn."""
    try:
        await db_tool.log_conversation_event(conversation_id, event_type, details)
    except db_tool.CRMDataError as exc:
        logger.warning("[Intake] Could not log %s for %s: %s", event_type, conversation_id, exc)


# ── Nodes ─────────────────────────────────────────────────────────────────────

async def fetch_conversation_node(state: IntakeState) -> Dict[str, Any]:
    """Restore stored details and history, then append the new customer message."""
    conversation_id = state["conversation_id"]
    new_message = HumanMessage(content=state["last_message"])

    try:
        conversation = await db_tool.get_conversation(conversation_id)
    except db_tool.CRMDataError as exc:
        logger.error("[Intake] Could not load conversation %s: %s", conversation_id, exc)
        return {"messages": [new_message]}

    stored = conversation.get("state") or {}
    history = messages_from_dict(stored.get("messages") or [])
    update: Dict[str, Any] = {
        key: stored[key] for key in INTAKE_PERSISTED_KEYS if stored.get(key)
    }
    update["account_id"] = conversation.get("account_id")
    update["messages"] = history + [new_message]
    logger.info(
        "[Intake] Conversation %s restored with %d prior messages", conversation_id, len(history)
    )
    return update


async def extract_details_node(state: IntakeState, llm: BaseChatModel) -> Dict[str, Any]:
    """
    Pull customer details out of the transcript with structured output.
    Known details are never cleared; extraction failures keep the prior state.
    """
    transcript = _transcript(state)
    if not transcript:
        return {}

    prompt = prompt_registry.render("extract_details", conversation=transcript)
    extracted = await ainvoke_structured(llm, CustomerDetails, prompt, "Detail extraction")
    if extracted is None:
        return {}

    found = {k: v for k, v in extracted.model_dump().items() if v}
    logger.info("[Intake] Extracted details: %s", sorted(found))
    return found


async def analyze_sentiment_node(state: IntakeState, llm: BaseChatModel) -> Dict[str, Any]:
    """Score the newest message unless the webhook already delivered a score."""
    if state.get("sentiment_score") is not None:
        return {}

    analysis = await support_agent.analyze_sentiment(state["last_message"], llm=llm)
    if analysis is None:
        return {}

    message_id = state.get("message_id")
    if message_id:
        try:
            await db_tool.update_message_sentiment(message_id, analysis.happiness_score)
        except db_tool.CRMDataError as exc:
            logger.warning("[Intake] Could not store sentiment for message %s: %s", message_id, exc)
    return {"sentiment_score": analysis.happiness_score}


async def detect_intent_node(state: IntakeState, llm: BaseChatModel) -> Dict[str, Any]:
    prompt = prompt_registry.render("detect_intent", message=state["last_message"])
    intent = await ainvoke_structured(llm, PurchaseIntent, prompt, "Intent detection")
    if intent is None:
        intent = PurchaseIntent()
    logger.info("[Intake] Intent: %s %s", intent.intent_type, intent.products)
    return {"purchase_intent": intent.model_dump()}


async def create_customer_node(state: IntakeState) -> Dict[str, Any]:
    """
    Sign the customer up under the conversation's account.

    An existing customer with the same email is reused. Otherwise the company is
    looked up by exact name (created when missing) and the customer is inserted.
    Either way the conversation then goes to sales via handoff.
    """
    conversation_id = state["conversation_id"]
    email = state["email"]
    account_id = state.get("account_id")

    try:
        if not account_id:
            raise db_tool.CRMDataError(f"Conversation {conversation_id} has no account")

        existing = await db_tool.find_customer_by_email(email)
        if existing:
            logger.info("[Intake] Customer %s already exists", email)
            return {
                "customer_id": existing["id"],
                "customer_company_id": existing.get("customer_company_id"),
                "handoff_reason": "existing_customer",
            }

        company_id = await db_tool.get_or_create_customer_company(state["company_name"], account_id)
        customer = await db_tool.insert_customer(
            email,
            company_id,
            first_name=state.get("first_name"),
            last_name=state.get("last_name"),
        )
    except db_tool.CRMDataError as exc:
        logger.error("[Intake] Customer creation failed for %s: %s", conversation_id, exc)
        await _log_event(conversation_id, "customer_creation_failed", {"error": str(exc)})
        return {"handoff_reason": "creation_failed"}

    await _log_event(conversation_id, "customer_created", {
        "customer_id": customer["id"],
        "customer_company_id": company_id,
    })
    return {
        "customer_id": customer["id"],
        "customer_company_id": company_id,
        "handoff_reason": "existing_customer",
    }


async def handoff_node(state: IntakeState, llm: BaseChatModel) -> Dict[str, Any]:
    """Classify the issue, open a ticket for a human and tell the customer."""
    conversation_id = state["conversation_id"]
    reason = state.get("handoff_reason") or "sentiment"

    prompt = prompt_registry.render(
        "classify_ticket", message=state["last_message"], conversation=_transcript(state)
    )
    classification = await ainvoke_structured(llm, TicketClassification, prompt, "Ticket classification")
    if classification is None:
        classification = TicketClassification(summary=state["last_message"][:200])

    update: Dict[str, Any] = {"handoff_reason": reason}
    try:
        ticket = await db_tool.insert_ticket({
            "account_id": state.get("account_id"),
            "conversation_id": conversation_id,
            "status": TICKET_STATUS_PENDING,
            "priority": "normal" if reason == "existing_customer" else "high",
            "customer_email": state.get("email"),
            "handoff_reason": reason,
            "issue_type": classification.issue_type,
            "summary": classification.summary,
        })
        update["ticket_id"] = ticket["id"]
    except db_tool.CRMDataError as exc:
        logger.error("[Intake] Ticket creation failed for %s: %s", conversation_id, exc)
        reason = "creation_failed"
        update["handoff_reason"] = reason

    await _log_event(conversation_id, "handoff_initiated", {
        "reason": reason,
        "issue_type": classification.issue_type,
        "confidence": classification.confidence,
        "ticket_id": update.get("ticket_id"),
    })

    if reason == "creation_failed":
        reply = prompt_registry.render("handoff_error")
    elif reason == "existing_customer":
        products = (state.get("purchase_intent") or {}).get("products") or []
        reply = prompt_registry.render(
            "handoff_sales",
            email=state.get("email"),
            products=", ".join(products) or "our products",
            company=state.get("company_name"),
        )
    else:
        reply = prompt_registry.render("handoff_support")

    logger.info("[Intake] Conversation %s handed off (%s)", conversation_id, reason)
    update["messages"] = [AIMessage(content=reply.strip())]
    return update


async def conversational_agent_node(state: IntakeState, llm: BaseChatModel) -> Dict[str, Any]:
    """Reply to the customer, steering towards whatever details are still missing."""
    missing = missing_details(state)
    system_prompt = prompt_registry.get_system_prompt("intake")
    if missing:
        system_prompt += " " + prompt_registry.render("intake_missing", missing=", ".join(missing))
    else:
        system_prompt += " " + prompt_registry.render("intake_complete")

    response = await llm.ainvoke([SystemMessage(content=system_prompt), *state.get("messages", [])])
    return {"messages": [AIMessage(content=response.content)]}


async def save_state_node(state: IntakeState) -> Dict[str, Any]:
    conversation_id = state["conversation_id"]
    fields = persisted_intake_fields(state)
    payload = {**fields, "messages": messages_to_dict(state.get("messages", []))}
    await db_tool.save_conversation_state(conversation_id, payload)
    await _log_event(conversation_id, "state_transition", {
        "sentiment_score": state.get("sentiment_score"),
        "handoff_reason": fields["handoff_reason"],
    })
    logger.info("[Intake] Saved state for conversation %s", conversation_id)
    return {}


def latest_reply(state: Dict[str, Any]) -> str:
    for message in reversed(state.get("messages", [])):
        if isinstance(message, AIMessage):
            return str(message.content)
    return ""
