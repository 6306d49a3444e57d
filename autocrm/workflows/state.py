"""
workflows/state.py
──────────────────
State schemas for the LangGraph workflows.
Messages accumulate through the add_messages reducer; every other key is
last-write-wins.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional

from langchain_core.messages import AnyMessage, HumanMessage
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict


class AssistantState(TypedDict):
    messages: Annotated[List[AnyMessage], add_messages]
    account_id: str
    customer_company_id: Optional[str]
    order_id: Optional[str]
    terminated: bool           # a tool result returned terminate=True


class IntakeState(TypedDict, total=False):
    messages: Annotated[List[AnyMessage], add_messages]
    conversation_id: str
    last_message: str
    first_name: Optional[str]
    last_name: Optional[str]
    email: Optional[str]
    company_name: Optional[str]
    account_id: Optional[str]               # owner of the conversation
    message_id: Optional[str]
    sentiment_score: Optional[float]        # happiness of the newest message, 0..1
    purchase_intent: Dict[str, Any]         # has_purchase_intent, intent_type, products
    customer_id: Optional[str]
    customer_company_id: Optional[str]
    handoff_reason: Optional[str]           # sentiment | existing_customer | creation_failed
    ticket_id: Optional[str]


INTAKE_DETAIL_KEYS = ("first_name", "last_name", "email", "company_name")

# Keys carried across turns in conversations.state besides the message history
INTAKE_PERSISTED_KEYS = INTAKE_DETAIL_KEYS + (
    "customer_id", "customer_company_id", "handoff_reason", "ticket_id",
)


# ── Factories ─────────────────────────────────────────────────────────────────

def initial_assistant_state(instruction: str, account_id: str) -> AssistantState:
    """Create a fresh AssistantState seeded with the user's instruction."""
    return AssistantState(
        messages=[HumanMessage(content=instruction)],
        account_id=account_id,
        customer_company_id=None,
        order_id=None,
        terminated=False,
    )


def initial_intake_state(
    conversation_id: str,
    last_message: str,
    message_id: Optional[str] = None,
    sentiment_score: Optional[float] = None,
) -> IntakeState:
    """A known sentiment_score (already stored on the message) skips re-analysis."""
    return IntakeState(
        messages=[],
        conversation_id=conversation_id,
        last_message=last_message,
        message_id=message_id,
        sentiment_score=sentiment_score,
    )


def intake_details(state: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """The customer detail fields of an intake state, missing ones as None."""
    return {key: state.get(key) or None for key in INTAKE_DETAIL_KEYS}


def persisted_intake_fields(state: Dict[str, Any]) -> Dict[str, Optional[str]]:
    return {key: state.get(key) or None for key in INTAKE_PERSISTED_KEYS}
