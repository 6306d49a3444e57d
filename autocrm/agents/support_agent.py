"""
agents/support_agent.py
───────────────────────
Support Agent — structured-output helpers for customer support

Responsibilities:
  - Score a customer message's happiness (0 very unhappy … 1 very happy)
  - Draft a support reply with a confidence score for a human agent to review
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from autocrm.config.prompt_registry import prompt_registry
from autocrm.models.llm_loader import ainvoke_structured, get_chat_model

logger = logging.getLogger(__name__)


class SupportAgentError(RuntimeError):
    """The model produced no usable structured answer."""


class SentimentAnalysis(BaseModel):
    """Happiness score of a customer message."""
    happiness_score: float = Field(ge=0.0, le=1.0, description="0 is very unhappy, 1 is very happy")
    reasoning: str = Field(default="", description="Short justification for the score")


class SupportReply(BaseModel):
    """Suggested reply to the customer."""
    response: str = Field(description="The reply to send to the customer")
    confidence: float = Field(ge=0.0, le=1.0, description="How certain the reply is correct")
    reasoning: str = Field(default="", description="Why this reply fits the conversation")


async def analyze_sentiment(
    message: str,
    llm: Optional[BaseChatModel] = None,
) -> Optional[SentimentAnalysis]:
    """Happiness score for one message, or None when the model gives no answer."""
    if not message.strip():
        return None
    llm = llm or get_chat_model("sentiment")
    prompt = prompt_registry.render("analyze_sentiment", message=message)
    analysis = await ainvoke_structured(llm, SentimentAnalysis, prompt, "Sentiment analysis")
    if analysis is not None:
        logger.info("[Support] Happiness score %.2f", analysis.happiness_score)
    return analysis


def format_history(messages: List[Dict[str, Any]]) -> str:
    """`sender_type: content` lines, oldest first."""
    return "\n".join(f"{m.get('sender_type', 'unknown')}: {m.get('content', '')}" for m in messages)


async def generate_support_reply(
    messages: List[Dict[str, Any]],
    customer: Dict[str, Any],
    company: Dict[str, Any],
    llm: Optional[BaseChatModel] = None,
) -> SupportReply:
    """
    Draft a reply for a support conversation.

    Args:
        messages: Conversation rows with sender_type and content.
        customer: first_name / last_name of the customer.
        company: The customer's company (name).

    Raises:
        SupportAgentError: when the model returns no structured reply.
    """
    llm = llm or get_chat_model("support")
    customer_name = " ".join(
        part for part in (customer.get("first_name"), customer.get("last_name")) if part
    ) or "Unknown"
    prompt = [
        SystemMessage(content=prompt_registry.get_system_prompt("support")),
        HumanMessage(content=prompt_registry.render(
            "support_reply",
            customer_name=customer_name,
            company_name=company.get("name") or "Unknown",
            history=format_history(messages),
        )),
    ]

    reply = await ainvoke_structured(llm, SupportReply, prompt, "Support reply")
    if reply is None:
        raise SupportAgentError("The model did not return a support reply")
    logger.info("[Support] Drafted reply (confidence %.2f)", reply.confidence)
    return reply
