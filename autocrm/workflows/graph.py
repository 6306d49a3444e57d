"""
workflows/graph.py
──────────────────
Builds and compiles the AutoCRM LangGraph StateGraphs.
All nodes and edges are registered here.

Order assistant topology:
  START → agent ⇄ tools
            ↓        ↓ (a tool result with terminate=True)
           END      END

Intake topology:
  START → fetch_conversation → extract_details → analyze_sentiment → detect_intent
    detect_intent → agent → save_state → END
    detect_intent → create_customer → handoff → save_state → END
    detect_intent → handoff → save_state  (unhappy customer)
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import ToolMessage
from langchain_core.tools import BaseTool
from langgraph.graph import END, START, StateGraph

from autocrm.agents import intake_agent
from autocrm.agents.order_assistant import agent_node
from autocrm.config.settings import settings
from autocrm.tools.crm_tools import CRM_TOOLS, get_tool_map
from autocrm.workflows.router import route_after_analysis, route_after_tools, should_continue
from autocrm.workflows.state import AssistantState, IntakeState

logger = logging.getLogger(__name__)

# Tool result keys copied into graph state
STATE_KEYS_FROM_TOOLS = ("customer_company_id", "order_id")


# ── Tool execution ────────────────────────────────────────────────────────────

def _render_tool_output(result: Any) -> str:
    """Serialise a tool result for the model, truncating oversized output."""
    content = result if isinstance(result, str) else json.dumps(result, default=str)
    limit = settings.max_tool_output_chars
    if len(content) > limit:
        logger.warning("Tool output truncated: %d → %d chars", len(content), limit)
        content = content[:limit] + "\n\n[Output truncated]"
    return content


async def tool_node(state: AssistantState, tool_map: Dict[str, BaseTool]) -> Dict[str, Any]:
    """
    Execute every tool call requested by the last model message.
    Failures become "Error: ..." tool messages so the model can recover.
    The run's account_id always overrides a model-supplied one.
    """
    last_message = state["messages"][-1]
    tool_calls = getattr(last_message, "tool_calls", None) or []
    if not tool_calls:
        logger.info("[Tools] No tool calls found in last message")
        return {"messages": []}

    logger.info("[Tools] Executing %d tool call(s)", len(tool_calls))
    outputs: List[ToolMessage] = []
    update: Dict[str, Any] = {}

    for call in tool_calls:
        name, call_id = call["name"], call["id"]
        args = dict(call.get("args") or {})
        selected = tool_map.get(name)

        if selected is None:
            logger.error("[Tools] Unknown tool requested: %s", name)
            outputs.append(ToolMessage(content=f"Error: Unknown tool {name}", tool_call_id=call_id, name=name))
            continue

        if "account_id" in selected.args and state.get("account_id"):
            if args.get("account_id") not in (None, "", state["account_id"]):
                logger.warning("[Tools] %s: replacing model account_id %s", name, args["account_id"])
            args["account_id"] = state["account_id"]

        logger.info("[Tools] ↪ %s %s", name, args)
        try:
            result = await asyncio.wait_for(
                selected.ainvoke(args),
                timeout=settings.tool_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("[Tools] Timeout: %s", name)
            outputs.append(ToolMessage(
                content="Error: Tool execution timed out", tool_call_id=call_id, name=name,
            ))
            continue
        except Exception as exc:
            logger.error("[Tools] %s failed: %s", name, exc)
            outputs.append(ToolMessage(content=f"Error: {exc}", tool_call_id=call_id, name=name))
            continue

        if isinstance(result, dict):
            for key in STATE_KEYS_FROM_TOOLS:
                if result.get(key):
                    update[key] = result[key]
            if result.get("terminate") is True:
                update["terminated"] = True

        content = _render_tool_output(result)
        outputs.append(ToolMessage(content=content, tool_call_id=call_id, name=name))

    update["messages"] = outputs
    return update


# ── Graph builders ────────────────────────────────────────────────────────────

def build_order_graph(llm: BaseChatModel, tools: Optional[List[BaseTool]] = None):
    """
    Build and compile the order assistant graph.

    Args:
        llm: Chat model supporting bind_tools.
        tools: Tools to bind; defaults to the CRM tool set.

    Returns:
        Compiled graph ready for ainvoke / astream.
    """
    tools = tools or CRM_TOOLS
    tool_map = get_tool_map(tools)
    model_with_tools = llm.bind_tools(tools)

    async def call_model(state: AssistantState) -> Dict[str, Any]:
        return await agent_node(state, model_with_tools)

    async def run_tools(state: AssistantState) -> Dict[str, Any]:
        return await tool_node(state, tool_map)

    workflow = StateGraph(AssistantState)
    workflow.add_node("agent", call_model)
    workflow.add_node("tools", run_tools)

    workflow.add_edge(START, "agent")
    workflow.add_conditional_edges("agent", should_continue, ["tools", END])
    workflow.add_conditional_edges("tools", route_after_tools, ["agent", END])

    compiled = workflow.compile()
    logger.info("Order graph compiled with tools: %s", sorted(tool_map))
    return compiled


def build_intake_graph(llm: BaseChatModel, extractor_llm: Optional[BaseChatModel] = None):
    """
    Build and compile the conversational intake graph.

    Args:
        llm: Conversational chat model for replies.
        extractor_llm: Model for the structured-output steps (details, sentiment,
            intent, classification); defaults to llm.
    """
    extractor_llm = extractor_llm or llm

    async def extract(state: IntakeState) -> Dict[str, Any]:
        return await intake_agent.extract_details_node(state, extractor_llm)

    async def sentiment(state: IntakeState) -> Dict[str, Any]:
        return await intake_agent.analyze_sentiment_node(state, extractor_llm)

    async def intent(state: IntakeState) -> Dict[str, Any]:
        return await intake_agent.detect_intent_node(state, extractor_llm)

    async def handoff(state: IntakeState) -> Dict[str, Any]:
        return await intake_agent.handoff_node(state, extractor_llm)

    async def converse(state: IntakeState) -> Dict[str, Any]:
        return await intake_agent.conversational_agent_node(state, llm)

    workflow = StateGraph(IntakeState)
    workflow.add_node("fetch_conversation", intake_agent.fetch_conversation_node)
    workflow.add_node("extract_details", extract)
    workflow.add_node("analyze_sentiment", sentiment)
    workflow.add_node("detect_intent", intent)
    workflow.add_node("create_customer", intake_agent.create_customer_node)
    workflow.add_node("handoff", handoff)
    workflow.add_node("agent", converse)
    workflow.add_node("save_state", intake_agent.save_state_node)

    workflow.add_edge(START, "fetch_conversation")
    workflow.add_edge("fetch_conversation", "extract_details")
    workflow.add_edge("extract_details", "analyze_sentiment")
    workflow.add_edge("analyze_sentiment", "detect_intent")
    workflow.add_conditional_edges(
        "detect_intent", route_after_analysis, ["handoff", "create_customer", "agent"]
    )
    workflow.add_edge("create_customer", "handoff")
    workflow.add_edge("handoff", "save_state")
    workflow.add_edge("agent", "save_state")
    workflow.add_edge("save_state", END)

    return workflow.compile()
