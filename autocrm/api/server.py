"""
api/server.py
─────────────
HTTP surface for the AutoCRM agents (FastAPI).

  POST /assistant          — run the order assistant for a signed-in user
  POST /webhooks/messages  — database webhook: customer message → intake agent
  POST /support/generate-response — draft a support reply with a confidence score
  POST /support/analyze-sentiment — happiness score of one customer message
  GET  /health             — provider / backend readiness
"""
from __future__ import annotations

import logging
import time
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from autocrm.agents import support_agent
from autocrm.config.settings import settings
from autocrm.models.llm_loader import check_llm_health, configure_tracing
from autocrm.tools import db_tool
from autocrm.workflows import runner

logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "x-supabase-auth"]
CORS_ALLOW_METHODS = ["POST", "GET", "OPTIONS"]


class AssistantRequest(BaseModel):
    prompt: Optional[str] = None
    accountId: Optional[str] = None


class MessageRecord(BaseModel):
    id: str
    content: str = ""
    sender_type: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: Optional[str] = None
    sentiment_score: Optional[float] = None


class WebhookPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    table: str
    db_schema: str = Field(default="public", alias="schema")
    record: Optional[MessageRecord] = None
    old_record: Optional[Dict[str, Any]] = None


class ConversationContext(BaseModel):
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    customer: Dict[str, Any] = Field(default_factory=dict)
    customer_company: Dict[str, Any] = Field(default_factory=dict)


class SupportReplyRequest(BaseModel):
    conversationContext: ConversationContext
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SentimentRequest(BaseModel):
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _error(status_code: int, message: str, details: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


async def _authenticated_user(authorization: Optional[str]) -> Optional[Any]:
    token = (authorization or "").replace("Bearer ", "", 1).strip()
    return await db_tool.get_user_from_token(token)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting AutoCRM API (provider=%s)", settings.llm_provider)
    configure_tracing()
    yield
    logger.info("Stopping AutoCRM API")
    db_tool.set_client(None)


app = FastAPI(title="AutoCRM Assistant", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or non-JSON bodies get the same 400 shape as missing fields."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
        for error in exc.errors()
    )
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, details)
    return _error(400, "Invalid request body", details)


@app.post("/assistant")
async def assistant(
    request: AssistantRequest,
    authorization: Optional[str] = Header(default=None),
):
    if not request.prompt or not request.accountId:
        return _error(400, "Prompt and accountId are required")

    try:
        user = await _authenticated_user(authorization)
        if user is None:
            return _error(401, "User not found")

        result = await runner.run_assistant(
            request.prompt,
            request.accountId,
            user_id=str(user.id),
        )
    except Exception as exc:
        logger.error("Error in assistant request: %s", exc, exc_info=True)
        return _error(500, str(exc) or "An unexpected error occurred", traceback.format_exc())

    return {
        "success": True,
        "orderId": result.order_id,
        "message": result.final_message,
    }


@app.post("/webhooks/messages")
async def message_webhook(payload: WebhookPayload):
    record = payload.record
    if payload.type != "INSERT" or payload.table != "messages" or record is None:
        return {"success": True, "skipped": "not a message insert"}
    if record.sender_type != "customer":
        return {"success": True, "skipped": "not a customer message"}
    if not record.conversation_id:
        return _error(400, "conversation_id is required")

    try:
        result = await runner.run_intake(
            record.conversation_id,
            record.content,
            message_id=record.id,
            sentiment_score=record.sentiment_score,
        )
    except Exception as exc:
        logger.error("Intake failed for conversation %s: %s", record.conversation_id, exc, exc_info=True)
        return _error(500, str(exc) or "An unexpected error occurred")

    return {
        "success": True,
        "conversationId": record.conversation_id,
        "reply": result.reply,
        "handoff": result.handoff_reason,
        "ticketId": result.ticket_id,
    }


@app.post("/support/generate-response")
async def generate_response(
    request: SupportReplyRequest,
    authorization: Optional[str] = Header(default=None),
):
    context = request.conversationContext
    try:
        if await _authenticated_user(authorization) is None:
            return _error(401, "User not found")

        reply = await support_agent.generate_support_reply(
            context.messages, context.customer, context.customer_company,
        )
    except Exception as exc:
        logger.error("Error generating support reply: %s", exc, exc_info=True)
        return _error(500, str(exc) or "An unexpected error occurred")

    return {"response": reply.response, "confidence": reply.confidence}


@app.post("/support/analyze-sentiment")
async def sentiment(request: SentimentRequest):
    try:
        analysis = await support_agent.analyze_sentiment(request.message)
    except Exception as exc:
        logger.error("Error analyzing sentiment: %s", exc, exc_info=True)
        return _error(500, str(exc) or "An unexpected error occurred")
    if analysis is None:
        return _error(500, "Sentiment analysis returned no score")

    message_id = request.metadata.get("messageId")
    if message_id:
        try:
            await db_tool.update_message_sentiment(message_id, analysis.happiness_score)
        except db_tool.CRMDataError as exc:
            logger.warning("Could not store sentiment for message %s: %s", message_id, exc)

    return {"happiness_score": analysis.happiness_score}


@app.get("/health")
async def health() -> Dict[str, Any]:
    llm_ok = await check_llm_health()
    return {
        "status": "healthy" if llm_ok and settings.backend_configured else "degraded",
        "timestamp": int(time.time()),
        "components": {
            "llm": {"ready": llm_ok, "provider": settings.llm_provider},
            "backend": {"ready": settings.backend_configured},
        },
    }
