"""
tests/test_api.py
─────────────────
HTTP surface tests using FastAPI's TestClient.
Runners and token lookup are patched; no model or backend is contacted.
Run: pytest tests/test_api.py -v
"""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client():
    from autocrm.api.server import app
    with TestClient(app) as test_client:
        yield test_client


def _webhook(record=None, **overrides):
    payload = {"type": "INSERT", "table": "messages", "schema": "public", "record": record}
    payload.update(overrides)
    return payload


# ── POST /assistant ───────────────────────────────────────────────────────────

def test_assistant_requires_prompt_and_account(client):
    response = client.post("/assistant", json={"prompt": "Create an order"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Prompt and accountId are required"}


def test_assistant_rejects_unknown_user(client):
    with patch("autocrm.tools.db_tool.get_user_from_token", new=AsyncMock(return_value=None)) as lookup:
        response = client.post(
            "/assistant",
            json={"prompt": "Create an order", "accountId": "acc-1"},
            headers={"Authorization": "Bearer bad-token"},
        )
    assert response.status_code == 401
    assert response.json()["error"] == "User not found"
    lookup.assert_awaited_once_with("bad-token")


def test_assistant_success(client):
    from autocrm.workflows.runner import AssistantResult

    result = AssistantResult(session_id="run-1", order_id="ord-1", final_message="")
    user = SimpleNamespace(id="user-1")
    with patch("autocrm.tools.db_tool.get_user_from_token", new=AsyncMock(return_value=user)), \
         patch("autocrm.workflows.runner.run_assistant", new=AsyncMock(return_value=result)) as run:
        response = client.post(
            "/assistant",
            json={"prompt": "Create an order for Acme", "accountId": "acc-1"},
            headers={"Authorization": "Bearer good-token"},
        )

    assert response.status_code == 200
    assert response.json() == {"success": True, "orderId": "ord-1", "message": ""}
    run.assert_awaited_once_with("Create an order for Acme", "acc-1", user_id="user-1")


def test_assistant_failure_returns_details(client):
    from autocrm.workflows.runner import AssistantError

    user = SimpleNamespace(id="user-1")
    with patch("autocrm.tools.db_tool.get_user_from_token", new=AsyncMock(return_value=user)), \
         patch(
             "autocrm.workflows.runner.run_assistant",
             new=AsyncMock(side_effect=AssistantError("Assistant did not finish within 25 steps")),
         ):
        response = client.post(
            "/assistant",
            json={"prompt": "Create an order", "accountId": "acc-1"},
            headers={"Authorization": "Bearer good-token"},
        )

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Assistant did not finish within 25 steps"
    assert "AssistantError" in body["details"]


def test_cors_preflight(client):
    from autocrm.config.settings import settings

    origin = settings.cors_allow_origins[0]
    response = client.options(
        "/assistant",
        headers={
            "Origin": origin,
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == origin


# ── POST /webhooks/messages ───────────────────────────────────────────────────

def test_webhook_skips_non_customer_messages(client):
    record = {"id": "m-1", "content": "Hello", "sender_type": "agent", "conversation_id": "conv-1"}
    with patch("autocrm.workflows.runner.run_intake", new=AsyncMock()) as run:
        response = client.post("/webhooks/messages", json=_webhook(record))
        skipped_update = client.post("/webhooks/messages", json=_webhook(record, type="UPDATE"))

    assert response.json()["skipped"] == "not a customer message"
    assert skipped_update.json()["skipped"] == "not a message insert"
    run.assert_not_awaited()


def test_webhook_requires_conversation(client):
    record = {"id": "m-1", "content": "Hello", "sender_type": "customer"}
    response = client.post("/webhooks/messages", json=_webhook(record))
    assert response.status_code == 400


def test_webhook_runs_intake(client):
    from autocrm.workflows.runner import IntakeResult

    record = {
        "id": "m-1", "content": "Hi, I'm Jo", "sender_type": "customer",
        "conversation_id": "conv-1", "sentiment_score": 0.9,
    }
    result = IntakeResult(reply="Hi Jo!")
    with patch("autocrm.workflows.runner.run_intake", new=AsyncMock(return_value=result)) as run:
        response = client.post("/webhooks/messages", json=_webhook(record))

    assert response.status_code == 200
    assert response.json() == {
        "success": True, "conversationId": "conv-1", "reply": "Hi Jo!", "handoff": None, "ticketId": None,
    }
    run.assert_awaited_once_with("conv-1", "Hi, I'm Jo", message_id="m-1", sentiment_score=0.9)


def test_webhook_reports_handoff(client):
    from autocrm.workflows.runner import IntakeResult

    record = {"id": "m-2", "content": "This is broken again", "sender_type": "customer", "conversation_id": "conv-1"}
    result = IntakeResult(reply="I'm sorry for the trouble.", handoff_reason="sentiment", ticket_id="t-1")
    with patch("autocrm.workflows.runner.run_intake", new=AsyncMock(return_value=result)):
        body = client.post("/webhooks/messages", json=_webhook(record)).json()

    assert body["handoff"] == "sentiment"
    assert body["ticketId"] == "t-1"


# ── Request validation ────────────────────────────────────────────────────────

def test_non_json_body_is_a_bad_request(client):
    response = client.post(
        "/assistant", content=b"not json", headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Invalid request body"


def test_wrong_field_types_are_a_bad_request(client):
    response = client.post("/assistant", json={"prompt": ["Create", "an order"], "accountId": "acc-1"})
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "prompt" in response.json()["details"]


def test_webhook_without_record_id_is_a_bad_request(client):
    record = {"content": "Hello", "sender_type": "customer", "conversation_id": "conv-1"}
    response = client.post("/webhooks/messages", json=_webhook(record))
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


# ── POST /support/* ───────────────────────────────────────────────────────────

def _support_body():
    return {
        "conversationContext": {
            "messages": [{"sender_type": "customer", "content": "I can't log in"}],
            "customer": {"first_name": "Jo", "last_name": "Park"},
            "customer_company": {"name": "Acme"},
        },
        "metadata": {"ticketId": "t-1"},
    }


def test_support_reply_requires_user(client):
    with patch("autocrm.tools.db_tool.get_user_from_token", new=AsyncMock(return_value=None)):
        response = client.post("/support/generate-response", json=_support_body())
    assert response.status_code == 401
    assert response.json()["error"] == "User not found"


def test_support_reply_success(client):
    from autocrm.agents.support_agent import SupportReply

    reply = SupportReply(response="Try resetting your password.", confidence=0.7)
    user = SimpleNamespace(id="user-1")
    with patch("autocrm.tools.db_tool.get_user_from_token", new=AsyncMock(return_value=user)), \
         patch("autocrm.agents.support_agent.generate_support_reply", new=AsyncMock(return_value=reply)) as draft:
        response = client.post(
            "/support/generate-response", json=_support_body(),
            headers={"Authorization": "Bearer good-token"},
        )

    assert response.status_code == 200
    assert response.json() == {"response": "Try resetting your password.", "confidence": 0.7}
    messages, customer, company = draft.await_args.args
    assert customer["first_name"] == "Jo"
    assert company == {"name": "Acme"}


def test_support_reply_model_failure(client):
    from autocrm.agents.support_agent import SupportAgentError

    user = SimpleNamespace(id="user-1")
    with patch("autocrm.tools.db_tool.get_user_from_token", new=AsyncMock(return_value=user)), \
         patch(
             "autocrm.agents.support_agent.generate_support_reply",
             new=AsyncMock(side_effect=SupportAgentError("The model did not return a support reply")),
         ):
        response = client.post("/support/generate-response", json=_support_body())

    assert response.status_code == 500
    assert response.json()["error"] == "The model did not return a support reply"


def test_analyze_sentiment_endpoint_stores_score(client):
    from autocrm.agents.support_agent import SentimentAnalysis

    analysis = SentimentAnalysis(happiness_score=0.2)
    with patch("autocrm.agents.support_agent.analyze_sentiment", new=AsyncMock(return_value=analysis)), \
         patch("autocrm.tools.db_tool.update_message_sentiment", new=AsyncMock()) as store:
        response = client.post(
            "/support/analyze-sentiment",
            json={"message": "Still broken", "metadata": {"messageId": "m-1", "conversationId": "conv-1"}},
        )

    assert response.status_code == 200
    assert response.json() == {"happiness_score": 0.2}
    store.assert_awaited_once_with("m-1", 0.2)


def test_analyze_sentiment_endpoint_without_score(client):
    with patch("autocrm.agents.support_agent.analyze_sentiment", new=AsyncMock(return_value=None)):
        response = client.post("/support/analyze-sentiment", json={"message": ""})
    assert response.status_code == 500
    assert response.json()["success"] is False


# ── GET /health ───────────────────────────────────────────────────────────────

def test_health_reports_components(client):
    with patch("autocrm.api.server.check_llm_health", new=AsyncMock(return_value=True)):
        response = client.get("/health")
    body = response.json()
    assert response.status_code == 200
    assert body["components"]["llm"]["ready"] is True
    assert body["status"] in ("healthy", "degraded")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
