"""
tools/db_tool.py
────────────────
Async data access to the hosted Supabase backend for all agents.
Handles: customer companies, customers, products, orders and order items,
tickets, assistant progress updates, conversation state and events,
message sentiment, and token lookup.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from supabase import AsyncClient, AuthError, PostgrestAPIError, acreate_client

from autocrm.config.settings import settings

logger = logging.getLogger(__name__)

ORDER_STATUS_NEW = "new"


class CRMDataError(RuntimeError):
    """A backend query or write failed."""


# ─────────────────────────────────────────────────────────────────────────────
# Client lifecycle
# ─────────────────────────────────────────────────────────────────────────────

_client: Optional[AsyncClient] = None
_client_lock = asyncio.Lock()


async def get_client() -> AsyncClient:
    """Return the shared service-role client, creating it on first use."""
    global _client
    async with _client_lock:
        if _client is None:
            if not settings.backend_configured:
                raise CRMDataError("Supabase is not configured (SUPABASE_URL / SUPABASE_SERVICE_KEY)")
            _client = await acreate_client(settings.supabase_url, settings.supabase_service_key)
            logger.info("Supabase client created for %s", settings.supabase_url)
        return _client


def set_client(client: Optional[AsyncClient]) -> None:
    """Install (or clear) the shared client. Used by the API lifespan and tests."""
    global _client
    _client = client


# ─────────────────────────────────────────────────────────────────────────────
# Low-level async helper
# ─────────────────────────────────────────────────────────────────────────────

async def _execute(query: Any, action: str) -> List[Dict[str, Any]]:
    """Run a PostgREST query builder, returning its rows or raising CRMDataError."""
    try:
        response = await query.execute()
    except PostgrestAPIError as exc:
        logger.error("Error %s: %s", action, exc.message)
        raise CRMDataError(f"Error {action}: {exc.message}") from exc
    return response.data or []


# ─────────────────────────────────────────────────────────────────────────────
# Domain-specific operations
# ─────────────────────────────────────────────────────────────────────────────

async def find_customer_companies(
    name: str,
    limit: int = 1,
    account_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Case-insensitive substring match on customer_companies.name."""
    client = await get_client()
    query = (
        client.table("customer_companies")
        .select("id, name")
        .ilike("name", f"%{name}%")
    )
    if account_id:
        query = query.eq("account_id", account_id)
    return await _execute(query.limit(limit), "fetching customer companies")


async def list_products(account_id: str) -> List[Dict[str, Any]]:
    client = await get_client()
    query = client.table("products").select("id, name, price").eq("account_id", account_id)
    return await _execute(query, "fetching products")


async def insert_order(
    account_id: str,
    company_id: str,
    status: str = ORDER_STATUS_NEW,
) -> Dict[str, Any]:
    """Insert a single order row and return it (with id and order_number)."""
    client = await get_client()
    rows = await _execute(
        client.table("orders").insert({
            "company_id": company_id,
            "account_id": account_id,
            "status": status,
        }),
        "creating order",
    )
    if not rows:
        raise CRMDataError("Error creating order: no row returned")
    return rows[0]


async def insert_order_items(order_id: str, lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Insert order_items for an order. Each line carries product_id and quantity."""
    client = await get_client()
    payload = [
        {"order_id": order_id, "product_id": line["product_id"], "quantity": line["quantity"]}
        for line in lines
    ]
    return await _execute(client.table("order_items").insert(payload), "creating order items")


async def fetch_orders_with_items(
    account_id: str,
    company_id: str,
    from_date: str,
    to_date: str,
) -> List[Dict[str, Any]]:
    """Orders for one customer company in a date window, with nested items and products."""
    client = await get_client()
    query = (
        client.table("orders")
        .select("id, order_number, order_items(id, quantity, products(name, price))")
        .eq("account_id", account_id)
        .eq("company_id", company_id)
        .gte("created_at", from_date)
        .lte("created_at", to_date)
    )
    return await _execute(query, "fetching orders")


async def insert_assistant_update(user_id: str, content: str) -> None:
    """Write a progress line the web client picks up over realtime."""
    client = await get_client()
    await _execute(
        client.table("assistant_updates").insert({"user_id": user_id, "content": content}),
        "writing assistant update",
    )


async def get_conversation(conversation_id: str) -> Dict[str, Any]:
    """The conversation row: its account_id and stored agent state."""
    client = await get_client()
    rows = await _execute(
        client.table("conversations").select("account_id, state").eq("id", conversation_id).limit(1),
        "fetching conversation",
    )
    if not rows:
        raise CRMDataError(f"Conversation {conversation_id} not found")
    return rows[0]


async def get_conversation_state(conversation_id: str) -> Dict[str, Any]:
    """Return the stored agent state of a conversation ({} when none is stored)."""
    conversation = await get_conversation(conversation_id)
    return conversation.get("state") or {}


async def save_conversation_state(conversation_id: str, state: Dict[str, Any]) -> None:
    client = await get_client()
    await _execute(
        client.table("conversations").update({"state": state}).eq("id", conversation_id),
        "saving conversation state",
    )


async def log_conversation_event(conversation_id: str, event_type: str, details: Dict[str, Any]) -> None:
    client = await get_client()
    await _execute(
        client.table("conversation_events").insert({
            "conversation_id": conversation_id,
            "event_type": event_type,
            "details": details,
        }),
        "logging conversation event",
    )


async def update_message_sentiment(message_id: str, score: float) -> None:
    client = await get_client()
    await _execute(
        client.table("messages").update({"sentiment_score": score}).eq("id", message_id),
        "saving message sentiment",
    )


# ── Customers & tickets ───────────────────────────────────────────────────────

async def find_customer_by_email(email: str) -> Optional[Dict[str, Any]]:
    client = await get_client()
    rows = await _execute(
        client.table("customers").select("id, customer_company_id").eq("email", email).limit(1),
        "checking existing customer",
    )
    return rows[0] if rows else None


async def get_or_create_customer_company(name: str, account_id: str) -> str:
    """Exact-name company lookup within the account; inserts the company when missing."""
    client = await get_client()
    rows = await _execute(
        client.table("customer_companies")
        .select("id")
        .eq("name", name)
        .eq("account_id", account_id)
        .limit(1),
        "looking up customer company",
    )
    if rows:
        return rows[0]["id"]

    created = await _execute(
        client.table("customer_companies").insert({"name": name, "account_id": account_id}),
        "creating customer company",
    )
    if not created:
        raise CRMDataError("Error creating customer company: no row returned")
    logger.info("Created customer company %r for account %s", name, account_id)
    return created[0]["id"]


async def insert_customer(
    email: str,
    company_id: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert a customer; a missing first name falls back to the email's local part."""
    client = await get_client()
    rows = await _execute(
        client.table("customers").insert({
            "email": email,
            "first_name": first_name or email.split("@")[0],
            "last_name": last_name or "",
            "customer_company_id": company_id,
        }),
        "creating customer",
    )
    if not rows:
        raise CRMDataError("Error creating customer: no row returned")
    return rows[0]


async def insert_ticket(ticket: Dict[str, Any]) -> Dict[str, Any]:
    client = await get_client()
    rows = await _execute(client.table("tickets").insert(ticket), "creating ticket")
    if not rows:
        raise CRMDataError("Error creating ticket: no row returned")
    return rows[0]


async def get_user_from_token(token: str) -> Optional[Any]:
    """Resolve a bearer token to a backend user; None if the token is not valid."""
    if not token:
        return None
    client = await get_client()
    try:
        response = await client.auth.get_user(token)
    except AuthError as exc:
        logger.warning("Token rejected by auth: %s", exc)
        return None
    return response.user if response else None
