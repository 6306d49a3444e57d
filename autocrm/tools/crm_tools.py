"""
tools/crm_tools.py
──────────────────
LangChain tools bound to the order assistant's chat model.

  find_customer_company — fuzzy company lookup by name
  find_products         — resolve product names to ids and quantities
  create_order          — insert an order and its items, then end the run
  get_stats             — revenue / order / per-product totals for a period

Every tool returns a plain dict. The graph's tools node serialises it into a
ToolMessage and lifts ids (customer_company_id, order_id) into graph state.
A result with "terminate": True ends the assistant loop.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from autocrm.tools import db_tool

logger = logging.getLogger(__name__)

TERMINATE_MARKER = "TERMINATE"


# ── Argument schemas ──────────────────────────────────────────────────────────

class FindCustomerCompanyInput(BaseModel):
    customer_company_name: str = Field(description="The name of the customer company to find")
    account_id: Optional[str] = Field(
        default=None, description="The ID of the account the company belongs to"
    )


class ProductRequest(BaseModel):
    name: str = Field(description="The name of the product to find")
    quantity: Optional[int] = Field(
        default=None, ge=1, description="The quantity of the product (defaults to 1)"
    )


class FindProductsInput(BaseModel):
    account_id: str = Field(description="The ID of the account to search products in")
    product_requests: List[ProductRequest] = Field(
        description="Array of product requests with names and optional quantities"
    )


class OrderLine(BaseModel):
    id: str = Field(description="The ID of the product")
    quantity: int = Field(ge=1, description="The quantity of the product")


class CreateOrderInput(BaseModel):
    customer_company_id: str = Field(description="The ID of the customer company to create the order for")
    account_id: str = Field(description="The ID of the account to create the order for")
    product_ids: List[OrderLine] = Field(description="Array of product IDs and their quantities")


class GetStatsInput(BaseModel):
    account_id: str = Field(description="The ID of the account to search orders in")
    customer_company_id: str = Field(description="The ID of the customer company to search orders in")
    from_date: date = Field(description="The start date of the time period (YYYY-MM-DD)")
    to_date: date = Field(description="The end date of the time period, inclusive (YYYY-MM-DD)")


# ── Pure helpers ──────────────────────────────────────────────────────────────

def match_products(
    catalog: List[Dict[str, Any]],
    requests: List[Dict[str, Any]],
) -> Dict[str, List]:
    """
    Resolve requested product names against an account's catalog.

    Exact case-insensitive name match wins; otherwise the first catalog entry
    whose name contains the request, or is contained in it, is used.
    Quantity defaults to 1.
    """
    by_name = {p["name"].lower(): p for p in catalog}
    found: List[Dict[str, Any]] = []
    not_found: List[str] = []

    for request in requests:
        search = request["name"].lower()
        match = by_name.get(search)
        if match is None:
            match = next(
                (
                    p for p in catalog
                    if search in p["name"].lower() or p["name"].lower() in search
                ),
                None,
            )
        if match is None:
            not_found.append(request["name"])
            continue
        found.append({
            "id": match["id"],
            "name": match["name"],
            "quantity": request.get("quantity") or 1,
        })

    return {"found": found, "not_found": not_found}


def compute_order_stats(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Total revenue, order count and per-product quantity / spend."""
    total_revenue = 0.0
    product_stats: Dict[str, Dict[str, float]] = {}

    for order in orders:
        for item in order.get("order_items") or []:
            product = item.get("products") or {}
            quantity = item.get("quantity") or 0
            price = float(product.get("price") or 0)
            total_revenue += quantity * price

            name = product.get("name")
            if not name:
                continue
            entry = product_stats.setdefault(name, {"quantity": 0, "total_spent": 0.0})
            entry["quantity"] += quantity
            entry["total_spent"] += quantity * price

    return {
        "total_revenue": round(total_revenue, 2),
        "total_orders": len(orders),
        "product_stats": product_stats,
    }


# ── Tools ─────────────────────────────────────────────────────────────────────

@tool("find_customer_company", args_schema=FindCustomerCompanyInput)
async def find_customer_company(
    customer_company_name: str,
    account_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Find a customer company ID by name using fuzzy matching."""
    matches = await db_tool.find_customer_companies(
        customer_company_name, limit=1, account_id=account_id
    )
    if not matches:
        logger.info("No customer company matches %r", customer_company_name)
        return {"message": f'No customer company found matching "{customer_company_name}"'}

    company = matches[0]
    logger.info("Matched customer company %r -> %s", customer_company_name, company["id"])
    return {
        "customer_company_id": company["id"],
        "name": company["name"],
        "message": f"Customer company found with ID: {company['id']}",
    }


@tool("find_products", args_schema=FindProductsInput)
async def find_products(account_id: str, product_requests: List[Any]) -> Dict[str, Any]:
    """Find products by name and return their exact IDs and quantities.
    Once products are found, their IDs must be used exactly as provided."""
    if not account_id:
        raise ValueError("Account ID is missing")

    catalog = await db_tool.list_products(account_id)
    requests = [
        r.model_dump() if isinstance(r, BaseModel) else dict(r)
        for r in product_requests
    ]
    result = match_products(catalog, requests)
    if result["not_found"]:
        logger.info("Products not found: %s", result["not_found"])

    return {
        "product_ids": [{"id": p["id"], "quantity": p["quantity"]} for p in result["found"]],
        "not_found": result["not_found"],
    }


@tool("create_order", args_schema=CreateOrderInput)
async def create_order(
    customer_company_id: str,
    account_id: str,
    product_ids: List[Any],
) -> Dict[str, Any]:
    """Create a new order using the exact product IDs that were previously found.
    Do not modify or replace the product IDs."""
    if not account_id:
        raise ValueError("Account ID is missing")
    if not product_ids:
        raise ValueError("No products selected")

    lines = [
        {
            "product_id": p.id if isinstance(p, BaseModel) else p["id"],
            "quantity": p.quantity if isinstance(p, BaseModel) else p["quantity"],
        }
        for p in product_ids
    ]

    order = await db_tool.insert_order(account_id, customer_company_id)
    await db_tool.insert_order_items(order["id"], lines)
    logger.info("Created order %s (#%s) with %d items", order["id"], order.get("order_number"), len(lines))

    items_text = ", ".join(
        f"Product ID: {line['product_id']} (Quantity: {line['quantity']})" for line in lines
    )
    return {
        "order_id": order["id"],
        "order_number": order.get("order_number"),
        "terminate": True,
        "message": (
            f"Successfully created Order #{order.get('order_number')} (ID: {order['id']}) "
            f"with the following items: {items_text}. {TERMINATE_MARKER}."
        ),
    }


@tool("get_stats", args_schema=GetStatsInput)
async def get_stats(
    account_id: str,
    customer_company_id: str,
    from_date: date,
    to_date: date,
) -> Dict[str, Any]:
    """Get stats for an account by account ID for a time period.
    Total revenue, total orders, and product stats."""
    if not account_id:
        raise ValueError("Account ID is missing")

    orders = await db_tool.fetch_orders_with_items(
        account_id,
        customer_company_id,
        from_date.isoformat(),
        f"{to_date.isoformat()}T23:59:59.999999",
    )
    return compute_order_stats(orders)


CRM_TOOLS: List[BaseTool] = [find_customer_company, find_products, create_order, get_stats]


def get_tool_map(tools: Optional[List[BaseTool]] = None) -> Dict[str, BaseTool]:
    return {t.name: t for t in (tools or CRM_TOOLS)}
