"""
tests/conftest.py
─────────────────
Shared pytest fixtures for the AutoCRM test suite.
Provides:
  - An in-memory fake of the Supabase client (query builder + auth)
  - A scripted chat model that replays canned AIMessages
  - A temporary run journal per test
  - Canned catalog / company / order fixtures

Install test dependencies:
    pip install -e ".[test]"

Run all tests:
    pytest                             # uses [tool.pytest.ini_options]
    pytest tests/test_tools.py -v      # single module
"""
from __future__ import annotations

import os
import sys
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# ── Ensure project root is importable ────────────────────────────────────────
_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)


# ─────────────────────────────────────────────────────────────────────────────
# Fake Supabase client
# ─────────────────────────────────────────────────────────────────────────────

class FakeQuery:
    """Records builder calls; execute() returns the next canned result for the table."""

    def __init__(self, backend: "FakeSupabase", table: str):
        self.backend = backend
        self.table = table
        self.calls: List[tuple] = []

    def __getattr__(self, method: str):
        if method.startswith("_"):
            raise AttributeError(method)

        def _record(*args, **kwargs):
            self.calls.append((method, args))
            return self
        return _record

    async def execute(self):
        self.backend.executed.append(self)
        error = self.backend.errors.get(self.table)
        if error is not None:
            raise error
        queue = self.backend.results.get(self.table, [])
        data = queue.pop(0) if len(queue) > 1 else (queue[0] if queue else [])
        return SimpleNamespace(data=data)

    def called(self, method: str) -> List[tuple]:
        return [args for name, args in self.calls if name == method]


class FakeAuth:
    def __init__(self):
        self.users: Dict[str, Any] = {}

    async def get_user(self, token: str):
        user = self.users.get(token)
        return SimpleNamespace(user=user)


class FakeSupabase:
    def __init__(self):
        self.results: Dict[str, List[Any]] = {}
        self.errors: Dict[str, Exception] = {}
        self.executed: List[FakeQuery] = []
        self.auth = FakeAuth()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def queries(self, table: str) -> List[FakeQuery]:
        return [q for q in self.executed if q.table == table]


@pytest.fixture
def fake_supabase():
    """
    Install a FakeSupabase as the shared db_tool client for the test.

    Usage:
        def test_lookup(fake_supabase):
            fake_supabase.results["customer_companies"] = [[{"id": "co-1", "name": "Acme"}]]
    """
    from autocrm.tools import db_tool

    fake = FakeSupabase()
    db_tool.set_client(fake)
    yield fake
    db_tool.set_client(None)


@pytest.fixture
def seeded_backend(fake_supabase, catalog):
    """Backend with one company, a product catalog and a successful order insert."""
    fake_supabase.results["customer_companies"] = [[{"id": "co-1", "name": "Pure Aesthetics Chain"}]]
    fake_supabase.results["products"] = [catalog]
    fake_supabase.results["orders"] = [[{"id": "ord-1", "order_number": 1042, "status": "new"}]]
    fake_supabase.results["order_items"] = [[{"id": "item-1"}]]
    fake_supabase.results["assistant_updates"] = [[{"id": "upd"}]]
    return fake_supabase


# ─────────────────────────────────────────────────────────────────────────────
# Scripted chat model
# ─────────────────────────────────────────────────────────────────────────────

class ScriptedChatModel:
    """
    Stand-in for a tool-bound chat model.
    Replays `responses` in order; the last one repeats when `repeat_last` is set.
    `structured` answers with_structured_output calls: one value for every schema,
    or a dict keyed by schema class name (missing schemas answer None).
    """

    def __init__(self, responses: List[Any], structured: Any = None, repeat_last: bool = False):
        self.responses = list(responses)
        self.structured = structured
        self.repeat_last = repeat_last
        self.calls: List[List[Any]] = []
        self.bound_tools: Optional[List[Any]] = None

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self

    async def ainvoke(self, messages, config=None, **kwargs):
        self.calls.append(list(messages) if isinstance(messages, list) else [messages])
        if self.repeat_last and len(self.responses) == 1:
            return self._fresh_copy(self.responses[0], len(self.calls))
        return self.responses.pop(0)

    @staticmethod
    def _fresh_copy(message, turn: int):
        """A new message per turn so add_messages appends instead of replacing by id."""
        tool_calls = getattr(message, "tool_calls", None) or []
        return message.model_copy(update={
            "id": f"scripted-{turn}",
            "tool_calls": [{**call, "id": f"{call['id']}-{turn}"} for call in tool_calls],
        })

    def with_structured_output(self, schema, **kwargs):
        outer = self

        class _Structured:
            async def ainvoke(self, prompt, config=None, **kw):
                outer.calls.append([prompt])
                answer = outer.structured
                if isinstance(answer, dict):
                    answer = answer.get(schema.__name__)
                if isinstance(answer, Exception):
                    raise answer
                return answer

        return _Structured()


@pytest.fixture
def scripted_llm():
    """
    Factory for ScriptedChatModel.

    Usage:
        def test_loop(scripted_llm):
            llm = scripted_llm([AIMessage(content="done")])
    """
    def _factory(responses, structured=None, repeat_last=False):
        return ScriptedChatModel(responses, structured=structured, repeat_last=repeat_last)
    return _factory


def tool_call_message(name: str, args: Dict[str, Any], call_id: str = "call_1"):
    from langchain_core.messages import AIMessage
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


@pytest.fixture
def order_script():
    """The three model turns of a successful order creation."""
    return [
        tool_call_message("find_customer_company", {"customer_company_name": "Pure Aesthetics"}, "call_1"),
        tool_call_message(
            "find_products",
            {"account_id": "acc-1", "product_requests": [{"name": "hydrating serum", "quantity": 3}]},
            "call_2",
        ),
        tool_call_message(
            "create_order",
            {
                "customer_company_id": "co-1",
                "account_id": "acc-1",
                "product_ids": [{"id": "p-1", "quantity": 3}],
            },
            "call_3",
        ),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Data fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def catalog() -> List[Dict]:
    return [
        {"id": "p-1", "name": "Hydrating Serum", "price": 25.0},
        {"id": "p-2", "name": "Serum", "price": 18.5},
        {"id": "p-3", "name": "Night Cream 50ml", "price": 40.0},
    ]


@pytest.fixture
def orders_with_items() -> List[Dict]:
    return [
        {
            "id": "o-1",
            "order_number": 1,
            "order_items": [
                {"id": "i-1", "quantity": 2, "products": {"name": "Serum", "price": 18.5}},
                {"id": "i-2", "quantity": 1, "products": {"name": "Night Cream 50ml", "price": 40}},
            ],
        },
        {
            "id": "o-2",
            "order_number": 2,
            "order_items": [
                {"id": "i-3", "quantity": 4, "products": {"name": "Serum", "price": 18.5}},
                {"id": "i-4", "quantity": 1, "products": None},
            ],
        },
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Run journal fixture
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def journal(tmp_path):
    """RunJournal wired to a temporary SQLite file."""
    from autocrm.memory.run_journal import RunJournal
    j = RunJournal(str(tmp_path / "journal.db"))
    await j.init_db()
    return j


@pytest.fixture
def make_tool_call():
    """Factory for AIMessages that request a single tool call."""
    return tool_call_message
