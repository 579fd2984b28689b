"""
Shared fixtures for the NL2SQL agent test suite.

Unit tests never reach a network: the LLM and the databases are replaced by
scripted fakes that return queued responses and record every call.

Integration tests (marked with @pytest.mark.integration) need a real
OpenRouter key and database, and only run with --run-integration:

    pytest tests/unit -v
    pytest tests/integration -v --run-integration
"""

import os

# Settings require an API key; unit tests never use it against the API
os.environ.setdefault("LLM__OPENROUTER_API_KEY", "test-key")

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pytest

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.domain.base_enums import Dialect
from nl2sql_agent.domain.pipeline import ConversationMessage, ToolCallingTurn
from nl2sql_agent.domain.schema_nodes import Column, Schema, Table
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository
from nl2sql_agent.services.event_sink import CollectingEventSink, SessionEventEmitter


# =============================================================================
# Integration opt-in
# =============================================================================

def pytest_addoption(parser):
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run tests that need a live database or LLM API key",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(reason="needs --run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# =============================================================================
# Fakes
# =============================================================================

FetchOutcome = Union[Tuple[List[str], List[Sequence[Any]]], Exception]


class ScriptedLLMClient:
    """
    Stand-in for LLMClient returning queued responses in order.

    Queued exceptions are raised instead of returned. Every call is recorded
    with a copy of the conversation it was given.
    """

    def __init__(
        self,
        responses: Optional[List[Union[str, Exception]]] = None,
        turns: Optional[List[Union[ToolCallingTurn, Exception]]] = None,
    ):
        self.responses = list(responses or [])
        self.turns = list(turns or [])
        self.calls: List[Dict[str, Any]] = []
        self.tool_calls: List[Dict[str, Any]] = []

    def is_connected(self) -> bool:
        return True

    async def generate(
        self,
        system_prompt: str,
        conversation: List[ConversationMessage],
        temperature: Optional[float] = None,
        structured_schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        self.calls.append({
            "system_prompt": system_prompt,
            "conversation": list(conversation),
            "temperature": temperature,
            "structured_schema": structured_schema,
        })
        if not self.responses:
            raise AssertionError("Unexpected generate() call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def generate_with_tools(
        self,
        system_prompt: str,
        conversation: List[ConversationMessage],
        tools: List[Dict[str, Any]],
        temperature: Optional[float] = None,
    ) -> ToolCallingTurn:
        self.tool_calls.append({
            "system_prompt": system_prompt,
            "conversation": list(conversation),
            "tools": tools,
            "temperature": temperature,
        })
        if not self.turns:
            raise AssertionError("Unexpected generate_with_tools() call")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn


class FakeSQLClient:
    """
    Stand-in for a database client.

    fetch_result() pops scripted (columns, rows) outcomes (or raises queued
    exceptions); execute_query() answers catalog queries from a dict keyed
    by the exact query text.
    """

    def __init__(
        self,
        dialect: Dialect = Dialect.POSTGRES,
        results: Optional[List[FetchOutcome]] = None,
        catalog: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        catalog_error: Optional[Exception] = None,
    ):
        self.dialect = dialect
        self.results = list(results or [])
        self.catalog = catalog or {}
        self.catalog_error = catalog_error
        self.executed: List[str] = []
        self.catalog_queries: List[Tuple[str, Any]] = []

    async def fetch_result(self, query: str, timeout: Any = None) -> Tuple[List[str], List[Sequence[Any]]]:
        self.executed.append(query)
        if not self.results:
            raise AssertionError(f"Unexpected fetch_result() call: {query}")
        outcome = self.results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def execute_query(self, query: str, params: Any = None) -> List[Dict[str, Any]]:
        self.catalog_queries.append((query, params))
        if self.catalog_error is not None:
            raise self.catalog_error
        return self.catalog.get(query, [])

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "connected": True}


class StaticSchemaRepository:
    """Schema repository that always returns the same schema."""

    def __init__(self, schema: Schema):
        self.schema = schema
        self.requested: List[str] = []

    async def get_schema(self, connection_id: str) -> Schema:
        self.requested.append(connection_id)
        return self.schema


def classification(category: str, confidence: str = "high") -> str:
    """Structured classification response for a category."""
    return json.dumps({"category": category, "confidence": confidence})


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def shop_schema() -> Schema:
    """Three-table schema: users, orders (FK to users) and products."""
    return Schema(
        database_name="shop",
        tables=[
            Table(
                name="users",
                schema_name="public",
                row_count=42,
                columns=[
                    Column(name="id", data_type="integer", is_nullable=False, is_primary_key=True),
                    Column(name="name", data_type="text"),
                    Column(name="email", data_type="text", is_nullable=False),
                    Column(name="created_at", data_type="timestamp"),
                ],
            ),
            Table(
                name="orders",
                schema_name="public",
                row_count=120,
                columns=[
                    Column(name="id", data_type="integer", is_nullable=False, is_primary_key=True),
                    Column(
                        name="user_id",
                        data_type="integer",
                        is_nullable=False,
                        is_foreign_key=True,
                        foreign_key_table="users",
                        foreign_key_column="id",
                    ),
                    Column(name="total", data_type="numeric"),
                    Column(name="status", data_type="text"),
                    Column(name="created_at", data_type="timestamp"),
                ],
            ),
            Table(
                name="products",
                schema_name="public",
                row_count=15,
                columns=[
                    Column(name="id", data_type="integer", is_nullable=False, is_primary_key=True),
                    Column(name="name", data_type="text"),
                    Column(name="price", data_type="numeric"),
                ],
            ),
        ],
    )


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig()


@pytest.fixture
def collector() -> CollectingEventSink:
    return CollectingEventSink()


@pytest.fixture
def emitter(collector) -> SessionEventEmitter:
    return SessionEventEmitter("session-test", [collector])


@pytest.fixture
def sql_client() -> FakeSQLClient:
    return FakeSQLClient()


@pytest.fixture
def execution_repo(sql_client) -> SQLExecutionRepository:
    return SQLExecutionRepository({"main": sql_client})
