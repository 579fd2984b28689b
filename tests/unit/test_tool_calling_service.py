"""
Unit tests for the tool-calling orchestrator.

Usage:
    pytest tests/unit/test_tool_calling_service.py -v
"""

import json
from datetime import date

import pytest

from conftest import FakeSQLClient, ScriptedLLMClient, StaticSchemaRepository, classification
from nl2sql_agent.config import AgentConfig
from nl2sql_agent.domain.base_enums import MessageRole, PipelineEventType, QueryStatus, QuestionType
from nl2sql_agent.domain.errors import BudgetExhaustedError, ExecutionError, GenerationParseError
from nl2sql_agent.domain.pipeline import ToolCall, ToolCallingTurn
from nl2sql_agent.domain.responses import ExecutionResult
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository
from nl2sql_agent.services.tool_calling_service import (
    EXECUTE_SQL_TOOL,
    ToolCallingService,
    build_observation,
    strip_final_answer_prefix,
)


def _sql_call(query, call_id="call_1", **extra):
    return ToolCallingTurn(tool_calls=[
        ToolCall(id=call_id, name="execute_sql", arguments={"query": query, **extra}),
    ])


def _answer(text):
    return ToolCallingTurn(content=text)


def _service(llm, client, schema, config=None):
    return ToolCallingService(
        llm,
        SQLExecutionRepository({"main": client}),
        StaticSchemaRepository(schema),
        config or AgentConfig(),
    )


def _observations(llm_call):
    return [message for message in llm_call["conversation"] if message.role == MessageRole.TOOL]


class TestToolLoop:

    @pytest.mark.asyncio
    async def test_query_then_answer(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(
            responses=[classification("statistic")],
            turns=[_sql_call("SELECT COUNT(*) AS total FROM users"), _answer("There are 42 users.")],
        )
        client = FakeSQLClient(results=[(["total"], [(42,)])])

        response = await _service(llm, client, shop_schema).run("How many users?", "main", [], emitter)

        assert response.status == QueryStatus.COMPLETED
        assert response.answer == "There are 42 users."
        assert response.iterations == 2
        assert response.sql_queries == ["SELECT COUNT(*) AS total FROM users LIMIT 100"]
        assert response.question_type == QuestionType.STATISTIC
        assert client.executed == ["SELECT COUNT(*) AS total FROM users LIMIT 100"]

        first_call, second_call = llm.tool_calls
        assert first_call["tools"] == [EXECUTE_SQL_TOOL]
        assert "IMPORTANT: Use PostgreSQL-compatible SQL syntax." in first_call["system_prompt"]
        assert first_call["temperature"] == AgentConfig().tool_loop_temperature

        assistant_turn = second_call["conversation"][-2]
        assert assistant_turn.role == MessageRole.ASSISTANT
        assert assistant_turn.tool_calls[0].id == "call_1"
        observation = _observations(second_call)[0]
        assert observation.tool_call_id == "call_1"
        assert observation.content.startswith("Query executed successfully. Returned 1 row in")

        assert len(collector.of_type(PipelineEventType.STATISTIC)) == 1
        tokens = [event.content for event in collector.of_type(PipelineEventType.TOKEN)]
        assert "\n\n**Executing SQL:**\n```sql\nSELECT COUNT(*) AS total FROM users LIMIT 100\n```\n" in tokens
        assert tokens[-1] == "There are 42 users."
        assert collector.events[-1].type == PipelineEventType.COMPLETE

    @pytest.mark.asyncio
    async def test_rejected_sql_becomes_observation(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(
            responses=[classification("table_view")],
            turns=[_sql_call("DELETE FROM users"), _answer("I can only read data.")],
        )
        client = FakeSQLClient()

        response = await _service(llm, client, shop_schema).run("Remove all users", "main", [], emitter)

        assert response.answer == "I can only read data."
        assert client.executed == []
        assert response.sql_queries == []
        tokens = [event.content for event in collector.of_type(PipelineEventType.TOKEN)]
        assert not any("DELETE" in token for token in tokens)
        observation = _observations(llm.tool_calls[1])[0].content
        assert observation.startswith("SQL execution failed: Only SELECT queries are allowed")

    @pytest.mark.asyncio
    async def test_database_error_becomes_observation(self, shop_schema, emitter):
        llm = ScriptedLLMClient(
            responses=[classification("table_view")],
            turns=[
                _sql_call("SELECT nme FROM users", call_id="a"),
                _sql_call("SELECT name FROM users", call_id="b"),
                _answer("Here are the users."),
            ],
        )
        client = FakeSQLClient(results=[
            ExecutionError('column "nme" does not exist'),
            (["name"], [("Ada",), ("Linus",)]),
        ])

        response = await _service(llm, client, shop_schema).run("List users", "main", [], emitter)

        assert response.iterations == 3
        assert response.sql_queries == ["SELECT name FROM users LIMIT 100"]
        assert client.executed == ["SELECT nme FROM users LIMIT 100", "SELECT name FROM users LIMIT 100"]
        observations = _observations(llm.tool_calls[2])
        assert 'column "nme" does not exist' in observations[0].content
        assert observations[1].content.startswith("Query executed successfully. Returned 2 rows in")

    @pytest.mark.asyncio
    async def test_iteration_cap(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(
            responses=[classification("table_view")],
            turns=[_sql_call("SELECT 1", call_id="a"), _sql_call("SELECT 2", call_id="b")],
        )
        client = FakeSQLClient(results=[(["?column?"], [(1,)]), (["?column?"], [(2,)])])
        config = AgentConfig(max_tool_iterations=2)

        with pytest.raises(BudgetExhaustedError) as exc_info:
            await _service(llm, client, shop_schema, config).run("Loop forever", "main", [], emitter)

        assert exc_info.value.attempts == 2
        assert str(exc_info.value) == "Maximum iterations (2) reached without finding answer"
        assert len(llm.tool_calls) == 2
        assert collector.of_type(PipelineEventType.ERROR)[0].content == str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_turn_is_parse_error(self, shop_schema, emitter):
        llm = ScriptedLLMClient(responses=[classification("table_view")], turns=[ToolCallingTurn()])

        with pytest.raises(GenerationParseError, match="Model returned empty response"):
            await _service(llm, FakeSQLClient(), shop_schema).run("Show users", "main", [], emitter)

    @pytest.mark.asyncio
    async def test_unknown_tool_and_bad_arguments(self, shop_schema, emitter):
        llm = ScriptedLLMClient(
            responses=[classification("table_view")],
            turns=[
                ToolCallingTurn(tool_calls=[
                    ToolCall(id="a", name="drop_database", arguments={}),
                    ToolCall(id="b", name="execute_sql", error="Expecting value: line 1 column 1"),
                    ToolCall(id="c", name="execute_sql", arguments={"sql": "SELECT 1"}),
                ]),
                _answer("Sorry."),
            ],
        )

        await _service(llm, FakeSQLClient(), shop_schema).run("Show users", "main", [], emitter)

        unknown, bad_args, missing_query = [message.content for message in _observations(llm.tool_calls[1])]
        assert unknown == "Unknown tool: drop_database. The only available tool is execute_sql."
        assert bad_args == "Failed to parse tool arguments: Expecting value: line 1 column 1"
        assert missing_query.startswith("Missing query in tool call.")

    @pytest.mark.asyncio
    async def test_dry_run_does_not_execute(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(
            responses=[classification("table_view")],
            turns=[_sql_call("SELECT * FROM orders", dry_run=True), _answer("Here is the SQL.")],
        )
        client = FakeSQLClient()

        response = await _service(llm, client, shop_schema).run("Write SQL for all orders", "main", [], emitter)

        assert response.answer == "Here is the SQL."
        assert client.executed == []
        observation = _observations(llm.tool_calls[1])[0].content
        assert observation == "Query generated (not executed):\nSELECT * FROM orders LIMIT 100"
        tokens = [event.content for event in collector.of_type(PipelineEventType.TOKEN)]
        assert "\n\n**Generated SQL:**\n```sql\nSELECT * FROM orders LIMIT 100\n```\n" in tokens


class TestGeneralQuestions:

    @pytest.mark.asyncio
    async def test_general_question_answered_directly(self, shop_schema, emitter):
        llm = ScriptedLLMClient(responses=[classification("general"), "Final Answer: Hello! Ask me about your data."])
        client = FakeSQLClient()

        response = await _service(llm, client, shop_schema).run("hi", "main", [], emitter)

        assert response.answer == "Hello! Ask me about your data."
        assert response.iterations == 0
        assert response.question_type == QuestionType.GENERAL
        assert llm.tool_calls == []


class TestObservations:

    def test_zero_rows(self):
        assert build_observation(ExecutionResult()) == "Query executed successfully but returned 0 rows."

    def test_preview_limited_to_twenty_rows(self):
        rows = [{"id": index} for index in range(30)]
        result = ExecutionResult(columns=["id"], rows=rows, row_count=30, execution_time_ms=12.7)

        observation = build_observation(result)

        summary, preview = observation.split("\nRows: ")
        assert summary == "Query executed successfully. Returned 30 rows in 12ms. Columns: id"
        assert json.loads(preview) == rows[:20]

    def test_non_json_values_are_stringified(self):
        result = ExecutionResult(columns=["day"], rows=[{"day": date(2024, 1, 31)}], row_count=1)

        assert '"2024-01-31"' in build_observation(result)

    def test_strip_final_answer_prefix(self):
        assert strip_final_answer_prefix("  Final Answer: 42 ") == "42"
        assert strip_final_answer_prefix("No prefix") == "No prefix"
