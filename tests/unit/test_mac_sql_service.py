"""
Unit tests for the MAC-SQL pipeline orchestrator.

The LLM answers from a script (classification, selection, decomposition,
corrections, summary) and the database from queued results, so every test
runs the real classifier, selector, decomposer and refiner.

Usage:
    pytest tests/unit/test_mac_sql_service.py -v
"""

import json

import pytest

from conftest import FakeSQLClient, ScriptedLLMClient, StaticSchemaRepository, classification
from nl2sql_agent.config import AgentConfig
from nl2sql_agent.domain.base_enums import MessageRole, PipelineEventType, QueryStatus, QuestionType
from nl2sql_agent.domain.errors import ExecutionError, GenerationParseError
from nl2sql_agent.domain.pipeline import ConversationMessage
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository
from nl2sql_agent.services.mac_sql_service import (
    NO_DATA_ANSWER,
    NO_ROWS_ANSWER,
    MacSQLService,
    recent_dialogue,
)


def _selection(*names):
    return json.dumps({"reasoning": "relevant", "tables": [{"name": name} for name in names]})


def _plan(*queries, complexity="simple"):
    return json.dumps({"complexity": complexity, "reasoning": "plan", "queries": list(queries)})


def _query(sql, order=0, depends_on_previous=False):
    return {"question": "step", "sql": sql, "order": order, "depends_on_previous": depends_on_previous}


def _service(llm, client, schema, config=None):
    return MacSQLService(
        llm,
        SQLExecutionRepository({"main": client}),
        StaticSchemaRepository(schema),
        config or AgentConfig(),
    )


def _thinking(collector):
    return [event.content for event in collector.of_type(PipelineEventType.THINKING)]


class TestCountQuestion:
    """A statistic question answered by one COUNT query."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(responses=[
            classification("statistic"),
            _selection("users"),
            _plan(_query("SELECT COUNT(*) AS total FROM users")),
        ])
        client = FakeSQLClient(results=[(["total"], [(42,)])])
        service = _service(llm, client, shop_schema)

        response = await service.run("How many users are there?", "main", [], emitter)

        assert response.status == QueryStatus.COMPLETED
        assert response.question_type == QuestionType.STATISTIC
        assert response.answer == "Based on your query, the answer is: **42**"
        assert response.sql_queries == ["SELECT COUNT(*) AS total FROM users LIMIT 100"]
        assert response.iterations == 1

        thinking = _thinking(collector)
        assert thinking[0] == "Analyzing your question...\n"
        assert "Selected tables: users\n" in thinking
        assert "Single query generated\n" in thinking
        assert "Executing SQL: SELECT COUNT(*) AS total FROM users\n" in thinking

        statistic = collector.of_type(PipelineEventType.STATISTIC)
        assert len(statistic) == 1
        assert statistic[0].payload["value"] == 42
        assert collector.of_type(PipelineEventType.TABLE_DATA) == []

        assert collector.events[-1].type == PipelineEventType.COMPLETE
        assert collector.of_type(PipelineEventType.TOKEN)[0].content == response.answer
        assert [event.sequence for event in collector.events] == list(range(len(collector.events)))

    @pytest.mark.asyncio
    async def test_refinement_is_reported(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(responses=[
            classification("statistic"),
            _selection("users"),
            _plan(_query("SELECT COUNT(*) AS total FROM user")),
            "SELECT COUNT(*) AS total FROM users",
        ])
        client = FakeSQLClient(results=[
            ExecutionError('relation "user" does not exist'),
            (["total"], [(42,)]),
        ])

        response = await _service(llm, client, shop_schema).run("How many users?", "main", [], emitter)

        assert response.iterations == 2
        assert response.sql_queries == ["SELECT COUNT(*) AS total FROM users LIMIT 100"]
        assert "Query succeeded after 2 refinement(s)\n" in _thinking(collector)


class TestFailurePolicy:

    @pytest.mark.asyncio
    async def test_first_query_failure_aborts_with_sql(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(responses=[
            classification("table_view"),
            _selection("users"),
            _plan(_query("SELECT nme FROM users")),
            "SELECT nme FROM users",
            "SELECT nme FROM users",
        ])
        client = FakeSQLClient(results=[ExecutionError('column "nme" does not exist')] * 3)

        response = await _service(llm, client, shop_schema).run("List user names", "main", [], emitter)

        assert response.status == QueryStatus.FAILED
        assert response.sql_queries == ["SELECT nme FROM users"]
        assert response.iterations == 1
        assert "```sql\nSELECT nme FROM users\n```" in response.answer
        assert "I encountered an error executing the query" in response.answer
        assert any(text.startswith("Query failed: ") for text in _thinking(collector))
        errors = collector.of_type(PipelineEventType.ERROR)
        assert len(errors) == 1
        assert errors[0].content.startswith("Query refinement failed after 3 attempts. Last error: ")
        assert collector.events[-2].type == PipelineEventType.ERROR
        assert collector.events[-1].type == PipelineEventType.COMPLETE
        assert len(client.executed) == 3

    @pytest.mark.asyncio
    async def test_independent_failure_is_skipped(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(responses=[
            classification("complex"),
            _selection("users", "orders"),
            _plan(
                _query("SELECT id, name FROM users", order=0),
                _query("SELECT broken FROM orders", order=1),
                complexity="complex",
            ),
        ])
        client = FakeSQLClient(results=[
            (["id", "name"], [(1, "Ada"), (2, "Linus"), (3, "Grace")]),
            ExecutionError('column "broken" does not exist'),
        ])
        config = AgentConfig(max_refine_attempts=1)

        response = await _service(llm, client, shop_schema, config).run("Users and orders", "main", [], emitter)

        assert response.status == QueryStatus.COMPLETED
        assert response.sql_queries == ["SELECT id, name FROM users LIMIT 100"]
        assert response.answer == "Found 3 row(s) of data. The results are displayed in the table above."
        assert "Complex query decomposed into 2 steps\n" in _thinking(collector)
        assert len(collector.of_type(PipelineEventType.TABLE_DATA)) == 1

    @pytest.mark.asyncio
    async def test_dependent_failure_aborts(self, shop_schema, emitter):
        llm = ScriptedLLMClient(responses=[
            classification("complex"),
            _selection("users", "orders"),
            _plan(
                _query("SELECT id FROM users", order=0),
                _query("SELECT broken FROM orders", order=1, depends_on_previous=True),
                complexity="complex",
            ),
        ])
        client = FakeSQLClient(results=[
            (["id"], [(1,)]),
            ExecutionError('column "broken" does not exist'),
        ])
        config = AgentConfig(max_refine_attempts=1)

        response = await _service(llm, client, shop_schema, config).run("Orders of users", "main", [], emitter)

        assert response.status == QueryStatus.FAILED
        assert response.sql_queries == ["SELECT broken FROM orders"]

    @pytest.mark.asyncio
    async def test_parse_failure_emits_error_and_raises(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(responses=[
            classification("table_view"),
            _selection("users"),
            "I cannot help with that.",
        ])

        with pytest.raises(GenerationParseError):
            await _service(llm, FakeSQLClient(), shop_schema).run("Show users", "main", [], emitter)

        errors = collector.of_type(PipelineEventType.ERROR)
        assert len(errors) == 1
        assert errors[0].content.startswith("Failed to parse decomposer response")


class TestAnswers:

    @pytest.mark.asyncio
    async def test_zero_rows(self, shop_schema, emitter):
        llm = ScriptedLLMClient(responses=[
            classification("table_view"),
            _selection("orders"),
            _plan(_query("SELECT * FROM orders WHERE status = 'lost'")),
        ])
        client = FakeSQLClient(results=[(["id", "status"], [])])

        response = await _service(llm, client, shop_schema).run("Show lost orders", "main", [], emitter)

        assert response.answer == NO_ROWS_ANSWER

    @pytest.mark.asyncio
    async def test_skipped_query_leaves_single_empty_result(self, shop_schema, emitter):
        llm = ScriptedLLMClient(responses=[
            classification("complex"),
            _selection("orders"),
            _plan(_query("SELECT 1 FROM orders", order=0), _query("SELECT 2 FROM orders", order=1)),
        ])
        client = FakeSQLClient(results=[
            ([], []),
            ExecutionError("boom"),
        ])
        config = AgentConfig(max_refine_attempts=1)

        response = await _service(llm, client, shop_schema, config).run("Two things", "main", [], emitter)

        assert response.answer == NO_ROWS_ANSWER

    @pytest.mark.asyncio
    async def test_several_results_are_summarized(self, shop_schema, emitter):
        llm = ScriptedLLMClient(responses=[
            classification("complex"),
            _selection("users", "orders"),
            _plan(
                _query("SELECT COUNT(*) AS users FROM users", order=0),
                _query("SELECT COUNT(*) AS orders FROM orders", order=1),
                complexity="complex",
            ),
            "There are 42 users and 120 orders.",
        ])
        client = FakeSQLClient(results=[(["users"], [(42,)]), (["orders"], [(120,)])])

        response = await _service(llm, client, shop_schema).run("Users and orders?", "main", [], emitter)

        assert response.answer == "There are 42 users and 120 orders."
        assert response.iterations == 2
        summary_call = llm.calls[-1]
        assert "ORIGINAL QUESTION: Users and orders?" in summary_call["system_prompt"]
        assert "Query 1: 1 rows, columns: users" in summary_call["system_prompt"]
        assert summary_call["temperature"] == AgentConfig().summary_temperature

    def test_no_results_answer_text(self):
        assert NO_DATA_ANSWER == "No data was retrieved to answer your question."


class TestGeneralQuestions:

    @pytest.mark.asyncio
    async def test_general_question_skips_sql(self, shop_schema, emitter, collector):
        llm = ScriptedLLMClient(responses=[
            classification("general"),
            "Hi! I can help you query the shop database.",
        ])
        client = FakeSQLClient()
        history = [
            ConversationMessage(role=MessageRole.SYSTEM, content="ignored"),
            ConversationMessage(role=MessageRole.USER, content="earlier question"),
        ]

        response = await _service(llm, client, shop_schema).run("hello", "main", history, emitter)

        assert response.question_type == QuestionType.GENERAL
        assert response.answer == "Hi! I can help you query the shop database."
        assert response.sql_queries == []
        assert response.iterations == 1
        assert client.executed == []

        general_call = llm.calls[1]
        assert "users:" in general_call["system_prompt"]
        assert [message.content for message in general_call["conversation"]] == ["earlier question", "hello"]
        assert collector.events[-1].type == PipelineEventType.COMPLETE


class TestRecentDialogue:

    def test_window_and_roles(self):
        history = [ConversationMessage(role=MessageRole.USER, content=str(index)) for index in range(12)]
        history.append(ConversationMessage(role=MessageRole.TOOL, content="observation", tool_call_id="c1"))

        dialogue = recent_dialogue(history, max_messages=10)

        assert [message.content for message in dialogue] == [str(index) for index in range(3, 12)]
