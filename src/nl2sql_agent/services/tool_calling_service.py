"""
Tool-Calling Service - model-driven orchestrator.

Instead of a fixed selector/decomposer/refiner chain, the model gets one
callable action, execute_sql, and iterates:

    call model -> tool requested?  yes: sanitize + execute, append observation, loop
                                   no:  the text is the final answer

Rules:
- At most max_tool_iterations model calls; reaching the cap is an error
- Parallel tool calls are disabled, actions run strictly one after another
- Sanitizer rejections and database errors are fed back as observations so
  the model can fix its query within the iteration cap
- Unknown tools and unparsable arguments are fed back the same way
- A turn with neither tool calls nor text is a parse failure
"""

import json
from typing import Any, Dict, List

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.constants import DEFAULT_OFFSET, EXECUTE_SQL_TOOL_NAME, MAX_ROW_LIMIT, OBSERVATION_PREVIEW_ROWS
from nl2sql_agent.domain.base_enums import Dialect, MessageRole, QueryStatus, QuestionType
from nl2sql_agent.domain.errors import (
    BudgetExhaustedError,
    ExecutionError,
    GenerationParseError,
    NL2SQLException,
    SecurityError,
)
from nl2sql_agent.domain.pipeline import AgentRunState, ConversationMessage, ToolCall
from nl2sql_agent.domain.responses import AgentResponse, ExecutionResult
from nl2sql_agent.domain.types import ToolDefinition
from nl2sql_agent.infrastructure.llm_client import LLMClient
from nl2sql_agent.repositories.decomposition import QUESTION_TYPE_HINTS
from nl2sql_agent.repositories.question_classification import QuestionClassifier
from nl2sql_agent.repositories.schema_repository import SchemaRepository
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository
from nl2sql_agent.repositories.sql_sanitizer import sanitize_for_dialect
from nl2sql_agent.services.event_sink import SessionEventEmitter
from nl2sql_agent.services.mac_sql_service import (
    GENERAL_PROMPT_TEMPLATE,
    emit_query_results,
    recent_dialogue,
)
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.schema_formatting import format_schema_reference
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


EXECUTE_SQL_TOOL: ToolDefinition = {
    "type": "function",
    "function": {
        "name": EXECUTE_SQL_TOOL_NAME,
        "description": (
            "Execute a read-only SELECT query on the database to retrieve data, or generate a SQL query "
            "without executing it. Supports all standard SQL SELECT operations including WHERE clauses, "
            "JOINs, GROUP BY, ORDER BY, and aggregate functions (COUNT, SUM, AVG, MIN, MAX). Returns up to "
            "100 rows maximum when executed. Use this tool to answer questions that require querying the "
            "database. The tool will return the actual data along with column names and row count, or just "
            "the SQL query if dry_run is true."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        "The SELECT SQL query to execute or generate. Must include a LIMIT clause (maximum 100 "
                        "rows). Only SELECT statements are allowed - no INSERT, UPDATE, DELETE, DROP, or other "
                        "modification statements. Examples: 'SELECT * FROM users LIMIT 10', "
                        "'SELECT COUNT(*) as total FROM orders WHERE status = \\'pending\\' LIMIT 1'"
                    ),
                },
                "dry_run": {
                    "type": "boolean",
                    "description": (
                        "If true, returns the SQL query without executing it. Use this when the user wants "
                        "to generate SQL code rather than get the query results. Default is false."
                    ),
                    "default": False,
                },
            },
            "required": ["query"],
        },
    },
}

TOOL_LOOP_PROMPT_TEMPLATE = """You are an expert data analyst with direct read-only access to a database through the execute_sql tool.

{schema}
HOW TO WORK:
1. Decide which tables and columns answer the question, using ONLY the schema above
2. Call execute_sql with a single SELECT statement that includes a LIMIT clause (max 100 rows)
3. Read the observation; if the query failed, fix it and call execute_sql again
4. When you have the data you need, reply with the final answer in plain language and no tool call

RULES:
- Only SELECT queries (no INSERT, UPDATE, DELETE, etc.)
- One statement per call; no comments, no semicolon-separated statements
- Use the CONVERSATION so far to resolve references like "that", "those", "it"
- Keep the final answer concise; the result tables are shown to the user separately"""

FINAL_ANSWER_PREFIX = "Final Answer:"


def build_tool_loop_prompt(schema_reference: str, question_type: QuestionType) -> str:
    return TOOL_LOOP_PROMPT_TEMPLATE.format(schema=schema_reference) + QUESTION_TYPE_HINTS[question_type]


def strip_final_answer_prefix(text: str) -> str:
    answer = text.strip()
    if answer.startswith(FINAL_ANSWER_PREFIX):
        answer = answer[len(FINAL_ANSWER_PREFIX):]
    return answer.strip()


def build_observation(result: ExecutionResult) -> str:
    """
    Describe an execution result for the model.

    Reports row count, execution time and columns, followed by a JSON
    preview of the first rows.
    """
    if result.row_count == 0:
        return "Query executed successfully but returned 0 rows."

    elapsed = int(result.execution_time_ms)
    columns = ", ".join(result.columns)
    if result.row_count == 1:
        summary = f"Query executed successfully. Returned 1 row in {elapsed}ms. Columns: {columns}"
    else:
        summary = f"Query executed successfully. Returned {result.row_count} rows in {elapsed}ms. Columns: {columns}"

    preview = json.dumps(result.rows[:OBSERVATION_PREVIEW_ROWS], default=str)
    return f"{summary}\nRows: {preview}"


def execution_failure_observation(error: Exception) -> str:
    return f"SQL execution failed: {error}. Please check your query syntax and try again."


class ToolCallingService:
    """
    Model-driven orchestrator with a single execute_sql action.

    Usage:
        service = ToolCallingService(llm_client, execution_repo, schema_repo, agent_config)
        response = await service.run("Show revenue by month", "main", [], emitter)
    """

    def __init__(
        self,
        llm_client: LLMClient,
        execution_repository: SQLExecutionRepository,
        schema_repository: SchemaRepository,
        config: AgentConfig,
    ):
        self.llm_client = llm_client
        self.execution_repo = execution_repository
        self.schema_repo = schema_repository
        self.config = config
        self.classifier = QuestionClassifier(llm_client, config)

        logger.info(
            "ToolCallingService initialized",
            max_tool_iterations=config.max_tool_iterations,
        )

    async def run(
        self,
        question: str,
        connection_id: str,
        history: List[ConversationMessage],
        emitter: SessionEventEmitter,
    ) -> AgentResponse:
        """
        Answer a question through the tool-calling loop.

        Args:
            question: User question
            connection_id: Registered connection id
            history: Prior conversation turns, oldest first
            emitter: Progress event emitter for the session

        Returns:
            AgentResponse with the model's final answer, the SQL it requested
            and the number of loop iterations

        Raises:
            BudgetExhaustedError: Iteration cap reached without a final answer
            GenerationParseError: Empty model turn or unusable classification
            ServiceError: LLM or database unavailable
        """
        trace_id = current_trace_id()
        logger.info(
            "Starting tool-calling loop",
            connection_id=connection_id,
            question_length=len(question),
            trace_id=trace_id,
        )

        try:
            question_type = await self.classifier.classify(question)

            if question_type == QuestionType.GENERAL:
                return await self._answer_general(question, connection_id, history, emitter)

            state = AgentRunState(question=question, connection_id=connection_id, question_type=question_type)
            return await self._run_loop(state, history, emitter)

        except NL2SQLException as e:
            logger.error(
                "Tool-calling loop failed",
                error_type=type(e).__name__,
                error=e.message,
                trace_id=trace_id,
            )
            await emitter.error(e.message)
            raise

    async def _run_loop(
        self,
        state: AgentRunState,
        history: List[ConversationMessage],
        emitter: SessionEventEmitter,
    ) -> AgentResponse:
        schema = await self.schema_repo.get_schema(state.connection_id)
        dialect = self.execution_repo.dialect(state.connection_id)
        system_prompt = build_tool_loop_prompt(
            format_schema_reference(schema, dialect, syntax_notice=True),
            state.question_type,
        )

        conversation = recent_dialogue(history, self.config.history_max_messages)
        conversation.append(ConversationMessage(role=MessageRole.USER, content=state.question))

        max_iterations = self.config.max_tool_iterations
        while state.iterations < max_iterations:
            state.iterations += 1

            turn = await self.llm_client.generate_with_tools(
                system_prompt=system_prompt,
                conversation=conversation,
                tools=[EXECUTE_SQL_TOOL],
                temperature=self.config.tool_loop_temperature,
            )

            if turn.has_tool_calls:
                if turn.content:
                    await emitter.token(turn.content)

                conversation.append(ConversationMessage(
                    role=MessageRole.ASSISTANT,
                    content=turn.content,
                    tool_calls=turn.tool_calls,
                ))

                for tool_call in turn.tool_calls:
                    observation = await self._handle_tool_call(tool_call, state, dialect, emitter)
                    conversation.append(ConversationMessage(
                        role=MessageRole.TOOL,
                        content=observation,
                        tool_call_id=tool_call.id,
                    ))
                continue

            if turn.content:
                await emitter.token(turn.content)
                await emitter.complete()

                logger.info(
                    "Tool-calling loop completed",
                    iterations=state.iterations,
                    queries=len(state.sql_queries),
                    trace_id=current_trace_id(),
                )
                return AgentResponse(
                    answer=turn.content,
                    sql_queries=state.sql_queries,
                    iterations=state.iterations,
                    question_type=state.question_type,
                    status=QueryStatus.COMPLETED,
                )

            raise GenerationParseError("Model returned empty response")

        raise BudgetExhaustedError(
            f"Maximum iterations ({max_iterations}) reached without finding answer",
            attempts=state.iterations,
            details={"sql_queries": state.sql_queries},
        )

    async def _handle_tool_call(
        self,
        tool_call: ToolCall,
        state: AgentRunState,
        dialect: Dialect,
        emitter: SessionEventEmitter,
    ) -> str:
        """
        Run one requested action and return the observation text for the model.

        Only service failures escape; everything the model can fix becomes
        an observation.
        """
        if tool_call.name != EXECUTE_SQL_TOOL_NAME:
            return f"Unknown tool: {tool_call.name}. The only available tool is {EXECUTE_SQL_TOOL_NAME}."

        if tool_call.error is not None:
            return f"Failed to parse tool arguments: {tool_call.error}"

        arguments: Dict[str, Any] = tool_call.arguments
        query = arguments.get("query")
        if not isinstance(query, str):
            return "Missing query in tool call. Provide the SELECT statement in the 'query' argument."

        try:
            sanitized = sanitize_for_dialect(query, dialect)
        except SecurityError as e:
            logger.warning(
                "Tool query rejected",
                error=str(e),
                iteration=state.iterations,
                trace_id=current_trace_id(),
            )
            return execution_failure_observation(e)

        if arguments.get("dry_run") is True:
            await emitter.token(f"\n\n**Generated SQL:**\n```sql\n{sanitized}\n```\n")
            return f"Query generated (not executed):\n{sanitized}"

        await emitter.token(f"\n\n**Executing SQL:**\n```sql\n{sanitized}\n```\n")

        try:
            result = await self.execution_repo.execute(
                sanitized,
                state.connection_id,
                row_limit=min(self.config.row_cap, MAX_ROW_LIMIT),
                offset=DEFAULT_OFFSET,
            )
        except ExecutionError as e:
            logger.warning(
                "Tool execution failed",
                error_type=type(e).__name__,
                error=str(e),
                iteration=state.iterations,
                trace_id=current_trace_id(),
            )
            return execution_failure_observation(e)

        state.sql_queries.append(sanitized)
        state.results.append(result)
        await emit_query_results(emitter, state.question_type, result, sanitized)
        return build_observation(result)

    async def _answer_general(
        self,
        question: str,
        connection_id: str,
        history: List[ConversationMessage],
        emitter: SessionEventEmitter,
    ) -> AgentResponse:
        schema = await self.schema_repo.get_schema(connection_id)
        dialect = self.execution_repo.dialect(connection_id)

        conversation = recent_dialogue(history, self.config.history_max_messages)
        conversation.append(ConversationMessage(role=MessageRole.USER, content=question))

        response = await self.llm_client.generate(
            system_prompt=GENERAL_PROMPT_TEMPLATE.format(schema=format_schema_reference(schema, dialect)),
            conversation=conversation,
            temperature=self.config.general_temperature,
        )
        answer = strip_final_answer_prefix(response)

        await emitter.token(answer)
        await emitter.complete()

        return AgentResponse(
            answer=answer,
            sql_queries=[],
            iterations=0,
            question_type=QuestionType.GENERAL,
            status=QueryStatus.COMPLETED,
        )
