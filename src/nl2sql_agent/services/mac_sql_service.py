"""
MAC-SQL Service - fixed-pipeline orchestrator.

This service is a THIN ORCHESTRATOR that coordinates repositories:
1. QuestionClassifier - question type (general questions stop here)
2. SchemaRepository - full schema of the connection
3. SchemaSelector - pruned schema
4. QueryDecomposer - ordered sub-queries
5. SQLRefiner - sanitize, execute, self-correct (one sub-query at a time)

Failure policy:
- The first sub-query, or any sub-query that depends on earlier results,
  aborts the run when its refiner budget is exhausted; the answer explains
  the failure and shows the SQL that was tried
- An independent later sub-query that fails is skipped; the answer is
  synthesized from the sub-queries that succeeded

Key principles:
- Service layer only orchestrates, no business logic
- All SQL passes through the sanitizer (inside the refiner)
- Progress events are advisory and never abort the run
"""

from typing import List

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.domain.base_enums import MessageRole, QueryComplexity, QueryStatus, QuestionType
from nl2sql_agent.domain.errors import BudgetExhaustedError, NL2SQLException
from nl2sql_agent.domain.pipeline import AgentRunState, ConversationMessage, DecomposerResult, SubQuery
from nl2sql_agent.domain.responses import AgentResponse, ExecutionResult
from nl2sql_agent.domain.schema_nodes import Schema
from nl2sql_agent.infrastructure.llm_client import LLMClient
from nl2sql_agent.repositories.decomposition import QueryDecomposer
from nl2sql_agent.repositories.question_classification import QuestionClassifier
from nl2sql_agent.repositories.schema_repository import SchemaRepository
from nl2sql_agent.repositories.schema_selection import SchemaSelector
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository
from nl2sql_agent.repositories.sql_refinement import SQLRefiner
from nl2sql_agent.services.event_sink import SessionEventEmitter
from nl2sql_agent.services.result_presentation import (
    format_scalar,
    should_show_chart,
    should_show_statistic,
    should_show_table,
)
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.schema_formatting import format_schema_reference
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


GENERAL_PROMPT_TEMPLATE = """You are a helpful database assistant. The user has a general question.

DATABASE SCHEMA (for reference):
{schema}

If they're asking about the database structure, tables, or columns, answer based on the schema above.
If they're greeting you, respond warmly and let them know you can help them query their data.
If they want to know what you can do, explain you can:
- Query and analyze their database
- Generate visualizations from data
- Help them understand their data structure

Keep responses concise and helpful."""

SUMMARY_PROMPT_TEMPLATE = """You are summarizing query results. Be concise.

ORIGINAL QUESTION: {question}

ANALYSIS: {reasoning}

RESULTS:
{results}

Provide a brief, clear answer to the user's question based on the data retrieved.
The actual data tables are already displayed, so focus on insights and summary."""

NO_DATA_ANSWER = "No data was retrieved to answer your question."
NO_ROWS_ANSWER = "The query returned no results matching your criteria."


def recent_dialogue(history: List[ConversationMessage], max_messages: int) -> List[ConversationMessage]:
    """User/assistant turns from the last max_messages history entries, as plain text turns."""
    return [
        ConversationMessage(role=message.role, content=message.content)
        for message in history[-max_messages:]
        if message.role in (MessageRole.USER, MessageRole.ASSISTANT)
    ]


def build_failure_answer(error: Exception, sql: str) -> str:
    return (
        f"I encountered an error executing the query: {error}\n\n"
        f"The query I tried was:\n```sql\n{sql}\n```\n\n"
        "Please check that the table and column names are correct, or try rephrasing your question."
    )


def summarize_results(results: List[ExecutionResult]) -> str:
    return "\n".join(
        f"Query {index}: {result.row_count} rows, columns: {', '.join(result.columns)}"
        for index, result in enumerate(results, start=1)
    )


async def emit_query_results(
    emitter: SessionEventEmitter,
    question_type: QuestionType,
    result: ExecutionResult,
    sql: str,
) -> None:
    """Emit table, chart and statistic events the result qualifies for."""
    if should_show_table(question_type, result):
        await emitter.table_data(result, sql)
    if should_show_chart(question_type, result):
        await emitter.chart_data(result, question_type)
    if should_show_statistic(question_type, result):
        await emitter.statistic(result)


class MacSQLService:
    """
    Fixed-pipeline orchestrator: classify, select, decompose, refine, answer.

    Usage:
        service = MacSQLService(llm_client, execution_repo, schema_repo, agent_config)
        response = await service.run("How many users signed up last week?", "main", [], emitter)
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
        self.selector = SchemaSelector(llm_client, config)
        self.decomposer = QueryDecomposer(llm_client, config)
        self.refiner = SQLRefiner(llm_client, execution_repository, config)

        logger.info(
            "MacSQLService initialized",
            max_refine_attempts=config.max_refine_attempts,
            row_cap=config.row_cap,
        )

    async def run(
        self,
        question: str,
        connection_id: str,
        history: List[ConversationMessage],
        emitter: SessionEventEmitter,
    ) -> AgentResponse:
        """
        Answer a question through the fixed pipeline.

        Args:
            question: User question
            connection_id: Registered connection id
            history: Prior conversation turns, oldest first
            emitter: Progress event emitter for the session

        Returns:
            AgentResponse with answer, executed SQL and iteration count.
            A failed first or dependent sub-query yields a FAILED response
            whose answer contains the SQL that was tried.

        Raises:
            NL2SQLException: Classification, selection, decomposition or
                service failures (an error event is emitted first)
        """
        trace_id = current_trace_id()
        logger.info(
            "Starting MAC-SQL pipeline",
            connection_id=connection_id,
            question_length=len(question),
            history_length=len(history),
            trace_id=trace_id,
        )

        try:
            await emitter.thinking("Analyzing your question...\n")
            question_type = await self.classifier.classify(question)

            if question_type == QuestionType.GENERAL:
                return await self._answer_general(question, connection_id, history, emitter)

            state = AgentRunState(question=question, connection_id=connection_id, question_type=question_type)
            return await self._run_pipeline(state, history, emitter)

        except NL2SQLException as e:
            logger.error(
                "MAC-SQL pipeline failed",
                error_type=type(e).__name__,
                error=e.message,
                trace_id=trace_id,
            )
            await emitter.error(e.message)
            raise

    # =========================================================================
    # Pipeline Steps (thin - delegate to repositories)
    # =========================================================================

    async def _run_pipeline(
        self,
        state: AgentRunState,
        history: List[ConversationMessage],
        emitter: SessionEventEmitter,
    ) -> AgentResponse:
        full_schema = await self.schema_repo.get_schema(state.connection_id)
        dialect = self.execution_repo.dialect(state.connection_id)

        # Step 1: Selector
        await emitter.thinking("Identifying relevant tables...\n")
        selection = await self.selector.select(state.question, full_schema)
        await emitter.thinking(f"Selected tables: {', '.join(selection.selected_tables)}\n")

        # Step 2: Decomposer
        await emitter.thinking("Generating SQL query...\n")
        plan = await self.decomposer.decompose(
            question=state.question,
            pruned_schema=selection.pruned_schema,
            question_type=state.question_type,
            dialect=dialect,
            history=history,
        )
        if plan.complexity == QueryComplexity.COMPLEX:
            await emitter.thinking(f"Complex query decomposed into {len(plan.queries)} steps\n")
        else:
            await emitter.thinking("Single query generated\n")

        # Step 3: Refiner, one sub-query at a time
        for index, sub_query in enumerate(plan.queries):
            aborted = await self._execute_sub_query(
                state, index, sub_query, selection.pruned_schema, emitter
            )
            if aborted is not None:
                return aborted

        # Step 4: Answer
        answer = await self._final_answer(state, plan)
        await emitter.token(answer)
        await emitter.complete()

        logger.info(
            "MAC-SQL pipeline completed",
            executed=len(state.sql_queries),
            skipped=len(state.skipped),
            iterations=state.iterations,
            trace_id=current_trace_id(),
        )

        return AgentResponse(
            answer=answer,
            sql_queries=state.sql_queries,
            iterations=state.iterations,
            question_type=state.question_type,
            status=QueryStatus.COMPLETED,
        )

    async def _execute_sub_query(
        self,
        state: AgentRunState,
        index: int,
        sub_query: SubQuery,
        schema: Schema,
        emitter: SessionEventEmitter,
    ):
        """
        Run one sub-query through the refiner and record the outcome.

        Returns:
            None to continue with the next sub-query, or the FAILED
            AgentResponse that ends the run
        """
        await emitter.thinking(f"Executing SQL: {sub_query.sql}\n")

        try:
            refined = await self.refiner.refine_and_execute(
                sql=sub_query.sql,
                question=sub_query.question,
                schema=schema,
                dialect=self.execution_repo.dialect(state.connection_id),
                connection_id=state.connection_id,
            )
        except BudgetExhaustedError as e:
            await emitter.thinking(f"Query failed: {e}\n")

            if index == 0 or sub_query.depends_on_previous:
                logger.warning(
                    "Required sub-query failed, aborting run",
                    order=sub_query.order,
                    attempts=e.attempts,
                    trace_id=current_trace_id(),
                )
                answer = build_failure_answer(e, sub_query.sql)
                await emitter.error(str(e))
                await emitter.complete()
                return AgentResponse(
                    answer=answer,
                    sql_queries=[sub_query.sql],
                    iterations=1,
                    question_type=state.question_type,
                    status=QueryStatus.FAILED,
                )

            logger.warning(
                "Independent sub-query failed, skipping",
                order=sub_query.order,
                attempts=e.attempts,
                trace_id=current_trace_id(),
            )
            state.skipped.append(sub_query)
            return None

        if refined.attempts > 1:
            await emitter.thinking(f"Query succeeded after {refined.attempts} refinement(s)\n")

        state.iterations += refined.attempts
        state.sql_queries.append(refined.final_sql)
        state.results.append(refined.result)
        await emit_query_results(emitter, state.question_type, refined.result, refined.final_sql)
        return None

    async def _final_answer(self, state: AgentRunState, plan: DecomposerResult) -> str:
        """
        Synthesize the answer text from executed results.

        No results, zero rows, a single value and a single table each have a
        fixed answer; several results are summarized by the model.
        """
        if not state.results:
            return NO_DATA_ANSWER

        if len(state.results) == 1:
            result = state.results[0]
            if result.row_count == 0:
                return NO_ROWS_ANSWER
            if result.row_count == 1 and result.column_count == 1:
                return f"Based on your query, the answer is: **{format_scalar(result.first_value())}**"
            return f"Found {result.row_count} row(s) of data. The results are displayed in the table above."

        system_prompt = SUMMARY_PROMPT_TEMPLATE.format(
            question=state.question,
            reasoning=plan.reasoning,
            results=summarize_results(state.results),
        )
        return await self.llm_client.generate(
            system_prompt=system_prompt,
            conversation=[ConversationMessage(role=MessageRole.USER, content="Summarize the results.")],
            temperature=self.config.summary_temperature,
        )

    async def _answer_general(
        self,
        question: str,
        connection_id: str,
        history: List[ConversationMessage],
        emitter: SessionEventEmitter,
    ) -> AgentResponse:
        """Answer a conversational question directly, with the schema as reference."""
        schema = await self.schema_repo.get_schema(connection_id)
        dialect = self.execution_repo.dialect(connection_id)

        conversation = recent_dialogue(history, self.config.history_max_messages)
        conversation.append(ConversationMessage(role=MessageRole.USER, content=question))

        answer = await self.llm_client.generate(
            system_prompt=GENERAL_PROMPT_TEMPLATE.format(schema=format_schema_reference(schema, dialect)),
            conversation=conversation,
            temperature=self.config.general_temperature,
        )

        await emitter.token(answer)
        await emitter.complete()

        return AgentResponse(
            answer=answer,
            sql_queries=[],
            iterations=1,
            question_type=QuestionType.GENERAL,
            status=QueryStatus.COMPLETED,
        )
