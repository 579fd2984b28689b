"""
SQL Refinement Repository.

Third stage of the fixed pipeline: executes one sub-query and, when it
fails, asks the model for a corrected statement. A bounded
self-correction loop:

    Attempting(n) -> execute -> Succeeded
                             -> Failed(n) -> n < max_attempts: correct, Attempting(n + 1)
                                          -> n >= max_attempts: Exhausted

Per attempt:
1. Sanitize (a sanitizer rejection counts as a failed attempt)
2. Execute with the hard row cap and zero offset
3. Success returns immediately
4. Failure is recorded; the correction prompt carries the dialect, a schema
   view flagging columns named in the error, the question, the failed SQL,
   the error text and the earlier failed attempts

Service failures (LLM or database unavailable) are not attempts; they
propagate to the caller unchanged.
"""

from typing import List

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.constants import DEFAULT_OFFSET, MAX_ROW_LIMIT
from nl2sql_agent.domain.base_enums import Dialect, MessageRole
from nl2sql_agent.domain.errors import BudgetExhaustedError, ExecutionError, SecurityError
from nl2sql_agent.domain.pipeline import ConversationMessage, RefinementAttempt, RefinerResult
from nl2sql_agent.domain.responses import ExecutionResult
from nl2sql_agent.domain.schema_nodes import Schema
from nl2sql_agent.infrastructure.llm_client import LLMClient
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository
from nl2sql_agent.repositories.sql_sanitizer import sanitize_for_dialect
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.response_parsing import extract_sql
from nl2sql_agent.utils.schema_formatting import format_schema_tables
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


CORRECTION_PROMPT_TEMPLATE = """You are a SQL error correction expert. A SQL query failed to execute and you need to fix it.

DATABASE TYPE: {db_type} (use {db_type}-compatible syntax)

RELEVANT SCHEMA:
{schema}

ORIGINAL QUESTION: {question}

FAILED SQL:
```sql
{failed_sql}
```

ERROR:
{error}
{attempt_history}

INSTRUCTIONS:
1. Analyze the error message carefully
2. Check the schema for correct table/column names
3. Verify SQL syntax for {db_type} database
4. Generate a CORRECTED SQL query

COMMON FIXES:
- Table not found: Check schema for exact table name (case-sensitive in some databases)
- Column not found: Verify column exists in the table
- Syntax error: Check for missing quotes, commas, or parentheses
- Type mismatch: Ensure comparisons use matching types
- Missing LIMIT: Always include LIMIT clause (max 100)

Respond with ONLY the corrected SQL query, no explanation. The query must:
- Be a valid SELECT statement
- Include LIMIT clause (max 100)
- Use correct {db_type} syntax"""

CORRECTION_REQUEST = "Generate the corrected SQL query."


def format_attempt_history(history: List[RefinementAttempt]) -> str:
    """
    Render earlier failed attempts for the correction prompt.

    Only rendered once there is more than one attempt; the latest failure is
    already shown as FAILED SQL / ERROR.
    """
    if len(history) <= 1:
        return ""

    entries = [
        f"Attempt:\n```sql\n{attempt.sql}\n```\nError: {attempt.error or 'Unknown error'}"
        for attempt in history
        if not attempt.success
    ]
    return "\n\nPrevious failed attempts:\n" + "\n\n".join(entries)


def build_correction_prompt(
    question: str,
    failed_sql: str,
    error: str,
    schema: Schema,
    dialect: Dialect,
    history: List[RefinementAttempt],
) -> str:
    return CORRECTION_PROMPT_TEMPLATE.format(
        db_type=dialect.value,
        schema=format_schema_tables(schema, error),
        question=question,
        failed_sql=failed_sql,
        error=error,
        attempt_history=format_attempt_history(history),
    )


class SQLRefiner:
    """
    Executes a sub-query with bounded self-correction.

    Usage:
        refiner = SQLRefiner(llm_client, execution_repo, agent_config)
        result = await refiner.refine_and_execute(sql, question, schema, Dialect.POSTGRES, "main")
        print(result.final_sql, result.attempts)
    """

    def __init__(
        self,
        llm_client: LLMClient,
        execution_repo: SQLExecutionRepository,
        config: AgentConfig,
    ):
        self.llm_client = llm_client
        self.execution_repo = execution_repo
        self.config = config

    @property
    def max_attempts(self) -> int:
        return self.config.max_refine_attempts

    async def refine_and_execute(
        self,
        sql: str,
        question: str,
        schema: Schema,
        dialect: Dialect,
        connection_id: str,
    ) -> RefinerResult:
        """
        Execute SQL, correcting it through the model on failure.

        Args:
            sql: Unsanitized SQL proposed by the decomposer
            question: Question the SQL is meant to answer
            schema: Pruned schema shown in correction prompts
            dialect: Dialect of the target connection
            connection_id: Registered connection id

        Returns:
            RefinerResult for the first statement that executed

        Raises:
            BudgetExhaustedError: All attempts failed; carries attempt count,
                last error and the attempt history
            LLMError: Text-generation service failure while correcting
            DatabaseConnectionError: Database unavailable
            NotFoundError: Unknown connection id
        """
        trace_id = current_trace_id()
        current_sql = sql
        history: List[RefinementAttempt] = []
        attempts = 0

        while True:
            attempts += 1

            try:
                result, final_sql = await self._try_execute(current_sql, dialect, connection_id)
            except (SecurityError, ExecutionError) as e:
                error_text = str(e)
                history.append(RefinementAttempt(sql=current_sql, success=False, error=error_text))

                logger.warning(
                    "Refinement attempt failed",
                    attempt=attempts,
                    max_attempts=self.max_attempts,
                    error_type=type(e).__name__,
                    error=error_text,
                    trace_id=trace_id,
                )

                if attempts >= self.max_attempts:
                    raise BudgetExhaustedError(
                        f"Query refinement failed after {attempts} attempts. Last error: {error_text}",
                        attempts=attempts,
                        last_error=error_text,
                        history=history,
                        details={"sql": current_sql},
                    ) from e

                current_sql = await self._generate_corrected_sql(
                    question=question,
                    failed_sql=current_sql,
                    error=error_text,
                    schema=schema,
                    dialect=dialect,
                    history=history,
                )
                continue

            logger.info(
                "Refinement succeeded",
                attempts=attempts,
                row_count=result.row_count,
                trace_id=trace_id,
            )
            return RefinerResult(final_sql=final_sql, result=result, attempts=attempts)

    async def _try_execute(self, sql: str, dialect: Dialect, connection_id: str):
        """Sanitize then execute; returns (result, sanitized_sql)."""
        sanitized = sanitize_for_dialect(sql, dialect)
        result: ExecutionResult = await self.execution_repo.execute(
            sanitized,
            connection_id,
            row_limit=min(self.config.row_cap, MAX_ROW_LIMIT),
            offset=DEFAULT_OFFSET,
        )
        return result, sanitized

    async def _generate_corrected_sql(
        self,
        question: str,
        failed_sql: str,
        error: str,
        schema: Schema,
        dialect: Dialect,
        history: List[RefinementAttempt],
    ) -> str:
        system_prompt = build_correction_prompt(question, failed_sql, error, schema, dialect, history)

        logger.debug(
            "Calling LLM for SQL correction",
            prompt_length=len(system_prompt),
            previous_attempts=len(history),
            trace_id=current_trace_id(),
        )

        response = await self.llm_client.generate(
            system_prompt=system_prompt,
            conversation=[ConversationMessage(role=MessageRole.USER, content=CORRECTION_REQUEST)],
            temperature=self.config.refiner_temperature,
        )
        # An empty correction is rejected by the sanitizer on the next attempt
        return extract_sql(response)
