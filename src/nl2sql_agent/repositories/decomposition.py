"""
Decomposition Repository.

Second stage of the fixed pipeline: judges whether a question needs one
SQL statement or several, and generates the SQL for each step.

Prompt Context:
- Detailed pruned schema (types, nullability, PK/FK markers)
- Target dialect, so the model writes compatible syntax
- The last few conversation turns, so follow-ups like "show me those" resolve
- A question-type hint that biases the SQL shape (aggregates, GROUP BY, date grouping)

Parsing Rules:
- Missing "complexity" means simple; missing "reasoning", "question",
  "order" or "depends_on_previous" take fixed defaults
- Missing "queries" array, a query without "sql", or zero queries is fatal
- Sub-queries are sorted by "order"; the model's array order is not trusted
"""

import json
from typing import Any, Dict, List

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.domain.base_enums import Dialect, MessageRole, QueryComplexity, QuestionType
from nl2sql_agent.domain.errors import GenerationParseError
from nl2sql_agent.domain.pipeline import ConversationMessage, DecomposerResult, SubQuery
from nl2sql_agent.domain.schema_nodes import Schema
from nl2sql_agent.infrastructure.llm_client import LLMClient
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.response_parsing import extract_json
from nl2sql_agent.utils.schema_formatting import format_schema_detailed
from nl2sql_agent.utils.token_utils import truncate_text
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


DECOMPOSER_PROMPT_TEMPLATE = """You are an expert SQL analyst. Your task is to analyze a user's question and generate the SQL needed to answer it.

DATABASE SCHEMA:
{schema}

DATABASE TYPE: {db_type} (use {db_type}-compatible SQL syntax)
{history}
PROCESS:
1. First, assess the question complexity:
   - SIMPLE: Can be answered with a single SQL query (most questions)
   - COMPLEX: Requires multiple queries or sub-queries (rare, only for multi-step analysis)

2. For SIMPLE questions:
   - Generate a single, complete SQL query
   - Use JOINs, aggregations, and subqueries within the single statement

3. For COMPLEX questions:
   - Break down into sequential steps
   - Each step should build on previous results
   - Generate SQL for each step

RULES:
- Only SELECT queries (no INSERT, UPDATE, DELETE, etc.)
- Always include LIMIT clause (max 100 rows)
- Use proper {db_type} SQL syntax
- Prefer CTEs (WITH clause) for complex logic in a single query
- Only mark as COMPLEX if truly requiring multiple separate queries
- If the user refers to "that", "those", "it", etc., use the CONVERSATION HISTORY to understand what they mean

Respond in this exact JSON format:
{{
    "complexity": "simple" or "complex",
    "reasoning": "Your chain of thought explaining how to answer this question",
    "queries": [
        {{
            "question": "The sub-question this query answers",
            "sql": "SELECT ... FROM ... LIMIT 100",
            "order": 0,
            "depends_on_previous": false
        }}
    ]
}}"""


QUESTION_TYPE_HINTS: Dict[QuestionType, str] = {
    QuestionType.STATISTIC: "\n\nNote: This question asks for a specific metric or count. Use aggregate functions.",
    QuestionType.TEMPORAL_CHART: "\n\nNote: This question involves time-series data. Include date grouping and ordering.",
    QuestionType.CATEGORY_CHART: "\n\nNote: This question involves categories. Use GROUP BY for grouping.",
    QuestionType.TABLE_VIEW: "\n\nNote: User wants to view table data. Simple SELECT with appropriate columns.",
    QuestionType.COMPLEX: "\n\nNote: This has been classified as a complex analytical question.",
    QuestionType.GENERAL: "",
}

_HISTORY_LABELS = {
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "Assistant",
}


def format_conversation_history(
    history: List[ConversationMessage],
    max_messages: int,
    max_chars: int,
) -> str:
    """
    Render recent conversation turns for the prompt.

    The window is the last max_messages entries; system and tool entries
    inside it are dropped, and each kept entry is cut to max_chars.

    Returns:
        "" for empty history, otherwise a CONVERSATION HISTORY block
    """
    if not history:
        return ""

    lines = ["\nCONVERSATION HISTORY:\n"]
    for message in history[-max_messages:]:
        label = _HISTORY_LABELS.get(message.role)
        if label is None:
            continue
        lines.append(f"{label}: {truncate_text(message.content, max_chars)}\n")
    lines.append("\n")
    return "".join(lines)


def build_decomposer_prompt(
    schema: Schema,
    question_type: QuestionType,
    dialect: Dialect,
    history_block: str,
) -> str:
    prompt = DECOMPOSER_PROMPT_TEMPLATE.format(
        schema=format_schema_detailed(schema, dialect.value),
        db_type=dialect.value,
        history=history_block,
    )
    return prompt + QUESTION_TYPE_HINTS[question_type]


def _order_value(value: Any) -> int:
    # Non-integer or negative orders count as 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def parse_decomposer_response(response: str) -> DecomposerResult:
    """
    Parse a decomposer response into sub-queries sorted by order.

    Args:
        response: Raw model output (bare or fenced JSON)

    Returns:
        DecomposerResult with at least one sub-query

    Raises:
        GenerationParseError: Malformed JSON, missing queries/sql, or no queries

    Example:
        >>> result = parse_decomposer_response('{"queries": [{"sql": "SELECT 1", "order": 0}]}')
        >>> result.complexity
        <QueryComplexity.SIMPLE: 'simple'>
    """
    try:
        parsed = json.loads(extract_json(response))
    except json.JSONDecodeError as e:
        raise GenerationParseError(
            f"Failed to parse decomposer response: {e}",
            details={"response_length": len(response)},
        ) from e

    if not isinstance(parsed, dict):
        raise GenerationParseError("Invalid decomposer response: expected a JSON object")

    complexity_value = parsed.get("complexity")
    complexity = (
        QueryComplexity.COMPLEX
        if isinstance(complexity_value, str) and complexity_value.lower() == "complex"
        else QueryComplexity.SIMPLE
    )

    reasoning = parsed.get("reasoning")
    if not isinstance(reasoning, str):
        reasoning = "No reasoning provided"

    queries_array = parsed.get("queries")
    if not isinstance(queries_array, list):
        raise GenerationParseError("Invalid decomposer response: missing queries array")

    queries: List[SubQuery] = []
    for query_obj in queries_array:
        if not isinstance(query_obj, dict) or not isinstance(query_obj.get("sql"), str):
            raise GenerationParseError("Invalid query object: missing sql")

        question = query_obj.get("question")
        depends_on_previous = query_obj.get("depends_on_previous")
        queries.append(SubQuery(
            question=question if isinstance(question, str) else "Answer the user's question",
            sql=query_obj["sql"],
            order=_order_value(query_obj.get("order")),
            depends_on_previous=depends_on_previous if isinstance(depends_on_previous, bool) else False,
        ))

    if not queries:
        raise GenerationParseError("Decomposer generated no queries")

    # Stable sort keeps the model's order among equal "order" values
    queries.sort(key=lambda sub_query: sub_query.order)

    return DecomposerResult(complexity=complexity, queries=queries, reasoning=reasoning)


class QueryDecomposer:
    """Judges question complexity and generates the SQL plan."""

    def __init__(self, llm_client: LLMClient, config: AgentConfig):
        self.llm_client = llm_client
        self.config = config

    async def decompose(
        self,
        question: str,
        pruned_schema: Schema,
        question_type: QuestionType,
        dialect: Dialect,
        history: List[ConversationMessage],
    ) -> DecomposerResult:
        """
        Generate the SQL plan for a question.

        Args:
            question: User question
            pruned_schema: Output of the schema selector
            question_type: Classified question type (prompt hint only)
            dialect: Target dialect
            history: Prior conversation turns, oldest first

        Returns:
            DecomposerResult with sub-queries sorted by order

        Raises:
            GenerationParseError: Unusable model output
            LLMError: Text-generation service failure
        """
        trace_id = current_trace_id()

        history_block = format_conversation_history(
            history,
            max_messages=self.config.history_max_messages,
            max_chars=self.config.history_max_chars,
        )
        system_prompt = build_decomposer_prompt(pruned_schema, question_type, dialect, history_block)

        logger.debug(
            "Calling LLM for decomposition",
            prompt_length=len(system_prompt),
            history_length=len(history),
            trace_id=trace_id,
        )

        response = await self.llm_client.generate(
            system_prompt=system_prompt,
            conversation=[ConversationMessage(role=MessageRole.USER, content=question)],
            temperature=self.config.decomposer_temperature,
        )

        result = parse_decomposer_response(response)

        logger.info(
            "Question decomposed",
            complexity=result.complexity.value,
            query_count=len(result.queries),
            trace_id=trace_id,
        )
        return result
