"""
Schema Selection Repository.

First stage of the fixed pipeline: prunes the full database schema down to
the tables and columns relevant to a question, so later prompts carry less
noise and fewer tokens.

Pruning Rules:
- Table names returned by the model match case-insensitively; unknown names are ignored
- Requested columns match case-insensitively
- No column list (or an empty one) keeps every column of the table
- Primary and foreign key columns are always kept so joins stay possible
- Zero selected tables, or an unparsable response, falls back to the full schema

Usage:
    selector = SchemaSelector(llm_client, agent_config)
    result = await selector.select(question, full_schema)
    print(result.selected_tables)
"""

import json
from typing import Any, Dict, List, Optional

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.domain.base_enums import MessageRole
from nl2sql_agent.domain.pipeline import ConversationMessage, SelectorResult
from nl2sql_agent.domain.schema_nodes import Column, Schema, Table
from nl2sql_agent.domain.types import TableColumnSelection
from nl2sql_agent.infrastructure.llm_client import LLMClient
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.response_parsing import extract_json
from nl2sql_agent.utils.schema_formatting import format_schema_summary
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


SELECTOR_PROMPT_TEMPLATE = """You are a database schema analyst. Your task is to identify which tables and columns are relevant to answer a user's question.

DATABASE SCHEMA:
{schema_summary}

INSTRUCTIONS:
1. Analyze the user's question carefully
2. Identify ALL tables that could be needed to answer the question
3. For each table, identify the specific columns that are relevant
4. Include tables needed for JOINs even if not directly mentioned
5. Include foreign key columns needed for relationships

IMPORTANT:
- Be inclusive rather than exclusive - it's better to include a potentially relevant table than miss one
- Consider implicit relationships (e.g., "customers" might need "orders" table)
- Include primary and foreign key columns for joins

Respond in this exact JSON format:
{{
    "reasoning": "Brief explanation of why these tables/columns are needed",
    "tables": [
        {{
            "name": "table_name",
            "columns": ["col1", "col2", "col3"]
        }}
    ]
}}"""


def build_selector_prompt(schema: Schema) -> str:
    return SELECTOR_PROMPT_TEMPLATE.format(schema_summary=format_schema_summary(schema))


def prune_table(table: Table, requested_columns: Optional[List[str]]) -> Table:
    """
    Keep the requested columns of a table plus all of its key columns.

    Args:
        table: Table from the full schema
        requested_columns: Column names from the model; None or [] keeps all columns

    Returns:
        Copy of the table with filtered columns. Requested columns keep their
        original order; key columns the model left out are appended after them.
    """
    if not requested_columns:
        return table

    wanted = {name.lower() for name in requested_columns}
    kept: List[Column] = [column for column in table.columns if column.name.lower() in wanted]

    kept_names = {column.name for column in kept}
    for column in table.columns:
        if column.is_key and column.name not in kept_names:
            kept.append(column)
            kept_names.add(column.name)

    return table.model_copy(update={"columns": kept})


def parse_table_selection(response: str) -> Optional[TableColumnSelection]:
    """
    Read the {"tables": [{"name", "columns"}]} selection from a model response.

    Returns:
        Ordered mapping of requested table name -> column list (None means
        all columns), or None when the response is not usable
    """
    try:
        parsed = json.loads(extract_json(response))
    except json.JSONDecodeError:
        return None

    if not isinstance(parsed, dict) or not isinstance(parsed.get("tables"), list):
        return None

    selection: TableColumnSelection = {}
    for entry in parsed["tables"]:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            continue
        columns = entry.get("columns")
        if isinstance(columns, list):
            selection[entry["name"]] = [name for name in columns if isinstance(name, str)]
        else:
            selection[entry["name"]] = None
    return selection


def _reasoning(response: str) -> str:
    try:
        parsed: Any = json.loads(extract_json(response))
    except json.JSONDecodeError:
        return ""
    if isinstance(parsed, dict) and isinstance(parsed.get("reasoning"), str):
        return parsed["reasoning"]
    return ""


def build_selector_result(response: str, full_schema: Schema) -> SelectorResult:
    """
    Build the pruned schema from a selector response.

    Falls back to the full schema (with every table name selected) when the
    response cannot be parsed or names no table that exists.
    """
    selection = parse_table_selection(response)

    pruned_tables: List[Table] = []
    selected_names: List[str] = []
    seen: Dict[str, bool] = {}
    for requested_name, requested_columns in (selection or {}).items():
        table = full_schema.find_table(requested_name)
        if table is None or table.name in seen:
            continue
        seen[table.name] = True
        pruned_tables.append(prune_table(table, requested_columns))
        selected_names.append(table.name)

    if not pruned_tables:
        return SelectorResult(
            pruned_schema=full_schema,
            selected_tables=full_schema.table_names,
            reasoning=_reasoning(response),
            used_fallback=True,
        )

    return SelectorResult(
        pruned_schema=Schema(database_name=full_schema.database_name, tables=pruned_tables),
        selected_tables=selected_names,
        reasoning=_reasoning(response),
        used_fallback=False,
    )


class SchemaSelector:
    """Selects the relevant subset of a schema for a question."""

    def __init__(self, llm_client: LLMClient, config: AgentConfig):
        self.llm_client = llm_client
        self.config = config

    async def select(self, question: str, full_schema: Schema) -> SelectorResult:
        """
        Prune a schema to the tables and columns relevant to a question.

        Args:
            question: User question
            full_schema: Introspected schema of the target connection

        Returns:
            SelectorResult with pruned schema and selected table names

        Raises:
            LLMError: Text-generation service failure (parse problems fall back instead)
        """
        trace_id = current_trace_id()
        system_prompt = build_selector_prompt(full_schema)

        logger.debug(
            "Calling LLM for schema selection",
            prompt_length=len(system_prompt),
            table_count=len(full_schema.tables),
            trace_id=trace_id,
        )

        response = await self.llm_client.generate(
            system_prompt=system_prompt,
            conversation=[ConversationMessage(role=MessageRole.USER, content=question)],
            temperature=self.config.selector_temperature,
        )

        result = build_selector_result(response, full_schema)

        if result.used_fallback:
            logger.warning(
                "Selector chose no known tables, using full schema",
                response_length=len(response),
                trace_id=trace_id,
            )
        else:
            logger.info(
                "Schema pruned",
                selected_tables=result.selected_tables,
                column_count=sum(len(table.columns) for table in result.pruned_schema.tables),
                trace_id=trace_id,
            )

        return result
