"""
Text renderings of a Schema for model prompts.

Each prompt wants a slightly different view: a compact summary for table
selection, a detailed listing for SQL generation and correction, and a
reference listing for conversational answers and the tool-calling loop.
"""

from typing import List, Optional

from nl2sql_agent.domain.base_enums import Dialect
from nl2sql_agent.domain.schema_nodes import Column, Schema


def dialect_display_name(dialect: Dialect) -> str:
    """Human-readable engine name used inside prompts."""
    return {
        Dialect.POSTGRES: "PostgreSQL",
        Dialect.MYSQL: "MySQL",
        Dialect.MARIADB: "MariaDB",
    }[dialect]


def _fk_target(column: Column) -> str:
    return f"{column.foreign_key_table or '?'}.{column.foreign_key_column or '?'}"


def _nullability(column: Column) -> str:
    return "NULL" if column.is_nullable else "NOT NULL"


def column_markers(column: Column) -> str:
    """
    Compact key markers for a column, e.g. " [PK, FK->users.id]".

    A foreign key without a known target is marked plain "FK".
    """
    markers: List[str] = []
    if column.is_primary_key:
        markers.append("PK")
    if column.is_foreign_key:
        if column.foreign_key_table and column.foreign_key_column:
            markers.append(f"FK->{column.foreign_key_table}.{column.foreign_key_column}")
        else:
            markers.append("FK")
    return f" [{', '.join(markers)}]" if markers else ""


def format_schema_summary(schema: Schema) -> str:
    """Compact listing of tables and typed columns with key markers."""
    lines: List[str] = []
    for table in schema.tables:
        lines.append(f"\n{table.name}:\n")
        for column in table.columns:
            lines.append(f"  - {column.name} ({column.data_type}){column_markers(column)}\n")
    return "".join(lines)


def format_schema_tables(schema: Schema, error_message: Optional[str] = None) -> str:
    """
    Detailed listing with nullability and [PK] / [FK -> t.c] markers.

    When error_message is given, columns whose name appears in it
    (case-insensitive) are flagged with " <-- CHECK THIS".
    """
    lowered_error = error_message.lower() if error_message is not None else None
    lines: List[str] = []
    for table in schema.tables:
        lines.append(f"\n{table.name}:\n")
        for column in table.columns:
            pk = " [PK]" if column.is_primary_key else ""
            fk = f" [FK -> {_fk_target(column)}]" if column.is_foreign_key else ""
            highlight = ""
            if lowered_error is not None and column.name.lower() in lowered_error:
                highlight = " <-- CHECK THIS"
            lines.append(
                f"  - {column.name} ({column.data_type}) {_nullability(column)}{pk}{fk}{highlight}\n"
            )
    return "".join(lines)


def format_schema_detailed(schema: Schema, dialect_name: str) -> str:
    """Detailed listing headed by the database name and dialect."""
    header = f"Database: {schema.database_name} (Type: {dialect_name})\n\nTables:\n"
    return header + format_schema_tables(schema)


def format_schema_reference(schema: Schema, dialect: Dialect, syntax_notice: bool = False) -> str:
    """
    Reference listing with " PRIMARY KEY" and " -> t.c" markers.

    Args:
        schema: Schema to render
        dialect: Dialect named in the header
        syntax_notice: Add an instruction to use dialect-compatible syntax

    Returns:
        Listing headed by "Database: <name> (Type: <engine>)"
    """
    name = dialect_display_name(dialect)
    header = f"Database: {schema.database_name} (Type: {name})\n\n"
    if syntax_notice:
        header += f"IMPORTANT: Use {name}-compatible SQL syntax.\n\n"
    header += "Tables:\n"

    lines: List[str] = [header]
    for table in schema.tables:
        lines.append(f"\n{table.name}:\n")
        for column in table.columns:
            pk = " PRIMARY KEY" if column.is_primary_key else ""
            fk = f" -> {_fk_target(column)}" if column.is_foreign_key else ""
            lines.append(f"  - {column.name} ({column.data_type}) {_nullability(column)}{pk}{fk}\n")
    return "".join(lines)
