"""
Schema Repository for extracting database schema information.

This repository reads catalog metadata from information_schema (plus
pg_catalog for row estimates and indexes on PostgreSQL) through the
registered database clients and assembles the Schema domain model.

Both dialect families are supported:
- PostgreSQL: tables of the connection's default schema
- MySQL/MariaDB: tables of the current database

All catalog queries are parameterized and never pass through the sanitizer;
they are trusted, fixed SQL.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from nl2sql_agent.domain.base_enums import Dialect
from nl2sql_agent.domain.errors import ExecutionError
from nl2sql_agent.domain.schema_nodes import Column, Schema, Table
from nl2sql_agent.repositories.sql_execution import SQLClient, SQLExecutionRepository
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.tracing import current_trace_id


logger = get_module_logger()


# =============================================================================
# PostgreSQL catalog queries
# =============================================================================

_PG_DATABASE = "SELECT current_database() AS database_name"

_PG_TABLES = """
    SELECT
        t.table_name,
        GREATEST(c.reltuples, 0)::bigint AS row_count
    FROM information_schema.tables t
    LEFT JOIN pg_catalog.pg_namespace n
        ON n.nspname = t.table_schema
    LEFT JOIN pg_catalog.pg_class c
        ON c.relname = t.table_name
        AND c.relnamespace = n.oid
    WHERE t.table_schema = $1
        AND t.table_type = 'BASE TABLE'
    ORDER BY t.table_name
"""

_PG_COLUMNS = """
    SELECT
        c.table_name,
        c.column_name,
        c.data_type,
        c.is_nullable,
        c.ordinal_position
    FROM information_schema.columns c
    WHERE c.table_schema = $1
    ORDER BY c.table_name, c.ordinal_position
"""

_PG_PRIMARY_KEYS = """
    SELECT kcu.table_name, kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    WHERE tc.constraint_type = 'PRIMARY KEY'
        AND tc.table_schema = $1
"""

_PG_FOREIGN_KEYS = """
    SELECT
        kcu.table_name,
        kcu.column_name,
        ccu.table_name AS foreign_table,
        ccu.column_name AS foreign_column
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
        ON ccu.constraint_name = tc.constraint_name
        AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
        AND tc.table_schema = $1
"""

_PG_INDEXES = """
    SELECT tablename AS table_name, indexname AS name
    FROM pg_catalog.pg_indexes
    WHERE schemaname = $1
    ORDER BY tablename, indexname
"""

_PG_TRIGGERS = """
    SELECT DISTINCT event_object_table AS table_name, trigger_name AS name
    FROM information_schema.triggers
    WHERE trigger_schema = $1
    ORDER BY event_object_table, trigger_name
"""

_PG_CONSTRAINTS = """
    SELECT table_name, constraint_name AS name
    FROM information_schema.table_constraints
    WHERE table_schema = $1
    ORDER BY table_name, constraint_name
"""


# =============================================================================
# MySQL / MariaDB catalog queries
# =============================================================================

_MYSQL_DATABASE = "SELECT DATABASE() AS database_name"

_MYSQL_TABLES = """
    SELECT table_name AS table_name, table_rows AS row_count
    FROM information_schema.tables
    WHERE table_schema = DATABASE()
        AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_MYSQL_COLUMNS = """
    SELECT
        c.table_name AS table_name,
        c.column_name AS column_name,
        c.column_type AS data_type,
        c.is_nullable AS is_nullable,
        c.column_key AS column_key
    FROM information_schema.columns c
    WHERE c.table_schema = DATABASE()
    ORDER BY c.table_name, c.ordinal_position
"""

_MYSQL_FOREIGN_KEYS = """
    SELECT
        kcu.table_name AS table_name,
        kcu.column_name AS column_name,
        kcu.referenced_table_name AS foreign_table,
        kcu.referenced_column_name AS foreign_column
    FROM information_schema.key_column_usage kcu
    WHERE kcu.table_schema = DATABASE()
        AND kcu.referenced_table_name IS NOT NULL
"""

_MYSQL_INDEXES = """
    SELECT DISTINCT table_name AS table_name, index_name AS name
    FROM information_schema.statistics
    WHERE table_schema = DATABASE()
    ORDER BY table_name, index_name
"""

_MYSQL_TRIGGERS = """
    SELECT event_object_table AS table_name, trigger_name AS name
    FROM information_schema.triggers
    WHERE trigger_schema = DATABASE()
    ORDER BY event_object_table, trigger_name
"""

_MYSQL_CONSTRAINTS = """
    SELECT table_name AS table_name, constraint_name AS name
    FROM information_schema.table_constraints
    WHERE table_schema = DATABASE()
    ORDER BY table_name, constraint_name
"""


def _names_by_table(rows: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Group {"table_name", "name"} rows into table -> ordered names."""
    grouped: Dict[str, List[str]] = defaultdict(list)
    for row in rows:
        grouped[str(row["table_name"])].append(str(row["name"]))
    return grouped


def _row_count(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


class SchemaRepository:
    """
    Repository for schema metadata operations.

    Usage:
        schema_repo = SchemaRepository(execution_repo)
        schema = await schema_repo.get_schema("main")
        print([table.name for table in schema.tables])
    """

    def __init__(self, execution_repo: SQLExecutionRepository):
        """
        Initialize schema repository.

        Args:
            execution_repo: Registry of connected database clients
        """
        self.execution_repo = execution_repo

    async def get_schema(self, connection_id: str) -> Schema:
        """
        Introspect the full schema of a connection.

        Args:
            connection_id: Registered connection id

        Returns:
            Schema with tables in name order and columns in ordinal order

        Raises:
            NotFoundError: Unknown connection id
            ExecutionError: If a catalog query fails
            DatabaseConnectionError: Connection unavailable
        """
        trace_id = current_trace_id()
        client = self.execution_repo.get_client(connection_id)

        logger.info(
            "Fetching schema",
            connection_id=connection_id,
            dialect=client.dialect.value,
            trace_id=trace_id
        )

        try:
            if client.dialect == Dialect.POSTGRES:
                schema = await self._get_postgres_schema(client)
            else:
                schema = await self._get_mysql_schema(client)
        except ExecutionError as e:
            error_msg = f"Failed to introspect schema for connection '{connection_id}': {e.message}"
            logger.error(error_msg, trace_id=trace_id)
            raise ExecutionError(error_msg) from e

        logger.info(
            "Schema fetched successfully",
            connection_id=connection_id,
            database_name=schema.database_name,
            table_count=len(schema.tables),
            trace_id=trace_id
        )
        return schema

    # =========================================================================
    # PostgreSQL
    # =========================================================================

    async def _get_postgres_schema(self, client: SQLClient) -> Schema:
        namespace = getattr(getattr(client, "config", None), "default_schema", "public")
        params = [namespace]

        database_rows = await client.execute_query(_PG_DATABASE)
        table_rows = await client.execute_query(_PG_TABLES, params)
        column_rows = await client.execute_query(_PG_COLUMNS, params)
        pk_rows = await client.execute_query(_PG_PRIMARY_KEYS, params)
        fk_rows = await client.execute_query(_PG_FOREIGN_KEYS, params)
        indexes = _names_by_table(await client.execute_query(_PG_INDEXES, params))
        triggers = _names_by_table(await client.execute_query(_PG_TRIGGERS, params))
        constraints = _names_by_table(await client.execute_query(_PG_CONSTRAINTS, params))

        primary_keys = {(str(row["table_name"]), str(row["column_name"])) for row in pk_rows}
        foreign_keys = {
            (str(row["table_name"]), str(row["column_name"])): (row["foreign_table"], row["foreign_column"])
            for row in fk_rows
        }

        columns_by_table: Dict[str, List[Column]] = defaultdict(list)
        for row in column_rows:
            key = (str(row["table_name"]), str(row["column_name"]))
            fk_target = foreign_keys.get(key)
            columns_by_table[key[0]].append(Column(
                name=key[1],
                data_type=str(row["data_type"]),
                is_nullable=str(row["is_nullable"]).upper() == "YES",
                is_primary_key=key in primary_keys,
                is_foreign_key=fk_target is not None,
                foreign_key_table=fk_target[0] if fk_target else None,
                foreign_key_column=fk_target[1] if fk_target else None,
            ))

        tables = [
            Table(
                name=str(row["table_name"]),
                schema_name=namespace,
                row_count=_row_count(row["row_count"]),
                columns=columns_by_table.get(str(row["table_name"]), []),
                indexes=indexes.get(str(row["table_name"]), []),
                triggers=triggers.get(str(row["table_name"]), []),
                constraints=constraints.get(str(row["table_name"]), []),
            )
            for row in table_rows
        ]

        database_name = str(database_rows[0]["database_name"]) if database_rows else ""
        return Schema(database_name=database_name, tables=tables)

    # =========================================================================
    # MySQL / MariaDB
    # =========================================================================

    async def _get_mysql_schema(self, client: SQLClient) -> Schema:
        database_rows = await client.execute_query(_MYSQL_DATABASE)
        table_rows = await client.execute_query(_MYSQL_TABLES)
        column_rows = await client.execute_query(_MYSQL_COLUMNS)
        fk_rows = await client.execute_query(_MYSQL_FOREIGN_KEYS)
        indexes = _names_by_table(await client.execute_query(_MYSQL_INDEXES))
        triggers = _names_by_table(await client.execute_query(_MYSQL_TRIGGERS))
        constraints = _names_by_table(await client.execute_query(_MYSQL_CONSTRAINTS))

        foreign_keys: Dict[Tuple[str, str], Tuple[str, str]] = {
            (str(row["table_name"]), str(row["column_name"])): (str(row["foreign_table"]), str(row["foreign_column"]))
            for row in fk_rows
        }

        columns_by_table: Dict[str, List[Column]] = defaultdict(list)
        for row in column_rows:
            key = (str(row["table_name"]), str(row["column_name"]))
            fk_target = foreign_keys.get(key)
            columns_by_table[key[0]].append(Column(
                name=key[1],
                data_type=str(row["data_type"]),
                is_nullable=str(row["is_nullable"]).upper() == "YES",
                is_primary_key=str(row["column_key"]).upper() == "PRI",
                is_foreign_key=fk_target is not None,
                foreign_key_table=fk_target[0] if fk_target else None,
                foreign_key_column=fk_target[1] if fk_target else None,
            ))

        database_name = str(database_rows[0]["database_name"] or "") if database_rows else ""
        tables = [
            Table(
                name=str(row["table_name"]),
                schema_name=database_name or None,
                row_count=_row_count(row["row_count"]),
                columns=columns_by_table.get(str(row["table_name"]), []),
                indexes=indexes.get(str(row["table_name"]), []),
                triggers=triggers.get(str(row["table_name"]), []),
                constraints=constraints.get(str(row["table_name"]), []),
            )
            for row in table_rows
        ]

        return Schema(database_name=database_name, tables=tables)
