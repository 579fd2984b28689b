"""
Unit tests for SchemaRepository.

Catalog queries are answered by a fake client keyed on the exact query text,
so these tests check how catalog rows become a Schema, not the SQL itself.

Usage:
    pytest tests/unit/test_schema_repository.py -v
"""

import pytest

from conftest import FakeSQLClient
from nl2sql_agent.domain.base_enums import Dialect
from nl2sql_agent.domain.errors import ExecutionError, NotFoundError
from nl2sql_agent.repositories import schema_repository as catalog
from nl2sql_agent.repositories.schema_repository import SchemaRepository
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository


POSTGRES_CATALOG = {
    catalog._PG_DATABASE: [{"database_name": "shop"}],
    catalog._PG_TABLES: [
        {"table_name": "orders", "row_count": 120},
        {"table_name": "users", "row_count": 0},
    ],
    catalog._PG_COLUMNS: [
        {"table_name": "orders", "column_name": "id", "data_type": "integer", "is_nullable": "NO", "ordinal_position": 1},
        {"table_name": "orders", "column_name": "user_id", "data_type": "integer", "is_nullable": "NO", "ordinal_position": 2},
        {"table_name": "orders", "column_name": "total", "data_type": "numeric", "is_nullable": "YES", "ordinal_position": 3},
        {"table_name": "users", "column_name": "id", "data_type": "integer", "is_nullable": "NO", "ordinal_position": 1},
        {"table_name": "users", "column_name": "email", "data_type": "text", "is_nullable": "YES", "ordinal_position": 2},
    ],
    catalog._PG_PRIMARY_KEYS: [
        {"table_name": "orders", "column_name": "id"},
        {"table_name": "users", "column_name": "id"},
    ],
    catalog._PG_FOREIGN_KEYS: [
        {"table_name": "orders", "column_name": "user_id", "foreign_table": "users", "foreign_column": "id"},
    ],
    catalog._PG_INDEXES: [
        {"table_name": "orders", "name": "orders_pkey"},
        {"table_name": "orders", "name": "orders_user_id_idx"},
    ],
    catalog._PG_TRIGGERS: [{"table_name": "orders", "name": "orders_audit"}],
    catalog._PG_CONSTRAINTS: [{"table_name": "users", "name": "users_pkey"}],
}

MYSQL_CATALOG = {
    catalog._MYSQL_DATABASE: [{"database_name": "legacy"}],
    catalog._MYSQL_TABLES: [{"table_name": "customers", "row_count": None}],
    catalog._MYSQL_COLUMNS: [
        {"table_name": "customers", "column_name": "id", "data_type": "int(11)", "is_nullable": "NO", "column_key": "PRI"},
        {"table_name": "customers", "column_name": "region_id", "data_type": "int(11)", "is_nullable": "YES", "column_key": "MUL"},
    ],
    catalog._MYSQL_FOREIGN_KEYS: [
        {"table_name": "customers", "column_name": "region_id", "foreign_table": "regions", "foreign_column": "id"},
    ],
    catalog._MYSQL_INDEXES: [{"table_name": "customers", "name": "PRIMARY"}],
}


class TestPostgresSchema:

    @pytest.mark.asyncio
    async def test_tables_columns_and_keys(self):
        client = FakeSQLClient(dialect=Dialect.POSTGRES, catalog=POSTGRES_CATALOG)
        repo = SchemaRepository(SQLExecutionRepository({"main": client}))

        schema = await repo.get_schema("main")

        assert schema.database_name == "shop"
        assert schema.table_names == ["orders", "users"]

        orders = schema.find_table("orders")
        assert orders.schema_name == "public"
        assert orders.row_count == 120
        assert [column.name for column in orders.columns] == ["id", "user_id", "total"]
        assert orders.indexes == ["orders_pkey", "orders_user_id_idx"]
        assert orders.triggers == ["orders_audit"]

        order_id, user_id, total = orders.columns
        assert order_id.is_primary_key and not order_id.is_nullable
        assert user_id.is_foreign_key
        assert (user_id.foreign_key_table, user_id.foreign_key_column) == ("users", "id")
        assert total.is_nullable and not total.is_key

        users = schema.find_table("users")
        assert users.constraints == ["users_pkey"]
        assert users.indexes == []

    @pytest.mark.asyncio
    async def test_catalog_queries_use_default_namespace(self):
        client = FakeSQLClient(dialect=Dialect.POSTGRES, catalog=POSTGRES_CATALOG)
        repo = SchemaRepository(SQLExecutionRepository({"main": client}))

        await repo.get_schema("main")

        database_query, *namespaced = client.catalog_queries
        assert database_query == (catalog._PG_DATABASE, None)
        assert all(params == ["public"] for _, params in namespaced)
        assert client.executed == []

    @pytest.mark.asyncio
    async def test_empty_database(self):
        client = FakeSQLClient(dialect=Dialect.POSTGRES, catalog={})
        repo = SchemaRepository(SQLExecutionRepository({"main": client}))

        schema = await repo.get_schema("main")

        assert schema.database_name == ""
        assert schema.tables == []


class TestMySQLSchema:

    @pytest.mark.asyncio
    async def test_column_key_marks_primary_key(self):
        client = FakeSQLClient(dialect=Dialect.MARIADB, catalog=MYSQL_CATALOG)
        repo = SchemaRepository(SQLExecutionRepository({"legacy": client}))

        schema = await repo.get_schema("legacy")

        assert schema.database_name == "legacy"
        customers = schema.find_table("customers")
        assert customers.schema_name == "legacy"
        assert customers.row_count is None
        assert customers.indexes == ["PRIMARY"]

        id_column, region_column = customers.columns
        assert id_column.is_primary_key
        assert not region_column.is_primary_key
        assert region_column.foreign_key_table == "regions"
        assert id_column.data_type == "int(11)"


class TestErrors:

    @pytest.mark.asyncio
    async def test_unknown_connection(self):
        repo = SchemaRepository(SQLExecutionRepository({}))

        with pytest.raises(NotFoundError):
            await repo.get_schema("main")

    @pytest.mark.asyncio
    async def test_catalog_failure_is_wrapped(self):
        client = FakeSQLClient(catalog_error=ExecutionError("permission denied for schema public"))
        repo = SchemaRepository(SQLExecutionRepository({"main": client}))

        with pytest.raises(ExecutionError) as exc_info:
            await repo.get_schema("main")

        assert str(exc_info.value) == (
            "Failed to introspect schema for connection 'main': permission denied for schema public"
        )
