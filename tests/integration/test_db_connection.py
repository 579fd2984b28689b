"""
Integration tests for database client connections.

This module verifies basic connectivity to every configured target database
(DATABASES__<ID>__DATABASE_URL in .env).

Usage:
    # Run all database connection tests
    pytest tests/integration/test_db_connection.py -v --run-integration

    # Run with output
    pytest tests/integration/test_db_connection.py -v -s --run-integration
"""

import pytest

from nl2sql_agent.config import get_settings
from nl2sql_agent.main import create_db_client
from nl2sql_agent.repositories.schema_repository import SchemaRepository
from nl2sql_agent.repositories.sql_execution import SQLExecutionRepository


@pytest.fixture
def connection():
    """First configured connection as (connection_id, DatabaseConfig)."""
    settings = get_settings()
    if not settings.databases:
        pytest.skip("No DATABASES__<ID>__DATABASE_URL configured")
    return next(iter(settings.databases.items()))


@pytest.fixture
async def db_client(connection):
    """Create and connect the database client for the connection."""
    connection_id, db_config = connection
    client = create_db_client(connection_id, db_config)
    await client.connect()
    yield client
    if client.is_connected():
        await client.close()


@pytest.mark.integration
class TestDatabaseConnection:
    """Integration tests for database connectivity."""

    @pytest.mark.asyncio
    async def test_basic_connection(self, connection):
        """Test basic database connection and disconnection."""
        client = create_db_client(*connection)

        # Test connection
        await client.connect()
        assert client.is_connected()

        # Test disconnection
        await client.close()
        assert not client.is_connected()

    @pytest.mark.asyncio
    async def test_simple_query(self, db_client):
        """Test a simple agent query through the read-only path."""
        columns, rows = await db_client.fetch_result("SELECT 1 AS value")

        assert columns == ["value"]
        assert rows == [(1,)]

    @pytest.mark.asyncio
    async def test_health_check(self, db_client):
        """Test connection status check."""
        health = await db_client.health_check()

        assert health["status"] == "healthy"
        assert health["connected"] is True

    @pytest.mark.asyncio
    async def test_execution_repository(self, connection, db_client):
        """Test pagination and row shaping through the repository."""
        connection_id, _ = connection
        repo = SQLExecutionRepository({connection_id: db_client})

        result = await repo.execute("SELECT 1 AS value, 2 AS value", connection_id)

        assert result.columns == ["value", "value_2"]
        assert result.rows == [{"value": 1, "value_2": 2}]
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_schema_introspection(self, connection, db_client):
        """Test that the catalog can be read."""
        connection_id, _ = connection
        repo = SchemaRepository(SQLExecutionRepository({connection_id: db_client}))

        schema = await repo.get_schema(connection_id)

        assert schema.database_name
        assert all(table.name for table in schema.tables)
