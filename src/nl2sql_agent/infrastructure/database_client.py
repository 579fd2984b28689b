"""
Database client for PostgreSQL using asyncpg.

This module provides an async database client with connection pooling,
read-only execution of agent-generated SQL, parameterized introspection
queries, and comprehensive error handling.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
from contextlib import asynccontextmanager
import asyncio
import asyncpg

from ..config import DatabaseConfig
from ..domain.base_enums import Dialect
from ..domain.errors import DatabaseConnectionError, ExecutionError
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id


logger = get_module_logger()


class DatabaseClient:
    """
    Low-level async PostgreSQL client using asyncpg.

    This is a thin infrastructure layer for database operations.
    Introspection and result shaping live in the repositories.

    Features:
    - Connection pooling with asyncpg
    - Agent SQL executed inside READ ONLY transactions with a statement timeout
    - Column names reported even for empty results
    - Structured logging with trace IDs

    Errors:
        Server-side failures (syntax, missing objects, timeouts) raise ExecutionError.
        Pool or network failures raise DatabaseConnectionError.

    Usage:
        client = DatabaseClient(config)
        await client.connect()

        columns, rows = await client.fetch_result("SELECT id, email FROM users LIMIT 10")

        tables = await client.execute_query(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = $1",
            params=["public"]
        )

        await client.close()
    """

    dialect = Dialect.POSTGRES

    def __init__(self, config: DatabaseConfig):
        """
        Initialize database client with configuration.

        Args:
            config: Database configuration
        """
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._is_connected = False

        logger.info(
            "DatabaseClient initialized",
            dialect=self.dialect.value,
            default_schema=config.default_schema,
            connection_pool_size=config.connection_pool_max_size,
            query_timeout_seconds=config.query_timeout_seconds,
            application_name=config.application_name
        )

    async def connect(self) -> None:
        """
        Establish connection pool to the database.

        Raises:
            DatabaseConnectionError: If connection fails
        """
        if self._is_connected:
            logger.warning("Database client already connected")
            return

        trace_id = current_trace_id()
        logger.info("Establishing database connection", dialect=self.dialect.value, trace_id=trace_id)

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.database_url,
                min_size=self.config.connection_pool_min_size,
                max_size=self.config.connection_pool_max_size,
                command_timeout=self.config.query_timeout_seconds,
                timeout=self.config.connection_timeout_seconds,
                max_queries=self.config.connection_pool_max_queries,
                server_settings={
                    'application_name': self.config.application_name,
                    'search_path': self.config.default_schema,
                }
            )

            await self._test_connection(self._pool)

            self._is_connected = True
            logger.info(
                "Database connection established successfully",
                pool_size=self.config.connection_pool_max_size,
                default_schema=self.config.default_schema,
                trace_id=trace_id
            )

        except asyncpg.InvalidCatalogNameError as e:
            error_msg = f"Database does not exist: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

        except asyncpg.InvalidPasswordError as e:
            error_msg = f"Authentication failed: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

        except DatabaseConnectionError:
            raise

        except Exception as e:
            error_msg = f"Failed to connect to database: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

    async def _test_connection(self, pool: asyncpg.Pool) -> None:
        """Run SELECT 1 and log the active schema."""
        trace_id = current_trace_id()
        try:
            async with pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                if result != 1:
                    raise DatabaseConnectionError("Connection test query returned unexpected result")

                current_schema = await conn.fetchval("SELECT current_schema()")
                logger.info(
                    "Connection test successful",
                    current_schema=current_schema,
                    trace_id=trace_id
                )
        except DatabaseConnectionError:
            raise
        except Exception as e:
            error_msg = f"Connection test failed: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

    async def close(self) -> None:
        """Close database connection pool."""
        trace_id = current_trace_id()
        logger.info("Closing database connection", trace_id=trace_id)

        if self._pool:
            await self._pool.close()

        self._is_connected = False
        self._pool = None

        logger.info("Database connection closed", trace_id=trace_id)

    def is_connected(self) -> bool:
        """Check if database client is connected."""
        return self._is_connected and self._pool is not None

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on database connection.

        Returns:
            Dictionary with status and connection details

        Example:
            {
                "status": "healthy",
                "connected": True,
                "pool_size": 5,
                "current_schema": "public"
            }
        """
        trace_id = current_trace_id()

        if not self.is_connected():
            return {
                "status": "unhealthy",
                "connected": False,
                "error": "Database client not connected"
            }

        try:
            async with self.acquire_connection() as conn:
                current_schema = await conn.fetchval("SELECT current_schema()")

            logger.info("Database health check passed", trace_id=trace_id)
            return {
                "status": "healthy",
                "connected": True,
                "pool_size": self.config.connection_pool_max_size,
                "current_schema": current_schema
            }

        except Exception as e:
            logger.error(
                "Database health check failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id
            )
            return {
                "status": "unhealthy",
                "connected": True,
                "error": str(e)
            }

    @asynccontextmanager
    async def acquire_connection(self):
        """
        Context manager to acquire a database connection from the pool.

        Yields:
            asyncpg.Connection: Database connection

        Raises:
            DatabaseConnectionError: If the client is not connected
        """
        if not self.is_connected() or self._pool is None:
            raise DatabaseConnectionError("Database client is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def fetch_result(
        self,
        query: str,
        timeout: Optional[int] = None
    ) -> Tuple[List[str], List[Sequence[Any]]]:
        """
        Execute one agent-generated statement and return its columns and raw rows.

        Runs inside a READ ONLY transaction (when enforce_read_only is set)
        with a local statement_timeout, so nothing it does can persist.

        Args:
            query: Sanitized SQL text
            timeout: Optional timeout in seconds (defaults to query_timeout_seconds)

        Returns:
            (column names in result order, rows as value tuples)

        Raises:
            ExecutionError: If the server rejects or fails the statement
            DatabaseConnectionError: If no connection could be used
        """
        trace_id = current_trace_id()
        effective_timeout = timeout or self.config.query_timeout_seconds

        logger.info(
            "Executing agent query",
            query_length=len(query),
            timeout_seconds=effective_timeout,
            read_only=self.config.enforce_read_only,
            trace_id=trace_id
        )

        try:
            async with self.acquire_connection() as conn:
                async with conn.transaction(readonly=self.config.enforce_read_only):
                    await conn.execute(f"SET LOCAL statement_timeout = {int(effective_timeout * 1000)}")
                    statement = await conn.prepare(query, timeout=effective_timeout)
                    columns = [attribute.name for attribute in statement.get_attributes()]
                    records = await statement.fetch(timeout=effective_timeout)

            rows = [tuple(record.values()) for record in records]
            logger.info("Agent query executed", row_count=len(rows), trace_id=trace_id)
            return columns, rows

        except DatabaseConnectionError:
            raise

        except (asyncpg.QueryCanceledError, asyncio.TimeoutError) as e:
            error_msg = f"Query timeout exceeded after {effective_timeout}s"
            logger.error(error_msg, trace_id=trace_id)
            raise ExecutionError(error_msg, details={"sql": query}) from e

        except asyncpg.ReadOnlySQLTransactionError as e:
            error_msg = f"Write operation rejected by read-only transaction: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise ExecutionError(error_msg, details={"sql": query}) from e

        except asyncpg.PostgresSyntaxError as e:
            error_msg = f"SQL syntax error: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise ExecutionError(error_msg, details={"sql": query}) from e

        except asyncpg.UndefinedTableError as e:
            error_msg = f"Table does not exist: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise ExecutionError(error_msg, details={"sql": query}) from e

        except asyncpg.UndefinedColumnError as e:
            error_msg = f"Column does not exist: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise ExecutionError(error_msg, details={"sql": query}) from e

        except asyncpg.PostgresError as e:
            error_msg = f"Query execution failed: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise ExecutionError(error_msg, details={"sql": query}) from e

        except (asyncpg.InterfaceError, OSError) as e:
            error_msg = f"Database connection failed during query: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

    async def execute_query(
        self,
        query: str,
        params: Optional[List[Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute a trusted parameterized query and return rows as dictionaries.

        Used for catalog introspection, never for agent-generated SQL.

        Args:
            query: SQL query string with $1-style placeholders
            params: Optional query parameters

        Returns:
            List of dictionaries containing query results

        Raises:
            ExecutionError: If the query fails
        """
        trace_id = current_trace_id()

        try:
            async with self.acquire_connection() as conn:
                rows = await conn.fetch(query, *(params or []))
            return [dict(row) for row in rows]

        except DatabaseConnectionError:
            raise

        except asyncpg.PostgresError as e:
            error_msg = f"Catalog query failed: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise ExecutionError(error_msg) from e

        except (asyncpg.InterfaceError, OSError) as e:
            error_msg = f"Database connection failed during query: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e
