"""
SQL Execution Repository.

Executes sanitized SQL against a registered connection and shapes the
driver output into an ExecutionResult.

Safety Features:
- Only called with SQL that passed the sanitizer
- Read-only transactions and statement timeouts enforced by the clients
- Row cap: pagination never asks for more than MAX_ROW_LIMIT rows, and
  results are truncated to the cap whatever LIMIT the statement carries

Architecture Notes:
- This is a REPOSITORY (data access layer)
- Holds the connection registry: connection id -> database client
- Clients are created and connected by the application lifespan

Execution Flow:
1. Resolve the client for the connection id
2. Paginate: statements without LIMIT get "LIMIT <row_limit> OFFSET <offset>"
3. Execute via the client (read-only, bounded)
4. Truncate to the row cap, build rows keyed by unique column names
5. Return ExecutionResult with row_count and execution_time_ms

Usage:
    repo = SQLExecutionRepository({"main": db_client})
    result = await repo.execute("SELECT * FROM users LIMIT 10", "main", row_limit=100, offset=0)
    print(f"Returned {result.row_count} rows in {result.execution_time_ms}ms")
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Sequence, Tuple

from nl2sql_agent.constants import DEFAULT_OFFSET, MAX_ROW_LIMIT
from nl2sql_agent.domain.base_enums import Dialect
from nl2sql_agent.domain.errors import NotFoundError
from nl2sql_agent.domain.responses import ExecutionResult
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


class SQLClient(Protocol):
    """Operations the repositories need from a database client."""

    dialect: Dialect

    async def fetch_result(self, query: str, timeout: Any = None) -> Tuple[List[str], List[Sequence[Any]]]:
        ...

    async def execute_query(self, query: str, params: Any = None) -> List[Dict[str, Any]]:
        ...

    async def health_check(self) -> Dict[str, Any]:
        ...


def paginate_query(sql: str, row_limit: int, offset: int) -> str:
    """
    Add LIMIT/OFFSET to a statement that has no LIMIT of its own.

    Statements that already mention LIMIT are used as-is (minus trailing
    semicolons); the sanitizer has already capped their limit.
    """
    if "LIMIT" in sql.upper():
        return sql.rstrip(";")
    return f"{sql.rstrip(';')} LIMIT {row_limit} OFFSET {offset}"


def unique_column_names(columns: List[str]) -> List[str]:
    """
    Make column names unique, keeping order.

    Repeated names get a numeric suffix: ["id", "id", "name"] -> ["id", "id_2", "name"].
    """
    seen: Dict[str, int] = {}
    taken = set(columns)
    result: List[str] = []
    for name in columns:
        count = seen.get(name, 0) + 1
        seen[name] = count
        if count == 1:
            result.append(name)
            continue
        candidate = f"{name}_{count}"
        while candidate in taken:
            count += 1
            candidate = f"{name}_{count}"
        seen[name] = count
        taken.add(candidate)
        result.append(candidate)
    return result


class SQLExecutionRepository:
    """
    Repository for SQL execution across registered connections.

    Implements the database execution service used by the agent:
    execute() and dialect().
    """

    def __init__(self, clients: Dict[str, SQLClient]):
        self._clients = dict(clients)

    @property
    def connection_ids(self) -> List[str]:
        return list(self._clients)

    def get_client(self, connection_id: str) -> SQLClient:
        """
        Resolve the client for a connection id.

        Raises:
            NotFoundError: If the connection id is not registered
        """
        client = self._clients.get(connection_id)
        if client is None:
            raise NotFoundError(
                f"Unknown connection id: {connection_id}",
                details={"connection_id": connection_id, "available": self.connection_ids},
            )
        return client

    def dialect(self, connection_id: str) -> Dialect:
        """Dialect of the registered connection."""
        return self.get_client(connection_id).dialect

    async def execute(
        self,
        sanitized_sql: str,
        connection_id: str,
        row_limit: int = MAX_ROW_LIMIT,
        offset: int = DEFAULT_OFFSET,
    ) -> ExecutionResult:
        """
        Execute sanitized SQL on a connection.

        Args:
            sanitized_sql: Output of the sanitizer
            connection_id: Registered connection id
            row_limit: Rows per page (capped at MAX_ROW_LIMIT)
            offset: Page offset for statements without LIMIT

        Returns:
            ExecutionResult with rows and metadata

        Raises:
            NotFoundError: Unknown connection id
            ExecutionError: Database rejected or failed the statement
            DatabaseConnectionError: Connection unavailable
        """
        trace_id = current_trace_id()
        client = self.get_client(connection_id)

        row_cap = min(max(row_limit, 1), MAX_ROW_LIMIT)
        query = paginate_query(sanitized_sql, row_cap, max(offset, 0))

        logger.info(
            "Executing SQL query",
            connection_id=connection_id,
            dialect=client.dialect.value,
            sql_length=len(query),
            trace_id=trace_id,
        )

        start_time = datetime.now(timezone.utc)
        raw_columns, raw_rows = await client.fetch_result(query)
        execution_time_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000

        # A LIMIT inside a subquery does not bound the outer statement
        if len(raw_rows) > row_cap:
            logger.warning(
                "Result truncated to row cap",
                fetched_rows=len(raw_rows),
                row_cap=row_cap,
                trace_id=trace_id,
            )
            raw_rows = raw_rows[:row_cap]

        columns = unique_column_names(raw_columns)
        rows = [dict(zip(columns, values)) for values in raw_rows]

        result = ExecutionResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            execution_time_ms=round(execution_time_ms, 2),
        )

        logger.info(
            "SQL execution successful",
            row_count=result.row_count,
            column_count=result.column_count,
            execution_time_ms=result.execution_time_ms,
            trace_id=trace_id,
        )

        return result
