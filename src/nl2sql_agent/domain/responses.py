"""
Response models for the NL2SQL agent.

These models define the structure of execution results, agent answers
and all outgoing API responses, ensuring consistent formats and type safety.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .base_enums import QueryStatus, QuestionType
from .events import PipelineEvent
from .schema_nodes import Schema
from .types import ResultRow


class ExecutionResult(BaseModel):
    """Result of running one sanitized statement."""

    columns: List[str] = Field(default_factory=list, description="Column names in result order (unique)")
    rows: List[ResultRow] = Field(default_factory=list, description="Rows as column name -> value maps")
    row_count: int = Field(default=0, description="Number of rows returned")
    execution_time_ms: float = Field(default=0.0, description="Wall-clock execution time in milliseconds")

    @property
    def column_count(self) -> int:
        return len(self.columns)

    def first_value(self) -> Any:
        """Value of the first column of the first row, or None when empty."""
        if not self.rows or not self.columns:
            return None
        return self.rows[0].get(self.columns[0])


class AgentResponse(BaseModel):
    """Final outcome of one agent run, returned by both strategies."""

    answer: str = Field(..., description="Natural-language answer for the user")
    sql_queries: List[str] = Field(default_factory=list, description="SQL statements executed or attempted")
    iterations: int = Field(default=0, description="Refiner attempts or loop iterations consumed")
    question_type: Optional[QuestionType] = Field(default=None, description="Classified question type")
    status: QueryStatus = Field(default=QueryStatus.COMPLETED, description="Run status")


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Health status", examples=["healthy", "degraded", "unhealthy"])
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Application version")
    database_status: Dict[str, str] = Field(..., description="Connection status per connection id")
    llm_service_status: str = Field(..., description="LLM service status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
    trace_id: Optional[str] = Field(
        default=None,
        description="Trace ID for debugging"
    )
    timestamp: datetime = Field(..., description="Error timestamp")


class AskResponse(AgentResponse):
    """Agent answer plus the events emitted while producing it."""

    trace_id: str = Field(..., description="Unique trace ID for this request")
    session_id: str = Field(..., description="Session the events were keyed by")
    events: List[PipelineEvent] = Field(default_factory=list, description="Ordered pipeline events")


class SchemaResponse(BaseModel):
    """Response model for the schema introspection endpoint."""

    trace_id: str = Field(..., description="Unique trace ID for this request")
    connection_id: str = Field(..., description="Connection the schema was read from")
    dialect: str = Field(..., description="SQL dialect of the connection")
    table_count: int = Field(..., description="Number of tables in the schema")
    database_schema: Schema = Field(..., description="Introspected schema")
