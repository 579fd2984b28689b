"""
Custom exception hierarchy for the NL2SQL agent.

This module defines a comprehensive exception hierarchy with:
- Consistent error codes for API responses
- HTTP status code mappings for FastAPI
- Detailed error messages for debugging

Exception Categories:
- 4xx Client Errors: NotFoundError
- Agent Errors: SecurityError, GenerationParseError, ExecutionError, BudgetExhaustedError
- 5xx Server Errors: ServiceError (LLMError, DatabaseConnectionError), ConfigurationError

Agent errors are raised inside one pipeline run and handled by the
orchestrators; service errors are never retried inside the agent.

Usage:
    raise SecurityError("Only SELECT queries are allowed for AI agent")
    raise BudgetExhaustedError("Query refinement failed", attempts=3, last_error="...")
"""

from typing import Any, Dict, List, Optional


class NL2SQLException(Exception):
    """
    Base exception for all NL2SQL errors.

    All custom exceptions inherit from this class, providing:
    - error_code: Machine-readable error identifier
    - http_status: Suggested HTTP status code for API responses
    - details: Optional structured data for debugging

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error code (e.g., "SECURITY_ERROR")
        http_status: HTTP status code to return (default: 500)
        details: Optional dictionary with additional error context
    """

    error_code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        if http_status:
            self.http_status = http_status


# =============================================================================
# Client Errors (4xx)
# =============================================================================


class NotFoundError(NL2SQLException):
    """
    Raised when a requested resource is not found.

    HTTP Status: 404 Not Found

    Examples:
        - Unknown connection id
    """

    error_code = "NOT_FOUND"
    http_status = 404


# =============================================================================
# Configuration Errors (5xx)
# =============================================================================


class ConfigurationError(NL2SQLException):
    """
    Raised when configuration is invalid or missing.

    HTTP Status: 500 Internal Server Error

    Examples:
        - Unsupported database URL scheme
        - Failed to load settings
    """

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


# =============================================================================
# Agent Errors
# =============================================================================


class SecurityError(NL2SQLException):
    """
    Raised when the sanitizer rejects a SQL statement.

    HTTP Status: 422 Unprocessable Entity

    Examples:
        - Statement does not start with SELECT
        - DML/DDL keyword, comment marker or stacked statement found
        - Dialect-specific system or file function used

    The rejected statement is carried in details["sql"] when known.
    """

    error_code = "SECURITY_ERROR"
    http_status = 422


class GenerationParseError(NL2SQLException):
    """
    Raised when model output cannot be parsed into the expected structure.

    HTTP Status: 502 Bad Gateway

    Examples:
        - Malformed JSON in a decomposition response
        - Missing "queries" array or "sql" field
        - Classification response without a category
    """

    error_code = "GENERATION_PARSE_ERROR"
    http_status = 502


class ExecutionError(NL2SQLException):
    """
    Raised when the database rejects or fails a sanitized statement.

    HTTP Status: 422 Unprocessable Entity

    Examples:
        - SQL syntax error
        - Table/column not found
        - Query timeout
    """

    error_code = "EXECUTION_ERROR"
    http_status = 422


class BudgetExhaustedError(NL2SQLException):
    """
    Raised when a bounded loop runs out of attempts.

    HTTP Status: 422 Unprocessable Entity

    Covers both the refiner attempt cap and the tool-calling iteration cap.
    Callers must not retry further.

    Attributes:
        attempts: Number of attempts or iterations consumed
        last_error: Last observed error text, if any
        history: Failed attempts in order (refiner only)
    """

    error_code = "BUDGET_EXHAUSTED"
    http_status = 422

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[str] = None,
        history: Optional[List[Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = {"attempts": attempts}
        if last_error is not None:
            merged["last_error"] = last_error
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.attempts = attempts
        self.last_error = last_error
        self.history = list(history or [])


# =============================================================================
# Service Errors (5xx)
# =============================================================================


class ServiceError(NL2SQLException):
    """
    Raised when an external collaborator is unreachable or failing.

    HTTP Status: 503 Service Unavailable

    Never retried inside the agent; the decision belongs to the caller.
    """

    error_code = "SERVICE_UNAVAILABLE"
    http_status = 503


class LLMError(ServiceError):
    """
    Raised when LLM operations fail.

    HTTP Status: 503 Service Unavailable

    Examples:
        - LLM API unreachable
        - Request timed out
        - Context length exceeded
    """

    error_code = "LLM_ERROR"
    http_status = 503


class DatabaseConnectionError(ServiceError):
    """
    Raised when database connection fails.

    HTTP Status: 503 Service Unavailable

    Examples:
        - Connection timeout
        - Authentication failure
        - Client not connected
    """

    error_code = "DATABASE_CONNECTION_ERROR"
    http_status = 503
