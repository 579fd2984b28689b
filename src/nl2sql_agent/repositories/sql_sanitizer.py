"""
SQL Sanitizer.

Deterministic safety gate that every piece of model-generated SQL passes
through before it reaches a database connection.

Checks (in order):
1. Non-empty input
2. Statement starts with SELECT (case-insensitive, after trimming)
3. Deny patterns: DML/DDL keywords, stacked statements, comment markers,
   UNION ... SELECT, semicolon-chained follow-on statements
4. Trailing semicolons stripped
5. Row cap: LIMIT 100 appended when missing; every larger LIMIT (including
   the count of MySQL "LIMIT offset, count") rewritten to 100

A second pass, validate_for_dialect(), rejects dialect-specific escape
hatches (system catalog functions, file read/write) that are technically
SELECT statements.

Security Philosophy:
- Pattern based, not a parser: it over-rejects rather than under-rejects
- No I/O, no configuration: the same input always gives the same answer
- The row cap is a hard limit, not negotiable per call site

Usage:
    safe_sql = validate("SELECT * FROM users")       # "SELECT * FROM users LIMIT 100"
    validate_for_dialect(safe_sql, Dialect.POSTGRES)  # raises SecurityError on pg_ functions
"""

import re
from typing import List, Pattern

from nl2sql_agent.constants import MAX_ROW_LIMIT
from nl2sql_agent.domain.base_enums import Dialect
from nl2sql_agent.domain.errors import SecurityError


# Checked in order; the rule number in error messages is the 1-based position
DENY_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(INSERT|UPDATE|DELETE|DROP|ALTER|CREATE|TRUNCATE|REPLACE|GRANT|REVOKE)\b", re.IGNORECASE),
    re.compile(r";.*;"),
    re.compile(r"--"),
    re.compile(r"/\*"),
    re.compile(r"\bUNION\b.*\bSELECT\b", re.IGNORECASE),
    re.compile(r";\s*(SELECT|INSERT|UPDATE|DELETE|DROP|ALTER|CREATE)"),
]

_HAS_LIMIT = re.compile(r"\bLIMIT\s+\d+", re.IGNORECASE)
# "LIMIT n" or MySQL "LIMIT offset, count"
_LIMIT_CLAUSE = re.compile(r"\bLIMIT\s+(\d+)(?:\s*,\s*(\d+))?", re.IGNORECASE)

# Function names are case-insensitive in every supported engine
_POSTGRES_FORBIDDEN = re.compile(r"pg_|pgcrypto", re.IGNORECASE)
_MYSQL_FORBIDDEN = re.compile(r"LOAD_FILE|INTO\s+(OUTFILE|DUMPFILE)", re.IGNORECASE)


def validate(sql: str) -> str:
    """
    Check a statement and return its safe, row-capped form.

    Args:
        sql: Untrusted SQL text

    Returns:
        Trimmed SQL without trailing semicolons and with LIMIT <= 100

    Raises:
        SecurityError: If the statement is empty, not a SELECT, or matches a deny pattern

    Example:
        >>> validate("SELECT * FROM t LIMIT 500;")
        'SELECT * FROM t LIMIT 100'
    """
    trimmed = sql.strip()

    if not trimmed:
        raise SecurityError("Empty query")

    if not trimmed.upper().startswith("SELECT"):
        raise SecurityError(
            "Only SELECT queries are allowed for AI agent",
            details={"sql": trimmed},
        )

    for rule_number, pattern in enumerate(DENY_PATTERNS, start=1):
        if pattern.search(trimmed):
            raise SecurityError(
                f"Forbidden SQL pattern detected (rule {rule_number}): {pattern.pattern}",
                details={"sql": trimmed, "rule": rule_number},
            )

    sanitized = trimmed
    while sanitized.endswith(";"):
        sanitized = sanitized[:-1]

    if not _HAS_LIMIT.search(sanitized):
        return f"{sanitized} LIMIT {MAX_ROW_LIMIT}"

    # Every LIMIT is capped, including those inside subqueries
    return _LIMIT_CLAUSE.sub(_cap_limit, sanitized)


def _cap_limit(match: "re.Match[str]") -> str:
    first, count = match.group(1), match.group(2)
    if count is not None:
        if int(count) <= MAX_ROW_LIMIT:
            return match.group(0)
        return f"LIMIT {first}, {MAX_ROW_LIMIT}"
    if int(first) <= MAX_ROW_LIMIT:
        return match.group(0)
    return f"LIMIT {MAX_ROW_LIMIT}"


def validate_for_dialect(sql: str, dialect: Dialect) -> None:
    """
    Reject dialect-specific escape hatches in an already validated statement.

    Args:
        sql: Output of validate()
        dialect: Dialect of the target connection

    Raises:
        SecurityError: If a forbidden function or clause is present
    """
    if dialect == Dialect.POSTGRES:
        if _POSTGRES_FORBIDDEN.search(sql):
            raise SecurityError("PostgreSQL system functions not allowed", details={"sql": sql})
    elif dialect in (Dialect.MYSQL, Dialect.MARIADB):
        if _MYSQL_FORBIDDEN.search(sql):
            raise SecurityError("File operations not allowed", details={"sql": sql})


def sanitize_for_dialect(sql: str, dialect: Dialect) -> str:
    """Run validate() then validate_for_dialect(); the only path to executable SQL."""
    sanitized = validate(sql)
    validate_for_dialect(sanitized, dialect)
    return sanitized
