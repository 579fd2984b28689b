"""
Type aliases for the NL2SQL agent.

Provides reusable, descriptive type aliases for common patterns
to improve code readability and type safety.
"""

from typing import Any, Dict, List, Optional


# One result row: {column_name: value}
ResultRow = Dict[str, Any]

# Structured output request: {"name": ..., "schema": {...json schema...}}
StructuredSchema = Dict[str, Any]

# OpenAI-style tool definition: {"type": "function", "function": {...}}
ToolDefinition = Dict[str, Any]

# Requested columns per table from the selector; None means "all columns"
TableColumnSelection = Dict[str, Optional[List[str]]]
