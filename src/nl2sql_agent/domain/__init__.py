"""
Domain package for the NL2SQL agent.

This package contains all domain models, entities, and value objects
used throughout the application for type safety and validation.
"""

from .base_enums import (
    ClassificationConfidence,
    Dialect,
    MessageRole,
    PipelineEventType,
    QueryComplexity,
    QueryStatus,
    QuestionType,
)
from .schema_nodes import Column, Table, Schema
from .events import PipelineEvent
from .responses import (
    AgentResponse,
    AskResponse,
    ErrorResponse,
    ExecutionResult,
    HealthResponse,
    SchemaResponse,
)
from .pipeline import (
    AgentRunState,
    ConversationMessage,
    DecomposerResult,
    RefinementAttempt,
    RefinerResult,
    SelectorResult,
    SubQuery,
    ToolCall,
    ToolCallingTurn,
)
from .requests import AskRequest

__all__ = [
    # Enums
    "ClassificationConfidence",
    "Dialect",
    "MessageRole",
    "PipelineEventType",
    "QueryComplexity",
    "QueryStatus",
    "QuestionType",

    # Schema
    "Column",
    "Table",
    "Schema",

    # Events
    "PipelineEvent",

    # Responses
    "AgentResponse",
    "AskResponse",
    "ErrorResponse",
    "ExecutionResult",
    "HealthResponse",
    "SchemaResponse",

    # Pipeline
    "AgentRunState",
    "ConversationMessage",
    "DecomposerResult",
    "RefinementAttempt",
    "RefinerResult",
    "SelectorResult",
    "SubQuery",
    "ToolCall",
    "ToolCallingTurn",

    # Requests
    "AskRequest",
]
