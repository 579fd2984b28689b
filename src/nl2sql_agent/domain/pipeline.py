"""
Pipeline models for the text-to-SQL agent.

These models carry the intermediate results of one agent run: the pruned
schema from the selector, the ordered sub-queries from the decomposer,
and the attempt history of the refiner. All of them are created fresh
per run and discarded afterwards.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .base_enums import MessageRole, QueryComplexity, QuestionType
from .responses import ExecutionResult
from .schema_nodes import Schema


# =============================================================================
# Conversation
# =============================================================================

class ToolCall(BaseModel):
    """
    A tool invocation requested by the model.

    Arguments that could not be decoded leave `arguments` empty and set
    `error`, so the loop can feed the problem back as an observation.
    """

    id: str = Field(..., description="Provider-assigned call id")
    name: str = Field(..., description="Requested tool name")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Decoded arguments")
    error: Optional[str] = Field(default=None, description="Argument decoding error, if any")


class ConversationMessage(BaseModel):
    """
    One turn of the conversation (role + text).

    Assistant turns inside the tool-calling loop also carry the tool calls
    they requested; tool turns carry the id of the call they answer.
    """

    role: MessageRole = Field(..., description="Author of the message")
    content: str = Field(default="", description="Message text")
    tool_calls: List[ToolCall] = Field(default_factory=list, description="Tool calls requested by an assistant turn")
    tool_call_id: Optional[str] = Field(default=None, description="Call answered by a tool turn")


class ToolCallingTurn(BaseModel):
    """One assistant turn from a tool-enabled generation call."""

    content: str = Field(default="", description="Assistant text (may be empty)")
    tool_calls: List[ToolCall] = Field(default_factory=list, description="Requested tool calls in order")

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


# =============================================================================
# Selector
# =============================================================================

class SelectorResult(BaseModel):
    """Pruned schema plus the names of the tables that survived pruning."""

    pruned_schema: Schema = Field(..., description="Relevant subset of the full schema")
    selected_tables: List[str] = Field(default_factory=list, description="Selected table names in schema order")
    reasoning: str = Field(default="", description="Model reasoning for the selection")
    used_fallback: bool = Field(default=False, description="True when the full schema was kept")


# =============================================================================
# Decomposer
# =============================================================================

class SubQuery(BaseModel):
    """One SQL statement within a possibly multi-step answer plan."""

    question: str = Field(..., description="Natural-language sub-question")
    sql: str = Field(..., description="SQL text proposed by the model (unsanitized)")
    order: int = Field(default=0, description="Execution order, ascending")
    depends_on_previous: bool = Field(default=False, description="Whether earlier results are required")


class DecomposerResult(BaseModel):
    """Complexity verdict plus a non-empty list of sub-queries sorted by order."""

    complexity: QueryComplexity = Field(..., description="Simple or complex plan")
    queries: List[SubQuery] = Field(..., min_length=1, description="Sub-queries in execution order")
    reasoning: str = Field(default="", description="Model reasoning trace")


# =============================================================================
# Refiner
# =============================================================================

class RefinementAttempt(BaseModel):
    """One SQL statement tried by the refiner and its outcome."""

    sql: str = Field(..., description="SQL text tried")
    success: bool = Field(..., description="Whether execution succeeded")
    error: Optional[str] = Field(default=None, description="Error text when the attempt failed")


class RefinerResult(BaseModel):
    """Accepted SQL with its execution result and the attempts it took."""

    final_sql: str = Field(..., description="Sanitized SQL that executed successfully")
    result: ExecutionResult = Field(..., description="Execution result of final_sql")
    attempts: int = Field(..., ge=1, description="Attempts consumed, including the successful one")


# =============================================================================
# Orchestrator run state
# =============================================================================

@dataclass
class AgentRunState:
    """
    Mutable state accumulated while one agent run processes its sub-queries.

    Only the orchestrator that created it touches it; it is never shared
    between runs.
    """

    # Input
    question: str
    connection_id: str
    question_type: QuestionType = QuestionType.COMPLEX

    # Executed SQL and results, in execution order
    sql_queries: List[str] = field(default_factory=list)
    results: List[ExecutionResult] = field(default_factory=list)

    # Sum of refiner attempts or loop iterations
    iterations: int = 0

    # Sub-queries skipped after exhausting their budget
    skipped: List[SubQuery] = field(default_factory=list)
