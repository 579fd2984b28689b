"""
API request models for the NL2SQL agent.

These models define the structure for all incoming API requests,
ensuring type safety and validation at API boundaries.

All fields include detailed descriptions that appear in Swagger/OpenAPI documentation.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from nl2sql_agent.config_constants import AgentStrategy
from .pipeline import ConversationMessage


class AskRequest(BaseModel):
    """
    Request model for the main question-answering endpoint.

    Classifies the question, generates SQL, executes it against the chosen
    connection with self-correction, and answers in natural language.
    """

    question: str = Field(
        ...,
        description="Natural language question about the database. "
                    "Examples: "
                    "'How many users signed up last week?', "
                    "'Show revenue by month for 2024', "
                    "'Which tables store orders?'",
        min_length=1,
        max_length=2000,
        json_schema_extra={"example": "How many users signed up last week?"}
    )
    connection_id: str = Field(
        ...,
        description="Id of a configured database connection (key of DATABASES in settings).",
        min_length=1,
        json_schema_extra={"example": "main"}
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Identifier that keys emitted progress events. "
                    "If not provided, the request trace id is used.",
        json_schema_extra={"example": "session-42"}
    )
    history: List[ConversationMessage] = Field(
        default_factory=list,
        description="Prior conversation turns, oldest first. "
                    "Only the last 10 user/assistant messages are used, each truncated to 200 characters."
    )
    strategy: Optional[AgentStrategy] = Field(
        default=None,
        description="Agent strategy: 'mac_sql' (selector, decomposer, refiner pipeline) "
                    "or 'tool_calling' (model-driven loop). "
                    "If not provided, uses the default from configuration.",
        json_schema_extra={"example": "mac_sql"}
    )
