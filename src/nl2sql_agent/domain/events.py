"""
Event models for progress notifications.

Events are advisory: they describe what an agent run is doing for a UI
or log consumer, and losing one never affects the run itself.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .base_enums import PipelineEventType


class PipelineEvent(BaseModel):
    """A single ordered notification keyed by session id."""

    session_id: str = Field(..., description="Session the event belongs to")
    sequence: int = Field(..., ge=0, description="Monotonically increasing number within the session")
    type: PipelineEventType = Field(..., description="Kind of event")
    content: str = Field(default="", description="Text carried by the event")
    payload: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Structured data for table, chart and statistic events"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event was created"
    )
