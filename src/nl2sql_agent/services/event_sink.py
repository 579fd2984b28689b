"""
Progress event sinks.

Agent runs report what they are doing ("Selected tables: ...",
"Executing SQL: ...", the final answer) as ordered PipelineEvents keyed by a
session id. Events are fire-and-forget: a failing sink is logged and
ignored, it never aborts the run.

Components:
- EventSink: protocol implemented by every sink
- SessionEventEmitter: numbers events per session and fans them out to sinks
- LoggingEventSink: writes events to the structured log
- CollectingEventSink: keeps events in memory (returned in API responses)
"""

from typing import Any, Dict, List, Optional, Protocol

from nl2sql_agent.domain.base_enums import PipelineEventType, QuestionType
from nl2sql_agent.domain.events import PipelineEvent
from nl2sql_agent.domain.responses import ExecutionResult
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


class EventSink(Protocol):
    """Receives pipeline events."""

    async def emit(self, event: PipelineEvent) -> None:
        ...


class LoggingEventSink:
    """Writes every event to the structured log at DEBUG level."""

    async def emit(self, event: PipelineEvent) -> None:
        logger.debug(
            "Pipeline event",
            session_id=event.session_id,
            sequence=event.sequence,
            event_type=event.type.value,
            content_length=len(event.content),
            trace_id=current_trace_id(),
        )


class CollectingEventSink:
    """Keeps events in memory in emission order."""

    def __init__(self):
        self.events: List[PipelineEvent] = []

    async def emit(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: PipelineEventType) -> List[PipelineEvent]:
        return [event for event in self.events if event.type == event_type]


class SessionEventEmitter:
    """
    Emits numbered events for one session to a set of sinks.

    Sequence numbers start at 0 and increase by one per event, whether or
    not any sink accepted it.

    Usage:
        collector = CollectingEventSink()
        emitter = SessionEventEmitter("session-42", [collector, LoggingEventSink()])
        await emitter.thinking("Analyzing your question...\\n")
        await emitter.complete()
    """

    def __init__(self, session_id: str, sinks: Optional[List[EventSink]] = None):
        self.session_id = session_id
        self.sinks: List[EventSink] = list(sinks or [])
        self._sequence = 0

    async def emit(
        self,
        event_type: PipelineEventType,
        content: str = "",
        payload: Optional[Dict[str, Any]] = None,
    ) -> PipelineEvent:
        """
        Build the next event and deliver it to every sink.

        Sink failures are logged and swallowed.

        Returns:
            The emitted event
        """
        event = PipelineEvent(
            session_id=self.session_id,
            sequence=self._sequence,
            type=event_type,
            content=content,
            payload=payload,
        )
        self._sequence += 1

        for sink in self.sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                logger.warning(
                    "Event sink failed",
                    sink=type(sink).__name__,
                    event_type=event_type.value,
                    error=str(e),
                    trace_id=current_trace_id(),
                )
        return event

    # =========================================================================
    # Convenience emitters
    # =========================================================================

    async def thinking(self, text: str) -> None:
        await self.emit(PipelineEventType.THINKING, text)

    async def token(self, text: str) -> None:
        await self.emit(PipelineEventType.TOKEN, text)

    async def complete(self) -> None:
        await self.emit(PipelineEventType.COMPLETE)

    async def error(self, message: str) -> None:
        await self.emit(PipelineEventType.ERROR, message)

    async def table_data(self, result: ExecutionResult, sql: str) -> None:
        await self.emit(
            PipelineEventType.TABLE_DATA,
            payload={
                "sql": sql,
                "columns": result.columns,
                "rows": result.rows,
                "row_count": result.row_count,
                "execution_time_ms": result.execution_time_ms,
            },
        )

    async def chart_data(self, result: ExecutionResult, question_type: QuestionType) -> None:
        await self.emit(
            PipelineEventType.CHART_DATA,
            payload={
                "question_type": question_type.value,
                "columns": result.columns,
                "rows": result.rows,
            },
        )

    async def statistic(self, result: ExecutionResult) -> None:
        await self.emit(
            PipelineEventType.STATISTIC,
            payload={
                "label": result.columns[0] if result.columns else "",
                "value": result.first_value(),
                "columns": result.columns,
                "row": result.rows[0] if result.rows else {},
            },
        )
