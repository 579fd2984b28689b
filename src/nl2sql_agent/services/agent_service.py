"""
Agent Service - strategy dispatch.

Routes a question to the fixed pipeline or the tool-calling loop. Both
strategies share the same sanitizer, execution service and event model;
they are alternatives, not stages.
"""

from typing import List, Optional

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.config_constants import AgentStrategy
from nl2sql_agent.domain.pipeline import ConversationMessage
from nl2sql_agent.domain.responses import AgentResponse
from nl2sql_agent.services.event_sink import SessionEventEmitter
from nl2sql_agent.services.mac_sql_service import MacSQLService
from nl2sql_agent.services.tool_calling_service import ToolCallingService
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


class AgentService:
    """Runs one agent request with the requested or configured strategy."""

    def __init__(
        self,
        mac_sql_service: MacSQLService,
        tool_calling_service: ToolCallingService,
        config: AgentConfig,
    ):
        self.mac_sql_service = mac_sql_service
        self.tool_calling_service = tool_calling_service
        self.config = config

    async def ask(
        self,
        question: str,
        connection_id: str,
        history: List[ConversationMessage],
        emitter: SessionEventEmitter,
        strategy: Optional[AgentStrategy] = None,
    ) -> AgentResponse:
        """
        Answer a question.

        Args:
            question: User question
            connection_id: Registered connection id
            history: Prior conversation turns, oldest first
            emitter: Progress event emitter for the session
            strategy: Strategy override; defaults to AgentConfig.default_strategy

        Returns:
            AgentResponse from the selected strategy
        """
        selected = strategy or self.config.default_strategy
        logger.info("Dispatching agent run", strategy=selected.value, trace_id=current_trace_id())

        if selected == AgentStrategy.TOOL_CALLING:
            return await self.tool_calling_service.run(question, connection_id, history, emitter)
        return await self.mac_sql_service.run(question, connection_id, history, emitter)
