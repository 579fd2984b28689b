"""Unit tests for strategy dispatch."""

import pytest

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.config_constants import AgentStrategy
from nl2sql_agent.domain.responses import AgentResponse
from nl2sql_agent.services.agent_service import AgentService


class RecordingStrategy:
    """Strategy stub that records the questions it was asked."""

    def __init__(self, name):
        self.name = name
        self.questions = []

    async def run(self, question, connection_id, history, emitter):
        self.questions.append(question)
        return AgentResponse(answer=self.name)


@pytest.fixture
def strategies():
    return RecordingStrategy("mac_sql"), RecordingStrategy("tool_calling")


class TestAgentService:

    @pytest.mark.asyncio
    async def test_default_strategy_from_config(self, strategies, emitter):
        mac_sql, tool_calling = strategies
        service = AgentService(mac_sql, tool_calling, AgentConfig())

        response = await service.ask("How many users?", "main", [], emitter)

        assert response.answer == "mac_sql"
        assert tool_calling.questions == []

    @pytest.mark.asyncio
    async def test_configured_default(self, strategies, emitter):
        mac_sql, tool_calling = strategies
        service = AgentService(mac_sql, tool_calling, AgentConfig(default_strategy=AgentStrategy.TOOL_CALLING))

        response = await service.ask("How many users?", "main", [], emitter)

        assert response.answer == "tool_calling"

    @pytest.mark.asyncio
    async def test_request_override(self, strategies, emitter):
        mac_sql, tool_calling = strategies
        service = AgentService(mac_sql, tool_calling, AgentConfig())

        await service.ask("q1", "main", [], emitter, strategy=AgentStrategy.TOOL_CALLING)
        await service.ask("q2", "main", [], emitter, strategy=AgentStrategy.MAC_SQL)

        assert tool_calling.questions == ["q1"]
        assert mac_sql.questions == ["q2"]
