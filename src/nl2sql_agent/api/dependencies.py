"""
FastAPI dependencies for dependency injection.

This module provides reusable dependencies that can be injected into
API route handlers following the layered architecture:
- Services (AgentService) and repositories (SchemaRepository) built per request
  from the clients the lifespan stored on app.state
- Settings for configuration
- Optional client dependencies for health checks only

Routes should depend on services, not infrastructure clients directly.
"""

from typing import Annotated, Dict, Optional

from fastapi import Depends, Request

from nl2sql_agent.config import Settings
from nl2sql_agent.infrastructure.llm_client import LLMClient
from nl2sql_agent.repositories.schema_repository import SchemaRepository
from nl2sql_agent.repositories.sql_execution import SQLClient, SQLExecutionRepository
from nl2sql_agent.services.agent_service import AgentService
from nl2sql_agent.services.mac_sql_service import MacSQLService
from nl2sql_agent.services.tool_calling_service import ToolCallingService


def get_settings(request: Request) -> Settings:
    """
    Dependency to get the settings from app state.

    Raises:
        RuntimeError: If settings are not initialized
    """
    if not hasattr(request.app.state, "settings"):
        raise RuntimeError("Settings not initialized")
    return request.app.state.settings


def get_db_clients(request: Request) -> Dict[str, SQLClient]:
    """Connected database clients keyed by connection id ({} when none)."""
    return getattr(request.app.state, "db_clients", {})


def get_llm_client_optional(request: Request) -> Optional[LLMClient]:
    """Get LLM client if available, None otherwise."""
    return getattr(request.app.state, "llm_client", None)


def get_execution_repository(request: Request) -> SQLExecutionRepository:
    """
    Dependency to get the SQLExecutionRepository over all connected clients.

    Usage in routes:
        @app.get("/connections")
        async def list_connections(execution_repo: ExecutionRepositoryDep):
            return execution_repo.connection_ids
    """
    return SQLExecutionRepository(get_db_clients(request))


def get_schema_repository(
    execution_repo: SQLExecutionRepository = Depends(get_execution_repository),
) -> SchemaRepository:
    """Dependency to get a SchemaRepository over all connected clients."""
    return SchemaRepository(execution_repo)


def get_agent_service(
    request: Request,
    execution_repo: SQLExecutionRepository = Depends(get_execution_repository),
    schema_repo: SchemaRepository = Depends(get_schema_repository),
) -> AgentService:
    """
    Dependency to get an AgentService instance.

    Builds the full tree:
    AgentService (strategy dispatch)
      ├── MacSQLService (classify, select, decompose, refine)
      └── ToolCallingService (execute_sql loop)
    both over the shared LLMClient, SQLExecutionRepository and SchemaRepository.

    Raises:
        RuntimeError: If the LLM client or settings are not initialized
    """
    if not hasattr(request.app.state, "llm_client"):
        raise RuntimeError("LLM client not initialized")

    settings = get_settings(request)
    llm_client = request.app.state.llm_client

    return AgentService(
        mac_sql_service=MacSQLService(llm_client, execution_repo, schema_repo, settings.agent),
        tool_calling_service=ToolCallingService(llm_client, execution_repo, schema_repo, settings.agent),
        config=settings.agent,
    )


# Type aliases for cleaner dependency injection
AgentServiceDep = Annotated[AgentService, Depends(get_agent_service)]
SchemaRepositoryDep = Annotated[SchemaRepository, Depends(get_schema_repository)]
ExecutionRepositoryDep = Annotated[SQLExecutionRepository, Depends(get_execution_repository)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

# Optional client dependencies (used in health checks)
DatabaseClientsDep = Annotated[Dict[str, SQLClient], Depends(get_db_clients)]
OptionalLLMClientDep = Annotated[Optional[LLMClient], Depends(get_llm_client_optional)]
