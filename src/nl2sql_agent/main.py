"""
Main FastAPI application for the NL2SQL agent.

This module sets up the FastAPI application with logging, tracing and
error handling middleware, connects one database client per configured
connection, and exposes the agent over HTTP.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Union

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import (
    AgentServiceDep,
    DatabaseClientsDep,
    ExecutionRepositoryDep,
    OptionalLLMClientDep,
    SchemaRepositoryDep,
    SettingsDep,
)
from .api.middleware import (
    ERROR_RESPONSES,
    logging_middleware,
    register_exception_handlers,
    trace_id_middleware,
)
from .config import DatabaseConfig, get_settings
from .domain.base_enums import Dialect
from .domain.requests import AskRequest
from .domain.responses import AskResponse, HealthResponse, SchemaResponse
from .infrastructure.database_client import DatabaseClient
from .infrastructure.llm_client import LLMClient
from .infrastructure.mysql_client import MySQLClient
from .repositories.sql_execution import SQLClient
from .services.event_sink import CollectingEventSink, LoggingEventSink, SessionEventEmitter
from .utils.logging import configure_logging, get_module_logger
from .utils.tracing import get_trace_id

API_VERSION = "0.1.0"

# Configure logging on module import
configure_logging()
logger = get_module_logger()


def create_db_client(connection_id: str, config: DatabaseConfig) -> SQLClient:
    """Client for a configured connection: asyncpg for PostgreSQL, mysql-connector otherwise."""
    if config.dialect == Dialect.POSTGRES:
        return DatabaseClient(config)
    return MySQLClient(config, pool_id=connection_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting NL2SQL agent API server", version=API_VERSION)

    settings = get_settings()
    app.state.settings = settings
    logger.info("Settings loaded successfully", connection_ids=list(settings.databases))

    # One client per configured connection; failures leave the connection out
    db_clients: Dict[str, SQLClient] = {}
    for connection_id, db_config in settings.databases.items():
        client = create_db_client(connection_id, db_config)
        try:
            await client.connect()
            db_clients[connection_id] = client
            logger.info("Database client connected successfully", connection_id=connection_id)
        except Exception as e:
            logger.error(f"Failed to connect database client: {e}", connection_id=connection_id)

    llm_client = LLMClient(settings.llm)
    try:
        await llm_client.connect()
        logger.info("LLM client connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect LLM client: {e}")

    app.state.db_clients = db_clients
    app.state.llm_client = llm_client

    yield

    logger.info("Shutting down NL2SQL agent API server")

    for connection_id, client in app.state.db_clients.items():
        await client.close()
        logger.info("Database client closed", connection_id=connection_id)

    await app.state.llm_client.close()
    logger.info("LLM client closed")


app = FastAPI(
    title="NL2SQL Agent API",
    description="Text-to-SQL agent: schema selection, decomposition and self-correcting execution",
    version=API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last registered = first executed: trace id is bound before request logging
app.middleware("http")(logging_middleware)
app.middleware("http")(trace_id_middleware)

register_exception_handlers(app)


# API Routes
@app.get("/", tags=["Root"])
async def root(settings: SettingsDep) -> Dict[str, Union[str, None]]:
    """
    Root endpoint returning basic API information.

    **Response**: Dict with message, version, trace_id, log_level, default_strategy
    """
    trace_id = get_trace_id()
    logger.info("Root endpoint accessed", trace_id=trace_id)

    return {
        "message": "NL2SQL Agent API",
        "version": API_VERSION,
        "trace_id": trace_id,
        "log_level": settings.app.log_level.value,
        "default_strategy": settings.agent.default_strategy.value,
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(
    db_clients: DatabaseClientsDep,
    llm_client: OptionalLLMClientDep,
    settings: SettingsDep,
) -> HealthResponse:
    """
    Health check endpoint.

    **Response Model**: `HealthResponse`
    - status: healthy when every configured connection and the LLM client are healthy
    - database_status: per connection id (not_connected when startup failed)
    - llm_service_status
    """
    trace_id = get_trace_id()
    logger.info("Health check endpoint accessed", trace_id=trace_id)

    database_status: Dict[str, str] = {}
    for connection_id in settings.databases:
        client = db_clients.get(connection_id)
        if client is None:
            database_status[connection_id] = "not_connected"
            continue
        db_health = await client.health_check()
        database_status[connection_id] = db_health.get("status", "unknown")

    llm_status = "not_configured"
    if llm_client:
        llm_status = "healthy" if llm_client.is_connected() else "unhealthy"

    overall_status = "healthy" if (
        llm_status == "healthy" and
        all(status == "healthy" for status in database_status.values())
    ) else "degraded"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=API_VERSION,
        database_status=database_status,
        llm_service_status=llm_status,
    )


@app.get(
    "/api/v1/connections/{connection_id}/schema",
    response_model=SchemaResponse,
    tags=["Schema"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 500, 503]},
)
async def get_connection_schema(
    connection_id: str,
    schema_repo: SchemaRepositoryDep,
    execution_repo: ExecutionRepositoryDep,
) -> SchemaResponse:
    """
    Introspect the schema of a configured connection.

    **Response Model**: `SchemaResponse`
    - connection_id, dialect, table_count
    - database_schema: tables with columns, PK/FK markers, approximate row counts

    **Possible Errors**:
    - 404: Unknown (or unconnected) connection id
    - 503: Database unavailable
    """
    trace_id = get_trace_id()
    schema = await schema_repo.get_schema(connection_id)

    return SchemaResponse(
        trace_id=trace_id,
        connection_id=connection_id,
        dialect=execution_repo.dialect(connection_id).value,
        table_count=len(schema.tables),
        database_schema=schema,
    )


@app.post(
    "/api/v1/ask",
    response_model=AskResponse,
    tags=["Agent"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422, 500, 502, 503]},
)
async def ask(request: AskRequest, agent_service: AgentServiceDep) -> AskResponse:
    """
    Answer a natural-language question about a connected database.

    The question is classified, turned into SQL (fixed pipeline or
    tool-calling loop), sanitized, executed read-only with self-correction,
    and answered in natural language.

    **Request Model**: `AskRequest`
    - question, connection_id, optional session_id, history, strategy

    **Response Model**: `AskResponse`
    - answer, sql_queries, iterations, question_type, status
    - events: ordered progress events (thinking, table_data, chart_data, statistic, ...)

    **Possible Errors**:
    - 404: Unknown connection id
    - 422: Request validation failed, or no runnable SQL within the budget
    - 502: Unparsable model output
    - 503: LLM or database unavailable
    """
    trace_id = get_trace_id()
    session_id = request.session_id or trace_id

    collector = CollectingEventSink()
    emitter = SessionEventEmitter(session_id, [collector, LoggingEventSink()])

    response = await agent_service.ask(
        question=request.question,
        connection_id=request.connection_id,
        history=request.history,
        emitter=emitter,
        strategy=request.strategy,
    )

    return AskResponse(
        **response.model_dump(),
        trace_id=trace_id,
        session_id=session_id,
        events=collector.events,
    )
