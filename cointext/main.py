"""FastAPI application entry point."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cointext.adapters.llm_client import OpenAIChatClient
from cointext.adapters.tool_client import ToolHttpClient
from cointext.adapters.vector_index import PgVectorIndex
from cointext.infra.config import Config, config
from cointext.infra.database import Database
from cointext.infra.embeddings import EmbeddingGenerator
from cointext.infra.logging import app_logger
from cointext.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from cointext.services.client_service import ClientService
from cointext.services.conversation_store import ConversationStore
from cointext.services.document_service import DocumentService
from cointext.services.retrieval_service import RetrievalService
from cointext.services.step_executor import StepExecutor
from cointext.services.tenant_service import TenantService
from cointext.services.tool_registry import ToolRegistry
from cointext.services.workflow_driver import WorkflowDriver
from cointext.services.workflow_planner import WorkflowPlanner


def build_services(app: FastAPI, cfg: Config) -> None:
    """Construct every service handle once and attach it to app.state."""
    db = Database.from_url(cfg.DATABASE_URL, echo=cfg.DEBUG and cfg.APP_ENV == "development")
    llm = OpenAIChatClient.from_config(cfg)
    tool_client = ToolHttpClient.from_config(cfg)
    embeddings = EmbeddingGenerator.from_config(cfg)
    index = PgVectorIndex(db, embeddings)
    
    tenant_service = TenantService(db)
    tool_registry = ToolRegistry(db)
    conversation_store = ConversationStore(db)
    retrieval_service = RetrievalService(index, tenant_service, default_max_results=cfg.RAG_MAX_RESULTS)
    
    executor = StepExecutor(
        llm,
        tool_client,
        retrieval_service,
        thinking_delay=cfg.THINKING_DELAY_SECONDS,
        answer_prompt_max_chars=cfg.ANSWER_PROMPT_MAX_CHARS,
        rag_max_results=cfg.RAG_MAX_RESULTS,
        tool_timeout=cfg.TOOL_CALL_TIMEOUT_SECONDS,
    )
    
    app.state.db = db
    app.state.llm = llm
    app.state.tool_client = tool_client
    app.state.embeddings = embeddings
    app.state.tenant_service = tenant_service
    app.state.tool_registry = tool_registry
    app.state.conversation_store = conversation_store
    app.state.retrieval_service = retrieval_service
    app.state.client_service = ClientService(db)
    app.state.document_service = DocumentService(db, index)
    app.state.workflow_driver = WorkflowDriver(
        WorkflowPlanner(llm),
        executor,
        conversation_store,
        tool_registry,
        tenant_service,
    )


async def close_services(app: FastAPI) -> None:
    await app.state.tool_client.aclose()
    await app.state.llm.close()
    await app.state.embeddings.close()
    app.state.db.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info("Application starting up", extra={"app_env": config.APP_ENV})
    build_services(app, config)
    
    yield
    
    app_logger.info("Application shutting down")
    await close_services(app)


app = FastAPI(
    title="Cointext API",
    description="""
    Cointext answers crypto and DeFi questions. Each query is planned by a
    language model and executed as a workflow of thinking, knowledge base
    retrieval, parallel data tool calls and answer generation, streamed
    back as server-sent events.
    
    ## Authentication
    
    - Ask endpoints: `Authorization: Bearer <client API key>`
    - Admin endpoints: `X-Admin-Key: <admin key>`
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Ask", "description": "Streamed and synchronous answers"},
        {"name": "Clients", "description": "Manage clients, API keys and tool enablement"},
        {"name": "Tools", "description": "Manage the shared tool catalog"},
        {"name": "Knowledge Bases", "description": "Knowledge bases, document ingestion and retrieval"},
        {"name": "Conversations", "description": "Conversation history with workflow steps"},
        {"name": "Health", "description": "Health check and monitoring endpoints"},
    ],
)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestLoggingMiddleware)
setup_cors(app)

from cointext.api.routers import ask, clients, conversations, health, knowledge_bases, tools  # noqa: E402

app.include_router(ask.router)
app.include_router(clients.router)
app.include_router(tools.router)
app.include_router(knowledge_bases.router)
app.include_router(conversations.router)
app.include_router(health.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn
    
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
