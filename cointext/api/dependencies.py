"""FastAPI dependencies resolving the service handles built in the lifespan."""

from fastapi import Request

from cointext.adapters.llm_client import OpenAIChatClient
from cointext.infra.database import Database
from cointext.services.client_service import ClientService
from cointext.services.conversation_store import ConversationStore
from cointext.services.document_service import DocumentService
from cointext.services.retrieval_service import RetrievalService
from cointext.services.tenant_service import TenantService
from cointext.services.tool_registry import ToolRegistry
from cointext.services.workflow_driver import WorkflowDriver


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_tenant_service(request: Request) -> TenantService:
    return request.app.state.tenant_service


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def get_client_service(request: Request) -> ClientService:
    return request.app.state.client_service


def get_conversation_store(request: Request) -> ConversationStore:
    return request.app.state.conversation_store


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_llm_client(request: Request) -> OpenAIChatClient:
    return request.app.state.llm


def get_retrieval_service(request: Request) -> RetrievalService:
    return request.app.state.retrieval_service


def get_workflow_driver(request: Request) -> WorkflowDriver:
    return request.app.state.workflow_driver
