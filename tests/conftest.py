"""Pytest configuration and fixtures."""

import os
from contextlib import contextmanager
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before the application config is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from cointext.models.tenant import KnowledgeBaseInfo, TenantContext
from cointext.models.tool import ToolDefinition
from cointext.services.retrieval_service import RetrievalResult
from cointext.services.step_executor import StepExecutor


class FakeDatabase:
    """Database stand-in handing out one mock session."""
    
    def __init__(self):
        self.session_mock = MagicMock()
        self.session_mock.execute.return_value.rowcount = 1
    
    @contextmanager
    def session(self):
        yield self.session_mock


class InMemoryConversationStore:
    """ConversationStore stand-in keeping everything in dicts."""
    
    def __init__(self):
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.steps: List[Dict[str, Any]] = []
        self.terminal_transitions = 0
        self._counter = 0
    
    async def create_conversation(self, client_id: str, query: str) -> str:
        self._counter += 1
        conversation_id = f"conv-{self._counter}"
        self.conversations[conversation_id] = {
            "client_id": client_id,
            "query": query,
            "status": "processing",
        }
        return conversation_id
    
    async def record_plan(self, conversation_id, plan) -> None:
        self.conversations[conversation_id]["intent"] = plan.intent.value
        self.conversations[conversation_id]["plan"] = plan.to_payload()
    
    async def complete_conversation(self, conversation_id, response, tools_used, rag_used, latency_ms) -> bool:
        conversation = self.conversations[conversation_id]
        if conversation["status"] != "processing":
            return False
        self.terminal_transitions += 1
        conversation.update(
            status="completed",
            response=response,
            tools_used=list(tools_used),
            rag_used=rag_used,
            latency_ms=latency_ms,
        )
        return True
    
    async def fail_conversation(self, conversation_id, error, latency_ms) -> bool:
        conversation = self.conversations[conversation_id]
        if conversation["status"] != "processing":
            return False
        self.terminal_transitions += 1
        conversation.update(status="error", error=error, latency_ms=latency_ms)
        return True
    
    async def create_step(self, conversation_id, step_order, step_type, step_name, step_input) -> Optional[str]:
        assert self.conversations[conversation_id]["status"] == "processing"
        step_id = f"step-{len(self.steps) + 1}"
        self.steps.append({
            "id": step_id,
            "conversation_id": conversation_id,
            "step_order": step_order,
            "step_type": step_type,
            "step_name": step_name,
            "input": step_input,
            "status": "running",
        })
        return step_id
    
    async def finish_step(self, step_id, output, failed) -> None:
        for step in self.steps:
            if step["id"] == step_id:
                assert step["status"] == "running"
                step["status"] = "error" if failed else "completed"
                step["output"] = output


@pytest.fixture
def tenant():
    return TenantContext(
        client_id="client-1",
        name="Test Client",
        instructions="Be concise.",
        knowledge_bases=[
            KnowledgeBaseInfo(id="kb-1", name="Docs", type="client", description="Project docs", client_id="client-1"),
        ],
    )


@pytest.fixture
def tools():
    return [
        ToolDefinition(
            id="tool-1",
            name="dex.search",
            description="Search DEX pairs",
            category="dex",
            endpoint="https://api.dexscreener.com/latest/dex/search",
            parameters={"q": "string"},
        ),
        ToolDefinition(
            id="tool-2",
            name="nansen.smart.holdings",
            description="Smart money holdings",
            category="nansen",
            method="POST",
            endpoint="https://api.nansen.ai/api/v1/smart-money/holdings",
            parameters={"chains": "array"},
        ),
    ]


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def llm():
    client = MagicMock()
    client.generate_json = AsyncMock()
    client.generate_text = AsyncMock(return_value=("Final answer", {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}))
    return client


@pytest.fixture
def tool_client():
    client = MagicMock()
    client.call = AsyncMock()
    return client


@pytest.fixture
def retrieval():
    service = MagicMock()
    service.retrieve = AsyncMock(return_value=RetrievalResult(
        chunks=[{"content": "ADA is the Cardano token.", "metadata": {"title": "Cardano"}, "distance": 0.1}],
        sources=[{"filename": "", "title": "Cardano", "content": "ADA is the Cardano token.", "metadata": {}, "score": 0.9}],
        context_text="ADA is the Cardano token.",
        knowledge_base_ids=["kb-1"],
    ))
    return service


@pytest.fixture
def executor(llm, tool_client, retrieval):
    return StepExecutor(llm, tool_client, retrieval, thinking_delay=0, tool_timeout=2.0)
