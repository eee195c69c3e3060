"""Tests for the HTTP API."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from cointext.api.dependencies import (
    get_client_service,
    get_database,
    get_tenant_service,
    get_workflow_driver,
)
from cointext.main import app
from cointext.streaming.sse import decode_events
from cointext.services.workflow_driver import WorkflowDriver
from cointext.services.workflow_planner import WorkflowPlanner

AUTH = {"Authorization": "Bearer ctx_live_key"}

DIRECT_PLAN = {
    "intent": "DIRECT_ANSWER",
    "confidence": 0.9,
    "reasoning": "General question",
    "reply": "DeFi means decentralized finance.",
    "workflow": {"steps": []},
}


@pytest.fixture
def tenant_service(tenant):
    service = MagicMock()
    
    async def resolve(api_key):
        return tenant if api_key == "ctx_live_key" else None
    
    service.resolve_by_api_key = AsyncMock(side_effect=resolve)
    service.get_general_knowledge_bases = AsyncMock(return_value=[])
    return service


@pytest.fixture
def driver(llm, executor, store, tools, tenant_service):
    registry = MagicMock()
    registry.get_enabled_tools = AsyncMock(return_value=tools)
    return WorkflowDriver(WorkflowPlanner(llm, max_retries=0), executor, store, registry, tenant_service)


@pytest.fixture
def client(driver, tenant_service):
    app.dependency_overrides[get_tenant_service] = lambda: tenant_service
    app.dependency_overrides[get_workflow_driver] = lambda: driver
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAskValidation:
    
    def test_missing_query(self, client):
        response = client.get("/api/ai/ask", headers=AUTH)
        
        assert response.status_code == 400
        assert response.json()["detail"] == "Query is required"
    
    def test_missing_bearer_token(self, client):
        response = client.get("/api/ai/ask", params={"query": "hi"})
        
        assert response.status_code == 401
    
    def test_malformed_authorization(self, client):
        response = client.get("/api/ai/ask", params={"query": "hi"}, headers={"Authorization": "Token abc"})
        
        assert response.status_code == 401
    
    def test_unknown_client(self, client):
        response = client.get("/api/ai/ask", params={"query": "hi"}, headers={"Authorization": "Bearer nope"})
        
        assert response.status_code == 404
        assert response.json()["detail"] == "Client not found or inactive"
    
    def test_invalid_options(self, client):
        response = client.get("/api/ai/ask", params={"query": "hi", "options": "[1, 2]"}, headers=AUTH)
        
        assert response.status_code == 400
        assert response.json()["detail"].startswith("Invalid options")
    
    def test_conversation_create_failure(self, client, store):
        store.create_conversation = AsyncMock(side_effect=RuntimeError("db down"))
        
        response = client.get("/api/ai/ask", params={"query": "hi"}, headers=AUTH)
        
        assert response.status_code == 500


class TestAskStream:
    
    def test_direct_answer_stream(self, client, llm, store):
        llm.generate_json.return_value = DIRECT_PLAN
        
        response = client.get("/api/ai/ask", params={"query": "What is DeFi?"}, headers=AUTH)
        
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        decoded = decode_events([response.text])
        assert [name for name, _ in decoded] == ["workflow_plan", "step_start", "step_complete", "done"]
        assert decoded[2][1]["result"]["output"] == "DeFi means decentralized finance."
        conversation_id = decoded[-1][1]["conversationId"]
        assert store.conversations[conversation_id]["status"] == "completed"
    
    def test_options_select_knowledge_base(self, client, llm, retrieval):
        llm.generate_json.return_value = {
            "intent": "TOOL_ENHANCED",
            "confidence": 0.8,
            "workflow": {"steps": [{"type": "rag_retrieving", "name": "Search"}]},
        }
        
        response = client.get(
            "/api/ai/ask",
            params={"query": "What is ADA?", "options": '{"knowledgeBaseId": "kb-7"}'},
            headers=AUTH,
        )
        
        decoded = decode_events([response.text])
        assert decoded[-1][0] == "done"
        assert retrieval.retrieve.call_args.kwargs["knowledge_base_id"] == "kb-7"
    
    def test_failure_reported_in_stream(self, client, llm):
        llm.generate_json.return_value = {
            "intent": "TOOL_ENHANCED",
            "confidence": 0.8,
            "workflow": {"steps": [{"type": "thinking", "name": "Think"}]},
        }
        llm.generate_text.side_effect = RuntimeError("model offline")
        
        response = client.get("/api/ai/ask", params={"query": "What is ADA?"}, headers=AUTH)
        
        assert response.status_code == 200
        decoded = decode_events([response.text])
        assert decoded[-1] == ("error", {
            "message": "Failed to generate final answer",
            "details": "Answer generation failed: model offline",
        })


class TestAskSync:
    
    def test_success(self, client, llm):
        llm.generate_json.return_value = DIRECT_PLAN
        
        response = client.get("/api/ai/ask_sync", params={"query": "What is DeFi?"}, headers=AUTH)
        
        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "DeFi means decentralized finance."
        assert body["intent"] == "DIRECT_ANSWER"
        assert body["conversationId"]
    
    def test_failure_returns_500_with_conversation(self, client, llm, store):
        llm.generate_json.return_value = {
            "intent": "TOOL_ENHANCED",
            "confidence": 0.8,
            "workflow": {"steps": [{"type": "thinking", "name": "Think"}]},
        }
        llm.generate_text.side_effect = RuntimeError("model offline")
        
        response = client.get("/api/ai/ask_sync", params={"query": "What is ADA?"}, headers=AUTH)
        
        assert response.status_code == 500
        body = response.json()
        assert "model offline" in body["error"]
        assert store.conversations[body["conversationId"]]["status"] == "error"


class TestAdminAndHealth:
    
    @pytest.fixture
    def admin_client(self):
        clients = MagicMock()
        clients.list_clients = AsyncMock(return_value=[{"id": "client-1", "name": "Test Client"}])
        app.dependency_overrides[get_client_service] = lambda: clients
        yield TestClient(app)
        app.dependency_overrides.clear()
    
    def test_admin_key_required(self, admin_client):
        assert admin_client.get("/api/admin/clients").status_code == 401
        assert admin_client.get("/api/admin/clients", headers={"X-Admin-Key": "wrong"}).status_code == 401
    
    def test_admin_key_accepted(self, admin_client):
        response = admin_client.get("/api/admin/clients", headers={"X-Admin-Key": "test-admin-key"})
        
        assert response.status_code == 200
        assert response.json()[0]["name"] == "Test Client"
    
    def test_health(self):
        response = TestClient(app).get("/health")
        
        assert response.json()["status"] == "ok"
    
    def test_ready_reports_database_failure(self):
        db = MagicMock()
        db.session.side_effect = RuntimeError("no database")
        app.dependency_overrides[get_database] = lambda: db
        try:
            response = TestClient(app).get("/health/ready")
        finally:
            app.dependency_overrides.clear()
        
        assert response.status_code == 503
