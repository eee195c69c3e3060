"""API request/response models."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ============================================================================
# Ask Models
# ============================================================================

class AskOptions(BaseModel):
    """Options passed as a JSON string in the `options` query parameter."""
    knowledgeBaseId: Optional[str] = Field(default=None, description="Knowledge base to search")

    model_config = {"extra": "ignore"}


class AskSyncResponse(BaseModel):
    """Non-streaming answer."""
    answer: str
    conversationId: str
    intent: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: str = ""
    workflow: Dict[str, Any] = Field(default_factory=dict)
    toolsUsed: List[str] = Field(default_factory=list)
    ragUsed: bool = False
    latencyMs: int = 0
    sources: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# Client Models
# ============================================================================

class CreateClientRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    instructions: str = Field(default="", description="Custom instructions injected into every prompt")


class UpdateClientRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    instructions: Optional[str] = None
    is_active: Optional[bool] = None


class ClientResponse(BaseModel):
    id: str
    name: str
    instructions: str = ""
    api_key_prefix: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClientWithKeyResponse(ClientResponse):
    """Returned once on creation or key rotation; the key is never stored in clear."""
    api_key: str


class RotateKeyResponse(BaseModel):
    client_id: str
    api_key: str


# ============================================================================
# Tool Models
# ============================================================================

class CreateToolRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, example="dex.search")
    display_name: Optional[str] = None
    description: str = ""
    category: str = Field(..., example="dex")
    method: str = Field(default="GET", pattern="^(GET|POST|PUT|PATCH|DELETE|get|post|put|patch|delete)$")
    endpoint: str = Field(..., example="https://api.dexscreener.com/latest/dex/search")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    is_external: bool = True
    is_active: bool = True


class UpdateToolRequest(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    method: Optional[str] = Field(default=None, pattern="^(GET|POST|PUT|PATCH|DELETE|get|post|put|patch|delete)$")
    endpoint: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    is_external: Optional[bool] = None
    is_active: Optional[bool] = None


class ToolResponse(BaseModel):
    id: Optional[str] = None
    name: str
    display_name: Optional[str] = None
    description: str = ""
    category: str
    method: str
    endpoint: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    is_external: bool
    is_active: bool


class SetClientToolRequest(BaseModel):
    is_enabled: bool = True


class ClientToolResponse(BaseModel):
    tool: ToolResponse
    is_enabled: bool


# ============================================================================
# Knowledge Base Models
# ============================================================================

class CreateKnowledgeBaseRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: str = Field(..., pattern="^(general|client)$")
    description: str = ""
    client_id: Optional[str] = None


class KnowledgeBaseResponse(BaseModel):
    id: str
    name: str
    type: str
    description: str = ""
    client_id: Optional[str] = None
    collection_id: str


class IngestDocumentRequest(BaseModel):
    """Already extracted text plus its chunks."""
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    chunks: List[str] = Field(..., min_length=1)
    filename: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IngestDocumentResponse(BaseModel):
    document_id: str
    knowledge_base_id: str
    collection_id: str
    content_hash: str
    chunks_indexed: int
    processed: bool


class RagRetrieveRequest(BaseModel):
    query: str = Field(..., min_length=1)
    client_id: str
    knowledgeBaseId: Optional[str] = None
    maxResults: int = Field(default=5, ge=1, le=20)


class RagRetrieveResponse(BaseModel):
    context: List[Dict[str, Any]]
    sources: List[Dict[str, Any]]
    contextText: str
    knowledgeBaseIds: List[str]


class RagQueryRequest(RagRetrieveRequest):
    """Retrieve, then answer from the retrieved chunks."""


class RagQueryResponse(BaseModel):
    query: str
    answer: str
    sources: List[Dict[str, Any]]
    context: List[Dict[str, Any]]
    knowledgeBaseIds: List[str]
    usage: Dict[str, Any] = Field(default_factory=dict)


class DocumentResponse(BaseModel):
    id: str
    knowledge_base_id: str
    title: str
    filename: Optional[str] = None
    content_hash: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    collection_id: Optional[str] = None
    processed: bool
    created_at: Optional[str] = None


class DocumentsListResponse(BaseModel):
    documents: List[DocumentResponse]
    total: int
    limit: int
    offset: int


# ============================================================================
# Conversation Models
# ============================================================================

class WorkflowStepResponse(BaseModel):
    id: str
    step_order: int
    step_type: str
    step_name: Optional[str] = None
    input: Any = None
    output: Any = None
    status: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ConversationResponse(BaseModel):
    id: str
    client_id: str
    query: str
    intent: Optional[str] = None
    plan: Any = None
    response: Optional[str] = None
    tools_used: List[str] = Field(default_factory=list)
    rag_used: bool = False
    status: str
    error: Optional[str] = None
    latency_ms: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ConversationDetailResponse(ConversationResponse):
    steps: List[WorkflowStepResponse] = Field(default_factory=list)


class ConversationsListResponse(BaseModel):
    conversations: List[ConversationResponse]
    limit: int
    offset: int
