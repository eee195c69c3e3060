"""Admin API router for knowledge bases, document ingestion and retrieval."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from cointext.adapters.llm_client import OpenAIChatClient
from cointext.api.dependencies import (
    get_document_service,
    get_llm_client,
    get_retrieval_service,
    get_tenant_service,
)
from cointext.api.models import (
    CreateKnowledgeBaseRequest,
    DocumentResponse,
    DocumentsListResponse,
    IngestDocumentRequest,
    IngestDocumentResponse,
    KnowledgeBaseResponse,
    RagQueryRequest,
    RagQueryResponse,
    RagRetrieveRequest,
    RagRetrieveResponse,
)
from cointext.infra.auth import require_admin
from cointext.infra.error_handler import KnowledgeBaseNotFound, RetryableError
from cointext.models.tenant import KnowledgeBaseInfo
from cointext.services.document_service import DocumentService, DuplicateDocumentError
from cointext.services.prompt_builder import RAG_QUERY_SYSTEM_PROMPT, build_rag_query_prompt
from cointext.services.retrieval_service import RetrievalResult, RetrievalService
from cointext.services.tenant_service import TenantService

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


def _kb_response(kb: KnowledgeBaseInfo) -> KnowledgeBaseResponse:
    return KnowledgeBaseResponse(
        id=kb.id,
        name=kb.name,
        type=kb.type,
        description=kb.description,
        client_id=kb.client_id,
        collection_id=kb.collection_id,
    )


@router.get("/knowledge-bases", tags=["Knowledge Bases"], response_model=List[KnowledgeBaseResponse])
async def list_knowledge_bases(
    client_id: Optional[str] = Query(default=None, description="Only general KBs plus this client's"),
    documents: DocumentService = Depends(get_document_service),
):
    return [_kb_response(kb) for kb in await documents.list_knowledge_bases(client_id)]


@router.post("/knowledge-bases", tags=["Knowledge Bases"], response_model=KnowledgeBaseResponse, status_code=201)
async def create_knowledge_base(
    request: CreateKnowledgeBaseRequest,
    documents: DocumentService = Depends(get_document_service),
):
    try:
        kb = await documents.create_knowledge_base(
            request.name,
            request.type,
            description=request.description,
            client_id=request.client_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _kb_response(kb)


@router.post(
    "/knowledge-bases/{kb_id}/documents",
    tags=["Knowledge Bases"],
    response_model=IngestDocumentResponse,
    status_code=201,
)
async def ingest_document(
    kb_id: str,
    request: IngestDocumentRequest,
    documents: DocumentService = Depends(get_document_service),
):
    """
    Store an already extracted document and index its chunks.
    
    Returns 409 when the same content was already ingested into this knowledge base.
    """
    try:
        return await documents.ingest(
            kb_id,
            request.title,
            request.content,
            request.chunks,
            filename=request.filename,
            metadata=request.metadata,
        )
    except KnowledgeBaseNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateDocumentError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": "Duplicate document", "document_id": e.document_id},
        )


@router.get(
    "/knowledge-bases/{kb_id}/documents",
    tags=["Knowledge Bases"],
    response_model=DocumentsListResponse,
)
async def list_documents(
    kb_id: str,
    processed: Optional[bool] = Query(default=None),
    search: Optional[str] = Query(default=None, description="Match on title or filename"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    documents: DocumentService = Depends(get_document_service),
):
    if await documents.get_knowledge_base(kb_id) is None:
        raise HTTPException(status_code=404, detail=f"Knowledge base {kb_id} not found")
    return await documents.list_documents(kb_id, processed=processed, search=search, limit=limit, offset=offset)


@router.get("/documents/{document_id}", tags=["Knowledge Bases"], response_model=DocumentResponse)
async def get_document(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
):
    document = await documents.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.delete("/documents/{document_id}", tags=["Knowledge Bases"], status_code=204)
async def delete_document(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
):
    """Delete a document together with its indexed chunks."""
    if not await documents.delete_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return Response(status_code=204)


async def _retrieve_for_client(
    request: RagRetrieveRequest,
    tenants: TenantService,
    retrieval: RetrievalService,
) -> RetrievalResult:
    tenant = await tenants.get_tenant(request.client_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Client not found or inactive")
    try:
        return await retrieval.retrieve(
            request.query,
            tenant,
            knowledge_base_id=request.knowledgeBaseId,
            max_results=request.maxResults,
        )
    except KnowledgeBaseNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/rag/retrieve", tags=["Knowledge Bases"], response_model=RagRetrieveResponse)
async def rag_retrieve(
    request: RagRetrieveRequest,
    tenants: TenantService = Depends(get_tenant_service),
    retrieval: RetrievalService = Depends(get_retrieval_service),
):
    """Run the retrieval used by rag_retrieving steps, on behalf of a client."""
    result = await _retrieve_for_client(request, tenants, retrieval)
    return RagRetrieveResponse(
        context=result.chunks,
        sources=result.sources,
        contextText=result.context_text,
        knowledgeBaseIds=result.knowledge_base_ids,
    )


NO_CONTEXT_ANSWER = "I couldn't find relevant information in the knowledge base to answer your question."


@router.post("/rag/query", tags=["Knowledge Bases"], response_model=RagQueryResponse)
async def rag_query(
    request: RagQueryRequest,
    tenants: TenantService = Depends(get_tenant_service),
    retrieval: RetrievalService = Depends(get_retrieval_service),
    llm: OpenAIChatClient = Depends(get_llm_client),
):
    """
    Answer a question from a client's knowledge bases only.
    
    No planning and no tools: retrieve, then generate from the retrieved chunks.
    """
    result = await _retrieve_for_client(request, tenants, retrieval)
    if not result.chunks:
        return RagQueryResponse(
            query=request.query,
            answer=NO_CONTEXT_ANSWER,
            sources=[],
            context=[],
            knowledgeBaseIds=result.knowledge_base_ids,
        )
    
    try:
        answer, usage = await llm.generate_text(
            RAG_QUERY_SYSTEM_PROMPT,
            build_rag_query_prompt(request.query, result.chunks),
        )
    except RetryableError as e:
        raise HTTPException(status_code=502, detail={"message": "Query processing failed", "error": str(e)})
    return RagQueryResponse(
        query=request.query,
        answer=answer,
        sources=result.sources,
        context=result.chunks,
        knowledgeBaseIds=result.knowledge_base_ids,
        usage=usage,
    )
