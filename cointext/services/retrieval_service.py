"""Knowledge base retrieval used by rag_retrieving steps and the admin API."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cointext.adapters.vector_index import PgVectorIndex
from cointext.infra.error_handler import KnowledgeBaseNotFound
from cointext.models.tenant import KnowledgeBaseInfo, TenantContext
from cointext.services.tenant_service import TenantService

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    chunks: List[Dict[str, Any]] = field(default_factory=list)
    sources: List[Dict[str, Any]] = field(default_factory=list)
    context_text: str = ""
    knowledge_base_ids: List[str] = field(default_factory=list)


def format_source(chunk: Dict[str, Any]) -> Dict[str, Any]:
    """Citation shown to the user for one retrieved chunk."""
    metadata = chunk.get("metadata") or {}
    distance = chunk.get("distance")
    return {
        "filename": metadata.get("filename") or metadata.get("source") or "",
        "title": metadata.get("title") or metadata.get("filename") or "",
        "content": chunk.get("content", ""),
        "metadata": metadata,
        "score": round(1.0 - distance, 4) if distance is not None else None,
    }


class RetrievalService:
    """Searches a client's knowledge bases, falling back to the shared ones."""
    
    def __init__(self, index: PgVectorIndex, tenants: TenantService, default_max_results: int = 5):
        self.index = index
        self.tenants = tenants
        self.default_max_results = default_max_results
    
    async def resolve_knowledge_bases(
        self,
        tenant: TenantContext,
        knowledge_base_id: Optional[str] = None,
    ) -> List[KnowledgeBaseInfo]:
        if knowledge_base_id:
            for kb in tenant.knowledge_bases:
                if kb.id == knowledge_base_id:
                    return [kb]
            kb = await self.tenants.get_knowledge_base(knowledge_base_id)
            if kb is None or (kb.type != "general" and kb.client_id != tenant.client_id):
                raise KnowledgeBaseNotFound(f"Knowledge base {knowledge_base_id} not found")
            return [kb]
        if tenant.knowledge_bases:
            return list(tenant.knowledge_bases)
        return await self.tenants.get_general_knowledge_bases()
    
    async def retrieve(
        self,
        query: str,
        tenant: TenantContext,
        knowledge_base_id: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> RetrievalResult:
        """
        Search the selected knowledge bases and merge the hits.
        
        A knowledge base whose search fails is logged and skipped.
        """
        max_results = max_results or self.default_max_results
        knowledge_bases = await self.resolve_knowledge_bases(tenant, knowledge_base_id)
        
        chunks: List[Dict[str, Any]] = []
        for kb in knowledge_bases:
            try:
                hits = await self.index.search(kb.collection_id, query, max_results)
            except Exception as e:
                logger.warning(
                    f"Knowledge base search failed for {kb.id}: {e}",
                    extra={"knowledge_base_id": kb.id},
                )
                continue
            for hit in hits:
                hit = dict(hit)
                hit["knowledge_base_id"] = kb.id
                chunks.append(hit)
        
        chunks.sort(key=lambda c: c.get("distance", 1.0))
        chunks = chunks[:max_results]
        
        return RetrievalResult(
            chunks=chunks,
            sources=[format_source(chunk) for chunk in chunks],
            context_text="\n\n".join(chunk["content"] for chunk in chunks if chunk.get("content")),
            knowledge_base_ids=[kb.id for kb in knowledge_bases],
        )
