"""Knowledge base administration and document ingestion."""

import asyncio
import hashlib
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from cointext.adapters.vector_index import PgVectorIndex
from cointext.infra.database import Database
from cointext.infra.error_handler import KnowledgeBaseNotFound
from cointext.models.tenant import KnowledgeBaseInfo
from cointext.services.tenant_service import _kb_from_row

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_TYPES = ("general", "client")


class DuplicateDocumentError(ValueError):
    """A document with the same content already exists in the knowledge base."""
    
    def __init__(self, knowledge_base_id: str, document_id: str):
        self.knowledge_base_id = knowledge_base_id
        self.document_id = document_id
        super().__init__(f"Document already exists in knowledge base {knowledge_base_id}: {document_id}")


def content_hash(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()


DOCUMENT_COLUMNS = (
    "id, knowledge_base_id, title, filename, content_hash, metadata, collection_id, processed, created_at"
)


def _document_from_row(row) -> Dict[str, Any]:
    created_at = row.created_at
    return {
        "id": str(row.id),
        "knowledge_base_id": str(row.knowledge_base_id),
        "title": row.title,
        "filename": row.filename,
        "content_hash": row.content_hash,
        "metadata": row.metadata or {},
        "collection_id": row.collection_id,
        "processed": bool(row.processed),
        "created_at": created_at.isoformat() if hasattr(created_at, "isoformat") else created_at,
    }


class DocumentService:
    """
    Knowledge bases and their documents.
    
    Text extraction and chunking happen upstream: callers hand in the
    extracted text and its chunks, this service stores and indexes them.
    """
    
    def __init__(self, db: Database, index: PgVectorIndex):
        self.db = db
        self.index = index
    
    async def list_knowledge_bases(self, client_id: Optional[str] = None) -> List[KnowledgeBaseInfo]:
        def _load():
            query = "SELECT id, name, type, description, client_id FROM knowledge_bases WHERE is_active = TRUE"
            params: Dict[str, Any] = {}
            if client_id:
                query += " AND (client_id = :client_id OR type = 'general')"
                params["client_id"] = client_id
            query += " ORDER BY created_at"
            with self.db.session() as session:
                return [_kb_from_row(row) for row in session.execute(text(query), params).fetchall()]
        return await asyncio.to_thread(_load)
    
    async def create_knowledge_base(
        self,
        name: str,
        kb_type: str,
        description: str = "",
        client_id: Optional[str] = None,
    ) -> KnowledgeBaseInfo:
        if kb_type not in KNOWLEDGE_BASE_TYPES:
            raise ValueError(f"Invalid knowledge base type: {kb_type}")
        if kb_type == "client" and not client_id:
            raise ValueError("client_id is required for client knowledge bases")
        if kb_type == "general":
            client_id = None
        
        kb = KnowledgeBaseInfo(
            id=str(uuid.uuid4()),
            name=name,
            type=kb_type,
            description=description,
            client_id=client_id,
        )
        
        def _insert():
            with self.db.session() as session:
                session.execute(
                    text("""
                        INSERT INTO knowledge_bases (id, name, type, description, client_id, is_active, created_at)
                        VALUES (:id, :name, :type, :description, :client_id, TRUE, now())
                    """),
                    {
                        "id": kb.id,
                        "name": kb.name,
                        "type": kb.type,
                        "description": kb.description,
                        "client_id": kb.client_id,
                    }
                )
        
        await asyncio.to_thread(_insert)
        logger.info(f"Created knowledge base {kb.id}", extra={"knowledge_base_id": kb.id})
        return kb
    
    async def get_knowledge_base(self, knowledge_base_id: str) -> Optional[KnowledgeBaseInfo]:
        def _load():
            with self.db.session() as session:
                row = session.execute(
                    text("SELECT id, name, type, description, client_id FROM knowledge_bases WHERE id = :id"),
                    {"id": knowledge_base_id}
                ).fetchone()
                return _kb_from_row(row) if row else None
        return await asyncio.to_thread(_load)
    
    async def ingest(
        self,
        knowledge_base_id: str,
        title: str,
        content: str,
        chunks: List[str],
        filename: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Store a document and index its chunks.
        
        Raises:
            KnowledgeBaseNotFound: unknown knowledge base
            DuplicateDocumentError: same content already stored in this knowledge base
        """
        kb = await self.get_knowledge_base(knowledge_base_id)
        if kb is None:
            raise KnowledgeBaseNotFound(f"Knowledge base {knowledge_base_id} not found")
        
        digest = content_hash(content)
        document_id = str(uuid.uuid4())
        
        def _insert():
            with self.db.session() as session:
                existing = session.execute(
                    text("""
                        SELECT id FROM documents
                        WHERE knowledge_base_id = :kb_id AND content_hash = :hash
                    """),
                    {"kb_id": kb.id, "hash": digest}
                ).fetchone()
                if existing:
                    raise DuplicateDocumentError(kb.id, str(existing.id))
                session.execute(
                    text("""
                        INSERT INTO documents (
                            id, knowledge_base_id, title, filename, content, content_hash,
                            metadata, collection_id, processed, created_at
                        ) VALUES (
                            :id, :kb_id, :title, :filename, :content, :hash,
                            CAST(:metadata AS jsonb), :collection_id, FALSE, now()
                        )
                    """),
                    {
                        "id": document_id,
                        "kb_id": kb.id,
                        "title": title,
                        "filename": filename,
                        "content": content,
                        "hash": digest,
                        "metadata": json.dumps(metadata or {}),
                        "collection_id": kb.collection_id,
                    }
                )
        
        await asyncio.to_thread(_insert)
        
        chunk_metadata = dict(metadata or {})
        chunk_metadata.update({"title": title, "filename": filename or title, "document_id": document_id})
        documents = [
            {
                "content": chunk,
                "document_id": document_id,
                "metadata": {**chunk_metadata, "chunk_index": i},
            }
            for i, chunk in enumerate(c for c in chunks if c and c.strip())
        ]
        try:
            indexed = await self.index.add_documents(kb.collection_id, documents)
        except Exception:
            logger.error(
                f"Indexing failed for document {document_id}, removing it",
                extra={"knowledge_base_id": kb.id, "document_id": document_id},
            )
            await self._remove(kb.collection_id, document_id)
            raise
        
        def _mark_processed():
            with self.db.session() as session:
                session.execute(
                    text("UPDATE documents SET processed = TRUE WHERE id = :id"),
                    {"id": document_id}
                )
        
        await asyncio.to_thread(_mark_processed)
        logger.info(
            f"Ingested document {document_id} with {indexed} chunks",
            extra={"knowledge_base_id": kb.id, "document_id": document_id},
        )
        return {
            "document_id": document_id,
            "knowledge_base_id": kb.id,
            "collection_id": kb.collection_id,
            "content_hash": digest,
            "chunks_indexed": indexed,
            "processed": True,
        }
    
    async def list_documents(
        self,
        knowledge_base_id: str,
        processed: Optional[bool] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Documents of a knowledge base, newest first, with the total count."""
        where = "knowledge_base_id = :kb_id"
        params: Dict[str, Any] = {"kb_id": knowledge_base_id}
        if processed is not None:
            where += " AND processed = :processed"
            params["processed"] = processed
        if search:
            where += " AND (title ILIKE :search OR filename ILIKE :search)"
            params["search"] = f"%{search}%"
        
        def _load():
            with self.db.session() as session:
                total = session.execute(
                    text(f"SELECT COUNT(*) FROM documents WHERE {where}"), params
                ).scalar() or 0
                rows = session.execute(
                    text(f"""
                        SELECT {DOCUMENT_COLUMNS} FROM documents
                        WHERE {where}
                        ORDER BY created_at DESC
                        LIMIT :limit OFFSET :offset
                    """),
                    {**params, "limit": limit, "offset": offset}
                ).fetchall()
                return [_document_from_row(row) for row in rows], int(total)
        
        documents, total = await asyncio.to_thread(_load)
        return {"documents": documents, "total": total, "limit": limit, "offset": offset}
    
    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        def _load():
            with self.db.session() as session:
                row = session.execute(
                    text(f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = :id"),
                    {"id": document_id}
                ).fetchone()
                return _document_from_row(row) if row else None
        return await asyncio.to_thread(_load)
    
    async def delete_document(self, document_id: str) -> bool:
        """
        Delete a document and its indexed chunks.
        
        Returns False when the document does not exist.
        """
        document = await self.get_document(document_id)
        if document is None:
            return False
        removed = await self._remove(document["collection_id"], document_id)
        logger.info(
            f"Deleted document {document_id} and {removed} chunks",
            extra={"knowledge_base_id": document["knowledge_base_id"], "document_id": document_id},
        )
        return True
    
    async def _remove(self, collection_id: Optional[str], document_id: str) -> int:
        """Drop the chunks of a document, then its row."""
        removed = 0
        if collection_id:
            removed = await self.index.delete_document(collection_id, document_id)
        
        def _delete():
            with self.db.session() as session:
                session.execute(text("DELETE FROM documents WHERE id = :id"), {"id": document_id})
        
        await asyncio.to_thread(_delete)
        return removed
