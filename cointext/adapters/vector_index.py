"""pgvector-backed vector index."""

import asyncio
import json
import uuid
from typing import Any, Dict, List

from sqlalchemy import text

from cointext.infra.database import Database
from cointext.infra.embeddings import EmbeddingGenerator, to_pgvector_literal

MAX_TOP_K = 20


class PgVectorIndex:
    """
    Vector similarity search over the rag_chunks table.
    
    A collection is a named set of chunks (one per knowledge base).
    """
    
    def __init__(self, db: Database, embeddings: EmbeddingGenerator):
        self.db = db
        self.embeddings = embeddings
    
    async def search(self, collection_id: str, query_text: str, top_k: int = 5) -> List[Dict[str, Any]]:
        """
        Search a collection by semantic similarity.
        
        Returns:
            List of {content, metadata, distance}, most similar first
        """
        if not query_text:
            return []
        top_k = max(1, min(top_k, MAX_TOP_K))
        
        query_embedding = await self.embeddings.generate_embedding(query_text)
        embedding_str = to_pgvector_literal(query_embedding)
        
        rows = await asyncio.to_thread(self._search_rows, collection_id, embedding_str, top_k)
        results = [
            {
                "content": row.content,
                "metadata": row.metadata or {},
                "distance": float(row.distance),
            }
            for row in rows
        ]
        results.sort(key=lambda r: r["distance"])
        return results
    
    def _search_rows(self, collection_id: str, embedding_str: str, top_k: int):
        with self.db.session() as session:
            return session.execute(
                text("""
                    SELECT content, metadata,
                           embedding <=> CAST(:query_embedding AS vector) AS distance
                    FROM rag_chunks
                    WHERE collection_id = :collection_id
                    ORDER BY embedding <=> CAST(:query_embedding AS vector)
                    LIMIT :limit
                """),
                {
                    "collection_id": collection_id,
                    "query_embedding": embedding_str,
                    "limit": top_k,
                }
            ).fetchall()
    
    async def add_documents(self, collection_id: str, documents: List[Dict[str, Any]]) -> int:
        """
        Embed and store chunks.
        
        Args:
            collection_id: Target collection
            documents: List of {content, metadata, document_id}
        
        Returns:
            Number of chunks stored
        """
        if not documents:
            return 0
        embeddings = await self.embeddings.generate_embeddings_batch([d["content"] for d in documents])
        rows = [
            {
                "id": str(uuid.uuid4()),
                "collection_id": collection_id,
                "document_id": doc.get("document_id"),
                "content": doc["content"],
                "metadata": json.dumps(doc.get("metadata") or {}),
                "embedding": to_pgvector_literal(embedding),
            }
            for doc, embedding in zip(documents, embeddings)
        ]
        await asyncio.to_thread(self._insert_rows, rows)
        return len(rows)
    
    def _insert_rows(self, rows: List[Dict[str, Any]]) -> None:
        with self.db.session() as session:
            session.execute(
                text("""
                    INSERT INTO rag_chunks (id, collection_id, document_id, content, metadata, embedding)
                    VALUES (:id, :collection_id, :document_id, :content,
                            CAST(:metadata AS jsonb), CAST(:embedding AS vector))
                """),
                rows,
            )
    
    async def delete_document(self, collection_id: str, document_id: str) -> int:
        """Remove every chunk of a document. Returns the number of chunks removed."""
        def _delete():
            with self.db.session() as session:
                result = session.execute(
                    text("""
                        DELETE FROM rag_chunks
                        WHERE collection_id = :collection_id AND document_id = :document_id
                    """),
                    {"collection_id": collection_id, "document_id": document_id}
                )
                return result.rowcount or 0
        return await asyncio.to_thread(_delete)
