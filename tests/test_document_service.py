"""Tests for document ingestion."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from cointext.infra.error_handler import KnowledgeBaseNotFound
from cointext.models.tenant import KnowledgeBaseInfo
from cointext.services.document_service import DocumentService, DuplicateDocumentError, content_hash


@pytest.fixture
def index():
    index = MagicMock()
    index.add_documents = AsyncMock(side_effect=lambda collection_id, documents: len(documents))
    index.delete_document = AsyncMock(return_value=2)
    return index


@pytest.fixture
def documents(db, index):
    db.session_mock.execute.return_value.fetchone.return_value = None
    service = DocumentService(db, index)
    service.get_knowledge_base = AsyncMock(return_value=KnowledgeBaseInfo(
        id="kb-1", name="Docs", type="client", client_id="client-1",
    ))
    return service


class TestIngest:
    
    @pytest.mark.asyncio
    async def test_indexes_non_empty_chunks(self, documents, index):
        result = await documents.ingest("kb-1", "Cardano", "ADA is the Cardano token.", ["ADA is", "  ", "the token"])
        
        assert result["chunks_indexed"] == 2
        assert result["processed"] is True
        assert result["content_hash"] == content_hash("ADA is the Cardano token.")
        collection_id, indexed = index.add_documents.call_args.args
        assert collection_id == "kb_kb-1_client"
        assert [d["metadata"]["chunk_index"] for d in indexed] == [0, 1]
        assert indexed[0]["metadata"]["title"] == "Cardano"
    
    @pytest.mark.asyncio
    async def test_duplicate_content_rejected(self, documents, db, index):
        db.session_mock.execute.return_value.fetchone.return_value = MagicMock(id="doc-9")
        
        with pytest.raises(DuplicateDocumentError):
            await documents.ingest("kb-1", "Cardano", "same text", ["same text"])
        
        index.add_documents.assert_not_awaited()
    
    @pytest.mark.asyncio
    async def test_unknown_knowledge_base(self, documents):
        documents.get_knowledge_base.return_value = None
        
        with pytest.raises(KnowledgeBaseNotFound):
            await documents.ingest("kb-404", "t", "c", ["c"])
    
    @pytest.mark.asyncio
    async def test_indexing_failure_removes_document(self, documents, db, index):
        index.add_documents.side_effect = RuntimeError("embedding service down")
        
        with pytest.raises(RuntimeError):
            await documents.ingest("kb-1", "Cardano", "ADA is the Cardano token.", ["ADA"])
        
        statements = [str(c.args[0]) for c in db.session_mock.execute.call_args_list]
        assert any("DELETE FROM documents" in s for s in statements)
        assert not any("UPDATE documents SET processed" in s for s in statements)
        document_id = db.session_mock.execute.call_args.args[1]["id"]
        index.delete_document.assert_awaited_once_with("kb_kb-1_client", document_id)


def document_row(**overrides):
    values = dict(
        id="doc-1",
        knowledge_base_id="kb-1",
        title="Cardano",
        filename="cardano.md",
        content_hash="abc",
        metadata=None,
        collection_id="kb_kb-1_client",
        processed=True,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestDocumentAdmin:
    
    @pytest.mark.asyncio
    async def test_list_documents_filters_and_pages(self, documents, db):
        db.session_mock.execute.return_value.scalar.return_value = 7
        db.session_mock.execute.return_value.fetchall.return_value = [document_row()]
        
        page = await documents.list_documents("kb-1", processed=True, search="card", limit=1, offset=2)
        
        assert page["total"] == 7
        assert page["documents"][0]["id"] == "doc-1"
        assert page["documents"][0]["metadata"] == {}
        assert page["documents"][0]["created_at"] == "2024-05-01T00:00:00+00:00"
        statement, params = db.session_mock.execute.call_args.args
        assert "ORDER BY created_at DESC" in str(statement)
        assert params == {"kb_id": "kb-1", "processed": True, "search": "%card%", "limit": 1, "offset": 2}
    
    @pytest.mark.asyncio
    async def test_get_missing_document(self, documents):
        assert await documents.get_document("doc-404") is None
    
    @pytest.mark.asyncio
    async def test_delete_removes_chunks_then_row(self, documents, db, index):
        db.session_mock.execute.return_value.fetchone.return_value = document_row()
        
        assert await documents.delete_document("doc-1") is True
        
        index.delete_document.assert_awaited_once_with("kb_kb-1_client", "doc-1")
        statement, params = db.session_mock.execute.call_args.args
        assert "DELETE FROM documents" in str(statement)
        assert params == {"id": "doc-1"}
    
    @pytest.mark.asyncio
    async def test_delete_missing_document(self, documents, index):
        assert await documents.delete_document("doc-404") is False
        index.delete_document.assert_not_awaited()


def test_content_hash_is_md5():
    assert content_hash("hello") == "5d41402abc4b2a76b9719d0b1dbd4117"
