"""Tests for conversation persistence with a mocked database."""

import pytest

from cointext.services.conversation_store import ConversationStore


@pytest.fixture
def conversation_store(db):
    return ConversationStore(db)


class TestConversationStore:
    
    @pytest.mark.asyncio
    async def test_create_conversation(self, conversation_store, db):
        conversation_id = await conversation_store.create_conversation("client-1", "What is ADA?")
        
        params = db.session_mock.execute.call_args.args[1]
        assert params["id"] == conversation_id
        assert params["status"] == "processing"
    
    @pytest.mark.asyncio
    async def test_create_conversation_failure_raises(self, conversation_store, db):
        db.session_mock.execute.side_effect = RuntimeError("connection lost")
        
        with pytest.raises(RuntimeError):
            await conversation_store.create_conversation("client-1", "q")
    
    @pytest.mark.asyncio
    async def test_terminal_update_guarded_by_status(self, conversation_store, db):
        assert await conversation_store.complete_conversation("c-1", "answer", ["dex.search"], True, 120) is True
        
        sql = str(db.session_mock.execute.call_args.args[0])
        params = db.session_mock.execute.call_args.args[1]
        assert "status = :processing" in sql
        assert params["tools_used"] == '["dex.search"]'
        
        db.session_mock.execute.return_value.rowcount = 0
        assert await conversation_store.fail_conversation("c-1", "late failure", 130) is False
    
    @pytest.mark.asyncio
    async def test_write_failures_swallowed(self, conversation_store, db):
        db.session_mock.execute.side_effect = RuntimeError("connection lost")
        
        assert await conversation_store.fail_conversation("c-1", "boom", 10) is False
        assert await conversation_store.create_step("c-1", 0, "thinking", "Think", {}) is None
        await conversation_store.finish_step("step-1", {"output": "x"}, failed=False)
    
    @pytest.mark.asyncio
    async def test_finish_step_without_id_is_noop(self, conversation_store, db):
        await conversation_store.finish_step(None, {}, failed=True)
        
        db.session_mock.execute.assert_not_called()
