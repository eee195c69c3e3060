"""Admin API router for conversation history."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from cointext.api.dependencies import get_conversation_store
from cointext.api.models import ConversationDetailResponse, ConversationsListResponse
from cointext.infra.auth import require_admin
from cointext.models.conversation import ConversationStatus
from cointext.services.conversation_store import ConversationStore

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


@router.get("/conversations", tags=["Conversations"], response_model=ConversationsListResponse)
async def list_conversations(
    client_id: Optional[str] = Query(default=None),
    status: Optional[ConversationStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    store: ConversationStore = Depends(get_conversation_store),
):
    """List conversations, newest first."""
    conversations = await store.list_conversations(
        client_id=client_id,
        status=status.value if status else None,
        limit=limit,
        offset=offset,
    )
    return ConversationsListResponse(conversations=conversations, limit=limit, offset=offset)


@router.get("/conversations/{conversation_id}", tags=["Conversations"], response_model=ConversationDetailResponse)
async def get_conversation(
    conversation_id: str,
    store: ConversationStore = Depends(get_conversation_store),
):
    """Conversation with its workflow steps in execution order."""
    conversation = await store.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation
