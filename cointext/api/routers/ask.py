"""Ask API router: streamed and synchronous answers."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from cointext.api.dependencies import get_tenant_service, get_workflow_driver
from cointext.api.models import AskOptions, AskSyncResponse
from cointext.infra.auth import extract_bearer_token
from cointext.infra.validation import sanitize_query
from cointext.models.tenant import TenantContext
from cointext.services.tenant_service import TenantService
from cointext.services.workflow_driver import WorkflowDriver
from cointext.streaming.sse import SSE_HEADERS, SSE_MEDIA_TYPE, encode_workflow_event

logger = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class AskRequest:
    tenant: TenantContext
    query: str
    options: AskOptions


def parse_options(options: Optional[str]) -> AskOptions:
    if not options:
        return AskOptions()
    try:
        return AskOptions(**json.loads(options))
    except (ValueError, TypeError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid options: must be a JSON object")


async def resolve_ask_request(
    query: Optional[str] = Query(default=None, description="User question"),
    options: Optional[str] = Query(default=None, description='JSON options, e.g. {"knowledgeBaseId": "..."}'),
    authorization: Optional[str] = Header(default=None),
    tenants: TenantService = Depends(get_tenant_service),
) -> AskRequest:
    """Everything that can fail before the stream starts."""
    try:
        clean_query = sanitize_query(query)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    
    parsed_options = parse_options(options)
    
    api_key = extract_bearer_token(authorization)
    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Authorization header with Bearer token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    tenant = await tenants.resolve_by_api_key(api_key)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Client not found or inactive")
    
    return AskRequest(tenant=tenant, query=clean_query, options=parsed_options)


async def start_conversation(driver: WorkflowDriver, request: AskRequest) -> str:
    try:
        return await driver.start_conversation(request.tenant, request.query)
    except Exception as e:
        logger.error(
            f"Failed to create conversation: {e}",
            extra={"client_id": request.tenant.client_id},
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Request processing failed")


@router.get("/api/ai/ask", tags=["Ask"])
async def ask(
    request: AskRequest = Depends(resolve_ask_request),
    driver: WorkflowDriver = Depends(get_workflow_driver),
):
    """
    Answer a question as a server-sent event stream.
    
    Events: `workflow_plan`, `step_start`, `step_complete`, `answer_chunk`,
    then exactly one of `done` or `error`.
    """
    conversation_id = await start_conversation(driver, request)
    
    async def event_stream():
        workflow_events = driver.run(
            conversation_id,
            request.tenant,
            request.query,
            knowledge_base_id=request.options.knowledgeBaseId,
        )
        try:
            async for event in workflow_events:
                yield encode_workflow_event(event)
        finally:
            await workflow_events.aclose()
    
    return StreamingResponse(event_stream(), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.get("/api/ai/ask_sync", tags=["Ask"], response_model=AskSyncResponse)
async def ask_sync(
    request: AskRequest = Depends(resolve_ask_request),
    driver: WorkflowDriver = Depends(get_workflow_driver),
):
    """Same workflow as /api/ai/ask, returned as a single JSON body."""
    conversation_id = await start_conversation(driver, request)
    outcome = await driver.run_to_completion(
        conversation_id,
        request.tenant,
        request.query,
        knowledge_base_id=request.options.knowledgeBaseId,
    )
    if outcome.error or not outcome.answer:
        return JSONResponse(
            status_code=500,
            content={
                "error": outcome.error_details or outcome.error or "No answer generated",
                "conversationId": conversation_id,
            },
        )
    return outcome.to_payload()
