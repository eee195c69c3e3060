"""Admin API router for the shared tool catalog."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from cointext.api.dependencies import get_tool_registry
from cointext.api.models import CreateToolRequest, ToolResponse, UpdateToolRequest
from cointext.infra.auth import require_admin
from cointext.models.tool import ToolDefinition
from cointext.services.tool_registry import ToolRegistry

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


@router.post("/tools", tags=["Tools"], response_model=ToolResponse, status_code=201)
async def create_tool(request: CreateToolRequest, registry: ToolRegistry = Depends(get_tool_registry)):
    """Register a tool, or replace the definition of the tool with the same name."""
    tool = await registry.upsert_tool(ToolDefinition(**request.model_dump()))
    return ToolResponse(**tool.model_dump())


@router.get("/tools", tags=["Tools"], response_model=List[ToolResponse])
async def list_tools(
    category: Optional[str] = Query(default=None),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    return [ToolResponse(**tool.model_dump()) for tool in await registry.list_tools(category)]


@router.get("/tools/{tool_id}", tags=["Tools"], response_model=ToolResponse)
async def get_tool(tool_id: str, registry: ToolRegistry = Depends(get_tool_registry)):
    tool = await registry.get_tool(tool_id)
    if tool is None:
        raise HTTPException(status_code=404, detail="Tool not found")
    return ToolResponse(**tool.model_dump())


@router.patch("/tools/{tool_id}", tags=["Tools"], response_model=ToolResponse)
async def update_tool(
    tool_id: str,
    request: UpdateToolRequest,
    registry: ToolRegistry = Depends(get_tool_registry),
):
    tool = await registry.update_tool(tool_id, request.model_dump(exclude_unset=True))
    if tool is None:
        raise HTTPException(status_code=404, detail="Tool not found")
    return ToolResponse(**tool.model_dump())


@router.delete("/tools/{tool_id}", tags=["Tools"], response_model=ToolResponse)
async def deactivate_tool(tool_id: str, registry: ToolRegistry = Depends(get_tool_registry)):
    """Deactivate a tool globally; per-client enablement is kept."""
    tool = await registry.update_tool(tool_id, {"is_active": False})
    if tool is None:
        raise HTTPException(status_code=404, detail="Tool not found")
    return ToolResponse(**tool.model_dump())
