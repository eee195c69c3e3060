"""Admin API router for clients and their tool enablement."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from cointext.api.dependencies import get_client_service, get_tool_registry
from cointext.api.models import (
    ClientResponse,
    ClientToolResponse,
    ClientWithKeyResponse,
    CreateClientRequest,
    RotateKeyResponse,
    SetClientToolRequest,
    ToolResponse,
    UpdateClientRequest,
)
from cointext.infra.auth import require_admin
from cointext.services.client_service import ClientService
from cointext.services.tool_registry import ToolRegistry

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


async def _require_client(clients: ClientService, client_id: str) -> dict:
    client = await clients.get_client(client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.post("/clients", tags=["Clients"], response_model=ClientWithKeyResponse, status_code=201)
async def create_client(
    request: CreateClientRequest,
    clients: ClientService = Depends(get_client_service),
):
    """
    Create a client.
    
    The API key is returned in this response only; store it securely.
    """
    return await clients.create_client(request.name, request.instructions)


@router.get("/clients", tags=["Clients"], response_model=List[ClientResponse])
async def list_clients(clients: ClientService = Depends(get_client_service)):
    return await clients.list_clients()


@router.get("/clients/{client_id}", tags=["Clients"], response_model=ClientResponse)
async def get_client(client_id: str, clients: ClientService = Depends(get_client_service)):
    return await _require_client(clients, client_id)


@router.patch("/clients/{client_id}", tags=["Clients"], response_model=ClientResponse)
async def update_client(
    client_id: str,
    request: UpdateClientRequest,
    clients: ClientService = Depends(get_client_service),
):
    client = await clients.update_client(client_id, request.model_dump(exclude_unset=True))
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.delete("/clients/{client_id}", tags=["Clients"])
async def deactivate_client(client_id: str, clients: ClientService = Depends(get_client_service)):
    """Deactivate a client. Its key stops working immediately."""
    if not await clients.deactivate_client(client_id):
        raise HTTPException(status_code=404, detail="Client not found")
    return {"status": "deactivated", "client_id": client_id}


@router.post("/clients/{client_id}/api-key", tags=["Clients"], response_model=RotateKeyResponse)
async def rotate_api_key(client_id: str, clients: ClientService = Depends(get_client_service)):
    api_key = await clients.rotate_api_key(client_id)
    if api_key is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return RotateKeyResponse(client_id=client_id, api_key=api_key)


@router.get("/clients/{client_id}/tools", tags=["Clients"], response_model=List[ClientToolResponse])
async def list_client_tools(
    client_id: str,
    clients: ClientService = Depends(get_client_service),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    await _require_client(clients, client_id)
    entries = await registry.list_client_tools(client_id)
    return [
        ClientToolResponse(tool=ToolResponse(**entry["tool"].model_dump()), is_enabled=entry["is_enabled"])
        for entry in entries
    ]


@router.put("/clients/{client_id}/tools/{tool_id}", tags=["Clients"])
async def set_client_tool(
    client_id: str,
    tool_id: str,
    request: SetClientToolRequest,
    clients: ClientService = Depends(get_client_service),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """Enable or disable a tool for one client."""
    await _require_client(clients, client_id)
    if await registry.get_tool(tool_id) is None:
        raise HTTPException(status_code=404, detail="Tool not found")
    await registry.set_client_tool_enabled(client_id, tool_id, request.is_enabled)
    return {"client_id": client_id, "tool_id": tool_id, "is_enabled": request.is_enabled}
