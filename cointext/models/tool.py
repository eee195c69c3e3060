"""Tool definition model."""

from pydantic import BaseModel, Field
from typing import Dict, Any, Optional


class ToolDefinition(BaseModel):
    """A callable capability shared by all clients and enabled per client."""
    id: Optional[str] = Field(default=None, description="Tool ID")
    name: str = Field(..., description="Dotted tool name, e.g. 'dex.search'")
    display_name: Optional[str] = Field(default=None, description="Name shown in the admin UI")
    description: str = Field(default="", description="Tool description shown to the planner")
    category: str = Field(..., description="Calling convention: 'debank' | 'nansen' | 'dex' | 'finance' | ...")
    method: str = Field(default="GET", description="HTTP method")
    endpoint: str = Field(..., description="Endpoint template, may contain {placeholders}")
    parameters: Dict[str, Any] = Field(
        default_factory=dict,
        description="Informal parameter schema, only used to prompt the planner"
    )
    is_external: bool = Field(default=True, description="External HTTP API vs. this service's own endpoint")
    is_active: bool = Field(default=True, description="Globally active")
