"""Typed execution plan produced by the workflow planner."""

from enum import Enum
from typing import Any, Dict, List
from pydantic import BaseModel, Field


class Intent(str, Enum):
    """How a query is answered."""
    DIRECT_ANSWER = "DIRECT_ANSWER"
    TOOL_ENHANCED = "TOOL_ENHANCED"


class StepType(str, Enum):
    """Kinds of planned work."""
    THINKING = "thinking"
    RAG_RETRIEVING = "rag_retrieving"
    API_CALLING = "api_calling"
    ANSWER_GENERATING = "answer_generating"


class PlanStep(BaseModel):
    """One planned unit of work."""
    type: StepType = Field(..., description="Step type")
    name: str = Field(default="", description="Human readable step name")
    tools: List[str] = Field(default_factory=list, description="Tool names, only used by api_calling")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Parameters passed to tools or retrieval")


class WorkflowSpec(BaseModel):
    """Ordered steps plus retrieval hints."""
    steps: List[PlanStep] = Field(default_factory=list)
    use_rag: bool = Field(default=False, alias="useRag")
    rag_query: str = Field(default="", alias="ragQuery")

    model_config = {"populate_by_name": True}


class Plan(BaseModel):
    """Validated planner output."""
    intent: Intent
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    reply: str = Field(default="", description="Answer text, only used for DIRECT_ANSWER")
    workflow: WorkflowSpec = Field(default_factory=WorkflowSpec)

    def workflow_payload(self) -> Dict[str, Any]:
        """Workflow in its wire shape (camelCase keys)."""
        return self.workflow.model_dump(mode="json", by_alias=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
