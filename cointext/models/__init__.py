from .plan import Intent, StepType, PlanStep, WorkflowSpec, Plan
from .results import StepResult, ToolCallResult
from .tenant import TenantContext, KnowledgeBaseInfo
from .tool import ToolDefinition
from .events import WorkflowEvent
from .conversation import ConversationStatus, StepStatus

__all__ = [
    "Intent",
    "StepType",
    "PlanStep",
    "WorkflowSpec",
    "Plan",
    "StepResult",
    "ToolCallResult",
    "TenantContext",
    "KnowledgeBaseInfo",
    "ToolDefinition",
    "WorkflowEvent",
    "ConversationStatus",
    "StepStatus",
]
