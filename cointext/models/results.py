"""Step and tool call results."""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field

from cointext.models.plan import StepType


class ToolCallResult(BaseModel):
    """Outcome of one tool invocation. Callers check `success`."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    tool: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: str, tool: Optional[str] = None, parameters: Optional[Dict[str, Any]] = None) -> "ToolCallResult":
        return cls(success=False, error=error, tool=tool, parameters=parameters)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class StepResult(BaseModel):
    """
    Result of executing one plan step.
    
    `output` holds the per-type payload: a string for thinking and
    answer_generating, retrieved chunks for rag_retrieving. api_calling
    results live in `tool_results` and are rendered as `output` on the wire.
    """
    step_type: Union[StepType, str]
    step_name: str = ""
    latency_ms: int = 0
    output: Any = None
    error: Optional[str] = None
    reasoning: Optional[str] = None
    sources: Optional[List[Dict[str, Any]]] = None
    context_text: Optional[str] = None
    tool_results: Optional[Dict[str, ToolCallResult]] = None
    usage: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def answer_text(self) -> str:
        """Generated answer, empty unless this is a successful answer step."""
        if self.step_type != StepType.ANSWER_GENERATING or self.error:
            return ""
        return self.output if isinstance(self.output, str) else ""

    def to_payload(self) -> Dict[str, Any]:
        """Step result in its wire shape."""
        output = self.output
        if self.tool_results is not None:
            output = {name: result.to_payload() for name, result in self.tool_results.items()}
        payload: Dict[str, Any] = {
            "stepType": getattr(self.step_type, "value", self.step_type),
            "stepName": self.step_name,
            "latencyMs": self.latency_ms,
            "output": output,
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.reasoning is not None:
            payload["reasoning"] = self.reasoning
        if self.sources is not None:
            payload["sources"] = self.sources
        if self.context_text is not None:
            payload["contextText"] = self.context_text
        if self.usage is not None:
            payload["usage"] = self.usage
        return payload
