"""Events emitted by the workflow driver."""

from dataclasses import dataclass, field
from typing import Any, Dict

STEP_START = "step_start"
STEP_COMPLETE = "step_complete"
WORKFLOW_PLAN = "workflow_plan"
ANSWER_CHUNK = "answer_chunk"
DONE = "done"
ERROR = "error"

TERMINAL_EVENTS = frozenset({DONE, ERROR})


@dataclass
class WorkflowEvent:
    """A named event plus its JSON payload."""
    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS
