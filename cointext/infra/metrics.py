"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# LLM metrics
llm_calls_total = Counter(
    "llm_calls_total",
    "Total LLM API calls",
    ["purpose", "model", "status"],  # purpose: planning or answer
)

llm_call_duration = Histogram(
    "llm_call_duration_seconds",
    "LLM API call duration in seconds",
    ["purpose", "model"],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total LLM tokens",
    ["model", "type"],  # type: prompt or completion
)

# Tool metrics
tool_calls_total = Counter(
    "tool_calls_total",
    "Total tool calls",
    ["tool_name", "category", "status"],
)

tool_call_duration = Histogram(
    "tool_call_duration_seconds",
    "Tool call duration in seconds",
    ["tool_name", "category"],
)

# Workflow metrics
workflow_steps_total = Counter(
    "workflow_steps_total",
    "Total workflow steps executed",
    ["step_type", "status"],
)

planner_fallbacks_total = Counter(
    "planner_fallbacks_total",
    "Plans replaced by the fixed fallback plan",
)

conversations_total = Counter(
    "conversations_total",
    "Total conversations reaching a terminal state",
    ["intent", "status"],
)

conversation_duration = Histogram(
    "conversation_duration_seconds",
    "End-to-end conversation duration in seconds",
    ["intent"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
