"""Workflow planner: one language model call per query, validated into a Plan."""

import logging
import numbers
from typing import Any, Dict, Iterable, List

from cointext.adapters.llm_client import OpenAIChatClient
from cointext.infra.error_handler import retry_with_backoff
from cointext.infra.metrics import planner_fallbacks_total
from cointext.models.plan import Intent, Plan, PlanStep, StepType, WorkflowSpec
from cointext.models.tenant import KnowledgeBaseInfo, TenantContext
from cointext.models.tool import ToolDefinition
from cointext.services.prompt_builder import PLANNER_SYSTEM_PROMPT, build_planning_prompt

logger = logging.getLogger(__name__)

VALID_INTENTS = {intent.value for intent in Intent}
VALID_STEP_TYPES = {step_type.value for step_type in StepType}
DEFAULT_CONFIDENCE = 0.5


def _valid_confidence(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return 0.0 <= value <= 1.0


def validate_plan(raw: Dict[str, Any], available_tools: Iterable[ToolDefinition]) -> Plan:
    """
    Coerce raw planner output into a Plan.
    
    Never raises for bad content: an unknown intent becomes TOOL_ENHANCED,
    a bad confidence becomes 0.5, a missing step list becomes a single
    thinking step with retrieval enabled, unknown step types become
    thinking and tool names outside `available_tools` are dropped.
    """
    tool_names = {tool.name for tool in available_tools}
    
    intent = raw.get("intent")
    if not isinstance(intent, str) or intent not in VALID_INTENTS:
        intent = Intent.TOOL_ENHANCED.value
    
    confidence = raw.get("confidence")
    if not _valid_confidence(confidence):
        confidence = DEFAULT_CONFIDENCE
    
    workflow = raw.get("workflow")
    if not isinstance(workflow, dict) or not isinstance(workflow.get("steps"), list):
        rag_query = raw.get("ragQuery")
        workflow = {
            "steps": [{"type": StepType.THINKING.value, "name": "Processing query"}],
            "useRag": True,
            "ragQuery": rag_query if isinstance(rag_query, str) else "",
        }
    
    steps: List[PlanStep] = []
    for raw_step in workflow["steps"]:
        if not isinstance(raw_step, dict):
            raw_step = {}
        step_type = raw_step.get("type")
        if not isinstance(step_type, str) or step_type not in VALID_STEP_TYPES:
            step_type = StepType.THINKING.value
        tools = raw_step.get("tools")
        if isinstance(tools, list):
            tools = [name for name in tools if isinstance(name, str) and name in tool_names]
        else:
            tools = []
        parameters = raw_step.get("parameters")
        name = raw_step.get("name")
        steps.append(PlanStep(
            type=StepType(step_type),
            name=name if isinstance(name, str) else "",
            tools=tools,
            parameters=parameters if isinstance(parameters, dict) else {},
        ))
    
    if not steps:
        steps = [PlanStep(type=StepType.THINKING, name="Processing query")]
    
    rag_query = workflow.get("ragQuery")
    reasoning = raw.get("reasoning")
    reply = raw.get("reply")
    return Plan(
        intent=Intent(intent),
        confidence=float(confidence),
        reasoning=reasoning if isinstance(reasoning, str) else "",
        reply=reply if isinstance(reply, str) else "",
        workflow=WorkflowSpec(
            steps=steps,
            use_rag=bool(workflow.get("useRag", False)),
            rag_query=rag_query if isinstance(rag_query, str) else "",
        ),
    )


def fallback_plan(query: str) -> Plan:
    """Fixed plan used when the planner call fails: think, retrieve, answer."""
    return Plan(
        intent=Intent.TOOL_ENHANCED,
        confidence=DEFAULT_CONFIDENCE,
        reasoning="Fallback due to analysis error",
        workflow=WorkflowSpec(
            steps=[
                PlanStep(type=StepType.THINKING, name="Analyzing query"),
                PlanStep(type=StepType.RAG_RETRIEVING, name="Searching knowledge base"),
                PlanStep(type=StepType.ANSWER_GENERATING, name="Generating response"),
            ],
            use_rag=True,
            rag_query=query,
        ),
    )


class WorkflowPlanner:
    """Classifies intent and plans steps for a query. Always returns a usable Plan."""
    
    def __init__(self, llm: OpenAIChatClient, max_retries: int = 2):
        self.llm = llm
        self.max_retries = max_retries
    
    async def plan(
        self,
        query: str,
        tenant: TenantContext,
        available_tools: List[ToolDefinition],
        knowledge_bases: List[KnowledgeBaseInfo],
    ) -> Plan:
        user_prompt = build_planning_prompt(tenant, available_tools, knowledge_bases, query)
        
        async def call_planning_llm():
            return await self.llm.generate_json(PLANNER_SYSTEM_PROMPT, user_prompt)
        
        def log_retry(error: Exception, attempt: int) -> None:
            logger.warning(f"Planner call failed, retry {attempt}/{self.max_retries}: {error}")
        
        try:
            raw = await retry_with_backoff(
                call_planning_llm,
                max_retries=self.max_retries,
                initial_delay=1.0,
                max_delay=5.0,
                on_retry=log_retry,
            )
        except Exception as e:
            logger.error(f"Intent analysis failed, using fallback plan: {e}", exc_info=True)
            planner_fallbacks_total.inc()
            return fallback_plan(query)
        
        plan = validate_plan(raw, available_tools)
        logger.info(
            f"Planned {len(plan.workflow.steps)} steps with intent {plan.intent.value}",
            extra={"intent": plan.intent.value, "confidence": plan.confidence},
        )
        return plan
