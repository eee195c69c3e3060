"""Executes one planned workflow step."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cointext.adapters.llm_client import ChunkCallback, OpenAIChatClient
from cointext.adapters.tool_client import ToolHttpClient
from cointext.infra.metrics import workflow_steps_total
from cointext.models.plan import PlanStep, StepType
from cointext.models.results import StepResult, ToolCallResult
from cointext.models.tenant import TenantContext
from cointext.models.tool import ToolDefinition
from cointext.services.prompt_builder import ANSWER_SYSTEM_PROMPT, build_answer_prompt
from cointext.services.retrieval_service import RetrievalService

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """State threaded between the steps of one conversation."""
    tenant: TenantContext
    available_tools: List[ToolDefinition] = field(default_factory=list)
    knowledge_base_id: Optional[str] = None
    rag_query: str = ""
    rag_context: str = ""
    tool_results: Dict[str, ToolCallResult] = field(default_factory=dict)
    on_chunk: Optional[ChunkCallback] = None
    conversation_id: Optional[str] = None

    def find_tool(self, name: str) -> Optional[ToolDefinition]:
        for tool in self.available_tools:
            if tool.name == name:
                return tool
        return None


class StepExecutor:
    """
    Performs the side effect of a plan step.
    
    Errors inside a step are returned in `StepResult.error`, never raised;
    the workflow driver decides what happens next.
    """
    
    def __init__(
        self,
        llm: OpenAIChatClient,
        tool_client: ToolHttpClient,
        retrieval: RetrievalService,
        thinking_delay: float = 0.1,
        answer_prompt_max_chars: int = 30000,
        rag_max_results: int = 5,
        tool_timeout: Optional[float] = 30.0,
    ):
        self.llm = llm
        self.tool_client = tool_client
        self.retrieval = retrieval
        self.thinking_delay = thinking_delay
        self.answer_prompt_max_chars = answer_prompt_max_chars
        self.rag_max_results = rag_max_results
        self.tool_timeout = tool_timeout
        self._handlers = {
            StepType.THINKING: self._execute_thinking,
            StepType.RAG_RETRIEVING: self._execute_rag,
            StepType.API_CALLING: self._execute_api,
            StepType.ANSWER_GENERATING: self._execute_answer,
        }
    
    async def execute(self, step: PlanStep, query: str, context: ExecutionContext) -> StepResult:
        start_time = time.monotonic()
        handler = self._handlers.get(step.type)
        if handler is None:
            result = StepResult(
                step_type=getattr(step.type, "value", str(step.type)),
                step_name=step.name,
                error=f"Unknown step type: {getattr(step.type, 'value', step.type)}",
            )
        else:
            try:
                result = await handler(step, query, context)
            except Exception as e:
                logger.error(
                    f"Step {step.type.value} failed: {e}",
                    extra={"conversation_id": context.conversation_id, "step_type": step.type.value},
                    exc_info=True,
                )
                result = StepResult(step_type=step.type, error=str(e) or type(e).__name__)
        
        result.step_name = step.name
        result.latency_ms = int((time.monotonic() - start_time) * 1000)
        status = "error" if result.error else "completed"
        workflow_steps_total.labels(step_type=getattr(result.step_type, "value", result.step_type), status=status).inc()
        logger.info(
            f"Step {step.name or step.type} finished",
            extra={
                "conversation_id": context.conversation_id,
                "step_type": getattr(result.step_type, "value", result.step_type),
                "status": status,
                "latency_ms": result.latency_ms,
            },
        )
        return result
    
    async def _execute_thinking(self, step: PlanStep, query: str, context: ExecutionContext) -> StepResult:
        if self.thinking_delay > 0:
            await asyncio.sleep(self.thinking_delay)
        return StepResult(
            step_type=StepType.THINKING,
            output=f'Analyzing: "{query}"',
            reasoning=step.name,
        )
    
    async def _execute_rag(self, step: PlanStep, query: str, context: ExecutionContext) -> StepResult:
        rag_query = step.parameters.get("query") or context.rag_query or query
        try:
            retrieved = await self.retrieval.retrieve(
                rag_query,
                context.tenant,
                knowledge_base_id=context.knowledge_base_id,
                max_results=self.rag_max_results,
            )
        except Exception as e:
            logger.warning(
                f"RAG retrieval failed: {e}",
                extra={"conversation_id": context.conversation_id, "step_type": step.type.value},
            )
            return StepResult(
                step_type=StepType.RAG_RETRIEVING,
                error=f"RAG retrieval failed: {e}",
                output=[],
                sources=[],
                context_text="",
            )
        
        return StepResult(
            step_type=StepType.RAG_RETRIEVING,
            output=retrieved.chunks,
            sources=retrieved.sources,
            context_text=retrieved.context_text,
        )
    
    async def _execute_api(self, step: PlanStep, query: str, context: ExecutionContext) -> StepResult:
        if not step.tools:
            logger.warning(
                "No tools specified for api_calling step",
                extra={"conversation_id": context.conversation_id},
            )
            return StepResult(step_type=StepType.API_CALLING, tool_results={})
        
        # Each call settles independently; gather only propagates cancellation
        results = await asyncio.gather(*(
            self._call_tool(name, step.parameters, context) for name in step.tools
        ))
        return StepResult(
            step_type=StepType.API_CALLING,
            tool_results=dict(zip(step.tools, results)),
        )
    
    async def _call_tool(self, name: str, parameters: Dict[str, Any], context: ExecutionContext) -> ToolCallResult:
        tool = context.find_tool(name)
        if tool is None:
            logger.warning(
                f"Tool not found: {name}",
                extra={"conversation_id": context.conversation_id, "tool_name": name},
            )
            return ToolCallResult.failure("Tool not found", tool=name)
        try:
            if self.tool_timeout:
                return await asyncio.wait_for(self.tool_client.call(tool, parameters), self.tool_timeout)
            return await self.tool_client.call(tool, parameters)
        except asyncio.TimeoutError:
            return ToolCallResult.failure(f"Tool call timed out after {self.tool_timeout}s", tool=name)
        except Exception as e:
            logger.warning(
                f"Tool {name} failed: {e}",
                extra={"conversation_id": context.conversation_id, "tool_name": name},
            )
            return ToolCallResult.failure(str(e) or type(e).__name__, tool=name)
    
    async def _execute_answer(self, step: PlanStep, query: str, context: ExecutionContext) -> StepResult:
        prompt = build_answer_prompt(
            query,
            context.tenant.instructions,
            context.rag_context,
            {name: result.to_payload() for name, result in context.tool_results.items()},
            self.answer_prompt_max_chars,
        )
        try:
            text, usage = await self.llm.generate_text(ANSWER_SYSTEM_PROMPT, prompt, on_chunk=context.on_chunk)
        except Exception as e:
            logger.error(
                f"Answer generation failed: {e}",
                extra={"conversation_id": context.conversation_id, "step_type": step.type.value},
            )
            return StepResult(step_type=StepType.ANSWER_GENERATING, error=f"Answer generation failed: {e}")
        return StepResult(step_type=StepType.ANSWER_GENERATING, output=text, usage=usage)
