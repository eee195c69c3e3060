"""
Workflow driver.

Runs one conversation: plan, execute steps in order, thread context between
them, persist progress and emit a WorkflowEvent for every transition. The
event sequence always ends with exactly one `done` or `error` event.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from cointext.infra.metrics import conversations_total, conversation_duration
from cointext.models import events
from cointext.models.events import WorkflowEvent
from cointext.models.plan import Intent, Plan, PlanStep, StepType
from cointext.models.results import StepResult
from cointext.models.tenant import TenantContext
from cointext.services.conversation_store import ConversationStore
from cointext.services.step_executor import ExecutionContext, StepExecutor
from cointext.services.tenant_service import TenantService
from cointext.services.tool_registry import ToolRegistry
from cointext.services.workflow_planner import WorkflowPlanner

logger = logging.getLogger(__name__)

DIRECT_ANSWER_STEP_NAME = "Generating direct answer"
FINAL_ANSWER_STEP_NAME = "Generating final answer from collected context"


@dataclass
class WorkflowOutcome:
    """Everything a synchronous caller needs once a run has finished."""
    conversation_id: str
    answer: str = ""
    intent: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: str = ""
    workflow: Dict[str, Any] = field(default_factory=dict)
    tools_used: List[str] = field(default_factory=list)
    rag_used: bool = False
    latency_ms: int = 0
    sources: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    error_details: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "conversationId": self.conversation_id,
            "intent": self.intent,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "workflow": self.workflow,
            "toolsUsed": self.tools_used,
            "ragUsed": self.rag_used,
            "latencyMs": self.latency_ms,
            "sources": self.sources,
        }


class WorkflowDriver:
    def __init__(
        self,
        planner: WorkflowPlanner,
        executor: StepExecutor,
        store: ConversationStore,
        tool_registry: ToolRegistry,
        tenants: TenantService,
    ):
        self.planner = planner
        self.executor = executor
        self.store = store
        self.tool_registry = tool_registry
        self.tenants = tenants
    
    async def start_conversation(self, tenant: TenantContext, query: str) -> str:
        """Create the conversation record. Raises if it cannot be stored."""
        return await self.store.create_conversation(tenant.client_id, query)
    
    async def run(
        self,
        conversation_id: str,
        tenant: TenantContext,
        query: str,
        knowledge_base_id: Optional[str] = None,
    ) -> AsyncIterator[WorkflowEvent]:
        """
        Drive a conversation created by `start_conversation`.
        
        If the consumer goes away (cancellation or generator close), the
        in-flight step is cancelled, the conversation is marked as errored
        and the cancellation propagates.
        """
        start_time = time.monotonic()
        intent_label = "unknown"
        
        def elapsed_ms() -> int:
            return int((time.monotonic() - start_time) * 1000)
        
        try:
            available_tools = await self.tool_registry.get_enabled_tools(tenant.client_id)
            knowledge_bases = tenant.knowledge_bases or await self.tenants.get_general_knowledge_bases()
            
            plan = await self.planner.plan(query, tenant, available_tools, knowledge_bases)
            intent_label = plan.intent.value
            await self.store.record_plan(conversation_id, plan)
            yield WorkflowEvent(events.WORKFLOW_PLAN, {
                "intent": plan.intent.value,
                "confidence": plan.confidence,
                "reasoning": plan.reasoning,
                "workflow": plan.workflow_payload(),
            })
            
            if plan.intent == Intent.DIRECT_ANSWER:
                async for event in self._direct_answer(conversation_id, plan, elapsed_ms):
                    yield event
                self._record_outcome(intent_label, "completed", start_time)
                return
            
            context = ExecutionContext(
                tenant=tenant,
                available_tools=available_tools,
                knowledge_base_id=knowledge_base_id or tenant.default_knowledge_base_id,
                rag_query=plan.workflow.rag_query,
                conversation_id=conversation_id,
            )
            tools_used: List[str] = []
            rag_used = False
            
            steps = list(plan.workflow.steps)
            for order, step in enumerate(steps):
                result = None
                step_events = self._run_step(conversation_id, order, step, query, context)
                try:
                    async for item in step_events:
                        if isinstance(item, StepResult):
                            result = item
                        else:
                            yield item
                finally:
                    await step_events.aclose()
                
                if step.type == StepType.RAG_RETRIEVING:
                    rag_used = True
                    # A retrieval that failed or found nothing keeps the earlier context
                    if result.context_text:
                        context.rag_context = result.context_text
                elif step.type == StepType.API_CALLING and result.tool_results is not None:
                    context.tool_results.update(result.tool_results)
                    tools_used.extend(step.tools)
                
                if result.answer_text:
                    async for event in self._complete(
                        conversation_id, plan, result.answer_text, tools_used, rag_used, elapsed_ms
                    ):
                        yield event
                    self._record_outcome(intent_label, "completed", start_time)
                    return
            
            # No planned step produced an answer: synthesize one from what was collected
            final_step = PlanStep(type=StepType.ANSWER_GENERATING, name=FINAL_ANSWER_STEP_NAME)
            result = None
            step_events = self._run_step(conversation_id, len(steps), final_step, query, context)
            try:
                async for item in step_events:
                    if isinstance(item, StepResult):
                        result = item
                    else:
                        yield item
            finally:
                await step_events.aclose()
            
            if result.answer_text:
                async for event in self._complete(
                    conversation_id, plan, result.answer_text, tools_used, rag_used, elapsed_ms
                ):
                    yield event
                self._record_outcome(intent_label, "completed", start_time)
                return
            
            await self.store.fail_conversation(
                conversation_id, result.error or "Failed to generate final answer", elapsed_ms()
            )
            self._record_outcome(intent_label, "error", start_time)
            yield WorkflowEvent(events.ERROR, {
                "message": "Failed to generate final answer",
                "details": result.error or "Unknown error",
            })
        
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("Workflow cancelled by consumer", extra={"conversation_id": conversation_id})
            await self.store.fail_conversation(conversation_id, "cancelled", elapsed_ms())
            self._record_outcome(intent_label, "cancelled", start_time)
            raise
        except Exception as e:
            logger.error(
                f"Workflow execution failed: {e}",
                extra={"conversation_id": conversation_id},
                exc_info=True,
            )
            await self.store.fail_conversation(conversation_id, str(e) or type(e).__name__, elapsed_ms())
            self._record_outcome(intent_label, "error", start_time)
            yield WorkflowEvent(events.ERROR, {
                "message": "Workflow execution failed",
                "details": str(e) or type(e).__name__,
            })
    
    async def _direct_answer(self, conversation_id: str, plan: Plan, elapsed_ms) -> AsyncIterator[WorkflowEvent]:
        """The plan already carries the answer; no step is executed or stored."""
        yield WorkflowEvent(events.STEP_START, {
            "type": StepType.ANSWER_GENERATING.value,
            "name": DIRECT_ANSWER_STEP_NAME,
        })
        result = StepResult(
            step_type=StepType.ANSWER_GENERATING,
            step_name=DIRECT_ANSWER_STEP_NAME,
            output=plan.reply,
        )
        yield WorkflowEvent(events.STEP_COMPLETE, {
            "type": StepType.ANSWER_GENERATING.value,
            "result": result.to_payload(),
        })
        latency_ms = elapsed_ms()
        await self.store.complete_conversation(conversation_id, plan.reply, [], False, latency_ms)
        yield WorkflowEvent(events.DONE, {
            "conversationId": conversation_id,
            "latencyMs": latency_ms,
            "intent": plan.intent.value,
        })
    
    async def _complete(
        self,
        conversation_id: str,
        plan: Plan,
        answer: str,
        tools_used: List[str],
        rag_used: bool,
        elapsed_ms,
    ) -> AsyncIterator[WorkflowEvent]:
        unique_tools = list(dict.fromkeys(tools_used))
        latency_ms = elapsed_ms()
        await self.store.complete_conversation(conversation_id, answer, unique_tools, rag_used, latency_ms)
        yield WorkflowEvent(events.DONE, {
            "conversationId": conversation_id,
            "latencyMs": latency_ms,
            "intent": plan.intent.value,
            "toolsUsed": unique_tools,
            "ragUsed": rag_used,
        })
    
    async def _run_step(
        self,
        conversation_id: str,
        order: int,
        step: PlanStep,
        query: str,
        context: ExecutionContext,
    ) -> AsyncIterator[Union[WorkflowEvent, StepResult]]:
        """
        Persist and execute one step, yielding its events.
        
        Answer text streamed by the executor is surfaced as answer_chunk
        events while the step runs. The StepResult is yielded last.
        """
        step_id = await self.store.create_step(
            conversation_id, order, step.type.value, step.name, step.model_dump(mode="json")
        )
        yield WorkflowEvent(events.STEP_START, {
            "type": step.type.value,
            "name": step.name,
            "stepId": step_id,
        })
        
        chunks: asyncio.Queue = asyncio.Queue()
        context.on_chunk = chunks.put_nowait
        task = asyncio.create_task(self.executor.execute(step, query, context))
        try:
            while True:
                getter = asyncio.create_task(chunks.get())
                done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield WorkflowEvent(events.ANSWER_CHUNK, {"type": step.type.value, "content": getter.result()})
                    continue
                getter.cancel()
                break
            while not chunks.empty():
                yield WorkflowEvent(events.ANSWER_CHUNK, {"type": step.type.value, "content": chunks.get_nowait()})
            result = task.result()
        finally:
            context.on_chunk = None
            if not task.done():
                task.cancel()
        
        await self.store.finish_step(step_id, result.to_payload(), failed=result.error is not None)
        yield WorkflowEvent(events.STEP_COMPLETE, {
            "type": step.type.value,
            "stepId": step_id,
            "result": result.to_payload(),
        })
        yield result
    
    def _record_outcome(self, intent: str, status: str, start_time: float) -> None:
        conversations_total.labels(intent=intent, status=status).inc()
        conversation_duration.labels(intent=intent).observe(time.monotonic() - start_time)
    
    async def run_to_completion(
        self,
        conversation_id: str,
        tenant: TenantContext,
        query: str,
        knowledge_base_id: Optional[str] = None,
    ) -> WorkflowOutcome:
        """Drive a conversation without streaming and collect its outcome."""
        outcome = WorkflowOutcome(conversation_id=conversation_id)
        async for event in self.run(conversation_id, tenant, query, knowledge_base_id):
            data = event.data
            if event.event == events.WORKFLOW_PLAN:
                outcome.intent = data.get("intent")
                outcome.confidence = data.get("confidence")
                outcome.reasoning = data.get("reasoning") or ""
                outcome.workflow = data.get("workflow") or {}
            elif event.event == events.STEP_COMPLETE:
                result = data.get("result") or {}
                if result.get("sources"):
                    outcome.sources = result["sources"]
                if result.get("stepType") == StepType.ANSWER_GENERATING.value and isinstance(result.get("output"), str):
                    outcome.answer = result["output"]
            elif event.event == events.DONE:
                outcome.latency_ms = data.get("latencyMs", 0)
                outcome.tools_used = data.get("toolsUsed", [])
                outcome.rag_used = data.get("ragUsed", False)
            elif event.event == events.ERROR:
                outcome.answer = ""
                outcome.error = data.get("message")
                outcome.error_details = data.get("details")
        return outcome
