"""Tests for the step executor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from cointext.infra.error_handler import ToolCallError
from cointext.models.plan import PlanStep, StepType
from cointext.models.results import ToolCallResult
from cointext.services.step_executor import ExecutionContext


@pytest.fixture
def context(tenant, tools):
    return ExecutionContext(tenant=tenant, available_tools=tools, knowledge_base_id="kb-1")


class TestThinkingAndDispatch:
    
    @pytest.mark.asyncio
    async def test_thinking_step(self, executor, context):
        step = PlanStep(type=StepType.THINKING, name="Analyzing query")
        result = await executor.execute(step, "What is ADA?", context)
        
        assert result.error is None
        assert result.output == 'Analyzing: "What is ADA?"'
        assert result.reasoning == "Analyzing query"
        assert result.step_name == "Analyzing query"
        assert result.latency_ms >= 0
    
    @pytest.mark.asyncio
    async def test_unknown_step_type(self, executor, context):
        step = PlanStep.model_construct(type="dancing", name="Dance", tools=[], parameters={})
        result = await executor.execute(step, "q", context)
        
        assert result.error.startswith("Unknown step type")
        assert result.to_payload()["stepType"] == "dancing"
    
    @pytest.mark.asyncio
    async def test_unexpected_exception_captured(self, executor, context):
        executor._handlers[StepType.THINKING] = AsyncMock(side_effect=RuntimeError("kaboom"))
        step = PlanStep(type=StepType.THINKING, name="Think")
        
        result = await executor.execute(step, "q", context)
        
        assert result.error == "kaboom"
        assert result.step_name == "Think"


class TestRagStep:
    
    @pytest.mark.asyncio
    async def test_step_parameter_query_wins(self, executor, context, retrieval):
        context.rag_query = "plan rag query"
        step = PlanStep(type=StepType.RAG_RETRIEVING, parameters={"query": "step query"})
        
        result = await executor.execute(step, "user query", context)
        
        assert retrieval.retrieve.call_args.args[0] == "step query"
        assert result.context_text == "ADA is the Cardano token."
        assert result.sources[0]["title"] == "Cardano"
        assert result.output[0]["content"] == "ADA is the Cardano token."
    
    @pytest.mark.asyncio
    async def test_plan_rag_query_then_user_query(self, executor, context, retrieval):
        step = PlanStep(type=StepType.RAG_RETRIEVING)
        
        context.rag_query = "plan rag query"
        await executor.execute(step, "user query", context)
        assert retrieval.retrieve.call_args.args[0] == "plan rag query"
        
        context.rag_query = ""
        await executor.execute(step, "user query", context)
        assert retrieval.retrieve.call_args.args[0] == "user query"
        assert retrieval.retrieve.call_args.kwargs["knowledge_base_id"] == "kb-1"
    
    @pytest.mark.asyncio
    async def test_retrieval_failure_reported(self, executor, context, retrieval):
        retrieval.retrieve.side_effect = RuntimeError("vector store down")
        step = PlanStep(type=StepType.RAG_RETRIEVING)
        
        result = await executor.execute(step, "q", context)
        
        assert result.error == "RAG retrieval failed: vector store down"
        assert result.context_text == ""
        assert result.output == []


class TestApiStep:
    
    @pytest.mark.asyncio
    async def test_fan_out_isolates_failures(self, executor, context, tool_client):
        async def call(tool, parameters):
            if tool.name == "nansen.smart.holdings":
                raise ToolCallError(tool.name, "Tool call failed: HTTP 500")
            return ToolCallResult(success=True, data={"pairs": []}, tool=tool.name)
        
        tool_client.call.side_effect = call
        step = PlanStep(
            type=StepType.API_CALLING,
            tools=["dex.search", "nansen.smart.holdings"],
            parameters={"q": "ADA"},
        )
        
        result = await executor.execute(step, "q", context)
        
        assert result.error is None
        assert result.tool_results["dex.search"].success is True
        assert result.tool_results["nansen.smart.holdings"].success is False
        assert "HTTP 500" in result.tool_results["nansen.smart.holdings"].error
        payload = result.to_payload()
        assert "error" not in payload
        assert payload["output"]["dex.search"]["success"] is True
    
    @pytest.mark.asyncio
    async def test_tools_run_concurrently(self, executor, context, tool_client):
        second_started = asyncio.Event()
        
        async def call(tool, parameters):
            if tool.name == "dex.search":
                # Only completes if the sibling call starts while this one is pending
                await second_started.wait()
            else:
                second_started.set()
            return ToolCallResult(success=True, data={}, tool=tool.name)
        
        tool_client.call.side_effect = call
        step = PlanStep(type=StepType.API_CALLING, tools=["dex.search", "nansen.smart.holdings"])
        
        result = await executor.execute(step, "q", context)
        
        assert all(r.success for r in result.tool_results.values())
    
    @pytest.mark.asyncio
    async def test_missing_tool_recorded(self, executor, context, tool_client):
        tool_client.call.return_value = ToolCallResult(success=True, data={}, tool="dex.search")
        step = PlanStep(type=StepType.API_CALLING, tools=["dex.search", "ghost.tool"])
        
        result = await executor.execute(step, "q", context)
        
        assert result.tool_results["ghost.tool"].success is False
        assert result.tool_results["ghost.tool"].error == "Tool not found"
        assert tool_client.call.await_count == 1
    
    @pytest.mark.asyncio
    async def test_step_parameters_passed_to_each_tool(self, executor, context, tool_client):
        tool_client.call.return_value = ToolCallResult(success=True, data={})
        step = PlanStep(type=StepType.API_CALLING, tools=["dex.search"], parameters={"q": "ADA"})
        
        await executor.execute(step, "q", context)
        
        tool, parameters = tool_client.call.call_args.args
        assert tool.name == "dex.search"
        assert parameters == {"q": "ADA"}
    
    @pytest.mark.asyncio
    async def test_slow_tool_times_out(self, executor, context, tool_client):
        executor.tool_timeout = 0.05
        
        async def call(tool, parameters):
            await asyncio.sleep(1)
        
        tool_client.call.side_effect = call
        step = PlanStep(type=StepType.API_CALLING, tools=["dex.search"])
        
        result = await executor.execute(step, "q", context)
        
        assert "timed out" in result.tool_results["dex.search"].error
    
    @pytest.mark.asyncio
    async def test_no_tools(self, executor, context, tool_client):
        result = await executor.execute(PlanStep(type=StepType.API_CALLING), "q", context)
        
        assert result.error is None
        assert result.to_payload()["output"] == {}
        tool_client.call.assert_not_awaited()


class TestAnswerStep:
    
    @pytest.mark.asyncio
    async def test_prompt_contains_context(self, executor, context, llm):
        context.rag_context = "ADA is the Cardano token."
        context.tool_results = {"dex.search": ToolCallResult(success=True, data={"priceUsd": "0.45"})}
        chunks = []
        context.on_chunk = chunks.append
        
        result = await executor.execute(PlanStep(type=StepType.ANSWER_GENERATING), "Tell me about ADA", context)
        
        assert result.answer_text == "Final answer"
        assert result.usage["total_tokens"] == 15
        prompt = llm.generate_text.call_args.args[1]
        assert "Tell me about ADA" in prompt
        assert "ADA is the Cardano token." in prompt
        assert '"priceUsd": "0.45"' in prompt
        assert "Be concise." in prompt
        assert llm.generate_text.call_args.kwargs["on_chunk"] is context.on_chunk
    
    @pytest.mark.asyncio
    async def test_prompt_truncated(self, executor, context, llm):
        executor.answer_prompt_max_chars = 500
        context.rag_context = "x" * 10000
        
        await executor.execute(PlanStep(type=StepType.ANSWER_GENERATING), "q", context)
        
        assert len(llm.generate_text.call_args.args[1]) == 500
    
    @pytest.mark.asyncio
    async def test_generation_failure(self, executor, context, llm):
        llm.generate_text.side_effect = RuntimeError("model unavailable")
        
        result = await executor.execute(PlanStep(type=StepType.ANSWER_GENERATING), "q", context)
        
        assert result.error == "Answer generation failed: model unavailable"
        assert result.answer_text == ""
