"""OpenAI chat adapter for planning and answer generation."""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from openai import AsyncOpenAI

from cointext.infra.config import Config
from cointext.infra.error_handler import PlanningError, wrap_llm_error
from cointext.infra.metrics import llm_calls_total, llm_call_duration, llm_tokens_total
from cointext.services.prompt_builder import count_tokens

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


def parse_json_content(content: Optional[str]) -> Dict[str, Any]:
    """
    Parse a JSON object from model output.
    
    Tolerates a surrounding markdown code fence.
    
    Raises:
        PlanningError: If the content is empty, not JSON, or not an object
    """
    if not content:
        raise PlanningError("Empty response from planning model")
    
    text = content.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1]) if len(lines) > 2 else text.strip("`")
    
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PlanningError(f"Invalid JSON in plan response: {e}")
    
    if not isinstance(data, dict):
        raise PlanningError("Plan response must be a JSON object")
    return data


class OpenAIChatClient:
    """
    Language model collaborator.
    
    Two call shapes: structured planning (JSON object out, low temperature,
    bounded tokens) and free-text generation (streamed prose, higher
    temperature, larger budget).
    """
    
    def __init__(
        self,
        api_key: Optional[str],
        planner_model: str = "gpt-4o",
        answer_model: str = "gpt-4o",
        planner_temperature: float = 0.1,
        planner_max_tokens: int = 1000,
        answer_temperature: float = 0.7,
        answer_max_tokens: int = 3000,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.planner_model = planner_model
        self.answer_model = answer_model
        self.planner_temperature = planner_temperature
        self.planner_max_tokens = planner_max_tokens
        self.answer_temperature = answer_temperature
        self.answer_max_tokens = answer_max_tokens
        self._client = client
    
    @classmethod
    def from_config(cls, cfg: Config) -> "OpenAIChatClient":
        return cls(
            api_key=cfg.OPENAI_API_KEY,
            planner_model=cfg.PLANNER_MODEL,
            answer_model=cfg.ANSWER_MODEL,
            planner_temperature=cfg.PLANNER_TEMPERATURE,
            planner_max_tokens=cfg.PLANNER_MAX_TOKENS,
            answer_temperature=cfg.ANSWER_TEMPERATURE,
            answer_max_tokens=cfg.ANSWER_MAX_TOKENS,
        )
    
    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError("OPENAI_API_KEY not configured")
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client
    
    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
    
    async def generate_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        """Structured planning call returning a parsed JSON object."""
        start_time = time.time()
        status = "success"
        try:
            response = await self.client.chat.completions.create(
                model=self.planner_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.planner_temperature,
                max_tokens=self.planner_max_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            status = "failure"
            raise wrap_llm_error(e, "openai")
        finally:
            llm_calls_total.labels(purpose="planning", model=self.planner_model, status=status).inc()
            llm_call_duration.labels(purpose="planning", model=self.planner_model).observe(time.time() - start_time)
        
        if response.usage:
            llm_tokens_total.labels(model=self.planner_model, type="prompt").inc(response.usage.prompt_tokens)
            llm_tokens_total.labels(model=self.planner_model, type="completion").inc(response.usage.completion_tokens)
        
        content = response.choices[0].message.content if response.choices else None
        return parse_json_content(content)
    
    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Tuple[str, Dict[str, int]]:
        """
        Streamed free-text generation.
        
        Each content delta is passed to `on_chunk` as it arrives.
        
        Returns:
            (full text, usage dict with prompt/completion/total tokens)
        """
        start_time = time.time()
        status = "success"
        parts = []
        usage: Dict[str, int] = {}
        try:
            stream = await self.client.chat.completions.create(
                model=self.answer_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.answer_temperature,
                max_tokens=self.answer_max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in stream:
                if getattr(chunk, "usage", None):
                    usage = {
                        "prompt_tokens": chunk.usage.prompt_tokens,
                        "completion_tokens": chunk.usage.completion_tokens,
                        "total_tokens": chunk.usage.total_tokens,
                    }
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content or ""
                if not content:
                    continue
                parts.append(content)
                if on_chunk is not None:
                    result = on_chunk(content)
                    if asyncio.iscoroutine(result):
                        await result
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception as e:
            status = "failure"
            raise wrap_llm_error(e, "openai")
        finally:
            llm_calls_total.labels(purpose="answer", model=self.answer_model, status=status).inc()
            llm_call_duration.labels(purpose="answer", model=self.answer_model).observe(time.time() - start_time)
        
        text = "".join(parts)
        if not usage:
            # Streams without a usage chunk: estimate locally
            prompt_tokens = count_tokens(system_prompt) + count_tokens(user_prompt)
            completion_tokens = count_tokens(text)
            usage = {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
                "estimated": True,
            }
        
        llm_tokens_total.labels(model=self.answer_model, type="prompt").inc(usage["prompt_tokens"])
        llm_tokens_total.labels(model=self.answer_model, type="completion").inc(usage["completion_tokens"])
        return text, usage
