"""The agent execution loop: LLM turns interleaved with tool calls."""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .cancellation import CancellationToken
from .constants import CHARS_PER_TOKEN, DEFAULT_MAX_ITERATIONS, DEFAULT_TEMPERATURE
from .errors import (
    AgentError,
    AgentErrorCode,
    ExecutionCanceled,
    LlmError,
    LlmErrorCode,
    MaxIterationsExceeded,
    OperationTimeout,
    ToolError,
    ToolErrorCode,
)
from .events.bus import EventBus, EventEmitter
from .events.models import UNKNOWN_TOOL_ID, is_tool_id
from .llm.types import ChatClient, ChatMessage, ChatOptions, ChatResponse, ToolCall, Usage
from .tools.base import ToolStatus
from .tools.loop_detection import ToolCallTracker, ToolLoopDetectionConfig
from .tools.registry import ToolRegistry
from .utils.timeout import TimeoutPolicy

logger = logging.getLogger(__name__)


class AgentConfig(BaseModel):
    """Static description of an agent."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    system_prompt: str = ""
    tools: Optional[ToolRegistry] = None
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    temperature: Optional[float] = DEFAULT_TEMPERATURE
    max_tokens: Optional[int] = None
    streaming: bool = False
    tool_loop_detection: ToolLoopDetectionConfig = Field(default_factory=ToolLoopDetectionConfig)
    timeout: TimeoutPolicy = Field(default_factory=TimeoutPolicy)

    @field_validator("name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        if not value or ":" in value:
            raise ValueError("agent name must be non-empty and must not contain ':'")
        return value


class AgentInput(BaseModel):
    """What an agent is asked to work on."""

    data: Any = None
    chat_history: Optional[List[ChatMessage]] = None
    step_index: int = 0
    previous_step: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "AgentInput":
        return cls(data=text)

    @classmethod
    def from_value(cls, value: Any) -> "AgentInput":
        return cls(data=value)

    @classmethod
    def from_messages(cls, messages: List[ChatMessage]) -> "AgentInput":
        """Run on an existing conversation without adding a user message."""
        return cls(chat_history=list(messages))

    def text(self) -> Optional[str]:
        if self.data is None:
            return None
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, indent=2, default=str)


class AgentOutput(BaseModel):
    agent_name: str
    response: str
    data: Dict[str, Any]
    chat_history: List[ChatMessage]
    new_messages: List[ChatMessage] = Field(default_factory=list)
    llm_calls: int = 0
    tool_calls: int = 0
    usage: Optional[Usage] = None
    execution_time_ms: int = 0


class Agent:
    """Runs the LLM/tool loop for one :class:`AgentConfig`."""

    def __init__(self, config: AgentConfig, llm_client: Optional[ChatClient] = None) -> None:
        self.config = config
        self.llm_client = llm_client

    @property
    def name(self) -> str:
        return self.config.name

    def _compose(self, agent_input: AgentInput) -> Tuple[List[ChatMessage], int]:
        messages: List[ChatMessage] = []
        prompt = self.config.system_prompt
        if prompt:
            messages.append(ChatMessage.system(prompt))
        history = list(agent_input.chat_history or [])
        if prompt and history and history[0].is_system and history[0].content == prompt:
            history = history[1:]
        messages.extend(history)
        new_start = len(messages)
        text = agent_input.text()
        if text is not None:
            messages.append(ChatMessage.user(text))
        return messages, new_start

    async def execute(
        self,
        agent_input: Any = None,
        *,
        events: Optional[EventEmitter] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AgentOutput:
        """Run the loop until the model answers without requesting tools.

        Raises:
            MaxIterationsExceeded: the model kept requesting tools.
            AgentError: the LLM request failed or no client is configured.
            ExecutionCanceled: ``cancel`` was triggered between iterations.
        """
        if not isinstance(agent_input, AgentInput):
            agent_input = AgentInput.from_value(agent_input)
        events = events or EventBus().emitter()
        messages, new_start = self._compose(agent_input)

        events.agent_started(
            self.name,
            {
                "message_count": len(messages),
                "max_iterations": self.config.max_iterations,
                "step_index": agent_input.step_index,
            },
        )
        logger.info(f"Agent {self.name} started with {len(messages)} messages")

        try:
            output = await self._run(messages, new_start, events, cancel)
        except ExecutionCanceled as exc:
            events.agent_canceled(self.name, str(exc))
            logger.info(f"Agent {self.name} canceled")
            raise
        except AgentError as exc:
            events.agent_failed(self.name, str(exc), exc.to_data())
            logger.error(f"Agent {self.name} failed: {exc}")
            raise
        except Exception as exc:
            error = AgentError(f"Agent {self.name} failed: {exc}", AgentErrorCode.EXECUTION_FAILED, self.name)
            events.agent_failed(self.name, error.message, error.to_data())
            logger.error(error.message)
            raise error from exc

        events.agent_completed(
            self.name,
            {
                "response": output.response,
                "llm_calls": output.llm_calls,
                "tool_calls": output.tool_calls,
                "usage": output.usage.model_dump() if output.usage else None,
                "execution_time_ms": output.execution_time_ms,
            },
        )
        logger.info(
            f"Agent {self.name} completed after {output.llm_calls} LLM calls in {output.execution_time_ms}ms"
        )
        return output

    async def _run(
        self,
        messages: List[ChatMessage],
        new_start: int,
        events: EventEmitter,
        cancel: Optional[CancellationToken],
    ) -> AgentOutput:
        if self.llm_client is None:
            raise AgentError(
                f"Agent {self.name} has no LLM client", AgentErrorCode.MISSING_LLM_CLIENT, self.name
            )
        start = time.perf_counter()
        tracker = ToolCallTracker() if self.config.tool_loop_detection.enabled else None
        usage: Optional[Usage] = None
        tool_calls = 0
        iteration = 0

        while True:
            if cancel is not None:
                cancel.raise_if_canceled()
            if iteration >= self.config.max_iterations:
                raise MaxIterationsExceeded(self.name, self.config.max_iterations)

            response = await self._request(messages, iteration, events)
            iteration += 1
            if response.usage is not None:
                usage = response.usage if usage is None else usage + response.usage

            if not response.tool_calls:
                messages.append(ChatMessage.assistant(response.content))
                break

            messages.append(ChatMessage.assistant(response.content, response.tool_calls))
            for call in response.tool_calls:
                tool_calls += 1
                messages.append(await self._call_tool(call, tracker, events))

        text = response.content
        if usage is not None and usage.total_tokens:
            token_count = usage.total_tokens
        else:
            token_count = math.ceil(len(text) / CHARS_PER_TOKEN)

        return AgentOutput(
            agent_name=self.name,
            response=text,
            data={"response": text, "content_type": "text/plain", "token_count": token_count},
            chat_history=messages,
            new_messages=messages[new_start:],
            llm_calls=iteration,
            tool_calls=tool_calls,
            usage=usage,
            execution_time_ms=int((time.perf_counter() - start) * 1000),
        )

    async def _request(
        self, messages: List[ChatMessage], iteration: int, events: EventEmitter
    ) -> ChatResponse:
        registry = self.config.tools
        options = ChatOptions(
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            tools=registry.schemas() if registry else None,
        )
        streaming = self.config.streaming and hasattr(self.llm_client, "complete_streaming")
        events.llm_started(
            self.name, iteration, {"message_count": len(messages), "streaming": streaming}
        )
        operation = f"{self.name}:llm:{iteration}"
        try:
            if streaming:
                response = await self.config.timeout.run(
                    operation, self._stream(messages, options, iteration, events)
                )
            else:
                response = await self.config.timeout.run(
                    operation, self.llm_client.complete(list(messages), options)
                )
        except Exception as exc:
            if isinstance(exc, LlmError):
                error = exc
            elif isinstance(exc, OperationTimeout):
                error = LlmError(str(exc), LlmErrorCode.TIMEOUT)
            else:
                error = LlmError(str(exc))
            events.llm_failed(self.name, iteration, str(error), error.to_data())
            raise AgentError(
                f"LLM request failed for agent {self.name}: {error}",
                AgentErrorCode.LLM_REQUEST_FAILED,
                self.name,
            ) from exc

        events.llm_completed(
            self.name,
            iteration,
            {
                "content_length": len(response.content),
                "tool_calls": [call.name for call in response.tool_calls],
                "finish_reason": response.finish_reason,
                "usage": response.usage.model_dump() if response.usage else None,
            },
        )
        return response

    async def _stream(
        self, messages: List[ChatMessage], options: ChatOptions, iteration: int, events: EventEmitter
    ) -> ChatResponse:
        parts: List[str] = []
        final: Optional[ChatResponse] = None
        stream = self.llm_client.complete_streaming(list(messages), options).__aiter__()
        first = True
        try:
            while True:
                try:
                    if first:
                        chunk = await self.config.timeout.first_response_within(
                            f"{self.name}:llm:{iteration}", stream.__anext__()
                        )
                        first = False
                    else:
                        chunk = await stream.__anext__()
                except StopAsyncIteration:
                    break
                if chunk.delta:
                    parts.append(chunk.delta)
                    events.llm_progress(self.name, iteration, chunk.delta)
                if chunk.response is not None:
                    final = chunk.response
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        content = "".join(parts)
        if final is None:
            return ChatResponse(content=content)
        if not final.content and content:
            return final.model_copy(update={"content": content})
        return final

    async def _call_tool(
        self, call: ToolCall, tracker: Optional[ToolCallTracker], events: EventEmitter
    ) -> ChatMessage:
        if tracker is not None:
            previous = tracker.lookup(call.name, call.arguments)
            if previous is not None:
                content = self.config.tool_loop_detection.render_message(call.name, previous.result)
                logger.warning(f"Agent {self.name} repeated {call.name} with identical arguments")
                events.system_progress(
                    "tool_loop_detection",
                    f"Repeated call to {call.name} answered from previous result",
                    {
                        "agent": self.name,
                        "tool": call.name,
                        "arguments": call.arguments,
                        "previous_result": previous.result,
                        "repeat_count": previous.repeat_count,
                        "message": content,
                    },
                )
                return ChatMessage.tool_result(call.id, content, name=call.name)

        component = call.name if is_tool_id(call.name) else UNKNOWN_TOOL_ID
        events.tool_started(
            component, {"agent": self.name, "tool_call_id": call.id, "arguments": call.arguments}
        )
        try:
            if self.config.tools is None:
                raise ToolError(f"Tool not found: {call.name}", ToolErrorCode.NOT_FOUND, call.name)
            result = await self.config.timeout.run(
                f"tool {call.name}", self.config.tools.call_tool(call.name, call.arguments)
            )
        except ToolError as exc:
            return self._tool_failed(call, component, exc, events)
        except OperationTimeout as exc:
            error = ToolError(str(exc), ToolErrorCode.TIMEOUT, call.name)
            return self._tool_failed(call, component, error, events)

        data = {
            "tool_call_id": call.id,
            "status": result.status.value,
            "duration_ms": result.duration_ms,
            "result": result.payload(),
        }
        if result.status == ToolStatus.ERROR:
            events.tool_failed(component, result.message or f"Tool {call.name} reported an error", data)
        else:
            events.tool_completed(component, data)
            if tracker is not None:
                tracker.record(call.name, call.arguments, result.payload())
        return ChatMessage.tool_result(call.id, result.to_content(), name=call.name)

    def _tool_failed(
        self, call: ToolCall, component: str, error: ToolError, events: EventEmitter
    ) -> ChatMessage:
        events.tool_failed(component, str(error), {"tool_call_id": call.id, **error.to_data()})
        logger.warning(f"Agent {self.name}: {error}")
        return ChatMessage.tool_result(call.id, f"Error: {error}", name=call.name)
