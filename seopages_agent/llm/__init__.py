"""Completion endpoint contract and an OpenAI-compatible streaming provider."""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from seopages_agent.config import ModelConfig
from seopages_agent.exceptions import ConfigurationError, GenerationStreamError, LLMAPIError, LLMError
from seopages_agent.logging import get_logger
from seopages_agent.session import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Turn

log = get_logger(__name__)


OPENAI_BASE_URL = "https://api.openai.com/v1"

TOOL_CATEGORY_ARTIFACT = "artifact"
TOOL_CATEGORY_GENERIC = "generic"


@dataclass(frozen=True)
class ToolSpec:
    """Declared tool capability offered to the model."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema
    category: str = TOOL_CATEGORY_GENERIC


ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[Any]]


@dataclass
class CompletionRequest:
    """Everything the completion endpoint receives for one generation."""

    system_instructions: str
    turns: list[Turn]
    available_tools: list[ToolSpec] = field(default_factory=list)
    tool_executor: ToolExecutor | None = None
    max_steps: int = 1
    temperature: float | None = None
    max_tokens: int | None = None


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStarted:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class ToolCallFinished:
    tool_call_id: str
    tool_name: str
    result: Any


@dataclass(frozen=True)
class StreamFinished:
    """Normal end of a generation."""

    message_id: str
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamFailed:
    """Terminal error event."""

    message: str
    status_code: int | None = None


StreamEvent = TextDelta | ToolCallStarted | ToolCallFinished | StreamFinished | StreamFailed


class LLMProvider(ABC):
    """Abstract base class for completion endpoints.

    A stream always ends with exactly one StreamFinished or StreamFailed event.
    """

    @abstractmethod
    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        pass

    async def close(self) -> None:
        return None


def turns_to_messages(system_instructions: str, turns: list[Turn]) -> list[dict[str, Any]]:
    """Convert turns to chat-completions messages.

    Invocations still pending a result are dropped; an assistant tool call
    without a matching tool message is rejected by the endpoint.
    """
    messages: list[dict[str, Any]] = []
    if system_instructions:
        messages.append({"role": "system", "content": system_instructions})

    for turn in turns:
        if turn.role in (ROLE_SYSTEM, ROLE_USER):
            messages.append({"role": turn.role, "content": turn.content})
            continue
        if turn.role != ROLE_ASSISTANT:
            continue

        completed = [inv for inv in turn.tool_invocations if not inv.is_pending]
        entry: dict[str, Any] = {"role": "assistant", "content": turn.content or ""}
        if completed:
            entry["tool_calls"] = [
                {
                    "id": inv.tool_call_id,
                    "type": "function",
                    "function": {
                        "name": inv.tool_name,
                        "arguments": json.dumps(inv.args, ensure_ascii=True, default=str),
                    },
                }
                for inv in completed
            ]
        messages.append(entry)
        for inv in completed:
            messages.append({
                "role": "tool",
                "tool_call_id": inv.tool_call_id,
                "content": json.dumps(inv.result, default=str),
            })
    return messages


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class _RoundState:
    """Accumulated state of one streamed chat-completions round."""

    text: str = ""
    finish_reason: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    calls: dict[int, _PendingCall] = field(default_factory=dict)

    def add_fragment(self, fragment: dict[str, Any]) -> None:
        index = int(fragment.get("index", len(self.calls)))
        call = self.calls.setdefault(index, _PendingCall())
        if fragment.get("id"):
            call.id = str(fragment["id"])
        function = fragment.get("function") or {}
        if function.get("name"):
            call.name += str(function["name"])
        if function.get("arguments"):
            call.arguments += str(function["arguments"])

    def finalized_calls(self) -> list[ToolCallStarted]:
        started: list[ToolCallStarted] = []
        for index in sorted(self.calls):
            call = self.calls[index]
            if not call.name:
                continue
            try:
                args = json.loads(call.arguments) if call.arguments else {}
            except json.JSONDecodeError:
                args = {"_raw_arguments": call.arguments}
            if not isinstance(args, dict):
                args = {"value": args}
            started.append(ToolCallStarted(
                tool_call_id=call.id or f"call_{index + 1}",
                tool_name=call.name,
                args=args,
            ))
        return started


class OpenAICompatibleProvider(LLMProvider):
    """Streaming chat-completions provider for Azure OpenAI and OpenAI."""

    def __init__(
        self,
        model: str = "gpt-4.1",
        api_key: str = "",
        base_url: str = OPENAI_BASE_URL,
        azure: bool = False,
        api_version: str = "2024-10-21",
        temperature: float = 0.7,
        max_tokens: int = 16000,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the provider.

        Args:
            model: Model name, or deployment name for Azure
            api_key: Endpoint credential
            base_url: API base URL (Azure resource endpoint when azure=True)
            azure: Use Azure deployment routing and api-key header
            api_version: Azure API version query parameter
            temperature: Sampling temperature
            max_tokens: Max tokens to generate per round
            timeout: Read timeout for the streaming HTTP call
            client: Optional preconfigured HTTP client
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.azure = azure
        self.api_version = api_version
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0),
            follow_redirects=True,
        )

    def _endpoint(self) -> str:
        if self.azure:
            return (
                f"{self.base_url}/openai/deployments/{self.model}/chat/completions"
                f"?api-version={self.api_version}"
            )
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.azure:
            headers["api-key"] = self.api_key
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _convert_tools(tools: list[ToolSpec]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameters": tool.parameters or {"type": "object", "properties": {}},
                },
            }
            for tool in tools
            if tool.name
        ]

    async def _stream_round(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        request: CompletionRequest,
        state: _RoundState,
    ) -> AsyncIterator[StreamEvent]:
        body: dict[str, Any] = {
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            "temperature": request.temperature if request.temperature is not None else self.temperature,
            "max_tokens": request.max_tokens or self.max_tokens,
        }
        if not self.azure:
            body["model"] = self.model
        if tools:
            body["tools"] = tools

        log.debug("Calling completion endpoint", model=self.model, msg_count=len(messages), tools=len(tools))
        async with self.client.stream("POST", self._endpoint(), json=body, headers=self._headers()) as response:
            if not response.is_success:
                error_text = (await response.aread()).decode("utf-8", errors="replace")
                raise LLMAPIError(
                    f"Completion API error {response.status_code}: {error_text}",
                    status_code=response.status_code,
                )

            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if payload == "[DONE]":
                    break
                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    continue

                if isinstance(chunk.get("error"), dict):
                    raise GenerationStreamError(str(chunk["error"].get("message") or chunk["error"]))
                if isinstance(chunk.get("usage"), dict):
                    state.usage = {k: int(v) for k, v in chunk["usage"].items() if isinstance(v, int)}
                for choice in chunk.get("choices") or []:
                    delta = choice.get("delta") or {}
                    text = delta.get("content")
                    if text:
                        state.text += text
                        yield TextDelta(text=text)
                    for fragment in delta.get("tool_calls") or []:
                        state.add_fragment(fragment)
                    if choice.get("finish_reason"):
                        state.finish_reason = str(choice["finish_reason"])

        for started in state.finalized_calls():
            yield started

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Stream a completion, running tool rounds up to request.max_steps."""
        messages = turns_to_messages(request.system_instructions, request.turns)
        tools = self._convert_tools(request.available_tools)
        message_id = f"msg-{uuid.uuid4().hex}"
        usage: dict[str, int] = {}

        for step in range(max(1, request.max_steps)):
            state = _RoundState()
            calls: list[ToolCallStarted] = []
            try:
                async for event in self._stream_round(messages, tools, request, state):
                    if isinstance(event, ToolCallStarted):
                        calls.append(event)
                    yield event
            except LLMAPIError as e:
                yield StreamFailed(message=str(e), status_code=e.status_code)
                return
            except httpx.HTTPError as e:
                yield StreamFailed(message=f"Completion HTTP error: {e}")
                return
            except LLMError as e:
                yield StreamFailed(message=str(e))
                return

            for key, value in state.usage.items():
                usage[key] = usage.get(key, 0) + value

            if not calls or request.tool_executor is None:
                yield StreamFinished(
                    message_id=message_id,
                    finish_reason=state.finish_reason or "stop",
                    usage=usage,
                )
                return

            messages.append({
                "role": "assistant",
                "content": state.text,
                "tool_calls": [
                    {
                        "id": call.tool_call_id,
                        "type": "function",
                        "function": {"name": call.tool_name, "arguments": json.dumps(call.args, default=str)},
                    }
                    for call in calls
                ],
            })
            for call in calls:
                result = await request.tool_executor(call.tool_name, call.args)
                yield ToolCallFinished(tool_call_id=call.tool_call_id, tool_name=call.tool_name, result=result)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.tool_call_id,
                    "content": json.dumps(result, default=str),
                })
            log.debug("Tool round finished", step=step + 1, tools=[call.tool_name for call in calls])

        yield StreamFinished(message_id=message_id, finish_reason="max_steps", usage=usage)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(config: ModelConfig, timeout: float = 300.0) -> LLMProvider:
    """Create a completion provider from model configuration.

    Raises:
        ConfigurationError: credentials or endpoint are missing, or the
            provider name is unknown
    """
    provider = config.provider.strip().lower()
    if provider == "azure":
        if not config.api_key:
            raise ConfigurationError(
                "Azure OpenAI API key is not configured. "
                "Set model.api_key or SEOPAGES_MODEL__API_KEY."
            )
        base_url = config.base_url
        if not base_url and config.resource_name:
            base_url = f"https://{config.resource_name}.openai.azure.com"
        if not base_url:
            raise ConfigurationError(
                "Azure OpenAI endpoint is not configured. "
                "Set model.base_url or model.resource_name."
            )
        return OpenAICompatibleProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=base_url,
            azure=True,
            api_version=config.api_version,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=timeout,
        )
    if provider == "openai":
        if not config.api_key:
            raise ConfigurationError(
                "OpenAI API key is not configured. Set model.api_key or SEOPAGES_MODEL__API_KEY."
            )
        return OpenAICompatibleProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url or OPENAI_BASE_URL,
            azure=False,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=timeout,
        )
    raise ConfigurationError(f"Provider '{config.provider}' not supported. Use 'azure' or 'openai'.")
