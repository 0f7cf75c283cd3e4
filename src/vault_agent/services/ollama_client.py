"""Ollama model-runtime client.

Chat goes through Ollama's OpenAI-compatible ``/v1`` endpoint with the OpenAI SDK;
model listing and template inspection use the native ``/api/tags`` and ``/api/show``
endpoints over httpx.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from openai import AsyncOpenAI

from ..config import OllamaConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

StreamCallback = Callable[[str], None]

# Models that support thinking/reasoning mode
THINKING_CAPABLE_PREFIXES = ("qwen3", "deepseek-r1", "magistral", "qwq", "cogito")

_THINK_BLOCK_RE = re.compile(r"<think>[\s\S]*?</think>\s*", re.IGNORECASE)

# Baseline: 7B+ parameters with tool-calling support
MODEL_RECOMMENDATIONS: list[dict[str, str]] = [
    {"name": "qwen2.5:7b-instruct", "size": "~4.5GB", "ram": "8GB", "tool_calling": "Excellent",
     "notes": "Strong tool selection"},
    {"name": "qwen3:8b", "size": "~5GB", "ram": "8GB", "tool_calling": "Excellent", "notes": "Thinking + tools"},
    {"name": "llama3.1:8b", "size": "~4.5GB", "ram": "8GB", "tool_calling": "Good",
     "notes": "Meta's reliable workhorse"},
    {"name": "mistral-nemo:12b", "size": "~7GB", "ram": "12GB", "tool_calling": "Good", "notes": "128k context"},
    {"name": "deepseek-r1:8b", "size": "~5GB", "ram": "8GB", "tool_calling": "Good", "notes": "Reasoning model"},
    {"name": "qwen2.5:14b-instruct", "size": "~9GB", "ram": "16GB", "tool_calling": "Excellent",
     "notes": "Best mid-range quality"},
]


class RequestCancelledError(Exception):
    """Raised when a chat request is abandoned because the cancel event was set."""


@dataclass
class ToolCall:
    name: str
    arguments: dict[str, Any]
    id: str = ""


@dataclass
class ChatResult:
    message: dict[str, Any]
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class ModelInfo:
    name: str
    size: str
    size_bytes: int
    parameter_size: str
    quantization: str
    modified: datetime | None = None
    supports_tools: bool | None = None
    supports_thinking: bool | None = None


def is_thinking_capable(model_name: str) -> bool:
    return model_name.lower().startswith(THINKING_CAPABLE_PREFIXES)


def filter_thinking_blocks(content: str) -> str:
    """Remove ``<think>...</think>`` reasoning segments from a model answer."""
    return _THINK_BLOCK_RE.sub("", content).strip()


def format_bytes(num: int) -> str:
    if num <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 1):g} {units[i]}"


def _parse_params_billions(parameter_size: str) -> float | None:
    text = parameter_size.lower()
    match = re.search(r"[0-9.]+", text)
    if not match:
        return None
    value = float(match.group())
    return value if "b" in text else value / 1000


def _parse_modified(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


async def race_cancel(coro: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
    """Await ``coro`` unless ``cancel_event`` fires first, in which case the request is abandoned."""
    if cancel_event is None:
        return await coro
    if cancel_event.is_set():
        if asyncio.iscoroutine(coro):
            coro.close()
        raise RequestCancelledError()

    request_task = asyncio.ensure_future(coro)
    cancel_task = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _pending = await asyncio.wait({request_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_task.cancel()
    if request_task in done:
        return request_task.result()

    request_task.cancel()
    try:
        await asyncio.wait_for(request_task, timeout=5.0)
    except (asyncio.CancelledError, asyncio.TimeoutError):
        pass
    except Exception:
        logger.debug("Abandoned request raised", exc_info=True)
    raise RequestCancelledError()


class OllamaClient:
    def __init__(self, config: OllamaConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self.base_url = config.base_url.rstrip("/")
        self._model = config.model
        self.options = dict(config.options)
        self._http = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=httpx.Timeout(30.0, read=600.0))
        self.client = AsyncOpenAI(base_url=f"{self.base_url}/v1", api_key="ollama", http_client=self._http)

    @property
    def model(self) -> str:
        return self._model

    def set_model(self, model: str) -> None:
        self._model = model

    # ------------------------------------------------------------------
    # Model discovery
    # ------------------------------------------------------------------

    async def list_models(self) -> list[ModelInfo]:
        response = await self._http.get(f"{self.base_url}/api/tags")
        response.raise_for_status()
        models = []
        for m in response.json().get("models", []):
            details = m.get("details") or {}
            size = int(m.get("size", 0))
            models.append(
                ModelInfo(
                    name=m["name"],
                    size=format_bytes(size),
                    size_bytes=size,
                    parameter_size=details.get("parameter_size") or "unknown",
                    quantization=details.get("quantization_level") or "unknown",
                    modified=_parse_modified(m.get("modified_at")),
                )
            )
        return models

    async def list_models_sorted(self) -> list[ModelInfo]:
        """Installed models, largest first."""
        models = await self.list_models()
        return sorted(models, key=lambda m: m.size_bytes, reverse=True)

    async def show_template(self, model_name: str) -> str:
        response = await self._http.post(f"{self.base_url}/api/show", json={"model": model_name})
        response.raise_for_status()
        return response.json().get("template") or ""

    async def check_tool_support(self, model_name: str) -> bool:
        """Heuristic: templates of tool-capable models reference ``.Tools``."""
        try:
            template = await self.show_template(model_name)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Could not inspect template for %s: %s", model_name, e)
            return False
        return ".Tools" in template

    async def list_models_with_tool_support(self) -> list[ModelInfo]:
        models = await self.list_models_sorted()
        checks = await asyncio.gather(*(self.check_tool_support(m.name) for m in models))
        for m, supports in zip(models, checks):
            m.supports_tools = supports
            m.supports_thinking = is_thinking_capable(m.name)
        return models

    async def check_connection(self) -> bool:
        try:
            await self.list_models()
            return True
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Ollama connection check failed: %s", e)
            return False

    async def check_model_available(self) -> bool:
        try:
            models = await self.list_models()
        except (httpx.HTTPError, ValueError):
            return False
        family = self._model.split(":")[0]
        return any(m.name == self._model or m.name.startswith(family) for m in models)

    async def check_model_size(self) -> tuple[bool, str | None]:
        """Return ``(ok, warning)`` based on the current model's parameter count."""
        try:
            models = await self.list_models()
        except (httpx.HTTPError, ValueError):
            return True, None
        model = next((m for m in models if m.name == self._model), None)
        if model is None:
            return True, None
        params = _parse_params_billions(model.parameter_size)
        if params is None:
            return True, None
        if params < 3:
            return False, (
                f"Model {self._model} ({model.parameter_size}) may be too small for reliable tool calling. "
                "Recommend 7B+ models."
            )
        if params < 7:
            return True, (
                f"Model {self._model} ({model.parameter_size}) works but 7B+ models perform better for tool calling."
            )
        return True, None

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def _request_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self._model}
        extra = dict(self.options)
        if "temperature" in extra:
            kwargs["temperature"] = extra.pop("temperature")
        if extra:
            kwargs["extra_body"] = {"options": extra}
        return kwargs

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        cancel_event: asyncio.Event | None = None,
        on_stream: StreamCallback | None = None,
    ) -> ChatResult:
        # Streaming is only used for tool-free requests
        if on_stream is not None and not tools:
            return await race_cancel(self._chat_streaming(messages, on_stream), cancel_event)

        kwargs = self._request_kwargs()
        if tools:
            kwargs["tools"] = tools
        response = await race_cancel(
            self.client.chat.completions.create(messages=messages, **kwargs),
            cancel_event,
        )

        msg = response.choices[0].message
        tool_calls: list[ToolCall] = []
        for tc in msg.tool_calls or []:
            raw_args = tc.function.arguments or "{}"
            try:
                arguments = json.loads(raw_args) if isinstance(raw_args, str) else dict(raw_args)
            except json.JSONDecodeError:
                logger.warning("Model sent malformed arguments for %s: %r", tc.function.name, raw_args)
                arguments = {}
            tool_calls.append(ToolCall(name=tc.function.name, arguments=arguments, id=tc.id or ""))

        message: dict[str, Any] = {"role": "assistant", "content": msg.content or ""}
        if tool_calls:
            message["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                }
                for tc in tool_calls
            ]
        return ChatResult(message=message, tool_calls=tool_calls)

    async def _chat_streaming(self, messages: list[dict[str, Any]], on_stream: StreamCallback) -> ChatResult:
        stream = await self.client.chat.completions.create(messages=messages, stream=True, **self._request_kwargs())
        parts: list[str] = []
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                parts.append(delta)
                on_stream(delta)
        return ChatResult(message={"role": "assistant", "content": "".join(parts)})

    async def close(self) -> None:
        await self._http.aclose()
