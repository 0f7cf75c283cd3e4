"""Tool-calling orchestrator: bounded model -> tool -> model loop over one conversation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..config import AgentConfig
from .export import export_chat_markdown
from .mcp_manager import McpManager
from .ollama_client import OllamaClient, RequestCancelledError, race_cancel

logger = logging.getLogger(__name__)

NO_RESPONSE = "(No response)"
CANCELLED_RESULT = "Error: Cancelled by user"


def _tool_message(content: str, call_id: str) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "tool", "content": content}
    if call_id:
        message["tool_call_id"] = call_id
    return message


@dataclass
class AgentEvent:
    kind: str
    data: dict[str, Any]


@dataclass
class AgentResponse:
    content: str
    tools_used: list[str] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class ChatTurn:
    role: str  # "user" or "assistant"
    content: str
    tools_used: list[str] | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    cancelled: bool = False


class Agent:
    def __init__(
        self,
        ollama_client: OllamaClient,
        mcp_manager: McpManager,
        config: AgentConfig,
        on_event: Callable[[AgentEvent], None] | None = None,
    ) -> None:
        self.ollama_client = ollama_client
        self.mcp_manager = mcp_manager
        self.config = config
        self.on_event = on_event
        self.conversation_history: list[dict[str, Any]] = [self._system_message()]
        self.chat_history: list[ChatTurn] = []
        self.session_start = datetime.now()
        self._turn_lock = asyncio.Lock()

    def _system_message(self) -> dict[str, Any]:
        return {"role": "system", "content": self.config.system_prompt}

    def _emit(self, kind: str, **data: Any) -> None:
        if self.on_event is not None:
            self.on_event(AgentEvent(kind=kind, data=data))

    @property
    def model(self) -> str:
        return self.ollama_client.model

    def set_model(self, model: str) -> None:
        self.ollama_client.set_model(model)

    async def chat(self, user_message: str, cancel_event: asyncio.Event | None = None) -> AgentResponse:
        """Answer one user utterance, letting the model call tools up to ``max_tool_calls`` times.

        Tool failures never abort the turn: the error text is fed back to the model as the
        tool result. If ``cancel_event`` is set, the in-flight model or tool call is abandoned
        and the response comes back with ``cancelled=True``. Turns on one agent run one at a
        time; a new turn waits for an abandoned one to finish unwinding.
        """
        async with self._turn_lock:
            return await self._run_turn(user_message, cancel_event)

    async def _run_turn(self, user_message: str, cancel_event: asyncio.Event | None) -> AgentResponse:
        tools_used: list[str] = []

        self.chat_history.append(ChatTurn(role="user", content=user_message))
        self.conversation_history.append({"role": "user", "content": user_message})

        tools = self.mcp_manager.get_openai_tools()
        tool_call_count = 0

        try:
            while tool_call_count < self.config.max_tool_calls:
                response = await self.ollama_client.chat(
                    self.conversation_history,
                    tools=tools or None,
                    cancel_event=cancel_event,
                )
                self.conversation_history.append(response.message)

                if not response.tool_calls:
                    content = response.message.get("content") or ""
                    return self._finish(content, tools_used)

                # Sequential, in reply order: each result must be in history before the next model call
                for i, tool_call in enumerate(response.tool_calls):
                    try:
                        if cancel_event is not None and cancel_event.is_set():
                            raise RequestCancelledError()
                        tool_call_count += 1
                        tools_used.append(tool_call.name)
                        result = await self._dispatch(tool_call.name, tool_call.arguments, cancel_event)
                    except RequestCancelledError:
                        for skipped in response.tool_calls[i:]:
                            self.conversation_history.append(_tool_message(CANCELLED_RESULT, skipped.id))
                        raise
                    self.conversation_history.append(_tool_message(result, tool_call.id))

            logger.info("Tool call budget (%d) exhausted, requesting final answer", self.config.max_tool_calls)
            final = await self.ollama_client.chat(self.conversation_history, cancel_event=cancel_event)
        except RequestCancelledError:
            logger.info("Turn cancelled after %d tool calls", tool_call_count)
            self.chat_history.append(
                ChatTurn(role="assistant", content="", tools_used=list(tools_used) or None, cancelled=True)
            )
            return AgentResponse(content="", tools_used=tools_used, cancelled=True)

        self.conversation_history.append(final.message)
        return self._finish(final.message.get("content") or NO_RESPONSE, tools_used)

    async def _dispatch(self, name: str, arguments: dict[str, Any], cancel_event: asyncio.Event | None) -> str:
        self._emit("tool_call_start", tool_name=name, arguments=arguments)
        try:
            result = await race_cancel(self.mcp_manager.call_tool(name, arguments), cancel_event)
        except RequestCancelledError:
            logger.info("Tool %s abandoned on cancel", name)
            raise
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            self._emit("tool_call_end", tool_name=name, status="error", output=str(e))
            return f"Error: {e}"
        self._emit("tool_call_end", tool_name=name, status="success", output=result)
        return result

    def _finish(self, content: str, tools_used: list[str]) -> AgentResponse:
        self.chat_history.append(
            ChatTurn(role="assistant", content=content, tools_used=list(tools_used) if tools_used else None)
        )
        return AgentResponse(content=content, tools_used=tools_used)

    def clear_history(self) -> None:
        self.conversation_history = [self._system_message()]
        self.chat_history = []
        self.session_start = datetime.now()

    def export_to_markdown(self) -> str:
        return export_chat_markdown(self.chat_history, model=self.model, session_start=self.session_start)

