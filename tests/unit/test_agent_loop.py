"""Tests for the tool-calling agent loop."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from vault_agent.config import AgentConfig
from vault_agent.services.agent_loop import CANCELLED_RESULT, NO_RESPONSE, Agent, AgentEvent
from vault_agent.services.mcp_manager import ToolNotFoundError
from vault_agent.services.ollama_client import ChatResult, RequestCancelledError, ToolCall


def _answer(content: str) -> ChatResult:
    return ChatResult(message={"role": "assistant", "content": content})


def _tool_reply(*calls: tuple[str, dict[str, Any]]) -> ChatResult:
    tool_calls = [ToolCall(name=name, arguments=args, id=f"call_{i}") for i, (name, args) in enumerate(calls)]
    return ChatResult(message={"role": "assistant", "content": "", "tool_calls": []}, tool_calls=tool_calls)


def _make_agent(max_tool_calls: int = 10, events: list[AgentEvent] | None = None) -> Agent:
    ollama = MagicMock()
    ollama.model = "qwen2.5:7b-instruct"
    ollama.chat = AsyncMock()
    mcp = MagicMock()
    mcp.get_openai_tools.return_value = [{"type": "function", "function": {"name": "search"}}]
    mcp.call_tool = AsyncMock(return_value="tool output")
    config = AgentConfig(max_tool_calls=max_tool_calls, system_prompt="SYSTEM")
    return Agent(ollama, mcp, config, on_event=events.append if events is not None else None)


class TestPlainAnswer:
    @pytest.mark.asyncio()
    async def test_answer_without_tools(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.return_value = _answer("hello")

        response = await agent.chat("hi")

        assert response.content == "hello"
        assert response.tools_used == []
        assert response.cancelled is False
        roles = [m["role"] for m in agent.conversation_history]
        assert roles == ["system", "user", "assistant"]

    @pytest.mark.asyncio()
    async def test_tools_declared_to_model(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.return_value = _answer("ok")
        await agent.chat("hi")
        _, kwargs = agent.ollama_client.chat.call_args
        assert kwargs["tools"] == agent.mcp_manager.get_openai_tools.return_value

    @pytest.mark.asyncio()
    async def test_no_tools_means_none(self) -> None:
        agent = _make_agent()
        agent.mcp_manager.get_openai_tools.return_value = []
        agent.ollama_client.chat.return_value = _answer("ok")
        await agent.chat("hi")
        _, kwargs = agent.ollama_client.chat.call_args
        assert kwargs["tools"] is None

    @pytest.mark.asyncio()
    async def test_empty_answer_kept_when_loop_ends_normally(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.return_value = _answer("")
        response = await agent.chat("hi")
        assert response.content == ""


class TestToolLoop:
    @pytest.mark.asyncio()
    async def test_tool_then_answer(self) -> None:
        events: list[AgentEvent] = []
        agent = _make_agent(events=events)
        agent.ollama_client.chat.side_effect = [_tool_reply(("search", {"q": "x"})), _answer("found it")]

        response = await agent.chat("find x")

        assert response.content == "found it"
        assert response.tools_used == ["search"]
        agent.mcp_manager.call_tool.assert_awaited_once_with("search", {"q": "x"})
        tool_msg = agent.conversation_history[3]
        assert tool_msg == {"role": "tool", "content": "tool output", "tool_call_id": "call_0"}
        assert [e.kind for e in events] == ["tool_call_start", "tool_call_end"]
        assert events[1].data["status"] == "success"

    @pytest.mark.asyncio()
    async def test_multiple_calls_dispatched_in_order(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.side_effect = [_tool_reply(("a", {}), ("b", {})), _answer("done")]

        response = await agent.chat("go")

        assert response.tools_used == ["a", "b"]
        assert [c.args[0] for c in agent.mcp_manager.call_tool.await_args_list] == ["a", "b"]
        tool_ids = [m["tool_call_id"] for m in agent.conversation_history if m["role"] == "tool"]
        assert tool_ids == ["call_0", "call_1"]

    @pytest.mark.asyncio()
    async def test_budget_exhaustion_forces_final_tool_free_call(self) -> None:
        agent = _make_agent(max_tool_calls=2)
        calls: list[dict[str, Any]] = []

        async def fake_chat(messages, tools=None, cancel_event=None, on_stream=None):  # noqa: ARG001
            calls.append({"tools": tools})
            if tools:
                return _tool_reply(("search", {}))
            return _answer("final answer")

        agent.ollama_client.chat.side_effect = fake_chat

        response = await agent.chat("loop forever")

        assert agent.mcp_manager.call_tool.await_count == 2
        assert [bool(c["tools"]) for c in calls] == [True, True, False]
        assert response.content == "final answer"
        assert response.tools_used == ["search", "search"]

    @pytest.mark.asyncio()
    async def test_empty_final_answer_becomes_placeholder(self) -> None:
        agent = _make_agent(max_tool_calls=1)
        agent.ollama_client.chat.side_effect = [_tool_reply(("search", {})), _answer("")]

        response = await agent.chat("q")

        assert response.content == NO_RESPONSE


class TestToolFailures:
    @pytest.mark.asyncio()
    async def test_failure_is_fed_back_and_turn_completes(self) -> None:
        events: list[AgentEvent] = []
        agent = _make_agent(events=events)
        agent.mcp_manager.call_tool.side_effect = RuntimeError("disk on fire")
        agent.ollama_client.chat.side_effect = [_tool_reply(("read_note", {"path": "a.md"})), _answer("sorry")]

        response = await agent.chat("read a")

        assert response.content == "sorry"
        assert response.tools_used == ["read_note"]
        tool_msg = next(m for m in agent.conversation_history if m["role"] == "tool")
        assert tool_msg["content"] == "Error: disk on fire"
        assert events[-1].data["status"] == "error"

    @pytest.mark.asyncio()
    async def test_unknown_tool_reported_in_band(self) -> None:
        agent = _make_agent()
        agent.mcp_manager.call_tool.side_effect = ToolNotFoundError("Tool not found: nope")
        agent.ollama_client.chat.side_effect = [_tool_reply(("nope", {})), _answer("no such tool")]

        response = await agent.chat("x")

        assert response.content == "no such tool"
        tool_msg = next(m for m in agent.conversation_history if m["role"] == "tool")
        assert tool_msg["content"] == "Error: Tool not found: nope"

    @pytest.mark.asyncio()
    async def test_one_failure_does_not_stop_later_calls(self) -> None:
        agent = _make_agent()
        agent.mcp_manager.call_tool.side_effect = [RuntimeError("boom"), "second ok"]
        agent.ollama_client.chat.side_effect = [_tool_reply(("a", {}), ("b", {})), _answer("done")]

        await agent.chat("x")

        contents = [m["content"] for m in agent.conversation_history if m["role"] == "tool"]
        assert contents == ["Error: boom", "second ok"]


class TestCancellation:
    @pytest.mark.asyncio()
    async def test_cancelled_model_call(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.side_effect = RequestCancelledError()

        response = await agent.chat("hi", cancel_event=asyncio.Event())

        assert response.cancelled is True
        assert response.content == ""
        assert [t.role for t in agent.chat_history] == ["user", "assistant"]
        assert agent.chat_history[-1].cancelled is True

    @pytest.mark.asyncio()
    async def test_cancel_between_tool_calls_skips_the_rest(self) -> None:
        agent = _make_agent()
        cancel_event = asyncio.Event()

        async def call_tool(name: str, args: dict[str, Any]) -> str:
            cancel_event.set()
            return "first result"

        agent.mcp_manager.call_tool.side_effect = call_tool
        agent.ollama_client.chat.side_effect = [_tool_reply(("a", {}), ("b", {}), ("c", {}))]

        response = await agent.chat("go", cancel_event=cancel_event)

        assert response.cancelled is True
        assert response.tools_used == ["a"]
        assert agent.mcp_manager.call_tool.await_count == 1
        contents = [m["content"] for m in agent.conversation_history if m["role"] == "tool"]
        assert contents == ["first result", CANCELLED_RESULT, CANCELLED_RESULT]

    @pytest.mark.asyncio()
    async def test_cancel_during_tool_call_abandons_it(self) -> None:
        agent = _make_agent()
        cancel_event = asyncio.Event()
        started = asyncio.Event()

        async def call_tool(name: str, args: dict[str, Any]) -> str:
            started.set()
            await asyncio.Event().wait()
            return "never"

        agent.mcp_manager.call_tool.side_effect = call_tool
        agent.ollama_client.chat.side_effect = [_tool_reply(("slow", {}), ("next", {}))]

        task = asyncio.create_task(agent.chat("go", cancel_event=cancel_event))
        await asyncio.wait_for(started.wait(), timeout=1)
        cancel_event.set()
        response = await asyncio.wait_for(task, timeout=2)

        assert response.cancelled is True
        assert response.tools_used == ["slow"]
        assert agent.mcp_manager.call_tool.await_count == 1
        tool_messages = [m for m in agent.conversation_history if m["role"] == "tool"]
        assert [m["content"] for m in tool_messages] == [CANCELLED_RESULT, CANCELLED_RESULT]
        assert [m["tool_call_id"] for m in tool_messages] == ["call_0", "call_1"]
        assert agent.conversation_history[-1]["role"] == "tool"

    @pytest.mark.asyncio()
    async def test_next_turn_waits_for_previous_one(self) -> None:
        agent = _make_agent()
        gate = asyncio.Event()

        async def model(messages: list[dict[str, Any]], tools: Any = None, cancel_event: Any = None) -> ChatResult:
            if messages[-1]["content"] == "first":
                await gate.wait()
                return _answer("one")
            return _answer("two")

        agent.ollama_client.chat.side_effect = model

        first = asyncio.create_task(agent.chat("first"))
        await asyncio.sleep(0)
        second = asyncio.create_task(agent.chat("second"))
        await asyncio.sleep(0.01)
        assert [m["content"] for m in agent.conversation_history if m["role"] == "user"] == ["first"]

        gate.set()
        await asyncio.wait_for(asyncio.gather(first, second), timeout=2)

        roles = [m["role"] for m in agent.conversation_history]
        assert roles == ["system", "user", "assistant", "user", "assistant"]
        assert [m["content"] for m in agent.conversation_history[1:]] == ["first", "one", "second", "two"]

    @pytest.mark.asyncio()
    async def test_cancel_event_passed_to_model_client(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.return_value = _answer("ok")
        cancel_event = asyncio.Event()

        await agent.chat("hi", cancel_event=cancel_event)

        _, kwargs = agent.ollama_client.chat.call_args
        assert kwargs["cancel_event"] is cancel_event


class TestHistory:
    @pytest.mark.asyncio()
    async def test_clear_history_keeps_only_system_prompt(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.return_value = _answer("hello")
        for text in ("one", "two", "three"):
            await agent.chat(text)
        assert len(agent.conversation_history) == 7

        agent.clear_history()

        assert agent.conversation_history == [{"role": "system", "content": "SYSTEM"}]
        assert agent.chat_history == []
        assert "## User" not in agent.export_to_markdown()

    @pytest.mark.asyncio()
    async def test_transcript_records_tools_used(self) -> None:
        agent = _make_agent()
        agent.ollama_client.chat.side_effect = [_tool_reply(("x", {})), _answer("hello")]

        await agent.chat("hi")

        user, assistant = agent.chat_history
        assert (user.role, user.content) == ("user", "hi")
        assert (assistant.role, assistant.content, assistant.tools_used) == ("assistant", "hello", ["x"])

    def test_set_model_delegates_to_client(self) -> None:
        agent = _make_agent()
        agent.set_model("llama3.1:8b")
        agent.ollama_client.set_model.assert_called_once_with("llama3.1:8b")
