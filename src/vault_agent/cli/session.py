"""The live session: current config, clients, agent and input machine, plus source/model switching."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ..config import VAULT_SERVER_NAME, AppConfig, expand_path, with_vault_path
from ..services.agent_loop import Agent, AgentEvent
from ..services.mcp_manager import McpManager
from ..services.ollama_client import OllamaClient, is_thinking_capable
from . import renderer
from .input_handler import InputStateMachine

logger = logging.getLogger(__name__)


def render_agent_event(event: AgentEvent) -> None:
    if event.kind == "tool_call_start":
        renderer.render_tool_call_start(event.data["tool_name"], event.data["arguments"])
    elif event.kind == "tool_call_end":
        renderer.render_tool_call_end(event.data["tool_name"], event.data["status"], event.data["output"])


def build_agent(ollama_client: OllamaClient, mcp_manager: McpManager, config: AppConfig) -> Agent:
    return Agent(ollama_client, mcp_manager, config.agent, on_event=render_agent_event)


@dataclass
class Session:
    config: AppConfig
    ollama_client: OllamaClient
    mcp_manager: McpManager
    agent: Agent
    input_machine: InputStateMachine
    vault_path: str | None = None


def resolve_vault_path(raw: str) -> Path:
    """Normalize a user-typed vault path and check it is an existing directory."""
    cleaned = raw.strip().strip("\"'")
    if not cleaned:
        raise ValueError("No path given")
    resolved = Path(os.path.abspath(expand_path(cleaned)))
    if not resolved.exists():
        raise ValueError(f"Path does not exist: {resolved}")
    if not resolved.is_dir():
        raise ValueError(f"{resolved} is not a directory")
    return resolved


async def switch_vault(session: Session, raw_path: str) -> None:
    """Reconnect the tool servers against a new vault directory and start a fresh agent.

    Raises ValueError for an unusable path; the current session is left untouched then.
    """
    resolved = resolve_vault_path(raw_path)
    if not any(s.name == VAULT_SERVER_NAME for s in session.config.mcp_servers):
        raise ValueError(f"No '{VAULT_SERVER_NAME}' MCP server configured")

    renderer.render_vault_switching(str(resolved))

    renderer.render_step("Disconnecting from current vault")
    await session.mcp_manager.disconnect()
    renderer.render_step_done()

    new_servers = with_vault_path(session.config.mcp_servers, str(resolved))
    new_manager = McpManager(new_servers, quiet=True)
    renderer.render_step("Connecting to new vault")
    await new_manager.connect()
    renderer.render_step_done(bool(new_manager.list_connected_servers()))

    session.config.mcp_servers = new_servers
    session.mcp_manager = new_manager
    session.vault_path = str(resolved)
    session.agent = build_agent(session.ollama_client, new_manager, session.config)
    logger.info("Switched vault to %s (%d tools)", resolved, len(new_manager.get_tools()))

    renderer.render_vault_switched(str(resolved), len(new_manager.get_tools()))


def switch_model(session: Session, model: str) -> bool:
    """Point the agent at another model; returns whether the new model supports thinking."""
    session.agent.set_model(model)
    session.config.ollama.model = model
    supports = is_thinking_capable(model)
    session.input_machine.update_model(supports)
    logger.info("Switched model to %s", model)
    return supports
