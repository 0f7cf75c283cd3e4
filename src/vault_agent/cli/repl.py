"""Interactive session loop and the non-interactive subcommands."""

from __future__ import annotations

import asyncio
import logging
import sys

import httpx

from ..config import VAULT_SERVER_NAME, AppConfig, extract_vault_path
from ..services.mcp_manager import McpManager
from ..services.ollama_client import OllamaClient, is_thinking_capable
from . import renderer
from .commands import export_chat, handle_command
from .input_handler import InputAction, InputStateMachine
from .keys import KeyReader
from .model_picker import select_model
from .round_trip import RoundTripRunner
from .session import Session, build_agent
from .terminal import PromptRenderer

logger = logging.getLogger(__name__)


async def _choose_model(ollama_client: OllamaClient, key_reader: KeyReader) -> None:
    """Interactive model selection; exits the process when nothing usable is installed."""
    renderer.render_step("Checking model capabilities")
    try:
        models = await ollama_client.list_models_with_tool_support()
    except httpx.HTTPError as e:
        logger.warning("Could not list models: %s", e)
        renderer.render_step_done(False)
        renderer.render_warning("Could not list models, using config default")
        return
    renderer.render_step_done()

    if not models:
        renderer.render_no_models_guide("No models installed.")
        sys.exit(1)
    if not any(m.supports_tools for m in models):
        renderer.render_no_models_guide("No tool-capable models found.")
        sys.exit(1)

    choice = await select_model(models, key_reader)
    if choice is None:
        key_reader.stop()
        sys.exit(0)
    ollama_client.set_model(choice)


async def _connect_tools(config: AppConfig) -> McpManager:
    mcp_manager = McpManager(config.mcp_servers, quiet=True)
    if not config.mcp_servers:
        renderer.render_warning("⚠ No MCP servers configured. Add servers to config.yaml")
        return mcp_manager

    renderer.render_step("Connecting to MCP servers")
    await mcp_manager.connect()
    renderer.render_step_done(bool(mcp_manager.list_connected_servers()))
    renderer.render_connected_servers(
        mcp_manager.get_server_statuses(),
        extract_vault_path(config.mcp_servers),
        VAULT_SERVER_NAME,
    )
    return mcp_manager


async def _input_loop(session: Session, key_reader: KeyReader) -> None:
    machine = session.input_machine
    runner = RoundTripRunner(machine, key_reader)
    actions: asyncio.Queue[InputAction] = asyncio.Queue()
    exit_requested = False

    def on_chunk(chunk: str) -> None:
        nonlocal exit_requested
        for action in machine.feed(chunk):
            if action.kind == "exit":
                exit_requested = True
                runner.cancel()
            actions.put_nowait(action)

    key_reader.add_listener(on_chunk)
    machine.show_prompt()
    try:
        while True:
            action = await actions.get()
            if action.kind == "exit":
                renderer.render_info("Disconnecting...")
                return

            if action.text.startswith("/"):
                # Commands may reconnect servers; keep keystrokes out of the prompt meanwhile
                machine.set_waiting(True)
                try:
                    if await handle_command(action.text, session):
                        return
                finally:
                    machine.set_waiting(False)
            else:
                await runner.run(session.agent, action.text)

            if exit_requested:
                renderer.render_info("Disconnecting...")
                return
            machine.show_prompt()
    finally:
        key_reader.remove_listener(on_chunk)


async def run_cli(config: AppConfig, model_override: str | None = None) -> None:
    renderer.render_banner()

    if model_override:
        config.ollama.model = model_override
    ollama_client = OllamaClient(config.ollama)
    key_reader = KeyReader()
    mcp_manager: McpManager | None = None

    try:
        renderer.render_step("Connecting to Ollama")
        if not await ollama_client.check_connection():
            renderer.render_step_done(False)
            renderer.render_error("Cannot connect to Ollama. Is it running?")
            renderer.render_info("Start with: ollama serve")
            sys.exit(1)
        renderer.render_step_done()

        key_reader.start()
        if not model_override:
            await _choose_model(ollama_client, key_reader)
            config.ollama.model = ollama_client.model

        _ok, warning = await ollama_client.check_model_size()
        if warning:
            renderer.render_warning(f"⚠ {warning}")

        mcp_manager = await _connect_tools(config)
        supports_thinking = is_thinking_capable(config.ollama.model)
        renderer.render_status(config.ollama.model, len(mcp_manager.get_tools()), supports_thinking)

        session = Session(
            config=config,
            ollama_client=ollama_client,
            mcp_manager=mcp_manager,
            agent=build_agent(ollama_client, mcp_manager, config),
            input_machine=InputStateMachine(PromptRenderer(), supports_thinking),
            vault_path=extract_vault_path(config.mcp_servers),
        )
        await _input_loop(session, key_reader)
        mcp_manager = session.mcp_manager
    finally:
        key_reader.stop()
        if mcp_manager is not None:
            await mcp_manager.disconnect()
        await ollama_client.close()
    renderer.render_info("Goodbye!")


async def list_models(config: AppConfig) -> None:
    ollama_client = OllamaClient(config.ollama)
    try:
        models = await ollama_client.list_models()
    except httpx.HTTPError as e:
        logger.warning("Failed to list models: %s", e)
        renderer.render_error("Failed to connect to Ollama. Is it running?")
        return
    finally:
        await ollama_client.close()

    renderer.render_model_details(models)
    renderer.render_recommendations(detailed=True)
    renderer.render_info("Install: ollama pull <model-name>")


def export_last_session(filename: str | None = None) -> None:
    """``export`` subcommand: a fresh process has no live session to export."""
    export_chat(None, filename)
