"""In-session slash commands."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from ..config import VAULT_SERVER_NAME
from ..services.export import default_export_filename
from . import renderer
from .session import Session, switch_model, switch_vault

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("quit", "exit", "bye")


def export_chat(session: Session | None, filename: str | None = None) -> Path | None:
    """Write the session transcript as markdown; returns the written path, if any."""
    if session is None:
        renderer.render_warning("No active session. Start a chat first with: vault-agent")
        return None
    if not session.agent.chat_history:
        renderer.render_warning("No chat history to export.")
        return None

    filepath = Path(filename or default_export_filename()).resolve()
    try:
        filepath.write_text(session.agent.export_to_markdown(), encoding="utf-8")
    except OSError as e:
        renderer.render_error(f"Failed to export: {e}")
        return None
    renderer.render_success(f"Chat exported to: {filepath}")
    return filepath


async def handle_command(text: str, session: Session) -> bool:
    """Run one ``/command``; returns True when the user asked to exit."""
    parts = text[1:].split()
    if not parts:
        renderer.render_warning("Unknown command: (empty)")
        return False
    cmd, args = parts[0].lower(), parts[1:]

    if cmd in EXIT_COMMANDS:
        renderer.render_info("Disconnecting...")
        return True

    if cmd == "clear":
        session.agent.clear_history()
        renderer.render_info("Conversation cleared.")

    elif cmd in ("vault", "cd"):
        if not args:
            renderer.render_info(f"Current vault: {session.vault_path or 'not set'}")
        else:
            try:
                await switch_vault(session, " ".join(args))
            except ValueError as e:
                renderer.render_error(str(e))

    elif cmd == "model":
        if not args:
            renderer.render_info(f"Current model: {session.agent.model}")
        else:
            model = " ".join(args)
            renderer.render_model_switched(model, switch_model(session, model))

    elif cmd == "models":
        try:
            models = await session.ollama_client.list_models_sorted()
        except httpx.HTTPError as e:
            logger.warning("Failed to list models: %s", e)
            renderer.render_error("Failed to list models")
        else:
            renderer.render_models(models, session.agent.model)
        renderer.render_recommendations(limit=4)

    elif cmd == "servers":
        renderer.render_servers(session.mcp_manager.get_server_statuses(), session.vault_path, VAULT_SERVER_NAME)

    elif cmd == "tools":
        renderer.render_tools(session.mcp_manager.tools_by_server())

    elif cmd == "export":
        export_chat(session, args[0] if args else None)

    elif cmd in ("help", "?"):
        renderer.render_help()

    else:
        renderer.render_warning(f"Unknown command: {cmd}")

    return False
