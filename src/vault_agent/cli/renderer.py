"""Rich-based terminal output for the CLI chat."""

from __future__ import annotations

import json
import sys
from typing import Any, Iterable

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from .. import __version__
from ..services.mcp_manager import McpTool
from ..services.ollama_client import MODEL_RECOMMENDATIONS, ModelInfo

console = Console(highlight=False)

# ---------------------------------------------------------------------------
# Color palette
# ---------------------------------------------------------------------------

ACCENT = "cyan"
MUTED = "grey62"
OK = "green"
WARN = "yellow"
ERROR = "red"

# ANSI codes for the in-place progress line (written raw, like the prompt)
_GRAY = "\033[90m"
_YELLOW = "\033[33m"
_RST = "\033[0m"

_CANCEL_HINT = "  (press Esc to cancel)"
_PAD = " " * 20


def format_elapsed(seconds: float) -> str:
    secs = int(seconds)
    if secs >= 60:
        return f"{secs // 60}m {secs % 60}s"
    return f"{secs}s"


def render_banner() -> None:
    width = 56
    title = f"Ollama MCP Agent v{__version__}"
    console.print()
    console.print(f"[bold {ACCENT}]  ╭{'─' * width}╮[/]")
    console.print(f"[bold {ACCENT}]  │[/][bold white]{title.center(width)}[/][bold {ACCENT}]│[/]")
    console.print(f"[bold {ACCENT}]  │[/][{MUTED}]{' Universal local AI - connect any MCP tool.'.ljust(width)}[/][bold {ACCENT}]│[/]")
    console.print(f"[bold {ACCENT}]  │[/][{MUTED}]{' 100% offline, 100% sovereign.'.ljust(width)}[/][bold {ACCENT}]│[/]")
    console.print(f"[bold {ACCENT}]  ╰{'─' * width}╯[/]")
    console.print()


def render_step(message: str) -> None:
    """Print a start-up step label; finish it with render_step_done."""
    console.print(f"[{MUTED}]  {escape(message)}... [/]", end="")


def render_step_done(ok: bool = True) -> None:
    console.print(f"[{OK}]✓[/]" if ok else f"[{ERROR}]✗[/]")


def render_error(message: str) -> None:
    console.print(f"\n[{ERROR}]  Error: {escape(message)}[/]\n")


def render_warning(message: str) -> None:
    console.print(f"\n[{WARN}]  {escape(message)}[/]\n")


def render_info(message: str) -> None:
    console.print(f"\n[{MUTED}]  {escape(message)}[/]\n")


def render_success(message: str) -> None:
    console.print(f"\n[{OK}]  {escape(message)}[/]\n")


def render_no_models_guide(reason: str) -> None:
    console.print(f"\n[{WARN}]  {escape(reason)}[/]\n")
    console.print(f"[{MUTED}]  To use this tool, you need a model with tool/function calling support.[/]")
    console.print(f"[{MUTED}]  Browse models at: [/][{ACCENT}]https://ollama.com/search?c=tools[/]\n")
    console.print(f"[{MUTED}]  Quick start:[/]")
    console.print(f"    ollama pull qwen2.5:7b-instruct[{MUTED}]  (4.5GB, recommended)[/]")
    console.print(f"    ollama pull qwen3:8b[{MUTED}]             (5GB, thinking + tools)[/]\n")


def _server_note(name: str, vault_path: str | None, vault_server: str) -> str:
    if name == vault_server and vault_path:
        return vault_path
    return ""


def render_connected_servers(
    statuses: dict[str, dict[str, Any]],
    vault_path: str | None,
    vault_server: str,
) -> None:
    console.print(f"\n[{ACCENT}]  Connected MCP Servers:[/]")
    for name, info in statuses.items():
        count = info.get("tool_count", 0)
        note = _server_note(name, vault_path, vault_server)
        suffix = f" - {escape(note)}" if note else ""
        if info.get("status") != "connected":
            suffix += f" [{ERROR}](not connected)[/]"
        console.print(f"[{MUTED}]    • [/]{escape(name)}[{MUTED}] ({count} tools){suffix}[/]")


def render_status(model: str, tool_count: int, thinking_supported: bool) -> None:
    console.print()
    console.print(f"[{MUTED}]  Model: [/]{escape(model)}")
    console.print(f"[{MUTED}]  Total Tools: [/]{tool_count} available")
    if thinking_supported:
        console.print(f"[{MUTED}]  Thinking: [/][{OK}]supported[/]")
    console.print()


def render_servers(
    statuses: dict[str, dict[str, Any]],
    vault_path: str | None,
    vault_server: str,
) -> None:
    if not statuses:
        render_warning("No MCP servers configured.")
        return
    console.print(f"\n[{ACCENT}]  Connected MCP Servers:[/]\n")
    for i, (name, info) in enumerate(statuses.items(), start=1):
        console.print(f"  {i}. {escape(name)}")
        note = _server_note(name, vault_path, vault_server)
        if note:
            console.print(f"[{MUTED}]     Path: {escape(note)}[/]")
        console.print(f"[{MUTED}]     Tools: {info.get('tool_count', 0)}[/]")
        if info.get("status") == "connected":
            console.print(f"[{MUTED}]     Status: [/][{OK}]Connected ✓[/]")
        else:
            err = info.get("error_message", "")
            detail = f" ({escape(err)})" if err else ""
            console.print(f"[{MUTED}]     Status: [/][{ERROR}]{escape(info.get('status', 'unknown'))}{detail}[/]")
        console.print()


def render_tools(tools_by_server: dict[str, list[McpTool]]) -> None:
    total = sum(len(tools) for tools in tools_by_server.values())
    if total == 0:
        render_warning("No tools available.")
        return
    console.print(f"\n[{ACCENT}]  Available Tools ({total} total):[/]\n")
    for server, tools in tools_by_server.items():
        if not tools:
            continue
        console.print(f"  {escape(server.upper())} ({len(tools)} tools):")
        for tool in tools:
            console.print(f"    [{OK}]• {escape(tool.name)}[/]")
        console.print()


def render_models(models: Iterable[ModelInfo], current: str) -> None:
    console.print(f"\n[{ACCENT}]  Installed Models:[/]\n")
    for m in models:
        marker = f"[{OK}] (current)[/]" if m.name == current else ""
        console.print(f"    {escape(m.name)}{marker}")
        console.print(f"[{MUTED}]      {m.size}, {escape(m.parameter_size)}[/]")


def render_model_details(models: Iterable[ModelInfo]) -> None:
    console.print(f"\n[{ACCENT}]  Ollama Models[/]\n")
    console.print("  Installed:\n")
    for m in models:
        console.print(f"    {escape(m.name)}")
        console.print(
            f"[{MUTED}]      Size: {m.size} | Params: {escape(m.parameter_size)} | "
            f"Quant: {escape(m.quantization)}[/]"
        )


def render_recommendations(limit: int | None = None, detailed: bool = False) -> None:
    console.print(f"\n[{ACCENT}]  Models for Tool Calling (7B+ baseline):[/]\n")
    for rec in MODEL_RECOMMENDATIONS[:limit]:
        console.print(f"    {rec['name']}")
        tools = f" | Tools: {rec['tool_calling']}" if detailed else ""
        console.print(f"[{MUTED}]      {rec['size']} | RAM: {rec['ram']}{tools} | {rec['notes']}[/]")
    console.print()


def render_help() -> None:
    console.print(f"\n[{ACCENT}]  Commands:[/]\n")
    console.print("    /servers         List connected MCP servers")
    console.print("    /tools           List available MCP tools")
    console.print("    /vault <path>    Switch to a different vault directory")
    console.print("    /model <name>    Switch to a different Ollama model")
    console.print("    /models          List available and recommended models")
    console.print("    /export \\[file]   Export chat history to markdown")
    console.print("    /clear           Clear conversation history")
    console.print("    /help            Show this help")
    console.print("    /quit            Exit the agent (or /exit, /bye)")
    console.print()


def render_tool_call_start(tool_name: str, arguments: dict[str, Any]) -> None:
    args_str = json.dumps(arguments, default=str)
    if len(args_str) > 200:
        args_str = args_str[:200] + "..."
    clear_progress_line()
    console.print(Text(f"  [Tool] {tool_name}({args_str})", style=MUTED))


def render_tool_call_end(tool_name: str, status: str, output: str) -> None:
    if status == "success":
        snippet = output if len(output) <= 200 else output[:200] + "..."
        console.print(Text(f"  [Result] {snippet}", style=MUTED))
    else:
        console.print(Text(f"  [Error] Tool {tool_name} failed: {output}", style=ERROR))


def render_answer(content: str, tools_used: list[str]) -> None:
    console.print(f"[{OK}]  Assistant:[/]\n")
    for line in content.split("\n"):
        console.print(Text(f"  {line}"))
    if tools_used:
        console.print(f"\n[{MUTED}]  \\[Tools: {escape(', '.join(tools_used))}][/]")
    console.print()


# ---------------------------------------------------------------------------
# In-place progress line
# ---------------------------------------------------------------------------


def progress_text(thinking: bool, elapsed: float, cancel_hint: bool) -> str:
    label = f"Thinking... {format_elapsed(elapsed)}" if thinking else "Processing..."
    hint = f"{_YELLOW}{_CANCEL_HINT}{_RST}" if cancel_hint else ""
    return f"\r{_GRAY}  {label}{_RST}{hint}"


def write_progress(thinking: bool, elapsed: float, cancel_hint: bool) -> None:
    sys.stdout.write(progress_text(thinking, elapsed, cancel_hint))
    sys.stdout.flush()


def start_progress(thinking: bool) -> None:
    sys.stdout.write("\n")
    write_progress(thinking, 0.0, cancel_hint=False)


def render_cancelled(thinking: bool, elapsed: float) -> None:
    label = "Thinking" if thinking else "Request"
    sys.stdout.write(f"\r{_YELLOW}  {label}... cancelled after {format_elapsed(elapsed)}{_RST}{_PAD}\n\n")
    sys.stdout.flush()


def render_completed(thinking: bool, elapsed: float) -> None:
    label = "Thinking" if thinking else "Completed"
    sys.stdout.write(f"\r{_GRAY}  {label}... completed in {format_elapsed(elapsed)}{_RST}{_PAD}\n\n")
    sys.stdout.flush()


def clear_progress_line() -> None:
    sys.stdout.write("\r\033[2K")
    sys.stdout.flush()


def render_vault_switching(path: str) -> None:
    console.print(f"\n[{MUTED}]  Switching vault to: {escape(path)}[/]")


def render_vault_switched(path: str, tool_count: int) -> None:
    console.print(f"[{MUTED}]  Vault: [/]{escape(path)}")
    console.print(f"[{MUTED}]  Tools: {tool_count} available[/]\n")


def render_model_switched(model: str, thinking_supported: bool) -> None:
    console.print(f"\n[{OK}]  Model switched to: {escape(model)}[/]")
    if thinking_supported:
        console.print(f"[{MUTED}]  Thinking: supported[/]")
    console.print()
