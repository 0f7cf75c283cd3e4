"""CLI entry point for vault-agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .config import AppConfig, candidate_config_paths, load_config

DEFAULT_LOG_FILE = Path.home() / ".vault-agent.log"


def _print_setup_guide() -> None:
    paths = "\n".join(f"  {p}" for p in candidate_config_paths())
    print(
        "\nvault-agent looks for a config file in:\n"
        f"{paths}\n\n"
        "Example config.yaml:\n\n"
        "ollama:\n"
        '  model: "qwen2.5:7b-instruct"\n'
        '  baseUrl: "http://localhost:11434"\n'
        "mcpServers:\n"
        "  obsidian:\n"
        '    command: "npx"\n'
        '    args: ["-y", "mcp-obsidian", "/path/to/vault"]\n'
        "\nOr set environment variables:\n"
        "  OLLAMA_HOST=http://localhost:11434\n"
        "  VAULT_AGENT_MODEL=qwen2.5:7b-instruct\n",
        file=sys.stderr,
    )


def _load_config_or_exit(config_path: str | None) -> AppConfig:
    try:
        return load_config(config_path)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        _print_setup_guide()
        sys.exit(1)


def _setup_logging(debug: bool, log_file: str | None) -> None:
    # The prompt runs in raw mode; log records go to a file, never the terminal
    logging.basicConfig(
        filename=str(Path(log_file).expanduser()) if log_file else str(DEFAULT_LOG_FILE),
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Quiet the HTTP stack unless it is the thing being debugged
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.INFO if debug else logging.WARNING)


def _run_chat(config: AppConfig, model: str | None) -> None:
    """Launch the interactive chat."""
    from .cli.repl import run_cli

    if not sys.stdin.isatty():
        print("Error: vault-agent chat needs an interactive terminal", file=sys.stderr)
        sys.exit(1)
    try:
        asyncio.run(run_cli(config, model_override=model))
    except KeyboardInterrupt:
        pass


def _run_models(config: AppConfig) -> None:
    from .cli.repl import list_models

    asyncio.run(list_models(config))


def _run_export(filename: str | None) -> None:
    from .cli.repl import export_last_session

    export_last_session(filename)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="vault-agent",
        description="vault-agent - chat with your notes through a local Ollama model and MCP tools",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", default=None, help="Path to a config file (YAML or JSON)")
    parser.add_argument("-m", "--model", default=None, help="Ollama model to use (skips the picker)")
    parser.add_argument("--debug", action="store_true", help="Write debug logs")
    parser.add_argument("--log-file", default=None, help=f"Log file (default: {DEFAULT_LOG_FILE})")
    subparsers = parser.add_subparsers(dest="command")

    # `vault-agent chat` subcommand (the default)
    subparsers.add_parser("chat", help="Interactive chat (default)")

    # `vault-agent models` subcommand
    subparsers.add_parser("models", help="List installed models and recommendations")

    # `vault-agent export` subcommand
    export_parser = subparsers.add_parser("export", help="Export the last chat to markdown")
    export_parser.add_argument("filename", nargs="?", default=None, help="Output file")

    args = parser.parse_args(argv)

    _setup_logging(args.debug, args.log_file)

    if args.command == "export":
        _run_export(args.filename)
        return

    config = _load_config_or_exit(args.config)

    if args.command == "models":
        _run_models(config)
    else:
        _run_chat(config, args.model)


if __name__ == "__main__":
    main()
