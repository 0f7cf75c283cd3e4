"""Configuration loader: YAML/JSON file merged over defaults, with environment variable fallbacks."""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_DEFAULT_SYSTEM_PROMPT = """\
## CONTEXT

You are an AI assistant with access to multiple data sources through MCP (Model Context Protocol) tools. \
Your purpose is to help users query, analyze, and understand their data through natural conversation.

## ROLE

You are a "Universal Data Assistant" that helps users:
- Query and analyze data from connected MCP servers
- Find relevant information across multiple data sources
- Provide accurate, source-backed answers
- Navigate complex datasets efficiently

You do not replace critical thinking; you help users access and understand their data.

## TOOL SELECTION STRATEGY

1. **Identify the Domain**: Determine which MCP server handles this type of query.
2. **Choose the Right Tool**: Read tool descriptions carefully. Use search/list tools before detailed \
queries, and chain tools when needed (search -> retrieve -> analyze).
3. **Provide Context**: When presenting results, mention which server/tool was used.

## CONSTRAINTS

- **Never Fabricate**: Only present information from actual tool results.
- **Always Attribute**: Mention which MCP server/tool provided each piece of information.
- **Stay In Bounds**: Only access data through the provided MCP tools.
- **Be Honest**: If you can't find something, say so clearly.

## RESPONSE FORMAT

- Identify which MCP server(s) you're querying
- Present findings with clear attribution
- Offer to search further if results seem incomplete
- Suggest related queries when relevant"""

DEFAULT_MODEL = "qwen2.5:7b-instruct"
DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MAX_TOOL_CALLS = 10

# Server whose last argument is the vault directory
VAULT_SERVER_NAME = "obsidian"


@dataclass
class OllamaConfig:
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    options: dict[str, Any] = field(default_factory=lambda: {"temperature": 0.7, "num_ctx": 8192})


@dataclass
class McpServerConfig:
    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class AgentConfig:
    max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS
    system_prompt: str = _DEFAULT_SYSTEM_PROMPT


@dataclass
class AppConfig:
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    mcp_servers: list[McpServerConfig] = field(default_factory=list)
    agent: AgentConfig = field(default_factory=AgentConfig)
    source_path: Path | None = None


def candidate_config_paths(cwd: Path | None = None, home: Path | None = None) -> list[Path]:
    cwd = cwd or Path.cwd()
    home = home or Path.home()
    return [
        cwd / "config.yaml",
        cwd / "config.json",
        home / ".ollama" / "vault-agent" / "config.yaml",
        home / ".ollama" / "vault-agent" / "config.json",
        home / ".vault-agent.yaml",
        home / ".vault-agent.json",
    ]


def expand_path(filepath: str) -> str:
    if filepath == "~" or filepath.startswith("~/"):
        return str(Path.home()) + filepath[1:]
    return filepath


def _parse_servers(raw: Any) -> list[McpServerConfig]:
    """Accept either ``{name: {command, args, env}}`` or ``[{name, command, ...}]``."""
    if not raw:
        return []
    if isinstance(raw, dict):
        entries = []
        for name, srv in raw.items():
            if srv is not None and not isinstance(srv, dict):
                raise ValueError(f"MCP server '{name}' must be a mapping, got {type(srv).__name__}")
            entries.append({"name": name, **(srv or {})})
    elif isinstance(raw, list):
        entries = raw
    else:
        raise ValueError(f"mcpServers must be a mapping or a list, got {type(raw).__name__}")

    servers: list[McpServerConfig] = []
    for srv in entries:
        if not isinstance(srv, dict):
            raise ValueError(f"MCP server entry must be a mapping, got {type(srv).__name__}")
        if not srv.get("name"):
            raise ValueError(f"MCP server with command '{srv.get('command', '?')}' is missing 'name'")
        if not srv.get("command"):
            raise ValueError(f"MCP server '{srv.get('name', '?')}' is missing 'command'")
        env = {k: os.path.expandvars(str(v)) for k, v in (srv.get("env") or {}).items()}
        servers.append(
            McpServerConfig(
                name=srv["name"],
                command=srv["command"],
                args=[str(a) for a in srv.get("args", [])],
                env=env,
            )
        )
    return servers


def _read_file(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Could not parse {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return raw


def load_config(config_path: str | Path | None = None) -> AppConfig:
    raw: dict[str, Any] = {}
    source: Path | None = None

    paths = [Path(config_path).expanduser()] if config_path else candidate_config_paths()
    for path in paths:
        if path.exists():
            raw = _read_file(path)
            source = path
            break
    else:
        if config_path:
            raise ValueError(f"Config file not found: {config_path}")
        logger.warning("No config file found, using defaults")

    defaults = OllamaConfig()
    ollama_raw = raw.get("ollama", {}) or {}
    options = copy.deepcopy(defaults.options)
    options.update(ollama_raw.get("options") or {})
    ollama = OllamaConfig(
        model=ollama_raw.get("model") or os.environ.get("VAULT_AGENT_MODEL", DEFAULT_MODEL),
        base_url=(
            ollama_raw.get("baseUrl") or ollama_raw.get("base_url") or os.environ.get("OLLAMA_HOST", DEFAULT_BASE_URL)
        ),
        options=options,
    )

    agent_raw = raw.get("agent", {}) or {}
    max_calls_raw = agent_raw.get(
        "maxToolCalls",
        agent_raw.get("max_tool_calls", os.environ.get("VAULT_AGENT_MAX_TOOL_CALLS", DEFAULT_MAX_TOOL_CALLS)),
    )
    try:
        max_tool_calls = int(max_calls_raw)
    except (TypeError, ValueError):
        raise ValueError(f"agent.maxToolCalls must be an integer, got {max_calls_raw!r}") from None
    if max_tool_calls < 1:
        raise ValueError(f"agent.maxToolCalls must be at least 1, got {max_tool_calls}")

    agent = AgentConfig(
        max_tool_calls=max_tool_calls,
        system_prompt=agent_raw.get("systemPrompt") or agent_raw.get("system_prompt") or _DEFAULT_SYSTEM_PROMPT,
    )

    mcp_servers = _parse_servers(raw.get("mcpServers", raw.get("mcp_servers")))

    if source:
        logger.info("Loaded config from %s (%d MCP servers)", source, len(mcp_servers))

    return AppConfig(ollama=ollama, mcp_servers=mcp_servers, agent=agent, source_path=source)


def extract_vault_path(servers: list[McpServerConfig]) -> str | None:
    for srv in servers:
        if srv.name == VAULT_SERVER_NAME and srv.args:
            return srv.args[-1]
    return None


def with_vault_path(servers: list[McpServerConfig], new_path: str) -> list[McpServerConfig]:
    """Return a copy of ``servers`` with the vault server's last argument replaced."""
    updated: list[McpServerConfig] = []
    for srv in servers:
        if srv.name == VAULT_SERVER_NAME and srv.args:
            updated.append(
                McpServerConfig(name=srv.name, command=srv.command, args=[*srv.args[:-1], new_path], env=dict(srv.env))
            )
        else:
            updated.append(srv)
    return updated
