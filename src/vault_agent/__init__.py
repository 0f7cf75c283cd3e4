"""vault-agent: chat with your notes through a local Ollama model and MCP tool servers."""

__version__ = "2.0.0"
