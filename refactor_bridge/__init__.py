"""GitHub Refactor Bridge: fork, refactor and open pull requests over MCP."""

__version__ = "0.1.0"
