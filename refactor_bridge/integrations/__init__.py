"""Integrations package for external services."""

from refactor_bridge.integrations.github_client import (
    GitHubClient,
    get_github_client,
    is_transient_error,
    parse_repository_reference,
)

__all__ = [
    "GitHubClient",
    "get_github_client",
    "is_transient_error",
    "parse_repository_reference",
]
