"""Text templates for commits, pull requests and tool responses."""

from refactor_bridge.templates.pr_templates import (
    render_commit_message,
    render_pr_body,
    render_pr_title,
)
from refactor_bridge.templates.responses import (
    NO_CHANGES_MESSAGE,
    render_workflow_error,
    render_workflow_result,
)

__all__ = [
    "NO_CHANGES_MESSAGE",
    "render_commit_message",
    "render_pr_body",
    "render_pr_title",
    "render_workflow_error",
    "render_workflow_result",
]
