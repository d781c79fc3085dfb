"""
Text returned by the ``github_full_workflow`` tool.
"""

from refactor_bridge.models.state import WorkflowResult

NO_CHANGES_MESSAGE = (
    "No changes were made during refactoring. The codebase may already be well-organized."
)

TROUBLESHOOTING_HINTS = [
    "GITHUB_TOKEN is set and valid",
    "You have access to the repository",
    "Claude CLI is installed and accessible",
]


def render_workflow_result(result: WorkflowResult) -> str:
    """Summary of a finished workflow, in markdown."""
    lines = ["## Refactoring Complete!", ""]

    if result.pr_url:
        lines.append(f"✅ **Pull Request Created:** {result.pr_url}")
        lines.append("")
        if result.changes:
            lines.extend([
                "### Changes Summary",
                f"- Files modified: {result.changes.files_modified}",
                f"- Lines added: {result.changes.lines_added}",
                f"- Lines removed: {result.changes.lines_removed}",
                "",
            ])
    else:
        lines.append(f"ℹ️ {result.message or NO_CHANGES_MESSAGE}")
        lines.append("")

    if result.steps_applied:
        lines.append("### Refactoring Steps Applied")
        lines.extend(f"- {step}" for step in result.steps_applied)

    return "\n".join(lines).rstrip() + "\n"


def render_workflow_error(error: BaseException) -> str:
    """Failure message with troubleshooting hints."""
    message = str(error) or type(error).__name__
    lines = [f"❌ Error: {message}", "", "Please ensure:"]
    lines.extend(f"{number}. {hint}" for number, hint in enumerate(TROUBLESHOOTING_HINTS, start=1))
    return "\n".join(lines)
