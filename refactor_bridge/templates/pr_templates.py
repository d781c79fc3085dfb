"""
Text templates for the refactoring commit and pull request.
"""

from typing import List, Optional


PR_TITLE = "🤖 Automated Refactoring Improvements"

COMMIT_MESSAGE = """Automated refactoring improvements

This commit contains automated refactoring performed by the GitHub Refactor Bridge.
The refactoring includes code organization, consolidation, and quality improvements."""


def render_pr_title() -> str:
    """Title of the refactoring pull request."""
    return PR_TITLE


def render_commit_message() -> str:
    """Message of the single refactoring commit."""
    return COMMIT_MESSAGE


def render_pr_body(steps: List[str], fork_owner: Optional[str] = None) -> str:
    """
    Render the pull request description.

    Args:
        steps: Refactoring steps reported by the external tool, in order
        fork_owner: Owner of the fork the branch lives in

    Returns:
        Markdown body
    """
    body_parts = [
        "## Automated Refactoring",
        "",
        "This pull request contains automated refactoring improvements performed by the GitHub Refactor Bridge.",
        "",
        "### Refactoring Steps Applied",
        "",
    ]

    if steps:
        body_parts.extend(f"- {step}" for step in steps)
    else:
        body_parts.append("- No individual steps were reported")

    body_parts.extend([
        "",
        "### What Changed",
        "",
        "The refactoring agent has analyzed and improved the codebase by:",
        "- Consolidating duplicate code",
        "- Organizing files into logical structures",
        "- Improving code representations",
        "- Lifting abstractions to appropriate levels",
        "",
        "### Review Guidelines",
        "",
        "Please review the changes to ensure:",
        "1. All tests still pass",
        "2. The refactoring maintains existing functionality",
        "3. The new structure improves code maintainability",
        "",
        "---",
        "",
    ])

    if fork_owner:
        body_parts.append(f"*Generated by GitHub Refactor Bridge from the fork of {fork_owner}*")
    else:
        body_parts.append("*Generated by GitHub Refactor Bridge*")

    return "\n".join(body_parts)
