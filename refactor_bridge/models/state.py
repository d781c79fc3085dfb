"""
State management for the refactor bridge.

Defines the request/result schema of the ``github_full_workflow`` tool and the
per-invocation bookkeeping passed between orchestrator nodes.
"""

import uuid
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator


WorkflowStage = Literal[
    "start",
    "forked",
    "cloned",
    "prepared",
    "transformed",
    "change_checked",
    "noop_finished",
    "pushed",
    "pull_request_created",
    "cleaned_up",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def exclusion_pathspecs(paths: Iterable[str]) -> List[str]:
    """Turn repository-relative paths into negative git pathspecs."""
    return [f":(exclude,literal){path}" for path in sorted(paths)]


class RepositoryReference(BaseModel):
    """Identifies a GitHub repository."""
    model_config = ConfigDict(frozen=True)

    owner: str
    name: str
    default_branch: str = "main"  # Resolved later from the API

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class WorkflowRequest(BaseModel):
    """Input of a single ``github_full_workflow`` invocation."""
    repository_url: str
    base_branch: Optional[str] = None

    @field_validator("repository_url")
    @classmethod
    def _require_url(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("repository_url must not be empty")
        return value.strip()

    @field_validator("base_branch")
    @classmethod
    def _blank_branch_is_default(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value.strip() if value else value


class ExclusionSet:
    """
    Repository-relative paths written into a clone before the transform runs.

    Each path maps to the SHA-256 digest of the content that was written, so
    later edits to an excluded path can be detected.
    """

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self._entries: Dict[str, str] = dict(entries or {})

    def add(self, path: str, digest: str = "") -> None:
        self._entries[path] = digest

    def clear(self) -> None:
        self._entries.clear()

    def digest_of(self, path: str) -> Optional[str]:
        return self._entries.get(path)

    @property
    def paths(self) -> List[str]:
        return sorted(self._entries)

    def as_pathspecs(self) -> List[str]:
        """Negative git pathspecs, one per excluded path."""
        return exclusion_pathspecs(self.paths)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ExclusionSet({self.paths!r})"


class ChangeStats(BaseModel):
    """Size of the user-visible change set."""
    files_modified: int = Field(ge=0, default=0)
    lines_added: int = Field(ge=0, default=0)
    lines_removed: int = Field(ge=0, default=0)


class StatusEntry(BaseModel):
    """One record of ``git status --porcelain``."""
    index_status: str
    worktree_status: str
    path: str
    original_path: Optional[str] = None  # Set for renames and copies

    @property
    def is_untracked(self) -> bool:
        return self.index_status == "?" and self.worktree_status == "?"


class WorkflowResult(BaseModel):
    """Outcome of a refactoring workflow."""
    success: bool
    pr_url: Optional[str] = None
    message: Optional[str] = None  # Why no PR was created
    changes: Optional[ChangeStats] = None
    steps_applied: List[str] = Field(default_factory=list)
    branch_name: Optional[str] = None


class ToolResponse(BaseModel):
    """Text returned to the tool caller."""
    text: str
    is_error: bool = False


class StageRecord(BaseModel):
    """Audit record for one stage of a workflow run."""
    stage: WorkflowStage
    result: str
    duration_seconds: float
    timestamp: datetime = Field(default_factory=_utcnow)


class WorkflowRun(BaseModel):
    """
    Mutable context of a single workflow invocation.

    Holds the resources the orchestrator must release (the clone and its
    directory) so they stay reachable even when a stage raises.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: WorkflowRequest
    stage: WorkflowStage = "start"
    repo: Optional[Any] = None  # git.Repo of the clone
    workdir: Optional[str] = None
    history: List[StageRecord] = Field(default_factory=list)
    run_id: str = Field(default_factory=lambda: f"run-{uuid.uuid4().hex[:12]}")
    started_at: datetime = Field(default_factory=_utcnow)

    def advance(self, stage: WorkflowStage, result: Any, duration: float) -> None:
        """Record that ``stage`` was reached."""
        self.stage = stage
        self.history.append(StageRecord(
            stage=stage,
            result=str(result)[:500],  # Truncate for storage
            duration_seconds=duration,
        ))
