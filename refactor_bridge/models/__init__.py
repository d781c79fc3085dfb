"""Models package for the refactor bridge."""

from refactor_bridge.models.state import (
    ChangeStats,
    ExclusionSet,
    RepositoryReference,
    StageRecord,
    StatusEntry,
    ToolResponse,
    WorkflowRequest,
    WorkflowResult,
    WorkflowRun,
    WorkflowStage,
)

__all__ = [
    "ChangeStats",
    "ExclusionSet",
    "RepositoryReference",
    "StageRecord",
    "StatusEntry",
    "ToolResponse",
    "WorkflowRequest",
    "WorkflowResult",
    "WorkflowRun",
    "WorkflowStage",
]
