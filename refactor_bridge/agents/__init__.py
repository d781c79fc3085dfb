"""Agents package for the refactoring workflow."""

from refactor_bridge.agents.change_detector import ChangeDetectorAgent
from refactor_bridge.agents.executor import FALLBACK_STEPS, TransformExecutorAgent
from refactor_bridge.agents.preparer import WorkspacePreparerAgent

__all__ = [
    "ChangeDetectorAgent",
    "FALLBACK_STEPS",
    "TransformExecutorAgent",
    "WorkspacePreparerAgent",
]
