"""
LangGraph-based orchestrator for the refactoring workflow.

The workflow is a linear StateGraph:

    resolve -> fork_repository -> clone_repository -> prepare_workspace
      -> run_transform -> check_changes -> push_changes -> create_pull_request

with a single conditional edge ending the run after ``check_changes`` when
the refactoring produced nothing. The clone is released in a ``finally``
block around the graph, whichever node fails.
"""

import time
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional

from langgraph.graph import StateGraph, END, START
from pydantic import ValidationError
from typing_extensions import TypedDict

from refactor_bridge.agents import ChangeDetectorAgent, TransformExecutorAgent, WorkspacePreparerAgent
from refactor_bridge.config import Config
from refactor_bridge.integrations import GitHubClient, get_github_client
from refactor_bridge.logging_config import bind_run_context, get_logger
from refactor_bridge.models.state import (
    ChangeStats,
    ExclusionSet,
    RepositoryReference,
    ToolResponse,
    WorkflowRequest,
    WorkflowResult,
    WorkflowRun,
    WorkflowStage,
)
from refactor_bridge.templates import NO_CHANGES_MESSAGE, render_workflow_error, render_workflow_result

logger = get_logger(__name__)

NodeFunc = Callable[["WorkflowGraphState"], Awaitable[Dict[str, Any]]]


class WorkflowGraphState(TypedDict, total=False):
    """Values passed between workflow nodes."""
    run: WorkflowRun
    original: RepositoryReference
    base_branch: str
    fork: RepositoryReference
    exclusions: ExclusionSet
    steps: List[str]
    has_changes: bool
    changes: ChangeStats
    branch_name: str
    pr_url: str


class RefactorOrchestrator:
    """Runs the fork → clone → refactor → PR workflow."""

    def __init__(
        self,
        github_client: GitHubClient,
        preparer_factory: Callable[[], WorkspacePreparerAgent],
        executor: TransformExecutorAgent,
        detector: Optional[ChangeDetectorAgent] = None,
        branch_prefix: str = "refactor/auto-",
    ):
        """
        Initialize orchestrator.

        Args:
            github_client: Client shared by all invocations
            preparer_factory: Builds a preparer (and its exclusion set) per invocation
            executor: Runs the external refactoring tool
            detector: Inspects the clone after the tool ran
            branch_prefix: Prefix of pushed branch names
        """
        self.github_client = github_client
        self.preparer_factory = preparer_factory
        self.executor = executor
        self.detector = detector or ChangeDetectorAgent()
        self.branch_prefix = branch_prefix
        self.workflow = self._build_workflow()

    @classmethod
    def from_config(cls, config: Config, github_client: Optional[GitHubClient] = None) -> "RefactorOrchestrator":
        """Wire the orchestrator and its agents from configuration."""
        assets_root = config.assets_root
        nia_api_key = config.nia_api_key
        return cls(
            github_client=github_client or get_github_client(config),
            preparer_factory=lambda: WorkspacePreparerAgent(assets_root, nia_api_key),
            executor=TransformExecutorAgent(
                claude_code_path=config.claude_code_path,
                nia_api_key=nia_api_key,
                timeout=config.transform_timeout,
                prompt=config.transform_prompt,
                model=config.transform_model,
            ),
            branch_prefix=config.branch_prefix,
        )

    # Workflow nodes

    async def _resolve_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        request = state["run"].request
        reference = self.github_client.resolve(request.repository_url)
        original = await self.github_client.get_repository_info(reference)
        base_branch = request.base_branch or original.default_branch
        return {"original": original, "base_branch": base_branch}

    async def _fork_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        fork = await self.github_client.fork(state["original"])
        return {"fork": fork}

    async def _clone_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        run = state["run"]
        repo, workdir = await self.github_client.clone(state["fork"], state["base_branch"])
        # Registered before anything else can fail so cleanup always finds it
        run.repo = repo
        run.workdir = str(workdir)
        return {"run": run}

    async def _prepare_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        preparer = self.preparer_factory()
        exclusions = await preparer.prepare(state["run"].workdir)
        return {"exclusions": exclusions}

    async def _transform_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        steps = await self.executor.run_transform(state["run"].workdir)
        return {"steps": steps}

    async def _check_changes_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        run = state["run"]
        exclusions = state["exclusions"]

        for path in self.detector.touched_exclusions(run.workdir, exclusions):
            logger.warning("excluded_path_modified_by_refactoring", path=path)

        has_changes = await self.detector.has_relevant_changes(run.repo, exclusions)
        return {"has_changes": has_changes}

    async def _push_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        run = state["run"]
        exclusions = state["exclusions"]
        changes = await self.detector.change_stats(run.repo, exclusions)
        branch_name = self.new_branch_name()
        await self.github_client.push(run.repo, branch_name, exclusions.paths)
        return {"changes": changes, "branch_name": branch_name}

    async def _pull_request_node(self, state: WorkflowGraphState) -> Dict[str, Any]:
        pr_url = await self.github_client.create_pull_request(
            state["original"],
            state["fork"].owner,
            state["branch_name"],
            state["base_branch"],
            state["steps"],
        )
        return {"pr_url": pr_url}

    def _stage(self, node: str, stage: WorkflowStage, func: NodeFunc) -> NodeFunc:
        """Wrap a node with timing, logging and the run's audit trail."""
        async def run_node(state: WorkflowGraphState) -> Dict[str, Any]:
            logger.info("workflow_node_start", node=node)
            start_time = time.time()
            try:
                update = await func(state)
            except Exception as e:
                logger.error("workflow_node_failed", node=node, error=str(e))
                raise
            duration = time.time() - start_time
            summary = {key: value for key, value in update.items() if key != "run"}
            state["run"].advance(stage, summary, duration)
            logger.info("workflow_node_complete", node=node, stage=stage, duration=duration)
            return update

        return run_node

    def new_branch_name(self) -> str:
        return f"{self.branch_prefix}{int(time.time() * 1000)}"

    # Conditional routing

    @staticmethod
    def should_push(state: WorkflowGraphState) -> Literal["push", "noop"]:
        """Route after the change check."""
        if state.get("has_changes"):
            return "push"
        return "noop"

    def _build_workflow(self):
        """Build the LangGraph workflow."""
        logger.debug("building_workflow_graph")

        workflow = StateGraph(WorkflowGraphState)

        workflow.add_node("resolve", self._stage("resolve", "start", self._resolve_node))
        workflow.add_node("fork_repository", self._stage("fork_repository", "forked", self._fork_node))
        workflow.add_node("clone_repository", self._stage("clone_repository", "cloned", self._clone_node))
        workflow.add_node("prepare_workspace", self._stage("prepare_workspace", "prepared", self._prepare_node))
        workflow.add_node("run_transform", self._stage("run_transform", "transformed", self._transform_node))
        workflow.add_node("check_changes", self._stage("check_changes", "change_checked", self._check_changes_node))
        workflow.add_node("push_changes", self._stage("push_changes", "pushed", self._push_node))
        workflow.add_node(
            "create_pull_request",
            self._stage("create_pull_request", "pull_request_created", self._pull_request_node),
        )

        workflow.add_edge(START, "resolve")
        workflow.add_edge("resolve", "fork_repository")
        workflow.add_edge("fork_repository", "clone_repository")
        workflow.add_edge("clone_repository", "prepare_workspace")
        workflow.add_edge("prepare_workspace", "run_transform")
        workflow.add_edge("run_transform", "check_changes")
        workflow.add_conditional_edges(
            "check_changes",
            self.should_push,
            {"push": "push_changes", "noop": END},
        )
        workflow.add_edge("push_changes", "create_pull_request")
        workflow.add_edge("create_pull_request", END)

        return workflow.compile()

    async def run(self, request: WorkflowRequest) -> WorkflowResult:
        """
        Run the workflow for one request.

        Returns:
            Result with a PR URL, or a no-op result when nothing changed

        Raises:
            RefactorBridgeError: Any failure, after the clone was removed
        """
        run = WorkflowRun(request=request)

        with bind_run_context(run_id=run.run_id):
            logger.info(
                "workflow_start",
                repository=request.repository_url,
                base_branch=request.base_branch,
            )
            try:
                final_state = await self.workflow.ainvoke({"run": run})
                result = self._to_result(final_state)
            finally:
                await self._release(run)

            logger.info(
                "workflow_complete",
                pr_url=result.pr_url,
                steps=len(result.steps_applied),
                stages=[record.stage for record in run.history],
            )
            return result

    async def _release(self, run: WorkflowRun) -> None:
        """Close and delete the clone, if one was made."""
        if run.repo is not None:
            run.repo.close()
        if run.workdir is not None:
            await self.github_client.cleanup(run.workdir)
        run.advance("cleaned_up", run.workdir, 0.0)

    def _to_result(self, state: Mapping[str, Any]) -> WorkflowResult:
        steps = list(state.get("steps", []))
        if not state.get("has_changes"):
            state["run"].advance("noop_finished", NO_CHANGES_MESSAGE, 0.0)
            return WorkflowResult(
                success=True,
                message=NO_CHANGES_MESSAGE,
                changes=ChangeStats(),
                steps_applied=steps,
            )

        return WorkflowResult(
            success=True,
            pr_url=state.get("pr_url"),
            changes=state.get("changes"),
            steps_applied=steps,
            branch_name=state.get("branch_name"),
        )

    async def handle_tool_call(self, arguments: Optional[Mapping[str, Any]]) -> ToolResponse:
        """
        Handle a ``github_full_workflow`` call.

        Every failure is reported in the response rather than raised.
        """
        if not arguments:
            return ToolResponse(text=render_workflow_error(ValueError("No arguments provided")), is_error=True)

        try:
            request = WorkflowRequest.model_validate(dict(arguments))
        except ValidationError:
            return ToolResponse(
                text=render_workflow_error(ValueError("Invalid arguments: repository_url is required and base_branch must be a string")),
                is_error=True,
            )

        try:
            result = await self.run(request)
        except Exception as e:
            logger.error("github_full_workflow_failed", error=str(e), error_type=type(e).__name__)
            return ToolResponse(text=render_workflow_error(e), is_error=True)

        return ToolResponse(text=render_workflow_result(result))
