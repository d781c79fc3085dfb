"""
GitHub client for the refactoring workflow: repository lookup, forking,
cloning, pushing and pull request creation.

PyGithub and GitPython are blocking libraries; every call runs in a worker
thread so concurrent workflows on the event loop are not stalled.
"""

import asyncio
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

import git
from github import Auth, BadCredentialsException, Github, GithubException, UnknownObjectException
from github.Repository import Repository
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_fixed
import structlog

from refactor_bridge.errors import (
    AuthenticationError,
    CloneError,
    ForkError,
    ForkTimeoutError,
    InvalidReferenceError,
    PullRequestError,
    PushError,
    RepositoryLookupError,
)
from refactor_bridge.models.state import RepositoryReference, exclusion_pathspecs
from refactor_bridge.templates import render_commit_message, render_pr_body, render_pr_title

logger = structlog.get_logger()

TRANSIENT_STATUSES = {502, 503, 504}
TRANSIENT_MARKERS = (
    "service unavailable",
    "gh100",
    "gh200",
    "502",
    "503",
    "504",
    "timeout",
    "timed out",
)

# Errors raised by PyGithub (API) and by requests / GitPython (transport)
API_ERRORS = (GithubException, OSError)
GIT_ERRORS = (git.GitCommandError, OSError)


def is_transient_error(error: BaseException) -> bool:
    """Return True if ``error`` looks like a temporary GitHub outage."""
    if isinstance(error, GithubException) and error.status in TRANSIENT_STATUSES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def parse_repository_reference(value: str, host: str = "github.com") -> RepositoryReference:
    """
    Parse a repository URL or ``owner/repo`` slug.

    Accepts https and ssh URLs on ``host`` (with or without a ``.git`` suffix
    or trailing path) as well as bare slugs.

    Raises:
        InvalidReferenceError: If ``value`` matches no accepted form
    """
    text = value.strip().rstrip("/")
    patterns = [
        re.compile(re.escape(host) + r"[/:](?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)"),
        re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)$"),
    ]

    for pattern in patterns:
        match = pattern.search(text)
        if match:
            repo = re.sub(r"\.git$", "", match.group("repo"))
            owner = match.group("owner")
            if repo in ("", ".", "..") or owner in (".", ".."):
                break
            return RepositoryReference(owner=owner, name=repo)

    raise InvalidReferenceError(value)


class GitHubClient:
    """Client for GitHub API and local git operations."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        host: str = "github.com",
        retry_attempts: int = 3,
        retry_delay: float = 5.0,
        fork_poll_interval: float = 2.0,
        fork_poll_attempts: int = 30,
        author_name: str = "Refactoring Bot",
        author_email: str = "refactoring-bot@example.com",
        client: Optional[Github] = None,
    ):
        """
        Initialize GitHub client.

        Args:
            token: GitHub Personal Access Token
            api_url: GitHub API base URL (for Enterprise)
            host: Host used in clone URLs and accepted repository URLs
            retry_attempts: Attempts per API call on transient errors
            retry_delay: Fixed delay between attempts (seconds)
            fork_poll_interval: Delay between fork readiness checks (seconds)
            fork_poll_attempts: Readiness checks before giving up on a fork
            author_name: Commit identity configured on clones
            author_email: Commit identity configured on clones
            client: Preconfigured PyGithub client
        """
        self.token = token
        self.api_url = api_url
        self.host = host
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.fork_poll_interval = fork_poll_interval
        self.fork_poll_attempts = fork_poll_attempts
        self.author_name = author_name
        self.author_email = author_email

        if client is not None:
            self.client = client
        else:
            auth = Auth.Token(token)
            if api_url == "https://api.github.com":
                self.client = Github(auth=auth)
            else:
                self.client = Github(base_url=api_url, auth=auth)

        self._login: Optional[str] = None
        self._identity_lock = asyncio.Lock()

    async def with_github_retry(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run a blocking GitHub/git call, retrying transient failures.

        Retries with a fixed delay while the error is transient and attempts
        remain; any other error propagates immediately.
        """
        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "github_transient_error_retrying",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=self.retry_attempts,
                delay=self.retry_delay,
                error=str(retry_state.outcome.exception()),
            )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception(is_transient_error),
            before_sleep=log_retry,
            reraise=True,
        ):
            with attempt:
                result = await asyncio.to_thread(func, *args, **kwargs)
        return result

    def resolve(self, url_or_slug: str) -> RepositoryReference:
        """Parse a repository URL or slug on this client's host."""
        return parse_repository_reference(url_or_slug, host=self.host)

    async def get_authenticated_login(self) -> str:
        """
        Return the login of the token's user.

        Looked up once per client; concurrent first callers wait for the same
        lookup. A failed lookup is not cached.
        """
        if self._login is not None:
            return self._login

        async with self._identity_lock:
            if self._login is None:
                try:
                    login = await self.with_github_retry("get_authenticated_user", self._fetch_login)
                except API_ERRORS as e:
                    logger.error("github_authentication_failed", error=str(e))
                    raise AuthenticationError(f"Failed to authenticate with GitHub: {e}") from e
                self._login = login
                logger.info("github_authenticated", login=login)

        return self._login

    def _fetch_login(self) -> str:
        return self.client.get_user().login

    async def get_repository_info(self, ref: RepositoryReference) -> RepositoryReference:
        """Fetch a repository and return its reference with the real default branch."""
        try:
            repo = await self.with_github_retry("get_repo", self.client.get_repo, ref.full_name)
        except BadCredentialsException as e:
            raise AuthenticationError(f"GitHub rejected the token: {e}") from e
        except API_ERRORS as e:
            logger.error("failed_to_fetch_repository", repo=ref.full_name, error=str(e))
            raise RepositoryLookupError(f"Failed to fetch repository {ref.full_name}: {e}") from e

        logger.info("repository_fetched", repo=ref.full_name, default_branch=repo.default_branch)
        return self._to_reference(repo)

    async def _find_repository(self, full_name: str) -> Optional[Repository]:
        try:
            return await self.with_github_retry("get_repo", self.client.get_repo, full_name)
        except UnknownObjectException:
            return None

    async def fork(self, ref: RepositoryReference) -> RepositoryReference:
        """
        Fork a repository into the authenticated user's account.

        An existing fork is reused. A new fork is polled until the API can
        serve it.

        Returns:
            Reference to the fork

        Raises:
            ForkTimeoutError: If the new fork never becomes queryable
            ForkError: If the fork cannot be looked up or created
        """
        login = await self.get_authenticated_login()

        try:
            existing = await self._find_repository(f"{login}/{ref.name}")
            if existing is not None:
                if not getattr(existing, "fork", True):
                    logger.warning("existing_repository_is_not_a_fork", repo=f"{login}/{ref.name}")
                logger.info("fork_already_exists", fork=f"{login}/{ref.name}")
                return self._to_reference(existing)

            logger.info("creating_fork", repo=ref.full_name, owner=login)
            source = await self.with_github_retry("get_repo", self.client.get_repo, ref.full_name)
            fork = await self.with_github_retry("create_fork", source.create_fork)
        except API_ERRORS as e:
            logger.error("failed_to_fork_repository", repo=ref.full_name, error=str(e))
            raise ForkError(f"Failed to fork repository: {e}") from e

        fork_ref = self._to_reference(fork)
        await self._wait_for_fork(fork_ref)
        return fork_ref

    async def _wait_for_fork(self, fork_ref: RepositoryReference) -> None:
        """Poll until the fork is queryable."""
        for attempt in range(1, self.fork_poll_attempts + 1):
            try:
                await asyncio.to_thread(self.client.get_repo, fork_ref.full_name)
                logger.info("fork_ready", fork=fork_ref.full_name, attempts=attempt)
                return
            except API_ERRORS as e:
                logger.debug("fork_not_ready", fork=fork_ref.full_name, attempt=attempt, error=str(e))

            if attempt < self.fork_poll_attempts:
                await asyncio.sleep(self.fork_poll_interval)

        logger.error("fork_wait_timeout", fork=fork_ref.full_name, attempts=self.fork_poll_attempts)
        raise ForkTimeoutError(f"Fork creation timed out: {fork_ref.full_name}")

    def _to_reference(self, repo: Repository) -> RepositoryReference:
        return RepositoryReference(
            owner=repo.owner.login,
            name=repo.name,
            default_branch=repo.default_branch or "main",
        )

    def clone_url(self, ref: RepositoryReference) -> str:
        """HTTPS clone URL with the token embedded."""
        return f"https://x-access-token:{self.token}@{self.host}/{ref.owner}/{ref.name}.git"

    def _redact(self, text: str) -> str:
        return text.replace(self.token, "***") if self.token else text

    async def clone(self, ref: RepositoryReference, branch: Optional[str] = None) -> Tuple[git.Repo, Path]:
        """
        Clone a repository into a fresh temporary directory.

        Args:
            ref: Repository to clone
            branch: Branch to check out (defaults to the remote HEAD)

        Returns:
            Tuple of (repository handle, directory)

        Raises:
            CloneError: If cloning fails; the directory is removed first,
                as it is when the call is cancelled
        """
        workdir = Path(await asyncio.to_thread(
            tempfile.mkdtemp, prefix=f"refactor-{ref.owner}-{ref.name}-"
        ))
        logger.info("cloning_repository", repo=ref.full_name, directory=str(workdir), branch=branch)

        clone_task = asyncio.ensure_future(self._clone_into(ref, workdir, branch))
        try:
            repo = await asyncio.shield(clone_task)
        except GIT_ERRORS as e:
            message = self._redact(str(e))
            logger.error("failed_to_clone_repository", repo=ref.full_name, error=message)
            await self.cleanup(workdir)
            raise CloneError(f"Failed to clone {ref.full_name}: {message}") from e
        except BaseException:
            # Cancelled: the worker thread keeps writing until git exits
            logger.warning("clone_aborted", repo=ref.full_name, directory=str(workdir))
            await self._discard_clone(clone_task, workdir)
            raise

        logger.info("repository_cloned", repo=ref.full_name, directory=str(workdir))
        return repo, workdir

    async def _clone_into(self, ref: RepositoryReference, workdir: Path, branch: Optional[str]) -> git.Repo:
        clone_kwargs = {"branch": branch} if branch else {}
        repo = await self.with_github_retry(
            "clone", git.Repo.clone_from, self.clone_url(ref), str(workdir), **clone_kwargs
        )
        try:
            await asyncio.to_thread(self._configure_identity, repo)
        except BaseException:
            repo.close()
            raise
        return repo

    async def _discard_clone(self, clone_task: "asyncio.Future[git.Repo]", workdir: Path) -> None:
        """Wait for an abandoned clone to settle, then remove its directory."""
        results = await asyncio.gather(clone_task, return_exceptions=True)
        if isinstance(results[0], git.Repo):
            results[0].close()
        await self.cleanup(workdir)

    def _configure_identity(self, repo: git.Repo) -> None:
        with repo.config_writer() as writer:
            writer.set_value("user", "email", self.author_email)
            writer.set_value("user", "name", self.author_name)

    async def push(self, repo: git.Repo, branch_name: str, exclude_paths: Iterable[str] = ()) -> None:
        """
        Commit all changes except ``exclude_paths`` on a new branch and push it.

        Args:
            repo: Local clone
            branch_name: Branch to create
            exclude_paths: Repository-relative paths left out of the commit

        Raises:
            PushError: If branching, committing or pushing fails
        """
        pathspecs = exclusion_pathspecs(exclude_paths)
        logger.info("pushing_changes", branch=branch_name, excluded=len(pathspecs))

        try:
            await asyncio.to_thread(self._commit_changes, repo, branch_name, pathspecs)
            await self.with_github_retry("push", repo.git.push, "--set-upstream", "origin", branch_name)
        except GIT_ERRORS as e:
            message = self._redact(str(e))
            logger.error("failed_to_push_changes", branch=branch_name, error=message)
            raise PushError(f"Failed to push branch {branch_name}: {message}") from e

        logger.info("changes_pushed", branch=branch_name)

    def _commit_changes(self, repo: git.Repo, branch_name: str, pathspecs: List[str]) -> None:
        repo.git.checkout("-b", branch_name)
        repo.git.add("--all", "--", ".", *pathspecs)
        repo.git.commit("-m", render_commit_message())

    async def create_pull_request(
        self,
        original_ref: RepositoryReference,
        fork_owner: str,
        branch_name: str,
        base_branch: str,
        steps: List[str],
    ) -> str:
        """
        Open a pull request from the fork's branch to the original repository.

        Args:
            original_ref: Repository receiving the pull request
            fork_owner: Owner of the fork holding ``branch_name``
            branch_name: Head branch
            base_branch: Base branch in the original repository
            steps: Refactoring steps listed in the body

        Returns:
            URL of the pull request
        """
        head = f"{fork_owner}:{branch_name}"
        logger.info("creating_pull_request", head=head, base=f"{original_ref.owner}:{base_branch}")

        try:
            repo = await self.with_github_retry("get_repo", self.client.get_repo, original_ref.full_name)
            pr = await self.with_github_retry(
                "create_pull",
                repo.create_pull,
                title=render_pr_title(),
                body=render_pr_body(steps, fork_owner),
                head=head,
                base=base_branch,
            )
        except API_ERRORS as e:
            logger.error("failed_to_create_pr", head=head, base=base_branch, error=str(e))
            raise PullRequestError(f"Failed to create pull request: {e}") from e

        logger.info("pull_request_created", pr_number=pr.number, url=pr.html_url)
        return pr.html_url

    async def cleanup(self, directory: Union[str, Path]) -> None:
        """Remove a temporary directory; failures are logged, never raised."""
        try:
            await asyncio.to_thread(shutil.rmtree, directory)
            logger.info("workdir_removed", directory=str(directory))
        except FileNotFoundError:
            logger.debug("workdir_already_removed", directory=str(directory))
        except OSError as e:
            logger.error("workdir_cleanup_failed", directory=str(directory), error=str(e))

    def close(self):
        """Close the underlying API session."""
        close = getattr(self.client, "close", None)
        if close is not None:
            close()


def get_github_client(config) -> GitHubClient:
    """Create a GitHub client from configuration."""
    return GitHubClient(
        token=config.github_token,
        api_url=config.github_api_url,
        host=config.github_host,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
        fork_poll_interval=config.fork_poll_interval,
        fork_poll_attempts=config.fork_poll_attempts,
        author_name=config.commit_author_name,
        author_email=config.commit_author_email,
    )
