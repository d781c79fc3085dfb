"""
Shared fixtures: an in-memory stand-in for the PyGithub client, local git
repositories acting as GitHub remotes, and shell scripts standing in for the
refactoring CLI.
"""

import shutil
import stat
import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import git
import pytest
from github import GithubException, UnknownObjectException

from refactor_bridge.integrations.github_client import GitHubClient

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
requires_posix = pytest.mark.skipif(sys.platform == "win32", reason="shell scripts need a POSIX shell")


class FakeOwner:
    def __init__(self, login: str):
        self.login = login


class FakePull:
    def __init__(self, number: int, html_url: str, title: str, body: str, head: str, base: str):
        self.number = number
        self.html_url = html_url
        self.title = title
        self.body = body
        self.head = head
        self.base = base


class FakeRepo:
    def __init__(self, api: "FakeGithub", owner: str, name: str, default_branch: str = "main", fork: bool = False):
        self.api = api
        self.owner = FakeOwner(owner)
        self.name = name
        self.default_branch = default_branch
        self.fork = fork

    @property
    def full_name(self) -> str:
        return f"{self.owner.login}/{self.name}"

    def create_fork(self):
        return self.api._create_fork(self)

    def create_pull(self, title: str, body: str, head: str, base: str):
        return self.api._create_pull(self, title=title, body=body, head=head, base=base)


class FakeGithub:
    """Records calls the way the GitHub API would observe them."""

    def __init__(self, login: str = "bot-user", user_delay: float = 0.0):
        self.login = login
        self.user_delay = user_delay
        self.repos: Dict[str, FakeRepo] = {}
        self.pending_forks: Dict[str, int] = {}  # full name -> lookups before it is visible
        self.fork_ready_after = 0
        self.failures: Dict[str, List[Exception]] = {}
        self.get_user_calls = 0
        self.get_repo_calls: List[str] = []
        self.created_forks: List[str] = []
        self.pulls: List[FakePull] = []
        self._lock = threading.Lock()

    def add_repo(self, owner: str, name: str, default_branch: str = "main", fork: bool = False) -> FakeRepo:
        repo = FakeRepo(self, owner, name, default_branch, fork)
        self.repos[repo.full_name] = repo
        return repo

    def fail(self, operation: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls of ``operation``."""
        self.failures.setdefault(operation, []).extend(errors)

    def _maybe_fail(self, operation: str) -> None:
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def get_user(self):
        with self._lock:
            self.get_user_calls += 1
        if self.user_delay:
            time.sleep(self.user_delay)
        self._maybe_fail("get_user")
        return FakeOwner(self.login)

    def get_repo(self, full_name: str):
        with self._lock:
            self.get_repo_calls.append(full_name)
        self._maybe_fail("get_repo")

        if full_name in self.pending_forks:
            if self.pending_forks[full_name] > 0:
                self.pending_forks[full_name] -= 1
                raise not_found()
            del self.pending_forks[full_name]

        if full_name not in self.repos:
            raise not_found()
        return self.repos[full_name]

    def _create_fork(self, source: FakeRepo):
        self._maybe_fail("create_fork")
        fork = FakeRepo(self, self.login, source.name, source.default_branch, fork=True)
        self.created_forks.append(fork.full_name)
        self.repos[fork.full_name] = fork
        if self.fork_ready_after:
            self.pending_forks[fork.full_name] = self.fork_ready_after
        return fork

    def _create_pull(self, repo: FakeRepo, **kwargs):
        self._maybe_fail("create_pull")
        number = len(self.pulls) + 1
        pull = FakePull(number, f"https://github.com/{repo.full_name}/pull/{number}", **kwargs)
        self.pulls.append(pull)
        return pull


def not_found() -> UnknownObjectException:
    return UnknownObjectException(404, {"message": "Not Found"}, None)


def service_unavailable() -> GithubException:
    return GithubException(503, {"message": "Service Unavailable"}, None)


class LocalGitHubClient(GitHubClient):
    """GitHub client whose clones come from a local bare repository."""

    def __init__(self, remote: Optional[Path] = None, **kwargs):
        kwargs.setdefault("token", "test-token")
        kwargs.setdefault("retry_delay", 0)
        kwargs.setdefault("fork_poll_interval", 0)
        super().__init__(**kwargs)
        self.remote = remote
        self.cloned_dirs: List[Path] = []

    def clone_url(self, ref):
        return str(self.remote)

    async def clone(self, ref, branch=None):
        repo, workdir = await super().clone(ref, branch)
        self.cloned_dirs.append(workdir)
        return repo, workdir


def make_repo(path: Path, files: Dict[str, str]) -> git.Repo:
    """Create a repository on ``main`` with one commit holding ``files``."""
    path.mkdir(parents=True, exist_ok=True)
    repo = git.Repo.init(path)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
    for relative, content in files.items():
        file_path = path / relative
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)
    repo.git.add("--all")
    repo.git.commit("-m", "Initial commit")
    return repo


def make_remote(tmp_path: Path, files: Dict[str, str]) -> Path:
    """Create a bare repository standing in for the fork on GitHub."""
    seed = make_repo(tmp_path / "seed", files)
    bare_path = tmp_path / "remote.git"
    git.Repo.clone_from(seed.working_tree_dir, bare_path, bare=True).close()
    seed.close()
    return bare_path


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_github():
    api = FakeGithub()
    api.add_repo("octo", "widgets", default_branch="main")
    return api


@pytest.fixture
def client(fake_github):
    return GitHubClient(
        token="test-token",
        retry_attempts=3,
        retry_delay=0,
        fork_poll_interval=0,
        fork_poll_attempts=5,
        client=fake_github,
    )


@pytest.fixture
def assets_root(tmp_path):
    root = tmp_path / "assets"
    (root / ".claude" / "agents").mkdir(parents=True)
    (root / ".claude" / "agents" / "representable-valid.md").write_text("# agent\n")
    (root / ".claude" / "agents" / "nested").mkdir()
    (root / ".claude" / "agents" / "nested" / "helper.md").write_text("# helper\n")
    (root / ".claude" / "hooks").mkdir()
    (root / ".claude" / "hooks" / "pre.sh").write_text("echo hook\n")
    (root / ".claude" / "commands").mkdir()
    (root / ".claude" / "commands" / "organize.md").write_text("# organize\n")
    return root


SETTINGS_ENV = (
    "GITHUB_TOKEN",
    "GITHUB_API_URL",
    "GITHUB_HOST",
    "GITHUB_RETRY_ATTEMPTS",
    "GITHUB_RETRY_DELAY",
    "FORK_POLL_INTERVAL",
    "FORK_POLL_ATTEMPTS",
    "NIA_API_KEY",
    "CLAUDE_CODE_PATH",
    "REFACTOR_TIMEOUT",
    "REFACTOR_ASSETS_ROOT",
    "HOST",
    "PORT",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
