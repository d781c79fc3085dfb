"""
Change Detector Agent.

Decides whether the refactoring tool changed anything worth a pull request
and measures the change. Files written by the workspace preparer are
excluded from both answers through one shared filter.
"""

import asyncio
from pathlib import Path
from typing import List, Union

import git
import structlog

from refactor_bridge.agents.preparer import file_digest
from refactor_bridge.models.state import ChangeStats, ExclusionSet, StatusEntry

logger = structlog.get_logger()

# Object id of the empty tree, used as diff base for repositories without commits
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


def parse_porcelain_z(output: str) -> List[StatusEntry]:
    """
    Parse ``git status --porcelain -z`` output.

    Records are ``XY PATH`` separated by NUL; renames and copies are followed
    by an extra record holding the original path.
    """
    records = output.split("\0")
    entries: List[StatusEntry] = []
    i = 0

    while i < len(records):
        record = records[i]
        i += 1
        if len(record) < 4:
            continue

        index_status, worktree_status, path = record[0], record[1], record[3:]
        original_path = None
        if index_status in "RC" or worktree_status in "RC":
            if i < len(records):
                original_path = records[i] or None
            i += 1

        entries.append(StatusEntry(
            index_status=index_status,
            worktree_status=worktree_status,
            path=path,
            original_path=original_path,
        ))

    return entries


def parse_numstat(output: str) -> ChangeStats:
    """Sum ``git diff --numstat`` output; binary files count as zero lines."""
    added = removed = 0
    for line in output.splitlines():
        parts = line.split("\t", 2)
        if len(parts) < 3:
            continue
        if parts[0].isdigit():
            added += int(parts[0])
        if parts[1].isdigit():
            removed += int(parts[1])
    return ChangeStats(lines_added=added, lines_removed=removed)


def count_text_lines(path: Path) -> int:
    """Line count of a new text file as git would report it; binary files count as zero."""
    try:
        content = path.read_bytes()
    except (IsADirectoryError, FileNotFoundError):
        return 0
    if not content or b"\0" in content:
        return 0
    return content.count(b"\n") + (0 if content.endswith(b"\n") else 1)


class ChangeDetectorAgent:
    """Inspects a clone's working tree after the refactoring tool ran."""

    def status_entries(self, repo: git.Repo) -> List[StatusEntry]:
        """All working-tree changes, untracked files listed individually."""
        output = repo.git.status("--porcelain", "-z", "--untracked-files=all")
        return parse_porcelain_z(output)

    def relevant_entries(self, repo: git.Repo, exclusions: ExclusionSet) -> List[StatusEntry]:
        """Working-tree changes outside the exclusion set."""
        return [entry for entry in self.status_entries(repo) if entry.path not in exclusions]

    async def has_relevant_changes(self, repo: git.Repo, exclusions: ExclusionSet) -> bool:
        """True if anything outside the exclusion set changed."""
        entries = await asyncio.to_thread(self.relevant_entries, repo, exclusions)
        logger.info("changes_checked", relevant_files=len(entries), excluded_paths=len(exclusions))
        return bool(entries)

    async def change_stats(self, repo: git.Repo, exclusions: ExclusionSet) -> ChangeStats:
        """
        Measure the change outside the exclusion set.

        Args:
            repo: Clone to inspect
            exclusions: Paths written by the preparer

        Returns:
            Number of relevant files and lines added/removed in them
        """
        stats = await asyncio.to_thread(self._compute_stats, repo, exclusions)
        logger.info(
            "change_stats_computed",
            files_modified=stats.files_modified,
            lines_added=stats.lines_added,
            lines_removed=stats.lines_removed,
        )
        return stats

    def _compute_stats(self, repo: git.Repo, exclusions: ExclusionSet) -> ChangeStats:
        entries = self.relevant_entries(repo, exclusions)
        base = "HEAD" if repo.head.is_valid() else EMPTY_TREE_SHA
        numstat = parse_numstat(
            repo.git.diff(base, "--numstat", "--", ".", *exclusions.as_pathspecs())
        )

        # Untracked files are not part of the diff; count their lines as added
        workdir = Path(repo.working_tree_dir)
        untracked_lines = sum(
            count_text_lines(workdir / entry.path) for entry in entries if entry.is_untracked
        )

        return ChangeStats(
            files_modified=len(entries),
            lines_added=numstat.lines_added + untracked_lines,
            lines_removed=numstat.lines_removed,
        )

    def touched_exclusions(self, target_dir: Union[str, Path], exclusions: ExclusionSet) -> List[str]:
        """
        Excluded paths whose content changed since they were written.

        Edits to these paths are left out of the diff and the push.
        """
        target = Path(target_dir)
        touched = []
        for path in exclusions:
            full_path = target / path
            recorded = exclusions.digest_of(path)
            if not full_path.is_file():
                touched.append(path)
            elif recorded and file_digest(full_path) != recorded:
                touched.append(path)
        return touched
