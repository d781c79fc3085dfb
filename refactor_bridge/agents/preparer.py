"""
Workspace Preparer Agent.

Installs the refactoring tool's support files (agent, hook and command
definitions, plus an optional MCP server config) into a fresh clone and
records every path it writes so those files stay out of the pushed diff.
"""

import asyncio
import hashlib
import json
import shutil
from pathlib import Path
from typing import Optional, Union
import structlog

from refactor_bridge.models.state import ExclusionSet

logger = structlog.get_logger()

CONFIG_DIR = ".claude"
SUPPORT_DIRS = ("agents", "hooks", "commands")
MCP_SETTINGS_FILE = "mcp_settings.json"
NIA_API_URL = "https://apigcp.trynia.ai/"


def file_digest(path: Path) -> str:
    """SHA-256 of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()


def build_mcp_settings(nia_api_key: str) -> dict:
    """MCP server configuration wiring the Nia API key into the tool."""
    return {
        "mcpServers": {
            "nia": {
                "command": "pipx",
                "args": [
                    "run",
                    "--no-cache",
                    "nia-mcp-server",
                ],
                "env": {
                    "NIA_API_KEY": nia_api_key,
                    "NIA_API_URL": NIA_API_URL,
                },
            }
        }
    }


class WorkspacePreparerAgent:
    """Copies support files into a clone and tracks what it wrote."""

    def __init__(self, assets_root: Union[str, Path], nia_api_key: Optional[str] = None):
        """
        Initialize preparer.

        Args:
            assets_root: Directory holding the ``.claude`` support tree
            nia_api_key: Optional Nia API key written into the clone's MCP config
        """
        self.assets_root = Path(assets_root)
        self.nia_api_key = nia_api_key
        self.exclusions = ExclusionSet()

    async def prepare(self, target_dir: Union[str, Path]) -> ExclusionSet:
        """
        Install support files into ``target_dir``.

        Any exclusions from a previous call are discarded first.

        Returns:
            Paths written, relative to ``target_dir``
        """
        self.exclusions.clear()
        target = Path(target_dir)
        logger.info("preparing_workspace", target=str(target), assets_root=str(self.assets_root))

        await asyncio.to_thread(self._install_support_files, target)

        if self.nia_api_key:
            await asyncio.to_thread(self._write_mcp_settings, target)

        logger.info("workspace_prepared", files_written=len(self.exclusions))
        return self.exclusions

    def _install_support_files(self, target: Path) -> None:
        source_root = self.assets_root / CONFIG_DIR
        target_root = target / CONFIG_DIR
        target_root.mkdir(parents=True, exist_ok=True)

        for name in SUPPORT_DIRS:
            source_dir = source_root / name
            if not source_dir.is_dir():
                logger.debug("support_dir_missing", directory=str(source_dir))
                continue
            copied = self._copy_tree(source_dir, target_root / name, target)
            logger.info("support_dir_copied", directory=name, files=copied)

    def _copy_tree(self, source: Path, destination: Path, target: Path) -> int:
        """Recursively copy ``source`` into ``destination``, recording each file."""
        destination.mkdir(parents=True, exist_ok=True)
        copied = 0

        for entry in sorted(source.iterdir()):
            dest_path = destination / entry.name
            if entry.is_dir():
                copied += self._copy_tree(entry, dest_path, target)
                continue
            self._warn_if_overwriting(dest_path, target)
            shutil.copy(entry, dest_path)
            self._record(dest_path, target)
            copied += 1

        return copied

    def _write_mcp_settings(self, target: Path) -> None:
        settings_path = target / CONFIG_DIR / MCP_SETTINGS_FILE
        self._warn_if_overwriting(settings_path, target)
        settings_path.write_text(json.dumps(build_mcp_settings(self.nia_api_key), indent=2))
        self._record(settings_path, target)
        logger.info("nia_mcp_configured", path=str(settings_path.relative_to(target)))

    def _record(self, path: Path, target: Path) -> None:
        relative = path.relative_to(target).as_posix()
        self.exclusions.add(relative, file_digest(path))

    def _warn_if_overwriting(self, path: Path, target: Path) -> None:
        # The repository's own copy of this file is hidden from the diff once replaced
        if path.exists():
            logger.warning("overwriting_repository_file", path=path.relative_to(target).as_posix())
