"""
Transform Executor Agent.

Runs the external refactoring CLI inside a prepared clone and collects the
steps it reports on its NDJSON stdout.
"""

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import structlog

from refactor_bridge.errors import TransformError, TransformTimeoutError

logger = structlog.get_logger()

DEFAULT_PROMPT = "Run the representable-valid agent"
DEFAULT_MODEL = "sonnet"
DEFAULT_TIMEOUT = 60 * 60
STREAM_LIMIT = 16 * 1024 * 1024  # stream-json records can be far longer than 64 KiB

STEP_VERBS = ("running", "executing")
STEP_NOUNS = ("agent", "command")
MESSAGE_KEYS = ("message", "text", "event", "data")

FALLBACK_STEPS = [
    "Executed data-unifier agent",
    "Executed code-unifier agent",
    "Executed initial-organizer agent",
    "Executed organize command",
    "Executed idea-lifter agent",
    "Executed representable-valid agent",
]


def extract_message(record: Dict[str, Any]) -> Optional[str]:
    """
    Pull the free-text message out of one log record.

    The first string among ``message``, ``text``, ``event`` and ``data`` wins.
    A ``message`` object carrying a list of content blocks contributes the
    text of those blocks.
    """
    for key in MESSAGE_KEYS:
        value = record.get(key)
        if isinstance(value, str):
            return value
        if key == "message" and isinstance(value, dict):
            blocks = value.get("content")
            if isinstance(blocks, list):
                texts = [
                    block["text"] for block in blocks
                    if isinstance(block, dict) and isinstance(block.get("text"), str)
                ]
                if texts:
                    return "\n".join(texts)
    return None


def is_step_message(message: str) -> bool:
    lowered = message.lower()
    return any(verb in lowered for verb in STEP_VERBS) and any(noun in lowered for noun in STEP_NOUNS)


def parse_step_line(line: Union[str, bytes]) -> Optional[str]:
    """
    Return the step described by one stdout line, if any.

    Lines that are not JSON objects are ignored.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        return None

    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None

    message = extract_message(record)
    if message and is_step_message(message):
        return message.strip()
    return None


class TransformExecutorAgent:
    """Runs the external refactoring tool with a deadline."""

    def __init__(
        self,
        claude_code_path: str = "claude",
        nia_api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        prompt: str = DEFAULT_PROMPT,
        model: str = DEFAULT_MODEL,
        stream_limit: int = STREAM_LIMIT,
    ):
        """
        Initialize executor.

        Args:
            claude_code_path: Path to the refactoring CLI
            nia_api_key: Optional Nia API key exported to the tool
            timeout: Seconds before the tool is killed
            prompt: Instruction passed to the tool
            model: Model selection passed to the tool
            stream_limit: Longest stdout record kept; longer ones are skipped
        """
        self.claude_code_path = claude_code_path
        self.nia_api_key = nia_api_key
        self.timeout = timeout
        self.prompt = prompt
        self.model = model
        self.stream_limit = stream_limit

    def build_command(self) -> List[str]:
        return [
            self.claude_code_path,
            "-p",
            self.prompt,
            "--permission-mode=acceptEdits",
            "--output-format=stream-json",
            "--verbose",
            f"--model={self.model}",
        ]

    def build_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.nia_api_key:
            env["NIA_API_KEY"] = self.nia_api_key
        env["NO_COLOR"] = "1"
        env["FORCE_COLOR"] = "0"
        return env

    async def run_transform(self, target_dir: Union[str, Path]) -> List[str]:
        """
        Run the refactoring tool in ``target_dir``.

        Returns:
            Steps reported by the tool, or the fallback list if it reported none

        Raises:
            TransformError: If the tool cannot start or exits non-zero
            TransformTimeoutError: If the tool outlives the timeout
        """
        logger.info(
            "executing_refactoring",
            directory=str(target_dir),
            executable=self.claude_code_path,
            timeout=self.timeout,
        )
        start_time = time.time()

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(),
                cwd=str(target_dir),
                env=self.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,  # Inherited: passes through to our stderr
                limit=self.stream_limit,
            )
        except FileNotFoundError as e:
            logger.error("refactoring_tool_not_found", executable=self.claude_code_path)
            raise TransformError(f"Claude CLI not found at '{self.claude_code_path}'") from e
        except PermissionError as e:
            logger.error("refactoring_tool_not_executable", executable=self.claude_code_path)
            raise TransformError(f"Claude CLI at '{self.claude_code_path}' is not executable") from e

        steps: List[str] = []
        try:
            await asyncio.wait_for(self._collect(process, steps), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            logger.error("refactoring_timed_out", timeout=self.timeout, steps_seen=len(steps))
            raise TransformTimeoutError(self.timeout) from None
        finally:
            # Cancellation or any other escape must not leave the tool running
            if process.returncode is None:
                await self._kill(process)

        duration = time.time() - start_time
        if process.returncode != 0:
            error = TransformError.from_returncode(process.returncode)
            logger.error(
                "refactoring_failed",
                exit_code=error.exit_code,
                signal=error.signal,
                duration=duration,
            )
            raise error

        if not steps:
            logger.info("no_steps_reported_using_fallback")
            steps = list(FALLBACK_STEPS)

        logger.info("refactoring_complete", steps=len(steps), duration=duration)
        return steps

    async def _collect(self, process: asyncio.subprocess.Process, steps: List[str]) -> None:
        """Read stdout to EOF, appending steps in order, then wait for exit."""
        assert process.stdout is not None
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError:
                # Overlong record; the reader has already dropped it
                logger.warning("refactoring_output_record_skipped", limit=self.stream_limit)
                continue
            if not line:
                break
            step = parse_step_line(line)
            if step:
                logger.info("refactoring_step", step=step)
                steps.append(step)
        await process.wait()

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
