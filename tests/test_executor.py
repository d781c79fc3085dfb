"""
Tests for the transform executor, using shell scripts in place of the CLI.
"""

import time

import pytest

from refactor_bridge.agents.executor import FALLBACK_STEPS, TransformExecutorAgent, parse_step_line
from refactor_bridge.errors import TransformError, TransformTimeoutError

from conftest import requires_posix, write_script


@pytest.mark.parametrize("line, expected", [
    ('{"type": "log", "message": "Running data-unifier agent"}', "Running data-unifier agent"),
    ('{"text": "Executing organize command"}', "Executing organize command"),
    ('{"event": "  running idea-lifter AGENT  "}', "running idea-lifter AGENT"),
    (
        '{"type": "assistant", "message": {"content": [{"type": "text", "text": "Running code-unifier agent"}]}}',
        "Running code-unifier agent",
    ),
    (b'{"data": "Executing representable-valid agent"}\n', "Executing representable-valid agent"),
    ('{"message": "Reading files"}', None),
    ('{"message": "Running tests"}', None),
    ('{"other": "Running data-unifier agent"}', None),
    ('["Running data-unifier agent"]', None),
    ("Running data-unifier agent", None),
    ("", None),
])
def test_parse_step_line(line, expected):
    assert parse_step_line(line) == expected


def test_build_command():
    executor = TransformExecutorAgent(claude_code_path="/opt/claude", prompt="Refactor", model="opus")

    assert executor.build_command() == [
        "/opt/claude",
        "-p",
        "Refactor",
        "--permission-mode=acceptEdits",
        "--output-format=stream-json",
        "--verbose",
        "--model=opus",
    ]


def test_build_env_exports_nia_key(monkeypatch):
    monkeypatch.setenv("KEEP_ME", "yes")

    env = TransformExecutorAgent(nia_api_key="nk-1").build_env()

    assert env["NIA_API_KEY"] == "nk-1"
    assert env["KEEP_ME"] == "yes"
    assert env["NO_COLOR"] == "1"
    assert "NIA_API_KEY" not in TransformExecutorAgent().build_env()


@requires_posix
@pytest.mark.asyncio
async def test_steps_are_collected_in_order(tmp_path):
    script = write_script(tmp_path / "claude", """
printf '%s\\n' '{"type":"system","message":"starting"}'
printf '%s\\n' '{"type":"log","message":"Running data-unifier agent"}'
printf 'plain text output\\n'
printf '%s\\n' '{"type":"log","message":"Executing organize command"}'
""")
    workdir = tmp_path / "clone"
    workdir.mkdir()

    steps = await TransformExecutorAgent(claude_code_path=str(script)).run_transform(workdir)

    assert steps == ["Running data-unifier agent", "Executing organize command"]


@requires_posix
@pytest.mark.asyncio
async def test_fallback_steps_when_none_reported(tmp_path):
    script = write_script(tmp_path / "claude", "echo 'nothing structured'\n")
    workdir = tmp_path / "clone"
    workdir.mkdir()

    steps = await TransformExecutorAgent(claude_code_path=str(script)).run_transform(workdir)

    assert steps == FALLBACK_STEPS
    assert steps is not FALLBACK_STEPS


@requires_posix
@pytest.mark.asyncio
async def test_tool_runs_in_clone_with_arguments(tmp_path):
    script = write_script(tmp_path / "claude", """
pwd > cwd.txt
printf '%s\\n' "$@" > args.txt
printf '%s' "$NIA_API_KEY" > key.txt
""")
    workdir = tmp_path / "clone"
    workdir.mkdir()
    executor = TransformExecutorAgent(claude_code_path=str(script), nia_api_key="nk-9")

    await executor.run_transform(workdir)

    assert (workdir / "cwd.txt").read_text().strip() == str(workdir.resolve())
    assert (workdir / "args.txt").read_text().splitlines() == executor.build_command()[1:]
    assert (workdir / "key.txt").read_text() == "nk-9"


@requires_posix
@pytest.mark.asyncio
async def test_long_output_lines_are_read(tmp_path):
    script = write_script(tmp_path / "claude", """
printf '{"message":"'
head -c 200000 /dev/zero | tr '\\0' a
printf '"}\\n'
printf '%s\\n' '{"message":"Running data-unifier agent"}'
""")
    workdir = tmp_path / "clone"
    workdir.mkdir()

    steps = await TransformExecutorAgent(claude_code_path=str(script)).run_transform(workdir)

    assert steps == ["Running data-unifier agent"]


@requires_posix
@pytest.mark.asyncio
async def test_records_over_the_limit_are_skipped(tmp_path):
    script = write_script(tmp_path / "claude", """
printf '%s\\n' '{"message":"Running data-unifier agent"}'
printf '{"message":"Running '
head -c 5000 /dev/zero | tr '\\0' a
printf ' agent"}\\n'
printf '%s\\n' '{"message":"Executing organize command"}'
""")
    workdir = tmp_path / "clone"
    workdir.mkdir()

    executor = TransformExecutorAgent(claude_code_path=str(script), stream_limit=1024)
    steps = await executor.run_transform(workdir)

    assert steps == ["Running data-unifier agent", "Executing organize command"]


@requires_posix
@pytest.mark.asyncio
async def test_non_zero_exit_raises(tmp_path):
    script = write_script(tmp_path / "claude", "exit 3\n")
    workdir = tmp_path / "clone"
    workdir.mkdir()

    with pytest.raises(TransformError) as exc_info:
        await TransformExecutorAgent(claude_code_path=str(script)).run_transform(workdir)

    assert exc_info.value.exit_code == 3
    assert exc_info.value.signal is None
    assert str(exc_info.value) == "Refactoring failed with code 3"


@requires_posix
@pytest.mark.asyncio
async def test_killed_by_signal_raises(tmp_path):
    script = write_script(tmp_path / "claude", "kill -9 $$\n")
    workdir = tmp_path / "clone"
    workdir.mkdir()

    with pytest.raises(TransformError) as exc_info:
        await TransformExecutorAgent(claude_code_path=str(script)).run_transform(workdir)

    assert exc_info.value.exit_code == -9
    assert exc_info.value.signal == "SIGKILL"


@requires_posix
@pytest.mark.asyncio
async def test_timeout_kills_tool(tmp_path):
    script = write_script(tmp_path / "claude", """
printf '%s\\n' '{"message":"Running data-unifier agent"}'
exec sleep 30
""")
    workdir = tmp_path / "clone"
    workdir.mkdir()
    executor = TransformExecutorAgent(claude_code_path=str(script), timeout=0.5)

    start = time.monotonic()
    with pytest.raises(TransformTimeoutError) as exc_info:
        await executor.run_transform(workdir)

    assert time.monotonic() - start < 10
    assert "timed out" in str(exc_info.value)
    assert exc_info.value.exit_code is None


@pytest.mark.asyncio
async def test_missing_tool_raises(tmp_path):
    executor = TransformExecutorAgent(claude_code_path=str(tmp_path / "no-such-claude"))

    with pytest.raises(TransformError, match="not found"):
        await executor.run_transform(tmp_path)
