"""Tests for the process runner (with real child processes)."""
import asyncio
import sys
from unittest.mock import MagicMock

import pytest

from netdash.core.errors import ProcessExitError, ProcessSpawnError, ProcessTimeoutError
from netdash.core.lines import LineAssembler
from netdash.core.runner import ProcessRunner


def script(code: str):
    return ["-c", code]


@pytest.fixture
def mock_logger():
    return MagicMock()


@pytest.fixture
def runner(mock_logger):
    return ProcessRunner(app_logger=mock_logger, kill_timeout=2.0)


async def test_output_streams_before_exit(runner):
    """The first line is delivered while the process is still running."""
    code = "import sys, time; print('ready'); sys.stdout.flush(); time.sleep(1.0); print('done')"
    async with runner.spawn(sys.executable, script(code), 10) as handle:
        stream = handle.stream()
        first = await stream.__anext__()
        assert first.startswith(b"ready")
        assert handle.alive

        assembler = LineAssembler()
        lines = assembler.feed(first)
        async for chunk in stream:
            lines.extend(assembler.feed(chunk))
        lines.extend(assembler.flush())
        outcome = await handle.wait()

    assert lines == ["ready", "done"]
    assert outcome.success is True
    assert outcome.return_code == 0
    assert outcome.command.startswith(sys.executable)


async def test_nonzero_exit_keeps_stderr(runner):
    """A failing process reports its exit code and stderr."""
    code = "import sys; sys.stderr.write('unable to connect'); sys.exit(3)"
    async with runner.spawn(sys.executable, script(code), 10) as handle:
        async for _ in handle.stream():
            pass
        outcome = await handle.wait()

    assert outcome.success is False
    assert outcome.return_code == 3
    assert outcome.stderr == "unable to connect"
    with pytest.raises(ProcessExitError, match="unable to connect") as exc_info:
        outcome.raise_for_status()
    assert exc_info.value.return_code == 3


async def test_missing_executable_is_spawn_error(runner, mock_logger):
    with pytest.raises(ProcessSpawnError) as exc_info:
        async with runner.spawn("/nonexistent/netdash-tool", ["-v"], 5):
            pass
    assert exc_info.value.command == "/nonexistent/netdash-tool"
    mock_logger.error.assert_called_once()


async def test_deadline_terminates_process(runner):
    """A process that outlives its deadline is terminated and reported."""
    code = "import time; time.sleep(30)"
    with pytest.raises(ProcessTimeoutError) as exc_info:
        async with runner.spawn(sys.executable, script(code), 0.5) as handle:
            async for _ in handle.stream():
                pass

    assert exc_info.value.deadline == 0.5
    assert handle.process.returncode is not None


async def test_cancelling_the_task_kills_the_process(runner):
    handles = []
    started = asyncio.Event()

    async def run():
        async with runner.spawn(sys.executable, script("import time; time.sleep(30)"), 60) as handle:
            handles.append(handle)
            started.set()
            async for _ in handle.stream():
                pass

    task = asyncio.ensure_future(run())
    await asyncio.wait_for(started.wait(), timeout=10)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert handles[0].process.returncode is not None


async def test_child_runs_with_c_locale(runner):
    code = "import os; print(os.environ.get('LC_ALL'))"
    async with runner.spawn(sys.executable, script(code), 10) as handle:
        output = b"".join([chunk async for chunk in handle.stream()])
        await handle.wait()

    assert output.strip() == b"C"


def test_explicit_env_is_extended_not_replaced():
    runner = ProcessRunner(env={"PATH": "/usr/bin", "LC_ALL": "de_DE.UTF-8"})
    env = runner._build_env()

    assert env == {"PATH": "/usr/bin", "LC_ALL": "C"}
