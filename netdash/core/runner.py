"""
Process execution engine.

Spawns one external diagnostic tool per invocation and streams its stdout
while the process is still running. Every process carries an explicit
deadline; on expiry it is terminated and a ProcessTimeoutError is raised.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Dict, List, Optional, Sequence, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict

from netdash.core.errors import ProcessExitError, ProcessSpawnError, ProcessTimeoutError

T = TypeVar("T")


class ProcessOutcome(BaseModel):
    """Terminal outcome of a process that exited before its deadline."""

    model_config = ConfigDict(frozen=True)

    command: str
    return_code: int
    stderr: str
    duration: float
    success: bool

    def raise_for_status(self) -> "ProcessOutcome":
        """Raise ProcessExitError if the process exited with a nonzero status."""
        if not self.success:
            raise ProcessExitError(self.command, self.return_code, self.stderr)
        return self


class ProcessHandle:
    """
    One live external process.

    Owned by the runner that spawned it and closed when the ``spawn``
    context exits. Handles are never reused.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        args: Sequence[str],
        deadline_seconds: float,
        app_logger=logger,
        read_size: int = 4096,
        kill_timeout: float = 5.0,
    ):
        loop = asyncio.get_running_loop()
        self.process = process
        self.command = command
        self.args: List[str] = list(args)
        self.deadline_seconds = deadline_seconds
        self.started_at = loop.time()
        self.deadline_at = self.started_at + deadline_seconds
        self.logger = app_logger
        self.read_size = read_size
        self.kill_timeout = kill_timeout
        self._stderr_chunks: List[bytes] = []
        self._stderr_task = asyncio.ensure_future(self._drain_stderr())

    @property
    def cmd_str(self) -> str:
        return " ".join([self.command, *self.args])

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    def remaining(self) -> float:
        """Seconds left before the deadline."""
        return self.deadline_at - asyncio.get_running_loop().time()

    async def stream(self) -> AsyncIterator[bytes]:
        """
        Yield raw stdout chunks as the process writes them.

        Ends at EOF. Raises ProcessTimeoutError if the deadline passes
        while waiting for output.
        """
        if self.process.stdout is None:
            return
        while True:
            chunk = await self._before_deadline(self.process.stdout.read(self.read_size))
            if not chunk:
                return
            yield chunk

    async def wait(self) -> ProcessOutcome:
        """
        Wait for the process to exit.

        Returns:
            ProcessOutcome with the exit status and captured stderr
        """
        return_code = await self._before_deadline(self.process.wait())
        await self._stderr_task
        duration = asyncio.get_running_loop().time() - self.started_at
        stderr = b"".join(self._stderr_chunks).decode("utf-8", errors="replace")

        self.logger.info(
            f"Command completed: {self.cmd_str} "
            f"(return code: {return_code}, duration: {duration:.2f}s)"
        )

        return ProcessOutcome(
            command=self.cmd_str,
            return_code=return_code,
            stderr=stderr,
            duration=duration,
            success=(return_code == 0),
        )

    async def terminate(self) -> None:
        """Send SIGTERM, escalating to SIGKILL if the process lingers."""
        if not self.alive:
            return
        self.logger.warning(f"Terminating process {self.pid}: {self.cmd_str}")
        try:
            self.process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"Process {self.pid} ignored SIGTERM, killing")
            try:
                self.process.kill()
            except ProcessLookupError:
                return
            await self.process.wait()

    async def close(self) -> None:
        """Release the process: terminate it if still running and stop draining stderr."""
        await self.terminate()
        if not self._stderr_task.done():
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass

    async def _before_deadline(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=max(self.remaining(), 0.0))
        except asyncio.TimeoutError:
            self.logger.error(
                f"Command timed out after {self.deadline_seconds:.0f}s: {self.cmd_str}"
            )
            await self.terminate()
            raise ProcessTimeoutError(self.cmd_str, self.deadline_seconds) from None

    async def _drain_stderr(self) -> None:
        if self.process.stderr is None:
            return
        while True:
            chunk = await self.process.stderr.read(self.read_size)
            if not chunk:
                return
            self._stderr_chunks.append(chunk)


class ProcessRunner:
    """Spawn external diagnostic tools with a deadline."""

    def __init__(
        self,
        app_logger=logger,
        read_size: int = 4096,
        kill_timeout: float = 5.0,
        env: Optional[Dict[str, str]] = None,
    ):
        self.logger = app_logger
        self.read_size = read_size
        self.kill_timeout = kill_timeout
        self.env = env

    @asynccontextmanager
    async def spawn(
        self,
        command: str,
        args: Sequence[str],
        deadline_seconds: float,
    ) -> AsyncIterator[ProcessHandle]:
        """
        Start a process and yield its handle.

        Args:
            command: Executable name or path
            args: Command-line arguments
            deadline_seconds: Maximum lifetime of the process

        Raises:
            ProcessSpawnError: The executable could not be started
        """
        cmd_str = " ".join([command, *args])
        self.logger.info(f"Executing command: {cmd_str} (deadline {deadline_seconds:.0f}s)")

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
            )
        except OSError as e:
            self.logger.error(f"Command failed to start: {cmd_str} - {e}")
            raise ProcessSpawnError(command, e.strerror or str(e)) from e

        handle = ProcessHandle(
            process,
            command,
            args,
            deadline_seconds,
            app_logger=self.logger,
            read_size=self.read_size,
            kill_timeout=self.kill_timeout,
        )
        try:
            yield handle
        finally:
            await handle.close()

    def _build_env(self) -> Dict[str, str]:
        # Tool output is parsed against the C locale
        env = dict(os.environ if self.env is None else self.env)
        env["LC_ALL"] = "C"
        return env
