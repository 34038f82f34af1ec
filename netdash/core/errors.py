"""
Error taxonomy for test execution.

Every failure of a diagnostic run surfaces as one of these types. Nothing in
the engine retries or replaces a failure with a default result.
"""

from typing import Optional


class NetDashError(Exception):
    """Base class for all test execution errors."""


class ProcessSpawnError(NetDashError):
    """The external tool could not be started (missing or not executable)."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start {command}: {reason}")


class ProcessTimeoutError(NetDashError):
    """The external tool did not finish before its deadline and was terminated."""

    def __init__(self, command: str, deadline: float):
        self.command = command
        self.deadline = deadline
        super().__init__(f"{command} timed out after {deadline:.0f}s")


class ProcessExitError(NetDashError):
    """The external tool exited with a nonzero status."""

    def __init__(self, command: str, return_code: int, stderr: str = ""):
        self.command = command
        self.return_code = return_code
        self.stderr = stderr
        message = f"{command} exited with code {return_code}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class ParseError(NetDashError):
    """Expected summary or interval output was not found in the tool output."""

    def __init__(self, message: str, excerpt: Optional[str] = None):
        self.excerpt = excerpt
        super().__init__(message)


class InvalidTargetError(NetDashError, ValueError):
    """A target string could not be parsed into host and port."""

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid target {value!r}: {reason}")
