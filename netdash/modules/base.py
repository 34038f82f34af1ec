"""
Base test class, output parser capability and shared models.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Generic, Iterable, List, Optional, Sequence, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from netdash.core.config import EngineSettings
from netdash.core.emitter import ProgressEmitter
from netdash.core.errors import InvalidTargetError
from netdash.core.lines import LineAssembler
from netdash.core.runner import ProcessOutcome, ProcessRunner

# Highest percent a phase may report before its process has exited
PROGRESS_CAP = 95.0

ResultT = TypeVar("ResultT")


class WireModel(BaseModel):
    """Immutable model serialized with camelCase keys for browser clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Phase(str, Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"
    UNKNOWN = "unknown"


class TestTarget(WireModel):
    """Remote peer a test runs against."""

    __test__ = False

    address: str
    port: int = Field(default=5201, ge=1, le=65535)
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.address

    @classmethod
    def parse(cls, value: str, default_port: int = 5201) -> "TestTarget":
        """
        Parse ``host``, ``host:port`` or ``[v6addr]:port``.

        A bare IPv6 address (more than one colon) is taken as the address.

        Raises:
            InvalidTargetError: Empty host, or a port that is not 1-65535
        """
        text = value.strip()
        port_text: Optional[str] = None
        if text.startswith("["):
            host, _, rest = text[1:].partition("]")
            if rest.startswith(":"):
                port_text = rest[1:]
        elif text.count(":") == 1:
            host, port_text = text.split(":")
        else:
            host = text

        if not host:
            raise InvalidTargetError(value, "missing host")
        port = default_port
        if port_text is not None:
            if not port_text.isdigit():
                raise InvalidTargetError(value, f"port {port_text!r} is not a number")
            port = int(port_text)
        if not 1 <= port <= 65535:
            raise InvalidTargetError(value, f"port {port} is out of range")
        return cls(address=host, port=port)


class IntervalSample(WireModel):
    """Throughput measured over one reporting window."""

    window_start: float
    window_end: float
    bits_per_second: float
    phase: Phase = Phase.UNKNOWN


class PingProgress(WireModel):
    sequence: int
    time_ms: float
    completed: int
    total: int


class ProgressEvent(WireModel):
    """Structured progress update for one running test."""

    message: str
    percent: float = Field(ge=0, le=100)
    phase: Optional[Phase] = None
    current_speed_mbps: Optional[float] = None
    current_ping: Optional[PingProgress] = None
    interval_data: Optional[IntervalSample] = None
    ping_times: Optional[List[float]] = None
    completed: bool = False


class ProgressTracker:
    """
    Keep a phase's percent non-decreasing and below the cap.

    Only :meth:`finish`, called once the phase's process has exited
    successfully, reports 100.
    """

    def __init__(self, cap: float = PROGRESS_CAP):
        self.cap = cap
        self.percent = 0.0

    def advance(self, raw_percent: float) -> float:
        self.percent = max(self.percent, min(raw_percent, self.cap))
        return self.percent

    def finish(self) -> float:
        self.percent = 100.0
        return self.percent


class OutputParser(ABC, Generic[ResultT]):
    """
    Line-in, event-out parser for one tool's textual output.

    Each instance parses exactly one process run. ``feed_line`` is called for
    every complete line in stream order; ``result`` is called after the
    process has exited and raises ParseError if the expected summary never
    appeared.
    """

    progress_cap = PROGRESS_CAP

    def __init__(self):
        self.tracker = ProgressTracker(self.progress_cap)
        self.lines_seen = 0

    def feed_line(self, line: str) -> Optional[ProgressEvent]:
        self.lines_seen += 1
        return self.parse_line(line)

    def feed_lines(self, lines: Iterable[str]) -> List[ProgressEvent]:
        events = []
        for line in lines:
            event = self.feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def feed_text(self, text: str) -> List[ProgressEvent]:
        """Parse a complete captured output in one go."""
        assembler = LineAssembler()
        lines = assembler.feed(text.encode("utf-8")) + assembler.flush()
        return self.feed_lines(lines)

    def finish(self, message: str, phase: Optional[Phase] = None) -> ProgressEvent:
        """Terminal event for a phase whose process exited successfully."""
        return ProgressEvent(
            message=message,
            percent=self.tracker.finish(),
            phase=phase,
            completed=True,
        )

    @abstractmethod
    def parse_line(self, line: str) -> Optional[ProgressEvent]:
        """
        Parse one line of output.

        Args:
            line: One complete line, without its line break

        Returns:
            A progress event, or None if the line carries no progress
        """

    @abstractmethod
    def result(self) -> ResultT:
        """
        Build the final result from everything parsed so far.

        Raises:
            ParseError: The tool's summary output was not found
        """


class BaseTest(ABC):
    """Base class for all orchestrated network tests."""

    __test__ = False

    test_type: str = ""

    def __init__(
        self,
        runner: ProcessRunner,
        emitter: ProgressEmitter,
        settings: Optional[EngineSettings] = None,
        app_logger=logger,
    ):
        self.runner = runner
        self.emitter = emitter
        self.settings = settings or EngineSettings()
        self.logger = app_logger

    @abstractmethod
    async def run(self, target: TestTarget, *args, **kwargs):
        """
        Run the test against a target.

        Returns:
            The test's typed result
        """

    async def _run_phase(
        self,
        command: str,
        args: Sequence[str],
        parser: OutputParser,
        deadline_seconds: float,
        check_exit: bool = True,
    ) -> ProcessOutcome:
        """
        Run one process, feeding its output through ``parser`` as it arrives.

        Progress events are emitted in the order their lines were read.
        """
        assembler = LineAssembler()
        async with self.runner.spawn(command, args, deadline_seconds) as handle:
            async for chunk in handle.stream():
                self._dispatch(parser, assembler.feed(chunk))
            self._dispatch(parser, assembler.flush())
            outcome = await handle.wait()
        if check_exit:
            outcome.raise_for_status()
        return outcome

    def _dispatch(self, parser: OutputParser, lines: List[str]) -> None:
        for line in lines:
            event = parser.feed_line(line)
            if event is not None:
                self.emitter.progress(event)

    async def _milestone(self, message: str, percent: float, **fields) -> None:
        """Emit a test-level milestone and yield to other tasks."""
        self.logger.debug(f"{self.test_type} milestone {percent:.0f}%: {message}")
        self.emitter.progress(ProgressEvent(message=message, percent=percent, **fields))
        await asyncio.sleep(0)
