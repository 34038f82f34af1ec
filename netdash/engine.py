"""
Test engine facade.

The hosting application builds one TestEngine with its ProgressEmitter and
calls the ``run_*`` coroutines. Each call is single-shot: it returns a typed
result or raises a NetDashError, and on success publishes a
``test_complete`` message carrying a TestRecord.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union
from uuid import uuid4

from loguru import logger
from pydantic import Field

from netdash.core.config import EngineSettings
from netdash.core.emitter import ProgressEmitter
from netdash.core.runner import ProcessRunner
from netdash.modules.bandwidth import SpeedResult, SpeedTest
from netdash.modules.base import TestTarget, WireModel
from netdash.modules.connectivity import PingResult, PingTest, TracerouteResult, TracerouteTest
from netdash.modules.full import FullResult, FullTest

TestResults = Union[FullResult, SpeedResult, PingResult, TracerouteResult]


class TestRecord(WireModel):
    """A finished test as published to ``test_complete`` listeners."""

    __test__ = False

    id: str = Field(default_factory=lambda: str(uuid4()))
    test_type: str  # 'speed', 'ping', 'traceroute' or 'full'
    target: TestTarget
    timestamp: datetime = Field(default_factory=datetime.now)
    results: TestResults


class TestEngine:
    """Entry point for running diagnostics against a target."""

    __test__ = False

    def __init__(
        self,
        emitter: Optional[ProgressEmitter] = None,
        settings: Optional[EngineSettings] = None,
        runner: Optional[ProcessRunner] = None,
        app_logger=logger,
    ):
        self.emitter = emitter or ProgressEmitter()
        self.settings = settings or EngineSettings()
        self.logger = app_logger
        self.runner = runner or ProcessRunner(app_logger=app_logger)

    def target(self, value: Union[str, TestTarget]) -> TestTarget:
        """Accept a TestTarget or a ``host[:port]`` string."""
        if isinstance(value, TestTarget):
            return value
        return TestTarget.parse(value, default_port=self.settings.iperf_port)

    async def run_speed_test(
        self,
        target: Union[str, TestTarget],
        duration: Optional[int] = None,
        reverse: bool = False,
        parallel: Optional[int] = None,
    ) -> SpeedResult:
        target = self.target(target)
        result = await SpeedTest(*self._collaborators()).run(target, duration, reverse, parallel)
        self._publish("speed", target, result)
        return result

    async def run_ping_test(
        self,
        target: Union[str, TestTarget],
        count: Optional[int] = None,
    ) -> PingResult:
        target = self.target(target)
        result = await PingTest(*self._collaborators()).run(target, count)
        self._publish("ping", target, result)
        return result

    async def run_traceroute_test(
        self,
        target: Union[str, TestTarget],
        max_hops: Optional[int] = None,
    ) -> TracerouteResult:
        target = self.target(target)
        result = await TracerouteTest(*self._collaborators()).run(target, max_hops)
        self._publish("traceroute", target, result)
        return result

    async def run_full_test(
        self,
        target: Union[str, TestTarget],
        duration: Optional[int] = None,
        count: Optional[int] = None,
        reverse: bool = False,
        max_hops: Optional[int] = None,
    ) -> FullResult:
        target = self.target(target)
        result = await FullTest(*self._collaborators()).run(
            target, duration, count, reverse, max_hops
        )
        self._publish("full", target, result)
        return result

    async def check_connectivity(self, target: Union[str, TestTarget]) -> bool:
        """Check the target's iperf3 server without publishing progress."""
        target = self.target(target)
        self.logger.info(f"Testing connectivity to {target.address}:{target.port}")
        checker = SpeedTest(self.runner, ProgressEmitter(), self.settings, self.logger)
        return await checker.check_connectivity(target)

    def _collaborators(self):
        return self.runner, self.emitter, self.settings, self.logger

    def _publish(self, test_type: str, target: TestTarget, result: TestResults) -> TestRecord:
        record = TestRecord(test_type=test_type, target=target, results=result)
        self.emitter.complete(record)
        return record
