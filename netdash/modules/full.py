"""
Full network test suite: ping, then speed, then traceroute.
"""

from __future__ import annotations

from typing import Optional

from netdash.modules.bandwidth import SpeedResult, SpeedTest
from netdash.modules.base import BaseTest, TestTarget, WireModel
from netdash.modules.connectivity import PingResult, PingTest, TracerouteResult, TracerouteTest


class FullResult(WireModel):
    ping: PingResult
    speed: SpeedResult
    traceroute: TracerouteResult


class FullTest(BaseTest):
    """
    Run the three diagnostics back to back.

    They share the network path under test, so they are never run in
    parallel or reordered. The first failure ends the suite and is raised
    unchanged; results of earlier phases are dropped.
    """

    test_type = "full"

    async def run(
        self,
        target: TestTarget,
        duration: Optional[int] = None,
        count: Optional[int] = None,
        reverse: bool = False,
        max_hops: Optional[int] = None,
    ) -> FullResult:
        self.logger.info(f"Running full test suite against {target.label}")
        await self._milestone("Starting full network test suite", 0.0)

        ping = await PingTest(*self._collaborators()).run(target, count)
        await self._milestone("Ping test complete, starting speed test", 25.0)

        speed = await SpeedTest(*self._collaborators()).run(target, duration, reverse)
        await self._milestone("Speed test complete, starting traceroute", 75.0)

        traceroute = await TracerouteTest(*self._collaborators()).run(target, max_hops)
        result = FullResult(ping=ping, speed=speed, traceroute=traceroute)
        await self._milestone("Full test suite complete", 100.0, completed=True)

        self.logger.info(f"Full test suite completed against {target.label}")
        return result

    def _collaborators(self):
        return self.runner, self.emitter, self.settings, self.logger
