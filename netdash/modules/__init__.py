"""
Test modules.
"""

from netdash.modules.base import (
    BaseTest,
    IntervalSample,
    OutputParser,
    Phase,
    ProgressEvent,
    ProgressTracker,
    TestTarget,
)
from netdash.modules.bandwidth import (
    BandwidthParser,
    BandwidthSummary,
    SpeedResult,
    SpeedTest,
    SpeedTestState,
    TransferTotals,
)
from netdash.modules.connectivity import (
    PingParser,
    PingResult,
    PingTest,
    TracerouteHop,
    TracerouteParser,
    TracerouteResult,
    TracerouteTest,
)
from netdash.modules.full import FullResult, FullTest

__all__ = [
    "BaseTest",
    "IntervalSample",
    "OutputParser",
    "Phase",
    "ProgressEvent",
    "ProgressTracker",
    "TestTarget",
    "BandwidthParser",
    "BandwidthSummary",
    "SpeedResult",
    "SpeedTest",
    "SpeedTestState",
    "TransferTotals",
    "PingParser",
    "PingResult",
    "PingTest",
    "TracerouteHop",
    "TracerouteParser",
    "TracerouteResult",
    "TracerouteTest",
    "FullResult",
    "FullTest",
]
