"""
Bandwidth testing module.

Drives iperf3 in its human-readable streaming mode, turning each interval
report into a live progress event and the final sender/receiver lines into
a SpeedResult.
"""

from __future__ import annotations

import re
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from netdash.core.errors import ParseError
from netdash.modules.base import (
    BaseTest,
    IntervalSample,
    OutputParser,
    Phase,
    ProgressEvent,
    TestTarget,
    WireModel,
)

# iperf3 reports SI units: 1 Mbits/sec == 10**6 bits/sec
UNIT_MULTIPLIERS: Dict[str, int] = {
    "": 1,
    "K": 10**3,
    "M": 10**6,
    "G": 10**9,
    "T": 10**12,
}

# [  5]   1.00-2.00   sec  1.10 GBytes  9.42 Gbits/sec    0   3.01 MBytes
# [SUM]   0.00-10.00  sec  11.0 GBytes  9.42 Gbits/sec    0             sender
INTERVAL_RE = re.compile(
    r"^\[\s*(?P<stream>\d+|SUM)\]\s+"
    r"(?P<start>\d+(?:\.\d+)?)-\s*(?P<end>\d+(?:\.\d+)?)\s+sec\s+"
    r"(?P<size>\d+(?:\.\d+)?)\s+(?P<size_unit>[KMGT]?)Bytes\s+"
    r"(?P<rate>\d+(?:\.\d+)?)\s+(?P<rate_unit>[KMGT]?)bits/sec"
    r"(?P<rest>.*)$"
)
ROLE_RE = re.compile(r"\b(?P<role>sender|receiver)\s*$")
# UDP summaries: "0.011 ms  0/906 (0%)"
DATAGRAM_RE = re.compile(
    r"(?P<jitter>\d+(?:\.\d+)?)\s+ms\s+(?P<lost>\d+)/\s*(?P<total>\d+)\s+\((?P<loss>[\d.eE+-]+)%\)"
)


def to_base_units(value: str, unit: str) -> Decimal:
    """Convert an iperf3 quantity such as ('9.42', 'G') to base units, exactly."""
    return Decimal(value) * UNIT_MULTIPLIERS[unit]


class TransferTotals(WireModel):
    """Totals for one direction of a speed test."""

    bandwidth_bps: float
    bytes: int
    duration_sec: float


class SpeedResult(WireModel):
    download: TransferTotals
    upload: TransferTotals
    jitter_ms: Optional[float] = None
    packet_loss_pct: Optional[float] = None


class BandwidthSummary(WireModel):
    """Everything one iperf3 run reported in its final summary."""

    sender: Optional[TransferTotals] = None
    receiver: Optional[TransferTotals] = None
    jitter_ms: Optional[float] = None
    packet_loss_pct: Optional[float] = None
    intervals: List[IntervalSample] = []

    def sent(self) -> TransferTotals:
        """Totals transmitted by the sending side."""
        if self.sender is None:
            raise ParseError("iperf3 output has no sender summary line")
        return self.sender

    def received(self) -> TransferTotals:
        """Totals received by the far end."""
        if self.receiver is None:
            raise ParseError("iperf3 output has no receiver summary line")
        return self.receiver


class BandwidthParser(OutputParser[BandwidthSummary]):
    """
    Parser for iperf3 text output.

    The phase passed in by the orchestrator is authoritative. Only when none
    is given does the parser guess it from keywords in the banner lines.
    """

    def __init__(self, duration: int, phase: Optional[Phase] = None, streams: int = 1):
        super().__init__()
        self.duration = max(duration, 1)
        self.explicit_phase = phase
        self.inferred_phase: Optional[Phase] = None
        self.streams = streams
        self.intervals: List[IntervalSample] = []
        self.sender: Optional[TransferTotals] = None
        self.receiver: Optional[TransferTotals] = None
        self._datagram_stats: Dict[str, Tuple[float, float]] = {}

    @property
    def phase(self) -> Phase:
        return self.explicit_phase or self.inferred_phase or Phase.UNKNOWN

    def parse_line(self, line: str) -> Optional[ProgressEvent]:
        match = INTERVAL_RE.match(line.strip())
        if match is None:
            if self.explicit_phase is None and self.inferred_phase is None:
                self.inferred_phase = infer_phase(line)
            return None

        # With parallel streams only the [SUM] lines describe the whole transfer
        is_sum = match.group("stream") == "SUM"
        if is_sum != (self.streams > 1):
            return None

        role = ROLE_RE.search(match.group("rest"))
        if role is not None:
            self._record_summary(match, role.group("role"))
            return None
        return self._record_interval(match)

    def result(self) -> BandwidthSummary:
        if self.sender is None and self.receiver is None:
            raise ParseError(
                f"No iperf3 summary found after {self.lines_seen} lines of output",
            )
        jitter_ms, packet_loss_pct = self._datagram_stats.get(
            "receiver", self._datagram_stats.get("sender", (None, None))
        )
        return BandwidthSummary(
            sender=self.sender,
            receiver=self.receiver,
            jitter_ms=jitter_ms,
            packet_loss_pct=packet_loss_pct,
            intervals=self.intervals,
        )

    def _record_interval(self, match: re.Match) -> ProgressEvent:
        sample = IntervalSample(
            window_start=float(match.group("start")),
            window_end=float(match.group("end")),
            bits_per_second=float(to_base_units(match.group("rate"), match.group("rate_unit"))),
            phase=self.phase,
        )
        self.intervals.append(sample)
        index = len(self.intervals)
        percent = self.tracker.advance(100.0 * index / self.duration)
        current_speed = sample.bits_per_second / 1_000_000
        return ProgressEvent(
            message=f"Testing {self.phase.value}... {index}/{self.duration}s",
            percent=percent,
            phase=self.phase,
            current_speed_mbps=current_speed,
            interval_data=sample,
        )

    def _record_summary(self, match: re.Match, role: str) -> None:
        totals = TransferTotals(
            bandwidth_bps=float(to_base_units(match.group("rate"), match.group("rate_unit"))),
            bytes=int(to_base_units(match.group("size"), match.group("size_unit"))),
            duration_sec=float(match.group("end")),
        )
        if role == "sender":
            self.sender = totals
        else:
            self.receiver = totals

        datagrams = DATAGRAM_RE.search(match.group("rest"))
        if datagrams is not None:
            self._datagram_stats[role] = (
                float(datagrams.group("jitter")),
                float(datagrams.group("loss")),
            )


def infer_phase(line: str) -> Optional[Phase]:
    """Guess the transfer direction from banner text such as 'Reverse mode'."""
    lowered = line.lower()
    if "reverse" in lowered or "download" in lowered:
        return Phase.DOWNLOAD
    if "upload" in lowered:
        return Phase.UPLOAD
    return None


class SpeedTestState(str, Enum):
    IDLE = "idle"
    RUNNING_DOWNLOAD = "running_download"
    RUNNING_UPLOAD = "running_upload"
    COMPLETE = "complete"
    FAILED = "failed"


class SpeedTest(BaseTest):
    """
    Two-phase throughput test: download, then upload.

    The phases never overlap; the upload process is only spawned after the
    download process has exited and its summary has been parsed. ``reverse``
    decides which of the two runs carries iperf3's ``-R`` flag.
    """

    test_type = "speed"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.state = SpeedTestState.IDLE

    def build_args(
        self,
        target: TestTarget,
        duration: int,
        reverse: bool,
        parallel: Optional[int] = None,
    ) -> List[str]:
        args = [
            "-c", target.address,
            "-p", str(target.port),
            "-t", str(duration),
            "-i", "1",
        ]
        if parallel and parallel > 1:
            args.extend(["-P", str(parallel)])
        if reverse:
            args.append("-R")
        if self.settings.force_flush:
            args.append("--forceflush")
        return args

    async def run(
        self,
        target: TestTarget,
        duration: Optional[int] = None,
        reverse: bool = False,
        parallel: Optional[int] = None,
    ) -> SpeedResult:
        """
        Run the speed test.

        Args:
            target: Host running an iperf3 server
            duration: Seconds per direction
            reverse: Run the download phase with iperf3's -R flag
            parallel: Number of parallel streams

        Returns:
            SpeedResult with both directions
        """
        if self.state is not SpeedTestState.IDLE:
            raise RuntimeError(f"Speed test already used (state: {self.state.value})")
        duration = duration or self.settings.duration
        self.logger.info(
            f"Running speed test against {target.label} ({target.address}:{target.port})"
        )

        await self._milestone(f"Starting speed test against {target.label}", 0.0)
        try:
            self._transition(SpeedTestState.RUNNING_DOWNLOAD)
            download, download_totals = await self._run_direction(
                target, duration, Phase.DOWNLOAD, reverse, parallel
            )
            await self._milestone("Download test complete, starting upload test", 50.0)

            self._transition(SpeedTestState.RUNNING_UPLOAD)
            upload, upload_totals = await self._run_direction(
                target, duration, Phase.UPLOAD, not reverse, parallel
            )
        except BaseException:
            self._transition(SpeedTestState.FAILED)
            raise

        result = SpeedResult(
            download=download_totals,
            upload=upload_totals,
            jitter_ms=_first_present(download.jitter_ms, upload.jitter_ms),
            packet_loss_pct=_first_present(download.packet_loss_pct, upload.packet_loss_pct),
        )
        self._transition(SpeedTestState.COMPLETE)
        await self._milestone("Upload test complete", 100.0, completed=True)

        self.logger.info(
            f"Speed test completed: Download {result.download.bandwidth_bps / 1_000_000:.2f} Mbps, "
            f"Upload {result.upload.bandwidth_bps / 1_000_000:.2f} Mbps"
        )
        return result

    async def check_connectivity(self, target: TestTarget) -> bool:
        """Run a one-second throughput check; True if iperf3 completed."""
        parser = BandwidthParser(1, phase=Phase.UPLOAD)
        try:
            await self._run_phase(
                self.settings.iperf_command,
                self.build_args(target, 1, reverse=False),
                parser,
                1 + self.settings.grace_period,
            )
            parser.result()
        except Exception as e:
            self.logger.info(f"Connectivity test failed for {target.address}:{target.port}: {e}")
            return False
        return True

    async def _run_direction(
        self,
        target: TestTarget,
        duration: int,
        phase: Phase,
        reverse_flag: bool,
        parallel: Optional[int],
    ) -> Tuple[BandwidthSummary, TransferTotals]:
        parser = BandwidthParser(duration, phase=phase, streams=parallel or 1)
        await self._run_phase(
            self.settings.iperf_command,
            self.build_args(target, duration, reverse_flag, parallel),
            parser,
            duration + self.settings.grace_period,
        )
        summary = parser.result()
        totals = summary.received() if phase is Phase.DOWNLOAD else summary.sent()
        self.emitter.progress(
            parser.finish(
                f"{phase.value.capitalize()} complete: {totals.bandwidth_bps / 1_000_000:.2f} Mbps",
                phase=phase,
            )
        )
        return summary, totals

    def _transition(self, state: SpeedTestState) -> None:
        self.logger.debug(f"Speed test state: {self.state.value} -> {state.value}")
        self.state = state


def _first_present(*values: Optional[float]) -> Optional[float]:
    for value in values:
        if value is not None:
            return value
    return None
