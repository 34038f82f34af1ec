"""
Connectivity tests (ping, traceroute).
"""

from __future__ import annotations

import re
from typing import List, Optional

from netdash.core.errors import ParseError
from netdash.modules.base import (
    BaseTest,
    OutputParser,
    PingProgress,
    ProgressEvent,
    TestTarget,
    WireModel,
)

# 64 bytes from 10.0.0.1: icmp_seq=1 ttl=63 time=0.123 ms
REPLY_RE = re.compile(
    r"(?P<size>\d+) bytes from (?P<source>.+?):\s+icmp_[rs]eq=(?P<seq>\d+)\s+"
    r"ttl=(?P<ttl>\d+)\s+time[=<](?P<time>\d+(?:\.\d+)?)\s*ms"
)
# 4 packets transmitted, 4 received, 0% packet loss, time 3003ms
# 4 packets transmitted, 4 packets received, 0.0% packet loss
STATS_RE = re.compile(
    r"(?P<transmitted>\d+) packets transmitted, (?P<received>\d+) (?:packets )?received,"
    r"(?:\s*\+\d+ \w+,)*\s*(?P<loss>\d+(?:\.\d+)?)% packet loss"
)
# rtt min/avg/max/mdev = 0.123/0.456/0.789/0.012 ms
TIMES_RE = re.compile(
    r"min/avg/max/(?:mdev|stddev) = (?P<min>[\d.]+)/(?P<avg>[\d.]+)/(?P<max>[\d.]+)/(?P<dev>[\d.]+)\s*ms"
)

HOP_RE = re.compile(r"^\s*(?P<hop>\d+)\s+(?P<body>.*)$")
HOP_TOKEN_RE = re.compile(
    r"(?P<time><?\d+(?:\.\d+)?)\s*ms\b"
    r"|(?P<star>\*)"
    r"|\((?P<paren>[^)]+)\)"
    r"|(?P<annotation>![\w<>]*)"
    r"|(?P<word>\S+)"
)

# Round-trip time recorded for a query that got no reply
NO_REPLY = -1.0


class PingTimes(WireModel):
    min: float
    avg: float
    max: float
    stddev: float


class PingResult(WireModel):
    host: str
    packets_transmitted: int
    packets_received: int
    packet_loss_pct: float
    times: PingTimes


class TracerouteHop(WireModel):
    hop_index: int
    address: str
    hostname: Optional[str] = None
    round_trip_times_ms: List[float]


class TracerouteResult(WireModel):
    host: str
    hops: List[TracerouteHop]


class PingParser(OutputParser[PingResult]):
    """
    Parser for ping output.

    Every reply line becomes a progress event carrying the running list of
    round-trip samples, so callers can estimate jitter themselves. The final
    result comes only from ping's own statistics lines.
    """

    def __init__(self, host: str, count: int):
        super().__init__()
        self.host = host
        self.count = max(count, 1)
        self.samples: List[float] = []
        self._stats: Optional[re.Match] = None
        self._times: Optional[re.Match] = None

    def parse_line(self, line: str) -> Optional[ProgressEvent]:
        reply = REPLY_RE.search(line)
        if reply is not None and "(DUP!)" not in line:
            return self._record_reply(int(reply.group("seq")), float(reply.group("time")))

        stats = STATS_RE.search(line)
        if stats is not None:
            self._stats = stats
            return None

        times = TIMES_RE.search(line)
        if times is not None:
            self._times = times
        return None

    def result(self) -> PingResult:
        if self._stats is None:
            raise ParseError("Could not parse ping statistics")
        if self._times is None:
            raise ParseError("Could not parse ping timing statistics")
        return PingResult(
            host=self.host,
            packets_transmitted=int(self._stats.group("transmitted")),
            packets_received=int(self._stats.group("received")),
            packet_loss_pct=float(self._stats.group("loss")),
            times=PingTimes(
                min=float(self._times.group("min")),
                avg=float(self._times.group("avg")),
                max=float(self._times.group("max")),
                stddev=float(self._times.group("dev")),
            ),
        )

    def _record_reply(self, sequence: int, time_ms: float) -> ProgressEvent:
        self.samples.append(time_ms)
        completed = len(self.samples)
        return ProgressEvent(
            message=f"Ping {completed}/{self.count}: {time_ms:.1f}ms",
            percent=self.tracker.advance(100.0 * completed / self.count),
            current_ping=PingProgress(
                sequence=sequence,
                time_ms=time_ms,
                completed=completed,
                total=self.count,
            ),
            ping_times=list(self.samples),
        )


class TracerouteParser(OutputParser[TracerouteResult]):
    """
    Parser for ``traceroute -n`` output.

    Hop numbers are taken from the text as printed, and hops are kept in the
    order their lines arrived. A ``*`` reply is recorded as -1.
    """

    # traceroute gives no overall progress signal, so the estimate stays low
    progress_cap = 90.0

    def __init__(self, host: str, max_hops: int, label: Optional[str] = None):
        super().__init__()
        self.host = host
        self.label = label or host
        self.max_hops = max(max_hops, 1)
        self.hops: List[TracerouteHop] = []

    def parse_line(self, line: str) -> Optional[ProgressEvent]:
        if not line.strip():
            return None
        message = f"Tracing route to {self.label}"
        hop = parse_hop_line(line)
        if hop is not None:
            self.hops.append(hop)
            message = f"{message} (hop {hop.hop_index})"
        return ProgressEvent(
            message=message,
            percent=self.tracker.advance(100.0 * self.lines_seen / self.max_hops),
        )

    def result(self) -> TracerouteResult:
        if not self.hops:
            raise ParseError(
                f"No traceroute hops found in {self.lines_seen} lines of output",
            )
        return TracerouteResult(host=self.host, hops=self.hops)


def parse_hop_line(line: str) -> Optional[TracerouteHop]:
    """
    Parse one traceroute hop line.

    Handles `` 1  192.168.1.1  0.123 ms  0.234 ms  0.345 ms``,
    `` 2  gw.example (10.0.0.1)  1.2 ms * 1.4 ms`` and `` 3  * * *``.
    Returns None for lines that are not hop lines.
    """
    match = HOP_RE.match(line)
    if match is None:
        return None

    names: List[str] = []
    address: Optional[str] = None
    times: List[float] = []
    for token in HOP_TOKEN_RE.finditer(match.group("body")):
        if token.group("time") is not None:
            times.append(float(token.group("time").lstrip("<")))
        elif token.group("star") is not None:
            times.append(NO_REPLY)
        elif token.group("paren") is not None:
            if address is None:
                address = token.group("paren")
        elif token.group("word") is not None:
            names.append(token.group("word"))

    if not times:
        return None

    hostname: Optional[str] = None
    if address is None:
        address = names[0] if names else "*"
    elif names and names[0] != address:
        hostname = names[0]

    return TracerouteHop(
        hop_index=int(match.group("hop")),
        address=address,
        hostname=hostname,
        round_trip_times_ms=times,
    )


class PingTest(BaseTest):
    """ICMP echo test with live per-reply progress."""

    test_type = "ping"

    async def run(self, target: TestTarget, count: Optional[int] = None) -> PingResult:
        """
        Run ping test.

        Args:
            target: Host to ping
            count: Number of echo requests

        Returns:
            PingResult parsed from ping's statistics
        """
        count = count or self.settings.ping_count
        self.logger.info(f"Running ping test to {target.address} ({count} packets)")
        await self._milestone(f"Pinging {target.label} ({count} packets)", 0.0)

        parser = PingParser(target.address, count)
        await self._run_phase(
            self.settings.ping_command,
            ["-c", str(count), target.address],
            parser,
            count * self.settings.ping_interval + self.settings.grace_period,
        )
        result = parser.result()

        self.logger.info(
            f"Ping test completed: {result.packet_loss_pct:g}% loss, avg {result.times.avg}ms"
        )
        self.emitter.progress(
            parser.finish(
                f"Ping complete: {result.packet_loss_pct:g}% loss, avg {result.times.avg:.1f}ms"
            )
        )
        return result


class TracerouteTest(BaseTest):
    """Route discovery test."""

    test_type = "traceroute"

    async def run(self, target: TestTarget, max_hops: Optional[int] = None) -> TracerouteResult:
        """
        Run traceroute test.

        traceroute often exits nonzero after printing a complete trace, so
        the exit status only matters when no hop was printed at all.
        """
        max_hops = max_hops or self.settings.max_hops
        self.logger.info(f"Running traceroute to {target.address} (max {max_hops} hops)")
        await self._milestone(f"Tracing route to {target.label}", 0.0)

        parser = TracerouteParser(target.address, max_hops, label=target.label)
        outcome = await self._run_phase(
            self.settings.traceroute_command,
            ["-n", "-m", str(max_hops), target.address],
            parser,
            self.settings.traceroute_timeout,
            check_exit=False,
        )
        if not parser.hops:
            outcome.raise_for_status()
        elif not outcome.success:
            self.logger.debug(f"traceroute exited with {outcome.return_code}, keeping parsed hops")
        result = parser.result()

        self.logger.info(f"Traceroute completed: {len(result.hops)} hops")
        self.emitter.progress(
            parser.finish(f"Traced route to {target.label} in {len(result.hops)} hops")
        )
        return result
