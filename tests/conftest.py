"""Shared fixtures: captured tool output and a scripted process runner."""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

import pytest

from netdash.core.config import EngineSettings
from netdash.core.emitter import ProgressEmitter
from netdash.core.errors import ProcessSpawnError, ProcessTimeoutError
from netdash.core.runner import ProcessOutcome


def iperf_output(
    duration: int = 10,
    interval_rate: str = "9.41 Gbits/sec",
    interval_size: str = "1.10 GBytes",
    sender: str = "11.0 GBytes  9.42 Gbits/sec    0             sender",
    receiver: Optional[str] = "11.0 GBytes  9.41 Gbits/sec                  receiver",
    reverse: bool = False,
) -> str:
    lines = ["Connecting to host 10.0.0.1, port 5201"]
    if reverse:
        lines.append("Reverse mode, remote host 10.0.0.1 is sending")
    lines.append("[  5] local 10.0.0.2 port 43210 connected to 10.0.0.1 port 5201")
    lines.append("[ ID] Interval           Transfer     Bitrate         Retr  Cwnd")
    for i in range(duration):
        lines.append(
            f"[  5]   {i}.00-{i + 1}.00   sec  {interval_size}  {interval_rate}    0   3.01 MBytes"
        )
    lines.append("- - - - - - - - - - - - - - - - - - - - - - - - -")
    lines.append("[ ID] Interval           Transfer     Bitrate         Retr")
    if sender is not None:
        lines.append(f"[  5]   0.00-{duration}.00  sec  {sender}")
    if receiver is not None:
        lines.append(f"[  5]   0.00-{duration}.04  sec  {receiver}")
    lines.append("")
    lines.append("iperf Done.")
    return "\n".join(lines) + "\n"


PING_OUTPUT = """PING 10.0.0.1 (10.0.0.1) 56(84) bytes of data.
64 bytes from 10.0.0.1: icmp_seq=1 ttl=64 time=0.100 ms
64 bytes from 10.0.0.1: icmp_seq=2 ttl=64 time=0.200 ms
64 bytes from 10.0.0.1: icmp_seq=3 ttl=64 time=0.300 ms
64 bytes from 10.0.0.1: icmp_seq=4 ttl=64 time=0.150 ms

--- 10.0.0.1 ping statistics ---
4 packets transmitted, 4 received, 0% packet loss, time 3004ms
rtt min/avg/max/mdev = 0.100/0.188/0.300/0.075 ms
"""

TRACEROUTE_OUTPUT = """traceroute to 10.0.0.1 (10.0.0.1), 30 hops max, 60 byte packets
 1  192.168.1.1  0.512 ms  0.470 ms  0.455 ms
 2  * * *
 3  10.20.0.1  3.101 ms *  2.998 ms
 4  10.0.0.1  4.210 ms  4.105 ms  4.090 ms
"""


@dataclass
class ScriptedProcess:
    """What one fake process prints and how it ends."""
    output: str = ""
    return_code: int = 0
    stderr: str = ""
    chunk_size: int = 7
    spawn_error: bool = False
    timeout: bool = False

    def chunks(self) -> List[bytes]:
        data = self.output.encode("utf-8")
        return [data[i:i + self.chunk_size] for i in range(0, len(data), self.chunk_size)]


class FakeHandle:
    def __init__(self, script: ScriptedProcess, cmd_str: str, deadline: float):
        self.script = script
        self.cmd_str = cmd_str
        self.deadline = deadline

    async def stream(self):
        for chunk in self.script.chunks():
            await asyncio.sleep(0)
            yield chunk
        if self.script.timeout:
            raise ProcessTimeoutError(self.cmd_str, self.deadline)

    async def wait(self) -> ProcessOutcome:
        return ProcessOutcome(
            command=self.cmd_str,
            return_code=self.script.return_code,
            stderr=self.script.stderr,
            duration=0.01,
            success=self.script.return_code == 0,
        )


class FakeRunner:
    """ProcessRunner stand-in that replays scripted processes in order."""

    def __init__(self, *scripts: ScriptedProcess, timeline: Optional[list] = None):
        self.scripts = list(scripts)
        self.calls: List[tuple] = []
        self.timeline = timeline

    @property
    def commands(self) -> List[str]:
        return [call[0] for call in self.calls]

    @asynccontextmanager
    async def spawn(self, command, args, deadline_seconds):
        self.calls.append((command, list(args), deadline_seconds))
        if self.timeline is not None:
            self.timeline.append(("spawn", command, list(args)))
        script = self.scripts.pop(0)
        if script.spawn_error:
            raise ProcessSpawnError(command, "No such file or directory")
        yield FakeHandle(script, " ".join([command, *args]), deadline_seconds)


@pytest.fixture
def settings():
    return EngineSettings(grace_period=30, force_flush=False)


@pytest.fixture
def messages():
    return []


@pytest.fixture
def emitter(messages):
    return ProgressEmitter(messages.append)
