"""
System and tool detection.
"""

import platform
import re
import sys
import shutil
import socket
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict

from netdash.core.config import EngineSettings
from netdash.core.errors import NetDashError
from netdash.core.lines import LineAssembler
from netdash.core.runner import ProcessRunner

IPERF_DEFAULT_PORT = 5201
PGREP_DEADLINE = 5.0
SERVER_PORT_RE = re.compile(r"(?:^|\s)(?:-p|--port)(?:\s+|=)(?P<port>\d+)\b")


class SystemInfo(BaseModel):
    """System information model."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    os_type: str  # 'Linux', 'Darwin', 'Windows'
    platform: str
    python_version: str
    hostname: str


class ToolStatus(BaseModel):
    """Availability of one external diagnostic tool."""

    name: str
    executable: str
    path: Optional[str] = None
    suggestion: str = ""

    @property
    def available(self) -> bool:
        return self.path is not None


class IperfServerInfo(BaseModel):
    """A local iperf3 server found in the process table."""

    running: bool
    pid: Optional[int] = None
    port: Optional[int] = None  # None when the command line could not be read


INSTALL_SUGGESTIONS: Dict[str, Dict[str, str]] = {
    "Linux": {
        "iperf3": "sudo apt-get install iperf3 (or dnf install iperf3)",
        "ping": "sudo apt-get install iputils-ping",
        "traceroute": "sudo apt-get install traceroute (or dnf install traceroute)",
    },
    "Darwin": {
        "iperf3": "brew install iperf3",
        "ping": "Pre-installed",
        "traceroute": "Pre-installed",
    },
}


class SystemDetector:
    """Detect system information and diagnostic tool availability."""

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or EngineSettings()

    def detect_system(self) -> SystemInfo:
        """Detect current system information."""
        return SystemInfo(
            os_type=platform.system(),
            platform=platform.platform(),
            python_version=sys.version.split()[0],
            hostname=socket.gethostname(),
        )

    def tool_executables(self) -> Dict[str, str]:
        """Map each logical tool to the executable configured for it."""
        return {
            "iperf3": self.settings.iperf_command,
            "ping": self.settings.ping_command,
            "traceroute": self.settings.traceroute_command,
        }

    def check_tools(self) -> List[ToolStatus]:
        """Report availability of every tool the engine drives."""
        os_type = platform.system()
        return [
            ToolStatus(
                name=name,
                executable=executable,
                path=shutil.which(executable),
                suggestion=self._get_installation_suggestion(name, os_type),
            )
            for name, executable in self.tool_executables().items()
        ]

    def missing_tools(self) -> List[ToolStatus]:
        return [status for status in self.check_tools() if not status.available]

    async def iperf_server_status(
        self,
        runner: Optional[ProcessRunner] = None,
        proc_root: Path = Path("/proc"),
    ) -> IperfServerInfo:
        """
        Look for a running ``iperf3 -s`` on this machine.

        Uses ``pgrep -f`` and takes the first pid it prints. The listening
        port is read from ``-p``/``--port`` in that process's command line,
        defaulting to iperf3's 5201.

        Args:
            runner: Process runner used to call pgrep
            proc_root: procfs mount point

        Returns:
            IperfServerInfo; ``running`` is False if pgrep is missing or
            matched nothing
        """
        runner = runner or ProcessRunner()
        pattern = f"{Path(self.settings.iperf_command).name} -s"
        assembler = LineAssembler()
        lines: List[str] = []
        try:
            async with runner.spawn("pgrep", ["-f", pattern], PGREP_DEADLINE) as handle:
                async for chunk in handle.stream():
                    lines.extend(assembler.feed(chunk))
                lines.extend(assembler.flush())
                outcome = await handle.wait()
        except NetDashError as e:
            logger.debug(f"iperf3 server lookup failed: {e}")
            return IperfServerInfo(running=False)

        pids = [int(line) for line in lines if line.strip().isdigit()]
        if not outcome.success or not pids:
            return IperfServerInfo(running=False)

        pid = pids[0]
        try:
            raw = (proc_root / str(pid) / "cmdline").read_bytes()
        except OSError as e:
            logger.debug(f"Cannot read command line of iperf3 server {pid}: {e}")
            return IperfServerInfo(running=True, pid=pid)

        cmdline = raw.replace(b"\0", b" ").decode("utf-8", errors="replace")
        match = SERVER_PORT_RE.search(cmdline)
        port = int(match.group("port")) if match else IPERF_DEFAULT_PORT
        return IperfServerInfo(running=True, pid=pid, port=port)

    def _get_installation_suggestion(self, tool: str, os_type: str) -> str:
        """Get installation suggestion for a missing tool."""
        if os_type in INSTALL_SUGGESTIONS and tool in INSTALL_SUGGESTIONS[os_type]:
            return INSTALL_SUGGESTIONS[os_type][tool]
        return f"Please install {tool} manually"
