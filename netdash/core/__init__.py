"""
Core functionality components.
"""

from netdash.core.config import AppConfig, EngineSettings
from netdash.core.detector import SystemDetector, SystemInfo
from netdash.core.emitter import ProgressEmitter, ProgressMessage
from netdash.core.errors import (
    InvalidTargetError,
    NetDashError,
    ParseError,
    ProcessExitError,
    ProcessSpawnError,
    ProcessTimeoutError,
)
from netdash.core.lines import LineAssembler
from netdash.core.runner import ProcessHandle, ProcessOutcome, ProcessRunner

__all__ = [
    "AppConfig",
    "EngineSettings",
    "SystemDetector",
    "SystemInfo",
    "ProgressEmitter",
    "ProgressMessage",
    "InvalidTargetError",
    "NetDashError",
    "ParseError",
    "ProcessExitError",
    "ProcessSpawnError",
    "ProcessTimeoutError",
    "LineAssembler",
    "ProcessHandle",
    "ProcessOutcome",
    "ProcessRunner",
]
