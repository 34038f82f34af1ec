"""
NetDash - Network Diagnostics Test Engine
"""

from netdash.__version__ import __version__
from netdash.core.config import AppConfig, EngineSettings
from netdash.core.emitter import ProgressEmitter, ProgressMessage
from netdash.engine import TestEngine
from netdash.modules.base import TestTarget

__all__ = [
    "AppConfig",
    "EngineSettings",
    "ProgressEmitter",
    "ProgressMessage",
    "TestEngine",
    "TestTarget",
    "__version__",
]
