"""
Logging components.
"""

from netdash.storage.logger import setup_logging

__all__ = [
    "setup_logging",
]
