"""
Parallel execution across targets.
"""

from netdash.parallel.executor import ParallelTestConfig, ParallelTestExecutor, TargetOutcome

__all__ = [
    "ParallelTestConfig",
    "ParallelTestExecutor",
    "TargetOutcome",
]
