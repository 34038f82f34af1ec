"""
Concurrent test execution across multiple targets.

Each target gets its own task; tasks share nothing but the engine's
ProgressEmitter. Within a task the engine still runs one process at a time.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from netdash.core.errors import NetDashError


@dataclass
class ParallelTestConfig:
    """Configuration for parallel test execution."""
    max_workers: int = 4
    timeout: Optional[float] = None  # Per-target limit on top of process deadlines


@dataclass
class TargetOutcome:
    """Result or error of one target's test."""
    target: str
    result: Any = None
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def status(self) -> str:
        return "error" if self.error is not None else "success"


class ParallelTestExecutor:
    """
    Run one async test function against many targets concurrently.
    """

    def __init__(self, config: Optional[ParallelTestConfig] = None, app_logger=logger):
        """
        Initialize parallel executor.

        Args:
            config: Parallel execution configuration
            app_logger: Logger used for per-target failures
        """
        self.config = config or ParallelTestConfig()
        self.logger = app_logger
        self.results: List[TargetOutcome] = []

    async def execute_parallel(
        self,
        test_func: Callable[[str], Awaitable[Any]],
        targets: List[str],
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[TargetOutcome]:
        """
        Execute ``test_func`` for every target.

        Args:
            test_func: Coroutine function taking a target
            targets: Targets to test
            progress_callback: Optional callback (completed, total)

        Returns:
            One TargetOutcome per target, in the order of ``targets``
        """
        semaphore = asyncio.Semaphore(max(self.config.max_workers, 1))
        total = len(targets)
        completed = 0

        async def execute_with_semaphore(index: int, target: str):
            async with semaphore:
                return index, await self._execute_one(test_func, target)

        outcomes: Dict[int, TargetOutcome] = {}
        tasks = [execute_with_semaphore(i, target) for i, target in enumerate(targets)]
        for coro in asyncio.as_completed(tasks):
            index, outcome = await coro
            outcomes[index] = outcome
            completed += 1
            if progress_callback:
                progress_callback(completed, total)

        self.results = [outcomes[i] for i in range(total)]
        return self.results

    async def _execute_one(
        self,
        test_func: Callable[[str], Awaitable[Any]],
        target: str,
    ) -> TargetOutcome:
        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            if self.config.timeout is not None:
                result = await asyncio.wait_for(test_func(target), timeout=self.config.timeout)
            else:
                result = await test_func(target)
            return TargetOutcome(target=target, result=result, duration=loop.time() - start)
        except asyncio.TimeoutError:
            self.logger.error(f"Test against {target} timed out after {self.config.timeout}s")
            return TargetOutcome(
                target=target,
                error=f"Timed out after {self.config.timeout}s",
                duration=loop.time() - start,
            )
        except NetDashError as e:
            self.logger.error(f"Test against {target} failed: {e}")
            return TargetOutcome(target=target, error=str(e), duration=loop.time() - start)
        except Exception as e:
            self.logger.opt(exception=e).error(f"Test against {target} crashed: {e}")
            return TargetOutcome(
                target=target,
                error=f"Test failed: {e}",
                duration=loop.time() - start,
            )

    def get_summary(self) -> Dict[str, Any]:
        """
        Get summary of parallel test results.

        Returns:
            Dictionary with summary statistics
        """
        total = len(self.results)
        success = sum(1 for r in self.results if r.status == "success")
        return {
            "total": total,
            "success": success,
            "error": total - success,
            "success_rate": (success / total) * 100 if total > 0 else 0.0,
        }
