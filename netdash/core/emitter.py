"""
Progress fan-out.

A single ProgressEmitter is created by the hosting application and passed
to every test. It forwards messages to one replaceable sink callback.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from loguru import logger
from pydantic import BaseModel

TEST_PROGRESS = "test_progress"
TEST_COMPLETE = "test_complete"


@dataclass(frozen=True)
class ProgressMessage:
    """One message delivered to the sink."""

    type: str  # 'test_progress' or 'test_complete'
    data: BaseModel

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the JSON shape consumed by browser clients."""
        return {
            "type": self.type,
            "data": self.data.model_dump(mode="json", by_alias=True, exclude_none=True),
        }


ProgressSink = Callable[[ProgressMessage], None]


class ProgressEmitter:
    """
    Thread-safe forwarder from running tests to a sink.

    Sink calls are serialized, so concurrent tests never interleave inside
    the sink. The lock is reentrant: a sink may call ``set_sink`` or emit on
    the same emitter. A sink that raises is logged and otherwise ignored; it
    never aborts the test that emitted the message.
    """

    def __init__(self, sink: Optional[ProgressSink] = None, app_logger=logger):
        self._sink = sink
        self._lock = threading.RLock()
        self.logger = app_logger

    def set_sink(self, sink: Optional[ProgressSink]) -> None:
        """Replace the sink. ``None`` discards all messages."""
        with self._lock:
            self._sink = sink

    def emit(self, message: ProgressMessage) -> None:
        with self._lock:
            if self._sink is None:
                return
            try:
                self._sink(message)
            except Exception as e:
                self.logger.opt(exception=e).warning(f"Progress sink failed on {message.type}: {e}")

    def progress(self, event: BaseModel) -> None:
        self.emit(ProgressMessage(type=TEST_PROGRESS, data=event))

    def complete(self, record: BaseModel) -> None:
        self.emit(ProgressMessage(type=TEST_COMPLETE, data=record))
