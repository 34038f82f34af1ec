"""Tests for ProgressEmitter."""
import threading
import time
from unittest.mock import MagicMock

from netdash.core.emitter import TEST_COMPLETE, TEST_PROGRESS, ProgressEmitter, ProgressMessage
from netdash.modules.base import PingProgress, ProgressEvent


def test_progress_and_complete_message_types():
    received = []
    emitter = ProgressEmitter(received.append)
    event = ProgressEvent(message="working", percent=10)

    emitter.progress(event)
    emitter.complete(event)

    assert [m.type for m in received] == [TEST_PROGRESS, TEST_COMPLETE]
    assert received[0].data is event


def test_without_sink_messages_are_dropped():
    emitter = ProgressEmitter()
    emitter.progress(ProgressEvent(message="nobody listening", percent=0))


def test_set_sink_replaces_and_clears():
    first, second = [], []
    emitter = ProgressEmitter(first.append)
    emitter.progress(ProgressEvent(message="a", percent=0))
    emitter.set_sink(second.append)
    emitter.progress(ProgressEvent(message="b", percent=1))
    emitter.set_sink(None)
    emitter.progress(ProgressEvent(message="c", percent=2))

    assert [m.data.message for m in first] == ["a"]
    assert [m.data.message for m in second] == ["b"]


def test_failing_sink_is_logged_not_raised():
    mock_logger = MagicMock()

    def sink(message):
        raise ValueError("socket closed")

    emitter = ProgressEmitter(sink, app_logger=mock_logger)
    emitter.progress(ProgressEvent(message="still running", percent=5))

    mock_logger.opt.assert_called_once()
    mock_logger.opt.return_value.warning.assert_called_once()
    assert "socket closed" in mock_logger.opt.return_value.warning.call_args[0][0]


def test_sink_calls_are_serialized_across_threads():
    """Concurrent emitters never run inside the sink at the same time."""
    active = []
    overlaps = []
    received = []

    def sink(message):
        active.append(message)
        if len(active) > 1:
            overlaps.append(message)
        time.sleep(0.001)
        received.append(message)
        active.pop()

    emitter = ProgressEmitter(sink)

    def worker(n):
        for i in range(20):
            emitter.progress(ProgressEvent(message=f"{n}-{i}", percent=i))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []
    assert len(received) == 80
    for n in range(4):
        own = [m.data.message for m in received if m.data.message.startswith(f"{n}-")]
        assert own == [f"{n}-{i}" for i in range(20)]


def test_wire_format_uses_camel_case_and_omits_unset_fields():
    event = ProgressEvent(
        message="Ping 1/4: 0.1ms",
        percent=25,
        current_ping=PingProgress(sequence=1, time_ms=0.1, completed=1, total=4),
        ping_times=[0.1],
    )
    wire = ProgressMessage(type=TEST_PROGRESS, data=event).to_wire()

    assert wire == {
        "type": "test_progress",
        "data": {
            "message": "Ping 1/4: 0.1ms",
            "percent": 25.0,
            "currentPing": {"sequence": 1, "timeMs": 0.1, "completed": 1, "total": 4},
            "pingTimes": [0.1],
            "completed": False,
        },
    }


def test_sink_may_reenter_the_emitter():
    """A sink that unsubscribes itself or forwards a message does not deadlock."""
    forwarded = []
    emitter = ProgressEmitter()

    def one_shot(message):
        emitter.set_sink(forwarded.append)
        emitter.progress(ProgressEvent(message="forwarded", percent=100))

    emitter.set_sink(one_shot)
    worker = threading.Thread(
        target=emitter.complete, args=(ProgressEvent(message="done", percent=100),)
    )
    worker.start()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert [m.data.message for m in forwarded] == ["forwarded"]
