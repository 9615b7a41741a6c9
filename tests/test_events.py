"""Tests for StatusSink fan-out."""

import threading

import pytest

from slipstream_wrapper.supervisor.events import StatusSink
from slipstream_wrapper.supervisor.state import (
    ErrorEvent,
    LogEntry,
    StageState,
    StageStatus,
    StatusEvent,
    SupervisorState,
)


def running_event() -> StatusEvent:
    return StatusEvent(stage1=StageStatus.running(), stage2=StageStatus.running(), state=SupervisorState.RUNNING)


class TestStatusSink:
    """Ordered, non-blocking delivery to subscribers."""

    def test_events_delivered_in_order(self, sink):
        received = []
        sink.subscribe(received.append)

        sink.publish(running_event())
        sink.publish_log("slipstream-client", "hello")
        sink.publish_error("Connection Dropped", "ssh status: Dead")
        assert sink.flush()

        assert [type(event) for event in received] == [StatusEvent, LogEntry, ErrorEvent]
        assert received[1].source == "slipstream-client"
        assert received[2].detail == "ssh status: Dead"

    def test_every_subscriber_receives(self, sink):
        first, second = [], []
        sink.subscribe(first.append)
        sink.subscribe(second.append)

        sink.publish(running_event())
        sink.flush()

        assert len(first) == len(second) == 1

    def test_unsubscribe(self, sink):
        received = []
        unsubscribe = sink.subscribe(received.append)
        unsubscribe()
        unsubscribe()

        sink.publish(running_event())
        sink.flush()

        assert received == []

    def test_failing_subscriber_is_isolated(self, sink):
        received = []

        def broken(event):
            raise RuntimeError("observer bug")

        sink.subscribe(broken)
        sink.subscribe(received.append)

        sink.publish(running_event())
        sink.publish(running_event())
        sink.flush()

        assert len(received) == 2

    def test_slow_subscriber_does_not_block_publisher(self, sink):
        gate = threading.Event()
        sink.subscribe(lambda event: gate.wait(2.0))

        for _ in range(5):
            sink.publish(running_event())

        assert not sink.flush(timeout=0.05)
        gate.set()
        assert sink.flush()

    def test_last_status_tracks_status_events_only(self, sink):
        assert sink.last_status is None
        event = running_event()

        sink.publish(event)
        sink.publish_log("ssh", "line")

        assert sink.last_status is event

    def test_flush_without_events(self):
        assert StatusSink().flush()

    def test_close_drops_later_events(self):
        sink = StatusSink()
        received = []
        sink.subscribe(received.append)
        sink.publish(running_event())

        sink.close()
        sink.publish(running_event())
        sink.close()

        assert len(received) == 1


class TestStageStatus:
    """String forms shown to observers."""

    @pytest.mark.parametrize(
        "status,text",
        [
            (StageStatus.stopped(), "Stopped"),
            (StageStatus.waiting(), "Waiting"),
            (StageStatus.starting("Starting SSH..."), "Starting(Starting SSH...)"),
            (StageStatus.running(), "Running"),
            (StageStatus.failed("timeout"), "Failed(timeout)"),
        ],
    )
    def test_str(self, status, text):
        assert str(status) == text

    def test_terminal_states(self):
        assert running_event().is_terminal
        starting = StatusEvent(
            stage1=StageStatus.starting("x"), stage2=StageStatus.waiting(), state=SupervisorState.STARTING_STAGE1
        )
        assert not starting.is_terminal
        assert starting.stage2.kind is StageState.WAITING
