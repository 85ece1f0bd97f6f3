import pytest

from snapsolve.events import EventBus, EventRecorder, PipelineEvent
from snapsolve.models import ProblemInfo


def test_payload_types_are_enforced(bus):
    with pytest.raises(TypeError):
        bus.emit(PipelineEvent.SOLUTION_READY, "not a solution")
    with pytest.raises(TypeError):
        bus.emit(PipelineEvent.NO_CAPTURES, "unexpected")


def test_failing_listener_does_not_stop_others(bus):
    received = []

    def _broken(payload):
        raise RuntimeError("listener bug")

    bus.subscribe(PipelineEvent.DEBUG_ERROR, _broken)
    bus.subscribe(PipelineEvent.DEBUG_ERROR, received.append)

    bus.emit(PipelineEvent.DEBUG_ERROR, "boom")

    assert received == ["boom"]


def test_unsubscribe_stops_delivery(bus):
    received = []
    unsubscribe = bus.subscribe(PipelineEvent.RESET, lambda payload: received.append(payload))

    bus.emit(PipelineEvent.RESET)
    unsubscribe()
    bus.emit(PipelineEvent.RESET)

    assert received == [None]


def test_recorder_sees_all_events_in_order():
    bus = EventBus()
    recorder = EventRecorder(bus)
    problem = ProblemInfo(title="t", description="d")

    bus.emit(PipelineEvent.INITIAL_START)
    bus.emit(PipelineEvent.PROBLEM_EXTRACTED, problem)

    assert recorder.kinds() == [PipelineEvent.INITIAL_START, PipelineEvent.PROBLEM_EXTRACTED]
    assert recorder.payloads(PipelineEvent.PROBLEM_EXTRACTED) == [problem]
    assert recorder.wait_for(PipelineEvent.PROBLEM_EXTRACTED, timeout=0.1)
    assert not recorder.wait_for(PipelineEvent.SOLUTION_READY, timeout=0.05)
