from riasec_engine.core.events import EngineEvent, EventDispatcher, EventRecorder, EventType


def make_event(event_type=EventType.SECTION_COMPLETED, session_id="s1"):
    return EngineEvent(type=event_type, session_id=session_id, participant_id="p1")


def test_fan_out():
    first, second = EventRecorder(), EventRecorder()
    dispatcher = EventDispatcher()
    dispatcher.subscribe(first)
    dispatcher.subscribe(second)

    assert dispatcher.dispatch(make_event()) == 0
    assert len(first.events) == 1
    assert len(second.events) == 1


def test_failing_handler_is_isolated():
    recorder = EventRecorder()
    dispatcher = EventDispatcher()

    def broken(event):
        raise RuntimeError("boom")

    dispatcher.subscribe(broken)
    dispatcher.subscribe(recorder)

    assert dispatcher.dispatch(make_event()) == 1
    assert len(recorder.events) == 1


def test_unsubscribe():
    recorder = EventRecorder()
    dispatcher = EventDispatcher()
    dispatcher.subscribe(recorder)
    dispatcher.unsubscribe(recorder)
    dispatcher.unsubscribe(recorder)

    dispatcher.dispatch(make_event())
    assert recorder.events == []


def test_recorder_keeps_most_recent():
    recorder = EventRecorder(max_events=2)
    for session_id in ("s1", "s2", "s3"):
        recorder(make_event(session_id=session_id))

    assert [e.session_id for e in recorder.events] == ["s2", "s3"]


def test_filter_by_type():
    recorder = EventRecorder()
    recorder(make_event(EventType.SECTION_COMPLETED))
    recorder(make_event(EventType.SESSION_COMPLETED))
    recorder(make_event(EventType.SECTION_COMPLETED))

    assert len(recorder.of_type(EventType.SECTION_COMPLETED)) == 2
    assert len(recorder.of_type(EventType.SESSION_ABANDONED)) == 0
