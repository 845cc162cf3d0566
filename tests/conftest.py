import pytest

from riasec_engine.core.catalog import load_catalog
from riasec_engine.core.engine import AssessmentEngine, EnginePolicy
from riasec_engine.core.events import EventDispatcher, EventRecorder

from helpers import FakeClock


@pytest.fixture(scope="session")
def catalog():
    return load_catalog()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def dispatcher(recorder):
    events = EventDispatcher()
    events.subscribe(recorder)
    return events


@pytest.fixture
def relaxed_policy():
    """No cooldown and no attempt cap, so one participant can run many sessions"""
    return EnginePolicy(retake_cooldown_days=0, max_completed_assessments=0)


@pytest.fixture
def engine(catalog, clock, dispatcher, relaxed_policy):
    return AssessmentEngine(catalog, policy=relaxed_policy, clock=clock, events=dispatcher)
