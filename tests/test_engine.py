import pytest

from riasec_engine.core.engine import AssessmentEngine, EnginePolicy, ResultStore
from riasec_engine.core.events import EventType
from riasec_engine.core.exceptions import NotFoundError, SessionNotActiveError
from riasec_engine.core.matcher import TierBands
from riasec_engine.core.models import DIMENSIONS, SessionStatus

from helpers import INVESTIGATIVE_SOCIAL, answer_questions, complete_session


@pytest.fixture
def finished(engine):
    session = engine.start_session("student-1")
    outcome = complete_session(engine, session.session_id, INVESTIGATIVE_SOCIAL)
    return session, outcome


class TestFullRun:
    def test_result_is_attached_to_final_answer(self, finished):
        session, outcome = finished
        result = outcome.result

        assert outcome.completed
        assert result.session_id == session.session_id
        assert result.participant_id == "student-1"
        assert result.profile.code == "ISC"
        assert result.profile.archetype.name == "Explainer"
        assert set(result.profile.percentiles) == set(DIMENSIONS)
        assert len(result.matches) == 5
        assert result.share_token
        assert result.pattern_recognized
        assert result.recomputed_at is None

    def test_matches_are_ranked(self, finished):
        _, outcome = finished
        correlations = [m.correlation for m in outcome.result.matches]
        assert correlations == sorted(correlations, reverse=True)
        assert all(0 <= m.match_percentage <= 100 for m in outcome.result.matches)

    def test_events(self, finished, recorder):
        session, _ = finished
        sections = recorder.of_type(EventType.SECTION_COMPLETED)
        assert [e.payload["section"] for e in sections] == [1, 2, 3, 4, 5]
        assert len(recorder.of_type(EventType.PATTERN_RECOGNIZED)) == 1

        completed = recorder.of_type(EventType.SESSION_COMPLETED)
        assert len(completed) == 1
        assert completed[0].session_id == session.session_id
        assert completed[0].payload["code"] == "ISC"

    def test_mirror_answer_counts_toward_the_profile(self, finished):
        session, _ = finished
        assert session.answers["q33"].value == "IS"
        assert session.answers["q33"].scores == {"I": 1.0, "S": 1.0}

    def test_no_answers_after_completion(self, engine, finished):
        session, _ = finished
        assert session.status == SessionStatus.COMPLETED
        with pytest.raises(SessionNotActiveError):
            engine.record_answer(session.session_id, "q55", 5)


class TestResults:
    def test_lookup(self, engine, finished):
        session, outcome = finished
        assert engine.get_result(session.session_id) == outcome.result
        assert engine.get_result_by_share_token(outcome.result.share_token) == outcome.result

    def test_unknown_token(self, engine, finished):
        with pytest.raises(NotFoundError):
            engine.get_result_by_share_token("not-a-token")

    def test_no_result_before_completion(self, engine):
        session = engine.start_session("student-1")
        answer_questions(engine, session.session_id, 5)
        with pytest.raises(NotFoundError):
            engine.get_result(session.session_id)

    def test_recompute_is_stable(self, engine, finished, clock):
        session, outcome = finished
        clock.advance(days=1)

        recomputed = engine.recompute_result(session.session_id)
        assert recomputed.profile == outcome.result.profile
        assert recomputed.matches == outcome.result.matches
        assert recomputed.share_token == outcome.result.share_token
        assert recomputed.created_at == outcome.result.created_at
        assert recomputed.recomputed_at == clock()
        assert engine.get_result(session.session_id) == recomputed

    def test_recompute_needs_a_completed_session(self, engine):
        session = engine.start_session("student-1")
        with pytest.raises(SessionNotActiveError):
            engine.recompute_result(session.session_id)

    def test_match_profile_extends_stored_matches(self, engine, finished):
        session, outcome = finished
        matches = engine.match_profile(session.session_id)
        assert len(matches) == 10
        assert matches[0] == outcome.result.matches[0]
        assert matches[:5] == outcome.result.matches

        assert len(engine.match_profile(session.session_id, limit=3)) == 3

    def test_failing_subscriber_does_not_lose_the_result(self, catalog, clock, relaxed_policy):
        engine = AssessmentEngine(catalog, policy=relaxed_policy, clock=clock)

        def broken(event):
            raise RuntimeError("notification backend down")

        engine.events.subscribe(broken)
        session = engine.start_session("student-1")
        outcome = complete_session(engine, session.session_id)

        assert outcome.completed
        assert engine.get_result(session.session_id).share_token == outcome.result.share_token


class TestPolicy:
    def test_code_length(self, catalog, clock):
        engine = AssessmentEngine(catalog, policy=EnginePolicy(code_length=2), clock=clock)
        session = engine.start_session("student-1")
        outcome = complete_session(engine, session.session_id, INVESTIGATIVE_SOCIAL)
        assert outcome.result.profile.code == "IS"

    def test_tier_bands(self):
        assert EnginePolicy(tier_best_fit=90).tiers == TierBands(90, 70, 50)

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            EnginePolicy(mirror_option_count=6)
        with pytest.raises(ValueError):
            EnginePolicy(code_length=4)
        with pytest.raises(ValueError):
            EnginePolicy(code_length=1)

    def test_tier_cut_points_must_descend(self):
        with pytest.raises(ValueError):
            EnginePolicy(tier_great_fit=90)
        with pytest.raises(ValueError):
            EnginePolicy(tier_good_fit=75)
        assert EnginePolicy(tier_best_fit=70, tier_great_fit=70).tiers == TierBands(70, 70, 50)


class TestStatus:
    def test_session_status(self, engine, clock):
        session = engine.start_session("student-1")
        answer_questions(engine, session.session_id, 3)

        status = engine.get_session_status(session.session_id)
        assert status["status"] == "active"
        assert status["progress"]["answered"] == 3
        assert status["has_result"] is False
        assert status["share_token"] is None

    def test_completed_status(self, engine, finished):
        session, outcome = finished
        status = engine.get_session_status(session.session_id)
        assert status["status"] == "completed"
        assert status["has_result"] is True
        assert status["share_token"] == outcome.result.share_token

    def test_sweep_and_health(self, engine, clock):
        engine.start_session("student-1")
        engine.start_session("student-2")
        clock.advance(hours=30)

        assert engine.sweep() == 2
        health = engine.health()
        assert health["sessions"]["abandoned"] == 2
        assert health["sessions"]["participants"] == 2
        assert health["results"] == 0

    def test_sweep_purges_abandoned_sessions_past_retention(self, catalog, clock):
        policy = EnginePolicy(retake_cooldown_days=0, abandoned_retention_hours=48)
        engine = AssessmentEngine(catalog, policy=policy, clock=clock)
        session = engine.start_session("student-1")
        clock.advance(hours=30)

        assert engine.sweep() == 1
        assert engine.get_session_status(session.session_id)["status"] == "abandoned"

        clock.advance(hours=49)
        assert engine.sweep() == 0
        assert engine.health()["sessions"]["abandoned"] == 0
        with pytest.raises(NotFoundError):
            engine.get_session_status(session.session_id)


def test_result_store_reindexes_tokens(finished):
    _, outcome = finished
    store = ResultStore()
    store.save(outcome.result)
    store.save(outcome.result.model_copy(update={"share_token": "fresh"}))

    assert store.get_by_token(outcome.result.share_token) is None
    assert store.get_by_token("fresh").session_id == outcome.result.session_id
    assert len(store) == 1
