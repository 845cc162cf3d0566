import logging
import secrets
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .catalog import AssessmentCatalog
from .events import EngineEvent, EventDispatcher, EventType
from .exceptions import NotFoundError, SessionNotActiveError
from .matcher import TierBands, match_careers, rank_careers
from .mirror import MirrorGenerator
from .models import (
    AnswerOutcome,
    AssessmentResult,
    CareerMatch,
    Progress,
    Question,
    Session,
    SessionStatus,
)
from .scoring import build_profile
from .session_manager import AssessmentSessionManager

logger = logging.getLogger(__name__)


class EnginePolicy(BaseModel):
    """Policy constants the engine runs with. Built from Settings by the app"""
    model_config = ConfigDict(frozen=True)

    inactivity_timeout_hours: float = Field(24.0, gt=0)
    abandoned_retention_hours: float = Field(168.0, ge=0, description="How long abandoned sessions stay inspectable")
    allow_session_replace: bool = True
    retake_cooldown_days: float = Field(7.0, ge=0)
    max_completed_assessments: int = Field(3, ge=0, description="0 disables the cap")
    mirror_min_answers: int = Field(20, ge=0)
    mirror_option_count: int = Field(5, ge=3, le=5)
    code_length: int = Field(3, ge=2, le=3)
    match_limit: int = Field(10, ge=1)
    stored_match_limit: int = Field(5, ge=1)
    tier_best_fit: int = Field(85, ge=0, le=100)
    tier_great_fit: int = Field(70, ge=0, le=100)
    tier_good_fit: int = Field(50, ge=0, le=100)
    z_score_cap: float = Field(3.5, gt=0)

    @model_validator(mode="after")
    def check_tier_order(self) -> "EnginePolicy":
        if not self.tier_best_fit >= self.tier_great_fit >= self.tier_good_fit:
            raise ValueError(
                f"Tier cut points must descend: best={self.tier_best_fit}, "
                f"great={self.tier_great_fit}, good={self.tier_good_fit}"
            )
        return self

    @property
    def tiers(self) -> TierBands:
        return TierBands(self.tier_best_fit, self.tier_great_fit, self.tier_good_fit)


class ResultStore:
    """In-memory results keyed by session id, with a share-token index"""

    def __init__(self):
        self._results: Dict[str, AssessmentResult] = {}
        self._tokens: Dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, result: AssessmentResult) -> None:
        with self._lock:
            previous = self._results.get(result.session_id)
            if previous is not None and previous.share_token != result.share_token:
                self._tokens.pop(previous.share_token, None)
            self._results[result.session_id] = result
            self._tokens[result.share_token] = result.session_id

    def get(self, session_id: str) -> Optional[AssessmentResult]:
        with self._lock:
            return self._results.get(session_id)

    def get_by_token(self, share_token: str) -> Optional[AssessmentResult]:
        with self._lock:
            session_id = self._tokens.get(share_token)
            return self._results.get(session_id) if session_id else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


def generate_share_token() -> str:
    return secrets.token_urlsafe(9)


class AssessmentEngine:
    """Session state machine, scoring and matching wired together"""

    def __init__(self, catalog: AssessmentCatalog, policy: Optional[EnginePolicy] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 events: Optional[EventDispatcher] = None,
                 results: Optional[ResultStore] = None):
        self.catalog = catalog
        self.policy = policy or EnginePolicy()
        self.events = events or EventDispatcher()
        self.results = results or ResultStore()
        self._clock = clock or datetime.now

        self.mirror = MirrorGenerator(
            catalog,
            min_answers=self.policy.mirror_min_answers,
            option_count=self.policy.mirror_option_count,
        )
        self.sessions = AssessmentSessionManager(
            catalog,
            mirror=self.mirror,
            clock=self._clock,
            inactivity_timeout=timedelta(hours=self.policy.inactivity_timeout_hours),
            abandoned_retention=timedelta(hours=self.policy.abandoned_retention_hours),
            allow_replace=self.policy.allow_session_replace,
            retake_cooldown=timedelta(days=self.policy.retake_cooldown_days),
            max_completed=self.policy.max_completed_assessments,
            events=self.events,
        )

    # Sessions

    def start_session(self, participant_id: str, replace: bool = False) -> Session:
        return self.sessions.start_session(participant_id, replace=replace)

    def resume_session(self, participant_id: str) -> Session:
        return self.sessions.resume_session(participant_id)

    def get_current_question(self, session_id: str) -> Question:
        return self.sessions.get_current_question(session_id)

    def get_progress(self, session_id: str) -> Progress:
        return self.sessions.get_progress(session_id)

    def abandon(self, session_id: str) -> Session:
        return self.sessions.abandon(session_id)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Abandon idle sessions, then drop abandoned ones past retention. Returns the abandoned count"""
        now = now or self._clock()
        abandoned = self.sessions.sweep_expired(now)
        self.sessions.purge_abandoned(now)
        return len(abandoned)

    def record_answer(self, session_id: str, question_id: str, selection: Any) -> AnswerOutcome:
        outcome = self.sessions.record_answer(session_id, question_id, selection)
        session = self.sessions.get_session(session_id)
        pending: List[EngineEvent] = []

        if outcome.pattern_recognized:
            logger.info(f"Session {session_id}: mirror pattern recognized")
            pending.append(self._event(EventType.PATTERN_RECOGNIZED, session, {
                "pattern": session.mirror.correct_pattern if session.mirror else None,
            }))

        if outcome.section_complete is not None:
            pending.append(self._event(
                EventType.SECTION_COMPLETED, session, outcome.section_complete.model_dump()
            ))

        if outcome.completed:
            result = self._finalize(session)
            outcome = outcome.model_copy(update={"result": result})
            pending.append(self._event(EventType.SESSION_COMPLETED, session, {
                "code": result.profile.code,
                "share_token": result.share_token,
                "top_career": result.matches[0].career_id if result.matches else None,
            }))

        # Result is stored before any collaborator hears about it
        for event in pending:
            self.events.dispatch(event)

        return outcome

    def _event(self, event_type: EventType, session: Session, payload: Dict[str, Any]) -> EngineEvent:
        return EngineEvent(
            type=event_type,
            session_id=session.session_id,
            participant_id=session.participant_id,
            occurred_at=self._clock(),
            payload=payload,
        )

    # Results

    def _compute_result(self, session: Session, share_token: str,
                        created_at: datetime) -> AssessmentResult:
        profile = build_profile(
            session.session_id,
            session.ordered_answers(),
            self.catalog.norms,
            completed_at=session.completed_at,
            priority=self.catalog.dimension_priority,
            code_length=self.policy.code_length,
            z_cap=self.policy.z_score_cap,
        )
        matches = match_careers(
            profile, self.catalog.careers,
            limit=self.policy.stored_match_limit,
            tiers=self.policy.tiers,
        )
        return AssessmentResult(
            session_id=session.session_id,
            participant_id=session.participant_id,
            profile=profile,
            matches=matches,
            share_token=share_token,
            pattern_recognized=session.pattern_recognized,
            created_at=created_at,
        )

    def _finalize(self, session: Session) -> AssessmentResult:
        try:
            result = self._compute_result(session, generate_share_token(), self._clock())
        except Exception:
            logger.error(f"Failed to compute result for session {session.session_id}", exc_info=True)
            raise

        self.results.save(result)
        logger.info(
            f"Profile computed for session {session.session_id}: code={result.profile.code}, "
            f"archetype={result.profile.archetype.name}"
        )
        return result

    def _completed_session(self, session_id: str) -> Session:
        session = self.sessions.get_session(session_id)
        if session.status != SessionStatus.COMPLETED:
            raise SessionNotActiveError(session_id, session.status.value)
        return session

    def get_result(self, session_id: str) -> AssessmentResult:
        self.sessions.get_session(session_id)
        result = self.results.get(session_id)
        if result is None:
            raise NotFoundError(f"No result for session {session_id}")
        return result

    def get_result_by_share_token(self, share_token: str) -> AssessmentResult:
        result = self.results.get_by_token(share_token)
        if result is None:
            raise NotFoundError("Shared result not found")
        return result

    def recompute_result(self, session_id: str) -> AssessmentResult:
        """Explicitly rebuild a stored result against the current norms and careers"""
        session = self._completed_session(session_id)
        previous = self.results.get(session_id)

        share_token = previous.share_token if previous else generate_share_token()
        created_at = previous.created_at if previous else self._clock()
        result = self._compute_result(session, share_token, created_at)
        result = result.model_copy(update={"recomputed_at": self._clock()})

        self.results.save(result)

        if previous is None:
            logger.info(f"Result for session {session_id} created on recompute")
        elif previous.profile != result.profile:
            logger.info(
                f"Recomputed session {session_id}: code {previous.profile.code} -> {result.profile.code}"
            )
        else:
            logger.info(f"Recomputed session {session_id}: profile unchanged")
        return result

    def match_profile(self, session_id: str, limit: Optional[int] = None) -> List[CareerMatch]:
        """Ranking longer than the stored top matches, computed on demand"""
        result = self.get_result(session_id)
        limit = limit or self.policy.match_limit
        return rank_careers(
            result.profile.percentiles, self.catalog.careers,
            limit=limit, tiers=self.policy.tiers,
        )

    def get_session_status(self, session_id: str) -> Dict[str, Any]:
        session = self.sessions.get_session(session_id)
        progress = self.sessions.get_progress(session_id)
        result = self.results.get(session_id)

        return {
            "session_id": session.session_id,
            "participant_id": session.participant_id,
            "status": session.status.value,
            "created_at": session.created_at.isoformat(),
            "last_activity": session.last_activity.isoformat(),
            "completed_at": session.completed_at.isoformat() if session.completed_at else None,
            "abandoned_at": session.abandoned_at.isoformat() if session.abandoned_at else None,
            "abandon_reason": session.abandon_reason,
            "progress": progress.model_dump(),
            "has_result": result is not None,
            "share_token": result.share_token if result else None,
        }

    def health(self) -> Dict[str, Any]:
        return {
            "catalog": self.catalog.summary(),
            "sessions": self.sessions.stats(),
            "results": len(self.results),
        }
