import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .catalog import AssessmentCatalog
from .events import EngineEvent, EventDispatcher, EventType
from .exceptions import ConflictError, NotFoundError, RetakePolicyError, SequenceError
from .mirror import MirrorGenerator, check_mirror_answer
from .models import (
    Answer,
    AnswerOutcome,
    Progress,
    Question,
    SectionComplete,
    Session,
    SessionStatus,
)
from .scoring import leading_dimension, resolve_selection
from ..utils.validation import validate_and_raise, validate_participant_id, validate_session_id

logger = logging.getLogger(__name__)

ABANDON_TIMEOUT = "inactivity timeout"
ABANDON_REPLACED = "replaced by a new session"
ABANDON_REQUESTED = "abandoned by participant"


class AssessmentSessionManager:
    """
    Owns every session and the one-ACTIVE-session-per-participant rule.

    Locking: ``_lock`` guards the maps and serializes starts; each session has its own
    lock that guards pointer, answers and status. The map lock may be held while taking a
    session lock, never the other way round.
    """

    def __init__(self, catalog: AssessmentCatalog, mirror: Optional[MirrorGenerator] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 inactivity_timeout: timedelta = timedelta(hours=24),
                 abandoned_retention: timedelta = timedelta(days=7),
                 allow_replace: bool = True,
                 retake_cooldown: timedelta = timedelta(days=7),
                 max_completed: int = 3,
                 events: Optional[EventDispatcher] = None):
        self.catalog = catalog
        self.mirror = mirror or MirrorGenerator(catalog)
        self.inactivity_timeout = inactivity_timeout
        self.abandoned_retention = abandoned_retention
        self.allow_replace = allow_replace
        self.retake_cooldown = retake_cooldown
        self.max_completed = max_completed
        self.events = events

        self._clock = clock or datetime.now
        self.sessions: Dict[str, Session] = {}
        self._session_locks: Dict[str, threading.RLock] = {}
        self._active_by_participant: Dict[str, str] = {}
        self._history: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

    def now(self) -> datetime:
        return self._clock()

    # Lookup helpers

    def _lookup(self, session_id: str) -> Tuple[Session, threading.RLock]:
        validate_and_raise(validate_session_id(session_id), "Session lookup")
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session {session_id} not found")
            return session, self._session_locks[session_id]

    def _is_idle(self, session: Session, now: datetime) -> bool:
        return now - session.last_activity > self.inactivity_timeout

    def _expire_if_idle(self, session: Session, now: datetime) -> bool:
        """Abandon an idle ACTIVE session. Caller holds the session lock"""
        if session.is_active and self._is_idle(session, now):
            session.mark_abandoned(now, ABANDON_TIMEOUT)
            logger.info(
                f"Session {session.session_id} abandoned after inactivity "
                f"(last activity {session.last_activity.isoformat()})"
            )
            self._emit_abandoned(session, now)
            return True
        return False

    def _emit_abandoned(self, session: Session, now: datetime) -> None:
        if self.events is None:
            return
        self.events.dispatch(EngineEvent(
            type=EventType.SESSION_ABANDONED,
            session_id=session.session_id,
            participant_id=session.participant_id,
            occurred_at=now,
            payload={"reason": session.abandon_reason, "pointer": session.pointer},
        ))

    def _current_active(self, participant_id: str, now: datetime) -> Optional[Session]:
        """ACTIVE, non-expired session of a participant. Caller holds ``_lock``"""
        session_id = self._active_by_participant.get(participant_id)
        if session_id is None:
            return None

        session = self.sessions[session_id]
        with self._session_locks[session_id]:
            self._expire_if_idle(session, now)
            if session.is_active:
                return session

        del self._active_by_participant[participant_id]
        return None

    # Lifecycle

    def start_session(self, participant_id: str, replace: bool = False) -> Session:
        """
        Start a new assessment for a participant

        Args:
            participant_id: External participant identity
            replace: Abandon an existing ACTIVE session instead of rejecting the start

        Returns:
            The new ACTIVE session at pointer 0
        """
        validate_and_raise(validate_participant_id(participant_id), "Start session")
        now = self.now()

        with self._lock:
            existing = self._current_active(participant_id, now)
            if existing is not None:
                if not replace:
                    raise ConflictError(
                        f"Participant {participant_id} already has an active session "
                        f"{existing.session_id}; resume it or start with replace"
                    )
                if not self.allow_replace:
                    raise ConflictError("Replacing an active session is disabled")

            self._check_retake_policy(participant_id, now)

            if existing is not None:
                with self._session_locks[existing.session_id]:
                    if existing.is_active:
                        existing.mark_abandoned(now, ABANDON_REPLACED)
                        logger.info(f"Session {existing.session_id} replaced for participant {participant_id}")
                        self._emit_abandoned(existing, now)

            session = Session(participant_id=participant_id, created_at=now, last_activity=now)
            self.sessions[session.session_id] = session
            self._session_locks[session.session_id] = threading.RLock()
            self._active_by_participant[participant_id] = session.session_id
            self._history.setdefault(participant_id, []).append(session.session_id)

        logger.info(f"Created session {session.session_id} for participant {participant_id}")
        return session

    def resume_session(self, participant_id: str) -> Session:
        validate_and_raise(validate_participant_id(participant_id), "Resume session")
        now = self.now()

        with self._lock:
            session = self._current_active(participant_id, now)

        if session is None:
            raise NotFoundError(f"No active session for participant {participant_id}")

        logger.info(f"Resumed session {session.session_id} at position {session.pointer}")
        return session

    def _completed_sessions(self, participant_id: str) -> List[Session]:
        sessions = [self.sessions[sid] for sid in self._history.get(participant_id, [])]
        return [s for s in sessions if s.status == SessionStatus.COMPLETED]

    def _check_retake_policy(self, participant_id: str, now: datetime) -> None:
        completed = self._completed_sessions(participant_id)
        if not completed:
            return

        if self.max_completed and len(completed) >= self.max_completed:
            raise RetakePolicyError(
                RetakePolicyError.MAX_ATTEMPTS,
                f"Participant {participant_id} has used all {self.max_completed} assessments",
                completed_count=len(completed),
            )

        if self.retake_cooldown > timedelta(0):
            last_completion = max(s.completed_at for s in completed)
            available_at = last_completion + self.retake_cooldown
            if now < available_at:
                days_remaining = math.ceil((available_at - now) / timedelta(days=1))
                raise RetakePolicyError(
                    RetakePolicyError.COOLDOWN,
                    f"Next assessment available in {days_remaining} day(s)",
                    days_remaining=days_remaining,
                    completed_count=len(completed),
                )

    def get_session(self, session_id: str) -> Session:
        """Retrieve a session in any status, expiring it first if it went idle"""
        session, lock = self._lookup(session_id)
        with lock:
            self._expire_if_idle(session, self.now())
        return session

    def get_active_session(self, session_id: str) -> Session:
        session, lock = self._lookup(session_id)
        with lock:
            self._expire_if_idle(session, self.now())
            session.require_active()
        return session

    # Questions and answers

    def _question_at_pointer(self, session: Session) -> Question:
        """Question at the session pointer; the dynamic slot is generated once and cached"""
        if session.pointer == self.catalog.mirror_index:
            if session.mirror is None:
                session.mirror = self.mirror.generate(session)
            return session.mirror.question
        return self.catalog.question_at(session.pointer)

    def get_current_question(self, session_id: str) -> Question:
        session, lock = self._lookup(session_id)
        with lock:
            self._expire_if_idle(session, self.now())
            session.require_active()
            return self._question_at_pointer(session)

    def record_answer(self, session_id: str, question_id: str, selection: Any) -> AnswerOutcome:
        """
        Record the answer for the question at the pointer and advance by one

        Raises:
            SessionNotActiveError: session completed, abandoned or expired
            SequenceError: question_id is not the question at the pointer
            ValidationError: selection outside the declared options or range
        """
        session, lock = self._lookup(session_id)

        with lock:
            now = self.now()
            self._expire_if_idle(session, now)
            session.require_active()

            question = self._question_at_pointer(session)
            if question_id != question.id:
                logger.warning(
                    f"Session {session_id}: answer for {question_id} rejected, expected {question.id}"
                )
                raise SequenceError(question.id, question_id)

            value, rating, scores = resolve_selection(question, selection)

            answer = Answer(
                session_id=session_id,
                question_id=question.id,
                value=value,
                rating=rating,
                scores=scores,
                answered_at=now,
            )

            pattern_recognized = None
            if question.dynamic and session.mirror is not None and session.mirror.personalized:
                pattern_recognized = check_mirror_answer(value, session.mirror.correct_pattern)
                session.pattern_recognized = pattern_recognized

            # Write and advance together
            session.answers[question.id] = answer
            session.pointer += 1
            session.last_activity = now

            section_complete = None
            if self.catalog.is_section_boundary(session.pointer):
                section = self.catalog.section_for(session.pointer - 1)
                section_complete = SectionComplete(
                    section=section,
                    leading_dimension=leading_dimension(
                        session.ordered_answers(), self.catalog.dimension_priority
                    ),
                    sections_remaining=self.catalog.total_sections - section,
                )

            completed = session.pointer >= len(self.catalog)
            if completed:
                session.mark_completed(now)
                logger.info(f"Session {session_id} completed with {len(session.answers)} answers")

            logger.debug(f"Session {session_id}: recorded {question.id}={value}, pointer={session.pointer}")

            return AnswerOutcome(
                session_id=session_id,
                answer=answer,
                pointer=session.pointer,
                section_complete=section_complete,
                completed=completed,
                pattern_recognized=pattern_recognized,
            )

    def abandon(self, session_id: str, reason: str = ABANDON_REQUESTED) -> Session:
        session, lock = self._lookup(session_id)
        with lock:
            now = self.now()
            if not self._expire_if_idle(session, now):
                session.mark_abandoned(now, reason)
                logger.info(f"Session {session_id} abandoned: {reason}")
                self._emit_abandoned(session, now)
        return session

    def sweep_expired(self, now: Optional[datetime] = None) -> List[Session]:
        """Abandon every ACTIVE session idle past the timeout"""
        now = now or self.now()

        with self._lock:
            candidates = [
                (session, self._session_locks[session.session_id])
                for session in self.sessions.values()
                if session.is_active
            ]

        abandoned = []
        for session, lock in candidates:
            with lock:
                if self._expire_if_idle(session, now):
                    abandoned.append(session)

        if abandoned:
            with self._lock:
                for session in abandoned:
                    if self._active_by_participant.get(session.participant_id) == session.session_id:
                        del self._active_by_participant[session.participant_id]
            logger.info(f"Sweep abandoned {len(abandoned)} idle sessions")

        return abandoned

    def purge_abandoned(self, now: Optional[datetime] = None) -> int:
        """
        Forget sessions abandoned longer ago than the retention window.

        Completed sessions stay: their results, share tokens and the retake policy depend on them.
        """
        now = now or self.now()
        cutoff = now - self.abandoned_retention

        with self._lock:
            stale = [
                session for session in self.sessions.values()
                if session.status == SessionStatus.ABANDONED and session.abandoned_at <= cutoff
            ]
            for session in stale:
                del self.sessions[session.session_id]
                del self._session_locks[session.session_id]
                if self._active_by_participant.get(session.participant_id) == session.session_id:
                    del self._active_by_participant[session.participant_id]
                history = self._history.get(session.participant_id, [])
                if session.session_id in history:
                    history.remove(session.session_id)
                if not history:
                    self._history.pop(session.participant_id, None)

        if stale:
            logger.info(f"Purged {len(stale)} abandoned sessions past retention")
        return len(stale)

    def get_progress(self, session_id: str) -> Progress:
        session, lock = self._lookup(session_id)
        with lock:
            return self.catalog.progress(session.pointer)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for session in self.sessions.values() if session.is_active)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {status.value: 0 for status in SessionStatus}
            for session in self.sessions.values():
                counts[session.status.value] += 1
            counts["participants"] = len(self._history)
            return counts
