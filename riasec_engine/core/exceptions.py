from typing import List, Optional


class AssessmentError(Exception):
    """Base error for the assessment engine"""

    kind = "assessment_error"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "detail": self.message,
            "errors": list(self.errors),
        }


class NotFoundError(AssessmentError):
    """Unknown session, question, career or result"""

    kind = "not_found"


class SessionNotActiveError(NotFoundError):
    """Session exists but is COMPLETED or ABANDONED"""

    kind = "session_not_active"

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is {status}")


class SequenceError(AssessmentError):
    """Answer submitted for a question other than the one at the pointer"""

    kind = "sequence_error"

    def __init__(self, expected_question_id: Optional[str], received_question_id: str):
        self.expected_question_id = expected_question_id
        self.received_question_id = received_question_id
        super().__init__(
            f"Expected an answer for {expected_question_id}, got {received_question_id}"
        )


class ConflictError(AssessmentError):
    """Participant already holds an ACTIVE session"""

    kind = "conflict"


class RetakePolicyError(ConflictError):
    """Participant is not allowed to start another assessment yet"""

    kind = "retake_not_allowed"

    COOLDOWN = "cooldown"
    MAX_ATTEMPTS = "max_attempts"

    def __init__(self, reason: str, message: str, days_remaining: int = 0,
                 completed_count: int = 0):
        self.reason = reason
        self.days_remaining = days_remaining
        self.completed_count = completed_count
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update({
            "reason": self.reason,
            "days_remaining": self.days_remaining,
            "completed_count": self.completed_count,
        })
        return payload


class ValidationError(AssessmentError):
    """Selection outside the declared options or range, or malformed input"""

    kind = "validation_error"


class RateLimitError(AssessmentError):
    """Participant exceeded the request budget"""

    kind = "rate_limited"

    def __init__(self, participant_id: str, retry_after: float):
        self.participant_id = participant_id
        self.retry_after = retry_after
        super().__init__(
            f"Too many requests for participant {participant_id}, retry in {retry_after:.0f}s"
        )


class ConfigurationError(AssessmentError):
    """Catalog, norms or careers are invalid. Fatal at startup"""

    kind = "configuration_error"
