from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr

from ..core.models import DIMENSION_NAMES, AssessmentResult, CareerMatch, Progress, SectionComplete

# API Request Models


class StartSessionRequest(BaseModel):
    """Request to start a new assessment"""

    participant_id: str = Field(..., min_length=1, max_length=128, description="External participant identity")
    replace: bool = Field(False, description="Abandon an existing active session instead of failing")


class ResumeSessionRequest(BaseModel):
    participant_id: str = Field(..., min_length=1, max_length=128)


class AnswerRequest(BaseModel):
    """Answer to the question at the session pointer"""

    question_id: str = Field(..., min_length=1, description="Must match the current question")
    selection: Union[StrictInt, StrictFloat, StrictStr] = Field(
        ..., description="Option token or numeric rating; booleans are rejected"
    )


# API Response Models


class SectionInsight(BaseModel):
    section: int
    sections_remaining: int
    leading_dimension: Optional[str] = None
    leading_dimension_name: Optional[str] = None

    @classmethod
    def from_signal(cls, signal: SectionComplete) -> "SectionInsight":
        return cls(
            section=signal.section,
            sections_remaining=signal.sections_remaining,
            leading_dimension=signal.leading_dimension,
            leading_dimension_name=DIMENSION_NAMES.get(signal.leading_dimension or ""),
        )


class SessionResponse(BaseModel):
    session_id: str
    participant_id: str
    status: str
    progress: Progress
    question: Optional[Dict[str, Any]] = None


class AnswerResponse(BaseModel):
    session_id: str
    question_id: str
    pointer: int
    progress: Progress
    completed: bool
    section_complete: Optional[SectionInsight] = None
    pattern_recognized: Optional[bool] = None
    next_question: Optional[Dict[str, Any]] = None
    result: Optional[AssessmentResult] = None


class MatchesResponse(BaseModel):
    session_id: str
    code: str
    matches: List[CareerMatch]


class ErrorResponse(BaseModel):
    error: str
    detail: str
    errors: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)
