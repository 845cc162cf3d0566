import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import SessionNotActiveError

# Fixed RIASEC order. Every vector is read and written in this order.
DIMENSIONS: Tuple[str, ...] = ("R", "I", "A", "S", "E", "C")

DIMENSION_NAMES = {
    "R": "Realistic",
    "I": "Investigative",
    "A": "Artistic",
    "S": "Social",
    "E": "Enterprising",
    "C": "Conventional",
}


class QuestionType(str, Enum):
    """Types of questions available"""
    SINGLE_CHOICE = "single_choice"
    RATING_SCALE = "rating_scale"
    BINARY = "binary"


class SessionStatus(str, Enum):
    """Session lifecycle. Only ACTIVE -> COMPLETED and ACTIVE -> ABANDONED are allowed"""
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class MatchTier(str, Enum):
    BEST_FIT = "Best Fit"
    GREAT_FIT = "Great Fit"
    GOOD_FIT = "Good Fit"
    POOR_FIT = "Poor Fit"


class Option(BaseModel):
    """Discrete answer option with its score contribution"""
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Option text to display")
    value: str = Field(..., description="Stable value token submitted by the client")
    scores: Dict[str, float] = Field(
        default_factory=dict,
        description="Contribution per dimension, missing dimensions count as 0"
    )


class DiscreteResponse(BaseModel):
    """Answer resolved by looking up an option token"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["discrete"] = "discrete"
    options: Tuple[Option, ...] = Field(..., description="Selectable options")

    def option_for(self, value: str) -> Optional[Option]:
        for option in self.options:
            if option.value == value:
                return option
        return None


class RatingResponse(BaseModel):
    """Answer is a number within [min, max] credited to the primary dimension"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["rating"] = "rating"
    min: int = Field(1, description="Lowest accepted rating")
    max: int = Field(5, description="Highest accepted rating")
    labels: Dict[str, str] = Field(default_factory=dict, description="Labels for scale points")
    weight: float = Field(1.0, ge=0.0, description="Multiplier applied to the rating")


ResponseSpec = Annotated[Union[DiscreteResponse, RatingResponse], Field(discriminator="kind")]


class Question(BaseModel):
    """Individual assessment question"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique question identifier")
    text: str = Field(..., description="Question text to display to user")
    type: QuestionType = Field(QuestionType.SINGLE_CHOICE, description="Type of question")
    section: int = Field(..., description="Section number, 1..5")
    order_index: int = Field(..., description="Global position, 1..N")
    difficulty: int = Field(1, ge=1, le=3, description="Difficulty tier")
    primary_dimension: str = Field(..., description="Main dimension this question measures")
    response: ResponseSpec
    dynamic: bool = Field(False, description="Content generated from the participant's answers")
    hint: Optional[str] = None

    def format_for_display(self) -> Dict[str, Any]:
        """Format question for the transport layer"""
        payload: Dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "type": self.type.value,
            "section": self.section,
            "order_index": self.order_index,
            "difficulty": self.difficulty,
            "dynamic": self.dynamic,
        }
        if self.hint:
            payload["hint"] = self.hint
        if isinstance(self.response, DiscreteResponse):
            payload["options"] = [
                {"value": option.value, "label": option.text}
                for option in self.response.options
            ]
        else:
            payload["scale"] = {
                "min": self.response.min,
                "max": self.response.max,
                "labels": dict(self.response.labels),
            }
        return payload


class Norm(BaseModel):
    model_config = ConfigDict(frozen=True)

    mean: float
    sd: float


class Career(BaseModel):
    """Career with its reference RIASEC profile on a 0-100 scale"""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    category: str = ""
    description: str = ""
    riasec_profile: Dict[str, float]
    outlook: Optional[str] = None


class Answer(BaseModel):
    """Recorded answer. Immutable once written"""
    model_config = ConfigDict(frozen=True)

    session_id: str
    question_id: str
    value: str = Field(..., description="Option token, or the rating as submitted")
    rating: Optional[float] = None
    scores: Dict[str, float] = Field(..., description="Resolved contribution vector")
    answered_at: datetime


class MirrorQuestion(BaseModel):
    """Generated content for the dynamic slot, cached per session"""
    model_config = ConfigDict(frozen=True)

    question: Question
    correct_pattern: Optional[str] = None
    personalized: bool = False


class Session(BaseModel):
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    participant_id: str
    pointer: int = 0
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.now)
    last_activity: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    abandon_reason: Optional[str] = None
    answers: Dict[str, Answer] = Field(default_factory=dict)
    mirror: Optional[MirrorQuestion] = None
    pattern_recognized: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def ordered_answers(self) -> List[Answer]:
        """Answers in the order they were recorded"""
        return list(self.answers.values())

    def require_active(self) -> None:
        if self.status != SessionStatus.ACTIVE:
            raise SessionNotActiveError(self.session_id, self.status.value)

    def mark_completed(self, now: datetime) -> None:
        self.require_active()
        self.status = SessionStatus.COMPLETED
        self.completed_at = now

    def mark_abandoned(self, now: datetime, reason: str) -> None:
        self.require_active()
        self.status = SessionStatus.ABANDONED
        self.abandoned_at = now
        self.abandon_reason = reason


class Archetype(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    description: str


class Profile(BaseModel):
    """Normalized result of a completed session. Never mutated"""
    model_config = ConfigDict(frozen=True)

    session_id: str
    raw_scores: Dict[str, float]
    percentiles: Dict[str, int]
    code: str
    archetype: Archetype
    completed_at: datetime


class CareerMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    career_id: str
    title: str
    category: str = ""
    correlation: float = Field(..., ge=-1.0, le=1.0)
    match_percentage: int = Field(..., ge=0, le=100)
    tier: MatchTier


class AssessmentResult(BaseModel):
    """Stored outcome of a completed session"""
    session_id: str
    participant_id: str
    profile: Profile
    matches: List[CareerMatch]
    share_token: str
    pattern_recognized: bool = False
    created_at: datetime
    recomputed_at: Optional[datetime] = None


class Progress(BaseModel):
    question_number: int
    answered: int
    total_questions: int
    section: int
    total_sections: int
    percent_complete: int


class SectionComplete(BaseModel):
    section: int
    leading_dimension: Optional[str] = None
    sections_remaining: int


class AnswerOutcome(BaseModel):
    session_id: str
    answer: Answer
    pointer: int
    section_complete: Optional[SectionComplete] = None
    completed: bool = False
    pattern_recognized: Optional[bool] = None
    result: Optional[AssessmentResult] = None
