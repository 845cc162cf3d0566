from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from riasec_engine.core.models import (
    Answer,
    Career,
    DiscreteResponse,
    Norm,
    Option,
    Question,
    QuestionType,
    RatingResponse,
)

NORMS = {
    "R": Norm(mean=16.5, sd=9.2),
    "I": Norm(mean=20.3, sd=8.8),
    "A": Norm(mean=21.1, sd=9.5),
    "S": Norm(mean=24.7, sd=8.5),
    "E": Norm(mean=21.4, sd=9.0),
    "C": Norm(mean=17.8, sd=8.9),
}

# Strongly investigative, then social; everything else is avoided
INVESTIGATIVE_SOCIAL = {"I": 10.0, "S": 5.0}


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 9, 2, 10, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def pick_selection(question: Question, weights: Optional[Dict[str, float]] = None) -> Any:
    """Choose the selection a participant with the given preferences would make"""
    weights = weights or {}
    response = question.response

    if isinstance(response, RatingResponse):
        if weights.get(question.primary_dimension, 0) > 0:
            return response.max
        return response.min

    def appeal(option: Option) -> float:
        return sum(weights.get(dim, -1.0) * value for dim, value in option.scores.items())

    return max(response.options, key=appeal).value


def answer_questions(runner, session_id: str, count: int,
                     weights: Optional[Dict[str, float]] = None) -> List[Any]:
    """Answer ``count`` questions in order; ``runner`` is an engine or a session manager"""
    outcomes = []
    for _ in range(count):
        question = runner.get_current_question(session_id)
        outcomes.append(runner.record_answer(session_id, question.id, pick_selection(question, weights)))
    return outcomes


def complete_session(runner, session_id: str, weights: Optional[Dict[str, float]] = None):
    outcome = None
    while outcome is None or not outcome.completed:
        question = runner.get_current_question(session_id)
        outcome = runner.record_answer(session_id, question.id, pick_selection(question, weights))
    return outcome


def make_question(question_id: str, order_index: int, section: int = 1,
                  dimension: str = "R", dynamic: bool = False,
                  options: Optional[List[Option]] = None,
                  rating: Optional[RatingResponse] = None) -> Question:
    if rating is not None:
        return Question(
            id=question_id, text=f"Rate {question_id}", type=QuestionType.RATING_SCALE,
            section=section, order_index=order_index, primary_dimension=dimension,
            response=rating,
        )

    options = options or [
        Option(text="Yes", value="yes", scores={dimension: 1.0}),
        Option(text="No", value="no", scores={}),
    ]
    return Question(
        id=question_id, text=f"Question {question_id}", type=QuestionType.SINGLE_CHOICE,
        section=section, order_index=order_index, primary_dimension=dimension,
        response=DiscreteResponse(options=tuple(options)), dynamic=dynamic,
    )


def make_career(career_id: str, profile: Dict[str, float], category: str = "test") -> Career:
    return Career(id=career_id, title=career_id.title(), category=category, riasec_profile=profile)


def make_answer(question_id: str, scores: Dict[str, float], session_id: str = "s1",
                answered_at: datetime = datetime(2024, 9, 2, 10, 0, 0)) -> Answer:
    return Answer(
        session_id=session_id,
        question_id=question_id,
        value="x",
        scores=scores,
        answered_at=answered_at,
    )
