import logging
import random
from typing import List, Optional

from .catalog import AssessmentCatalog
from .models import DiscreteResponse, MirrorQuestion, Option, Session
from .scoring import PATTERN_DESCRIPTIONS, aggregate, all_patterns, normalize_pattern
from ..utils.math_utils import rank_dimensions

logger = logging.getLogger(__name__)

MIN_OPTIONS = 3
MAX_OPTIONS = 5


def pattern_option(pattern: str) -> Option:
    pattern = normalize_pattern(pattern)
    return Option(
        text=PATTERN_DESCRIPTIONS[pattern],
        value=pattern,
        scores={pattern[0]: 1.0, pattern[1]: 1.0},
    )


def check_mirror_answer(selected: Optional[str], correct: Optional[str]) -> bool:
    """Order-insensitive pattern comparison; no correct pattern means no match"""
    if not selected or not correct:
        return False
    return normalize_pattern(selected) == normalize_pattern(correct)


class MirrorGenerator:
    """Builds the personalized options of the dynamic slot from the answered prefix"""

    def __init__(self, catalog: AssessmentCatalog, min_answers: int = 20, option_count: int = 5):
        if not MIN_OPTIONS <= option_count <= MAX_OPTIONS:
            raise ValueError(
                f"Mirror option count must be between {MIN_OPTIONS} and {MAX_OPTIONS}, got {option_count}"
            )
        self.catalog = catalog
        self.min_answers = min_answers
        self.option_count = option_count

    def fallback(self) -> MirrorQuestion:
        template = self.catalog.question_at(self.catalog.mirror_index)
        return MirrorQuestion(question=template, correct_pattern=None, personalized=False)

    def generate(self, session: Session) -> MirrorQuestion:
        """
        Synthesize the mirror question for a session

        Falls back to the catalog's static options while fewer than ``min_answers``
        answers exist or the prefix has not scored anything yet.
        """
        if self.catalog.mirror_index is None:
            raise ValueError("Catalog has no dynamic question")

        template = self.catalog.question_at(self.catalog.mirror_index)
        prefix = [a for a in session.ordered_answers() if a.question_id != template.id]

        if len(prefix) < self.min_answers:
            logger.info(
                f"Session {session.session_id}: {len(prefix)} answers before mirror, using fallback options"
            )
            return self.fallback()

        raw = aggregate(prefix)
        if not any(raw.values()):
            logger.info(f"Session {session.session_id}: empty prefix scores, using fallback options")
            return self.fallback()

        top = rank_dimensions(raw, self.catalog.dimension_priority)
        correct = normalize_pattern(top[0] + top[1])

        # Seeded by session id so repeated reads show the same question
        rng = random.Random(session.session_id)
        pool = [pattern for pattern in all_patterns() if pattern != correct]
        patterns: List[str] = [correct] + rng.sample(pool, self.option_count - 1)
        rng.shuffle(patterns)

        question = template.model_copy(update={
            "response": DiscreteResponse(options=tuple(pattern_option(p) for p in patterns)),
        })

        logger.debug(f"Session {session.session_id}: mirror pattern {correct}, options {patterns}")
        return MirrorQuestion(question=question, correct_pattern=correct, personalized=True)
