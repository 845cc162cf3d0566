"""Scoring pipeline: answers -> raw dimension totals -> percentiles -> classification code.

Every function here is pure. The same answers and norms always produce the same Profile.
"""
import logging
from datetime import datetime
from itertools import combinations
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .exceptions import ValidationError
from .models import (
    DIMENSIONS,
    Answer,
    Archetype,
    DiscreteResponse,
    Norm,
    Profile,
    Question,
    RatingResponse,
)
from ..utils.math_utils import rank_dimensions, sum_vectors, z_score, z_to_percentile
from ..utils.validation import coerce_number, validate_and_raise, validate_option_token, validate_rating

logger = logging.getLogger(__name__)

DEFAULT_CODE_LENGTH = 3
DEFAULT_Z_CAP = 3.5

# Unordered pairs, keyed by the alphabetically sorted code
PATTERN_DESCRIPTIONS: Dict[str, str] = {
    "AC": "Create with order",
    "AE": "Invent and promote",
    "AI": "Research and create new things",
    "AR": "Craft and express yourself",
    "AS": "Create and help people",
    "CE": "Manage and organize",
    "CI": "Research and systematize",
    "CR": "Structure and implement",
    "CS": "Help and systematize",
    "EI": "Analyze and persuade",
    "ER": "Act and influence",
    "ES": "Communicate and lead",
    "IR": "Figure out complex things and build with your hands",
    "IS": "Analyze and explain",
    "RS": "Help practically",
}

PAIR_ARCHETYPES: Dict[str, str] = {
    "AC": "Curator",
    "AE": "Promoter",
    "AI": "Innovator",
    "AR": "Craftsperson",
    "AS": "Inspirer",
    "CE": "Administrator",
    "CI": "Systematizer",
    "CR": "Implementer",
    "CS": "Coordinator",
    "EI": "Strategist",
    "ER": "Doer",
    "ES": "Leader",
    "IR": "Engineer",
    "IS": "Explainer",
    "RS": "Practical Helper",
}

SINGLE_ARCHETYPES: Dict[str, Tuple[str, str]] = {
    "R": ("Practitioner", "Works best with tools, machines and tangible results"),
    "I": ("Researcher", "Driven by curiosity and finding out how things work"),
    "A": ("Creator", "Expresses ideas through original work"),
    "S": ("Helper", "Energized by supporting and teaching others"),
    "E": ("Entrepreneur", "Leads, persuades and takes initiative"),
    "C": ("Organizer", "Brings order, accuracy and structure"),
}


def normalize_pattern(code: str) -> str:
    """Order-insensitive key for a dimension pair ("SI" -> "IS")"""
    return "".join(sorted(code.strip().upper()))


def all_patterns() -> List[str]:
    return sorted(normalize_pattern(a + b) for a, b in combinations(DIMENSIONS, 2))


def resolve_selection(question: Question, selection: Any) -> Tuple[str, Optional[float], Dict[str, float]]:
    """
    Turn raw client input into a contribution vector

    Args:
        question: Question the selection answers
        selection: Option token for discrete questions, a number for rating scales

    Returns:
        Tuple of (stored value, rating or None, score vector)
    """
    response = question.response

    if isinstance(response, DiscreteResponse):
        allowed = [option.value for option in response.options]
        validate_and_raise(validate_option_token(selection, allowed), f"Answer to {question.id}")
        option = response.option_for(selection)
        return option.value, None, {dim: float(v) for dim, v in option.scores.items()}

    if isinstance(response, RatingResponse):
        validate_and_raise(
            validate_rating(selection, response.min, response.max), f"Answer to {question.id}"
        )
        rating = coerce_number(selection)
        # Linear: the rating itself, scaled by the question weight, on the primary dimension
        contribution = {question.primary_dimension: rating * response.weight}
        return str(int(rating)), rating, contribution

    raise ValidationError(f"Question {question.id} has an unsupported response kind")


def aggregate(answers: Iterable[Answer]) -> Dict[str, float]:
    """Componentwise sum of answer vectors in RIASEC order"""
    return sum_vectors(answer.scores for answer in answers)


def partial_scores(answers: Iterable[Answer]) -> Dict[str, float]:
    """Raw totals of an answered prefix; section insights rank these"""
    return aggregate(answers)


def leading_dimension(answers: Iterable[Answer],
                      priority: Sequence[str] = DIMENSIONS) -> Optional[str]:
    """Top dimension of an answered prefix, None while nothing has scored yet"""
    raw = partial_scores(answers)
    if not any(raw.values()):
        return None
    return rank_dimensions(raw, priority)[0]


def normalize(raw_scores: Mapping[str, float], norms: Mapping[str, Norm],
              z_cap: float = DEFAULT_Z_CAP) -> Dict[str, int]:
    percentiles = {}
    for dim in DIMENSIONS:
        norm = norms[dim]
        z = z_score(float(raw_scores.get(dim, 0.0)), norm.mean, norm.sd)
        percentiles[dim] = z_to_percentile(z, cap=z_cap)
    return percentiles


def classification_code(percentiles: Mapping[str, float], priority: Sequence[str] = DIMENSIONS,
                        length: int = DEFAULT_CODE_LENGTH) -> str:
    if not 2 <= length <= 3:
        raise ValueError(f"Code length must be 2 or 3, got {length}")
    return "".join(rank_dimensions(percentiles, priority)[:length])


def archetype_for(code: str) -> Archetype:
    if len(code) >= 2:
        pair = normalize_pattern(code[:2])
        name = PAIR_ARCHETYPES.get(pair)
        if name:
            return Archetype(code=pair, name=name, description=PATTERN_DESCRIPTIONS[pair])

    if code and code[0] in SINGLE_ARCHETYPES:
        name, description = SINGLE_ARCHETYPES[code[0]]
        return Archetype(code=code[0], name=name, description=description)

    return Archetype(code="", name="Undetermined", description="Interest profile not determined")


def build_profile(session_id: str, answers: Iterable[Answer], norms: Mapping[str, Norm],
                  completed_at: datetime, priority: Sequence[str] = DIMENSIONS,
                  code_length: int = DEFAULT_CODE_LENGTH,
                  z_cap: float = DEFAULT_Z_CAP) -> Profile:
    raw_scores = aggregate(answers)
    percentiles = normalize(raw_scores, norms, z_cap=z_cap)
    code = classification_code(percentiles, priority, code_length)

    profile = Profile(
        session_id=session_id,
        raw_scores=raw_scores,
        percentiles=percentiles,
        code=code,
        archetype=archetype_for(code),
        completed_at=completed_at,
    )
    logger.debug(f"Profile for session {session_id}: code={code}, percentiles={percentiles}")
    return profile
