import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pydantic

from .exceptions import ConfigurationError, NotFoundError
from .models import (
    DIMENSIONS,
    Career,
    DiscreteResponse,
    Norm,
    Progress,
    Question,
    RatingResponse,
)
from ..utils.validation import validate_dimension_vector

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_QUESTIONS_FILE = DATA_DIR / "question_bank.json"
DEFAULT_NORMS_FILE = DATA_DIR / "norms.json"
DEFAULT_CAREERS_FILE = DATA_DIR / "careers.json"

DEFAULT_TOTAL_SECTIONS = 5


class AssessmentCatalog:
    """Validated, read-only view over questions, norms and careers.

    Loaded once at startup and shared by reference with every component.
    """

    def __init__(self, questions: Iterable[Question], norms: Mapping[str, Norm],
                 careers: Iterable[Career], dimension_priority: Sequence[str] = DIMENSIONS,
                 total_sections: int = DEFAULT_TOTAL_SECTIONS, version: str = ""):
        self._questions: Tuple[Question, ...] = tuple(
            sorted(questions, key=lambda q: q.order_index)
        )
        self._questions_by_id = {q.id: q for q in self._questions}
        self._norms = MappingProxyType(dict(norms))
        self._careers: Tuple[Career, ...] = tuple(careers)
        self._careers_by_id = {c.id: c for c in self._careers}
        self._dimension_priority: Tuple[str, ...] = tuple(dimension_priority)
        self._total_sections = total_sections
        self.version = version

        self._mirror_index: Optional[int] = None
        for index, question in enumerate(self._questions):
            if question.dynamic:
                self._mirror_index = index
                break

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    @property
    def norms(self) -> Mapping[str, Norm]:
        return self._norms

    @property
    def careers(self) -> Tuple[Career, ...]:
        return self._careers

    @property
    def dimension_priority(self) -> Tuple[str, ...]:
        return self._dimension_priority

    @property
    def total_sections(self) -> int:
        return self._total_sections

    @property
    def total_questions(self) -> int:
        return len(self._questions)

    @property
    def mirror_index(self) -> Optional[int]:
        """0-based pointer of the dynamic slot, None when the catalog has none"""
        return self._mirror_index

    def __len__(self) -> int:
        return len(self._questions)

    def question_at(self, index: int) -> Question:
        if not 0 <= index < len(self._questions):
            raise NotFoundError(f"No question at position {index}")
        return self._questions[index]

    def question_by_id(self, question_id: str) -> Question:
        question = self._questions_by_id.get(question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")
        return question

    def section_for(self, index: int) -> int:
        return self.question_at(index).section

    def is_section_boundary(self, pointer: int) -> bool:
        """True when the question just before ``pointer`` closes its section"""
        if pointer <= 0 or pointer > len(self._questions):
            return False
        if pointer == len(self._questions):
            return True
        return self._questions[pointer].section != self._questions[pointer - 1].section

    def progress(self, pointer: int) -> Progress:
        total = len(self._questions)
        pointer = max(0, min(pointer, total))
        current = min(pointer, total - 1)
        return Progress(
            question_number=min(pointer + 1, total),
            answered=pointer,
            total_questions=total,
            section=self._questions[current].section,
            total_sections=self._total_sections,
            percent_complete=int(round(pointer / total * 100)) if total else 0,
        )

    def career(self, career_id: str) -> Career:
        career = self._careers_by_id.get(career_id)
        if career is None:
            raise NotFoundError(f"Career {career_id} not found")
        return career

    def summary(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "questions": len(self._questions),
            "sections": self._total_sections,
            "careers": len(self._careers),
            "mirror_index": self._mirror_index,
        }


def _read_json(file_path: Union[str, Path], label: str) -> Dict[str, Any]:
    path = Path(file_path)
    if not path.exists():
        raise ConfigurationError(f"{label} file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{label} file is not valid JSON: {path}", [str(e)]) from e


def load_questions(file_path: Union[str, Path] = DEFAULT_QUESTIONS_FILE) -> Dict[str, Any]:
    """Parse the question bank. Returns questions plus bank-level metadata"""
    try:
        data = _read_json(file_path, "Questions")
        questions = [Question(**q_data) for q_data in data['questions']]

        logger.info(f"Successfully loaded {len(questions)} questions from {file_path}")
        return {
            "questions": questions,
            "dimension_priority": tuple(data.get('dimension_priority', DIMENSIONS)),
            "total_sections": int(data.get('total_sections', DEFAULT_TOTAL_SECTIONS)),
            "version": str(data.get('version', "")),
        }

    except ConfigurationError:
        logger.error(f"Failed to load questions from {file_path}")
        raise
    except (KeyError, TypeError, pydantic.ValidationError) as e:
        logger.error(f"Failed to load questions: {e}")
        raise ConfigurationError(f"Malformed question bank: {file_path}", [str(e)]) from e


def load_norms(file_path: Union[str, Path] = DEFAULT_NORMS_FILE) -> Dict[str, Norm]:
    try:
        data = _read_json(file_path, "Norms")
        norms = {dim: Norm(**values) for dim, values in data['norms'].items()}

        logger.info(f"Successfully loaded norms for {len(norms)} dimensions")
        return norms

    except ConfigurationError:
        logger.error(f"Failed to load norms from {file_path}")
        raise
    except (KeyError, TypeError, AttributeError, pydantic.ValidationError) as e:
        logger.error(f"Failed to load norms: {e}")
        raise ConfigurationError(f"Malformed norms table: {file_path}", [str(e)]) from e


def load_careers(file_path: Union[str, Path] = DEFAULT_CAREERS_FILE) -> List[Career]:
    try:
        data = _read_json(file_path, "Careers")
        careers = [Career(**career_data) for career_data in data['careers']]

        logger.info(f"Successfully loaded {len(careers)} careers")
        return careers

    except ConfigurationError:
        logger.error(f"Failed to load careers from {file_path}")
        raise
    except (KeyError, TypeError, pydantic.ValidationError) as e:
        logger.error(f"Failed to load careers: {e}")
        raise ConfigurationError(f"Malformed career catalog: {file_path}", [str(e)]) from e


def validate_catalog(questions: Sequence[Question], norms: Mapping[str, Norm],
                     careers: Sequence[Career], dimension_priority: Sequence[str] = DIMENSIONS,
                     total_sections: int = DEFAULT_TOTAL_SECTIONS) -> Tuple[bool, List[str]]:
    errors = []

    if not questions:
        errors.append("Question bank is empty")

    # Identity
    seen_ids = set()
    for question in questions:
        if question.id in seen_ids:
            errors.append(f"Duplicate question id: {question.id}")
        seen_ids.add(question.id)

    # Order index must be exactly 1..N
    order_indexes = sorted(q.order_index for q in questions)
    if order_indexes != list(range(1, len(questions) + 1)):
        duplicates = sorted({i for i in order_indexes if order_indexes.count(i) > 1})
        missing = sorted(set(range(1, len(questions) + 1)) - set(order_indexes))
        errors.append(
            f"Order index must cover 1..{len(questions)} exactly "
            f"(duplicates: {duplicates}, missing: {missing})"
        )

    # Sections
    ordered = sorted(questions, key=lambda q: q.order_index)
    previous_section = 0
    for question in ordered:
        if not 1 <= question.section <= total_sections:
            errors.append(
                f"Question {question.id} has section {question.section} outside 1..{total_sections}"
            )
        if question.section < previous_section:
            errors.append(f"Question {question.id} goes back to section {question.section}")
        previous_section = max(previous_section, question.section)

    # Dimensions and answer definitions
    referenced = set()
    dynamic_questions = []
    for question in questions:
        if question.primary_dimension not in DIMENSIONS:
            errors.append(
                f"Question {question.id} has invalid primary dimension: {question.primary_dimension}"
            )
        referenced.add(question.primary_dimension)

        if question.dynamic:
            dynamic_questions.append(question)

        response = question.response
        if isinstance(response, DiscreteResponse):
            if len(response.options) < 2:
                errors.append(f"Question {question.id} needs at least 2 options")
            tokens = [option.value for option in response.options]
            if len(tokens) != len(set(tokens)):
                errors.append(f"Question {question.id} has duplicate option values: {tokens}")
            for option in response.options:
                is_valid, vector_errors = validate_dimension_vector(option.scores)
                if not is_valid:
                    errors.extend(
                        f"Question {question.id} option '{option.value}': {error}"
                        for error in vector_errors
                    )
                referenced.update(dim for dim in option.scores if dim in DIMENSIONS)
        elif isinstance(response, RatingResponse):
            if response.min >= response.max:
                errors.append(
                    f"Question {question.id} rating range is empty: {response.min}..{response.max}"
                )
            if question.dynamic:
                errors.append(f"Dynamic question {question.id} must use discrete fallback options")

    if len(dynamic_questions) > 1:
        errors.append(
            f"At most one dynamic question allowed, found {[q.id for q in dynamic_questions]}"
        )
    if dynamic_questions:
        # Generated options pair any two dimensions
        referenced.update(DIMENSIONS)

    # Norms must cover every dimension the catalog can produce
    for dim in sorted(referenced | set(DIMENSIONS)):
        norm = norms.get(dim)
        if norm is None:
            errors.append(f"Norms table missing dimension: {dim}")
        elif not norm.sd > 0:
            errors.append(f"Norm for {dim} has non-positive sd: {norm.sd}")
    invalid_norms = set(norms.keys()) - set(DIMENSIONS)
    if invalid_norms:
        errors.append(f"Norms table has unknown dimensions: {sorted(invalid_norms)}")

    if sorted(dimension_priority) != sorted(DIMENSIONS) or len(dimension_priority) != len(DIMENSIONS):
        errors.append(f"Dimension priority must be a permutation of {list(DIMENSIONS)}")

    # Careers
    if not careers:
        errors.append("Career catalog is empty")
    career_ids = set()
    for career in careers:
        if career.id in career_ids:
            errors.append(f"Duplicate career id: {career.id}")
        career_ids.add(career.id)

        is_valid, vector_errors = validate_dimension_vector(
            career.riasec_profile, low=0.0, high=100.0, require_all=True
        )
        if not is_valid:
            errors.extend(f"Career {career.id}: {error}" for error in vector_errors)

    is_valid = len(errors) == 0

    if is_valid:
        logger.info("Catalog validation passed")
    else:
        logger.warning(f"Catalog validation failed with {len(errors)} errors")

    return is_valid, errors


def build_catalog(questions: Sequence[Question], norms: Mapping[str, Norm],
                  careers: Sequence[Career], dimension_priority: Sequence[str] = DIMENSIONS,
                  total_sections: int = DEFAULT_TOTAL_SECTIONS,
                  version: str = "") -> AssessmentCatalog:
    """Validate records and wrap them. Raises ConfigurationError listing every problem"""
    is_valid, errors = validate_catalog(
        questions, norms, careers, dimension_priority, total_sections
    )
    if not is_valid:
        raise ConfigurationError("Assessment catalog is invalid", errors)

    return AssessmentCatalog(
        questions, norms, careers,
        dimension_priority=dimension_priority,
        total_sections=total_sections,
        version=version,
    )


def load_catalog(questions_path: Union[str, Path] = DEFAULT_QUESTIONS_FILE,
                 norms_path: Union[str, Path] = DEFAULT_NORMS_FILE,
                 careers_path: Union[str, Path] = DEFAULT_CAREERS_FILE) -> AssessmentCatalog:
    bank = load_questions(questions_path)
    norms = load_norms(norms_path)
    careers = load_careers(careers_path)

    catalog = build_catalog(
        bank["questions"], norms, careers,
        dimension_priority=bank["dimension_priority"],
        total_sections=bank["total_sections"],
        version=bank["version"],
    )
    logger.info(
        f"Catalog ready: {catalog.total_questions} questions, "
        f"{len(catalog.careers)} careers, mirror slot at {catalog.mirror_index}"
    )
    return catalog
