import math
import re
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

from ..core.exceptions import ValidationError
from ..core.models import DIMENSIONS

logger = logging.getLogger(__name__)

_UUID_PATTERN = r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$'
_IDENTIFIER_PATTERN = r'^[a-zA-Z0-9_.:@-]+$'


def validate_dimension_vector(vector: Dict[str, float], low: Optional[float] = None,
                              high: Optional[float] = None,
                              require_all: bool = False) -> Tuple[bool, List[str]]:

    errors = []

    if not isinstance(vector, dict):
        errors.append("Dimension vector must be a dictionary")
        return False, errors

    if require_all:
        missing = set(DIMENSIONS) - set(vector.keys())
        if missing:
            errors.append(f"Missing dimensions: {sorted(missing)}")

    invalid = set(vector.keys()) - set(DIMENSIONS)
    if invalid:
        errors.append(f"Invalid dimensions: {sorted(invalid)}")

    for dim, value in vector.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"Dimension '{dim}' value must be numeric, got {type(value)}")
            continue

        if not math.isfinite(value):
            errors.append(f"Dimension '{dim}' value must be finite, got {value}")
            continue

        if low is not None and value < low:
            errors.append(f"Dimension '{dim}' value must be >= {low}, got {value}")
        if high is not None and value > high:
            errors.append(f"Dimension '{dim}' value must be <= {high}, got {value}")

    return len(errors) == 0, errors


def validate_rating(selection: Any, scale_min: int = 1, scale_max: int = 5) -> Tuple[bool, Optional[str]]:
    """
    Validate a rating-scale selection

    Accepts ints, integral floats and numeric strings ("4").

    Returns:
        Tuple of (is_valid, error_message)
    """
    value = coerce_number(selection)
    if value is None:
        return False, f"Rating must be numeric, got {selection!r}"

    if not value.is_integer():
        return False, f"Rating must be a whole number, got {selection!r}"

    if not scale_min <= value <= scale_max:
        return False, f"Rating must be between {scale_min} and {scale_max}, got {selection!r}"

    return True, None


def coerce_number(selection: Any) -> Optional[float]:
    if isinstance(selection, bool):
        return None

    if isinstance(selection, (int, float)):
        value = float(selection)
    elif isinstance(selection, str):
        try:
            value = float(selection.strip())
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(value):
        return None
    return value


def validate_option_token(selection: Any, allowed: List[str]) -> Tuple[bool, Optional[str]]:

    if not isinstance(selection, str):
        return False, f"Selection must be an option token, got {type(selection).__name__}"

    if selection not in allowed:
        return False, f"Unknown option '{selection}'. Valid options: {allowed}"

    return True, None


def validate_session_id(session_id: str) -> Tuple[bool, Optional[str]]:

    if not isinstance(session_id, str):
        return False, "Session ID must be a string"

    session_id = session_id.strip()

    if not session_id:
        return False, "Session ID cannot be empty"

    if len(session_id) > 100:
        return False, "Session ID too long"

    # UUIDs are issued by the engine, alphanumeric ids are accepted for imports
    if not re.match(_UUID_PATTERN, session_id, re.IGNORECASE):
        if not re.match(r'^[a-zA-Z0-9_-]+$', session_id):
            return False, "Session ID must be UUID format or alphanumeric"

    return True, None


def validate_participant_id(participant_id: str) -> Tuple[bool, Optional[str]]:

    if not isinstance(participant_id, str):
        return False, "Participant ID must be a string"

    participant_id = participant_id.strip()

    if not participant_id:
        return False, "Participant ID cannot be empty"

    if len(participant_id) > 128:
        return False, "Participant ID too long"

    if not re.match(_IDENTIFIER_PATTERN, participant_id):
        return False, "Participant ID contains invalid characters"

    return True, None


def validate_and_raise(validation_result: Tuple[bool, Union[str, List[str], None]],
                       operation: str = "validation") -> None:

    is_valid, errors = validation_result

    if not is_valid:
        if isinstance(errors, str):
            errors = [errors]
        errors = errors or []
        logger.debug(f"{operation} failed: {errors}")
        raise ValidationError(f"{operation} failed: {'; '.join(errors)}", errors)
