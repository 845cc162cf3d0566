import math
import numpy as np
from typing import Dict, Iterable, List, Mapping, Sequence, Union
import logging

from scipy.stats import norm

from ..core.models import DIMENSIONS

logger = logging.getLogger(__name__)

Vector = Union[Sequence[float], Mapping[str, float]]


def zero_vector() -> Dict[str, float]:
    return {dim: 0.0 for dim in DIMENSIONS}


def to_array(vector: Vector, keys: Sequence[str] = DIMENSIONS) -> np.ndarray:
    """Lay a dimension mapping out in fixed key order; missing keys count as 0"""
    if isinstance(vector, Mapping):
        return np.array([float(vector.get(key, 0.0)) for key in keys], dtype=float)

    values = np.array(vector, dtype=float)
    if values.shape != (len(keys),):
        raise ValueError(f"Vector shape {values.shape} does not match {len(keys)} dimensions")
    return values


def sum_vectors(vectors: Iterable[Mapping[str, float]]) -> Dict[str, float]:
    """Componentwise sum, accumulated in iteration order"""
    total = zero_vector()
    for vector in vectors:
        for dim in DIMENSIONS:
            total[dim] += float(vector.get(dim, 0.0))
    return total


def z_score(value: float, mean: float, sd: float) -> float:
    if sd <= 0:
        raise ValueError(f"Standard deviation must be positive, got {sd}")
    return (value - mean) / sd


def z_to_percentile(z: float, cap: float = 3.5) -> int:
    """Map a z-score to an integer percentile through the standard normal CDF.

    z beyond +/-cap saturates instead of erroring; the result is clamped to 0..100.
    """
    if math.isnan(z):
        raise ValueError("z-score is NaN")

    bounded = max(-cap, min(cap, z))
    percentile = int(round(float(norm.cdf(bounded)) * 100))
    return max(0, min(100, percentile))


def pearson_correlation(vector_a: Vector, vector_b: Vector,
                        keys: Sequence[str] = DIMENSIONS) -> float:
    """Pearson correlation over the given keys.

    Zero variance in either vector makes the coefficient undefined; that case
    returns 0.0 ("no signal"). The result is clipped to [-1, 1].
    """
    vec_a = to_array(vector_a, keys)
    vec_b = to_array(vector_b, keys)

    dev_a = vec_a - vec_a.mean()
    dev_b = vec_b - vec_b.mean()

    denominator = math.sqrt(float(np.dot(dev_a, dev_a)) * float(np.dot(dev_b, dev_b)))
    if denominator == 0.0 or not math.isfinite(denominator):
        return 0.0

    correlation = float(np.dot(dev_a, dev_b)) / denominator
    if not math.isfinite(correlation):
        return 0.0

    # Floating point can push a perfect correlation slightly past 1
    return max(-1.0, min(1.0, correlation))


def correlation_to_percentage(correlation: float) -> int:
    return max(0, min(100, int(round((correlation + 1.0) / 2.0 * 100))))


def rank_dimensions(scores: Mapping[str, float], priority: Sequence[str] = DIMENSIONS) -> List[str]:
    """Dimensions sorted by score descending, ties broken by priority order"""
    position = {dim: index for index, dim in enumerate(priority)}
    return sorted(priority, key=lambda dim: (-float(scores.get(dim, 0.0)), position[dim]))
