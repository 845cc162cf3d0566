import logging
from typing import Iterable, List, Mapping, NamedTuple, Optional

from .models import DIMENSIONS, Career, CareerMatch, MatchTier, Profile
from ..utils.math_utils import correlation_to_percentage, pearson_correlation

logger = logging.getLogger(__name__)


class TierBands(NamedTuple):
    """Lower bounds (match percentage) of the three upper tiers"""
    best_fit: int = 85
    great_fit: int = 70
    good_fit: int = 50

    def tier_for(self, match_percentage: int) -> MatchTier:
        if match_percentage >= self.best_fit:
            return MatchTier.BEST_FIT
        if match_percentage >= self.great_fit:
            return MatchTier.GREAT_FIT
        if match_percentage >= self.good_fit:
            return MatchTier.GOOD_FIT
        return MatchTier.POOR_FIT


DEFAULT_TIERS = TierBands()


def score_career(percentiles: Mapping[str, float], career: Career,
                 tiers: TierBands = DEFAULT_TIERS) -> CareerMatch:
    correlation = pearson_correlation(percentiles, career.riasec_profile, DIMENSIONS)
    match_percentage = correlation_to_percentage(correlation)

    return CareerMatch(
        career_id=career.id,
        title=career.title,
        category=career.category,
        correlation=correlation,
        match_percentage=match_percentage,
        tier=tiers.tier_for(match_percentage),
    )


def rank_careers(percentiles: Mapping[str, float], careers: Iterable[Career],
                 limit: Optional[int] = None, tiers: TierBands = DEFAULT_TIERS) -> List[CareerMatch]:
    """
    Rank careers by Pearson correlation with a percentile vector

    Sorted by correlation descending; equal correlations keep catalog order.
    A career id seen twice is scored once, at its first position.
    """
    scored = []
    seen = set()
    for career in careers:
        if career.id in seen:
            logger.warning(f"Skipping duplicate career {career.id}")
            continue
        seen.add(career.id)
        scored.append(score_career(percentiles, career, tiers))

    # sorted() is stable, so ties stay in catalog order
    ranked = sorted(scored, key=lambda match: -match.correlation)

    if limit is not None:
        ranked = ranked[:max(0, limit)]
    return ranked


def match_careers(profile: Profile, careers: Iterable[Career], limit: Optional[int] = 10,
                  tiers: TierBands = DEFAULT_TIERS) -> List[CareerMatch]:
    matches = rank_careers(profile.percentiles, careers, limit=limit, tiers=tiers)

    if matches:
        logger.debug(
            f"Session {profile.session_id}: best match {matches[0].career_id} "
            f"({matches[0].match_percentage}%)"
        )
    return matches
