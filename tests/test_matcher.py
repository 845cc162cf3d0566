import random
from datetime import datetime

import pytest

from riasec_engine.core.matcher import TierBands, match_careers, rank_careers, score_career
from riasec_engine.core.models import DIMENSIONS, MatchTier
from riasec_engine.core.scoring import build_profile
from riasec_engine.utils.math_utils import correlation_to_percentage, pearson_correlation

from helpers import NORMS, make_answer, make_career

FLAT = {dim: 50 for dim in DIMENSIONS}


class TestPearson:
    def test_identical_vectors(self):
        vector = {"R": 10, "I": 90, "A": 30, "S": 60, "E": 20, "C": 70}
        assert pearson_correlation(vector, vector) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert pearson_correlation([1, 2, 3, 4, 5, 6], [6, 5, 4, 3, 2, 1]) == pytest.approx(-1.0)

    def test_zero_variance_is_no_signal(self):
        assert pearson_correlation(FLAT, {"R": 0, "I": 100, "A": 0, "S": 0, "E": 0, "C": 0}) == 0.0
        assert pearson_correlation(FLAT, FLAT) == 0.0

    def test_always_bounded(self):
        rng = random.Random(7)
        for _ in range(300):
            a = {dim: rng.uniform(0, 100) for dim in DIMENSIONS}
            b = {dim: rng.choice([0, 100, rng.uniform(0, 100)]) for dim in DIMENSIONS}
            assert -1.0 <= pearson_correlation(a, b) <= 1.0

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            pearson_correlation([1, 2, 3], [1, 2, 3])

    def test_percentage(self):
        assert correlation_to_percentage(1.0) == 100
        assert correlation_to_percentage(-1.0) == 0
        assert correlation_to_percentage(0.0) == 50
        assert correlation_to_percentage(0.7) == 85


class TestTiers:
    @pytest.mark.parametrize("percentage,tier", [
        (100, MatchTier.BEST_FIT),
        (85, MatchTier.BEST_FIT),
        (84, MatchTier.GREAT_FIT),
        (70, MatchTier.GREAT_FIT),
        (69, MatchTier.GOOD_FIT),
        (50, MatchTier.GOOD_FIT),
        (49, MatchTier.POOR_FIT),
        (0, MatchTier.POOR_FIT),
    ])
    def test_default_bands(self, percentage, tier):
        assert TierBands().tier_for(percentage) == tier

    def test_custom_bands(self):
        bands = TierBands(best_fit=95, great_fit=90, good_fit=80)
        assert bands.tier_for(92) == MatchTier.GREAT_FIT
        assert bands.tier_for(79) == MatchTier.POOR_FIT


class TestRanking:
    def test_sorted_by_correlation(self):
        profile = {"R": 10, "I": 95, "A": 20, "S": 70, "E": 30, "C": 40}
        careers = [
            make_career("mismatch", {"R": 90, "I": 5, "A": 80, "S": 10, "E": 70, "C": 60}),
            make_career("exact", profile),
            make_career("close", {"R": 20, "I": 85, "A": 25, "S": 60, "E": 35, "C": 45}),
        ]
        ranked = rank_careers(profile, careers)
        assert [m.career_id for m in ranked] == ["exact", "close", "mismatch"]
        assert ranked[0].match_percentage == 100
        assert ranked[0].tier == MatchTier.BEST_FIT
        assert ranked[-1].correlation < 0

    def test_ties_keep_catalog_order(self):
        shared = {"R": 80, "I": 20, "A": 20, "S": 20, "E": 20, "C": 20}
        careers = [make_career(name, shared) for name in ("zeta", "alpha", "mid")]
        ranked = rank_careers({"R": 90, "I": 10, "A": 15, "S": 10, "E": 12, "C": 11}, careers)
        assert [m.career_id for m in ranked] == ["zeta", "alpha", "mid"]

    def test_duplicates_are_scored_once(self):
        careers = [
            make_career("a", {"R": 90, "I": 10, "A": 10, "S": 10, "E": 10, "C": 10}),
            make_career("a", {"R": 10, "I": 90, "A": 10, "S": 10, "E": 10, "C": 10}),
            make_career("b", {"R": 10, "I": 10, "A": 90, "S": 10, "E": 10, "C": 10}),
        ]
        ranked = rank_careers({"R": 95, "I": 5, "A": 5, "S": 5, "E": 5, "C": 5}, careers)
        assert [m.career_id for m in ranked].count("a") == 1
        assert len(ranked) == 2

    def test_limit(self, catalog):
        ranked = rank_careers({"R": 10, "I": 95, "A": 20, "S": 70, "E": 30, "C": 40},
                              catalog.careers, limit=5)
        assert len(ranked) == 5

    def test_flat_profile_matches_nothing(self, catalog):
        ranked = rank_careers(FLAT, catalog.careers)
        assert len(ranked) == len(catalog.careers)
        assert all(m.correlation == 0.0 for m in ranked)
        assert all(m.match_percentage == 50 for m in ranked)
        # All equal, so catalog order is preserved
        assert [m.career_id for m in ranked] == [c.id for c in catalog.careers]

    def test_score_career_carries_identity(self, catalog):
        career = catalog.career("teacher")
        match = score_career({"R": 20, "I": 60, "A": 45, "S": 95, "E": 45, "C": 50}, career)
        assert match.career_id == "teacher"
        assert match.title == "Teacher"
        assert match.category == "social"
        assert match.correlation == pytest.approx(1.0)


class TestMatchProfile:
    def test_investigative_profile_prefers_research_careers(self, catalog):
        answers = [make_answer(f"q{i}", {"I": 1.2, "C": 0.5, "R": 0.3}) for i in range(40)]
        profile = build_profile("s1", answers, NORMS, datetime(2024, 9, 2))

        matches = match_careers(profile, catalog.careers, limit=10)
        assert len(matches) == 10
        correlations = [m.correlation for m in matches]
        assert correlations == sorted(correlations, reverse=True)
        top_ids = {m.career_id for m in matches[:5]}
        assert top_ids & {"data-scientist", "ai-ml-engineer", "scientist-researcher", "biologist",
                          "cybersecurity-specialist", "backend-developer"}
