"""
Tests for the similarity scorer.

Run with: pytest meridian/taxonomy_match/tests/test_similarity.py -v
"""

import pytest

from meridian.taxonomy_match.similarity import (
    codes_match,
    score,
    weighted_score,
    with_code_bonus,
)


class TestScore:
    """Test the 0-100 label score."""

    def test_exact_match_ignores_case_and_whitespace(self):
        assert score("Egyptian", "  egyptian ") == 100

    def test_empty_vs_empty(self):
        assert score("", "") == 100
        assert score(None, "") == 100

    def test_containment(self):
        assert score("Egyptian", "Egyptian National") == 90
        assert score("Egypt", "Egyptian") == 90

    def test_edit_distance(self):
        # kitten -> sitting: 3 edits over 7 characters
        assert score("kitten", "sitting") == 57

    def test_half_rounds_up(self):
        # 3 edits over 8 characters = 62.5
        assert score("abcdefgh", "abcdexyz") == 63

    def test_unrelated(self):
        assert score("abc", "xyz") == 0

    @pytest.mark.parametrize("a,b", [
        ("Egyptian", "Egypt"),
        ("American", "USA"),
        ("British", "Brazilian"),
        ("Chinese", "China"),
        ("kitten", "sitting"),
        ("", "Emirati"),
        ("Côte d'Ivoire", "Ivorian"),
    ])
    def test_commutative(self, a, b):
        assert score(a, b) == score(b, a)


class TestCodeHelpers:
    """Test code matching and weighting."""

    def test_codes_match_requires_both(self):
        assert codes_match("EG", "EG")
        assert not codes_match("EG", None)
        assert not codes_match(None, None)
        assert not codes_match("EG", "eg")

    def test_code_bonus(self):
        assert with_code_bonus(80, "EG", "EG") == 90
        assert with_code_bonus(80, "EG", "US") == 80

    def test_code_bonus_capped(self):
        assert with_code_bonus(95, "EG", "EG") == 100

    def test_weighted_same_name_and_code(self):
        assert weighted_score("Egyptian", "EG", "Egyptian", "EG") == pytest.approx(100)

    def test_weighted_same_name_different_code(self):
        assert weighted_score("Egyptian", "EG", "Egyptian", "EGY") == pytest.approx(70)

    def test_weighted_custom_weights(self):
        assert weighted_score("Egyptian", None, "Egyptian", None, name_weight=1.0, code_weight=0.0) == pytest.approx(100)
