"""Tests for confidence scoring and token estimation."""

import pytest

from app.memory.scoring import (
    MAX_LEARNED_CONFIDENCE,
    boost_confidence,
    calculate_confidence,
    clamp_confidence,
    estimate_tokens,
)


class TestCalculateConfidence:
    @pytest.mark.parametrize(
        "reinforcements, contradictions, expected",
        [
            (0, 0, 0.0),
            (1, 0, 0.5),
            (5, 0, 5 / 6),
            (25, 1, 25 / 27),
            (25, 5, 25 / 31),
        ],
    )
    def test_known_values(self, reinforcements, contradictions, expected):
        assert calculate_confidence(reinforcements, contradictions) == pytest.approx(expected)

    def test_stays_in_range_under_many_updates(self):
        r, c = 1, 0
        for i in range(200):
            if i % 3 == 0:
                c += 1
            else:
                r += 1
            assert 0.0 <= calculate_confidence(r, c) <= 1.0

    def test_negative_counts_are_floored(self):
        assert calculate_confidence(-3, -2) == 0.0
        assert calculate_confidence(2, -5) == pytest.approx(2 / 3)

    def test_contradictions_lower_confidence(self):
        assert calculate_confidence(5, 2) < calculate_confidence(5, 0)


class TestBoostAndClamp:
    def test_boost_is_capped(self):
        assert boost_confidence(0.9, 0.1) == MAX_LEARNED_CONFIDENCE
        assert boost_confidence(0.94, 0.05) == MAX_LEARNED_CONFIDENCE

    def test_boost_adds_step(self):
        assert boost_confidence(0.5, 0.1) == pytest.approx(0.6)

    def test_clamp(self):
        assert clamp_confidence(-0.2) == 0.0
        assert clamp_confidence(1.7) == 1.0
        assert clamp_confidence(0.42) == 0.42


class TestEstimateTokens:
    def test_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abc") == 1
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_long_text(self):
        assert estimate_tokens("x" * 4000) == 1000
