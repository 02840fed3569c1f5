"""
Unit tests for the confidence extractor.
"""

import math
import pytest
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from confidence_extractor import extract_confidence, clamp_confidence


class TestExtractConfidence:
    """Tests for reducing a score mapping to one scalar."""

    def test_takes_maximum(self):
        """Test that the winning class score is returned."""
        scores = {"Normal": 0.1, "Mild Dementia": 0.75, "Moderate Dementia": 0.15}
        assert extract_confidence(scores) == 0.75

    def test_rounds_to_four_places(self):
        """Test rounding of long fractions."""
        assert extract_confidence({"a": 0.123456789, "b": 0.1}) == 0.1235

    def test_clamps_above_one(self):
        """Test that percent-style scores are clamped to 1."""
        assert extract_confidence({"a": 87.5, "b": 12.5}) == 1.0

    def test_clamps_below_zero(self):
        """Test that all-negative scores clamp to 0."""
        assert extract_confidence({"a": -0.2, "b": -0.5}) == 0.0

    def test_integer_scores(self):
        """Test that integer scores are accepted."""
        assert extract_confidence({"a": 0, "b": 1}) == 1.0

    def test_scores_need_not_sum_to_one(self):
        """Test unnormalized scores."""
        assert extract_confidence({"a": 0.9, "b": 0.9, "c": 0.3}) == 0.9

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_values_yield_none(self, bad):
        """Test that NaN and Infinity are rejected rather than stored."""
        assert extract_confidence({"a": 0.5, "b": bad}) is None

    @pytest.mark.parametrize("confidences", [None, {}, [], "0.9", 0.9])
    def test_absent_or_wrong_type_yields_none(self, confidences):
        """Test absent and non-mapping inputs."""
        assert extract_confidence(confidences) is None

    @pytest.mark.parametrize("value", ["0.8", None, True, [0.8]])
    def test_non_numeric_values_yield_none(self, value):
        """Test mappings holding non-numeric scores."""
        assert extract_confidence({"a": 0.5, "b": value}) is None


class TestClampConfidence:
    """Tests for clamping a single score."""

    def test_in_range_value_is_rounded(self):
        """Test an ordinary value."""
        assert clamp_confidence(0.42) == 0.42
        assert clamp_confidence(0.987654) == 0.9877

    def test_out_of_range_values(self):
        """Test clamping at both ends."""
        assert clamp_confidence(1.7) == 1.0
        assert clamp_confidence(-3) == 0.0

    @pytest.mark.parametrize("value", [None, "0.5", True, math.nan, math.inf])
    def test_invalid_values_yield_none(self, value):
        """Test rejected inputs."""
        assert clamp_confidence(value) is None
