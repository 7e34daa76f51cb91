"""Tests for the frozen baseline statistics."""
from __future__ import annotations

from math import isclose

import pytest

from conftest import BASELINE_VALUES
from outlier.nelson.baseline import Baseline


class TestBaseline:
    def test_not_ready_until_sample_size_reached(self) -> None:
        baseline = Baseline(sample_size=10)
        for value in BASELINE_VALUES[:-1]:
            assert baseline.add_sample(value) is False
        assert baseline.count == 9
        assert baseline.add_sample(BASELINE_VALUES[-1]) is True
        assert baseline.ready

    def test_mean_and_standard_deviation(self) -> None:
        baseline = Baseline(sample_size=10)
        for value in BASELINE_VALUES:
            baseline.add_sample(value)
        assert f"{baseline.mean:.1f}" == "10.0"
        assert f"{baseline.standard_deviation:.5f}" == "2.58199"
        assert isclose(baseline.two_deviations, 2 * baseline.standard_deviation)
        assert isclose(baseline.three_deviations, 3 * baseline.standard_deviation)

    def test_frozen_after_ready(self) -> None:
        baseline = Baseline(sample_size=3)
        for value in (1.0, 2.0, 3.0):
            baseline.add_sample(value)
        mean, std = baseline.mean, baseline.standard_deviation
        assert baseline.add_sample(1000.0) is True
        assert baseline.mean == mean
        assert baseline.standard_deviation == std
        assert baseline.count == 3

    def test_single_sample_has_zero_deviation(self) -> None:
        baseline = Baseline(sample_size=1)
        assert baseline.add_sample(42.0)
        assert baseline.mean == 42.0
        assert baseline.standard_deviation == 0.0
        assert baseline.degenerate

    def test_constant_values_are_degenerate(self) -> None:
        baseline = Baseline(sample_size=4)
        for _ in range(4):
            baseline.add_sample(5.0)
        assert baseline.degenerate
        assert baseline.three_deviations == 0.0

    def test_clear_resets(self) -> None:
        baseline = Baseline(sample_size=2)
        baseline.add_sample(1.0)
        baseline.add_sample(3.0)
        baseline.clear()
        assert not baseline.ready
        assert baseline.count == 0
        assert baseline.mean == 0.0
        assert baseline.standard_deviation == 0.0

    @pytest.mark.parametrize("size", [0, -5])
    def test_rejects_non_positive_size(self, size: int) -> None:
        with pytest.raises(ValueError, match="sample_size"):
            Baseline(sample_size=size)

    def test_repr_reports_progress(self) -> None:
        baseline = Baseline(sample_size=5)
        baseline.add_sample(1.0)
        assert "1/5" in repr(baseline)
