"""Tests for microarray normalization."""
import pytest
import numpy as np
import pandas as pd

from preprocessing.normalization import ArrayNormalizer


@pytest.fixture
def linear_intensities():
    rng = np.random.RandomState(42)
    return pd.DataFrame(
        2 ** rng.normal(8, 2, size=(200, 6)),
        index=[f"p{i}" for i in range(200)],
        columns=[f"s{i}" for i in range(6)],
    )


class TestArrayNormalizer:
    """Tests for ArrayNormalizer."""

    def test_detects_linear_scale(self, linear_intensities):
        assert ArrayNormalizer(linear_intensities).needs_log2()

    def test_log_scale_left_alone(self, linear_intensities):
        logged = np.log2(linear_intensities)
        normalizer = ArrayNormalizer(logged)
        assert not normalizer.needs_log2()
        pd.testing.assert_frame_equal(normalizer.log2_transform(), logged)

    def test_log2_transform(self, linear_intensities):
        result = ArrayNormalizer(linear_intensities).log2_transform()
        np.testing.assert_allclose(result.values, np.log2(linear_intensities.values))

    def test_non_positive_become_missing(self):
        data = pd.DataFrame({"s1": [0.0, 1000.0, 4.0], "s2": [-5.0, 512.0, 8.0]})
        result = ArrayNormalizer(data).log2_transform(force=True)
        assert result.iloc[0].isna().all()
        assert result.loc[1, "s2"] == pytest.approx(9.0)

    def test_quantile_normalize(self, linear_intensities):
        normalizer = ArrayNormalizer(np.log2(linear_intensities))
        result = normalizer.quantile_normalize()
        sorted_cols = np.sort(result.values, axis=0)
        for j in range(1, sorted_cols.shape[1]):
            np.testing.assert_allclose(sorted_cols[:, j], sorted_cols[:, 0])
        # Ranks within a sample are preserved
        original = np.log2(linear_intensities)
        assert (result.rank() == original.rank()).all().all()

    def test_detects_narrow_unlogged_range(self):
        """Quartiles inside (0, 1) and (1, 2) still call for log2."""
        data = pd.DataFrame(np.linspace(0.2, 2.5, 120).reshape(40, 3))
        assert ArrayNormalizer(data).needs_log2()

    def test_quantile_normalize_with_missing_value(self):
        data = pd.DataFrame({"a": [1.0, 2.0, 3.0, 4.0], "b": [10.0, 20.0, np.nan, 40.0]})
        result = ArrayNormalizer(data).quantile_normalize()
        assert np.isnan(result.loc[2, "b"])
        # Order within each sample is kept and the maxima agree
        assert result["a"].is_monotonic_increasing
        assert result["b"].dropna().is_monotonic_increasing
        assert result.loc[3, "a"] == pytest.approx(result.loc[3, "b"])
        assert result.loc[0, "a"] == pytest.approx(result.loc[0, "b"])
        np.testing.assert_allclose(result["a"].values, [5.5, 28 / 3, 89 / 6, 22.0])

    def test_summary_stats(self, linear_intensities):
        normalizer = ArrayNormalizer(linear_intensities)
        normalizer.log2_transform()
        normalizer.quantile_normalize()
        stats = normalizer.get_summary_stats()
        assert stats["method"].tolist() == ["log2", "quantile"]
        assert (stats["missing"] == 0).all()
