"""Tests for the batched OLS fit."""
import pytest
import numpy as np
import pandas as pd

from de_analysis.design import build_design
from de_analysis.exceptions import AlignmentError, DEAnalysisError
from de_analysis.linear_model import fit_linear_model


class TestFitLinearModel:
    """Tests for fit_linear_model."""

    def test_exact_group_means_recovered(self, synthetic_data, groups):
        expression, metadata = synthetic_data
        design = build_design(metadata, groups)
        expression = expression.copy()
        means = {"Healthy": 1.0, "Adjacent": 3.0, "Tumor": 5.5}
        expression.loc["gene_050"] = metadata["group"].map(means).values

        fit = fit_linear_model(expression, design)

        np.testing.assert_allclose(
            fit.coefficients.loc["gene_050", groups].values, [1.0, 3.0, 5.5], atol=1e-10
        )
        assert fit.sigma2["gene_050"] == pytest.approx(0.0, abs=1e-20)

    def test_coefficients_are_group_means(self, synthetic_data, groups):
        expression, metadata = synthetic_data
        fit = fit_linear_model(expression, build_design(metadata, groups))
        expected = expression.T.groupby(metadata["group"]).mean().T[groups]
        np.testing.assert_allclose(fit.coefficients.values, expected.values, atol=1e-10)

    def test_residual_variance_matches_pooled_within_group(self, synthetic_data, groups):
        expression, metadata = synthetic_data
        fit = fit_linear_model(expression, build_design(metadata, groups))
        pooled = expression.T.groupby(metadata["group"]).var(ddof=1).mean()
        np.testing.assert_allclose(fit.sigma2.values, pooled.values, rtol=1e-8)
        assert fit.df_residual == 9

    def test_unscaled_covariance(self, synthetic_data, groups):
        expression, metadata = synthetic_data
        fit = fit_linear_model(expression, build_design(metadata, groups))
        np.testing.assert_allclose(fit.unscaled_cov.values, np.eye(3) / 4, atol=1e-12)

    def test_design_order_mismatch_raises(self, synthetic_data, shuffled_metadata, groups):
        expression, _ = synthetic_data
        design = build_design(shuffled_metadata, groups)
        with pytest.raises(AlignmentError):
            fit_linear_model(expression, design)

    def test_missing_values_raise(self, synthetic_data, groups):
        expression, metadata = synthetic_data
        expression = expression.copy()
        expression.iloc[0, 0] = np.nan
        with pytest.raises(DEAnalysisError):
            fit_linear_model(expression, build_design(metadata, groups))

    def test_zero_residual_df_gives_nan_variance(self, groups):
        samples = ["s1", "s2", "s3"]
        metadata = pd.DataFrame({"group": groups}, index=samples)
        expression = pd.DataFrame(
            np.arange(15, dtype=float).reshape(5, 3), columns=samples,
            index=[f"f{i}" for i in range(5)]
        )
        fit = fit_linear_model(expression, build_design(metadata, groups))
        assert fit.df_residual == 0
        assert fit.sigma2.isna().all()
