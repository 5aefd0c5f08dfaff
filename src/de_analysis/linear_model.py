"""
Linear Model Fitting
====================

Fits one ordinary least squares model per feature against a shared design
matrix. Because every feature uses the same design, a single QR
decomposition is computed and all features are solved in one batch.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass
import logging

from .exceptions import AlignmentError, DEAnalysisError, DesignRankError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitResult:
    """Per-feature coefficients and residual variances."""

    coefficients: pd.DataFrame   # features x groups
    sigma2: pd.Series            # residual variance per feature (NaN when df_residual == 0)
    df_residual: int
    unscaled_cov: pd.DataFrame   # (X'X)^-1, groups x groups
    amean: pd.Series             # average expression per feature
    design: pd.DataFrame

    @property
    def groups(self):
        return list(self.coefficients.columns)

    @property
    def n_features(self) -> int:
        return self.coefficients.shape[0]


def fit_linear_model(
    expression: pd.DataFrame,
    design: pd.DataFrame
) -> FitResult:
    """
    Fit OLS for every feature against the design matrix.

    Parameters
    ----------
    expression : pd.DataFrame
        Expression matrix (features x samples), log2 scale
    design : pd.DataFrame
        Design matrix (samples x groups), rows in the same order as
        ``expression`` columns

    Returns
    -------
    FitResult
        Coefficients, residual variances and the unscaled covariance
    """
    if list(design.index) != list(expression.columns):
        raise AlignmentError("Design rows do not match expression columns")

    X = design.values.astype(float)
    Y = expression.values.astype(float)

    if not np.all(np.isfinite(Y)):
        raise DEAnalysisError("Expression matrix contains missing or infinite values")

    n_samples, n_coef = X.shape
    Q, R = np.linalg.qr(X)

    diag = np.abs(np.diag(R))
    if diag.size < n_coef or np.any(diag < 1e-10 * max(diag.max(), 1.0)):
        raise DesignRankError("Design matrix is rank-deficient")

    # coef: groups x features
    coef = np.linalg.solve(R, Q.T @ Y.T)
    residuals = Y - (X @ coef).T
    rss = np.sum(residuals ** 2, axis=1)

    df_residual = n_samples - n_coef
    if df_residual > 0:
        sigma2 = rss / df_residual
    else:
        sigma2 = np.full(Y.shape[0], np.nan)

    R_inv = np.linalg.inv(R)
    unscaled = R_inv @ R_inv.T

    groups = list(design.columns)
    logger.info(
        f"Fitted {Y.shape[0]} features on {n_samples} samples, "
        f"{n_coef} coefficients, {df_residual} residual df"
    )

    return FitResult(
        coefficients=pd.DataFrame(coef.T, index=expression.index, columns=groups),
        sigma2=pd.Series(sigma2, index=expression.index, name='sigma2'),
        df_residual=df_residual,
        unscaled_cov=pd.DataFrame(unscaled, index=groups, columns=groups),
        amean=expression.mean(axis=1).rename('AveExpr'),
        design=design
    )
