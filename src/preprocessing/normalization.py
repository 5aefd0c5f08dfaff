"""
Microarray Intensity Normalization
==================================

1. log2 transformation when intensities are still on the linear scale
   (the GEO2R quantile check)
2. Quantile normalization across arrays
"""

import pandas as pd
import numpy as np
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ArrayNormalizer:
    """Normalize microarray expression matrices."""

    def __init__(self, expression: pd.DataFrame):
        """
        Initialize normalizer with an expression DataFrame.

        Parameters
        ----------
        expression : pd.DataFrame
            Expression matrix (features x samples)
        """
        self.expression = expression.astype(float).copy()
        self.normalized = {}

    def needs_log2(self) -> bool:
        """
        Decide whether intensities look unlogged.

        Applies the GEO2R quantile check to all finite values.
        """
        values = self.expression.values[np.isfinite(self.expression.values)]
        if values.size == 0:
            return False
        q = np.quantile(values, [0.0, 0.25, 0.5, 0.75, 0.99, 1.0])
        return bool(
            (q[4] > 100) or
            (q[5] - q[0] > 50 and q[1] > 0) or
            (0 < q[1] < 1 and 1 < q[3] < 2)
        )

    def log2_transform(self, force: bool = False) -> pd.DataFrame:
        """
        log2-transform the matrix if needed.

        Parameters
        ----------
        force : bool
            Transform even if the values already look log-scaled

        Returns
        -------
        pd.DataFrame
            log2 expression; non-positive intensities become NaN
        """
        if not (force or self.needs_log2()):
            logger.info("Values already on log scale, skipping log2")
            self.normalized['log2'] = self.expression
            return self.expression

        data = self.expression.where(self.expression > 0)
        n_dropped = int((self.expression <= 0).sum().sum())
        if n_dropped:
            logger.warning(f"{n_dropped} non-positive intensities set to NaN before log2")

        log_df = np.log2(data)
        self.expression = log_df
        self.normalized['log2'] = log_df
        logger.info("log2 transformation complete")
        return log_df

    def quantile_normalize(self) -> pd.DataFrame:
        """
        Quantile normalization - forces all samples to have same distribution.

        Missing values stay missing. Each sample's observed values are
        interpolated onto a common grid of quantiles before averaging, so
        samples with fewer observations still contribute a monotone
        reference distribution.

        Returns
        -------
        pd.DataFrame
            Quantile normalized expression
        """
        values = self.expression.values
        n_features = values.shape[0]
        grid = np.linspace(0.0, 1.0, n_features)

        # Reference distribution: mean of the per-sample quantile curves
        curves = []
        for j in range(values.shape[1]):
            observed = np.sort(values[~np.isnan(values[:, j]), j])
            if observed.size:
                curves.append(np.interp(grid, np.linspace(0.0, 1.0, observed.size), observed))
        if not curves:
            raise ValueError("Cannot quantile normalize a matrix with no observed values")
        reference = np.mean(curves, axis=0)

        qn_values = np.full(values.shape, np.nan)
        for j in range(values.shape[1]):
            present = ~np.isnan(values[:, j])
            n_present = int(present.sum())
            if n_present == 0:
                continue
            ranks = pd.Series(values[present, j]).rank(method='first').values.astype(int)
            positions = np.linspace(0.0, 1.0, n_present)[ranks - 1]
            qn_values[present, j] = np.interp(positions, grid, reference)

        qn_df = pd.DataFrame(qn_values, index=self.expression.index, columns=self.expression.columns)

        self.expression = qn_df
        self.normalized['quantile'] = qn_df
        logger.info("Quantile normalization complete")
        return qn_df

    def get_summary_stats(self) -> pd.DataFrame:
        """Get summary statistics for each normalization step."""
        stats_list = []

        for method, df in self.normalized.items():
            values = df.values[np.isfinite(df.values)]
            stats_list.append({
                'method': method,
                'mean': values.mean(),
                'std': values.std(),
                'min': values.min(),
                'max': values.max(),
                'missing': int(df.isna().sum().sum())
            })

        return pd.DataFrame(stats_list)
