"""
Exploratory Sample Structure
============================

Numbers behind the usual exploratory figures:
1. Per-sample intensity distributions (boxplots)
2. PCA of samples
3. Sample-sample correlation (heatmaps)
4. Group separation in PCA space
"""

import pandas as pd
import numpy as np
from sklearn.preprocessing import StandardScaler
from sklearn.decomposition import PCA
from typing import Tuple
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SampleStructureAnalyzer:
    """Summarize how samples relate to each other and to their groups."""

    def __init__(self, expression: pd.DataFrame, metadata: pd.DataFrame, group_col: str = 'group'):
        """
        Initialize analyzer.

        Parameters
        ----------
        expression : pd.DataFrame
            Aligned expression matrix (features x samples)
        metadata : pd.DataFrame
            Sample metadata with a group column
        group_col : str
            Column holding the group label
        """
        self.expression = expression
        self.metadata = metadata
        self.group_col = group_col

    def distribution_summary(self) -> pd.DataFrame:
        """Per-sample quantiles of expression values."""
        summary = self.expression.quantile([0.0, 0.25, 0.5, 0.75, 1.0]).T
        summary.columns = ['min', 'q25', 'median', 'q75', 'max']
        summary['mean'] = self.expression.mean(axis=0)
        if self.group_col in self.metadata.columns:
            summary[self.group_col] = self.metadata.loc[summary.index, self.group_col]
        return summary

    def pca_analysis(self, n_components: int = 10) -> Tuple[pd.DataFrame, np.ndarray]:
        """
        Perform PCA on the samples.

        Returns
        -------
        Tuple[pd.DataFrame, np.ndarray]
            PCA scores (with group column) and explained variance ratios
        """
        # Transpose: samples as rows, features as columns
        X = self.expression.dropna(axis=0).T.values
        n_components = min(n_components, X.shape[0], X.shape[1])

        # Standardize
        scaler = StandardScaler()
        X_scaled = scaler.fit_transform(X)

        pca = PCA(n_components=n_components)
        scores = pca.fit_transform(X_scaled)

        scores_df = pd.DataFrame(
            scores,
            index=self.expression.columns,
            columns=[f'PC{i+1}' for i in range(n_components)]
        )
        if self.group_col in self.metadata.columns:
            scores_df[self.group_col] = self.metadata.loc[scores_df.index, self.group_col]

        logger.info(f"PCA variance explained (first 3): {pca.explained_variance_ratio_[:3]}")
        return scores_df, pca.explained_variance_ratio_

    def correlation_matrix(self, method: str = 'pearson') -> pd.DataFrame:
        """Sample-sample correlation of expression profiles."""
        return self.expression.corr(method=method)

    def silhouette_score(self, n_components: int = 10) -> float:
        """
        Calculate silhouette score for the grouping in PCA space.

        Higher score = better separation by group.
        """
        from sklearn.metrics import silhouette_score as sk_silhouette

        scores_df, _ = self.pca_analysis(n_components)
        labels = scores_df.pop(self.group_col)

        return float(sk_silhouette(scores_df.values, labels))
