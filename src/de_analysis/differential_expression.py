"""
Differential Expression Analysis
================================

Group-means linear model with empirical Bayes moderated statistics for
log-scale microarray intensities:

1. Align the expression matrix with sample metadata
2. Build a one-indicator-per-group design matrix
3. Fit one linear model per feature (shared QR decomposition)
4. Evaluate each contrast with variance moderation and BH adjustment
5. Filter significant features by adjusted p-value and log2 fold change
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Dict, Union
import logging

from .alignment import align_samples
from .contrasts import (
    ContrastResult,
    ContrastSpec,
    estimate_prior,
    evaluate_contrast,
)
from .design import build_design
from .ebayes import EmpiricalBayesPrior
from .exceptions import ContrastSpecError, DEAnalysisError
from .linear_model import FitResult, fit_linear_model

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_GROUPS = ('Healthy', 'Adjacent', 'Tumor')
DEFAULT_CONTRASTS = (
    ('Tumor', 'Healthy'),
    ('Adjacent', 'Healthy'),
    ('Tumor', 'Adjacent'),
)


@dataclass(frozen=True)
class SignificantSet:
    """Features passing the significance thresholds for one contrast."""

    contrast: str
    features: Tuple[str, ...]
    padj_threshold: float
    log2fc_threshold: float

    def __len__(self):
        return len(self.features)

    def __iter__(self):
        return iter(self.features)

    def __contains__(self, feature):
        return feature in self.features

    def up(self, result: ContrastResult) -> Tuple[str, ...]:
        """Features with a positive effect."""
        logfc = result.get('logFC')
        return tuple(f for f in self.features if logfc[f] > 0)

    def down(self, result: ContrastResult) -> Tuple[str, ...]:
        """Features with a negative effect."""
        logfc = result.get('logFC')
        return tuple(f for f in self.features if logfc[f] < 0)


class DEAnalysis:
    """Differential Expression Analysis."""

    def __init__(
        self,
        expression: pd.DataFrame,
        metadata: pd.DataFrame,
        groups: Sequence[str] = DEFAULT_GROUPS,
        group_col: str = 'group'
    ):
        """
        Initialize DE analysis.

        Parameters
        ----------
        expression : pd.DataFrame
            Log2 expression matrix (features x samples)
        metadata : pd.DataFrame
            Sample metadata indexed by sample id, with a group column
        groups : Sequence[str]
            Ordered group labels; fixes the design column order
        group_col : str
            Column name for the group label
        """
        self.groups = list(groups)
        self.group_col = group_col

        self.expression, self.metadata = align_samples(
            expression, metadata, group_col=group_col, groups=self.groups
        )

        incomplete = ~np.isfinite(self.expression).all(axis=1)
        if incomplete.any():
            logger.warning(f"Dropping {int(incomplete.sum())} features with missing values")
            self.expression = self.expression.loc[~incomplete]
        if self.expression.shape[0] == 0:
            raise DEAnalysisError("No features left to analyse")

        self.design = build_design(self.metadata, self.groups, group_col=group_col)

        self.fit_result: Optional[FitResult] = None
        self.prior: Optional[EmpiricalBayesPrior] = None

        logger.info(f"Initialized DE analysis with {self.expression.shape[1]} samples")

    def fit(self) -> FitResult:
        """Fit the linear model and the variance prior (once)."""
        if self.fit_result is None:
            self.fit_result = fit_linear_model(self.expression, self.design)
            self.prior = estimate_prior(self.fit_result)
        return self.fit_result

    def run_contrast(self, contrast: Union[ContrastSpec, str, Tuple[str, str]]) -> ContrastResult:
        """
        Evaluate one contrast.

        Parameters
        ----------
        contrast : ContrastSpec, str or Tuple[str, str]
            A ContrastSpec, an expression such as ``"Tumor - Healthy"``, or a
            (numerator, denominator) pair

        Returns
        -------
        ContrastResult
            Moderated statistics sorted by raw p-value
        """
        spec = as_contrast(contrast)
        fit = self.fit()
        logger.info(f"Evaluating contrast {spec.name}")
        return evaluate_contrast(fit, spec, prior=self.prior)

    def run_contrasts(
        self,
        contrasts: Sequence = DEFAULT_CONTRASTS
    ) -> Dict[str, ContrastResult]:
        """Evaluate every contrast on the same fit."""
        specs = [as_contrast(c) for c in contrasts]
        names = [spec.name for spec in specs]
        duplicated = sorted({n for n in names if names.count(n) > 1})
        if duplicated:
            raise ContrastSpecError(f"Duplicate contrast names: {duplicated}")

        results = {}
        for spec in specs:
            results[spec.name] = self.run_contrast(spec)
        return results

    def summarize(
        self,
        results: Dict[str, ContrastResult],
        padj_threshold: float = 0.05,
        log2fc_threshold: float = 1.0
    ) -> pd.DataFrame:
        """
        Count significant features per contrast.

        Returns
        -------
        pd.DataFrame
            One row per contrast with total, up and down counts
        """
        rows = []
        for name, result in results.items():
            sig = filter_significant(result, padj_threshold, log2fc_threshold)
            rows.append({
                'contrast': name,
                'n_features': len(result),
                'n_significant': len(sig),
                'n_up': len(sig.up(result)),
                'n_down': len(sig.down(result)),
            })
        return pd.DataFrame(rows)


def as_contrast(contrast) -> ContrastSpec:
    """Coerce the accepted contrast forms to a ContrastSpec."""
    if isinstance(contrast, ContrastSpec):
        return contrast
    if isinstance(contrast, str):
        return ContrastSpec.parse(contrast)
    if isinstance(contrast, dict):
        if 'expression' in contrast:
            return ContrastSpec.parse(contrast['expression'], name=contrast.get('name'))
        return ContrastSpec.difference(
            contrast['numerator'], contrast['denominator'], name=contrast.get('name')
        )
    numerator, denominator = contrast
    return ContrastSpec.difference(numerator, denominator)


def get_top_genes(
    de_results: ContrastResult,
    n_top: int = 50,
    by: str = 'adj.P.Val'
) -> pd.DataFrame:
    """Get top differentially expressed features."""
    table = de_results.table
    return table.sort_values(by, kind='mergesort').head(n_top)


def filter_significant(
    de_results: ContrastResult,
    padj_threshold: float = 0.05,
    log2fc_threshold: float = 1.0,
    within: Optional[SignificantSet] = None
) -> SignificantSet:
    """
    Filter for significant features based on adj.P.Val and |logFC|.

    Parameters
    ----------
    de_results : ContrastResult
        Output of a contrast evaluation
    padj_threshold : float
        Keep features with adj.P.Val strictly below this value
    log2fc_threshold : float
        Keep features with |logFC| strictly above this value
    within : SignificantSet, optional
        Restrict the selection to an earlier set from the same contrast

    Returns
    -------
    SignificantSet
        Feature identifiers ordered by significance
    """
    table = de_results.table
    mask = (
        (table['adj.P.Val'] < padj_threshold) &
        (table['logFC'].abs() > log2fc_threshold)
    )
    if within is not None:
        if within.contrast != de_results.name:
            raise DEAnalysisError(
                f"Cannot re-filter '{within.contrast}' with results of '{de_results.name}'"
            )
        mask &= table.index.isin(within.features)

    selected = tuple(dict.fromkeys(table.index[mask.values]))
    return SignificantSet(
        contrast=de_results.name,
        features=selected,
        padj_threshold=padj_threshold,
        log2fc_threshold=log2fc_threshold
    )
