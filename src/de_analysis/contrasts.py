"""
Contrast Evaluation
===================

Computes moderated t-statistics for linear contrasts of group
coefficients:

1. effect = coefficients . c
2. unscaled standard error = sqrt(c' (X'X)^-1 c)
3. empirical Bayes posterior variances (see ``ebayes``)
4. two-sided p-values from Student's t with residual + prior df
5. Benjamini-Hochberg adjustment across all features
"""

import re
import warnings
import pandas as pd
import numpy as np
from scipy import stats
from statsmodels.stats.multitest import multipletests
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence
import logging

from .ebayes import EmpiricalBayesPrior, fit_f_dist, squeeze_var
from .exceptions import ContrastSpecError, NumericalDegeneracyWarning
from .linear_model import FitResult

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['logFC', 'AveExpr', 'SE', 't', 'P.Value', 'adj.P.Val']

_TERM = re.compile(r'\s*([+-]?)\s*(?:(\d*\.?\d+)\s*\*\s*)?([A-Za-z_][\w.]*)\s*')


@dataclass(frozen=True)
class ContrastSpec:
    """A named linear combination of group coefficients."""

    name: str
    weights: Dict[str, float]

    def __post_init__(self):
        object.__setattr__(self, 'weights', dict(self.weights))
        if not self.weights:
            raise ContrastSpecError(f"Contrast '{self.name}' has no weights")
        total = sum(self.weights.values())
        if abs(total) > 1e-8:
            raise ContrastSpecError(
                f"Contrast '{self.name}' weights sum to {total}, not zero"
            )

    @classmethod
    def difference(cls, numerator: str, denominator: str, name: Optional[str] = None):
        """``numerator - denominator``."""
        if numerator == denominator:
            raise ContrastSpecError(f"Contrast compares '{numerator}' with itself")
        return cls(
            name=name or f"{numerator}-{denominator}",
            weights={numerator: 1.0, denominator: -1.0}
        )

    @classmethod
    def parse(cls, expression: str, name: Optional[str] = None):
        """
        Parse a contrast such as ``"Tumor - Healthy"`` or
        ``"Tumor - 0.5*Healthy - 0.5*Adjacent"``.
        """
        weights: Dict[str, float] = {}
        pos = 0
        text = expression.strip()
        while pos < len(text):
            match = _TERM.match(text, pos)
            if match is None or match.end() == pos:
                raise ContrastSpecError(f"Cannot parse contrast '{expression}'")
            sign, coef, group = match.groups()
            value = float(coef) if coef else 1.0
            if sign == '-':
                value = -value
            weights[group] = weights.get(group, 0.0) + value
            pos = match.end()

        weights = {g: w for g, w in weights.items() if w != 0}
        return cls(name=name or re.sub(r'\s+', '', text), weights=weights)

    def vector(self, groups: Sequence[str]) -> np.ndarray:
        """Weight vector in design column order."""
        unknown = sorted(set(self.weights) - set(groups))
        if unknown:
            raise ContrastSpecError(
                f"Contrast '{self.name}' references unknown groups {unknown}; "
                f"design has {list(groups)}"
            )
        return np.array([self.weights.get(g, 0.0) for g in groups], dtype=float)


@dataclass(frozen=True, eq=False)
class ContrastResult:
    """Per-feature moderated statistics for one contrast, sorted by P.Value."""

    name: str
    _table: pd.DataFrame = field(repr=False)
    df_total: float
    prior: EmpiricalBayesPrior

    @property
    def table(self) -> pd.DataFrame:
        return self._table.copy()

    @property
    def prior_df(self) -> float:
        return self.prior.df

    @property
    def prior_var(self) -> float:
        return self.prior.var

    @property
    def features(self):
        return list(self._table.index)

    def __len__(self):
        return len(self._table)

    def get(self, column: str) -> pd.Series:
        return self._table[column].copy()


def bh_adjust(pvalues) -> np.ndarray:
    """Benjamini-Hochberg adjusted p-values; NaN entries stay NaN."""
    pvalues = np.asarray(pvalues, dtype=float)
    adjusted = np.full_like(pvalues, np.nan)
    valid = ~np.isnan(pvalues)
    if valid.any():
        _, adjusted[valid], _, _ = multipletests(pvalues[valid], method='fdr_bh')
    return adjusted


def estimate_prior(fit: FitResult) -> EmpiricalBayesPrior:
    """
    Estimate the variance prior for a fit.

    With no residual degrees of freedom the fit reproduces the data exactly,
    so the prior is estimated from each feature's total variance across
    samples instead.
    """
    if fit.df_residual > 0:
        d0, s0_sq = fit_f_dist(fit.sigma2.values, fit.df_residual)
    else:
        message = (
            "No residual degrees of freedom; "
            "using the variance prior alone for every feature"
        )
        warnings.warn(message, NumericalDegeneracyWarning, stacklevel=2)
        logger.warning(message)

        fitted = fit.design.values @ fit.coefficients.values.T
        n_samples = fitted.shape[0]
        if n_samples < 2:
            d0, s0_sq = np.inf, 1.0
        else:
            total_var = fitted.var(axis=0, ddof=1)
            d0, s0_sq = fit_f_dist(total_var, n_samples - 1)

    logger.info(f"Variance prior: df={d0:.3g}, var={s0_sq:.4g}")
    return EmpiricalBayesPrior(df=d0, var=s0_sq)


def evaluate_contrast(
    fit: FitResult,
    contrast: ContrastSpec,
    prior: Optional[EmpiricalBayesPrior] = None
) -> ContrastResult:
    """
    Moderated t-test of one contrast for every feature.

    Parameters
    ----------
    fit : FitResult
        Output of ``fit_linear_model``
    contrast : ContrastSpec
        Contrast over the fit's groups
    prior : EmpiricalBayesPrior, optional
        Pre-computed prior; estimated from ``fit`` when omitted

    Returns
    -------
    ContrastResult
        Table with logFC, AveExpr, SE, t, P.Value and adj.P.Val
    """
    c = contrast.vector(fit.groups)

    if prior is None:
        prior = estimate_prior(fit)

    effect = fit.coefficients.values @ c
    unscaled_se = float(np.sqrt(c @ fit.unscaled_cov.values @ c))

    s2_post, df_total = squeeze_var(fit.sigma2.values, fit.df_residual, prior)
    se = np.sqrt(s2_post) * unscaled_se

    with np.errstate(divide='ignore', invalid='ignore'):
        t_stat = effect / se

    if np.isinf(df_total):
        pvalues = 2 * stats.norm.sf(np.abs(t_stat))
    else:
        pvalues = 2 * stats.t.sf(np.abs(t_stat), df=df_total)
    pvalues = np.where(np.isnan(pvalues), 1.0, pvalues)

    table = pd.DataFrame({
        'logFC': effect,
        'AveExpr': fit.amean.values,
        'SE': se,
        't': t_stat,
        'P.Value': pvalues,
    }, index=fit.coefficients.index)
    table['adj.P.Val'] = bh_adjust(table['P.Value'].values)

    table = table.sort_values('P.Value', kind='mergesort')
    table.index.name = fit.coefficients.index.name or 'feature'

    logger.info(
        f"{contrast.name}: {(table['adj.P.Val'] < 0.05).sum()} features with adj.P.Val < 0.05"
    )
    return ContrastResult(
        name=contrast.name,
        _table=table[RESULT_COLUMNS],
        df_total=df_total,
        prior=prior
    )
