"""
Empirical Bayes Variance Moderation
===================================

Shrinks per-feature residual variances toward a common prior estimated
from all features (Smyth 2004). The prior is a scaled inverse chi-square
with ``d0`` degrees of freedom and scale ``s0^2``; the posterior variance is

    s2_post = (d0 * s0^2 + d * s^2) / (d0 + d)
"""

import numpy as np
from scipy.special import digamma, polygamma
from dataclasses import dataclass
from typing import Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmpiricalBayesPrior:
    """Prior degrees of freedom and prior variance."""

    df: float
    var: float


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """Solve trigamma(y) = x for y by Newton iteration."""
    if x <= 0:
        return np.inf
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(max_iter):
        tri = polygamma(1, y)
        step = tri * (1 - tri / x) / polygamma(2, y)
        y = y + step
        if -step / y < tol:
            break
    else:
        logger.warning("trigamma_inverse did not converge")
    return float(y)


def fit_f_dist(sigma2: np.ndarray, df: float) -> Tuple[float, float]:
    """
    Estimate the prior (d0, s0^2) by moments of the log variances.

    Parameters
    ----------
    sigma2 : np.ndarray
        Per-feature sample variances
    df : float
        Degrees of freedom of every variance

    Returns
    -------
    Tuple[float, float]
        Prior degrees of freedom (``np.inf`` means no feature-wise variation
        beyond sampling noise) and prior variance
    """
    sigma2 = np.asarray(sigma2, dtype=float)
    s2 = np.maximum(sigma2[np.isfinite(sigma2)], 0.0)

    if s2.size == 0:
        return np.inf, 1.0

    # Offset exact zeros away from zero relative to the median
    m = float(np.median(s2))
    if m == 0:
        logger.warning("More than half of residual variances are exactly zero")
        m = 1.0
    elif (s2 == 0).any():
        logger.warning("Zero sample variances detected, offset away from zero")
    s2 = np.maximum(s2, 1e-5 * m)

    if s2.size < 3:
        return np.inf, float(np.median(s2))

    z = np.log(s2)
    e = z - digamma(df / 2.0) + np.log(df / 2.0)
    emean = float(np.mean(e))
    evar = float(np.var(e, ddof=1)) - float(polygamma(1, df / 2.0))

    if evar <= 0:
        return np.inf, float(np.exp(emean))

    d0 = 2.0 * trigamma_inverse(evar)
    if not np.isfinite(d0) or d0 > 1e10:
        return np.inf, float(np.exp(emean))

    s0_sq = float(np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0)))
    return float(d0), s0_sq


def squeeze_var(
    sigma2: np.ndarray,
    df: float,
    prior: EmpiricalBayesPrior
) -> Tuple[np.ndarray, float]:
    """
    Posterior variances and total degrees of freedom.

    Features with ``df == 0`` (or a missing variance) take the prior variance.
    """
    sigma2 = np.asarray(sigma2, dtype=float)

    if np.isinf(prior.df):
        return np.full_like(sigma2, prior.var), np.inf

    if df == 0:
        return np.full_like(sigma2, prior.var), float(prior.df)

    filled = np.where(np.isfinite(sigma2), sigma2, prior.var)
    s2_post = (prior.df * prior.var + df * filled) / (prior.df + df)
    return s2_post, float(prior.df + df)
