"""
Sample Alignment
================

Synchronizes an expression matrix (features x samples) with a sample
metadata table (one row per sample) so that matrix column ``i`` and
metadata row ``i`` always describe the same sample.
"""

import pandas as pd
from typing import Optional, Sequence, Tuple
import logging

from .exceptions import AlignmentError

logger = logging.getLogger(__name__)


def _unassigned_mask(
    labels: pd.Series,
    groups: Optional[Sequence[str]]
) -> pd.Series:
    """Flag samples without a usable group label."""
    missing = labels.isna() | (labels.astype(str).str.strip() == '')
    if groups is not None:
        missing |= ~labels.isin(list(groups))
    return missing


def align_samples(
    expression: pd.DataFrame,
    metadata: pd.DataFrame,
    group_col: str = 'group',
    groups: Optional[Sequence[str]] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Align expression columns to metadata rows.

    Parameters
    ----------
    expression : pd.DataFrame
        Expression matrix (features x samples)
    metadata : pd.DataFrame
        Sample metadata indexed by sample id, with a group column
    group_col : str
        Column holding the group label
    groups : Sequence[str], optional
        Known group labels. Samples labelled outside this set are dropped.

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        Expression matrix and metadata sharing the same ordered sample set

    Raises
    ------
    AlignmentError
        If identifiers are duplicated or a retained sample has no column
    """
    if group_col not in metadata.columns:
        raise AlignmentError(f"Metadata has no '{group_col}' column")
    if expression.index.has_duplicates:
        dups = expression.index[expression.index.duplicated()].unique().tolist()
        raise AlignmentError(f"Duplicated feature identifiers: {dups[:5]}")
    if expression.columns.has_duplicates:
        dups = expression.columns[expression.columns.duplicated()].unique().tolist()
        raise AlignmentError(f"Duplicated expression sample identifiers: {dups[:5]}")
    if metadata.index.has_duplicates:
        dups = metadata.index[metadata.index.duplicated()].unique().tolist()
        raise AlignmentError(f"Duplicated metadata sample identifiers: {dups[:5]}")

    unassigned = _unassigned_mask(metadata[group_col], groups)
    if unassigned.any():
        logger.warning(
            f"Dropping {int(unassigned.sum())} samples without an assigned group"
        )
    kept = metadata.loc[~unassigned]

    missing = kept.index.difference(expression.columns)
    if len(missing) > 0:
        raise AlignmentError(
            f"{len(missing)} metadata samples have no expression column: "
            f"{missing[:5].tolist()}"
        )

    extra = expression.columns.difference(kept.index)
    if len(extra) > 0:
        logger.info(f"Ignoring {len(extra)} expression columns not in the retained metadata")

    aligned_expr = expression.loc[:, kept.index]
    aligned_meta = kept.copy()

    # Bijection check between matrix columns and metadata rows
    if list(aligned_expr.columns) != list(aligned_meta.index):
        raise AlignmentError("Expression columns do not match metadata rows after alignment")

    logger.info(
        f"Aligned {aligned_expr.shape[0]} features x {aligned_expr.shape[1]} samples"
    )
    return aligned_expr, aligned_meta
