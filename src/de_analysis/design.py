"""
Group-means design matrix (one indicator column per group, no intercept).
"""

import numpy as np
import pandas as pd
from typing import Sequence
import logging

from .exceptions import DesignRankError

logger = logging.getLogger(__name__)


def build_design(
    metadata: pd.DataFrame,
    groups: Sequence[str],
    group_col: str = 'group'
) -> pd.DataFrame:
    """
    Build a one-hot design matrix from categorical sample labels.

    Column order follows ``groups``, never the order labels appear in.

    Parameters
    ----------
    metadata : pd.DataFrame
        Aligned sample metadata indexed by sample id
    groups : Sequence[str]
        Ordered group labels
    group_col : str
        Column holding the group label

    Returns
    -------
    pd.DataFrame
        Design matrix (samples x groups) of 0.0/1.0 values
    """
    groups = list(groups)
    if len(groups) == 0:
        raise DesignRankError("At least one group is required")
    if len(set(groups)) != len(groups):
        raise DesignRankError(f"Duplicated group labels: {groups}")

    labels = metadata[group_col]
    unknown = sorted(set(labels.dropna().astype(str)) - set(groups))
    if unknown or labels.isna().any():
        raise DesignRankError(f"Samples with labels outside {groups}: {unknown or ['<missing>']}")

    design = pd.DataFrame(
        {g: (labels == g).astype(float).values for g in groups},
        index=metadata.index,
        columns=groups
    )

    empty = [g for g in groups if design[g].sum() == 0]
    if empty:
        raise DesignRankError(f"Groups without samples: {empty}")

    rank = np.linalg.matrix_rank(design.values)
    if rank < design.shape[1]:
        raise DesignRankError(
            f"Design matrix rank {rank} is below its {design.shape[1]} columns"
        )

    counts = design.sum(axis=0).astype(int)
    logger.info(f"Design matrix: {dict(counts)}")
    return design
