"""
Preprocessing module for microarray expression data.
"""

from .data_loader import (
    ExpressionDataLoader,
    assign_groups,
    collapse_duplicate_features,
    fetch_geo,
    filter_low_expression
)
from .normalization import ArrayNormalizer

__all__ = [
    'ExpressionDataLoader', 'assign_groups', 'collapse_duplicate_features',
    'fetch_geo', 'filter_low_expression', 'ArrayNormalizer'
]
