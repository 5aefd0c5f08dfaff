"""
Differential Expression Analysis module.
"""

from .alignment import align_samples
from .contrasts import ContrastResult, ContrastSpec, bh_adjust, evaluate_contrast
from .design import build_design
from .differential_expression import (
    DEAnalysis,
    SignificantSet,
    get_top_genes,
    filter_significant
)
from .exceptions import (
    AlignmentError,
    ContrastSpecError,
    DEAnalysisError,
    DesignRankError,
    NumericalDegeneracyWarning
)
from .linear_model import FitResult, fit_linear_model

__all__ = [
    'DEAnalysis', 'SignificantSet', 'get_top_genes', 'filter_significant',
    'align_samples', 'build_design', 'fit_linear_model', 'FitResult',
    'ContrastSpec', 'ContrastResult', 'evaluate_contrast', 'bh_adjust',
    'DEAnalysisError', 'AlignmentError', 'DesignRankError', 'ContrastSpecError',
    'NumericalDegeneracyWarning'
]
