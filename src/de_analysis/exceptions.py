"""
Errors raised by the differential expression core.
"""


class DEAnalysisError(ValueError):
    """Base class for fatal differential expression errors."""


class AlignmentError(DEAnalysisError):
    """Expression columns and metadata rows do not describe the same samples."""


class DesignRankError(DEAnalysisError):
    """A declared group has no samples or the design matrix is rank-deficient."""


class ContrastSpecError(DEAnalysisError):
    """A contrast references an unknown group or its weights do not sum to zero."""


class NumericalDegeneracyWarning(RuntimeWarning):
    """No residual degrees of freedom are left; the variance prior is used alone."""
