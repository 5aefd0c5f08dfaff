"""
Probe annotation and gene set over-representation.
"""

from .annotation import ProbeAnnotation
from .over_representation import OverRepresentationAnalysis, load_gene_sets

__all__ = ['ProbeAnnotation', 'OverRepresentationAnalysis', 'load_gene_sets']
