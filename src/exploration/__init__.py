"""
Exploratory analysis of sample structure.
"""

from .sample_structure import SampleStructureAnalyzer

__all__ = ['SampleStructureAnalyzer']
