"""Read-only analysis over the event corpus."""

from .cache import AnalysisCache
from .cross_reference import CrossReferenceAnalyzer

__all__ = ["AnalysisCache", "CrossReferenceAnalyzer"]
