"""
Partner matching: оценка совместимости и ранжирование кандидатов.
"""

from .compatibility import CompatibilityEvaluator
from .ranker import CandidateRanker

__all__ = ['CompatibilityEvaluator', 'CandidateRanker']
