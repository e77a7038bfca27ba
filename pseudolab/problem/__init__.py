"""
Problem definition package for multiphase optimal control problems.
"""

from .algorithm import Algorithm
from .core_problem import Phase, Problem


__all__ = [
    "Algorithm",
    "Phase",
    "Problem",
]
