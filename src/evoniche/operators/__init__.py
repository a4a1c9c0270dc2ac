"""
evoniche.operators
==================

Variation operators consumed by the reproduction code.
"""

from evoniche.operators.mate import CrossoverMutationMate, FunctionMate, Mate

__all__ = [
    "CrossoverMutationMate",
    "FunctionMate",
    "Mate",
]
