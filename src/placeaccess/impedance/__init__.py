"""Impedance function library exports."""

from .functions import ImpedanceFamily, ImpedanceFunction, evaluate, evaluate_array

__all__ = [
    "ImpedanceFamily",
    "ImpedanceFunction",
    "evaluate",
    "evaluate_array",
]
