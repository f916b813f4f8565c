"""Preset measure catalog.

Continuous families carry one preset per calibration cost (5, 10, 15 and 20
minutes): each ``beta`` is chosen so the weight at that cost is close to 0.1.
Cumulative families use a ladder of cutoffs.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from placeaccess.impedance import ImpedanceFamily, ImpedanceFunction

from .registry import Measure, measure_name

CALIBRATION_COSTS: Tuple[float, ...] = (5.0, 10.0, 15.0, 20.0)
CALIBRATION_WEIGHT = 0.1

# beta per calibration cost, in CALIBRATION_COSTS order
CALIBRATED_BETAS: Dict[ImpedanceFamily, Tuple[float, ...]] = {
    ImpedanceFamily.INVERSE_POWER: (1.43, 1.0, 0.85, 0.77),
    ImpedanceFamily.NEGATIVE_EXPONENTIAL: (0.46, 0.23, 0.15, 0.115),
    ImpedanceFamily.MODIFIED_GAUSSIAN: (10.0, 45.0, 100.0, 180.0),
}

CUMULATIVE_CUTOFFS: Tuple[float, ...] = (5.0, 10.0, 15.0, 20.0, 25.0, 30.0, 45.0, 60.0)


def preset_measures() -> List[Measure]:
    """Return the 28 preset measures in catalog order."""
    measures: List[Measure] = []
    for family, betas in CALIBRATED_BETAS.items():
        for beta in betas:
            measures.append(
                Measure(name=measure_name(family, beta), function=ImpedanceFunction(family, beta))
            )
    for family in (ImpedanceFamily.CUMULATIVE_RECTANGULAR, ImpedanceFamily.CUMULATIVE_LINEAR):
        for cutoff in CUMULATIVE_CUTOFFS:
            measures.append(
                Measure(name=measure_name(family, cutoff), function=ImpedanceFunction(family, cutoff))
            )
    return measures


def calibration_targets() -> List[Tuple[str, float]]:
    """``(measure name, calibration cost)`` pairs for the continuous presets."""
    targets: List[Tuple[str, float]] = []
    for family, betas in CALIBRATED_BETAS.items():
        for beta, cost in zip(betas, CALIBRATION_COSTS):
            targets.append((measure_name(family, beta), cost))
    return targets


__all__ = [
    "CALIBRATED_BETAS",
    "CALIBRATION_COSTS",
    "CALIBRATION_WEIGHT",
    "CUMULATIVE_CUTOFFS",
    "calibration_targets",
    "preset_measures",
]
