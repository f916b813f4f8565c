"""Distance-decay (impedance) functions mapping travel cost to a weight in [0, 1]."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union

import numpy as np

from placeaccess.errors import InvalidParameterError


class ImpedanceFamily(str, Enum):
    """Closed set of supported decay families."""

    INVERSE_POWER = "inverse_power"
    NEGATIVE_EXPONENTIAL = "negative_exponential"
    MODIFIED_GAUSSIAN = "modified_gaussian"
    CUMULATIVE_RECTANGULAR = "cumulative_rectangular"
    CUMULATIVE_LINEAR = "cumulative_linear"

    @property
    def is_cumulative(self) -> bool:
        return self in (ImpedanceFamily.CUMULATIVE_RECTANGULAR, ImpedanceFamily.CUMULATIVE_LINEAR)

    @property
    def parameter_label(self) -> str:
        """Name of the single parameter carried by the family (``beta`` or ``cutoff``)."""
        return "cutoff" if self.is_cumulative else "beta"

    @classmethod
    def parse(cls, value: Union["ImpedanceFamily", str]) -> "ImpedanceFamily":
        if isinstance(value, ImpedanceFamily):
            return value
        token = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(token)
        except ValueError as exc:
            known = ", ".join(member.value for member in cls)
            raise InvalidParameterError(
                f"Unknown impedance family {value!r}; expected one of: {known}"
            ) from exc


CostLike = Union[float, int]


@dataclass(frozen=True)
class ImpedanceFunction:
    """A decay family bound to one validated parameter.

    ``parameter`` is the decay rate ``beta`` for the continuous families and the
    cutoff ``t̄`` for the cumulative ones.
    """

    family: ImpedanceFamily
    parameter: float

    def __post_init__(self) -> None:
        family = ImpedanceFamily.parse(self.family)
        try:
            value = float(self.parameter)
        except (TypeError, ValueError) as exc:
            raise InvalidParameterError(
                f"{family.value} {family.parameter_label} must be numeric, got {self.parameter!r}"
            ) from exc
        if not math.isfinite(value) or value <= 0.0:
            raise InvalidParameterError(
                f"{family.value} {family.parameter_label} must be positive and finite, got {value}"
            )
        object.__setattr__(self, "family", family)
        object.__setattr__(self, "parameter", value)

    @property
    def beta(self) -> float:
        if self.family.is_cumulative:
            raise AttributeError(f"{self.family.value} is parametrised by a cutoff, not beta")
        return self.parameter

    @property
    def cutoff(self) -> float:
        if not self.family.is_cumulative:
            raise AttributeError(f"{self.family.value} is parametrised by beta, not a cutoff")
        return self.parameter

    def weight(self, t: CostLike) -> float:
        return evaluate(self, t)

    def weights(self, costs: Iterable[CostLike] | np.ndarray) -> np.ndarray:
        return evaluate_array(self, costs)

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.family.value}({self.family.parameter_label}={self.parameter:g})"


def _check_cost(t: CostLike) -> float:
    value = float(t)
    if math.isnan(value) or value < 0.0:
        raise ValueError(f"Travel cost must be a non-negative number, got {t!r}")
    return value


def evaluate(function: ImpedanceFunction, t: CostLike) -> float:
    """Return the weight of travel cost ``t`` under ``function``."""
    cost = _check_cost(t)
    family = function.family
    p = function.parameter
    if family is ImpedanceFamily.INVERSE_POWER:
        # clamp below unit cost so t -> 0 does not blow up
        if cost < 1.0:
            return 1.0
        return cost ** (-p)
    if family is ImpedanceFamily.NEGATIVE_EXPONENTIAL:
        return math.exp(-p * cost)
    if family is ImpedanceFamily.MODIFIED_GAUSSIAN:
        return math.exp(-(cost * cost) / p)
    if family is ImpedanceFamily.CUMULATIVE_RECTANGULAR:
        return 1.0 if cost <= p else 0.0
    if family is ImpedanceFamily.CUMULATIVE_LINEAR:
        return 1.0 - cost / p if cost <= p else 0.0
    raise InvalidParameterError(f"Unsupported impedance family: {family!r}")


def evaluate_array(function: ImpedanceFunction, costs: Iterable[CostLike] | np.ndarray) -> np.ndarray:
    """Vectorised :func:`evaluate` with identical boundary semantics."""
    t = np.asarray(costs if isinstance(costs, np.ndarray) else list(costs), dtype=float)
    if t.size and (np.isnan(t).any() or (t < 0.0).any()):
        raise ValueError("Travel costs must be non-negative numbers.")
    family = function.family
    p = function.parameter
    if family is ImpedanceFamily.INVERSE_POWER:
        return np.where(t < 1.0, 1.0, np.power(np.maximum(t, 1.0), -p))
    if family is ImpedanceFamily.NEGATIVE_EXPONENTIAL:
        return np.exp(-p * t)
    if family is ImpedanceFamily.MODIFIED_GAUSSIAN:
        return np.exp(-(t * t) / p)
    if family is ImpedanceFamily.CUMULATIVE_RECTANGULAR:
        return np.where(t <= p, 1.0, 0.0)
    if family is ImpedanceFamily.CUMULATIVE_LINEAR:
        return np.where(t <= p, 1.0 - t / p, 0.0)
    raise InvalidParameterError(f"Unsupported impedance family: {family!r}")


__all__ = ["ImpedanceFamily", "ImpedanceFunction", "evaluate", "evaluate_array"]
