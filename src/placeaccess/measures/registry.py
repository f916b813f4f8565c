"""Named, immutable accessibility measures and the registry that holds them."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from placeaccess.errors import (
    DuplicateNameError,
    InvalidParameterError,
    RegistryFrozenError,
    UnknownMeasureError,
)
from placeaccess.impedance import ImpedanceFamily, ImpedanceFunction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Measure:
    """One accessibility column: a decay function plus an optional hard cutoff."""

    name: str
    function: ImpedanceFunction
    cutoff: Optional[float] = None

    def __post_init__(self) -> None:
        name = str(self.name or "").strip()
        if not name:
            raise InvalidParameterError("Measure names cannot be empty")
        object.__setattr__(self, "name", name)
        if self.cutoff is not None:
            cutoff = float(self.cutoff)
            if not math.isfinite(cutoff) or cutoff <= 0.0:
                raise InvalidParameterError(
                    f"Measure {name} cutoff must be positive and finite, got {self.cutoff!r}"
                )
            object.__setattr__(self, "cutoff", cutoff)

    @property
    def family(self) -> ImpedanceFamily:
        return self.function.family

    @property
    def parameter(self) -> float:
        return self.function.parameter

    def excludes(self, t: float) -> bool:
        """True when the measure-level cutoff drops an OD pair with cost ``t``."""
        return self.cutoff is not None and t > self.cutoff

    def to_dict(self) -> Dict[str, object]:
        entry: Dict[str, object] = {
            "name": self.name,
            "family": self.family.value,
            "parameter": self.parameter,
        }
        if self.cutoff is not None:
            entry["cutoff"] = self.cutoff
        return entry


class MeasureRegistry:
    """Ordered catalog of measures, built once and then frozen for a run.

    Registration order fixes the column order of every accessibility table
    produced from the registry.
    """

    def __init__(self, measures: Iterable[Measure] = ()):
        self._measures: Dict[str, Measure] = {}
        self._frozen = False
        for measure in measures:
            self._add(measure)

    # ------------------------------------------------------------ construction
    def register(
        self,
        name: str,
        family: Union[ImpedanceFamily, str],
        parameter: float,
        cutoff: Optional[float] = None,
    ) -> Measure:
        """Create and register a measure; returns the stored :class:`Measure`."""
        measure = Measure(name=name, function=ImpedanceFunction(family, parameter), cutoff=cutoff)
        self._add(measure)
        return measure

    def add(self, measure: Measure) -> Measure:
        self._add(measure)
        return measure

    def _add(self, measure: Measure) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {measure.name}: registry is frozen for the current run"
            )
        if measure.name in self._measures:
            raise DuplicateNameError(f"Measure {measure.name!r} is already registered")
        self._measures[measure.name] = measure
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Registered measure %s -> %s", measure.name, measure.function)

    def freeze(self) -> "MeasureRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------ lookup
    def resolve(self, name: str) -> Measure:
        key = str(name).strip()
        measure = self._measures.get(key)
        if measure is None:
            raise UnknownMeasureError(f"Unknown measure {name!r}")
        return measure

    def select(self, names: Sequence[str]) -> "MeasureRegistry":
        """Return a frozen registry restricted to ``names`` in the requested order."""
        return MeasureRegistry(self.resolve(name) for name in names).freeze()

    @property
    def names(self) -> List[str]:
        return list(self._measures.keys())

    @property
    def measures(self) -> Tuple[Measure, ...]:
        return tuple(self._measures.values())

    def __len__(self) -> int:
        return len(self._measures)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._measures

    def __iter__(self) -> Iterator[Measure]:
        return iter(tuple(self._measures.values()))

    # ------------------------------------------------------------------ presets
    @classmethod
    def with_presets(cls, names: Optional[Sequence[str]] = None) -> "MeasureRegistry":
        """Registry holding the preset catalog (or the named subset of it)."""
        from .presets import preset_measures

        registry = cls(preset_measures())
        if names is not None:
            registry = cls(registry.resolve(name) for name in names)
        return registry

    def __repr__(self) -> str:  # pragma: no cover - trivial
        state = "frozen" if self._frozen else "open"
        return f"MeasureRegistry({len(self)} measures, {state})"


def measure_name(family: Union[ImpedanceFamily, str], parameter: float) -> str:
    """Build the conventional measure name, e.g. ``EXP0_15`` or ``CUMR30``."""
    prefix = _FAMILY_PREFIX[ImpedanceFamily.parse(family)]
    text = f"{float(parameter):g}"
    if "e" in text:
        text = f"{float(parameter):.6f}".rstrip("0").rstrip(".")
    return f"{prefix}{text.replace('.', '_')}"


_FAMILY_PREFIX: Dict[ImpedanceFamily, str] = {
    ImpedanceFamily.INVERSE_POWER: "POW",
    ImpedanceFamily.NEGATIVE_EXPONENTIAL: "EXP",
    ImpedanceFamily.MODIFIED_GAUSSIAN: "GAU",
    ImpedanceFamily.CUMULATIVE_RECTANGULAR: "CUMR",
    ImpedanceFamily.CUMULATIVE_LINEAR: "CUML",
}


__all__ = ["Measure", "MeasureRegistry", "measure_name"]
