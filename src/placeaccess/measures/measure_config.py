from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml

from placeaccess.errors import InvalidParameterError
from placeaccess.impedance import ImpedanceFamily

from .registry import Measure, MeasureRegistry, measure_name

logger = logging.getLogger(__name__)

_PARAMETER_KEYS = ("parameter", "beta", "cutoff_minutes", "t_bar")


@dataclass(frozen=True)
class MeasureSpec:
    """Raw measure entry as read from configuration."""

    family: ImpedanceFamily
    parameter: float
    name: Optional[str] = None
    cutoff: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "MeasureSpec":
        if not isinstance(data, Mapping):
            raise TypeError("Measure entries must be mappings")
        family = ImpedanceFamily.parse(data.get("family"))  # type: ignore[arg-type]
        raw_parameter = next((data[key] for key in _PARAMETER_KEYS if data.get(key) is not None), None)
        cutoff = data.get("cutoff")
        if raw_parameter is None and family.is_cumulative and cutoff is not None:
            # cumulative entries may give their threshold as ``cutoff`` alone
            raw_parameter, cutoff = cutoff, None
        if raw_parameter is None:
            raise InvalidParameterError(
                f"Measure entry for {family.value} is missing its {family.parameter_label}"
            )
        name = data.get("name")
        return cls(
            family=family,
            parameter=float(raw_parameter),  # type: ignore[arg-type]
            name=str(name).strip() if name is not None else None,
            cutoff=float(cutoff) if cutoff is not None else None,  # type: ignore[arg-type]
        )

    def resolved_name(self) -> str:
        return self.name or measure_name(self.family, self.parameter)


@dataclass
class MeasureCatalogConfig:
    """Measure configuration: preset selection plus user-custom entries."""

    include_presets: bool = False
    presets: Optional[List[str]] = None
    custom: List[MeasureSpec] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "MeasureCatalogConfig":
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Measure configuration not found at {config_path}")
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, Mapping):
            raise TypeError("Measure YAML must contain a mapping at the top level")
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "MeasureCatalogConfig":
        presets = data.get("presets")
        if presets is not None and not isinstance(presets, list):
            raise TypeError("'presets' must be a list of preset measure names")
        entries = data.get("measures") or []
        if not isinstance(entries, list):
            raise TypeError("'measures' must be a list of measure definitions")
        include_presets = bool(data.get("include_presets", presets is not None))
        return cls(
            include_presets=include_presets,
            presets=[str(name) for name in presets] if presets is not None else None,
            custom=[MeasureSpec.from_mapping(entry) for entry in entries],
        )

    def to_yaml(self, path: str | Path) -> None:
        output: Dict[str, object] = {"include_presets": bool(self.include_presets)}
        if self.presets is not None:
            output["presets"] = list(self.presets)
        measures: List[Dict[str, object]] = []
        for spec in self.custom:
            entry: Dict[str, object] = {
                "name": spec.resolved_name(),
                "family": spec.family.value,
                "parameter": float(spec.parameter),
            }
            if spec.cutoff is not None:
                entry["cutoff"] = float(spec.cutoff)
            measures.append(entry)
        output["measures"] = measures
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with dest.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(output, handle, sort_keys=False)

    def build_registry(self) -> MeasureRegistry:
        """Return a frozen registry holding the configured measures."""
        if self.include_presets:
            registry = MeasureRegistry.with_presets(self.presets)
        else:
            registry = MeasureRegistry()
        for spec in self.custom:
            registry.register(spec.resolved_name(), spec.family, spec.parameter, cutoff=spec.cutoff)
        if not len(registry):
            raise InvalidParameterError("Measure configuration does not define any measures")
        logger.info(
            "Configured %d measures (%d custom)",
            len(registry),
            len(self.custom),
        )
        return registry.freeze()

    @classmethod
    def from_registry(cls, registry: MeasureRegistry) -> "MeasureCatalogConfig":
        return cls(
            include_presets=False,
            custom=[_spec_from_measure(measure) for measure in registry],
        )


def _spec_from_measure(measure: Measure) -> MeasureSpec:
    return MeasureSpec(
        family=measure.family,
        parameter=measure.parameter,
        name=measure.name,
        cutoff=measure.cutoff,
    )


def load_registry(path: str | Path | None) -> MeasureRegistry:
    """Frozen registry from a YAML file, or the full preset catalog when ``path`` is None."""
    if path is None:
        return MeasureRegistry.with_presets().freeze()
    return MeasureCatalogConfig.from_yaml(path).build_registry()


__all__ = ["MeasureCatalogConfig", "MeasureSpec", "load_registry"]
