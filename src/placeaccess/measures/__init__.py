"""Measure registry exports."""

from .measure_config import MeasureCatalogConfig, MeasureSpec, load_registry
from .presets import calibration_targets, preset_measures
from .registry import Measure, MeasureRegistry, measure_name

__all__ = [
    "Measure",
    "MeasureCatalogConfig",
    "MeasureRegistry",
    "MeasureSpec",
    "calibration_targets",
    "load_registry",
    "measure_name",
    "preset_measures",
]
