from __future__ import annotations

import textwrap

import pytest

from placeaccess.errors import (
    DuplicateNameError,
    InvalidParameterError,
    RegistryFrozenError,
    UnknownMeasureError,
)
from placeaccess.impedance import ImpedanceFamily
from placeaccess.measures import (
    MeasureCatalogConfig,
    MeasureRegistry,
    load_registry,
    measure_name,
)


def test_preset_catalog_has_28_unique_measures():
    registry = MeasureRegistry.with_presets()
    assert len(registry) == 28
    assert len(set(registry.names)) == 28
    for name in ("POW1", "EXP0_15", "GAU180", "CUMR30", "CUML60"):
        assert name in registry
    families = {measure.family for measure in registry}
    assert families == set(ImpedanceFamily)


@pytest.mark.parametrize(
    "family, parameter, expected",
    [
        ("negative_exponential", 0.15, "EXP0_15"),
        ("negative_exponential", 0.115, "EXP0_115"),
        ("modified_gaussian", 180, "GAU180"),
        ("cumulative_rectangular", 30.0, "CUMR30"),
        ("cumulative_linear", 7.5, "CUML7_5"),
        ("inverse_power", 1.5, "POW1_5"),
    ],
)
def test_measure_name_convention(family, parameter, expected):
    assert measure_name(family, parameter) == expected


def test_register_and_resolve():
    registry = MeasureRegistry()
    measure = registry.register("EXP_CUSTOM", "negative_exponential", 0.1, cutoff=45)
    assert registry.resolve("EXP_CUSTOM") is measure
    assert measure.cutoff == pytest.approx(45.0)
    assert measure.excludes(45.5)
    assert not measure.excludes(45.0)


def test_duplicate_names_are_rejected():
    registry = MeasureRegistry()
    registry.register("A", "cumulative_rectangular", 10)
    with pytest.raises(DuplicateNameError):
        registry.register("A", "cumulative_linear", 20)
    assert registry.resolve("A").family is ImpedanceFamily.CUMULATIVE_RECTANGULAR


def test_unknown_measure_is_reported():
    with pytest.raises(UnknownMeasureError):
        MeasureRegistry.with_presets().resolve("EXP9_99")


def test_invalid_parameters_fail_at_registration():
    registry = MeasureRegistry()
    with pytest.raises(InvalidParameterError):
        registry.register("BAD_BETA", "modified_gaussian", 0)
    with pytest.raises(InvalidParameterError):
        registry.register("BAD_CUTOFF", "negative_exponential", 0.1, cutoff=-5)
    assert len(registry) == 0


def test_frozen_registry_is_read_only():
    registry = MeasureRegistry.with_presets().freeze()
    with pytest.raises(RegistryFrozenError):
        registry.register("LATE", "negative_exponential", 0.3)
    assert registry.resolve("EXP0_15").parameter == pytest.approx(0.15)


def test_select_preserves_requested_order():
    selected = MeasureRegistry.with_presets().select(["CUMR30", "EXP0_15", "POW1"])
    assert selected.names == ["CUMR30", "EXP0_15", "POW1"]
    assert selected.frozen


def test_measure_yaml_builds_presets_and_custom_entries(tmp_path):
    yaml_text = textwrap.dedent(
        """
        presets: [EXP0_15, CUMR30]
        measures:
          - name: EXP_CUSTOM
            family: negative_exponential
            beta: 0.1
            cutoff: 60
          - family: cumulative_linear
            cutoff: 40
          - family: inverse_power
            parameter: 1.25
        """
    ).strip()
    config_path = tmp_path / "measures.yaml"
    config_path.write_text(yaml_text, encoding="utf-8")

    registry = MeasureCatalogConfig.from_yaml(config_path).build_registry()

    assert registry.names == ["EXP0_15", "CUMR30", "EXP_CUSTOM", "CUML40", "POW1_25"]
    assert registry.frozen
    custom = registry.resolve("EXP_CUSTOM")
    assert custom.parameter == pytest.approx(0.1)
    assert custom.cutoff == pytest.approx(60.0)
    linear = registry.resolve("CUML40")
    assert linear.parameter == pytest.approx(40.0)
    assert linear.cutoff is None


def test_measure_yaml_roundtrip(tmp_path):
    registry = MeasureRegistry()
    registry.register("GAU_WIDE", "modified_gaussian", 250.0, cutoff=30.0)
    registry.register("CUMR12", "cumulative_rectangular", 12.0)
    path = tmp_path / "nested" / "roundtrip.yaml"

    MeasureCatalogConfig.from_registry(registry).to_yaml(path)
    rebuilt = load_registry(path)

    assert rebuilt.names == ["GAU_WIDE", "CUMR12"]
    assert rebuilt.resolve("GAU_WIDE").cutoff == pytest.approx(30.0)
    assert rebuilt.resolve("CUMR12").function == registry.resolve("CUMR12").function


def test_measure_yaml_requires_parameter(tmp_path):
    config_path = tmp_path / "invalid.yaml"
    config_path.write_text("measures:\n  - family: modified_gaussian\n", encoding="utf-8")
    with pytest.raises(InvalidParameterError):
        MeasureCatalogConfig.from_yaml(config_path)


def test_measure_yaml_rejects_duplicate_names(tmp_path):
    config_path = tmp_path / "dupes.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            presets: [EXP0_15]
            measures:
              - family: negative_exponential
                beta: 0.15
            """
        ).strip(),
        encoding="utf-8",
    )
    with pytest.raises(DuplicateNameError):
        MeasureCatalogConfig.from_yaml(config_path).build_registry()


def test_default_registry_is_the_frozen_preset_catalog():
    registry = load_registry(None)
    assert len(registry) == 28
    assert registry.frozen
