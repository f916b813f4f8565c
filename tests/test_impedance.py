from __future__ import annotations

import math

import numpy as np
import pytest

from placeaccess.errors import InvalidParameterError
from placeaccess.impedance import ImpedanceFamily, ImpedanceFunction, evaluate, evaluate_array
from placeaccess.measures import MeasureRegistry, calibration_targets

COST_GRID = np.linspace(0.0, 90.0, 361)


@pytest.mark.parametrize("beta", [0.1, 0.77, 1.0, 2.5, 10.0])
@pytest.mark.parametrize("t", [0.0, 0.25, 0.5, 0.999])
def test_inverse_power_is_clamped_below_unit_cost(beta, t):
    fn = ImpedanceFunction(ImpedanceFamily.INVERSE_POWER, beta)
    assert evaluate(fn, t) == 1.0


def test_inverse_power_follows_power_law_from_unit_cost():
    fn = ImpedanceFunction("inverse_power", 2.0)
    assert evaluate(fn, 1.0) == pytest.approx(1.0)
    assert evaluate(fn, 4.0) == pytest.approx(1.0 / 16.0)


def test_negative_exponential_and_gaussian_rules():
    exp_fn = ImpedanceFunction("negative_exponential", 0.2)
    gau_fn = ImpedanceFunction("modified_gaussian", 50.0)
    assert evaluate(exp_fn, 0.0) == pytest.approx(1.0)
    assert evaluate(exp_fn, 10.0) == pytest.approx(math.exp(-2.0))
    assert evaluate(gau_fn, 10.0) == pytest.approx(math.exp(-2.0))


def test_cumulative_rectangular_is_inclusive_at_cutoff():
    fn = ImpedanceFunction(ImpedanceFamily.CUMULATIVE_RECTANGULAR, 10.0)
    assert evaluate(fn, 0.0) == 1.0
    assert evaluate(fn, 10.0) == 1.0
    for eps in (1e-9, 0.01, 5.0):
        assert evaluate(fn, 10.0 + eps) == 0.0


def test_cumulative_linear_interpolates_between_one_and_zero():
    fn = ImpedanceFunction(ImpedanceFamily.CUMULATIVE_LINEAR, 20.0)
    assert evaluate(fn, 0.0) == 1.0
    assert evaluate(fn, 20.0) == 0.0
    assert evaluate(fn, 25.0) == 0.0
    for t in (2.0, 5.0, 10.0, 15.0, 19.5):
        assert evaluate(fn, t) == pytest.approx(1.0 - t / 20.0)


@pytest.mark.parametrize("measure", MeasureRegistry.with_presets().measures, ids=lambda m: m.name)
def test_preset_weights_are_bounded_and_non_increasing(measure):
    weights = evaluate_array(measure.function, COST_GRID)
    assert np.all(weights >= 0.0)
    assert np.all(weights <= 1.0)
    assert np.all(np.diff(weights) <= 0.0)


@pytest.mark.parametrize(
    "family, start",
    [
        (ImpedanceFamily.NEGATIVE_EXPONENTIAL, 0.0),
        (ImpedanceFamily.MODIFIED_GAUSSIAN, 0.0),
        (ImpedanceFamily.INVERSE_POWER, 1.0),
    ],
)
def test_continuous_families_strictly_decrease_outside_clamp(family, start):
    fn = ImpedanceFunction(family, 0.5 if family is not ImpedanceFamily.MODIFIED_GAUSSIAN else 400.0)
    costs = np.linspace(start, 30.0, 61)
    weights = evaluate_array(fn, costs)
    assert np.all(np.diff(weights) < 0.0)


def test_kwan_calibration_presets():
    registry = MeasureRegistry.with_presets()
    assert evaluate(registry.resolve("EXP0_15").function, 15.0) == pytest.approx(0.1, abs=0.02)
    assert evaluate(registry.resolve("GAU180").function, 20.0) == pytest.approx(0.1, abs=0.02)


@pytest.mark.parametrize("name, cost", calibration_targets())
def test_every_continuous_preset_reaches_tenth_at_its_calibration_cost(name, cost):
    measure = MeasureRegistry.with_presets().resolve(name)
    assert measure.function.weight(cost) == pytest.approx(0.1, abs=0.02)


def test_array_and_scalar_evaluation_agree():
    for measure in MeasureRegistry.with_presets():
        vector = measure.function.weights(COST_GRID)
        scalar = np.array([evaluate(measure.function, t) for t in COST_GRID])
        np.testing.assert_allclose(vector, scalar, rtol=0, atol=1e-12)


@pytest.mark.parametrize("value", [0.0, -0.5, float("nan"), float("inf"), "abc"])
@pytest.mark.parametrize("family", list(ImpedanceFamily))
def test_invalid_parameters_are_rejected(family, value):
    with pytest.raises(InvalidParameterError):
        ImpedanceFunction(family, value)


def test_invalid_parameter_error_is_a_value_error():
    with pytest.raises(ValueError):
        ImpedanceFunction("negative_exponential", -1.0)


def test_unknown_family_is_rejected():
    with pytest.raises(InvalidParameterError):
        ImpedanceFunction("logistic", 1.0)


def test_family_strings_are_normalised():
    fn = ImpedanceFunction("Negative-Exponential", 0.1)
    assert fn.family is ImpedanceFamily.NEGATIVE_EXPONENTIAL
    assert fn.beta == pytest.approx(0.1)
    with pytest.raises(AttributeError):
        _ = fn.cutoff


def test_negative_cost_is_rejected():
    fn = ImpedanceFunction("cumulative_rectangular", 10.0)
    with pytest.raises(ValueError):
        evaluate(fn, -1.0)
    with pytest.raises(ValueError):
        evaluate_array(fn, [1.0, float("nan")])
