"""
Unit tests for Parameters and check_parameters.
"""
import pytest
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from htm_engine.errors import InvalidParameterError
from htm_engine.parameters import Parameters, check_parameters


def test_defaults():
    p = Parameters()
    assert p.potential_radius == 16
    assert p.potential_pct == 0.5
    assert p.syn_perm_connected == pytest.approx(0.10)
    assert p.duty_cycle_period == 1000
    assert p.max_boost == pytest.approx(10.0)
    assert p.cells_per_column == 32
    assert p.activation_threshold == 13
    assert p.min_threshold == 10
    assert p.initial_permanence == pytest.approx(0.21)
    assert p.seed == 42


def test_copy_does_not_mutate_original():
    p = Parameters()
    q = p.copy(cells_per_column=4, column_dimensions=(16,))
    assert q.cells_per_column == 4
    assert q.column_dimensions == (16,)
    assert p.cells_per_column == 32
    assert p.column_dimensions == (2048,)


def test_from_dict_round_trip_and_unknown_keys():
    p = Parameters.from_dict({"cells_per_column": 8, "seed": 7})
    assert p.cells_per_column == 8
    assert Parameters.from_dict(p.to_dict()) == p
    with pytest.raises(InvalidParameterError):
        Parameters.from_dict({"cellsPerColumn": 8})


def test_check_parameters_normalises_dimensions():
    p = check_parameters(Parameters(input_dimensions=[8, 8], column_dimensions=[4]))
    assert p.input_dimensions == (8, 8)
    assert p.column_dimensions == (4,)


@pytest.mark.parametrize(
    "overrides",
    [
        {"input_dimensions": (0,)},
        {"column_dimensions": ()},
        {"potential_pct": 0.0},
        {"potential_pct": 1.5},
        {"syn_perm_connected": 1.2},
        {"initial_permanence": -0.1},
        {"duty_cycle_period": 0},
        {"cells_per_column": 0},
        {"max_segments_per_cell": 0},
        {"max_synapses_per_segment": 0},
        {"syn_perm_min": 0.8, "syn_perm_max": 0.2},
        {"syn_perm_below_stimulus_inc": 0.0},
        {"syn_perm_below_stimulus_inc": -0.01},
    ],
)
def test_check_parameters_rejects_invalid_values(overrides):
    with pytest.raises(InvalidParameterError):
        check_parameters(Parameters(**overrides))


def test_parameter_errors_are_value_errors():
    with pytest.raises(ValueError):
        check_parameters(Parameters(potential_radius=-1))
