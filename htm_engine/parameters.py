import copy
from dataclasses import dataclass, fields, replace
from typing import (
    Any,
    Dict,
    Mapping,
    Tuple,
)

from .errors import InvalidParameterError

"""
 * Parameters shared by the Connections graph, the Spatial Pooler and the
 * Temporal Memory of one model.
 *
 * A model reads them once at construction; Connections keeps its own deep
 * copy so mutating the instance afterwards has no effect on a running model.
"""


@dataclass
class Parameters:

    # ===== Spatial Pooler =====
    input_dimensions: Tuple[int, ...] = (64,)
    """
    * Shape of the input space. Input vectors are flattened row-major.
    """
    column_dimensions: Tuple[int, ...] = (2048,)
    """
    * Shape of the column space. Also defines the topology used for
    * local inhibition.
    """
    potential_radius: int = 16
    """
    * Extent of the input neighborhood around a column's mapped center from
    * which its potential pool is sampled.
    """
    potential_pct: float = 0.5
    """
    * Fraction of the input neighborhood that ends up in the potential pool.
    """
    global_inhibition: bool = False
    """
    * Pick winners from the whole region instead of per local neighborhood.
    """
    local_area_density: float = -1.0
    """
    * Desired density of active columns inside an inhibition area.
    * Values <= 0 mean "derive from num_active_columns_per_inh_area".
    """
    num_active_columns_per_inh_area: int = 10
    """
    * Alternative to local_area_density: target number of winners per
    * inhibition area.
    """
    stimulus_threshold: float = 0
    """
    * Minimum overlap for a column to take part in inhibition.
    """
    syn_perm_inactive_dec: float = 0.008
    syn_perm_active_inc: float = 0.05
    syn_perm_connected: float = 0.10
    syn_perm_below_stimulus_inc: float = 0.01
    syn_perm_trim_threshold: float = 0.025
    """
    * Proximal permanences at or below this value are removed from the pool.
    """
    syn_perm_min: float = 0.0
    syn_perm_max: float = 1.0
    min_pct_overlap_duty_cycles: float = 0.001
    min_pct_active_duty_cycles: float = 0.001
    duty_cycle_period: int = 1000
    max_boost: float = 10.0
    wrap_around: bool = True
    """
    * Whether the input neighborhood wraps around the input space edges.
    """
    update_period: int = 50
    """
    * Iterations between inhibition radius and min duty cycle refreshes.
    """
    init_connected_pct: float = 0.5

    # ===== Temporal Memory =====
    cells_per_column: int = 32
    activation_threshold: int = 13
    """
    * Connected active synapses needed for a distal segment to be active.
    """
    min_threshold: int = 10
    """
    * Potential active synapses needed for a distal segment to be matching.
    """
    max_new_synapse_count: int = 20
    max_segments_per_cell: int = 255
    max_synapses_per_segment: int = 255
    initial_permanence: float = 0.21
    connected_permanence: float = 0.5
    permanence_increment: float = 0.10
    permanence_decrement: float = 0.10
    predicted_segment_decrement: float = 0.0

    seed: int = 42
    """
    * Seed for the model's random generator. Two models with the same seed and
    * parameters produce identical results.
    """

    def copy(self, **overrides: Any) -> "Parameters":
        """Return a copy with the given fields replaced."""
        return replace(copy.deepcopy(self), **overrides)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Parameters":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidParameterError(f"Unknown parameters: {', '.join(unknown)}")
        return cls(**dict(values))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidParameterError(f"{name} must be in [0, 1], got {value}")


def check_parameters(parameters: Parameters) -> Parameters:
    """Validate and normalise a parameter set, returning it."""
    args = parameters
    args.input_dimensions = tuple(int(d) for d in args.input_dimensions)
    args.column_dimensions = tuple(int(d) for d in args.column_dimensions)

    if not args.input_dimensions or any(d <= 0 for d in args.input_dimensions):
        raise InvalidParameterError(f"Invalid input dimensions {args.input_dimensions}")
    if not args.column_dimensions or any(d <= 0 for d in args.column_dimensions):
        raise InvalidParameterError(f"Invalid column dimensions {args.column_dimensions}")

    if args.potential_radius < 0:
        raise InvalidParameterError("potential_radius must be >= 0")
    if not 0.0 < args.potential_pct <= 1.0:
        raise InvalidParameterError(f"potential_pct must be in (0, 1], got {args.potential_pct}")
    if args.syn_perm_min > args.syn_perm_max:
        raise InvalidParameterError("syn_perm_min must not exceed syn_perm_max")

    for name in (
        "syn_perm_connected",
        "syn_perm_trim_threshold",
        "init_connected_pct",
        "initial_permanence",
        "connected_permanence",
        "permanence_increment",
        "permanence_decrement",
        "predicted_segment_decrement",
        "min_pct_overlap_duty_cycles",
        "min_pct_active_duty_cycles",
    ):
        _check_unit_interval(name, getattr(args, name))

    if args.syn_perm_below_stimulus_inc <= 0.0:
        raise InvalidParameterError(
            f"syn_perm_below_stimulus_inc must be positive, got {args.syn_perm_below_stimulus_inc}"
        )
    if args.duty_cycle_period <= 0:
        raise InvalidParameterError("duty_cycle_period must be positive")
    if args.update_period <= 0:
        raise InvalidParameterError("update_period must be positive")
    if args.cells_per_column <= 0:
        raise InvalidParameterError("cells_per_column must be positive")
    if args.max_segments_per_cell <= 0:
        raise InvalidParameterError("max_segments_per_cell must be positive")
    if args.max_synapses_per_segment <= 0:
        raise InvalidParameterError("max_synapses_per_segment must be positive")

    return args
