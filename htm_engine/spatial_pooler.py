import logging
from typing import (
    List,
    Sequence,
    Union,
)

import numpy as np

from .connections import EPSILON, Connections
from .errors import InputSizeMismatchError, InvalidSpatialPoolerParamError

logger = logging.getLogger(__name__)

InputVector = Union[np.ndarray, Sequence[int]]


class SpatialPooler:
    """Maps binary input vectors onto a sparse set of active columns.

    The pooler keeps no state of its own. Every call receives the model's
    ``Connections``, which holds the pools, duty cycles, boost factors and
    counters, so one pooler instance can serve any number of models.
    """

    # ===== Initialization =====

    def init(self, c: Connections) -> None:
        """Build every column's potential pool and initial permanences."""
        p = c.parameters
        if not (
            p.num_active_columns_per_inh_area > 0
            or 0 < p.local_area_density <= 0.5
        ):
            raise InvalidSpatialPoolerParamError("Inhibition parameters are invalid")
        if c.input_topology.num_dimensions != c.column_topology.num_dimensions:
            raise InvalidSpatialPoolerParamError(
                "Input and column dimensions must have the same number of dimensions, got "
                f"{c.input_topology.dimensions} and {c.column_topology.dimensions}"
            )

        c.boost_factors.fill(1.0)
        c.overlap_duty_cycles.fill(0.0)
        c.active_duty_cycles.fill(0.0)
        c.min_overlap_duty_cycles.fill(0.0)
        c.min_active_duty_cycles.fill(0.0)

        for column in range(c.num_columns):
            potential = self.map_potential(c, column)
            c.create_pool(column, potential)
            permanences = self.init_permanence(c, potential)
            self.update_permanences_for_column(c, permanences, column, raise_perm=True)

        self.update_inhibition_radius(c)
        logger.info(
            "Spatial pooler ready: %d columns over %d inputs, inhibition radius %d",
            c.num_columns, c.num_inputs, c.inhibition_radius,
        )

    def map_column(self, c: Connections, column: int) -> int:
        """Input index at the center of ``column``'s receptive field."""
        column_coords = np.array(c.column_topology.coordinates_from_index(column), dtype=np.float64)
        column_dims = np.array(c.column_topology.dimensions, dtype=np.float64)
        input_dims = np.array(c.input_topology.dimensions, dtype=np.float64)

        ratios = column_coords / column_dims
        input_coords = input_dims * ratios + (input_dims / column_dims) * 0.5
        input_coords = np.clip(input_coords.astype(np.int64), 0, input_dims.astype(np.int64) - 1)
        return c.input_topology.index_from_coordinates([int(x) for x in input_coords])

    def map_potential(self, c: Connections, column: int) -> np.ndarray:
        """Sample the input bits a column may ever connect to.

        The candidates are the inputs within ``potential_radius`` of the
        column's mapped center; ``potential_pct`` of them are kept.
        """
        p = c.parameters
        center = self.map_column(c, column)
        if p.wrap_around:
            neighborhood = c.input_topology.wrapping_neighborhood(center, p.potential_radius)
        else:
            neighborhood = c.input_topology.neighborhood(center, p.potential_radius)

        num_potential = int(len(neighborhood) * p.potential_pct + 0.5)
        selected = c.random.choice(np.array(neighborhood, dtype=np.int64), size=num_potential, replace=False)
        return np.sort(selected)

    def init_permanence(self, c: Connections, potential: np.ndarray) -> np.ndarray:
        """Random dense permanences for a new potential pool.

        Roughly ``init_connected_pct`` of the synapses start just above the
        connected threshold, the rest just below it.
        """
        p = c.parameters
        permanences = np.zeros(c.num_inputs, dtype=np.float64)
        if len(potential) == 0:
            return permanences

        connected = c.random.random(len(potential)) <= p.init_connected_pct
        draws = c.random.random(len(potential))
        values = np.where(
            connected,
            p.syn_perm_connected + (p.syn_perm_max - p.syn_perm_connected) * draws,
            p.syn_perm_connected * draws,
        )
        values = np.floor(values * 100000) / 100000.0
        values[values < p.syn_perm_trim_threshold] = 0.0
        permanences[potential] = values
        return permanences

    # ===== Permanence bookkeeping =====

    def update_permanences_for_column(
        self,
        c: Connections,
        permanences: np.ndarray,
        column: int,
        raise_perm: bool = True,
    ) -> None:
        """Trim, clip and store a column's dense permanence row."""
        p = c.parameters
        mask = c.get_potential(column)
        if raise_perm:
            self.raise_permanence_to_threshold(c, permanences, mask)

        permanences[permanences <= p.syn_perm_trim_threshold] = 0.0
        np.clip(permanences, p.syn_perm_min, p.syn_perm_max, out=permanences)
        c.set_proximal_permanences(column, permanences)

    def raise_permanence_to_threshold(self, c: Connections, permanences: np.ndarray, mask: np.ndarray) -> None:
        """Raise the masked permanences until ``stimulus_threshold`` synapses connect."""
        p = c.parameters
        if len(mask) < p.stimulus_threshold:
            raise InvalidSpatialPoolerParamError(
                "This is likely due to a value of stimulus_threshold that is too large relative "
                f"to the input size. [len(mask) < stimulus_threshold ({len(mask)} < {p.stimulus_threshold})]"
            )

        np.clip(permanences, p.syn_perm_min, p.syn_perm_max, out=permanences)
        threshold = p.syn_perm_connected - EPSILON
        while np.count_nonzero(permanences > threshold) < p.stimulus_threshold:
            permanences[mask] += p.syn_perm_below_stimulus_inc

    # ===== Compute =====

    def compute(self, c: Connections, input_vector: InputVector, learn: bool = True, sparse: bool = False) -> np.ndarray:
        """Run one spatial pooling step and return the active columns, ascending.

        ``input_vector`` is either a dense 0/1 vector of ``num_inputs`` bits, or,
        with ``sparse=True``, the indices of the on bits.
        """
        dense = self.densify(c, input_vector, sparse)

        c.iteration_num += 1

        overlaps = self.calculate_overlap(c, dense)
        c.overlaps = overlaps

        if learn:
            boosted = c.boost_factors * overlaps
        else:
            boosted = overlaps.copy()
        c.boosted_overlaps = boosted

        active_columns = self.inhibit_columns(c, boosted)

        if learn:
            self.adapt_synapses(c, dense, active_columns)
            self.update_duty_cycles(c, overlaps, active_columns)
            self.bump_up_weak_columns(c)
            self.update_boost_factors(c)
            if self.is_update_round(c):
                self.update_inhibition_radius(c)
                self.update_min_duty_cycles(c)

        return np.sort(np.asarray(active_columns, dtype=np.int64))

    def densify(self, c: Connections, input_vector: InputVector, sparse: bool = False) -> np.ndarray:
        if sparse:
            on_bits = np.asarray(input_vector, dtype=np.int64).reshape(-1)
            if on_bits.size and (on_bits.min() < 0 or on_bits.max() >= c.num_inputs):
                raise InputSizeMismatchError(
                    f"Sparse input references bits outside of [0, {c.num_inputs})."
                )
            dense = np.zeros(c.num_inputs, dtype=np.int64)
            dense[on_bits] = 1
            return dense

        dense = np.asarray(input_vector).reshape(-1)
        if dense.size != c.num_inputs:
            raise InputSizeMismatchError(
                f"Input vector has {dense.size} bits, expected {c.num_inputs}."
            )
        return (dense != 0).astype(np.int64)

    def is_update_round(self, c: Connections) -> bool:
        return c.iteration_num % c.parameters.update_period == 0

    def calculate_overlap(self, c: Connections, input_vector: np.ndarray) -> np.ndarray:
        """Connected synapses on active bits per column; sub-threshold overlaps are zeroed."""
        overlaps = c.compute_proximal_overlaps(input_vector).astype(np.float64)
        overlaps[overlaps < c.parameters.stimulus_threshold] = 0.0
        return overlaps

    def calculate_overlap_pct(self, c: Connections, overlaps: np.ndarray) -> np.ndarray:
        """Overlaps as a fraction of each column's connected synapses."""
        counts = c.connected_counts.astype(np.float64)
        return np.divide(overlaps, counts, out=np.zeros_like(counts), where=counts > 0)

    # ===== Inhibition =====

    def inhibit_columns(self, c: Connections, overlaps: np.ndarray) -> List[int]:
        p = c.parameters
        if p.local_area_density > 0:
            density = p.local_area_density
        else:
            inhibition_area = min(
                c.num_columns,
                (2 * c.inhibition_radius + 1) ** c.column_topology.num_dimensions,
            )
            density = min(float(p.num_active_columns_per_inh_area) / inhibition_area, 0.5)

        if p.global_inhibition or c.inhibition_radius > max(c.column_topology.dimensions):
            return self.inhibit_columns_global(c, overlaps, density)
        return self.inhibit_columns_local(c, overlaps, density)

    def inhibit_columns_global(self, c: Connections, overlaps: np.ndarray, density: float) -> List[int]:
        """Top ``density * num_columns`` columns of the whole region.

        Equal scores favour the higher column index.
        """
        num_active = int(density * c.num_columns + EPSILON)
        if num_active <= 0:
            return []
        order = np.argsort(overlaps, kind="stable")
        winners = order[len(order) - num_active:]
        start = 0
        while start < len(winners) and overlaps[winners[start]] < c.parameters.stimulus_threshold:
            start += 1
        return sorted(int(w) for w in winners[start:])

    def inhibit_columns_local(self, c: Connections, overlaps: np.ndarray, density: float) -> List[int]:
        """Each column competes only with the columns in its inhibition neighborhood.

        Columns are visited left to right. A winner's score is nudged up so
        later columns with the same overlap cannot displace it.
        """
        p = c.parameters
        add_to_winners = float(np.max(overlaps)) / 1000.0 if len(overlaps) else 0.0
        if add_to_winners == 0:
            add_to_winners = 0.001
        tie_broken = np.array(overlaps, dtype=np.float64)

        winners = []
        for column in range(c.num_columns):
            overlap = overlaps[column]
            if overlap < p.stimulus_threshold:
                continue
            neighborhood = self.get_column_neighborhood(c, column)
            num_bigger = np.count_nonzero(tie_broken[neighborhood] > overlap)
            num_active = int(0.5 + density * len(neighborhood))
            if num_bigger < num_active:
                winners.append(column)
                tie_broken[column] += add_to_winners
        return winners

    def get_column_neighborhood(self, c: Connections, column: int) -> List[int]:
        if c.parameters.wrap_around:
            return c.column_topology.wrapping_neighborhood(column, c.inhibition_radius)
        return c.column_topology.neighborhood(column, c.inhibition_radius)

    # ===== Learning =====

    def adapt_synapses(self, c: Connections, input_vector: np.ndarray, active_columns: Sequence[int]) -> None:
        """Reinforce active inputs and weaken inactive ones for every winning column."""
        p = c.parameters
        changes = np.full(c.num_inputs, -p.syn_perm_inactive_dec, dtype=np.float64)
        changes[np.flatnonzero(input_vector)] = p.syn_perm_active_inc

        for column in active_columns:
            permanences = c.get_permanences(column)
            mask = c.get_potential(column)
            permanences[mask] += changes[mask]
            self.update_permanences_for_column(c, permanences, column, raise_perm=True)

    def bump_up_weak_columns(self, c: Connections) -> None:
        weak_columns = np.flatnonzero(c.overlap_duty_cycles < c.min_overlap_duty_cycles)
        for column in weak_columns:
            permanences = c.get_permanences(column)
            mask = c.get_potential(column)
            permanences[mask] += c.parameters.syn_perm_below_stimulus_inc
            self.update_permanences_for_column(c, permanences, column, raise_perm=True)

    @staticmethod
    def update_duty_cycles_helper(duty_cycles: np.ndarray, new_input: np.ndarray, period: int) -> np.ndarray:
        """Moving average: ``(duty_cycle * (period - 1) + new_value) / period``."""
        if period < 1:
            raise ValueError(f"Duty cycle period must be >= 1, got {period}")
        return (duty_cycles * (period - 1.0) + new_input) / period

    def update_duty_cycles(self, c: Connections, overlaps: np.ndarray, active_columns: Sequence[int]) -> None:
        period = min(c.parameters.duty_cycle_period, c.iteration_num)

        overlap_array = (overlaps > 0).astype(np.float64)
        active_array = np.zeros(c.num_columns, dtype=np.float64)
        active_array[np.asarray(active_columns, dtype=np.int64)] = 1.0

        c.overlap_duty_cycles = self.update_duty_cycles_helper(c.overlap_duty_cycles, overlap_array, period)
        c.active_duty_cycles = self.update_duty_cycles_helper(c.active_duty_cycles, active_array, period)

    def update_boost_factors(self, c: Connections) -> None:
        """Linear boost from ``max_boost`` at zero activity down to 1 at the minimum duty cycle.

        Columns above their minimum active duty cycle are not boosted.
        """
        active = c.active_duty_cycles
        minimum = c.min_active_duty_cycles
        if not np.any(minimum > 0):
            return

        max_boost = c.parameters.max_boost
        divisor = np.where(minimum != 0, minimum, 1.0)
        boost = (1.0 - max_boost) / divisor * active + max_boost
        boost[active > minimum] = 1.0
        c.boost_factors = boost

    def update_min_duty_cycles(self, c: Connections) -> None:
        if c.parameters.global_inhibition or c.inhibition_radius > c.num_inputs:
            self.update_min_duty_cycles_global(c)
        else:
            self.update_min_duty_cycles_local(c)

    def update_min_duty_cycles_global(self, c: Connections) -> None:
        p = c.parameters
        c.min_overlap_duty_cycles.fill(p.min_pct_overlap_duty_cycles * c.overlap_duty_cycles.max())
        c.min_active_duty_cycles.fill(p.min_pct_active_duty_cycles * c.active_duty_cycles.max())

    def update_min_duty_cycles_local(self, c: Connections) -> None:
        p = c.parameters
        for column in range(c.num_columns):
            neighborhood = self.get_column_neighborhood(c, column)
            c.min_overlap_duty_cycles[column] = (
                p.min_pct_overlap_duty_cycles * c.overlap_duty_cycles[neighborhood].max()
            )
            c.min_active_duty_cycles[column] = (
                p.min_pct_active_duty_cycles * c.active_duty_cycles[neighborhood].max()
            )

    # ===== Inhibition radius =====

    def update_inhibition_radius(self, c: Connections) -> None:
        """Estimate how many columns a column competes with.

        Derived from the average span of connected inputs per column, scaled
        by how many columns there are per input.
        """
        if c.parameters.global_inhibition:
            c.inhibition_radius = int(max(c.column_topology.dimensions))
            return

        spans = [self.avg_connected_span_for_column(c, column) for column in range(c.num_columns)]
        diameter = float(np.mean(spans)) * self.avg_columns_per_input(c)
        radius = max(1.0, (diameter - 1) / 2.0)
        c.inhibition_radius = int(radius + 0.5)
        logger.debug("Inhibition radius updated to %d", c.inhibition_radius)

    def avg_columns_per_input(self, c: Connections) -> float:
        column_dims = np.array(c.column_topology.dimensions, dtype=np.float64)
        input_dims = np.array(c.input_topology.dimensions, dtype=np.float64)
        return float(np.mean(column_dims / input_dims))

    def avg_connected_span_for_column(self, c: Connections, column: int) -> float:
        connected = c.get_connected(column)
        if len(connected) == 0:
            return 0.0
        coords = np.array([c.input_topology.coordinates_from_index(int(i)) for i in connected])
        return float(np.mean(coords.max(axis=0) - coords.min(axis=0) + 1))

    # ===== Post-processing =====

    def strip_unlearned_columns(self, c: Connections, active_columns: Sequence[int]) -> np.ndarray:
        """Drop columns that have never been active while learning."""
        return np.array(
            [col for col in active_columns if c.active_duty_cycles[col] > 0],
            dtype=np.int64,
        )


class PASpatialPooler(SpatialPooler):
    """Prediction-assisted spatial pooler.

    Adds ``c.pa_overlaps`` (typically derived from the temporal memory's
    predicted columns) to the feed-forward overlap before the stimulus
    threshold is applied.
    """

    def calculate_overlap(self, c: Connections, input_vector: np.ndarray) -> np.ndarray:
        overlaps = c.compute_proximal_overlaps(input_vector).astype(np.float64) + c.pa_overlaps
        overlaps[overlaps < c.parameters.stimulus_threshold] = 0.0
        return overlaps
