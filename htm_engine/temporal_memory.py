import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Dict,
    Iterable,
    List,
    Sequence,
    Set,
    Tuple,
)

import numpy as np

from .connections import EPSILON, Connections
from .errors import InvalidHandleError, InvalidTemporalMemoryParamError

logger = logging.getLogger(__name__)


@dataclass
class ComputeCycle:
    """Result of one temporal memory step."""

    active_cells: Set[int] = field(default_factory=set)
    winner_cells: Set[int] = field(default_factory=set)
    predictive_cells: Set[int] = field(default_factory=set)
    active_segments: List[int] = field(default_factory=list)
    matching_segments: List[int] = field(default_factory=list)


class TemporalMemory:
    """Learns sequences of active columns through distal segments.

    Like the spatial pooler, the state (active/winner cells, active/matching
    segments and the segment activity counts) is kept on ``Connections`` so
    it carries over between calls to ``compute``.
    """

    def init(self, c: Connections) -> None:
        p = c.parameters
        if p.cells_per_column <= 0:
            raise InvalidTemporalMemoryParamError("Number of cells per column must be greater than 0")
        for name in ("activation_threshold", "min_threshold", "max_new_synapse_count"):
            if getattr(p, name) < 0:
                raise InvalidTemporalMemoryParamError(f"{name} must be >= 0")

        c.clear_temporal_state()
        c.num_active_connected_synapses_for_segment = np.zeros(c.next_flat_idx, dtype=np.int64)
        c.num_active_potential_synapses_for_segment = np.zeros(c.next_flat_idx, dtype=np.int64)
        logger.info(
            "Temporal memory ready: %d columns x %d cells",
            c.num_columns, c.cells_per_column,
        )

    def compute(self, c: Connections, active_columns: Iterable[int], learn: bool = True) -> ComputeCycle:
        """Activate cells for this step's columns, then compute next step's predictions."""
        columns = sorted({int(col) for col in active_columns})
        if columns and (columns[0] < 0 or columns[-1] >= c.num_columns):
            raise InvalidHandleError(
                f"Active columns must lie in [0, {c.num_columns}), got {columns[0]}..{columns[-1]}"
            )

        cycle = ComputeCycle()
        self.activate_cells(c, cycle, columns, learn)
        self.activate_dendrites(c, cycle, learn)
        return cycle

    def reset(self, c: Connections) -> None:
        """Forget the current sequence context; learned segments are kept."""
        c.clear_temporal_state()

    # ===== Phase 1: activate cells =====

    def _segments_by_column(self, c: Connections, segments: Sequence[int]) -> Dict[int, List[int]]:
        grouped: Dict[int, List[int]] = defaultdict(list)
        for segment in segments:
            grouped[c.column_for_segment(segment)].append(segment)
        return grouped

    def activate_cells(self, c: Connections, cycle: ComputeCycle, active_columns: List[int], learn: bool) -> None:
        prev_active_cells = c.active_cells
        prev_winner_cells = c.winner_cells

        active_by_column = self._segments_by_column(c, c.active_segments)
        matching_by_column = self._segments_by_column(c, c.matching_segments)
        active_set = set(active_columns)
        columns = sorted(active_set | set(active_by_column) | set(matching_by_column))

        bursting = 0
        for column in columns:
            column_active_segments = active_by_column.get(column, [])
            column_matching_segments = matching_by_column.get(column, [])
            if column in active_set:
                if column_active_segments:
                    cells = self.activate_predicted_column(
                        c, column_active_segments, prev_active_cells, prev_winner_cells, learn
                    )
                    cycle.active_cells.update(cells)
                    cycle.winner_cells.update(cells)
                else:
                    cells, winner = self.burst_column(
                        c, column, column_matching_segments, prev_active_cells, prev_winner_cells, learn
                    )
                    cycle.active_cells.update(cells)
                    cycle.winner_cells.add(winner)
                    bursting += 1
            elif learn:
                self.punish_predicted_column(c, column_matching_segments, prev_active_cells)

        logger.debug("%d of %d active columns burst", bursting, len(active_columns))
        c.active_cells = cycle.active_cells
        c.winner_cells = cycle.winner_cells

    def activate_predicted_column(
        self,
        c: Connections,
        column_active_segments: List[int],
        prev_active_cells: Set[int],
        prev_winner_cells: Set[int],
        learn: bool,
    ) -> List[int]:
        """Activate every cell holding an active segment and reinforce those segments."""
        p = c.parameters
        cells: List[int] = []
        for segment in column_active_segments:
            cell = c.cell_for_segment(segment)
            if not cells or cells[-1] != cell:
                cells.append(cell)

            if learn:
                alive = self.adapt_segment(
                    c, segment, prev_active_cells, p.permanence_increment, p.permanence_decrement
                )
                n_grow = p.max_new_synapse_count - int(c.num_active_potential_synapses_for_segment[segment])
                if alive and n_grow > 0:
                    self.grow_synapses(c, prev_winner_cells, segment, p.initial_permanence, n_grow)
        return cells

    def burst_column(
        self,
        c: Connections,
        column: int,
        column_matching_segments: List[int],
        prev_active_cells: Set[int],
        prev_winner_cells: Set[int],
        learn: bool,
    ) -> Tuple[List[int], int]:
        """Activate all cells of an unpredicted column and pick one winner to learn on."""
        p = c.parameters
        cells = c.cells_for_column(column)

        if column_matching_segments:
            best = max(
                column_matching_segments,
                key=lambda s: c.num_active_potential_synapses_for_segment[s],
            )
            winner = c.cell_for_segment(best)
            if learn:
                alive = self.adapt_segment(
                    c, best, prev_active_cells, p.permanence_increment, p.permanence_decrement
                )
                n_grow = p.max_new_synapse_count - int(c.num_active_potential_synapses_for_segment[best])
                if alive and n_grow > 0:
                    self.grow_synapses(c, prev_winner_cells, best, p.initial_permanence, n_grow)
        else:
            winner = c.least_used_cell(cells)
            if learn:
                n_grow = min(p.max_new_synapse_count, len(prev_winner_cells))
                if n_grow > 0:
                    segment = c.create_segment(winner)
                    self.grow_synapses(c, prev_winner_cells, segment, p.initial_permanence, n_grow)

        return cells, winner

    def punish_predicted_column(
        self,
        c: Connections,
        column_matching_segments: List[int],
        prev_active_cells: Set[int],
    ) -> None:
        """Weaken segments that predicted a column which did not become active."""
        decrement = c.parameters.predicted_segment_decrement
        if decrement > 0.0:
            for segment in column_matching_segments:
                self.adapt_segment(c, segment, prev_active_cells, -decrement, 0.0)

    # ===== Learning =====

    def adapt_segment(
        self,
        c: Connections,
        segment: int,
        prev_active_cells: Set[int],
        permanence_increment: float,
        permanence_decrement: float,
    ) -> bool:
        """Hebbian update of one segment. Returns False if the segment was destroyed."""
        for synapse in c.synapses_for_segment(segment):
            data = c.data_for_synapse(synapse)
            permanence = data.permanence
            if data.presynaptic_cell in prev_active_cells:
                permanence += permanence_increment
            else:
                permanence -= permanence_decrement

            permanence = min(1.0, max(0.0, permanence))
            if permanence < EPSILON:
                c.destroy_synapse(synapse)
            else:
                c.update_synapse_permanence(synapse, permanence)

        return c.segment_for_flat_idx(segment) is not None

    def grow_synapses(
        self,
        c: Connections,
        prev_winner_cells: Set[int],
        segment: int,
        initial_permanence: float,
        n_desired: int,
    ) -> None:
        """Connect ``segment`` to up to ``n_desired`` previous winners it is not yet connected to."""
        existing = c.presynaptic_cells_for_segment(segment)
        candidates = [cell for cell in sorted(prev_winner_cells) if cell not in existing]

        n_actual = min(n_desired, len(candidates))
        for _ in range(n_actual):
            i = int(c.random.integers(len(candidates)))
            c.create_synapse(segment, candidates[i], initial_permanence)
            del candidates[i]

    # ===== Phase 2: activate dendrites =====

    def activate_dendrites(self, c: Connections, cycle: ComputeCycle, learn: bool) -> None:
        p = c.parameters
        num_active_connected, num_active_potential = c.compute_activity(
            cycle.active_cells, p.connected_permanence
        )

        active_segments = [
            int(s) for s in np.flatnonzero(num_active_connected >= p.activation_threshold)
            if c.segment_for_flat_idx(int(s)) is not None
        ]
        matching_segments = [
            int(s) for s in np.flatnonzero(num_active_potential >= p.min_threshold)
            if c.segment_for_flat_idx(int(s)) is not None
        ]
        active_segments.sort(key=c.segment_sort_key)
        matching_segments.sort(key=c.segment_sort_key)

        cycle.active_segments = active_segments
        cycle.matching_segments = matching_segments
        cycle.predictive_cells = {c.cell_for_segment(s) for s in active_segments}

        if learn:
            for segment in active_segments:
                c.record_segment_activity(segment)
            c.start_new_iteration()

        c.active_segments = active_segments
        c.matching_segments = matching_segments
        c.predictive_cells = set(cycle.predictive_cells)
        c.num_active_connected_synapses_for_segment = num_active_connected
        c.num_active_potential_synapses_for_segment = num_active_potential

    # ===== Accessors =====

    def get_active_cells(self, c: Connections) -> List[int]:
        return sorted(c.active_cells)

    def get_winner_cells(self, c: Connections) -> List[int]:
        return sorted(c.winner_cells)

    def get_predictive_cells(self, c: Connections) -> List[int]:
        return sorted(c.predictive_cells)

    def get_matching_cells(self, c: Connections) -> List[int]:
        return sorted({c.cell_for_segment(s) for s in c.matching_segments})

    def cells_for_columns(self, c: Connections, columns: Iterable[int]) -> List[int]:
        cells: List[int] = []
        for column in sorted(set(columns)):
            cells.extend(c.cells_for_column(column))
        return cells
