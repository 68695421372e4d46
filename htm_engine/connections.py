import copy
import logging
from dataclasses import dataclass
from statistics import fmean, pstdev
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)

import numpy as np

from .errors import InvalidHandleError
from .parameters import Parameters, check_parameters
from .pool import Pool
from .topology import Topology

logger = logging.getLogger(__name__)

# Constants
EPSILON = 0.00001  # Tolerance when comparing permanences against thresholds


# ===== Records =====

@dataclass
class Segment:
    """Distal segment record. ``flat_idx`` is its handle."""

    flat_idx: int
    cell: int
    ordinal: int
    last_used_iteration: int


@dataclass
class Synapse:
    """Distal synapse record. ``handle`` doubles as the creation ordinal."""

    handle: int
    segment: int
    presynaptic_cell: int
    permanence: float


# ===== Connections =====

class Connections:
    """Single owner of a model's columns, cells, segments and synapses.

    Columns and cells are plain integer indices fixed at construction. Distal
    segments and synapses live in side tables keyed by integer handles:

    - cell -> segment flat indices
    - segment flat index -> synapse handles
    - presynaptic cell -> synapse handles (the receptor index)

    Proximal connectivity is one ``Pool`` per column, mirrored in dense
    ``potential_pools`` and connected matrices for fast overlap computation.
    """

    def __init__(self, parameters: Optional[Parameters] = None) -> None:
        params = copy.deepcopy(parameters) if parameters is not None else Parameters()
        self.parameters: Parameters = check_parameters(params)

        self.input_topology = Topology(self.parameters.input_dimensions)
        self.column_topology = Topology(self.parameters.column_dimensions)
        self.num_inputs: int = self.input_topology.size
        self.num_columns: int = self.column_topology.size
        self.cells_per_column: int = self.parameters.cells_per_column
        self.num_cells: int = self.num_columns * self.cells_per_column

        self.random = np.random.default_rng(self.parameters.seed)

        # Proximal side / spatial pooler bookkeeping
        self.pools: List[Optional[Pool]] = [None] * self.num_columns
        self.potential_pools = np.zeros((self.num_columns, self.num_inputs), dtype=bool)
        self._connected_matrix = np.zeros((self.num_columns, self.num_inputs), dtype=bool)
        self.connected_counts = np.zeros(self.num_columns, dtype=np.int64)
        self.overlap_duty_cycles = np.zeros(self.num_columns, dtype=np.float64)
        self.active_duty_cycles = np.zeros(self.num_columns, dtype=np.float64)
        self.min_overlap_duty_cycles = np.zeros(self.num_columns, dtype=np.float64)
        self.min_active_duty_cycles = np.zeros(self.num_columns, dtype=np.float64)
        self.boost_factors = np.ones(self.num_columns, dtype=np.float64)
        self.overlaps = np.zeros(self.num_columns, dtype=np.float64)
        self.boosted_overlaps = np.zeros(self.num_columns, dtype=np.float64)
        self.pa_overlaps = np.zeros(self.num_columns, dtype=np.float64)
        self.inhibition_radius: int = 0
        self.iteration_num: int = 0

        # Distal side
        self._segments_for_cell: List[List[int]] = [[] for _ in range(self.num_cells)]
        self._segment_for_flat_idx: List[Optional[Segment]] = []
        self._free_flat_idxs: List[int] = []
        self._next_flat_idx: int = 0
        self._next_segment_ordinal: int = 0
        self._synapses: Dict[int, Synapse] = {}
        self._synapses_for_segment: Dict[int, List[int]] = {}
        self._receptors: Dict[int, Set[int]] = {}
        self._next_synapse_handle: int = 0
        self._num_synapses: int = 0
        self.tm_iteration: int = 0

        # Temporal memory state carried between cycles
        self.active_cells: Set[int] = set()
        self.winner_cells: Set[int] = set()
        self.predictive_cells: Set[int] = set()
        self.active_segments: List[int] = []
        self.matching_segments: List[int] = []
        self.num_active_connected_synapses_for_segment = np.zeros(0, dtype=np.int64)
        self.num_active_potential_synapses_for_segment = np.zeros(0, dtype=np.int64)

    def __repr__(self) -> str:
        return (
            f"Connections(columns={self.num_columns}, cells={self.num_cells}, "
            f"segments={self.num_segments()}, synapses={self.num_synapses()})"
        )

    # ----- index helpers -----

    def _check_cell(self, cell: int) -> int:
        if cell < 0 or cell >= self.num_cells:
            raise InvalidHandleError(f"Cell {cell} outside of [0, {self.num_cells}).")
        return int(cell)

    def _check_column(self, column: int) -> int:
        if column < 0 or column >= self.num_columns:
            raise InvalidHandleError(f"Column {column} outside of [0, {self.num_columns}).")
        return int(column)

    def column_for_cell(self, cell: int) -> int:
        return self._check_cell(cell) // self.cells_per_column

    def cells_for_column(self, column: int) -> List[int]:
        start = self._check_column(column) * self.cells_per_column
        return list(range(start, start + self.cells_per_column))

    def columns_for_cells(self, cells: Iterable[int]) -> Set[int]:
        return {self.column_for_cell(cell) for cell in cells}

    # ===== Proximal pools =====

    def create_pool(self, column: int, potential: Iterable[int]) -> Pool:
        """Attach a potential pool to a column, replacing any existing one."""
        column = self._check_column(column)
        pool = Pool(column, np.fromiter(potential, dtype=np.int64))
        if len(pool.potential) and (pool.potential[0] < 0 or pool.potential[-1] >= self.num_inputs):
            raise InvalidHandleError(f"Potential pool of column {column} references unknown inputs.")
        self.pools[column] = pool
        self.potential_pools[column, :] = False
        self.potential_pools[column, pool.potential] = True
        self._connected_matrix[column, :] = False
        self.connected_counts[column] = 0
        return pool

    def get_pool(self, column: int) -> Pool:
        pool = self.pools[self._check_column(column)]
        if pool is None:
            raise InvalidHandleError(f"Column {column} has no proximal pool yet.")
        return pool

    def get_potential(self, column: int) -> np.ndarray:
        return self.get_pool(column).potential

    def get_permanences(self, column: int) -> np.ndarray:
        """Dense copy of a column's proximal permanences."""
        return self.get_pool(column).dense_permanences(self.num_inputs)

    def set_proximal_permanences(self, column: int, permanences: np.ndarray) -> None:
        """Store a dense permanence row and refresh the connected bookkeeping."""
        pool = self.get_pool(column)
        threshold = self.parameters.syn_perm_connected - EPSILON
        pool.update(permanences, threshold)
        row = np.zeros(self.num_inputs, dtype=bool)
        row[pool.connected_indices()] = True
        self._connected_matrix[column, :] = row
        self.connected_counts[column] = pool.connected_count

    def get_connected(self, column: int) -> np.ndarray:
        return np.flatnonzero(self._connected_matrix[self._check_column(column)])

    def compute_proximal_overlaps(self, input_vector: np.ndarray) -> np.ndarray:
        """Connected synapses on active input bits, per column."""
        return self._connected_matrix.dot(np.asarray(input_vector, dtype=np.int64))

    # ===== Distal segments =====

    def create_segment(self, cell: int) -> int:
        """Allocate a distal segment on ``cell`` and return its flat index.

        The least recently used segment is evicted first when the cell is full.
        """
        cell = self._check_cell(cell)
        while len(self._segments_for_cell[cell]) >= self.parameters.max_segments_per_cell:
            lru = min(
                self._segments_for_cell[cell],
                key=lambda s: self._segment_for_flat_idx[s].last_used_iteration,
            )
            logger.debug("Evicting segment %d from cell %d", lru, cell)
            self.destroy_segment(lru)

        if self._free_flat_idxs:
            flat_idx = self._free_flat_idxs.pop()
        else:
            flat_idx = self._next_flat_idx
            self._segment_for_flat_idx.append(None)
            self._next_flat_idx += 1

        segment = Segment(
            flat_idx=flat_idx,
            cell=cell,
            ordinal=self._next_segment_ordinal,
            last_used_iteration=self.tm_iteration,
        )
        self._next_segment_ordinal += 1
        self._segment_for_flat_idx[flat_idx] = segment
        self._synapses_for_segment[flat_idx] = []
        self._segments_for_cell[cell].append(flat_idx)
        return flat_idx

    def destroy_segment(self, segment: int) -> None:
        record = self.data_for_segment(segment)
        for handle in list(self._synapses_for_segment[segment]):
            self._remove_synapse(handle)
        del self._synapses_for_segment[segment]
        self._segments_for_cell[record.cell].remove(segment)
        self._segment_for_flat_idx[segment] = None
        self._free_flat_idxs.append(segment)

    def data_for_segment(self, segment: int) -> Segment:
        if segment < 0 or segment >= self._next_flat_idx or self._segment_for_flat_idx[segment] is None:
            raise InvalidHandleError(f"Segment {segment} does not exist.")
        return self._segment_for_flat_idx[segment]

    def segment_for_flat_idx(self, flat_idx: int) -> Optional[Segment]:
        if 0 <= flat_idx < self._next_flat_idx:
            return self._segment_for_flat_idx[flat_idx]
        return None

    def segments_for_cell(self, cell: int) -> List[int]:
        return list(self._segments_for_cell[self._check_cell(cell)])

    def cell_for_segment(self, segment: int) -> int:
        return self.data_for_segment(segment).cell

    def column_for_segment(self, segment: int) -> int:
        return self.cell_for_segment(segment) // self.cells_per_column

    def segment_sort_key(self, segment: int) -> Tuple[int, int]:
        record = self.data_for_segment(segment)
        return record.cell, record.ordinal

    def record_segment_activity(self, segment: int) -> None:
        self.data_for_segment(segment).last_used_iteration = self.tm_iteration

    def start_new_iteration(self) -> None:
        self.tm_iteration += 1

    def least_used_cell(self, cells: Iterable[int]) -> int:
        """Random pick among the cells holding the fewest segments."""
        candidates: List[int] = []
        fewest = None
        for cell in sorted(cells):
            count = len(self._segments_for_cell[self._check_cell(cell)])
            if fewest is None or count < fewest:
                fewest = count
                candidates = [cell]
            elif count == fewest:
                candidates.append(cell)
        if not candidates:
            raise ValueError("least_used_cell needs at least one cell.")
        return candidates[int(self.random.integers(len(candidates)))]

    @property
    def next_flat_idx(self) -> int:
        return self._next_flat_idx

    @property
    def free_flat_indices(self) -> List[int]:
        return list(self._free_flat_idxs)

    def num_segments(self, cell: Optional[int] = None) -> int:
        if cell is not None:
            return len(self._segments_for_cell[self._check_cell(cell)])
        return self._next_flat_idx - len(self._free_flat_idxs)

    def live_segments(self) -> List[int]:
        return [s.flat_idx for s in self._segment_for_flat_idx if s is not None]

    # ===== Distal synapses =====

    def create_synapse(self, segment: int, presynaptic_cell: int, permanence: float) -> int:
        """Add a synapse to ``segment`` and return its handle.

        When the segment is full its weakest synapse is replaced; on equal
        permanence the oldest one goes.
        """
        self.data_for_segment(segment)
        presynaptic_cell = self._check_cell(presynaptic_cell)
        synapses = self._synapses_for_segment[segment]
        while len(synapses) >= self.parameters.max_synapses_per_segment:
            weakest = synapses[0]
            min_perm = self._synapses[weakest].permanence
            for handle in synapses[1:]:
                perm = self._synapses[handle].permanence
                if perm < min_perm - EPSILON:
                    weakest, min_perm = handle, perm
            logger.debug("Evicting synapse %d (permanence %.3f) from segment %d",
                         weakest, min_perm, segment)
            self._remove_synapse(weakest)

        handle = self._next_synapse_handle
        self._next_synapse_handle += 1
        self._synapses[handle] = Synapse(
            handle=handle,
            segment=segment,
            presynaptic_cell=presynaptic_cell,
            permanence=min(1.0, max(0.0, float(permanence))),
        )
        synapses.append(handle)
        self._receptors.setdefault(presynaptic_cell, set()).add(handle)
        self._num_synapses += 1
        return handle

    def _remove_synapse(self, handle: int) -> Synapse:
        synapse = self.data_for_synapse(handle)
        receptors = self._receptors[synapse.presynaptic_cell]
        receptors.discard(handle)
        if not receptors:
            del self._receptors[synapse.presynaptic_cell]
        self._synapses_for_segment[synapse.segment].remove(handle)
        del self._synapses[handle]
        self._num_synapses -= 1
        return synapse

    def destroy_synapse(self, synapse: int) -> None:
        """Remove a synapse; its segment goes too once it has none left."""
        removed = self._remove_synapse(synapse)
        if not self._synapses_for_segment[removed.segment]:
            self.destroy_segment(removed.segment)

    def data_for_synapse(self, synapse: int) -> Synapse:
        try:
            return self._synapses[synapse]
        except KeyError:
            raise InvalidHandleError(f"Synapse {synapse} does not exist.") from None

    def update_synapse_permanence(self, synapse: int, permanence: float) -> None:
        self.data_for_synapse(synapse).permanence = min(1.0, max(0.0, float(permanence)))

    def synapses_for_segment(self, segment: int) -> List[int]:
        self.data_for_segment(segment)
        return list(self._synapses_for_segment[segment])

    def synapses_for_presynaptic_cell(self, cell: int) -> Set[int]:
        return set(self._receptors.get(self._check_cell(cell), ()))

    def presynaptic_cells_for_segment(self, segment: int) -> Set[int]:
        return {self._synapses[h].presynaptic_cell for h in self.synapses_for_segment(segment)}

    def num_synapses(self, segment: Optional[int] = None) -> int:
        if segment is not None:
            self.data_for_segment(segment)
            return len(self._synapses_for_segment[segment])
        return self._num_synapses

    # ===== Activity =====

    def compute_activity(
        self,
        active_cells: Iterable[int],
        connected_permanence: float,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Per flat index: (connected active synapses, potential active synapses)."""
        num_active_connected = np.zeros(self._next_flat_idx, dtype=np.int64)
        num_active_potential = np.zeros(self._next_flat_idx, dtype=np.int64)
        threshold = connected_permanence - EPSILON
        for cell in active_cells:
            for handle in self._receptors.get(cell, ()):
                synapse = self._synapses[handle]
                num_active_potential[synapse.segment] += 1
                if synapse.permanence >= threshold:
                    num_active_connected[synapse.segment] += 1
        return num_active_connected, num_active_potential

    def clear_temporal_state(self) -> None:
        self.active_cells = set()
        self.winner_cells = set()
        self.predictive_cells = set()
        self.active_segments = []
        self.matching_segments = []

    def print_stats(self) -> None:
        """Print mean/std/min/max of the distal graph and the column bookkeeping."""
        def describe(values: List[float]) -> Tuple[float, float, float, float]:
            if not values:
                return 0.0, 0.0, 0.0, 0.0
            std_val = pstdev(values) if len(values) > 1 else 0.0
            return fmean(values), std_val, min(values), max(values)

        def format_metric(label: str, stats: Tuple[float, float, float, float], precision: str = ".3f") -> str:
            mean_val, std_val, min_val, max_val = (format(v, precision) for v in stats)
            return f"| {label:<22}| {mean_val:>8} ± {std_val:<8}| {min_val:>8} | {max_val:>8} |"

        segments_per_cell = [len(segments) for segments in self._segments_for_cell]
        synapses_per_segment = [len(handles) for handles in self._synapses_for_segment.values()]
        permanences = [syn.permanence for syn in self._synapses.values()]

        table_lines = [
            "+------------------------+--------------------+----------+----------+",
            "| Metric                 |   Mean ± Std      |      Min |      Max |",
            "+------------------------+--------------------+----------+----------+",
            format_metric("Segments per cell", describe(segments_per_cell), ".2f"),
            format_metric("Synapses per segment", describe(synapses_per_segment), ".2f"),
            format_metric("Permanence", describe(permanences)),
            format_metric("Column duty cycle", describe(self.active_duty_cycles.tolist())),
            format_metric("Boost factor", describe(self.boost_factors.tolist())),
            "+------------------------+--------------------+----------+----------+",
        ]
        print("Connections statistics:")
        print(f"  segments={self.num_segments()} synapses={self.num_synapses()} "
              f"free flat indices={len(self._free_flat_idxs)}")
        for line in table_lines:
            print(line)
