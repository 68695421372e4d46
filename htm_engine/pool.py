from typing import (
    Dict,
    List,
    Set,
    Tuple,
)

import numpy as np

from .errors import InvalidHandleError


class Pool:
    """Proximal synapses of one column, keyed by input bit.

    Only inputs inside the column's potential pool can hold a synapse, and
    stored permanences are clipped to 1. A permanence of zero means the
    synapse does not exist, so trimmed synapses disappear from the sparse
    view instead of lingering at 0.
    """

    def __init__(self, column: int, potential: np.ndarray) -> None:
        self.column: int = column
        self.potential: np.ndarray = np.unique(np.asarray(potential, dtype=np.int64))
        self._potential_set: Set[int] = set(int(i) for i in self.potential)
        self._permanences: Dict[int, float] = {}
        self._connected: Set[int] = set()

    def __len__(self) -> int:
        return len(self._permanences)

    def __repr__(self) -> str:
        return (
            f"Pool(column={self.column}, potential={len(self.potential)}, "
            f"synapses={len(self._permanences)}, connected={len(self._connected)})"
        )

    @property
    def connected_count(self) -> int:
        return len(self._connected)

    def permanence(self, input_index: int) -> float:
        return self._permanences.get(int(input_index), 0.0)

    def is_connected(self, input_index: int) -> bool:
        return int(input_index) in self._connected

    def set_permanence(self, input_index: int, permanence: float, connected_threshold: float) -> None:
        """Create, update or (for permanence <= 0) remove the synapse to one input bit."""
        idx = int(input_index)
        if idx not in self._potential_set:
            raise InvalidHandleError(
                f"Input {idx} is not in the potential pool of column {self.column}."
            )
        if permanence <= 0.0:
            self._permanences.pop(idx, None)
            self._connected.discard(idx)
            return
        permanence = min(1.0, float(permanence))
        self._permanences[idx] = permanence
        if permanence >= connected_threshold:
            self._connected.add(idx)
        else:
            self._connected.discard(idx)

    def update(self, dense_permanences: np.ndarray, connected_threshold: float) -> None:
        """Replace every synapse from a dense permanence row."""
        self._permanences.clear()
        self._connected.clear()
        for idx in self.potential:
            perm = min(1.0, float(dense_permanences[idx]))
            if perm > 0.0:
                self._permanences[int(idx)] = perm
                if perm >= connected_threshold:
                    self._connected.add(int(idx))

    def dense_permanences(self, num_inputs: int) -> np.ndarray:
        dense = np.zeros(num_inputs, dtype=np.float64)
        for idx, perm in self._permanences.items():
            dense[idx] = perm
        return dense

    def sparse_permanences(self) -> Tuple[np.ndarray, np.ndarray]:
        """Sorted input indices of live synapses and their permanences."""
        indices = np.array(sorted(self._permanences), dtype=np.int64)
        values = np.array([self._permanences[i] for i in indices], dtype=np.float64)
        return indices, values

    def connected_indices(self) -> List[int]:
        return sorted(self._connected)
