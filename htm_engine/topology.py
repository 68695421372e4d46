from itertools import product
from typing import (
    List,
    Sequence,
)

import numpy as np

from .errors import InvalidParameterError


class Topology:
    """Row-major coordinate math over an N-dimensional grid.

    Used for both the column space and the input space. The last dimension
    varies fastest, so for dimensions ``(2, 3)`` index 4 is coordinate ``(1, 1)``.
    """

    def __init__(self, dimensions: Sequence[int]) -> None:
        dims = [int(d) for d in np.atleast_1d(dimensions)]
        if not dims:
            raise InvalidParameterError("Topology needs at least one dimension.")
        if any(d <= 0 for d in dims):
            raise InvalidParameterError(f"Dimensions must be positive, got {dims}.")
        self.dimensions: List[int] = dims
        self.num_dimensions: int = len(dims)
        self.dimension_multiples: List[int] = self._multiples(dims)
        self.size: int = int(np.prod(dims))

    def __repr__(self) -> str:
        return f"Topology(dimensions={self.dimensions})"

    @staticmethod
    def _multiples(dims: List[int]) -> List[int]:
        multiples = [1] * len(dims)
        for i in range(len(dims) - 2, -1, -1):
            multiples[i] = multiples[i + 1] * dims[i + 1]
        return multiples

    def coordinates_from_index(self, index: int) -> List[int]:
        if index < 0 or index >= self.size:
            raise ValueError(f"Index {index} outside of topology of size {self.size}.")
        coordinates = []
        remainder = int(index)
        for multiple in self.dimension_multiples:
            coordinates.append(remainder // multiple)
            remainder %= multiple
        return coordinates

    def index_from_coordinates(self, coordinates: Sequence[int]) -> int:
        if len(coordinates) != self.num_dimensions:
            raise ValueError(
                f"Expected {self.num_dimensions} coordinates, got {len(coordinates)}."
            )
        index = 0
        for coord, dim, multiple in zip(coordinates, self.dimensions, self.dimension_multiples):
            if coord < 0 or coord >= dim:
                raise ValueError(f"Coordinate {coord} outside of dimension {dim}.")
            index += int(coord) * multiple
        return index

    def neighborhood(self, center: int, radius: int) -> List[int]:
        """Indices within ``radius`` of ``center`` in every dimension, clipped at the edges."""
        center_coords = self.coordinates_from_index(center)
        intervals = []
        for c, d in zip(center_coords, self.dimensions):
            intervals.append(range(max(0, c - radius), min(d - 1, c + radius) + 1))
        return [self.index_from_coordinates(coords) for coords in product(*intervals)]

    def wrapping_neighborhood(self, center: int, radius: int) -> List[int]:
        """Like ``neighborhood`` but wraps around the edges of each dimension.

        A radius wider than a dimension covers that dimension exactly once.
        """
        center_coords = self.coordinates_from_index(center)
        intervals = []
        for c, d in zip(center_coords, self.dimensions):
            stop = min(c - radius + d - 1, c + radius)
            intervals.append([i % d for i in range(c - radius, stop + 1)])
        return [self.index_from_coordinates(coords) for coords in product(*intervals)]
