"""
Unit tests for the per-column proximal Pool.
"""
import numpy as np
import pytest
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from htm_engine.errors import InvalidHandleError
from htm_engine.pool import Pool


def make_pool():
    return Pool(column=3, potential=np.array([5, 1, 3, 7]))


def test_potential_is_sorted_and_starts_empty():
    pool = make_pool()
    assert pool.potential.tolist() == [1, 3, 5, 7]
    assert len(pool) == 0
    assert pool.connected_count == 0


def test_set_permanence_tracks_connected_state():
    pool = make_pool()
    pool.set_permanence(1, 0.6, connected_threshold=0.5)
    pool.set_permanence(3, 0.4, connected_threshold=0.5)
    assert pool.is_connected(1)
    assert not pool.is_connected(3)
    assert pool.connected_count == 1

    pool.set_permanence(3, 0.55, connected_threshold=0.5)
    pool.set_permanence(1, 0.2, connected_threshold=0.5)
    assert pool.connected_indices() == [3]


def test_zero_permanence_removes_synapse():
    pool = make_pool()
    pool.set_permanence(5, 0.7, connected_threshold=0.5)
    pool.set_permanence(5, 0.0, connected_threshold=0.5)
    assert len(pool) == 0
    assert pool.permanence(5) == 0.0
    assert not pool.is_connected(5)


def test_permanence_clipped_to_one():
    pool = make_pool()
    pool.set_permanence(3, 2.5, connected_threshold=0.1)
    assert pool.permanence(3) == 1.0
    assert pool.is_connected(3)

    dense = np.zeros(8)
    dense[[1, 5]] = [1.7, 0.5]
    pool.update(dense, connected_threshold=0.1)
    assert pool.permanence(1) == 1.0
    assert pool.permanence(5) == pytest.approx(0.5)
    assert pool.dense_permanences(8).max() <= 1.0


def test_input_outside_potential_pool_rejected():
    pool = make_pool()
    with pytest.raises(InvalidHandleError):
        pool.set_permanence(2, 0.5, connected_threshold=0.5)


def test_dense_and_sparse_views():
    pool = make_pool()
    dense = np.zeros(8)
    dense[[1, 3, 5, 7]] = [0.2, 0.0, 0.6, 0.9]
    dense[2] = 0.8  # outside the potential pool, ignored
    pool.update(dense, connected_threshold=0.5)

    assert len(pool) == 3
    assert pool.connected_indices() == [5, 7]
    indices, values = pool.sparse_permanences()
    assert indices.tolist() == [1, 5, 7]
    assert values.tolist() == pytest.approx([0.2, 0.6, 0.9])

    back = pool.dense_permanences(8)
    assert back[2] == 0.0
    assert back[[1, 3, 5, 7]].tolist() == pytest.approx([0.2, 0.0, 0.6, 0.9])
