"""
Unit tests for the TemporalMemory.

Covers predicted and bursting columns, segment reinforcement and punishment,
synapse growth, LRU segment recycling, reset and sequence learning.
"""
import pytest
import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from htm_engine.connections import Connections
from htm_engine.errors import InvalidHandleError, InvalidTemporalMemoryParamError
from htm_engine.parameters import Parameters
from htm_engine.temporal_memory import ComputeCycle, TemporalMemory


def make_tm(**overrides):
    params = Parameters(
        input_dimensions=(32,),
        column_dimensions=(32,),
        cells_per_column=4,
        activation_threshold=3,
        min_threshold=2,
        max_new_synapse_count=3,
        initial_permanence=0.21,
        connected_permanence=0.5,
        permanence_increment=0.10,
        permanence_decrement=0.10,
        predicted_segment_decrement=0.0,
        seed=42,
    )
    c = Connections(params.copy(**overrides))
    tm = TemporalMemory()
    tm.init(c)
    return tm, c


def test_init_rejects_negative_thresholds():
    params = Parameters(input_dimensions=(8,), column_dimensions=(8,), cells_per_column=2, min_threshold=-1)
    with pytest.raises(InvalidTemporalMemoryParamError):
        TemporalMemory().init(Connections(params))


def test_out_of_range_column_rejected():
    tm, c = make_tm()
    with pytest.raises(InvalidHandleError):
        tm.compute(c, [32])


def test_burst_unpredicted_column():
    tm, c = make_tm()
    cycle = tm.compute(c, [0])
    assert isinstance(cycle, ComputeCycle)
    assert cycle.active_cells == {0, 1, 2, 3}
    assert len(cycle.winner_cells) == 1
    assert cycle.winner_cells <= {0, 1, 2, 3}
    assert tm.get_active_cells(c) == [0, 1, 2, 3]


def test_zero_active_columns():
    tm, c = make_tm()
    segment = c.create_segment(4)
    for cell in (0, 1, 2, 3):
        c.create_synapse(segment, cell, 0.6)

    tm.compute(c, [0])
    assert tm.get_predictive_cells(c) == [4]

    cycle = tm.compute(c, [])
    assert cycle.active_cells == set()
    assert cycle.winner_cells == set()
    assert cycle.predictive_cells == set()
    assert c.num_synapses(segment) == 4


def test_activate_correctly_predicted_cells():
    tm, c = make_tm()
    segment = c.create_segment(4)
    for cell in (0, 1, 2, 3):
        c.create_synapse(segment, cell, 0.6)

    first = tm.compute(c, [0])
    assert first.predictive_cells == {4}
    assert first.active_segments == [segment]

    second = tm.compute(c, [1])
    assert second.active_cells == {4}
    assert second.winner_cells == {4}


def test_reinforce_correctly_active_segment():
    tm, c = make_tm(max_new_synapse_count=4)
    segment = c.create_segment(5)
    active_syns = [c.create_synapse(segment, cell, 0.5) for cell in (0, 1, 2)]
    inactive_syn = c.create_synapse(segment, 81, 0.5)

    tm.compute(c, [0])
    tm.compute(c, [1])

    for syn in active_syns:
        assert c.data_for_synapse(syn).permanence == pytest.approx(0.6)
    assert c.data_for_synapse(inactive_syn).permanence == pytest.approx(0.4)


def test_no_learning_when_learn_is_false():
    tm, c = make_tm()
    segment = c.create_segment(5)
    syns = [c.create_synapse(segment, cell, 0.5) for cell in (0, 1, 2)]

    tm.compute(c, [0], learn=False)
    tm.compute(c, [1], learn=False)

    assert [c.data_for_synapse(s).permanence for s in syns] == pytest.approx([0.5] * 3)
    assert c.num_segments() == 1
    assert c.tm_iteration == 0


def test_reinforce_selected_matching_segment_in_bursting_column():
    tm, c = make_tm()
    best = c.create_segment(5)
    best_active = [c.create_synapse(best, cell, 0.3) for cell in (0, 1)]
    best_inactive = c.create_synapse(best, 81, 0.3)
    other = c.create_segment(6)
    other_syn = c.create_synapse(other, 0, 0.3)

    tm.compute(c, [0])
    assert tm.get_matching_cells(c) == [5]

    cycle = tm.compute(c, [1])
    assert cycle.active_cells == {4, 5, 6, 7}
    assert cycle.winner_cells == {5}
    for syn in best_active:
        assert c.data_for_synapse(syn).permanence == pytest.approx(0.4)
    assert c.data_for_synapse(best_inactive).permanence == pytest.approx(0.2)
    assert c.data_for_synapse(other_syn).permanence == pytest.approx(0.3)


def test_punish_matching_segments_in_inactive_columns():
    tm, c = make_tm(predicted_segment_decrement=0.08)
    segment = c.create_segment(5)
    active_syns = [c.create_synapse(segment, cell, 0.5) for cell in (0, 1, 2)]
    inactive_syn = c.create_synapse(segment, 81, 0.5)

    tm.compute(c, [0])
    tm.compute(c, [2])

    for syn in active_syns:
        assert c.data_for_synapse(syn).permanence == pytest.approx(0.42)
    assert c.data_for_synapse(inactive_syn).permanence == pytest.approx(0.5)


def test_no_punishment_without_decrement():
    tm, c = make_tm(predicted_segment_decrement=0.0)
    segment = c.create_segment(5)
    syns = [c.create_synapse(segment, cell, 0.5) for cell in (0, 1, 2)]

    tm.compute(c, [0])
    tm.compute(c, [2])

    assert [c.data_for_synapse(s).permanence for s in syns] == pytest.approx([0.5] * 3)


def test_weak_synapse_destroyed_during_reinforcement():
    tm, c = make_tm()
    segment = c.create_segment(5)
    for cell in (0, 1, 2):
        c.create_synapse(segment, cell, 0.5)
    c.create_synapse(segment, 81, 0.09)

    tm.compute(c, [0])
    tm.compute(c, [1])

    assert 81 not in c.presynaptic_cells_for_segment(segment)
    assert c.synapses_for_presynaptic_cell(81) == set()


def test_segment_destroyed_when_punished_to_zero():
    # No growth, so the freed flat index is not handed out again right away
    tm, c = make_tm(predicted_segment_decrement=0.5, max_new_synapse_count=0)
    segment = c.create_segment(5)
    for cell in (0, 1, 2):
        c.create_synapse(segment, cell, 0.4)

    tm.compute(c, [0])
    assert tm.get_matching_cells(c) == [5]
    tm.compute(c, [2])

    assert c.segment_for_flat_idx(segment) is None
    assert c.num_segments() == 0
    assert segment in c.free_flat_indices


def test_new_segment_grows_to_previous_winners():
    tm, c = make_tm()
    first = tm.compute(c, [0])
    prev_winner = next(iter(first.winner_cells))

    second = tm.compute(c, [1])
    winner = next(iter(second.winner_cells))
    segments = c.segments_for_cell(winner)
    assert len(segments) == 1
    synapses = c.synapses_for_segment(segments[0])
    assert len(synapses) == 1
    data = c.data_for_synapse(synapses[0])
    assert data.presynaptic_cell == prev_winner
    assert data.permanence == pytest.approx(0.21)


def test_no_segment_without_previous_winners():
    tm, c = make_tm()
    tm.compute(c, [0, 1, 2])
    assert c.num_segments() == 0


def test_grow_synapses_skips_existing_presynaptic_cells():
    tm, c = make_tm()
    segment = c.create_segment(10)
    c.create_synapse(segment, 1, 0.3)
    tm.grow_synapses(c, {1, 2, 3}, segment, 0.21, 5)
    assert c.presynaptic_cells_for_segment(segment) == {1, 2, 3}
    assert c.num_synapses(segment) == 3


def test_grow_synapses_respects_segment_capacity():
    tm, c = make_tm(max_synapses_per_segment=2)
    segment = c.create_segment(10)
    tm.grow_synapses(c, {0, 1, 2, 3, 4}, segment, 0.21, 5)
    assert c.num_synapses(segment) == 2


def test_recycle_least_recently_used_segment():
    tm, c = make_tm(cells_per_column=1, max_segments_per_cell=2)

    tm.compute(c, [0, 1, 2])
    tm.compute(c, [3])
    first = c.segments_for_cell(3)
    assert len(first) == 1
    assert c.presynaptic_cells_for_segment(first[0]) == {0, 1, 2}

    tm.reset(c)
    tm.compute(c, [4, 5, 6])
    tm.compute(c, [3])
    assert c.num_segments(3) == 2

    tm.reset(c)
    tm.compute(c, [7, 8, 9])
    tm.compute(c, [3])
    segments = c.segments_for_cell(3)
    assert len(segments) == 2
    presynaptic = sorted(sorted(c.presynaptic_cells_for_segment(s)) for s in segments)
    assert presynaptic == [[4, 5, 6], [7, 8, 9]]
    # The evicted segment's flat index was handed to the newest one
    assert first[0] in segments


def test_reset_clears_sequence_state():
    tm, c = make_tm()
    segment = c.create_segment(4)
    for cell in (0, 1, 2, 3):
        c.create_synapse(segment, cell, 0.6)
    tm.compute(c, [0])
    assert c.predictive_cells

    tm.reset(c)
    assert tm.get_active_cells(c) == []
    assert tm.get_winner_cells(c) == []
    assert tm.get_predictive_cells(c) == []
    assert c.active_segments == []
    assert c.matching_segments == []
    assert c.num_segments() == 1


def test_cells_for_columns():
    tm, c = make_tm()
    assert tm.cells_for_columns(c, [2, 0]) == [0, 1, 2, 3, 8, 9, 10, 11]


def test_learns_repeating_sequence():
    """A -> B -> C: after training, presenting A predicts cells in B."""
    tm, c = make_tm(
        column_dimensions=(30,),
        input_dimensions=(30,),
        cells_per_column=4,
        activation_threshold=3,
        min_threshold=3,
        max_new_synapse_count=5,
        initial_permanence=0.6,
    )
    a, b, seq_c = list(range(0, 5)), list(range(5, 10)), list(range(10, 15))

    for _ in range(3):
        tm.reset(c)
        for columns in (a, b, seq_c):
            tm.compute(c, columns, learn=True)

    tm.reset(c)
    cycle = tm.compute(c, a, learn=False)
    assert cycle.predictive_cells
    assert c.columns_for_cells(cycle.predictive_cells) <= set(b)

    cycle = tm.compute(c, b, learn=False)
    assert cycle.active_cells < set(tm.cells_for_columns(c, b))
    assert c.columns_for_cells(cycle.predictive_cells) <= set(seq_c)


def test_learns_continuous_stream_without_resets():
    """A -> B -> C -> A ... with no resets and synapses grown below the connected threshold."""
    tm, c = make_tm(
        column_dimensions=(30,),
        input_dimensions=(30,),
        cells_per_column=4,
        activation_threshold=3,
        min_threshold=3,
        max_new_synapse_count=5,
    )
    assert c.parameters.initial_permanence < c.parameters.connected_permanence
    a, b, seq_c = list(range(0, 5)), list(range(5, 10)), list(range(10, 15))

    # Segments on B grow at 0.21 and gain 0.1 each pass, so only the fourth
    # pass brings them to the connected threshold.
    for _ in range(3):
        for columns in (a, b, seq_c):
            tm.compute(c, columns, learn=True)
    cycle = tm.compute(c, a, learn=True)
    assert cycle.predictive_cells == set()
    tm.compute(c, b, learn=True)
    tm.compute(c, seq_c, learn=True)

    cycle = tm.compute(c, a, learn=False)
    assert c.columns_for_cells(cycle.predictive_cells) == set(b)
    assert len(cycle.predictive_cells) == len(b)
