"""
Tests for fractional position allocation.
"""
import math

from vangraph.positions import (
    BASELINE,
    STEP,
    allocate_position,
    has_room,
    neighbors,
    position_for_index,
    rebalance,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Allocation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_empty_column_gets_baseline():
    """Both neighbours missing → baseline"""
    assert allocate_position(None, None) == BASELINE == 1000.0


def test_append_and_prepend_leave_a_step():
    assert allocate_position(3000.0, None) == 3000.0 + STEP
    assert allocate_position(None, 500.0) == 500.0 - STEP


def test_midpoint_between_neighbours():
    assert allocate_position(1000.0, 2000.0) == 1500.0


def test_insert_into_middle_of_column():
    """[1000, 2000, 3000] at index 1 → 1500"""
    column = [1000.0, 2000.0, 3000.0]
    position = position_for_index(column, 1)
    assert position == 1500.0
    assert sorted(column + [position]) == [1000.0, 1500.0, 2000.0, 3000.0]


def test_empty_column_then_append():
    first = position_for_index([], 0)
    second = position_for_index([first], 1)
    assert (first, second) == (1000.0, 2000.0)


def test_move_to_end_of_other_column():
    """End of [500, 1500] → 2500"""
    assert position_for_index([500.0, 1500.0], 2) == 2500.0


def test_custom_step_and_baseline():
    assert allocate_position(None, None, step=10.0, baseline=5.0) == 5.0
    assert allocate_position(5.0, None, step=10.0, baseline=5.0) == 15.0


def test_negative_positions_are_fine():
    assert allocate_position(None, -1000.0) == -2000.0
    assert allocate_position(-2000.0, -1000.0) == -1500.0


def test_repeated_insert_towards_fixed_below_is_increasing():
    """Always dropping just above the same card keeps order"""
    above, below = 1000.0, 2000.0
    seen = [above]
    for _ in range(30):
        above = allocate_position(above, below)
        seen.append(above)
        assert seen[-2] < above < below
    assert seen == sorted(seen)


def test_result_is_strictly_between_neighbours():
    pairs = [(0.0, 1.0), (-5.0, 5.0), (1000.0, 1000.5), (1e12, 1e12 + 2)]
    for above, below in pairs:
        mid = allocate_position(above, below)
        assert above < mid < below


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Precision exhaustion & rebalancing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_has_room_with_open_ends():
    assert has_room(None, None)
    assert has_room(1000.0, None)
    assert has_room(None, 1000.0)
    assert has_room(1000.0, 2000.0)


def test_has_room_false_for_adjacent_floats():
    above = 1000.0
    below = math.nextafter(above, math.inf)
    assert not has_room(above, below)


def test_bisection_eventually_exhausts():
    above, below = 1000.0, 2000.0
    steps = 0
    while has_room(above, below):
        above = allocate_position(above, below)
        steps += 1
    assert 30 < steps < 100


def test_rebalance_is_evenly_spaced():
    assert rebalance(0) == []
    assert rebalance(3) == [1000.0, 2000.0, 3000.0]
    assert rebalance(2, step=10.0, baseline=0.0) == [0.0, 10.0]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Neighbours
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_neighbors():
    column = [1000.0, 2000.0, 3000.0]
    assert neighbors(column, 0) == (None, 1000.0)
    assert neighbors(column, 1) == (1000.0, 2000.0)
    assert neighbors(column, 3) == (3000.0, None)
    assert neighbors([], 0) == (None, None)


def test_neighbors_clamps_index():
    column = [1000.0, 2000.0]
    assert neighbors(column, -4) == (None, 1000.0)
    assert neighbors(column, 99) == (2000.0, None)
