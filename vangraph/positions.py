"""
Fractional positions for drag-and-drop ordering.

A new card gets a position strictly between its two neighbours, so a move
writes exactly one row. Repeated bisection between the same two cards runs out
of float precision eventually; has_room() detects that and rebalance() gives a
fresh evenly spaced numbering for the column.
"""
from typing import List, Optional, Sequence, Tuple

BASELINE = 1000.0   # position of the first card in an empty column
STEP = 1000.0       # gap left when appending or prepending


def allocate_position(
    above: Optional[float],
    below: Optional[float],
    step: float = STEP,
    baseline: float = BASELINE,
) -> float:
    """Position that sorts strictly between ``above`` and ``below``.

    ``above=None`` means insert at the start of the column, ``below=None``
    means insert at the end, both None means the column is empty.
    """
    if above is None and below is None:
        return baseline
    if above is None:
        return below - step
    if below is None:
        return above + step
    return (above + below) / 2


def has_room(above: Optional[float], below: Optional[float]) -> bool:
    """False once the midpoint of two neighbours collapses onto one of them."""
    if above is None or below is None:
        return True
    mid = (above + below) / 2
    return above < mid < below


def neighbors(positions: Sequence[float], index: int) -> Tuple[Optional[float], Optional[float]]:
    """(above, below) for inserting at ``index`` into sorted ``positions``."""
    index = max(0, min(index, len(positions)))
    above = positions[index - 1] if index > 0 else None
    below = positions[index] if index < len(positions) else None
    return above, below


def position_for_index(
    positions: Sequence[float],
    index: int,
    step: float = STEP,
    baseline: float = BASELINE,
) -> float:
    above, below = neighbors(positions, index)
    return allocate_position(above, below, step=step, baseline=baseline)


def rebalance(count: int, step: float = STEP, baseline: float = BASELINE) -> List[float]:
    """Evenly spaced positions for a column of ``count`` cards."""
    return [baseline + i * step for i in range(count)]
