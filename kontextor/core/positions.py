"""
Fractional order keys.

Blocks are ordered within a workspace zone by a real-valued order key. New
keys are always placed strictly between their neighbours (or beyond the open
end), so inserting or moving a block never touches its siblings.
"""

from typing import List, Optional, Sequence, Tuple


def allocate_between(before: Optional[float], after: Optional[float]) -> float:
    """
    Calculate the order key for a slot between two neighbours.

    Args:
        before: Order key of the preceding block, or None at the start
        after: Order key of the following block, or None at the end

    Returns:
        An order key strictly between the neighbours
    """
    if before is None and after is None:
        # First block in an empty zone
        return 1.0

    if before is None:
        return after / 2

    if after is None:
        return before + 1.0

    return (before + after) / 2


def allocate_at_end(max_order_in_zone: Optional[float]) -> float:
    """Calculate the order key for appending after the last block of a zone."""
    if max_order_in_zone is None:
        return 1.0
    return max_order_in_zone + 1.0


def allocate_at_index(order_keys: Sequence[float], target_index: int) -> float:
    """
    Calculate the order key for dropping a block at an index of a zone.

    Args:
        order_keys: Current order keys of the zone, in any order
        target_index: Index the new block should occupy once sorted

    Returns:
        The new order key
    """
    ordered = sorted(order_keys)

    if not ordered:
        return 1.0

    if target_index <= 0:
        return allocate_between(None, ordered[0])

    if target_index >= len(ordered):
        return allocate_between(ordered[-1], None)

    return allocate_between(ordered[target_index - 1], ordered[target_index])


def allocate_relative_to(
    items: Sequence[Tuple[str, float]],
    target_id: str,
    before: bool
) -> float:
    """
    Calculate the order key for dropping a block next to another block.

    Args:
        items: (block_id, order_key) pairs of the zone
        target_id: The block being dropped on
        before: Drop before the target when True, after it otherwise

    Returns:
        The new order key; appends to the end if the target is unknown
    """
    # Equal keys fall back to block id
    ordered = sorted(items, key=lambda item: (item[1], item[0]))
    index = next((i for i, (item_id, _) in enumerate(ordered) if item_id == target_id), -1)

    if index == -1:
        return allocate_at_end(ordered[-1][1] if ordered else None)

    if before:
        previous_key = ordered[index - 1][1] if index > 0 else None
        return allocate_between(previous_key, ordered[index][1])

    next_key = ordered[index + 1][1] if index < len(ordered) - 1 else None
    return allocate_between(ordered[index][1], next_key)


def needs_renumber(order_keys: Sequence[float], min_gap: float) -> bool:
    """
    Check whether neighbouring order keys have converged too closely.

    Repeated insertion at the same spot halves the gap each time, so after
    enough drops the midpoint can no longer be represented.
    """
    ordered = sorted(order_keys)
    for lower, upper in zip(ordered, ordered[1:]):
        if upper - lower < min_gap:
            return True
    # A key at or near zero leaves no room for "insert at start"
    return bool(ordered) and ordered[0] < min_gap


def renumbered(order_keys: Sequence[float]) -> List[float]:
    """Integer-spaced replacement keys (1.0, 2.0, ...) preserving sorted order."""
    return [float(i) for i in range(1, len(order_keys) + 1)]
