"""
Reference resolution.

Pure functions mapping blocks to their effective content. The store has no
joins, so callers prefetch the distinct canonical blocks (see
``collect_reference_ids``) in one query and pass them in as a lookup; nothing
here does I/O.
"""

import logging
from typing import Iterable, List, Mapping

from ..models import Block


def collect_reference_ids(blocks: Iterable[Block]) -> List[str]:
    """
    Get the distinct canonical ids referenced by a set of blocks.

    Args:
        blocks: Blocks about to be resolved

    Returns:
        Sorted, de-duplicated list of reference ids
    """
    return sorted({block.reference_id for block in blocks if block.reference_id is not None})


def resolve_one(block: Block, canonical_lookup: Mapping[str, Block]) -> str:
    """
    Resolve a single block's effective content.

    A regular block resolves to its own content. A linked block resolves to
    its canonical's content, or to an empty string when the canonical no
    longer exists.

    Args:
        block: The block to resolve
        canonical_lookup: Prefetched canonical blocks keyed by block id

    Returns:
        The effective content
    """
    if block.reference_id is None:
        return block.content

    canonical = canonical_lookup.get(block.reference_id)
    if canonical is None:
        logging.warning(
            f"Dangling reference: block {block.block_id} points at missing block {block.reference_id}"
        )
        return ""
    return canonical.content


def resolve_many(blocks: Iterable[Block], canonical_lookup: Mapping[str, Block]) -> List[Block]:
    """
    Resolve content for a list of blocks.

    Returns copies with ``content`` replaced by the effective content; order
    and every other field (including ``reference_id``) are preserved and the
    input blocks are left untouched.
    """
    return [
        block.model_copy(update={"content": resolve_one(block, canonical_lookup)})
        for block in blocks
    ]
