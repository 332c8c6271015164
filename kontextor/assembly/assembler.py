"""
Zone-ordered prompt assembly.

Turns a workspace's resolved blocks into the message list sent to the model:
PERMANENT, then STABLE, then WORKING, then any prior turns, then the new
prompt. Identical blocks and order keys always produce byte-identical
messages so the PERMANENT/STABLE prefix stays cacheable across calls.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from ..config import config
from ..models import Block, Zone, ZONE_ORDER, ContextMessage, ConversationMessage


def _sort_key(block: Block):
    # block_id breaks ties between equal order keys
    return (block.order_key, block.block_id)


def extract_system_prompt(
    blocks: Iterable[Block],
    system_prompt_kind: Optional[str] = None
) -> Optional[str]:
    """
    Extract the active system prompt from a workspace's resolved blocks.

    The system-prompt block with the lowest order key in the PERMANENT zone
    wins; any others are ignored.

    Args:
        blocks: Resolved blocks of the workspace
        system_prompt_kind: Kind that marks system prompts (defaults to config value)

    Returns:
        The active system prompt content, or None if there is none
    """
    kind = system_prompt_kind or config.system_prompt_kind
    candidates = sorted(
        (b for b in blocks if b.kind == kind and b.zone == Zone.PERMANENT),
        key=_sort_key
    )
    if not candidates:
        return None
    return candidates[0].content


def group_by_zone(
    blocks: Iterable[Block],
    system_prompt_kind: Optional[str] = None
) -> Dict[Zone, List[Block]]:
    """
    Partition blocks by zone, dropping system prompts, each zone sorted by order key.
    """
    kind = system_prompt_kind or config.system_prompt_kind
    by_zone: Dict[Zone, List[Block]] = {zone: [] for zone in ZONE_ORDER}

    for block in blocks:
        if block.kind == kind:
            continue
        by_zone[Zone(block.zone)].append(block)

    for zone_blocks in by_zone.values():
        zone_blocks.sort(key=_sort_key)

    return by_zone


def _join(blocks: Sequence[Block], separator: str) -> str:
    # Empty content (e.g. a dangling reference) would only add stray separators
    return separator.join(b.content for b in blocks if b.content)


def assemble_context(
    blocks: Iterable[Block],
    prompt: str,
    history: Optional[Sequence[ConversationMessage]] = None,
    system_prompt_kind: Optional[str] = None
) -> List[ContextMessage]:
    """
    Assemble resolved blocks and conversation turns into model messages.

    System-prompt blocks are never included; callers pass the result of
    ``extract_system_prompt`` to the model separately.

    Args:
        blocks: Resolved blocks of the workspace
        prompt: The new user prompt, always the last message
        history: Optional prior turns, kept in their original order and roles
        system_prompt_kind: Kind that marks system prompts (defaults to config value)

    Returns:
        The ordered message list
    """
    separator = config.assembly_separator
    by_zone = group_by_zone(blocks, system_prompt_kind)
    messages: List[ContextMessage] = []

    permanent = _join(by_zone[Zone.PERMANENT], separator)
    if permanent:
        messages.append(ContextMessage(role="system", content=permanent))

    stable = _join(by_zone[Zone.STABLE], separator)
    if stable:
        messages.append(ContextMessage(
            role="user",
            content=f"{config.reference_label}{separator}{stable}"
        ))

    working = _join(by_zone[Zone.WORKING], separator)
    if working:
        messages.append(ContextMessage(
            role="user",
            content=f"{config.working_label}{separator}{working}"
        ))

    for turn in history or []:
        messages.append(ContextMessage(role=turn.role, content=turn.content))

    messages.append(ContextMessage(role="user", content=prompt))
    return messages
