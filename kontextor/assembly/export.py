"""
Context export and zone metrics.

Formats an assembled context for copying out of the application and reports
per-zone token usage against the configured budgets.
"""

from typing import Any, Dict, Iterable, List, Optional

from ..config import config
from ..core.tokens import estimate_tokens
from ..models import Block, Zone, ZONE_ORDER, ContextMessage
from .assembler import assemble_context, extract_system_prompt, group_by_zone

EXPORT_FORMATS = ("plain", "markdown", "xml")

WARNING_PERCENT = 80
DANGER_PERCENT = 95


def format_plain(messages: List[ContextMessage]) -> str:
    return "\n\n---\n\n".join(f"[{m.role.upper()}]\n{m.content}" for m in messages)


def format_markdown(messages: List[ContextMessage]) -> str:
    return "\n\n---\n\n".join(f"## {m.role.capitalize()}\n\n{m.content}" for m in messages)


def format_xml(messages: List[ContextMessage]) -> str:
    return "\n\n".join(f"<{m.role}>\n{m.content}\n</{m.role}>" for m in messages)


def export_context(
    blocks: List[Block],
    fmt: str = "plain",
    include_placeholder: bool = True
) -> Dict[str, Any]:
    """
    Render a workspace's resolved blocks as copyable text.

    Unlike a model request, the export shows the active system prompt as the
    first message so the full context is visible.

    Args:
        blocks: Resolved blocks of the workspace
        fmt: One of "plain", "markdown" or "xml"
        include_placeholder: Append a placeholder prompt as the last message

    Returns:
        Dictionary with the text, its token estimate, the format and the block count

    Raises:
        ValueError: If the format is unknown
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format '{fmt}', expected one of {EXPORT_FORMATS}")

    prompt = config.prompt_placeholder if include_placeholder else ""
    messages = assemble_context(blocks, prompt)
    if not include_placeholder:
        messages = messages[:-1]

    system_prompt = extract_system_prompt(blocks)
    if system_prompt:
        messages.insert(0, ContextMessage(role="system", content=system_prompt))

    if fmt == "markdown":
        text = format_markdown(messages)
    elif fmt == "xml":
        text = format_xml(messages)
    else:
        text = format_plain(messages)

    return {
        "text": text,
        "tokens": estimate_tokens(text),
        "format": fmt,
        "block_count": len(blocks)
    }


def budget_status(tokens: int, budget: int) -> str:
    """Classify usage of a budget as ok, warning or danger."""
    if budget <= 0:
        return "danger" if tokens > 0 else "ok"
    percent = tokens / budget * 100
    if percent > DANGER_PERCENT:
        return "danger"
    if percent > WARNING_PERCENT:
        return "warning"
    return "ok"


def zone_metrics(blocks: Iterable[Block], budgets: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    """
    Compute per-zone token usage for a workspace.

    Draft blocks are counted as blocks but do not use up any budget. Cached
    token counts are used when present, otherwise they are estimated.

    Args:
        blocks: Resolved blocks of the workspace
        budgets: Token budgets keyed by lower-case zone name plus "total"

    Returns:
        Dictionary with a "zones" entry per zone and a "total" entry
    """
    budgets = budgets or config.budgets
    zones: Dict[str, Dict[str, Any]] = {
        zone.value: {"blocks": 0, "tokens": 0, "budget": budgets[zone.value.lower()]}
        for zone in ZONE_ORDER
    }
    total_blocks = 0
    total_tokens = 0

    for block in blocks:
        entry = zones[Zone(block.zone).value]
        entry["blocks"] += 1
        total_blocks += 1
        if block.is_draft:
            continue
        tokens = block.token_count if block.token_count is not None else estimate_tokens(block.content)
        entry["tokens"] += tokens
        total_tokens += tokens

    for entry in zones.values():
        entry["percent_used"] = round(entry["tokens"] / entry["budget"] * 100) if entry["budget"] else 0
        entry["status"] = budget_status(entry["tokens"], entry["budget"])

    total_budget = budgets["total"]
    return {
        "zones": zones,
        "total": {
            "blocks": total_blocks,
            "tokens": total_tokens,
            "budget": total_budget,
            "percent_used": round(total_tokens / total_budget * 100) if total_budget else 0,
            "status": budget_status(total_tokens, total_budget)
        }
    }


def zone_preview(blocks: Iterable[Block]) -> Dict[str, str]:
    """Get the joined content of each zone, in assembly order, without labels."""
    separator = config.assembly_separator
    by_zone = group_by_zone(blocks)
    return {
        zone.value: separator.join(b.content for b in by_zone[zone] if b.content)
        for zone in ZONE_ORDER
    }
