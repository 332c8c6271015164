"""Deterministic prompt assembly from zone-ordered blocks."""

from .assembler import assemble_context, extract_system_prompt, group_by_zone
from .export import export_context, zone_metrics, zone_preview, EXPORT_FORMATS

__all__ = [
    "assemble_context",
    "extract_system_prompt",
    "group_by_zone",
    "export_context",
    "zone_metrics",
    "zone_preview",
    "EXPORT_FORMATS"
]
