"""Probes utility functions."""

from probes.utils.serialization import (
    format_state_line,
    format_state_raw,
    format_value,
    truncate_content,
)

__all__ = [
    "format_state_line",
    "format_state_raw",
    "format_value",
    "truncate_content",
]
