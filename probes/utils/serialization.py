"""Serialization utilities for the console sinks.

Helper functions for turning probe states into single log lines.
"""

from datetime import datetime
from typing import Any, Iterable, Mapping

from probes.state import LINE, NS, TAGS, TS


def truncate_content(
    content: str,
    max_length: int = 2000,
    suffix: str = "... [truncated]",
) -> str:
    """Truncate content if it exceeds max length.

    Args:
        content: The content to potentially truncate
        max_length: Maximum allowed length
        suffix: Suffix to append if truncated

    Returns:
        Original content or truncated version with suffix
    """
    if len(content) <= max_length:
        return content
    return content[: max(max_length - len(suffix), 0)] + suffix


def safe_repr(value: Any) -> str:
    """repr() that never raises."""
    try:
        return repr(value)
    except Exception as e:
        return f"<unrepresentable {type(value).__name__}: {e}>"


def format_value(value: Any, max_length: int = 2000) -> str:
    """Format a single state value for a console line.

    Strings are shown as-is, exceptions as Type('message'), everything
    else through repr. Newlines are escaped to keep one event per line.
    """
    if isinstance(value, str):
        text = value
    elif isinstance(value, BaseException):
        text = f"{type(value).__name__}({str(value)!r})"
    elif isinstance(value, (set, frozenset)):
        text = "{" + ", ".join(sorted(safe_repr(v) for v in value)) + "}"
    else:
        text = safe_repr(value)
    text = text.replace("\n", "\\n")
    return truncate_content(text, max_length)


def format_tags(tags: Iterable[str]) -> str:
    """Format tags as a sorted, comma separated set."""
    return "{" + ",".join(sorted(str(t) for t in tags)) + "}"


def format_state_line(
    state: Mapping,
    timestamp_format: str = "%Y-%m-%d %H:%M:%S.%f",
    max_length: int = 2000,
) -> str:
    """Render a state as one human-readable line.

    Layout: "<ts> <ns>:<line> <tags> key=value key=value ...". The
    timestamp, namespace, line and tags are only shown in the prefix.

    Args:
        state: The probe state to render.
        timestamp_format: strftime format for the timestamp.
        max_length: Maximum length of each rendered value.

    Returns:
        The formatted line, without a trailing newline.
    """
    parts = []
    ts = state.get(TS)
    if isinstance(ts, datetime):
        parts.append(ts.strftime(timestamp_format))
    elif ts is not None:
        parts.append(str(ts))

    ns = state.get(NS)
    line = state.get(LINE)
    if ns is not None:
        parts.append(f"{ns}:{line}" if line is not None else str(ns))

    tags = state.get(TAGS)
    if tags:
        parts.append(format_tags(tags))

    for key, value in state.items():
        if key in (TS, NS, LINE, TAGS):
            continue
        parts.append(f"{key}={format_value(value, max_length)}")
    return " ".join(parts)


def format_state_raw(state: Mapping) -> str:
    """Render a state as a structured literal on one line."""
    return safe_repr(dict(state)).replace("\n", "\\n")
