"""Path segment formatting.

Python attribute names cannot contain hyphens, so route chains spell
`user-profiles` as `user_profiles`. The formatter rewrites such segments
when the URL is built. Numeric segments (path ids) are never touched.
"""

from __future__ import annotations

import re
from typing import Iterable

from fluent_client.models import SegmentStyle

# Decimal integers and floats, optionally signed, with an optional exponent.
_NUMERIC_SEGMENT = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_CAMEL_BOUNDARY = re.compile(r"[-_](\w)")
_PASCAL_BOUNDARY = re.compile(r"(^\w|[-_]\w)")


def is_numeric_segment(segment: str) -> bool:
    """True if the segment reads as a number and must pass through verbatim."""
    return bool(_NUMERIC_SEGMENT.match(segment.strip()))


def format_segment(segment: str, style: SegmentStyle = SegmentStyle.KEBAB_CASE) -> str:
    """Rewrite one path segment according to style.

    Raises:
        ValueError: If segment is empty.
    """
    if not segment:
        raise ValueError("path segments must be non-empty")
    if is_numeric_segment(segment):
        return segment

    if style is SegmentStyle.KEBAB_CASE:
        return segment.replace("_", "-")
    if style is SegmentStyle.SNAKE_CASE:
        return segment
    if style is SegmentStyle.CAMEL_CASE:
        return _CAMEL_BOUNDARY.sub(lambda m: m.group(1).upper(), segment)
    if style is SegmentStyle.PASCAL_CASE:
        return _PASCAL_BOUNDARY.sub(lambda m: m.group(0)[-1].upper(), segment)
    if style is SegmentStyle.DOT_NOTATION:
        return segment.replace("_", ".")
    if style is SegmentStyle.CONSTANT_CASE:
        return segment.upper()
    raise ValueError(f"Unknown segment style: {style!r}")


def build_path(
    segments: Iterable[str],
    style: SegmentStyle = SegmentStyle.KEBAB_CASE,
) -> str:
    """Join formatted segments with single '/' separators (no leading slash)."""
    return "/".join(format_segment(segment, style) for segment in segments)
