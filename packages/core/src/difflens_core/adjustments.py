"""Apply a model-proposed code fix to a file's content."""

from __future__ import annotations

import logging

from difflens_core.errors import AdjustmentError
from difflens_core.models import ProposedAdjustment

logger = logging.getLogger(__name__)


def _normalize(text: str) -> str:
    return " ".join(text.split())


def apply_adjustment(content: str, adjustment: ProposedAdjustment, line: int = 0) -> str:
    """Return ``content`` with ``adjustment`` applied.

    With ``start_line`` the replacement covers ``start_line..end_line``
    (``end_line`` defaults to the span of the original code) and the range
    must contain the original code, ignoring whitespace. Without it, the
    occurrence of ``original_code`` closest to ``line`` is replaced.

    Raises AdjustmentError when the original code cannot be located.
    """
    if adjustment.start_line:
        return _replace_range(content, adjustment)

    original = adjustment.original_code
    if not original:
        raise AdjustmentError("Proposed adjustment has no original code to replace.")

    offsets = []
    start = content.find(original)
    while start != -1:
        offsets.append(start)
        start = content.find(original, start + 1)
    if not offsets:
        raise AdjustmentError("Original code not found in file; it may have changed since the review.")

    def distance(offset: int) -> int:
        return abs(content.count("\n", 0, offset) + 1 - line)

    offset = min(offsets, key=distance) if line > 0 else offsets[0]
    if len(offsets) > 1:
        logger.debug("Original code occurs %d times; replacing the one at offset %d", len(offsets), offset)
    return content[:offset] + adjustment.adjusted_code + content[offset + len(original) :]


def _replace_range(content: str, adjustment: ProposedAdjustment) -> str:
    lines = content.splitlines(keepends=True)
    start = adjustment.start_line
    span = max(1, len(adjustment.original_code.splitlines()))
    end = adjustment.end_line or start + span - 1
    if end < start or end > len(lines):
        raise AdjustmentError(f"Line range {start}-{end} is outside the file ({len(lines)} lines).")

    region = "".join(lines[start - 1 : end])
    if _normalize(adjustment.original_code) not in _normalize(region):
        raise AdjustmentError(f"Lines {start}-{end} no longer contain the original code.")

    replacement = adjustment.adjusted_code
    # Keep the line break that terminated the replaced range.
    if region.endswith("\n") and replacement and not replacement.endswith("\n"):
        replacement += "\n"
    return "".join(lines[: start - 1]) + replacement + "".join(lines[end:])
