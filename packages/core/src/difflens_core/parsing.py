"""Defensive decoding of the model's reply into review comments.

The model is an untrusted text producer: it may prepend reasoning, wrap the
JSON in prose or code fences, or emit elements with missing or mistyped
fields. ``parse_response`` turns any string into zero or more well-formed
``ReviewComment`` records and never raises; a malformed element is dropped
with a warning while its siblings are kept.
"""

from __future__ import annotations

import json
import logging
import math
import re

from difflens_core.models import ProposedAdjustment, ReviewComment
from difflens_core.prompt import REASONING_TAG

logger = logging.getLogger(__name__)

_REASONING_RE = re.compile(rf"<{REASONING_TAG}>[\s\S]*?</{REASONING_TAG}>")
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_DECODER = json.JSONDecoder()

_DEFAULT_LINE = 1
_DEFAULT_SEVERITY = 1  # lowest severity for anything we cannot trust
_MIN_SEVERITY, _MAX_SEVERITY = 1, 5


def parse_response(raw: str) -> list[ReviewComment]:
    """Parse a raw model reply into comments, keeping every well-formed element."""
    if not raw:
        return []

    comments: list[ReviewComment] = []
    for item in parse_json_array(strip_reasoning(raw)):
        try:
            comments.append(parse_comment(item))
        except ValueError as e:
            logger.warning("Failed to parse comment: %s", e)
    return comments


def strip_reasoning(raw: str) -> str:
    return _REASONING_RE.sub("", raw.strip())


def _load_list(text: str) -> list | None:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, list) else None


def parse_json_array(text: str) -> list:
    """Recover a JSON array from text that may be wrapped in prose or fences.

    Tries, in order: the whole text, the first fenced code block, the
    bracket-balanced array starting at each ``[`` in turn (skipping arrays
    that hold no objects), and finally the slice from the first ``[`` to the
    last ``]``. Returns [] if nothing decodes to a list.
    """
    parsed = _load_list(text.strip())
    if parsed is not None:
        return parsed

    # The fence regex stops at the first closing ``` which may sit inside a
    # comment string, so a miss here is not final.
    fence = _FENCE_RE.search(text)
    if fence:
        parsed = _load_list(fence.group(1).strip())
        if parsed is not None:
            return parsed

    start = text.find("[")
    first = start
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        # Skip bracketed prose such as "line [12]" ahead of the real array.
        if isinstance(value, list) and any(isinstance(v, dict) for v in value):
            return value
        start = text.find("[", start + 1)

    end = text.rfind("]")
    if first != -1 and end > first:
        parsed = _load_list(text[first : end + 1])
        if parsed is not None:
            return parsed

    logger.warning("Could not recover a JSON array from model response: %s", text[:200])
    return []


def _is_number(value: object) -> bool:
    # bool is an int subclass; JSON true/false are not line numbers.
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def parse_comment(item: object) -> ReviewComment:
    """Coerce one decoded array element into a ReviewComment.

    Raises ValueError when the element has no usable ``file`` or ``comment``.
    Out-of-range ``line``/``severity`` values fall back to 1; an explicit
    line 0 is kept.
    """
    if not isinstance(item, dict):
        raise ValueError(f"Expected comment object, got {type(item).__name__}")

    file = item.get("file")
    if not isinstance(file, str) or not file:
        raise ValueError(f"Missing `file` field in {json.dumps(item)[:200]}")

    text = item.get("comment")
    if not isinstance(text, str):
        raise ValueError(f"Missing `comment` field in {json.dumps(item)[:200]}")

    line = _DEFAULT_LINE
    raw_line = item.get("line")
    if _is_number(raw_line) and raw_line >= 0:
        line = int(raw_line)

    severity = _DEFAULT_SEVERITY
    raw_severity = item.get("severity")
    if _is_number(raw_severity) and _MIN_SEVERITY <= raw_severity <= _MAX_SEVERITY:
        severity = int(raw_severity)

    prompt_type = item.get("promptType")

    return ReviewComment(
        file=file,
        comment=text.strip(),
        line=line,
        severity=severity,
        prompt_type=prompt_type if isinstance(prompt_type, str) and prompt_type else None,
        proposed_adjustment=_parse_adjustment(item.get("proposedAdjustment")),
    )


def _parse_adjustment(raw: object) -> ProposedAdjustment | None:
    """Return the adjustment, or None if it is absent or malformed."""
    if not isinstance(raw, dict):
        return None
    original = raw.get("originalCode")
    adjusted = raw.get("adjustedCode")
    description = raw.get("description")
    if not (isinstance(original, str) and isinstance(adjusted, str) and isinstance(description, str)):
        logger.debug("Dropping malformed proposedAdjustment: %s", json.dumps(raw)[:200])
        return None

    adjustment = ProposedAdjustment(original_code=original, adjusted_code=adjusted, description=description)
    start_line = raw.get("startLine")
    if _is_number(start_line) and start_line >= 1:
        adjustment.start_line = int(start_line)
    end_line = raw.get("endLine")
    if _is_number(end_line) and end_line >= 1:
        adjustment.end_line = int(end_line)
    return adjustment
