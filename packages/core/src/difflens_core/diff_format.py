"""Line-annotated diff format the model is asked to read.

Every hunk body line is rewritten as ``<LINE NUMBER>\\t<TAG><LINE>``:

    12\\t+added line          line number on the target side
    0\\t-removed line         removed lines have no target-side position
    13\\t context line        line number on the target side

Hunk headers and the file header pass through unchanged so the model can
still read the file path from the diff header. The mapping is what lets a
reported ``line`` be resolved to a real position in the target file, so a
diff that cannot be parsed raises ``DiffFormatError`` instead of producing a
shifted mapping.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from difflens_core.errors import DiffFormatError
from difflens_core.models import ChangedFile, DiffText, FileStatus

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class HunkHeader(NamedTuple):
    old_start: int
    old_count: int
    new_start: int
    new_count: int


def parse_hunk_header(line: str) -> HunkHeader:
    """Parse ``@@ -a,b +c,d @@``; an omitted count means 1."""
    match = _HUNK_HEADER_RE.match(line)
    if match is None:
        raise DiffFormatError(f"Invalid diff hunk header: {line!r}")
    old_start, old_count, new_start, new_count = match.groups()
    return HunkHeader(
        old_start=int(old_start),
        old_count=int(old_count) if old_count is not None else 1,
        new_start=int(new_start),
        new_count=int(new_count) if new_count is not None else 1,
    )


def split_diff_lines(text: str) -> list[str]:
    """Split on LF only. CR, form feeds and Unicode line separators stay part of the line."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _synthesize_header(file: ChangedFile) -> list[str]:
    old_path = file.previous_path or file.path
    old_side = "/dev/null" if file.status == FileStatus.ADDED else f"a/{old_path}"
    new_side = "/dev/null" if file.status == FileStatus.DELETED else f"b/{file.path}"
    return [f"diff --git a/{old_path} b/{file.path}", f"--- {old_side}", f"+++ {new_side}"]


def format_diff(diff: DiffText) -> str:
    """Convert one file's unified diff into the annotated form."""
    lines = split_diff_lines(diff.text)

    first_hunk = next((i for i, line in enumerate(lines) if line.startswith("@@")), None)
    if first_hunk is None:
        raise DiffFormatError(f"No hunks found in diff for {diff.file.path}")

    header = lines[:first_hunk]
    if not any(line.startswith("+++ ") for line in header):
        header = _synthesize_header(diff.file)

    out = list(header)
    new_line = 0
    old_remaining = new_remaining = 0

    for number, raw in enumerate(lines[first_hunk:], first_hunk + 1):
        if raw.startswith("@@"):
            if old_remaining or new_remaining:
                raise DiffFormatError(f"Hunk ending before line {number} is shorter than its header declares")
            hunk = parse_hunk_header(raw)
            new_line = hunk.new_start
            old_remaining, new_remaining = hunk.old_count, hunk.new_count
            out.append(raw)
            continue

        if raw.startswith("\\"):
            # "\ No newline at end of file"
            out.append(raw)
            continue

        if not old_remaining and not new_remaining:
            if not raw.strip():
                continue
            raise DiffFormatError(f"Line {number} lies outside any hunk: {raw!r}")

        tag, content = raw[:1], raw[1:]
        if tag == "+":
            out.append(f"{new_line}\t+{content}")
            new_line += 1
            new_remaining -= 1
        elif tag == "-":
            out.append(f"0\t-{content}")
            old_remaining -= 1
        elif tag in (" ", ""):
            # Some tools strip the leading space from blank context lines.
            out.append(f"{new_line}\t {content}")
            new_line += 1
            old_remaining -= 1
            new_remaining -= 1
        else:
            raise DiffFormatError(f"Unexpected diff line {number}: {raw!r}")

        if old_remaining < 0 or new_remaining < 0:
            raise DiffFormatError(f"Hunk at line {number} is longer than its header declares")

    if old_remaining or new_remaining:
        raise DiffFormatError(f"Diff for {diff.file.path} ends in the middle of a hunk")

    return "\n".join(out)
