"""Severity-based triage ordering.

Comments are sorted worst-first within a file, and files are sorted by
their worst comment, so the most serious problems surface first. Both sorts
are stable: ties keep the order in which comments were reported and files
were aggregated.
"""

from __future__ import annotations

from collections.abc import Iterable

from difflens_core.models import FileComments, ReviewComment


def sort_file_comments_by_severity(raw: Iterable[tuple[str, list[ReviewComment]]]) -> list[FileComments]:
    """Build severity-ordered FileComments from ``(target, comments)`` pairs.

    Files with no comments are dropped. If a target appears twice, a later
    non-empty comment list replaces the earlier one but keeps its original
    position. A later empty list leaves the earlier entry alone.
    """
    by_target: dict[str, FileComments] = {}
    for target, comments in raw:
        ordered = sorted(comments, key=lambda c: c.severity, reverse=True)
        if not ordered:
            continue
        by_target[target] = FileComments(target=target, comments=ordered, max_severity=ordered[0].severity)

    return sorted(by_target.values(), key=lambda f: f.max_severity, reverse=True)


def filter_comments(comments: Iterable[ReviewComment], min_severity: int) -> list[ReviewComment]:
    """Keep comments at or above ``min_severity`` that have a usable line."""
    return [c for c in comments if c.severity >= min_severity and c.line > 0]


def filter_file_comments(file_comments: Iterable[FileComments], min_severity: int) -> list[FileComments]:
    """Apply ``filter_comments`` per file, dropping files left empty."""
    filtered = []
    for file in file_comments:
        kept = filter_comments(file.comments, min_severity)
        if kept:
            filtered.append(FileComments(target=file.target, comments=kept, max_severity=kept[0].severity))
    return filtered
