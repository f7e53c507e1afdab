"""Circular traversal over the comments of the latest review.

The navigator owns its entry list and index; both change only through
``rebuild``, ``next``, ``previous`` and ``select_by_value``. It knows
nothing about how a selection is shown.
"""

from __future__ import annotations

import logging

from difflens_core.aggregate import filter_file_comments
from difflens_core.models import NavigationEntry, ReviewResult

logger = logging.getLogger(__name__)


class CommentNavigator:
    def __init__(self) -> None:
        self._entries: list[NavigationEntry] = []
        self._index = -1  # -1: nothing selected

    @property
    def entries(self) -> list[NavigationEntry]:
        return list(self._entries)

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> NavigationEntry | None:
        if 0 <= self._index < len(self._entries):
            return self._entries[self._index]
        return None

    def rebuild(self, result: ReviewResult, min_severity: int = 1) -> None:
        """Flatten ``result`` in display order and clear the selection."""
        self._entries = [
            NavigationEntry(
                file_path=file.target,
                line=comment.line,
                comment_text=comment.comment,
                adjustment=comment.proposed_adjustment,
            )
            for file in filter_file_comments(result.file_comments, min_severity)
            for comment in file.comments
        ]
        self._index = -1

    def next(self) -> NavigationEntry | None:
        if not self._entries:
            logger.info("No comments available for navigation")
            return None
        self._index = (self._index + 1) % len(self._entries)
        return self._entries[self._index]

    def previous(self) -> NavigationEntry | None:
        if not self._entries:
            logger.info("No comments available for navigation")
            return None
        self._index = len(self._entries) - 1 if self._index <= 0 else self._index - 1
        return self._entries[self._index]

    def select_by_value(self, file_path: str, line: int, comment_text: str) -> NavigationEntry | None:
        """Select the first entry matching all three values; unselect if none does."""
        target = NavigationEntry(file_path=file_path, line=line, comment_text=comment_text)
        self._index = next((i for i, entry in enumerate(self._entries) if entry == target), -1)
        return self.current

    def position_label(self) -> str:
        """``"k/n"`` for the current selection, or ``"-/n"`` when none."""
        if self.current is None:
            return f"-/{self.count}"
        return f"{self._index + 1}/{self.count}"
