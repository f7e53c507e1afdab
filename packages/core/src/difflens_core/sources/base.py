"""Abstract diff source.

Anything that can name two revisions and produce per-file unified diffs
(GitHub's compare API, a patch file, a local git checkout) implements this
interface. The orchestrator depends on DiffSource, not on a concrete
backend, so sources are swappable without touching the pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from difflens_core.models import ChangedFile, DiffText, ReviewScope


class DiffSource(ABC):
    @abstractmethod
    async def resolve_scope(self, target: str, base: str | None = None) -> ReviewScope:
        """Validate the refs and return the scope to review.

        Raises InvalidRefError when a ref does not exist or both refs
        resolve to the same revision.
        """

    @abstractmethod
    async def list_changed_files(self, scope: ReviewScope) -> list[ChangedFile]:
        """Return the files changed in ``scope`` in a stable order."""

    @abstractmethod
    async def get_diff_text(self, scope: ReviewScope, file: ChangedFile) -> DiffText:
        """Return the unified diff for one file.

        Raises DiffUnavailableError for binary or otherwise unreadable files.
        """
