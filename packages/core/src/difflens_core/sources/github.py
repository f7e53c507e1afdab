"""Diff source backed by GitHub's compare API.

PyGithub is synchronous, so every API call runs in a worker thread to keep
the event loop free while the orchestrator waits on it.
"""

from __future__ import annotations

import asyncio
import logging

from github import Github, GithubException

from difflens_core.errors import DiffUnavailableError, InvalidRefError
from difflens_core.models import ChangedFile, DiffText, FileStatus, ReviewScope
from difflens_core.sources.base import DiffSource

logger = logging.getLogger(__name__)

# GitHub reports "removed" and "changed" where git says deleted/modified.
_STATUS_MAP = {
    "added": FileStatus.ADDED,
    "removed": FileStatus.DELETED,
    "modified": FileStatus.MODIFIED,
    "changed": FileStatus.MODIFIED,
    "renamed": FileStatus.RENAMED,
    "copied": FileStatus.COPIED,
}


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


class GitHubDiffSource(DiffSource):
    def __init__(self, repo):
        self._repo = repo
        # Patches fetched by list_changed_files, keyed by (base, target, path).
        self._patches: dict[tuple[str, str, str], str | None] = {}

    @classmethod
    def from_token(cls, repo_name: str, token: str) -> GitHubDiffSource:
        return cls(get_repo(repo_name, token))

    async def resolve_scope(self, target: str, base: str | None = None) -> ReviewScope:
        return await asyncio.to_thread(self._resolve_scope, target, base)

    def _resolve_scope(self, target: str, base: str | None) -> ReviewScope:
        target_commit = self._get_commit(target)
        if base is None:
            # Single-commit review: compare against the first parent.
            if not target_commit.parents:
                raise InvalidRefError(f"{target} is the initial commit and has no parent to compare with.")
            base = base_sha = target_commit.parents[0].sha
        else:
            base_sha = self._get_commit(base).sha

        if base_sha == target_commit.sha:
            raise InvalidRefError(f"{base} and {target} point to the same commit; there is nothing to review.")
        return ReviewScope(base=base, target=target, is_committed=True, is_target_checked_out=False)

    def _get_commit(self, ref: str):
        try:
            return self._repo.get_commit(ref)
        except GithubException as e:
            raise InvalidRefError(f"Ref {ref!r} not found in {self._repo.full_name}.") from e

    async def list_changed_files(self, scope: ReviewScope) -> list[ChangedFile]:
        files = await asyncio.to_thread(self._compare_files, scope)
        changed = []
        for f in files:
            changed.append(
                ChangedFile(
                    path=f.filename,
                    status=_STATUS_MAP.get(f.status, FileStatus.MODIFIED),
                    previous_path=getattr(f, "previous_filename", None),
                )
            )
            self._patches[(scope.base, scope.target, f.filename)] = f.patch
        logger.debug("Compare %s...%s returned %d file(s)", scope.base, scope.target, len(changed))
        return changed

    def _compare_files(self, scope: ReviewScope):
        try:
            # Materialize inside the try; the file list is paginated lazily.
            return list(self._repo.compare(scope.base, scope.target).files)
        except GithubException as e:
            raise InvalidRefError(
                f"Could not compare {scope.base}...{scope.target} in {self._repo.full_name}: {e}"
            ) from e

    async def get_diff_text(self, scope: ReviewScope, file: ChangedFile) -> DiffText:
        key = (scope.base, scope.target, file.path)
        if key not in self._patches:
            try:
                await self.list_changed_files(scope)
            except InvalidRefError as e:
                raise DiffUnavailableError(f"Could not fetch the diff for {file.path}: {e}") from e
        patch = self._patches.get(key)
        if not patch:
            # GitHub omits the patch for binary files and very large diffs.
            raise DiffUnavailableError(f"No textual diff available for {file.path} (binary or too large).")
        return DiffText(file=file, text=patch)
