"""Diff source backed by a multi-file unified diff, e.g. ``git diff > changes.patch``.

The patch is assumed to describe the working tree the review runs in, so
reported line numbers match the files on disk.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from difflens_core.diff_format import split_diff_lines
from difflens_core.errors import DiffUnavailableError, InvalidRefError
from difflens_core.models import ChangedFile, DiffText, FileStatus, ReviewScope
from difflens_core.sources.base import DiffSource

logger = logging.getLogger(__name__)

_GIT_HEADER_RE = re.compile(r"^diff --git a/(.+) b/(.+)$")


@dataclass
class _FilePatch:
    file: ChangedFile
    text: str
    binary: bool = False


def _strip_prefix(path: str) -> str:
    path = path.split("\t", 1)[0].strip()
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def _split_sections(text: str) -> list[list[str]]:
    """Split a multi-file diff into one line list per file."""
    lines = split_diff_lines(text)
    use_git_headers = any(line.startswith("diff --git ") for line in lines)

    sections: list[list[str]] = []
    current: list[str] | None = None
    for i, line in enumerate(lines):
        if use_git_headers:
            starts = line.startswith("diff --git ")
        else:
            next_line = lines[i + 1] if i + 1 < len(lines) else ""
            starts = line.startswith("--- ") and next_line.startswith("+++ ")
        if starts:
            current = []
            sections.append(current)
        if current is not None:
            current.append(line)
    return sections


def _parse_section(lines: list[str]) -> _FilePatch:
    old_path = new_path = None
    previous_path = None
    status = FileStatus.MODIFIED
    binary = False

    match = _GIT_HEADER_RE.match(lines[0].rstrip("\r"))
    if match:
        old_path, new_path = match.group(1), match.group(2)

    for line in lines:
        if line.startswith("@@"):
            break
        line = line.rstrip("\r")
        if line.startswith("new file mode"):
            status = FileStatus.ADDED
        elif line.startswith("deleted file mode"):
            status = FileStatus.DELETED
        elif line.startswith("rename from "):
            status, previous_path = FileStatus.RENAMED, line[len("rename from ") :]
        elif line.startswith("copy from "):
            status, previous_path = FileStatus.COPIED, line[len("copy from ") :]
        elif line.startswith("Binary files ") or line.startswith("GIT binary patch"):
            binary = True
        elif line.startswith("--- "):
            side = line[4:]
            if side.strip() == "/dev/null":
                status = FileStatus.ADDED
            else:
                old_path = _strip_prefix(side)
        elif line.startswith("+++ "):
            side = line[4:]
            if side.strip() == "/dev/null":
                status = FileStatus.DELETED
            else:
                new_path = _strip_prefix(side)

    path = new_path if status != FileStatus.DELETED else (old_path or new_path)
    if not path:
        raise DiffUnavailableError(f"Could not determine the file path from diff header {lines[0]!r}")
    file = ChangedFile(path=path, status=status, previous_path=previous_path)
    return _FilePatch(file=file, text="\n".join(lines), binary=binary)


class PatchDiffSource(DiffSource):
    def __init__(self, text: str, label: str = "patch"):
        self._label = label
        self._patches: dict[str, _FilePatch] = {}
        for section in _split_sections(text):
            try:
                parsed = _parse_section(section)
            except DiffUnavailableError as e:
                logger.warning("Skipping unreadable diff section: %s", e)
                continue
            self._patches[parsed.file.path] = parsed

    @classmethod
    def from_file(cls, path: str) -> PatchDiffSource:
        return cls(Path(path).read_text(encoding="utf-8", errors="replace"), label=path)

    async def resolve_scope(self, target: str | None = None, base: str | None = None) -> ReviewScope:
        target = target or self._label
        base = base or "HEAD"
        if base == target:
            raise InvalidRefError(f"{base} and {target} are the same ref; there is nothing to review.")
        return ReviewScope(base=base, target=target, is_committed=False, is_target_checked_out=True)

    async def list_changed_files(self, scope: ReviewScope) -> list[ChangedFile]:
        return [p.file for p in self._patches.values()]

    async def get_diff_text(self, scope: ReviewScope, file: ChangedFile) -> DiffText:
        patch = self._patches.get(file.path)
        if patch is None:
            raise DiffUnavailableError(f"{file.path} is not part of {self._label}.")
        if patch.binary:
            raise DiffUnavailableError(f"{file.path} is a binary file.")
        if not any(line.startswith("@@") for line in split_diff_lines(patch.text)):
            raise DiffUnavailableError(f"{file.path} has no content changes (mode change or pure rename).")
        return DiffText(file=file, text=patch.text)
