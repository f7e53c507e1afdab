"""Review data models.

Every stage of the pipeline hands these records to the next one read-only.
Attribute names are snake_case; the camelCase names the model is asked to
produce only exist at the JSON boundary (see ``to_dict``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FileStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"


@dataclass(frozen=True)
class ReviewScope:
    """The pair of revisions being compared.

    ``is_committed`` is False when the target is working-tree state rather
    than a ref. ``is_target_checked_out`` tells callers whether reported line
    numbers match the files currently on disk.
    """

    base: str
    target: str
    is_committed: bool = True
    is_target_checked_out: bool = False


@dataclass(frozen=True)
class ChangedFile:
    path: str
    status: FileStatus = FileStatus.MODIFIED
    previous_path: str | None = None  # rename/copy source


@dataclass(frozen=True)
class DiffText:
    file: ChangedFile
    text: str


@dataclass
class ProposedAdjustment:
    original_code: str
    adjusted_code: str
    description: str
    # Override the comment's own line when the fix spans a different range.
    start_line: int | None = None
    end_line: int | None = None

    def to_dict(self) -> dict:
        data = {
            "originalCode": self.original_code,
            "adjustedCode": self.adjusted_code,
            "description": self.description,
        }
        if self.start_line is not None:
            data["startLine"] = self.start_line
        if self.end_line is not None:
            data["endLine"] = self.end_line
        return data


@dataclass
class ReviewComment:
    """A single review comment as reported by the model.

    ``line`` is 1-based on the target side of the diff. ``0`` is kept as a
    sentinel for "the model gave no reliable location" and is filtered out by
    the presentation layer, not here.
    """

    file: str
    comment: str
    line: int
    severity: int  # 1 (likely irrelevant) .. 5 (critical)
    prompt_type: str | None = None
    proposed_adjustment: ProposedAdjustment | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "file": self.file,
            "line": self.line,
            "comment": self.comment,
            "severity": self.severity,
        }
        if self.prompt_type:
            data["promptType"] = self.prompt_type
        if self.proposed_adjustment is not None:
            data["proposedAdjustment"] = self.proposed_adjustment.to_dict()
        return data


@dataclass
class FileComments:
    target: str
    comments: list[ReviewComment]
    max_severity: int


@dataclass(frozen=True)
class FileError:
    """A per-file failure recorded instead of aborting the run."""

    file: str
    message: str
    kind: str  # exception class name, e.g. "ModelTimeoutError"


@dataclass
class ReviewResult:
    scope: ReviewScope
    file_comments: list[FileComments] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    # Files never started because the run was cancelled.
    pending_files: list[str] = field(default_factory=list)

    @property
    def comment_count(self) -> int:
        return sum(len(f.comments) for f in self.file_comments)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class NavigationEntry:
    file_path: str
    line: int
    comment_text: str
    adjustment: ProposedAdjustment | None = field(default=None, compare=False, hash=False)
