"""Review orchestration.

Drives format → prompt → model → parse for every changed file and streams
the run back to the caller as an async sequence of events:

    ProgressEvent*  FileResultEvent*  ...  (ReviewCompletedEvent | ReviewCancelledEvent)

Files are processed one at a time in the order the diff source returned
them. A failure in one file is recorded in ``ReviewResult.errors`` and the
run moves on; only a failure to list the changed files aborts the request.
Cancellation is checked between files (and raced against the model call),
and a cancelled run still delivers everything gathered so far.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from difflens_core.aggregate import filter_comments, sort_file_comments_by_severity
from difflens_core.cancellation import CancellationSignal
from difflens_core.diff_format import format_diff
from difflens_core.errors import DifflensError, OracleCancelledError, PromptTooLargeError
from difflens_core.models import (
    ChangedFile,
    FileComments,
    FileError,
    FileStatus,
    ReviewComment,
    ReviewResult,
    ReviewScope,
)
from difflens_core.oracles.base import BaseOracle
from difflens_core.parsing import parse_response
from difflens_core.prompt import build_review_prompt
from difflens_core.sources.base import DiffSource
from difflens_core.utils.code import is_code_file, is_excluded

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ReviewOptions:
    min_severity: int = 1
    custom_rules: str = ""
    exclude: tuple[str, ...] = ()
    skip_non_code: bool = True
    max_prompt_chars: int = 100_000

    @classmethod
    def from_config(cls, config: dict, custom_rules: str = "") -> ReviewOptions:
        return cls(
            min_severity=config.get("min_severity", 1),
            custom_rules=custom_rules,
            exclude=tuple(config.get("exclude") or ()),
            skip_non_code=config.get("skip_non_code", True),
            max_prompt_chars=config.get("max_prompt_chars", 100_000),
        )


@dataclass(frozen=True)
class ProgressEvent:
    message: str


@dataclass(frozen=True)
class FileResultEvent:
    """One file's comments, already sorted and filtered for display."""

    file_comments: FileComments


@dataclass(frozen=True)
class ReviewCompletedEvent:
    result: ReviewResult


@dataclass(frozen=True)
class ReviewCancelledEvent:
    partial_result: ReviewResult


ReviewEvent = Union[ProgressEvent, FileResultEvent, ReviewCompletedEvent, ReviewCancelledEvent]


@dataclass
class _RunAccumulator:
    """Mutable state of one run; owned by the orchestrator until finalized."""

    scope: ReviewScope
    raw: list[tuple[str, list[ReviewComment]]] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    last_progress: str = ""

    def progress(self, message: str) -> ProgressEvent | None:
        # Consecutive duplicates are suppressed.
        if not message or message == self.last_progress:
            return None
        self.last_progress = message
        return ProgressEvent(message)

    def finalize(self) -> ReviewResult:
        return ReviewResult(
            scope=self.scope,
            file_comments=sort_file_comments_by_severity(self.raw),
            errors=list(self.errors),
            skipped_files=list(self.skipped),
            pending_files=list(self.pending),
        )


class ReviewOrchestrator:
    def __init__(self, source: DiffSource, oracle: BaseOracle, options: ReviewOptions | None = None):
        self._source = source
        self._oracle = oracle
        self._options = options or ReviewOptions()
        self._state = RunState.IDLE
        self._signal = CancellationSignal()
        self._last_result: ReviewResult | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def last_result(self) -> ReviewResult | None:
        """The most recent finalized result (completed or cancelled)."""
        return self._last_result

    def cancel(self) -> None:
        """Request cancellation of the current run. Safe to call at any time."""
        if self._state == RunState.RUNNING and not self._signal.is_cancelled:
            logger.info("Cancellation requested")
        self._signal.cancel()

    async def run(
        self,
        scope: ReviewScope,
        change_description: str | None = None,
        on_event: Callable[[ReviewEvent], None] | None = None,
    ) -> ReviewResult:
        """Drain ``start_review`` and return the final (possibly partial) result."""
        result: ReviewResult | None = None
        async for event in self.start_review(scope, change_description):
            if on_event is not None:
                on_event(event)
            if isinstance(event, ReviewCompletedEvent):
                result = event.result
            elif isinstance(event, ReviewCancelledEvent):
                result = event.partial_result
        if result is None:
            raise RuntimeError("Review stream ended without a terminal event")
        return result

    async def start_review(self, scope: ReviewScope, change_description: str | None = None) -> AsyncIterator[ReviewEvent]:
        """Review every changed file in ``scope``, yielding events as they happen.

        Raises whatever the diff source raises if the changed files cannot
        be listed; nothing has been processed at that point.
        """
        if self._state == RunState.RUNNING:
            raise RuntimeError("A review is already running")
        self._state = RunState.RUNNING
        self._signal = CancellationSignal()
        run = _RunAccumulator(scope=scope)

        try:
            files = await self._source.list_changed_files(scope)
        except Exception:
            self._state = RunState.FAILED
            logger.exception("Could not list changed files for %s...%s", scope.base, scope.target)
            raise

        total = len(files)
        logger.info("Reviewing %d changed file(s) in %s...%s", total, scope.base, scope.target)

        state = RunState.CANCELLED  # unless the loop below says otherwise
        try:
            for index, file in enumerate(files):
                if self._signal.is_cancelled:
                    run.pending.extend(f.path for f in files[index:])
                    break

                event = run.progress(f"Reviewing {file.path} ({index + 1}/{total})...")
                if event:
                    yield event

                try:
                    comments = await self._review_file(scope, file, run, change_description)
                except OracleCancelledError:
                    run.pending.extend(f.path for f in files[index:])
                    break

                if comments:
                    run.raw.append((file.path, comments))
                    file_event = self._file_event(file.path, comments)
                    if file_event:
                        yield file_event

                event = run.progress(f"Processed {index + 1}/{total} files...")
                if event:
                    yield event
            else:
                state = RunState.COMPLETED
        except Exception:
            state = RunState.FAILED
            raise
        finally:
            # Reached with CANCELLED also when the consumer closes the stream early.
            result = run.finalize()
            self._last_result = result
            self._state = state

        if state == RunState.CANCELLED:
            logger.info("Review cancelled with %d comment(s) gathered", result.comment_count)
            yield ReviewCancelledEvent(partial_result=result)
        else:
            logger.info(
                "Review completed: %d comment(s), %d error(s), %d skipped",
                result.comment_count,
                len(result.errors),
                len(result.skipped_files),
            )
            yield ReviewCompletedEvent(result=result)

    async def _review_file(
        self,
        scope: ReviewScope,
        file: ChangedFile,
        run: _RunAccumulator,
        change_description: str | None,
    ) -> list[ReviewComment]:
        """Run the pipeline for one file; failures are recorded, not raised.

        OracleCancelledError is the one exception that escapes, so the
        caller can stop the run.
        """
        if self._should_skip(file):
            logger.debug("Skipping %s", file.path)
            run.skipped.append(file.path)
            return []

        try:
            diff = await self._source.get_diff_text(scope, file)
            prompt = build_review_prompt(format_diff(diff), self._options.custom_rules, change_description)
            if len(prompt) > self._options.max_prompt_chars:
                raise PromptTooLargeError(
                    f"Prompt for {file.path} is {len(prompt)} characters, "
                    f"over the limit of {self._options.max_prompt_chars}."
                )
            raw = await self._oracle.complete(prompt, self._signal)
        except OracleCancelledError:
            raise
        except DifflensError as e:
            logger.warning("Review of %s failed (%s): %s", file.path, type(e).__name__, e)
            run.errors.append(FileError(file=file.path, message=str(e), kind=type(e).__name__))
            return []

        comments = parse_response(raw)
        logger.debug("%s: %d comment(s) parsed", file.path, len(comments))
        return comments

    def _should_skip(self, file: ChangedFile) -> bool:
        if file.status == FileStatus.DELETED:
            # Nothing was added, so there is nothing the rules allow comments on.
            return True
        if is_excluded(file.path, self._options.exclude):
            return True
        return self._options.skip_non_code and not is_code_file(file.path)

    def _file_event(self, target: str, comments: list[ReviewComment]) -> FileResultEvent | None:
        visible = filter_comments(comments, self._options.min_severity)
        if not visible:
            return None
        (file_comments,) = sort_file_comments_by_severity([(target, visible)])
        return FileResultEvent(file_comments)
