"""Tests for ReviewOrchestrator.

The diff source and the oracle are replaced with in-memory fakes; the
pipeline in between (format, prompt, parse, aggregate) is real.
"""

import asyncio
import json

import pytest

from difflens_core.errors import DiffUnavailableError, ModelTimeoutError
from difflens_core.models import ChangedFile, DiffText, FileStatus, ReviewScope
from difflens_core.oracles.base import BaseOracle
from difflens_core.orchestrator import (
    FileResultEvent,
    ProgressEvent,
    ReviewCancelledEvent,
    ReviewCompletedEvent,
    ReviewOptions,
    ReviewOrchestrator,
    RunState,
    _RunAccumulator,
)
from difflens_core.sources.base import DiffSource

SCOPE = ReviewScope(base="main", target="feature")


def _reply(path, *severities, line=1):
    return json.dumps([{"file": path, "line": line, "comment": f"issue {s}", "severity": s} for s in severities])


class _FakeSource(DiffSource):
    """Serves a one-line change per file. ``diffs`` overrides the text by path; an Exception value is raised."""

    def __init__(self, files, list_error=None, diffs=None):
        self.files = files
        self.list_error = list_error
        self.diffs = diffs or {}

    async def resolve_scope(self, target, base=None):
        return SCOPE

    async def list_changed_files(self, scope):
        if self.list_error:
            raise self.list_error
        return list(self.files)

    async def get_diff_text(self, scope, file):
        diff = self.diffs.get(file.path)
        if isinstance(diff, Exception):
            raise diff
        if diff is None:
            diff = f"--- a/{file.path}\n+++ b/{file.path}\n@@ -1 +1 @@\n-a\n+b"
        return DiffText(file=file, text=diff)


class _FakeOracle:
    """Answers by file path; an Exception value is raised instead."""

    def __init__(self, replies):
        self.replies = replies
        self.prompts = []

    async def complete(self, prompt, signal=None):
        self.prompts.append(prompt)
        path = next(p for p in self.replies if f"+++ b/{p}" in prompt)
        reply = self.replies[path]
        if isinstance(reply, Exception):
            raise reply
        return reply


class _BlockingOracle(BaseOracle):
    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def _call_api(self, prompt):
        self.started.set()
        await asyncio.Event().wait()


def _files(*paths):
    return [ChangedFile(path=p) for p in paths]


async def _collect(orchestrator, scope=SCOPE, description=None):
    return [event async for event in orchestrator.start_review(scope, description)]


class TestCompletedRun:
    @pytest.mark.asyncio
    async def test_files_sorted_by_max_severity(self):
        oracle = _FakeOracle({"a.ts": _reply("a.ts", 2, 4), "b.ts": _reply("b.ts", 5)})
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts", "b.ts")), oracle)
        events = await _collect(orchestrator)

        final = events[-1]
        assert isinstance(final, ReviewCompletedEvent)
        assert [f.target for f in final.result.file_comments] == ["b.ts", "a.ts"]
        assert [c.severity for c in final.result.file_comments[1].comments] == [4, 2]
        assert orchestrator.state == RunState.COMPLETED
        assert orchestrator.last_result is final.result

    @pytest.mark.asyncio
    async def test_event_sequence(self):
        oracle = _FakeOracle({"a.ts": _reply("a.ts", 3), "b.ts": "[]"})
        events = await _collect(ReviewOrchestrator(_FakeSource(_files("a.ts", "b.ts")), oracle))

        kinds = [type(e).__name__ for e in events]
        assert kinds == [
            "ProgressEvent",
            "FileResultEvent",
            "ProgressEvent",
            "ProgressEvent",
            "ProgressEvent",
            "ReviewCompletedEvent",
        ]
        messages = [e.message for e in events if isinstance(e, ProgressEvent)]
        assert messages == [
            "Reviewing a.ts (1/2)...",
            "Processed 1/2 files...",
            "Reviewing b.ts (2/2)...",
            "Processed 2/2 files...",
        ]

    @pytest.mark.asyncio
    async def test_file_event_filtered_but_result_keeps_everything(self):
        reply = json.dumps(
            [
                {"file": "a.ts", "line": 0, "comment": "somewhere", "severity": 5},
                {"file": "a.ts", "line": 2, "comment": "minor", "severity": 1},
                {"file": "a.ts", "line": 3, "comment": "real", "severity": 3},
            ]
        )
        orchestrator = ReviewOrchestrator(
            _FakeSource(_files("a.ts")), _FakeOracle({"a.ts": reply}), ReviewOptions(min_severity=2)
        )
        events = await _collect(orchestrator)

        (file_event,) = [e for e in events if isinstance(e, FileResultEvent)]
        assert [c.comment for c in file_event.file_comments.comments] == ["real"]
        assert orchestrator.last_result.comment_count == 3

    @pytest.mark.asyncio
    async def test_custom_rules_and_description_reach_prompt(self):
        oracle = _FakeOracle({"a.ts": "[]"})
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts")), oracle, ReviewOptions(custom_rules="- No eval"))
        await _collect(orchestrator, description="Adds login")
        assert "- No eval" in oracle.prompts[0]
        assert "Adds login" in oracle.prompts[0]
        assert "1\t+b" in oracle.prompts[0]

    @pytest.mark.asyncio
    async def test_run_returns_result_and_forwards_events(self):
        seen = []
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts")), _FakeOracle({"a.ts": _reply("a.ts", 3)}))
        result = await orchestrator.run(SCOPE, on_event=seen.append)
        assert result.comment_count == 1
        assert isinstance(seen[-1], ReviewCompletedEvent)

    @pytest.mark.asyncio
    async def test_no_changed_files(self):
        events = await _collect(ReviewOrchestrator(_FakeSource([]), _FakeOracle({})))
        assert len(events) == 1
        assert events[0].result.file_comments == []


class TestPerFileFailures:
    @pytest.mark.asyncio
    async def test_timeout_recorded_and_run_continues(self):
        oracle = _FakeOracle(
            {
                "a.ts": _reply("a.ts", 2),
                "c.ts": ModelTimeoutError("no reply within 120s"),
                "d.ts": _reply("d.ts", 3),
            }
        )
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts", "c.ts", "d.ts")), oracle)
        result = (await _collect(orchestrator))[-1].result

        assert [f.target for f in result.file_comments] == ["d.ts", "a.ts"]
        (error,) = result.errors
        assert error.file == "c.ts"
        assert error.kind == "ModelTimeoutError"
        assert orchestrator.state == RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_unparseable_reply_contributes_nothing(self):
        oracle = _FakeOracle({"a.ts": "Sorry, I can't help with that.", "b.ts": _reply("b.ts", 1)})
        result = (await _collect(ReviewOrchestrator(_FakeSource(_files("a.ts", "b.ts")), oracle)))[-1].result
        assert [f.target for f in result.file_comments] == ["b.ts"]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_corrupt_diff_recorded_and_next_file_reviewed(self):
        source = _FakeSource(_files("a.ts", "b.ts"), diffs={"a.ts": "--- a/a.ts\n+++ b/a.ts\n@@ -1,3 +1,3 @@\n-a"})
        oracle = _FakeOracle({"b.ts": _reply("b.ts", 4)})
        orchestrator = ReviewOrchestrator(source, oracle)
        result = (await _collect(orchestrator))[-1].result

        (error,) = result.errors
        assert (error.file, error.kind) == ("a.ts", "DiffFormatError")
        assert [f.target for f in result.file_comments] == ["b.ts"]
        assert len(oracle.prompts) == 1
        assert orchestrator.state == RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_unavailable_diff_recorded_and_run_continues(self):
        source = _FakeSource(
            _files("a.ts", "b.ts", "c.ts"), diffs={"b.ts": DiffUnavailableError("No textual diff available for b.ts")}
        )
        oracle = _FakeOracle({"a.ts": _reply("a.ts", 2), "c.ts": _reply("c.ts", 5)})
        orchestrator = ReviewOrchestrator(source, oracle)
        result = (await _collect(orchestrator))[-1].result

        (error,) = result.errors
        assert (error.file, error.kind) == ("b.ts", "DiffUnavailableError")
        assert [f.target for f in result.file_comments] == ["c.ts", "a.ts"]
        assert orchestrator.state == RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_oversized_prompt_recorded_as_error(self):
        orchestrator = ReviewOrchestrator(
            _FakeSource(_files("a.ts")), _FakeOracle({"a.ts": "[]"}), ReviewOptions(max_prompt_chars=100)
        )
        result = (await _collect(orchestrator))[-1].result
        assert result.errors[0].kind == "PromptTooLargeError"

    @pytest.mark.asyncio
    async def test_skipped_files_never_reach_model(self):
        files = [
            ChangedFile(path="gone.ts", status=FileStatus.DELETED),
            ChangedFile(path="logo.png"),
            ChangedFile(path="migrations/0001.py"),
            ChangedFile(path="a.ts"),
        ]
        oracle = _FakeOracle({"a.ts": "[]"})
        orchestrator = ReviewOrchestrator(_FakeSource(files), oracle, ReviewOptions(exclude=("migrations/",)))
        result = (await _collect(orchestrator))[-1].result
        assert result.skipped_files == ["gone.ts", "logo.png", "migrations/0001.py"]
        assert len(oracle.prompts) == 1

    @pytest.mark.asyncio
    async def test_listing_failure_aborts_request(self):
        orchestrator = ReviewOrchestrator(_FakeSource([], list_error=DiffUnavailableError("compare failed")), _FakeOracle({}))
        with pytest.raises(DiffUnavailableError):
            await _collect(orchestrator)
        assert orchestrator.state == RunState.FAILED


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_first_file(self):
        oracle = _FakeOracle({p: _reply(p, 3) for p in ("a.ts", "b.ts", "c.ts")})
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts", "b.ts", "c.ts")), oracle)

        events = []
        async for event in orchestrator.start_review(SCOPE):
            events.append(event)
            if isinstance(event, ProgressEvent) and event.message.startswith("Processed 1/3"):
                orchestrator.cancel()

        final = events[-1]
        assert isinstance(final, ReviewCancelledEvent)
        assert [f.target for f in final.partial_result.file_comments] == ["a.ts"]
        assert final.partial_result.pending_files == ["b.ts", "c.ts"]
        assert len(oracle.prompts) == 1
        assert orchestrator.state == RunState.CANCELLED
        assert not any(isinstance(e, ReviewCompletedEvent) for e in events)

    @pytest.mark.asyncio
    async def test_cancel_during_model_call(self):
        oracle = _BlockingOracle()
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts", "b.ts")), oracle)

        task = asyncio.ensure_future(_collect(orchestrator))
        await oracle.started.wait()
        orchestrator.cancel()
        events = await task

        final = events[-1]
        assert isinstance(final, ReviewCancelledEvent)
        assert final.partial_result.pending_files == ["a.ts", "b.ts"]
        assert final.partial_result.errors == []

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_harmless(self):
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts")), _FakeOracle({"a.ts": "[]"}))
        orchestrator.cancel()
        events = await _collect(orchestrator)
        assert isinstance(events[-1], ReviewCompletedEvent)

    @pytest.mark.asyncio
    async def test_second_concurrent_run_rejected(self):
        oracle = _BlockingOracle()
        orchestrator = ReviewOrchestrator(_FakeSource(_files("a.ts")), oracle)
        task = asyncio.ensure_future(_collect(orchestrator))
        await oracle.started.wait()

        with pytest.raises(RuntimeError):
            await _collect(orchestrator)

        orchestrator.cancel()
        await task


class TestProgressDedupe:
    def test_consecutive_duplicates_suppressed(self):
        run = _RunAccumulator(scope=SCOPE)
        assert run.progress("Reviewing a.ts (1/1)...") is not None
        assert run.progress("Reviewing a.ts (1/1)...") is None
        assert run.progress("Processed 1/1 files...") is not None

    def test_empty_message_suppressed(self):
        assert _RunAccumulator(scope=SCOPE).progress("") is None
