"""review command: run AI review on a commit range or a patch file."""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from difflens_core.adjustments import apply_adjustment
from difflens_core.aggregate import filter_file_comments
from difflens_core.errors import AdjustmentError, DifflensError
from difflens_core.models import FileComments, NavigationEntry, ReviewResult, ReviewScope
from difflens_core.navigator import CommentNavigator
from difflens_core.oracles.factory import PROVIDERS, get_oracle
from difflens_core.orchestrator import (
    FileResultEvent,
    ProgressEvent,
    ReviewCancelledEvent,
    ReviewCompletedEvent,
    ReviewOptions,
    ReviewOrchestrator,
)
from difflens_core.sources.base import DiffSource
from difflens_core.sources.github import GitHubDiffSource
from difflens_core.sources.patch import PatchDiffSource

console = Console()

_SEVERITY_COLOR = {5: "red", 4: "red", 3: "yellow", 2: "blue", 1: "dim"}


def print_file_comments(file_comments: FileComments) -> None:
    """Print one file's comments, most severe first."""
    console.print(f"\n[bold cyan]{file_comments.target}[/bold cyan]")
    for c in file_comments.comments:
        color = _SEVERITY_COLOR.get(c.severity, "white")
        console.print(f"  line [bold]{c.line}[/bold]  [{color}]severity {c.severity}[/{color}]")
        console.print(f"  {escape(c.comment)}")
        if c.proposed_adjustment:
            console.print(f"  [dim]Suggested fix: {escape(c.proposed_adjustment.description)}[/dim]")


def print_summary(result: ReviewResult) -> None:
    for path in result.skipped_files:
        console.print(f"  [dim]Skipped: {path}[/dim]")
    for error in result.errors:
        console.print(f"  [red]{error.file}: {error.kind}: {escape(error.message)}[/red]")
    if result.pending_files:
        console.print(f"  [yellow]Not reviewed: {', '.join(result.pending_files)}[/yellow]")


async def run_review(
    orchestrator: ReviewOrchestrator,
    scope: ReviewScope,
    description: str | None = None,
) -> ReviewResult:
    """Stream the review to the console. Ctrl-C cancels and keeps partial results."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform or outside the main thread.
        handler_installed = False

    result = None
    try:
        async for event in orchestrator.start_review(scope, description):
            if isinstance(event, ProgressEvent):
                console.print(f"[dim]{event.message}[/dim]")
            elif isinstance(event, FileResultEvent):
                print_file_comments(event.file_comments)
            elif isinstance(event, ReviewCancelledEvent):
                result = event.partial_result
                if result.comment_count:
                    console.print("\n[yellow]Cancelled, showing partial results.[/yellow]")
                else:
                    console.print("\n[yellow]Cancelled.[/yellow]")
            elif isinstance(event, ReviewCompletedEvent):
                result = event.result
                console.print(
                    f"\n[bold]Review complete. {result.comment_count} comment(s) "
                    f"in {len(result.file_comments)} file(s).[/bold]"
                )
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)

    print_summary(result)
    return result


def _show_entry(navigator: CommentNavigator, entry: NavigationEntry) -> None:
    console.print(
        f"\n[{navigator.position_label()}] [bold cyan]{entry.file_path}[/bold cyan]  line [bold]{entry.line}[/bold]"
    )
    console.print(f"  {escape(entry.comment_text)}")
    if entry.adjustment:
        console.print(f"  [dim]{escape(entry.adjustment.description)}[/dim]")
        console.print(f"  [red]- {escape(entry.adjustment.original_code)}[/red]")
        console.print(f"  [green]+ {escape(entry.adjustment.adjusted_code)}[/green]")


def _apply_current(navigator: CommentNavigator, scope: ReviewScope) -> None:
    entry = navigator.current
    if entry is None:
        console.print("[yellow]No comment selected.[/yellow]")
        return
    if entry.adjustment is None:
        console.print("[yellow]This comment has no suggested fix.[/yellow]")
        return
    if not scope.is_target_checked_out:
        console.print("[yellow]Fixes can only be applied when the reviewed code is checked out locally.[/yellow]")
        return

    path = Path(entry.file_path)
    try:
        updated = apply_adjustment(path.read_text(), entry.adjustment, entry.line)
    except (AdjustmentError, OSError) as e:
        console.print(f"[red]Could not apply fix to {entry.file_path}: {escape(str(e))}[/red]")
        return
    path.write_text(updated)
    console.print(f"[green]Applied fix to {entry.file_path}.[/green]")


def navigate(result: ReviewResult, min_severity: int) -> None:
    """Step through comments: [n]ext, [p]revious, [a]pply fix, [q]uit."""
    navigator = CommentNavigator()
    navigator.rebuild(result, min_severity)
    if not navigator.count:
        console.print("[yellow]No comments to navigate.[/yellow]")
        return

    while True:
        action = click.prompt(
            "\n[n]ext, [p]revious, [a]pply fix, [q]uit",
            type=click.Choice(["n", "p", "a", "q"]),
            default="n",
            show_choices=False,
        )
        if action == "q":
            return
        if action == "a":
            _apply_current(navigator, result.scope)
            continue
        entry = navigator.next() if action == "n" else navigator.previous()
        if entry is not None:
            _show_entry(navigator, entry)


def write_comments(result: ReviewResult, min_severity: int, path: str) -> None:
    """Write the comments that pass the display filter, in display order."""
    comments = [c.to_dict() for f in filter_file_comments(result.file_comments, min_severity) for c in f.comments]
    Path(path).write_text(json.dumps(comments, indent=2) + "\n")


def _build_source(config: dict, repo: str | None, patch_path: str | None) -> DiffSource:
    if patch_path:
        return PatchDiffSource.from_file(patch_path)

    from difflens_cli.auth import resolve_github_token

    token = resolve_github_token()
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    config["github_token"] = token
    return GitHubDiffSource.from_token(repo, token)


@click.command("review")
@click.option("--repo", default=None, help="GitHub repository in owner/name format.")
@click.option("--target", default=None, help="Commit, branch or tag to review. Required with --repo.")
@click.option("--base", default=None, help="Ref to compare against. Defaults to the target's first parent.")
@click.option(
    "--patch",
    "patch_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Review a unified diff file (e.g. the output of `git diff`) instead of a GitHub range.",
)
@click.option(
    "--model",
    type=click.Choice(PROVIDERS),
    default=None,
    help="AI model provider. Overrides config file.",
)
@click.option("--model-name", default=None, help="Provider model identifier. Overrides config file.")
@click.option(
    "--min-severity",
    type=click.IntRange(1, 5),
    default=None,
    help="Hide comments below this severity. Overrides config file.",
)
@click.option(
    "--rules",
    "rules_path",
    default=None,
    help="Path to a file of extra review rules. Overrides config file.",
)
@click.option("--description", default=None, help="Short description of the change, passed to the model.")
@click.option("--interactive", "-i", is_flag=True, help="Step through comments after the review.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="Also write the visible comments to this file as JSON.",
)
@click.pass_context
def review_cmd(
    ctx,
    repo: str | None,
    target: str | None,
    base: str | None,
    patch_path: str | None,
    model: str | None,
    model_name: str | None,
    min_severity: int | None,
    rules_path: str | None,
    description: str | None,
    interactive: bool,
    output_path: str | None,
):
    """AI-powered review of a code change.

    Reviews each changed file with Claude or GPT-4o and prints comments
    ordered by severity. Press Ctrl-C to stop early and keep what has been
    reviewed so far.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token for --repo (or use gh CLI)
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
    """
    from difflens_core.config import load_config, load_custom_rules

    if bool(repo) == bool(patch_path):
        raise click.UsageError("Pass exactly one of --repo or --patch.")
    if repo and not target:
        raise click.UsageError("--target is required with --repo.")

    config_path = ctx.obj.get("config_path", ".difflens.yml") if ctx.obj else ".difflens.yml"
    overrides = {
        "model": model,
        "model_name": model_name,
        "min_severity": min_severity,
        "custom_rules_file": rules_path,
    }
    try:
        config = load_config(config_path, cli_overrides=overrides)
        custom_rules = load_custom_rules(config)
    except (ValueError, FileNotFoundError) as e:
        raise click.UsageError(str(e)) from e

    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    try:
        oracle = get_oracle(config)
    except ImportError as e:
        raise click.ClickException(str(e)) from e

    source = _build_source(config, repo, patch_path)
    orchestrator = ReviewOrchestrator(source, oracle, ReviewOptions.from_config(config, custom_rules))

    async def _review() -> ReviewResult:
        scope = await source.resolve_scope(target, base)
        return await run_review(orchestrator, scope, description)

    try:
        result = asyncio.run(_review())
    except DifflensError as e:
        raise click.ClickException(str(e)) from e

    if output_path:
        write_comments(result, config["min_severity"], output_path)
        console.print(f"[dim]Wrote comments to {output_path}.[/dim]")

    if interactive:
        navigate(result, config["min_severity"])

    if result.has_errors:
        raise click.ClickException(f"{len(result.errors)} file(s) could not be reviewed.")
