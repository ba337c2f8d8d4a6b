"""CLI entry point for issue router."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from issue_router.api import RunOptions, route_issue
from issue_router.config import Settings, get_settings, resolve_config_path, validate_config_file
from issue_router.core import (
    ApiUsageMonitor,
    ConfigError,
    IssueContext,
    RoutingHistory,
    RoutingResult,
    RoutingStatus,
)

app = typer.Typer(help="Route incoming issues to the right GitHub repository.", no_args_is_help=True)

STATUS_GLYPHS = {
    RoutingStatus.ROUTED: "✅",
    RoutingStatus.DUPLICATE: "🔁",
    RoutingStatus.DRY_RUN: "🧪",
    RoutingStatus.PARTIAL: "⚠️ ",
    RoutingStatus.FAILED: "❌",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def route(
    issue_json: Path = typer.Argument(..., help="JSON file describing the issue"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Routing config file"),
    env: Optional[str] = typer.Option(None, "--env", help="Environment overlay to apply"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Classify only, create nothing"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    router_repo: Optional[str] = typer.Option(None, "--router-repo", help="Repository holding source issues"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Route a single issue."""
    _setup_logging(verbose)

    try:
        with open(issue_json, "r", encoding="utf-8") as f:
            issue = IssueContext.from_dict(json.load(f))
    except (OSError, json.JSONDecodeError, ValueError) as e:
        print(f"❌ Cannot read issue from {issue_json}: {e}")
        raise typer.Exit(code=1)

    options = RunOptions(
        config_path=config,
        environment=env,
        router_repo=router_repo,
        dry_run=dry_run,
        verbose=verbose,
    )

    try:
        result = asyncio.run(route_issue(issue, options))
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        raise typer.Exit(code=1)

    if as_json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        _print_result(issue, result, verbose)

    if result.status is RoutingStatus.FAILED:
        raise typer.Exit(code=1)


def _print_result(issue: IssueContext, result: RoutingResult, verbose: bool) -> None:
    print("\n" + "=" * 70)
    print(f"{STATUS_GLYPHS[result.status]} {result.status.value.upper()}: {issue.title}")
    print("=" * 70)

    if result.classification:
        c = result.classification
        print(f"\n🎯 Classification:")
        print(f"  • Repository: {c.repo}")
        print(f"  • Source: {c.source.value} (confidence {c.confidence:.0%})")
        print(f"  • Priority: {c.priority.value}")
        if c.labels:
            print(f"  • Labels: {', '.join(c.labels)}")
        if c.assignees:
            print(f"  • Assignees: {', '.join(c.assignees)}")
        print(f"  • Reasoning: {c.reasoning}")

    if result.duplicate_of:
        print(f"\n🔁 Duplicate of: {result.duplicate_of.target.url}")
    elif result.target:
        verb = "Created" if result.target.created else "Reused"
        print(f"\n🔗 {verb}: {result.target.url}")

    for warning in result.warnings:
        print(f"  ⚠️  {warning}")
    if result.error:
        stage = result.failed_stage or result.stage
        print(f"\n❌ Error (stage {stage.value}): {result.error}")

    if verbose and result.logs:
        print(f"\n📋 Log:")
        for line in result.logs:
            print(f"  {line}")

    print(f"\n⏱️  {result.execution_time:.2f}s")


@app.command("check-config")
def check_config(
    path: Optional[Path] = typer.Argument(None, help="Config file, defaults to the usual locations"),
    env: Optional[str] = typer.Option(None, "--env", help="Environment overlay to validate"),
) -> None:
    """Validate a routing configuration file."""
    try:
        config_path = resolve_config_path(path)
    except ConfigError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=1)

    errors = validate_config_file(config_path, env)
    if errors:
        print(f"❌ {config_path}: {len(errors)} problem(s)")
        for error in errors:
            print(f"  • {error}")
        raise typer.Exit(code=1)

    print(f"✓ {config_path} is valid")


@app.command("history-stats")
def history_stats(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Routing config file"),
) -> None:
    """Show routing history statistics."""
    history = _history(config)
    stats = history.get_stats()

    print(f"\n📚 Routing history: {history.storage_dir}")
    print(f"  Total records: {stats['total_records']}")
    for repo, count in stats["by_repo"].items():
        print(f"  • {repo}: {count}")


@app.command("prune-history")
def prune_history(
    days: int = typer.Option(90, "--days", help="Remove records older than this many days"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Routing config file"),
) -> None:
    """Remove old routing history records."""
    if days <= 0:
        print("❌ --days must be positive")
        raise typer.Exit(code=1)

    history = _history(config)
    removed = history.prune_old(days)
    print(f"🧹 Removed {removed} record(s) older than {days} days from {history.storage_dir}")


@app.command("usage-stats")
def usage_stats(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Routing config file"),
) -> None:
    """Show AI classifier usage against its daily and monthly limits."""
    settings = _settings(config)
    monitor = ApiUsageMonitor(settings.usage)
    stats = monitor.get_stats()

    print(f"\n📊 AI usage: {monitor.usage_file}")
    for period in ("daily", "monthly"):
        s = stats[period]
        print(f"\n  {period.capitalize()}:")
        print(f"  • Calls: {s['calls']}/{s['call_limit']}")
        print(f"  • Tokens: {s['input_tokens'] + s['output_tokens']:,}/{s['token_limit']:,}")
        print(f"  • Cost: ${s['estimated_cost']:.2f}/${s['cost_limit']:.2f}")


def _settings(config: Optional[Path]) -> Settings:
    try:
        return get_settings(config)
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        raise typer.Exit(code=1)


def _history(config: Optional[Path]) -> RoutingHistory:
    return RoutingHistory(_settings(config).history_dir)


def main() -> None:
    """CLI entry point."""
    app()
