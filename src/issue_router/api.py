"""Programmatic entry point: route one issue with adapters wired from settings."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from issue_router.adapters.github import GitHubIssuesClient, GitHubProjectsClient
from issue_router.adapters.llm import ClaudeClient
from issue_router.config import Settings, get_settings
from issue_router.core import ApiUsageMonitor, IssueClassifier, IssueContext, RoutingHistory, RoutingResult
from issue_router.core.errors import ConfigError
from issue_router.use_cases import RoutingService

LOGGER = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Per-invocation options; explicit values win over settings and env."""
    config_path: Optional[Path] = None
    settings: Optional[Settings] = None
    environment: Optional[str] = None
    github_token: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    router_repo: Optional[str] = None
    dry_run: bool = False
    verbose: bool = False


def resolve_settings(options: RunOptions) -> Settings:
    """Load settings and apply the option overrides.

    Raises:
        ConfigError: configuration missing or invalid, or no GitHub token
            for a non dry-run invocation
    """
    settings = options.settings or get_settings(options.config_path, options.environment)

    if options.github_token:
        settings.github_token = options.github_token
    if options.anthropic_api_key:
        settings.anthropic_api_key = options.anthropic_api_key
    if options.router_repo:
        settings.router_repo = options.router_repo

    if not options.dry_run and not settings.github_token:
        raise ConfigError("GITHUB_TOKEN is required unless running in dry-run mode")
    return settings


def build_service(settings: Settings, options: RunOptions) -> RoutingService:
    """Wire adapters for one invocation."""
    llm_client = ClaudeClient(settings) if settings.ai_enabled else None
    usage_monitor = None
    if llm_client is not None and settings.usage.enabled:
        usage_monitor = ApiUsageMonitor(settings.usage)
    classifier = IssueClassifier(llm_client, settings.default_repo, settings.default_labels, usage_monitor)

    tracker = None
    board = None
    if not options.dry_run:
        tracker = GitHubIssuesClient.from_settings(settings)
        if settings.project is not None:
            board = GitHubProjectsClient.from_settings(settings)

    return RoutingService(
        rules=settings.rules,
        classifier=classifier,
        tracker=tracker,
        board=board,
        history=RoutingHistory(settings.history_dir),
        policy=settings.duplicate_detection,
        project=settings.project,
        router_repo=settings.router_repo,
        dry_run=options.dry_run,
        verbose=options.verbose,
    )


async def route_issue(issue: IssueContext, options: Optional[RunOptions] = None) -> RoutingResult:
    """Route one issue. Only configuration problems raise."""
    options = options or RunOptions()
    settings = resolve_settings(options)
    service = build_service(settings, options)

    LOGGER.info(
        "Routing %s (%d rules, AI %s, dry-run %s)",
        issue.source_id,
        len(settings.rules),
        "on" if settings.ai_enabled else "off",
        options.dry_run,
    )
    return await service.route(issue)


def route_issue_sync(issue: IssueContext, options: Optional[RunOptions] = None) -> RoutingResult:
    """Blocking wrapper around route_issue."""
    return asyncio.run(route_issue(issue, options))
