"""AI classification with graceful fallback to configured defaults."""

import logging
from typing import Iterable, Optional

import httpx

from issue_router.core.entities import (
    Classification,
    ClassificationSource,
    IssueContext,
    Priority,
    RoutingRule,
)
from issue_router.core.errors import ClassificationError
from issue_router.core.interfaces import LLMClient
from issue_router.core.usage_monitor import ApiUsageMonitor

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.1

# Rough sizes used for budget checks when the backend reports no usage
PROMPT_OVERHEAD_TOKENS = 600
ESTIMATED_OUTPUT_TOKENS = 300
MAX_BODY_CHARS = 8000


def default_classification(
    repo: str, labels: Iterable[str], reason: str = "No routing rule matched"
) -> Classification:
    """Classification pointing at the configured default destination."""
    return Classification(
        repo=repo,
        labels=list(labels),
        assignees=[],
        priority=Priority.MEDIUM,
        source=ClassificationSource.DEFAULT,
        project_fields={},
        confidence=DEFAULT_CONFIDENCE,
        reasoning=f"Default routing: {reason}",
    )


def estimate_input_tokens(
    issue: IssueContext, targets: list[str], vocabulary: dict[str, list[str]]
) -> int:
    """About four characters per token over everything the prompt carries."""
    chars = len(issue.title) + min(len(issue.body), MAX_BODY_CHARS)
    chars += sum(len(repo) + sum(len(label) + 2 for label in vocabulary.get(repo, [])) for repo in targets)
    return PROMPT_OVERHEAD_TOKENS + chars // 4


def available_targets(default_repo: str, rules: Iterable[RoutingRule]) -> list[str]:
    """Default repo plus every rule destination, in declaration order."""
    targets = [default_repo]
    for rule in rules:
        if rule.route.repo not in targets:
            targets.append(rule.route.repo)
    return targets


def label_vocabulary(targets: Iterable[str], rules: Iterable[RoutingRule]) -> dict[str, list[str]]:
    """Labels the rules apply to each target repository."""
    rules = list(rules)
    vocabulary: dict[str, list[str]] = {}
    for repo in targets:
        labels: list[str] = []
        for rule in rules:
            if rule.route.repo != repo:
                continue
            for label in rule.route.labels:
                if label not in labels:
                    labels.append(label)
        vocabulary[repo] = labels
    return vocabulary


class IssueClassifier:
    """Asks an LLM for a classification; never raises.

    A single attempt is made. Network errors, malformed responses, unknown
    destinations, an exhausted usage budget and unexpected client failures
    all degrade to the default classification.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient],
        default_repo: str,
        default_labels: Iterable[str],
        usage_monitor: Optional[ApiUsageMonitor] = None,
    ) -> None:
        self.llm_client = llm_client
        self.default_repo = default_repo
        self.default_labels = list(default_labels)
        self.usage_monitor = usage_monitor

    @property
    def enabled(self) -> bool:
        return self.llm_client is not None

    async def classify(
        self,
        issue: IssueContext,
        targets: list[str],
        vocabulary: dict[str, list[str]],
    ) -> Classification:
        if self.llm_client is None:
            return self.fallback("AI classifier not configured")

        estimated_input = estimate_input_tokens(issue, targets, vocabulary)
        if self.usage_monitor is not None:
            check = self.usage_monitor.check(estimated_input, ESTIMATED_OUTPUT_TOKENS)
            for warning in check.warnings:
                LOGGER.warning("AI usage: %s", warning)
            if not check.allowed:
                LOGGER.warning("Skipping AI classification: %s", check.reason)
                return self.fallback(f"AI usage limit reached ({check.reason})")

        try:
            classification = await self.llm_client.classify(issue, targets, vocabulary)
        except ClassificationError as e:
            LOGGER.warning("AI classification rejected: %s", e)
            return self.fallback(f"AI classification rejected ({e})")
        except httpx.HTTPError as e:
            LOGGER.warning("AI backend unreachable: %s", e)
            return self.fallback(f"AI backend error ({type(e).__name__})")
        except Exception as e:
            LOGGER.warning("AI classifier failed: %s: %s", type(e).__name__, e)
            return self.fallback(f"AI classifier error ({type(e).__name__})")
        finally:
            self._record_usage(estimated_input)

        if classification.repo not in targets:
            LOGGER.warning("AI chose unknown repository %s", classification.repo)
            return self.fallback(f"AI chose unknown repository '{classification.repo}'")

        return classification

    def fallback(self, reason: str) -> Classification:
        return default_classification(self.default_repo, self.default_labels, reason)

    def _record_usage(self, estimated_input: int) -> None:
        if self.usage_monitor is None:
            return
        usage = self.llm_client.last_usage
        if not isinstance(usage, tuple):
            usage = (estimated_input, ESTIMATED_OUTPUT_TOKENS)
        self.usage_monitor.record(*usage)
