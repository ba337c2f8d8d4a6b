"""Rule matching logic (core domain)."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from issue_router.core.entities import (
    Classification,
    ClassificationSource,
    IssueContext,
    RoutingRule,
)

LOGGER = logging.getLogger(__name__)

RULE_CONFIDENCE = 0.95


def _keywords_hit(rule: RoutingRule, issue: IssueContext) -> bool:
    content = f"{issue.title} {issue.body}".lower()
    return any(keyword.lower() in content for keyword in rule.when.keywords)


def _channels_hit(rule: RoutingRule, issue: IssueContext) -> bool:
    return any(channel in issue.channels for channel in rule.when.channels)


def _title_hit(rule: RoutingRule, issue: IssueContext) -> bool:
    return any(pattern.search(issue.title) for pattern in rule.when.title_patterns)


def _body_hit(rule: RoutingRule, issue: IssueContext) -> bool:
    return any(pattern.search(issue.body) for pattern in rule.when.body_patterns)


def _labels_hit(rule: RoutingRule, issue: IssueContext) -> bool:
    present = {label.lower() for label in issue.labels}
    return all(label.lower() in present for label in rule.when.labels)


def explain(issue: IssueContext, rule: RoutingRule) -> Optional[List[str]]:
    """Return the categories a rule matched on, or None if it does not match.

    Each specified category must hold; omitted categories are skipped:
    - keywords: any keyword is a case-insensitive substring of title + body
    - channels: any rule channel equals one of the issue's origin tags
    - title/body patterns: any pattern is found in the title/body
    - labels: all rule labels are present on the issue
    """
    checks = (
        ("keywords", rule.when.keywords, _keywords_hit),
        ("channels", rule.when.channels, _channels_hit),
        ("title_patterns", rule.when.title_patterns, _title_hit),
        ("body_patterns", rule.when.body_patterns, _body_hit),
        ("labels", rule.when.labels, _labels_hit),
    )

    matched: List[str] = []
    for category, values, check in checks:
        if not values:
            continue
        if not check(rule, issue):
            return None
        matched.append(category)
    return matched


def match(issue: IssueContext, rules: Iterable[RoutingRule]) -> Optional[Classification]:
    """Return the action of the first fully-matching rule, or None."""
    for index, rule in enumerate(rules):
        categories = explain(issue, rule)
        if categories is None:
            continue

        LOGGER.debug("Rule %d (%s) matched on %s", index, rule.display_name, categories)
        return Classification(
            repo=rule.route.repo,
            labels=list(rule.route.labels),
            assignees=list(rule.route.assignees),
            priority=rule.route.priority,
            source=ClassificationSource.RULE,
            project_fields=dict(rule.route.project_fields),
            confidence=RULE_CONFIDENCE,
            reasoning=f"Matched routing rule '{rule.display_name}' on {', '.join(categories)}",
        )

    return None
