"""Core domain layer."""

from issue_router.core.classifier import IssueClassifier, default_classification
from issue_router.core.duplicate_detector import compute_fingerprint, find_duplicate
from issue_router.core.entities import (
    Classification,
    ClassificationSource,
    DuplicateMethod,
    DuplicatePolicy,
    DuplicateRecord,
    IssueContext,
    Priority,
    ProjectRef,
    RouteAction,
    RoutingResult,
    RoutingRule,
    RoutingStage,
    RoutingStatus,
    RuleCondition,
    TargetIssueRef,
)
from issue_router.core.errors import ApiError, ClassificationError, ConfigError, RouterError
from issue_router.core.history import RoutingHistory
from issue_router.core.interfaces import HistoryStore, IssueTracker, LLMClient, ProjectBoard
from issue_router.core.rule_matcher import match
from issue_router.core.usage_monitor import ApiUsageMonitor, UsageCheck, UsageLimits

__all__ = [
    "IssueContext",
    "RuleCondition",
    "RouteAction",
    "RoutingRule",
    "Priority",
    "Classification",
    "ClassificationSource",
    "DuplicateMethod",
    "DuplicatePolicy",
    "DuplicateRecord",
    "TargetIssueRef",
    "ProjectRef",
    "RoutingResult",
    "RoutingStage",
    "RoutingStatus",
    "RouterError",
    "ConfigError",
    "ClassificationError",
    "ApiError",
    "LLMClient",
    "IssueTracker",
    "ProjectBoard",
    "HistoryStore",
    "RoutingHistory",
    "ApiUsageMonitor",
    "UsageCheck",
    "UsageLimits",
    "IssueClassifier",
    "default_classification",
    "compute_fingerprint",
    "find_duplicate",
    "match",
]
