"""Core domain entities."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

FieldValue = Union[str, int, float]


class Priority(str, Enum):
    """Priority tag applied to a routed issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ClassificationSource(str, Enum):
    """Which stage produced the classification."""

    RULE = "rule"
    AI = "ai"
    DEFAULT = "default"


class DuplicateMethod(str, Enum):
    """Duplicate detection strategy."""

    PERMALINK = "permalink"
    CONTENT_HASH = "content-hash"
    BOTH = "both"


class RoutingStatus(str, Enum):
    """Final outcome of routing one issue."""

    ROUTED = "routed"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    DRY_RUN = "dry-run"
    PARTIAL = "partial"


class RoutingStage(str, Enum):
    """Pipeline state for one issue."""

    RECEIVED = "received"
    CLASSIFIED = "classified"
    DUPLICATE_CHECKED = "duplicate-checked"
    DISPATCHED = "dispatched"
    DONE = "done"
    FAILED = "failed"


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif value:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    else:
        parsed = datetime.now(timezone.utc)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class IssueContext:
    """Incoming issue or ticket to be routed."""

    source_id: str
    title: str
    body: str = ""
    channels: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    labels: tuple[str, ...] = ()
    number: Optional[int] = None
    url: Optional[str] = None
    author: Optional[str] = None
    permalink: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValueError("Title cannot be empty")
        if not self.source_id:
            raise ValueError("Source identifier cannot be empty")
        # Lists passed by callers are frozen into tuples
        object.__setattr__(self, "channels", tuple(self.channels))
        object.__setattr__(self, "labels", tuple(self.labels))
        object.__setattr__(self, "timestamp", _parse_timestamp(self.timestamp))

    @property
    def effective_permalink(self) -> str:
        """Permalink used for exact re-submission checks."""
        return self.permalink or self.source_id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IssueContext":
        """Build an issue from a webhook-style JSON payload."""
        channels = data.get("channels")
        if channels is None:
            channel = data.get("channel") or (data.get("source_meta") or {}).get("channel")
            channels = [channel] if channel else []

        labels = [
            label["name"] if isinstance(label, dict) else str(label)
            for label in data.get("labels") or []
        ]

        slack_permalink = data.get("slack_permalink") or data.get("slackPermalink")
        source_id = data.get("source_id") or slack_permalink or data.get("url") or ""

        number = data.get("number")
        return cls(
            source_id=source_id,
            title=data.get("title", ""),
            body=data.get("body") or "",
            channels=tuple(channels),
            timestamp=_parse_timestamp(
                data.get("timestamp") or data.get("created_at") or data.get("createdAt")
            ),
            labels=tuple(labels),
            number=int(number) if number is not None else None,
            url=data.get("url"),
            author=data.get("author"),
            permalink=slack_permalink,
        )


@dataclass(frozen=True)
class RuleCondition:
    """Match predicates of a routing rule. Empty categories are ignored."""

    keywords: tuple[str, ...] = ()
    channels: tuple[str, ...] = ()
    title_patterns: tuple[re.Pattern, ...] = ()
    body_patterns: tuple[re.Pattern, ...] = ()
    labels: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (
            self.keywords
            or self.channels
            or self.title_patterns
            or self.body_patterns
            or self.labels
        )


@dataclass(frozen=True)
class RouteAction:
    """Where and how a matching issue is dispatched."""

    repo: str
    labels: tuple[str, ...] = ()
    assignees: tuple[str, ...] = ()
    priority: Priority = Priority.MEDIUM
    project_fields: dict[str, FieldValue] = field(default_factory=dict)


@dataclass(frozen=True)
class RoutingRule:
    """Ordered routing rule: predicates plus target action."""

    when: RuleCondition
    route: RouteAction
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.route.repo


@dataclass
class Classification:
    """Routing decision for one issue."""

    repo: str
    labels: list[str]
    assignees: list[str]
    priority: Priority
    source: ClassificationSource
    project_fields: dict[str, FieldValue] = field(default_factory=dict)
    confidence: float = 0.0
    reasoning: str = ""


@dataclass(frozen=True)
class DuplicatePolicy:
    """Duplicate detection settings."""

    enabled: bool = True
    method: DuplicateMethod = DuplicateMethod.BOTH
    lookback_days: int = 30


@dataclass(frozen=True)
class TargetIssueRef:
    """Issue created or reused in a destination repository."""

    repo: str
    number: int
    url: str
    node_id: Optional[str] = None
    created: bool = True


@dataclass(frozen=True)
class ProjectRef:
    """GitHub Projects v2 board."""

    owner: str
    number: int
    owner_type: str = "organization"


@dataclass(frozen=True)
class DuplicateRecord:
    """Previously routed issue kept for duplicate detection."""

    fingerprint: str
    permalink: Optional[str]
    target: TargetIssueRef
    routed_at: datetime


@dataclass
class RoutingResult:
    """Terminal outcome for one IssueContext."""

    status: RoutingStatus
    stage: RoutingStage
    classification: Optional[Classification] = None
    target: Optional[TargetIssueRef] = None
    duplicate_of: Optional[DuplicateRecord] = None
    error: Optional[str] = None
    failed_stage: Optional[RoutingStage] = None
    warnings: list[str] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    execution_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is not RoutingStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view of the result."""
        classification = None
        if self.classification:
            classification = {
                "repo": self.classification.repo,
                "labels": list(self.classification.labels),
                "assignees": list(self.classification.assignees),
                "priority": self.classification.priority.value,
                "source": self.classification.source.value,
                "project_fields": dict(self.classification.project_fields),
                "confidence": self.classification.confidence,
                "reasoning": self.classification.reasoning,
            }

        target = None
        if self.target:
            target = {
                "repo": self.target.repo,
                "number": self.target.number,
                "url": self.target.url,
                "created": self.target.created,
            }

        return {
            "status": self.status.value,
            "stage": self.stage.value,
            "classification": classification,
            "target": target,
            "duplicate_of": self.duplicate_of.target.url if self.duplicate_of else None,
            "error": self.error,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "warnings": list(self.warnings),
            "execution_time": round(self.execution_time, 3),
        }
