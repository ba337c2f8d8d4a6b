"""Core interfaces for adapters."""

from abc import ABC, abstractmethod
from typing import Optional

from issue_router.core.entities import (
    Classification,
    DuplicateRecord,
    IssueContext,
    ProjectRef,
    TargetIssueRef,
)


class LLMClient(ABC):
    """Interface for language-model classification."""

    # (input_tokens, output_tokens) of the most recent call, when reported
    last_usage: Optional[tuple[int, int]] = None

    @abstractmethod
    async def classify(
        self,
        issue: IssueContext,
        available_targets: list[str],
        label_vocabulary: dict[str, list[str]],
    ) -> Classification:
        """Classify issue into one of the available targets.

        Raises ClassificationError when the response is unusable.
        """
        pass


class IssueTracker(ABC):
    """Interface for creating and closing issues."""

    @abstractmethod
    async def create_or_update_issue(
        self, classification: Classification, source: IssueContext
    ) -> TargetIssueRef:
        """Create the target issue, or reuse one already carrying its fingerprint."""
        pass

    @abstractmethod
    async def close_source_issue(
        self, router_repo: str, number: int, target: TargetIssueRef
    ) -> None:
        """Annotate the originating issue with a link to the target and close it."""
        pass

    @abstractmethod
    async def list_labels(self, repo: str) -> list[str]:
        """List label names of a repository."""
        pass


class ProjectBoard(ABC):
    """Interface for project board attachment."""

    @abstractmethod
    async def add_issue_to_project(
        self,
        project: ProjectRef,
        issue: TargetIssueRef,
        classification: Classification,
    ) -> Optional[str]:
        """Attach issue to board and set fields. Returns the board item id."""
        pass


class HistoryStore(ABC):
    """Durable duplicate-detection history."""

    @abstractmethod
    def load(self, repo: str) -> list[DuplicateRecord]:
        """Return every record for a destination repository."""
        pass

    @abstractmethod
    def append(self, record: DuplicateRecord) -> None:
        """Append a record. Existing records are never rewritten."""
        pass
