"""Business logic use cases."""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from issue_router.core import (
    ApiError,
    Classification,
    DuplicatePolicy,
    DuplicateRecord,
    HistoryStore,
    IssueClassifier,
    IssueContext,
    IssueTracker,
    ProjectBoard,
    ProjectRef,
    RoutingResult,
    RoutingRule,
    RoutingStage,
    RoutingStatus,
)
from issue_router.core import rule_matcher
from issue_router.core.classifier import available_targets, label_vocabulary
from issue_router.core.duplicate_detector import find_duplicate, issue_fingerprint

LOGGER = logging.getLogger(__name__)


class RoutingService:
    """Route one issue through classify, dedupe and dispatch.

    ``route`` never raises: every failure is captured in the returned
    RoutingResult together with the stage that was reached.
    """

    def __init__(
        self,
        rules: list[RoutingRule],
        classifier: IssueClassifier,
        tracker: Optional[IssueTracker],
        board: Optional[ProjectBoard],
        history: HistoryStore,
        policy: DuplicatePolicy,
        project: Optional[ProjectRef] = None,
        router_repo: Optional[str] = None,
        dry_run: bool = False,
        verbose: bool = False,
    ) -> None:
        self.rules = rules
        self.classifier = classifier
        self.tracker = tracker
        self.board = board
        self.history = history
        self.policy = policy
        self.project = project
        self.router_repo = router_repo
        self.dry_run = dry_run
        self.verbose = verbose

    async def route(self, issue: IssueContext) -> RoutingResult:
        """Route a single issue."""
        started = time.monotonic()
        result = RoutingResult(status=RoutingStatus.ROUTED, stage=RoutingStage.RECEIVED)
        self._log(result, f"Routing issue: {issue.title}")

        try:
            await self._run(issue, result)
        except Exception as e:
            result.status = RoutingStatus.FAILED
            result.error = f"{type(e).__name__}: {e}"
            result.failed_stage = result.stage
            self._log(result, f"Routing failed at stage '{result.stage.value}': {result.error}", logging.ERROR)
            result.stage = RoutingStage.FAILED

        result.execution_time = time.monotonic() - started
        return result

    async def _run(self, issue: IssueContext, result: RoutingResult) -> None:
        # 1. Classify
        classification = await self._classify(issue, result)
        result.classification = classification
        result.stage = RoutingStage.CLASSIFIED
        self._log(
            result,
            f"Classified as {classification.repo} via {classification.source.value} "
            f"(confidence {classification.confidence:.2f})",
        )
        if self.verbose:
            self._log(result, f"Reasoning: {classification.reasoning}", logging.DEBUG)

        # 2. Duplicate check, scoped to the destination repository
        if self.policy.enabled:
            duplicate = find_duplicate(issue, self.history.load(classification.repo), self.policy)
            result.stage = RoutingStage.DUPLICATE_CHECKED
            if duplicate is not None:
                result.status = RoutingStatus.DUPLICATE
                result.duplicate_of = duplicate
                result.target = duplicate.target
                result.stage = RoutingStage.DONE
                self._log(result, f"Duplicate of {duplicate.target.url}, not dispatching")
                return
        else:
            result.stage = RoutingStage.DUPLICATE_CHECKED

        # 3. Dry run stops before any write
        if self.dry_run:
            result.status = RoutingStatus.DRY_RUN
            result.stage = RoutingStage.DONE
            self._log(result, f"Dry run: would create issue in {classification.repo}")
            return

        if self.tracker is None:
            raise RuntimeError("No issue tracker configured")

        # 4. Create target issue
        target = await self.tracker.create_or_update_issue(classification, issue)
        result.target = target
        result.stage = RoutingStage.DISPATCHED
        verb = "Created" if target.created else "Reused existing"
        self._log(result, f"{verb} issue {target.url}")

        try:
            self.history.append(
                DuplicateRecord(
                    fingerprint=issue_fingerprint(issue),
                    permalink=issue.effective_permalink,
                    target=target,
                    routed_at=datetime.now(timezone.utc),
                )
            )
        except OSError as e:
            self._warn(result, f"Failed to record routing history: {e}")

        # 5. Project board
        if self.project is not None and self.board is not None:
            try:
                item_id = await self.board.add_issue_to_project(self.project, target, classification)
                self._log(result, f"Added to project {self.project.owner}#{self.project.number} (item {item_id})")
            except ApiError as e:
                self._warn(result, f"Failed to add issue to project: {e}")

        # 6. Close the originating router issue
        if issue.number is not None and self.router_repo:
            try:
                await self.tracker.close_source_issue(self.router_repo, issue.number, target)
                self._log(result, f"Closed {self.router_repo}#{issue.number}")
            except ApiError as e:
                self._warn(result, f"Failed to close source issue: {e}")

        # 7. Done
        result.stage = RoutingStage.DONE
        if not result.warnings:
            result.status = RoutingStatus.ROUTED
        self._log(result, f"Routing finished with status '{result.status.value}'")

    async def _classify(self, issue: IssueContext, result: RoutingResult) -> Classification:
        classification = rule_matcher.match(issue, self.rules)
        if classification is not None:
            return classification

        if not self.classifier.enabled:
            return self.classifier.fallback("No routing rule matched and AI classifier not configured")

        targets = available_targets(self.classifier.default_repo, self.rules)
        vocabulary = label_vocabulary(targets, self.rules)
        if not self.dry_run and self.tracker is not None:
            await self._extend_vocabulary(targets, vocabulary, result)

        self._log(result, f"No rule matched, asking AI classifier ({len(targets)} targets)")
        return await self.classifier.classify(issue, targets, vocabulary)

    async def _extend_vocabulary(
        self, targets: list[str], vocabulary: dict[str, list[str]], result: RoutingResult
    ) -> None:
        """Add live repository labels; a failed lookup only costs vocabulary."""
        for repo in targets:
            try:
                labels = await self.tracker.list_labels(repo)
            except ApiError as e:
                self._log(result, f"Could not fetch labels for {repo}: {e}", logging.WARNING)
                continue
            for label in labels:
                if label not in vocabulary[repo]:
                    vocabulary[repo].append(label)

    def _warn(self, result: RoutingResult, message: str) -> None:
        result.warnings.append(message)
        result.status = RoutingStatus.PARTIAL
        self._log(result, message, logging.WARNING)

    def _log(self, result: RoutingResult, message: str, level: int = logging.INFO) -> None:
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        result.logs.append(f"[{stamp}] {message}")
        LOGGER.log(level, message)
