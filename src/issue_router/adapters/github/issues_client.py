"""GitHub REST client for target and router issues."""

import asyncio
import hashlib
import logging
from typing import Any, Optional

from issue_router.adapters.github.transport import GitHubTransport, split_repo
from issue_router.config import Settings
from issue_router.core import Classification, IssueContext, IssueTracker, TargetIssueRef
from issue_router.core.duplicate_detector import issue_fingerprint
from issue_router.core.errors import ApiError

LOGGER = logging.getLogger(__name__)

DISPATCH_MARKER = "<!-- issue-router:dispatch={key} -->"
ROUTED_LABELS = ["routed", "automated"]


def dispatch_key(source: IssueContext) -> str:
    """Identify one dispatch of one source issue.

    Combines the source id with the content fingerprint: identical text
    from another source gets a different key.
    """
    raw = f"{source.source_id}\n{issue_fingerprint(source)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class GitHubIssuesClient(IssueTracker):
    """Create, reuse and close issues through the REST API."""

    def __init__(self, transport: GitHubTransport) -> None:
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubIssuesClient":
        return cls(GitHubTransport(settings.github_token, settings.github))

    async def create_or_update_issue(
        self, classification: Classification, source: IssueContext
    ) -> TargetIssueRef:
        """Create the target issue unless this dispatch already created one.

        Every round re-checks for an existing issue before creating, so a
        create whose response was lost is not repeated.
        """
        owner, name = split_repo(classification.repo)
        key = dispatch_key(source)
        attempts = self.transport.max_attempts

        for attempt in range(attempts):
            existing = await self.find_dispatched_issue(classification.repo, key)
            if existing is not None:
                LOGGER.info("Reusing %s#%d (same dispatch)", existing.repo, existing.number)
                await self._add_labels(existing, classification.labels)
                return existing

            try:
                data = await self.transport.request(
                    "POST",
                    f"/repos/{owner}/{name}/issues",
                    json={
                        "title": source.title,
                        "body": self._build_body(source, classification, key),
                        "labels": list(classification.labels),
                        "assignees": list(classification.assignees),
                    },
                    retry=False,
                )
            except ApiError as e:
                if not e.transient or attempt >= attempts - 1:
                    raise
                delay = self.transport.retry_delay(attempt, e)
                LOGGER.warning(
                    "Issue create in %s failed (%s), re-checking after %.1fs (attempt %d/%d)",
                    classification.repo, e, delay, attempt + 1, attempts,
                )
                await asyncio.sleep(delay)
                continue

            return self._ref_from_payload(classification.repo, data, created=True)

        raise RuntimeError("Issue creation retries exhausted")

    async def find_dispatched_issue(self, repo: str, key: str) -> Optional[TargetIssueRef]:
        """Search the repository for an issue whose body carries the dispatch key."""
        split_repo(repo)
        data = await self.transport.request(
            "GET",
            "/search/issues",
            params={
                "q": f'repo:{repo} is:issue "{key}" in:body',
                "sort": "created",
                "order": "desc",
                "per_page": 5,
            },
        )

        items = (data or {}).get("items") or []
        if not items:
            return None
        return self._ref_from_payload(repo, items[0], created=False)

    async def close_source_issue(self, router_repo: str, number: int, target: TargetIssueRef) -> None:
        """Comment with the target link, label and close the router issue."""
        owner, name = split_repo(router_repo)
        base = f"/repos/{owner}/{name}/issues/{number}"

        await self.transport.request(
            "POST",
            f"{base}/comments",
            json={
                "body": (
                    "🎯 **Issue Routed Successfully**\n\n"
                    f"This issue has been routed to: {target.url}\n\n"
                    "*Automatically closed by the issue router*"
                ),
            },
        )
        await self.transport.request("POST", f"{base}/labels", json={"labels": ROUTED_LABELS})
        await self.transport.request(
            "PATCH", base, json={"state": "closed", "state_reason": "completed"}
        )

    async def list_labels(self, repo: str) -> list[str]:
        owner, name = split_repo(repo)
        data = await self.transport.request(
            "GET", f"/repos/{owner}/{name}/labels", params={"per_page": 100}
        )
        return [label["name"] for label in data or [] if label.get("name")]

    async def _add_labels(self, target: TargetIssueRef, labels: list[str]) -> None:
        if not labels:
            return
        owner, name = split_repo(target.repo)
        await self.transport.request(
            "POST",
            f"/repos/{owner}/{name}/issues/{target.number}/labels",
            json={"labels": list(labels)},
        )

    def _build_body(self, source: IssueContext, classification: Classification, key: str) -> str:
        """Issue body prefixed with routing metadata."""
        lines = ["<!-- Routing Metadata -->"]
        if source.url:
            lines.append(f"**Original Issue:** {source.url}")
        if source.author:
            lines.append(f"**Author:** @{source.author}")
        lines.append(f"**Created:** {source.timestamp.isoformat()}")
        if source.permalink:
            lines.append(f"**Slack Thread:** {source.permalink}")
        elif not source.url:
            lines.append(f"**Source:** {source.source_id}")
        lines.append(f"**Routing:** {classification.source.value} ({classification.reasoning})")
        lines.append(DISPATCH_MARKER.format(key=key))
        lines.extend(["", "---", "", source.body])
        return "\n".join(lines)

    def _ref_from_payload(self, repo: str, data: Any, created: bool) -> TargetIssueRef:
        try:
            return TargetIssueRef(
                repo=repo,
                number=int(data["number"]),
                url=data["html_url"],
                node_id=data.get("node_id"),
                created=created,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(f"Unexpected issue payload from {repo}: {e}") from e
