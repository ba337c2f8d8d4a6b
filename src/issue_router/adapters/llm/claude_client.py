"""Claude API client for issue classification."""

import json
import logging
import re
from typing import Any

import httpx

from issue_router.config import Settings
from issue_router.core import Classification, ClassificationSource, IssueContext, LLMClient, Priority
from issue_router.core.errors import ClassificationError

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at categorizing GitHub issues for a multi-repository "
    "organization. Respond with valid JSON only, no additional text."
)

USER_PROMPT = """## Issue to Classify
**Title:** {title}
**Body:** {body}
**Author:** {author}
**Channels:** {channels}
**Existing Labels:** {labels}

## Available Repositories and Their Common Labels
{repositories}

## Classification Task
Pick exactly one repository from the list above and answer with:
```json
{{
  "repo": "owner/repo-name",
  "labels": ["label1", "label2"],
  "assignees": [],
  "priority": "low|medium|high|critical",
  "confidence": 0.85,
  "reasoning": "Brief explanation of classification logic",
  "project_fields": {{}}
}}
```

Priority guide: critical = system down or security issue, high = significant
user-facing bug or important feature, medium = standard work, low = minor
improvement. Prefer labels the repository already uses. Leave assignees empty
unless a domain owner is obvious."""

MAX_BODY_CHARS = 8000


class ClaudeClient(LLMClient):
    """Claude API client implementation.

    Classification is a single attempt: the caller falls back to defaults on
    any failure, so there is no retry loop here.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.api_key = settings.anthropic_api_key
        self.model = settings.claude.model
        self.max_tokens = settings.claude.max_tokens
        self.temperature = settings.claude.temperature
        self.timeout = settings.claude.timeout
        self.base_url = settings.claude.base_url.rstrip("/")

    async def classify(
        self,
        issue: IssueContext,
        available_targets: list[str],
        label_vocabulary: dict[str, list[str]],
    ) -> Classification:
        """Classify issue into one of the available targets."""
        self.last_usage = None
        prompt = self._build_prompt(issue, available_targets, label_vocabulary)
        response = await self._call_api(prompt=prompt, system=SYSTEM_PROMPT)

        json_text = self._extract_json(response)
        try:
            data = json.loads(json_text)
        except json.JSONDecodeError as e:
            LOGGER.debug("Unparseable classifier response: %s", response[:500])
            raise ClassificationError(f"Malformed classifier response: {e}") from e

        return self._parse_classification(data, available_targets)

    def _build_prompt(
        self,
        issue: IssueContext,
        available_targets: list[str],
        label_vocabulary: dict[str, list[str]],
    ) -> str:
        repositories = "\n".join(
            f"- {repo}: [{', '.join(label_vocabulary.get(repo, []))}]"
            for repo in available_targets
        )
        return USER_PROMPT.format(
            title=issue.title,
            body=issue.body[:MAX_BODY_CHARS] or "(empty)",
            author=issue.author or "unknown",
            channels=", ".join(issue.channels) or "none",
            labels=", ".join(issue.labels) or "none",
            repositories=repositories,
        )

    def _parse_classification(self, data: Any, available_targets: list[str]) -> Classification:
        """Validate the model's answer against the known targets."""
        if not isinstance(data, dict):
            raise ClassificationError("Classifier response is not a JSON object")

        repo = data.get("repo")
        if repo not in available_targets:
            raise ClassificationError(f"Unknown repository '{repo}'")

        labels = data.get("labels") or []
        assignees = data.get("assignees") or []
        if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
            raise ClassificationError("'labels' must be a list of strings")
        if not isinstance(assignees, list) or not all(isinstance(user, str) for user in assignees):
            raise ClassificationError("'assignees' must be a list of strings")

        try:
            priority = Priority(str(data.get("priority", "medium")).lower())
        except ValueError:
            priority = Priority.MEDIUM

        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5

        project_fields = data.get("project_fields") or data.get("projectFields") or {}
        if not isinstance(project_fields, dict):
            project_fields = {}

        return Classification(
            repo=repo,
            labels=labels,
            assignees=assignees,
            priority=priority,
            source=ClassificationSource.AI,
            project_fields=project_fields,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(data.get("reasoning") or "LLM classification"),
        )

    async def _call_api(self, prompt: str, system: str) -> str:
        """Call Claude API once with a bounded timeout."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/messages",
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": self.max_tokens,
                    "temperature": self.temperature,
                    "system": system,
                    "messages": [
                        {"role": "user", "content": prompt}
                    ],
                },
            )

        if response.status_code != 200:
            raise ClassificationError(f"Claude API returned HTTP {response.status_code}")

        try:
            data = response.json()
            text = data["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassificationError(f"Unexpected Claude API payload: {e}") from e

        usage = data.get("usage") or {}
        if "input_tokens" in usage and "output_tokens" in usage:
            self.last_usage = (int(usage["input_tokens"]), int(usage["output_tokens"]))
        return text

    def _fix_json(self, text: str) -> str:
        """Try to fix common JSON issues."""
        # Remove trailing commas before } or ]
        text = re.sub(r',(\s*[}\]])', r'\1', text)
        return text

    def _extract_json(self, text: str) -> str:
        """Extract JSON from markdown code block or raw text."""
        # Strategy 1: JSON in a fenced code block
        code_block_match = re.search(r'```(?:json)?\s*\n(.*?)\n```', text, re.DOTALL)
        if code_block_match:
            candidate = code_block_match.group(1).strip()
            return self._fix_json(candidate)

        # Strategy 2: object carrying the required "repo" field
        json_with_fields = re.search(r'\{[^{}]*"repo"\s*:\s*"[^"]*"[^{}]*\}', text, re.DOTALL)
        if json_with_fields:
            candidate = self._fix_json(json_with_fields.group(0))
            try:
                json.loads(candidate)
                return candidate
            except json.JSONDecodeError:
                pass

        # Strategy 3: outermost object, allowing one level of nesting
        json_object_match = re.search(r'\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}', text, re.DOTALL)
        if json_object_match:
            candidate = self._fix_json(json_object_match.group(0))
            try:
                json.loads(candidate)
                return candidate
            except json.JSONDecodeError:
                pass

        # Strategy 4: return as is (last resort)
        return self._fix_json(text.strip())
