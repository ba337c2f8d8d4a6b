"""HTTP transport for the GitHub REST and GraphQL APIs with retry logic."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from issue_router.config import GitHubConfig
from issue_router.core.errors import ApiError

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def split_repo(repo: str) -> tuple[str, str]:
    """Split ``owner/name``; raises ApiError before any request is made."""
    owner, _, name = repo.partition("/")
    if not owner or not name or "/" in name:
        raise ApiError(f"Invalid repository format: {repo}")
    return owner, name


class GitHubTransport:
    """Authenticated GitHub calls with bounded exponential backoff.

    Transient failures (5xx, 429, rate-limit 403, network errors and
    timeouts) are retried up to ``max_attempts`` times; anything else raises
    ApiError immediately.
    """

    def __init__(self, token: Optional[str], config: Optional[GitHubConfig] = None) -> None:
        config = config or GitHubConfig()
        self.token = token
        self.api_url = config.api_url.rstrip("/")
        self.max_attempts = config.max_attempts
        self.initial_retry_delay = config.initial_retry_delay
        self.timeout = config.timeout

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        retry: bool = True,
    ) -> Any:
        """Send a request and return the decoded JSON body (None for 204)."""
        attempts = self.max_attempts if retry else 1

        for attempt in range(attempts):
            try:
                return await self._send(method, path, params, json)
            except ApiError as e:
                if not e.transient or attempt >= attempts - 1:
                    raise
                delay = self.retry_delay(attempt, e)
                LOGGER.warning(
                    "GitHub %s %s failed (%s), retrying after %.1fs (attempt %d/%d)",
                    method, path, e, delay, attempt + 1, attempts,
                )
                await asyncio.sleep(delay)

        raise RuntimeError("GitHub request retries exhausted")

    async def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run a GraphQL query; GraphQL-level errors raise ApiError."""
        payload = await self.request("POST", "/graphql", json={"query": query, "variables": variables})
        payload = payload or {}

        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            transient = any(error.get("type") == "RATE_LIMITED" for error in errors)
            raise ApiError(f"GraphQL error: {messages}", status_code=200, transient=transient)

        return payload.get("data") or {}

    def retry_delay(self, attempt: int, error: Optional[ApiError] = None) -> float:
        """Retry-After when GitHub sends one, exponential backoff otherwise."""
        if error is not None and error.retry_after is not None:
            return error.retry_after
        return self.initial_retry_delay * (2 ** attempt)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict],
        json: Optional[dict],
    ) -> Any:
        url = path if path.startswith("http") else f"{self.api_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    params=params,
                    json=json,
                )
        except httpx.RequestError as e:
            raise ApiError(f"{method} {path}: {type(e).__name__}: {e}", transient=True) from e

        if 200 <= response.status_code < 300:
            if response.status_code == 204:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise ApiError(f"{method} {path}: invalid JSON response", response.status_code) from e

        raise self._error_from_response(method, path, response)

    def _error_from_response(self, method: str, path: str, response: httpx.Response) -> ApiError:
        message = self._error_message(response)
        status = response.status_code

        rate_limited = status == 403 and (
            response.headers.get("x-ratelimit-remaining") == "0"
            or "rate limit" in message.lower()
        )
        retry_after = None
        if response.headers.get("retry-after"):
            try:
                retry_after = float(response.headers["retry-after"])
            except ValueError:
                retry_after = None

        return ApiError(
            f"{method} {path}: {message}",
            status_code=status,
            transient=status in RETRYABLE_STATUS or rate_limited,
            retry_after=retry_after,
        )

    def _error_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return (response.text or "").strip()[:200] or "no response body"

    def _get_headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        return headers
