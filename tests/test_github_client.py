"""Tests for GitHub REST client and transport."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from issue_router.adapters.github import GitHubIssuesClient, GitHubTransport
from issue_router.adapters.github.issues_client import DISPATCH_MARKER, dispatch_key
from issue_router.config import GitHubConfig
from issue_router.core import (
    ApiError,
    Classification,
    ClassificationSource,
    IssueContext,
    Priority,
    TargetIssueRef,
)


@pytest.fixture
def transport() -> GitHubTransport:
    """Create transport without backoff delays."""
    return GitHubTransport("test-token", GitHubConfig(max_attempts=3, initial_retry_delay=0.0, timeout=5.0))


@pytest.fixture
def source_issue() -> IssueContext:
    return IssueContext(
        source_id="https://acme.slack.com/archives/C1/p1",
        title="iOS crash on launch",
        body="Swift stack trace",
        author="octocat",
        permalink="https://acme.slack.com/archives/C1/p1",
    )


@pytest.fixture
def classification() -> Classification:
    return Classification(
        repo="acme/ios-app",
        labels=["ios", "mobile"],
        assignees=["dev1"],
        priority=Priority.HIGH,
        source=ClassificationSource.RULE,
        confidence=0.95,
        reasoning="Matched routing rule 'ios'",
    )


def _response(status_code: int, payload=None, headers=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.headers = headers or {}
    response.text = ""
    return response


def _mock_client(mock_client_class: MagicMock, responses: list) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__.return_value = mock_client
    mock_client.request.side_effect = responses
    mock_client_class.return_value = mock_client
    return mock_client


NO_MATCH = _response(200, {"total_count": 0, "items": []})
CREATED = _response(201, {"number": 42, "html_url": "https://github.com/acme/ios-app/issues/42", "node_id": "I_42"})


@pytest.mark.asyncio
async def test_transport_retries_503_then_succeeds(transport: GitHubTransport) -> None:
    """Test transient failures are retried until success."""
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(
            mock_client_class,
            [_response(503, {"message": "unavailable"}), _response(503, {"message": "unavailable"}), _response(200, {"ok": True})],
        )

        result = await transport.request("GET", "/repos/acme/ios-app")

    assert result == {"ok": True}
    assert mock_client.request.call_count == 3


@pytest.mark.asyncio
async def test_transport_does_not_retry_404(transport: GitHubTransport) -> None:
    """Test non-transient errors surface immediately."""
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, [_response(404, {"message": "Not Found"})])

        with pytest.raises(ApiError) as exc_info:
            await transport.request("GET", "/repos/acme/missing")

    assert exc_info.value.status_code == 404
    assert exc_info.value.transient is False
    assert "Not Found" in str(exc_info.value)
    assert mock_client.request.call_count == 1


@pytest.mark.asyncio
async def test_transport_gives_up_after_max_attempts(transport: GitHubTransport) -> None:
    """Test retries are bounded."""
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, [_response(502) for _ in range(3)])

        with pytest.raises(ApiError) as exc_info:
            await transport.request("GET", "/rate_limit")

    assert exc_info.value.status_code == 502
    assert exc_info.value.transient is True
    assert mock_client.request.call_count == 3


@pytest.mark.asyncio
async def test_transport_rate_limit_403_is_transient(transport: GitHubTransport) -> None:
    """Test a rate-limited 403 is retried while a plain 403 is not."""
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(
            mock_client_class,
            [
                _response(403, {"message": "API rate limit exceeded"}, {"x-ratelimit-remaining": "0"}),
                _response(200, {"ok": True}),
            ],
        )
        assert await transport.request("GET", "/user") == {"ok": True}

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, [_response(403, {"message": "Resource not accessible"})])
        with pytest.raises(ApiError) as exc_info:
            await transport.request("GET", "/user")

    assert exc_info.value.transient is False
    assert mock_client.request.call_count == 1


def test_retry_delay(transport: GitHubTransport) -> None:
    """Test exponential backoff and Retry-After."""
    transport.initial_retry_delay = 1.0

    assert [transport.retry_delay(attempt) for attempt in range(3)] == [1.0, 2.0, 4.0]
    assert transport.retry_delay(0, ApiError("slow down", 429, transient=True, retry_after=7.0)) == 7.0


@pytest.mark.asyncio
async def test_graphql_errors_raise(transport: GitHubTransport) -> None:
    """Test GraphQL-level errors become ApiError."""
    payload = {"data": None, "errors": [{"type": "NOT_FOUND", "message": "Could not resolve"}]}
    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, [_response(200, payload)])

        with pytest.raises(ApiError, match="Could not resolve"):
            await transport.graphql("query { viewer { login } }", {})


@pytest.mark.asyncio
async def test_create_issue_retries_503_twice_then_201(
    transport: GitHubTransport, source_issue: IssueContext, classification: Classification
) -> None:
    """Test issue creation survives two 503s and re-checks before each create."""
    client = GitHubIssuesClient(transport)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(
            mock_client_class,
            [NO_MATCH, _response(503), NO_MATCH, _response(503), NO_MATCH, CREATED],
        )

        target = await client.create_or_update_issue(classification, source_issue)

    assert target == TargetIssueRef(
        repo="acme/ios-app",
        number=42,
        url="https://github.com/acme/ios-app/issues/42",
        node_id="I_42",
        created=True,
    )

    methods = [call.args[0] for call in mock_client.request.call_args_list]
    assert methods == ["GET", "POST", "GET", "POST", "GET", "POST"]

    create_call = mock_client.request.call_args_list[-1]
    body = create_call.kwargs["json"]["body"]
    assert DISPATCH_MARKER.format(key=dispatch_key(source_issue)) in body
    assert "**Slack Thread:** https://acme.slack.com/archives/C1/p1" in body
    assert "**Author:** @octocat" in body
    assert body.endswith("Swift stack trace")
    assert create_call.kwargs["json"]["labels"] == ["ios", "mobile"]
    assert create_call.kwargs["json"]["assignees"] == ["dev1"]
    assert create_call.kwargs["headers"]["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_create_issue_reuses_existing_dispatch(
    transport: GitHubTransport, source_issue: IssueContext, classification: Classification
) -> None:
    """Test an issue already carrying the dispatch key is reused, not duplicated."""
    client = GitHubIssuesClient(transport)
    existing = _response(200, {
        "total_count": 1,
        "items": [{"number": 7, "html_url": "https://github.com/acme/ios-app/issues/7", "node_id": "I_7"}],
    })

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, [existing, _response(200, [])])

        target = await client.create_or_update_issue(classification, source_issue)

    assert target.number == 7
    assert target.created is False

    search_call, labels_call = mock_client.request.call_args_list
    assert dispatch_key(source_issue) in search_call.kwargs["params"]["q"]
    assert labels_call.args[1].endswith("/repos/acme/ios-app/issues/7/labels")
    assert labels_call.kwargs["json"] == {"labels": ["ios", "mobile"]}


@pytest.mark.asyncio
async def test_same_content_from_another_source_creates_new_issue(
    transport: GitHubTransport, source_issue: IssueContext, classification: Classification
) -> None:
    """Test an existing dispatch is only matched by a retry of the same source."""
    client = GitHubIssuesClient(transport)
    first_key = dispatch_key(source_issue)
    existing = _response(200, {
        "total_count": 1,
        "items": [{"number": 7, "html_url": "https://github.com/acme/ios-app/issues/7", "node_id": "I_7"}],
    })

    async def github(method, url, headers=None, params=None, json=None):
        if method == "GET":
            return existing if first_key in params["q"] else NO_MATCH
        return CREATED

    other_source = IssueContext(
        source_id="https://acme.slack.com/archives/C2/p9",
        title=source_issue.title,
        body=source_issue.body,
        author=source_issue.author,
        permalink="https://acme.slack.com/archives/C2/p9",
    )

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, [])
        mock_client.request.side_effect = github

        reused = await client.create_or_update_issue(classification, source_issue)
        created = await client.create_or_update_issue(classification, other_source)

    assert reused.number == 7
    assert reused.created is False
    assert created.number == 42
    assert created.created is True
    assert dispatch_key(other_source) != first_key

    create_call = mock_client.request.call_args_list[-1]
    assert create_call.args[0] == "POST"
    assert DISPATCH_MARKER.format(key=dispatch_key(other_source)) in create_call.kwargs["json"]["body"]

@pytest.mark.asyncio
async def test_create_issue_non_transient_error(
    transport: GitHubTransport, source_issue: IssueContext, classification: Classification
) -> None:
    """Test a 422 on create is raised without another round."""
    client = GitHubIssuesClient(transport)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, [NO_MATCH, _response(422, {"message": "Validation Failed"})])

        with pytest.raises(ApiError) as exc_info:
            await client.create_or_update_issue(classification, source_issue)

    assert exc_info.value.status_code == 422
    assert mock_client.request.call_count == 2


@pytest.mark.asyncio
async def test_invalid_repository_makes_no_request(
    transport: GitHubTransport, source_issue: IssueContext, classification: Classification
) -> None:
    """Test malformed repo strings are rejected before any HTTP call."""
    client = GitHubIssuesClient(transport)
    classification.repo = "not-a-repo"

    with patch("httpx.AsyncClient") as mock_client_class:
        with pytest.raises(ApiError, match="Invalid repository format"):
            await client.create_or_update_issue(classification, source_issue)

    mock_client_class.assert_not_called()


@pytest.mark.asyncio
async def test_close_source_issue(transport: GitHubTransport) -> None:
    """Test the router issue is commented on, labelled and closed."""
    client = GitHubIssuesClient(transport)
    target = TargetIssueRef(repo="acme/ios-app", number=42, url="https://github.com/acme/ios-app/issues/42")

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(
            mock_client_class,
            [_response(201, {"id": 1}), _response(200, []), _response(200, {"state": "closed"})],
        )

        await client.close_source_issue("acme/router", 5, target)

    comment, labels, close = mock_client.request.call_args_list
    assert comment.args[:2] == ("POST", "https://api.github.com/repos/acme/router/issues/5/comments")
    assert target.url in comment.kwargs["json"]["body"]
    assert labels.kwargs["json"] == {"labels": ["routed", "automated"]}
    assert close.args[0] == "PATCH"
    assert close.kwargs["json"]["state"] == "closed"


@pytest.mark.asyncio
async def test_list_labels(transport: GitHubTransport) -> None:
    """Test label names are returned."""
    client = GitHubIssuesClient(transport)

    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, [_response(200, [{"name": "bug"}, {"name": "ios"}])])

        assert await client.list_labels("acme/ios-app") == ["bug", "ios"]
