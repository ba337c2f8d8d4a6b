"""Tests for Claude client."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from issue_router.adapters.llm import ClaudeClient
from issue_router.config import Settings
from issue_router.core import ClassificationError, ClassificationSource, IssueContext, Priority

TARGETS = ["acme/inbox", "acme/ios-app", "acme/backend"]
VOCABULARY = {"acme/inbox": [], "acme/ios-app": ["ios", "mobile"], "acme/backend": ["bug"]}


@pytest.fixture
def mock_settings() -> Settings:
    """Create mock settings."""
    settings = Settings(anthropic_api_key="test-key")
    settings.claude.timeout = 5.0
    return settings


@pytest.fixture
def test_issue() -> IssueContext:
    """Create test issue."""
    return IssueContext(
        source_id="https://acme.slack.com/archives/C1/p1",
        title="Push notifications missing on iPhone",
        body="Since the last release no pushes arrive.",
        author="octocat",
    )


def _mock_response(text: str, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {"content": [{"text": text}]}
    return response


def _mock_client(mock_client_class: MagicMock, response: MagicMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__.return_value = mock_client
    mock_client.post.return_value = response
    mock_client_class.return_value = mock_client
    return mock_client


@pytest.mark.asyncio
async def test_classify_success(mock_settings: Settings, test_issue: IssueContext) -> None:
    """Test successful classification."""
    client = ClaudeClient(mock_settings)
    answer = json.dumps({
        "repo": "acme/ios-app",
        "labels": ["ios", "bug"],
        "assignees": [],
        "priority": "high",
        "confidence": 0.82,
        "reasoning": "Mentions iPhone push notifications",
        "project_fields": {"Type": "Bug"},
    })

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, _mock_response(f"```json\n{answer}\n```"))

        result = await client.classify(test_issue, TARGETS, VOCABULARY)

    assert result.repo == "acme/ios-app"
    assert result.labels == ["ios", "bug"]
    assert result.priority is Priority.HIGH
    assert result.source is ClassificationSource.AI
    assert result.confidence == 0.82
    assert result.project_fields == {"Type": "Bug"}
    assert client.last_usage is None

    payload = mock_client.post.call_args.kwargs["json"]
    assert payload["model"] == mock_settings.claude.model
    prompt = payload["messages"][0]["content"]
    assert "acme/ios-app: [ios, mobile]" in prompt
    assert "Push notifications missing on iPhone" in prompt
    assert mock_client.post.call_args.kwargs["headers"]["x-api-key"] == "test-key"


@pytest.mark.asyncio
async def test_classify_unknown_repository(mock_settings: Settings, test_issue: IssueContext) -> None:
    """Test a repository outside the target list is rejected."""
    client = ClaudeClient(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, _mock_response('{"repo": "acme/unknown", "labels": []}'))

        with pytest.raises(ClassificationError, match="Unknown repository"):
            await client.classify(test_issue, TARGETS, VOCABULARY)


@pytest.mark.asyncio
async def test_classify_http_error(mock_settings: Settings, test_issue: IssueContext) -> None:
    """Test non-200 responses raise without retrying."""
    client = ClaudeClient(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(mock_client_class, _mock_response("", status_code=529))

        with pytest.raises(ClassificationError, match="HTTP 529"):
            await client.classify(test_issue, TARGETS, VOCABULARY)

    assert mock_client.post.call_count == 1


@pytest.mark.asyncio
async def test_classify_malformed_json(mock_settings: Settings, test_issue: IssueContext) -> None:
    """Test an unparseable answer raises ClassificationError."""
    client = ClaudeClient(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, _mock_response("I think it belongs to the iOS team."))

        with pytest.raises(ClassificationError, match="Malformed"):
            await client.classify(test_issue, TARGETS, VOCABULARY)


@pytest.mark.asyncio
async def test_classify_normalizes_priority_and_confidence(
    mock_settings: Settings, test_issue: IssueContext
) -> None:
    """Test unknown priority falls back to medium and confidence is clamped."""
    client = ClaudeClient(mock_settings)
    answer = '{"repo": "acme/backend", "labels": ["bug"], "priority": "urgent", "confidence": 3}'

    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, _mock_response(answer))

        result = await client.classify(test_issue, TARGETS, VOCABULARY)

    assert result.priority is Priority.MEDIUM
    assert result.confidence == 1.0


@pytest.mark.asyncio
async def test_classify_rejects_non_string_labels(mock_settings: Settings, test_issue: IssueContext) -> None:
    """Test labels must be a list of strings."""
    client = ClaudeClient(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, _mock_response('{"repo": "acme/backend", "labels": "bug"}'))

        with pytest.raises(ClassificationError, match="labels"):
            await client.classify(test_issue, TARGETS, VOCABULARY)


@pytest.mark.asyncio
async def test_classify_reports_token_usage(mock_settings: Settings, test_issue: IssueContext) -> None:
    """Test token usage from the response is exposed as last_usage."""
    client = ClaudeClient(mock_settings)
    response = _mock_response(json.dumps({"repo": "acme/backend", "priority": "low", "confidence": 0.6}))
    response.json.return_value["usage"] = {"input_tokens": 812, "output_tokens": 64}

    with patch("httpx.AsyncClient") as mock_client_class:
        _mock_client(mock_client_class, response)

        await client.classify(test_issue, TARGETS, VOCABULARY)

    assert client.last_usage == (812, 64)
