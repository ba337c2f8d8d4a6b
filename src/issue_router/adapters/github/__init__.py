"""GitHub adapters."""

from issue_router.adapters.github.issues_client import GitHubIssuesClient
from issue_router.adapters.github.projects_client import GitHubProjectsClient, default_project_fields
from issue_router.adapters.github.transport import GitHubTransport

__all__ = ["GitHubIssuesClient", "GitHubProjectsClient", "GitHubTransport", "default_project_fields"]
