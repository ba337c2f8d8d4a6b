"""GitHub Projects v2 client (GraphQL)."""

import logging
from typing import Any, Optional

from issue_router.adapters.github.transport import GitHubTransport, split_repo
from issue_router.config import Settings
from issue_router.core import Classification, Priority, ProjectBoard, ProjectRef, TargetIssueRef
from issue_router.core.entities import FieldValue
from issue_router.core.errors import ApiError

LOGGER = logging.getLogger(__name__)

PROJECT_FIELDS_FRAGMENT = """
      id
      title
      fields(first: 50) {
        nodes {
          ... on ProjectV2FieldCommon { id name dataType }
          ... on ProjectV2SingleSelectField { id name dataType options { id name } }
        }
      }
"""

GET_PROJECT_QUERY = {
    "organization": (
        "query($owner: String!, $number: Int!) {"
        " organization(login: $owner) { projectV2(number: $number) {"
        + PROJECT_FIELDS_FRAGMENT
        + "} } }"
    ),
    "user": (
        "query($owner: String!, $number: Int!) {"
        " user(login: $owner) { projectV2(number: $number) {"
        + PROJECT_FIELDS_FRAGMENT
        + "} } }"
    ),
}

ISSUE_NODE_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) {
      id
      projectItems(first: 50) { nodes { id project { id } } }
    }
  }
}
"""

ADD_ITEM_MUTATION = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: {projectId: $projectId, contentId: $contentId}) {
    item { id }
  }
}
"""

UPDATE_FIELD_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $value: ProjectV2FieldValue!) {
  updateProjectV2ItemFieldValue(
    input: {projectId: $projectId, itemId: $itemId, fieldId: $fieldId, value: $value}
  ) {
    projectV2Item { id }
  }
}
"""

PRIORITY_FIELDS = {
    Priority.CRITICAL: ("Critical", "Todo"),
    Priority.HIGH: ("High", "Todo"),
    Priority.MEDIUM: ("Medium", "Backlog"),
    Priority.LOW: ("Low", "Backlog"),
}

LABEL_FIELDS = (
    ("bug", "Bug", "Medium"),
    ("feature", "Feature", "Large"),
    ("documentation", "Documentation", "Small"),
)


def default_project_fields(classification: Classification) -> dict[str, FieldValue]:
    """Board fields derived from priority and labels, overridden by explicit ones."""
    priority, status = PRIORITY_FIELDS[classification.priority]
    fields: dict[str, FieldValue] = {"Priority": priority, "Status": status}

    for label, type_name, size in LABEL_FIELDS:
        if label in classification.labels:
            fields["Type"] = type_name
            fields["Size"] = size
            break

    fields.update(classification.project_fields)
    return fields


def _dig(data: Any, *keys: str) -> Any:
    """Walk nested GraphQL objects; None when any level is missing or not an object."""
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data

class GitHubProjectsClient(ProjectBoard):
    """Attach issues to a Projects v2 board and fill in its fields."""

    def __init__(self, transport: GitHubTransport) -> None:
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubProjectsClient":
        return cls(GitHubTransport(settings.github_token, settings.github))

    async def add_issue_to_project(
        self,
        project: ProjectRef,
        issue: TargetIssueRef,
        classification: Classification,
    ) -> Optional[str]:
        board = await self.get_project(project)
        node_id, existing_items = await self._issue_node(issue)

        item_id = existing_items.get(board["id"])
        if item_id:
            LOGGER.info("%s#%d already on project %s", issue.repo, issue.number, board.get("title"))
            return item_id

        data = await self.transport.graphql(
            ADD_ITEM_MUTATION, {"projectId": board["id"], "contentId": node_id or issue.node_id}
        )
        item_id = _dig(data, "addProjectV2ItemById", "item", "id")
        if not item_id:
            raise ApiError("Unexpected addProjectV2ItemById payload: missing item id")

        LOGGER.info("Added %s#%d to project %s", issue.repo, issue.number, board.get("title"))

        fields = default_project_fields(classification)
        await self.set_field_values(board, item_id, fields)
        return item_id

    async def get_project(self, project: ProjectRef) -> dict[str, Any]:
        """Resolve the ProjectV2 node with its field definitions."""
        query = GET_PROJECT_QUERY.get(project.owner_type)
        if query is None:
            raise ApiError(f"Unsupported project owner type: {project.owner_type}")

        data = await self.transport.graphql(query, {"owner": project.owner, "number": project.number})
        board = _dig(data, project.owner_type, "projectV2")
        if not board:
            raise ApiError(f"Project {project.owner}#{project.number} not found")
        if not isinstance(board, dict) or not board.get("id"):
            raise ApiError(f"Unexpected projectV2 payload for {project.owner}#{project.number}: missing id")
        return board

    async def set_field_values(
        self, board: dict[str, Any], item_id: str, values: dict[str, FieldValue]
    ) -> None:
        """Set board fields by name; unknown fields and options are skipped."""
        fields = {
            node["name"]: node
            for node in _dig(board, "fields", "nodes") or []
            if isinstance(node, dict) and node.get("name") and node.get("id")
        }

        for name, value in values.items():
            field = fields.get(name)
            if field is None:
                LOGGER.warning("Project field '%s' not found, skipping", name)
                continue

            field_value = self._field_value(field, value)
            if field_value is None:
                continue

            await self.transport.graphql(
                UPDATE_FIELD_MUTATION,
                {
                    "projectId": board["id"],
                    "itemId": item_id,
                    "fieldId": field["id"],
                    "value": field_value,
                },
            )
            LOGGER.debug("Set project field %s = %s", name, value)

    def _field_value(self, field: dict[str, Any], value: FieldValue) -> Optional[dict[str, Any]]:
        data_type = field.get("dataType")

        if data_type == "SINGLE_SELECT":
            for option in field.get("options") or []:
                if not isinstance(option, dict) or not option.get("id"):
                    continue
                if str(option.get("name", "")).lower() == str(value).lower():
                    return {"singleSelectOptionId": option["id"]}
            LOGGER.warning("Option '%s' not found for field '%s', skipping", value, field["name"])
            return None
        if data_type == "NUMBER":
            try:
                return {"number": float(value)}
            except (TypeError, ValueError):
                LOGGER.warning("Field '%s' expects a number, got %r", field["name"], value)
                return None
        if data_type == "DATE":
            return {"date": str(value)}
        if data_type == "TEXT":
            return {"text": str(value)}

        LOGGER.warning("Unsupported field type %s for '%s', skipping", data_type, field["name"])
        return None

    async def _issue_node(self, issue: TargetIssueRef) -> tuple[Optional[str], dict[str, str]]:
        """Node id of the issue and its existing items keyed by project id."""
        owner, name = split_repo(issue.repo)
        data = await self.transport.graphql(
            ISSUE_NODE_QUERY, {"owner": owner, "name": name, "number": issue.number}
        )
        node = _dig(data, "repository", "issue")
        if not isinstance(node, dict):
            node = {}
        node_id = node.get("id") or issue.node_id
        if not node_id:
            raise ApiError(f"Issue {issue.repo}#{issue.number} not found")

        items = {
            _dig(item, "project", "id"): item["id"]
            for item in _dig(node, "projectItems", "nodes") or []
            if isinstance(item, dict) and item.get("id") and _dig(item, "project", "id")
        }
        return node_id, items
