"""
Issue-type resolution: map a Jira project's open-ended issue-type schema onto
the three local ticket types.
"""
import logging
from typing import Iterable, Optional

from db.models import TicketType
from services.sync_models import IssueType, IssueTypeMap

logger = logging.getLogger(__name__)


def resolve_issue_types(issue_types: Iterable[IssueType]) -> IssueTypeMap:
    """
    Pick the remote issue type for epic, task and subtask.

    - epic: the type named "epic" (case-insensitive)
    - subtask: the first type flagged as a subtask type
    - task: the first type that is neither a subtask nor "epic"; a type named
      exactly "task" wins over other candidates such as "Bug" or "Story"
    """
    issue_types = list(issue_types)

    epic: Optional[IssueType] = None
    subtask: Optional[IssueType] = None
    task: Optional[IssueType] = None

    for it in issue_types:
        name = it.name.strip().lower()
        if epic is None and name == "epic" and not it.is_subtask:
            epic = it
        elif subtask is None and it.is_subtask:
            subtask = it
        elif not it.is_subtask and name != "epic":
            if task is None or (name == "task" and task.name.strip().lower() != "task"):
                task = it

    return IssueTypeMap(epic=epic, task=task, subtask=subtask)


def classify_issue_type(name: Optional[str], is_subtask: bool = False) -> str:
    """Local ticket type for a single remote issue, judged by its type name"""
    lowered = (name or "").strip().lower()
    if lowered == "epic":
        return TicketType.EPIC.value
    if lowered in ("sub-task", "subtask") or is_subtask:
        return TicketType.SUBTASK.value
    return TicketType.TASK.value


class IssueTypeResolver:
    """Fetches a project's issue types and resolves them. Stateless across calls."""

    def __init__(self, jira):
        self.jira = jira

    async def resolve(self, project_key: str) -> IssueTypeMap:
        issue_types = await self.jira.get_issue_types_for_project(project_key)
        type_map = resolve_issue_types(issue_types)
        if type_map.missing:
            logger.warning(
                f"Jira project {project_key} has no issue type for: {', '.join(type_map.missing)}"
            )
        return type_map
