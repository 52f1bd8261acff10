"""
Shared fixtures: an in-memory ticket store and a fake Jira site, so the sync
services can be exercised without a database or network.
"""
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.models import Ticket  # noqa: E402
from services.jira_service import JiraAPIError, JiraNotFoundError, adf_to_text  # noqa: E402
from services.sync_models import IssueType, RemoteIssue  # noqa: E402


EPIC_TYPE = IssueType(id="10000", name="Epic")
TASK_TYPE = IssueType(id="10001", name="Task")
STORY_TYPE = IssueType(id="10002", name="Story")
SUBTASK_TYPE = IssueType(id="10003", name="Subtask", is_subtask=True)

DEFAULT_ISSUE_TYPES = [STORY_TYPE, EPIC_TYPE, TASK_TYPE, SUBTASK_TYPE]


def make_ticket(
    id: int,
    title: str,
    type: str = "task",
    parent_id: Optional[int] = None,
    order_index: int = 0,
    jira_id: Optional[str] = None,
    description: Optional[str] = "",
    project_id: int = 1
) -> Ticket:
    return Ticket(
        id=id,
        project_id=project_id,
        type=type,
        title=title,
        description=description,
        parent_id=parent_id,
        order_index=order_index,
        jira_id=jira_id
    )


def make_issue(
    key: str,
    summary: str,
    description: Optional[str] = None,
    issue_type: IssueType = TASK_TYPE,
    parent_key: Optional[str] = None
) -> RemoteIssue:
    adf = None
    if description is not None:
        adf = {
            "type": "doc",
            "version": 1,
            "content": [{"type": "paragraph", "content": [{"type": "text", "text": description}]}]
        }
    return RemoteIssue(key=key, summary=summary, description=adf, issue_type=issue_type, parent_key=parent_key)


class InMemoryTicketStore:
    """Ticket store with the same async surface as TicketService"""

    def __init__(self, tickets: List[Ticket] = ()):
        self.tickets: Dict[int, Ticket] = {t.id: t for t in tickets}
        self.next_id = max(self.tickets, default=0) + 1
        self.update_calls: List[tuple] = []

    async def list_tickets(self, project_id: int) -> List[Ticket]:
        return sorted(
            (t for t in self.tickets.values() if t.project_id == project_id),
            key=lambda t: (t.order_index, t.id)
        )

    async def get_ticket(self, ticket_id: int, project_id: Optional[int] = None) -> Optional[Ticket]:
        ticket = self.tickets.get(ticket_id)
        if ticket is None or (project_id is not None and ticket.project_id != project_id):
            return None
        return ticket

    async def find_by_jira_id(self, project_id: int, jira_id: str) -> Optional[Ticket]:
        for ticket in sorted(self.tickets.values(), key=lambda t: t.id):
            if ticket.project_id == project_id and ticket.jira_id == jira_id:
                return ticket
        return None

    async def find_by_title_and_type(self, project_id: int, title: str, ticket_type: str) -> Optional[Ticket]:
        for ticket in sorted(self.tickets.values(), key=lambda t: t.id):
            if (ticket.project_id == project_id and ticket.title == title
                    and ticket.type == ticket_type and ticket.jira_id is None):
                return ticket
        return None

    async def insert_ticket(
        self,
        project_id: int,
        ticket_type: str,
        title: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
        order_index: int = 0,
        jira_id: Optional[str] = None
    ) -> Ticket:
        ticket = make_ticket(
            self.next_id, title, type=ticket_type, parent_id=parent_id, order_index=order_index,
            jira_id=jira_id, description=description, project_id=project_id
        )
        self.tickets[ticket.id] = ticket
        self.next_id += 1
        return ticket

    async def update_ticket(self, ticket_id: int, **fields: Any) -> Optional[Ticket]:
        self.update_calls.append((ticket_id, fields))
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            return None
        for name, value in fields.items():
            setattr(ticket, name, value)
        return ticket


class FakeJira:
    """
    A single Jira project held in memory. Records every write; creates get
    sequential keys (PROJ-1, PROJ-2, ...).
    """

    def __init__(self, issues: List[RemoteIssue] = (), issue_types: List[IssueType] = None, project_key: str = "PROJ"):
        self.project_key = project_key
        self.issue_types = list(DEFAULT_ISSUE_TYPES if issue_types is None else issue_types)
        self.issues: Dict[str, RemoteIssue] = {i.key: i for i in issues}
        self.counter = len(self.issues)
        self.created: List[Dict[str, Any]] = []
        self.updated: List[tuple] = []
        self.fail_create_summaries = set()
        self.fail_search_after: Optional[int] = None
        self.get_issue_error: Optional[Exception] = None

    async def get_issue_types_for_project(self, project_key: str) -> List[IssueType]:
        return list(self.issue_types)

    async def get_issue(self, key: str) -> RemoteIssue:
        if self.get_issue_error is not None:
            raise self.get_issue_error
        if key not in self.issues:
            raise JiraNotFoundError(f"Jira resource not found: /issue/{key}", status_code=404)
        return self.issues[key]

    async def create_issue(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        self.created.append(fields)
        if fields["summary"] in self.fail_create_summaries:
            raise JiraAPIError("Jira API error 400: summary rejected", status_code=400)

        self.counter += 1
        key = f"{self.project_key}-{self.counter}"
        issue_type = next(t for t in self.issue_types if t.id == fields["issuetype"]["id"])
        parent = fields.get("parent")
        self.issues[key] = RemoteIssue(
            key=key,
            summary=fields["summary"],
            description=fields.get("description"),
            issue_type=issue_type,
            parent_key=parent["key"] if parent else None
        )
        return {"id": str(10000 + self.counter), "key": key, "self": f"https://example.atlassian.net/rest/api/3/issue/{key}"}

    async def update_issue(self, key: str, fields: Dict[str, Any]) -> None:
        self.updated.append((key, fields))
        if key not in self.issues:
            raise JiraNotFoundError(f"Jira resource not found: /issue/{key}", status_code=404)
        issue = self.issues[key]
        self.issues[key] = issue.model_copy(update={
            "summary": fields.get("summary", issue.summary),
            "description": fields.get("description", issue.description),
        })

    async def iter_issues(self, jql: str, page_size: Optional[int] = None):
        for index, issue in enumerate(list(self.issues.values())):
            if self.fail_search_after is not None and index >= self.fail_search_after:
                raise JiraAPIError("Jira API error 503: search unavailable", status_code=503)
            yield issue

    def summary_of(self, key: str) -> str:
        return self.issues[key].summary

    def description_of(self, key: str) -> str:
        return adf_to_text(self.issues[key].description)


@pytest.fixture
def store():
    return InMemoryTicketStore()


@pytest.fixture
def jira():
    return FakeJira()
