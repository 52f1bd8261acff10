"""
Jira Import: pull every issue of a Jira project into the local backlog.
"""
import logging
from typing import Dict, List, Optional

from db.models import TicketType
from services.issue_type_service import classify_issue_type
from services.jira_service import adf_to_text, project_jql
from services.logging_service import log_operation
from services.sync_models import ImportResult, RemoteIssue

logger = logging.getLogger(__name__)

IMPORT_ORDER = (TicketType.EPIC.value, TicketType.TASK.value, TicketType.SUBTASK.value)


class JiraImportService:
    """
    Upserts remote issues into the ticket store, epics first so that tasks and
    subtasks can be attached to the parents imported before them.

    store: a TicketService (or compatible) exposing find_by_jira_id,
    find_by_title_and_type, insert_ticket and update_ticket.
    """

    def __init__(self, store, jira, page_size: Optional[int] = None):
        self.store = store
        self.jira = jira
        self.page_size = page_size

    @log_operation("jira_import")
    async def import_all(self, project_id: int, jira_project_key: str) -> ImportResult:
        issues = [issue async for issue in self.jira.iter_issues(project_jql(jira_project_key), self.page_size)]

        by_type: Dict[str, List[RemoteIssue]] = {t: [] for t in IMPORT_ORDER}
        for issue in issues:
            issue_type = issue.issue_type
            ticket_type = classify_issue_type(
                issue_type.name if issue_type else None,
                issue_type.is_subtask if issue_type else False
            )
            by_type[ticket_type].append(issue)

        result = ImportResult()
        local_ids: Dict[str, int] = {}

        for ticket_type in IMPORT_ORDER:
            for issue in by_type[ticket_type]:
                parent_id = None
                if ticket_type != TicketType.EPIC.value and issue.parent_key:
                    parent_id = local_ids.get(issue.parent_key)
                    if parent_id is None:
                        logger.info(f"Parent {issue.parent_key} of {issue.key} was not imported; leaving it unparented")

                local_ids[issue.key] = await self._upsert(project_id, issue, ticket_type, parent_id, result)
                result.imported_count += 1

        logger.info(
            f"Imported {result.imported_count} issues from {jira_project_key} into project {project_id} "
            f"({result.created} new, {result.updated} updated)"
        )
        return result

    async def _upsert(
        self,
        project_id: int,
        issue: RemoteIssue,
        ticket_type: str,
        parent_id: Optional[int],
        result: ImportResult
    ) -> int:
        existing = await self.store.find_by_jira_id(project_id, issue.key)
        if existing is None:
            existing = await self.store.find_by_title_and_type(project_id, issue.summary, ticket_type)

        description = adf_to_text(issue.description)

        if existing is not None:
            await self.store.update_ticket(
                existing.id,
                title=issue.summary,
                description=description,
                type=ticket_type,
                parent_id=parent_id,
                jira_id=issue.key
            )
            result.updated += 1
            return existing.id

        ticket = await self.store.insert_ticket(
            project_id=project_id,
            ticket_type=ticket_type,
            title=issue.summary,
            description=description,
            parent_id=parent_id,
            order_index=0,
            jira_id=issue.key
        )
        result.created += 1
        return ticket.id
