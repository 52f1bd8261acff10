"""
Sync Preview: compute the change set that would bring a Jira project in line
with the local backlog. Never writes anything, locally or remotely.
"""
import logging
from typing import List, Optional, Set

from db.models import Ticket
from services.jira_service import (
    AuthenticationError,
    JiraAPIError,
    JiraNotFoundError,
    adf_to_text,
    project_jql,
)
from services.logging_service import log_operation
from services.sync_models import ChangeType, FieldDiff, RemoteIssue, SyncChange, SyncPreview

logger = logging.getLogger(__name__)


def diff_ticket(ticket: Ticket, issue: RemoteIssue) -> List[FieldDiff]:
    """Field differences between a linked ticket and its remote issue (old=remote, new=local)"""
    diffs: List[FieldDiff] = []

    if issue.summary != ticket.title:
        diffs.append(FieldDiff(field="title", old_value=issue.summary, new_value=ticket.title))

    remote_description = adf_to_text(issue.description)
    local_description = (ticket.description or "").strip()
    if remote_description != local_description:
        diffs.append(FieldDiff(field="description", old_value=remote_description, new_value=local_description))

    return diffs


class SyncPreviewService:
    """
    Builds a SyncPreview for one project.

    store: anything with ``list_tickets(project_id)``.
    jira: a JiraRESTService (or compatible) bound to the user's site.
    """

    def __init__(self, store, jira, page_size: Optional[int] = None):
        self.store = store
        self.jira = jira
        self.page_size = page_size

    @log_operation("sync_preview")
    async def preview(self, project_id: int, jira_project_key: str) -> SyncPreview:
        tickets = await self.store.list_tickets(project_id)

        creates: List[SyncChange] = []
        updates: List[SyncChange] = []

        for ticket in tickets:
            if not ticket.jira_id:
                creates.append(self._create_change(ticket))
                continue

            try:
                issue = await self.jira.get_issue(ticket.jira_id)
            except JiraNotFoundError:
                logger.info(
                    f"Ticket {ticket.id} is linked to {ticket.jira_id}, which no longer exists in Jira; "
                    f"scheduling re-creation"
                )
                creates.append(self._create_change(ticket, previous_remote_id=ticket.jira_id))
                continue

            diffs = diff_ticket(ticket, issue)
            if diffs:
                updates.append(SyncChange(
                    id=f"update-{ticket.id}",
                    ticket_id=ticket.id,
                    title=ticket.title,
                    description=ticket.description or "",
                    change_type=ChangeType.UPDATE,
                    remote_id=ticket.jira_id,
                    diff=diffs
                ))

        local_keys = {t.jira_id for t in tickets if t.jira_id}
        warnings: List[str] = []
        scan_complete = True
        try:
            soft_deletes = await self._soft_delete_changes(jira_project_key, local_keys)
        except AuthenticationError:
            raise
        except JiraAPIError as e:
            logger.warning(f"Soft-delete scan of {jira_project_key} failed: {e}")
            soft_deletes = []
            scan_complete = False
            warnings.append(
                f"Could not list all issues of {jira_project_key}; deletions were not checked: {e}"
            )

        logger.info(
            f"Sync preview for project {project_id} ({jira_project_key}): "
            f"{len(creates)} to create, {len(updates)} to update, {len(soft_deletes)} to delete"
        )

        return SyncPreview(
            changes=creates + updates + soft_deletes,
            soft_delete_scan_complete=scan_complete,
            warnings=warnings
        )

    def _create_change(self, ticket: Ticket, previous_remote_id: Optional[str] = None) -> SyncChange:
        return SyncChange(
            id=f"create-{ticket.id}",
            ticket_id=ticket.id,
            title=ticket.title,
            description=ticket.description or "",
            change_type=ChangeType.CREATE,
            previous_remote_id=previous_remote_id
        )

    async def _soft_delete_changes(self, jira_project_key: str, local_keys: Set[str]) -> List[SyncChange]:
        changes: List[SyncChange] = []
        async for issue in self.jira.iter_issues(project_jql(jira_project_key), self.page_size):
            if issue.key in local_keys or issue.is_soft_deleted:
                continue
            changes.append(SyncChange(
                id=f"soft-delete-{issue.key}",
                title=issue.summary,
                description=adf_to_text(issue.description),
                change_type=ChangeType.SOFT_DELETE,
                remote_id=issue.key
            ))
        return changes
