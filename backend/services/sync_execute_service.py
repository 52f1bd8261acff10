"""
Sync Executor: replay a confirmed change set against Jira.

Changes are applied one at a time, parents before children, so that a
child's create can reference the key its parent received a moment earlier.
A failing change is recorded and the run moves on; only an authentication
failure stops it.
"""
import logging
from typing import Any, Dict, List, Optional

from db.models import Ticket
from services.issue_type_service import IssueTypeResolver
from services.jira_service import AuthenticationError, text_to_adf
from services.logging_service import log_operation
from services.retry_service import SyncResult
from services.sync_models import ChangeType, DELETED_SUFFIX, IssueTypeMap, SyncChange

logger = logging.getLogger(__name__)


class ChangeSkipped(Exception):
    """A change that no longer applies to the current local state"""
    pass


class SyncExecuteService:
    """
    store: anything with ``list_tickets(project_id)`` and ``update_ticket(id, **fields)``.
    jira: a JiraRESTService (or compatible) bound to the user's site.
    """

    def __init__(self, store, jira):
        self.store = store
        self.jira = jira

    @log_operation("sync_execute")
    async def execute(self, project_id: int, jira_project_key: str, changes: List[SyncChange]) -> SyncResult:
        result = SyncResult()

        type_map = await IssueTypeResolver(self.jira).resolve(jira_project_key)
        for ticket_type in type_map.missing:
            result.add_warning(f"Jira project {jira_project_key} has no issue type for {ticket_type} tickets")

        tickets: Dict[int, Ticket] = {t.id: t for t in await self.store.list_tickets(project_id)}
        # Remote key per local ticket as of now; grows as creates succeed
        remote_keys: Dict[int, Optional[str]] = {t.id: t.jira_id for t in tickets.values()}

        ticket_changes: List[SyncChange] = []
        soft_deletes: List[SyncChange] = []
        seen_ids = set()
        for change in changes:
            if change.id in seen_ids:
                result.add_skipped(change.id, change.ticket_id, "Duplicate change")
                continue
            seen_ids.add(change.id)

            if change.change_type == ChangeType.SOFT_DELETE:
                soft_deletes.append(change)
            elif change.ticket_id not in tickets:
                result.add_skipped(change.id, change.ticket_id, f"Ticket {change.ticket_id} no longer exists")
            else:
                ticket_changes.append(change)

        ticket_changes.sort(key=lambda c: (
            tickets[c.ticket_id].level,
            tickets[c.ticket_id].order_index,
            c.ticket_id
        ))

        for change in ticket_changes + soft_deletes:
            try:
                if change.change_type == ChangeType.CREATE:
                    await self._create(change, tickets[change.ticket_id], jira_project_key, type_map, remote_keys, result)
                elif change.change_type == ChangeType.UPDATE:
                    await self._update(change, tickets[change.ticket_id], remote_keys, result)
                else:
                    await self._soft_delete(change, remote_keys, result)
            except ChangeSkipped as e:
                logger.info(f"Skipping {change.id}: {e}")
                result.add_skipped(change.id, change.ticket_id, str(e))
            except AuthenticationError:
                raise
            except Exception as e:
                logger.error(f"Failed to apply {change.id} to Jira: {e}", exc_info=True)
                result.add_failed(change.id, change.ticket_id, change.change_type.value, str(e))

        result.finalize()
        logger.info(
            f"Sync of project {project_id} to {jira_project_key} finished: "
            f"{result.synced_count} synced, {len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    async def _create(
        self,
        change: SyncChange,
        ticket: Ticket,
        jira_project_key: str,
        type_map: IssueTypeMap,
        remote_keys: Dict[int, Optional[str]],
        result: SyncResult
    ):
        current_key = remote_keys.get(ticket.id)
        if current_key and current_key != change.previous_remote_id:
            raise ChangeSkipped(f"Ticket {ticket.id} is already linked to {current_key}")

        issue_type = type_map.for_ticket_type(ticket.type)
        if issue_type is None:
            message = f"No Jira issue type available for {ticket.type} tickets"
            logger.warning(f"{message}; ticket {ticket.id} not created")
            result.add_warning(message)
            raise ChangeSkipped(message)

        fields: Dict[str, Any] = {
            "project": {"key": jira_project_key},
            "summary": ticket.title,
            "description": text_to_adf(ticket.description),
            "issuetype": {"id": issue_type.id},
        }

        if ticket.parent_id is not None:
            parent_key = remote_keys.get(ticket.parent_id)
            if not parent_key:
                raise ValueError(f"Parent ticket {ticket.parent_id} is not synced to Jira")
            fields["parent"] = {"key": parent_key}

        created = await self.jira.create_issue(fields)
        key = created.get("key")
        if not key:
            raise ValueError(f"Jira did not return a key for ticket {ticket.id}")

        # Persist right away; a later failure must not lose the link
        await self.store.update_ticket(ticket.id, jira_id=key)
        remote_keys[ticket.id] = key
        result.add_created(change.id, ticket.id, key)
        logger.info(f"Created {key} for ticket {ticket.id}")

    async def _update(
        self,
        change: SyncChange,
        ticket: Ticket,
        remote_keys: Dict[int, Optional[str]],
        result: SyncResult
    ):
        key = remote_keys.get(ticket.id)
        if not key:
            raise ChangeSkipped(f"Ticket {ticket.id} is not linked to a Jira issue")

        changed = [d.field for d in change.diff] or ["title", "description"]
        fields: Dict[str, Any] = {}
        if "title" in changed:
            fields["summary"] = ticket.title
        if "description" in changed:
            fields["description"] = text_to_adf(ticket.description)

        await self.jira.update_issue(key, fields)
        result.add_updated(change.id, ticket.id, key, sorted(changed))
        logger.info(f"Updated {key} ({', '.join(sorted(changed))})")

    async def _soft_delete(
        self,
        change: SyncChange,
        remote_keys: Dict[int, Optional[str]],
        result: SyncResult
    ):
        key = change.remote_id
        if not key:
            raise ChangeSkipped("Soft delete without a Jira key")
        if key in set(remote_keys.values()):
            raise ChangeSkipped(f"{key} is linked to a local ticket again")
        if change.title.endswith(DELETED_SUFFIX):
            raise ChangeSkipped(f"{key} is already marked as deleted")

        await self.jira.update_issue(key, {"summary": f"{change.title}{DELETED_SUFFIX}"})
        result.add_soft_deleted(change.id, key)
        logger.info(f"Marked {key} as deleted")
