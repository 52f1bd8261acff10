"""
Ticket store: the local epic → task → subtask hierarchy of a project.

Tickets live in one flat table with parent pointers. Every write commits
immediately so that a remote key stored after a Jira create survives a
failure later in the same sync run.
"""
from typing import Optional, List, Dict, Iterable, Iterator, Any
import logging

from pydantic import BaseModel, Field
from sqlalchemy import select, and_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Ticket, TicketType, PARENT_TYPE

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"title", "description", "type", "parent_id", "order_index", "jira_id"}


class HierarchyError(ValueError):
    """Raised when a ticket would break the epic → task → subtask contract"""
    pass


class GeneratedNode(BaseModel):
    """One node of a generated backlog tree (epic, task or subtask)"""
    title: str
    description: str = ""
    children: List["GeneratedNode"] = Field(default_factory=list)


GeneratedNode.model_rebuild()


class TicketOrderUpdate(BaseModel):
    id: int
    parent_id: Optional[int] = None
    order_index: int


# ============================================
# Tree helpers (pure)
# ============================================

def children_index(tickets: Iterable[Ticket]) -> Dict[Optional[int], List[Ticket]]:
    """parent_id -> children sorted by order_index"""
    index: Dict[Optional[int], List[Ticket]] = {}
    for ticket in tickets:
        index.setdefault(ticket.parent_id, []).append(ticket)
    for siblings in index.values():
        siblings.sort(key=lambda t: (t.order_index, t.id))
    return index


def iter_subtree(tickets: Iterable[Ticket], root_id: int) -> Iterator[Ticket]:
    """Depth-first walk of root_id and its descendants; each ticket is visited once even if parent links loop"""
    tickets = list(tickets)
    by_id = {t.id: t for t in tickets}
    index = children_index(tickets)

    if root_id not in by_id:
        return

    visited = set()
    stack = [by_id[root_id]]
    while stack:
        ticket = stack.pop()
        if ticket.id in visited:
            continue
        visited.add(ticket.id)
        yield ticket
        stack.extend(reversed(index.get(ticket.id, [])))


def validate_hierarchy(ticket_type: str, parent: Optional[Ticket]) -> None:
    """Check that parent is an allowed parent for a ticket of ticket_type"""
    if ticket_type not in PARENT_TYPE:
        raise HierarchyError(f"Unknown ticket type: {ticket_type}")

    expected = PARENT_TYPE[ticket_type]
    if parent is None:
        return
    if expected is None:
        raise HierarchyError(f"A {ticket_type} cannot have a parent")
    if parent.type != expected:
        raise HierarchyError(f"A {ticket_type} must be placed under a {expected}, not a {parent.type}")


# ============================================
# Store
# ============================================

class TicketService:
    """SQLAlchemy-backed ticket store"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_tickets(self, project_id: int) -> List[Ticket]:
        """All tickets of a project, siblings in order_index order"""
        result = await self.session.execute(
            select(Ticket)
            .where(Ticket.project_id == project_id)
            .order_by(Ticket.order_index, Ticket.id)
        )
        return list(result.scalars().all())

    async def get_ticket(self, ticket_id: int, project_id: Optional[int] = None) -> Optional[Ticket]:
        query = select(Ticket).where(Ticket.id == ticket_id)
        if project_id is not None:
            query = query.where(Ticket.project_id == project_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_by_jira_id(self, project_id: int, jira_id: str) -> Optional[Ticket]:
        result = await self.session.execute(
            select(Ticket)
            .where(and_(Ticket.project_id == project_id, Ticket.jira_id == jira_id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_title_and_type(self, project_id: int, title: str, ticket_type: str) -> Optional[Ticket]:
        """Oldest never-linked ticket with this exact title and type"""
        result = await self.session.execute(
            select(Ticket)
            .where(and_(
                Ticket.project_id == project_id,
                Ticket.title == title,
                Ticket.type == ticket_type,
                Ticket.jira_id.is_(None)
            ))
            .order_by(Ticket.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

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
        ticket = Ticket(
            project_id=project_id,
            type=ticket_type,
            title=title,
            description=description,
            parent_id=parent_id,
            order_index=order_index,
            jira_id=jira_id
        )
        self.session.add(ticket)
        await self.session.commit()
        await self.session.refresh(ticket)
        return ticket

    async def update_ticket(self, ticket_id: int, **fields: Any) -> Optional[Ticket]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update ticket fields: {', '.join(sorted(unknown))}")

        ticket = await self.get_ticket(ticket_id)
        if not ticket:
            return None

        for name, value in fields.items():
            setattr(ticket, name, value)
        await self.session.commit()
        return ticket

    async def edit_ticket(self, ticket_id: int, project_id: int, **fields: Any) -> Ticket:
        """User edit of title/description/type; type changes must keep the hierarchy valid"""
        ticket = await self.get_ticket(ticket_id, project_id)
        if not ticket:
            raise LookupError(f"Ticket {ticket_id} not found")

        new_type = fields.get("type", ticket.type)
        if new_type != ticket.type:
            parent = await self.get_ticket(ticket.parent_id) if ticket.parent_id else None
            validate_hierarchy(new_type, parent)
            for child in children_index(await self.list_tickets(project_id)).get(ticket.id, []):
                if PARENT_TYPE.get(child.type) != new_type:
                    raise HierarchyError(f"Ticket {ticket_id} has {child.type} children and cannot become a {new_type}")

        return await self.update_ticket(ticket_id, **fields)

    async def reorder_tickets(self, project_id: int, updates: List[TicketOrderUpdate]) -> None:
        """Apply drag-and-drop moves (new parent and position) in one transaction"""
        tickets = {t.id: t for t in await self.list_tickets(project_id)}

        for update in updates:
            if update.id not in tickets:
                raise LookupError(f"Ticket {update.id} not found in project {project_id}")
            if update.parent_id is not None and update.parent_id not in tickets:
                raise LookupError(f"Parent ticket {update.parent_id} not found in project {project_id}")

        for update in updates:
            tickets[update.id].parent_id = update.parent_id
            tickets[update.id].order_index = update.order_index

        try:
            for update in updates:
                ticket = tickets[update.id]
                parent = tickets.get(ticket.parent_id) if ticket.parent_id else None
                validate_hierarchy(ticket.type, parent)
                if ticket.parent_id is not None and ticket.parent_id in {t.id for t in iter_subtree(tickets.values(), ticket.id)}:
                    raise HierarchyError(f"Ticket {ticket.id} cannot be moved under its own descendant")
        except HierarchyError:
            await self.session.rollback()
            raise

        await self.session.commit()

    async def delete_ticket(self, ticket_id: int, project_id: int) -> int:
        """Delete a ticket and all of its descendants. Returns the number of deleted tickets"""
        tickets = await self.list_tickets(project_id)
        doomed = [t.id for t in iter_subtree(tickets, ticket_id)]
        if not doomed:
            raise LookupError(f"Ticket {ticket_id} not found")

        await self.session.execute(delete(Ticket).where(Ticket.id.in_(doomed)))
        await self.session.commit()
        logger.info(f"Deleted ticket {ticket_id} and {len(doomed) - 1} descendants from project {project_id}")
        return len(doomed)

    async def insert_tree(self, project_id: int, epics: List[GeneratedNode]) -> List[Ticket]:
        """
        Persist a generated backlog: top-level nodes become epics, their
        children tasks, grandchildren subtasks. New epics are appended after
        the existing ones; order_index counts up within each sibling group.
        """
        existing = await self.list_tickets(project_id)
        next_epic_order = max((t.order_index for t in existing if t.parent_id is None), default=-1) + 1

        created: List[Ticket] = []
        for epic_offset, epic_node in enumerate(epics):
            epic = Ticket(
                project_id=project_id,
                type=TicketType.EPIC.value,
                title=epic_node.title,
                description=epic_node.description,
                order_index=next_epic_order + epic_offset
            )
            self.session.add(epic)
            await self.session.flush()
            created.append(epic)

            for task_order, task_node in enumerate(epic_node.children):
                task = Ticket(
                    project_id=project_id,
                    type=TicketType.TASK.value,
                    title=task_node.title,
                    description=task_node.description,
                    parent_id=epic.id,
                    order_index=task_order
                )
                self.session.add(task)
                await self.session.flush()
                created.append(task)

                for subtask_order, subtask_node in enumerate(task_node.children):
                    subtask = Ticket(
                        project_id=project_id,
                        type=TicketType.SUBTASK.value,
                        title=subtask_node.title,
                        description=subtask_node.description,
                        parent_id=task.id,
                        order_index=subtask_order
                    )
                    self.session.add(subtask)
                    created.append(subtask)

        await self.session.commit()
        return created
