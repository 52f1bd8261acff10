"""
Tests for the local ticket hierarchy helpers and TicketService writes.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from services.ticket_service import (
    TicketService, TicketOrderUpdate, GeneratedNode, HierarchyError,
    children_index, iter_subtree, validate_hierarchy,
)

from conftest import make_ticket


def backlog():
    return [
        make_ticket(1, "Epic A", type="epic", order_index=0),
        make_ticket(2, "Task A2", parent_id=1, order_index=1),
        make_ticket(3, "Task A1", parent_id=1, order_index=0),
        make_ticket(4, "Subtask", type="subtask", parent_id=3),
        make_ticket(5, "Epic B", type="epic", order_index=1),
    ]


def mock_session():
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    return session


class TestTreeHelpers:

    def test_children_index_sorts_siblings(self):
        index = children_index(backlog())

        assert [t.id for t in index[None]] == [1, 5]
        assert [t.id for t in index[1]] == [3, 2]
        assert [t.id for t in index[3]] == [4]

    def test_iter_subtree_is_depth_first_in_order(self):
        assert [t.id for t in iter_subtree(backlog(), 1)] == [1, 3, 4, 2]

    def test_iter_subtree_unknown_root(self):
        assert list(iter_subtree(backlog(), 99)) == []

    def test_iter_subtree_survives_parent_cycle(self):
        looped = [
            make_ticket(1, "A", parent_id=2),
            make_ticket(2, "B", parent_id=1),
        ]

        assert [t.id for t in iter_subtree(looped, 1)] == [1, 2]


class TestValidateHierarchy:

    def test_valid_placements(self):
        epic = make_ticket(1, "E", type="epic")
        task = make_ticket(2, "T")

        validate_hierarchy("epic", None)
        validate_hierarchy("task", epic)
        validate_hierarchy("subtask", task)
        validate_hierarchy("task", None)

    def test_epic_cannot_have_parent(self):
        with pytest.raises(HierarchyError):
            validate_hierarchy("epic", make_ticket(1, "E", type="epic"))

    def test_subtask_under_epic_rejected(self):
        with pytest.raises(HierarchyError, match="must be placed under a task"):
            validate_hierarchy("subtask", make_ticket(1, "E", type="epic"))

    def test_unknown_type(self):
        with pytest.raises(HierarchyError, match="Unknown ticket type"):
            validate_hierarchy("story", None)


class TestTicketServiceWrites:

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self):
        service = TicketService(mock_session())

        with pytest.raises(ValueError, match="project_id"):
            await service.update_ticket(1, project_id=2)

    @pytest.mark.asyncio
    async def test_reorder_moves_task_to_another_epic(self):
        session = mock_session()
        tickets = backlog()
        service = TicketService(session)
        service.list_tickets = AsyncMock(return_value=tickets)

        await service.reorder_tickets(1, [TicketOrderUpdate(id=2, parent_id=5, order_index=0)])

        moved = next(t for t in tickets if t.id == 2)
        assert moved.parent_id == 5
        assert moved.order_index == 0
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reorder_rejects_invalid_parent_type(self):
        session = mock_session()
        service = TicketService(session)
        service.list_tickets = AsyncMock(return_value=backlog())

        with pytest.raises(HierarchyError):
            await service.reorder_tickets(1, [TicketOrderUpdate(id=4, parent_id=1, order_index=0)])

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reorder_unknown_ticket(self):
        service = TicketService(mock_session())
        service.list_tickets = AsyncMock(return_value=backlog())

        with pytest.raises(LookupError):
            await service.reorder_tickets(1, [TicketOrderUpdate(id=42, parent_id=None, order_index=0)])

    @pytest.mark.asyncio
    async def test_delete_removes_descendants(self):
        session = mock_session()
        service = TicketService(session)
        service.list_tickets = AsyncMock(return_value=backlog())

        deleted = await service.delete_ticket(1, 1)

        assert deleted == 4
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_unknown_ticket(self):
        service = TicketService(mock_session())
        service.list_tickets = AsyncMock(return_value=backlog())

        with pytest.raises(LookupError):
            await service.delete_ticket(42, 1)

    @pytest.mark.asyncio
    async def test_insert_tree_assigns_types_and_order(self):
        session = mock_session()
        added = []

        def add(ticket):
            ticket.id = 100 + len(added)
            added.append(ticket)

        session.add = MagicMock(side_effect=add)
        service = TicketService(session)
        service.list_tickets = AsyncMock(return_value=[make_ticket(1, "Existing", type="epic", order_index=4)])

        epics = [
            GeneratedNode(title="Checkout", children=[
                GeneratedNode(title="Cart", children=[GeneratedNode(title="Totals")]),
                GeneratedNode(title="Payment"),
            ]),
        ]
        created = await service.insert_tree(1, epics)

        assert [(t.title, t.type, t.order_index) for t in created] == [
            ("Checkout", "epic", 5),
            ("Cart", "task", 0),
            ("Totals", "subtask", 0),
            ("Payment", "task", 1),
        ]
        checkout, cart, totals, payment = created
        assert cart.parent_id == checkout.id
        assert payment.parent_id == checkout.id
        assert totals.parent_id == cart.id
        session.commit.assert_awaited_once()
