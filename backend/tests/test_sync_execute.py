"""
Tests for the sync executor: ordering, parent links, failure isolation and
re-validation of stale change sets.
"""
import pytest

from services.jira_service import AuthenticationError, adf_to_text
from services.sync_execute_service import SyncExecuteService
from services.sync_models import ChangeType, DELETED_SUFFIX, FieldDiff, SyncChange
from services.sync_preview_service import SyncPreviewService

from conftest import (
    EPIC_TYPE, TASK_TYPE, SUBTASK_TYPE, STORY_TYPE,
    FakeJira, InMemoryTicketStore, make_issue, make_ticket
)


def hierarchy():
    return [
        make_ticket(1, "Epic E", type="epic", description="Epic body"),
        make_ticket(2, "Task T", type="task", parent_id=1, description="Task body"),
        make_ticket(3, "Subtask S", type="subtask", parent_id=2),
    ]


def create(ticket_id, title="", previous_remote_id=None):
    return SyncChange(
        id=f"create-{ticket_id}", ticket_id=ticket_id, title=title,
        change_type=ChangeType.CREATE, previous_remote_id=previous_remote_id
    )


class TestHierarchyOrdering:

    @pytest.mark.asyncio
    async def test_children_link_to_freshly_created_parents(self):
        """Even when submitted child-first, the epic is created first and each child links to its parent's new key."""
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira()

        changes = [create(3), create(2), create(1)]
        result = await SyncExecuteService(store, jira).execute(1, "PROJ", changes)

        assert result.synced_count == 3
        assert [f["summary"] for f in jira.created] == ["Epic E", "Task T", "Subtask S"]

        epic_fields, task_fields, subtask_fields = jira.created
        assert "parent" not in epic_fields
        assert task_fields["parent"] == {"key": "PROJ-1"}
        assert subtask_fields["parent"] == {"key": "PROJ-2"}

        assert epic_fields["issuetype"] == {"id": EPIC_TYPE.id}
        assert task_fields["issuetype"] == {"id": TASK_TYPE.id}
        assert subtask_fields["issuetype"] == {"id": SUBTASK_TYPE.id}

    @pytest.mark.asyncio
    async def test_remote_key_is_stored_right_after_create(self):
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira()

        await SyncExecuteService(store, jira).execute(1, "PROJ", [create(1), create(2), create(3)])

        assert store.update_calls == [
            (1, {"jira_id": "PROJ-1"}),
            (2, {"jira_id": "PROJ-2"}),
            (3, {"jira_id": "PROJ-3"}),
        ]

    @pytest.mark.asyncio
    async def test_create_payload_shape(self):
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira()

        await SyncExecuteService(store, jira).execute(1, "PROJ", [create(1)])

        fields = jira.created[0]
        assert fields["project"] == {"key": "PROJ"}
        assert fields["summary"] == "Epic E"
        assert fields["description"]["type"] == "doc"
        assert adf_to_text(fields["description"]) == "Epic body"

    @pytest.mark.asyncio
    async def test_child_of_already_linked_parent_uses_stored_key(self):
        store = InMemoryTicketStore([
            make_ticket(1, "Epic E", type="epic", jira_id="PROJ-7"),
            make_ticket(2, "Task T", parent_id=1),
        ])
        jira = FakeJira(issues=[make_issue("PROJ-7", "Epic E", issue_type=EPIC_TYPE)])

        await SyncExecuteService(store, jira).execute(1, "PROJ", [create(2)])

        assert jira.created[0]["parent"] == {"key": "PROJ-7"}

    @pytest.mark.asyncio
    async def test_child_of_unsynced_parent_fails(self):
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira()

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [create(2)])

        assert result.synced_count == 0
        assert len(result.failed) == 1
        assert "not synced" in result.failed[0]["error"]
        assert jira.created == []


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_one_failed_create_does_not_stop_the_batch(self):
        store = InMemoryTicketStore([
            make_ticket(1, "First", type="epic", order_index=0),
            make_ticket(2, "Broken", type="epic", order_index=1),
            make_ticket(3, "Third", type="epic", order_index=2),
        ])
        jira = FakeJira()
        jira.fail_create_summaries.add("Broken")

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [create(1), create(2), create(3)])

        assert len(jira.created) == 3
        assert result.synced_count == 2
        assert [f["change_id"] for f in result.failed] == ["create-2"]
        assert result.failed[0]["change_type"] == "create"
        assert result.status == "partial"
        assert store.tickets[2].jira_id is None
        assert store.tickets[3].jira_id is not None

    @pytest.mark.asyncio
    async def test_failed_parent_fails_its_children_only(self):
        store = InMemoryTicketStore(hierarchy() + [make_ticket(4, "Other epic", type="epic", order_index=1)])
        jira = FakeJira()
        jira.fail_create_summaries.add("Epic E")

        result = await SyncExecuteService(store, jira).execute(
            1, "PROJ", [create(1), create(2), create(3), create(4)]
        )

        assert result.synced_count == 1
        assert sorted(f["ticket_id"] for f in result.failed) == [1, 2, 3]
        assert store.tickets[4].jira_id == "PROJ-1"

    @pytest.mark.asyncio
    async def test_authentication_failure_aborts(self):
        class ExpiredJira(FakeJira):
            async def create_issue(self, fields):
                raise AuthenticationError("Jira authentication failed. Please reconnect.", status_code=401)

        store = InMemoryTicketStore(hierarchy())
        with pytest.raises(AuthenticationError):
            await SyncExecuteService(store, ExpiredJira()).execute(1, "PROJ", [create(1)])

    @pytest.mark.asyncio
    async def test_missing_issue_type_skips_with_warning(self):
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira(issue_types=[EPIC_TYPE, STORY_TYPE])

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [create(1), create(2), create(3)])

        assert result.synced_count == 2
        assert [s["ticket_id"] for s in result.skipped] == [3]
        assert result.failed == []
        assert any("subtask" in w for w in result.warnings)
        # Story stands in for task when no type is literally called Task
        assert jira.created[1]["issuetype"] == {"id": STORY_TYPE.id}


class TestUpdatesAndSoftDeletes:

    @pytest.mark.asyncio
    async def test_update_sends_only_changed_fields(self):
        store = InMemoryTicketStore([make_ticket(1, "New title", description="Body", jira_id="PROJ-1")])
        jira = FakeJira(issues=[make_issue("PROJ-1", "Old title", "Body")])
        change = SyncChange(
            id="update-1", ticket_id=1, title="New title", change_type=ChangeType.UPDATE, remote_id="PROJ-1",
            diff=[FieldDiff(field="title", old_value="Old title", new_value="New title")]
        )

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [change])

        assert jira.updated == [("PROJ-1", {"summary": "New title"})]
        assert result.updated[0]["fields"] == ["title"]

    @pytest.mark.asyncio
    async def test_update_uses_current_remote_key(self):
        store = InMemoryTicketStore([make_ticket(1, "Title", jira_id="PROJ-5")])
        jira = FakeJira(issues=[make_issue("PROJ-5", "Old")])
        change = SyncChange(
            id="update-1", ticket_id=1, title="Title", change_type=ChangeType.UPDATE, remote_id="PROJ-1",
            diff=[FieldDiff(field="title", old_value="Old", new_value="Title")]
        )

        await SyncExecuteService(store, jira).execute(1, "PROJ", [change])

        assert jira.updated[0][0] == "PROJ-5"

    @pytest.mark.asyncio
    async def test_soft_delete_appends_marker(self):
        store = InMemoryTicketStore([])
        jira = FakeJira(issues=[make_issue("PROJ-1", "Feature to Delete")])
        change = SyncChange(
            id="soft-delete-PROJ-1", title="Feature to Delete",
            change_type=ChangeType.SOFT_DELETE, remote_id="PROJ-1"
        )

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [change])

        assert jira.summary_of("PROJ-1") == f"Feature to Delete{DELETED_SUFFIX}"
        assert result.soft_deleted == [{"change_id": "soft-delete-PROJ-1", "remote_id": "PROJ-1"}]
        assert store.update_calls == []

    @pytest.mark.asyncio
    async def test_soft_delete_of_relinked_key_is_skipped(self):
        store = InMemoryTicketStore([make_ticket(1, "Back again", jira_id="PROJ-1")])
        jira = FakeJira(issues=[make_issue("PROJ-1", "Back again")])
        change = SyncChange(
            id="soft-delete-PROJ-1", title="Back again",
            change_type=ChangeType.SOFT_DELETE, remote_id="PROJ-1"
        )

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [change])

        assert jira.updated == []
        assert len(result.skipped) == 1


class TestStaleChangeSets:

    @pytest.mark.asyncio
    async def test_replayed_creates_are_skipped(self):
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira()
        service = SyncExecuteService(store, jira)
        changes = [create(1), create(2), create(3)]

        await service.execute(1, "PROJ", changes)
        second = await service.execute(1, "PROJ", changes)

        assert len(jira.created) == 3
        assert second.synced_count == 0
        assert len(second.skipped) == 3

    @pytest.mark.asyncio
    async def test_recreate_of_vanished_issue_replaces_stale_key(self):
        store = InMemoryTicketStore([make_ticket(1, "Orphan", type="epic", jira_id="PROJ-9")])
        jira = FakeJira()

        result = await SyncExecuteService(store, jira).execute(
            1, "PROJ", [create(1, previous_remote_id="PROJ-9")]
        )

        assert result.synced_count == 1
        assert store.tickets[1].jira_id == "PROJ-1"

    @pytest.mark.asyncio
    async def test_unknown_ticket_is_skipped(self):
        store = InMemoryTicketStore([])
        jira = FakeJira()

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [create(42)])

        assert result.skipped[0]["ticket_id"] == 42
        assert jira.created == []

    @pytest.mark.asyncio
    async def test_duplicate_change_ids_apply_once(self):
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira()

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", [create(1), create(1)])

        assert len(jira.created) == 1
        assert result.skipped[0]["reason"] == "Duplicate change"


class TestPreviewExecuteRoundTrip:

    @pytest.mark.asyncio
    async def test_preview_after_execute_is_empty(self):
        store = InMemoryTicketStore(hierarchy())
        jira = FakeJira(issues=[make_issue("PROJ-100", "Stray")])
        preview_service = SyncPreviewService(store, jira)

        preview = await preview_service.preview(1, "PROJ")
        assert preview.summary == {"to_create": 3, "to_update": 0, "to_delete": 1}

        result = await SyncExecuteService(store, jira).execute(1, "PROJ", preview.changes)
        assert result.synced_count == 4

        again = await preview_service.preview(1, "PROJ")
        assert again.changes == []
