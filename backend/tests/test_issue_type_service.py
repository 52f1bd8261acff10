"""
Tests for mapping a Jira project's issue types onto epic / task / subtask.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from services.issue_type_service import resolve_issue_types, classify_issue_type, IssueTypeResolver
from services.sync_models import IssueType


def it(id, name, subtask=False):
    return IssueType(id=id, name=name, is_subtask=subtask)


class TestResolveIssueTypes:

    def test_standard_scheme(self):
        type_map = resolve_issue_types([
            it("1", "Epic"), it("2", "Task"), it("3", "Sub-task", True)
        ])

        assert type_map.epic.id == "1"
        assert type_map.task.id == "2"
        assert type_map.subtask.id == "3"
        assert type_map.missing == []

    def test_exact_task_wins_over_earlier_candidates(self):
        type_map = resolve_issue_types([
            it("1", "Bug"), it("2", "Story"), it("3", "TASK"), it("4", "Epic")
        ])

        assert type_map.task.id == "3"

    def test_first_candidate_used_without_a_task_type(self):
        type_map = resolve_issue_types([it("1", "Story"), it("2", "Bug"), it("3", "epic")])

        assert type_map.task.id == "1"
        assert type_map.epic.id == "3"

    def test_unresolvable_slots_are_none(self):
        type_map = resolve_issue_types([it("1", "Story")])

        assert type_map.epic is None
        assert type_map.subtask is None
        assert type_map.missing == ["epic", "subtask"]

    def test_subtask_is_never_used_as_task(self):
        type_map = resolve_issue_types([it("1", "Subtask", True), it("2", "Epic")])

        assert type_map.task is None
        assert type_map.subtask.id == "1"

    def test_empty_list(self):
        assert resolve_issue_types([]).missing == ["epic", "task", "subtask"]

    def test_for_ticket_type(self):
        type_map = resolve_issue_types([it("1", "Epic"), it("2", "Task")])

        assert type_map.for_ticket_type("epic").id == "1"
        assert type_map.for_ticket_type("subtask") is None


class TestClassifyIssueType:

    @pytest.mark.parametrize("name,is_subtask,expected", [
        ("Epic", False, "epic"),
        ("epic", False, "epic"),
        ("Sub-task", False, "subtask"),
        ("Subtask", False, "subtask"),
        ("Review", True, "subtask"),
        ("Story", False, "task"),
        ("Bug", False, "task"),
        (None, False, "task"),
    ])
    def test_classification(self, name, is_subtask, expected):
        assert classify_issue_type(name, is_subtask) == expected


class TestIssueTypeResolver:

    @pytest.mark.asyncio
    async def test_fetches_types_for_project(self):
        jira = MagicMock()
        jira.get_issue_types_for_project = AsyncMock(return_value=[it("1", "Epic"), it("2", "Task")])

        type_map = await IssueTypeResolver(jira).resolve("PROJ")

        jira.get_issue_types_for_project.assert_awaited_once_with("PROJ")
        assert type_map.epic.id == "1"
        assert type_map.subtask is None
