"""
Value objects shared by the Jira sync, preview and import services.

Remote issues are parsed out of the Jira REST v3 JSON once, at the client
boundary, so the services never touch raw payloads. Change sets are immutable:
a preview is computed, sent to the browser, and handed back verbatim to the
executor.
"""
from enum import Enum
from typing import Optional, List, Dict, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


DELETED_SUFFIX = " [DELETED]"


class ChangeType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SOFT_DELETE = "soft_delete"


class IssueType(BaseModel):
    """One entry of a Jira project's issue-type schema"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    is_subtask: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "IssueType":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            is_subtask=bool(data.get("subtask", False))
        )


class IssueTypeMap(BaseModel):
    """Local ticket type -> remote issue type; None when unresolvable"""
    model_config = ConfigDict(frozen=True)

    epic: Optional[IssueType] = None
    task: Optional[IssueType] = None
    subtask: Optional[IssueType] = None

    def for_ticket_type(self, ticket_type: str) -> Optional[IssueType]:
        return getattr(self, ticket_type, None)

    @property
    def missing(self) -> List[str]:
        return [name for name in ("epic", "task", "subtask") if getattr(self, name) is None]


class RemoteIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    summary: str = ""
    description: Optional[Union[Dict[str, Any], str]] = None  # ADF document (plain string on legacy payloads)
    issue_type: Optional[IssueType] = None
    parent_key: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteIssue":
        fields = data.get("fields") or {}
        issue_type = fields.get("issuetype")
        parent = fields.get("parent")
        description = fields.get("description")
        return cls(
            key=data["key"],
            summary=fields.get("summary") or "",
            description=description if isinstance(description, (dict, str)) else None,
            issue_type=IssueType.from_api(issue_type) if issue_type else None,
            parent_key=parent.get("key") if parent else None
        )

    @property
    def is_soft_deleted(self) -> bool:
        return self.summary.endswith(DELETED_SUFFIX)


class IssueSearchPage(BaseModel):
    issues: List[RemoteIssue] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class FieldDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: Literal["title", "description"]
    old_value: str
    new_value: str


class SyncChange(BaseModel):
    """
    One pending operation of a sync preview.

    ticket_id is 0 for soft deletes (there is no local ticket left).
    previous_remote_id keeps the stale key when a linked issue vanished from
    Jira and the ticket is scheduled for re-creation.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    ticket_id: int = 0
    title: str
    description: str = ""
    change_type: ChangeType
    remote_id: Optional[str] = None
    previous_remote_id: Optional[str] = None
    diff: List[FieldDiff] = Field(default_factory=list)


class SyncPreview(BaseModel):
    changes: List[SyncChange] = Field(default_factory=list)
    soft_delete_scan_complete: bool = True
    warnings: List[str] = Field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "to_create": sum(1 for c in self.changes if c.change_type == ChangeType.CREATE),
            "to_update": sum(1 for c in self.changes if c.change_type == ChangeType.UPDATE),
            "to_delete": sum(1 for c in self.changes if c.change_type == ChangeType.SOFT_DELETE),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [c.model_dump(mode="json") for c in self.changes],
            "summary": self.summary,
            "soft_delete_scan_complete": self.soft_delete_scan_complete,
            "warnings": self.warnings,
        }


class ImportResult(BaseModel):
    imported_count: int = 0
    created: int = 0
    updated: int = 0
