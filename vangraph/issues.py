"""
Issue service: CRUD and board grouping on top of a store.

New issues go to the end of their column; a status change made through
update_issue() (rather than a drag) also appends to the end of the target
column. Every issue handed out carries its formatted key (e.g. VAN-007).
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from .events import BoardEventBus
from .positions import allocate_position, STEP, BASELINE
from .schema import (
    BOARD_COLUMNS,
    DEFAULT_PROJECT_KEY,
    Issue,
    IssueStatus,
    Priority,
    format_issue_key,
    make_id,
    parse_date,
    parse_issue_key,
    plain_value,
    utc_now,
)
from .store import BaseStore, NotFound

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "title", "description", "status", "priority", "assignee_id", "sprint_id",
    "parent_id", "estimate_points", "due_date", "labels",
}


@dataclass
class IssueFilters:
    status: List[IssueStatus] = field(default_factory=list)
    priority: List[Priority] = field(default_factory=list)
    assignee_id: Optional[str] = None
    sprint_id: Optional[str] = None
    search: str = ""
    archived: bool = False

    def matches(self, issue: Issue) -> bool:
        if issue.archived != self.archived:
            return False
        if self.status and issue.status not in self.status:
            return False
        if self.priority and issue.priority not in self.priority:
            return False
        if self.assignee_id and issue.assignee_id != self.assignee_id:
            return False
        if self.sprint_id and issue.sprint_id != self.sprint_id:
            return False
        if self.search:
            needle = self.search.lower()
            if needle not in issue.title.lower() and needle not in issue.description.lower():
                return False
        return True


def sort_column(issues: List[Issue]) -> List[Issue]:
    """Board order: position, then creation time, then id."""
    return sorted(issues, key=lambda i: i.sort_key())


class IssueService:
    """Issue CRUD for one store."""

    def __init__(
        self,
        store: BaseStore,
        events: Optional[BoardEventBus] = None,
        step: float = STEP,
        baseline: float = BASELINE,
    ):
        self.store = store
        self.events = events or BoardEventBus()
        self.step = step
        self.baseline = baseline

    def _project_key(self, project_id: str) -> str:
        project = self.store.get_project(project_id)
        return project.key if project else DEFAULT_PROJECT_KEY

    def _with_key(self, issue: Issue, project_key: Optional[str] = None) -> Issue:
        issue.key = format_issue_key(project_key or self._project_key(issue.project_id), issue.sequence_id)
        return issue

    def _end_of_column(self, project_id: str, status: IssueStatus, exclude: Optional[str] = None) -> float:
        column = [
            i for i in self.store.list_issues(project_id)
            if i.status == status and i.id != exclude
        ]
        last = max((i.position for i in column), default=None)
        return allocate_position(last, None, step=self.step, baseline=self.baseline)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_issues(self, project_id: str, filters: Optional[IssueFilters] = None) -> List[Issue]:
        """Issues of a project, newest first."""
        filters = filters or IssueFilters()
        key = self._project_key(project_id)
        issues = self.store.list_issues(project_id, include_archived=filters.archived)
        matched = [self._with_key(i, key) for i in issues if filters.matches(i)]
        return sorted(matched, key=lambda i: (i.created_at, i.id), reverse=True)

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        issue = self.store.get_issue(issue_id)
        return self._with_key(issue) if issue else None

    def get_issue_by_key(self, project_id: str, key: str) -> Optional[Issue]:
        parsed = parse_issue_key(key)
        if not parsed:
            return None
        project_key, sequence_id = parsed
        if project_key != self._project_key(project_id):
            return None
        for issue in self.store.list_issues(project_id, include_archived=True):
            if issue.sequence_id == sequence_id:
                return self._with_key(issue, project_key)
        return None

    def get_issues_by_status(self, project_id: str) -> Dict[IssueStatus, List[Issue]]:
        """Kanban view: every status present, each column in board order."""
        grouped: Dict[IssueStatus, List[Issue]] = {status: [] for status in IssueStatus}
        key = self._project_key(project_id)
        for issue in self.store.list_issues(project_id):
            grouped[issue.status].append(self._with_key(issue, key))
        return {status: sort_column(issues) for status, issues in grouped.items()}

    # ── Writes ───────────────────────────────────────────────────────────

    def create_issue(
        self,
        project_id: str,
        title: str,
        description: str = "",
        status: IssueStatus = IssueStatus.BACKLOG,
        priority: Priority = Priority.MEDIUM,
        assignee_id: Optional[str] = None,
        reporter_id: Optional[str] = None,
        sprint_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        estimate_points: Optional[int] = None,
        due_date=None,
        labels: Optional[List[str]] = None,
    ) -> Issue:
        """Create an issue at the end of its column."""
        title = (title or "").strip()
        if not title:
            raise ValueError("title is required")

        issue = Issue(
            id=make_id("iss"),
            project_id=project_id,
            sequence_id=self.store.next_sequence_id(project_id),
            title=title,
            description=description or "",
            status=status,
            position=self._end_of_column(project_id, status),
            priority=priority,
            assignee_id=assignee_id,
            reporter_id=reporter_id,
            sprint_id=sprint_id,
            parent_id=parent_id,
            estimate_points=estimate_points,
            due_date=parse_date(due_date),
            labels=list(labels or []),
        )
        if status == IssueStatus.IN_PROGRESS:
            issue.started_at = issue.created_at
        if status == IssueStatus.DONE:
            issue.completed_at = issue.created_at
        issue.record("created", {}, {"status": status.value, "position": issue.position}, reporter_id or "")

        if not self.store.save_issue(issue):
            raise RuntimeError(f"Failed to save issue {issue.title!r}")
        self._with_key(issue)
        logger.info(f"Created issue {issue.key} in {status.value} at {issue.position}")
        self.events.emit("issue_created", issue_id=issue.id, status=status, position=issue.position)
        return issue

    def update_issue(self, issue_id: str, actor: str = "", **changes: Any) -> Issue:
        """Update whitelisted fields. Unknown fields raise ValueError."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        issue = self.store.get_issue(issue_id)
        if issue is None:
            raise NotFound(f"Issue not found: {issue_id}")

        if "title" in changes and not (changes["title"] or "").strip():
            raise ValueError("title cannot be empty")

        old: Dict[str, Any] = {}
        new: Dict[str, Any] = {}
        for name, value in changes.items():
            if name == "status":
                continue
            if name == "priority" and not isinstance(value, Priority):
                value = Priority(value)
            if name == "due_date":
                value = parse_date(value)
            if name == "labels":
                value = list(value or [])
            old_value = getattr(issue, name)
            if old_value != value:
                old[name] = plain_value(old_value)
                new[name] = plain_value(value)
                setattr(issue, name, value)

        if new:
            issue.updated_at = utc_now()
            issue.record("updated", old, new, actor)

        previous = issue.status
        status = changes.get("status")
        if status is not None and not isinstance(status, IssueStatus):
            status = IssueStatus(status)
        if status is not None and status != previous:
            issue.move_to(status, self._end_of_column(issue.project_id, status, exclude=issue.id), actor=actor)

        if not self.store.save_issue(issue):
            raise RuntimeError(f"Failed to save issue {issue_id}")
        if issue.status != previous:
            self.events.emit(
                "issue_moved",
                issue_id=issue.id,
                from_status=previous,
                to_status=issue.status,
                position=issue.position,
            )
        return self._with_key(issue)

    def delete_issue(self, issue_id: str, actor: str = "") -> bool:
        """Soft delete: archived issues drop off the board but keep their number."""
        issue = self.store.get_issue(issue_id)
        if issue is None:
            return False
        if issue.archived:
            return True
        issue.archived = True
        issue.updated_at = utc_now()
        issue.record("archived", {"archived": False}, {"archived": True}, actor)
        return self.store.save_issue(issue)


def board_columns(grouped: Dict[IssueStatus, List[Issue]]) -> List[Dict[str, Any]]:
    """Serialize the on-board columns in display order."""
    return [
        {
            "id": status.value,
            "title": status.value.replace("_", " ").upper(),
            "issues": [i.to_dict() for i in grouped.get(status, [])],
        }
        for status in BOARD_COLUMNS
    ]
