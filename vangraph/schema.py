"""
Vangraph data model.

Board columns (issue status):
  Backlog → Todo → In Progress → In Review → Done   (+ Cancelled, off-board)

Issues are ordered inside a column by a fractional ``position``; ties are
broken by ``created_at`` then ``id`` so iteration is always deterministic.
Every move or edit of an issue is appended to its activity history.
"""
import re
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, Tuple


DEFAULT_PROJECT_KEY = "VAN"
ISSUE_KEY_RE = re.compile(r"^([A-Z]+)-(\d+)$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_id(prefix: str) -> str:
    """Generate a sortable unique id (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"{prefix}-{ts}-{rand}"


def format_issue_key(project_key: str, sequence_id: int) -> str:
    """VAN + 7 -> VAN-007"""
    return f"{project_key or DEFAULT_PROJECT_KEY}-{sequence_id:03d}"


def parse_issue_key(key: str) -> Optional[Tuple[str, int]]:
    """Inverse of format_issue_key. Returns None for malformed keys."""
    match = ISSUE_KEY_RE.match(key or "")
    if not match:
        return None
    return match.group(1), int(match.group(2))


def parse_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def plain_value(value):
    """Enum -> value, date/datetime -> ISO string, anything else unchanged."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class IssueStatus(Enum):
    """Kanban columns, in board order."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"
    CANCELLED = "cancelled"    # kept off the board

    @classmethod
    def from_str(cls, value: str) -> "IssueStatus":
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            return cls.BACKLOG


BOARD_COLUMNS: Tuple[IssueStatus, ...] = (
    IssueStatus.BACKLOG,
    IssueStatus.TODO,
    IssueStatus.IN_PROGRESS,
    IssueStatus.IN_REVIEW,
    IssueStatus.DONE,
)


class Priority(Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @classmethod
    def from_str(cls, value: str) -> "Priority":
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            return cls.MEDIUM


class SprintStatus(Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"


class GateStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BYPASSED = "bypassed"


class EntityType(Enum):
    SPEC = "spec"
    ISSUE = "issue"
    PR = "pr"
    DEPLOYMENT = "deployment"


@dataclass
class Activity:
    """One history entry for an issue, queued for DB flush."""
    issue_id: str
    action: str                     # "created" | "moved" | "updated" | "archived"
    old_value: Dict[str, Any] = field(default_factory=dict)
    new_value: Dict[str, Any] = field(default_factory=dict)
    actor: str = ""
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issue_id": self.issue_id,
            "action": self.action,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "actor": self.actor,
            "timestamp": self.timestamp,
        }


@dataclass
class Project:
    id: str
    workspace_id: str
    name: str
    key: str = DEFAULT_PROJECT_KEY
    description: str = ""
    tech_stack: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "key": self.key,
            "description": self.description,
            "tech_stack": list(self.tech_stack),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            id=data["id"],
            workspace_id=data.get("workspace_id", ""),
            name=data.get("name", ""),
            key=data.get("key") or DEFAULT_PROJECT_KEY,
            description=data.get("description") or "",
            tech_stack=list(data.get("tech_stack") or []),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Sprint:
    id: str
    project_id: str
    name: str
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    velocity_target: Optional[int] = None
    status: SprintStatus = SprintStatus.PLANNED
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "velocity_target": self.velocity_target,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sprint":
        status = SprintStatus.PLANNED
        if data.get("status"):
            try:
                status = SprintStatus(data["status"])
            except ValueError:
                status = SprintStatus.PLANNED
        return cls(
            id=data["id"],
            project_id=data.get("project_id", ""),
            name=data.get("name", ""),
            description=data.get("description") or "",
            start_date=parse_date(data.get("start_date")),
            end_date=parse_date(data.get("end_date")),
            velocity_target=data.get("velocity_target"),
            status=status,
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Issue:
    """A card on the board."""

    # Identifiers
    id: str
    project_id: str
    sequence_id: int = 0

    # Content
    title: str = ""
    description: str = ""

    # Board placement
    status: IssueStatus = IssueStatus.BACKLOG
    position: float = 0.0
    priority: Priority = Priority.MEDIUM

    # Planning
    sprint_id: Optional[str] = None
    parent_id: Optional[str] = None
    assignee_id: Optional[str] = None
    reporter_id: Optional[str] = None
    estimate_points: Optional[int] = None
    due_date: Optional[date] = None
    labels: List[str] = field(default_factory=list)

    # Lifecycle
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    archived: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Formatted key (e.g. VAN-007); filled in by the issue service, never stored
    key: str = ""
    _pending_activity: List[Activity] = field(default_factory=list, repr=False)

    def sort_key(self) -> Tuple[float, datetime, str]:
        return (self.position, self.created_at, self.id)

    def record(self, action: str, old_value: Dict[str, Any], new_value: Dict[str, Any], actor: str = "") -> None:
        """Queue an activity row for store.save_issue() to flush."""
        self._pending_activity.append(Activity(
            issue_id=self.id,
            action=action,
            old_value=old_value,
            new_value=new_value,
            actor=actor,
        ))

    def move_to(self, status: IssueStatus, position: float, actor: str = "") -> None:
        """Place the issue in a column at a position, tracking lifecycle dates."""
        old = {"status": self.status.value, "position": self.position}
        if status == IssueStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = utc_now()
        if status == IssueStatus.DONE:
            self.completed_at = self.completed_at or utc_now()
        elif self.status == IssueStatus.DONE:
            self.completed_at = None
        self.status = status
        self.position = position
        self.updated_at = utc_now()
        self.record("moved", old, {"status": status.value, "position": position}, actor)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "sequence_id": self.sequence_id,
            "key": self.key,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "position": self.position,
            "priority": self.priority.value,
            "sprint_id": self.sprint_id,
            "parent_id": self.parent_id,
            "assignee_id": self.assignee_id,
            "reporter_id": self.reporter_id,
            "estimate_points": self.estimate_points,
            "due_date": _iso(self.due_date),
            "labels": list(self.labels),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "archived": self.archived,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        return cls(
            id=data["id"],
            project_id=data.get("project_id", ""),
            sequence_id=int(data.get("sequence_id") or 0),
            title=data.get("title", ""),
            description=data.get("description") or "",
            status=IssueStatus.from_str(data.get("status") or "backlog"),
            position=float(data.get("position") or 0.0),
            priority=Priority.from_str(data.get("priority") or "medium"),
            sprint_id=data.get("sprint_id"),
            parent_id=data.get("parent_id"),
            assignee_id=data.get("assignee_id"),
            reporter_id=data.get("reporter_id"),
            estimate_points=data.get("estimate_points"),
            due_date=parse_date(data.get("due_date")),
            labels=list(data.get("labels") or []),
            started_at=parse_datetime(data.get("started_at")),
            completed_at=parse_datetime(data.get("completed_at")),
            archived=bool(data.get("archived", False)),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
            key=data.get("key") or "",
        )


@dataclass
class Spec:
    """Versioned markdown contract attached to an issue."""
    id: str
    issue_id: str
    markdown_content: str
    version: int = 1
    is_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    architect_id: Optional[str] = None
    generation_prompt: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "markdown_content": self.markdown_content,
            "version": self.version,
            "is_approved": self.is_approved,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "architect_id": self.architect_id,
            "generation_prompt": self.generation_prompt,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Spec":
        return cls(
            id=data["id"],
            issue_id=data.get("issue_id", ""),
            markdown_content=data.get("markdown_content") or "",
            version=int(data.get("version") or 1),
            is_approved=bool(data.get("is_approved", False)),
            approved_by=data.get("approved_by"),
            approved_at=parse_datetime(data.get("approved_at")),
            architect_id=data.get("architect_id"),
            generation_prompt=data.get("generation_prompt"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class GovernanceGate:
    """Human-in-the-loop checkpoint on a spec, issue, PR or deployment."""
    id: str
    entity_type: EntityType
    entity_id: str
    step_type: str
    required_role: str = "admin"
    status: GateStatus = GateStatus.PENDING
    approver_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "step_type": self.step_type,
            "required_role": self.required_role,
            "status": self.status.value,
            "approver_id": self.approver_id,
            "rejection_reason": self.rejection_reason,
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernanceGate":
        return cls(
            id=data["id"],
            entity_type=EntityType(data.get("entity_type", "issue")),
            entity_id=data.get("entity_id", ""),
            step_type=data.get("step_type", ""),
            required_role=data.get("required_role") or "admin",
            status=GateStatus(data.get("status", "pending")),
            approver_id=data.get("approver_id"),
            rejection_reason=data.get("rejection_reason"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            completed_at=parse_datetime(data.get("completed_at")),
        )


@dataclass
class Profile:
    """Per-user settings shown on the settings page."""
    id: str
    email: str = ""
    full_name: str = ""
    avatar_url: str = ""
    role: str = "member"           # "admin" | "member" | "viewer"
    theme: str = "system"          # "light" | "dark" | "system"
    notifications: Dict[str, bool] = field(default_factory=lambda: {
        "email": True,
        "agent_updates": True,
    })
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
            "role": self.role,
            "theme": self.theme,
            "notifications": dict(self.notifications),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        profile = cls(
            id=data["id"],
            email=data.get("email") or "",
            full_name=data.get("full_name") or "",
            avatar_url=data.get("avatar_url") or "",
            role=data.get("role") or "member",
            theme=data.get("theme") or "system",
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )
        if data.get("notifications"):
            profile.notifications = dict(data["notifications"])
        return profile
