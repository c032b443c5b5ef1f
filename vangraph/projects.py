"""
Project service: lookup, creation and headline stats.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional, List, Dict, Any

from .schema import IssueStatus, Project, Sprint, SprintStatus, make_id
from .store import BaseStore

logger = logging.getLogger(__name__)

PROJECT_KEY_RE = re.compile(r"^[A-Z]+$")
VELOCITY_SPRINTS = 3   # completed sprints considered for velocity


@dataclass
class ProjectStats:
    total_issues: int = 0
    completed_issues: int = 0
    in_progress_issues: int = 0
    blocked_issues: int = 0
    completion_rate: int = 0   # percent
    velocity: int = 0
    active_sprint: Optional[Sprint] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_issues": self.total_issues,
            "completed_issues": self.completed_issues,
            "in_progress_issues": self.in_progress_issues,
            "blocked_issues": self.blocked_issues,
            "completion_rate": self.completion_rate,
            "velocity": self.velocity,
            "active_sprint": self.active_sprint.to_dict() if self.active_sprint else None,
        }


class ProjectService:
    def __init__(self, store: BaseStore):
        self.store = store

    def get_project(self, project_id: str) -> Optional[Project]:
        return self.store.get_project(project_id)

    def get_project_by_key(self, workspace_id: str, key: str) -> Optional[Project]:
        key = (key or "").upper()
        for project in self.store.list_projects(workspace_id):
            if project.key == key:
                return project
        return None

    def get_projects(self, workspace_id: str) -> List[Project]:
        """Projects in a workspace, by name."""
        return self.store.list_projects(workspace_id)

    def create_project(
        self,
        workspace_id: str,
        name: str,
        key: str,
        description: str = "",
        tech_stack: Optional[List[str]] = None,
    ) -> Project:
        name = (name or "").strip()
        key = (key or "").strip().upper()
        if not name:
            raise ValueError("name is required")
        if not PROJECT_KEY_RE.match(key):
            raise ValueError(f"Invalid project key: {key!r} (letters only)")
        if self.get_project_by_key(workspace_id, key):
            raise ValueError(f"Project key already in use: {key}")

        project = Project(
            id=make_id("proj"),
            workspace_id=workspace_id,
            name=name,
            key=key,
            description=description or "",
            tech_stack=list(tech_stack or []),
        )
        if not self.store.save_project(project):
            raise RuntimeError(f"Failed to save project {name!r}")
        logger.info(f"Created project {key} ({name})")
        return project

    def get_project_stats(self, project_id: str) -> ProjectStats:
        issues = self.store.list_issues(project_id)
        sprints = self.store.list_sprints(project_id)

        total = len(issues)
        completed = sum(1 for i in issues if i.status == IssueStatus.DONE)
        in_progress = sum(1 for i in issues if i.status == IssueStatus.IN_PROGRESS)
        # The board has no "blocked" column; cancelled work is what stalls
        blocked = sum(1 for i in issues if i.status == IssueStatus.CANCELLED)

        finished = [s for s in sprints if s.status == SprintStatus.COMPLETED][:VELOCITY_SPRINTS]
        velocity = round(completed / len(finished)) if finished else 0
        active = next((s for s in sprints if s.status == SprintStatus.ACTIVE), None)

        return ProjectStats(
            total_issues=total,
            completed_issues=completed,
            in_progress_issues=in_progress,
            blocked_issues=blocked,
            completion_rate=round(completed / total * 100) if total else 0,
            velocity=velocity,
            active_sprint=active,
        )

    def get_projects_with_stats(self, workspace_id: str) -> List[Dict[str, Any]]:
        return [
            {**project.to_dict(), "stats": self.get_project_stats(project.id).to_dict()}
            for project in self.get_projects(workspace_id)
        ]
