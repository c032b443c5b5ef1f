"""
Sprint service: planned → active → completed, plus burndown.
"""
import logging
import math
from datetime import date, timedelta
from typing import Optional, List, Dict, Any

from .schema import IssueStatus, Sprint, SprintStatus, make_id, parse_date, utc_now
from .store import BaseStore, NotFound

logger = logging.getLogger(__name__)

IDEAL_SAMPLES = 4   # ideal burndown is sampled about this many times per sprint

UPDATABLE_FIELDS = {"name", "description", "start_date", "end_date", "velocity_target"}


class SprintService:
    def __init__(self, store: BaseStore):
        self.store = store

    def _require(self, sprint_id: str) -> Sprint:
        sprint = self.store.get_sprint(sprint_id)
        if sprint is None:
            raise NotFound(f"Sprint not found: {sprint_id}")
        return sprint

    def get_active_sprint(self, project_id: str) -> Optional[Sprint]:
        for sprint in self.store.list_sprints(project_id):
            if sprint.status == SprintStatus.ACTIVE:
                return sprint
        return None

    def get_sprints(self, project_id: str) -> List[Sprint]:
        """Most recent start date first; unscheduled sprints last."""
        sprints = self.store.list_sprints(project_id)
        return sorted(sprints, key=lambda s: s.start_date or date.min, reverse=True)

    def create_sprint(
        self,
        project_id: str,
        name: str,
        description: str = "",
        start_date=None,
        end_date=None,
        velocity_target: Optional[int] = None,
    ) -> Sprint:
        name = (name or "").strip()
        if not name:
            raise ValueError("name is required")
        sprint = Sprint(
            id=make_id("spr"),
            project_id=project_id,
            name=name,
            description=description or "",
            start_date=parse_date(start_date),
            end_date=parse_date(end_date),
            velocity_target=velocity_target,
        )
        _check_dates(sprint)
        if not self.store.save_sprint(sprint):
            raise RuntimeError(f"Failed to save sprint {name!r}")
        return sprint

    def update_sprint(self, sprint_id: str, **changes: Any) -> Sprint:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        sprint = self._require(sprint_id)
        for name, value in changes.items():
            if name in ("start_date", "end_date"):
                value = parse_date(value)
            setattr(sprint, name, value)
        _check_dates(sprint)
        sprint.updated_at = utc_now()
        if not self.store.save_sprint(sprint):
            raise RuntimeError(f"Failed to save sprint {sprint_id}")
        return sprint

    def start_sprint(self, sprint_id: str, today: Optional[date] = None) -> Sprint:
        """Activate a sprint from today. One active sprint per project."""
        sprint = self._require(sprint_id)
        if sprint.status != SprintStatus.PLANNED:
            raise ValueError(f"Sprint {sprint.name!r} is {sprint.status.value}, not planned")
        active = self.get_active_sprint(sprint.project_id)
        if active is not None:
            raise ValueError(f"Sprint {active.name!r} is already active")
        sprint.status = SprintStatus.ACTIVE
        sprint.start_date = today or date.today()
        if sprint.end_date and sprint.end_date < sprint.start_date:
            sprint.end_date = None
        sprint.updated_at = utc_now()
        self.store.save_sprint(sprint)
        logger.info(f"Started sprint {sprint.name} ({sprint.id})")
        return sprint

    def complete_sprint(self, sprint_id: str, today: Optional[date] = None) -> Sprint:
        sprint = self._require(sprint_id)
        if sprint.status != SprintStatus.ACTIVE:
            raise ValueError(f"Sprint {sprint.name!r} is {sprint.status.value}, not active")
        sprint.status = SprintStatus.COMPLETED
        sprint.end_date = today or date.today()
        sprint.updated_at = utc_now()
        self.store.save_sprint(sprint)
        logger.info(f"Completed sprint {sprint.name} ({sprint.id})")
        return sprint

    def get_sprint_progress(self, sprint_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """Points done vs. left, with actual and ideal burndown series."""
        sprint = self._require(sprint_id)
        today = today or date.today()
        issues = self.store.list_sprint_issues(sprint_id)

        total = sum(i.estimate_points or 0 for i in issues)
        completed = sum(i.estimate_points or 0 for i in issues if i.status == IssueStatus.DONE)
        remaining = total - completed

        burndown = []
        if sprint.start_date:
            burndown.append({"date": sprint.start_date.isoformat(), "remaining": total})
        burndown.append({"date": today.isoformat(), "remaining": remaining})

        return {
            "sprint": sprint.to_dict(),
            "total_points": total,
            "completed_points": completed,
            "remaining_points": remaining,
            "burndown": burndown,
            "ideal_burndown": ideal_burndown(sprint.start_date, sprint.end_date, total),
        }


def ideal_burndown(start: Optional[date], end: Optional[date], total: int) -> List[Dict[str, Any]]:
    """Straight line from total to zero, sampled every ceil(days / 4) days."""
    if not start or not end:
        return []
    days = max((end - start).days, 1)
    per_day = total / days
    stride = math.ceil(days / IDEAL_SAMPLES)
    return [
        {
            "date": (start + timedelta(days=i)).isoformat(),
            "remaining": max(0, round(total - per_day * i)),
        }
        for i in range(0, days + 1, stride)
    ]


def _check_dates(sprint: Sprint) -> None:
    if sprint.start_date and sprint.end_date and sprint.end_date < sprint.start_date:
        raise ValueError("end_date is before start_date")
