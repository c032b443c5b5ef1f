"""
Project analytics for the dashboard: velocity, status mix, recent activity.

Completion dates are approximated: a done issue counts as completed on the day
it was last updated.
"""
from datetime import date, timedelta
from typing import Optional, Dict, Any

from .schema import IssueStatus, SprintStatus
from .store import BaseStore

VELOCITY_HISTORY = 5    # completed sprints shown
ACTIVITY_DAYS = 14

DISTRIBUTION_LABELS = [
    (IssueStatus.TODO, "To Do"),
    (IssueStatus.IN_PROGRESS, "In Progress"),
    (IssueStatus.DONE, "Done"),
    (IssueStatus.CANCELLED, "Cancelled"),
]


def get_project_analytics(store: BaseStore, project_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    issues = store.list_issues(project_id)
    sprints = store.list_sprints(project_id)

    # Velocity: done points of the last few completed sprints, oldest first
    completed = sorted(
        (s for s in sprints if s.status == SprintStatus.COMPLETED),
        key=lambda s: s.end_date or date.min,
        reverse=True,
    )[:VELOCITY_HISTORY]
    velocity_history = []
    for sprint in reversed(completed):
        points = sum(
            i.estimate_points or 0
            for i in store.list_sprint_issues(sprint.id)
            if i.status == IssueStatus.DONE
        )
        velocity_history.append({"name": sprint.name, "points": points})

    counts: Dict[IssueStatus, int] = {}
    for issue in issues:
        counts[issue.status] = counts.get(issue.status, 0) + 1
    issue_distribution = [
        {"name": label, "value": counts.get(status, 0)}
        for status, label in DISTRIBUTION_LABELS
        if counts.get(status, 0) > 0
    ]

    window = {
        (today - timedelta(days=offset)).isoformat(): {"created": 0, "completed": 0}
        for offset in range(ACTIVITY_DAYS - 1, -1, -1)
    }
    for issue in issues:
        created = issue.created_at.date().isoformat()
        if created in window:
            window[created]["created"] += 1
        if issue.status == IssueStatus.DONE:
            updated = issue.updated_at.date().isoformat()
            if updated in window:
                window[updated]["completed"] += 1
    recent_activity = [{"date": day, **counts_} for day, counts_ in window.items()]

    active = next((s for s in sprints if s.status == SprintStatus.ACTIVE), None)
    return {
        "velocity_history": velocity_history,
        "issue_distribution": issue_distribution,
        "recent_activity": recent_activity,
        "total_issues": len(issues),
        "completed_total": counts.get(IssueStatus.DONE, 0),
        "active_sprint_name": active.name if active else None,
    }
