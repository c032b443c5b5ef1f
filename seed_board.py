#!/usr/bin/env python3
"""
Seed a demo board and run one drag-and-drop move end-to-end.

    python seed_board.py                      # SQLite at /tmp/vangraph_demo.db
    python seed_board.py --db ./board.db
    python seed_board.py --memory             # nothing written to disk
"""
import argparse
from datetime import date, timedelta

from vangraph.config import Config
from vangraph.events import BoardEventBus
from vangraph.issues import IssueService
from vangraph.projects import ProjectService
from vangraph.reorder import MoveRequest, ReorderCoordinator
from vangraph.schema import IssueStatus, Priority
from vangraph.sprints import SprintService
from vangraph.store import open_store

DEMO_DB = "/tmp/vangraph_demo.db"

DEMO_ISSUES = [
    ("Set up CI pipeline", IssueStatus.DONE, Priority.HIGH, 3),
    ("Design board schema", IssueStatus.DONE, Priority.MEDIUM, 5),
    ("Drag-and-drop reordering", IssueStatus.IN_PROGRESS, Priority.URGENT, 8),
    ("Sprint burndown chart", IssueStatus.TODO, Priority.MEDIUM, 5),
    ("Settings page", IssueStatus.TODO, Priority.LOW, 2),
    ("Spec approval flow", IssueStatus.BACKLOG, Priority.HIGH, 8),
]


def seed(store, events=None, workspace_id="ws-1", key="VAN"):
    """Create a project, an active sprint and a handful of issues."""
    projects = ProjectService(store)
    project = projects.get_project_by_key(workspace_id, key)
    if project is None:
        project = projects.create_project(
            workspace_id, "Vangraph Demo", key,
            description="Demo board", tech_stack=["python", "flask"],
        )

    sprints = SprintService(store)
    sprint = sprints.get_active_sprint(project.id)
    if sprint is None:
        sprint = sprints.create_sprint(
            project.id, "Sprint 1",
            end_date=date.today() + timedelta(days=14), velocity_target=20,
        )
        sprint = sprints.start_sprint(sprint.id)

    issues = IssueService(store, events=events)
    created = [
        issues.create_issue(
            project.id, title, status=status, priority=priority,
            estimate_points=points, sprint_id=sprint.id, reporter_id="seed",
        )
        for title, status, priority, points in DEMO_ISSUES
    ]
    return project, sprint, created


def print_board(coordinator):
    for status in (IssueStatus.BACKLOG, IssueStatus.TODO, IssueStatus.IN_PROGRESS,
                   IssueStatus.IN_REVIEW, IssueStatus.DONE):
        column = coordinator.column(status)
        print(f"   {status.value:<12} " + ", ".join(f"{i.key}@{i.position:g}" for i in column))


def main():
    parser = argparse.ArgumentParser(description="Seed a Vangraph demo board")
    parser.add_argument("--db", default=DEMO_DB)
    parser.add_argument("--memory", action="store_true", help="Use the in-memory backend")
    args = parser.parse_args()

    print("=" * 60)
    print("Vangraph Demo Board")
    print("=" * 60)

    print("\n[1/4] Opening store...")
    config = Config(backend="memory" if args.memory else "sqlite", db_path=args.db)
    config.resolve_paths()
    store = open_store(config)
    print(f"✅ {config.backend} store ready")

    print("\n[2/4] Seeding project, sprint and issues...")
    events = BoardEventBus()
    moves = []
    events.subscribe("issue_moved", lambda **kw: moves.append(kw))
    project, sprint, created = seed(store, events=events)
    print(f"✅ {project.key}: {len(created)} issues in {sprint.name}")

    print("\n[3/4] Board before the move:")
    coordinator = ReorderCoordinator(store, events=events)
    coordinator.load(project.id)
    print_board(coordinator)

    print("\n[4/4] Dragging the backlog issue to the top of TODO...")
    target = created[-1]
    pending = coordinator.move(
        MoveRequest(issue_id=target.id, target_status=IssueStatus.TODO, target_index=0),
        actor="seed",
    )
    print(f"   → {pending.state.value} at position {pending.position:g}")
    coordinator.reload()
    print_board(coordinator)

    activity = store.list_activity(target.id)
    print(f"\n✅ {len(moves)} move event(s), {len(activity)} activity entries for {target.key}")
    print("=" * 60)


if __name__ == "__main__":
    main()
