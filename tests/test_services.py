"""
Tests for the issue, project and sprint services.
"""
from datetime import date, timedelta

import pytest

from vangraph.events import BoardEventBus
from vangraph.issues import IssueFilters, IssueService, board_columns
from vangraph.projects import ProjectService
from vangraph.schema import IssueStatus, Priority, SprintStatus
from vangraph.sprints import SprintService, ideal_burndown
from vangraph.store import MemoryStore, NotFound


class HistoryFailingStore(MemoryStore):
    """Memory store whose activity log can be switched off."""

    def __init__(self):
        super().__init__()
        self.armed = False

    def _append_activity(self, entries):
        if self.armed:
            raise RuntimeError("activity log unavailable")
        super()._append_activity(entries)


@pytest.fixture
def issues(store):
    return IssueService(store)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Issues
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestCreateIssue:
    def test_defaults(self, issues, project):
        issue = issues.create_issue(project.id, "  Write docs  ")
        assert issue.title == "Write docs"
        assert issue.status == IssueStatus.BACKLOG
        assert issue.priority == Priority.MEDIUM
        assert issue.sequence_id == 1
        assert issue.key == "VAN-001"
        assert issue.position == 1000.0

    def test_appends_to_end_of_column(self, issues, project):
        first = issues.create_issue(project.id, "one", status=IssueStatus.TODO)
        second = issues.create_issue(project.id, "two", status=IssueStatus.TODO)
        other = issues.create_issue(project.id, "three", status=IssueStatus.DONE)
        assert (first.position, second.position) == (1000.0, 2000.0)
        assert other.position == 1000.0
        assert other.completed_at is not None
        assert other.key == "VAN-003"

    def test_empty_title_rejected(self, issues, project):
        with pytest.raises(ValueError):
            issues.create_issue(project.id, "   ")

    def test_records_activity_and_event(self, store, project):
        events = BoardEventBus()
        created = []
        events.subscribe("issue_created", lambda **kw: created.append(kw))
        issue = IssueService(store, events=events).create_issue(project.id, "x", reporter_id="ada")
        assert created[0]["issue_id"] == issue.id
        assert store.list_activity(issue.id)[0]["action"] == "created"
        assert store.list_activity(issue.id)[0]["actor"] == "ada"


class TestUpdateIssue:
    def test_fields_and_activity(self, store, issues, project):
        issue = issues.create_issue(project.id, "x")
        updated = issues.update_issue(issue.id, actor="bob", title="y", priority="urgent", labels=["a"])
        assert updated.title == "y"
        assert updated.priority == Priority.URGENT
        assert updated.labels == ["a"]

        entry = store.list_activity(issue.id)[-1]
        assert entry["action"] == "updated"
        assert entry["old_value"] == {"title": "x", "priority": "medium", "labels": []}
        assert entry["new_value"] == {"title": "y", "priority": "urgent", "labels": ["a"]}

    def test_status_change_moves_to_end_of_column(self, store, project):
        events = BoardEventBus()
        moved = []
        events.subscribe("issue_moved", lambda **kw: moved.append(kw))
        issues = IssueService(store, events=events)
        issues.create_issue(project.id, "a", status=IssueStatus.IN_PROGRESS)
        issue = issues.create_issue(project.id, "b")

        updated = issues.update_issue(issue.id, status="in_progress")
        assert updated.status == IssueStatus.IN_PROGRESS
        assert updated.position == 2000.0
        assert updated.started_at is not None
        assert moved[0]["to_status"] == IssueStatus.IN_PROGRESS

        reopened = issues.update_issue(issue.id, status=IssueStatus.DONE)
        assert reopened.completed_at is not None
        reopened = issues.update_issue(issue.id, status=IssueStatus.TODO)
        assert reopened.completed_at is None

    def test_unknown_field_rejected(self, issues, project):
        issue = issues.create_issue(project.id, "x")
        with pytest.raises(ValueError):
            issues.update_issue(issue.id, sequence_id=99)

    def test_empty_title_rejected(self, issues, project):
        issue = issues.create_issue(project.id, "x")
        with pytest.raises(ValueError):
            issues.update_issue(issue.id, title="")

    def test_missing_issue(self, issues):
        with pytest.raises(NotFound):
            issues.update_issue("iss-missing", title="y")

    def test_invalid_priority_rejected(self, store, issues, project):
        issue = issues.create_issue(project.id, "x", priority=Priority.HIGH)
        with pytest.raises(ValueError):
            issues.update_issue(issue.id, priority="bogus")
        assert store.get_issue(issue.id).priority == Priority.HIGH

    def test_failed_history_write_keeps_old_title(self):
        store = HistoryFailingStore()
        project = ProjectService(store).create_project("ws-1", "Vangraph", "VAN")
        issues = IssueService(store)
        issue = issues.create_issue(project.id, "old title")

        store.armed = True
        with pytest.raises(RuntimeError):
            issues.update_issue(issue.id, title="new title")
        assert store.get_issue(issue.id).title == "old title"


class TestQueries:
    def test_filters(self, issues, project):
        a = issues.create_issue(project.id, "Login page", priority=Priority.HIGH, assignee_id="u1")
        b = issues.create_issue(project.id, "Logout", description="Clear the LOGIN cookie", status=IssueStatus.TODO)
        c = issues.create_issue(project.id, "Billing", status=IssueStatus.DONE)

        assert [i.id for i in issues.get_issues(project.id)] == [c.id, b.id, a.id]
        assert [i.id for i in issues.get_issues(project.id, IssueFilters(search="login"))] == [b.id, a.id]
        assert [i.id for i in issues.get_issues(project.id, IssueFilters(status=[IssueStatus.DONE]))] == [c.id]
        assert [i.id for i in issues.get_issues(project.id, IssueFilters(priority=[Priority.HIGH]))] == [a.id]
        assert [i.id for i in issues.get_issues(project.id, IssueFilters(assignee_id="u1"))] == [a.id]

    def test_archived_only_when_asked(self, issues, project):
        a = issues.create_issue(project.id, "keep")
        b = issues.create_issue(project.id, "drop")
        assert issues.delete_issue(b.id)
        assert [i.id for i in issues.get_issues(project.id)] == [a.id]
        assert [i.id for i in issues.get_issues(project.id, IssueFilters(archived=True))] == [b.id]
        assert issues.delete_issue("iss-missing") is False

    def test_archived_issue_keeps_its_number(self, issues, project):
        a = issues.create_issue(project.id, "one")
        issues.delete_issue(a.id)
        assert issues.create_issue(project.id, "two").key == "VAN-002"

    def test_get_by_key(self, issues, project):
        issues.create_issue(project.id, "one")
        two = issues.create_issue(project.id, "two")
        assert issues.get_issue_by_key(project.id, "VAN-002").id == two.id
        assert issues.get_issue_by_key(project.id, "VAN-009") is None
        assert issues.get_issue_by_key(project.id, "OTHER-002") is None
        assert issues.get_issue_by_key(project.id, "garbage") is None

    def test_grouped_by_status(self, store, issues, project):
        a = issues.create_issue(project.id, "a", status=IssueStatus.TODO)
        b = issues.create_issue(project.id, "b", status=IssueStatus.TODO)
        store.update_issue_position(b.id, IssueStatus.TODO, 500.0)

        grouped = issues.get_issues_by_status(project.id)
        assert set(grouped) == set(IssueStatus)
        assert [i.id for i in grouped[IssueStatus.TODO]] == [b.id, a.id]
        assert grouped[IssueStatus.CANCELLED] == []

        columns = board_columns(grouped)
        assert [c["id"] for c in columns] == ["backlog", "todo", "in_progress", "in_review", "done"]
        assert [i["key"] for i in columns[1]["issues"]] == ["VAN-002", "VAN-001"]

    def test_equal_positions_fall_back_to_creation_order(self, store, issues, project):
        a = issues.create_issue(project.id, "a", status=IssueStatus.TODO)
        b = issues.create_issue(project.id, "b", status=IssueStatus.TODO)
        store.update_issue_position(b.id, IssueStatus.TODO, a.position)
        grouped = issues.get_issues_by_status(project.id)
        assert [i.id for i in grouped[IssueStatus.TODO]] == [a.id, b.id]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Projects
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestProjects:
    def test_create_uppercases_key(self, store):
        project = ProjectService(store).create_project("ws-1", "Web App", "web")
        assert project.key == "WEB"

    def test_invalid_or_duplicate_key(self, store):
        projects = ProjectService(store)
        projects.create_project("ws-1", "Web App", "WEB")
        with pytest.raises(ValueError):
            projects.create_project("ws-1", "Other", "WEB")
        with pytest.raises(ValueError):
            projects.create_project("ws-1", "Other", "W3B")
        with pytest.raises(ValueError):
            projects.create_project("ws-1", "", "OK")
        # Same key in another workspace is fine
        assert projects.create_project("ws-2", "Web App", "WEB").key == "WEB"

    def test_lookup(self, store, project):
        projects = ProjectService(store)
        assert projects.get_project_by_key("ws-1", "van").id == project.id
        assert projects.get_project_by_key("ws-2", "VAN") is None
        assert [p.id for p in projects.get_projects("ws-1")] == [project.id]

    def test_stats(self, store, issues, project):
        sprints = SprintService(store)
        for name in ("S1", "S2"):
            sprint = sprints.create_sprint(project.id, name)
            sprints.start_sprint(sprint.id)
            sprints.complete_sprint(sprint.id)
        active = sprints.create_sprint(project.id, "S3")
        sprints.start_sprint(active.id)

        for status in (IssueStatus.DONE, IssueStatus.DONE, IssueStatus.DONE,
                       IssueStatus.IN_PROGRESS, IssueStatus.CANCELLED, IssueStatus.BACKLOG):
            issues.create_issue(project.id, "x", status=status)

        stats = ProjectService(store).get_project_stats(project.id)
        assert stats.total_issues == 6
        assert stats.completed_issues == 3
        assert stats.in_progress_issues == 1
        assert stats.blocked_issues == 1
        assert stats.completion_rate == 50
        assert stats.velocity == 2   # round(3 / 2) with banker's rounding
        assert stats.active_sprint.id == active.id

    def test_stats_empty_project(self, store, project):
        stats = ProjectService(store).get_project_stats(project.id)
        assert stats.to_dict() == {
            "total_issues": 0,
            "completed_issues": 0,
            "in_progress_issues": 0,
            "blocked_issues": 0,
            "completion_rate": 0,
            "velocity": 0,
            "active_sprint": None,
        }

    def test_projects_with_stats(self, store, project):
        rows = ProjectService(store).get_projects_with_stats("ws-1")
        assert rows[0]["key"] == "VAN"
        assert rows[0]["stats"]["total_issues"] == 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sprints
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSprints:
    def test_lifecycle(self, store, project):
        sprints = SprintService(store)
        sprint = sprints.create_sprint(project.id, "S1", end_date="2026-02-14")
        assert sprint.status == SprintStatus.PLANNED

        started = sprints.start_sprint(sprint.id, today=date(2026, 2, 1))
        assert started.status == SprintStatus.ACTIVE
        assert started.start_date == date(2026, 2, 1)
        assert sprints.get_active_sprint(project.id).id == sprint.id

        with pytest.raises(ValueError):
            sprints.start_sprint(sprint.id)

        done = sprints.complete_sprint(sprint.id, today=date(2026, 2, 13))
        assert done.status == SprintStatus.COMPLETED
        assert done.end_date == date(2026, 2, 13)
        assert sprints.get_active_sprint(project.id) is None

        with pytest.raises(ValueError):
            sprints.complete_sprint(sprint.id)

    def test_one_active_sprint_per_project(self, store, project):
        sprints = SprintService(store)
        first = sprints.create_sprint(project.id, "S1")
        second = sprints.create_sprint(project.id, "S2")
        sprints.start_sprint(first.id)
        with pytest.raises(ValueError):
            sprints.start_sprint(second.id)

    def test_validation(self, store, project):
        sprints = SprintService(store)
        with pytest.raises(ValueError):
            sprints.create_sprint(project.id, " ")
        with pytest.raises(ValueError):
            sprints.create_sprint(project.id, "S1", start_date="2026-02-10", end_date="2026-02-01")
        with pytest.raises(NotFound):
            sprints.start_sprint("spr-missing")

    def test_update(self, store, project):
        sprints = SprintService(store)
        sprint = sprints.create_sprint(project.id, "S1")
        updated = sprints.update_sprint(sprint.id, name="Sprint One", velocity_target=21)
        assert (updated.name, updated.velocity_target) == ("Sprint One", 21)
        with pytest.raises(ValueError):
            sprints.update_sprint(sprint.id, status="active")

    def test_sorted_by_start_date(self, store, project):
        sprints = SprintService(store)
        old = sprints.create_sprint(project.id, "old", start_date="2026-01-01")
        new = sprints.create_sprint(project.id, "new", start_date="2026-03-01")
        unscheduled = sprints.create_sprint(project.id, "later")
        assert [s.id for s in sprints.get_sprints(project.id)] == [new.id, old.id, unscheduled.id]

    def test_progress(self, store, issues, project):
        sprints = SprintService(store)
        sprint = sprints.create_sprint(project.id, "S1", start_date="2026-02-01", end_date="2026-02-09")
        issues.create_issue(project.id, "a", sprint_id=sprint.id, estimate_points=5, status=IssueStatus.DONE)
        issues.create_issue(project.id, "b", sprint_id=sprint.id, estimate_points=3)
        issues.create_issue(project.id, "c", sprint_id=sprint.id)
        issues.create_issue(project.id, "other", estimate_points=13)

        progress = sprints.get_sprint_progress(sprint.id, today=date(2026, 2, 5))
        assert progress["total_points"] == 8
        assert progress["completed_points"] == 5
        assert progress["remaining_points"] == 3
        assert progress["burndown"] == [
            {"date": "2026-02-01", "remaining": 8},
            {"date": "2026-02-05", "remaining": 3},
        ]
        assert progress["ideal_burndown"] == [
            {"date": "2026-02-01", "remaining": 8},
            {"date": "2026-02-03", "remaining": 6},
            {"date": "2026-02-05", "remaining": 4},
            {"date": "2026-02-07", "remaining": 2},
            {"date": "2026-02-09", "remaining": 0},
        ]


def test_ideal_burndown_edge_cases():
    start = date(2026, 1, 1)
    assert ideal_burndown(None, start, 10) == []
    assert ideal_burndown(start, None, 10) == []
    # Same-day sprint still has an end point
    assert ideal_burndown(start, start, 10) == [
        {"date": "2026-01-01", "remaining": 10},
        {"date": "2026-01-02", "remaining": 0},
    ]
    # Never negative
    assert all(p["remaining"] >= 0 for p in ideal_burndown(start, start + timedelta(days=10), 7))
