#!/usr/bin/env python3
"""
Vangraph Board Server
---------------------
JSON API over the vangraph services: board, issues, drag-and-drop moves,
projects, sprints, specs, governance gates and user settings.

Usage:
    python vangraph_server.py
    python vangraph_server.py --host 0.0.0.0 --port 3000 --db ./board.db

    # Throwaway board, nothing written to disk
    VANGRAPH_BACKEND=memory python vangraph_server.py

API:
    GET  /api/board?project=<id>        → { project, columns, stats }
    POST /api/issues/<id>/move          → JSON body: { status, index? }
                                          Returns: { issue, state, position }
                                          409 when the store refused the move
    (see the route table below for the rest)

Errors are always { "error": "<message>" } with 400, 404, 409 or 500.
No auth: every caller is trusted. Run behind a proxy if exposed.
"""

import logging
import os
import sys
from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from vangraph.analytics import get_project_analytics
from vangraph.config import Config
from vangraph.events import BoardEventBus
from vangraph.governance import GovernanceService
from vangraph.issues import UPDATABLE_FIELDS, IssueFilters, IssueService, board_columns
from vangraph.profiles import ProfileService
from vangraph.projects import ProjectService
from vangraph.reorder import InvalidMove, MoveRequest, MoveState, ReorderCoordinator
from vangraph.schema import EntityType, IssueStatus, Priority
from vangraph.specs import SpecService
from vangraph.sprints import SprintService
from vangraph.store import NotFound, open_store

logger = logging.getLogger(__name__)

app = Flask(__name__)


# ── Services ─────────────────────────────────────────────────────────────────

class Services:
    """Everything a request needs, built once from Config."""

    def __init__(self, config: Config):
        self.config = config
        self.store = open_store(config)
        self.events = BoardEventBus()
        self.issues = IssueService(
            self.store, events=self.events,
            step=config.position_step, baseline=config.position_baseline,
        )
        self.projects = ProjectService(self.store)
        self.sprints = SprintService(self.store)
        self.specs = SpecService(self.store)
        self.governance = GovernanceService(self.store)
        self.profiles = ProfileService(self.store)

    def coordinator(self) -> ReorderCoordinator:
        # Fresh per move: the board is reloaded from the store each time
        return ReorderCoordinator(
            self.store, events=self.events,
            step=self.config.position_step, baseline=self.config.position_baseline,
        )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = Services(Config.load())
    return _services


def reset_services(config: Optional[Config] = None) -> Services:
    """Rebuild services (after --db/--config, or between tests)."""
    global _services
    _services = Services(config or Config.load())
    return _services


def _body() -> dict:
    return request.get_json(force=True, silent=True) or {}


def _project_id() -> str:
    """?project=<id>, else the default project key in the default workspace."""
    project_id = request.args.get("project") or _body().get("project_id")
    if project_id:
        if get_services().projects.get_project(project_id) is None:
            raise NotFound(f"Project not found: {project_id}")
        return project_id
    cfg = get_services().config
    project = get_services().projects.get_project_by_key(cfg.default_workspace_id, cfg.default_project_key)
    if project is None:
        raise ValueError("project is required")
    return project.id


def _csv(name: str) -> list:
    raw = request.args.get(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


def _entity_type(value) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise ValueError(f"Invalid entity_type: {value}")


# ── Error mapping ────────────────────────────────────────────────────────────

@app.errorhandler(NotFound)
def handle_not_found(e):
    return jsonify({"error": str(e)}), 404


@app.errorhandler(ValueError)
@app.errorhandler(InvalidMove)
def handle_bad_request(e):
    return jsonify({"error": str(e)}), 400


@app.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return jsonify({"error": e.description}), e.code
    logger.error(f"{request.method} {request.path} failed: {e}")
    return jsonify({"error": str(e)}), 500


# ── Board & issues ───────────────────────────────────────────────────────────

@app.route("/health")
def health():
    cfg = get_services().config
    return jsonify({
        "status": "ok",
        "backend": cfg.backend,
        "db": cfg.db_path if cfg.backend == "sqlite" else None,
    })


@app.route("/api/board")
def api_board():
    services = get_services()
    project_id = _project_id()
    grouped = services.issues.get_issues_by_status(project_id)
    return jsonify({
        "project": services.projects.get_project(project_id).to_dict(),
        "columns": board_columns(grouped),
        "stats": services.projects.get_project_stats(project_id).to_dict(),
    })


@app.route("/api/issues", methods=["GET"])
def api_issues():
    filters = IssueFilters(
        status=[IssueStatus(s) for s in _csv("status")],
        priority=[Priority(p) for p in _csv("priority")],
        assignee_id=request.args.get("assignee") or None,
        sprint_id=request.args.get("sprint") or None,
        search=request.args.get("search", ""),
        archived=request.args.get("archived", "").lower() in ("1", "true", "yes"),
    )
    issues = get_services().issues.get_issues(_project_id(), filters)
    return jsonify({"issues": [i.to_dict() for i in issues], "count": len(issues)})


@app.route("/api/issues", methods=["POST"])
def api_create_issue():
    data = _body()
    issue = get_services().issues.create_issue(
        _project_id(),
        title=data.get("title", ""),
        description=data.get("description", ""),
        status=IssueStatus(data.get("status") or IssueStatus.BACKLOG.value),
        priority=Priority(data.get("priority") or Priority.MEDIUM.value),
        assignee_id=data.get("assignee_id"),
        reporter_id=data.get("reporter_id"),
        sprint_id=data.get("sprint_id"),
        parent_id=data.get("parent_id"),
        estimate_points=data.get("estimate_points"),
        due_date=data.get("due_date"),
        labels=data.get("labels"),
    )
    return jsonify({"issue": issue.to_dict(), "id": issue.id}), 201


@app.route("/api/issues/<issue_id>", methods=["GET"])
def api_get_issue(issue_id):
    issue = get_services().issues.get_issue(issue_id)
    if issue is None:
        raise NotFound(f"Issue not found: {issue_id}")
    return jsonify({"issue": issue.to_dict()})


@app.route("/api/issues/<issue_id>", methods=["PUT"])
def api_update_issue(issue_id):
    data = _body()
    actor = data.pop("actor", "api")
    unknown = set(data) - UPDATABLE_FIELDS
    if unknown:
        return jsonify({"error": f"Cannot update fields: {sorted(unknown)}"}), 400
    issue = get_services().issues.update_issue(issue_id, actor=actor, **data)
    return jsonify({"issue": issue.to_dict()})


@app.route("/api/issues/<issue_id>", methods=["DELETE"])
def api_delete_issue(issue_id):
    if not get_services().issues.delete_issue(issue_id, actor="api"):
        raise NotFound(f"Issue not found: {issue_id}")
    return jsonify({"id": issue_id, "archived": True})


@app.route("/api/issues/<issue_id>/move", methods=["POST"])
def api_move_issue(issue_id):
    """Drop an issue into a column, optionally at an index."""
    services = get_services()
    data = _body()
    status = (data.get("status") or "").strip().lower()
    if not status:
        return jsonify({"error": "status is required"}), 400
    if services.store.get_issue(issue_id) is None:
        raise NotFound(f"Issue not found: {issue_id}")

    index = data.get("index")
    if index is not None:
        try:
            index = int(index)
        except (TypeError, ValueError):
            return jsonify({"error": f"Invalid index: {index}"}), 400

    pending = services.coordinator().move(
        MoveRequest(issue_id=issue_id, target_status=status, target_index=index),
        actor=data.get("actor", "api"),
    )
    issue = services.issues.get_issue(issue_id)
    payload = {
        "issue": issue.to_dict() if issue else None,
        "state": pending.state.value,
        "position": pending.position,
        "move": pending.to_dict(),
    }
    if pending.state == MoveState.ROLLED_BACK:
        payload["error"] = f"Move rolled back: {pending.reason}"
        return jsonify(payload), 409
    return jsonify(payload)


@app.route("/api/issues/<issue_id>/activity")
def api_issue_activity(issue_id):
    services = get_services()
    if services.store.get_issue(issue_id) is None:
        raise NotFound(f"Issue not found: {issue_id}")
    activity = services.store.list_activity(issue_id)
    return jsonify({"activity": activity, "count": len(activity)})


# ── Projects ─────────────────────────────────────────────────────────────────

@app.route("/api/projects", methods=["GET"])
def api_projects():
    services = get_services()
    workspace_id = request.args.get("workspace") or services.config.default_workspace_id
    return jsonify({"projects": services.projects.get_projects_with_stats(workspace_id)})


@app.route("/api/projects", methods=["POST"])
def api_create_project():
    services = get_services()
    data = _body()
    project = services.projects.create_project(
        workspace_id=data.get("workspace_id") or services.config.default_workspace_id,
        name=data.get("name", ""),
        key=data.get("key", ""),
        description=data.get("description", ""),
        tech_stack=data.get("tech_stack"),
    )
    return jsonify({"project": project.to_dict(), "id": project.id}), 201


@app.route("/api/projects/<project_id>/stats")
def api_project_stats(project_id):
    services = get_services()
    if services.projects.get_project(project_id) is None:
        raise NotFound(f"Project not found: {project_id}")
    return jsonify(services.projects.get_project_stats(project_id).to_dict())


@app.route("/api/projects/<project_id>/analytics")
def api_project_analytics(project_id):
    services = get_services()
    if services.projects.get_project(project_id) is None:
        raise NotFound(f"Project not found: {project_id}")
    return jsonify(get_project_analytics(services.store, project_id))


# ── Sprints ──────────────────────────────────────────────────────────────────

@app.route("/api/sprints", methods=["GET"])
def api_sprints():
    sprints = get_services().sprints.get_sprints(_project_id())
    return jsonify({"sprints": [s.to_dict() for s in sprints]})


@app.route("/api/sprints", methods=["POST"])
def api_create_sprint():
    data = _body()
    sprint = get_services().sprints.create_sprint(
        _project_id(),
        name=data.get("name", ""),
        description=data.get("description", ""),
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        velocity_target=data.get("velocity_target"),
    )
    return jsonify({"sprint": sprint.to_dict(), "id": sprint.id}), 201


@app.route("/api/sprints/<sprint_id>/start", methods=["POST"])
def api_start_sprint(sprint_id):
    return jsonify({"sprint": get_services().sprints.start_sprint(sprint_id).to_dict()})


@app.route("/api/sprints/<sprint_id>/complete", methods=["POST"])
def api_complete_sprint(sprint_id):
    return jsonify({"sprint": get_services().sprints.complete_sprint(sprint_id).to_dict()})


@app.route("/api/sprints/<sprint_id>/progress")
def api_sprint_progress(sprint_id):
    return jsonify(get_services().sprints.get_sprint_progress(sprint_id))


# ── Specs ────────────────────────────────────────────────────────────────────

@app.route("/api/issues/<issue_id>/spec", methods=["GET"])
def api_get_spec(issue_id):
    spec = get_services().specs.get_spec_by_issue(issue_id)
    if spec is None:
        raise NotFound(f"No spec for issue {issue_id}")
    return jsonify({"spec": spec.to_dict()})


@app.route("/api/issues/<issue_id>/spec", methods=["POST"])
def api_create_spec(issue_id):
    data = _body()
    spec = get_services().specs.create_spec(
        issue_id,
        markdown_content=data.get("markdown_content", ""),
        architect_id=data.get("architect_id"),
        generation_prompt=data.get("generation_prompt"),
    )
    return jsonify({"spec": spec.to_dict(), "id": spec.id}), 201


@app.route("/api/issues/<issue_id>/spec/history")
def api_spec_history(issue_id):
    return jsonify({"versions": get_services().specs.get_spec_version_history(issue_id)})


@app.route("/api/specs/<spec_id>/approve", methods=["POST"])
def api_approve_spec(spec_id):
    data = _body()
    approved_by = (data.get("approved_by") or "").strip()
    if not approved_by:
        return jsonify({"error": "approved_by is required"}), 400
    return jsonify({"spec": get_services().specs.approve_spec(spec_id, approved_by).to_dict()})


@app.route("/api/specs/<spec_id>/reject", methods=["POST"])
def api_reject_spec(spec_id):
    data = _body()
    return jsonify({"spec": get_services().specs.reject_spec(spec_id, data.get("reason", "")).to_dict()})


# ── Governance ───────────────────────────────────────────────────────────────

@app.route("/api/gates", methods=["POST"])
def api_create_gate():
    data = _body()
    gate = get_services().governance.create_gate(
        entity_type=_entity_type(data.get("entity_type")),
        entity_id=data.get("entity_id", ""),
        step_type=data.get("step_type", ""),
        required_role=data.get("required_role") or "admin",
    )
    return jsonify({"gate": gate.to_dict(), "id": gate.id}), 201


@app.route("/api/gates", methods=["GET"])
def api_gates():
    entity_type = _entity_type(request.args.get("entity_type"))
    entity_id = request.args.get("entity_id", "")
    if not entity_id:
        return jsonify({"error": "entity_id is required"}), 400
    governance = get_services().governance
    gates = governance.store.list_gates(entity_type, entity_id)
    return jsonify({
        "gates": [g.to_dict() for g in gates],
        "status": governance.get_governance_status(entity_type, entity_id),
    })


@app.route("/api/gates/<gate_id>/approve", methods=["POST"])
def api_approve_gate(gate_id):
    data = _body()
    gate = get_services().governance.approve_gate(gate_id, data.get("approver_id", ""))
    return jsonify({"gate": gate.to_dict()})


@app.route("/api/gates/<gate_id>/reject", methods=["POST"])
def api_reject_gate(gate_id):
    data = _body()
    gate = get_services().governance.reject_gate(gate_id, data.get("approver_id", ""), data.get("reason"))
    return jsonify({"gate": gate.to_dict()})


# ── Settings ─────────────────────────────────────────────────────────────────

@app.route("/api/settings/<user_id>", methods=["GET"])
def api_get_settings(user_id):
    return jsonify({"profile": get_services().profiles.get_profile(user_id).to_dict()})


@app.route("/api/settings/<user_id>", methods=["PUT"])
def api_update_settings(user_id):
    data = _body()
    profile = get_services().profiles.update_profile(
        user_id,
        full_name=data.get("full_name"),
        avatar_url=data.get("avatar_url"),
        email=data.get("email"),
        theme=data.get("theme"),
        notifications=data.get("notifications"),
    )
    return jsonify({"profile": profile.to_dict()})


# ── Main ─────────────────────────────────────────────────────────────────────

def main():
    import argparse

    parser = argparse.ArgumentParser(description="Vangraph Board Server")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to the SQLite DB (overrides VANGRAPH_DB env var)")
    parser.add_argument("--config", help="Path to config.yaml (overrides VANGRAPH_CONFIG env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["VANGRAPH_DB"] = args.db
    config = Config.load(args.config)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [vangraph] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    reset_services(config)
    host = args.host or config.host
    port = args.port or config.port
    logger.info(f"Vangraph board on http://{host}:{port} ({config.backend} backend)")
    app.run(host=host, port=port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
