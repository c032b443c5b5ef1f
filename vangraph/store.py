"""
Vangraph storage backends.

BaseStore holds the per-entity CRUD surface the services use; subclasses only
provide the row primitives. Issue rows and their activity history are always
written together: either both land or neither does. MemoryStore keeps rows in
dicts (local development, tests); SQLiteStore persists them in one table per entity.

Writes return True/False and reads return None/[] on failure; errors are
logged here and never raised to callers.
"""
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Dict, Any

from .schema import (
    Activity,
    EntityType,
    GovernanceGate,
    Issue,
    IssueStatus,
    Profile,
    Project,
    Spec,
    Sprint,
)

logger = logging.getLogger(__name__)


class NotFound(Exception):
    """Raised by services when a referenced record does not exist."""
    pass

# Columns holding JSON-encoded lists/dicts, per table
JSON_FIELDS = {
    "projects": ("tech_stack",),
    "issues": ("labels",),
    "profiles": ("notifications",),
    "issue_activity": ("old_value", "new_value"),
}
BOOL_FIELDS = {
    "issues": ("archived",),
    "specs": ("is_approved",),
}


class BaseStore(ABC):
    """Entity-level storage API shared by every backend."""

    # ── Row primitives ───────────────────────────────────────────────────

    @abstractmethod
    def _put(self, table: str, row: Dict[str, Any]) -> None:
        """Insert or replace one row keyed by row["id"]."""

    @abstractmethod
    def _fetch(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        """One row by id, or None."""

    @abstractmethod
    def _select(self, table: str, **where) -> List[Dict[str, Any]]:
        """All rows whose columns equal the given values."""

    @abstractmethod
    def _write_issues(self, rows: List[Dict[str, Any]], entries: List[Activity]) -> None:
        """Replace issue rows and append their history, all or nothing."""

    @abstractmethod
    def list_activity(self, issue_id: str) -> List[Dict[str, Any]]:
        """History of an issue, oldest first."""

    # ── Projects ─────────────────────────────────────────────────────────

    def save_project(self, project: Project) -> bool:
        return self._save("projects", project.id, project.to_dict())

    def get_project(self, project_id: str) -> Optional[Project]:
        row = self._get("projects", project_id)
        return Project.from_dict(row) if row else None

    def list_projects(self, workspace_id: str) -> List[Project]:
        rows = self._list("projects", workspace_id=workspace_id)
        return sorted((Project.from_dict(r) for r in rows), key=lambda p: p.name.lower())

    # ── Sprints ──────────────────────────────────────────────────────────

    def save_sprint(self, sprint: Sprint) -> bool:
        return self._save("sprints", sprint.id, sprint.to_dict())

    def get_sprint(self, sprint_id: str) -> Optional[Sprint]:
        row = self._get("sprints", sprint_id)
        return Sprint.from_dict(row) if row else None

    def list_sprints(self, project_id: str) -> List[Sprint]:
        return [Sprint.from_dict(r) for r in self._list("sprints", project_id=project_id)]

    # ── Issues ───────────────────────────────────────────────────────────

    def save_issue(self, issue: Issue) -> bool:
        """Save or update an issue together with its pending activity rows."""
        row = issue.to_dict()
        row.pop("key", None)
        try:
            self._write_issues([row], issue._pending_activity)
        except Exception as e:
            logger.error(f"Error saving issue {issue.id}: {e}")
            return False
        issue._pending_activity = []
        return True

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        row = self._get("issues", issue_id)
        return Issue.from_dict(row) if row else None

    def list_issues(self, project_id: str, include_archived: bool = False) -> List[Issue]:
        issues = [Issue.from_dict(r) for r in self._list("issues", project_id=project_id)]
        if not include_archived:
            issues = [i for i in issues if not i.archived]
        return issues

    def list_sprint_issues(self, sprint_id: str) -> List[Issue]:
        rows = self._list("issues", sprint_id=sprint_id)
        return [i for i in (Issue.from_dict(r) for r in rows) if not i.archived]

    def update_issue_position(self, issue_id: str, status: IssueStatus, position: float, actor: str = "") -> bool:
        """Persist a move: the (column, position) pair of one issue."""
        return self.update_issue_positions(status, {issue_id: position}, actor=actor)

    def update_issue_positions(self, status: IssueStatus, positions: Dict[str, float], actor: str = "") -> bool:
        """Place several issues in one column. Either every row is written or none is."""
        issues = []
        for issue_id, position in positions.items():
            issue = self.get_issue(issue_id)
            if issue is None:
                logger.warning(f"Cannot move missing issue {issue_id}")
                return False
            issue.move_to(status, position, actor=actor)
            issues.append(issue)

        rows = []
        for issue in issues:
            row = issue.to_dict()
            row.pop("key", None)
            rows.append(row)
        try:
            self._write_issues(rows, [entry for issue in issues for entry in issue._pending_activity])
        except Exception as e:
            logger.error(f"Error moving {len(rows)} issue(s) to {status.value}: {e}")
            return False
        return True

    def next_sequence_id(self, project_id: str) -> int:
        """Next per-project issue number (archived issues keep theirs)."""
        rows = self._list("issues", project_id=project_id)
        return max((int(r.get("sequence_id") or 0) for r in rows), default=0) + 1

    # ── Specs ────────────────────────────────────────────────────────────

    def save_spec(self, spec: Spec) -> bool:
        return self._save("specs", spec.id, spec.to_dict())

    def get_spec(self, spec_id: str) -> Optional[Spec]:
        row = self._get("specs", spec_id)
        return Spec.from_dict(row) if row else None

    def list_specs(self, issue_id: str) -> List[Spec]:
        """All versions for an issue, newest first."""
        specs = [Spec.from_dict(r) for r in self._list("specs", issue_id=issue_id)]
        return sorted(specs, key=lambda s: s.version, reverse=True)

    # ── Governance gates ─────────────────────────────────────────────────

    def save_gate(self, gate: GovernanceGate) -> bool:
        return self._save("governance_gates", gate.id, gate.to_dict())

    def get_gate(self, gate_id: str) -> Optional[GovernanceGate]:
        row = self._get("governance_gates", gate_id)
        return GovernanceGate.from_dict(row) if row else None

    def list_gates(self, entity_type: EntityType, entity_id: str) -> List[GovernanceGate]:
        rows = self._list("governance_gates", entity_type=entity_type.value, entity_id=entity_id)
        return sorted((GovernanceGate.from_dict(r) for r in rows), key=lambda g: g.created_at)

    # ── Profiles ─────────────────────────────────────────────────────────

    def save_profile(self, profile: Profile) -> bool:
        return self._save("profiles", profile.id, profile.to_dict())

    def get_profile(self, user_id: str) -> Optional[Profile]:
        row = self._get("profiles", user_id)
        return Profile.from_dict(row) if row else None

    # ── Error boundary ───────────────────────────────────────────────────

    def _save(self, table: str, row_id: str, row: Dict[str, Any]) -> bool:
        try:
            self._put(table, row)
            return True
        except Exception as e:
            logger.error(f"Error saving {table} row {row_id}: {e}")
            return False

    def _get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self._fetch(table, row_id)
        except Exception as e:
            logger.error(f"Error retrieving {table} row {row_id}: {e}")
            return None

    def _list(self, table: str, **where) -> List[Dict[str, Any]]:
        try:
            return self._select(table, **where)
        except Exception as e:
            logger.error(f"Error listing {table} where {where}: {e}")
            return []


class MemoryStore(BaseStore):
    """Dict-backed store. Rows are copied in and out, never shared."""

    TABLES = ("projects", "sprints", "issues", "specs", "governance_gates", "profiles")

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {t: {} for t in self.TABLES}
        self._activity: List[Dict[str, Any]] = []

    def _put(self, table: str, row: Dict[str, Any]) -> None:
        self._tables[table][row["id"]] = json.loads(json.dumps(row))

    def _fetch(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        row = self._tables[table].get(row_id)
        return json.loads(json.dumps(row)) if row is not None else None

    def _select(self, table: str, **where) -> List[Dict[str, Any]]:
        return [
            json.loads(json.dumps(row))
            for row in self._tables[table].values()
            if all(row.get(k) == v for k, v in where.items())
        ]

    def _write_issues(self, rows: List[Dict[str, Any]], entries: List[Activity]) -> None:
        staged = [json.loads(json.dumps(row)) for row in rows]
        self._append_activity(entries)
        for row in staged:
            self._tables["issues"][row["id"]] = row

    def _append_activity(self, entries: List[Activity]) -> None:
        self._activity.extend(e.to_dict() for e in entries)

    def list_activity(self, issue_id: str) -> List[Dict[str, Any]]:
        return [dict(a) for a in self._activity if a["issue_id"] == issue_id]


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SQLiteStore(BaseStore):
    """SQLite-backed store, one table per entity."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "vangraph" / "vangraph.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    workspace_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    key TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    tech_stack TEXT,  -- JSON list
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sprints (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    start_date TEXT,
                    end_date TEXT,
                    velocity_target INTEGER,
                    status TEXT DEFAULT 'planned',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS issues (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    sequence_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    status TEXT DEFAULT 'backlog',
                    position REAL DEFAULT 0,
                    priority TEXT DEFAULT 'medium',
                    sprint_id TEXT,
                    parent_id TEXT,
                    assignee_id TEXT,
                    reporter_id TEXT,
                    estimate_points INTEGER,
                    due_date TEXT,
                    labels TEXT,  -- JSON list
                    started_at TEXT,
                    completed_at TEXT,
                    archived INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS issue_activity (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    issue_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    old_value TEXT,  -- JSON
                    new_value TEXT,  -- JSON
                    actor TEXT,
                    timestamp TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS specs (
                    id TEXT PRIMARY KEY,
                    issue_id TEXT NOT NULL,
                    markdown_content TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    is_approved INTEGER DEFAULT 0,
                    approved_by TEXT,
                    approved_at TEXT,
                    architect_id TEXT,
                    generation_prompt TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS governance_gates (
                    id TEXT PRIMARY KEY,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    step_type TEXT NOT NULL,
                    required_role TEXT DEFAULT 'admin',
                    status TEXT DEFAULT 'pending',
                    approver_id TEXT,
                    rejection_reason TEXT,
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    email TEXT DEFAULT '',
                    full_name TEXT DEFAULT '',
                    avatar_url TEXT DEFAULT '',
                    role TEXT DEFAULT 'member',
                    theme TEXT DEFAULT 'system',
                    notifications TEXT,  -- JSON dict
                    updated_at TEXT NOT NULL
                )
            """)
            # Board queries filter by project and column
            conn.execute("CREATE INDEX IF NOT EXISTS idx_issues_project ON issues(project_id, archived)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_issues_column ON issues(project_id, status, position)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_issues_sprint ON issues(sprint_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_activity_issue ON issue_activity(issue_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_specs_issue ON specs(issue_id, version)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_gates_entity ON governance_gates(entity_type, entity_id)")
            conn.commit()

    # ── Row primitives ───────────────────────────────────────────────────

    def _put(self, table: str, row: Dict[str, Any]) -> None:
        with _connect(self.db_path) as conn:
            _upsert(conn, table, row)
            conn.commit()

    def _fetch(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        with _connect(self.db_path) as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
        return _decode(table, row) if row else None

    def _select(self, table: str, **where) -> List[Dict[str, Any]]:
        clause = " AND ".join(f"{col} = ?" for col in where) or "1 = 1"
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT * FROM {table} WHERE {clause}",
                tuple(where.values()),
            ).fetchall()
        return [_decode(table, r) for r in rows]

    def _write_issues(self, rows: List[Dict[str, Any]], entries: List[Activity]) -> None:
        with _connect(self.db_path) as conn:
            for row in rows:
                _upsert(conn, "issues", row)
            for entry in entries:
                conn.execute(
                    "INSERT INTO issue_activity (issue_id, action, old_value, new_value, actor, timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (entry.issue_id, entry.action, json.dumps(entry.old_value),
                     json.dumps(entry.new_value), entry.actor, entry.timestamp),
                )
            conn.commit()

    def list_activity(self, issue_id: str) -> List[Dict[str, Any]]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT issue_id, action, old_value, new_value, actor, timestamp "
                    "FROM issue_activity WHERE issue_id = ? ORDER BY id ASC",
                    (issue_id,),
                ).fetchall()
            return [_decode("issue_activity", r) for r in rows]
        except Exception as e:
            logger.error(f"Error retrieving activity for issue {issue_id}: {e}")
            return []


def _upsert(conn: sqlite3.Connection, table: str, row: Dict[str, Any]) -> None:
    data = _encode(table, row)
    columns = ", ".join(data)
    marks = ", ".join("?" for _ in data)
    conn.execute(
        f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({marks})",
        tuple(data.values()),
    )


def _encode(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(row)
    for col in JSON_FIELDS.get(table, ()):
        if col in data:
            data[col] = json.dumps(data[col])
    for col in BOOL_FIELDS.get(table, ()):
        if col in data:
            data[col] = 1 if data[col] else 0
    return data


def _decode(table: str, row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    for col in JSON_FIELDS.get(table, ()):
        if data.get(col):
            try:
                data[col] = json.loads(data[col])
            except (json.JSONDecodeError, TypeError):
                data[col] = None
    for col in BOOL_FIELDS.get(table, ()):
        if col in data:
            data[col] = bool(data[col])
    return data


def open_store(config) -> BaseStore:
    """Build the backend named by config.backend."""
    if config.backend == "memory":
        logger.info("Using in-memory store (data is lost on exit)")
        return MemoryStore()
    if config.backend != "sqlite":
        raise ValueError(f"Unknown storage backend: {config.backend}")
    logger.info(f"Using SQLite store at {config.db_path}")
    return SQLiteStore(config.db_path)
