"""
Drag-and-drop reordering.

A move is applied to the local board first and confirmed against the store
second:

    PENDING ──persist ok──▶ COMMITTED
       │
       └──persist failed──▶ ROLLED_BACK   (touched columns restored, board reloaded)

Only PENDING moves can transition; COMMITTED and ROLLED_BACK are terminal.
Concurrent writers are not reconciled: the last write to the store wins.
"""
import copy
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Dict

from .events import BoardEventBus
from .issues import IssueService, sort_column
from .positions import STEP, BASELINE, allocate_position, has_room, neighbors, rebalance
from .schema import Issue, IssueStatus
from .store import BaseStore

logger = logging.getLogger(__name__)


class InvalidMove(Exception):
    """Raised when a move names an unknown issue or column."""
    pass


class MoveState(Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


ALLOWED_NEXT = {
    MoveState.PENDING: [MoveState.COMMITTED, MoveState.ROLLED_BACK],
    MoveState.COMMITTED: [],
    MoveState.ROLLED_BACK: [],
}


@dataclass
class MoveRequest:
    """A finished drag: which issue, which column, which slot."""
    issue_id: str
    target_status: IssueStatus
    # Index among the target column's issues with the moved one left out.
    # None = dropped on the column itself, i.e. the end of the column.
    target_index: Optional[int] = None


@dataclass
class PendingMove:
    """One move and the last-known-good copy of the columns it touches."""
    request: MoveRequest
    source_status: IssueStatus
    index: int
    above: Optional[float]
    below: Optional[float]
    position: float
    snapshot: Dict[IssueStatus, List[Issue]] = field(default_factory=dict, repr=False)
    state: MoveState = MoveState.PENDING
    reason: str = ""

    @property
    def target_status(self) -> IssueStatus:
        return self.request.target_status

    def transition_to(self, new_state: MoveState, reason: str = "") -> bool:
        """Attempt a state transition. Returns True if successful."""
        if new_state not in ALLOWED_NEXT[self.state]:
            return False
        self.state = new_state
        self.reason = reason
        return True

    def to_dict(self) -> dict:
        return {
            "issue_id": self.request.issue_id,
            "from_status": self.source_status.value,
            "to_status": self.target_status.value,
            "index": self.index,
            "position": self.position,
            "state": self.state.value,
            "reason": self.reason,
        }


class ReorderCoordinator:
    """Holds one project's board and applies moves to it."""

    def __init__(
        self,
        store: BaseStore,
        events: Optional[BoardEventBus] = None,
        step: float = STEP,
        baseline: float = BASELINE,
    ):
        self.store = store
        self.events = events or BoardEventBus()
        self.issues = IssueService(store, events=self.events, step=step, baseline=baseline)
        self.step = step
        self.baseline = baseline
        self.project_id: Optional[str] = None
        self.board: Dict[IssueStatus, List[Issue]] = {}

    # ── Board state ──────────────────────────────────────────────────────

    def load(self, project_id: str) -> Dict[IssueStatus, List[Issue]]:
        """Replace local state with the store's view of a project."""
        self.project_id = project_id
        self.board = self.issues.get_issues_by_status(project_id)
        return self.board

    def reload(self) -> Dict[IssueStatus, List[Issue]]:
        if self.project_id is None:
            return self.board
        return self.load(self.project_id)

    def column(self, status: IssueStatus) -> List[Issue]:
        return self.board.get(status, [])

    def _find(self, issue_id: str) -> Optional[Issue]:
        for issues in self.board.values():
            for issue in issues:
                if issue.id == issue_id:
                    return issue
        return None

    # ── Move lifecycle ───────────────────────────────────────────────────

    def move(self, request: MoveRequest, actor: str = "") -> PendingMove:
        """Plan, apply locally, then persist. Never raises on store failure."""
        pending = self.plan(request)
        if pending.state == MoveState.ROLLED_BACK:
            return pending
        self.apply_optimistic(pending)
        return self.commit(pending, actor=actor)

    def plan(self, request: MoveRequest) -> PendingMove:
        """Work out where the issue lands without touching the board."""
        if not isinstance(request.target_status, IssueStatus):
            try:
                request.target_status = IssueStatus(request.target_status)
            except ValueError:
                raise InvalidMove(f"Invalid column: {request.target_status}")

        moved = self._find(request.issue_id)
        if moved is None:
            stored = self.store.get_issue(request.issue_id)
            if stored is None or stored.archived:
                raise InvalidMove(f"Issue not found: {request.issue_id}")
            self.load(stored.project_id)
            moved = self._find(request.issue_id)
            if moved is None:
                raise InvalidMove(f"Issue not on board: {request.issue_id}")

        target = [i for i in self.column(request.target_status) if i.id != moved.id]
        index = len(target) if request.target_index is None else max(0, min(request.target_index, len(target)))

        above, below = neighbors([i.position for i in target], index)
        pending = PendingMove(
            request=request,
            source_status=moved.status,
            index=index,
            above=above,
            below=below,
            position=0.0,
        )

        if not has_room(above, below):
            if not self._rebalance(request.target_status, exclude=moved.id):
                pending.transition_to(MoveState.ROLLED_BACK, reason="rebalance failed")
                self.reload()
                self.events.emit("move_rolled_back", issue_id=moved.id, reason=pending.reason)
                return pending
            target = [i for i in self.column(request.target_status) if i.id != moved.id]
            above, below = neighbors([i.position for i in target], index)
            pending.above, pending.below = above, below

        pending.position = allocate_position(above, below, step=self.step, baseline=self.baseline)
        return pending

    def apply_optimistic(self, pending: PendingMove) -> None:
        """Show the move locally before the store has confirmed it."""
        source, target = pending.source_status, pending.target_status
        pending.snapshot = {
            source: copy.deepcopy(self.column(source)),
            target: copy.deepcopy(self.column(target)),
        }

        moved = self._find(pending.request.issue_id)
        self.board[source] = [i for i in self.column(source) if i.id != moved.id]
        placed = copy.deepcopy(moved)
        placed.status = target
        placed.position = pending.position
        column = [i for i in self.column(target) if i.id != moved.id]
        column.insert(pending.index, placed)
        self.board[target] = sort_column(column)

    def commit(self, pending: PendingMove, actor: str = "") -> PendingMove:
        """Persist the new (column, position); roll back if the store refuses."""
        issue_id = pending.request.issue_id
        try:
            ok = self.store.update_issue_position(issue_id, pending.target_status, pending.position, actor=actor)
            reason = "" if ok else "store rejected the write"
        except Exception as e:
            ok, reason = False, str(e)

        if not ok:
            self.rollback(pending, reason)
            return pending

        pending.transition_to(MoveState.COMMITTED)
        logger.info(
            f"Moved {issue_id} {pending.source_status.value} -> {pending.target_status.value} "
            f"at {pending.position} (index {pending.index})"
        )
        self.events.emit(
            "issue_moved",
            issue_id=issue_id,
            from_status=pending.source_status,
            to_status=pending.target_status,
            position=pending.position,
        )
        return pending

    def rollback(self, pending: PendingMove, reason: str) -> None:
        """Drop the optimistic update and reload from the store."""
        if not pending.transition_to(MoveState.ROLLED_BACK, reason=reason):
            return
        logger.warning(f"Move of {pending.request.issue_id} rolled back: {reason}")
        self.board.update(pending.snapshot)
        self.reload()
        self.events.emit("move_rolled_back", issue_id=pending.request.issue_id, reason=reason)

    # ── Precision exhaustion ─────────────────────────────────────────────

    def _rebalance(self, status: IssueStatus, exclude: Optional[str] = None) -> bool:
        """Renumber a column evenly, keeping its order. Persists every row in one write."""
        column = [i for i in self.column(status) if i.id != exclude]
        fresh = rebalance(len(column), step=self.step, baseline=self.baseline)
        changed = {i.id: p for i, p in zip(column, fresh) if i.position != p}
        if changed and not self.store.update_issue_positions(status, changed, actor="rebalance"):
            logger.error(f"Rebalance of {status.value} failed ({len(changed)} issues)")
            return False
        for issue in column:
            issue.position = changed.get(issue.id, issue.position)
        logger.info(f"Rebalanced {status.value}: {len(column)} issues")
        self.events.emit("column_rebalanced", project_id=self.project_id, status=status, count=len(column))
        return True
