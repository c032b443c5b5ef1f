"""
Governance gates: human sign-off required before an entity may proceed.
"""
import logging
from typing import List, Dict, Any, Optional

from .schema import EntityType, GateStatus, GovernanceGate, make_id, utc_now
from .store import BaseStore, NotFound

logger = logging.getLogger(__name__)


class GovernanceService:
    def __init__(self, store: BaseStore):
        self.store = store

    def create_gate(
        self,
        entity_type: EntityType,
        entity_id: str,
        step_type: str,
        required_role: str = "admin",
    ) -> GovernanceGate:
        if not (step_type or "").strip():
            raise ValueError("step_type is required")
        gate = GovernanceGate(
            id=make_id("gate"),
            entity_type=entity_type,
            entity_id=entity_id,
            step_type=step_type,
            required_role=required_role,
        )
        if not self.store.save_gate(gate):
            raise RuntimeError(f"Failed to save gate for {entity_type.value} {entity_id}")
        return gate

    def get_pending_gates(self, entity_type: EntityType, entity_id: str) -> List[GovernanceGate]:
        return [g for g in self.store.list_gates(entity_type, entity_id) if g.status == GateStatus.PENDING]

    def approve_gate(self, gate_id: str, approver_id: str) -> GovernanceGate:
        return self._complete(gate_id, GateStatus.APPROVED, approver_id)

    def reject_gate(self, gate_id: str, approver_id: str, reason: Optional[str] = None) -> GovernanceGate:
        return self._complete(gate_id, GateStatus.REJECTED, approver_id, reason)

    def can_proceed(self, entity_type: EntityType, entity_id: str) -> Dict[str, Any]:
        pending = self.get_pending_gates(entity_type, entity_id)
        return {"allowed": not pending, "pending_gates": [g.to_dict() for g in pending]}

    def get_governance_status(self, entity_type: EntityType, entity_id: str) -> Dict[str, Any]:
        gates = self.store.list_gates(entity_type, entity_id)
        by_status = {status: sum(1 for g in gates if g.status == status) for status in GateStatus}
        return {
            "total_gates": len(gates),
            "approved": by_status[GateStatus.APPROVED],
            "rejected": by_status[GateStatus.REJECTED],
            "pending": by_status[GateStatus.PENDING],
            "can_proceed": bool(gates) and by_status[GateStatus.APPROVED] == len(gates),
        }

    def _complete(
        self,
        gate_id: str,
        status: GateStatus,
        approver_id: str,
        reason: Optional[str] = None,
    ) -> GovernanceGate:
        gate = self.store.get_gate(gate_id)
        if gate is None:
            raise NotFound(f"Gate not found: {gate_id}")
        if gate.status != GateStatus.PENDING:
            raise ValueError(f"Gate {gate_id} is already {gate.status.value}")
        gate.status = status
        gate.approver_id = approver_id
        gate.rejection_reason = reason
        gate.completed_at = utc_now()
        self.store.save_gate(gate)
        logger.info(f"Gate {gate_id} ({gate.step_type}) {status.value} by {approver_id}")
        return gate
