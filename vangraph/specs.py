"""
Specs: versioned markdown contracts attached to issues.

Every edit creates a new version; approval applies to a single version.
"""
import logging
from typing import Optional, List, Dict, Any

from .schema import Spec, make_id, utc_now
from .store import BaseStore, NotFound

logger = logging.getLogger(__name__)


class SpecService:
    def __init__(self, store: BaseStore):
        self.store = store

    def get_spec_by_issue(self, issue_id: str) -> Optional[Spec]:
        """Latest version, or None."""
        specs = self.store.list_specs(issue_id)
        return specs[0] if specs else None

    def get_spec_version_history(self, issue_id: str) -> List[Dict[str, Any]]:
        return [
            {
                "version": s.version,
                "markdown_content": s.markdown_content,
                "created_at": s.created_at.isoformat(),
                "is_approved": s.is_approved,
            }
            for s in self.store.list_specs(issue_id)
        ]

    def create_spec(
        self,
        issue_id: str,
        markdown_content: str,
        architect_id: Optional[str] = None,
        generation_prompt: Optional[str] = None,
    ) -> Spec:
        if self.store.get_issue(issue_id) is None:
            raise NotFound(f"Issue not found: {issue_id}")
        if not (markdown_content or "").strip():
            raise ValueError("markdown_content is required")
        latest = self.get_spec_by_issue(issue_id)
        spec = Spec(
            id=make_id("spec"),
            issue_id=issue_id,
            markdown_content=markdown_content,
            version=latest.version + 1 if latest else 1,
            architect_id=architect_id,
            generation_prompt=generation_prompt,
        )
        if not self.store.save_spec(spec):
            raise RuntimeError(f"Failed to save spec for issue {issue_id}")
        return spec

    def approve_spec(self, spec_id: str, approved_by: str) -> Spec:
        spec = self._require(spec_id)
        spec.is_approved = True
        spec.approved_by = approved_by
        spec.approved_at = utc_now()
        spec.updated_at = spec.approved_at
        self.store.save_spec(spec)
        logger.info(f"Spec {spec_id} v{spec.version} approved by {approved_by}")
        return spec

    def reject_spec(self, spec_id: str, reason: str = "") -> Spec:
        spec = self._require(spec_id)
        spec.is_approved = False
        spec.approved_by = None
        spec.approved_at = None
        spec.updated_at = utc_now()
        self.store.save_spec(spec)
        logger.info(f"Spec {spec_id} v{spec.version} rejected: {reason or 'no reason given'}")
        return spec

    def has_approved_spec(self, issue_id: str) -> bool:
        spec = self.get_spec_by_issue(issue_id)
        return bool(spec and spec.is_approved)

    def _require(self, spec_id: str) -> Spec:
        spec = self.store.get_spec(spec_id)
        if spec is None:
            raise NotFound(f"Spec not found: {spec_id}")
        return spec
