"""Feedback loop recorder.

Every successful modification, auto-fix, approval and publication hands an
audit event and an interaction record to the side-effect dispatcher. Nothing
here blocks or fails the caller's primary write.
"""

import logging
from typing import Any, Dict, List, Optional

from .audit import AuditEventType, audit_log
from .memory.interactions import Interaction, MemoryStore
from .workers import SideEffectDispatcher


logger = logging.getLogger(__name__)


class FeedbackRecorder:
    def __init__(self, memory: MemoryStore, dispatcher: SideEffectDispatcher):
        self.memory = memory
        self.dispatcher = dispatcher

    def audit(
        self,
        event_type: AuditEventType,
        details: Dict[str, Any],
        actor: Optional[str],
        organization_id: Optional[str],
        resource: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        async def write() -> None:
            audit_log(
                event_type,
                details,
                actor=actor,
                organization_id=organization_id,
                resource=resource,
                request_id=request_id,
            )

        self.dispatcher.submit(f"audit:{event_type.value}", write)

    def interaction(self, interaction: Interaction) -> None:
        async def write() -> None:
            await self.memory.record_interaction(interaction)

        self.dispatcher.submit(f"memory:{interaction.interaction_type}", write)

    def modification(
        self,
        *,
        organization_id: str,
        actor_id: str,
        deliverable_id: str,
        deliverable_type: str,
        campaign_id: Optional[str],
        original_content: str,
        instruction: str,
        iteration_count: int,
        mode: str,
        action: str,
        new_deliverable_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
    ) -> None:
        """Audit plus memory record for one successful modification."""
        queued = mode == "workflow"
        self.audit(
            AuditEventType.DELIVERABLE_REVISION_QUEUED if queued else AuditEventType.DELIVERABLE_ITERATED,
            {
                "instruction": instruction,
                "mode": mode,
                "action": action,
                "iteration_count": iteration_count,
                "new_deliverable_id": new_deliverable_id,
                "workflow_id": workflow_id,
            },
            actor=actor_id,
            organization_id=organization_id,
            resource=f"deliverable:{deliverable_id}",
        )
        self.interaction(Interaction(
            organization_id=organization_id,
            interaction_type="revision_request" if queued else "iteration",
            outcome="queued" if queued else "iterated",
            deliverable_id=deliverable_id,
            deliverable_type=deliverable_type,
            campaign_id=campaign_id,
            user_id=actor_id,
            original_content=original_content,
            feedback_content=instruction,
            iteration_count=iteration_count,
        ))

    def auto_fix(
        self,
        *,
        organization_id: str,
        actor_id: str,
        deliverable_id: str,
        deliverable_type: str,
        campaign_id: Optional[str],
        original_content: str,
        suggestions: List[str],
        iteration_count: int,
        revision_id: str,
        verified: bool,
        attempts: int,
    ) -> None:
        self.audit(
            AuditEventType.DELIVERABLE_AUTO_FIXED,
            {"revision_id": revision_id, "verified": verified, "attempts": attempts},
            actor=actor_id,
            organization_id=organization_id,
            resource=f"deliverable:{deliverable_id}",
        )
        self.interaction(Interaction(
            organization_id=organization_id,
            interaction_type="auto_fix",
            outcome="verified" if verified else "unverified",
            deliverable_id=deliverable_id,
            deliverable_type=deliverable_type,
            campaign_id=campaign_id,
            user_id=actor_id,
            original_content=original_content,
            feedback_content="\n".join(suggestions) or None,
            iteration_count=iteration_count,
        ))

    def approval(
        self,
        *,
        organization_id: str,
        actor_id: str,
        deliverable_id: str,
        deliverable_type: str,
        campaign_id: Optional[str],
        content: str,
        feedback: Optional[str],
        iteration_count: int,
    ) -> None:
        self.audit(
            AuditEventType.DELIVERABLE_APPROVED,
            {"feedback": feedback, "iteration_count": iteration_count},
            actor=actor_id,
            organization_id=organization_id,
            resource=f"deliverable:{deliverable_id}",
        )
        self.interaction(Interaction(
            organization_id=organization_id,
            interaction_type="approval",
            outcome="approved_with_changes" if iteration_count > 0 else "approved",
            deliverable_id=deliverable_id,
            deliverable_type=deliverable_type,
            campaign_id=campaign_id,
            user_id=actor_id,
            original_content=content,
            feedback_content=feedback,
            iteration_count=iteration_count,
        ))

    def publication(
        self,
        *,
        organization_id: str,
        actor_id: Optional[str],
        deliverable_id: str,
        deliverable_type: str,
        campaign_id: Optional[str],
        target: str,
        outcome: str,
        details: Dict[str, Any],
    ) -> None:
        self.audit(
            AuditEventType.DELIVERABLE_PUBLISHED if outcome == "published" else AuditEventType.DELIVERABLE_PUBLISH_DEFERRED,
            {"target": target, **details},
            actor=actor_id or "system",
            organization_id=organization_id,
            resource=f"deliverable:{deliverable_id}",
        )
        self.interaction(Interaction(
            organization_id=organization_id,
            interaction_type="publication",
            outcome=outcome,
            deliverable_id=deliverable_id,
            deliverable_type=deliverable_type,
            campaign_id=campaign_id,
            user_id=actor_id,
            feedback_content=None,
        ))
