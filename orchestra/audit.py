"""
Audit Logging: structured trail of deliverable lifecycle events.

Every line written to the ``audit`` logger is one JSON ``AuditEvent``.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from .core.config import settings


audit_logger = logging.getLogger("audit")
audit_logger.setLevel(logging.INFO)

if settings.AUDIT_LOG_PATH:
    try:
        handler = logging.FileHandler(settings.AUDIT_LOG_PATH)
        handler.setFormatter(logging.Formatter('%(message)s'))
        audit_logger.addHandler(handler)
    except OSError as e:
        logging.getLogger(__name__).warning(f"Audit file {settings.AUDIT_LOG_PATH} not writable: {e}")


class AuditEventType(Enum):
    # Authorization
    AUTHZ_ACCESS_DENIED = "authz.access_denied"

    # Projects
    PROJECT_PLANNED = "project.planned"
    PROJECT_EXECUTED = "project.executed"
    PROJECT_FAILED = "project.failed"

    # Deliverables
    DELIVERABLE_ITERATED = "deliverable.iterate"
    DELIVERABLE_REVISION_QUEUED = "deliverable.revision_queued"
    DELIVERABLE_UNDONE = "deliverable.undo"
    DELIVERABLE_AUTO_FIXED = "deliverable.auto_fix"
    DELIVERABLE_METADATA_UPDATED = "deliverable.metadata_updated"
    DELIVERABLE_APPROVED = "deliverable.approve"
    DELIVERABLE_PUBLISHED = "deliverable.publish"
    DELIVERABLE_PUBLISH_DEFERRED = "deliverable.publish_deferred"
    DELIVERABLE_VARIANTS_QUEUED = "deliverable.variants_queued"

    # Workflows
    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"

    # Predictions
    PREDICTION_CREATED = "prediction.created"
    PREDICTION_FEEDBACK = "prediction.feedback"


@dataclass
class AuditEvent:
    """Structured audit event."""
    timestamp: str
    event_type: str
    actor: Optional[str]  # User ID or "system"
    organization_id: Optional[str]
    resource: Optional[str]
    action: str
    outcome: str  # success, failure, error
    details: Dict[str, Any]
    request_id: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)


def audit_log(
    event_type: Union[str, AuditEventType],
    details: Dict[str, Any],
    actor: Optional[str] = None,
    organization_id: Optional[str] = None,
    resource: Optional[str] = None,
    outcome: str = "success",
    request_id: Optional[str] = None,
) -> AuditEvent:
    """
    Log an audit event.

    Args:
        event_type: Type of event (AuditEventType or its string value)
        details: Event-specific details
        actor: User ID or "system"
        organization_id: Owning organization
        resource: Resource being acted on, e.g. "deliverable:<id>"
        outcome: success, failure, or error
        request_id: Request correlation ID
    """
    name = event_type.value if isinstance(event_type, AuditEventType) else event_type
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        event_type=name,
        actor=actor,
        organization_id=organization_id,
        resource=resource,
        action=name.split(".")[-1],
        outcome=outcome,
        details=details,
        request_id=request_id,
    )

    audit_logger.info(event.to_json())
    return event


def audit_access_denied(user_id: str, resource: str, action: str):
    """Log a cross-tenant or unauthorized access attempt."""
    audit_log(
        AuditEventType.AUTHZ_ACCESS_DENIED,
        {"attempted_action": action},
        actor=user_id,
        resource=resource,
        outcome="failure",
    )
