"""Approval and publication of deliverables.

Publication picks one of three strategies per target: the hosted target is
published in-request, Webflow is tried directly and falls back to a deferred
workflow on an integration error, every other target (or a publish scheduled
for later) goes straight to a deferred workflow.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import settings
from ..db.models import Deliverable
from ..errors import ConflictError, IntegrationError, PublishFailedError, RevisionInProgressError
from ..feedback import FeedbackRecorder
from ..integrations.webflow import WebflowClient
from ..metadata import ApprovalInfo, DeliverableMetadata, PublishState
from ..middleware.metrics import track_publication
from ..models import DeliverableStatus, WorkflowKind
from ..storage import DeliverableStore
from ..workflows.runner import WorkflowRunner


logger = logging.getLogger(__name__)

HOSTED_TARGET = "platform_hosted"
WEBFLOW_TARGET = "webflow"


class PublishResult(BaseModel):
    success: bool = True
    target: str
    status: str
    url: Optional[str] = None
    workflow_id: Optional[str] = None
    fallback: bool = False
    at: datetime


class ApprovalResult(BaseModel):
    success: bool = True
    deliverable_id: str
    status: str
    approved_at: datetime
    publish: Optional[PublishResult] = None
    publish_error: Optional[str] = None


def hosted_url(deliverable_id: str) -> str:
    return f"{settings.HOSTED_BASE_URL.rstrip('/')}/{deliverable_id}/content"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PublicationService:
    def __init__(
        self,
        store: DeliverableStore,
        feedback: FeedbackRecorder,
        runner: WorkflowRunner,
        webflow: Optional[WebflowClient] = None,
    ):
        self.store = store
        self.feedback = feedback
        self.runner = runner
        self.webflow = webflow or WebflowClient()

    async def approve(
        self,
        deliverable_id: str,
        organization_id: str,
        actor_id: str,
        feedback: Optional[str] = None,
        auto_publish: bool = False,
    ) -> ApprovalResult:
        approved_at = datetime.now(timezone.utc)
        async with self.store.session_factory() as session:
            row = await self.store.get_owned(session, deliverable_id, organization_id, for_update=True)
            if row.status == DeliverableStatus.revising.value:
                raise RevisionInProgressError("Cannot approve while a revision is in progress")
            if row.status == DeliverableStatus.published.value:
                raise ConflictError("Deliverable is already published")
            row.status = DeliverableStatus.approved.value
            row.meta = DeliverableMetadata.from_raw(row.meta).merge(DeliverableMetadata(
                approval=ApprovalInfo(approved_by=actor_id, approved_at=approved_at, feedback=feedback)
            )).to_raw()
            await session.commit()
            snapshot = (row.type, row.campaign_id, row.content, row.iteration_count or 0)

        deliverable_type, campaign_id, content, iteration_count = snapshot
        logger.info(f"Deliverable {deliverable_id} approved by {actor_id}")
        self.feedback.approval(
            organization_id=organization_id,
            actor_id=actor_id,
            deliverable_id=deliverable_id,
            deliverable_type=deliverable_type,
            campaign_id=campaign_id,
            content=content,
            feedback=feedback,
            iteration_count=iteration_count,
        )

        result = ApprovalResult(
            deliverable_id=deliverable_id,
            status=DeliverableStatus.approved.value,
            approved_at=approved_at,
        )
        if auto_publish:
            try:
                result.publish = await self.publish(deliverable_id, organization_id, actor_id, HOSTED_TARGET)
                result.status = result.publish.status
            except Exception as e:
                # approval stands even if publication does not
                logger.error(f"Auto-publish of deliverable {deliverable_id} failed: {e}", exc_info=True)
                result.publish_error = str(e)
        return result

    async def publish(
        self,
        deliverable_id: str,
        organization_id: str,
        actor_id: Optional[str],
        target: str,
        when: Optional[datetime] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> PublishResult:
        options = dict(options or {})
        deliverable = await self.store.load(deliverable_id, organization_id)
        self._check_publishable(deliverable)

        when = _aware(when)
        if when is not None and when > datetime.now(timezone.utc):
            return await self._defer(deliverable, actor_id, target, options, when=when)

        if target == HOSTED_TARGET:
            return await self._mark_published(deliverable, actor_id, target, hosted_url(deliverable_id), options)

        if target == WEBFLOW_TARGET:
            try:
                item = await self.webflow.publish_item(deliverable.title or deliverable.type, deliverable.content, options)
            except IntegrationError as e:
                logger.warning(f"Direct Webflow publish of {deliverable_id} failed, deferring: {e}")
                return await self._defer(deliverable, actor_id, target, options, fallback=True)
            return await self._mark_published(deliverable, actor_id, target, item.url, options, external_id=item.item_id)

        return await self._defer(deliverable, actor_id, target, options)

    @staticmethod
    def _check_publishable(deliverable: Deliverable) -> None:
        if deliverable.status == DeliverableStatus.revising.value:
            raise RevisionInProgressError("Cannot publish while a revision is in progress")
        if deliverable.status not in (DeliverableStatus.approved.value, DeliverableStatus.published.value):
            raise ConflictError(f"Deliverable is {deliverable.status}; approve it before publishing")

    async def _mark_published(
        self,
        deliverable: Deliverable,
        actor_id: Optional[str],
        target: str,
        url: Optional[str],
        options: Dict[str, Any],
        external_id: Optional[str] = None,
    ) -> PublishResult:
        at = datetime.now(timezone.utc)
        state = PublishState(
            target=target,
            status=DeliverableStatus.published.value,
            url=url,
            workflow_id=None,
            at=at,
            fallback=False,
            external_id=external_id,
            options=options,
        )
        async with self.store.session_factory() as session:
            row = await self.store.get_owned(session, deliverable.id, deliverable.organization_id, for_update=True)
            self._check_publishable(row)
            row.status = DeliverableStatus.published.value
            row.meta = DeliverableMetadata.from_raw(row.meta).merge(DeliverableMetadata(publish=state)).to_raw()
            await session.commit()

        track_publication(target, "direct")
        self.feedback.publication(
            organization_id=deliverable.organization_id,
            actor_id=actor_id,
            deliverable_id=deliverable.id,
            deliverable_type=deliverable.type,
            campaign_id=deliverable.campaign_id,
            target=target,
            outcome="published",
            details={"url": url, "external_id": external_id},
        )
        return PublishResult(target=target, status=DeliverableStatus.published.value, url=url, at=at)

    async def _defer(
        self,
        deliverable: Deliverable,
        actor_id: Optional[str],
        target: str,
        options: Dict[str, Any],
        when: Optional[datetime] = None,
        fallback: bool = False,
    ) -> PublishResult:
        at = datetime.now(timezone.utc)
        workflow_id = str(uuid4())
        try:
            workflow = await self.store.create_workflow(
                id=workflow_id,
                organization_id=deliverable.organization_id,
                user_id=actor_id,
                project_id=deliverable.project_id,
                deliverable_id=deliverable.id,
                kind=WorkflowKind.publish.value,
                goal=f"Publish deliverable {deliverable.id} to {target}",
                payload={"target": target, "options": options, "fallback": fallback},
                scheduled_for=when,
            )
        except SQLAlchemyError as e:
            logger.error(f"Could not queue publication of {deliverable.id} to {target}: {e}", exc_info=True)
            raise PublishFailedError(f"Could not queue publication to {target}")

        state = PublishState(
            target=target,
            status="queued",
            workflow_id=workflow_id,
            at=at,
            fallback=fallback,
            options=options,
        )
        await self.store.merge_metadata(deliverable.id, deliverable.organization_id, {"publish": state.model_dump(mode="json")})
        self.runner.enqueue(workflow)

        track_publication(target, "fallback" if fallback else "deferred")
        self.feedback.publication(
            organization_id=deliverable.organization_id,
            actor_id=actor_id,
            deliverable_id=deliverable.id,
            deliverable_type=deliverable.type,
            campaign_id=deliverable.campaign_id,
            target=target,
            outcome="deferred",
            details={"workflow_id": workflow_id, "fallback": fallback, "scheduled_for": when.isoformat() if when else None},
        )
        return PublishResult(target=target, status="queued", workflow_id=workflow_id, fallback=fallback, at=at)
