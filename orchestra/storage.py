from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db.models import Deliverable, ModificationRecord, Organization, Project, Workflow
from .db.session import AsyncSessionLocal
from .errors import NotFoundError
from .metadata import merge_raw
from .models import DeliverableStatus, WorkflowStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliverableStore:
    """Organization-scoped persistence for deliverables, workflows and the modification trail."""

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    async def get_owned(
        self,
        session: AsyncSession,
        deliverable_id: str,
        organization_id: str,
        for_update: bool = False,
    ) -> Deliverable:
        query = select(Deliverable).where(
            Deliverable.id == deliverable_id,
            Deliverable.organization_id == organization_id,
        )
        if for_update:
            query = query.with_for_update()
        deliverable = (await session.execute(query)).scalar_one_or_none()
        if deliverable is None:
            raise NotFoundError("Deliverable not found")
        return deliverable

    async def load(self, deliverable_id: str, organization_id: str) -> Deliverable:
        async with self.session_factory() as session:
            return await self.get_owned(session, deliverable_id, organization_id)

    async def list_for_organization(
        self,
        organization_id: str,
        project_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[Deliverable]:
        query = select(Deliverable).where(Deliverable.organization_id == organization_id)
        if project_id:
            query = query.where(Deliverable.project_id == project_id)
        if status:
            query = query.where(Deliverable.status == status)
        query = query.order_by(Deliverable.created_at, Deliverable.id).limit(limit)
        async with self.session_factory() as session:
            return list((await session.execute(query)).scalars().all())

    async def merge_metadata(self, deliverable_id: str, organization_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge-patch metadata under a row lock; returns the stored result."""
        async with self.session_factory() as session:
            deliverable = await self.get_owned(session, deliverable_id, organization_id, for_update=True)
            deliverable.meta = merge_raw(deliverable.meta, patch)
            await session.commit()
            return deliverable.meta

    async def acquire_revision_lock(self, deliverable_id: str, organization_id: str, holder: str) -> bool:
        """Atomically move a deliverable into ``revising``; False if already held."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Deliverable)
                .where(
                    Deliverable.id == deliverable_id,
                    Deliverable.organization_id == organization_id,
                    Deliverable.status != DeliverableStatus.revising.value,
                )
                .values(
                    status=DeliverableStatus.revising.value,
                    revision_locked_at=utcnow(),
                    revision_holder=holder,
                    revision_prior_status=Deliverable.status,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def release_revision_lock(self, deliverable_id: str, status: str, holder: Optional[str] = None) -> bool:
        """Leave ``revising`` for ``status``; a holder mismatch leaves the lock alone."""
        conditions = [Deliverable.id == deliverable_id, Deliverable.status == DeliverableStatus.revising.value]
        if holder is not None:
            conditions.append(Deliverable.revision_holder == holder)
        async with self.session_factory() as session:
            result = await session.execute(
                update(Deliverable)
                .where(*conditions)
                .values(status=status, revision_locked_at=None, revision_holder=None, revision_prior_status=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def release_stale_locks(self, ttl_minutes: int) -> int:
        """Release direct-mode locks older than the TTL and locks of finished workflows.

        Each deliverable goes back to the status it held when the lock was taken.
        """
        cutoff = utcnow() - timedelta(minutes=ttl_minutes)
        async with self.session_factory() as session:
            finished = select(Workflow.id).where(
                Workflow.status.in_([WorkflowStatus.completed.value, WorkflowStatus.failed.value])
            )
            result = await session.execute(
                update(Deliverable)
                .where(
                    Deliverable.status == DeliverableStatus.revising.value,
                    or_(
                        and_(Deliverable.revision_holder.like("direct:%"), Deliverable.revision_locked_at < cutoff),
                        Deliverable.revision_holder.in_(finished),
                    ),
                )
                .values(
                    status=func.coalesce(Deliverable.revision_prior_status, DeliverableStatus.draft.value),
                    revision_locked_at=None,
                    revision_holder=None,
                    revision_prior_status=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount or 0

    async def record_modification(self, **values: Any) -> ModificationRecord:
        async with self.session_factory() as session:
            record = ModificationRecord(**values)
            session.add(record)
            await session.commit()
            return record

    async def modification_history(self, deliverable_id: str, organization_id: str, limit: int = 50) -> List[ModificationRecord]:
        async with self.session_factory() as session:
            await self.get_owned(session, deliverable_id, organization_id)
            result = await session.execute(
                select(ModificationRecord)
                .where(ModificationRecord.deliverable_id == deliverable_id)
                .order_by(ModificationRecord.created_at.desc(), ModificationRecord.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def create_workflow(self, **values: Any) -> Workflow:
        async with self.session_factory() as session:
            workflow = Workflow(status=WorkflowStatus.queued.value, **values)
            session.add(workflow)
            await session.commit()
            return workflow

    async def get_workflow(self, workflow_id: str, organization_id: str) -> Workflow:
        async with self.session_factory() as session:
            workflow = (await session.execute(
                select(Workflow).where(Workflow.id == workflow_id, Workflow.organization_id == organization_id)
            )).scalar_one_or_none()
            if workflow is None:
                raise NotFoundError("Workflow not found")
            return workflow

    async def claim_workflow(self, workflow_id: str) -> bool:
        """Move a queued workflow to running; False if another worker got it first."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Workflow)
                .where(Workflow.id == workflow_id, Workflow.status == WorkflowStatus.queued.value)
                .values(status=WorkflowStatus.running.value, started_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def due_workflows(self, now: Optional[datetime] = None, limit: int = 50) -> List[str]:
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(Workflow.id)
                .where(
                    Workflow.status == WorkflowStatus.queued.value,
                    or_(Workflow.scheduled_for.is_(None), Workflow.scheduled_for <= now),
                )
                .order_by(Workflow.created_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def project_context(self, organization_id: str, project_id: Optional[str]) -> Dict[str, Any]:
        """Project context with the organization's brand guidelines filled in."""
        async with self.session_factory() as session:
            organization = await session.get(Organization, organization_id)
            project = await session.get(Project, project_id) if project_id else None
        context: Dict[str, Any] = {}
        if organization is not None and organization.brand_guidelines:
            context["brandGuidelines"] = dict(organization.brand_guidelines)
        if project is not None and project.organization_id == organization_id:
            context.update(project.context or {})
        return context

    async def update_workflow(self, workflow_id: str, **values: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Workflow)
                .where(Workflow.id == workflow_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()


store = DeliverableStore()
