"""Interaction memory: approvals, revisions and modifications per organization."""

from abc import ABC, abstractmethod
from collections import Counter
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..db.models import InteractionRecord
from ..db.session import AsyncSessionLocal


class Interaction(BaseModel):
    organization_id: str
    interaction_type: str
    outcome: str
    deliverable_id: Optional[str] = None
    deliverable_type: Optional[str] = None
    campaign_id: Optional[str] = None
    user_id: Optional[str] = None
    original_content: Optional[str] = None
    feedback_content: Optional[str] = None
    iteration_count: int = 0


class MemoryStore(ABC):
    """Long-term store the feedback loop writes to."""

    @abstractmethod
    async def record_interaction(self, interaction: Interaction) -> None:
        ...

    @abstractmethod
    async def list_interactions(
        self,
        organization_id: str,
        deliverable_id: Optional[str] = None,
        interaction_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Interaction]:
        ...

    async def frequent_feedback(
        self,
        organization_id: str,
        deliverable_type: Optional[str] = None,
        limit: int = 3,
    ) -> List[str]:
        """Most repeated revision instructions, most common first."""
        items = await self.list_interactions(organization_id, limit=500)
        texts = [
            i.feedback_content.strip() for i in items
            if i.feedback_content
            and i.interaction_type in ("iteration", "revision_request")
            and (deliverable_type is None or i.deliverable_type == deliverable_type)
        ]
        return [text for text, _ in Counter(texts).most_common(limit)]


class SqlMemoryStore(MemoryStore):
    """Relational memory store over ``interaction_records``."""

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self._session_factory = session_factory

    async def record_interaction(self, interaction: Interaction) -> None:
        async with self._session_factory() as session:
            session.add(InteractionRecord(**interaction.model_dump()))
            await session.commit()

    async def list_interactions(
        self,
        organization_id: str,
        deliverable_id: Optional[str] = None,
        interaction_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Interaction]:
        query = select(InteractionRecord).where(InteractionRecord.organization_id == organization_id)
        if deliverable_id:
            query = query.where(InteractionRecord.deliverable_id == deliverable_id)
        if interaction_type:
            query = query.where(InteractionRecord.interaction_type == interaction_type)
        query = query.order_by(InteractionRecord.id.desc()).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
        return [
            Interaction(
                organization_id=r.organization_id,
                interaction_type=r.interaction_type,
                outcome=r.outcome,
                deliverable_id=r.deliverable_id,
                deliverable_type=r.deliverable_type,
                campaign_id=r.campaign_id,
                user_id=r.user_id,
                original_content=r.original_content,
                feedback_content=r.feedback_content,
                iteration_count=r.iteration_count,
            )
            for r in rows
        ]
