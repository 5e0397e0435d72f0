"""Workflow status polling."""

from fastapi import APIRouter, Depends

from ..auth import CallerContext, get_caller
from ..dependencies import get_store
from ..models_api import WorkflowResponse
from ..storage import DeliverableStore


router = APIRouter(prefix="/workflows", tags=["workflows"])


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    deliverables: DeliverableStore = Depends(get_store),
    caller: CallerContext = Depends(get_caller),
):
    """Workflow status; terminal states are ``completed`` and ``failed``."""
    return await deliverables.get_workflow(workflow_id, caller.organization_id)
