"""Agent roster."""

from typing import Dict, List

from fastapi import APIRouter, Depends

from ..agents.registry import AgentDefinition, AgentRegistry
from ..auth import CallerContext, get_caller
from ..dependencies import get_registry


router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("", response_model=Dict[str, List[AgentDefinition]])
async def list_agents(
    registry: AgentRegistry = Depends(get_registry),
    caller: CallerContext = Depends(get_caller),
):
    """Catalog agents grouped by category, in catalog order."""
    return registry.grouped()
