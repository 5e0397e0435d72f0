"""API endpoints for reading, revising, approving and publishing deliverables."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from ..audit import AuditEventType, audit_log
from ..auth import CallerContext, get_caller
from ..dependencies import (
    get_modification_service,
    get_publication_service,
    get_quality_service,
    get_store,
)
from ..errors import InvalidInputError, RevisionFailedError
from ..metadata import DeliverableMetadata
from ..middleware.correlation import get_correlation_id
from ..models import ModificationMode
from ..models_api import (
    ApproveRequest,
    DeliverableResponse,
    ModificationRecordResponse,
    ModificationResponse,
    ModifyRequest,
    PublishRequest,
    SuggestionResponse,
    VariantsRequest,
)
from ..services.modification import VARIANT_PACKS, ModificationService
from ..services.publication import ApprovalResult, PublicationService, PublishResult
from ..services.quality import FixResult, QualityService
from ..storage import DeliverableStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deliverables", tags=["deliverables"])


@router.get("", response_model=List[DeliverableResponse])
async def list_deliverables(
    project_id: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    deliverables: DeliverableStore = Depends(get_store),
    caller: CallerContext = Depends(get_caller),
):
    return await deliverables.list_for_organization(
        caller.organization_id, project_id=project_id, status=status_filter, limit=limit
    )


@router.post("/publish", response_model=PublishResult)
async def publish_deliverable(
    body: PublishRequest,
    response: Response,
    publication: PublicationService = Depends(get_publication_service),
    caller: CallerContext = Depends(get_caller),
):
    """Publish now, or queue a workflow for later and answer 202."""
    result = await publication.publish(
        body.deliverable_id,
        caller.organization_id,
        caller.user_id,
        body.target,
        when=body.when,
        options=body.metadata,
    )
    if result.status == "queued":
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.get("/{deliverable_id}", response_model=DeliverableResponse)
async def get_deliverable(
    deliverable_id: str,
    deliverables: DeliverableStore = Depends(get_store),
    caller: CallerContext = Depends(get_caller),
):
    return await deliverables.load(deliverable_id, caller.organization_id)


@router.get("/{deliverable_id}/content")
async def get_deliverable_content(
    deliverable_id: str,
    deliverables: DeliverableStore = Depends(get_store),
    caller: CallerContext = Depends(get_caller),
):
    """Raw text for text deliverables, a JSON descriptor for everything else."""
    deliverable = await deliverables.load(deliverable_id, caller.organization_id)
    if deliverable.content_format == "text" and not deliverable.file_path:
        return PlainTextResponse(deliverable.content or "")
    return {
        "id": deliverable.id,
        "type": deliverable.type,
        "content_format": deliverable.content_format,
        "file_path": deliverable.file_path,
        "content": deliverable.content,
    }


@router.patch("/{deliverable_id}/metadata", response_model=Dict[str, Any])
async def update_deliverable_metadata(
    deliverable_id: str,
    patch: Dict[str, Any] = Body(...),
    deliverables: DeliverableStore = Depends(get_store),
    caller: CallerContext = Depends(get_caller),
):
    """Merge-patch the metadata map; unknown keys are kept under ``extra``."""
    try:
        DeliverableMetadata.from_raw(patch)
    except ValidationError as e:
        raise InvalidInputError("Invalid metadata patch", details={"errors": e.errors(include_url=False)})

    merged = await deliverables.merge_metadata(deliverable_id, caller.organization_id, patch)
    audit_log(
        AuditEventType.DELIVERABLE_METADATA_UPDATED,
        {"keys": sorted(patch)},
        actor=caller.user_id,
        organization_id=caller.organization_id,
        resource=f"deliverable:{deliverable_id}",
        request_id=get_correlation_id(),
    )
    return merged


@router.post("/{deliverable_id}/modify", response_model=ModificationResponse)
async def modify_deliverable(
    deliverable_id: str,
    body: ModifyRequest,
    modifications: ModificationService = Depends(get_modification_service),
    caller: CallerContext = Depends(get_caller),
):
    """Apply a natural-language instruction synchronously."""
    return await modifications.process_modification(
        deliverable_id,
        body.instruction,
        caller.organization_id,
        caller.user_id,
        mode=ModificationMode.direct.value,
    )


@router.post("/{deliverable_id}/revise", response_model=ModificationResponse)
async def revise_deliverable(
    deliverable_id: str,
    body: ModifyRequest,
    response: Response,
    modifications: ModificationService = Depends(get_modification_service),
    caller: CallerContext = Depends(get_caller),
):
    """Revise directly, or queue a revision workflow and answer 202."""
    result = await modifications.process_modification(
        deliverable_id,
        body.instruction,
        caller.organization_id,
        caller.user_id,
        mode=body.mode.value,
        failure_error=RevisionFailedError,
    )
    if result.workflow_id:
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.get("/{deliverable_id}/suggestions", response_model=List[SuggestionResponse])
async def get_suggestions(
    deliverable_id: str,
    modifications: ModificationService = Depends(get_modification_service),
    caller: CallerContext = Depends(get_caller),
):
    return await modifications.get_suggestions(deliverable_id, caller.organization_id)


@router.get("/{deliverable_id}/history", response_model=List[ModificationRecordResponse])
async def get_history(
    deliverable_id: str,
    modifications: ModificationService = Depends(get_modification_service),
    caller: CallerContext = Depends(get_caller),
):
    return await modifications.get_modification_history(deliverable_id, caller.organization_id)


@router.post("/{deliverable_id}/undo", response_model=ModificationResponse)
async def undo_modification(
    deliverable_id: str,
    modifications: ModificationService = Depends(get_modification_service),
    caller: CallerContext = Depends(get_caller),
):
    return await modifications.undo_last_modification(deliverable_id, caller.organization_id, caller.user_id)


@router.post("/{deliverable_id}/fix-and-recheck", response_model=FixResult)
async def fix_and_recheck(
    deliverable_id: str,
    quality: QualityService = Depends(get_quality_service),
    caller: CallerContext = Depends(get_caller),
):
    """Auto-fix into a new revision and re-run the quality gate on it."""
    return await quality.fix_and_recheck(deliverable_id, caller.organization_id, caller.user_id)


@router.post("/{deliverable_id}/approve", response_model=ApprovalResult)
async def approve_deliverable(
    deliverable_id: str,
    body: Optional[ApproveRequest] = None,
    publication: PublicationService = Depends(get_publication_service),
    caller: CallerContext = Depends(get_caller),
):
    body = body or ApproveRequest()
    return await publication.approve(
        deliverable_id,
        caller.organization_id,
        caller.user_id,
        feedback=body.feedback,
        auto_publish=body.auto_publish,
    )


@router.post("/{deliverable_id}/variants", response_model=ModificationResponse, status_code=status.HTTP_202_ACCEPTED)
async def request_variants(
    deliverable_id: str,
    body: VariantsRequest,
    modifications: ModificationService = Depends(get_modification_service),
    caller: CallerContext = Depends(get_caller),
):
    """Queue a variants workflow for a named pack or explicit aspects."""
    aspects = VARIANT_PACKS[body.pack] if body.pack else body.aspects
    return await modifications.queue_variants(deliverable_id, caller.organization_id, caller.user_id, aspects)
