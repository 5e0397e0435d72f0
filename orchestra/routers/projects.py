"""API endpoints for planning and executing projects."""

import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import ORJSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit import AuditEventType, audit_log
from ..auth import CallerContext, get_caller
from ..core.config import settings
from ..db.models import Campaign, Project
from ..db.session import get_session
from ..dependencies import get_executor, get_planner, get_store
from ..errors import CampaignNotFoundError, ConflictError, NotFoundError, ServiceError
from ..middleware.correlation import get_correlation_id
from ..middleware.error_handler import error_body
from ..models import ClientRequest, ExecutionPlan, PlanAnalysis, ProjectStatus
from ..models_api import (
    DeliverablePreview,
    DeliverableResponse,
    ExecuteResponse,
    PhaseResult,
    ProjectCreate,
    ProjectResponse,
)
from ..planning.planner import Planner
from ..storage import DeliverableStore
from ..workflows.engine import ExecutionContext, ExecutionEngine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


async def _owned_project(session: AsyncSession, project_id: str, organization_id: str) -> Project:
    project = (await session.execute(
        select(Project).where(Project.id == project_id, Project.organization_id == organization_id)
    )).scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project not found")
    return project


def _client_request(body: ProjectCreate) -> ClientRequest:
    return ClientRequest(request=body.request, client_id=body.client_id, context=body.context)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    planner: Planner = Depends(get_planner),
    session: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(get_caller),
):
    """Plan a project from a client request. Planning never executes anything."""
    if body.campaign_id:
        campaign = (await session.execute(
            select(Campaign.id).where(Campaign.id == body.campaign_id, Campaign.organization_id == caller.organization_id)
        )).scalar_one_or_none()
        if campaign is None:
            raise CampaignNotFoundError("Campaign not found")

    plan = planner.build_plan(_client_request(body))
    project = Project(
        organization_id=caller.organization_id,
        campaign_id=body.campaign_id,
        client_id=body.client_id,
        request=body.request.strip(),
        context=body.context,
        status=ProjectStatus.planned.value,
        project_type=plan.analysis.project_type,
        complexity=plan.analysis.complexity,
        analysis=plan.analysis.model_dump(mode="json"),
        execution_plan=plan.model_dump(mode="json"),
        total_agents=plan.total_agents,
        total_deliverables=plan.total_deliverables,
        created_by=caller.user_id,
    )
    session.add(project)
    await session.commit()
    await session.refresh(project)

    audit_log(
        AuditEventType.PROJECT_PLANNED,
        {"plan_id": plan.plan_id, "deliverables": plan.total_deliverables, "phases": len(plan.phases)},
        actor=caller.user_id,
        organization_id=caller.organization_id,
        resource=f"project:{project.id}",
        request_id=get_correlation_id(),
    )
    return project


@router.post("/analyze", response_model=PlanAnalysis)
async def analyze_request(
    body: ProjectCreate,
    planner: Planner = Depends(get_planner),
    caller: CallerContext = Depends(get_caller),
):
    """Preview the analysis of a request without persisting anything."""
    return planner.analyze(_client_request(body))


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    session: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(get_caller),
):
    return await _owned_project(session, project_id, caller.organization_id)


@router.get("/{project_id}/deliverables", response_model=List[DeliverableResponse])
async def list_project_deliverables(
    project_id: str,
    session: AsyncSession = Depends(get_session),
    deliverables: DeliverableStore = Depends(get_store),
    caller: CallerContext = Depends(get_caller),
):
    await _owned_project(session, project_id, caller.organization_id)
    return await deliverables.list_for_organization(caller.organization_id, project_id=project_id)


@router.post("/{project_id}/execute", response_model=ExecuteResponse)
async def execute_project(
    project_id: str,
    executor: ExecutionEngine = Depends(get_executor),
    deliverables: DeliverableStore = Depends(get_store),
    session: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(get_caller),
):
    """Run the stored plan.

    Re-executing a plan reuses the tasks and deliverables it already produced.
    Agent failures surface as a ``partial`` result; anything unexpected marks
    the project failed and answers 500.
    """
    project = await _owned_project(session, project_id, caller.organization_id)
    if not project.execution_plan:
        raise ConflictError("Project has no execution plan")
    plan = ExecutionPlan.model_validate(project.execution_plan)

    project.status = ProjectStatus.executing.value
    project.started_at = datetime.now(timezone.utc)
    await session.commit()

    try:
        context = await deliverables.project_context(caller.organization_id, project.id)
        result = await executor.execute(plan, ExecutionContext(
            organization_id=caller.organization_id,
            request=project.request,
            project_id=project.id,
            campaign_id=project.campaign_id,
            project_context=context,
        ))
    except ServiceError:
        project.status = ProjectStatus.failed.value
        await session.commit()
        raise
    except Exception as e:
        logger.error(f"Execution of project {project_id} failed: {e}", exc_info=True)
        project.status = ProjectStatus.failed.value
        project.completed_at = datetime.now(timezone.utc)
        project.last_result = {"status": ProjectStatus.failed.value, "error": str(e)}
        await session.commit()
        audit_log(
            AuditEventType.PROJECT_FAILED,
            {"plan_id": plan.plan_id, "error": str(e)},
            actor=caller.user_id,
            organization_id=caller.organization_id,
            resource=f"project:{project_id}",
            outcome="error",
            request_id=get_correlation_id(),
        )
        message = str(e) if settings.DEBUG else "Project execution failed"
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("INTERNAL_ERROR", message),
        )

    project.status = result.status
    project.completed_at = datetime.now(timezone.utc)
    project.last_result = {
        "plan_id": result.plan_id,
        "status": result.status,
        "total_tasks": result.total_tasks,
        "completed_tasks": result.completed_tasks,
        "failed_tasks": result.failed_tasks,
        "quality_gates": result.quality_gates,
        "deliverable_ids": [d.id for d in result.deliverables],
    }
    await session.commit()

    audit_log(
        AuditEventType.PROJECT_EXECUTED,
        {
            "plan_id": result.plan_id,
            "status": result.status,
            "completed_tasks": result.completed_tasks,
            "failed_tasks": result.failed_tasks,
        },
        actor=caller.user_id,
        organization_id=caller.organization_id,
        resource=f"project:{project_id}",
        outcome="success" if result.status == ProjectStatus.completed.value else "failure",
        request_id=get_correlation_id(),
    )

    limit = settings.CONTENT_PREVIEW_CHARS
    return ExecuteResponse(
        success=result.status != ProjectStatus.failed.value,
        project_id=project_id,
        plan_id=result.plan_id,
        status=result.status,
        phases=[PhaseResult(**p.model_dump()) for p in result.phases],
        deliverables=[
            DeliverablePreview(
                id=d.id,
                type=d.type,
                title=d.title,
                agent_id=d.agent_id,
                phase=d.phase,
                content_preview=d.content[:limit],
                truncated=len(d.content) > limit,
                file_path=d.file_path,
                verified=d.verified,
                quality_overall=d.quality_overall,
                reused=d.reused,
            )
            for d in result.deliverables
        ],
        total_tasks=result.total_tasks,
        completed_tasks=result.completed_tasks,
        failed_tasks=result.failed_tasks,
        execution_time=result.execution_time,
        quality_gates=result.quality_gates,
        errors=result.errors,
    )
