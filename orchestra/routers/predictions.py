"""Campaign forecasting, creative ranking and budget optimisation endpoints."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit import AuditEventType, audit_log
from ..auth import CallerContext, get_caller
from ..db.models import Campaign
from ..db.session import get_session
from ..dependencies import get_prediction_service
from ..middleware.correlation import get_correlation_id
from ..models_api import (
    BudgetOptimizeRequest,
    ForecastRequest,
    PredictionFeedbackRequest,
    VariantRankRequest,
)
from ..predictions.forecasting import MODEL_VERSION, ForecastResult, PredictionService
from ..predictions.variants import RankedVariant, VariantInput, rank_variants


router = APIRouter(prefix="/predictions", tags=["predictions"])


@router.post("/campaign/{campaign_id}/forecast", response_model=ForecastResult)
async def forecast_campaign(
    campaign_id: str,
    body: ForecastRequest,
    predictions: PredictionService = Depends(get_prediction_service),
    caller: CallerContext = Depends(get_caller),
):
    """Forecast a campaign; each call stores a new prediction superseding the last."""
    result = await predictions.forecast_campaign(
        campaign_id,
        caller.organization_id,
        budget=body.budget,
        duration_days=body.duration_days,
        channels=list(body.channels),
    )
    audit_log(
        AuditEventType.PREDICTION_CREATED,
        {"prediction_id": result.prediction_id, "confidence": result.confidence_score},
        actor=caller.user_id,
        organization_id=caller.organization_id,
        resource=f"campaign:{campaign_id}",
        request_id=get_correlation_id(),
    )
    return result


@router.get("/campaign/{campaign_id}", response_model=List[Dict[str, Any]])
async def list_campaign_predictions(
    campaign_id: str,
    predictions: PredictionService = Depends(get_prediction_service),
    caller: CallerContext = Depends(get_caller),
):
    return await predictions.list_predictions(campaign_id, caller.organization_id)


@router.post("/variants/rank", response_model=List[RankedVariant])
async def rank_creative_variants(
    body: VariantRankRequest,
    predictions: PredictionService = Depends(get_prediction_service),
    session: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(get_caller),
):
    """Rank creative variants against the campaign behind a stored prediction."""
    prediction = await predictions.get_prediction(body.campaign_prediction_id, caller.organization_id)
    campaign = await session.get(Campaign, prediction.campaign_id)
    keywords = []
    if campaign is not None:
        keywords = " ".join(filter(None, [campaign.name, campaign.industry, campaign.objective])).lower().split()
    variants = [VariantInput(**v.model_dump()) for v in body.variants]
    return rank_variants(variants, keywords=keywords, base_ctr=prediction.predicted_ctr)


@router.post("/feedback", response_model=Dict[str, Any])
async def prediction_feedback(
    body: PredictionFeedbackRequest,
    predictions: PredictionService = Depends(get_prediction_service),
    caller: CallerContext = Depends(get_caller),
):
    """Record what the campaign actually did and how close the forecast was."""
    accuracy = await predictions.record_outcome(
        body.prediction_id, caller.organization_id, body.actual_metrics.model_dump()
    )
    audit_log(
        AuditEventType.PREDICTION_FEEDBACK,
        {"accuracy": accuracy.get("overall")},
        actor=caller.user_id,
        organization_id=caller.organization_id,
        resource=f"prediction:{body.prediction_id}",
        request_id=get_correlation_id(),
    )
    return {"success": True, "prediction_id": body.prediction_id, "accuracy": accuracy}


@router.post("/budget/optimize", response_model=Dict[str, Any])
async def optimize_budget(
    body: BudgetOptimizeRequest,
    predictions: PredictionService = Depends(get_prediction_service),
    caller: CallerContext = Depends(get_caller),
):
    return await predictions.optimize_budget(
        caller.organization_id, body.total_budget, body.channels, body.objectives
    )


@router.get("/model/performance", response_model=Dict[str, Any])
async def model_performance(
    model_version: str = Query(default=MODEL_VERSION, alias="modelVersion"),
    days: int = Query(default=30),
    predictions: PredictionService = Depends(get_prediction_service),
    caller: CallerContext = Depends(get_caller),
):
    """Forecast accuracy for the caller's organization; ``performance`` is null until outcomes are recorded."""
    return await predictions.model_performance(caller.organization_id, model_version=model_version, days=days)


@router.get("/benchmarks/{industry}", response_model=Dict[str, Any])
async def industry_benchmarks(
    industry: str,
    predictions: PredictionService = Depends(get_prediction_service),
    caller: CallerContext = Depends(get_caller),
):
    return predictions.benchmarks(industry)
