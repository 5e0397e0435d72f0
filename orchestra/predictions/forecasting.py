"""Campaign performance forecasting.

A forecast blends the industry benchmark with the organization's own campaign
history. History gets more weight the more clicks it covers, capped at 80% so a
small sample never fully overrides the prior.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..db.models import Campaign, CampaignMetric, CampaignPrediction, Organization
from ..db.session import AsyncSessionLocal
from ..errors import CampaignNotFoundError, InvalidInputError, NotFoundError, PredictionNotFoundError
from .benchmarks import INDUSTRY_BENCHMARKS, SUPPORTED_CHANNELS, channel_benchmark, industry_benchmark


logger = logging.getLogger(__name__)

MODEL_VERSION = "heuristic-blend-1.0"
PREDICTION_METHOD = "benchmark_history_blend"
MAX_HISTORY_WEIGHT = 0.8
HISTORY_HALF_WEIGHT_CLICKS = 1000


@dataclass
class ChannelRates:
    ctr: float  # percent
    cpc: float
    cvr: float  # percent
    aov: float


class ChannelForecast(BaseModel):
    channel: str
    budget: float
    impressions: int
    clicks: int
    conversions: float
    revenue: float
    roi: float


class ForecastResult(BaseModel):
    prediction_id: str
    campaign_id: str
    predicted_roi: float
    predicted_ctr: float
    predicted_cpc: float
    predicted_conversions: float
    predicted_revenue: float
    predicted_impressions: int
    predicted_clicks: int
    confidence_score: float
    confidence_level: str
    confidence_interval: Dict[str, float]
    recommended_budget: float
    recommended_duration_days: int
    budget_allocation: Dict[str, float]
    channel_ranking: List[ChannelForecast]
    risk_factors: List[str] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)
    industry_benchmark: Dict[str, Any]
    history_weight: float
    model_version: str = MODEL_VERSION
    prediction_method: str = PREDICTION_METHOD
    created_at: datetime


def confidence_level(score: float) -> str:
    if score >= 0.8:
        return "high"
    if score >= 0.6:
        return "medium"
    return "low"


def _blend(history: Optional[float], prior: float, weight: float) -> float:
    if history is None:
        return prior
    return weight * history + (1 - weight) * prior


def _ratio(numerator: float, denominator: float) -> Optional[float]:
    return numerator / denominator if denominator else None


class PredictionService:
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    async def _history(self, session, organization_id: str, channels: List[str]) -> Dict[str, Dict[str, float]]:
        rows = (await session.execute(
            select(
                CampaignMetric.channel,
                func.sum(CampaignMetric.spend),
                func.sum(CampaignMetric.impressions),
                func.sum(CampaignMetric.clicks),
                func.sum(CampaignMetric.conversions),
                func.sum(CampaignMetric.revenue),
            )
            .where(CampaignMetric.organization_id == organization_id, CampaignMetric.channel.in_(channels))
            .group_by(CampaignMetric.channel)
        )).all()
        return {
            channel: {
                "spend": float(spend or 0),
                "impressions": float(impressions or 0),
                "clicks": float(clicks or 0),
                "conversions": float(conversions or 0),
                "revenue": float(revenue or 0),
            }
            for channel, spend, impressions, clicks, conversions, revenue in rows
        }

    def _rates(self, benchmark: Dict, channel: str, history: Optional[Dict[str, float]]) -> Tuple[ChannelRates, float]:
        multipliers = channel_benchmark(channel)
        prior = ChannelRates(
            ctr=benchmark["avg_ctr"] * multipliers["ctr"],
            cpc=benchmark["avg_cpc"] * multipliers["cpc"],
            cvr=benchmark["conversion_rate"] * multipliers["cvr"],
            aov=benchmark["avg_order_value"],
        )
        if not history or not history["clicks"]:
            return prior, 0.0

        clicks = history["clicks"]
        weight = min(MAX_HISTORY_WEIGHT, clicks / (clicks + HISTORY_HALF_WEIGHT_CLICKS))
        ctr = _ratio(clicks, history["impressions"])
        cvr = _ratio(history["conversions"], clicks)
        blended = ChannelRates(
            ctr=_blend(ctr * 100 if ctr is not None else None, prior.ctr, weight),
            cpc=_blend(_ratio(history["spend"], clicks), prior.cpc, weight),
            cvr=_blend(cvr * 100 if cvr is not None else None, prior.cvr, weight),
            aov=_blend(_ratio(history["revenue"], history["conversions"]), prior.aov, weight),
        )
        return blended, weight

    @staticmethod
    def _channel_forecast(channel: str, budget: float, rates: ChannelRates) -> ChannelForecast:
        clicks = budget / rates.cpc if rates.cpc > 0 else 0.0
        impressions = clicks / (rates.ctr / 100) if rates.ctr > 0 else 0.0
        conversions = clicks * rates.cvr / 100
        revenue = conversions * rates.aov
        return ChannelForecast(
            channel=channel,
            budget=round(budget, 2),
            impressions=int(round(impressions)),
            clicks=int(round(clicks)),
            conversions=round(conversions, 2),
            revenue=round(revenue, 2),
            roi=round((revenue - budget) / budget * 100, 2) if budget else 0.0,
        )

    async def forecast_campaign(
        self,
        campaign_id: str,
        organization_id: str,
        budget: float,
        duration_days: int,
        channels: List[str],
    ) -> ForecastResult:
        if budget <= 0:
            raise InvalidInputError("budget must be greater than zero")
        if not 1 <= duration_days <= 365:
            raise InvalidInputError("durationDays must be between 1 and 365")
        channels = list(dict.fromkeys(c.lower() for c in channels))
        unknown = [c for c in channels if c not in SUPPORTED_CHANNELS]
        if not channels or unknown:
            raise InvalidInputError(f"channels must be a non-empty subset of {list(SUPPORTED_CHANNELS)}")

        async with self.session_factory() as session:
            campaign = (await session.execute(
                select(Campaign).where(Campaign.id == campaign_id, Campaign.organization_id == organization_id)
            )).scalar_one_or_none()
            if campaign is None:
                raise CampaignNotFoundError("Campaign not found")

            industry = campaign.industry
            if not industry:
                organization = await session.get(Organization, organization_id)
                industry = organization.industry if organization else None
            benchmark = industry_benchmark(industry)
            history = await self._history(session, organization_id, channels)

            per_channel_budget = budget / len(channels)
            forecasts: List[ChannelForecast] = []
            weights: List[float] = []
            for channel in channels:
                rates, weight = self._rates(benchmark, channel, history.get(channel))
                forecasts.append(self._channel_forecast(channel, per_channel_budget, rates))
                weights.append(weight)

            clicks = sum(f.clicks for f in forecasts)
            impressions = sum(f.impressions for f in forecasts)
            conversions = round(sum(f.conversions for f in forecasts), 2)
            revenue = round(sum(f.revenue for f in forecasts), 2)
            roi = round((revenue - budget) / budget * 100, 2)
            ctr = round(clicks / impressions * 100, 3) if impressions else 0.0
            cpc = round(budget / clicks, 2) if clicks else 0.0
            history_weight = round(sum(weights) / len(weights), 3)

            score = 0.35 + 0.5 * history_weight
            if duration_days >= 14:
                score += 0.05
            if len(channels) <= 2:
                score += 0.05
            score = round(max(0.3, min(0.95, score)), 2)
            spread = round((1 - score) * max(abs(roi), 10.0), 2)

            ranking = sorted(forecasts, key=lambda f: -f.roi)
            allocation = self._allocate(budget, ranking)
            risks, opportunities = self._assess(
                budget, duration_days, channels, roi, history_weight, benchmark, ranking
            )
            benchmark_summary = {
                "industry": next(k for k, v in INDUSTRY_BENCHMARKS.items() if v is benchmark),
                "avg_roi": benchmark["avg_roi"],
                "avg_ctr": benchmark["avg_ctr"],
                "avg_cpc": benchmark["avg_cpc"],
                "performance_vs_industry": (
                    "above" if roi > benchmark["avg_roi"] * 1.1
                    else "below" if roi < benchmark["avg_roi"] * 0.9
                    else "at"
                ),
            }

            created_at = datetime.now(timezone.utc)
            details = {
                "predicted_impressions": impressions,
                "predicted_clicks": clicks,
                "confidence_level": confidence_level(score),
                "confidence_interval": {"roi_low": round(roi - spread, 2), "roi_high": round(roi + spread, 2)},
                "recommended_budget": self._recommended_budget(budget, roi),
                "recommended_duration_days": max(duration_days, 14),
                "budget_allocation": allocation,
                "channel_ranking": [f.model_dump() for f in ranking],
                "risk_factors": risks,
                "opportunities": opportunities,
                "industry_benchmark": benchmark_summary,
                "history_weight": history_weight,
                "prediction_method": PREDICTION_METHOD,
            }
            prediction = CampaignPrediction(
                campaign_id=campaign_id,
                organization_id=organization_id,
                inputs={"budget": budget, "duration_days": duration_days, "channels": channels},
                predicted_roi=roi,
                predicted_ctr=ctr,
                predicted_cpc=cpc,
                predicted_conversions=conversions,
                predicted_revenue=revenue,
                confidence_score=score,
                details=details,
                model_version=MODEL_VERSION,
                created_at=created_at,
            )
            session.add(prediction)
            await session.flush()
            await session.execute(
                update(CampaignPrediction)
                .where(
                    CampaignPrediction.campaign_id == campaign_id,
                    CampaignPrediction.id != prediction.id,
                    CampaignPrediction.superseded_by.is_(None),
                )
                .values(superseded_by=prediction.id, superseded_at=created_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info(
            f"Forecast {prediction.id} for campaign {campaign_id}: roi={roi}% confidence={score} "
            f"history_weight={history_weight}"
        )
        return self._to_result(prediction)

    @staticmethod
    def _to_result(prediction: CampaignPrediction) -> ForecastResult:
        details = prediction.details or {}
        return ForecastResult(
            prediction_id=prediction.id,
            campaign_id=prediction.campaign_id,
            predicted_roi=prediction.predicted_roi,
            predicted_ctr=prediction.predicted_ctr,
            predicted_cpc=prediction.predicted_cpc,
            predicted_conversions=prediction.predicted_conversions,
            predicted_revenue=prediction.predicted_revenue,
            predicted_impressions=details.get("predicted_impressions", 0),
            predicted_clicks=details.get("predicted_clicks", 0),
            confidence_score=prediction.confidence_score,
            confidence_level=details.get("confidence_level", confidence_level(prediction.confidence_score)),
            confidence_interval=details.get("confidence_interval", {}),
            recommended_budget=details.get("recommended_budget", 0.0),
            recommended_duration_days=details.get("recommended_duration_days", 0),
            budget_allocation=details.get("budget_allocation", {}),
            channel_ranking=[ChannelForecast(**c) for c in details.get("channel_ranking", [])],
            risk_factors=details.get("risk_factors", []),
            opportunities=details.get("opportunities", []),
            industry_benchmark=details.get("industry_benchmark", {}),
            history_weight=details.get("history_weight", 0.0),
            model_version=prediction.model_version,
            prediction_method=details.get("prediction_method", PREDICTION_METHOD),
            created_at=prediction.created_at,
        )

    @staticmethod
    def _recommended_budget(budget: float, roi: float) -> float:
        if roi > 50:
            return round(budget * 1.2, 2)
        if roi < 0:
            return round(budget * 0.8, 2)
        return round(budget, 2)

    @staticmethod
    def _allocate(budget: float, ranking: List[ChannelForecast]) -> Dict[str, float]:
        """Share of budget per channel, weighted by positive ROI with a 10% floor."""
        if len(ranking) == 1:
            return {ranking[0].channel: round(budget, 2)}
        floor = 0.1
        scores = [max(f.roi, 0.0) + 1.0 for f in ranking]
        total = sum(scores)
        remaining = 1 - floor * len(ranking)
        return {
            f.channel: round(budget * (floor + remaining * s / total), 2)
            for f, s in zip(ranking, scores)
        }

    @staticmethod
    def _assess(budget, duration_days, channels, roi, history_weight, benchmark, ranking):
        risks: List[str] = []
        opportunities: List[str] = []
        if history_weight < 0.2:
            risks.append("Limited historical data for these channels; forecast leans on industry benchmarks.")
        if duration_days < 7:
            risks.append("Short flight; platforms need time to exit the learning phase.")
        if len(channels) == 1:
            risks.append("Single-channel plan concentrates delivery risk.")
        if budget / max(duration_days, 1) < 20:
            risks.append("Daily budget is low; delivery may be throttled.")
        if roi < 0:
            risks.append("Predicted spend exceeds predicted revenue.")

        if roi > benchmark["avg_roi"]:
            opportunities.append("Forecast beats the industry average; consider scaling budget.")
        if len(ranking) > 1 and ranking[0].roi > ranking[-1].roi:
            opportunities.append(f"Shift budget toward {ranking[0].channel}, the strongest channel by ROI.")
        if duration_days < 14:
            opportunities.append("Extending to at least 14 days improves optimisation headroom.")
        return risks, opportunities

    async def get_prediction(self, prediction_id: str, organization_id: str) -> CampaignPrediction:
        async with self.session_factory() as session:
            prediction = (await session.execute(
                select(CampaignPrediction).where(
                    CampaignPrediction.id == prediction_id,
                    CampaignPrediction.organization_id == organization_id,
                )
            )).scalar_one_or_none()
        if prediction is None:
            raise PredictionNotFoundError("Campaign prediction not found")
        return prediction

    async def list_predictions(self, campaign_id: str, organization_id: str) -> List[Dict[str, Any]]:
        """Every forecast for a campaign, newest first, superseded ones included."""
        async with self.session_factory() as session:
            campaign = (await session.execute(
                select(Campaign.id).where(Campaign.id == campaign_id, Campaign.organization_id == organization_id)
            )).scalar_one_or_none()
            if campaign is None:
                raise CampaignNotFoundError("Campaign not found")
            rows = (await session.execute(
                select(CampaignPrediction)
                .where(CampaignPrediction.campaign_id == campaign_id)
                .order_by(CampaignPrediction.created_at.desc(), CampaignPrediction.id.desc())
            )).scalars().all()
        return [
            {
                **self._to_result(row).model_dump(),
                "superseded_by": row.superseded_by,
                "superseded_at": row.superseded_at,
                "actual_metrics": row.actual_metrics,
                "accuracy": row.accuracy,
            }
            for row in rows
        ]

    async def record_outcome(self, prediction_id: str, organization_id: str, actual: Dict[str, float]) -> Dict[str, Any]:
        """Store actual campaign results and the per-metric accuracy of the forecast."""
        async with self.session_factory() as session:
            prediction = (await session.execute(
                select(CampaignPrediction).where(
                    CampaignPrediction.id == prediction_id,
                    CampaignPrediction.organization_id == organization_id,
                ).with_for_update()
            )).scalar_one_or_none()
            if prediction is None:
                raise PredictionNotFoundError("Prediction not found")

            predicted = {
                "roi": prediction.predicted_roi,
                "ctr": prediction.predicted_ctr,
                "cpc": prediction.predicted_cpc,
                "conversions": prediction.predicted_conversions,
                "revenue": prediction.predicted_revenue,
            }
            accuracy: Dict[str, float] = {}
            for metric, value in predicted.items():
                if metric not in actual:
                    continue
                observed = actual[metric]
                error = abs(value - observed) / max(abs(observed), 1e-9) * 100 if observed else (0.0 if value == 0 else 100.0)
                accuracy[metric] = round(max(0.0, 100.0 - error), 2)
            accuracy["overall"] = round(sum(accuracy.values()) / len(accuracy), 2) if accuracy else 0.0

            prediction.actual_metrics = dict(actual)
            prediction.accuracy = accuracy
            await session.commit()

        logger.info(f"Recorded outcome for prediction {prediction_id}: overall accuracy {accuracy['overall']}%")
        return accuracy

    async def model_performance(
        self,
        organization_id: str,
        model_version: str = MODEL_VERSION,
        days: int = 30,
    ) -> Dict[str, Any]:
        """Accuracy of recent forecasts that have a recorded outcome.

        Errors are the complement of per-metric accuracy; confidence tiers come
        from each prediction's stored confidence score.
        """
        if not 1 <= days <= 365:
            raise InvalidInputError("days must be between 1 and 365")
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(CampaignPrediction).where(
                    CampaignPrediction.organization_id == organization_id,
                    CampaignPrediction.model_version == model_version,
                    CampaignPrediction.created_at >= start,
                )
            )).scalars().all()

        scored = [row for row in rows if row.accuracy]
        if not scored:
            return {"success": True, "message": "No performance data available yet", "performance": None}

        def mean(values: List[Optional[float]]) -> Optional[float]:
            values = [v for v in values if v is not None]
            return round(sum(values) / len(values), 2) if values else None

        def error(metric: str) -> Optional[float]:
            return mean([100.0 - row.accuracy[metric] if metric in row.accuracy else None for row in scored])

        tiers: Dict[str, List[Optional[float]]] = {"high": [], "medium": [], "low": []}
        for row in scored:
            tiers[confidence_level(row.confidence_score)].append(row.accuracy.get("overall"))

        return {
            "success": True,
            "performance": {
                "model_version": model_version,
                "evaluation_period": {"start": start.isoformat(), "end": end.isoformat()},
                "accuracy": {
                    "overall": mean([row.accuracy.get("overall") for row in scored]),
                    "roi_error": error("roi"),
                    "ctr_error": error("ctr"),
                    "cpc_error": error("cpc"),
                },
                "by_confidence": {tier: mean(values) for tier, values in tiers.items()},
                "sample_size": {"total_predictions": len(rows), "predictions_with_feedback": len(scored)},
            },
        }

    def benchmarks(self, industry: str) -> Dict[str, Any]:
        benchmark = INDUSTRY_BENCHMARKS.get(industry.lower())
        if benchmark is None:
            raise NotFoundError(f"No benchmarks for industry '{industry}'", code="BENCHMARK_NOT_FOUND")
        return {"industry": industry.lower(), **benchmark}

    async def optimize_budget(
        self,
        organization_id: str,
        total_budget: float,
        channels: List[str],
        objectives: List[str],
    ) -> Dict[str, Any]:
        """Split a budget across channels by forecast efficiency."""
        if total_budget <= 0:
            raise InvalidInputError("totalBudget must be greater than zero")
        channels = list(dict.fromkeys(c.lower() for c in channels if c))
        if not channels:
            raise InvalidInputError("channels must not be empty")

        async with self.session_factory() as session:
            organization = await session.get(Organization, organization_id)
            benchmark = industry_benchmark(organization.industry if organization else None)
            history = await self._history(session, organization_id, channels)

        forecasts, weights = [], []
        for channel in channels:
            rates, weight = self._rates(benchmark, channel, history.get(channel))
            forecasts.append(self._channel_forecast(channel, total_budget / len(channels), rates))
            weights.append(weight)
        ranking = sorted(forecasts, key=lambda f: -f.roi)
        allocation = self._allocate(total_budget, ranking)

        planned = []
        for forecast in ranking:
            rates, _ = self._rates(benchmark, forecast.channel, history.get(forecast.channel))
            planned.append(self._channel_forecast(forecast.channel, allocation[forecast.channel], rates))
        revenue = round(sum(f.revenue for f in planned), 2)
        conversions = round(sum(f.conversions for f in planned), 2)
        score = round(max(0.3, min(0.95, 0.35 + 0.5 * sum(weights) / len(weights))), 2)

        return {
            "total_budget": round(total_budget, 2),
            "objectives": objectives,
            "allocation": {
                f.channel: {
                    "budget": f.budget,
                    "expected_roi": f.roi,
                    "expected_conversions": f.conversions,
                    "expected_revenue": f.revenue,
                }
                for f in planned
            },
            "expected_results": {
                "total_roi": round((revenue - total_budget) / total_budget * 100, 2),
                "total_conversions": conversions,
                "total_revenue": revenue,
            },
            "confidence": {"score": score, "level": confidence_level(score)},
            "method": "roi_weighted_allocation",
        }
