"""Creative variant ranking.

Each variant gets four sub-scores (0-100) and a weighted composite. Ranking is a
stable sort on the composite, so equal scores keep their input order.
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..errors import InvalidInputError
from ..quality.validators import CTA_PHRASES

WEIGHTS = {"headline": 0.3, "cta": 0.25, "visual": 0.25, "relevance": 0.2}
POWER_WORDS = {"new", "free", "now", "you", "your", "proven", "save", "today", "exclusive", "easy"}
SOFTMAX_TEMPERATURE = 10.0

SUGGESTIONS = {
    "headline": "Keep the headline between 20 and 60 characters and lead with a concrete benefit or number.",
    "cta": "Use a short, action-first call to action such as 'Shop now' or 'Get started'.",
    "visual": "Use a higher quality image with a clear focal point.",
    "relevance": "Mention the campaign's product, audience or channel explicitly.",
}


class VariantInput(BaseModel):
    variant_id: str
    variation_index: int = 0
    headline: Optional[str] = None
    body_text: Optional[str] = None
    cta: Optional[str] = None
    image_url: Optional[str] = None
    image_quality_score: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RankedVariant(BaseModel):
    variant_id: str
    variation_index: int
    headline: Optional[str] = None
    cta: Optional[str] = None
    rank: int
    percentile: float
    performance_score: float
    predicted_ctr: float
    predicted_engagement_rate: float
    win_probability: float
    scores: Dict[str, float]
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


def _clamp(value: float) -> float:
    return round(max(0.0, min(100.0, value)), 1)


def _tokens(text: str) -> List[str]:
    return re.findall(r"[a-z0-9]+", text.lower())


def headline_score(headline: Optional[str]) -> float:
    if not headline or not headline.strip():
        return 30.0
    text = headline.strip()
    score = 60.0 if 20 <= len(text) <= 60 else 45.0
    if any(ch.isdigit() for ch in text):
        score += 10
    if text.endswith("?") or POWER_WORDS & set(_tokens(text)):
        score += 10
    if len(text) > 90:
        score -= 15
    return _clamp(score)


def cta_score(cta: Optional[str]) -> float:
    if not cta or not cta.strip():
        return 20.0
    lowered = cta.strip().lower()
    score = 80.0 if any(phrase in lowered for phrase in CTA_PHRASES) else 55.0
    if len(lowered.split()) <= 3:
        score += 10
    return _clamp(score)


def visual_score(image_url: Optional[str], image_quality_score: Optional[float]) -> float:
    if image_quality_score is not None:
        # accepts 0-1 or 0-100
        return _clamp(image_quality_score * 100 if image_quality_score <= 1 else image_quality_score)
    return 60.0 if image_url else 30.0


def relevance_score(variant: VariantInput, keywords: Iterable[str]) -> float:
    text_tokens = set(_tokens(" ".join(filter(None, [variant.headline, variant.body_text, variant.cta]))))
    overlap = len(text_tokens & {k.lower() for k in keywords})
    score = 50.0 + 10 * overlap
    if variant.body_text and 50 <= len(variant.body_text) <= 300:
        score += 10
    return _clamp(score)


def rank_variants(
    variants: List[VariantInput],
    keywords: Iterable[str] = (),
    base_ctr: float = 1.0,
) -> List[RankedVariant]:
    """Score and rank variants; deterministic for identical input."""
    if len(variants) < 2:
        raise InvalidInputError("At least 2 variants are required for ranking")

    keywords = [k for k in keywords if k]
    scored = []
    for variant in variants:
        scores = {
            "headline": headline_score(variant.headline),
            "cta": cta_score(variant.cta),
            "visual": visual_score(variant.image_url, variant.image_quality_score),
            "relevance": relevance_score(variant, keywords),
        }
        composite = round(sum(WEIGHTS[name] * value for name, value in scores.items()), 2)
        scored.append((variant, scores, composite))

    peak = max(c for _, _, c in scored)
    exps = [math.exp((c - peak) / SOFTMAX_TEMPERATURE) for _, _, c in scored]
    total = sum(exps)

    order = sorted(range(len(scored)), key=lambda i: -scored[i][2])
    count = len(scored)
    ranked = []
    for position, index in enumerate(order, start=1):
        variant, scores, composite = scored[index]
        ctr = round(base_ctr * (0.5 + composite / 100), 3)
        ranked.append(RankedVariant(
            variant_id=variant.variant_id,
            variation_index=variant.variation_index,
            headline=variant.headline,
            cta=variant.cta,
            rank=position,
            percentile=round((count - position) / (count - 1) * 100, 1),
            performance_score=composite,
            predicted_ctr=ctr,
            predicted_engagement_rate=round(ctr * 1.8, 3),
            win_probability=round(exps[index] / total, 4),
            scores=scores,
            strengths=[f"Strong {name}" for name, value in scores.items() if value >= 75],
            weaknesses=[f"Weak {name}" for name, value in scores.items() if value < 50],
            suggestions=[SUGGESTIONS[name] for name, value in scores.items() if value < 50],
        ))
    return ranked
