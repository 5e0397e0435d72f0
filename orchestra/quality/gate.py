"""Quality gate: soft scoring, hard validators and the bounded auto-fix loop."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..agents.generation import ContentGenerator
from ..errors import GenerationError, UnsupportedError
from ..metadata import QualitySnapshot, ValidatorResult
from . import validators
from .validators import DeliverableDraft


logger = logging.getLogger(__name__)

AXES = ("clarity", "completeness", "brand_alignment", "platform_readiness")
DEFAULT_SUGGESTION = "Improve clarity, brand tone match, and platform readiness."

AXIS_SUGGESTIONS = {
    "clarity": "Shorten long sentences and split dense paragraphs.",
    "completeness": "Expand the content so it covers the full brief.",
    "brand_alignment": "Remove unverifiable claims and off-brand terms.",
    "platform_readiness": "Add a clear call to action and format the copy for its platform.",
}


class QualityAssessment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passed: bool = Field(alias="pass")
    axes: Dict[str, float]
    overall: float
    suggestions: List[str] = Field(default_factory=list)

    def snapshot(self) -> QualitySnapshot:
        return QualitySnapshot(
            passed=self.passed,
            axes=self.axes,
            overall=self.overall,
            suggestions=self.suggestions,
            evaluated_at=datetime.now(timezone.utc),
        )


@dataclass
class AutoFixOutcome:
    content: str
    quality: QualityAssessment
    validators: List[ValidatorResult]
    attempts: int
    applied: List[str] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return self.quality.passed and all(v.passed for v in self.validators)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return round(max(low, min(high, value)), 1)


def _sentences(content: str) -> List[str]:
    return [s for s in re.split(r"[.!?\n]+", content) if s.strip()]


class QualityGate:
    """Evaluates deliverables; auto-fix runs at most ``max_attempts`` improve passes."""

    def __init__(self, generator: ContentGenerator, pass_threshold: float = 70.0, max_attempts: int = 2):
        self.generator = generator
        self.pass_threshold = pass_threshold
        self.max_attempts = max(1, max_attempts)

    def heuristic_axes(self, draft: DeliverableDraft, context: Dict[str, Any]) -> Dict[str, float]:
        rule = validators.rule_for(draft.type)
        content = draft.content or ""

        sentences = _sentences(content)
        avg_words = sum(len(s.split()) for s in sentences) / len(sentences) if sentences else 0
        dense = sum(1 for p in content.split("\n\n") if len(p.split()) > 120)
        clarity = 100 - max(0.0, avg_words - 20) * 3 - dense * 10 if sentences else 0

        ratio = len(content) / rule.min_length if rule.min_length else 1.0
        completeness = 40 + 60 * ratio
        if validators.find_placeholders(content):
            completeness -= 30
        if rule.needs_title and not (draft.title or "").strip():
            completeness -= 15

        claims = validators.find_claims(content)
        terms = validators.find_terms(content, validators.forbidden_terms(context))
        brand = 100 - 20 * len(claims) - 25 * len(terms)

        readiness = 100.0
        if rule.needs_cta and not validators.has_cta(content):
            readiness -= 35
        if rule.needs_subject and not validators.has_subject(content):
            readiness -= 25
        if len(content) > rule.max_length:
            readiness -= 25
        if draft.type == "social-media" and "#" not in content:
            readiness -= 10

        return {
            "clarity": _clamp(clarity),
            "completeness": _clamp(completeness),
            "brand_alignment": _clamp(brand),
            "platform_readiness": _clamp(readiness),
        }

    async def evaluate_deliverable(self, draft: DeliverableDraft, context: Dict[str, Any]) -> QualityAssessment:
        """Soft evaluation; model-judged scores when the generator provides them."""
        suggestions: List[str] = []
        judged = await self.generator.assess(draft.content, draft.type, context)
        if judged:
            axes = {axis: _clamp(judged["axes"][axis]) for axis in AXES}
            suggestions.extend(judged.get("suggestions", []))
        else:
            axes = self.heuristic_axes(draft, context)

        for axis in AXES:
            if axes[axis] < self.pass_threshold and AXIS_SUGGESTIONS[axis] not in suggestions:
                suggestions.append(AXIS_SUGGESTIONS[axis])

        overall = round(sum(axes.values()) / len(axes), 1)
        return QualityAssessment(
            passed=overall >= self.pass_threshold,
            axes=axes,
            overall=overall,
            suggestions=suggestions,
        )

    def run_hard_validators(self, draft: DeliverableDraft, context: Dict[str, Any]) -> List[ValidatorResult]:
        return validators.run_hard_validators(draft, context)

    async def improve_text(
        self,
        content: str,
        suggestions: List[str],
        context: Dict[str, Any],
        deliverable_type: str,
    ) -> str:
        """Best-effort rewrite followed by the deterministic sanitiser."""
        try:
            rewritten = await self.generator.improve(content, suggestions, context)
        except GenerationError as e:
            logger.warning(f"Generator rewrite failed, applying sanitiser only: {e}")
            rewritten = content
        return validators.sanitize(rewritten or content, deliverable_type, context)

    async def auto_fix(
        self,
        draft: DeliverableDraft,
        context: Dict[str, Any],
        stored_suggestions: Optional[List[str]] = None,
    ) -> AutoFixOutcome:
        """Evaluate, improve, re-check; stops early once verified.

        The returned validator list always holds every rule evaluated for the
        final content, failing ones included.
        """
        if validators.is_binary(draft):
            raise UnsupportedError(f"Auto-fix is not supported for {draft.type} deliverables")

        quality = await self.evaluate_deliverable(draft, context)
        results = self.run_hard_validators(draft, context)
        suggestions = list(stored_suggestions or quality.suggestions or [DEFAULT_SUGGESTION])
        suggestions += [r.detail for r in results if not r.passed]
        applied = list(suggestions)

        content = draft.content
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            content = await self.improve_text(content, suggestions, context, draft.type)
            candidate = draft.with_content(content)
            quality = await self.evaluate_deliverable(candidate, context)
            results = self.run_hard_validators(candidate, context)
            if quality.passed and all(r.passed for r in results):
                break
            suggestions = quality.suggestions + [r.detail for r in results if not r.passed] or [DEFAULT_SUGGESTION]

        logger.info(
            f"Auto-fix for {draft.type} finished after {attempts} attempt(s): "
            f"overall={quality.overall} failing={[r.rule for r in results if not r.passed]}"
        )
        return AutoFixOutcome(content=content, quality=quality, validators=results, attempts=attempts, applied=applied)
