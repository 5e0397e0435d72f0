"""Tests for soft evaluation, hard validators and the auto-fix loop."""

import pytest

from orchestra.agents.generation import SimulatedContentGenerator
from orchestra.errors import UnsupportedError
from orchestra.quality import validators
from orchestra.quality.gate import QualityGate
from orchestra.quality.validators import DeliverableDraft


@pytest.fixture
def gate():
    return QualityGate(SimulatedContentGenerator(), pass_threshold=70, max_attempts=2)


def rules(results):
    return {r.rule: r.passed for r in results}


class TestHardValidators:
    """Tests for the deterministic validator set."""

    def test_clean_social_post_passes(self):
        draft = DeliverableDraft(
            type="social-media",
            content="Meet the new planner for busy teams. Sign up today. #planner",
        )

        results = validators.run_hard_validators(draft, {})

        assert all(r.passed for r in results)
        assert set(rules(results)) == {
            "non_empty", "length_bounds", "forbidden_claims", "brand_forbidden_terms",
            "no_placeholders", "call_to_action",
        }

    def test_claims_placeholders_and_brand_terms_flagged(self):
        draft = DeliverableDraft(
            type="social-media",
            content="Guaranteed results for [insert company]. Cheap plans. Sign up now.",
        )

        results = rules(validators.run_hard_validators(draft, {"forbiddenTerms": ["cheap"]}))

        assert results["forbidden_claims"] is False
        assert results["no_placeholders"] is False
        assert results["brand_forbidden_terms"] is False
        assert results["call_to_action"] is True

    def test_email_requires_subject_line(self):
        draft = DeliverableDraft(type="email-sequence", content="Hello there. " * 10 + "Register today.")

        results = rules(validators.run_hard_validators(draft, {}))

        assert results["email_subject"] is False

    def test_json_packages_skip_text_rules(self):
        draft = DeliverableDraft(type="publish-package", content='{"name": "x"}', content_format="json")

        results = rules(validators.run_hard_validators(draft, {}))

        assert set(results) == {"non_empty", "length_bounds"}

    def test_sanitize_is_idempotent(self):
        context = {"brandGuidelines": {"forbiddenTerms": ["cheap"]}}
        once = validators.sanitize("Guaranteed results, cheap and risk-free. TODO add link", "ad-copy", context)

        assert validators.sanitize(once, "ad-copy", context) == once
        assert validators.has_cta(once)
        assert "cheap" not in once.lower()

    def test_binary_detection(self):
        assert validators.is_binary(DeliverableDraft(type="image", content="concept"))
        assert validators.is_binary(DeliverableDraft(type="deck", content="", file_path="exports/deck.PNG"))
        assert not validators.is_binary(DeliverableDraft(type="deck", content="Slide 1"))


class TestSoftEvaluation:
    """Tests for heuristic soft scoring."""

    @pytest.mark.asyncio
    async def test_good_post_passes(self, gate):
        draft = DeliverableDraft(
            type="social-media",
            content="Meet the new planner for busy teams. Sign up today. #planner",
        )

        assessment = await gate.evaluate_deliverable(draft, {})

        assert assessment.passed is True
        assert set(assessment.axes) == {"clarity", "completeness", "brand_alignment", "platform_readiness"}
        assert assessment.overall >= 70

    @pytest.mark.asyncio
    async def test_weak_axes_produce_suggestions(self, gate):
        draft = DeliverableDraft(type="landing-page", title="Launch", content="Guaranteed miracle results.")

        assessment = await gate.evaluate_deliverable(draft, {})

        assert assessment.passed is False
        assert any("call to action" in s for s in assessment.suggestions)
        assert any("unverifiable claims" in s for s in assessment.suggestions)


class TestAutoFix:
    """Tests for the bounded improve-and-recheck loop."""

    @pytest.mark.asyncio
    async def test_fixable_post_is_verified(self, gate):
        draft = DeliverableDraft(
            type="social-media",
            content="Our new planner gives guaranteed results for busy teams this quarter. #planner",
        )

        outcome = await gate.auto_fix(draft, {})

        assert outcome.verified is True
        assert outcome.attempts == 1
        assert "guaranteed" not in outcome.content.lower()
        assert validators.has_cta(outcome.content)

    @pytest.mark.asyncio
    async def test_unfixable_failure_stays_in_results(self, gate):
        draft = DeliverableDraft(type="blog-article", title="Notes", content="Short note. Learn more.")
        initial = validators.run_hard_validators(draft, {})

        outcome = await gate.auto_fix(draft, {})

        assert outcome.verified is False
        assert outcome.attempts == 2
        final = rules(outcome.validators)
        assert {r.rule for r in initial} <= set(final)
        assert final["length_bounds"] is False

    @pytest.mark.asyncio
    async def test_binary_deliverables_unsupported(self, gate):
        draft = DeliverableDraft(type="image", content="", file_path="generated/key-visual.png")

        with pytest.raises(UnsupportedError):
            await gate.auto_fix(draft, {})
