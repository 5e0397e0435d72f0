"""
Request analysis.

Keyword tables classify a client request into a project type and complexity
tier, detect explicitly requested deliverables, channels and markets, and expand
the literal ask into the deliverables it implies.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from ..models import (
    DELIVERABLE_TYPE_ORDER,
    ChannelStrategy,
    PlanAnalysis,
    PlanIntent,
    ScopeItem,
)


PROJECT_TYPE_KEYWORDS = {
    "product_launch": ["launch", "release", "new product", "introduce", "unveil", "go-to-market"],
    "lead_generation": ["leads", "lead generation", "signups", "sign-ups", "demo requests", "pipeline", "conversions"],
    "brand_awareness": ["awareness", "brand", "visibility", "reach", "recognition"],
    "content_marketing": ["content", "blog", "seo", "thought leadership", "articles"],
    "social_campaign": ["social", "viral", "ugc", "influencer", "community"],
    "rebrand": ["rebrand", "rebranding", "new identity", "refresh our brand"],
    "event_promotion": ["event", "webinar", "conference", "summit", "meetup"],
}

DELIVERABLE_KEYWORDS = {
    "strategic-brief": ["brief", "strategy", "positioning", "messaging framework"],
    "social-media": ["social", "posts", "post", "instagram", "tiktok", "twitter", "linkedin post"],
    "email-sequence": ["email", "emails", "newsletter", "nurture"],
    "blog-article": ["blog", "article", "articles"],
    "ad-copy": ["ad", "ads", "advert", "adverts", "ad copy", "ppc"],
    "video-script": ["video", "videos", "reel", "reels", "script"],
    "image": ["image", "images", "visual", "visuals", "photo", "photos", "key art"],
    "deck": ["deck", "presentation", "pitch"],
    "landing-page": ["landing page", "landing pages", "microsite"],
    "press-release": ["press release", "press", "announcement"],
}

CHANNEL_KEYWORDS = {
    "instagram": ["instagram", "insta", "reels"],
    "tiktok": ["tiktok", "tik tok"],
    "linkedin": ["linkedin", "b2b"],
    "twitter": ["twitter", "x.com", "tweets", "tweet"],
    "facebook": ["facebook"],
    "youtube": ["youtube"],
    "email": ["email", "newsletter"],
    "blog": ["blog", "seo"],
    "search": ["search", "google ads", "ppc", "sem"],
}
CHANNEL_ORDER = list(CHANNEL_KEYWORDS)
SOCIAL_CHANNELS = ["instagram", "tiktok", "linkedin", "twitter", "facebook", "youtube"]

DEFAULT_CHANNELS = {
    "product_launch": ["instagram", "linkedin", "email"],
    "lead_generation": ["search", "linkedin", "email"],
    "brand_awareness": ["instagram", "tiktok", "youtube"],
    "content_marketing": ["blog", "linkedin", "email"],
    "social_campaign": ["instagram", "tiktok", "twitter"],
    "rebrand": ["instagram", "linkedin"],
    "event_promotion": ["email", "linkedin", "twitter"],
    "general": ["instagram", "email"],
}

IMPLIED_DELIVERABLES = {
    "product_launch": ["press-release", "email-sequence", "landing-page"],
    "lead_generation": ["landing-page", "email-sequence", "ad-copy"],
    "brand_awareness": ["social-media", "video-script", "image"],
    "content_marketing": ["blog-article", "social-media"],
    "social_campaign": ["social-media", "image"],
    "rebrand": ["deck", "image"],
    "event_promotion": ["email-sequence", "social-media", "landing-page"],
    "general": ["social-media"],
}

MARKET_KEYWORDS = {
    "US": ["united states", "usa", "u.s.", "america"],
    "UK": ["united kingdom", "uk", "britain"],
    "DE": ["germany", "german", "dach"],
    "FR": ["france", "french"],
    "ES": ["spain", "spanish"],
    "JP": ["japan", "japanese"],
    "BR": ["brazil", "brazilian"],
    "EMEA": ["emea", "europe"],
    "APAC": ["apac", "asia"],
    "LATAM": ["latam", "latin america"],
}
GLOBAL_KEYWORDS = ["global", "international", "worldwide", "multi-market", "multiple markets"]
DEFAULT_GLOBAL_MARKETS = ["EMEA", "APAC", "LATAM"]

SCALE_KEYWORDS = ["global", "enterprise", "omnichannel", "multi-channel", "integrated", "large-scale", "nationwide"]

INTENT_SCOPE = {
    PlanIntent.revision: "Revise an existing deliverable",
    PlanIntent.variants: "Produce variants of an existing deliverable",
    PlanIntent.publish: "Package an approved deliverable for publication",
}


def _matches(text: str, keyword: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])", text) is not None


def _count(text: str, keywords: Iterable[str]) -> int:
    return sum(1 for keyword in keywords if _matches(text, keyword))


def _ordered(types: Iterable[str]) -> List[str]:
    wanted = set(types)
    return [t for t in DELIVERABLE_TYPE_ORDER if t in wanted]


class RequestAnalyzer:
    """Deterministic classification of a client request."""

    def classify_project_type(self, text: str) -> str:
        best, best_score = "general", 0
        for project_type, keywords in PROJECT_TYPE_KEYWORDS.items():
            score = _count(text, keywords)
            if score > best_score:
                best, best_score = project_type, score
        return best

    def detect_deliverables(self, text: str) -> List[str]:
        return _ordered(t for t, keywords in DELIVERABLE_KEYWORDS.items() if _count(text, keywords))

    def detect_channels(self, text: str, context: Dict[str, Any]) -> List[str]:
        override = context.get("channels")
        if override:
            return [str(c).lower() for c in override]
        return [c for c in CHANNEL_ORDER if _count(text, CHANNEL_KEYWORDS[c])]

    def detect_markets(self, text: str, context: Dict[str, Any]) -> List[str]:
        override = context.get("markets")
        if override:
            return [str(m) for m in override]
        markets = [m for m, keywords in MARKET_KEYWORDS.items() if _count(text, keywords)]
        if not markets and _count(text, GLOBAL_KEYWORDS):
            return list(DEFAULT_GLOBAL_MARKETS)
        return markets if len(markets) > 1 or _count(text, GLOBAL_KEYWORDS) else []

    def channel_strategy(self, project_type: str, detected: List[str]) -> ChannelStrategy:
        if detected:
            channels = detected
            rationale = "Channels named in the request"
        else:
            channels = DEFAULT_CHANNELS.get(project_type, DEFAULT_CHANNELS["general"])
            rationale = f"Default channel mix for {project_type.replace('_', ' ')}"
        return ChannelStrategy(primary=channels[:2], secondary=channels[2:], rationale=rationale)

    def expand_scope(
        self,
        project_type: str,
        requested: List[str],
        strategy: ChannelStrategy,
        markets: List[str],
        text: str,
    ) -> List[ScopeItem]:
        implied: Dict[str, str] = {}

        def imply(deliverable_type: str, reason: str) -> None:
            if deliverable_type not in requested and deliverable_type not in implied:
                implied[deliverable_type] = reason

        imply("strategic-brief", "Every campaign starts from a strategic brief")
        for deliverable_type in IMPLIED_DELIVERABLES.get(project_type, []):
            imply(deliverable_type, f"Implied by a {project_type.replace('_', ' ')} project")

        channels = strategy.channels
        if any(c in SOCIAL_CHANNELS for c in channels):
            imply("social-media", "Social channels in the channel strategy")
        if "email" in channels:
            imply("email-sequence", "Email is part of the channel strategy")
        if "search" in channels:
            imply("ad-copy", "Paid search is part of the channel strategy")
        if "blog" in channels:
            imply("blog-article", "Blog is part of the channel strategy")
        if _matches(text, "b2b"):
            imply("deck", "B2B audiences need a sales deck")
        if markets:
            imply("localized-copy", f"Localized variants for {len(markets)} market(s)")

        return [ScopeItem(type=t, reason=implied[t]) for t in _ordered(implied)]

    def complexity(self, deliverable_types: List[str], strategy: ChannelStrategy, markets: List[str], text: str) -> str:
        score = len(deliverable_types) + len(markets) + len(strategy.channels) // 2
        score += 2 * _count(text, SCALE_KEYWORDS)
        if score <= 5:
            return "simple"
        if score <= 10:
            return "moderate"
        return "complex"

    def analyze(self, text: str, context: Optional[Dict[str, Any]] = None) -> PlanAnalysis:
        context = context or {}
        intent = PlanIntent(context.get("intent", PlanIntent.campaign.value))
        lowered = text.lower()

        if intent != PlanIntent.campaign:
            deliverable_type = context.get("deliverable_type", "strategic-brief")
            return PlanAnalysis(
                intent=intent,
                project_type=context.get("project_type") or "general",
                complexity="simple",
                requested_deliverables=[deliverable_type],
                expanded_scope=[],
                channel_strategy=ChannelStrategy(rationale=INTENT_SCOPE[intent]),
                markets=[],
            )

        project_type = context.get("project_type") or self.classify_project_type(lowered)
        requested = self.detect_deliverables(lowered)
        strategy = self.channel_strategy(project_type, self.detect_channels(lowered, context))
        markets = self.detect_markets(lowered, context)
        scope = self.expand_scope(project_type, requested, strategy, markets, lowered)
        all_types = _ordered([*requested, *(item.type for item in scope)])

        return PlanAnalysis(
            intent=intent,
            project_type=project_type,
            complexity=self.complexity(all_types, strategy, markets, lowered),
            requested_deliverables=requested,
            expanded_scope=scope,
            channel_strategy=strategy,
            markets=markets,
        )


request_analyzer = RequestAnalyzer()
