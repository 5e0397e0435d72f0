"""Deterministic hard validators and the text sanitiser that repairs them."""

import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from ..metadata import ValidatorResult
from ..models import BINARY_EXTENSIONS, BINARY_TYPES


@dataclass(frozen=True)
class TypeRule:
    min_length: int = 1
    max_length: int = 20000
    needs_title: bool = False
    needs_cta: bool = False
    needs_subject: bool = False


TYPE_RULES: Dict[str, TypeRule] = {
    "strategic-brief": TypeRule(200, 20000, needs_title=True),
    "social-media": TypeRule(20, 2200, needs_cta=True),
    "email-sequence": TypeRule(100, 10000, needs_cta=True, needs_subject=True),
    "blog-article": TypeRule(300, 30000, needs_title=True),
    "ad-copy": TypeRule(20, 600, needs_cta=True),
    "video-script": TypeRule(100, 10000),
    "image": TypeRule(1, 2000),
    "deck": TypeRule(100, 20000, needs_title=True),
    "landing-page": TypeRule(150, 15000, needs_title=True, needs_cta=True),
    "press-release": TypeRule(200, 10000, needs_title=True),
    "localized-copy": TypeRule(20, 5000),
    "publish-package": TypeRule(2, 20000),
}
DEFAULT_RULE = TypeRule()

# (pattern, softer replacement); longest phrases first
FORBIDDEN_CLAIMS = [
    (r"100\s*% guaranteed", "designed to deliver"),
    (r"guaranteed results?", "measurable results"),
    (r"guaranteed", "expected"),
    (r"risk[- ]free", "low-commitment"),
    (r"best in the world", "built for you"),
    (r"instant results?", "fast results"),
    (r"never fails", "works reliably"),
    (r"miracle", "remarkable"),
    (r"cures?", "helps with"),
]
_CLAIM_PATTERNS = [(re.compile(r"\b" + p + r"\b", re.IGNORECASE), r) for p, r in FORBIDDEN_CLAIMS]

PLACEHOLDER_PATTERNS = [
    re.compile(r"\[insert[^\]]*\]", re.IGNORECASE),
    re.compile(r"\{\{[^}]*\}\}"),
    re.compile(r"\bTODO\b"),
    re.compile(r"\bTBD\b"),
    re.compile(r"lorem ipsum(?: dolor sit amet)?,?", re.IGNORECASE),
]

CTA_PHRASES = [
    "shop now", "buy now", "sign up", "learn more", "get started", "book", "register",
    "subscribe", "download", "try it", "join", "contact us", "order now", "claim",
    "discover", "request a demo", "apply now", "call us", "visit",
]
_CTA_PATTERN = re.compile(r"\b(" + "|".join(re.escape(p) for p in CTA_PHRASES) + r")\b", re.IGNORECASE)
_SUBJECT_PATTERN = re.compile(r"^\s*subject\s*:", re.IGNORECASE | re.MULTILINE)

DEFAULT_CTA = "Learn more today."


@dataclass(frozen=True)
class DeliverableDraft:
    """The parts of a deliverable the quality gate looks at."""

    type: str
    content: str
    title: Optional[str] = None
    file_path: Optional[str] = None
    content_format: str = "text"

    def with_content(self, content: str) -> "DeliverableDraft":
        return replace(self, content=content)


def rule_for(deliverable_type: str) -> TypeRule:
    return TYPE_RULES.get(deliverable_type, DEFAULT_RULE)


def is_binary(draft: DeliverableDraft) -> bool:
    if draft.type in BINARY_TYPES:
        return True
    return bool(draft.file_path) and draft.file_path.lower().endswith(BINARY_EXTENSIONS)


def forbidden_terms(context: Dict[str, Any]) -> List[str]:
    terms = context.get("forbiddenTerms") or (context.get("brandGuidelines") or {}).get("forbiddenTerms") or []
    return [str(t) for t in terms if str(t).strip()]


def find_claims(content: str) -> List[str]:
    found = []
    for pattern, _ in _CLAIM_PATTERNS:
        for match in pattern.finditer(content):
            found.append(match.group(0))
    return found


def find_terms(content: str, terms: List[str]) -> List[str]:
    return [t for t in terms if re.search(r"\b" + re.escape(t) + r"\b", content, re.IGNORECASE)]


def find_placeholders(content: str) -> List[str]:
    return [m.group(0) for p in PLACEHOLDER_PATTERNS for m in p.finditer(content)]


def has_cta(content: str) -> bool:
    return _CTA_PATTERN.search(content) is not None


def has_subject(content: str) -> bool:
    return _SUBJECT_PATTERN.search(content) is not None


def _result(rule: str, passed: bool, detail: str) -> ValidatorResult:
    return ValidatorResult(rule=rule, passed=passed, detail=detail)


def run_hard_validators(draft: DeliverableDraft, context: Dict[str, Any]) -> List[ValidatorResult]:
    """Evaluate every deterministic rule that applies to the draft's type."""
    rule = rule_for(draft.type)
    content = draft.content or ""
    results = [_result("non_empty", bool(content.strip()), "content present" if content.strip() else "content is empty")]

    if rule.needs_title:
        ok = bool((draft.title or "").strip())
        results.append(_result("title_present", ok, "title present" if ok else "a title is required"))

    length = len(content)
    within = rule.min_length <= length <= rule.max_length
    results.append(_result(
        "length_bounds", within,
        f"{length} characters (allowed {rule.min_length}-{rule.max_length})",
    ))

    if draft.content_format == "json":
        return results

    claims = find_claims(content)
    results.append(_result(
        "forbidden_claims", not claims,
        "no prohibited claims" if not claims else f"prohibited claims: {', '.join(sorted(set(c.lower() for c in claims)))}",
    ))

    terms = find_terms(content, forbidden_terms(context))
    results.append(_result(
        "brand_forbidden_terms", not terms,
        "no off-brand terms" if not terms else f"off-brand terms: {', '.join(terms)}",
    ))

    placeholders = find_placeholders(content)
    results.append(_result(
        "no_placeholders", not placeholders,
        "no placeholders" if not placeholders else f"placeholders left: {', '.join(placeholders)}",
    ))

    if rule.needs_cta:
        ok = has_cta(content)
        results.append(_result("call_to_action", ok, "call to action present" if ok else "no call to action"))

    if rule.needs_subject:
        ok = has_subject(content)
        results.append(_result("email_subject", ok, "subject line present" if ok else "no 'Subject:' line"))

    return results


def _trim(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    cut = content[:limit]
    boundary = max(cut.rfind(". "), cut.rfind(".\n"), cut.rfind("! "), cut.rfind("? "))
    return cut[: boundary + 1] if boundary > 0 else cut.rstrip()


def sanitize(content: str, deliverable_type: str, context: Dict[str, Any]) -> str:
    """Repair what the hard validators flag. Applying it twice changes nothing."""
    rule = rule_for(deliverable_type)
    text = content
    for pattern, replacement in _CLAIM_PATTERNS:
        text = pattern.sub(replacement, text)
    for pattern in PLACEHOLDER_PATTERNS:
        text = pattern.sub("", text)
    for term in forbidden_terms(context):
        text = re.sub(r"\b" + re.escape(term) + r"\b", "", text, flags=re.IGNORECASE)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r" +([.,!?])", r"\1", text)
    text = "\n".join(line.rstrip() for line in text.strip().splitlines())

    reserve = len(DEFAULT_CTA) + 2 if rule.needs_cta else 0
    text = _trim(text, rule.max_length - reserve)

    if rule.needs_subject and not has_subject(text):
        first_line = text.splitlines()[0].lstrip("# ").strip() if text else "Update"
        text = f"Subject: {first_line[:80]}\n\n{text}"
    if rule.needs_cta and not has_cta(text):
        text = f"{text}\n\n{DEFAULT_CTA}" if text else DEFAULT_CTA
    return text
