"""Typed deliverable metadata.

The ``metadata`` column is split into known sections (quality, validators,
publish, lineage, approval) plus ``extra`` for keys nobody has modelled yet.
Patches merge per section: a section present in the patch replaces the stored
section, ``extra`` is merged key by key.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QualitySnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passed: bool = Field(alias="pass")
    axes: Dict[str, float] = Field(default_factory=dict)
    overall: float = 0.0
    suggestions: List[str] = Field(default_factory=list)
    evaluated_at: Optional[datetime] = None


class ValidatorResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rule: str
    passed: bool = Field(alias="pass")
    detail: str = ""


class PublishState(BaseModel):
    target: str
    status: str
    url: Optional[str] = None
    workflow_id: Optional[str] = None
    at: datetime
    fallback: bool = False
    external_id: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class RevisionLineage(BaseModel):
    revision_of: Optional[str] = None
    last_revision_id: Optional[str] = None
    fixed_by: Optional[str] = None
    instruction: Optional[str] = None
    variant_aspect: Optional[str] = None
    workflow_id: Optional[str] = None


class ApprovalInfo(BaseModel):
    approved_by: str
    approved_at: datetime
    feedback: Optional[str] = None


SECTIONS = ("quality", "validators", "publish", "lineage", "approval")


class DeliverableMetadata(BaseModel):
    quality: Optional[QualitySnapshot] = None
    validators: Optional[List[ValidatorResult]] = None
    publish: Optional[PublishState] = None
    lineage: Optional[RevisionLineage] = None
    approval: Optional[ApprovalInfo] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "DeliverableMetadata":
        """Load a stored or client-supplied map; unknown keys go to ``extra``."""
        raw = dict(raw or {})
        extra = dict(raw.pop("extra", None) or {})
        known = {key: raw.pop(key) for key in SECTIONS if key in raw}
        extra.update(raw)
        return cls.model_validate({**known, "extra": extra})

    def to_raw(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def merge(self, patch: "DeliverableMetadata") -> "DeliverableMetadata":
        merged = self.model_copy(deep=True)
        for key in SECTIONS:
            incoming = getattr(patch, key)
            if key not in patch.model_fields_set or incoming is None:
                continue
            current = getattr(merged, key)
            if current is None or key in ("quality", "validators"):
                # snapshots are replaced wholesale
                setattr(merged, key, incoming)
            else:
                setattr(merged, key, current.model_copy(update=incoming.model_dump(exclude_unset=True)))
        merged.extra = {**self.extra, **patch.extra}
        return merged

    @property
    def verified(self) -> bool:
        if self.quality is None or self.validators is None:
            return False
        return self.quality.passed and all(v.passed for v in self.validators)


def merge_raw(stored: Optional[Dict[str, Any]], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a raw patch into a stored raw map and return the new raw map."""
    return DeliverableMetadata.from_raw(stored).merge(DeliverableMetadata.from_raw(patch)).to_raw()
