"""Visa classification contract."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from visa_advisor.services.visa_catalog import VisaCode


class VisaCandidate(BaseModel):
    """One ranked visa option.

    ``confidence`` is what gets displayed and may have been raised by the
    confidence floor; ``raw_confidence`` is the normalized model value.
    """

    code: VisaCode
    confidence: float = Field(ge=0.0, le=1.0)
    raw_confidence: float = Field(ge=0.0, le=1.0)
    rationale: str
    requires_sponsor: bool = False


class Classification(BaseModel):
    """Ranked candidate list plus the selected code."""

    candidates: List[VisaCandidate] = Field(min_length=1)
    selected: Optional[VisaCode] = None
    floor_applied: bool = False
    rules_version: str

    @model_validator(mode="after")
    def check_invariants(self) -> "Classification":
        codes = [candidate.code for candidate in self.candidates]
        if len(codes) != len(set(codes)):
            raise ValueError("candidate codes must be unique")
        if self.selected is not None and self.selected not in codes:
            raise ValueError("selected must be one of the candidate codes")
        return self

    @property
    def best_raw_confidence(self) -> float:
        return max((candidate.raw_confidence for candidate in self.candidates), default=0.0)

    def top(self, count: int) -> List[VisaCandidate]:
        return self.candidates[:count]

    def codes(self) -> List[VisaCode]:
        return [candidate.code for candidate in self.candidates]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Classification":
        """Load a stored classification.

        Rows written before provenance fields existed carry only
        ``confidence``; it doubles as the raw value.
        """
        candidates = []
        for item in document.get("candidates") or []:
            item = dict(item)
            item.setdefault("raw_confidence", item.get("confidence", 0.0))
            candidates.append(item)
        return cls.model_validate(
            {**document, "candidates": candidates, "rules_version": document.get("rules_version", "unknown")}
        )
