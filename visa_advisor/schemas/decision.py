"""Final decision contract.

A decision is one of two mutually exclusive variants selected by
``qualifies_for_visa``.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from visa_advisor.services.visa_catalog import VisaCode

ACTION_PLAN_MIN_STEPS = 10
ACTION_PLAN_MAX_STEPS = 18
CHECKLIST_MIN_ITEMS = 8
CHECKLIST_MAX_ITEMS = 15
PATH_MIN_STEPS = 8
PATH_MAX_STEPS = 15
MAX_TOP_VISAS = 2


class PlanStep(BaseModel):
    step: str = Field(min_length=1)
    url: Optional[str] = None


class ChecklistItem(BaseModel):
    item: str = Field(min_length=1)
    url: Optional[str] = None


class TopVisa(BaseModel):
    code: VisaCode
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: Optional[str] = None


class PathToQualify(BaseModel):
    summary: str = Field(min_length=1)
    steps: List[PlanStep] = Field(min_length=PATH_MIN_STEPS, max_length=PATH_MAX_STEPS)


class QualifyingDecision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    qualifies_for_visa: Literal[True] = True
    selected_visa: VisaCode
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: Optional[str] = None
    top_visas: List[TopVisa] = Field(min_length=1, max_length=MAX_TOP_VISAS)
    alternatives: List[str] = Field(default_factory=list)
    action_plan: List[PlanStep] = Field(
        min_length=ACTION_PLAN_MIN_STEPS, max_length=ACTION_PLAN_MAX_STEPS
    )
    documents_checklist: List[ChecklistItem] = Field(
        min_length=CHECKLIST_MIN_ITEMS, max_length=CHECKLIST_MAX_ITEMS
    )
    risks_and_flags: List[str] = Field(default_factory=list)
    suggested_timeline: Optional[str] = None
    costs_note: Optional[str] = None
    reconstructed: bool = False


class NonQualifyingDecision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    qualifies_for_visa: Literal[False] = False
    rationale: str = Field(min_length=1)
    path_to_qualify: PathToQualify
    action_plan: List[PlanStep] = Field(default_factory=list, max_length=0)
    documents_checklist: List[ChecklistItem] = Field(default_factory=list, max_length=0)
    reconstructed: bool = False


# Literal[True] / Literal[False] keep the variants mutually exclusive
Decision = Union[QualifyingDecision, NonQualifyingDecision]


def decision_to_document(decision: Union[QualifyingDecision, NonQualifyingDecision]) -> Dict[str, Any]:
    return decision.model_dump(mode="json", exclude_none=True)
