"""Follow-up question contracts."""

from typing import Any, List

from pydantic import BaseModel, Field

from visa_advisor.services.visa_catalog import VisaCode


class QuestionsOutput(BaseModel):
    """Shape the backend must return for the question stage."""

    questions: List[Any] = Field(default_factory=list)


class GeneratedQuestion(BaseModel):
    """A follow-up question and the codes it targets.

    ``synthetic`` marks questions taken from the static fallback tables
    rather than from the backend.
    """

    text: str
    codes: List[VisaCode]
    synthetic: bool = False
