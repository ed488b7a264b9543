"""Request and response bodies for the submissions API."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from visa_advisor.services.submission_service import MAX_ANSWERS


class SubmissionCreate(BaseModel):
    raw_text: str = Field(..., min_length=1, description="Free-form applicant narrative")


class AnswersRequest(BaseModel):
    answers: List[str] = Field(..., min_length=1, max_length=MAX_ANSWERS)


class RedoRequest(BaseModel):
    stage: str = Field(..., description="One of: facts, classification, questions")


class SubmissionResponse(BaseModel):
    """A submission with every stage output stored so far."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    raw_text: str
    status: str
    extracted_facts: Optional[Dict[str, Any]] = None
    classification: Optional[Dict[str, Any]] = None
    followup_questions: Optional[List[str]] = None
    followup_answers: Optional[List[str]] = None
    final_decision: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SubmissionListResponse(BaseModel):
    items: List[SubmissionResponse]
    total: int
    limit: int
    offset: int
