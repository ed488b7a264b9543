"""SQLAlchemy models."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Index, String, Text, TIMESTAMP, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from visa_advisor.core.database import Base
from visa_advisor.core.stages import SubmissionStatus


class Submission(Base):
    """Applicant narrative and the output of every pipeline stage."""

    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_user_created", "user_id", "created_at"),
        {"comment": "Visa advisory submissions and their stage outputs"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String, nullable=False, index=True, comment="Identity provider subject"
    )
    raw_text: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Applicant narrative as submitted"
    )

    extracted_facts: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    classification: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    followup_questions: Mapped[Optional[list[str]]] = mapped_column(JSONB, nullable=True)
    followup_answers: Mapped[Optional[list[str]]] = mapped_column(JSONB, nullable=True)
    final_decision: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default=SubmissionStatus.NONE.value,
        server_default=SubmissionStatus.NONE.value,
    )  # none | facts | classified | questions_ready | answered | final
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
