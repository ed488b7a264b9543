"""Pipeline stage definitions.

Each stage owns one submission field. Stage order defines both the
prerequisites of a stage and which fields are cleared when it is re-run.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


class SubmissionStatus(str, Enum):
    NONE = "none"
    FACTS = "facts"
    CLASSIFIED = "classified"
    QUESTIONS_READY = "questions_ready"
    ANSWERED = "answered"
    FINAL = "final"


class Stage(str, Enum):
    FACTS = "facts"
    CLASSIFICATION = "classification"
    QUESTIONS = "questions"
    ANSWERS = "answers"
    FINALIZE = "finalize"


# Stages a client may ask to redo
REDOABLE_STAGES = frozenset({Stage.FACTS, Stage.CLASSIFICATION, Stage.QUESTIONS})


@dataclass(frozen=True)
class StageSpec:
    """Field ownership and ordering for one stage."""

    stage: Stage
    field: str
    status: SubmissionStatus
    requires: Tuple[str, ...]


PIPELINE: Tuple[StageSpec, ...] = (
    StageSpec(Stage.FACTS, "extracted_facts", SubmissionStatus.FACTS, ()),
    StageSpec(Stage.CLASSIFICATION, "classification", SubmissionStatus.CLASSIFIED, ("extracted_facts",)),
    StageSpec(
        Stage.QUESTIONS,
        "followup_questions",
        SubmissionStatus.QUESTIONS_READY,
        ("extracted_facts", "classification"),
    ),
    StageSpec(
        Stage.ANSWERS,
        "followup_answers",
        SubmissionStatus.ANSWERED,
        ("extracted_facts", "classification", "followup_questions"),
    ),
    StageSpec(
        Stage.FINALIZE,
        "final_decision",
        SubmissionStatus.FINAL,
        ("extracted_facts", "classification", "followup_questions", "followup_answers"),
    ),
)

STAGE_SPECS: Dict[Stage, StageSpec] = {spec.stage: spec for spec in PIPELINE}


def downstream_fields(stage: Stage) -> List[str]:
    """Fields invalidated when ``stage`` is re-run, in pipeline order."""
    index = next(i for i, spec in enumerate(PIPELINE) if spec.stage == stage)
    return [spec.field for spec in PIPELINE[index + 1:]]


def missing_prerequisites(stage: Stage, values: Dict[str, object]) -> List[str]:
    """Required upstream fields that are absent from ``values``."""
    return [field for field in STAGE_SPECS[stage].requires if values.get(field) is None]

