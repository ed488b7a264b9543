"""Tests for pipeline stage ordering."""

from visa_advisor.core.stages import (
    PIPELINE,
    REDOABLE_STAGES,
    STAGE_SPECS,
    Stage,
    SubmissionStatus,
    downstream_fields,
    missing_prerequisites,
)


def test_downstream_fields_follow_pipeline_order():
    assert downstream_fields(Stage.FACTS) == [
        "classification",
        "followup_questions",
        "followup_answers",
        "final_decision",
    ]
    assert downstream_fields(Stage.QUESTIONS) == ["followup_answers", "final_decision"]
    assert downstream_fields(Stage.FINALIZE) == []


def test_missing_prerequisites_lists_absent_fields_in_order():
    values = {"extracted_facts": {"purpose": "work"}, "classification": None}

    assert missing_prerequisites(Stage.FACTS, values) == []
    assert missing_prerequisites(Stage.QUESTIONS, values) == ["classification"]
    assert missing_prerequisites(Stage.FINALIZE, values) == [
        "classification",
        "followup_questions",
        "followup_answers",
    ]


def test_each_stage_moves_to_its_own_status():
    assert [spec.status for spec in PIPELINE] == [
        SubmissionStatus.FACTS,
        SubmissionStatus.CLASSIFIED,
        SubmissionStatus.QUESTIONS_READY,
        SubmissionStatus.ANSWERED,
        SubmissionStatus.FINAL,
    ]
    assert STAGE_SPECS[Stage.ANSWERS].field == "followup_answers"


def test_only_generation_stages_are_redoable():
    assert REDOABLE_STAGES == {Stage.FACTS, Stage.CLASSIFICATION, Stage.QUESTIONS}
