"""Tests for submission orchestration and transactional stage runs."""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from visa_advisor.core.exceptions import (
    AnswersCountMismatchError,
    EmptyAnswerError,
    InvalidStageError,
    MissingPrerequisiteError,
    SubmissionNotFoundError,
    UpstreamUnavailableError,
)
from visa_advisor.database.models import Submission
from visa_advisor.schemas.decision import NonQualifyingDecision
from visa_advisor.schemas.questions import GeneratedQuestion
from visa_advisor.services import submission_service
from visa_advisor.services.submission_service import MAX_LIST_LIMIT, SubmissionService
from visa_advisor.services.visa_catalog import VisaCode

USER_ID = "user-123"


def _submission(**fields) -> Submission:
    values = {"id": uuid4(), "user_id": USER_ID, "raw_text": "I am a researcher moving to the US", "status": "none"}
    values.update(fields)
    return Submission(**values)


def _repository(submission):
    repository = AsyncMock()
    repository.lock_for_update.return_value = submission
    repository.get_for_user.return_value = submission

    async def update(instance, **kwargs):
        for key, value in kwargs.items():
            setattr(instance, key, value)
        return instance

    repository.update.side_effect = update
    return repository


@pytest.fixture
def session():
    return AsyncMock()


@pytest.fixture
def stages():
    return {
        "extractor": AsyncMock(),
        "classifier": AsyncMock(),
        "question_generator": AsyncMock(),
        "finalizer": AsyncMock(),
    }


def _service(session, stages, submission) -> SubmissionService:
    service = SubmissionService(session, **stages)
    service.repository = _repository(submission)
    return service


def _completed(sample_facts, sample_classification) -> Submission:
    return _submission(
        extracted_facts=sample_facts.to_document(),
        classification=sample_classification.to_document(),
        followup_questions=["[EB2_NIW] Q1?", "[E2] Q2?"],
        followup_answers=["A1", "A2"],
        final_decision={"qualifies_for_visa": False},
        status="final",
    )


@pytest.mark.asyncio
async def test_create_submission_commits(session, stages):
    submission = _submission()
    service = _service(session, stages, submission)
    service.repository.create.return_value = submission

    created = await service.create_submission(USER_ID, "I am a researcher moving to the US")

    assert created is submission
    service.repository.create.assert_awaited_once_with(
        user_id=USER_ID, raw_text="I am a researcher moving to the US", status="none"
    )
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_get_submission_not_found(session, stages):
    service = _service(session, stages, None)

    with pytest.raises(SubmissionNotFoundError):
        await service.get_submission(uuid4(), USER_ID)


@pytest.mark.asyncio
async def test_list_submissions_clamps_limit(session, stages):
    service = _service(session, stages, None)
    service.repository.list_for_user.return_value = []
    service.repository.count.return_value = 0

    items, total = await service.list_submissions(USER_ID, limit=10_000, offset=-5)

    assert (items, total) == ([], 0)
    service.repository.list_for_user.assert_awaited_once_with(USER_ID, limit=MAX_LIST_LIMIT, offset=0)


@pytest.mark.asyncio
async def test_run_facts_stores_facts_and_commits(session, stages, sample_facts):
    submission = _submission()
    stages["extractor"].extract.return_value = sample_facts
    service = _service(session, stages, submission)

    result = await service.run_facts(submission.id, USER_ID)

    assert result.extracted_facts == sample_facts.to_document()
    assert result.status == "facts"
    stages["extractor"].extract.assert_awaited_once_with(submission.raw_text)
    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()


@pytest.mark.asyncio
async def test_stage_without_prerequisites_rolls_back(session, stages):
    submission = _submission()
    service = _service(session, stages, submission)

    with pytest.raises(MissingPrerequisiteError) as exc_info:
        await service.run_questions(submission.id, USER_ID)

    assert exc_info.value.missing_fields == ["extracted_facts", "classification"]
    stages["question_generator"].generate.assert_not_awaited()
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_stage_on_foreign_submission_is_not_found(session, stages):
    service = _service(session, stages, None)

    with pytest.raises(SubmissionNotFoundError):
        await service.run_facts(uuid4(), "someone-else")

    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_questions_persists_question_text(session, stages, sample_facts, sample_classification):
    submission = _submission(
        extracted_facts=sample_facts.to_document(),
        classification=sample_classification.to_document(),
        status="classified",
    )
    stages["question_generator"].generate.return_value = [
        GeneratedQuestion(text="[EB2_NIW] Q1?", codes=[VisaCode.EB2_NIW]),
        GeneratedQuestion(text="[E2] Q2?", codes=[VisaCode.E2], synthetic=True),
    ]
    service = _service(session, stages, submission)

    result = await service.run_questions(submission.id, USER_ID)

    assert result.followup_questions == ["[EB2_NIW] Q1?", "[E2] Q2?"]
    assert result.status == "questions_ready"
    facts_arg, candidates_arg = stages["question_generator"].generate.await_args.args
    assert facts_arg == sample_facts
    assert [c.code for c in candidates_arg] == sample_classification.codes()


@pytest.mark.asyncio
async def test_submit_answers_trims_and_clears_decision(session, stages, sample_facts, sample_classification):
    submission = _completed(sample_facts, sample_classification)
    service = _service(session, stages, submission)

    result = await service.submit_answers(submission.id, USER_ID, ["  first  ", "second"])

    assert result.followup_answers == ["first", "second"]
    assert result.final_decision is None
    assert result.status == "answered"


@pytest.mark.asyncio
async def test_submit_answers_count_mismatch(session, stages, sample_facts, sample_classification):
    submission = _completed(sample_facts, sample_classification)
    service = _service(session, stages, submission)

    with pytest.raises(AnswersCountMismatchError) as exc_info:
        await service.submit_answers(submission.id, USER_ID, ["only one"])

    assert (exc_info.value.expected, exc_info.value.received) == (2, 1)
    assert submission.followup_answers == ["A1", "A2"]
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_submit_answers_rejects_blank_answer(session, stages, sample_facts, sample_classification):
    submission = _completed(sample_facts, sample_classification)
    service = _service(session, stages, submission)

    with pytest.raises(EmptyAnswerError) as exc_info:
        await service.submit_answers(submission.id, USER_ID, ["fine", "   "])

    assert exc_info.value.index == 1


@pytest.mark.asyncio
async def test_finalize_stores_decision_document(session, stages, sample_facts, sample_classification):
    submission = _completed(sample_facts, sample_classification)
    submission.final_decision = None
    decision = NonQualifyingDecision(
        rationale="Not yet",
        path_to_qualify={"summary": "Build evidence", "steps": [{"step": f"Step {i}"} for i in range(8)]},
    )
    stages["finalizer"].finalize.return_value = decision
    service = _service(session, stages, submission)

    result = await service.finalize(submission.id, USER_ID)

    assert result.final_decision["qualifies_for_visa"] is False
    assert result.final_decision["action_plan"] == []
    assert result.status == "final"
    _, classification, questions, answers = stages["finalizer"].finalize.await_args.args
    assert classification.selected == VisaCode.EB2_NIW
    assert (questions, answers) == (["[EB2_NIW] Q1?", "[E2] Q2?"], ["A1", "A2"])


@pytest.mark.asyncio
async def test_redo_facts_clears_everything_downstream(session, stages, sample_facts, sample_classification):
    submission = _completed(sample_facts, sample_classification)
    stages["extractor"].extract.return_value = sample_facts
    service = _service(session, stages, submission)

    result = await service.redo(submission.id, USER_ID, "facts")

    assert result.extracted_facts == sample_facts.to_document()
    assert result.classification is None
    assert result.followup_questions is None
    assert result.followup_answers is None
    assert result.final_decision is None
    assert result.status == "facts"


@pytest.mark.asyncio
async def test_redo_classification_keeps_facts(session, stages, sample_facts, sample_classification):
    submission = _completed(sample_facts, sample_classification)
    stages["classifier"].classify.return_value = sample_classification
    service = _service(session, stages, submission)

    result = await service.redo(submission.id, USER_ID, "classification")

    assert result.extracted_facts == sample_facts.to_document()
    assert result.classification == sample_classification.to_document()
    assert result.followup_questions is None
    assert result.status == "classified"


@pytest.mark.asyncio
async def test_failed_redo_leaves_submission_untouched(session, stages, sample_facts, sample_classification):
    submission = _completed(sample_facts, sample_classification)
    stages["extractor"].extract.side_effect = UpstreamUnavailableError("down", attempts=3)
    service = _service(session, stages, submission)

    with pytest.raises(UpstreamUnavailableError):
        await service.redo(submission.id, USER_ID, "facts")

    assert submission.classification == sample_classification.to_document()
    assert submission.final_decision == {"qualifies_for_visa": False}
    assert submission.status == "final"
    service.repository.update.assert_not_awaited()
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("stage", ["answers", "finalize", "bogus"])
async def test_redo_rejects_invalid_stage(session, stages, stage):
    service = _service(session, stages, _submission())

    with pytest.raises(InvalidStageError):
        await service.redo(uuid4(), USER_ID, stage)

    service.repository.lock_for_update.assert_not_awaited()


@pytest.mark.asyncio
async def test_redo_questions_replaces_questions_and_clears_answers(
    session, stages, sample_facts, sample_classification
):
    submission = _completed(sample_facts, sample_classification)
    stages["question_generator"].generate.return_value = [
        GeneratedQuestion(text="[O1] New Q1?", codes=[VisaCode.O1]),
        GeneratedQuestion(text="[E2] New Q2?", codes=[VisaCode.E2]),
        GeneratedQuestion(text="[EB2_NIW] New Q3?", codes=[VisaCode.EB2_NIW]),
    ]
    service = _service(session, stages, submission)

    result = await service.redo(submission.id, USER_ID, "questions")

    assert result.followup_questions == ["[O1] New Q1?", "[E2] New Q2?", "[EB2_NIW] New Q3?"]
    assert result.followup_answers is None
    assert result.final_decision is None
    assert result.extracted_facts == sample_facts.to_document()
    assert result.classification == sample_classification.to_document()
    assert result.status == "questions_ready"
    stages["extractor"].extract.assert_not_awaited()
    stages["classifier"].classify.assert_not_awaited()
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_questions_logs_padded_question_positions(
    session, stages, sample_facts, sample_classification
):
    submission = _submission(
        extracted_facts=sample_facts.to_document(),
        classification=sample_classification.to_document(),
        status="classified",
    )
    stages["question_generator"].generate.return_value = [
        GeneratedQuestion(text="[EB2_NIW] Q1?", codes=[VisaCode.EB2_NIW]),
        GeneratedQuestion(text="[E2] Q2?", codes=[VisaCode.E2], synthetic=True),
        GeneratedQuestion(text="[O1] Q3?", codes=[VisaCode.O1], synthetic=True),
    ]
    service = _service(session, stages, submission)

    with patch.object(submission_service.LOGGER, "info") as log_info:
        await service.run_questions(submission.id, USER_ID)

    records = [c for c in log_info.call_args_list if c.args[0] == "Follow-up questions generated"]
    assert len(records) == 1
    assert records[0].kwargs["extra"]["synthetic_indices"] == [1, 2]
    assert records[0].kwargs["extra"]["count"] == 3
