"""Submission orchestration.

Every stage run is one transaction: the submission row is locked with
``SELECT ... FOR UPDATE``, prerequisites are checked, the stage output
replaces its field, every downstream field is cleared and the status moves
to the stage's state. Any failure rolls the whole transaction back, so a
failed redo leaves the submission exactly as it was.
"""

from typing import Any, Awaitable, Callable, Dict, List, Sequence, Tuple, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from visa_advisor.core.exceptions import (
    AnswersCountMismatchError,
    EmptyAnswerError,
    InvalidStageError,
    MissingPrerequisiteError,
    SubmissionNotFoundError,
)
from visa_advisor.core.stages import (
    PIPELINE,
    REDOABLE_STAGES,
    STAGE_SPECS,
    Stage,
    SubmissionStatus,
    downstream_fields,
    missing_prerequisites,
)
from visa_advisor.database.models import Submission
from visa_advisor.repositories.submission_repository import SubmissionRepository
from visa_advisor.schemas.classification import Classification
from visa_advisor.schemas.decision import decision_to_document
from visa_advisor.schemas.facts import Facts
from visa_advisor.services.decision_finalizer import DecisionFinalizer
from visa_advisor.services.fact_extractor import FactExtractor
from visa_advisor.services.question_generator import QuestionGenerator
from visa_advisor.services.visa_classifier import VisaClassifier
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

MAX_LIST_LIMIT = 200
MAX_ANSWERS = 50

StageRunner = Callable[[Submission], Awaitable[Dict[str, Any]]]


class SubmissionService:
    """Creates submissions and runs pipeline stages on them."""

    def __init__(
        self,
        session: AsyncSession,
        extractor: FactExtractor,
        classifier: VisaClassifier,
        question_generator: QuestionGenerator,
        finalizer: DecisionFinalizer,
    ):
        """Initialize the service.

        Args:
            session: Database session; the service owns commit and rollback
            extractor: Stage 1 fact extractor
            classifier: Stage 2 visa classifier
            question_generator: Stage 3 question generator
            finalizer: Stage 4 decision finalizer
        """
        self.session = session
        self.repository = SubmissionRepository(session)
        self.extractor = extractor
        self.classifier = classifier
        self.question_generator = question_generator
        self.finalizer = finalizer

    # Reads and creation

    async def create_submission(self, user_id: str, raw_text: str) -> Submission:
        submission = await self.repository.create(
            user_id=user_id,
            raw_text=raw_text,
            status=SubmissionStatus.NONE.value,
        )
        await self.session.commit()
        LOGGER.info("Submission created", extra={"submission_id": str(submission.id), "user_id": user_id})
        return submission

    async def get_submission(self, submission_id: UUID, user_id: str) -> Submission:
        """Get an owned submission.

        Raises:
            SubmissionNotFoundError: Missing or owned by another user
        """
        submission = await self.repository.get_for_user(submission_id, user_id)
        if submission is None:
            raise SubmissionNotFoundError(f"Submission {submission_id} not found")
        return submission

    async def list_submissions(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> Tuple[List[Submission], int]:
        """Newest-first submissions and the user's total count."""
        limit = min(max(1, limit), MAX_LIST_LIMIT)
        offset = max(0, offset)
        items = await self.repository.list_for_user(user_id, limit=limit, offset=offset)
        total = await self.repository.count(filters={"user_id": user_id})
        return items, total

    # Stages

    async def run_facts(self, submission_id: UUID, user_id: str) -> Submission:
        return await self._run_stage(submission_id, user_id, Stage.FACTS, self._extract_facts)

    async def run_classification(self, submission_id: UUID, user_id: str) -> Submission:
        return await self._run_stage(submission_id, user_id, Stage.CLASSIFICATION, self._classify)

    async def run_questions(self, submission_id: UUID, user_id: str) -> Submission:
        return await self._run_stage(submission_id, user_id, Stage.QUESTIONS, self._generate_questions)

    async def submit_answers(self, submission_id: UUID, user_id: str, answers: Sequence[str]) -> Submission:
        """Store answers aligned one-to-one with the stored questions.

        Raises:
            MissingPrerequisiteError: No questions stored yet
            AnswersCountMismatchError: Count differs from the questions, or outside 1..50
            EmptyAnswerError: An answer is blank after trimming
        """

        async def store_answers(submission: Submission) -> Dict[str, Any]:
            questions = submission.followup_questions or []
            if len(answers) != len(questions) or not 1 <= len(answers) <= MAX_ANSWERS:
                raise AnswersCountMismatchError(expected=len(questions), received=len(answers))
            cleaned = []
            for index, answer in enumerate(answers):
                text = answer.strip() if isinstance(answer, str) else ""
                if not text:
                    raise EmptyAnswerError(index)
                cleaned.append(text)
            return {"followup_answers": cleaned}

        return await self._run_stage(submission_id, user_id, Stage.ANSWERS, store_answers)

    async def finalize(self, submission_id: UUID, user_id: str) -> Submission:
        return await self._run_stage(submission_id, user_id, Stage.FINALIZE, self._finalize)

    async def redo(self, submission_id: UUID, user_id: str, stage: Union[str, Stage]) -> Submission:
        """Re-run a stage, clearing everything downstream of it.

        Raises:
            InvalidStageError: Stage is not facts, classification or questions
        """
        try:
            target = Stage(stage)
        except ValueError as e:
            raise InvalidStageError(f"Unknown stage: {stage}", original_error=e) from e
        if target not in REDOABLE_STAGES:
            raise InvalidStageError(f"Stage '{target.value}' cannot be redone")

        LOGGER.info(
            "Redoing stage",
            extra={"submission_id": str(submission_id), "stage": target.value, "cleared": downstream_fields(target)},
        )
        runners: Dict[Stage, StageRunner] = {
            Stage.FACTS: self._extract_facts,
            Stage.CLASSIFICATION: self._classify,
            Stage.QUESTIONS: self._generate_questions,
        }
        return await self._run_stage(submission_id, user_id, target, runners[target])

    async def _run_stage(
        self,
        submission_id: UUID,
        user_id: str,
        stage: Stage,
        runner: StageRunner,
    ) -> Submission:
        spec = STAGE_SPECS[stage]
        try:
            submission = await self.repository.lock_for_update(submission_id, user_id)
            if submission is None:
                raise SubmissionNotFoundError(f"Submission {submission_id} not found")

            missing = missing_prerequisites(stage, self._stage_values(submission))
            if missing:
                raise MissingPrerequisiteError(missing)

            updates = await runner(submission)
            for field in downstream_fields(stage):
                updates[field] = None
            updates["status"] = spec.status.value

            await self.repository.update(submission, **updates)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            LOGGER.warning(
                "Stage failed, transaction rolled back",
                extra={"submission_id": str(submission_id), "stage": stage.value},
            )
            raise

        await self.session.refresh(submission)
        LOGGER.info(
            "Stage completed",
            extra={"submission_id": str(submission_id), "stage": stage.value, "status": submission.status},
        )
        return submission

    @staticmethod
    def _stage_values(submission: Submission) -> Dict[str, Any]:
        return {spec.field: getattr(submission, spec.field) for spec in PIPELINE}

    # Stage runners

    async def _extract_facts(self, submission: Submission) -> Dict[str, Any]:
        facts = await self.extractor.extract(submission.raw_text)
        return {"extracted_facts": facts.to_document()}

    async def _classify(self, submission: Submission) -> Dict[str, Any]:
        facts = Facts.model_validate(submission.extracted_facts)
        classification = await self.classifier.classify(facts)
        return {"classification": classification.to_document()}

    async def _generate_questions(self, submission: Submission) -> Dict[str, Any]:
        facts = Facts.model_validate(submission.extracted_facts)
        classification = Classification.from_document(submission.classification)
        questions = await self.question_generator.generate(facts, classification.candidates)
        LOGGER.info(
            "Follow-up questions generated",
            extra={
                "submission_id": str(submission.id),
                "count": len(questions),
                "synthetic_indices": [i for i, question in enumerate(questions) if question.synthetic],
            },
        )
        return {"followup_questions": [question.text for question in questions]}

    async def _finalize(self, submission: Submission) -> Dict[str, Any]:
        decision = await self.finalizer.finalize(
            Facts.model_validate(submission.extracted_facts),
            Classification.from_document(submission.classification),
            submission.followup_questions or [],
            submission.followup_answers or [],
        )
        return {"final_decision": decision_to_document(decision)}
