from typing import Annotated, Awaitable, TypeVar
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from visa_advisor.api.v1.errors import to_http_exception
from visa_advisor.core.auth import get_current_user
from visa_advisor.core.config import settings
from visa_advisor.core.database import get_async_session as get_session
from visa_advisor.core.exceptions import AppError
from visa_advisor.core.gateway import GenerativeGateway
from visa_advisor.schemas.auth import CurrentUser
from visa_advisor.schemas.responses import ApiResponse
from visa_advisor.schemas.submissions import (
    AnswersRequest,
    RedoRequest,
    SubmissionCreate,
    SubmissionListResponse,
    SubmissionResponse,
)
from visa_advisor.services.decision_finalizer import DecisionFinalizer
from visa_advisor.services.fact_extractor import FactExtractor
from visa_advisor.services.question_generator import QuestionGenerator
from visa_advisor.services.submission_service import MAX_LIST_LIMIT, SubmissionService
from visa_advisor.services.visa_classifier import VisaClassifier
from visa_advisor.utils.logging import get_logger
from visa_advisor.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()

T = TypeVar("T")


def get_gateway(request: Request) -> GenerativeGateway:
    return request.app.state.gateway


async def get_submission_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    gateway: Annotated[GenerativeGateway, Depends(get_gateway)],
) -> SubmissionService:
    pipeline = settings.pipeline
    return SubmissionService(
        db_session,
        extractor=FactExtractor(
            gateway,
            min_text_length=pipeline.facts_min_text_length,
            timeout=pipeline.facts_timeout_seconds,
        ),
        classifier=VisaClassifier(
            gateway,
            return_count=pipeline.classify_return_count,
            floor_enabled=pipeline.confidence_floor_enabled,
            floor=pipeline.confidence_floor,
            timeout=pipeline.classify_timeout_seconds,
            language=pipeline.output_language,
        ),
        question_generator=QuestionGenerator(
            gateway,
            min_questions=pipeline.questions_min,
            max_questions=pipeline.questions_max,
            top_candidates=pipeline.questions_top_candidates,
            timeout=pipeline.questions_timeout_seconds,
            language=pipeline.output_language,
        ),
        finalizer=DecisionFinalizer(
            gateway,
            min_confidence=pipeline.decision_min_confidence,
            timeout=pipeline.finalize_timeout_seconds,
            language=pipeline.output_language,
        ),
    )


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
ServiceDep = Annotated[SubmissionService, Depends(get_submission_service)]


async def _call(request: Request, operation: Awaitable[T]) -> T:
    try:
        return await operation
    except AppError as e:
        raise to_http_exception(e, request) from e


def _submission_response(request: Request, submission, message: str):
    return create_api_response(
        data=SubmissionResponse.model_validate(submission),
        message=message,
        request=request,
    )


@router.post(
    "",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a submission",
    operation_id="create_submission",
)
async def create_submission(
    request: Request,
    body: SubmissionCreate,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    """Store a raw narrative; no stage runs yet."""
    submission = await _call(request, service.create_submission(current_user.id, body.raw_text))
    return _submission_response(request, submission, "Submission created successfully")


@router.get(
    "",
    response_model=ApiResponse,
    summary="List submissions",
    operation_id="list_submissions",
)
async def list_submissions(
    request: Request,
    current_user: CurrentUserDep,
    service: ServiceDep,
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
) -> ApiResponse:
    """List the current user's submissions, newest first."""
    items, total = await _call(request, service.list_submissions(current_user.id, limit=limit, offset=offset))
    return create_api_response(
        data=SubmissionListResponse(
            items=[SubmissionResponse.model_validate(item) for item in items],
            total=total,
            limit=limit,
            offset=offset,
        ),
        message="Submissions retrieved successfully",
        request=request,
    )


@router.get(
    "/{submission_id}",
    response_model=ApiResponse,
    summary="Get submission",
    operation_id="get_submission",
)
async def get_submission(
    request: Request,
    submission_id: UUID,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    submission = await _call(request, service.get_submission(submission_id, current_user.id))
    return _submission_response(request, submission, "Submission retrieved successfully")


@router.post(
    "/{submission_id}/facts",
    response_model=ApiResponse,
    summary="Extract facts",
    operation_id="run_facts",
)
async def run_facts(
    request: Request,
    submission_id: UUID,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    """Extract structured facts from the narrative."""
    submission = await _call(request, service.run_facts(submission_id, current_user.id))
    return _submission_response(request, submission, "Facts extracted successfully")


@router.post(
    "/{submission_id}/classification",
    response_model=ApiResponse,
    summary="Classify visa candidates",
    operation_id="run_classification",
)
async def run_classification(
    request: Request,
    submission_id: UUID,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    submission = await _call(request, service.run_classification(submission_id, current_user.id))
    return _submission_response(request, submission, "Visa candidates classified successfully")


@router.post(
    "/{submission_id}/questions",
    response_model=ApiResponse,
    summary="Generate follow-up questions",
    operation_id="run_questions",
)
async def run_questions(
    request: Request,
    submission_id: UUID,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    submission = await _call(request, service.run_questions(submission_id, current_user.id))
    return _submission_response(request, submission, "Follow-up questions generated successfully")


@router.post(
    "/{submission_id}/answers",
    response_model=ApiResponse,
    summary="Submit follow-up answers",
    operation_id="submit_answers",
)
async def submit_answers(
    request: Request,
    submission_id: UUID,
    body: AnswersRequest,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    """Store answers aligned one-to-one with the stored questions."""
    submission = await _call(request, service.submit_answers(submission_id, current_user.id, body.answers))
    return _submission_response(request, submission, "Answers stored successfully")


@router.post(
    "/{submission_id}/finalize",
    response_model=ApiResponse,
    summary="Produce the final decision",
    operation_id="finalize_submission",
)
async def finalize_submission(
    request: Request,
    submission_id: UUID,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    submission = await _call(request, service.finalize(submission_id, current_user.id))
    return _submission_response(request, submission, "Decision finalized successfully")


@router.post(
    "/{submission_id}/redo",
    response_model=ApiResponse,
    summary="Redo a stage",
    operation_id="redo_stage",
)
async def redo_stage(
    request: Request,
    submission_id: UUID,
    body: RedoRequest,
    current_user: CurrentUserDep,
    service: ServiceDep,
) -> ApiResponse:
    """Re-run facts, classification or questions and clear everything after it."""
    submission = await _call(request, service.redo(submission_id, current_user.id, body.stage))
    return _submission_response(request, submission, f"Stage '{body.stage}' redone successfully")
