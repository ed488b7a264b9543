"""Translation of domain errors into HTTP problem responses."""

from typing import List, Tuple, Type

from fastapi import HTTPException, Request, status

from visa_advisor.core.exceptions import (
    AnswersCountMismatchError,
    APIClientError,
    AppError,
    ContractValidationError,
    EmptyAnswerError,
    InputTooShortError,
    InvalidOutputError,
    InvalidStageError,
    MissingPrerequisiteError,
    NoCandidatesError,
    QuestionGenerationError,
    SubmissionNotFoundError,
    UpstreamTransientError,
    UpstreamUnavailableError,
)
from visa_advisor.utils.logging import get_logger
from visa_advisor.utils.responses import create_error_detail

LOGGER = get_logger(__name__)

# First match wins; subclasses before their bases
ERROR_STATUS_MAP: List[Tuple[Type[AppError], int, str]] = [
    (InputTooShortError, status.HTTP_422_UNPROCESSABLE_ENTITY, "Input Too Short"),
    (NoCandidatesError, status.HTTP_422_UNPROCESSABLE_ENTITY, "No Visa Candidates"),
    (ContractValidationError, status.HTTP_502_BAD_GATEWAY, "Invalid Model Output"),
    (InvalidOutputError, status.HTTP_502_BAD_GATEWAY, "Invalid Model Output"),
    (QuestionGenerationError, status.HTTP_502_BAD_GATEWAY, "Questions Unavailable"),
    (UpstreamUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "Model Backend Unavailable"),
    (UpstreamTransientError, status.HTTP_503_SERVICE_UNAVAILABLE, "Model Backend Unavailable"),
    (APIClientError, status.HTTP_502_BAD_GATEWAY, "Model Backend Error"),
    (MissingPrerequisiteError, status.HTTP_409_CONFLICT, "Missing Prerequisites"),
    (AnswersCountMismatchError, status.HTTP_400_BAD_REQUEST, "Answers Count Mismatch"),
    (EmptyAnswerError, status.HTTP_400_BAD_REQUEST, "Empty Answer"),
    (InvalidStageError, status.HTTP_400_BAD_REQUEST, "Invalid Stage"),
    (SubmissionNotFoundError, status.HTTP_404_NOT_FOUND, "Submission Not Found"),
]


def status_for(error: AppError) -> Tuple[int, str]:
    """HTTP status and problem title for a domain error."""
    for error_type, status_code, title in ERROR_STATUS_MAP:
        if isinstance(error, error_type):
            return status_code, title
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"


def to_http_exception(error: AppError, request: Request) -> HTTPException:
    """Build an ``HTTPException`` carrying an ``ErrorDetail`` body."""
    status_code, title = status_for(error)
    if status_code >= 500:
        LOGGER.error(
            f"{title}: {error.message}",
            extra={"code": error.code, "path": request.url.path},
        )
    error_detail = create_error_detail(
        title=title,
        status=status_code,
        detail=error.message,
        request=request,
        code=error.code,
        extra=error.to_extra(),
    )
    return HTTPException(status_code=status_code, detail=error_detail.model_dump(mode="json"))
