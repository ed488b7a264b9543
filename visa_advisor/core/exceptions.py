"""Custom exception hierarchy."""

from typing import Any, Dict, List, Optional


class AppError(Exception):
    """Base exception for application errors."""

    code = "app_error"

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def to_extra(self) -> Dict[str, Any]:
        """Structured fields reported next to the message."""
        return {}


class APIClientError(AppError):
    """Raised when the generative backend rejects a request (non-retryable)."""

    code = "upstream_client_error"


class DatabaseError(AppError):
    """Raised when a database operation fails."""

    code = "database_error"


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""

    code = "configuration_error"


class PipelineError(AppError):
    """Base exception for submission pipeline errors."""

    code = "pipeline_error"


class InputTooShortError(PipelineError):
    """Raw narrative is below the configured minimum length."""

    code = "input_too_short"

    def __init__(self, length: int, minimum: int):
        super().__init__(
            f"Narrative has {length} characters, at least {minimum} are required"
        )
        self.length = length
        self.minimum = minimum

    def to_extra(self) -> Dict[str, Any]:
        return {"length": self.length, "minimum": self.minimum}


class InvalidOutputError(PipelineError):
    """Backend returned something that is not a single JSON object."""

    code = "invalid_output"

    def __init__(self, message: str, raw: Optional[str] = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.raw = raw

    def to_extra(self) -> Dict[str, Any]:
        return {"raw_excerpt": (self.raw or "")[:500]}


class ContractValidationError(PipelineError):
    """Parsed backend output violates the declared contract."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        original_error: Exception = None,
        raw: Optional[Any] = None,
    ):
        super().__init__(message, original_error)
        self.errors = errors or []
        self.raw = raw

    def to_extra(self) -> Dict[str, Any]:
        return {"errors": self.errors}


class UpstreamTransientError(PipelineError):
    """Timeout, rate limit or server-side failure from the backend."""

    code = "upstream_transient"

    def __init__(self, message: str, status_code: Optional[int] = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.status_code = status_code


class UpstreamUnavailableError(PipelineError):
    """Transient backend failures persisted after every retry."""

    code = "upstream_unavailable"

    def __init__(self, message: str, attempts: int, original_error: Exception = None):
        super().__init__(message, original_error)
        self.attempts = attempts

    def to_extra(self) -> Dict[str, Any]:
        return {"attempts": self.attempts}


class MissingPrerequisiteError(PipelineError):
    """A stage was invoked before the stages it depends on."""

    code = "missing_prerequisites"

    def __init__(self, missing_fields: List[str]):
        super().__init__(f"Missing prerequisites: {', '.join(missing_fields)}")
        self.missing_fields = list(missing_fields)

    def to_extra(self) -> Dict[str, Any]:
        return {"missing": self.missing_fields}


class NoCandidatesError(PipelineError):
    """Classifier output had no resolvable visa codes."""

    code = "no_candidates"


class QuestionGenerationError(PipelineError):
    """Follow-up questions could not reach the configured minimum."""

    code = "questions_unavailable"

    def __init__(self, produced: int, minimum: int):
        super().__init__(f"Only {produced} follow-up questions available, {minimum} required")
        self.produced = produced
        self.minimum = minimum

    def to_extra(self) -> Dict[str, Any]:
        return {"produced": self.produced, "minimum": self.minimum}


class SubmissionNotFoundError(AppError):
    """Raised when a submission does not exist or belongs to another user."""

    code = "not_found"


class InvalidStageError(AppError):
    """Raised when a redo targets a stage that cannot be redone."""

    code = "invalid_stage"


class AnswersCountMismatchError(AppError):
    """Answers list length differs from the stored questions."""

    code = "answers_count_mismatch"

    def __init__(self, expected: int, received: int):
        super().__init__(f"Expected {expected} answers, received {received}")
        self.expected = expected
        self.received = received

    def to_extra(self) -> Dict[str, Any]:
        return {"expected": self.expected, "received": self.received}


class EmptyAnswerError(AppError):
    """An answer was blank after trimming."""

    code = "empty_answer"

    def __init__(self, index: int):
        super().__init__(f"Answer at position {index} is empty")
        self.index = index

    def to_extra(self) -> Dict[str, Any]:
        return {"index": self.index}
