"""Generative call gateway.

One logical request to the backend: a system prompt plus a JSON-serialized
user payload, answered by exactly one JSON object. Only transient failures
are retried; malformed or contract-violating output fails immediately.
"""

import asyncio
import json
import random
from typing import Any, Callable, Dict, Optional, Protocol, Type, Union

from pydantic import BaseModel

from visa_advisor.core.exceptions import (
    InvalidOutputError,
    UpstreamTransientError,
    UpstreamUnavailableError,
)
from visa_advisor.utils.contracts import validate_contract
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

JSON_ONLY_INSTRUCTION = (
    "Respond with a single valid JSON object only. "
    "No prose, no markdown, no code fences."
)

MAX_JITTER_SECONDS = 0.25

Validator = Union[Type[BaseModel], Callable[[Dict[str, Any]], Any]]


class JSONGenerator(Protocol):
    async def generate_json(
        self,
        system_prompt: str,
        user_content: str,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str: ...


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Strictly parse a backend response into a JSON object.

    Raises:
        InvalidOutputError: If the text is not JSON or not an object
    """
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise InvalidOutputError("Backend response is not valid JSON", raw=raw, original_error=e) from e

    if not isinstance(parsed, dict):
        raise InvalidOutputError(
            f"Backend response must be a JSON object, got {type(parsed).__name__}", raw=raw
        )
    return parsed


class GenerativeGateway:
    """Issues validated JSON requests against the generative backend."""

    def __init__(
        self,
        client: JSONGenerator,
        timeout: float = 60.0,
        max_retries: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 4.0,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        """Initialize the gateway.

        Args:
            client: Provider client exposing ``generate_json``
            timeout: Default per-attempt timeout in seconds
            max_retries: Default retries after the first attempt
            base_delay: Backoff base in seconds
            max_delay: Backoff ceiling in seconds
            sleep: Awaitable sleep used between attempts
        """
        self.client = client
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    async def call(
        self,
        system_prompt: str,
        user_payload: Any,
        validator: Optional[Validator] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        temperature: Optional[float] = None,
        operation: str = "llm_call",
    ) -> Any:
        """Run one logical request.

        Args:
            system_prompt: Stage instructions
            user_payload: JSON-serializable payload sent as the user message
            validator: Pydantic model or callable applied to the parsed object
            timeout: Per-attempt timeout override in seconds
            max_retries: Retry count override
            temperature: Sampling temperature, provider default when None
            operation: Name used in log records

        Returns:
            The validated value, or the parsed dict when no validator is given

        Raises:
            InvalidOutputError: Response is not a single JSON object
            ContractValidationError: Validator rejected the object
            UpstreamUnavailableError: Transient failures exhausted all attempts
            APIClientError: Backend rejected the request
        """
        attempt_timeout = timeout if timeout is not None else self.timeout
        retries = self.max_retries if max_retries is None else max(0, max_retries)
        total_attempts = retries + 1

        system = f"{system_prompt.rstrip()}\n\n{JSON_ONLY_INSTRUCTION}"
        user_content = json.dumps(user_payload, ensure_ascii=False, default=str)

        last_error: Optional[Exception] = None
        for attempt in range(total_attempts):
            try:
                raw = await asyncio.wait_for(
                    self.client.generate_json(
                        system, user_content, temperature=temperature, timeout=attempt_timeout
                    ),
                    timeout=attempt_timeout,
                )
            except asyncio.TimeoutError as e:
                last_error = UpstreamTransientError(
                    f"{operation} timed out after {attempt_timeout}s", original_error=e
                )
            except UpstreamTransientError as e:
                last_error = e
            else:
                parsed = parse_json_object(raw)
                if validator is None:
                    return parsed
                return validate_contract(validator, parsed)

            LOGGER.warning(
                f"Transient failure in {operation} (attempt {attempt + 1}/{total_attempts})",
                extra={"operation": operation, "error": str(last_error)},
            )
            if attempt < total_attempts - 1:
                await self._sleep(self._backoff_delay(attempt))

        LOGGER.error(
            f"{operation} failed after {total_attempts} attempts",
            extra={"operation": operation, "error": str(last_error)},
        )
        raise UpstreamUnavailableError(
            f"{operation} unavailable after {total_attempts} attempts",
            attempts=total_attempts,
            original_error=last_error,
        ) from last_error

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter, capped at ``max_delay``."""
        delay = self.base_delay * (2 ** attempt) + random.uniform(0, MAX_JITTER_SECONDS)
        return min(delay, self.max_delay)
