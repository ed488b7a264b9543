"""Provider clients for the generative backend.

Each client performs exactly one attempt per call and translates provider
failures into the pipeline taxonomy:

* timeouts, transport errors, 408/409/425/429 and 5xx raise
  :class:`UpstreamTransientError`;
* any other 4xx raises :class:`APIClientError`;
* a response without message content raises :class:`InvalidOutputError`.

Retrying is the gateway's job, not the client's. The gateway passes each
attempt's timeout down to the transport.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from visa_advisor.core.exceptions import (
    APIClientError,
    ConfigurationError,
    InvalidOutputError,
    UpstreamTransientError,
)
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429})


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


class LLMProvider(str, Enum):
    """Supported generative backends."""

    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"


class BaseLLMClient:
    """HTTP transport shared by OpenAI-compatible providers."""

    def __init__(self, api_key: str, base_url: str, timeout: float = 60):
        """Initialize the transport.

        Args:
            api_key: API key for bearer authentication
            base_url: Full chat completions endpoint
            timeout: Per-request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.logger = LOGGER

    async def call_api(
        self,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload once and return the decoded envelope.

        Args:
            payload: Request body
            headers: Extra headers merged over the defaults
            timeout: Timeout for this request, the client default when None

        Raises:
            UpstreamTransientError: On timeouts, transport errors and retryable statuses
            APIClientError: On non-retryable HTTP errors or an unreadable envelope
        """
        request_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        request_timeout = self.timeout if timeout is None else timeout
        self.logger.debug(f"Calling LLM API: {self.base_url}", extra={"timeout": request_timeout})

        try:
            async with httpx.AsyncClient(timeout=request_timeout) as client:
                response = await client.post(self.base_url, headers=request_headers, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._raise_for_status_error(e)
        except httpx.TimeoutException as e:
            self.logger.warning("LLM API timeout", extra={"url": self.base_url})
            raise UpstreamTransientError("LLM API timed out", original_error=e) from e
        except httpx.TransportError as e:
            self.logger.warning("LLM API transport error", extra={"url": self.base_url, "error": str(e)})
            raise UpstreamTransientError(f"LLM API transport error: {e}", original_error=e) from e

        try:
            return response.json()
        except ValueError as e:
            raise APIClientError("LLM API returned an unreadable envelope", original_error=e) from e

    def _raise_for_status_error(self, error: httpx.HTTPStatusError) -> None:
        status_code = error.response.status_code
        error_body = error.response.text[:500]

        self.logger.warning(
            "LLM API HTTP error",
            extra={"url": self.base_url, "status_code": status_code, "error_body": error_body},
        )

        if is_retryable_status(status_code):
            raise UpstreamTransientError(
                f"LLM API returned {status_code}", status_code=status_code, original_error=error
            ) from error
        raise APIClientError(f"LLM API client error {status_code}: {error_body}", original_error=error) from error


class ChatCompletionsClient:
    """OpenAI-compatible chat completions client (OpenAI, OpenRouter)."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        timeout: float = 60,
        extra_headers: Optional[Dict[str, str]] = None,
    ):
        self.model = model
        self.extra_headers = extra_headers or {}
        self.client = BaseLLMClient(api_key=api_key, base_url=base_url, timeout=timeout)

        LOGGER.info(f"Initialized chat completions client with model {self.model}")

    async def generate_json(
        self,
        system_prompt: str,
        user_content: str,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Request a single JSON object and return the raw message text."""
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "response_format": {"type": "json_object"},
        }
        if temperature is not None:
            payload["temperature"] = temperature

        response = await self.client.call_api(payload=payload, headers=self.extra_headers, timeout=timeout)

        choices = response.get("choices") or []
        if not choices:
            raise InvalidOutputError("LLM response has no choices", raw=str(response)[:500])

        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str) or not content.strip():
            raise InvalidOutputError("LLM response has empty message content", raw=str(response)[:500])
        return content


class GeminiClient:
    """Google Gemini client using the async google-genai SDK."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash", timeout: float = 60):
        self.model = model
        self.timeout = timeout
        self.client = genai.Client(api_key=api_key)

        LOGGER.info(f"Initialized Gemini client with model {self.model}")

    async def generate_json(
        self,
        system_prompt: str,
        user_content: str,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Request a single JSON object and return the raw response text."""
        request_timeout = self.timeout if timeout is None else timeout
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            response_mime_type="application/json",
            http_options=types.HttpOptions(timeout=int(request_timeout * 1000)),
        )
        if temperature is not None:
            config.temperature = temperature

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=user_content,
                config=config,
            )
        except genai_errors.APIError as e:
            status_code = getattr(e, "code", None) or 0
            LOGGER.warning("Gemini API error", extra={"status_code": status_code, "error": str(e)})
            if isinstance(e, genai_errors.ServerError) or is_retryable_status(status_code):
                raise UpstreamTransientError(
                    f"Gemini returned {status_code}", status_code=status_code, original_error=e
                ) from e
            raise APIClientError(f"Gemini client error {status_code}: {e}", original_error=e) from e
        except httpx.TimeoutException as e:
            raise UpstreamTransientError("Gemini request timed out", original_error=e) from e
        except httpx.TransportError as e:
            raise UpstreamTransientError(f"Gemini transport error: {e}", original_error=e) from e

        text = response.text
        if not text or not text.strip():
            raise InvalidOutputError("Empty response from Gemini")
        return text


class UnifiedLLMClient:
    """Provider-agnostic facade over the concrete clients."""

    def __init__(
        self,
        provider: Union[str, LLMProvider],
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: float = 60,
    ):
        """Initialize the unified client.

        Args:
            provider: "openai", "openrouter" or "gemini"
            api_key: API key for the provider
            model: Model name
            base_url: Chat completions endpoint (OpenAI-compatible providers)
            timeout: Per-request timeout in seconds
        """
        self.provider = LLMProvider(provider)
        self.model = model

        if self.provider == LLMProvider.GEMINI:
            self.client = GeminiClient(api_key=api_key, model=model, timeout=timeout)
        else:
            if not base_url:
                raise ConfigurationError(f"base_url required for provider '{self.provider.value}'")
            headers = {"X-Title": "visa-advisor"} if self.provider == LLMProvider.OPENROUTER else None
            self.client = ChatCompletionsClient(
                api_key=api_key,
                model=model,
                base_url=base_url,
                timeout=timeout,
                extra_headers=headers,
            )

        LOGGER.info(f"Unified LLM client ready: provider={self.provider.value}, model={model}")

    async def generate_json(
        self,
        system_prompt: str,
        user_content: str,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        return await self.client.generate_json(
            system_prompt=system_prompt,
            user_content=user_content,
            temperature=temperature,
            timeout=timeout,
        )


def create_llm_client_from_settings(llm_settings: Any) -> UnifiedLLMClient:
    """Create a unified client from :class:`LLMSettings`.

    Raises:
        ConfigurationError: If the provider is unknown or its API key is missing
    """
    try:
        provider = LLMProvider(llm_settings.provider)
    except ValueError as e:
        raise ConfigurationError(f"Unsupported LLM provider: {llm_settings.provider}", original_error=e) from e

    if provider == LLMProvider.OPENAI:
        api_key, model, base_url, env_name = (
            llm_settings.openai_api_key, llm_settings.openai_model, llm_settings.openai_api_url, "OPENAI_API_KEY"
        )
    elif provider == LLMProvider.OPENROUTER:
        api_key, model, base_url, env_name = (
            llm_settings.openrouter_api_key,
            llm_settings.openrouter_model,
            llm_settings.openrouter_api_url,
            "OPENROUTER_API_KEY",
        )
    else:
        api_key, model, base_url, env_name = (
            llm_settings.gemini_api_key, llm_settings.gemini_model, None, "GEMINI_API_KEY"
        )

    if not api_key or not api_key.strip():
        raise ConfigurationError(
            f"API key required when provider='{provider.value}'. "
            f"Please set {env_name} environment variable."
        )

    return UnifiedLLMClient(
        provider=provider,
        api_key=api_key.strip(),
        model=model,
        base_url=base_url,
        timeout=llm_settings.timeout_seconds,
    )
