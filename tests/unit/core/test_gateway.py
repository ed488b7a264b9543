"""Tests for the generative call gateway."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from visa_advisor.core.exceptions import (
    APIClientError,
    ContractValidationError,
    InvalidOutputError,
    UpstreamTransientError,
    UpstreamUnavailableError,
)
from visa_advisor.core.gateway import JSON_ONLY_INSTRUCTION, GenerativeGateway, parse_json_object


class _Answer(BaseModel):
    value: int


def _gateway(client, **kwargs) -> GenerativeGateway:
    return GenerativeGateway(client, sleep=AsyncMock(), **kwargs)


def test_parse_json_object_rejects_prose_and_arrays():
    with pytest.raises(InvalidOutputError):
        parse_json_object("Sure! Here is the JSON: {}")
    with pytest.raises(InvalidOutputError):
        parse_json_object("[1, 2]")

    assert parse_json_object('{"a": 1}') == {"a": 1}


@pytest.mark.asyncio
async def test_call_returns_validated_model_and_sends_payload_as_json():
    client = AsyncMock()
    client.generate_json.return_value = '{"value": 7}'
    gateway = _gateway(client)

    result = await gateway.call("Do the thing.", {"text": "olá"}, validator=_Answer, temperature=0.2)

    assert result == _Answer(value=7)
    system, user_content = client.generate_json.await_args.args
    assert system.endswith(JSON_ONLY_INSTRUCTION)
    assert user_content == '{"text": "olá"}'
    assert client.generate_json.await_args.kwargs["temperature"] == 0.2


@pytest.mark.asyncio
async def test_call_without_validator_returns_dict():
    client = AsyncMock()
    client.generate_json.return_value = '{"a": [1, 2]}'

    assert await _gateway(client).call("p", {}) == {"a": [1, 2]}


@pytest.mark.asyncio
async def test_transient_errors_are_retried_then_succeed():
    client = AsyncMock()
    client.generate_json.side_effect = [
        UpstreamTransientError("rate limited", status_code=429),
        '{"value": 1}',
    ]
    sleep = AsyncMock()
    gateway = GenerativeGateway(client, max_retries=2, sleep=sleep)

    result = await gateway.call("p", {}, validator=_Answer)

    assert result.value == 1
    assert client.generate_json.await_count == 2
    sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_retries_exhausted_raise_unavailable():
    client = AsyncMock()
    client.generate_json.side_effect = UpstreamTransientError("503", status_code=503)
    gateway = _gateway(client, max_retries=2)

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await gateway.call("p", {})

    assert exc_info.value.attempts == 3
    assert client.generate_json.await_count == 3


@pytest.mark.asyncio
async def test_timeout_counts_as_transient():
    async def slow(*args, **kwargs):
        await asyncio.sleep(1)
        return "{}"

    client = AsyncMock()
    client.generate_json.side_effect = slow
    gateway = _gateway(client, max_retries=0)

    with pytest.raises(UpstreamUnavailableError):
        await gateway.call("p", {}, timeout=0.01)


@pytest.mark.asyncio
async def test_invalid_json_is_not_retried():
    client = AsyncMock()
    client.generate_json.return_value = "not json"
    gateway = _gateway(client, max_retries=3)

    with pytest.raises(InvalidOutputError):
        await gateway.call("p", {})

    assert client.generate_json.await_count == 1


@pytest.mark.asyncio
async def test_contract_violation_is_not_retried():
    client = AsyncMock()
    client.generate_json.return_value = '{"value": "many"}'
    gateway = _gateway(client, max_retries=3)

    with pytest.raises(ContractValidationError):
        await gateway.call("p", {}, validator=_Answer)

    assert client.generate_json.await_count == 1


@pytest.mark.asyncio
async def test_client_errors_propagate_without_retry():
    client = AsyncMock()
    client.generate_json.side_effect = APIClientError("bad request")
    gateway = _gateway(client, max_retries=3)

    with pytest.raises(APIClientError):
        await gateway.call("p", {})

    assert client.generate_json.await_count == 1


def test_backoff_is_capped():
    gateway = GenerativeGateway(AsyncMock(), base_delay=1.0, max_delay=2.0)

    assert gateway._backoff_delay(5) == 2.0
    assert 0.5 <= GenerativeGateway(AsyncMock(), base_delay=0.5)._backoff_delay(0) <= 0.75


@pytest.mark.asyncio
async def test_attempt_timeout_is_forwarded_to_client():
    client = AsyncMock()
    client.generate_json.return_value = "{}"
    gateway = _gateway(client, timeout=60.0)

    await gateway.call("p", {}, timeout=120.0)
    assert client.generate_json.await_args.kwargs["timeout"] == 120.0

    await gateway.call("p", {})
    assert client.generate_json.await_args.kwargs["timeout"] == 60.0
