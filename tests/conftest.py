"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-for-hs256-signing-0123456789")
os.environ.setdefault("AUTH_JWT_AUDIENCE", "authenticated")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")

import json
import time
from typing import Any, Callable, Dict, List, Union
from unittest.mock import AsyncMock

import jwt
import pytest
from fastapi.testclient import TestClient

from visa_advisor.core.config import settings
from visa_advisor.core.gateway import GenerativeGateway
from visa_advisor.main import app
from visa_advisor.schemas.classification import Classification, VisaCandidate
from visa_advisor.schemas.facts import Facts
from visa_advisor.services.visa_catalog import VisaCode

Reply = Union[str, Dict[str, Any], Exception]


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    The lifespan is not entered, so no database or provider is touched.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Build HS256 tokens signed with the configured secret."""

    def _make(sub: str = "user-123", expires_in: int = 3600, **claims: Any) -> str:
        now = int(time.time())
        payload = {
            "sub": sub,
            "aud": settings.auth.jwt_audience,
            "iat": now,
            "exp": now + expires_in,
            "email": f"{sub}@example.com",
            **claims,
        }
        return jwt.encode(payload, settings.auth.jwt_secret, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def make_gateway() -> Callable[..., GenerativeGateway]:
    """Gateway over a fake provider replying with the given outputs in order.

    Dicts are serialized to JSON, strings are returned as-is and exceptions
    are raised from the provider call.
    """

    def _make(*replies: Reply, max_retries: int = 0) -> GenerativeGateway:
        effects: List[Any] = [
            json.dumps(reply) if isinstance(reply, dict) else reply for reply in replies
        ]
        client = AsyncMock()
        client.generate_json.side_effect = effects
        return GenerativeGateway(client, max_retries=max_retries, sleep=AsyncMock())

    return _make


@pytest.fixture
def sample_facts() -> Facts:
    return Facts.model_validate(
        {
            "personal": {"nationality": "Brazil"},
            "purpose": "immigration",
            "education": "Master's in Computer Science",
            "work_experience_years": 8,
            "signals": {
                "field_of_expertise": "machine learning",
                "chargeability_country": "Brazil",
                "investment_capacity_usd": 200000,
                "extraordinary_evidence": {"conference_speaking": True},
            },
        }
    )


@pytest.fixture
def sample_classification() -> Classification:
    return Classification(
        candidates=[
            VisaCandidate(
                code=VisaCode.EB2_NIW,
                confidence=0.8,
                raw_confidence=0.72,
                rationale="EB2_NIW - Advanced degree and national importance",
            ),
            VisaCandidate(
                code=VisaCode.E2,
                confidence=0.6,
                raw_confidence=0.6,
                rationale="E2 - Treaty country and investment funds",
            ),
            VisaCandidate(
                code=VisaCode.O1,
                confidence=0.5,
                raw_confidence=0.5,
                rationale="O1 - Conference speaking (requires sponsor)",
                requires_sponsor=True,
            ),
        ],
        selected=VisaCode.EB2_NIW,
        floor_applied=True,
        rules_version="2024.1",
    )
