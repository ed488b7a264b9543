"""Tests for stage 3 follow-up question generation."""

import pytest

from visa_advisor.core.exceptions import MissingPrerequisiteError, QuestionGenerationError
from visa_advisor.schemas.classification import VisaCandidate
from visa_advisor.schemas.facts import Facts
from visa_advisor.services.question_generator import (
    QuestionGenerator,
    build_known_flags,
    is_already_answered,
)
from visa_advisor.services.visa_catalog import VisaCode


def _b2_only():
    return [VisaCandidate(code=VisaCode.B2, confidence=0.9, raw_confidence=0.9, rationale="B2 - Tourism")]


def test_contain_rewrites_prefix_canonically():
    generator = QuestionGenerator(gateway=None)

    question = generator.contain(
        "[EB2 NIW / O-1]   Do you have expert letters?", {VisaCode.EB2_NIW, VisaCode.O1}
    )

    assert question.text == "[EB2_NIW/O1] Do you have expert letters?"
    assert question.codes == [VisaCode.EB2_NIW, VisaCode.O1]


@pytest.mark.parametrize(
    "text",
    [
        "[H1B] Do you have a job offer?",
        "[EB2_NIW/H1B] Shared question?",
        "[Golden] Where is your passport?",
        "Tell me about yourself.",
        "[EB2_NIW]   ",
    ],
)
def test_contain_rejects_uncontained_questions(text):
    assert QuestionGenerator(gateway=None).contain(text, {VisaCode.EB2_NIW, VisaCode.E2}) is None


def test_build_known_flags(sample_facts):
    flags = build_known_flags(sample_facts)

    assert flags["e2_invest_amount"] == 200000
    assert flags["eb5_budget"] == 200000
    assert flags["country_of_birth"] == "Brazil"
    assert flags["dv_eligible_hint"] is True
    assert flags["has_sponsor"] is False
    assert flags["o1_evidence"] is False
    assert flags["nationality"] == "brazil"


def test_is_already_answered_uses_flags():
    flags = {"e2_treaty_passport_country": "Brazil", "job_offer": True}

    assert is_already_answered("[E2] Which treaty country passport do you hold?", flags) is True
    assert is_already_answered("[H1B] Do you have a job offer from a U.S. employer?", flags) is True
    assert is_already_answered("[E2] Which treaty country passport do you hold?", {}) is False
    assert is_already_answered("[EB2_NIW] What is your proposed endeavor?", flags) is False


@pytest.mark.asyncio
async def test_generate_filters_then_pads_with_synthetic_questions(make_gateway, sample_facts, sample_classification):
    gateway = make_gateway(
        {
            "questions": [
                "[EB2_NIW] What is your proposed endeavor in the U.S.?",
                "[E2] How much do you plan to invest?",
                "[H1B] Do you have a US employer?",
                "Tell me about yourself.",
                "[O1] Have you received national awards?",
                "[eb2_niw] what is your proposed endeavor in the U.S.?",
                "[E2/O1] Do you have a business plan?",
                42,
            ]
        }
    )
    generator = QuestionGenerator(gateway, min_questions=5, max_questions=10)

    questions = await generator.generate(sample_facts, sample_classification.candidates)

    assert [q.text for q in questions[:3]] == [
        "[EB2_NIW] What is your proposed endeavor in the U.S.?",
        "[O1] Have you received national awards?",
        "[E2/O1] Do you have a business plan?",
    ]
    assert [q.synthetic for q in questions] == [False, False, False, True, True]
    assert all(q.text.startswith("[EB2_NIW] ") for q in questions[3:])


@pytest.mark.asyncio
async def test_generate_caps_at_maximum(make_gateway):
    gateway = make_gateway({"questions": [f"[B2] Question number {i}?" for i in range(12)]})
    generator = QuestionGenerator(gateway, min_questions=5, max_questions=10)

    questions = await generator.generate(Facts(purpose="tourism"), _b2_only())

    assert len(questions) == 10
    assert not any(q.synthetic for q in questions)


@pytest.mark.asyncio
async def test_single_candidate_reaches_minimum_from_static_tables(make_gateway):
    gateway = make_gateway({"questions": []})
    generator = QuestionGenerator(gateway, min_questions=5, max_questions=10, language="pt")

    questions = await generator.generate(Facts(purpose="tourism"), _b2_only())

    assert len(questions) == 5
    assert all(q.synthetic and q.codes == [VisaCode.B2] for q in questions)
    assert all(q.text.startswith("[B2] ") for q in questions)


@pytest.mark.asyncio
async def test_generate_raises_when_minimum_unreachable(make_gateway):
    gateway = make_gateway({"questions": []})
    generator = QuestionGenerator(gateway, min_questions=20, max_questions=20)

    with pytest.raises(QuestionGenerationError) as exc_info:
        await generator.generate(Facts(purpose="tourism"), _b2_only())

    assert exc_info.value.minimum == 20


@pytest.mark.asyncio
async def test_generate_requires_facts_and_candidates(sample_facts):
    generator = QuestionGenerator(gateway=None)

    with pytest.raises(MissingPrerequisiteError) as exc_info:
        await generator.generate(None, _b2_only())
    assert exc_info.value.missing_fields == ["extracted_facts"]

    with pytest.raises(MissingPrerequisiteError) as exc_info:
        await generator.generate(sample_facts, [])
    assert exc_info.value.missing_fields == ["classification"]
