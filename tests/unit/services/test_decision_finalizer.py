"""Tests for stage 4 decision finalization."""

import pytest

from visa_advisor.core.exceptions import MissingPrerequisiteError
from visa_advisor.schemas.classification import Classification, VisaCandidate
from visa_advisor.schemas.decision import (
    ACTION_PLAN_MIN_STEPS,
    CHECKLIST_MIN_ITEMS,
    PATH_MIN_STEPS,
    NonQualifyingDecision,
    QualifyingDecision,
)
from visa_advisor.services.decision_finalizer import DecisionFinalizer, attach_url, normalize_entries
from visa_advisor.services.visa_catalog import VisaCode

QUESTIONS = ["[EB2_NIW] What is your proposed endeavor?"]
ANSWERS = ["Applied ML for rural healthcare"]

ACTION_PLAN = [
    "Gather evidence of publications and citations",
    "Collect recommendation letters from independent experts",
    "Write the proposed endeavor statement",
    "File Form I-140 with USCIS",
    "Pay the filing fee",
    "Wait for the receipt notice",
    "Respond to any request for evidence",
    "Complete the DS-160 form for dependents",
    "Schedule the consular interview",
    "Attend the interview with original documents",
]

CHECKLIST = [
    "Valid passport",
    "Diplomas and transcripts",
    "Curriculum vitae",
    "Publications list",
    "Citation report",
    "Expert letters",
    "Business plan for the endeavor",
    "Birth certificate",
]


def _weak_classification() -> Classification:
    # Displayed confidence floored to 0.8, raw model value 0.3
    return Classification(
        candidates=[
            VisaCandidate(code=VisaCode.B2, confidence=0.8, raw_confidence=0.3, rationale="B2 - Weak fit"),
        ],
        selected=VisaCode.B2,
        floor_applied=True,
        rules_version="2024.1",
    )


def test_attach_url_matches_keywords():
    assert attach_url("Fill out the DS-160 form") == "https://ceac.state.gov/genniv/"
    assert attach_url("Schedule the consular interview") == "https://www.ustraveldocs.com/"
    assert attach_url("File Form I-140 with USCIS") == "https://www.uscis.gov/forms"
    assert attach_url("Register for the DV lottery") == "https://dvlottery.state.gov/"
    assert attach_url("Update your resume") is None


def test_normalize_entries_accepts_strings_and_objects():
    entries = normalize_entries(
        [
            "Pay the visa fee",
            {"step": "Prepare documents", "url": "https://example.com/docs"},
            {"text": "Book the consulate interview", "url": "ftp://bad"},
            {"step": ""},
            None,
        ],
        "step",
    )

    assert entries == [
        {"step": "Pay the visa fee", "url": "https://www.ustraveldocs.com/"},
        {"step": "Prepare documents", "url": "https://example.com/docs"},
        {"step": "Book the consulate interview", "url": "https://www.ustraveldocs.com/"},
    ]


@pytest.mark.asyncio
async def test_qualifying_decision_from_valid_output(make_gateway, sample_facts, sample_classification):
    gateway = make_gateway(
        {
            "qualifies_for_visa": True,
            "selected_visa": "EB-2 NIW",
            "confidence": "78%",
            "rationale": "Strong research record",
            "top_visas": [
                {"visa": "EB2_NIW", "confidence": 0.78},
                {"visa": "H-1B", "confidence": 0.7},
                {"visa": "E-2", "confidence": 0.5},
            ],
            "action_plan": ACTION_PLAN,
            "documents_checklist": CHECKLIST,
            "risks_and_flags": ["Visa bulletin backlog for Brazil"],
        }
    )

    decision = await DecisionFinalizer(gateway).finalize(sample_facts, sample_classification, QUESTIONS, ANSWERS)

    assert isinstance(decision, QualifyingDecision)
    assert decision.reconstructed is False
    assert decision.selected_visa == VisaCode.EB2_NIW
    assert decision.confidence == 0.78
    assert [visa.code for visa in decision.top_visas] == [VisaCode.EB2_NIW, VisaCode.E2]
    assert decision.action_plan[3].url == "https://www.uscis.gov/forms"
    assert decision.action_plan[0].url is None
    assert len(decision.documents_checklist) == 8


@pytest.mark.asyncio
async def test_selected_visa_outside_candidates_is_reconstructed(make_gateway, sample_facts, sample_classification):
    gateway = make_gateway(
        {
            "selected_visa": "H-1B",
            "confidence": 0.9,
            "action_plan": ACTION_PLAN[:3],
        }
    )

    decision = await DecisionFinalizer(gateway).finalize(sample_facts, sample_classification, QUESTIONS, ANSWERS)

    assert isinstance(decision, QualifyingDecision)
    assert decision.reconstructed is True
    assert decision.selected_visa == VisaCode.EB2_NIW
    assert decision.rationale == "EB2_NIW - Advanced degree and national importance"
    assert [step.step for step in decision.action_plan[:3]] == ACTION_PLAN[:3]
    assert len(decision.action_plan) == ACTION_PLAN_MIN_STEPS
    assert len(decision.documents_checklist) == CHECKLIST_MIN_ITEMS
    assert [visa.code for visa in decision.top_visas] == [VisaCode.EB2_NIW, VisaCode.E2]


@pytest.mark.asyncio
async def test_branch_uses_raw_confidence_not_floored_display(make_gateway, sample_facts):
    steps = [f"Step {i}: build more evidence" for i in range(1, 9)]
    gateway = make_gateway(
        {
            "qualifies_for_visa": False,
            "rationale": "Profile is not ready yet",
            "path_to_qualify": {"summary": "Build your record first", "steps": steps},
        }
    )

    decision = await DecisionFinalizer(gateway, min_confidence=0.4).finalize(
        sample_facts, _weak_classification(), [], []
    )

    assert isinstance(decision, NonQualifyingDecision)
    assert decision.qualifies_for_visa is False
    assert decision.reconstructed is False
    assert len(decision.path_to_qualify.steps) == 8
    assert decision.action_plan == []
    assert decision.documents_checklist == []


@pytest.mark.asyncio
async def test_invalid_non_qualifying_output_is_reconstructed_in_language(make_gateway, sample_facts):
    gateway = make_gateway({"path_to_qualify": {"steps": ["Melhorar o inglês", "Juntar economias"]}})

    decision = await DecisionFinalizer(gateway, language="pt").finalize(
        sample_facts, _weak_classification(), [], []
    )

    assert isinstance(decision, NonQualifyingDecision)
    assert decision.reconstructed is True
    assert decision.rationale
    assert decision.path_to_qualify.summary
    assert [step.step for step in decision.path_to_qualify.steps[:2]] == ["Melhorar o inglês", "Juntar economias"]
    assert len(decision.path_to_qualify.steps) == PATH_MIN_STEPS


@pytest.mark.asyncio
async def test_finalize_requires_facts_and_classification(sample_facts):
    finalizer = DecisionFinalizer(gateway=None)

    with pytest.raises(MissingPrerequisiteError) as exc_info:
        await finalizer.finalize(None, None, [], [])

    assert exc_info.value.missing_fields == ["extracted_facts", "classification"]
