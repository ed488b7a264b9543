"""Tests for stage 2 visa classification."""

import pytest

from visa_advisor.core.exceptions import NoCandidatesError
from visa_advisor.services.code_resolver import RULES_VERSION
from visa_advisor.services.visa_catalog import VisaCode
from visa_advisor.services.visa_classifier import SPONSOR_TAG, VisaClassifier


def _classifier(**kwargs) -> VisaClassifier:
    return VisaClassifier(gateway=None, **kwargs)


def test_sanitize_resolves_ranks_and_puts_independent_options_first():
    classification = _classifier(floor_enabled=False).sanitize(
        {
            "candidates": [
                {"visa": "H-1B", "confidence": 0.9, "rationale": "Job offer from US employer"},
                {"visa": "EB-2 NIW", "confidence": "70%", "rationale": "Advanced degree"},
                {"visa": "Golden passport", "confidence": 0.99},
                {"code": "E2", "confidence": 55, "rationale": "E2 - Treaty investor"},
            ],
            "selected": "H1B",
        }
    )

    assert classification.codes() == [VisaCode.EB2_NIW, VisaCode.E2, VisaCode.H1B]
    assert [c.confidence for c in classification.candidates] == [0.7, 0.55, 0.9]
    assert classification.candidates[0].rationale == "EB2_NIW - Advanced degree"
    assert classification.candidates[1].rationale == "E2 - Treaty investor"
    assert classification.candidates[2].rationale.endswith(SPONSOR_TAG)
    assert classification.candidates[2].requires_sponsor is True
    assert classification.selected == VisaCode.H1B
    assert classification.rules_version == RULES_VERSION
    assert classification.floor_applied is False


def test_sanitize_keeps_first_duplicate_and_truncates():
    classification = _classifier(return_count=2, floor_enabled=False).sanitize(
        {
            "candidates": [
                {"visa": "E-2", "confidence": 0.4},
                {"visa": "EB-5", "confidence": 0.6},
                {"visa": "E2", "confidence": 0.95},
                {"visa": "B-2", "confidence": 0.3},
            ]
        }
    )

    assert classification.codes() == [VisaCode.EB5, VisaCode.E2]
    assert classification.selected == VisaCode.EB5


def test_floor_raises_displayed_confidence_of_top_candidate_only():
    classification = _classifier(floor=0.8).sanitize(
        {
            "candidates": [
                {"visa": "EB-2 NIW", "confidence": 0.45},
                {"visa": "E-2", "confidence": 0.3},
            ]
        }
    )

    top, second = classification.candidates
    assert classification.floor_applied is True
    assert top.confidence == 0.8
    assert top.raw_confidence == 0.45
    assert second.confidence == 0.3
    assert classification.best_raw_confidence == 0.45


def test_floor_not_applied_when_top_is_already_confident():
    classification = _classifier(floor=0.8).sanitize({"candidates": [{"visa": "EB-5", "confidence": 0.9}]})

    assert classification.floor_applied is False
    assert classification.candidates[0].confidence == 0.9


def test_selected_outside_candidates_falls_back_to_top():
    classification = _classifier(floor_enabled=False).sanitize(
        {"candidates": [{"visa": "B-2", "confidence": 0.6}], "selected": "EB-5"}
    )

    assert classification.selected == VisaCode.B2


@pytest.mark.parametrize(
    "data",
    [
        {"candidates": []},
        {"candidates": [{"visa": "unknown thing", "confidence": 1}]},
        {"candidates": "EB-5"},
        {},
    ],
)
def test_no_resolvable_candidates_raises(data):
    with pytest.raises(NoCandidatesError):
        _classifier().sanitize(data)


def test_return_count_is_clamped():
    assert _classifier(return_count=0).return_count == 1
    assert _classifier(return_count=100).return_count == 30


@pytest.mark.asyncio
async def test_classify_calls_backend_with_purpose_hints(make_gateway, sample_facts):
    gateway = make_gateway(
        {
            "candidates": [
                {"visa": "EB2 NIW", "confidence": 0.72, "rationale": "ML researcher"},
                {"visa": "EB5", "confidence": 0.5, "rationale": "Investment capacity"},
            ],
            "selected": "EB2_NIW",
        }
    )
    classifier = VisaClassifier(gateway)

    classification = await classifier.classify(sample_facts)

    assert classification.selected == VisaCode.EB2_NIW
    assert classification.candidates[0].confidence == 0.8
    system_prompt, user_content = gateway.client.generate_json.await_args.args
    assert "EB2_NIW" in system_prompt
    assert '"purpose_hint_codes": ["EB2_NIW"' in user_content
