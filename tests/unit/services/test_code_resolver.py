"""Tests for canonical visa code resolution."""

from types import SimpleNamespace

import pytest

from visa_advisor.services.code_resolver import RULES_VERSION, CanonicalCodeResolver, resolver
from visa_advisor.services.visa_catalog import VisaCode


@pytest.mark.parametrize(
    "label,expected",
    [
        ("EB-2 NIW", VisaCode.EB2_NIW),
        ("National Interest Waiver", VisaCode.EB2_NIW),
        ("EB-2", VisaCode.EB2_PERM),
        ("EB-5 Immigrant Investor", VisaCode.EB5),
        ("H-1B", VisaCode.H1B),
        ("O-1A", VisaCode.O1),
        ("E-2 Treaty Investor", VisaCode.E2),
        ("F-1", VisaCode.F1),
        ("F1 family", VisaCode.F1_FAMILY),
        ("CR-1", VisaCode.CR1),
        ("IR-1", VisaCode.IR1),
        ("K-1 fiancé", VisaCode.K1),
        ("J-1 Exchange Visitor", VisaCode.J1),
        ("B1/B2", VisaCode.B2),
        ("B-1", VisaCode.B1),
        ("Tourist visa", VisaCode.B2),
        ("DV Lottery", VisaCode.DV),
        ("Loteria de vistos", VisaCode.DV),
        ("eb2_niw", VisaCode.EB2_NIW),
    ],
)
def test_resolve_known_labels(label, expected):
    assert resolver.resolve(label) == expected


@pytest.mark.parametrize("label", ["", "   ", "golden passport", None, 42])
def test_resolve_unknown_returns_none(label):
    assert resolver.resolve(label) is None


def test_exchange_visitor_wins_over_plain_visitor():
    assert resolver.resolve("exchange visitor program") == VisaCode.J1


def test_dedup_and_rank_keeps_first_per_code_and_sorts_stably():
    candidates = [
        SimpleNamespace(code=VisaCode.E2, confidence=0.5),
        SimpleNamespace(code=VisaCode.EB5, confidence=0.7),
        SimpleNamespace(code=VisaCode.E2, confidence=0.9),
        SimpleNamespace(code=VisaCode.B2, confidence=0.5),
    ]

    ranked = CanonicalCodeResolver.dedup_and_rank(candidates)

    assert [(c.code, c.confidence) for c in ranked] == [
        (VisaCode.EB5, 0.7),
        (VisaCode.E2, 0.5),
        (VisaCode.B2, 0.5),
    ]


def test_resolver_exposes_rules_version():
    assert resolver.version == RULES_VERSION


@pytest.mark.parametrize("label", ["EB-1", "EB1", "eb 1"])
def test_unlettered_eb1_is_not_guessed(label):
    assert resolver.resolve(label) is None
    assert resolver.resolve(f"{label}A") == VisaCode.EB1A
