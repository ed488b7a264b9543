"""Canonical visa codes and their catalog metadata."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from visa_advisor.schemas.facts import Purpose


class VisaCode(str, Enum):
    """Recognized visa categories after normalization."""

    B1 = "B1"
    B2 = "B2"
    F1 = "F1"
    M1 = "M1"
    J1 = "J1"
    H1B = "H1B"
    H2A = "H2A"
    H2B = "H2B"
    H3 = "H3"
    L1 = "L1"
    O1 = "O1"
    O2 = "O2"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"
    TN = "TN"
    E1 = "E1"
    E2 = "E2"
    E3 = "E3"
    I = "I"  # noqa: E741
    R1 = "R1"
    Q1 = "Q1"
    U = "U"
    T = "T"
    K1 = "K1"
    K3 = "K3"
    V = "V"
    IR1 = "IR1"
    CR1 = "CR1"
    F1_FAMILY = "F1_FAMILY"
    F2_FAMILY = "F2_FAMILY"
    F3_FAMILY = "F3_FAMILY"
    F4_FAMILY = "F4_FAMILY"
    FAMILY = "FAMILY"
    EB1A = "EB1A"
    EB1B = "EB1B"
    EB1C = "EB1C"
    EB2_NIW = "EB2_NIW"
    EB2_PERM = "EB2_PERM"
    EB3 = "EB3"
    EB4 = "EB4"
    EB5 = "EB5"
    DV = "DV"


@dataclass(frozen=True)
class VisaMeta:
    label: str
    group: str
    requires_sponsor: bool = False


def _meta(label: str, group: str, sponsor: bool = False) -> VisaMeta:
    return VisaMeta(label=label, group=group, requires_sponsor=sponsor)


VISA_CATALOG: Dict[VisaCode, VisaMeta] = {
    VisaCode.B1: _meta("B-1 (Business Visitor)", "visitor"),
    VisaCode.B2: _meta("B-2 (Tourist Visitor)", "visitor"),
    VisaCode.F1: _meta("F-1 (Academic Student)", "study"),
    VisaCode.M1: _meta("M-1 (Vocational Student)", "study"),
    VisaCode.J1: _meta("J-1 (Exchange Visitor)", "exchange", True),
    VisaCode.H1B: _meta("H-1B (Specialty Occupation)", "work", True),
    VisaCode.H2A: _meta("H-2A (Temporary Agricultural Worker)", "work", True),
    VisaCode.H2B: _meta("H-2B (Temporary Non-agricultural Worker)", "work", True),
    VisaCode.H3: _meta("H-3 (Trainee)", "work", True),
    VisaCode.L1: _meta("L-1 (Intracompany Transferee)", "work", True),
    VisaCode.O1: _meta("O-1 (Extraordinary Ability)", "work", True),
    VisaCode.O2: _meta("O-2 (Essential Support Personnel)", "work", True),
    VisaCode.P1: _meta("P-1 (Recognized Athlete or Entertainment Group)", "work", True),
    VisaCode.P2: _meta("P-2 (Reciprocal Exchange Artist)", "work", True),
    VisaCode.P3: _meta("P-3 (Culturally Unique Artist)", "work", True),
    VisaCode.P4: _meta("P-4 (Dependent of P Visa Holder)", "work", True),
    VisaCode.TN: _meta("TN (USMCA Professional)", "work", True),
    VisaCode.E1: _meta("E-1 (Treaty Trader)", "business"),
    VisaCode.E2: _meta("E-2 (Treaty Investor)", "investment"),
    VisaCode.E3: _meta("E-3 (Australian Specialty Occupation)", "work", True),
    VisaCode.I: _meta("I (Representative of Foreign Media)", "media"),
    VisaCode.R1: _meta("R-1 (Religious Worker)", "work", True),
    VisaCode.Q1: _meta("Q-1 (International Cultural Exchange)", "exchange", True),
    VisaCode.U: _meta("U (Crime Victim)", "humanitarian"),
    VisaCode.T: _meta("T (Victim of Trafficking)", "humanitarian"),
    VisaCode.K1: _meta("K-1 (Fiance(e) of U.S. Citizen)", "family", True),
    VisaCode.K3: _meta("K-3 (Nonimmigrant Spouse, bridge)", "family", True),
    VisaCode.V: _meta("V (Spouse or Child of LPR, bridge)", "family", True),
    VisaCode.IR1: _meta("IR-1 (Spouse of U.S. Citizen)", "family", True),
    VisaCode.CR1: _meta("CR-1 (Conditional Spouse of U.S. Citizen)", "family", True),
    VisaCode.F1_FAMILY: _meta("F1 family preference (Unmarried children of citizens)", "family", True),
    VisaCode.F2_FAMILY: _meta("F2 family preference (Spouses and children of LPRs)", "family", True),
    VisaCode.F3_FAMILY: _meta("F3 family preference (Married children of citizens)", "family", True),
    VisaCode.F4_FAMILY: _meta("F4 family preference (Siblings of citizens)", "family", True),
    VisaCode.FAMILY: _meta("Family-based immigration", "family", True),
    VisaCode.EB1A: _meta("EB-1A (Extraordinary Ability)", "immigrant_employment"),
    VisaCode.EB1B: _meta("EB-1B (Outstanding Researcher/Professor)", "immigrant_employment", True),
    VisaCode.EB1C: _meta("EB-1C (Multinational Manager/Executive)", "immigrant_employment", True),
    VisaCode.EB2_NIW: _meta("EB-2 NIW (National Interest Waiver)", "immigrant_employment"),
    VisaCode.EB2_PERM: _meta("EB-2 (PERM)", "immigrant_employment", True),
    VisaCode.EB3: _meta("EB-3 (Skilled/Professional/Other Worker)", "immigrant_employment", True),
    VisaCode.EB4: _meta("EB-4 (Special Immigrant)", "immigrant_employment"),
    VisaCode.EB5: _meta("EB-5 (Immigrant Investor)", "investment"),
    VisaCode.DV: _meta("DV (Diversity Visa Lottery)", "lottery"),
}

KNOWN_CODES: FrozenSet[str] = frozenset(code.value for code in VisaCode)

SPONSOR_REQUIRED: FrozenSet[VisaCode] = frozenset(
    code for code, meta in VISA_CATALOG.items() if meta.requires_sponsor
)

# Non-binding steer for the classifier prompt
PURPOSE_VISA_HINTS: Dict[Purpose, List[VisaCode]] = {
    Purpose.STUDY: [VisaCode.F1, VisaCode.M1, VisaCode.J1, VisaCode.B2, VisaCode.F1_FAMILY],
    Purpose.WORK: [
        VisaCode.EB2_NIW, VisaCode.O1, VisaCode.H1B, VisaCode.L1, VisaCode.EB1A,
        VisaCode.EB2_PERM, VisaCode.EB3, VisaCode.E2, VisaCode.TN, VisaCode.E3, VisaCode.B1,
    ],
    Purpose.BUSINESS: [
        VisaCode.E1, VisaCode.E2, VisaCode.B1, VisaCode.L1, VisaCode.EB5, VisaCode.O1, VisaCode.H1B,
    ],
    Purpose.TOURISM: [VisaCode.B2, VisaCode.B1, VisaCode.F1_FAMILY],
    Purpose.IMMIGRATION: [
        VisaCode.EB2_NIW, VisaCode.EB5, VisaCode.EB1A, VisaCode.DV, VisaCode.FAMILY,
        VisaCode.IR1, VisaCode.CR1, VisaCode.EB2_PERM, VisaCode.EB3, VisaCode.E2,
    ],
}


def requires_sponsor(code: VisaCode) -> bool:
    return VisaCode(code) in SPONSOR_REQUIRED


def visa_label(code: VisaCode) -> str:
    return VISA_CATALOG[VisaCode(code)].label


def visa_group(code: VisaCode) -> str:
    return VISA_CATALOG[VisaCode(code)].group


def purpose_hints(purpose: Optional[Purpose]) -> List[VisaCode]:
    if purpose is None:
        return []
    return list(PURPOSE_VISA_HINTS.get(Purpose(purpose), []))


def catalog_entries() -> List[Dict[str, object]]:
    """Flat catalog for API consumers."""
    return [
        {
            "code": code.value,
            "label": meta.label,
            "group": meta.group,
            "requires_sponsor": meta.requires_sponsor,
        }
        for code, meta in VISA_CATALOG.items()
    ]
