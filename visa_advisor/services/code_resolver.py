"""Resolve free-form visa text to canonical codes.

Resolution applies ``RULES`` in order and stops at the first match. The
order encodes tie-breaks between overlapping patterns (family preference
before student F-1, EB-2 NIW before EB-2 PERM, CR-1 before IR-1, exchange
visitor before plain visitor) and is covered by tests; bump
``RULES_VERSION`` whenever the table changes.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Sequence, TypeVar

from visa_advisor.services.visa_catalog import KNOWN_CODES, VisaCode
from visa_advisor.utils.contracts import fold
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

RULES_VERSION = "2024.1"

CandidateT = TypeVar("CandidateT")


@dataclass(frozen=True)
class ResolutionRule:
    """Pattern applied to folded text; first match wins."""

    pattern: Pattern[str]
    code: VisaCode


def _rule(pattern: str, code: VisaCode) -> ResolutionRule:
    return ResolutionRule(pattern=re.compile(pattern), code=code)


RULES: Sequence[ResolutionRule] = (
    # Family preference categories share the "f1".."f4" tokens with student visas
    _rule(r"\bf ?1 ?family\b|family preference 1|unmarried (?:sons|children) .*citizens?", VisaCode.F1_FAMILY),
    _rule(r"\bf ?2 ?family\b|family preference 2|spouses? (?:and )?children of (?:an )?lprs?", VisaCode.F2_FAMILY),
    _rule(r"\bf ?3 ?family\b|family preference 3|married (?:sons|children) .*citizens?", VisaCode.F3_FAMILY),
    _rule(r"\bf ?4 ?family\b|family preference 4|siblings of (?:u ?s )?citizens?", VisaCode.F4_FAMILY),
    # Employment-based immigrant, most specific first. A bare "EB-1" names no
    # subcategory and stays unresolved.
    _rule(r"\beb ?1 ?a\b|extraordinary ability .*(?:immigrant|green card)", VisaCode.EB1A),
    _rule(r"\beb ?1 ?b\b|outstanding (?:researcher|professor)", VisaCode.EB1B),
    _rule(r"\beb ?1 ?c\b|multinational (?:manager|executive)", VisaCode.EB1C),
    _rule(r"\beb ?2 ?niw\b|\bniw\b|national interest waiver", VisaCode.EB2_NIW),
    _rule(r"\beb ?2\b|\beb2 ?perm\b|\bperm\b|labou?r certification", VisaCode.EB2_PERM),
    _rule(r"\beb ?3\b|skilled worker|other worker", VisaCode.EB3),
    _rule(r"\beb ?4\b|special immigrant|religious .*immigrant", VisaCode.EB4),
    _rule(r"\beb ?5\b|immigrant investor|investor .*(?:immigrant|green card)|regional center", VisaCode.EB5),
    # Spouses and fiance(e)s of citizens
    _rule(r"\bcr ?1\b|conditional (?:resident )?spouse", VisaCode.CR1),
    _rule(r"\bir ?1\b|spouse of (?:a )?(?:u ?s )?citizen|conjuge .*cidada[oa]", VisaCode.IR1),
    _rule(r"\bk ?1\b|\bfiance", VisaCode.K1),
    _rule(r"\bk ?3\b", VisaCode.K3),
    _rule(r"^v\b|\bv ?visa\b|\bv ?[123]\b", VisaCode.V),
    # Students and exchange
    _rule(r"\bf ?1\b|academic student|student visa|\bi ?20\b", VisaCode.F1),
    _rule(r"\bm ?1\b|vocational student", VisaCode.M1),
    _rule(r"\bj ?1\b|exchange visitor|\bds ?2019\b", VisaCode.J1),
    # Temporary workers
    _rule(r"\be ?3\b|australian specialty occupation", VisaCode.E3),
    _rule(r"\bh ?1 ?b\b|specialty occupation", VisaCode.H1B),
    _rule(r"\bh ?2 ?b\b", VisaCode.H2B),
    _rule(r"\bh ?2 ?a\b|agricultural worker", VisaCode.H2A),
    _rule(r"\bh ?3\b|\btrainee\b", VisaCode.H3),
    _rule(r"\bl ?1 ?[ab]?\b|intra ?company transfer", VisaCode.L1),
    _rule(r"\bo ?1 ?[ab]?\b|extraordinary ability", VisaCode.O1),
    _rule(r"\bo ?2\b", VisaCode.O2),
    _rule(r"\bp ?1\b|\bathlete|entertainment (?:team|group)", VisaCode.P1),
    _rule(r"\bp ?2\b", VisaCode.P2),
    _rule(r"\bp ?3\b", VisaCode.P3),
    _rule(r"\bp ?4\b", VisaCode.P4),
    _rule(r"\btn\b|\busmca\b|\bnafta\b", VisaCode.TN),
    _rule(r"\be ?1\b|treaty trader", VisaCode.E1),
    _rule(r"\be ?2\b|treaty investor|investidor (?:de )?tratado", VisaCode.E2),
    _rule(r"\br ?1\b|religious worker", VisaCode.R1),
    _rule(r"\bq ?1\b|cultural exchange", VisaCode.Q1),
    _rule(r"\bi ?visa\b|\bforeign media\b|\bjournalist|\bimprensa\b", VisaCode.I),
    _rule(r"\bu ?visa\b|\bu ?1\b|victims? of (?:a )?crime|crime victim|vitima de crime", VisaCode.U),
    _rule(r"\bt ?visa\b|\bt ?1\b|traffick|trafico de pessoas", VisaCode.T),
    # Visitors; "b1 b2" resolves to tourist
    _rule(r"\bb ?1\b(?!.*\bb ?2\b)|business visitor", VisaCode.B1),
    _rule(r"\bb ?2\b|\btourist|\bvisitor\b", VisaCode.B2),
    # Lottery and the generic family bucket come last
    _rule(r"\bdv\b|diversity ?visa|\blottery\b|\bloteria\b", VisaCode.DV),
    _rule(r"family ?based|\bconjuge\b|\bespos[ao]\b|\bfilh[oa]s?\b|\birma[oa]s?\b|\bparentes?\b", VisaCode.FAMILY),
)


def normalize_label(text: str) -> str:
    """Fold case and diacritics, turn punctuation into single spaces."""
    return re.sub(r"[^a-z0-9]+", " ", fold(text)).strip()


class CanonicalCodeResolver:
    """Maps free-form visa text to :class:`VisaCode` values."""

    def __init__(self, rules: Sequence[ResolutionRule] = RULES, version: str = RULES_VERSION):
        self.rules = tuple(rules)
        self.version = version

    def resolve(self, freeform: object) -> Optional[VisaCode]:
        """Resolve free-form text, returning None when nothing matches.

        Args:
            freeform: Visa text as produced by the backend or a user

        Returns:
            The canonical code, or None for unrecognized input
        """
        if not isinstance(freeform, str):
            return None
        stripped = freeform.strip()
        if not stripped:
            return None

        normalized = normalize_label(stripped)
        for rule in self.rules:
            if rule.pattern.search(normalized):
                return rule.code

        direct = stripped.upper()
        if direct in KNOWN_CODES:
            return VisaCode(direct)

        simplified = re.sub(r"[\s\-]+", "_", direct).replace("(", "").replace(")", "")
        if simplified in KNOWN_CODES:
            return VisaCode(simplified)

        LOGGER.debug("Unresolvable visa label", extra={"label": stripped[:80]})
        return None

    @staticmethod
    def dedup_and_rank(
        candidates: Iterable[CandidateT],
        code_of=lambda c: c.code,
        confidence_of=lambda c: c.confidence,
    ) -> List[CandidateT]:
        """Keep the first candidate per code, then sort by descending confidence.

        The sort is stable so equal confidences keep their original order.
        """
        seen = set()
        unique = []
        for candidate in candidates:
            code = code_of(candidate)
            if code in seen:
                continue
            seen.add(code)
            unique.append(candidate)
        return sorted(unique, key=lambda c: confidence_of(c), reverse=True)


resolver = CanonicalCodeResolver()
