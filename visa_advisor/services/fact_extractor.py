"""Stage 1: structured fact extraction from the applicant narrative.

The backend output is sanitized (nulls stripped, numbers/booleans/years
coerced, purpose synonyms normalized) before it is validated against
:class:`Facts`. A keyword heuristic supplies a purpose hint that overrides
the model when it points at a higher-priority purpose.
"""

import re
from typing import Any, Callable, Dict, Optional, Tuple

from visa_advisor.core.exceptions import InputTooShortError
from visa_advisor.core.gateway import GenerativeGateway
from visa_advisor.prompts.system_prompts import FACTS_EXTRACTION_PROMPT, PROMPT_VERSION
from visa_advisor.schemas.facts import PURPOSE_PRIORITY, Facts, Purpose
from visa_advisor.utils.contracts import (
    as_dict,
    collapse_whitespace,
    fold,
    strip_nulls,
    to_bool,
    to_number,
    to_str,
    to_string_list,
    to_years,
)
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Checked in priority order; the first purpose with a hit wins
PURPOSE_KEYWORDS: Tuple[Tuple[Purpose, Tuple[str, ...]], ...] = (
    (
        Purpose.IMMIGRATION,
        (
            "morar nos estados unidos", "mudar de pais", "mudar para os eua", "migrar",
            "migracao", "imigrar", "imigracao", "residencia permanente", "green card",
            "ajuste de status", "residente permanente", "permanent resident",
            "permanent residency", "immigrate", "immigration", "move to the us",
            "move to the united states", "live in the united states", "adjustment of status",
        ),
    ),
    (
        Purpose.STUDY,
        (
            "estudar", "estudo", "curso", "faculdade", "universidade", "college", "escola",
            "matricula", "f-1", "f1", "i-20", "i20", "student visa", "language school",
            "mestrado", "doutorado", "phd", "graduacao", "bachelor", "undergrad", "campus",
            "study", "studies", "university", "master's degree", "enroll",
        ),
    ),
    (
        Purpose.WORK,
        (
            "trabalhar", "trabalho", "emprego", "empregador", "job offer", "oferta de trabalho",
            "contrato de trabalho", "h-1b", "h1b", "l-1", "l1", "o-1", "o1", "employer",
            "employment", "work visa",
        ),
    ),
    (
        Purpose.BUSINESS,
        (
            "negocio", "negocios", "reuniao", "feira", "conference", "meeting",
            "visita a clientes", "b-1", "b1", "workshop corporativo", "treinamento corporativo",
            "business trip", "trade show", "client visit",
        ),
    ),
    (
        Purpose.TOURISM,
        (
            "turismo", "turista", "passear", "visitar", "lazer", "parques", "museus",
            "sightseeing", "b-2", "b2", "holiday", "vacation", "tourism", "theme park",
        ),
    ),
)

_KEYWORD_PATTERNS = tuple(
    (purpose, re.compile("|".join(rf"(?<![a-z0-9]){re.escape(term)}" for term in terms)))
    for purpose, terms in PURPOSE_KEYWORDS
)

PURPOSE_SYNONYMS: Dict[str, Purpose] = {
    "study": Purpose.STUDY,
    "estudante": Purpose.STUDY,
    "estudo": Purpose.STUDY,
    "curso": Purpose.STUDY,
    "faculdade": Purpose.STUDY,
    "universidade": Purpose.STUDY,
    "college": Purpose.STUDY,
    "escola": Purpose.STUDY,
    "work": Purpose.WORK,
    "trabalho": Purpose.WORK,
    "trabalhar": Purpose.WORK,
    "emprego": Purpose.WORK,
    "business": Purpose.BUSINESS,
    "negocios": Purpose.BUSINESS,
    "reuniao": Purpose.BUSINESS,
    "meeting": Purpose.BUSINESS,
    "conference": Purpose.BUSINESS,
    "tourism": Purpose.TOURISM,
    "turista": Purpose.TOURISM,
    "turismo": Purpose.TOURISM,
    "viagem": Purpose.TOURISM,
    "visitar": Purpose.TOURISM,
    "lazer": Purpose.TOURISM,
    "immigration": Purpose.IMMIGRATION,
    "migracao": Purpose.IMMIGRATION,
    "imigracao": Purpose.IMMIGRATION,
    "imigrar": Purpose.IMMIGRATION,
    "mudar de pais": Purpose.IMMIGRATION,
    "morar nos estados unidos": Purpose.IMMIGRATION,
    "residencia permanente": Purpose.IMMIGRATION,
    "green card": Purpose.IMMIGRATION,
}

# Substring fallback, same priority as the keyword hint
_PURPOSE_SUBSTRINGS = (
    ("immigration", Purpose.IMMIGRATION),
    ("study", Purpose.STUDY),
    ("work", Purpose.WORK),
    ("business", Purpose.BUSINESS),
    ("tourism", Purpose.TOURISM),
)


def infer_purpose_hint(text: str) -> Optional[Purpose]:
    """Keyword-based purpose guess over folded text, or None."""
    folded = fold(text or "")
    for purpose, pattern in _KEYWORD_PATTERNS:
        if pattern.search(folded):
            return purpose
    return None


def normalize_purpose(value: Any) -> Optional[Purpose]:
    """Map Portuguese/English purpose variants onto :class:`Purpose`."""
    if isinstance(value, Purpose):
        return value
    if not isinstance(value, str):
        return None
    folded = collapse_whitespace(fold(value))
    if folded in PURPOSE_SYNONYMS:
        return PURPOSE_SYNONYMS[folded]
    for needle, purpose in _PURPOSE_SUBSTRINGS:
        if needle in folded:
            return purpose
    return None


def should_override_purpose(model_purpose: Optional[Purpose], hint: Optional[Purpose]) -> bool:
    """True when the hint outranks the model's purpose (missing counts as tourism)."""
    if hint is None or model_purpose == hint:
        return False
    return PURPOSE_PRIORITY[hint] > PURPOSE_PRIORITY[model_purpose or Purpose.TOURISM]


def _to_amount(value: Any) -> Optional[float]:
    number = to_number(value)
    return number if number is not None and number >= 0 else None


Coercers = Dict[str, Callable[[Any], Any]]

_PERSONAL_FIELDS: Coercers = {
    "full_name": to_str,
    "nationality": to_str,
    "country_of_birth": to_str,
    "date_of_birth": to_str,
}

_SIGNAL_BLOCKS: Dict[str, Coercers] = {
    "job_offer_details": {
        "position": to_str,
        "industry": to_str,
        "salary_usd_year": _to_amount,
        "employer_size": to_str,
        "is_multinational": to_bool,
    },
    "extraordinary_evidence": {
        "awards": to_string_list,
        "media_mentions": to_years,
        "conference_speaking": to_bool,
        "peer_review_jury": to_bool,
        "original_contributions": to_str,
    },
    "niw_prongs": {
        "national_importance": to_str,
        "well_positioned": to_str,
        "benefit_outweighs_labor_cert": to_str,
    },
    "perm_readiness": {
        "occupation": to_str,
        "degree_requirement": to_str,
        "prevailing_wage_level": to_str,
    },
    "treaty_eligible": {"e1": to_bool, "e2": to_bool},
    "immigration_history": {
        "overstay_or_violations": to_bool,
        "prior_us_visas": to_string_list,
    },
    "family_ties_us": {
        "immediate_relative_us_citizen": to_bool,
        "relative_us_lpr": to_bool,
        "relationship": to_str,
    },
    "entrepreneurship": {"owns_business": to_bool, "business_details": to_str},
}

_SIGNAL_FIELDS: Coercers = {
    "field_of_expertise": to_str,
    "has_job_offer": to_bool,
    "chargeability_country": to_str,
    "treaty_country": to_str,
    "investment_capacity_usd": _to_amount,
    "lawful_source_docs": to_bool,
    "multinational_experience_years": to_years,
    "portfolio_links": to_string_list,
    "english_level": to_str,
    "travel_history": to_string_list,
    "has_i20": to_bool,
    "has_funding": to_bool,
}


def _coerce_fields(source: Any, coercers: Coercers) -> Dict[str, Any]:
    source = as_dict(source)
    return {name: coerce(source.get(name)) for name, coerce in coercers.items()}


def sanitize_facts(data: Any) -> Dict[str, Any]:
    """Coerce a raw backend object into the facts shape.

    Unknown keys are dropped, values that cannot be coerced are omitted and
    the result never contains nulls or empty containers. ``purpose`` is
    normalized but may be absent.
    """
    data = as_dict(data)
    raw_signals = as_dict(data.get("signals"))

    signals = _coerce_fields(raw_signals, _SIGNAL_FIELDS)
    for block, coercers in _SIGNAL_BLOCKS.items():
        signals[block] = _coerce_fields(raw_signals.get(block), coercers)

    purpose = normalize_purpose(data.get("purpose"))
    sanitized = {
        "personal": _coerce_fields(data.get("personal"), _PERSONAL_FIELDS),
        "purpose": purpose.value if purpose else None,
        "education": to_str(data.get("education")),
        "work_experience_years": to_years(data.get("work_experience_years")),
        "has_us_sponsor": to_bool(data.get("has_us_sponsor")),
        "signals": signals,
    }
    return strip_nulls(sanitized)


class FactExtractor:
    """Extracts :class:`Facts` from a narrative through the gateway."""

    def __init__(
        self,
        gateway: GenerativeGateway,
        min_text_length: int = 20,
        timeout: float = 120.0,
    ):
        """Initialize the extractor.

        Args:
            gateway: Generative call gateway
            min_text_length: Minimum narrative length after whitespace collapse
            timeout: Per-attempt backend timeout in seconds
        """
        self.gateway = gateway
        self.min_text_length = min_text_length
        self.timeout = timeout

    async def extract(self, raw_text: str) -> Facts:
        """Extract facts from a narrative.

        Raises:
            InputTooShortError: Narrative below the minimum length, before any call
            ContractValidationError: Output has no usable purpose or bad shape
            UpstreamUnavailableError: Backend unavailable after retries
        """
        text = collapse_whitespace(raw_text or "")
        if len(text) < self.min_text_length:
            raise InputTooShortError(length=len(text), minimum=self.min_text_length)

        hint = infer_purpose_hint(text)
        payload = {
            "raw_text": text,
            "purpose_hint": hint.value if hint else None,
            "goal": "Extract objective facts and signals relevant to visa classification.",
            "prompt_version": PROMPT_VERSION,
        }

        def validate(data: Dict[str, Any]) -> Facts:
            sanitized = sanitize_facts(data)
            if "purpose" not in sanitized and hint is not None:
                sanitized["purpose"] = hint.value
            return Facts.model_validate(sanitized)

        facts: Facts = await self.gateway.call(
            FACTS_EXTRACTION_PROMPT,
            payload,
            validator=validate,
            timeout=self.timeout,
            temperature=0.2,
            operation="extract_facts",
        )

        if should_override_purpose(facts.purpose, hint):
            LOGGER.info(
                "Purpose overridden by keyword hint",
                extra={"model_purpose": facts.purpose.value, "hint": hint.value},
            )
            facts = facts.model_copy(update={"purpose": hint})

        LOGGER.info(
            "Facts extracted",
            extra={"purpose": facts.purpose.value, "has_signals": facts.signals is not None},
        )
        return facts
