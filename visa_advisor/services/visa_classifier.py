"""Stage 2: visa classification.

Candidates proposed by the backend are resolved to canonical codes,
normalized, de-duplicated and reordered so options that need no U.S.
sponsor come first. The optional confidence floor only changes the
displayed confidence of the top candidate; ``raw_confidence`` keeps the
model's value.
"""

from typing import Any, Dict, List, Optional

from visa_advisor.core.exceptions import NoCandidatesError
from visa_advisor.core.gateway import GenerativeGateway
from visa_advisor.prompts.system_prompts import (
    LANGUAGE_NAMES,
    PROMPT_VERSION,
    VISA_CLASSIFICATION_PROMPT,
)
from visa_advisor.schemas.classification import Classification, VisaCandidate
from visa_advisor.schemas.facts import Facts
from visa_advisor.services.code_resolver import CanonicalCodeResolver, resolver as default_resolver
from visa_advisor.services.visa_catalog import VisaCode, purpose_hints, requires_sponsor
from visa_advisor.utils.contracts import as_dict, to_confidence, to_str
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

SPONSOR_TAG = "(requires sponsor)"


def _with_code_prefix(code: VisaCode, rationale: Optional[str]) -> str:
    text = rationale or code.value
    if not text.upper().startswith(code.value):
        text = f"{code.value} - {text}"
    return text


def _with_sponsor_tag(rationale: str) -> str:
    if SPONSOR_TAG in rationale.lower():
        return rationale
    return f"{rationale} {SPONSOR_TAG}"


def reorder_by_sponsor(candidates: List[VisaCandidate]) -> List[VisaCandidate]:
    """Independent candidates first, sponsor-required second, each by confidence."""
    independent = [c for c in candidates if not c.requires_sponsor]
    sponsored = [
        c.model_copy(update={"rationale": _with_sponsor_tag(c.rationale)})
        for c in candidates
        if c.requires_sponsor
    ]
    independent.sort(key=lambda c: c.confidence, reverse=True)
    sponsored.sort(key=lambda c: c.confidence, reverse=True)
    return independent + sponsored


class VisaClassifier:
    """Ranks visa candidates for a set of facts."""

    def __init__(
        self,
        gateway: GenerativeGateway,
        resolver: CanonicalCodeResolver = default_resolver,
        return_count: int = 6,
        floor_enabled: bool = True,
        floor: float = 0.8,
        timeout: float = 120.0,
        language: str = "en",
    ):
        """Initialize the classifier.

        Args:
            gateway: Generative call gateway
            resolver: Free-form to canonical code resolver
            return_count: Maximum candidates kept (clamped to 1..30)
            floor_enabled: Whether the top candidate's displayed confidence is floored
            floor: Minimum displayed confidence for the top candidate
            timeout: Per-attempt backend timeout in seconds
            language: Output language code for rationales
        """
        self.gateway = gateway
        self.resolver = resolver
        self.return_count = min(max(1, int(return_count)), 30)
        self.floor_enabled = floor_enabled
        self.floor = floor
        self.timeout = timeout
        self.language = language

    def sanitize(self, data: Dict[str, Any]) -> Classification:
        """Turn a raw backend object into a :class:`Classification`.

        Raises:
            NoCandidatesError: If no candidate resolves to a known code
        """
        raw_items = data.get("candidates")
        if not isinstance(raw_items, list):
            raw_items = []

        resolved: List[VisaCandidate] = []
        for item in raw_items:
            item = as_dict(item)
            code = self.resolver.resolve(item.get("visa") or item.get("code"))
            if code is None:
                continue
            confidence = to_confidence(item.get("confidence"))
            resolved.append(
                VisaCandidate(
                    code=code,
                    confidence=confidence,
                    raw_confidence=confidence,
                    rationale=_with_code_prefix(code, to_str(item.get("rationale"))),
                    requires_sponsor=requires_sponsor(code),
                )
            )

        if not resolved:
            LOGGER.warning(
                "Classifier returned no resolvable candidates",
                extra={"raw_count": len(raw_items)},
            )
            raise NoCandidatesError("No resolvable visa candidates in classifier output")

        ranked = self.resolver.dedup_and_rank(resolved)[: self.return_count]
        candidates = reorder_by_sponsor(ranked)

        selected = self.resolver.resolve(data.get("selected"))
        if selected not in {c.code for c in candidates}:
            selected = candidates[0].code

        floor_applied = False
        if self.floor_enabled and candidates[0].confidence < self.floor:
            candidates[0] = candidates[0].model_copy(update={"confidence": self.floor})
            floor_applied = True

        return Classification(
            candidates=candidates,
            selected=selected,
            floor_applied=floor_applied,
            rules_version=self.resolver.version,
        )

    async def classify(self, facts: Facts) -> Classification:
        """Classify facts into ranked visa candidates.

        Raises:
            NoCandidatesError: Zero resolvable candidates
            InvalidOutputError: Backend output is not a JSON object
            UpstreamUnavailableError: Backend unavailable after retries
        """
        hints = purpose_hints(facts.purpose)
        system_prompt = VISA_CLASSIFICATION_PROMPT.format(
            count=self.return_count,
            known_codes=", ".join(code.value for code in VisaCode),
            hints=", ".join(code.value for code in hints) or "none",
        )
        payload = {
            "facts": facts.to_document(),
            "purpose_hint_codes": [code.value for code in hints],
            "return_count": self.return_count,
            "language": LANGUAGE_NAMES.get(self.language, "English"),
            "prompt_version": PROMPT_VERSION,
        }

        classification: Classification = await self.gateway.call(
            system_prompt,
            payload,
            validator=self.sanitize,
            timeout=self.timeout,
            temperature=0.2,
            operation="classify_visa",
        )

        LOGGER.info(
            "Visa classification complete",
            extra={
                "candidates": [c.code.value for c in classification.candidates],
                "selected": classification.selected.value if classification.selected else None,
                "floor_applied": classification.floor_applied,
            },
        )
        return classification
