"""Stage 4: final decision.

The branch is chosen from the best *raw* candidate confidence, so the
classifier's display floor never promotes a weak case. Below
``min_confidence`` the applicant gets a path to qualify instead of a visa.

When the backend output fails the decision schema, a decision of the same
branch is reconstructed from whatever the raw object holds, completed with
static defaults, and flagged ``reconstructed``.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from visa_advisor.core.exceptions import ContractValidationError, MissingPrerequisiteError
from visa_advisor.core.gateway import GenerativeGateway
from visa_advisor.prompts.system_prompts import (
    DECISION_NON_QUALIFYING_PROMPT,
    DECISION_QUALIFYING_PROMPT,
    LANGUAGE_NAMES,
    OFFICIAL_LINKS,
    PROMPT_VERSION,
    Localized,
)
from visa_advisor.schemas.classification import Classification
from visa_advisor.schemas.decision import (
    ACTION_PLAN_MAX_STEPS,
    ACTION_PLAN_MIN_STEPS,
    CHECKLIST_MAX_ITEMS,
    CHECKLIST_MIN_ITEMS,
    MAX_TOP_VISAS,
    PATH_MAX_STEPS,
    PATH_MIN_STEPS,
    Decision,
    NonQualifyingDecision,
    QualifyingDecision,
)
from visa_advisor.schemas.facts import Facts
from visa_advisor.services.code_resolver import CanonicalCodeResolver, resolver as default_resolver
from visa_advisor.services.visa_catalog import VisaCode
from visa_advisor.utils.contracts import as_dict, fold, to_confidence, to_str, to_string_list
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

# First match wins; matched against folded step text
STEP_LINK_KEYWORDS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"ds-?160|formulario nao imigrante|nonimmigrant visa application"), "https://ceac.state.gov/genniv/"),
    (
        re.compile(r"agendar|entrevista|consulado|embaixada|ustraveldocs|interview|consulate|embassy"),
        "https://www.ustraveldocs.com/",
    ),
    (re.compile(r"uscis|i-130|i-140|i-485|i-129|i-526"), "https://www.uscis.gov/forms"),
    (re.compile(r"ceac|nvc|imigrante|immigrant visa|national visa center"), "https://ceac.state.gov/"),
    (re.compile(r"diversity|dv lottery|loteria"), "https://dvlottery.state.gov/"),
    (re.compile(r"taxa|\bfees?\b|pagamento|payment|mrv"), "https://www.ustraveldocs.com/"),
)

DEFAULT_RATIONALE = Localized(
    "The current profile does not fit any visa closely enough. Follow the path below to prepare.",
    "Com o perfil atual não há um visto com adequação suficiente. Siga o caminho abaixo para se preparar.",
)

DEFAULT_PATH_SUMMARY = Localized(
    "Follow the steps below to strengthen your profile and qualify for a visa in the future.",
    "Siga as etapas abaixo para fortalecer seu perfil e um dia se qualificar a um visto.",
)

DEFAULT_PATH_STEPS: Tuple[Localized, ...] = (
    Localized(
        "Assess your English level with a recognized test and set a target score for the next 6 to 12 months.",
        "Avalie seu nível de inglês com um teste reconhecido e defina uma meta de pontuação para os próximos 6 a 12 meses.",
    ),
    Localized(
        "Document your education and professional experience with diplomas, transcripts and employer letters.",
        "Documente sua formação e experiência profissional com diplomas, históricos e cartas de empregadores.",
    ),
    Localized(
        "Build at least two years of verifiable experience in your field, keeping pay slips and contracts.",
        "Acumule ao menos dois anos de experiência comprovável na sua área, guardando holerites e contratos.",
    ),
    Localized(
        "Research U.S. employers in your field that sponsor work visas and apply for positions matching your profile.",
        "Pesquise empregadores nos EUA da sua área que patrocinam vistos de trabalho e candidate-se a vagas compatíveis.",
    ),
    Localized(
        "Evaluate study options that issue an I-20 and estimate tuition plus living costs for the full program.",
        "Avalie opções de estudo que emitem I-20 e estime mensalidade e custo de vida para todo o programa.",
    ),
    Localized(
        "Build savings and keep bank records that show the lawful origin of your funds.",
        "Forme uma reserva financeira e guarde extratos que comprovem a origem lícita dos recursos.",
    ),
    Localized(
        "Check each year whether your country of birth is eligible for the Diversity Visa lottery.",
        "Verifique todos os anos se seu país de nascimento é elegível para a loteria do Diversity Visa.",
    ),
    Localized(
        "Review your profile again in 12 months and consult an immigration attorney before filing any petition.",
        "Reavalie seu perfil em 12 meses e consulte um advogado de imigração antes de protocolar qualquer petição.",
    ),
)

DEFAULT_ACTION_PLAN: Tuple[Localized, ...] = (
    Localized(
        "Confirm your eligibility for the selected visa against the official requirements.",
        "Confirme sua elegibilidade para o visto escolhido com base nos requisitos oficiais.",
    ),
    Localized(
        "Gather identity documents, including a passport valid for at least six months beyond your stay.",
        "Reúna documentos de identidade, incluindo passaporte válido por pelo menos seis meses além da estadia.",
    ),
    Localized(
        "Collect evidence of education, experience and finances that supports your case.",
        "Reúna comprovantes de formação, experiência e finanças que sustentem seu caso.",
    ),
    Localized(
        "Check whether a USCIS petition is required for your category and who must file it.",
        "Verifique se é necessária petição no USCIS para sua categoria e quem deve protocolá-la.",
    ),
    Localized(
        "Complete the required application form online and keep the confirmation page.",
        "Preencha o formulário de solicitação exigido online e guarde a página de confirmação.",
    ),
    Localized(
        "Pay the application fee and keep the receipt.",
        "Pague a taxa de solicitação e guarde o comprovante.",
    ),
    Localized(
        "Schedule the consular interview and any biometrics appointment.",
        "Agende a entrevista no consulado e o atendimento de biometria, se houver.",
    ),
    Localized(
        "Prepare for the interview by reviewing your documents and practicing answers about your plans.",
        "Prepare-se para a entrevista revisando seus documentos e praticando respostas sobre seus planos.",
    ),
    Localized(
        "Attend the interview on time with originals and copies of every document.",
        "Compareça à entrevista no horário com originais e cópias de todos os documentos.",
    ),
    Localized(
        "Track your case status after the interview and plan your travel once the visa is issued.",
        "Acompanhe o status do caso após a entrevista e planeje a viagem quando o visto for emitido.",
    ),
)

DEFAULT_CHECKLIST: Tuple[Localized, ...] = (
    Localized("Valid passport", "Passaporte válido"),
    Localized("Application confirmation page", "Página de confirmação do formulário"),
    Localized("Fee payment receipt", "Comprovante de pagamento da taxa"),
    Localized("Recent photo meeting U.S. visa requirements", "Foto recente no padrão exigido para visto americano"),
    Localized("Diplomas and academic transcripts", "Diplomas e históricos escolares"),
    Localized("Employment letters and résumé", "Cartas de emprego e currículo"),
    Localized("Bank statements showing sufficient funds", "Extratos bancários que comprovem recursos suficientes"),
    Localized("Civil documents (birth and marriage certificates)", "Documentos civis (certidões de nascimento e casamento)"),
)


def attach_url(text: str) -> Optional[str]:
    """Official URL for a step or checklist item, from the keyword table."""
    folded = fold(text)
    for pattern, url in STEP_LINK_KEYWORDS:
        if pattern.search(folded):
            return url
    return None


def normalize_entries(raw: Any, key: str) -> List[Dict[str, str]]:
    """Normalize plan/checklist entries to ``{key, url?}`` dicts.

    Accepts strings or objects. Entries without an explicit http(s) URL get
    one from :func:`attach_url` when a keyword matches.
    """
    if not isinstance(raw, list):
        return []
    entries = []
    for item in raw:
        if isinstance(item, dict):
            text = to_str(item.get(key)) or to_str(item.get("text"))
            url = to_str(item.get("url"))
        else:
            text, url = to_str(item), None
        if not text:
            continue
        if not url or not url.lower().startswith(("http://", "https://")):
            url = attach_url(text)
        entry = {key: text}
        if url:
            entry["url"] = url
        entries.append(entry)
    return entries


def _fill(entries: List[Dict[str, str]], defaults: Sequence[Localized], key: str, language: str,
          minimum: int, maximum: int) -> List[Dict[str, str]]:
    """Pad with defaults (skipping duplicates) up to ``minimum``, cap at ``maximum``."""
    filled = list(entries)
    seen = {fold(entry[key]) for entry in filled}
    for default in defaults:
        if len(filled) >= minimum:
            break
        text = default.get(language)
        if fold(text) in seen:
            continue
        seen.add(fold(text))
        entry = {key: text}
        url = attach_url(text)
        if url:
            entry["url"] = url
        filled.append(entry)
    return filled[:maximum]


class DecisionFinalizer:
    """Builds the final decision from facts, classification and answers."""

    def __init__(
        self,
        gateway: GenerativeGateway,
        resolver: CanonicalCodeResolver = default_resolver,
        min_confidence: float = 0.4,
        timeout: float = 120.0,
        language: str = "en",
    ):
        self.gateway = gateway
        self.resolver = resolver
        self.min_confidence = min_confidence
        self.timeout = timeout
        self.language = language

    async def finalize(
        self,
        facts: Optional[Facts],
        classification: Optional[Classification],
        questions: Sequence[str],
        answers: Sequence[str],
    ) -> Decision:
        """Produce the final decision.

        Raises:
            MissingPrerequisiteError: Facts or classification missing
            InvalidOutputError: Backend output is not a JSON object
            UpstreamUnavailableError: Backend unavailable after retries
        """
        missing = []
        if facts is None:
            missing.append("extracted_facts")
        if classification is None:
            missing.append("classification")
        if missing:
            raise MissingPrerequisiteError(missing)

        best = classification.best_raw_confidence
        payload = {
            "extracted_facts": facts.to_document(),
            "classification": classification.to_document(),
            "answers": [
                {"question": question, "answer": answer}
                for question, answer in zip(questions, answers)
            ],
            "language": LANGUAGE_NAMES.get(self.language, "English"),
            "prompt_version": PROMPT_VERSION,
        }
        links = "\n".join(f"- {link}" for link in OFFICIAL_LINKS)
        language = LANGUAGE_NAMES.get(self.language, "English")

        if best < self.min_confidence:
            LOGGER.info(
                "Best confidence below threshold, building path to qualify",
                extra={"best_confidence": best, "threshold": self.min_confidence},
            )
            system_prompt = DECISION_NON_QUALIFYING_PROMPT.format(
                threshold_percent=round(self.min_confidence * 100),
                min_steps=PATH_MIN_STEPS,
                max_steps=PATH_MAX_STEPS,
                language=language,
                links=links,
            )
            validator = self._validate_non_qualifying
            reconstruct = self._reconstruct_non_qualifying
            operation = "finalize_non_qualifying"
        else:
            system_prompt = DECISION_QUALIFYING_PROMPT.format(
                min_steps=ACTION_PLAN_MIN_STEPS,
                max_steps=ACTION_PLAN_MAX_STEPS,
                min_items=CHECKLIST_MIN_ITEMS,
                max_items=CHECKLIST_MAX_ITEMS,
                language=language,
                links=links,
            )

            def validator(data: Dict[str, Any]) -> QualifyingDecision:
                return self._validate_qualifying(data, classification)

            def reconstruct(data: Dict[str, Any]) -> QualifyingDecision:
                return self._reconstruct_qualifying(data, classification)

            operation = "finalize_qualifying"

        try:
            decision = await self.gateway.call(
                system_prompt,
                payload,
                validator=validator,
                timeout=self.timeout,
                temperature=0.2,
                operation=operation,
            )
        except ContractValidationError as e:
            LOGGER.warning(
                "Decision failed schema validation, reconstructing",
                extra={"operation": operation, "errors": e.errors[:5]},
            )
            decision = reconstruct(as_dict(e.raw))

        LOGGER.info(
            "Decision finalized",
            extra={
                "qualifies_for_visa": decision.qualifies_for_visa,
                "reconstructed": decision.reconstructed,
            },
        )
        return decision

    # Qualifying branch

    def _top_visas(self, raw: Any, allowed: Sequence[VisaCode]) -> List[Dict[str, Any]]:
        top: List[Dict[str, Any]] = []
        seen = set()
        for item in raw if isinstance(raw, list) else []:
            item = as_dict(item)
            code = self.resolver.resolve(item.get("visa") or item.get("code"))
            if code is None or code in seen or code not in allowed:
                continue
            seen.add(code)
            top.append(
                {
                    "code": code,
                    "confidence": to_confidence(item.get("confidence")),
                    "rationale": to_str(item.get("rationale")),
                }
            )
        return top[:MAX_TOP_VISAS]

    def _qualifying_fields(self, data: Dict[str, Any], classification: Classification) -> Dict[str, Any]:
        allowed = classification.codes()
        selected = self.resolver.resolve(data.get("selected_visa"))
        return {
            "selected_visa": selected if selected in allowed else None,
            "confidence": to_confidence(data.get("confidence")),
            "rationale": to_str(data.get("rationale")),
            "top_visas": self._top_visas(data.get("top_visas"), allowed),
            "alternatives": to_string_list(data.get("alternatives")),
            "action_plan": normalize_entries(data.get("action_plan"), "step"),
            "documents_checklist": normalize_entries(data.get("documents_checklist"), "item"),
            "risks_and_flags": to_string_list(data.get("risks_and_flags")),
            "suggested_timeline": to_str(data.get("suggested_timeline")),
            "costs_note": to_str(data.get("costs_note")),
        }

    def _validate_qualifying(self, data: Dict[str, Any], classification: Classification) -> QualifyingDecision:
        fields = self._qualifying_fields(data, classification)
        if fields["selected_visa"] is None:
            raise ValueError("selected_visa must be one of the classification candidates")
        if not fields["top_visas"]:
            fields["top_visas"] = [
                {"code": fields["selected_visa"], "confidence": fields["confidence"], "rationale": fields["rationale"]}
            ]
        return QualifyingDecision.model_validate(fields)

    def _reconstruct_qualifying(self, data: Dict[str, Any], classification: Classification) -> QualifyingDecision:
        fields = self._qualifying_fields(data, classification)
        ranked = sorted(classification.candidates, key=lambda c: c.raw_confidence, reverse=True)

        if fields["selected_visa"] is None:
            fields["selected_visa"] = classification.selected or ranked[0].code
        selected = next(c for c in classification.candidates if c.code == fields["selected_visa"])
        if not fields["confidence"]:
            fields["confidence"] = selected.confidence
        if not fields["rationale"]:
            fields["rationale"] = selected.rationale
        if not fields["top_visas"]:
            fields["top_visas"] = [
                {"code": c.code, "confidence": c.confidence, "rationale": c.rationale}
                for c in ranked[:MAX_TOP_VISAS]
            ]

        fields["action_plan"] = _fill(
            fields["action_plan"], DEFAULT_ACTION_PLAN, "step", self.language,
            ACTION_PLAN_MIN_STEPS, ACTION_PLAN_MAX_STEPS,
        )
        fields["documents_checklist"] = _fill(
            fields["documents_checklist"], DEFAULT_CHECKLIST, "item", self.language,
            CHECKLIST_MIN_ITEMS, CHECKLIST_MAX_ITEMS,
        )
        fields["reconstructed"] = True
        return QualifyingDecision.model_validate(fields)

    # Non-qualifying branch

    def _non_qualifying_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        path = as_dict(data.get("path_to_qualify"))
        return {
            "rationale": to_str(data.get("rationale")),
            "path_to_qualify": {
                "summary": to_str(path.get("summary")),
                "steps": normalize_entries(path.get("steps"), "step"),
            },
        }

    def _validate_non_qualifying(self, data: Dict[str, Any]) -> NonQualifyingDecision:
        return NonQualifyingDecision.model_validate(self._non_qualifying_fields(data))

    def _reconstruct_non_qualifying(self, data: Dict[str, Any]) -> NonQualifyingDecision:
        fields = self._non_qualifying_fields(data)
        path = fields["path_to_qualify"]
        fields["rationale"] = fields["rationale"] or DEFAULT_RATIONALE.get(self.language)
        path["summary"] = path["summary"] or DEFAULT_PATH_SUMMARY.get(self.language)
        path["steps"] = _fill(
            path["steps"], DEFAULT_PATH_STEPS, "step", self.language, PATH_MIN_STEPS, PATH_MAX_STEPS
        )
        fields["reconstructed"] = True
        return NonQualifyingDecision.model_validate(fields)
