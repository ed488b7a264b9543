"""Stage 3: follow-up question generation.

Questions target only the top classification candidates. Every question
carries a ``[CODE]`` or ``[CODE/CODE]`` prefix; questions whose prefix names
a code outside the candidate list, or whose topic is already settled by the
extracted facts, are dropped. When the backend produces too few questions
the list is padded from static tables, and padded questions are flagged
``synthetic``.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from visa_advisor.core.exceptions import MissingPrerequisiteError, QuestionGenerationError
from visa_advisor.core.gateway import GenerativeGateway
from visa_advisor.prompts.system_prompts import (
    FOLLOWUP_QUESTIONS_PROMPT,
    LANGUAGE_NAMES,
    PROMPT_VERSION,
    Localized,
)
from visa_advisor.schemas.classification import VisaCandidate
from visa_advisor.schemas.facts import Facts
from visa_advisor.schemas.questions import GeneratedQuestion, QuestionsOutput
from visa_advisor.services.code_resolver import CanonicalCodeResolver, resolver as default_resolver
from visa_advisor.services.visa_catalog import VisaCode, visa_label
from visa_advisor.utils.contracts import collapse_whitespace, fold
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)


V = VisaCode

FALLBACK_QUESTIONS: Dict[VisaCode, Tuple[Localized, ...]] = {
    V.EB2_NIW: (
        Localized(
            "Which impact evidence can you provide (publications, leadership, awards, patents, commercial impact, independent letters)?",
            "Quais evidências de impacto você possui (publicações, liderança, prêmios, patentes, impacto comercial, cartas independentes)?",
        ),
        Localized(
            "What is your U.S. proposed endeavor and why is it nationally important (sector, problem, benefit)?",
            "Qual é o plano de atuação nos EUA e por que tem mérito e importância nacionais (setor, problema, benefício)?",
        ),
        Localized(
            "What resources and network do you have to advance the endeavor (partners, customers, funding, traction)?",
            "Que recursos e rede você possui para avançar o plano (parcerias, clientes, funding, tração)?",
        ),
    ),
    V.EB5: (
        Localized(
            "Will you pursue a regional center (TEA) or direct investment creating 10 jobs?",
            "Você pretende investir via centro regional (TEA) ou investimento direto com criação de 10 empregos?",
        ),
        Localized(
            "Do you have documentation to prove the lawful source of funds (tax returns, bank statements, contracts)?",
            "Você já possui documentação para comprovar a origem lícita dos recursos (impostos, extratos, contratos)?",
        ),
    ),
    V.E2: (
        Localized(
            "Is the investment for a new venture or acquisition, and what is the operational plan (roles, contracts, projections)?",
            "O investimento será em negócio novo ou aquisição, e qual o plano operacional (funções, contratos, projeções)?",
        ),
        Localized(
            "How will you demonstrate investment at risk and substantiality (irrevocable commitment of funds, expenses already made)?",
            "Como você demonstrará risco e substancialidade do investimento (compromisso irrevogável dos fundos, despesas já realizadas)?",
        ),
    ),
    V.E1: (
        Localized(
            "Is there substantial trade principally between the treaty country and the U.S. (approximate share and volume)?",
            "Há fluxo substancial de comércio principal entre o país do tratado e os EUA (percentual aproximado e volume)?",
        ),
    ),
    V.DV: (
        Localized(
            "Do you meet the education (high school) or qualifying work experience requirements under DV rules?",
            "Você atende aos requisitos de escolaridade (ensino médio) ou experiência qualificada conforme as regras da DV?",
        ),
    ),
    V.O1: (
        Localized(
            "Which O-1 criteria do you meet (major awards, notable media, leadership, judging, authorship, high salary)?",
            "Quais critérios O-1 você cumpre hoje (prêmio de grande prestígio, matérias relevantes, liderança, júri, autoria, salário alto)?",
        ),
    ),
    V.H1B: (
        Localized(
            "Does the role require a specific bachelor's and does your education match that requirement?",
            "A ocupação exige bacharel específico e sua formação corresponde ao requisito do cargo?",
        ),
    ),
    V.L1: (
        Localized(
            "What is the relationship between entities (parent/sub/affiliate) and your role & duties in the last 3 years?",
            "Qual a relação entre as empresas (matriz/filial/afiliada) e qual seu cargo e responsabilidades nos últimos 3 anos?",
        ),
    ),
    V.FAMILY: (
        Localized(
            "What is the relationship to the citizen/LPR and which civil documents do you have to prove it?",
            "Qual o grau de parentesco com o cidadão/residente e que documentos civis você possui para comprovar?",
        ),
    ),
    V.IR1: (
        Localized(
            "Is your spouse a U.S. citizen and has the marriage lasted over 2 years? What civil documents do you have (certificate, relationship evidence)?",
            "O cônjuge é cidadão americano e o casamento já tem mais de 2 anos? Quais documentos civis você tem (certidão, prova de relacionamento)?",
        ),
    ),
    V.CR1: (
        Localized(
            "Is your spouse a U.S. citizen and has the marriage been under 2 years? Do you have bona fide relationship evidence (photos, trips, joint accounts)?",
            "O cônjuge é cidadão americano e o casamento tem menos de 2 anos? Há prova de relacionamento bona fide (fotos, viagens, contas conjuntas)?",
        ),
    ),
    V.K1: (
        Localized(
            "Have you and your U.S. citizen fiancé(e) met in person in the last 2 years? Do you have relationship evidence (photos, messages, intent to marry)?",
            "Você e o(a) noivo(a) cidadão(ã) americano(a) se encontraram pessoalmente nos últimos 2 anos? Há evidências do relacionamento (fotos, mensagens, intenção de casar)?",
        ),
    ),
    V.EB1A: (
        Localized(
            "Which extraordinary ability criteria do you meet (major award, association, critical role, authorship, contribution, high salary)?",
            "Quais critérios de extraordinária capacidade você atende (prêmio major, associação, papel crítico, autoria, contribuição, salário alto)?",
        ),
    ),
    V.EB1B: (
        Localized(
            "Is the U.S. employer a university or research institution and do you have at least 3 years of research/teaching experience?",
            "O empregador nos EUA é universidade ou instituição de pesquisa e você tem ao menos 3 anos de experiência em pesquisa/ensino?",
        ),
    ),
    V.EB1C: (
        Localized(
            "Have you worked 1 year in the last 3 as manager/executive in the foreign entity and has the U.S. entity existed for at least 1 year?",
            "Você trabalhou 1 ano nos últimos 3 como gerente/executivo na empresa no exterior e a entidade nos EUA existe há pelo menos 1 ano?",
        ),
    ),
    V.B2: (
        Localized(
            "Which ties (job, studies, family, assets) and funds can you show to evidence your return?",
            "Quais vínculos (emprego, estudos, família, patrimônio) e fundos você pode demonstrar para comprovar retorno?",
        ),
    ),
    V.B1: (
        Localized(
            "Which business activities will you perform and which invitations/agenda do you already have?",
            "Quais atividades de negócio pretende realizar e quais convites/agenda já possui?",
        ),
    ),
    V.F1: (
        Localized(
            "What is your academic plan (program, campus, duration) and how will you evidence sufficient funds?",
            "Qual o plano acadêmico (curso, campus, duração) e como comprovará recursos suficientes para o período?",
        ),
    ),
    V.M1: (
        Localized(
            "Is it a recognized vocational program and do you have funds/ties to return upon completion?",
            "O curso é vocacional reconhecido e há recursos/vínculos para retorno ao término?",
        ),
    ),
    V.J1: (
        Localized(
            "Do you have a program sponsor (DS-2019) and are you aware of the possible 2-year home requirement (212(e))?",
            "Há sponsor (DS-2019) e você está ciente da possível exigência de 2 anos no país de origem (212(e))?",
        ),
    ),
    V.EB2_PERM: (
        Localized(
            "Will the employer run PERM and do the job requirements match your degree/experience?",
            "O empregador concorda com PERM e os requisitos do cargo são compatíveis com seu grau e experiência?",
        ),
    ),
    V.EB3: (
        Localized(
            "Is the role 'skilled/professional' and does the employer understand timelines/costs of the process?",
            "A posição é 'skilled/professional' e o empregador compreende prazos/custos do processo?",
        ),
    ),
}

# Used only when every listed code is a candidate
SHARED_PADDING: Tuple[Tuple[Tuple[VisaCode, ...], Localized], ...] = (
    (
        (V.EB2_NIW, V.O1),
        Localized(
            "Do you have independent expert letters attesting to your impact and qualifications?",
            "Você possui cartas de especialistas independentes que atestem seu impacto e qualificação?",
        ),
    ),
    (
        (V.E2, V.EB5),
        Localized(
            "Do you already have robust documentation to prove lawful source of funds?",
            "Você já dispõe de documentação robusta para comprovar a origem lícita dos recursos?",
        ),
    ),
    (
        (V.DV,),
        Localized(
            "Is there any chargeability strategy via spouse/parents that increases eligibility?",
            "Há alguma estratégia de chargeability via cônjuge/pais que aumente elegibilidade?",
        ),
    ),
)

DEPTH_QUESTIONS: Dict[VisaCode, Localized] = {
    V.EB2_NIW: Localized(
        "Which objective metrics can you attach to the plan (KPIs, institutional support letters, pilots, MOUs)?",
        "Quais métricas objetivas você pode anexar ao plano (KPIs, cartas de apoio institucionais, pilotos, MOUs)?",
    ),
    V.E2: Localized(
        "Do you have preliminary contracts, a financial plan, and spending timeline showing substantial commitment?",
        "Você possui contratos preliminares, plano financeiro e cronograma de despesas que demonstram comprometimento substancial?",
    ),
    V.EB5: Localized(
        "Have you evaluated project risk/regulatory (regional center vs. direct) and do you have legal/financial advisors engaged?",
        "Você já avaliou o risco/regulatório do projeto (regional center vs. direto) e possui advogado/assessor financeiro definidos?",
    ),
    V.B2: Localized(
        "Do you have documentation of ties (job/studies/assets) and reservations supporting the itinerary?",
        "Há documentação de vínculos (emprego/estudos/patrimônio) e reservas que sustentem o itinerário?",
    ),
}

# Last resort, applies to any candidate code
GENERIC_TEMPLATES: Tuple[Localized, ...] = (
    Localized(
        "Which documents do you already have to support a {label} application?",
        "Quais documentos você já possui para sustentar um pedido de {label}?",
    ),
    Localized(
        "Do you have any immigration history (refusals, overstays, prior visas) relevant to a {label} application?",
        "Você tem algum histórico migratório (recusas, overstay, vistos anteriores) relevante para um pedido de {label}?",
    ),
    Localized(
        "When do you plan to file for {label}, and is there a deadline driving that date?",
        "Quando você pretende dar entrada no {label} e há algum prazo que determine essa data?",
    ),
    Localized(
        "What budget have you set aside for the fees and costs of the {label} process?",
        "Qual orçamento você reservou para as taxas e custos do processo de {label}?",
    ),
)

_PREFIX_RE = re.compile(r"^\s*\[([^\]]+)\]\s*(.*)$", re.DOTALL)
_PREFIX_SPLIT_RE = re.compile(r"\s*[/,|]\s*")


def build_known_flags(facts: Facts) -> Dict[str, Any]:
    """Topics already settled by the extracted facts."""
    personal = facts.personal
    signals = facts.signals
    evidence = signals.extraordinary_evidence if signals else None
    offer = signals.job_offer_details if signals else None
    treaty = signals.treaty_eligible if signals else None

    has_job_offer = bool(signals and signals.has_job_offer)
    investment = signals.investment_capacity_usd if signals else None
    nationality = personal.nationality if personal else None
    treaty_country = signals.treaty_country if signals else None
    if not treaty_country and treaty is not None and treaty.e2:
        treaty_country = nationality

    o1_evidence = bool(
        evidence
        and (
            evidence.awards
            or (evidence.media_mentions or 0) > 0
            or evidence.peer_review_jury
            or evidence.original_contributions
        )
    )

    return {
        "has_sponsor": bool(facts.has_us_sponsor) or has_job_offer,
        "job_offer": has_job_offer,
        "degree_level": facts.education.lower() if facts.education else None,
        "years_exp": facts.work_experience_years,
        "nationality": nationality.lower() if nationality else None,
        "country_of_birth": (personal.country_of_birth if personal else None)
        or (signals.chargeability_country if signals else None),
        "has_i20": bool(signals and signals.has_i20),
        "has_funding": bool(signals and signals.has_funding),
        "eb5_budget": investment,
        "has_lawful_source_docs": bool(signals and signals.lawful_source_docs),
        "e2_treaty_passport_country": treaty_country,
        "e2_invest_amount": investment,
        "dv_eligible_hint": bool(signals and signals.chargeability_country),
        "o1_evidence": o1_evidence,
        "l1_one_year": bool(signals and (signals.multinational_experience_years or 0) >= 1),
        "l1_qualifying_relationship": bool(offer and offer.is_multinational),
    }


def _search(pattern: str, text: str) -> bool:
    return re.search(pattern, text) is not None


def is_already_answered(question: str, flags: Dict[str, Any]) -> bool:
    """True when the question asks about a topic the flags already settle."""
    q = fold(question)
    sponsor_known = bool(flags.get("has_sponsor") or flags.get("job_offer"))

    if _search(r"\bf-?1\b.*\bi[-\s]?20|\bf-?1\b.*\bsevp", q) and flags.get("has_i20"):
        return True
    if _search(r"\bf-?1\b.*\b(funding|recursos|comprovante|financial|funds)", q) and flags.get("has_funding"):
        return True

    if _search(r"\beb[-\s_]?5\b", q) and _search(
        r"\b(800|1\.05|1,05|investimento|investment|budget|amount|origem licita|source of funds)\b", q
    ):
        if flags.get("eb5_budget") or flags.get("has_lawful_source_docs"):
            return True

    if _search(r"\be[-\s_]?2\b", q):
        if _search(r"\b(passaporte|passport|treaty|tratado|pais|country)\b", q) and flags.get(
            "e2_treaty_passport_country"
        ):
            return True
        if _search(r"\b(invest|investir|valor|montante|amount)\b", q) and flags.get("e2_invest_amount"):
            return True

    if _search(r"\bdv\b|diversity", q) and (flags.get("country_of_birth") or flags.get("dv_eligible_hint")):
        return True

    if _search(r"\b(h[-\s_]?1b|perm|job offer|oferta de emprego|empregador|peticionar|sponsor)\b", q) and sponsor_known:
        return True

    if (
        _search(r"\bo[-\s_]?1\b", q)
        and _search(r"\b(premio|award|midia|media|juri|judging|extraordinary|impact)", q)
        and flags.get("o1_evidence")
    ):
        return True

    if _search(r"\bl[-\s_]?1\b", q):
        if _search(r"\b(1 ano|one year)\b", q) and flags.get("l1_one_year"):
            return True
        if _search(r"\b(relacao|qualifying|relationship|mesmo grupo|grupo empresarial)\b", q) and flags.get(
            "l1_qualifying_relationship"
        ):
            return True

    return False


class QuestionGenerator:
    """Produces follow-up questions scoped to the classification candidates."""

    def __init__(
        self,
        gateway: GenerativeGateway,
        resolver: CanonicalCodeResolver = default_resolver,
        min_questions: int = 5,
        max_questions: int = 10,
        top_candidates: int = 6,
        timeout: float = 90.0,
        language: str = "en",
    ):
        """Initialize the generator.

        Args:
            gateway: Generative call gateway
            resolver: Used to resolve codes inside question prefixes
            min_questions: Minimum questions returned
            max_questions: Maximum questions returned
            top_candidates: Number of candidates questions may target
            timeout: Per-attempt backend timeout in seconds
            language: Output language code ("en" or "pt")
        """
        self.gateway = gateway
        self.resolver = resolver
        self.min_questions = max(1, min_questions)
        self.max_questions = max(self.min_questions, max_questions)
        self.top_candidates = max(1, top_candidates)
        self.timeout = timeout
        self.language = language

    def contain(self, question: str, allowed: Set[VisaCode]) -> Optional[GeneratedQuestion]:
        """Validate a question's code prefix against the allowed codes.

        Returns:
            The question with a canonical prefix, or None when it has no
            prefix, an unknown code or a code outside ``allowed``
        """
        match = _PREFIX_RE.match(collapse_whitespace(question))
        if not match:
            return None
        body = match.group(2).strip()
        if not body:
            return None

        codes: List[VisaCode] = []
        for label in _PREFIX_SPLIT_RE.split(match.group(1).strip()):
            code = self.resolver.resolve(label)
            if code is None or code not in allowed:
                return None
            if code not in codes:
                codes.append(code)
        if not codes:
            return None

        prefix = "/".join(code.value for code in codes)
        return GeneratedQuestion(text=f"[{prefix}] {body}", codes=codes)

    def _padding(self, top_codes: Sequence[VisaCode]) -> Iterable[str]:
        """Static questions in padding order: per-code, shared, depth, generic."""
        allowed = set(top_codes)
        for code in top_codes:
            for text in FALLBACK_QUESTIONS.get(code, ()):
                yield f"[{code.value}] {text.get(self.language)}"
        for codes, text in SHARED_PADDING:
            if all(code in allowed for code in codes):
                yield f"[{'/'.join(code.value for code in codes)}] {text.get(self.language)}"
        for code in top_codes:
            if code in DEPTH_QUESTIONS:
                yield f"[{code.value}] {DEPTH_QUESTIONS[code].get(self.language)}"
        for template in GENERIC_TEMPLATES:
            for code in top_codes:
                yield f"[{code.value}] {template.get(self.language).format(label=visa_label(code))}"

    async def generate(
        self,
        facts: Optional[Facts],
        candidates: Optional[Sequence[VisaCandidate]],
    ) -> List[GeneratedQuestion]:
        """Generate follow-up questions for the top candidates.

        Raises:
            MissingPrerequisiteError: Facts or candidates are missing
            QuestionGenerationError: The minimum cannot be reached
            UpstreamUnavailableError: Backend unavailable after retries
        """
        missing = []
        if facts is None:
            missing.append("extracted_facts")
        if not candidates:
            missing.append("classification")
        if missing:
            raise MissingPrerequisiteError(missing)

        top = sorted(candidates, key=lambda c: c.confidence, reverse=True)[: self.top_candidates]
        top_codes = [candidate.code for candidate in top]
        allowed = set(top_codes)
        flags = build_known_flags(facts)

        system_prompt = FOLLOWUP_QUESTIONS_PROMPT.format(
            language=LANGUAGE_NAMES.get(self.language, "English"),
            min_questions=self.min_questions,
            max_questions=self.max_questions,
        )
        payload = {
            "purpose": facts.purpose.value,
            "facts": facts.to_document(),
            "known_flags": {key: value for key, value in flags.items() if value not in (None, False)},
            "top_candidates": [
                {"visa": c.code.value, "confidence": c.confidence, "rationale": c.rationale} for c in top
            ],
            "prompt_version": PROMPT_VERSION,
        }

        output: QuestionsOutput = await self.gateway.call(
            system_prompt,
            payload,
            validator=QuestionsOutput,
            timeout=self.timeout,
            temperature=0.25,
            operation="generate_questions",
        )

        questions: List[GeneratedQuestion] = []
        seen: Set[str] = set()
        dropped = 0

        def accept(text: Any, synthetic: bool) -> bool:
            if not isinstance(text, str) or is_already_answered(text, flags):
                return False
            question = self.contain(text, allowed)
            if question is None:
                return False
            key = fold(question.text)
            if key in seen:
                return False
            seen.add(key)
            question.synthetic = synthetic
            questions.append(question)
            return True

        for text in output.questions:
            if len(questions) >= self.max_questions:
                break
            if not accept(text, synthetic=False):
                dropped += 1

        generated = len(questions)
        if generated < self.min_questions:
            for text in self._padding(top_codes):
                if len(questions) >= self.min_questions:
                    break
                accept(text, synthetic=True)
            LOGGER.info(
                "Padded follow-up questions from static tables",
                extra={"generated": generated, "padded": len(questions) - generated},
            )

        if dropped:
            LOGGER.info("Dropped follow-up questions", extra={"dropped": dropped})

        if len(questions) < self.min_questions:
            raise QuestionGenerationError(produced=len(questions), minimum=self.min_questions)

        return questions
